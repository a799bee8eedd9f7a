"""Pydantic models for database entities and backfill runs."""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from src.conversation_selector import BackfillMode

CallOutcome = Literal["completed", "callback_requested", "declined", "confirmed"]

CallDirection = Literal["inbound", "outbound"]

ItemStatus = Literal[
    "created", "updated", "fetch_error", "upsert_error", "wrong_agent", "list_error", "error"
]


class CallLogRecord(BaseModel):
    """A normalized call, one row per ElevenLabs conversation id."""

    model_config = ConfigDict(from_attributes=True)

    id: Optional[str] = None
    owner_id: str

    # Provenance
    elevenlabs_conversation_id: str
    elevenlabs_agent_id: Optional[str] = None
    call_sid: Optional[str] = None

    # Parties
    carrier_phone: Optional[str] = None   # caller
    receiver_phone: Optional[str] = None
    call_direction: CallDirection = "inbound"

    # Content
    summary: Optional[str] = None
    transcript: Optional[str] = None
    recording_url: Optional[str] = None
    has_audio: bool = False

    # Timing
    call_started_at: datetime
    call_ended_at: Optional[datetime] = None
    duration_seconds: int = 0

    outcome: CallOutcome = "completed"
    call_status: Optional[str] = None
    ended_reason: Optional[str] = None

    # Cost
    call_cost_credits: Optional[float] = None
    call_cost_usd: float = 0.0
    estimated_cost_usd: float = 0.0
    llm_cost_usd_total: float = 0.0
    llm_cost_usd_per_min: float = 0.0

    is_demo: bool = False
    raw_metadata: Dict[str, Any] = Field(default_factory=dict)


class LoadRecord(BaseModel):
    """Read-only view of a posted load, used for reference matching."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    load_number: Optional[str] = None
    owner_id: Optional[str] = None


class LeadRecord(BaseModel):
    """A carrier lead derived from a backfilled call, pending human review."""

    model_config = ConfigDict(from_attributes=True)

    id: Optional[str] = None
    owner_id: str
    company_name: Optional[str] = None
    phone: str
    load_id: Optional[str] = None

    rate_offered: Optional[float] = None
    rate_requested: Optional[float] = None
    intent_score: int = 0
    load_reference: Optional[str] = None
    callback_needed: bool = False

    needs_review: bool = False
    review_reason: Optional[str] = None
    status: str = "new"
    source: str = "elevenlabs_backfill"

    # Provenance
    source_conversation_id: str
    source_call_sid: Optional[str] = None
    call_log_id: Optional[str] = None
    notes: Optional[str] = None


class BackfillRequest(BaseModel):
    """Parameters for one backfill run."""

    owner_id: Optional[str] = None
    max_pages: int = Field(default=50, ge=1, le=500, description="Upper bound on listing pages")
    mode: BackfillMode = BackfillMode.MISSING_ONLY
    conversation_id: Optional[str] = Field(default=None, description="Only for conversation_id mode")
    start: Optional[datetime] = Field(default=None, description="Only for date_range mode (inclusive)")
    end: Optional[datetime] = Field(default=None, description="Only for date_range mode (inclusive)")


class BackfillItemResult(BaseModel):
    """Outcome for one conversation in a run."""

    conversation_id: str
    status: ItemStatus
    duration: Optional[int] = None
    call_log_id: Optional[str] = None
    lead_created: bool = False
    lead_id: Optional[str] = None
    intent_score: Optional[int] = None
    skip_reason: Optional[str] = None
    error: Optional[str] = None


class BackfillCounters(BaseModel):
    """Aggregate counters for a run."""

    fetched_total: int = 0
    pages_fetched: int = 0
    upserted_total: int = 0
    created_total: int = 0
    updated_total: int = 0
    skipped_existing: int = 0
    skipped_out_of_range: int = 0
    skipped_wrong_agent: int = 0
    errors_total: int = 0

    leads_created: int = 0
    leads_skipped_existing: int = 0
    leads_skipped_no_phone: int = 0
    leads_skipped_no_load_reference: int = 0
    leads_skipped_low_intent: int = 0
    leads_needing_review: int = 0
    lead_errors: int = 0


class BackfillRunResult(BaseModel):
    """What a run hands back to its caller."""

    agent_id: str
    owner_id: str
    mode: BackfillMode
    started_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    results: BackfillCounters = Field(default_factory=BackfillCounters)
    details: List[BackfillItemResult] = Field(default_factory=list)
