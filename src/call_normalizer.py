"""
Normalize ElevenLabs conversation details into call-log records.

ElevenLabs spreads the same facts across several places depending on how the
call was placed (telephony vs. web widget, inbound vs. outbound), so every
field is resolved through an ordered fallback chain.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from .db.models import CallLogRecord
from .elevenlabs_client import ConversationDetail

# Cost per minute for ElevenLabs conversational AI
COST_PER_MINUTE_USD = 0.07
# Approximate credit to USD conversion
COST_PER_CREDIT_USD = 0.00003
# Approximate LLM share of the per-minute cost
LLM_COST_FRACTION = 0.3

# Checked in this order; the first flag set wins
OUTCOME_FLAGS = ("callback_requested", "declined", "confirmed")


def _first(*values: Any) -> Any:
    """Return the first truthy value, or None."""
    for value in values:
        if value:
            return value
    return None


def _phone_call(detail: ConversationDetail) -> Dict[str, Any]:
    return detail.metadata.get("phone_call") or {}


def resolve_duration(detail: ConversationDetail) -> int:
    """
    Resolve call duration in seconds.

    Precedence: explicit duration → end - start → phone connection
    duration → 0. Cost estimates are derived from this value.
    """
    explicit = _first(detail.call_duration_secs, detail.metadata.get("call_duration_secs"))
    if explicit:
        return int(round(float(explicit)))

    start = _first(detail.start_time_unix_secs, detail.metadata.get("start_time_unix_secs"))
    end = _first(detail.end_time_unix_secs, detail.metadata.get("end_time_unix_secs"))
    if start and end:
        elapsed = int(round(end - start))
        if elapsed > 0:
            return elapsed

    connection = _phone_call(detail).get("connection_duration_secs")
    if connection:
        return int(round(float(connection)))

    return 0


def resolve_direction(detail: ConversationDetail) -> str:
    direction = _first(_phone_call(detail).get("direction"), detail.metadata.get("direction"))
    if isinstance(direction, str) and direction.lower() == "outbound":
        return "outbound"
    return "inbound"


def resolve_phones(detail: ConversationDetail, direction: str) -> Tuple[Optional[str], Optional[str]]:
    """
    Return (caller_phone, receiver_phone) for the call.

    The external party is the caller on inbound calls and the receiver on
    outbound calls; the agent's line takes the other role.
    """
    phone_call = _phone_call(detail)
    call = detail.call
    inbound = direction == "inbound"

    external = _first(
        phone_call.get("external_number"),
        call.get("from_number") if inbound else call.get("to_number"),
        detail.metadata.get("external_number"),
    )
    agent = _first(
        phone_call.get("agent_number"),
        call.get("to_number") if inbound else call.get("from_number"),
        detail.metadata.get("agent_number"),
    )

    if inbound:
        caller, receiver = external, agent
    else:
        caller, receiver = agent, external

    if not caller:
        caller = _first(phone_call.get("external_number"), call.get("from_number"))

    return caller, receiver


def _flag_set(value: Any) -> bool:
    # data_collection_results entries look like {"value": true, "rationale": "..."}
    if isinstance(value, dict):
        value = value.get("value")
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return bool(value)


def resolve_outcome(detail: ConversationDetail) -> str:
    analysis = detail.analysis
    collected = analysis.get("data_collection_results") or {}

    for flag in OUTCOME_FLAGS:
        if _flag_set(collected.get(flag)) or _flag_set(analysis.get(flag)):
            return flag
    return "completed"


def compute_costs(duration_seconds: int, credits: Optional[float]) -> Dict[str, float]:
    """
    Compute cost fields.

    call_cost_usd comes from credits when present, else from duration.
    estimated_cost_usd and the LLM proxies are always duration based.
    """
    minutes = duration_seconds / 60
    estimated = minutes * COST_PER_MINUTE_USD
    call_cost = credits * COST_PER_CREDIT_USD if credits else estimated
    llm_total = estimated * LLM_COST_FRACTION
    llm_per_min = llm_total / minutes if duration_seconds > 0 else 0.0

    return {
        "call_cost_usd": call_cost,
        "estimated_cost_usd": estimated,
        "llm_cost_usd_total": llm_total,
        "llm_cost_usd_per_min": llm_per_min,
    }


def _from_unix(ts: Optional[float]) -> Optional[datetime]:
    if not ts:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def normalize_conversation(
    detail: ConversationDetail,
    owner_id: str,
    now: Optional[datetime] = None,
) -> CallLogRecord:
    """Map a conversation detail onto the canonical call-log record."""
    duration = resolve_duration(detail)
    direction = resolve_direction(detail)
    caller, receiver = resolve_phones(detail, direction)

    credits = _first(detail.call.get("call_cost_credits"), detail.metadata.get("cost"))
    credits = float(credits) if credits else None

    started = _from_unix(
        _first(detail.start_time_unix_secs, detail.metadata.get("start_time_unix_secs"))
    ) or now or datetime.now(timezone.utc)
    ended = _from_unix(_first(detail.end_time_unix_secs, detail.metadata.get("end_time_unix_secs")))

    return CallLogRecord(
        owner_id=owner_id,
        elevenlabs_conversation_id=detail.conversation_id,
        elevenlabs_agent_id=detail.agent_id,
        call_sid=_phone_call(detail).get("call_sid"),
        carrier_phone=caller,
        receiver_phone=receiver,
        call_direction=direction,
        summary=_first(detail.analysis.get("transcript_summary"), detail.analysis.get("summary")),
        transcript=detail.transcript_text(),
        recording_url=_first(detail.call.get("recording_url"), detail.metadata.get("recording_url")),
        has_audio=detail.has_audio,
        call_started_at=started,
        call_ended_at=ended,
        duration_seconds=duration,
        outcome=resolve_outcome(detail),
        call_status=detail.status,
        ended_reason=_first(detail.call.get("ended_reason"), detail.metadata.get("termination_reason")),
        call_cost_credits=credits,
        raw_metadata=detail.metadata,
        **compute_costs(duration, credits),
    )
