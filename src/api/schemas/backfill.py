"""
Backfill API Schemas

Response envelope for the backfill endpoint. The request body is
src.db.models.BackfillRequest.
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from src.db.models import BackfillCounters, BackfillItemResult


class BackfillResponse(BaseModel):
    """Run summary, or a failure message when setup failed."""

    success: bool
    agent_id: Optional[str] = None
    owner_id: Optional[str] = None
    results: Optional[BackfillCounters] = None
    details: List[BackfillItemResult] = Field(default_factory=list)
    error: Optional[str] = None
