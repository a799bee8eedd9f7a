"""
Backfill Endpoint

Runs one call backfill synchronously and returns the full run summary.
Setup failures (missing API key, malformed agent id, no owner) return a
non-success envelope before any conversation is touched.
"""

import logging

from fastapi import APIRouter, Depends, Response

from src.api.deps import get_db
from src.api.schemas.backfill import BackfillResponse
from src.backfill import build_runner
from src.config import BackfillSettings, ConfigurationError
from src.db.models import BackfillRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/backfill", tags=["backfill"])


@router.post("/calls", response_model=BackfillResponse)
def backfill_calls(request: BackfillRequest, response: Response, db=Depends(get_db)):
    """
    Backfill ElevenLabs conversations into call logs and leads.

    Per-conversation failures are reported in `details` and counted in
    `results.errors_total`; they never fail the request. Retry a single
    conversation with mode=conversation_id.
    """
    try:
        settings = BackfillSettings.from_env()
        logger.info(f"Backfill requested: mode={request.mode.value} agent={settings.agent_id}")
        run = build_runner(settings, db).run(request)
    except ConfigurationError as e:
        logger.error(f"Backfill error: {e}")
        response.status_code = 500
        return BackfillResponse(success=False, error=str(e))

    return BackfillResponse(
        success=True,
        agent_id=run.agent_id,
        owner_id=run.owner_id,
        results=run.results,
        details=run.details,
    )
