"""
Health Check Endpoints

/health answers without touching Postgres and says whether a backfill
could start (credentials present). /health/db measures a round trip and
checks that the three backfill tables exist.
"""

import os
import time
from datetime import datetime
from typing import Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from src.api.deps import get_db
from src.config import ConfigurationError, validate_agent_id


router = APIRouter(tags=["health"])

BACKFILL_TABLES = ("trucking_call_logs", "trucking_carrier_leads", "trucking_loads")


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    elevenlabs_configured: bool


class DatabaseHealthResponse(BaseModel):
    connected: bool
    latency_ms: Optional[float] = None
    tables: Dict[str, bool] = {}
    error: Optional[str] = None


def _elevenlabs_configured() -> bool:
    if not (os.getenv("ELEVENLABS_API_KEY") or "").strip():
        return False
    try:
        validate_agent_id(os.getenv("ELEVENLABS_AGENT_ID", ""))
    except ConfigurationError:
        return False
    return True


@router.get("/health", response_model=HealthResponse)
def health_check():
    return HealthResponse(
        status="ok",
        timestamp=datetime.utcnow(),
        elevenlabs_configured=_elevenlabs_configured(),
    )


@router.get("/health/db", response_model=DatabaseHealthResponse)
def database_health_check(db=Depends(get_db)):
    """Report latency and which backfill tables are missing (see --init-db)."""
    try:
        start = time.time()
        with db.cursor() as cur:
            cur.execute(
                "SELECT " + ", ".join(
                    f"to_regclass('{table}') IS NOT NULL AS {table}" for table in BACKFILL_TABLES
                )
            )
            row = cur.fetchone()
        latency = (time.time() - start) * 1000
    except Exception as e:
        return DatabaseHealthResponse(connected=False, error=str(e))

    return DatabaseHealthResponse(
        connected=True,
        latency_ms=round(latency, 2),
        tables={table: bool(row[table]) for table in BACKFILL_TABLES},
    )
