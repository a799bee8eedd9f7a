"""Database module for the call backfill pipeline."""

from .models import BackfillRequest, BackfillRunResult, CallLogRecord, LeadRecord, LoadRecord
from .connection import get_connection, init_db
from .call_log_storage import CallLogStorage, UpsertResult
from .lead_storage import LeadStorage

__all__ = [
    "BackfillRequest",
    "BackfillRunResult",
    "CallLogRecord",
    "LeadRecord",
    "LoadRecord",
    "CallLogStorage",
    "LeadStorage",
    "UpsertResult",
    "get_connection",
    "init_db",
]
