"""
Call Log Storage

Idempotent persistence for backfilled calls: one trucking_call_logs row per
ElevenLabs conversation id, located by lookup and then updated or inserted.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Set

from psycopg2.extras import Json

from .models import CallLogRecord

logger = logging.getLogger(__name__)

# Columns written on insert and update; the record's id is never written
CALL_LOG_COLUMNS = (
    "owner_id",
    "elevenlabs_conversation_id",
    "elevenlabs_agent_id",
    "call_sid",
    "carrier_phone",
    "receiver_phone",
    "call_direction",
    "summary",
    "transcript",
    "recording_url",
    "has_audio",
    "call_started_at",
    "call_ended_at",
    "duration_seconds",
    "outcome",
    "call_status",
    "ended_reason",
    "call_cost_credits",
    "call_cost_usd",
    "estimated_cost_usd",
    "llm_cost_usd_total",
    "llm_cost_usd_per_min",
    "is_demo",
    "raw_metadata",
)

_INSERT_SQL = (
    f"INSERT INTO trucking_call_logs ({', '.join(CALL_LOG_COLUMNS)}) "
    f"VALUES ({', '.join(['%s'] * len(CALL_LOG_COLUMNS))}) "
    "RETURNING id"
)

_UPDATE_SQL = (
    "UPDATE trucking_call_logs SET "
    + ", ".join(f"{col} = %s" for col in CALL_LOG_COLUMNS)
    + ", updated_at = NOW() WHERE id = %s RETURNING id"
)


@dataclass
class UpsertResult:
    """Internal id of the written row and whether it was newly inserted."""

    id: str
    created: bool


class CallLogStorage:
    """
    Reads and writes trucking_call_logs.

    Every write commits on its own. A failed write is rolled back and
    re-raised so the caller can record it against the conversation.
    """

    def __init__(self, db_connection):
        self.db = db_connection

    def list_conversation_ids(self, agent_id: Optional[str] = None) -> Set[str]:
        """Conversation ids that already have a call log (optionally for one agent)."""
        with self.db.cursor() as cur:
            if agent_id:
                cur.execute("""
                    SELECT elevenlabs_conversation_id
                    FROM trucking_call_logs
                    WHERE elevenlabs_conversation_id IS NOT NULL
                      AND elevenlabs_agent_id = %s
                """, (agent_id,))
            else:
                cur.execute("""
                    SELECT elevenlabs_conversation_id
                    FROM trucking_call_logs
                    WHERE elevenlabs_conversation_id IS NOT NULL
                """)
            return {row["elevenlabs_conversation_id"] for row in cur.fetchall()}

    def resolve_default_owner(self) -> Optional[str]:
        """Owner of an arbitrary existing load, for runs started without one."""
        with self.db.cursor() as cur:
            cur.execute("SELECT owner_id FROM trucking_loads LIMIT 1")
            row = cur.fetchone()
        return str(row["owner_id"]) if row and row.get("owner_id") else None

    def find_id_by_conversation_id(self, conversation_id: str) -> Optional[str]:
        with self.db.cursor() as cur:
            cur.execute("""
                SELECT id FROM trucking_call_logs
                WHERE elevenlabs_conversation_id = %s
                LIMIT 1
            """, (conversation_id,))
            row = cur.fetchone()
        return str(row["id"]) if row else None

    @staticmethod
    def _values(record: CallLogRecord) -> tuple:
        data = record.model_dump()
        data["raw_metadata"] = Json(data.get("raw_metadata") or {})
        return tuple(data[col] for col in CALL_LOG_COLUMNS)

    def upsert(self, record: CallLogRecord) -> UpsertResult:
        """
        Update the row for record's conversation id, or insert one.

        Last write wins. Calling twice with the same conversation id leaves
        exactly one row.
        """
        try:
            existing_id = self.find_id_by_conversation_id(record.elevenlabs_conversation_id)
            with self.db.cursor() as cur:
                if existing_id:
                    cur.execute(_UPDATE_SQL, self._values(record) + (existing_id,))
                else:
                    cur.execute(_INSERT_SQL, self._values(record))
                row = cur.fetchone()
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        if existing_id:
            logger.debug(f"Updated call log {existing_id} for {record.elevenlabs_conversation_id}")
            return UpsertResult(id=existing_id, created=False)

        new_id = str(row["id"])
        logger.debug(f"Inserted call log {new_id} for {record.elevenlabs_conversation_id}")
        return UpsertResult(id=new_id, created=True)
