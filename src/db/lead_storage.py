"""
Lead Storage

Inserts carrier leads and answers the two lookups lead creation needs:
which conversations already produced a lead, and which load a spoken
reference number points at.
"""

import logging
import re
from typing import Optional, Set

from .models import LeadRecord, LoadRecord

logger = logging.getLogger(__name__)

LEAD_COLUMNS = (
    "owner_id",
    "company_name",
    "phone",
    "load_id",
    "rate_offered",
    "rate_requested",
    "intent_score",
    "load_reference",
    "callback_needed",
    "needs_review",
    "review_reason",
    "status",
    "source",
    "source_conversation_id",
    "source_call_sid",
    "call_log_id",
    "notes",
)

_INSERT_SQL = (
    f"INSERT INTO trucking_carrier_leads ({', '.join(LEAD_COLUMNS)}) "
    f"VALUES ({', '.join(['%s'] * len(LEAD_COLUMNS))}) "
    "RETURNING id"
)


# Containment matching on shorter references links almost any load
MIN_MATCH_LENGTH = 3


def normalize_reference(reference: Optional[str]) -> str:
    """Strip everything but letters and digits ("LD-4521 " -> "LD4521")."""
    return re.sub(r"[^A-Za-z0-9]", "", reference or "")


class LeadStorage:
    """Reads trucking_carrier_leads / trucking_loads, inserts leads."""

    def __init__(self, db_connection):
        self.db = db_connection

    def list_source_conversation_ids(self) -> Set[str]:
        """Conversation ids that already produced a lead."""
        with self.db.cursor() as cur:
            cur.execute("""
                SELECT source_conversation_id
                FROM trucking_carrier_leads
                WHERE source_conversation_id IS NOT NULL
            """)
            return {row["source_conversation_id"] for row in cur.fetchall()}

    def find_load_by_reference(self, reference: Optional[str]) -> Optional[LoadRecord]:
        """
        Partial, case-insensitive match of a reference against load numbers.

        Returns the most recently created match, or None. References shorter
        than MIN_MATCH_LENGTH are never matched.
        """
        normalized = normalize_reference(reference)
        if len(normalized) < MIN_MATCH_LENGTH:
            return None

        with self.db.cursor() as cur:
            cur.execute("""
                SELECT id, load_number, owner_id
                FROM trucking_loads
                WHERE regexp_replace(load_number, '[^A-Za-z0-9]', '', 'g') ILIKE %s
                ORDER BY created_at DESC
                LIMIT 1
            """, (f"%{normalized}%",))
            row = cur.fetchone()

        if not row:
            return None
        return LoadRecord(
            id=str(row["id"]),
            load_number=row.get("load_number"),
            owner_id=str(row["owner_id"]) if row.get("owner_id") else None,
        )

    def insert(self, lead: LeadRecord) -> str:
        """Insert a lead and return its id. Rolls back and re-raises on failure."""
        data = lead.model_dump()
        try:
            with self.db.cursor() as cur:
                cur.execute(_INSERT_SQL, tuple(data[col] for col in LEAD_COLUMNS))
                row = cur.fetchone()
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        lead_id = str(row["id"])
        logger.info(f"Created lead {lead_id} for conversation {lead.source_conversation_id}")
        return lead_id
