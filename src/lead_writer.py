"""
Gated, deduplicated lead creation for backfilled calls.

Gates are evaluated in order and stop at the first failure:

1. existing_lead          - this conversation already produced a lead
2. no_phone               - no usable callback number on the call
3. no_transcript /
   no_load_reference      - the caller must have named a load; a rate alone
                            is not enough evidence for a lead
4. below_intent_threshold - the classifier's commitment+grounding gate failed

Gate 3 is stricter than the classifier's own threshold, which accepts a rate
mention in place of a load reference.
"""

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Optional

from .db.models import CallLogRecord, LeadRecord
from .intent_classifier import IntentAnalysisResult

logger = logging.getLogger(__name__)

SKIP_EXISTING_LEAD = "existing_lead"
SKIP_NO_PHONE = "no_phone"
SKIP_NO_TRANSCRIPT = "no_transcript"
SKIP_NO_LOAD_REFERENCE = "no_load_reference"
SKIP_BELOW_THRESHOLD = "below_intent_threshold"

LOAD_NOT_MATCHED_REASON = "Load reference not found in loads"

MIN_PHONE_DIGITS = 7


@dataclass
class LeadDecision:
    """Outcome of one lead attempt."""

    created: bool = False
    lead_id: Optional[str] = None
    skip_reason: Optional[str] = None
    needs_review: bool = False


def _digits(value: Optional[str]) -> str:
    return re.sub(r"\D", "", value or "")


def format_phone(phone: str) -> str:
    """Format the last 10 digits as ###-###-####; otherwise return phone unchanged."""
    last_ten = _digits(phone)[-10:]
    if len(last_ten) == 10:
        return f"{last_ten[:3]}-{last_ten[3:6]}-{last_ten[6:]}"
    return phone


def has_usable_phone(phone: Optional[str]) -> bool:
    return len(_digits(phone)) >= MIN_PHONE_DIGITS


def build_notes(conversation_id: str, analysis: IntentAnalysisResult) -> str:
    """Human-readable summary of why the lead exists."""
    def show(value):
        return "n/a" if value is None else value

    return (
        f"Backfilled from voice conversation {conversation_id}. "
        f"Intent score: {analysis.score}. "
        f"Load ref: {show(analysis.load_reference)}. "
        f"Carrier: {show(analysis.carrier_name)}. "
        f"Rate offered: {show(analysis.rate_offered)}. "
        f"Rate requested: {show(analysis.rate_requested)}. "
        f"Callback needed: {'yes' if analysis.callback_needed else 'no'}."
    )


class LeadWriter:
    """
    Creates at most one lead per conversation id.

    seen_conversation_ids is seeded from persisted leads at run start and
    updated immediately after each insert, so a conversation listed twice in
    one run (cursor overlap) is rejected the second time.
    """

    def __init__(self, lead_storage, existing_conversation_ids: Iterable[str] = ()):
        self.storage = lead_storage
        self.seen_conversation_ids = set(existing_conversation_ids)

    def skip_reason(
        self,
        call_log: CallLogRecord,
        analysis: Optional[IntentAnalysisResult],
    ) -> Optional[str]:
        """Return the first failing gate, or None if a lead should be created."""
        if call_log.elevenlabs_conversation_id in self.seen_conversation_ids:
            return SKIP_EXISTING_LEAD
        if not has_usable_phone(call_log.carrier_phone):
            return SKIP_NO_PHONE
        if not (call_log.transcript or "").strip() or analysis is None:
            return SKIP_NO_TRANSCRIPT
        if not analysis.has_load_reference:
            return SKIP_NO_LOAD_REFERENCE
        if not analysis.meets_intent_threshold:
            return SKIP_BELOW_THRESHOLD
        return None

    def consider(
        self,
        call_log: CallLogRecord,
        call_log_id: Optional[str],
        analysis: Optional[IntentAnalysisResult],
    ) -> LeadDecision:
        """Run the gates and insert a lead if they all pass.

        Raises whatever the storage raises on insert; the conversation stays
        unmarked so a later run can retry it.
        """
        conversation_id = call_log.elevenlabs_conversation_id
        reason = self.skip_reason(call_log, analysis)
        if reason:
            logger.debug(f"No lead for {conversation_id}: {reason}")
            return LeadDecision(skip_reason=reason)

        load = self.storage.find_load_by_reference(analysis.load_reference)
        lead = LeadRecord(
            owner_id=call_log.owner_id,
            company_name=analysis.carrier_name,
            phone=format_phone(call_log.carrier_phone),
            load_id=load.id if load else None,
            rate_offered=analysis.rate_offered,
            rate_requested=analysis.rate_requested,
            intent_score=analysis.score,
            load_reference=analysis.load_reference,
            callback_needed=analysis.callback_needed,
            needs_review=load is None,
            review_reason=None if load else LOAD_NOT_MATCHED_REASON,
            source_conversation_id=conversation_id,
            source_call_sid=call_log.call_sid,
            call_log_id=call_log_id,
            notes=build_notes(conversation_id, analysis),
        )

        lead_id = self.storage.insert(lead)
        self.seen_conversation_ids.add(conversation_id)

        return LeadDecision(created=True, lead_id=lead_id, needs_review=lead.needs_review)
