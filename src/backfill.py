"""
Voice call backfill.

Reconciles stored call logs with an ElevenLabs agent's conversations:
list → fetch detail → normalize → upsert call log → classify intent → lead.

Conversations are processed one at a time in listing order. A failure on one
conversation is recorded and the run moves on; only configuration problems
abort a run.

Usage:
    python -m src.backfill                          # missing conversations only
    python -m src.backfill --mode all --max-pages 5
    python -m src.backfill --mode conversation_id --conversation-id conv_123
    python -m src.backfill --mode date_range --since 2025-01-01 --until 2025-01-31
"""

import argparse
import json
import logging
import sys
from datetime import datetime
from typing import AbstractSet, Optional

import requests
from pydantic import ValidationError

from .call_normalizer import normalize_conversation
from .config import BackfillSettings, ConfigurationError, validate_agent_id
from .conversation_selector import BackfillMode, select_conversations, validate_selection
from .db.call_log_storage import CallLogStorage
from .db.connection import get_connection, init_db
from .db.lead_storage import LeadStorage
from .db.models import BackfillItemResult, BackfillRequest, BackfillRunResult
from .elevenlabs_client import ElevenLabsClient, Pacer, RetryPolicy, UpstreamAPIError
from .intent_classifier import classify_intent
from .lead_writer import (
    SKIP_BELOW_THRESHOLD,
    SKIP_EXISTING_LEAD,
    SKIP_NO_LOAD_REFERENCE,
    SKIP_NO_PHONE,
    LeadWriter,
)
from .logging_utils import configure_safe_logging

logger = logging.getLogger(__name__)

DETAIL_DELAY_SECS = 0.1


class CallBackfillRunner:
    """Runs one backfill pass for a single agent."""

    def __init__(
        self,
        client: ElevenLabsClient,
        call_logs: CallLogStorage,
        leads: LeadStorage,
        agent_id: str,
        pacer: Optional[Pacer] = None,
        detail_delay_secs: float = DETAIL_DELAY_SECS,
    ):
        self.client = client
        self.call_logs = call_logs
        self.leads = leads
        self.agent_id = validate_agent_id(agent_id)
        self.pacer = pacer or Pacer()
        self.detail_delay_secs = detail_delay_secs

    def _resolve_owner(self, owner_id: Optional[str]) -> str:
        if owner_id:
            return owner_id
        resolved = self.call_logs.resolve_default_owner()
        if not resolved:
            raise ConfigurationError("No owner_id found - cannot create call logs without owner")
        logger.info(f"Resolved owner_id: {resolved}")
        return resolved

    def run(
        self,
        request: BackfillRequest,
        existing_conversation_ids: Optional[AbstractSet[str]] = None,
        existing_lead_conversation_ids: Optional[AbstractSet[str]] = None,
    ) -> BackfillRunResult:
        """
        Execute a run.

        Args:
            request: Mode, page cap and mode-specific bounds
            existing_conversation_ids: Stored conversation ids; loaded from
                the call-log table when omitted (missing_only mode only)
            existing_lead_conversation_ids: Conversation ids that already
                have leads; loaded from the lead table when omitted

        Raises:
            ConfigurationError: before any conversation is processed
        """
        validate_selection(request.mode, request.conversation_id, request.start, request.end)
        owner_id = self._resolve_owner(request.owner_id)

        logger.info(f"Starting call backfill: agent={self.agent_id} mode={request.mode.value} "
                    f"max_pages={request.max_pages}")

        if existing_conversation_ids is None:
            existing_conversation_ids = (
                self.call_logs.list_conversation_ids(self.agent_id)
                if request.mode == BackfillMode.MISSING_ONLY
                else frozenset()
            )
        if existing_lead_conversation_ids is None:
            existing_lead_conversation_ids = self.leads.list_source_conversation_ids()

        lead_writer = LeadWriter(self.leads, existing_lead_conversation_ids)
        run = BackfillRunResult(agent_id=self.agent_id, owner_id=owner_id, mode=request.mode)
        counters = run.results

        selection = select_conversations(
            self.client,
            request.mode,
            request.max_pages,
            existing_ids=existing_conversation_ids,
            conversation_id=request.conversation_id,
            start=request.start,
            end=request.end,
        )
        counters.pages_fetched = selection.pages_fetched
        counters.fetched_total = len(selection.conversations)
        counters.skipped_existing = selection.skipped_existing
        counters.skipped_out_of_range = selection.skipped_out_of_range
        counters.skipped_wrong_agent = selection.skipped_wrong_agent

        if selection.list_error:
            counters.errors_total += 1
            run.details.append(BackfillItemResult(
                conversation_id="",
                status="list_error",
                error=selection.list_error,
            ))

        for summary in selection.conversations:
            try:
                item = self._process_conversation(summary.conversation_id, owner_id, lead_writer, run)
            except Exception as e:
                logger.exception(f"Error processing {summary.conversation_id}")
                counters.errors_total += 1
                item = BackfillItemResult(
                    conversation_id=summary.conversation_id, status="error", error=str(e)
                )
            run.details.append(item)
            self.pacer.wait(self.detail_delay_secs)

        run.completed_at = datetime.utcnow()

        logger.info("=" * 50)
        logger.info("Backfill complete")
        logger.info(f"  Pages:      {counters.pages_fetched}")
        logger.info(f"  Fetched:    {counters.fetched_total}")
        logger.info(f"  Upserted:   {counters.upserted_total} "
                    f"({counters.created_total} new, {counters.updated_total} updated)")
        logger.info(f"  Leads:      {counters.leads_created} "
                    f"({counters.leads_needing_review} need review)")
        logger.info(f"  Errors:     {counters.errors_total}")
        logger.info("=" * 50)

        return run

    def _process_conversation(
        self,
        conversation_id: str,
        owner_id: str,
        lead_writer: LeadWriter,
        run: BackfillRunResult,
    ) -> BackfillItemResult:
        counters = run.results

        try:
            detail = self.client.get_conversation(conversation_id)
        except (UpstreamAPIError, requests.RequestException) as e:
            logger.warning(f"Failed to fetch details for {conversation_id}: {e}")
            counters.errors_total += 1
            return BackfillItemResult(conversation_id=conversation_id, status="fetch_error", error=str(e))

        if detail.agent_id and detail.agent_id != self.agent_id:
            logger.warning(
                f"Detail mismatch: {conversation_id} has agent {detail.agent_id}, expected {self.agent_id}"
            )
            counters.skipped_wrong_agent += 1
            return BackfillItemResult(conversation_id=conversation_id, status="wrong_agent")

        record = normalize_conversation(detail, owner_id)

        try:
            upsert = self.call_logs.upsert(record)
        except Exception as e:
            logger.error(f"Upsert error for {conversation_id}: {e}")
            counters.errors_total += 1
            return BackfillItemResult(
                conversation_id=conversation_id,
                status="upsert_error",
                duration=record.duration_seconds,
                error=str(e),
            )

        counters.upserted_total += 1
        if upsert.created:
            counters.created_total += 1
        else:
            counters.updated_total += 1

        item = BackfillItemResult(
            conversation_id=conversation_id,
            status="created" if upsert.created else "updated",
            duration=record.duration_seconds,
            call_log_id=upsert.id,
        )

        analysis = classify_intent(record.transcript) if record.transcript else None
        if analysis is not None:
            item.intent_score = analysis.score

        try:
            decision = lead_writer.consider(record, upsert.id, analysis)
        except Exception as e:
            # The call log stays written; leads are not transactional with it
            logger.error(f"Lead insert error for {conversation_id}: {e}")
            counters.errors_total += 1
            counters.lead_errors += 1
            item.error = f"lead_error: {e}"
            return item

        if decision.created:
            counters.leads_created += 1
            if decision.needs_review:
                counters.leads_needing_review += 1
            item.lead_created = True
            item.lead_id = decision.lead_id
        else:
            item.skip_reason = decision.skip_reason
            if decision.skip_reason == SKIP_EXISTING_LEAD:
                counters.leads_skipped_existing += 1
            elif decision.skip_reason == SKIP_NO_PHONE:
                counters.leads_skipped_no_phone += 1
            elif decision.skip_reason == SKIP_BELOW_THRESHOLD:
                counters.leads_skipped_low_intent += 1
            elif decision.skip_reason == SKIP_NO_LOAD_REFERENCE:
                counters.leads_skipped_no_load_reference += 1

        return item


def build_runner(settings: BackfillSettings, db_connection) -> CallBackfillRunner:
    """Wire a runner from settings and an open database connection."""
    pacer = Pacer()
    client = ElevenLabsClient(
        api_key=settings.api_key,
        agent_id=settings.agent_id,
        base_url=settings.base_url,
        page_size=settings.page_size,
        retry_policy=RetryPolicy(max_retries=settings.max_retries, base_delay=settings.retry_delay_base),
        pacer=pacer,
        list_delay_secs=settings.list_delay_secs,
    )
    return CallBackfillRunner(
        client,
        CallLogStorage(db_connection),
        LeadStorage(db_connection),
        settings.agent_id,
        pacer=pacer,
        detail_delay_secs=settings.detail_delay_secs,
    )


def run_to_envelope(run: BackfillRunResult) -> dict:
    """JSON-ready response envelope for a completed run."""
    return {
        "success": True,
        "agent_id": run.agent_id,
        "owner_id": run.owner_id,
        "results": run.results.model_dump(),
        "details": [item.model_dump() for item in run.details],
    }


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Backfill ElevenLabs voice-agent calls into call logs and leads"
    )
    parser.add_argument(
        "--mode",
        choices=[m.value for m in BackfillMode],
        default=BackfillMode.MISSING_ONLY.value,
        help="Which conversations to process",
    )
    parser.add_argument("--max-pages", type=int, default=50, help="Maximum listing pages")
    parser.add_argument("--owner-id", type=str, help="Owner for created rows (default: any load's owner)")
    parser.add_argument("--conversation-id", type=str, help="Conversation id (conversation_id mode)")
    parser.add_argument("--since", type=str, help="Start date YYYY-MM-DD (date_range mode)")
    parser.add_argument("--until", type=str, help="End date YYYY-MM-DD, inclusive (date_range mode)")
    parser.add_argument("--init-db", action="store_true", help="Create tables before running")
    parser.add_argument("--verbose", action="store_true", help="Debug logging (overrides BACKFILL_LOG_LEVEL)")

    args = parser.parse_args()
    configure_safe_logging(logging.DEBUG if args.verbose else None)

    since = datetime.strptime(args.since, "%Y-%m-%d") if args.since else None
    until = (
        datetime.strptime(args.until, "%Y-%m-%d").replace(hour=23, minute=59, second=59)
        if args.until else None
    )

    try:
        settings = BackfillSettings.from_env()
        request = BackfillRequest(
            owner_id=args.owner_id,
            max_pages=args.max_pages,
            mode=BackfillMode(args.mode),
            conversation_id=args.conversation_id,
            start=since,
            end=until,
        )
        if args.init_db:
            init_db()
        with get_connection() as conn:
            run = build_runner(settings, conn).run(request)
    except (ConfigurationError, ValidationError) as e:
        logger.error(f"Backfill error: {e}")
        print(json.dumps({"success": False, "error": str(e)}, indent=2))
        sys.exit(1)

    print(json.dumps(run_to_envelope(run), indent=2, default=str))


if __name__ == "__main__":
    main()
