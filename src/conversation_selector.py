"""
Conversation selection for backfill runs.

Turns a backfill mode into the ordered list of conversation summaries to
process. Duplicates across pages are kept on purpose: the call-log upsert
converges them and the lead dedup set rejects repeats.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import AbstractSet, List, Optional

import requests
from pydantic import ValidationError

from .config import ConfigurationError
from .elevenlabs_client import ConversationSummary, ElevenLabsClient, UpstreamAPIError

logger = logging.getLogger(__name__)


class BackfillMode(str, Enum):
    MISSING_ONLY = "missing_only"
    CONVERSATION_ID = "conversation_id"
    DATE_RANGE = "date_range"
    ALL = "all"


@dataclass
class SelectionResult:
    """Summaries to process plus listing bookkeeping."""

    conversations: List[ConversationSummary] = field(default_factory=list)
    pages_fetched: int = 0
    listed_total: int = 0
    skipped_existing: int = 0
    skipped_out_of_range: int = 0
    skipped_wrong_agent: int = 0
    list_error: Optional[str] = None


def to_unix_seconds(value: Optional[datetime]) -> Optional[int]:
    """Convert a datetime to unix seconds; naive datetimes are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


def validate_selection(
    mode: BackfillMode,
    conversation_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> None:
    """Reject mode/argument combinations that cannot produce a run."""
    if mode == BackfillMode.CONVERSATION_ID and not (conversation_id or "").strip():
        raise ConfigurationError("conversation_id is required for conversation_id mode")
    if mode == BackfillMode.DATE_RANGE:
        if start is None or end is None:
            raise ConfigurationError("start and end are required for date_range mode")
        if to_unix_seconds(start) > to_unix_seconds(end):
            raise ConfigurationError("start must not be after end")


def _in_range(summary: ConversationSummary, start_ts: int, end_ts: int) -> bool:
    started = summary.start_time_unix_secs
    if started is None:
        return False
    return start_ts <= started <= end_ts


def select_conversations(
    client: ElevenLabsClient,
    mode: BackfillMode,
    max_pages: int,
    existing_ids: AbstractSet[str] = frozenset(),
    conversation_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> SelectionResult:
    """
    Collect the summaries a run should process, in pagination order.

    Args:
        client: ElevenLabs client scoped to one agent
        mode: Which filter to apply
        max_pages: Upper bound on listing pages
        existing_ids: Conversation ids already stored (used by missing_only)
        conversation_id: The single id for conversation_id mode
        start: Inclusive lower bound for date_range mode
        end: Inclusive upper bound for date_range mode

    Returns:
        SelectionResult. A listing failure stops pagination and is reported
        in list_error; whatever was collected before it is still returned.
    """
    mode = BackfillMode(mode)
    validate_selection(mode, conversation_id, start, end)
    result = SelectionResult()

    if mode == BackfillMode.CONVERSATION_ID:
        result.conversations.append(
            ConversationSummary(conversation_id=conversation_id.strip(), agent_id=client.agent_id)
        )
        result.listed_total = 1
        return result

    start_ts = to_unix_seconds(start)
    end_ts = to_unix_seconds(end)

    try:
        for page in client.iter_conversation_pages(max_pages):
            result.pages_fetched += 1
            for summary in page.conversations:
                result.listed_total += 1

                if summary.agent_id and summary.agent_id != client.agent_id:
                    logger.warning(
                        f"Skipping conversation {summary.conversation_id} - wrong agent: {summary.agent_id}"
                    )
                    result.skipped_wrong_agent += 1
                    continue

                if mode == BackfillMode.MISSING_ONLY and summary.conversation_id in existing_ids:
                    result.skipped_existing += 1
                    continue

                if mode == BackfillMode.DATE_RANGE and not _in_range(summary, start_ts, end_ts):
                    result.skipped_out_of_range += 1
                    continue

                result.conversations.append(summary)
    except (UpstreamAPIError, requests.RequestException, ValidationError) as e:
        logger.error(f"Listing stopped after {result.pages_fetched} pages: {e}")
        result.list_error = str(e)

    logger.info(
        f"Selected {len(result.conversations)} of {result.listed_total} listed conversations "
        f"(mode={mode.value}, pages={result.pages_fetched})"
    )
    return result
