"""
ElevenLabs Conversational AI client.

Lists an agent's conversations page by page (opaque cursor) and fetches
conversation details. Rate-limited requests (429) are retried with
exponential backoff; every other response is handed back to the caller.

Retry and pacing are injectable so tests never sleep:

    client = ElevenLabsClient(
        api_key="...",
        agent_id="agent_123",
        retry_policy=RetryPolicy(max_retries=3, base_delay=1.0),
        pacer=Pacer(sleep=lambda s: None),
    )
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Generator, List, Optional

import requests
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from .config import DEFAULT_BASE_URL

logger = logging.getLogger(__name__)


class ConversationSummary(BaseModel):
    """One item from the list-conversations endpoint."""

    model_config = ConfigDict(extra="ignore")

    conversation_id: str
    agent_id: Optional[str] = None
    status: Optional[str] = None
    start_time_unix_secs: Optional[float] = None
    end_time_unix_secs: Optional[float] = None
    call_duration_secs: Optional[float] = None


class TranscriptTurn(BaseModel):
    """A single speaker turn in a conversation transcript."""

    model_config = ConfigDict(extra="ignore")

    role: str = "unknown"
    message: Optional[str] = None
    time_in_call_secs: Optional[float] = None


class ConversationDetail(BaseModel):
    """Full conversation payload from the detail endpoint."""

    model_config = ConfigDict(extra="ignore")

    conversation_id: str
    agent_id: Optional[str] = None
    status: Optional[str] = None
    start_time_unix_secs: Optional[float] = None
    end_time_unix_secs: Optional[float] = None
    call_duration_secs: Optional[float] = None
    transcript: List[TranscriptTurn] = []
    analysis: Dict[str, Any] = {}
    metadata: Dict[str, Any] = {}
    call: Dict[str, Any] = {}
    has_audio: bool = False
    has_user_audio: bool = False
    has_response_audio: bool = False

    @field_validator("transcript", mode="before")
    @classmethod
    def _none_transcript(cls, v):
        return v or []

    @field_validator("analysis", "metadata", "call", mode="before")
    @classmethod
    def _none_mapping(cls, v):
        return v or {}

    @field_validator("has_audio", "has_user_audio", "has_response_audio", mode="before")
    @classmethod
    def _none_flag(cls, v):
        return bool(v)

    def transcript_text(self) -> Optional[str]:
        """Render turns as 'role: message' lines, or None with no turns."""
        if not self.transcript:
            return None
        return "\n".join(f"{turn.role}: {turn.message or ''}" for turn in self.transcript)


@dataclass
class ConversationPage:
    """One page of the listing endpoint."""

    conversations: List[ConversationSummary]
    next_cursor: Optional[str] = None

    @property
    def has_more(self) -> bool:
        return bool(self.next_cursor) and len(self.conversations) > 0


class UpstreamAPIError(Exception):
    """Non-success response from the ElevenLabs API."""

    def __init__(self, status_code: int, message: str, endpoint: str = ""):
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(f"ElevenLabs API error {status_code} on {endpoint}: {message}")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for retryable status codes."""

    max_retries: int = 3
    base_delay: float = 1.0
    retryable_status_codes: FrozenSet[int] = frozenset({429})

    def is_retryable(self, status_code: int) -> bool:
        return status_code in self.retryable_status_codes

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number attempt+1 (1s, 2s, 4s, ... for base 1)."""
        return self.base_delay * (2 ** attempt)


@dataclass
class Pacer:
    """Fixed inter-call delays; swap the sleep function out in tests."""

    sleep: Callable[[float], Any] = field(default=time.sleep)

    def wait(self, seconds: float) -> None:
        if seconds and seconds > 0:
            self.sleep(seconds)


class ElevenLabsClient:
    """Client for one agent's conversations on ElevenLabs Conversational AI."""

    LIST_ENDPOINT = "/v1/convai/conversations"
    DEFAULT_PAGE_SIZE = 100
    LIST_DELAY_SECS = 0.2

    def __init__(
        self,
        api_key: str,
        agent_id: str,
        base_url: str = DEFAULT_BASE_URL,
        page_size: int = DEFAULT_PAGE_SIZE,
        retry_policy: Optional[RetryPolicy] = None,
        pacer: Optional[Pacer] = None,
        list_delay_secs: float = LIST_DELAY_SECS,
        timeout: Optional[tuple] = None,
        session: Optional[requests.Session] = None,
    ):
        if not api_key:
            raise ValueError("ElevenLabs API key is required")
        self.agent_id = agent_id
        self.base_url = base_url.rstrip("/")
        self.page_size = max(1, min(100, page_size))
        self.retry_policy = retry_policy or RetryPolicy()
        self.pacer = pacer or Pacer()
        self.list_delay_secs = list_delay_secs
        self.timeout = timeout

        self.session = session or requests.Session()
        self.session.headers.update({
            "xi-api-key": api_key,
            "Accept": "application/json",
        })

    def _request_with_retry(self, endpoint: str, params: Optional[dict] = None) -> requests.Response:
        """
        GET an endpoint, retrying rate-limited responses.

        Returns the final response without raising. A 429 that survives every
        retry is returned too; the caller decides what a failure means.
        """
        url = f"{self.base_url}{endpoint}"
        policy = self.retry_policy

        for attempt in range(policy.max_retries + 1):
            response = self.session.get(url, params=params, timeout=self.timeout)

            if not policy.is_retryable(response.status_code):
                return response

            if attempt >= policy.max_retries:
                logger.warning(
                    f"Rate limit persisted on {endpoint} after {attempt + 1} attempts, giving up"
                )
                return response

            delay = policy.delay_for(attempt)
            logger.warning(
                f"Rate limited ({response.status_code}) on {endpoint}, waiting {delay:.1f}s "
                f"(attempt {attempt + 1}/{policy.max_retries + 1})"
            )
            self.pacer.wait(delay)

        raise RuntimeError("Unexpected retry loop exit")

    @staticmethod
    def _raise_for_failure(response: requests.Response, endpoint: str) -> None:
        if response.status_code >= 400:
            body = (response.text or "")[:500]
            raise UpstreamAPIError(response.status_code, body, endpoint)

    def list_conversations_page(self, cursor: Optional[str] = None) -> ConversationPage:
        """Fetch one listing page for the configured agent."""
        params = {"page_size": self.page_size, "agent_id": self.agent_id}
        if cursor:
            params["cursor"] = cursor

        response = self._request_with_retry(self.LIST_ENDPOINT, params=params)
        self._raise_for_failure(response, self.LIST_ENDPOINT)

        data = response.json() or {}
        if not isinstance(data, dict):
            raise UpstreamAPIError(response.status_code, "listing body is not an object", self.LIST_ENDPOINT)
        conversations = []
        for item in data.get("conversations") or []:
            if not isinstance(item, dict) or not item.get("conversation_id"):
                continue
            try:
                conversations.append(ConversationSummary.model_validate(item))
            except ValidationError as e:
                logger.warning(
                    f"Skipping malformed listing item {item.get('conversation_id')!r}: "
                    f"{e.error_count()} validation errors"
                )
        return ConversationPage(conversations=conversations, next_cursor=data.get("next_cursor") or None)

    def iter_conversation_pages(self, max_pages: int) -> Generator[ConversationPage, None, None]:
        """
        Walk listing pages until the cursor runs out or max_pages is reached.

        Sleeps list_delay_secs after every page.
        """
        cursor: Optional[str] = None
        pages = 0

        while pages < max_pages:
            logger.info(f"Fetching conversation page {pages + 1}...")
            page = self.list_conversations_page(cursor)
            pages += 1
            logger.info(f"Page {pages}: found {len(page.conversations)} conversations")

            yield page

            self.pacer.wait(self.list_delay_secs)
            if not page.has_more:
                break
            cursor = page.next_cursor

    def get_conversation(self, conversation_id: str) -> ConversationDetail:
        """Fetch and parse one conversation's detail.

        Raises:
            UpstreamAPIError: on any non-success response (after 429 retries)
        """
        endpoint = f"{self.LIST_ENDPOINT}/{conversation_id}"
        response = self._request_with_retry(endpoint)
        self._raise_for_failure(response, endpoint)

        data = response.json() or {}
        data.setdefault("conversation_id", conversation_id)
        return ConversationDetail.model_validate(data)
