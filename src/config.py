"""
Backfill configuration.

Reads ElevenLabs credentials and pipeline tuning knobs from the environment.
A project-root .env file is loaded if present.
"""

import os
import re
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)

DEFAULT_BASE_URL = "https://api.elevenlabs.io"

# ElevenLabs agent ids are opaque tokens like "agent_01jx..." or 20-char ids
AGENT_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{6,128}$")


class ConfigurationError(ValueError):
    """Fatal setup problem; the run is aborted before any item is processed."""


def _clamped_int(name: str, default: int, low: int, high: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")
    return max(low, min(high, value))


def _clamped_float(name: str, default: float, low: float, high: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")
    return max(low, min(high, value))


def validate_agent_id(agent_id: str) -> str:
    """Return the stripped agent id or raise ConfigurationError if malformed."""
    cleaned = (agent_id or "").strip()
    if not cleaned:
        raise ConfigurationError(
            "ELEVENLABS_AGENT_ID not configured - cannot backfill without agent filter"
        )
    if not AGENT_ID_PATTERN.match(cleaned):
        raise ConfigurationError(f"Malformed ELEVENLABS_AGENT_ID: {cleaned!r}")
    return cleaned


@dataclass(frozen=True)
class BackfillSettings:
    """Resolved settings for one backfill run."""

    api_key: str
    agent_id: str
    base_url: str = DEFAULT_BASE_URL
    page_size: int = 100
    max_retries: int = 3
    retry_delay_base: float = 1.0
    list_delay_secs: float = 0.2
    detail_delay_secs: float = 0.1

    @classmethod
    def from_env(cls) -> "BackfillSettings":
        api_key = (os.getenv("ELEVENLABS_API_KEY") or "").strip()
        if not api_key:
            raise ConfigurationError("ELEVENLABS_API_KEY not configured")

        agent_id = validate_agent_id(os.getenv("ELEVENLABS_AGENT_ID", ""))

        return cls(
            api_key=api_key,
            agent_id=agent_id,
            base_url=(os.getenv("ELEVENLABS_BASE_URL") or DEFAULT_BASE_URL).rstrip("/"),
            # ElevenLabs caps list pages at 100
            page_size=_clamped_int("ELEVENLABS_PAGE_SIZE", 100, 1, 100),
            max_retries=_clamped_int("ELEVENLABS_MAX_RETRIES", 3, 0, 10),
            retry_delay_base=_clamped_float("ELEVENLABS_RETRY_DELAY_BASE", 1.0, 0.0, 60.0),
            list_delay_secs=_clamped_float("BACKFILL_LIST_DELAY_SECS", 0.2, 0.0, 10.0),
            detail_delay_secs=_clamped_float("BACKFILL_DETAIL_DELAY_SECS", 0.1, 0.0, 10.0),
        )
