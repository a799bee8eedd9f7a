"""
Pytest configuration for call backfill tests.

Test Tier System:
- fast (default): Pure unit tests, all I/O mocked
- medium: API TestClient tests
- slow: Real ElevenLabs / database calls (none checked in yet)

Run tiers:
- pytest                          # Fast + medium (default addopts)
- pytest -m fast                  # Fast only
- pytest -m slow                  # Slow only

Unmarked tests are auto-assigned to 'fast'. Tests marked
@pytest.mark.integration without a tier default to 'medium'.

API Key Safety:
- Non-slow runs force fake ElevenLabs credentials so a missed mock can never
  reach the real API.
"""

import os
import sys
from pathlib import Path

import pytest

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

TEST_AGENT_ID = "agent_test_0001"


# =============================================================================
# Tier Auto-Assignment
# =============================================================================

def pytest_collection_modifyitems(config, items):
    """Give every unmarked test the 'fast' tier ('medium' for integration)."""
    for item in items:
        has_tier = (
            list(item.iter_markers(name='fast')) or
            list(item.iter_markers(name='medium')) or
            list(item.iter_markers(name='slow'))
        )
        if has_tier:
            continue

        if list(item.iter_markers(name='skip')):
            continue

        if list(item.iter_markers(name='integration')):
            item.add_marker(pytest.mark.medium)
            continue

        item.add_marker(pytest.mark.fast)


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Force fake credentials unless slow tests are selected."""
    markexpr = getattr(config.option, 'markexpr', '') or ''
    includes_slow_tests = 'slow' in markexpr and 'not slow' not in markexpr

    if includes_slow_tests:
        os.environ.setdefault("ELEVENLABS_API_KEY", "xi-test-fake-key")
        os.environ.setdefault("ELEVENLABS_AGENT_ID", TEST_AGENT_ID)
    else:
        os.environ["ELEVENLABS_API_KEY"] = "xi-test-fake-key"
        os.environ["ELEVENLABS_AGENT_ID"] = TEST_AGENT_ID


# =============================================================================
# Shared Fixtures
# =============================================================================

@pytest.fixture(scope="session")
def project_root():
    """Return project root path."""
    return PROJECT_ROOT


@pytest.fixture
def mock_db():
    """Mock psycopg2 connection; returns (connection, cursor)."""
    from unittest.mock import MagicMock, Mock

    db = Mock()
    cursor = MagicMock()
    db.cursor.return_value.__enter__ = Mock(return_value=cursor)
    db.cursor.return_value.__exit__ = Mock(return_value=False)
    return db, cursor
