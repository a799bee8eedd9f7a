"""
Tests for the backfill runner, using in-memory fakes for the ElevenLabs
client and both storages.

Run with: pytest tests/test_backfill.py -v
"""

import json
import logging
import sys
from datetime import datetime
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from src.backfill import CallBackfillRunner, main, run_to_envelope
from src.config import ConfigurationError
from src.conversation_selector import BackfillMode
from src.db.call_log_storage import UpsertResult
from src.db.models import BackfillRequest, LoadRecord
from src.elevenlabs_client import (
    ConversationDetail,
    ConversationPage,
    ConversationSummary,
    Pacer,
    UpstreamAPIError,
)
from src.lead_writer import SKIP_EXISTING_LEAD, SKIP_NO_PHONE

AGENT = "agent_test_0001"

BOOKING_TRANSCRIPT = [
    {"role": "agent", "message": "Thanks for calling, how can I help?"},
    {"role": "user", "message": "Yes, I'll take it. Load number 4521 confirmed."},
]


# =============================================================================
# Fakes
# =============================================================================

class FakeClient:
    def __init__(self, pages, details, list_error=None):
        self.agent_id = AGENT
        self.pages = pages
        self.details = details
        self.list_error = list_error
        self.fetched = []

    def iter_conversation_pages(self, max_pages):
        for ids in self.pages[:max_pages]:
            yield ConversationPage(
                conversations=[ConversationSummary(conversation_id=c, agent_id=AGENT) for c in ids],
                next_cursor="next",
            )
        if self.list_error:
            raise self.list_error

    def get_conversation(self, conversation_id):
        self.fetched.append(conversation_id)
        detail = self.details[conversation_id]
        if isinstance(detail, Exception):
            raise detail
        return detail


class FakeCallLogStorage:
    def __init__(self, default_owner="owner-1", fail_for=()):
        self.rows = {}
        self.default_owner = default_owner
        self.fail_for = set(fail_for)

    def list_conversation_ids(self, agent_id=None):
        return set(self.rows)

    def resolve_default_owner(self):
        return self.default_owner

    def upsert(self, record):
        conversation_id = record.elevenlabs_conversation_id
        if conversation_id in self.fail_for:
            raise RuntimeError("write failed")
        if conversation_id in self.rows:
            row_id = self.rows[conversation_id][0]
            self.rows[conversation_id] = (row_id, record)
            return UpsertResult(id=row_id, created=False)
        row_id = f"cl-{len(self.rows) + 1}"
        self.rows[conversation_id] = (row_id, record)
        return UpsertResult(id=row_id, created=True)


class FakeLeadStorage:
    def __init__(self, loads=None, fail_insert=False):
        self.leads = []
        self.loads = loads or {}
        self.fail_insert = fail_insert

    def list_source_conversation_ids(self):
        return {lead.source_conversation_id for lead in self.leads}

    def find_load_by_reference(self, reference):
        return self.loads.get(reference)

    def insert(self, lead):
        if self.fail_insert:
            raise RuntimeError("lead table unavailable")
        self.leads.append(lead)
        return f"lead-{len(self.leads)}"


def booking_detail(conversation_id, agent_id=AGENT, phone="+15551234567"):
    metadata = {"phone_call": {"external_number": phone, "agent_number": "+18005550000"}} if phone else {}
    return ConversationDetail(
        conversation_id=conversation_id,
        agent_id=agent_id,
        start_time_unix_secs=1_700_000_000,
        end_time_unix_secs=1_700_000_090,
        transcript=BOOKING_TRANSCRIPT,
        metadata=metadata,
    )


@pytest.fixture
def delays():
    return []


@pytest.fixture
def call_logs():
    return FakeCallLogStorage()


@pytest.fixture
def leads():
    return FakeLeadStorage(loads={"4521": LoadRecord(id="load-1", load_number="4521")})


def make_runner(client, call_logs, leads, delays):
    return CallBackfillRunner(
        client,
        call_logs,
        leads,
        AGENT,
        pacer=Pacer(sleep=delays.append),
        detail_delay_secs=0.1,
    )


# =============================================================================
# Tests
# =============================================================================

class TestRunnerSetup:

    def test_rejects_malformed_agent_id(self, call_logs, leads):
        with pytest.raises(ConfigurationError):
            CallBackfillRunner(FakeClient([], {}), call_logs, leads, "bad id")

    def test_missing_owner_aborts_before_listing(self, leads, delays):
        client = FakeClient([["c1"]], {"c1": booking_detail("c1")})
        runner = make_runner(client, FakeCallLogStorage(default_owner=None), leads, delays)

        with pytest.raises(ConfigurationError, match="owner"):
            runner.run(BackfillRequest())

        assert client.fetched == []

    def test_explicit_owner_skips_lookup(self, leads, delays):
        call_logs = FakeCallLogStorage(default_owner=None)
        client = FakeClient([["c1"]], {"c1": booking_detail("c1")})

        run = make_runner(client, call_logs, leads, delays).run(BackfillRequest(owner_id="owner-x"))

        assert run.owner_id == "owner-x"
        assert call_logs.rows["c1"][1].owner_id == "owner-x"

    def test_invalid_mode_arguments(self, call_logs, leads, delays):
        runner = make_runner(FakeClient([], {}), call_logs, leads, delays)

        with pytest.raises(ConfigurationError):
            runner.run(BackfillRequest(mode=BackfillMode.CONVERSATION_ID))


class TestRun:

    def test_creates_call_log_and_lead(self, call_logs, leads, delays):
        client = FakeClient([["c1"]], {"c1": booking_detail("c1")})

        run = make_runner(client, call_logs, leads, delays).run(BackfillRequest())

        counters = run.results
        assert counters.pages_fetched == 1
        assert counters.fetched_total == 1
        assert counters.upserted_total == 1
        assert counters.created_total == 1
        assert counters.leads_created == 1
        assert counters.leads_needing_review == 0
        assert counters.errors_total == 0

        item = run.details[0]
        assert item.status == "created"
        assert item.duration == 90
        assert item.call_log_id == "cl-1"
        assert item.lead_created
        assert item.lead_id == "lead-1"
        assert item.intent_score == 55

        lead = leads.leads[0]
        assert lead.load_id == "load-1"
        assert lead.call_log_id == "cl-1"
        assert lead.phone == "555-123-4567"
        assert delays == [0.1]

    def test_unmatched_load_creates_review_lead(self, call_logs, delays):
        leads = FakeLeadStorage()
        client = FakeClient([["c1"]], {"c1": booking_detail("c1")})

        run = make_runner(client, call_logs, leads, delays).run(BackfillRequest())

        assert run.results.leads_created == 1
        assert run.results.leads_needing_review == 1
        assert leads.leads[0].needs_review

    def test_second_all_run_is_idempotent(self, call_logs, leads, delays):
        client = FakeClient([["c1"]], {"c1": booking_detail("c1")})
        request = BackfillRequest(mode=BackfillMode.ALL)

        make_runner(client, call_logs, leads, delays).run(request)
        second = make_runner(client, call_logs, leads, delays).run(request)

        assert len(call_logs.rows) == 1
        assert len(leads.leads) == 1
        assert second.results.created_total == 0
        assert second.results.updated_total == 1
        assert second.results.leads_created == 0
        assert second.results.leads_skipped_existing == 1
        assert second.details[0].status == "updated"
        assert second.details[0].skip_reason == SKIP_EXISTING_LEAD

    def test_second_missing_only_run_skips_stored(self, call_logs, leads, delays):
        client = FakeClient([["c1"]], {"c1": booking_detail("c1")})

        make_runner(client, call_logs, leads, delays).run(BackfillRequest())
        client.fetched.clear()
        second = make_runner(client, call_logs, leads, delays).run(BackfillRequest())

        assert client.fetched == []
        assert second.results.fetched_total == 0
        assert second.results.skipped_existing == 1
        assert second.details == []

    def test_cursor_overlap_creates_one_lead(self, call_logs, leads, delays):
        client = FakeClient([["c1"], ["c1"]], {"c1": booking_detail("c1")})

        run = make_runner(client, call_logs, leads, delays).run(BackfillRequest(mode=BackfillMode.ALL))

        assert [item.status for item in run.details] == ["created", "updated"]
        assert run.results.leads_created == 1
        assert run.results.leads_skipped_existing == 1
        assert len(leads.leads) == 1

    def test_fetch_error_does_not_stop_run(self, call_logs, leads, delays):
        client = FakeClient(
            [["c1", "c2"]],
            {"c1": UpstreamAPIError(500, "server error", "/v1/convai/conversations/c1"), "c2": booking_detail("c2")},
        )

        run = make_runner(client, call_logs, leads, delays).run(BackfillRequest())

        assert [item.status for item in run.details] == ["fetch_error", "created"]
        assert "500" in run.details[0].error
        assert run.results.errors_total == 1
        assert run.results.upserted_total == 1
        assert delays == [0.1, 0.1]

    def test_upsert_error_skips_lead(self, leads, delays):
        call_logs = FakeCallLogStorage(fail_for={"c1"})
        client = FakeClient([["c1"]], {"c1": booking_detail("c1")})

        run = make_runner(client, call_logs, leads, delays).run(BackfillRequest())

        assert run.details[0].status == "upsert_error"
        assert run.results.errors_total == 1
        assert leads.leads == []

    def test_lead_failure_keeps_call_log(self, call_logs, delays):
        leads = FakeLeadStorage(fail_insert=True)
        client = FakeClient([["c1"]], {"c1": booking_detail("c1")})

        run = make_runner(client, call_logs, leads, delays).run(BackfillRequest())

        item = run.details[0]
        assert item.status == "created"
        assert item.call_log_id == "cl-1"
        assert not item.lead_created
        assert item.error.startswith("lead_error:")
        assert "c1" in call_logs.rows
        assert run.results.lead_errors == 1
        assert run.results.errors_total == 1

    def test_wrong_agent_detail_is_not_written(self, call_logs, leads, delays):
        client = FakeClient([["c1"]], {"c1": booking_detail("c1", agent_id="agent_other_999")})

        run = make_runner(client, call_logs, leads, delays).run(BackfillRequest())

        assert run.details[0].status == "wrong_agent"
        assert run.results.skipped_wrong_agent == 1
        assert call_logs.rows == {}

    def test_no_phone_counts_skip(self, call_logs, leads, delays):
        client = FakeClient([["c1"]], {"c1": booking_detail("c1", phone=None)})

        run = make_runner(client, call_logs, leads, delays).run(BackfillRequest())

        assert run.details[0].status == "created"
        assert run.details[0].skip_reason == SKIP_NO_PHONE
        assert run.results.leads_skipped_no_phone == 1

    def test_no_transcript_has_no_score(self, call_logs, leads, delays):
        detail = ConversationDetail(conversation_id="c1", agent_id=AGENT)
        client = FakeClient([["c1"]], {"c1": detail})

        run = make_runner(client, call_logs, leads, delays).run(BackfillRequest())

        assert run.details[0].status == "created"
        assert run.details[0].intent_score is None
        assert run.results.leads_created == 0

    def test_listing_error_reported_and_collected_items_processed(self, call_logs, leads, delays):
        client = FakeClient(
            [["c1"]],
            {"c1": booking_detail("c1")},
            list_error=UpstreamAPIError(503, "unavailable", "/v1/convai/conversations"),
        )

        run = make_runner(client, call_logs, leads, delays).run(BackfillRequest())

        assert run.details[0].status == "list_error"
        assert run.details[1].status == "created"
        assert run.results.errors_total == 1

    def test_malformed_listing_page_does_not_abort_run(self, call_logs, leads, delays):
        try:
            ConversationSummary.model_validate({"conversation_id": ["not", "a", "string"]})
        except ValidationError as e:
            listing_error = e
        client = FakeClient([["c1"]], {"c1": booking_detail("c1")}, list_error=listing_error)

        run = make_runner(client, call_logs, leads, delays).run(BackfillRequest())

        assert [item.status for item in run.details] == ["list_error", "created"]
        assert run.results.errors_total == 1
        assert run.results.leads_created == 1

    def test_conversation_id_mode(self, call_logs, leads, delays):
        client = FakeClient([["ignored"]], {"c9": booking_detail("c9")})
        request = BackfillRequest(mode=BackfillMode.CONVERSATION_ID, conversation_id="c9")

        run = make_runner(client, call_logs, leads, delays).run(request)

        assert client.fetched == ["c9"]
        assert run.results.pages_fetched == 0
        assert run.details[0].status == "created"


class TestRunToEnvelope:

    def test_shape(self, call_logs, leads, delays):
        client = FakeClient([["c1"]], {"c1": booking_detail("c1")})
        run = make_runner(client, call_logs, leads, delays).run(BackfillRequest())

        envelope = run_to_envelope(run)

        assert envelope["success"] is True
        assert envelope["agent_id"] == AGENT
        assert envelope["owner_id"] == "owner-1"
        assert envelope["results"]["leads_created"] == 1
        assert envelope["details"][0]["conversation_id"] == "c1"


class TestMain:

    def _run_cli(self, monkeypatch, argv, run_result=None, run_error=None):
        monkeypatch.setattr(sys, "argv", ["backfill"] + argv)
        with patch("src.backfill.get_connection") as mock_conn, \
                patch("src.backfill.build_runner") as mock_build, \
                patch("src.backfill.configure_safe_logging") as mock_logging:
            self.mock_logging = mock_logging
            runner = mock_build.return_value
            if run_error:
                runner.run.side_effect = run_error
            else:
                runner.run.return_value = run_result
            main()
        return mock_conn, runner

    def test_date_range_until_is_end_of_day(self, monkeypatch, capsys, call_logs, leads, delays):
        client = FakeClient([["c1"]], {"c1": booking_detail("c1")})
        completed = make_runner(client, call_logs, leads, delays).run(BackfillRequest())

        _, runner = self._run_cli(
            monkeypatch,
            ["--mode", "date_range", "--since", "2025-01-01", "--until", "2025-01-31"],
            run_result=completed,
        )

        request = runner.run.call_args[0][0]
        assert request.mode == BackfillMode.DATE_RANGE
        assert request.start == datetime(2025, 1, 1)
        assert request.end == datetime(2025, 1, 31, 23, 59, 59)
        output = json.loads(capsys.readouterr().out)
        assert output["success"] is True
        assert output["results"]["leads_created"] == 1

    def test_configuration_error_exits_nonzero(self, monkeypatch, capsys):
        with pytest.raises(SystemExit) as exc_info:
            self._run_cli(monkeypatch, [], run_error=ConfigurationError("No owner_id found"))

        assert exc_info.value.code == 1
        output = json.loads(capsys.readouterr().out)
        assert output == {"success": False, "error": "No owner_id found"}

    @pytest.mark.parametrize("argv,level", [
        ([], None),
        (["--verbose"], logging.DEBUG),
    ])
    def test_log_level_flag(self, monkeypatch, capsys, call_logs, leads, delays, argv, level):
        client = FakeClient([["c1"]], {"c1": booking_detail("c1")})
        completed = make_runner(client, call_logs, leads, delays).run(BackfillRequest())

        self._run_cli(monkeypatch, argv, run_result=completed)

        self.mock_logging.assert_called_once_with(level)
