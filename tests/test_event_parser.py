"""
Unit tests for the output event parser.

Covers structured [E2E_EVENT] handling, the subtest rollup on test_end and
the legacy reporter fallback.
"""

from __future__ import annotations

import json

import pytest

from e2e_runner.core.event_parser import (
    OutputLineParser,
    StructuredEventParser,
    clean_line,
    extract_spec_id,
    map_event_status,
    parse_duration_ms,
)
from e2e_runner.core.run_state import RunStateStore
from e2e_runner.models import PlannedResult, ResultStatus

LOGIN_TEST = "tests/1. Smoke/01-login.spec.js > Login"
LOGIN_SELF = "tests/1. Smoke/01-login.spec.js::__self"
CHATS_TEST = "tests/2. Regression/2-chats.spec.ts > Chats"
CHATS_PREFIX = "tests/2. Regression/2-chats.spec.ts"


def event(**payload) -> str:
    return "[E2E_EVENT] " + json.dumps(payload)


@pytest.fixture
def store() -> RunStateStore:
    s = RunStateStore(default_base_domain="app.example.com")
    s.begin_run(selected_specs=[], selected_tasks=[], base_domain="app.example.com")
    return s


@pytest.fixture
def chats_store() -> RunStateStore:
    """A run with two planned subtests under the chats spec."""
    s = RunStateStore(default_base_domain="app.example.com")
    s.begin_run(
        selected_specs=[CHATS_PREFIX],
        selected_tasks=[f"{CHATS_PREFIX}::chats.load", f"{CHATS_PREFIX}::chats.send"],
        base_domain="app.example.com",
        planned_results=[
            PlannedResult(key=f"{CHATS_PREFIX}::chats.load", test="Load chats", parent=True),
            PlannedResult(key=f"{CHATS_PREFIX}::chats.send", test="Send a message", parent=True),
        ],
    )
    return s


def statuses(store: RunStateStore) -> dict[str, ResultStatus]:
    return {r.key: r.status for r in store.state.test_results}


class TestHelpers:
    """Tests for the line and field helpers."""

    def test_clean_line_strips_ansi_and_carriage_returns(self) -> None:
        assert clean_line("\x1b[32m  ok\x1b[0m\r  ") == "  ok"

    def test_extract_spec_id_normalizes_backslashes(self) -> None:
        raw = "tests\\2. Regression\\10-navigation.spec.ts > nav"
        assert extract_spec_id(raw) == "tests/2. Regression/10-navigation.spec.ts"

    def test_extract_spec_id_without_path(self) -> None:
        assert extract_spec_id("just a title") is None
        assert extract_spec_id(None) is None

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("passed", ResultStatus.PASSED),
            ("skipped", ResultStatus.CANCELED),
            ("failed", ResultStatus.FAILED),
            ("timedOut", ResultStatus.FAILED),
            (None, ResultStatus.FAILED),
        ],
    )
    def test_map_event_status(self, raw, expected) -> None:
        assert map_event_status(raw) == expected

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("350ms", 350),
            ("1.2s", 1200),
            ("1m 3s", 63000),
            ("1h", 3_600_000),
            ("", None),
            ("fast", None),
        ],
    )
    def test_parse_duration_ms(self, text, expected) -> None:
        assert parse_duration_ms(text) == expected


class TestStructuredEvents:
    """Tests for [E2E_EVENT] lines without planned subtests."""

    def test_non_event_line_is_not_consumed(self, store: RunStateStore) -> None:
        parser = StructuredEventParser(store)
        assert parser.feed("Running 3 tests using 1 worker") is False

    def test_test_start_creates_running_self_row(self, store: RunStateStore) -> None:
        parser = OutputLineParser(store)
        parser.feed(event(type="test_start", test=LOGIN_TEST))

        row = store.get_result(LOGIN_SELF)
        assert row is not None
        assert row.status == ResultStatus.RUNNING
        assert row.test == LOGIN_TEST
        assert store.state.current_test == LOGIN_TEST
        assert store.state.current_detail == "Starting test"

    def test_test_end_records_status_duration_and_clears_current(
        self, store: RunStateStore
    ) -> None:
        parser = OutputLineParser(store)
        parser.feed(event(type="test_start", test=LOGIN_TEST))
        parser.feed(event(type="test_end", test=LOGIN_TEST, status="passed", durationMs=1234))

        row = store.get_result(LOGIN_SELF)
        assert row.status == ResultStatus.PASSED
        assert row.duration_ms == 1234
        assert store.state.current_test is None
        assert store.state.current_detail is None

    def test_test_end_is_idempotent(self, store: RunStateStore) -> None:
        parser = OutputLineParser(store)
        line = event(type="test_end", test=LOGIN_TEST, status="failed", error="boom")
        parser.feed(line)
        parser.feed(line)

        rows = [r for r in store.state.test_results if r.key == LOGIN_SELF]
        assert len(rows) == 1
        assert rows[0].status == ResultStatus.FAILED
        assert rows[0].error == "boom"

    def test_last_status_wins(self, store: RunStateStore) -> None:
        parser = OutputLineParser(store)
        parser.feed(event(type="test_end", test=LOGIN_TEST, status="failed"))
        parser.feed(event(type="test_end", test=LOGIN_TEST, status="passed"))
        assert store.get_result(LOGIN_SELF).status == ResultStatus.PASSED

    def test_step_sets_detail_and_current_test_if_unset(
        self, store: RunStateStore
    ) -> None:
        parser = OutputLineParser(store)
        parser.feed(event(type="step", test=LOGIN_TEST, detail="Filling email"))

        assert store.state.current_test == LOGIN_TEST
        assert store.state.current_detail == "Filling email"
        assert store.state.test_results == []

    def test_ansi_wrapped_event_is_parsed(self, store: RunStateStore) -> None:
        parser = OutputLineParser(store)
        parser.feed("\x1b[2m" + event(type="test_start", test=LOGIN_TEST) + "\x1b[22m\r")
        assert store.get_result(LOGIN_SELF).status == ResultStatus.RUNNING

    def test_malformed_payload_is_ignored(self, store: RunStateStore) -> None:
        parser = OutputLineParser(store)
        parser.feed("[E2E_EVENT] {not json")
        parser.feed(event(test=LOGIN_TEST))
        parser.feed(event(type="test_start"))

        assert store.state.test_results == []
        assert parser.structured_seen is True

    def test_test_without_spec_path_uses_title_as_prefix(
        self, store: RunStateStore
    ) -> None:
        parser = OutputLineParser(store)
        parser.feed(event(type="test_start", test="Login flow"))
        assert store.get_result("Login flow::__self") is not None


class TestSubtests:
    """Tests for subtest events and the test_end rollup."""

    def test_subtest_start_and_end_with_explicit_duration(
        self, chats_store: RunStateStore
    ) -> None:
        parser = OutputLineParser(chats_store)
        parser.feed(event(type="test_start", test=CHATS_TEST))
        parser.feed(
            event(type="subtest_start", test=CHATS_TEST, subtestId="chats.load", subtestName="Load chats")
        )

        row = chats_store.get_result(f"{CHATS_PREFIX}::chats.load")
        assert row.status == ResultStatus.RUNNING
        assert chats_store.state.current_test == "Load chats"
        assert chats_store.state.current_detail == "Running Load chats"
        # Planned subtests suppress the __self row.
        assert chats_store.get_result(f"{CHATS_PREFIX}::__self") is None

        parser.feed(
            event(type="subtest_end", test=CHATS_TEST, subtestId="chats.load", status="passed", durationMs=42)
        )
        row = chats_store.get_result(f"{CHATS_PREFIX}::chats.load")
        assert row.status == ResultStatus.PASSED
        assert row.duration_ms == 42
        assert row.test == "Load chats"

    def test_subtest_end_uses_timer_without_explicit_duration(
        self, chats_store: RunStateStore
    ) -> None:
        parser = OutputLineParser(chats_store)
        parser.feed(event(type="subtest_start", test=CHATS_TEST, subtestId="chats.send"))
        parser.feed(event(type="subtest_end", test=CHATS_TEST, subtestId="chats.send", status="skipped"))

        row = chats_store.get_result(f"{CHATS_PREFIX}::chats.send")
        assert row.status == ResultStatus.CANCELED
        assert row.duration_ms is not None
        assert row.duration_ms >= 0

    def test_unplanned_subtest_is_named_after_its_label(
        self, store: RunStateStore
    ) -> None:
        parser = OutputLineParser(store)
        parser.feed(
            event(type="subtest_start", test=LOGIN_TEST, subtestId="otp", subtestName="Enter OTP")
        )
        row = store.get_result("tests/1. Smoke/01-login.spec.js::otp")
        assert row.test == "Enter OTP"

    def test_failed_test_end_rolls_up_subtests(self, chats_store: RunStateStore) -> None:
        parser = OutputLineParser(chats_store)
        parser.feed(event(type="subtest_start", test=CHATS_TEST, subtestId="chats.load"))
        parser.feed(
            event(type="test_end", test=CHATS_TEST, status="failed", error="Timeout 30000ms exceeded")
        )

        load = chats_store.get_result(f"{CHATS_PREFIX}::chats.load")
        send = chats_store.get_result(f"{CHATS_PREFIX}::chats.send")
        assert load.status == ResultStatus.FAILED
        assert load.error == "Timeout 30000ms exceeded"
        assert send.status == ResultStatus.CANCELED
        assert chats_store.get_result(f"{CHATS_PREFIX}::__self") is None

    def test_failed_test_end_leaves_completed_subtests(
        self, chats_store: RunStateStore
    ) -> None:
        parser = OutputLineParser(chats_store)
        parser.feed(event(type="subtest_start", test=CHATS_TEST, subtestId="chats.load"))
        parser.feed(event(type="subtest_end", test=CHATS_TEST, subtestId="chats.load", status="passed"))
        parser.feed(event(type="test_end", test=CHATS_TEST, status="failed", error="boom"))

        assert statuses(chats_store) == {
            f"{CHATS_PREFIX}::chats.load": ResultStatus.PASSED,
            f"{CHATS_PREFIX}::chats.send": ResultStatus.CANCELED,
        }
        assert chats_store.get_result(f"{CHATS_PREFIX}::chats.load").error is None

    def test_passed_test_end_adopts_status_for_open_subtests(
        self, chats_store: RunStateStore
    ) -> None:
        parser = OutputLineParser(chats_store)
        parser.feed(event(type="subtest_start", test=CHATS_TEST, subtestId="chats.load"))
        parser.feed(event(type="test_end", test=CHATS_TEST, status="passed"))

        assert set(statuses(chats_store).values()) == {ResultStatus.PASSED}


class TestLegacyReporter:
    """Tests for line reporter scraping before any structured marker."""

    DESCRIPTOR = "[chromium] › tests/1. Smoke/01-login.spec.js:3:1 › login works"

    def test_progress_line_marks_running(self, store: RunStateStore) -> None:
        parser = OutputLineParser(store)
        parser.feed(f"[1/3] {self.DESCRIPTOR}")

        row = store.get_result(self.DESCRIPTOR)
        assert row.status == ResultStatus.RUNNING
        assert store.state.current_test == self.DESCRIPTOR
        assert store.state.current_detail == "Test 1 of 3"

    def test_glyph_pass_line(self, store: RunStateStore) -> None:
        parser = OutputLineParser(store)
        parser.feed(f"[1/3] {self.DESCRIPTOR}")
        parser.feed(f"  ✓  1 {self.DESCRIPTOR} (1.2s)")

        row = store.get_result(self.DESCRIPTOR)
        assert row.status == ResultStatus.PASSED
        assert row.duration_ms == 1200
        assert store.state.current_test is None

    def test_glyph_fail_line(self, store: RunStateStore) -> None:
        parser = OutputLineParser(store)
        parser.feed(f"  ✘  2 {self.DESCRIPTOR} (350ms)")

        row = store.get_result(self.DESCRIPTOR)
        assert row.status == ResultStatus.FAILED
        assert row.duration_ms == 350

    def test_ok_verdict_lines(self, store: RunStateStore) -> None:
        parser = OutputLineParser(store)
        parser.feed(f"ok 1 {self.DESCRIPTOR} (2m 3s)")
        assert store.get_result(self.DESCRIPTOR).status == ResultStatus.PASSED
        assert store.get_result(self.DESCRIPTOR).duration_ms == 123000

        parser.feed(f"not ok 1 {self.DESCRIPTOR} (1s)")
        assert store.get_result(self.DESCRIPTOR).status == ResultStatus.FAILED

    def test_failure_list_line(self, store: RunStateStore) -> None:
        parser = OutputLineParser(store)
        parser.feed(f"  1) {self.DESCRIPTOR} ──────────────")
        assert store.get_result(self.DESCRIPTOR).status == ResultStatus.FAILED

    def test_planned_self_row_is_reused(self) -> None:
        s = RunStateStore(default_base_domain="app.example.com")
        s.begin_run(
            selected_specs=[],
            selected_tasks=[],
            base_domain="app.example.com",
            planned_results=[PlannedResult(key=LOGIN_SELF, test="Login")],
        )
        parser = OutputLineParser(s)
        parser.feed(f"  ✓  1 {self.DESCRIPTOR} (10ms)")

        assert [r.key for r in s.state.test_results] == [LOGIN_SELF]
        assert s.get_result(LOGIN_SELF).status == ResultStatus.PASSED
        assert s.get_result(LOGIN_SELF).test == "Login"

    def test_structured_marker_latches_legacy_off(self, store: RunStateStore) -> None:
        parser = OutputLineParser(store)
        parser.feed(event(type="test_start", test=LOGIN_TEST))
        parser.feed(f"  ✓  1 {self.DESCRIPTOR} (1.2s)")

        assert store.get_result(self.DESCRIPTOR) is None
        assert store.get_result(LOGIN_SELF).status == ResultStatus.RUNNING

    def test_unrecognized_lines_are_ignored(self, store: RunStateStore) -> None:
        parser = OutputLineParser(store)
        parser.feed("Running 3 tests using 1 worker")
        parser.feed("")
        assert store.state.test_results == []
