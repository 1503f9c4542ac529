"""
Output Event Parser

Turns lines of Playwright output into run state mutations.

Two strategies are chained:

1. ``StructuredEventParser`` handles ``[E2E_EVENT] {...}`` lines emitted by
   the spec files (test/subtest lifecycle, steps).
2. ``LegacyReporterParser`` scrapes plain line/list reporter output. It only
   runs while no structured marker has been seen in the current run; the
   first marker latches it off for the rest of the run.

Parse failures never propagate. The caller logs every line verbatim whatever
the outcome.
"""

from __future__ import annotations

import json
import logging
import re
import time
from typing import Any, Optional

from e2e_runner.core.run_state import RunStateStore
from e2e_runner.models.discovery import SELF_CHILD_ID
from e2e_runner.models.run_state import ResultStatus

logger = logging.getLogger(__name__)

EVENT_MARKER = "[E2E_EVENT]"

_ANSI_RE = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]")
_EVENT_RE = re.compile(r"\[E2E_EVENT\]\s+(.+)$")
_SPEC_PATH_RE = re.compile(r"tests[\\/].+?\.spec\.[jt]s", re.IGNORECASE)


def strip_ansi(value: str) -> str:
    return _ANSI_RE.sub("", value)


def clean_line(raw: str) -> str:
    """Strip ANSI sequences, carriage returns and trailing whitespace."""
    return strip_ansi(str(raw or "")).replace("\r", "").rstrip()


def extract_spec_id(raw_test: Any) -> Optional[str]:
    """
    Pull ``tests/.../name.spec.js`` out of an event's ``test`` field.

    Mixed separators are normalized to forward slashes.
    """
    match = _SPEC_PATH_RE.search(str(raw_test or ""))
    if not match:
        return None
    return match.group(0).replace("\\", "/")


def map_event_status(raw: Any) -> ResultStatus:
    if raw == "passed":
        return ResultStatus.PASSED
    if raw == "skipped":
        return ResultStatus.CANCELED
    return ResultStatus.FAILED


def _number_or_none(value: Any) -> Optional[float]:
    # bool is an int subclass but never a duration
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def _text_or_none(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


class StructuredEventParser:
    """Applies ``[E2E_EVENT]`` payloads to the run state."""

    def __init__(self, store: RunStateStore) -> None:
        self._store = store
        self._subtest_started: dict[str, float] = {}

    def reset_timers(self) -> None:
        self._subtest_started.clear()

    def feed(self, line: str) -> bool:
        """
        Handle a cleaned line.

        Returns True when the line carried the event marker, whether or not
        its payload could be applied.
        """
        if EVENT_MARKER not in line:
            return False
        match = _EVENT_RE.search(line)
        if not match:
            return True

        try:
            event = json.loads(match.group(1))
        except ValueError:
            logger.debug("Ignoring malformed event payload: %s", match.group(1)[:200])
            return True

        if not isinstance(event, dict) or not event.get("type"):
            return True

        try:
            self._apply(event)
        except Exception as e:
            logger.debug("Failed to apply event %r: %s", event.get("type"), e)
        return True

    def _apply(self, event: dict[str, Any]) -> None:
        event_type = event.get("type")
        test = _text_or_none(event.get("test"))
        if not test:
            return

        prefix = extract_spec_id(test) or test

        if event_type == "test_start":
            self._store.set_current(test=test, detail="Starting test")
            if not self._store.has_planned_subtests(prefix):
                self._store.upsert_result(
                    f"{prefix}::{SELF_CHILD_ID}", ResultStatus.RUNNING, test=test
                )
            return

        if event_type == "step":
            self._store.set_current_test_if_unset(test)
            self._store.set_detail(_text_or_none(event.get("detail")))
            return

        if event_type in ("subtest_start", "subtest_end"):
            subtest_id = _text_or_none(event.get("subtestId"))
            if not subtest_id:
                return
            key = f"{prefix}::{subtest_id}"
            if event_type == "subtest_start":
                self._subtest_start(key, _text_or_none(event.get("subtestName")) or subtest_id)
            else:
                self._subtest_end(key, event)
            return

        if event_type == "test_end":
            self._test_end(test, prefix, event)

    def _subtest_start(self, key: str, label: str) -> None:
        self._store.set_current(test=label, detail=f"Running {label}")
        self._subtest_started[key] = time.monotonic()
        self._store.upsert_result(key, ResultStatus.RUNNING, default_test=label)

    def _subtest_end(self, key: str, event: dict[str, Any]) -> None:
        status = map_event_status(event.get("status"))
        started = self._subtest_started.pop(key, None)
        duration = _number_or_none(event.get("durationMs"))
        if duration is None and started is not None:
            duration = round((time.monotonic() - started) * 1000)
        self._store.upsert_result(
            key, status, duration, _text_or_none(event.get("error"))
        )

    def _test_end(self, test: str, prefix: str, event: dict[str, Any]) -> None:
        status = map_event_status(event.get("status"))
        error = _text_or_none(event.get("error"))

        if not self._store.has_planned_subtests(prefix):
            self._store.upsert_result(
                f"{prefix}::{SELF_CHILD_ID}",
                status,
                _number_or_none(event.get("durationMs")),
                error,
                test=test,
            )
        else:
            for row in self._store.subtests_for(prefix):
                if row.status not in (ResultStatus.PENDING, ResultStatus.RUNNING):
                    continue
                if status == ResultStatus.FAILED:
                    # Never-started subtests were canceled by the failure;
                    # the one in flight is the one that failed.
                    if row.status == ResultStatus.PENDING:
                        self._store.upsert_result(row.key, ResultStatus.CANCELED)
                    else:
                        self._store.upsert_result(row.key, ResultStatus.FAILED, error=error)
                else:
                    self._store.upsert_result(row.key, status)

        if self._store.state.current_test == test:
            self._store.set_current(test=None, detail=None)


_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(ms|s|m|h)\b")
_PROGRESS_RE = re.compile(r"^\s*\[(\d+)/(\d+)\]\s+(.*›.*)$")
_GLYPH_RESULT_RE = re.compile(
    r"^\s*(?P<glyph>[✓✔✘✗×])\s+(?:\d+\s+)?(?P<desc>.*›.*?)\s+\((?P<dur>[^()]+)\)\s*$"
)
_OK_RESULT_RE = re.compile(
    r"^\s*(?P<verdict>ok|not ok|x)\s+\d+\s+(?P<desc>.*›.*?)\s+\((?P<dur>[^()]+)\)\s*$"
)
_FAILURE_LIST_RE = re.compile(r"^\s*\d+\)\s+(?P<desc>.*›.*?)[\s─]*$")

_PASS_GLYPHS = frozenset("✓✔")


def parse_duration_ms(text: str) -> Optional[float]:
    """Convert reporter durations like ``350ms``, ``1.2s`` or ``1m 3s`` to ms."""
    parts = _DURATION_PART_RE.findall(text or "")
    if not parts:
        return None
    factors = {"ms": 1, "s": 1000, "m": 60_000, "h": 3_600_000}
    total = sum(float(value) * factors[unit] for value, unit in parts)
    return round(total, 3)


class LegacyReporterParser:
    """Best-effort scraping of Playwright reporter text."""

    def __init__(self, store: RunStateStore) -> None:
        self._store = store

    def _key_for(self, descriptor: str) -> str:
        spec_id = extract_spec_id(descriptor)
        if spec_id:
            self_key = f"{spec_id}::{SELF_CHILD_ID}"
            if self._store.get_result(self_key) is not None:
                return self_key
        return descriptor

    def feed(self, line: str) -> bool:
        match = _PROGRESS_RE.match(line)
        if match:
            index, total, descriptor = match.groups()
            descriptor = descriptor.strip()
            self._store.set_current(test=descriptor, detail=f"Test {index} of {total}")
            self._store.upsert_result(
                self._key_for(descriptor), ResultStatus.RUNNING, default_test=descriptor
            )
            return True

        match = _GLYPH_RESULT_RE.match(line)
        if match:
            status = (
                ResultStatus.PASSED
                if match.group("glyph") in _PASS_GLYPHS
                else ResultStatus.FAILED
            )
            self._record(match.group("desc"), status, match.group("dur"))
            return True

        match = _OK_RESULT_RE.match(line)
        if match:
            status = (
                ResultStatus.PASSED
                if match.group("verdict") == "ok"
                else ResultStatus.FAILED
            )
            self._record(match.group("desc"), status, match.group("dur"))
            return True

        match = _FAILURE_LIST_RE.match(line)
        if match:
            self._record(match.group("desc"), ResultStatus.FAILED, None)
            return True

        return False

    def _record(
        self, descriptor: str, status: ResultStatus, duration_text: Optional[str]
    ) -> None:
        descriptor = descriptor.strip()
        duration = parse_duration_ms(duration_text) if duration_text else None
        self._store.upsert_result(
            self._key_for(descriptor), status, duration, default_test=descriptor
        )
        if self._store.state.current_test == descriptor:
            self._store.set_current(test=None, detail=None)


class OutputLineParser:
    """Structured strategy first, legacy strategy until the first marker."""

    def __init__(self, store: RunStateStore) -> None:
        self.structured = StructuredEventParser(store)
        self.legacy = LegacyReporterParser(store)
        self.structured_seen = False

    def reset_timers(self) -> None:
        self.structured.reset_timers()

    def feed(self, raw_line: str) -> None:
        line = clean_line(raw_line)
        if not line:
            return

        if self.structured.feed(line):
            self.structured_seen = True
            return

        if self.structured_seen:
            return

        try:
            self.legacy.feed(line)
        except Exception as e:
            logger.debug("Legacy parse failed for %r: %s", line[:200], e)
