"""
Run State

Holds the canonical snapshot of the current (or most recent) Playwright run:
lifecycle flags, the per-test results table and the bounded output log.

All mutation goes through ``RunStateStore`` methods. The store is owned by a
single asyncio event loop and every method runs synchronously inside it, so no
lock is taken.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional
from uuid import uuid4

from e2e_runner.models.discovery import SELF_CHILD_ID
from e2e_runner.models.requests import PlannedResult
from e2e_runner.models.run_state import (
    LogEntry,
    LogStream,
    ResultStatus,
    RunPhase,
    TestResult,
    iso_utc,
    utc_now,
)

logger = logging.getLogger(__name__)

STOPPED_BY_USER = "Run stopped by user"
STOP_EXIT_CODE = 130
SPAWN_ERROR_EXIT_CODE = 1
DEFAULT_MAX_LOG_LINES = 2000


class RunnerConflictError(RuntimeError):
    """Operation is not allowed in the current run phase."""


@dataclass
class RunState:
    base_domain: str
    max_log_lines: int = DEFAULT_MAX_LOG_LINES
    run_id: Optional[str] = None
    running: bool = False
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    exit_code: Optional[int] = None
    last_error: Optional[str] = None
    current_spec: Optional[str] = None
    selected_specs: list[str] = field(default_factory=list)
    selected_tasks: list[str] = field(default_factory=list)
    current_test: Optional[str] = None
    current_detail: Optional[str] = None
    stopped: bool = False
    test_results: list[TestResult] = field(default_factory=list)
    logs: deque[LogEntry] = field(init=False)

    def __post_init__(self) -> None:
        self.logs = deque(maxlen=self.max_log_lines)

    @property
    def phase(self) -> RunPhase:
        if self.running:
            return RunPhase.RUNNING
        if self.run_id is None:
            return RunPhase.IDLE
        if self.stopped:
            return RunPhase.STOPPED
        if self.last_error:
            return RunPhase.ERRORED
        return RunPhase.FINISHED


class RunStateStore:
    """
    Mutable run state with controlled transitions.

    Idle -> Running (begin_run) -> Finished (finish) | Errored (fail) |
    Stopped (mark_stopped); clear() returns a terminal state to Idle.
    """

    def __init__(
        self, *, default_base_domain: str, max_log_lines: int = DEFAULT_MAX_LOG_LINES
    ) -> None:
        self._default_base_domain = default_base_domain
        self._max_log_lines = max_log_lines
        self._state = self._idle_state()

    def _idle_state(self) -> RunState:
        return RunState(
            base_domain=self._default_base_domain, max_log_lines=self._max_log_lines
        )

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def running(self) -> bool:
        return self._state.running

    @property
    def run_id(self) -> Optional[str]:
        return self._state.run_id

    # ------------------------------------------------------------------
    # Lifecycle transitions
    # ------------------------------------------------------------------

    def begin_run(
        self,
        *,
        selected_specs: list[str],
        selected_tasks: list[str],
        base_domain: str,
        planned_results: Iterable[PlannedResult] = (),
    ) -> str:
        """Replace the state with a fresh running snapshot and return its run id."""
        if self._state.running:
            raise RunnerConflictError("A Playwright run is already in progress.")

        now = utc_now()
        state = self._idle_state()
        state.run_id = uuid4().hex
        state.running = True
        state.started_at = now
        state.base_domain = base_domain
        state.selected_specs = list(selected_specs)
        state.selected_tasks = list(selected_tasks)
        state.current_spec = ", ".join(selected_specs) if selected_specs else "ALL"
        state.test_results = [
            TestResult(
                key=p.key,
                test=p.test,
                status=ResultStatus.PENDING,
                parent=p.parent,
                updated_at=now,
            )
            for p in planned_results
        ]
        self._state = state
        return state.run_id

    def finish(self, exit_code: Optional[int]) -> None:
        """Child exited on its own."""
        state = self._state
        state.running = False
        state.finished_at = utc_now()
        state.exit_code = exit_code
        state.current_test = None
        state.current_detail = None
        self._finalize(ResultStatus.PASSED if exit_code == 0 else ResultStatus.FAILED)

    def fail(self, message: str) -> None:
        """Child could not be started."""
        state = self._state
        state.running = False
        state.finished_at = utc_now()
        state.exit_code = SPAWN_ERROR_EXIT_CODE
        state.last_error = message
        state.current_test = None
        state.current_detail = None
        self._finalize(ResultStatus.FAILED)

    def mark_stopped(self) -> None:
        state = self._state
        state.running = False
        state.stopped = True
        state.finished_at = utc_now()
        state.exit_code = STOP_EXIT_CODE
        state.last_error = STOPPED_BY_USER
        state.current_test = None
        state.current_detail = None
        self._finalize(ResultStatus.CANCELED)

    def clear(self) -> None:
        if self._state.running:
            raise RunnerConflictError(
                "Cannot clear while a run is active. Stop it first."
            )
        self._state = self._idle_state()

    # ------------------------------------------------------------------
    # Log sink
    # ------------------------------------------------------------------

    def append_log(self, line: str, stream: LogStream = LogStream.STDOUT) -> None:
        # deque(maxlen=...) evicts from the left once full.
        self._state.logs.append(LogEntry(stream=stream, line=line))

    def system_log(self, line: str) -> None:
        self.append_log(line, LogStream.SYSTEM)

    # ------------------------------------------------------------------
    # Current test / detail
    # ------------------------------------------------------------------

    def set_current(
        self, *, test: Optional[str] = None, detail: Optional[str] = None
    ) -> None:
        self._state.current_test = test
        self._state.current_detail = detail

    def set_detail(self, detail: Optional[str]) -> None:
        self._state.current_detail = detail

    def set_current_test_if_unset(self, test: str) -> None:
        if not self._state.current_test:
            self._state.current_test = test

    # ------------------------------------------------------------------
    # Results table
    # ------------------------------------------------------------------

    def get_result(self, key: str) -> Optional[TestResult]:
        for result in self._state.test_results:
            if result.key == key:
                return result
        return None

    def upsert_result(
        self,
        key: str,
        status: ResultStatus,
        duration_ms: Optional[float] = None,
        error: Optional[str] = None,
        *,
        test: Optional[str] = None,
        default_test: Optional[str] = None,
    ) -> TestResult:
        """
        Insert or merge a result row by key.

        New keys append in encounter order. For existing rows, a missing
        duration or a blank error keeps the previous value.
        """
        existing = self.get_result(key)
        now = utc_now()
        if existing is None:
            created = TestResult(
                key=key,
                test=test or default_test or key,
                status=status,
                duration_ms=duration_ms,
                error=error if error and error.strip() else None,
                updated_at=now,
            )
            self._state.test_results.append(created)
            return created

        if test:
            existing.test = test
        existing.status = status
        if duration_ms is not None:
            existing.duration_ms = duration_ms
        if error and error.strip():
            existing.error = error
        existing.updated_at = now
        return existing

    def has_planned_subtests(self, prefix: str) -> bool:
        """True when a non-``__self`` row exists under ``<prefix>::``."""
        return any(self._is_subtest_key(r.key, prefix) for r in self._state.test_results)

    def subtests_for(self, prefix: str) -> list[TestResult]:
        return [r for r in self._state.test_results if self._is_subtest_key(r.key, prefix)]

    @staticmethod
    def _is_subtest_key(key: str, prefix: str) -> bool:
        return key.startswith(f"{prefix}::") and not key.endswith(f"::{SELF_CHILD_ID}")

    def finalize_running(self, status: ResultStatus) -> int:
        """Force every ``running`` row to ``status``; returns the count changed."""
        changed = 0
        now = utc_now()
        for result in self._state.test_results:
            if result.status == ResultStatus.RUNNING:
                result.status = status
                result.updated_at = now
                changed += 1
        if changed:
            logger.debug("Finalized %d running result(s) as %s", changed, status.value)
        return changed

    def cancel_pending(self) -> int:
        """Planned rows that never started end as ``canceled``."""
        changed = 0
        now = utc_now()
        for result in self._state.test_results:
            if result.status == ResultStatus.PENDING:
                result.status = ResultStatus.CANCELED
                result.updated_at = now
                changed += 1
        return changed

    def _finalize(self, running_status: ResultStatus) -> None:
        self.finalize_running(running_status)
        self.cancel_pending()

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def snapshot(self) -> dict[str, Any]:
        state = self._state
        return {
            "running": state.running,
            "phase": state.phase.value,
            "runId": state.run_id,
            "startedAt": iso_utc(state.started_at) if state.started_at else None,
            "finishedAt": iso_utc(state.finished_at) if state.finished_at else None,
            "exitCode": state.exit_code,
            "lastError": state.last_error,
            "currentSpec": state.current_spec,
            "selectedSpecs": list(state.selected_specs),
            "selectedTasks": list(state.selected_tasks),
            "currentTest": state.current_test,
            "currentDetail": state.current_detail,
            "baseDomain": state.base_domain,
            "testResults": [
                r.model_dump(mode="json", by_alias=True) for r in state.test_results
            ],
            "logs": [e.model_dump(mode="json", by_alias=True) for e in state.logs],
        }
