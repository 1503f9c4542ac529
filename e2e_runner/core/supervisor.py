"""
Process Supervisor

Owns the lifecycle of at most one Playwright child process:

- start: replace the run state, spawn the child, stream its output
- exit / spawn error: finalize the run state once the child exits, after a
  bounded wait for its remaining output
- stop: SIGTERM the child and finalize as canceled right away
- shutdown: best-effort cleanup when the application stops

Every callback is fenced by the run id it was created for, so output or an
exit notification from a replaced (or cleared) run never touches the current
state. After a stop the exit handler only logs the late exit code.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping, Optional

from e2e_runner.core.credentials import CredentialRelay
from e2e_runner.core.event_parser import OutputLineParser, strip_ansi
from e2e_runner.core.output_stream import ChildOutputProtocol
from e2e_runner.core.run_state import RunnerConflictError, RunStateStore
from e2e_runner.core.selection import RunSelection, build_command
from e2e_runner.models.run_state import LogStream

logger = logging.getLogger(__name__)

CommandFactory = Callable[[RunSelection], list[str]]


@dataclass
class ActiveRun:
    run_id: str
    parser: OutputLineParser
    transport: Optional[asyncio.SubprocessTransport] = None
    watcher: Optional[asyncio.Task] = None
    stopped: bool = False
    exited: bool = False


class ProcessSupervisor:
    def __init__(
        self,
        store: RunStateStore,
        *,
        relay: Optional[CredentialRelay] = None,
        command_factory: Optional[CommandFactory] = None,
        cwd: Optional[Path] = None,
        base_env: Optional[Mapping[str, str]] = None,
        echo_output: bool = False,
        drain_timeout: float = 2.0,
    ) -> None:
        self._store = store
        self._relay = relay
        self._command_factory = command_factory or build_command
        self._cwd = cwd
        self._base_env = base_env
        self._echo_output = echo_output
        self._drain_timeout = drain_timeout
        self._active: Optional[ActiveRun] = None
        self._background_tasks: set[asyncio.Task] = set()

    @property
    def active(self) -> Optional[ActiveRun]:
        return self._active

    def _track_task(self, task: asyncio.Task) -> None:
        self._background_tasks.add(task)

        def _done(t: asyncio.Task) -> None:
            self._background_tasks.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                logger.error("Run watcher failed: %s", exc, exc_info=exc)

        task.add_done_callback(_done)

    def _is_current(self, active: ActiveRun) -> bool:
        return self._store.run_id == active.run_id

    def _child_env(self, selection: RunSelection) -> dict[str, str]:
        env = dict(self._base_env if self._base_env is not None else os.environ)
        env["RUNNER_TASKS"] = ",".join(selection.task_ids)
        env["PLAYWRIGHT_BASE_URL"] = selection.base_url
        return env

    async def start(self, selection: RunSelection) -> str:
        """Start a run; raises ``RunnerConflictError`` if one is in progress."""
        if self._store.running:
            raise RunnerConflictError("A Playwright run is already in progress.")

        cmd = self._command_factory(selection)
        run_id = self._store.begin_run(
            selected_specs=selection.specs,
            selected_tasks=selection.task_ids,
            base_domain=selection.base_domain,
            planned_results=selection.planned_results,
        )
        if self._relay is not None:
            self._relay.reset()

        active = ActiveRun(run_id=run_id, parser=OutputLineParser(self._store))
        self._active = active
        self._store.system_log(f"[runner] Starting Playwright run: {' '.join(cmd)}")
        self._store.system_log(f"[runner] Base URL: {selection.base_url}")
        logger.info("Starting run %s: %s", run_id, " ".join(cmd))

        loop = asyncio.get_running_loop()
        protocol = ChildOutputProtocol(
            lambda line, stream: self._on_line(active, line, stream)
        )
        try:
            transport, _ = await loop.subprocess_exec(
                lambda: protocol,
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(self._cwd) if self._cwd else None,
                env=self._child_env(selection),
            )
        except OSError as e:
            logger.error("Failed to start Playwright for run %s: %s", run_id, e)
            if self._active is active:
                self._active = None
            if self._is_current(active) and not active.stopped:
                self._store.fail(str(e))
                self._store.system_log(f"[runner] Failed to start Playwright: {e}")
            return run_id

        active.transport = transport
        if active.stopped:
            # stop() arrived while the child was being spawned
            self._terminate(transport)

        active.watcher = asyncio.create_task(self._watch(active, protocol))
        self._track_task(active.watcher)
        return run_id

    async def _watch(self, active: ActiveRun, protocol: ChildOutputProtocol) -> None:
        transport = active.transport
        assert transport is not None

        try:
            await protocol.exited
            exit_code = transport.get_returncode()
            if not protocol.closed.done():
                await asyncio.wait({protocol.closed}, timeout=self._drain_timeout)
            if not protocol.closed.done():
                logger.info(
                    "Run %s: child exited but its output is still open; "
                    "closing pipes after %.1fs",
                    active.run_id,
                    self._drain_timeout,
                )
        finally:
            active.exited = True
            transport.close()

        self._on_exit(active, exit_code)

    def _on_line(self, active: ActiveRun, line: str, stream: LogStream) -> None:
        if self._echo_output:
            print(line, file=sys.stderr if stream == LogStream.STDERR else sys.stdout)

        if not self._is_current(active):
            return

        self._store.append_log(strip_ansi(line).rstrip("\r"), stream)
        if active.stopped or active.exited:
            # Results are already finalized.
            return
        active.parser.feed(line)

    def _on_exit(self, active: ActiveRun, exit_code: Optional[int]) -> None:
        if self._active is active:
            self._active = None

        if not self._is_current(active):
            logger.info(
                "Run %s exited with code %s after being replaced", active.run_id, exit_code
            )
            return

        if active.stopped:
            self._store.system_log(
                f"[runner] Playwright exited with code {exit_code} after stop"
            )
            logger.info("Stopped run %s exited with code %s", active.run_id, exit_code)
            return

        self._store.finish(exit_code)
        self._store.system_log(f"[runner] Playwright finished with exit code: {exit_code}")
        logger.info("Run %s finished with exit code %s", active.run_id, exit_code)

    @staticmethod
    def _terminate(transport: asyncio.SubprocessTransport) -> None:
        if transport.get_returncode() is not None:
            return
        try:
            transport.terminate()
        except ProcessLookupError:
            pass

    def stop(self) -> None:
        """Request termination; the state is finalized as canceled immediately."""
        active = self._active
        if active is None or not self._store.running or not self._is_current(active):
            raise RunnerConflictError("No run is currently active.")

        if active.transport is not None:
            try:
                self._terminate(active.transport)
            except OSError as e:
                raise RunnerConflictError(f"Failed to stop run: {e}") from e

        active.stopped = True
        self._store.mark_stopped()
        active.parser.reset_timers()
        self._store.system_log("[runner] Run stopped by user")
        logger.info("Run %s stopped by user", active.run_id)

    def clear(self) -> None:
        self._store.clear()
        if self._relay is not None:
            self._relay.reset()
        if self._active is not None:
            self._active.parser.reset_timers()

    async def shutdown(self, *, timeout_seconds: float = 5.0) -> None:
        """Terminate any live child and wait briefly for watcher tasks."""
        active = self._active
        if active is not None and active.transport is not None:
            self._terminate(active.transport)

        tasks = list(self._background_tasks)
        if not tasks:
            return
        try:
            await asyncio.wait_for(
                asyncio.gather(*tasks, return_exceptions=True), timeout=timeout_seconds
            )
        except TimeoutError:
            logger.warning(
                "Supervisor shutdown timed out after %.1fs; cancelling watchers",
                timeout_seconds,
            )
            for task in tasks:
                task.cancel()
