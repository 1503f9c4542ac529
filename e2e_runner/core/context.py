"""
Runner context: the single owner of run state, the supervisor and the
credential relay for one application instance.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Any, Optional

from e2e_runner.config import Settings
from e2e_runner.core.credentials import CredentialRelay
from e2e_runner.core.discovery import discover_tests
from e2e_runner.core.run_state import RunStateStore
from e2e_runner.core.selection import (
    RunSelection,
    build_command,
    clean_ids,
    normalize_base_domain,
    validate_specs,
)
from e2e_runner.core.supervisor import ProcessSupervisor
from e2e_runner.models.discovery import DiscoveredTest
from e2e_runner.models.requests import PlannedResult


@dataclass
class RunnerContext:
    store: RunStateStore
    supervisor: ProcessSupervisor
    relay: CredentialRelay
    project_root: Path
    tests_dir: Path
    default_base_domain: str
    header_lines: int = 30

    @classmethod
    def from_settings(cls, settings: Settings, **supervisor_kwargs: Any) -> "RunnerContext":
        store = RunStateStore(
            default_base_domain=settings.DEFAULT_BASE_DOMAIN,
            max_log_lines=settings.MAX_LOG_LINES,
        )
        relay = CredentialRelay()
        supervisor_kwargs.setdefault(
            "command_factory",
            partial(
                build_command,
                executable=settings.RUNNER_EXECUTABLE,
                headed=settings.RUNNER_HEADED,
                reporter=settings.RUNNER_REPORTER,
            ),
        )
        supervisor_kwargs.setdefault("cwd", settings.PROJECT_ROOT)
        supervisor_kwargs.setdefault("echo_output", settings.ECHO_CHILD_OUTPUT)
        supervisor_kwargs.setdefault("drain_timeout", settings.OUTPUT_DRAIN_SECONDS)
        supervisor = ProcessSupervisor(store, relay=relay, **supervisor_kwargs)
        return cls(
            store=store,
            supervisor=supervisor,
            relay=relay,
            project_root=settings.PROJECT_ROOT,
            tests_dir=settings.tests_dir,
            default_base_domain=settings.DEFAULT_BASE_DOMAIN,
            header_lines=settings.SPEC_HEADER_LINES,
        )

    def discover(self) -> list[DiscoveredTest]:
        return discover_tests(
            self.tests_dir, self.project_root, header_lines=self.header_lines
        )

    def build_selection(
        self,
        *,
        specs: Optional[list[Any]] = None,
        tasks: Optional[list[Any]] = None,
        planned_results: Optional[list[PlannedResult]] = None,
        base_domain: Any = None,
    ) -> RunSelection:
        """Normalize and validate a trigger request; raises ``InvalidSelectionError``."""
        requested_specs = clean_ids(specs)
        domain = normalize_base_domain(base_domain, default=self.default_base_domain)
        if requested_specs:
            validate_specs(requested_specs, (t.id for t in self.discover()))
        return RunSelection(
            specs=requested_specs,
            tasks=clean_ids(tasks),
            planned_results=list(planned_results or []),
            base_domain=domain,
        )

    def status(self) -> dict[str, Any]:
        payload = self.store.snapshot()
        payload["authRequest"] = self.relay.snapshot()
        return payload
