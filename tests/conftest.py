"""
Global pytest configuration and fixtures for the Playwright runner tests.

This module provides:
- A throwaway Playwright project with annotated spec files
- Runner contexts whose "Playwright" child is a short Python script
- FastAPI test client fixtures
"""

from __future__ import annotations

import sys
import textwrap
import time
from contextlib import ExitStack
from pathlib import Path
from typing import Callable, Generator

import pytest
from fastapi.testclient import TestClient

from e2e_runner.core.context import RunnerContext
from e2e_runner.core.credentials import CredentialRelay
from e2e_runner.core.run_state import RunStateStore
from e2e_runner.core.selection import RunSelection
from e2e_runner.core.supervisor import ProcessSupervisor

DEFAULT_DOMAIN = "app.example.com"

LOGIN_SPEC = "tests/1. Smoke/01-login.spec.js"
CHATS_SPEC = "tests/2. Regression/2-chats.spec.ts"
NAVIGATION_SPEC = "tests/2. Regression/10-navigation.spec.js"

# Prepended to every child script: emit() prints one structured event line.
CHILD_PRELUDE = """
import json, os, signal, sys, time

def emit(**event):
    print("[E2E_EVENT] " + json.dumps(event), flush=True)
"""

SLEEPING_CHILD = """
emit(type="test_start", test="tests/1. Smoke/01-login.spec.js > Login")
time.sleep(30)
"""


# =============================================================================
# Project fixtures
# =============================================================================


@pytest.fixture
def spec_project(tmp_path: Path) -> Path:
    """
    A project root containing three spec files:

    - an annotated smoke spec with a display name only
    - a regression spec with selectable children (one required)
    - a regression spec with no annotations at all
    """
    tests_dir = tmp_path / "tests"
    (tests_dir / "1. Smoke").mkdir(parents=True)
    (tests_dir / "2. Regression").mkdir(parents=True)

    (tests_dir / "1. Smoke" / "01-login.spec.js").write_text(
        "// @runner-name: Login\n"
        "const { test } = require('@playwright/test');\n",
        encoding="utf-8",
    )
    (tests_dir / "2. Regression" / "2-chats.spec.ts").write_text(
        "// @runner-name: Chats\n"
        "// @runner-children: chats.load=Load chats (required);chats.send=Send a message\n"
        "import { test } from '@playwright/test';\n",
        encoding="utf-8",
    )
    (tests_dir / "2. Regression" / "10-navigation.spec.js").write_text(
        "const { test } = require('@playwright/test');\n",
        encoding="utf-8",
    )
    # Not a spec file; must be ignored by discovery.
    (tests_dir / "shared-fixture.js").write_text("module.exports = {};\n", encoding="utf-8")
    return tmp_path


def python_child(body: str) -> Callable[[RunSelection], list[str]]:
    """Command factory that runs ``body`` (after the prelude) as the child."""
    script = CHILD_PRELUDE + textwrap.dedent(body)

    def factory(selection: RunSelection) -> list[str]:
        return [sys.executable, "-u", "-c", script]

    return factory


def build_context(
    project_root: Path, body: str = "", *, max_log_lines: int = 200, **supervisor_kwargs
) -> RunnerContext:
    store = RunStateStore(default_base_domain=DEFAULT_DOMAIN, max_log_lines=max_log_lines)
    relay = CredentialRelay()
    supervisor_kwargs.setdefault("command_factory", python_child(body))
    supervisor = ProcessSupervisor(
        store, relay=relay, cwd=project_root, **supervisor_kwargs
    )
    return RunnerContext(
        store=store,
        supervisor=supervisor,
        relay=relay,
        project_root=project_root,
        tests_dir=project_root / "tests",
        default_base_domain=DEFAULT_DOMAIN,
    )


@pytest.fixture
def make_context(spec_project: Path) -> Callable[..., RunnerContext]:
    """Factory for runner contexts bound to ``spec_project``."""

    def _make(body: str = "", **kwargs) -> RunnerContext:
        return build_context(spec_project, body, **kwargs)

    return _make


@pytest.fixture
def runner_context(make_context: Callable[..., RunnerContext]) -> RunnerContext:
    return make_context(SLEEPING_CHILD)


# =============================================================================
# FastAPI Test Client Fixtures
# =============================================================================


@pytest.fixture
def make_client(
    make_context: Callable[..., RunnerContext],
) -> Generator[Callable[..., tuple[TestClient, RunnerContext]], None, None]:
    """
    Factory returning a started TestClient and its runner context.

    The client is entered as a context manager so background watcher tasks
    keep running on its event loop between requests.
    """
    from e2e_runner.main import create_app

    with ExitStack() as stack:

        def _make(body: str = SLEEPING_CHILD, **kwargs) -> tuple[TestClient, RunnerContext]:
            ctx = make_context(body, **kwargs)
            client = stack.enter_context(TestClient(create_app(ctx)))
            return client, ctx

        yield _make


@pytest.fixture
def client(make_client) -> TestClient:
    test_client, _ctx = make_client()
    return test_client


@pytest.fixture
def wait_for() -> Callable[..., None]:
    """Poll ``predicate`` from the test thread until it holds."""

    def _wait(predicate: Callable[[], bool], timeout: float = 15.0) -> None:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return
            time.sleep(0.05)
        raise AssertionError("condition not met within %.1fs" % timeout)

    return _wait
