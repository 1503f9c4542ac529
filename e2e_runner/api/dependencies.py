from __future__ import annotations

from fastapi import Request

from e2e_runner.core.context import RunnerContext


def get_context(request: Request) -> RunnerContext:
    """The runner context owned by this application instance."""
    return request.app.state.runner
