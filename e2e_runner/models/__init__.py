"""
Data models for the Playwright runner.

This package contains Pydantic models for:
- Run results and captured output
- Discovered spec files
- Control surface request bodies
"""

from e2e_runner.models.run_state import (
    LogEntry,
    LogStream,
    ResultStatus,
    RunPhase,
    TestResult,
)

from e2e_runner.models.discovery import (
    SELF_CHILD_ID,
    DiscoveredChild,
    DiscoveredTest,
)

from e2e_runner.models.requests import (
    CredentialFulfillPayload,
    CredentialRequestPayload,
    PlannedResult,
    TriggerRequest,
)

__all__ = [
    # run_state
    "LogEntry",
    "LogStream",
    "ResultStatus",
    "RunPhase",
    "TestResult",
    # discovery
    "SELF_CHILD_ID",
    "DiscoveredChild",
    "DiscoveredTest",
    # requests
    "CredentialFulfillPayload",
    "CredentialRequestPayload",
    "PlannedResult",
    "TriggerRequest",
]
