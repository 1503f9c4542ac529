"""
Run State Models

Pydantic models for the per-run result table and the output log buffer.
Field names are snake_case in Python and camelCase on the wire.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    return datetime.now(UTC)


def iso_utc(value: datetime) -> str:
    """Render a timestamp as ``2024-01-15T10:30:00.123Z``."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace(
        "+00:00", "Z"
    )


Timestamp = Annotated[datetime, PlainSerializer(iso_utc, return_type=str)]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ResultStatus(str, Enum):
    """Status of a single test or subtest row."""

    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in (ResultStatus.PASSED, ResultStatus.FAILED, ResultStatus.CANCELED)


class LogStream(str, Enum):
    STDOUT = "stdout"
    STDERR = "stderr"
    SYSTEM = "system"


class RunPhase(str, Enum):
    """Coarse lifecycle phase of the current run."""

    IDLE = "idle"
    RUNNING = "running"
    FINISHED = "finished"
    STOPPED = "stopped"
    ERRORED = "errored"


class TestResult(CamelModel):
    """One row of the results table, keyed ``<specId>::<subtestId>``."""

    __test__ = False

    key: str = Field(..., description="Unique row key")
    test: str = Field(..., description="Display name")
    status: ResultStatus = Field(ResultStatus.PENDING, description="Row status")
    duration_ms: Optional[float] = Field(None, description="Duration (ms)")
    error: Optional[str] = Field(None, description="Failure reason")
    parent: bool = Field(False, description="Row is a named subtest of a spec")
    updated_at: Timestamp = Field(default_factory=utc_now)


class LogEntry(CamelModel):
    """A single captured output line."""

    ts: Timestamp = Field(default_factory=utc_now)
    stream: LogStream = LogStream.STDOUT
    line: str
