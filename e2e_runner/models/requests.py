"""
Request Models

Bodies accepted by the control surface.

List fields are lenient: a value of the wrong shape (``null``, a bare
string, an object) is treated as absent rather than rejected, and planned
rows without a usable ``key`` are dropped.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import Field, field_validator, model_validator

from e2e_runner.models.run_state import CamelModel


class PlannedResult(CamelModel):
    """A worklist row shown as ``pending`` before any event arrives."""

    key: str = Field(..., min_length=1)
    test: Optional[str] = Field(None, description="Display name; defaults to the key")
    parent: bool = False

    @field_validator("test", mode="before")
    @classmethod
    def _test_text(cls, value: Any) -> Any:
        return None if value is None else str(value)

    @field_validator("parent", mode="before")
    @classmethod
    def _parent_flag(cls, value: Any) -> Any:
        return bool(value)

    @model_validator(mode="after")
    def _default_test(self) -> "PlannedResult":
        if not self.test:
            self.test = self.key
        return self


def _is_planned_row(item: Any) -> bool:
    if not isinstance(item, dict):
        return False
    key = item.get("key")
    return isinstance(key, str) and bool(key.strip())


class TriggerRequest(CamelModel):
    specs: Optional[list[Any]] = Field(
        None, description="Spec ids to run; empty runs everything"
    )
    spec: Optional[str] = Field(None, description="Single spec id (legacy form)")
    tasks: list[Any] = Field(
        default_factory=list, description="Task keys `<specId>::<childId>`"
    )
    planned_results: list[PlannedResult] = Field(default_factory=list)
    base_domain: Optional[str] = None

    @field_validator("specs", mode="before")
    @classmethod
    def _specs_list_or_none(cls, value: Any) -> Any:
        return value if isinstance(value, list) else None

    @field_validator("spec", mode="before")
    @classmethod
    def _string_or_none(cls, value: Any) -> Any:
        return value if isinstance(value, str) else None

    @field_validator("base_domain", mode="before")
    @classmethod
    def _base_domain_text(cls, value: Any) -> Any:
        return None if value is None else str(value)

    @field_validator("tasks", mode="before")
    @classmethod
    def _tasks_list(cls, value: Any) -> Any:
        return value if isinstance(value, list) else []

    @field_validator("planned_results", mode="before")
    @classmethod
    def _planned_rows(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return []
        return [item for item in value if _is_planned_row(item)]


class CredentialRequestPayload(CamelModel):
    kind: str = Field(..., min_length=1, description="e.g. email, password, otp")
    message: Optional[str] = None


class CredentialFulfillPayload(CamelModel):
    value: str
