"""
Run selection: which specs and tasks to run, against which host.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from e2e_runner.models.requests import PlannedResult

_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)
_NOT_HOST_RE = re.compile(r"[/?#\s]")


class InvalidSelectionError(ValueError):
    """The caller asked for something that cannot be run."""


def normalize_base_domain(raw_value: Any, *, default: str) -> str:
    """
    Reduce user input to a bare host.

    ``"https://example.com/"`` becomes ``"example.com"``; blank input falls
    back to ``default``; anything with a path, query, fragment or whitespace is
    rejected.
    """
    raw = str(raw_value or "").strip()
    if not raw:
        return default

    normalized = _SCHEME_RE.sub("", raw).rstrip("/")
    if not normalized:
        normalized = default

    if _NOT_HOST_RE.search(normalized):
        raise InvalidSelectionError(
            f"Base domain must be host only (example: {default})"
        )
    return normalized


def clean_ids(values: Optional[Iterable[Any]]) -> list[str]:
    if not values:
        return []
    return [s for s in (str(v or "").strip() for v in values) if s]


def task_child_id(task_key: str) -> str:
    """``"tests/a.spec.js::login"`` -> ``"login"``; bare ids pass through."""
    _, sep, child = task_key.partition("::")
    return child if sep and child else task_key


@dataclass(frozen=True)
class RunSelection:
    specs: list[str] = field(default_factory=list)
    tasks: list[str] = field(default_factory=list)
    planned_results: list[PlannedResult] = field(default_factory=list)
    base_domain: str = ""

    @property
    def task_ids(self) -> list[str]:
        return [t for t in (task_child_id(k) for k in self.tasks) if t]

    @property
    def base_url(self) -> str:
        return f"https://{self.base_domain}/"

    @property
    def spec_label(self) -> list[str]:
        return list(self.specs) if self.specs else ["ALL"]


def validate_specs(requested: Iterable[str], available_ids: Iterable[str]) -> None:
    known = set(available_ids)
    unknown = [s for s in requested if s not in known]
    if unknown:
        raise InvalidSelectionError(f"Unknown test ids: {', '.join(unknown)}")


def build_command(
    selection: RunSelection,
    *,
    executable: str = "npx",
    headed: bool = True,
    reporter: str = "line",
) -> list[str]:
    """``npx playwright test [specs...] [--headed] --reporter=<reporter>``."""
    cmd = [executable, "playwright", "test", *selection.specs]
    if headed:
        cmd.append("--headed")
    if reporter:
        cmd.append(f"--reporter={reporter}")
    return cmd
