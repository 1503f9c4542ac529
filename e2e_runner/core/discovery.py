"""
Spec Discovery

Walks the tests directory for Playwright spec files and reads the runner
annotations from the top of each file:

    // @runner-name: Chats
    // @runner-children: chats.load=Check chats loads;chats.send=Send (required)
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Iterator

from e2e_runner.models.discovery import SELF_CHILD_ID, DiscoveredChild, DiscoveredTest

logger = logging.getLogger(__name__)

DEFAULT_HEADER_LINES = 30

_SPEC_FILE_RE = re.compile(r"\.spec\.[cm]?[jt]s$", re.IGNORECASE)
_RUNNER_NAME_RE = re.compile(r"@runner-name:\s*(.+)$", re.IGNORECASE | re.MULTILINE)
_RUNNER_CHILDREN_RE = re.compile(
    r"@runner-children:\s*(.+)$", re.IGNORECASE | re.MULTILINE
)
_REQUIRED_RE = re.compile(r"\(required\)", re.IGNORECASE)
_DIGITS_RE = re.compile(r"(\d+)")


def natural_sort_key(value: str) -> tuple[tuple[int, int | str], ...]:
    """Numeric-aware, case-insensitive ordering: ``2-x`` sorts before ``10-x``."""
    parts: list[tuple[int, int | str]] = []
    for chunk in _DIGITS_RE.split(value):
        if not chunk:
            continue
        if chunk.isdigit():
            parts.append((0, int(chunk)))
        else:
            parts.append((1, chunk.casefold()))
    return tuple(parts)


def walk_spec_files(root: Path) -> Iterator[Path]:
    for dirpath, _dirnames, filenames in os.walk(root):
        for name in filenames:
            if _SPEC_FILE_RE.search(name):
                yield Path(dirpath) / name


def parse_children(raw: str) -> list[DiscoveredChild]:
    children: list[DiscoveredChild] = []
    for chunk in (c.strip() for c in raw.split(";")):
        if not chunk:
            continue
        child_id, sep, label = chunk.partition("=")
        if not sep:
            children.append(DiscoveredChild(id=chunk, label=chunk, required=False))
            continue
        label = label.strip()
        children.append(
            DiscoveredChild(
                id=child_id.strip(),
                label=label,
                required=bool(_REQUIRED_RE.search(label)),
            )
        )
    return children


def read_header(path: Path, max_lines: int = DEFAULT_HEADER_LINES) -> str:
    lines: list[str] = []
    with path.open("r", encoding="utf-8", errors="replace") as fh:
        for idx, line in enumerate(fh):
            if idx >= max_lines:
                break
            lines.append(line.rstrip("\r\n"))
    return "\n".join(lines)


def describe_spec(
    path: Path, project_root: Path, *, header_lines: int = DEFAULT_HEADER_LINES
) -> DiscoveredTest:
    display_name = path.name
    children: list[DiscoveredChild] = []
    try:
        header = read_header(path, header_lines)
        name_match = _RUNNER_NAME_RE.search(header)
        if name_match and name_match.group(1).strip():
            display_name = name_match.group(1).strip()
        children_match = _RUNNER_CHILDREN_RE.search(header)
        if children_match:
            children = parse_children(children_match.group(1))
    except OSError as e:
        logger.debug("Could not read runner annotations from %s: %s", path, e)

    if not children:
        children = [DiscoveredChild(id=SELF_CHILD_ID, label=display_name)]

    try:
        rel = path.resolve().relative_to(project_root.resolve())
    except ValueError:
        rel = path
    return DiscoveredTest(id=rel.as_posix(), display_name=display_name, children=children)


def discover_tests(
    tests_dir: Path,
    project_root: Path,
    *,
    header_lines: int = DEFAULT_HEADER_LINES,
) -> list[DiscoveredTest]:
    """Return every spec under ``tests_dir`` in deterministic order."""
    if not tests_dir.is_dir():
        logger.warning("Tests directory not found: %s", tests_dir)
        return []

    files = sorted(walk_spec_files(tests_dir), key=lambda p: natural_sort_key(str(p)))
    return [describe_spec(p, project_root, header_lines=header_lines) for p in files]
