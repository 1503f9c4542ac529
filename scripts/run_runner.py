#!/usr/bin/env python3
"""Serve the Playwright runner for a local project."""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Serve the Playwright runner dashboard and control API."
    )
    parser.add_argument(
        "--project-root",
        default=None,
        help="Directory holding the Playwright project (defaults to cwd).",
    )
    parser.add_argument(
        "--tests-dir",
        default=None,
        help="Spec directory to scan (defaults to <project-root>/tests).",
    )
    parser.add_argument("--host", default=None, help="Interface to bind.")
    parser.add_argument("--port", type=int, default=None, help="Port to listen on.")
    parser.add_argument(
        "--base-domain",
        default=None,
        help="Host targeted when a trigger does not name one.",
    )
    parser.add_argument(
        "--headless",
        action="store_true",
        help="Run Playwright without --headed.",
    )
    return parser


def _apply_overrides(args: argparse.Namespace) -> None:
    # Settings are read from the environment on first import.
    overrides = {
        "PROJECT_ROOT": str(Path(args.project_root).resolve()) if args.project_root else None,
        "TESTS_DIR": str(Path(args.tests_dir).resolve()) if args.tests_dir else None,
        "APP_HOST": args.host,
        "APP_PORT": str(args.port) if args.port is not None else None,
        "DEFAULT_BASE_DOMAIN": args.base_domain,
        "RUNNER_HEADED": "false" if args.headless else None,
    }
    for key, value in overrides.items():
        if value is not None:
            os.environ[key] = value


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    _apply_overrides(args)

    import uvicorn

    from e2e_runner.config import settings

    # Logging is configured by e2e_runner.main when uvicorn imports the app.
    try:
        uvicorn.run(
            "e2e_runner.main:app",
            host=settings.APP_HOST,
            port=settings.APP_PORT,
            log_level=settings.LOG_LEVEL.lower(),
        )
    except KeyboardInterrupt:
        print("[runner] interrupted", file=sys.stderr)
        return 130
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
