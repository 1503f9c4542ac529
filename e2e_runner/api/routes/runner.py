"""
API routes for discovering specs and controlling Playwright runs.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query, status
from fastapi.responses import JSONResponse

from e2e_runner.api.dependencies import get_context
from e2e_runner.config import settings
from e2e_runner.core.context import RunnerContext
from e2e_runner.core.selection import RunSelection
from e2e_runner.models.requests import TriggerRequest

router = APIRouter()

ENDPOINTS = [
    "GET /status",
    "GET /tests",
    "GET /ui",
    "GET /trigger",
    "POST /trigger",
    "GET /stop",
    "GET /clear",
    "POST /auth/request",
    "POST /auth/fulfill",
    "GET /auth/consume",
]


def _usage(ctx: RunnerContext) -> dict[str, str]:
    base = f"http://{settings.APP_HOST}:{settings.APP_PORT}"
    return {
        "triggerAll": f"curl -X POST {base}/trigger",
        "triggerWithSpec": (
            f"curl -X POST {base}/trigger -H \"Content-Type: application/json\" "
            f"-d '{{\"specs\":[\"{settings.EXAMPLE_SPEC}\"]}}'"
        ),
        "baseDomain": f"optional in POST body, defaults to {ctx.default_base_domain}",
        "stop": f"curl {base}/stop",
        "clear": f"curl {base}/clear",
    }


def _already_running(ctx: RunnerContext) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={
            "ok": False,
            "message": "A Playwright run is already in progress.",
            "state": ctx.status(),
        },
    )


async def _start(ctx: RunnerContext, selection: RunSelection, **extra: Any) -> JSONResponse:
    await ctx.supervisor.start(selection)
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content={
            "ok": True,
            "message": "Playwright run started.",
            **extra,
            "specs": selection.spec_label,
            "baseDomain": selection.base_domain,
        },
    )


@router.get("/")
async def root():
    return {"ok": True, "message": "Runner is alive.", "endpoints": ENDPOINTS}


@router.get("/status")
async def get_status(ctx: RunnerContext = Depends(get_context)):
    """Full snapshot of the current (or most recent) run."""
    return {"ok": True, **ctx.status(), "usage": _usage(ctx)}


@router.get("/tests")
async def list_tests(ctx: RunnerContext = Depends(get_context)):
    tests = await asyncio.to_thread(ctx.discover)
    return {"ok": True, "tests": [t.model_dump(by_alias=True) for t in tests]}


@router.get("/trigger")
async def trigger_get(
    spec: str = Query("", description="Single spec id; empty runs everything"),
    base_domain: Optional[str] = Query(None, alias="baseDomain"),
    ctx: RunnerContext = Depends(get_context),
):
    if ctx.store.running:
        return _already_running(ctx)

    spec = spec.strip()
    selection = await asyncio.to_thread(
        ctx.build_selection,
        specs=[spec] if spec else [],
        base_domain=base_domain,
    )
    return await _start(ctx, selection, spec=spec or "ALL")


@router.post("/trigger")
async def trigger_post(
    body: Optional[TriggerRequest] = Body(None),
    ctx: RunnerContext = Depends(get_context),
):
    """
    Start a run.

    Body (all optional): ``specs`` (or a single ``spec``), ``tasks`` as
    ``<specId>::<childId>`` keys, ``plannedResults`` to seed the worklist and
    ``baseDomain`` to target another host.
    """
    if ctx.store.running:
        return _already_running(ctx)

    body = body or TriggerRequest()
    if body.specs is not None:
        specs = list(body.specs)
    elif body.spec and body.spec.strip():
        specs = [body.spec]
    else:
        specs = []

    selection = await asyncio.to_thread(
        ctx.build_selection,
        specs=specs,
        tasks=list(body.tasks),
        planned_results=body.planned_results,
        base_domain=body.base_domain,
    )
    return await _start(ctx, selection)


@router.get("/stop")
async def stop_run(ctx: RunnerContext = Depends(get_context)):
    ctx.supervisor.stop()
    return {"ok": True, "message": "Run stop requested."}


@router.get("/clear")
async def clear_state(ctx: RunnerContext = Depends(get_context)):
    ctx.supervisor.clear()
    return {"ok": True, "message": "Runner state cleared."}
