"""
API routes for the credential relay between a running spec and the dashboard.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from e2e_runner.api.dependencies import get_context
from e2e_runner.api.error_handling import error_response
from e2e_runner.core.context import RunnerContext
from e2e_runner.models.requests import (
    CredentialFulfillPayload,
    CredentialRequestPayload,
)

router = APIRouter()


@router.post("/request")
async def request_credential(
    payload: CredentialRequestPayload, ctx: RunnerContext = Depends(get_context)
):
    """Called by a spec that needs a human to supply a login value."""
    try:
        pending = ctx.relay.request(payload.kind, payload.message)
    except ValueError as e:
        return error_response(status.HTTP_400_BAD_REQUEST, str(e))
    ctx.store.system_log(f"[runner] Waiting for {pending.kind} from the dashboard")
    return {"ok": True, "request": pending.public()}


@router.get("/request")
async def get_credential_request(ctx: RunnerContext = Depends(get_context)):
    return {"ok": True, "request": ctx.relay.snapshot()}


@router.post("/fulfill")
async def fulfill_credential(
    payload: CredentialFulfillPayload, ctx: RunnerContext = Depends(get_context)
):
    try:
        fulfilled = ctx.relay.fulfill(payload.value)
    except ValueError as e:
        return error_response(status.HTTP_400_BAD_REQUEST, str(e))
    ctx.store.system_log(f"[runner] {fulfilled.kind} provided from the dashboard")
    return {"ok": True, "request": fulfilled.public()}


@router.get("/consume")
async def consume_credential(ctx: RunnerContext = Depends(get_context)):
    """Polled by the spec; returns the value exactly once."""
    consumed = ctx.relay.consume()
    if consumed is None:
        return {"ok": True, "status": "awaiting", "request": ctx.relay.snapshot()}
    return {
        "ok": True,
        "status": "fulfilled",
        "kind": consumed.kind,
        "value": consumed.value,
    }


@router.post("/cancel")
async def cancel_credential(ctx: RunnerContext = Depends(get_context)):
    ctx.relay.reset()
    return {"ok": True, "message": "Credential request cleared."}
