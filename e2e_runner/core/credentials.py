"""
Credential Relay

Lets a headless test hand a login prompt (email, password, OTP...) to the
person watching the dashboard:

    test script: request(kind)  -> awaiting
    dashboard:   fulfill(value) -> fulfilled
    test script: consume()      -> value returned once, relay cleared

At most one request is pending at a time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from e2e_runner.models.run_state import iso_utc, utc_now

logger = logging.getLogger(__name__)


class RelayConflictError(RuntimeError):
    pass


class RelayNotFoundError(LookupError):
    pass


@dataclass
class CredentialRequest:
    kind: str
    message: Optional[str]
    requested_at: datetime
    value: Optional[str] = None
    fulfilled_at: Optional[datetime] = None

    @property
    def fulfilled(self) -> bool:
        return self.value is not None

    def public(self) -> dict[str, Any]:
        # The value itself is never exposed through status polling.
        return {
            "kind": self.kind,
            "message": self.message,
            "requestedAt": iso_utc(self.requested_at),
            "fulfilled": self.fulfilled,
            "fulfilledAt": iso_utc(self.fulfilled_at) if self.fulfilled_at else None,
        }


class CredentialRelay:
    def __init__(self) -> None:
        self._pending: Optional[CredentialRequest] = None

    @property
    def pending(self) -> Optional[CredentialRequest]:
        return self._pending

    def request(self, kind: str, message: Optional[str] = None) -> CredentialRequest:
        kind = kind.strip()
        if not kind:
            raise ValueError("Credential kind is required.")
        if self._pending is not None:
            raise RelayConflictError(
                f"A '{self._pending.kind}' credential request is already pending."
            )
        self._pending = CredentialRequest(
            kind=kind, message=message, requested_at=utc_now()
        )
        logger.info("Credential requested: %s", kind)
        return self._pending

    def fulfill(self, value: str) -> CredentialRequest:
        if not value:
            raise ValueError("A value is required.")
        pending = self._pending
        if pending is None:
            raise RelayConflictError("No credential request is awaiting input.")
        if pending.fulfilled:
            raise RelayConflictError("The pending credential request was already fulfilled.")
        pending.value = value
        pending.fulfilled_at = utc_now()
        logger.info("Credential request fulfilled: %s", pending.kind)
        return pending

    def consume(self) -> Optional[CredentialRequest]:
        """
        Return the fulfilled request and clear the relay.

        Returns None while the request is still awaiting input.
        """
        pending = self._pending
        if pending is None:
            raise RelayNotFoundError("No credential request is pending.")
        if not pending.fulfilled:
            return None
        self._pending = None
        return pending

    def reset(self) -> None:
        self._pending = None

    def snapshot(self) -> Optional[dict[str, Any]]:
        return self._pending.public() if self._pending else None
