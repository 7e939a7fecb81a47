"""Exceptions raised by the billing subsystem."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from fastapi import HTTPException, status


class BillingError(Exception):
    """Base class for billing failures."""


class WebhookSignatureError(BillingError):
    """The webhook payload is not authentic or is malformed."""


class BillingTransitionError(BillingError):
    """Applying a provider event failed; the provider should redeliver it."""

    def __init__(self, event_id: str, message: str) -> None:
        super().__init__(message)
        self.event_id = event_id


class VenueNotFoundError(BillingError, LookupError):
    """No venue record exists for the requested identifier."""


@dataclass
class VisibilityGateError(Exception):
    """Rejection of a visibility change, surfaced verbatim to the venue owner."""

    code: str
    message: str
    status_code: int = status.HTTP_403_FORBIDDEN
    detail: Optional[Mapping[str, Any]] = None

    def __post_init__(self) -> None:
        base_detail: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.detail:
            base_detail.update(self.detail)
        object.__setattr__(self, "_payload", base_detail)
        super().__init__(self.message)

    @property
    def payload(self) -> Mapping[str, Any]:
        return self._payload

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=dict(self.payload))


__all__ = [
    "BillingError",
    "BillingTransitionError",
    "VenueNotFoundError",
    "VisibilityGateError",
    "WebhookSignatureError",
]
