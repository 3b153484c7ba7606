"""Error taxonomy for the order-token and dispatch paths.

Every error carries a machine-readable ``kind`` (rendered as ``error`` in
response bodies), a ``category`` so callers can tell "your input was wrong"
from "try again later", and the HTTP status the API layer maps it to.
"""
from __future__ import annotations

from typing import Any

PROTOCOL = "protocol"
AUTHORIZATION = "authorization"
UPSTREAM = "upstream"
BUSINESS = "business"


class DispatchError(Exception):
    kind: str = "server_error"
    category: str = BUSINESS
    status_code: int = 500

    def __init__(self, detail: str | None = None, **extra: Any) -> None:
        super().__init__(detail or self.kind)
        self.detail = detail
        self.extra = extra

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"ok": False, "error": self.kind, "category": self.category}
        if self.detail:
            body["detail"] = self.detail
        body.update(self.extra)
        return body


# ── protocol ─────────────────────────────────────────────────────────


class MalformedToken(DispatchError):
    kind = "bad_token_format"
    category = PROTOCOL
    status_code = 400


class BadSignature(DispatchError):
    kind = "bad_token_sig"
    category = PROTOCOL
    status_code = 401


class Expired(DispatchError):
    kind = "token_expired"
    category = PROTOCOL
    status_code = 400


class WrongKind(DispatchError):
    kind = "bad_token_kind"
    category = PROTOCOL
    status_code = 400


class TokenAlreadyRedeemed(DispatchError):
    kind = "token_already_redeemed"
    category = PROTOCOL
    status_code = 409


class InvalidSignature(DispatchError):
    """Webhook body signature mismatch."""

    kind = "invalid_signature"
    category = PROTOCOL
    status_code = 401


class InvalidPayload(DispatchError):
    kind = "invalid_json"
    category = PROTOCOL
    status_code = 400


# ── authorization ────────────────────────────────────────────────────


class Unauthorized(DispatchError):
    kind = "unauthorized"
    category = AUTHORIZATION
    status_code = 401


# ── upstream ─────────────────────────────────────────────────────────


class GatewayUnreachable(DispatchError):
    kind = "gateway_unreachable"
    category = UPSTREAM
    status_code = 502


class StoreUnavailable(DispatchError):
    kind = "store_unavailable"
    category = UPSTREAM
    status_code = 503


class ConfigurationError(DispatchError):
    kind = "not_configured"
    category = UPSTREAM
    status_code = 500


# ── business rules ───────────────────────────────────────────────────


class InvalidProduct(DispatchError):
    kind = "invalid_product"
    status_code = 400


class MissingField(DispatchError):
    kind = "missing_field"
    status_code = 400


class PaymentNotFound(DispatchError):
    kind = "payment_not_found"
    status_code = 400


class PaymentNotCaptured(DispatchError):
    kind = "payment_not_captured"
    status_code = 400


class AmountTooLow(DispatchError):
    kind = "amount_too_low"
    status_code = 400


class JobNotFound(DispatchError):
    kind = "job_not_found"
    status_code = 404


class InvalidStatus(DispatchError):
    kind = "invalid_status"
    status_code = 400


class InvalidTransition(DispatchError):
    kind = "invalid_transition"
    status_code = 409
