from __future__ import annotations

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

import httpx

from app.core.config import FamilyConfig
from app.services.errors import ConfigurationError, InvalidPayload, InvalidSignature
from app.services.pricing import clamp_minutes, expected_rupees

logger = logging.getLogger(__name__)

CAPTURED_EVENT = "payment.captured"


@dataclass
class WebhookResult:
    outcome: str
    status_code: int = 200
    details: Dict[str, Any] = field(default_factory=dict)


class WebhookVerifier:
    """Authenticates gateway notifications over the exact raw request bytes."""

    def __init__(self, secret: str, guard: str = "") -> None:
        self.secret = secret
        self.guard = (guard or "").strip()

    def expected_signature(self, raw_body: bytes) -> str:
        return hmac.new(self.secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()

    def authenticate(self, raw_body: bytes, supplied_signature: Optional[str]) -> None:
        if not self.secret:
            raise ConfigurationError("webhook_secret_missing")
        expected = self.expected_signature(raw_body).encode("utf-8")
        supplied = (supplied_signature or "").strip().encode("utf-8")
        if not supplied or not hmac.compare_digest(expected, supplied):
            logger.warning("webhook signature mismatch (raw_len=%d)", len(raw_body))
            raise InvalidSignature()

    def guard_ok(self, notes: Mapping[str, Any]) -> bool:
        if not self.guard:
            return True
        return str(notes.get("webhook_guard") or "") == self.guard


class DeployTrigger:
    """Time-boxed call to the post-payment deployer. Never raises."""

    def __init__(
        self,
        url: str,
        timeout_s: float = 12.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.url = url
        self.timeout_s = timeout_s
        self._transport = transport

    def fire(self, payload: Dict[str, Any], idempotency_key: str) -> bool:
        if not self.url:
            logger.warning("no deployer url set; skipping deploy for %s", idempotency_key)
            return False
        try:
            with httpx.Client(timeout=self.timeout_s, transport=self._transport) as client:
                r = client.post(self.url, json=payload, headers={"Idempotency-Key": idempotency_key})
        except httpx.HTTPError as exc:
            logger.error("deployer call failed: %s %s", exc.__class__.__name__, exc)
            return False

        if r.status_code >= 400:
            logger.error("deployer non-2xx: %s %.512s", r.status_code, r.text)
            return False
        logger.info("deployer accepted %s", idempotency_key)
        return True


def _find_family(families: Mapping[str, FamilyConfig], product: str) -> Optional[FamilyConfig]:
    for fam in families.values():
        if product in fam.price60:
            return fam
    return None


def _dig(doc: Mapping[str, Any], *path: str) -> Optional[Dict[str, Any]]:
    for key in path:
        doc = doc.get(key)
        if not isinstance(doc, dict):
            return None
    return doc


def handle_notification(
    raw_body: bytes,
    signature: Optional[str],
    verifier: WebhookVerifier,
    families: Mapping[str, FamilyConfig],
    deployer: DeployTrigger,
    promo_flat_off: int = 5,
) -> WebhookResult:
    """
    Authenticate, then act on a gateway notification.

    The signature check runs on the raw bytes before anything is parsed.
    Once a notification is authentic the gateway always gets a 2xx, even if
    the deploy call fails, so it does not keep retrying.
    """
    verifier.authenticate(raw_body, signature)

    try:
        body = json.loads(raw_body.decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as exc:
        raise InvalidPayload() from exc
    if not isinstance(body, dict):
        raise InvalidPayload()

    event = body.get("event")
    if event != CAPTURED_EVENT:
        return WebhookResult("ignored_event", details={"event": event})

    pay = _dig(body, "payload", "payment", "entity")
    notes = pay.get("notes") if pay is not None else None
    if not isinstance(notes, dict):
        logger.warning("ignoring captured payment without a notes object")
        return WebhookResult("ignored_invalid_notes")

    product = str(notes.get("product") or "").strip().lower()
    family = _find_family(families, product)
    try:
        minutes = int(float(notes.get("minutes") or 60))
    except (TypeError, ValueError, OverflowError):
        minutes = 0
    if family is None or minutes < 1:
        logger.warning("ignoring captured payment with invalid notes: product=%r minutes=%r", product, minutes)
        return WebhookResult("ignored_invalid_notes")

    if not verifier.guard_ok(notes):
        logger.warning("ignoring captured payment with guard mismatch (order %s)", pay.get("order_id"))
        return WebhookResult("ignored_guard_mismatch", status_code=202)

    minutes = clamp_minutes(minutes, family.max_minutes)
    email = str(notes.get("userEmail") or notes.get("email") or "").strip()

    # price sanity: log only, never block
    expected = expected_rupees(family, product, minutes, notes.get("promo") or "", promo_flat_off)
    amount = pay.get("amount")
    if isinstance(amount, (int, float)) and abs(round(amount / 100) - expected) > 5:
        logger.warning(
            "price mismatch on %s: expected %s paid %s",
            pay.get("id"),
            expected,
            round(amount / 100),
        )

    logger.info(
        "payment.captured",
        extra={"payment_id": pay.get("id"), "order_id": pay.get("order_id"), "product": product, "minutes": minutes},
    )

    deployed = False
    if pay.get("id"):
        deployed = deployer.fire(
            {
                "product": product,
                "minutes": minutes,
                "customer": {"email": email},
                "payment": {"payment_id": pay.get("id"), "order_id": pay.get("order_id"), "amount": amount},
            },
            idempotency_key=str(pay["id"]),
        )
    return WebhookResult("ok", details={"family": family.name, "deployed": deployed})
