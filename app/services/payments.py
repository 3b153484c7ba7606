from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from app.services.errors import (
    AmountTooLow,
    ConfigurationError,
    GatewayUnreachable,
    PaymentNotCaptured,
    PaymentNotFound,
)

logger = logging.getLogger(__name__)


@dataclass
class PaymentCheck:
    captured: bool
    details: Dict[str, Any] = field(default_factory=dict)


class RazorpayClient:
    """
    Minimal server-to-server client for the payment gateway.

    Only the two calls the dispatch flow needs: create an order and fetch a
    payment by id.
    """

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        base_url: str = "https://api.razorpay.com/v1",
        timeout_s: float = 15.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.key_id = key_id
        self.key_secret = key_secret
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.key_id and self.key_secret)

    def _client(self) -> httpx.Client:
        if not self.configured:
            raise ConfigurationError("razorpay_keys_missing")
        return httpx.Client(
            base_url=self.base_url,
            auth=(self.key_id, self.key_secret),
            timeout=self.timeout_s,
            transport=self._transport,
        )

    def fetch_payment(self, payment_id: str) -> Dict[str, Any]:
        try:
            with self._client() as client:
                r = client.get(f"/payments/{payment_id}")
        except httpx.RequestError as exc:
            raise GatewayUnreachable(f"payment lookup failed: {exc.__class__.__name__}") from exc

        if r.status_code >= 500:
            raise GatewayUnreachable(f"gateway returned {r.status_code}")
        if r.status_code >= 400:
            raise PaymentNotFound(f"gateway returned {r.status_code}")
        return r.json()

    def create_order(
        self,
        amount_paise: int,
        receipt: str,
        notes: Dict[str, str],
        currency: str = "INR",
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "amount": amount_paise,
            "currency": currency,
            "receipt": receipt,
            "notes": notes,
            "payment_capture": 1,
        }
        try:
            with self._client() as client:
                r = client.post("/orders", json=payload)
        except httpx.RequestError as exc:
            raise GatewayUnreachable(f"order create failed: {exc.__class__.__name__}") from exc

        if r.status_code >= 400:
            raise GatewayUnreachable(f"gateway returned {r.status_code}")
        return r.json()


class PaymentVerifier:
    """Confirms a claimed payment reference before any token is minted."""

    def __init__(self, gateway: RazorpayClient, bypass: bool = False) -> None:
        self.gateway = gateway
        self.bypass = bypass

    def verify(self, payment_ref: str, expected_amount: int, currency: str = "INR") -> PaymentCheck:
        if self.bypass:
            logger.warning("payment verification bypassed (test mode) for %s", payment_ref or "<none>")
            return PaymentCheck(captured=True, details={"bypass": True, "currency": currency})

        pay = self.gateway.fetch_payment(payment_ref)
        status = pay.get("status")
        if status != "captured":
            raise PaymentNotCaptured("payment not captured yet", status=status)

        # gateway amounts are in the minor unit (paise)
        paid = (pay.get("amount") or 0) / 100
        if paid + 1e-4 < expected_amount:
            raise AmountTooLow(expected=expected_amount, paid=paid)

        return PaymentCheck(
            captured=True,
            details={
                "payment_id": pay.get("id") or payment_ref,
                "order_id": pay.get("order_id"),
                "paid": paid,
                "currency": pay.get("currency") or currency,
            },
        )

    def verify_checkout_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        """Checkout callback signature: hex HMAC-SHA256 of ``order_id|payment_id``."""
        if not self.gateway.key_secret:
            return False
        expected = hmac.new(
            self.gateway.key_secret.encode("utf-8"),
            f"{order_id}|{payment_id}".encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        return hmac.compare_digest(expected.encode("utf-8"), (signature or "").encode("utf-8"))
