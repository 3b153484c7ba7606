"""
Order-token and job-dispatch lifecycle for one product family.

mint → redeem → pick → progress → complete. One Dispatcher is built per
family from its FamilyConfig; every family runs the same code.
"""
from __future__ import annotations

import logging
import secrets
import time
from typing import Any, Callable, Optional

from pydantic import ValidationError

from app.core.config import FamilyConfig
from app.models.job import (
    COMPLETED,
    FAILED,
    NOTIFY_STATUSES,
    QUEUED,
    RUNNING,
    TERMINAL_STATUSES,
    WORKER_STATUSES,
    Capabilities,
    Job,
    OrderClaims,
    PickedJob,
)
from app.services.errors import (
    ConfigurationError,
    InvalidSignature,
    InvalidStatus,
    InvalidTransition,
    JobNotFound,
    MalformedToken,
    MissingField,
    StoreUnavailable,
    TokenAlreadyRedeemed,
    WrongKind,
)
from app.services.job_queue import JobQueue
from app.services.job_status import JobStatusStore, Record
from app.services.kv import KeyValueStore
from app.services.notifier import EmailMessage, compose
from app.services.payments import PaymentVerifier
from app.services.pricing import clamp_minutes, expected_rupees, normalize_product, normalize_promo
from app.services.tokens import TokenCodec, signature_digest

logger = logging.getLogger(__name__)

DAY_S = 24 * 3600


def new_job_id(now_ms: int) -> str:
    return f"job_{now_ms}_{secrets.token_hex(3)}"


class Dispatcher:
    def __init__(
        self,
        family: FamilyConfig,
        store: KeyValueStore,
        payments: PaymentVerifier,
        notify: Optional[Callable[[EmailMessage], None]] = None,
        token_ttl_s: int = 7 * DAY_S,
        status_ttl_s: int = 7 * DAY_S,
        promo_flat_off: int = 5,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.family = family
        self.store = store
        self.payments = payments
        self.notify = notify
        self.token_ttl_s = token_ttl_s
        self.promo_flat_off = promo_flat_off
        self.clock = clock
        self.queue = JobQueue(store, family.queue_key)
        self.statuses = JobStatusStore(store, family.status_key, ttl_s=status_ttl_s)
        self._codec: Optional[TokenCodec] = None

    @property
    def name(self) -> str:
        return self.family.name

    @property
    def codec(self) -> TokenCodec:
        if self._codec is None:
            if not self.family.token_secret:
                raise ConfigurationError("token_secret_missing")
            self._codec = TokenCodec(self.family.token_secret, clock=self.clock)
        return self._codec

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    # ── pricing / orders ─────────────────────────────────────────────

    def quote(self, product: Any, minutes: Any, promo: Any = "") -> tuple[str, int, int]:
        """(canonical sku, clamped minutes, expected rupees)."""
        sku = normalize_product(self.family, product)
        mins = clamp_minutes(minutes, self.family.max_minutes)
        price = expected_rupees(self.family, sku, mins, normalize_promo(promo), self.promo_flat_off)
        return sku, mins, price

    def create_order(
        self,
        product: Any,
        minutes: Any,
        email: str = "",
        promo: Any = "",
        guard: str = "",
    ) -> dict[str, Any]:
        sku, mins, price = self.quote(product, minutes, promo)
        code = normalize_promo(promo)
        notes = {"product": sku, "minutes": str(mins), "email": (email or "").strip(), "promo": code}
        if guard:
            notes["webhook_guard"] = guard

        receipt = f"{self.name[:4]}_{sku}_{self._now_ms()}"
        order = self.payments.gateway.create_order(
            amount_paise=max(100, price * 100),  # gateway minimum is ₹1
            receipt=receipt,
            notes=notes,
        )
        return {
            "id": order.get("id"),
            "amount": order.get("amount"),
            "currency": order.get("currency") or "INR",
            "product": sku,
            "minutes": mins,
        }

    # ── mint ─────────────────────────────────────────────────────────

    def mint(
        self,
        payment_ref: str,
        product: Any,
        minutes: Any,
        email: str = "",
        promo: Any = "",
        order_id: Optional[str] = None,
        checkout_signature: Optional[str] = None,
    ) -> str:
        sku, mins, price = self.quote(product, minutes, promo)
        payment_ref = (payment_ref or "").strip()
        if not payment_ref and not self.payments.bypass:
            raise MissingField("missing_payment_id")

        if order_id and checkout_signature and not self.payments.bypass:
            if not self.payments.verify_checkout_signature(order_id, payment_ref, checkout_signature):
                raise InvalidSignature("checkout signature mismatch")

        self.payments.verify(payment_ref, price)

        now = int(self.clock())
        claims = OrderClaims(
            kind=self.name,
            product=sku,
            minutes=mins,
            email=(email or "").strip(),
            pay=payment_ref or "test",
            promo=normalize_promo(promo) or None,
            iat=now,
            exp=now + self.token_ttl_s,
        )
        token = self.codec.mint(claims.model_dump(exclude_none=True))
        logger.info("minted %s token for %s (%s x %s min)", self.name, claims.pay, sku, mins)
        return token

    # ── redeem ───────────────────────────────────────────────────────

    def redeem(self, token: str, spec: Optional[str] = None) -> str:
        payload = self.codec.verify(token)
        try:
            claims = OrderClaims.model_validate(payload)
        except ValidationError as exc:
            raise MalformedToken("token payload is missing fields") from exc
        if claims.kind != self.name:
            raise WrongKind(f"token is for {claims.kind}, not {self.name}")

        sku = normalize_product(self.family, claims.product)
        mins = clamp_minutes(claims.minutes, self.family.max_minutes)
        now_ms = self._now_ms()
        job = Job(
            id=new_job_id(now_ms),
            kind=self.name,
            sku=sku,
            minutes=mins,
            email=claims.email.strip(),
            payment_ref=claims.pay,
            promo=claims.promo,
            size_gi=self.family.size_gi.get(sku),
            spec=spec or None,
            queued_at=now_ms,
        )

        # single use: claim the token before anything is queued
        ledger_key = self.family.redeemed_key(signature_digest(token))
        ttl = max(1, claims.exp - int(self.clock()))
        if not self.store.set_if_absent(ledger_key, job.id, ttl_s=ttl):
            raise TokenAlreadyRedeemed()

        try:
            prev, record = self.statuses.merge(
                job.id,
                {
                    "status": QUEUED,
                    "kind": job.kind,
                    "sku": job.sku,
                    "minutes": job.minutes,
                    "email": job.email,
                    "size_gi": job.size_gi,
                    "queued_at": now_ms,
                    "updated_at": now_ms,
                    "message": "queued via redeem",
                },
            )
            self.queue.enqueue(job.model_dump(exclude_none=True))
        except StoreUnavailable:
            # let the customer retry with the same token; the job id is never returned
            try:
                self.store.delete(ledger_key)
                self.statuses.delete(job.id)
            except StoreUnavailable:
                logger.error("could not roll back redeem of %s", job.id)
            raise

        logger.info("queued %s job %s (%s x %s min)", self.name, job.id, job.sku, job.minutes)
        self._maybe_notify(prev, record)
        return job.id

    # ── worker side ──────────────────────────────────────────────────

    def pick(self, caps: Optional[Capabilities] = None) -> Optional[PickedJob]:
        caps = caps or Capabilities()
        kinds = {k.strip().lower() for k in caps.kinds if k.strip()}
        if kinds and self.name not in kinds:
            return None

        job = self.queue.dequeue()
        if job is None:
            return None

        sku = str(job.get("sku") or job.get("product") or self.name).lower()
        skus = {s.strip().lower() for s in caps.skus if s.strip()}
        if skus and sku not in skus:
            self.queue.requeue(job)
            return None

        job_id = str(job.get("id") or "")
        now_ms = self._now_ms()

        def running(prev: Record) -> Record:
            if prev.get("status") in TERMINAL_STATUSES:
                return {"updated_at": now_ms}
            return {
                "status": RUNNING,
                "kind": prev.get("kind") or self.name,
                "sku": prev.get("sku") or sku,
                "minutes": prev.get("minutes") or job.get("minutes"),
                "email": prev.get("email") or job.get("email") or "",
                "started_at": prev.get("started_at") or now_ms,
                "updated_at": now_ms,
                "message": f"assigned to {self.name} provider",
            }

        try:
            prev, record = self.statuses.merge(job_id, running)
        except StoreUnavailable:
            # hand the job back so the next pick gets it
            try:
                self.queue.requeue(job)
            except StoreUnavailable:
                logger.error("lost %s job %s: could not requeue after failed pick", self.name, job_id)
            raise
        if record.get("status") in TERMINAL_STATUSES:
            logger.warning("dropping %s job %s: already %s", self.name, job_id, record.get("status"))
            return None

        self._maybe_notify(prev, record)
        return PickedJob(
            id=job_id,
            kind=self.name,
            sku=sku,
            minutes=max(1, int(job.get("minutes") or 60)),
            email=job.get("email") or "",
            size_gi=job.get("size_gi"),
            spec=job.get("spec"),
            picked_at=now_ms,
        )

    def progress(
        self,
        job_id: str,
        status: str = RUNNING,
        message: str = "",
        progress: Optional[float] = None,
        outputs: Optional[dict[str, Any]] = None,
    ) -> Record:
        status = (status or RUNNING).strip().lower()
        if status not in WORKER_STATUSES:
            raise InvalidStatus(f"unsupported status: {status}")
        now_ms = self._now_ms()

        def apply(prev: Record) -> Record:
            if not prev:
                raise JobNotFound()
            self._check_transition(prev, status)
            fields = self._status_fields(prev, status, message, now_ms)
            if progress is not None:
                fields["progress"] = progress
            if outputs:
                fields["outputs"] = {**(prev.get("outputs") or {}), **outputs}
            return fields

        prev, record = self.statuses.merge(job_id, apply)
        self._maybe_notify(prev, record)
        return record

    def complete(
        self,
        job_id: str,
        success: bool,
        message: str = "",
        log_url: Optional[str] = None,
    ) -> Record:
        """
        Finalize a job. An id with no status record is accepted and simply
        gets the terminal record: the worker may have crashed between pick and
        its first progress call.
        """
        status = COMPLETED if success else FAILED
        now_ms = self._now_ms()

        def apply(prev: Record) -> Record:
            self._check_transition(prev, status)
            fields = self._status_fields(prev, status, message, now_ms)
            fields.setdefault("kind", prev.get("kind") or self.name)
            if log_url:
                fields["log_url"] = log_url
            return fields

        prev, record = self.statuses.merge(job_id, apply)
        self._maybe_notify(prev, record)
        logger.info("%s job %s %s", self.name, job_id, status)
        return record

    def status(self, job_id: str) -> Record:
        record = self.statuses.get(job_id)
        if record is None:
            raise JobNotFound()
        return record

    def peek(self, n: int = 5) -> dict[str, Any]:
        return {"length": self.queue.length(), "next": self.queue.peek_tail(n)}

    # ── helpers ──────────────────────────────────────────────────────

    @staticmethod
    def _check_transition(prev: Record, status: str) -> None:
        current = prev.get("status")
        if current in TERMINAL_STATUSES and current != status:
            raise InvalidTransition(f"job already {current}")

    @staticmethod
    def _status_fields(prev: Record, status: str, message: str, now_ms: int) -> Record:
        fields: Record = {"status": status, "updated_at": now_ms}
        if message:
            fields["message"] = message
        if status == RUNNING and not prev.get("started_at"):
            fields["started_at"] = now_ms
        if status in TERMINAL_STATUSES and not prev.get("finished_at"):
            fields["finished_at"] = now_ms
        return fields

    def _maybe_notify(self, prev: Record, record: Record) -> None:
        new_status = record.get("status")
        if self.notify is None or new_status not in NOTIFY_STATUSES:
            return
        if prev.get("status") == new_status:
            return
        msg = compose(self.name, record)
        if msg is None:
            return
        try:
            self.notify(msg)
        except Exception:
            logger.exception("notification for %s job %s failed", self.name, record.get("id"))
