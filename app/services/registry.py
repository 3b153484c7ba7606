from __future__ import annotations

from functools import lru_cache

from app.core.config import load_family_configs, settings
from app.services.dispatcher import DAY_S, Dispatcher
from app.services.fx import FxRateCache
from app.services.kv import get_store
from app.services.payments import PaymentVerifier, RazorpayClient
from app.services.webhooks import DeployTrigger, WebhookVerifier
from app.worker.tasks import enqueue_email


def build_payment_verifier() -> PaymentVerifier:
    gateway = RazorpayClient(
        key_id=settings.razorpay_key_id,
        key_secret=settings.razorpay_key_secret,
        base_url=settings.razorpay_api_base,
        timeout_s=settings.gateway_timeout_s,
    )
    return PaymentVerifier(gateway, bypass=settings.payments_bypassed)


@lru_cache(maxsize=1)
def get_dispatchers() -> dict[str, Dispatcher]:
    store = get_store()
    payments = build_payment_verifier()
    return {
        name: Dispatcher(
            family=cfg,
            store=store,
            payments=payments,
            notify=enqueue_email,
            token_ttl_s=settings.token_ttl_days * DAY_S,
            status_ttl_s=settings.status_ttl_days * DAY_S,
            promo_flat_off=settings.promo_flat_off_rupees,
        )
        for name, cfg in load_family_configs(settings).items()
    }


@lru_cache(maxsize=1)
def get_webhook_verifier() -> WebhookVerifier:
    return WebhookVerifier(settings.razorpay_webhook_secret, guard=settings.webhook_guard)


@lru_cache(maxsize=1)
def get_deploy_trigger() -> DeployTrigger:
    return DeployTrigger(settings.deployer_url, timeout_s=settings.deployer_timeout_s)


@lru_cache(maxsize=1)
def get_fx_cache() -> FxRateCache:
    return FxRateCache(settings.fx_api_url, ttl=settings.fx_ttl_s, seed=settings.fx_fallback_rate)
