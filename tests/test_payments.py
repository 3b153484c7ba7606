import hashlib
import hmac

import httpx
import pytest

from app.core.config import COMPUTE_ALIASES, COMPUTE_PRICE60, GPU_PRICE60, FamilyConfig
from app.services.errors import (
    AmountTooLow,
    ConfigurationError,
    GatewayUnreachable,
    InvalidProduct,
    InvalidSignature,
    PaymentNotCaptured,
    PaymentNotFound,
)
from app.services.payments import PaymentVerifier, RazorpayClient
from app.services.pricing import clamp_minutes, expected_rupees, normalize_product

GPU = FamilyConfig(name="gpu", price60=GPU_PRICE60)
COMPUTE = FamilyConfig(name="compute", price60=COMPUTE_PRICE60, aliases=COMPUTE_ALIASES)


def _gateway(handler) -> RazorpayClient:
    return RazorpayClient("rzp_id", "rzp_secret", transport=httpx.MockTransport(handler))


def _payment(status="captured", amount=10000):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path.endswith("/payments/pay_1")
        assert request.headers["authorization"].startswith("Basic ")
        return httpx.Response(200, json={"id": "pay_1", "order_id": "order_1", "status": status, "amount": amount})

    return handler


def test_expected_price_rounds_up_and_applies_promo():
    assert expected_rupees(GPU, "whisper", 60) == 100
    assert expected_rupees(GPU, "whisper", 1) == 2  # 100/60 rounded up
    assert expected_rupees(GPU, "sd", 90) == 300
    assert expected_rupees(GPU, "whisper", 60, "try10") == 95
    assert expected_rupees(GPU, "whisper", 1, "TRY") == 1  # never below 1
    assert expected_rupees(GPU, "whisper", 60, "BOGUS") == 100


def test_product_aliases_and_minutes_clamp():
    assert normalize_product(COMPUTE, "cpu_2_4") == "cpu2x4"
    assert normalize_product(COMPUTE, " REDIS8 ") == "redis8"
    with pytest.raises(InvalidProduct):
        normalize_product(COMPUTE, "nvme200")

    assert clamp_minutes(0, 240) == 1
    assert clamp_minutes(999, 240) == 240
    assert clamp_minutes("abc", 240) == 60
    assert clamp_minutes(None, 240) == 60
    assert clamp_minutes("1e999", 240) == 60


def test_verify_captured_payment():
    verifier = PaymentVerifier(_gateway(_payment(amount=10000)))
    check = verifier.verify("pay_1", expected_amount=100)
    assert check.captured is True
    assert check.details["paid"] == 100
    assert check.details["order_id"] == "order_1"


def test_verify_rejects_uncaptured_payment():
    verifier = PaymentVerifier(_gateway(_payment(status="authorized")))
    with pytest.raises(PaymentNotCaptured) as exc:
        verifier.verify("pay_1", expected_amount=100)
    assert exc.value.to_body()["status"] == "authorized"


def test_verify_rejects_short_payment():
    verifier = PaymentVerifier(_gateway(_payment(amount=9900)))
    with pytest.raises(AmountTooLow) as exc:
        verifier.verify("pay_1", expected_amount=100)
    body = exc.value.to_body()
    assert body["expected"] == 100
    assert body["paid"] == 99


def test_gateway_network_error_is_upstream():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    verifier = PaymentVerifier(_gateway(handler))
    with pytest.raises(GatewayUnreachable) as exc:
        verifier.verify("pay_1", expected_amount=100)
    assert exc.value.category == "upstream"


def test_gateway_status_codes():
    verifier = PaymentVerifier(_gateway(lambda r: httpx.Response(404, json={"error": "nope"})))
    with pytest.raises(PaymentNotFound):
        verifier.verify("pay_1", expected_amount=100)

    verifier = PaymentVerifier(_gateway(lambda r: httpx.Response(503)))
    with pytest.raises(GatewayUnreachable):
        verifier.verify("pay_1", expected_amount=100)


def test_bypass_never_contacts_gateway():
    def handler(request):
        raise AssertionError("gateway must not be called in bypass mode")

    check = PaymentVerifier(_gateway(handler), bypass=True).verify("", expected_amount=100)
    assert check.captured is True
    assert check.details["bypass"] is True


def test_missing_gateway_keys():
    verifier = PaymentVerifier(RazorpayClient("", ""))
    with pytest.raises(ConfigurationError):
        verifier.verify("pay_1", expected_amount=1)


def test_checkout_signature():
    verifier = PaymentVerifier(RazorpayClient("rzp_id", "rzp_secret"))
    good = hmac.new(b"rzp_secret", b"order_1|pay_1", hashlib.sha256).hexdigest()
    assert verifier.verify_checkout_signature("order_1", "pay_1", good) is True
    assert verifier.verify_checkout_signature("order_1", "pay_2", good) is False
    assert verifier.verify_checkout_signature("order_1", "pay_1", "") is False
    assert verifier.verify_checkout_signature("order_1", "pay_1", "é" * 64) is False


def test_mint_checks_checkout_signature(dispatcher):
    dispatcher.payments = PaymentVerifier(_gateway(_payment(amount=6000)))
    with pytest.raises(InvalidSignature):
        dispatcher.mint("pay_1", "cpu2x4", 60, order_id="order_1", checkout_signature="deadbeef")

    good = hmac.new(b"rzp_secret", b"order_1|pay_1", hashlib.sha256).hexdigest()
    token = dispatcher.mint("pay_1", "cpu2x4", 60, order_id="order_1", checkout_signature=good)
    assert dispatcher.codec.verify(token)["pay"] == "pay_1"


def test_create_order_uses_server_side_amount(dispatcher):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        import json

        seen.update(json.loads(request.content))
        return httpx.Response(200, json={"id": "order_9", "amount": seen["amount"], "currency": "INR"})

    dispatcher.payments = PaymentVerifier(_gateway(handler))
    order = dispatcher.create_order("cpu8x16", 30, email="a@b.com", promo="try", guard="g1")

    assert order == {"id": "order_9", "amount": 11500, "currency": "INR", "product": "cpu8x16", "minutes": 30}
    assert seen["notes"] == {
        "product": "cpu8x16",
        "minutes": "30",
        "email": "a@b.com",
        "promo": "TRY",
        "webhook_guard": "g1",
    }
    assert seen["receipt"].startswith("comp_cpu8x16_")
