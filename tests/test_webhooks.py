import hashlib
import hmac
import json

import httpx
import pytest
from fastapi.testclient import TestClient

from app.core.config import load_family_configs, settings
from app.main import app
from app.services import webhooks as webhooks_mod
from app.services.errors import ConfigurationError, InvalidPayload, InvalidSignature
from app.services.webhooks import DeployTrigger, WebhookVerifier, handle_notification

SECRET = "whsec_unit"
FAMILIES = load_family_configs(settings)

client = TestClient(app)


def _sign(raw: bytes, secret: str = SECRET) -> str:
    return hmac.new(secret.encode(), raw, hashlib.sha256).hexdigest()


def _captured(product="whisper", minutes="60", amount=10000, **notes) -> bytes:
    body = {
        "event": "payment.captured",
        "payload": {
            "payment": {
                "entity": {
                    "id": "pay_abc",
                    "order_id": "order_abc",
                    "amount": amount,
                    "notes": {"product": product, "minutes": minutes, "userEmail": "u@x.io", **notes},
                }
            }
        },
    }
    return json.dumps(body).encode()


class Recorder:
    def __init__(self, status_code=200, fail=False):
        self.requests = []
        self.status_code = status_code
        self.fail = fail

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail:
            raise httpx.ReadTimeout("slow deployer", request=request)
        return httpx.Response(self.status_code, json={"ok": True})


def _deployer(recorder: Recorder) -> DeployTrigger:
    return DeployTrigger("https://deployer.test/deploy", timeout_s=1, transport=httpx.MockTransport(recorder))


def test_bad_signature_is_rejected_before_parsing(monkeypatch):
    def no_parse(*args, **kwargs):
        raise AssertionError("body parsed before authentication")

    monkeypatch.setattr(webhooks_mod.json, "loads", no_parse)
    rec = Recorder()
    with pytest.raises(InvalidSignature):
        handle_notification(b"{not json", "00" * 32, WebhookVerifier(SECRET), FAMILIES, _deployer(rec))
    with pytest.raises(InvalidSignature):
        handle_notification(b"{not json", None, WebhookVerifier(SECRET), FAMILIES, _deployer(rec))
    with pytest.raises(InvalidSignature):
        handle_notification(b"{not json", "é" * 64, WebhookVerifier(SECRET), FAMILIES, _deployer(rec))
    assert rec.requests == []


def test_captured_payment_triggers_deploy_once_with_idempotency_key():
    raw = _captured()
    rec = Recorder()
    result = handle_notification(raw, _sign(raw), WebhookVerifier(SECRET), FAMILIES, _deployer(rec))

    assert result.outcome == "ok"
    assert result.status_code == 200
    assert result.details == {"family": "gpu", "deployed": True}
    assert len(rec.requests) == 1
    sent = rec.requests[0]
    assert sent.headers["idempotency-key"] == "pay_abc"
    payload = json.loads(sent.content)
    assert payload["product"] == "whisper"
    assert payload["minutes"] == 60
    assert payload["customer"] == {"email": "u@x.io"}


def test_deployer_failure_still_acknowledges():
    raw = _captured()
    for rec in (Recorder(fail=True), Recorder(status_code=500)):
        result = handle_notification(raw, _sign(raw), WebhookVerifier(SECRET), FAMILIES, _deployer(rec))
        assert result.outcome == "ok"
        assert result.status_code == 200
        assert result.details["deployed"] is False


def test_price_mismatch_is_logged_not_blocked(caplog):
    raw = _captured(amount=100)  # 1 rupee for a 100 rupee hour
    result = handle_notification(raw, _sign(raw), WebhookVerifier(SECRET), FAMILIES, _deployer(Recorder()))
    assert result.outcome == "ok"
    assert "price mismatch" in caplog.text


def test_guard_mismatch_is_accepted_without_deploy():
    raw = _captured(webhook_guard="other-site")
    rec = Recorder()
    verifier = WebhookVerifier(SECRET, guard="this-site")
    result = handle_notification(raw, _sign(raw), verifier, FAMILIES, _deployer(rec))
    assert result.outcome == "ignored_guard_mismatch"
    assert result.status_code == 202
    assert rec.requests == []

    raw = _captured(webhook_guard="this-site")
    assert handle_notification(raw, _sign(raw), verifier, FAMILIES, _deployer(rec)).outcome == "ok"


@pytest.mark.parametrize(
    "raw, outcome",
    [
        (json.dumps({"event": "payment.failed"}).encode(), "ignored_event"),
        (_captured(product="toaster"), "ignored_invalid_notes"),
        (_captured(minutes="zero"), "ignored_invalid_notes"),
        (json.dumps({"event": "payment.captured", "payload": {"payment": {"entity": {"notes": ["x"]}}}}).encode(), "ignored_invalid_notes"),
        (json.dumps({"event": "payment.captured", "payload": {"payment": {"entity": "pay_1"}}}).encode(), "ignored_invalid_notes"),
        (json.dumps({"event": "payment.captured", "payload": ["x"]}).encode(), "ignored_invalid_notes"),
        (json.dumps({"event": "payment.captured"}).encode(), "ignored_invalid_notes"),
    ],
)
def test_ignored_notifications(raw, outcome):
    rec = Recorder()
    result = handle_notification(raw, _sign(raw), WebhookVerifier(SECRET), FAMILIES, _deployer(rec))
    assert result.outcome == outcome
    assert result.status_code == 200
    assert rec.requests == []


def test_authentic_but_unparseable_body():
    raw = b"definitely not json"
    with pytest.raises(InvalidPayload):
        handle_notification(raw, _sign(raw), WebhookVerifier(SECRET), FAMILIES, _deployer(Recorder()))


def test_missing_secret_is_a_configuration_error():
    raw = _captured()
    with pytest.raises(ConfigurationError):
        handle_notification(raw, _sign(raw, ""), WebhookVerifier(""), FAMILIES, _deployer(Recorder()))


def test_webhook_endpoint():
    raw = _captured(product="cpu2x4")
    r = client.post(
        "/api/razorpay-webhook",
        content=raw,
        headers={"Content-Type": "application/json", "X-Razorpay-Signature": _sign(raw, "whsec_test")},
    )
    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is True
    assert body["result"] == "ok"
    assert body["family"] == "compute"
    assert body["deployed"] is False  # no deployer configured in tests

    r = client.post("/api/razorpay-webhook", content=b"{}", headers={"X-Razorpay-Signature": "bogus"})
    assert r.status_code == 401
    assert r.json()["error"] == "invalid_signature"
