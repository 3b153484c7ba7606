from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from typing import Any, Callable

from app.services.errors import BadSignature, Expired, MalformedToken

VERSION_TAG = "v1"


def b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def b64url_decode(s: str) -> bytes:
    s = s or ""
    return base64.urlsafe_b64decode(s + "=" * (-len(s) % 4))


class TokenCodec:
    """
    Compact signed order tokens: ``v1.<b64url(json)>.<b64url(hmac-sha256)>``.

    The HMAC covers the encoded body segment exactly as it travels, so mint
    and verify agree byte-for-byte without re-serializing the payload.
    """

    def __init__(
        self,
        secret: str,
        version_tag: str = VERSION_TAG,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secret:
            raise ValueError("token secret is required")
        self._secret = secret.encode("utf-8")
        self.version_tag = version_tag
        self._clock = clock

    def _sign(self, body: str) -> str:
        mac = hmac.new(self._secret, body.encode("utf-8"), hashlib.sha256).digest()
        return b64url_encode(mac)

    def mint(self, payload: dict[str, Any]) -> str:
        raw = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        body = b64url_encode(raw)
        return f"{self.version_tag}.{body}.{self._sign(body)}"

    def verify(self, token: str) -> dict[str, Any]:
        if not isinstance(token, str):
            raise MalformedToken("token must be a string")
        parts = token.split(".")
        if len(parts) != 3 or parts[0] != self.version_tag or not token.isascii():
            raise MalformedToken()

        _, body, sig = parts
        if not hmac.compare_digest(self._sign(body).encode("utf-8"), sig.encode("utf-8")):
            raise BadSignature()

        try:
            payload = json.loads(b64url_decode(body).decode("utf-8"))
        except (ValueError, UnicodeDecodeError) as exc:
            raise MalformedToken("undecodable token body") from exc
        if not isinstance(payload, dict):
            raise MalformedToken("token body is not an object")

        exp = payload.get("exp")
        if not isinstance(exp, (int, float)) or self._clock() > exp:
            raise Expired()
        return payload


def signature_digest(token: str) -> str:
    """Stable identifier for a token, used by the consumed-token ledger."""
    sig = token.rsplit(".", 1)[-1]
    return hashlib.sha256(sig.encode("utf-8")).hexdigest()
