from __future__ import annotations

import hashlib
import hmac
from typing import Iterable, Optional


def supplied_worker_key(authorization: Optional[str], provider_key: Optional[str] = None) -> str:
    """Bearer token first, then the alternate ``X-Provider-Key`` header."""
    bearer = ""
    auth = (authorization or "").strip()
    if auth[:7].lower() == "bearer ":
        bearer = auth[7:].strip()
    return bearer or (provider_key or "").strip()


def key_allowed(supplied: str, allowed: Iterable[str]) -> bool:
    if not supplied:
        return False
    ok = False
    for key in allowed:
        # compare against every key so timing does not reveal which one matched
        if key and hmac.compare_digest(key.encode("utf-8"), supplied.encode("utf-8")):
            ok = True
    return ok


def fingerprint(value: str, n: int = 8) -> str:
    return hashlib.sha256((value or "").encode("utf-8")).hexdigest()[:n] if value else ""
