from __future__ import annotations

from typing import Any

from app.core.config import FamilyConfig
from app.services.errors import InvalidProduct

PROMO_CODES = {"TRY", "TRY10"}


def normalize_product(family: FamilyConfig, product: Any) -> str:
    """Map a client SKU (or alias) to the canonical SKU, or raise InvalidProduct."""
    key = str(product or "").strip().lower()
    if key in family.price60:
        return key
    alias = family.aliases.get(key)
    if alias:
        return alias
    raise InvalidProduct(f"unknown {family.name} product: {key or '<empty>'}")


def clamp_minutes(minutes: Any, max_minutes: int, default: int = 60) -> int:
    try:
        m = int(float(minutes)) if minutes not in (None, "") else default
    except (TypeError, ValueError, OverflowError):
        m = default
    return max(1, min(max_minutes, m))


def normalize_promo(promo: Any) -> str:
    return str(promo or "").strip().upper()


def expected_rupees(
    family: FamilyConfig,
    sku: str,
    minutes: int,
    promo: str = "",
    flat_off: int = 5,
) -> int:
    """
    Server-side price for ``minutes`` of ``sku``.

    Rounded up to whole rupees; a recognised promo takes a flat amount off
    but never below 1.
    """
    base60 = family.price60[sku]
    gross = -(-base60 * minutes // 60)
    if normalize_promo(promo) in PROMO_CODES:
        return max(1, gross - max(0, flat_off))
    return gross
