"""
Promo code engine.
Pure functions: no I/O, callers pass in the loaded event.
"""

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from registrations_service.core.exceptions import InvalidPromoCode
from registrations_service.models.event import Event, PromoCode, PromoKind

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


def to_money(value) -> Decimal:
    """Round to cents, half up."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def find_promo(event: Event, code: Optional[str]) -> Optional[PromoCode]:
    normalized = normalize_code(code)
    if not normalized:
        return None
    for promo in event.promo_codes:
        if promo.normalized_code == normalized:
            return promo
    return None


def apply_promo(event: Event, code: Optional[str]) -> PromoCode:
    """
    Look up a promo code on an event, case-insensitively.

    Raises:
        InvalidPromoCode: If the event has no such code
    """
    promo = find_promo(event, code)
    if promo is None:
        logger.warning(f"Invalid promo code '{code}' for event {event.id}")
        raise InvalidPromoCode(
            "Invalid promo code",
            details={"event_id": event.id, "promo_code": code}
        )
    return promo


def compute_discounted_price(base_price, promo: Optional[PromoCode]) -> Decimal:
    """
    Apply a promo to a base price.

    Percentage codes take value% off, fixed codes subtract value. The result
    never goes below zero and is rounded to cents.
    """
    base = Decimal(str(base_price))
    if promo is None:
        return to_money(base)

    value = Decimal(str(promo.value))
    if promo.kind == PromoKind.PERCENTAGE:
        discounted = base - (base * value / Decimal(100))
    else:
        discounted = base - value

    return to_money(max(discounted, ZERO))


def effective_price(event: Event, promo_code: Optional[str] = None, strict: bool = True) -> Decimal:
    """
    Price a participant owes for an event after their promo code.

    Args:
        event: Loaded event
        promo_code: Code the participant applied, if any
        strict: Raise on unknown codes; otherwise fall back to the base price

    Returns:
        Price rounded to cents; zero for free events
    """
    if not event.is_paid:
        return ZERO

    if not promo_code:
        return compute_discounted_price(event.price, None)

    if strict:
        promo = apply_promo(event, promo_code)
    else:
        promo = find_promo(event, promo_code)
        if promo is None:
            logger.warning(f"Promo code '{promo_code}' no longer exists on event {event.id}, charging base price")

    return compute_discounted_price(event.price, promo)


def validate_promo_value(kind: PromoKind, value, event_price) -> None:
    """
    Check a promo definition against the event price.

    Raises:
        InvalidPromoCode: Percentage outside (0, 100] or fixed amount outside [0, price]
    """
    value = Decimal(str(value))
    price = Decimal(str(event_price or 0))

    if kind == PromoKind.PERCENTAGE:
        if value <= 0 or value > 100:
            raise InvalidPromoCode(
                "Percentage discount must be greater than 0 and at most 100",
                details={"value": str(value)}
            )
    elif value < 0 or value > price:
        raise InvalidPromoCode(
            "Fixed discount must be between 0 and the event price",
            details={"value": str(value), "price": str(price)}
        )
