"""
Unit tests for promo code pricing.
"""

import pytest
from decimal import Decimal

from registrations_service.core.exceptions import InvalidPromoCode
from registrations_service.models.event import Event, PromoCode, PromoKind
from registrations_service.services.promo_service import (
    apply_promo, compute_discounted_price, effective_price, find_promo,
    normalize_code, to_money, validate_promo_value
)


def make_event(price="100.00", is_paid=True, promos=()):
    event = Event(id="evt-1", title="Paid Talk", capacity=10, is_paid=is_paid, price=Decimal(price))
    event.promo_codes = [
        PromoCode(code=code, normalized_code=code.upper(), kind=kind, value=Decimal(str(value)))
        for code, kind, value in promos
    ]
    return event


def promo(kind, value):
    return PromoCode(code="X", normalized_code="X", kind=kind, value=Decimal(str(value)))


class TestDiscountMath:

    def test_percentage(self):
        assert compute_discounted_price(Decimal("100"), promo(PromoKind.PERCENTAGE, 50)) == Decimal("50.00")

    def test_fixed(self):
        assert compute_discounted_price(Decimal("100"), promo(PromoKind.FIXED, 30)) == Decimal("70.00")

    def test_never_below_zero(self):
        assert compute_discounted_price(Decimal("20"), promo(PromoKind.FIXED, 50)) == Decimal("0.00")
        assert compute_discounted_price(Decimal("20"), promo(PromoKind.PERCENTAGE, 100)) == Decimal("0.00")

    def test_rounds_half_up_to_cents(self):
        assert compute_discounted_price(Decimal("10.01"), promo(PromoKind.PERCENTAGE, 50)) == Decimal("5.01")
        assert to_money("2.345") == Decimal("2.35")

    def test_no_promo_keeps_base_price(self):
        assert compute_discounted_price(Decimal("99.9"), None) == Decimal("99.90")


class TestLookup:

    def test_normalize(self):
        assert normalize_code("  half ") == "HALF"
        assert normalize_code(None) == ""

    def test_find_is_case_insensitive(self):
        event = make_event(promos=[("Half", PromoKind.PERCENTAGE, 50)])

        assert find_promo(event, "hALf").code == "Half"
        assert find_promo(event, "") is None

    def test_apply_unknown_raises(self):
        event = make_event(promos=[("HALF", PromoKind.PERCENTAGE, 50)])

        with pytest.raises(InvalidPromoCode) as exc_info:
            apply_promo(event, "QUARTER")
        assert exc_info.value.details["promo_code"] == "QUARTER"


class TestEffectivePrice:

    def test_free_event_costs_nothing(self):
        event = make_event(price="0", is_paid=False)

        assert effective_price(event, "ANY") == Decimal("0.00")

    def test_with_promo(self):
        event = make_event(promos=[("HALF", PromoKind.PERCENTAGE, 50)])

        assert effective_price(event, "half") == Decimal("50.00")
        assert effective_price(event) == Decimal("100.00")

    def test_strict_rejects_unknown_code(self):
        event = make_event()

        with pytest.raises(InvalidPromoCode):
            effective_price(event, "GONE")

    def test_lenient_falls_back_to_base_price(self):
        event = make_event()

        assert effective_price(event, "GONE", strict=False) == Decimal("100.00")


class TestPromoDefinitions:

    @pytest.mark.parametrize("value", [0, -5, 101])
    def test_bad_percentages(self, value):
        with pytest.raises(InvalidPromoCode):
            validate_promo_value(PromoKind.PERCENTAGE, value, Decimal("100"))

    def test_fixed_cannot_exceed_price(self):
        with pytest.raises(InvalidPromoCode):
            validate_promo_value(PromoKind.FIXED, 150, Decimal("100"))

    def test_valid_definitions(self):
        validate_promo_value(PromoKind.PERCENTAGE, 100, Decimal("100"))
        validate_promo_value(PromoKind.FIXED, 100, Decimal("100"))
        validate_promo_value(PromoKind.FIXED, 0, Decimal("100"))
