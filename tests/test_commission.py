"""Tests for the revenue split: gross amount → fee → commission / earnings."""
from decimal import Decimal

import pytest

from coursepay.commission.service import (
    commission_percentage,
    processor_fee,
    prorate,
    split,
    to_minor_units,
)
from coursepay.config import CommissionConfig

CONFIG = CommissionConfig()


class TestCommissionPercentage:
    def test_base_rate_below_first_tier(self):
        assert commission_percentage(Decimal("99.00"), CONFIG) == Decimal("20")

    def test_tier_discounts(self):
        assert commission_percentage(Decimal("200.00"), CONFIG) == Decimal("18")
        assert commission_percentage(Decimal("500.00"), CONFIG) == Decimal("15")

    def test_rate_never_increases_with_amount(self):
        amounts = [Decimal(a) for a in ("1", "50", "199.99", "200", "350", "499.99", "500", "5000")]
        rates = [commission_percentage(a, CONFIG) for a in amounts]
        assert rates == sorted(rates, reverse=True)


class TestSplit:
    def test_course_purchase_split(self):
        # fee = 0.30 + 2.9% of 99.00 = 3.171
        # commission = 20% of 95.829 = 19.1658 → 19.17
        # earnings = 95.829 - 19.17 = 76.659 → rounded down to 76.65
        result = split(Decimal("99.00"), "educator_1", CONFIG)
        assert result.platform_commission == Decimal("19.17")
        assert result.educator_earnings == Decimal("76.65")
        assert result.processor_fee == Decimal("3.17")
        assert result.net_amount == Decimal("95.83")
        assert result.commission_percentage == Decimal("20")

    @pytest.mark.parametrize("amount", ["1.00", "9.99", "99.00", "199.99", "250.00", "1234.56"])
    def test_parts_never_exceed_net(self, amount):
        amount = Decimal(amount)
        result = split(amount, None, CONFIG)
        net = amount - processor_fee(amount, CONFIG)
        assert result.educator_earnings >= 0
        assert result.platform_commission + result.educator_earnings <= net.quantize(Decimal("0.01")) + Decimal("0.01")

    def test_minimum_commission_applies_to_small_amounts(self):
        result = split(Decimal("5.00"), None, CONFIG)
        assert result.platform_commission == Decimal("1.00")

    def test_commission_capped_at_half_the_amount(self):
        result = split(Decimal("0.50"), None, CONFIG)
        assert result.platform_commission == Decimal("0.25")
        assert result.educator_earnings == Decimal("0")

    @pytest.mark.parametrize("amount", ["0", "-10.00"])
    def test_rejects_non_positive_amount(self, amount):
        with pytest.raises(ValueError):
            split(Decimal(amount), None, CONFIG)

    def test_custom_base_rate(self):
        config = CommissionConfig(platform_commission_percentage=Decimal("30"))
        result = split(Decimal("100.00"), None, config)
        # net = 100 - 3.20 = 96.80; 30% = 29.04
        assert result.platform_commission == Decimal("29.04")
        assert result.educator_earnings == Decimal("67.76")


class TestProrate:
    def test_full_ratio_is_identity(self):
        assert prorate(Decimal("19.17"), Decimal("1")) == Decimal("19.17")

    def test_partial_ratio(self):
        ratio = Decimal("33.00") / Decimal("99.00")
        assert prorate(Decimal("19.17"), ratio) == Decimal("6.39")
        assert prorate(Decimal("76.65"), ratio) == Decimal("25.55")


class TestMinorUnits:
    def test_whole_and_fractional(self):
        assert to_minor_units(Decimal("99.00")) == 9900
        assert to_minor_units(Decimal("19.17")) == 1917
        assert to_minor_units(Decimal("0.005")) == 1
