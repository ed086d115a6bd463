import random
import unittest
from datetime import datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace

from rental_marketplace.errors import InvalidIntervalError, PricingUnavailableError, ValidationError
from rental_marketplace.models.statuses import PricingUnit
from rental_marketplace.services.pricing_service import (
    calculate_duration,
    calculate_gst,
    calculate_item_price,
    calculate_rental_price,
    generate_quotation,
    parse_timestamp,
    select_tier,
    to_money,
)

START = datetime(2026, 2, 1, 0, 0)


def make_variant(hourly=None, daily=None, weekly=None, monthly=None, variant_id=1, name="Drill"):
    return SimpleNamespace(
        VariantID=variant_id,
        PriceHourly=hourly,
        PriceDaily=daily,
        PriceWeekly=weekly,
        PriceMonthly=monthly,
        Product=SimpleNamespace(Name=name),
    )


FULL = make_variant(hourly=Decimal("50"), daily=Decimal("300"), weekly=Decimal("1500"), monthly=Decimal("5000"))


class DurationTests(unittest.TestCase):
    def test_duration_in_all_units(self):
        duration = calculate_duration(START, START + timedelta(days=1, hours=12))
        self.assertEqual(duration["milliseconds"], 36 * 60 * 60 * 1000)
        self.assertEqual(duration["hours"], 36)
        self.assertEqual(duration["days"], 1.5)

    def test_end_not_after_start_is_rejected(self):
        with self.assertRaises(InvalidIntervalError):
            calculate_duration(START, START)
        with self.assertRaises(InvalidIntervalError):
            calculate_duration(START, START - timedelta(hours=1))

    def test_unparseable_timestamp_is_rejected(self):
        with self.assertRaises(InvalidIntervalError) as ctx:
            calculate_duration("next tuesday", START)
        self.assertEqual(ctx.exception.context["field"], "start_date")
        self.assertIsInstance(ctx.exception, ValidationError)

    def test_offsets_are_normalized_to_utc(self):
        self.assertEqual(parse_timestamp("2026-02-01T05:30:00+05:30"), START)
        self.assertEqual(parse_timestamp("2026-02-01T00:00:00Z"), START)


class TierSelectionTests(unittest.TestCase):
    def assertTier(self, duration, unit, periods):
        tier = select_tier(FULL, duration / timedelta(hours=1))
        self.assertEqual(tier["unit"], unit)
        self.assertEqual(tier["periods"], periods)

    def test_boundaries(self):
        self.assertTier(timedelta(hours=23, minutes=59), PricingUnit.HOURLY, 24)
        self.assertTier(timedelta(hours=24), PricingUnit.DAILY, 1)
        self.assertTier(timedelta(days=6, hours=23), PricingUnit.DAILY, 7)
        self.assertTier(timedelta(days=7), PricingUnit.WEEKLY, 1)
        self.assertTier(timedelta(days=29, hours=23), PricingUnit.WEEKLY, 5)
        self.assertTier(timedelta(days=30), PricingUnit.MONTHLY, 1)
        self.assertTier(timedelta(days=45), PricingUnit.MONTHLY, 2)

    def test_unconfigured_tier_falls_through_to_next(self):
        daily_only = make_variant(daily=Decimal("300"))
        tier = select_tier(daily_only, 5)
        self.assertEqual(tier["unit"], PricingUnit.DAILY)
        self.assertEqual(tier["periods"], 1)

    def test_zero_rate_means_not_offered(self):
        variant = make_variant(hourly=Decimal("0"), daily=Decimal("120"))
        self.assertEqual(select_tier(variant, 3)["unit"], PricingUnit.DAILY)

    def test_missing_monthly_fallback_names_the_tier(self):
        daily_only = make_variant(daily=Decimal("300"))
        with self.assertRaises(PricingUnavailableError) as ctx:
            select_tier(daily_only, 10 * 24)
        self.assertEqual(ctx.exception.context["unit"], "MONTHLY")
        self.assertIn("monthly", ctx.exception.message)


class PriceTests(unittest.TestCase):
    def test_item_price_multiplies_periods_and_quantity(self):
        variant = make_variant(daily=Decimal("300"))
        pricing = calculate_item_price(variant, START, START + timedelta(days=4), 2)
        self.assertEqual(pricing["unit"], PricingUnit.DAILY)
        self.assertEqual(pricing["periods"], 4)
        self.assertEqual(pricing["price_per_unit"], Decimal("300.00"))
        self.assertEqual(pricing["base_price"], Decimal("1200.00"))
        self.assertEqual(pricing["total"], Decimal("2400.00"))

    def test_partial_period_rounds_up(self):
        variant = make_variant(daily=Decimal("99.99"))
        pricing = calculate_rental_price(variant, START, START + timedelta(days=2, hours=1))
        self.assertEqual(pricing["periods"], 3)
        self.assertEqual(pricing["base_price"], Decimal("299.97"))
        self.assertAlmostEqual(pricing["total_days"], 2 + 1 / 24)

    def test_quantity_must_be_positive(self):
        with self.assertRaises(ValidationError):
            calculate_item_price(FULL, START, START + timedelta(days=1), 0)

    def test_fractional_quantity_is_rejected(self):
        for quantity in (2.7, "1.5", "two", None):
            with self.assertRaises(ValidationError):
                calculate_item_price(FULL, START, START + timedelta(days=1), quantity)
        pricing = calculate_item_price(FULL, START, START + timedelta(days=1), "3")
        self.assertEqual(pricing["quantity"], 3)
        self.assertEqual(pricing["total"], Decimal("900.00"))


class GstTests(unittest.TestCase):
    def test_same_jurisdiction_splits_cgst_and_sgst(self):
        gst = calculate_gst(Decimal("2400"), " maharashtra ", "MAHARASHTRA")
        self.assertTrue(gst["is_same_jurisdiction"])
        self.assertEqual(gst["cgst"], Decimal("216.00"))
        self.assertEqual(gst["sgst"], Decimal("216.00"))
        self.assertEqual(gst["igst"], Decimal("0.00"))
        self.assertEqual(gst["total"], Decimal("432.00"))

    def test_different_jurisdiction_charges_igst(self):
        gst = calculate_gst(Decimal("2400"), "Maharashtra", "Karnataka")
        self.assertFalse(gst["is_same_jurisdiction"])
        self.assertEqual(gst["igst"], Decimal("432.00"))
        self.assertEqual(gst["cgst"] + gst["sgst"], Decimal("0.00"))

    def test_halves_are_rounded_independently(self):
        gst = calculate_gst(Decimal("100.05"), "KA", "ka")
        self.assertEqual(gst["cgst"], Decimal("9.00"))
        self.assertEqual(gst["sgst"], gst["cgst"])
        self.assertEqual(gst["total"], Decimal("18.00"))

    def test_both_branches_total_eighteen_percent(self):
        rng = random.Random(20260201)
        for _ in range(200):
            amount = Decimal(rng.randint(1, 10_000_000)) / 100
            expected = to_money(amount * Decimal("0.18"))
            same = calculate_gst(amount, "KA", "ka")
            other = calculate_gst(amount, "KA", "MH")
            self.assertEqual(same["cgst"], same["sgst"])
            self.assertEqual(same["cgst"], to_money(amount * Decimal("0.09")))
            self.assertLessEqual(abs(same["total"] - expected), Decimal("0.01"))
            self.assertEqual(other["igst"], expected)
            self.assertEqual(other["total"], expected)


class QuotationTests(unittest.TestCase):
    def test_quotation_totals(self):
        variant = make_variant(daily=Decimal("300"), name="Tent")
        quotation = generate_quotation(
            [{"variant": variant, "start_date": START, "end_date": START + timedelta(days=4), "quantity": 2}],
            "Maharashtra",
            "Karnataka",
        )
        self.assertEqual(quotation["subtotal"], Decimal("2400.00"))
        self.assertEqual(quotation["tax_breakdown"]["igst"], Decimal("432.00"))
        self.assertEqual(quotation["tax_breakdown"]["total_tax"], Decimal("432.00"))
        self.assertEqual(quotation["total_amount"], Decimal("2832.00"))
        line = quotation["line_items"][0]
        self.assertEqual(line["product_name"], "Tent")
        self.assertEqual(line["periods"], 4)
        self.assertEqual(line["line_total"], Decimal("2400.00"))

    def test_tax_is_computed_on_the_aggregate_subtotal(self):
        variant = make_variant(hourly=Decimal("0.25"))
        items = [
            {"variant": variant, "start_date": START, "end_date": START + timedelta(hours=1), "quantity": 1}
            for _ in range(2)
        ]
        quotation = generate_quotation(items, "KA", "MH")
        self.assertEqual(quotation["subtotal"], Decimal("0.50"))
        # Per-line rounding would give 0.05 + 0.05.
        self.assertEqual(quotation["tax_breakdown"]["total_tax"], Decimal("0.09"))

    def test_empty_quotation_is_rejected(self):
        with self.assertRaises(ValidationError):
            generate_quotation([], "KA", "KA")


if __name__ == "__main__":
    unittest.main()
