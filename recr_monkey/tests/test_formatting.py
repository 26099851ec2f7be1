import unittest
from datetime import date
from decimal import Decimal

from recr_monkey.formatting import format_currency, format_frequency, format_source, is_today
from recr_monkey.payments import PaymentSource


class FormatCurrencyTests(unittest.TestCase):
    def test_formats_common_currencies(self) -> None:
        self.assertEqual(format_currency(Decimal("100"), "USD"), "$100.00")
        self.assertEqual(format_currency(Decimal("50.5"), "EUR"), "€50.50")
        self.assertEqual(format_currency(Decimal("9.99"), "gbp"), "£9.99")

    def test_empty_currency_defaults_to_usd(self) -> None:
        self.assertEqual(format_currency(Decimal("25"), ""), "$25.00")

    def test_groups_thousands(self) -> None:
        self.assertEqual(format_currency(Decimal("1234567.89"), "USD"), "$1,234,567.89")

    def test_zero_decimal_currency(self) -> None:
        self.assertEqual(format_currency(Decimal("1500.4"), "JPY"), "¥1,500")

    def test_rounds_half_up(self) -> None:
        self.assertEqual(format_currency(Decimal("2.005"), "USD"), "$2.01")

    def test_negative_amounts(self) -> None:
        self.assertEqual(format_currency(Decimal("-12.5"), "USD"), "-$12.50")

    def test_unknown_currency_uses_code_prefix(self) -> None:
        self.assertEqual(format_currency("5", "XYZ"), "XYZ\u00a05.00")

    def test_code_style_symbols_use_non_breaking_space(self) -> None:
        self.assertEqual(format_currency(Decimal("1200"), "CHF"), "CHF\u00a01,200.00")


class FormatFrequencyTests(unittest.TestCase):
    def test_labels(self) -> None:
        self.assertEqual(format_frequency("weekly"), "Weekly")
        self.assertEqual(format_frequency("monthly"), "Monthly")
        self.assertEqual(format_frequency("every_4_weeks"), "Every 4 Weeks")
        self.assertEqual(format_frequency("4weeks"), "Every 4 Weeks")
        self.assertEqual(format_frequency("yearly"), "Yearly")

    def test_unknown_frequency(self) -> None:
        self.assertEqual(format_frequency("daily"), "Unknown")


class FormatSourceTests(unittest.TestCase):
    def test_masks_identifier(self) -> None:
        source = PaymentSource(id=1, name="Chase", type="credit_card", identifier="4242")

        self.assertEqual(format_source(source), "Chase (Credit Card •••• 4242)")

    def test_missing_source(self) -> None:
        self.assertEqual(format_source(None), "Unknown source")


class IsTodayTests(unittest.TestCase):
    def test_compares_against_given_day(self) -> None:
        self.assertTrue(is_today(date(2025, 6, 20), today=date(2025, 6, 20)))
        self.assertFalse(is_today(date(2025, 6, 21), today=date(2025, 6, 20)))

    def test_defaults_to_current_date(self) -> None:
        self.assertTrue(is_today(date.today()))


if __name__ == "__main__":
    unittest.main()
