import io
import json
import threading
import unittest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from http.client import IncompleteRead
from unittest.mock import MagicMock, patch
from urllib.error import URLError

from recr_monkey.currency_conversion import (
    DEFAULT_RATES,
    CurrencyNormalizer,
    FrankfurterRateFetcher,
    RateCache,
    RateProviderUnavailable,
    StaticRateFetcher,
    normalize_currency,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class CountingFetcher:
    def __init__(self, rates) -> None:
        self.rates = rates
        self.calls = 0
        self.fail = False

    def fetch_rates(self):
        self.calls += 1
        if self.fail:
            raise RateProviderUnavailable("Down")
        return dict(self.rates)


class CurrencyNormalizerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.normalizer = CurrencyNormalizer(
            RateCache(
                StaticRateFetcher(
                    rates={
                        "USD": Decimal("1"),
                        "EUR": Decimal("2"),
                        "JPY": Decimal("4"),
                    }
                ),
                clock=self.clock,
            )
        )

    def test_same_currency_returns_original_amount(self) -> None:
        for code in ("USD", "EUR", "GBP", "XYZ"):
            self.assertEqual(self.normalizer.convert(Decimal("12.50"), code, code), Decimal("12.50"))

    def test_to_usd_is_identity_for_usd(self) -> None:
        for amount in (Decimal("0"), Decimal("1"), Decimal("99.99"), Decimal("1234567.89")):
            self.assertEqual(self.normalizer.to_usd(amount, "USD"), amount)

    def test_to_usd_divides_by_rate(self) -> None:
        self.assertEqual(self.normalizer.to_usd(Decimal("10"), "EUR"), Decimal("5"))

    def test_conversion_pivots_through_usd(self) -> None:
        self.assertEqual(self.normalizer.convert(Decimal("10"), "EUR", "JPY"), Decimal("20"))

    def test_normalizes_currency_codes(self) -> None:
        self.assertEqual(self.normalizer.convert(Decimal("6"), " eur ", "jpy"), Decimal("12"))

    def test_round_trip_returns_original_amount(self) -> None:
        normalizer = CurrencyNormalizer(RateCache(StaticRateFetcher(), clock=self.clock))
        amount = Decimal("123.45")

        euros = normalizer.convert(amount, "USD", "EUR")
        back = normalizer.convert(euros, "EUR", "USD")

        self.assertAlmostEqual(back, amount, places=10)

    def test_missing_rate_returns_amount_unconverted(self) -> None:
        with self.assertLogs("recr_monkey.currency_conversion", level="WARNING"):
            amount = self.normalizer.convert(Decimal("5"), "USD", "CAD")

        self.assertEqual(amount, Decimal("5"))

    def test_missing_rate_to_usd_is_fail_soft(self) -> None:
        with self.assertLogs("recr_monkey.currency_conversion", level="WARNING"):
            amount = self.normalizer.to_usd(Decimal("7.25"), "XYZ")

        self.assertEqual(amount, Decimal("7.25"))

    def test_accepts_non_decimal_amounts(self) -> None:
        self.assertEqual(self.normalizer.to_usd(10, "EUR"), Decimal("5"))
        self.assertEqual(self.normalizer.to_usd("10", "EUR"), Decimal("5"))


class RateCacheTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.fetcher = CountingFetcher({"USD": Decimal("1"), "EUR": Decimal("0.9")})
        self.cache = RateCache(self.fetcher, clock=self.clock)

    def test_fetches_once_within_ttl(self) -> None:
        first = self.cache.get()
        self.clock.advance(hours=23, minutes=59)
        second = self.cache.get()

        self.assertIs(first, second)
        self.assertIs(self.cache.snapshot, first)
        self.assertEqual(self.fetcher.calls, 1)
        self.assertEqual(first.expires_at, first.fetched_at + timedelta(hours=24))

    def test_refetches_after_expiry(self) -> None:
        self.cache.get()
        self.fetcher.rates = {"USD": Decimal("1"), "EUR": Decimal("0.95")}
        self.clock.advance(hours=24)

        snapshot = self.cache.get()

        self.assertEqual(self.fetcher.calls, 2)
        self.assertEqual(snapshot.get_rate("EUR"), Decimal("0.95"))

    def test_refresh_forces_fetch(self) -> None:
        self.cache.get()
        self.cache.refresh()

        self.assertEqual(self.fetcher.calls, 2)

    def test_failed_first_fetch_falls_back_to_default_rates(self) -> None:
        self.fetcher.fail = True

        with self.assertLogs("recr_monkey.currency_conversion", level="WARNING"):
            snapshot = self.cache.get()

        self.assertEqual(snapshot.get_rate("EUR"), DEFAULT_RATES["EUR"])

    def test_failed_refresh_keeps_previous_rates(self) -> None:
        self.cache.get()
        self.fetcher.fail = True
        self.clock.advance(hours=25)

        with self.assertLogs("recr_monkey.currency_conversion", level="WARNING"):
            snapshot = self.cache.get()

        self.assertEqual(snapshot.get_rate("EUR"), Decimal("0.9"))
        self.cache.get()
        self.assertEqual(self.fetcher.calls, 2)

    def test_unexpected_fetch_error_falls_back_to_default_rates(self) -> None:
        class ResetFetcher:
            def fetch_rates(self):
                raise ConnectionResetError("peer reset while reading body")

        normalizer = CurrencyNormalizer(RateCache(ResetFetcher(), clock=self.clock))

        with self.assertLogs("recr_monkey.currency_conversion", level="WARNING"):
            amount = normalizer.to_usd(Decimal("92"), "EUR")

        self.assertEqual(amount, Decimal("100"))

    def test_unexpected_refresh_error_keeps_previous_rates(self) -> None:
        self.cache.get()
        self.fetcher.rates = {"USD": Decimal("1"), "EUR": "not-a-number"}
        self.clock.advance(hours=24)

        with self.assertLogs("recr_monkey.currency_conversion", level="WARNING"):
            snapshot = self.cache.get()

        self.assertEqual(snapshot.get_rate("EUR"), Decimal("0.9"))
        self.assertEqual(snapshot.expires_at, self.clock.now + timedelta(minutes=5))

    def test_concurrent_callers_share_one_fetch(self) -> None:
        started = threading.Event()
        release = threading.Event()
        fetcher = self.fetcher

        class BlockingFetcher:
            def fetch_rates(self):
                started.set()
                release.wait(timeout=5)
                return fetcher.fetch_rates()

        cache = RateCache(BlockingFetcher(), clock=self.clock)
        results = []
        threads = [threading.Thread(target=lambda: results.append(cache.get())) for _ in range(5)]

        threads[0].start()
        self.assertTrue(started.wait(timeout=5))
        for thread in threads[1:]:
            thread.start()
        release.set()
        for thread in threads:
            thread.join(timeout=5)

        self.assertEqual(fetcher.calls, 1)
        self.assertEqual(len(results), 5)
        self.assertTrue(all(result is results[0] for result in results))


class FrankfurterRateFetcherTests(unittest.TestCase):
    def test_parses_rates_and_adds_base(self) -> None:
        body = json.dumps({"base": "USD", "rates": {"eur": 0.91, "GBP": 0.78}}).encode("utf-8")

        with patch(
            "recr_monkey.currency_conversion.urlopen", return_value=io.BytesIO(body)
        ) as mocked:
            rates = FrankfurterRateFetcher().fetch_rates()

        self.assertIn("latest?from=USD", mocked.call_args[0][0])
        self.assertEqual(rates["EUR"], Decimal("0.91"))
        self.assertEqual(rates["GBP"], Decimal("0.78"))
        self.assertEqual(rates["USD"], Decimal("1"))

    def test_network_error_raises_unavailable(self) -> None:
        with patch(
            "recr_monkey.currency_conversion.urlopen", side_effect=URLError("offline")
        ):
            with self.assertRaises(RateProviderUnavailable):
                FrankfurterRateFetcher().fetch_rates()

    def test_connection_reset_raises_unavailable(self) -> None:
        with patch(
            "recr_monkey.currency_conversion.urlopen",
            side_effect=ConnectionResetError("peer reset"),
        ):
            with self.assertRaises(RateProviderUnavailable):
                FrankfurterRateFetcher().fetch_rates()

    def test_incomplete_body_raises_unavailable(self) -> None:
        response = MagicMock()
        response.__enter__.return_value.read.side_effect = IncompleteRead(b"{\"ra")

        with patch("recr_monkey.currency_conversion.urlopen", return_value=response):
            with self.assertRaises(RateProviderUnavailable):
                FrankfurterRateFetcher().fetch_rates()

    def test_non_object_payload_raises_unavailable(self) -> None:
        with patch("recr_monkey.currency_conversion.urlopen", return_value=io.BytesIO(b"[1, 2]")):
            with self.assertRaises(RateProviderUnavailable):
                FrankfurterRateFetcher().fetch_rates()

    def test_malformed_currency_code_raises_unavailable(self) -> None:
        body = json.dumps({"rates": {"EURO": 0.9}}).encode("utf-8")

        with patch("recr_monkey.currency_conversion.urlopen", return_value=io.BytesIO(body)):
            with self.assertRaises(RateProviderUnavailable):
                FrankfurterRateFetcher().fetch_rates()

    def test_missing_rates_raises_unavailable(self) -> None:
        body = json.dumps({"message": "not found"}).encode("utf-8")

        with patch("recr_monkey.currency_conversion.urlopen", return_value=io.BytesIO(body)):
            with self.assertRaises(RateProviderUnavailable):
                FrankfurterRateFetcher().fetch_rates()


class StaticRateFetcherTests(unittest.TestCase):
    def test_defaults_to_builtin_table(self) -> None:
        self.assertEqual(StaticRateFetcher().fetch_rates(), DEFAULT_RATES)

    def test_explicit_empty_table_is_kept(self) -> None:
        self.assertEqual(StaticRateFetcher(rates={}).fetch_rates(), {})


class NormalizeCurrencyTests(unittest.TestCase):
    def test_strips_and_uppercases(self) -> None:
        self.assertEqual(normalize_currency(" eur "), "EUR")

    def test_rejects_invalid_codes(self) -> None:
        for value in ("", "EU", "EURO", "12A"):
            with self.assertRaises(ValueError):
                normalize_currency(value)


if __name__ == "__main__":
    unittest.main()
