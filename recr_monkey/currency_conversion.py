from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
import json
import logging
import threading
from typing import Callable, Mapping, Optional, Protocol
from http.client import HTTPException
from urllib.request import urlopen

logger = logging.getLogger(__name__)

BASE_CURRENCY = "USD"
RATE_TTL = timedelta(hours=24)
FAILED_REFRESH_RETRY = timedelta(minutes=5)

DEFAULT_RATES: dict[str, Decimal] = {
    "USD": Decimal("1"),
    "EUR": Decimal("0.92"),
    "GBP": Decimal("0.79"),
    "JPY": Decimal("147.50"),
    "CAD": Decimal("1.34"),
    "AUD": Decimal("1.52"),
    "NZD": Decimal("1.64"),
    "CHF": Decimal("0.88"),
    "SEK": Decimal("10.45"),
    "INR": Decimal("83.20"),
}


class RateProviderUnavailable(RuntimeError):
    """Raised when a rate fetcher cannot fetch live rates."""


class RateFetcher(Protocol):
    def fetch_rates(self) -> Mapping[str, Decimal]:
        ...


@dataclass(frozen=True)
class RateSnapshot:
    """Exchange rates as units of each currency per 1 USD."""

    rates: Mapping[str, Decimal]
    fetched_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def get_rate(self, currency: str) -> Optional[Decimal]:
        code = currency.strip().upper()
        if code == BASE_CURRENCY:
            return Decimal("1")
        return self.rates.get(code)


@dataclass(frozen=True)
class StaticRateFetcher:
    """Deterministic, in-memory FX rates."""

    rates: Mapping[str, Decimal] | None = None

    def __post_init__(self) -> None:
        rates = DEFAULT_RATES if self.rates is None else self.rates
        object.__setattr__(self, "rates", dict(rates))

    def fetch_rates(self) -> Mapping[str, Decimal]:
        return dict(self.rates)


@dataclass(frozen=True)
class FrankfurterRateFetcher:
    base_currency: str = BASE_CURRENCY
    base_url: str = "https://api.frankfurter.app"
    timeout_seconds: int = 8

    def fetch_rates(self) -> Mapping[str, Decimal]:
        base_currency = normalize_currency(self.base_currency)
        url = f"{self.base_url}/latest?from={base_currency}"
        try:
            with urlopen(url, timeout=self.timeout_seconds) as response:
                payload = json.load(response)
        except (OSError, HTTPException, ValueError) as exc:
            raise RateProviderUnavailable("Frankfurter API unavailable") from exc

        rates = payload.get("rates") if isinstance(payload, dict) else None
        if not isinstance(rates, dict):
            raise RateProviderUnavailable("Frankfurter response missing rates")

        try:
            parsed = {
                normalize_currency(code): Decimal(str(value)) for code, value in rates.items()
            }
        except (ValueError, ArithmeticError) as exc:
            raise RateProviderUnavailable("Frankfurter response has malformed rates") from exc
        parsed[base_currency] = Decimal("1")
        return parsed


class RateCache:
    """Read-through cache of the process-wide rate snapshot.

    Refreshes run under a lock. A caller that waited while another thread
    refreshed reuses that snapshot instead of fetching again. Snapshots are
    immutable and replaced by reference.
    """

    def __init__(
        self,
        fetcher: RateFetcher,
        clock: Callable[[], datetime] = None,
        ttl: timedelta = RATE_TTL,
        fallback_rates: Mapping[str, Decimal] | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._clock = clock or _utcnow
        self._ttl = ttl
        self._fallback_rates = dict(fallback_rates or DEFAULT_RATES)
        self._snapshot: RateSnapshot | None = None
        self._lock = threading.Lock()

    @property
    def snapshot(self) -> RateSnapshot | None:
        return self._snapshot

    def get(self) -> RateSnapshot:
        snapshot = self._snapshot
        if snapshot is not None and not snapshot.is_expired(self._clock()):
            return snapshot
        return self._refresh(seen=snapshot, force=False)

    def refresh(self) -> RateSnapshot:
        return self._refresh(seen=self._snapshot, force=True)

    def _refresh(self, seen: RateSnapshot | None, force: bool) -> RateSnapshot:
        with self._lock:
            current = self._snapshot
            if current is not seen and current is not None:
                return current
            now = self._clock()
            if not force and current is not None and not current.is_expired(now):
                return current
            try:
                rates = self._fetcher.fetch_rates()
                snapshot = RateSnapshot(
                    rates={
                        code.strip().upper(): _coerce_amount(value) for code, value in rates.items()
                    },
                    fetched_at=now,
                    expires_at=now + self._ttl,
                )
            except RateProviderUnavailable as exc:
                logger.warning("Exchange rate refresh failed, keeping previous rates: %s", exc)
                self._snapshot = self._retry_snapshot(current, now)
                return self._snapshot
            except Exception:
                logger.warning(
                    "Unexpected error refreshing exchange rates, keeping previous rates",
                    exc_info=True,
                )
                self._snapshot = self._retry_snapshot(current, now)
                return self._snapshot

            self._snapshot = snapshot
            logger.info("Loaded %d exchange rates, valid until %s", len(snapshot.rates), snapshot.expires_at)
            return snapshot

    def _retry_snapshot(self, current: RateSnapshot | None, now: datetime) -> RateSnapshot:
        retry_at = now + FAILED_REFRESH_RETRY
        if current is not None:
            return replace(current, expires_at=retry_at)
        return RateSnapshot(rates=dict(self._fallback_rates), fetched_at=now, expires_at=retry_at)


class CurrencyNormalizer:
    """Convert amounts between currencies through a USD pivot.

    Missing rates never raise: the amount is returned unconverted and a
    warning is logged.
    """

    def __init__(self, cache: RateCache) -> None:
        self.cache = cache

    def to_usd(self, amount: Decimal | int | float | str, currency: str) -> Decimal:
        return self.convert(amount, currency, BASE_CURRENCY)

    def convert(
        self,
        amount: Decimal | int | float | str,
        source_currency: str,
        target_currency: str,
    ) -> Decimal:
        coerced_amount = _coerce_amount(amount)
        source = (source_currency or "").strip().upper()
        target = (target_currency or "").strip().upper()
        if source == target:
            return coerced_amount

        snapshot = self.cache.get()
        source_rate = snapshot.get_rate(source)
        target_rate = snapshot.get_rate(target)
        if source_rate is None or target_rate is None:
            missing = source if source_rate is None else target
            logger.warning("No exchange rate for %r, leaving amount unconverted", missing)
            return coerced_amount
        if source_rate == 0:
            logger.warning("Zero exchange rate for %r, leaving amount unconverted", source)
            return coerced_amount

        amount_in_usd = coerced_amount / source_rate
        return amount_in_usd * target_rate


def normalize_currency(value: str) -> str:
    normalized = value.strip().upper()
    if len(normalized) != 3 or not normalized.isalpha():
        raise ValueError("Currency must be a 3-letter ISO 4217 code.")
    return normalized


def _coerce_amount(amount: Decimal | int | float | str) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)
