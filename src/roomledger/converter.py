"""Currency conversion with cached live rates and a static fallback table.

Rates are pivoted through USD: a table maps each currency to units per one
USD, so ``rate(a, b) = table[b] / table[a]``. Live rates are fetched in the
background; callers always get an answer immediately from the freshest data
on hand, falling back to ``STATIC_USD_RATES`` when no live data exists.
"""

import logging
import threading
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from functools import partial
from typing import Protocol, TypeVar

import httpx
from pydantic import BaseModel

from .clients.exchange_rates import ExchangeRateClient
from .config import Settings
from .currencies import PIVOT_CURRENCY, STATIC_USD_RATES, Currency, parse_currency
from .exceptions import ConversionDegraded, ExchangeRateAPIError

logger = logging.getLogger(__name__)

ClientFactory = Callable[[], ExchangeRateClient]

RecordT = TypeVar("RecordT", bound=BaseModel)


class PricedRecord(Protocol):
    """Any ledger record carrying an amount and an optional locked rate."""

    amount: Decimal
    currency: Currency
    locked_exchange_rate: Decimal | None


@dataclass(frozen=True)
class RateSnapshot:
    """Live USD-pivot rates and when they were fetched."""

    rates: dict[Currency, Decimal]
    fetched_at: datetime


class CurrencyConverter:
    """Converts amounts between currencies. Never raises on fetch errors."""

    def __init__(
        self,
        client_factory: ClientFactory | None = None,
        cache_ttl: timedelta = timedelta(hours=1),
        retry_after: timedelta = timedelta(minutes=1),
        static_rates: dict[Currency, Decimal] | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize the converter.

        Args:
            client_factory: Builds a rate client per fetch; None disables live rates
            cache_ttl: How long live rates are considered fresh
            retry_after: Minimum wait before retrying after a failed fetch
            static_rates: Fallback USD-pivot table (defaults to STATIC_USD_RATES)
            clock: Time source, injectable for tests
        """
        self.client_factory = client_factory
        self.cache_ttl = cache_ttl
        self.retry_after = retry_after
        self.static_rates = dict(static_rates or STATIC_USD_RATES)
        self.clock = clock

        self._live: RateSnapshot | None = None
        self._lock = threading.Lock()
        self._executor: ThreadPoolExecutor | None = None
        self._pending: Future | None = None
        self._last_failure: datetime | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "CurrencyConverter":
        """Build a converter wired to the configured rate source."""
        factory: ClientFactory | None = None
        if settings.live_rates_enabled:
            factory = partial(
                ExchangeRateClient,
                base_url=settings.exchange_rate_api_url,
                timeout=settings.rate_fetch_timeout,
            )

        return cls(
            client_factory=factory,
            cache_ttl=timedelta(seconds=settings.rate_cache_ttl_seconds),
        )

    def close(self):
        """Stop the background refresh worker."""
        if self._executor is not None:
            self._executor.shutdown(wait=True, cancel_futures=True)
            self._executor = None

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()

    # ========================================================================
    # Rates
    # ========================================================================

    def rate(
        self, from_currency: Currency | str, to_currency: Currency | str
    ) -> Decimal:
        """
        Get the factor converting one unit of ``from_currency`` to ``to_currency``.

        Uses fresh live rates when cached, otherwise schedules a background
        refresh and answers from stale live rates or the static table.
        """
        src = parse_currency(from_currency)
        dst = parse_currency(to_currency)
        if src == dst:
            return Decimal(1)

        snapshot = self._live
        if snapshot is None or self._is_stale(snapshot):
            self._schedule_refresh()

        if snapshot is not None and src in snapshot.rates and dst in snapshot.rates:
            return snapshot.rates[dst] / snapshot.rates[src]

        return self.static_rate(src, dst)

    def static_rate(self, src: Currency, dst: Currency) -> Decimal:
        """Rate from the built-in table only."""
        if src == dst:
            return Decimal(1)
        return self.static_rates[dst] / self.static_rates[src]

    def convert(
        self,
        amount: Decimal,
        from_currency: Currency | str,
        to_currency: Currency | str,
    ) -> Decimal:
        """Convert an amount. The result is not rounded."""
        return amount * self.rate(from_currency, to_currency)

    def convert_many(
        self,
        amounts: Iterable[tuple[Decimal, Currency | str]],
        to_currency: Currency | str,
    ) -> Decimal:
        """Sum amounts held in mixed currencies, expressed in ``to_currency``."""
        total = Decimal("0")
        for amount, currency in amounts:
            total += self.convert(amount, currency, to_currency)
        return total

    # ========================================================================
    # Locked rates
    # ========================================================================

    def effective_rate(self, record: PricedRecord) -> Decimal:
        """
        Units of the record's currency per one USD.

        A locked rate wins unconditionally; otherwise the current rate is used.
        """
        if record.locked_exchange_rate is not None:
            return record.locked_exchange_rate
        return self.rate(PIVOT_CURRENCY, record.currency)

    def convert_record(
        self, record: PricedRecord, to_currency: Currency | str
    ) -> Decimal:
        """Convert a record's amount, honoring its locked rate."""
        dst = parse_currency(to_currency)
        if dst == record.currency:
            return record.amount

        usd_amount = record.amount / self.effective_rate(record)
        return usd_amount * self.rate(PIVOT_CURRENCY, dst)

    def lock_rate(self, record: RecordT) -> RecordT:
        """Return a copy with the current USD rate captured. Existing locks are kept."""
        if record.locked_exchange_rate is not None:
            return record
        return record.model_copy(
            update={"locked_exchange_rate": self.rate(PIVOT_CURRENCY, record.currency)}
        )

    # ========================================================================
    # Live refresh
    # ========================================================================

    @property
    def live_rates(self) -> RateSnapshot | None:
        return self._live

    def refresh(self) -> bool:
        """
        Fetch live rates now, blocking until done.

        Returns:
            True if live rates were stored, False if the fetch degraded
        """
        factory = self.client_factory
        if factory is None:
            return False

        try:
            rates = self._fetch_live_rates(factory)
        except ConversionDegraded as e:
            logger.warning(f"Exchange rate fetch failed, using static rates: {e}")
            self._degrade()
            return False
        except Exception:
            logger.exception("Unexpected error fetching exchange rates")
            self._degrade()
            return False

        self._live = RateSnapshot(rates=rates, fetched_at=self.clock())
        self._last_failure = None
        logger.info(f"Refreshed {len(rates)} live exchange rates")
        return True

    def wait_for_refresh(self, timeout: float | None = None):
        """Block until any scheduled background refresh has finished."""
        pending = self._pending
        if pending is not None:
            pending.result(timeout=timeout)

    def _is_stale(self, snapshot: RateSnapshot) -> bool:
        return self.clock() - snapshot.fetched_at >= self.cache_ttl

    def _degrade(self):
        self._last_failure = self.clock()
        snapshot = self._live
        if snapshot is not None and self._is_stale(snapshot):
            self._live = None

    def _schedule_refresh(self):
        if self.client_factory is None:
            return
        last_failure = self._last_failure
        if last_failure is not None and self.clock() - last_failure < self.retry_after:
            return
        with self._lock:
            if self._pending is not None and not self._pending.done():
                return
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=1, thread_name_prefix="fx-refresh"
                )
            self._pending = self._executor.submit(self.refresh)

    def _fetch_live_rates(self, factory: ClientFactory) -> dict[Currency, Decimal]:
        try:
            with factory() as client:
                raw = client.get_latest_rates(PIVOT_CURRENCY.value)
        except (httpx.HTTPError, ExchangeRateAPIError, ValueError) as e:
            raise ConversionDegraded(str(e)) from e

        rates: dict[Currency, Decimal] = {}
        for code, value in raw.items():
            if code in Currency.__members__:
                rates[Currency(code)] = value
        rates[PIVOT_CURRENCY] = Decimal(1)
        return rates
