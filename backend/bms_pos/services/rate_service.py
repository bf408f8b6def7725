# Overview: Exchange-rate providers (Bs per USD) injected into the app; settlement only reads current().

"""
Rate provider contract

- current(): rate to freeze onto a new sale. Last successful fetch, or
  fallback() when no fetch has ever succeeded.
- fallback(): constant used until the first success.
- start()/stop(): lifecycle of the background refresh (no-op for static).

A failed refresh keeps the last known good rate.
"""

from __future__ import annotations

import logging
import re
import threading
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional

import httpx
from flask import current_app

from bms_pos.money import to_rate

logger = logging.getLogger(__name__)

# <div id="dolar"> ... <strong> 45,50 </strong>
_BCV_DOLLAR_RE = re.compile(
    r'id="dolar".*?<strong>\s*([\d.,]+)\s*</strong>',
    re.IGNORECASE | re.DOTALL,
)


class RateUnavailableError(Exception):
    """The upstream source did not yield a usable rate."""


def parse_local_decimal(text: str) -> Decimal:
    """'1.234,56' / '45,50' -> Decimal('1234.56') / Decimal('45.50')."""
    clean = text.strip().replace(".", "").replace(",", ".")
    try:
        value = Decimal(clean)
    except InvalidOperation:
        raise RateUnavailableError(f"not a number: {text!r}")
    if value <= 0:
        raise RateUnavailableError(f"rate must be positive: {text!r}")
    return value


def fetch_bcv_rate(url: str, *, timeout: float = 15.0) -> Decimal:
    """Scrape the official USD rate from the central bank home page."""
    try:
        # The BCV site is known to serve an incomplete certificate chain.
        response = httpx.get(url, timeout=timeout, verify=False, follow_redirects=True)
        response.raise_for_status()
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        raise RateUnavailableError(f"request failed: {exc}") from exc

    match = _BCV_DOLLAR_RE.search(response.text)
    if not match:
        raise RateUnavailableError("dollar rate element not found")
    return parse_local_decimal(match.group(1))


class RateProvider:
    def current(self) -> Decimal:
        raise NotImplementedError

    def fallback(self) -> Decimal:
        raise NotImplementedError

    def start(self) -> None:
        pass

    def stop(self) -> None:
        pass

    @property
    def has_live_rate(self) -> bool:
        return False


class StaticRateProvider(RateProvider):
    """Fixed rate; used in tests and when refresh is disabled."""

    def __init__(self, rate, fallback_rate=None):
        self._rate = to_rate(rate)
        self._fallback = to_rate(fallback_rate) if fallback_rate is not None else self._rate

    def current(self) -> Decimal:
        return self._rate

    def fallback(self) -> Decimal:
        return self._fallback


class RefreshingRateProvider(RateProvider):
    """Polls a fetcher on a daemon timer and remembers the last good rate."""

    def __init__(
        self,
        fetcher: Callable[[], Decimal],
        *,
        fallback_rate,
        interval_seconds: float = 3600,
    ):
        self._fetcher = fetcher
        self._fallback = to_rate(fallback_rate)
        self._interval = interval_seconds
        self._rate: Optional[Decimal] = None
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._stopped = threading.Event()

    def current(self) -> Decimal:
        with self._lock:
            return self._rate if self._rate is not None else self._fallback

    def fallback(self) -> Decimal:
        return self._fallback

    @property
    def has_live_rate(self) -> bool:
        with self._lock:
            return self._rate is not None

    def refresh(self) -> Decimal:
        """Fetch once. Failures keep the previous value."""
        try:
            rate = to_rate(self._fetcher())
            if rate <= 0:
                raise RateUnavailableError(f"rate must be positive: {rate}")
        except (RateUnavailableError, ValueError) as exc:
            logger.warning("Exchange rate refresh failed, keeping %s: %s", self.current(), exc)
            return self.current()

        with self._lock:
            self._rate = rate
        logger.info("Exchange rate updated: %s Bs/USD", rate)
        return rate

    def start(self) -> None:
        """First fetch runs right away on the timer thread, then every interval."""
        self._stopped.clear()
        self._schedule(delay=0)

    def stop(self) -> None:
        self._stopped.set()
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _schedule(self, delay: float | None = None) -> None:
        if self._stopped.is_set():
            return
        self._timer = threading.Timer(self._interval if delay is None else delay, self._tick)
        self._timer.daemon = True
        self._timer.start()

    def _tick(self) -> None:
        try:
            self.refresh()
        except Exception:
            logger.exception("Unexpected error refreshing exchange rate, keeping %s", self.current())
        finally:
            self._schedule()


def build_rate_provider(config) -> RateProvider:
    """Provider for a Flask config mapping."""
    fallback_rate = config["FALLBACK_EXCHANGE_RATE"]
    if not config.get("EXCHANGE_RATE_REFRESH_ENABLED", True):
        return StaticRateProvider(fallback_rate)

    url = config["EXCHANGE_RATE_SOURCE_URL"]
    return RefreshingRateProvider(
        lambda: fetch_bcv_rate(url),
        fallback_rate=fallback_rate,
        interval_seconds=config["EXCHANGE_RATE_REFRESH_SECONDS"],
    )


def get_rate_provider() -> RateProvider:
    return current_app.extensions["rate_provider"]
