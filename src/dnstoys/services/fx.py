"""Currency conversion backed by a periodically refreshed rate table.

Brief:
  A daemon thread fetches the rate table every ``refresh_interval`` seconds
  and swaps the service's snapshot reference on success. Failed refreshes are
  logged and the previous snapshot keeps serving. Conversions are computed
  with Decimal and rounded half-even to two decimal places.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation, localcontext
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional

import requests

from ..config.config_schema import FxConfig
from ..errors import FormatError, UpstreamError
from ..query import Query, parse_fx
from .base import Answer, Service

logger = logging.getLogger(__name__)

RESULT_PLACES = Decimal("0.01")
# Guard digits on top of the operands when dividing by a rate.
GUARD_DIGITS = 28


def _width(value: Decimal) -> int:
    """Digits needed to hold value exactly, counting leading or trailing zeros."""

    _, digits, exponent = value.as_tuple()
    return len(digits) + abs(exponent)  # type: ignore[arg-type]


def format_amount(amount: Decimal) -> str:
    """Brief: Render an input amount without changing its value.

    Inputs:
      - amount: Decimal from the query.

    Outputs:
      - str: At least two decimal places; extra places are kept as typed.

    Example:
      >>> format_amount(Decimal("25")), format_amount(Decimal("1.005"))
      ('25.00', '1.005')
    """

    if amount.as_tuple().exponent < -2:  # type: ignore[operator]
        return str(amount)
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, _width(amount) + 2)
        return str(amount.quantize(RESULT_PLACES))


@dataclass(frozen=True)
class ExchangeRateTable:
    """Brief: Immutable snapshot of exchange rates.

    Inputs (fields):
      - base: Base currency code; its rate is 1.
      - rates: Read-only mapping of currency code to rate against base.
      - refreshed_at: Epoch seconds when this snapshot was fetched.
      - rates_date: UTC date the upstream published the rates (YYYY-MM-DD).
    """

    base: str
    rates: Mapping[str, Decimal]
    refreshed_at: float
    rates_date: str

    @classmethod
    def from_payload(cls, payload: Any, refreshed_at: float) -> "ExchangeRateTable":
        """Brief: Validate an upstream JSON payload into a table.

        Inputs:
          - payload: Decoded JSON ``{"base": "USD", "rates": {...},
            "timestamp": <epoch>}``.
          - refreshed_at: Local fetch time (epoch seconds).

        Outputs:
          - ExchangeRateTable.

        Raises:
          - UpstreamError: When the payload is not a usable rate table.
        """

        if not isinstance(payload, dict) or not isinstance(payload.get("rates"), dict):
            raise UpstreamError("fx: payload has no rates mapping")

        rates = {}
        for code, raw in payload["rates"].items():
            code = str(code).upper()
            if len(code) != 3 or not code.isalpha():
                continue
            try:
                rate = Decimal(str(raw))
            except InvalidOperation:
                continue
            if rate.is_finite() and rate > 0:
                rates[code] = rate
        if not rates:
            raise UpstreamError("fx: payload contains no valid rates")

        base = str(payload.get("base") or "USD").upper()
        rates.setdefault(base, Decimal(1))

        stamp = payload.get("timestamp")
        try:
            published = float(stamp) if stamp is not None else refreshed_at
        except (TypeError, ValueError):
            published = refreshed_at
        rates_date = datetime.fromtimestamp(published, tz=timezone.utc).strftime("%Y-%m-%d")

        return cls(
            base=base,
            rates=MappingProxyType(rates),
            refreshed_at=refreshed_at,
            rates_date=rates_date,
        )

    def convert(self, amount: Decimal, source: str, target: str) -> Decimal:
        """Brief: Convert amount from source to target currency.

        Outputs:
          - Decimal rounded half-even to two decimal places.

        Raises:
          - FormatError: When either code is not in the table.
        """

        for code in (source, target):
            if code not in self.rates:
                raise FormatError(f"unknown currency {code}")
        with localcontext() as ctx:
            source_rate, target_rate = self.rates[source], self.rates[target]
            ctx.prec = _width(amount) + _width(source_rate) + _width(target_rate) + GUARD_DIGITS
            value = amount * target_rate / source_rate
            return value.quantize(RESULT_PLACES, rounding=ROUND_HALF_EVEN)


class FXService(Service):
    """Brief: Answer ``<amount><FROM>-<TO>.fx`` queries.

    Inputs:
      - config: FxConfig with api_key, refresh_interval, api_url and timeout.
      - session: Optional requests.Session-like object (``get`` method).
      - clock: Epoch clock; injectable for tests.
      - start: Start the background refresh thread immediately.

    Behaviour:
      - FROM == TO returns the amount unchanged whatever the table holds.
      - Before the first successful refresh, other conversions raise
        UpstreamError.
      - Records read ``"<amount> <FROM> = <result> <TO>" "<rates date>"``.
      - TTL is the time left until the next scheduled refresh.

    Example YAML:

        fx:
          enabled: true
          api_key: "..."
          refresh_interval: 6h
    """

    zone = "fx"
    description = "convert currency rates (25USD-EUR.fx, 99.5JPY-INR.fx)"
    example = "dig 25USD-EUR.fx @{domain}"

    def __init__(
        self,
        config: FxConfig,
        *,
        session: Optional[Any] = None,
        clock: Callable[[], float] = time.time,
        start: bool = True,
    ) -> None:
        self._api_url = config.api_url
        self._api_key = str(config.api_key or "")
        self._interval = float(config.refresh_interval or 3600.0)
        self._timeout = float(config.timeout)
        self._session = session if session is not None else requests.Session()
        self._clock = clock

        self._table: Optional[ExchangeRateTable] = None
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        if start:
            self.start()

    @property
    def table(self) -> Optional[ExchangeRateTable]:
        return self._table

    def start(self) -> None:
        """Brief: Start the background refresh thread (idempotent)."""

        if self._thread is not None:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._refresh_loop, name="FxRefresh", daemon=True
        )
        self._thread.start()

    def _refresh_loop(self) -> None:
        self.refresh()
        while not self._stop_event.wait(self._interval):
            self.refresh()

    def refresh(self) -> bool:
        """Brief: Fetch the rate table once and swap it in on success.

        Outputs:
          - bool: True when a new snapshot was installed.
        """

        try:
            table = self._fetch_table()
        except UpstreamError as exc:
            logger.warning("fx: error refreshing rates, keeping previous snapshot: %s", exc)
            return False

        self._table = table
        logger.info("fx: loaded %d rates (base %s, %s)", len(table.rates), table.base, table.rates_date)
        return True

    def _fetch_table(self) -> ExchangeRateTable:
        try:
            resp = self._session.get(
                self._api_url,
                params={"app_id": self._api_key},
                timeout=self._timeout,
            )
            resp.raise_for_status()
            payload = resp.json()
        except requests.RequestException as exc:
            raise UpstreamError(f"fx: request failed: {exc}") from exc
        except ValueError as exc:
            raise UpstreamError(f"fx: invalid JSON: {exc}") from exc
        return ExchangeRateTable.from_payload(payload, refreshed_at=self._clock())

    def _ttl_for(self, table: Optional[ExchangeRateTable]) -> float:
        if table is None:
            return self._interval
        return max(1.0, table.refreshed_at + self._interval - self._clock())

    def handle(self, query: Query) -> Answer:
        fxq = parse_fx(query.labels)
        # Read the snapshot reference once so the whole answer uses one table.
        table = self._table
        amount = format_amount(fxq.amount)

        if fxq.source == fxq.target:
            row = [f"{amount} {fxq.source} = {amount} {fxq.target}"]
            if table is not None:
                row.append(table.rates_date)
            return Answer.txt([row], ttl=self._ttl_for(table))

        if table is None:
            raise UpstreamError("fx: exchange rates are not loaded yet")

        result = table.convert(fxq.amount, fxq.source, fxq.target)
        return Answer.txt(
            [(f"{amount} {fxq.source} = {result} {fxq.target}", table.rates_date)],
            ttl=self._ttl_for(table),
        )

    def close(self) -> None:
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self._timeout + 1.0)
        self._thread = None
