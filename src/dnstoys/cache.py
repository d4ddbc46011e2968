"""Bounded, TTL-based, single-flight cache for slow upstream data sources.

Brief:
  UpstreamCache wraps a fetch(key) callable. Successful results are kept in a
  cachetools.TTLCache (LRU eviction once max_entries is reached); concurrent
  misses for the same key are collapsed into one fetch whose outcome every
  waiter shares. Failures and timeouts are never cached.

Notes:
  - The directory lock guards the TTLCache and the in-flight table only; it is
    never held while a fetch runs, so one slow key does not stall others.
  - Fetches run on a small worker pool so the caller can stop waiting after
    `timeout` seconds. A fetch that overruns keeps its worker until it returns,
    but its result is discarded and the key is released for retries.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable, Dict, Generic, Hashable, Optional, Tuple, TypeVar

from cachetools import TTLCache

from .errors import UpstreamError

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class _Flight:
    """Brief: Outcome slot shared by the callers waiting on one fetch."""

    __slots__ = ("event", "value", "expires_at", "error")

    def __init__(self) -> None:
        self.event = threading.Event()
        self.value: Any = None
        self.expires_at: float = 0.0
        self.error: Optional[str] = None


class UpstreamCache(Generic[K, V]):
    """Brief: Single-flight TTL cache in front of an upstream fetch function.

    Inputs:
      - fetch: Callable taking a key and returning the value; raising any
        exception marks the fetch as failed.
      - max_entries: Maximum number of cached values (LRU eviction).
      - ttl: Lifetime of a cached value in seconds.
      - timeout: Maximum seconds a caller waits for a fetch.
      - name: Label used in log messages and worker thread names.
      - max_workers: Size of the fetch worker pool.
      - timer: Monotonic clock; injectable for tests.

    Outputs:
      - UpstreamCache instance.

    Example use:
        >>> cache = UpstreamCache(lambda k: k.upper(), max_entries=2, ttl=60, timeout=1)
        >>> cache.get("berlin")
        'BERLIN'
        >>> cache.close()
    """

    def __init__(
        self,
        fetch: Callable[[K], V],
        *,
        max_entries: int,
        ttl: float,
        timeout: float,
        name: str = "upstream",
        max_workers: int = 8,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        if int(max_entries) < 1:
            raise ValueError("max_entries must be >= 1")
        self.name = name
        self._fetch = fetch
        self._ttl = float(ttl)
        self._timeout = float(timeout)
        self._timer = timer
        self._entries: TTLCache = TTLCache(
            maxsize=int(max_entries), ttl=self._ttl, timer=timer
        )
        self._inflight: Dict[K, _Flight] = {}
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, int(max_workers)),
            thread_name_prefix=f"{name}-fetch",
        )

        # Best-effort counters for diagnostics.
        self.calls_total: int = 0
        self.cache_hits: int = 0
        self.cache_misses: int = 0
        self.fetches_total: int = 0
        self.fetch_errors: int = 0

    @property
    def ttl(self) -> float:
        return self._ttl

    @property
    def max_entries(self) -> int:
        return int(self._entries.maxsize)

    def __len__(self) -> int:
        with self._lock:
            self._entries.expire()
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def get(self, key: K) -> V:
        """Brief: Return the cached or freshly fetched value for key.

        Inputs:
          - key: Hashable cache key.

        Outputs:
          - The value.

        Raises:
          - UpstreamError: When the fetch fails or times out.
        """

        value, _remaining = self.get_with_meta(key)
        return value

    def get_with_meta(self, key: K) -> Tuple[V, float]:
        """Brief: Return the value plus its remaining lifetime in seconds.

        Inputs:
          - key: Hashable cache key.

        Outputs:
          - (value, seconds_remaining).

        Raises:
          - UpstreamError: When the fetch fails or times out; every caller
            waiting on the same fetch receives the same error message.
        """

        with self._lock:
            self.calls_total += 1
            entry = self._entries.get(key)
            if entry is not None:
                self.cache_hits += 1
                value, expires_at = entry
                return value, max(0.0, expires_at - self._timer())

            self.cache_misses += 1
            flight = self._inflight.get(key)
            leader = flight is None
            if flight is None:
                flight = _Flight()
                self._inflight[key] = flight

        if leader:
            self._run_fetch(key, flight)
        elif not flight.event.wait(self._timeout):
            raise UpstreamError(
                f"{self.name}: timed out after {self._timeout:g}s waiting for {key!r}"
            )

        if flight.error is not None:
            raise UpstreamError(flight.error)
        return flight.value, max(0.0, flight.expires_at - self._timer())

    def _run_fetch(self, key: K, flight: _Flight) -> None:
        """Brief: Perform the fetch for key and publish the outcome.

        Inputs:
          - key: Cache key being fetched.
          - flight: In-flight slot registered for key by this caller.

        Outputs:
          - None; fills flight, stores successes and wakes all waiters.
        """

        self.fetches_total += 1
        fetched = False
        try:
            future = self._executor.submit(self._fetch, key)
            try:
                value = future.result(timeout=self._timeout)
            except FutureTimeoutError:
                future.cancel()
                flight.error = (
                    f"{self.name}: fetch for {key!r} timed out after {self._timeout:g}s"
                )
            else:
                fetched = True
                flight.value = value
                flight.expires_at = self._timer() + self._ttl
        except UpstreamError as exc:
            flight.error = str(exc)
        except Exception as exc:
            flight.error = f"{self.name}: fetch for {key!r} failed: {exc}"
        finally:
            if not fetched and flight.error is None:
                flight.error = f"{self.name}: fetch for {key!r} was interrupted"
            with self._lock:
                if flight.error is None:
                    self._entries[key] = (flight.value, flight.expires_at)
                else:
                    self.fetch_errors += 1
                if self._inflight.get(key) is flight:
                    del self._inflight[key]
            flight.event.set()

        if flight.error is not None:
            logger.warning("%s", flight.error)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def close(self) -> None:
        """Brief: Stop the worker pool without waiting for running fetches."""

        self._executor.shutdown(wait=False)
