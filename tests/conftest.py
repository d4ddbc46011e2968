"""
Brief: Global pytest configuration: src/ on sys.path, a per-test 10s timeout
and shared fixtures (sample geo index, fake HTTP session).

Inputs:
  - None

Outputs:
  - None
"""

import os
import signal
import sys
import threading

import pytest

# Ensure 'src' is on sys.path so 'dnstoys' package is importable in tests
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
SRC_DIR = os.path.join(ROOT, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from dnstoys.geo import GeoIndex, GeoLocation  # noqa: E402


def _alarm_handler(signum, frame):
    """
    Brief: Signal handler that raises TimeoutError when alarm triggers.

    Inputs:
      - signum: signal number (int)
      - frame: current frame (ignored)

    Outputs:
      - None: Raises TimeoutError to fail the test
    """
    raise TimeoutError("Test exceeded 10 seconds")


# Install handler if supported on this platform
if hasattr(signal, "SIGALRM"):
    signal.signal(signal.SIGALRM, _alarm_handler)


@pytest.fixture(autouse=True)
def enforce_test_timeout():
    """
    Brief: Enforce a hard 10-second timeout for each test.

    Inputs:
      - None

    Outputs:
      - None: Cancels alarm after test
    """
    if hasattr(signal, "SIGALRM"):
        signal.alarm(10)
        try:
            yield
        finally:
            signal.alarm(0)
    else:
        # Fallback: no-op on platforms without SIGALRM
        yield


SAMPLE_LOCATIONS = [
    GeoLocation(1275339, "Mumbai", ("Bombay",), "IN", 19.07283, 72.88261, "Asia/Kolkata", 12691836),
    GeoLocation(1273294, "Delhi", ("New Delhi",), "IN", 28.65195, 77.23149, "Asia/Kolkata", 10927986),
    GeoLocation(2950159, "Berlin", ("Berlino",), "DE", 52.52437, 13.41053, "Europe/Berlin", 3426354),
    GeoLocation(2643743, "London", ("Londres",), "GB", 51.50853, -0.12574, "Europe/London", 8961989),
    GeoLocation(6058560, "London", (), "CA", 42.98339, -81.23304, "America/Toronto", 346765),
    GeoLocation(5128581, "New York City", ("New York", "NYC"), "US", 40.71427, -74.00597, "America/New_York", 8804190),
    GeoLocation(5368361, "Los Angeles", ("LA",), "US", 34.05223, -118.24368, "America/Los_Angeles", 3898747),
    GeoLocation(4887398, "Chicago", (), "US", 41.85003, -87.65005, "America/Chicago", 2746388),
    GeoLocation(1850147, "Tokyo", (), "JP", 35.6895, 139.69171, "Asia/Tokyo", 8336599),
    GeoLocation(100, "Springfield", (), "US", 39.80172, -89.64371, "America/Chicago", 114394),
    GeoLocation(101, "Springfield", (), "AU", -27.65, 152.9, "Australia/Brisbane", 114394),
]


@pytest.fixture
def geo():
    """
    Brief: Small in-memory GeoIndex covering ties, aliases and countries.

    Outputs:
      - GeoIndex
    """
    return GeoIndex(SAMPLE_LOCATIONS)


class FakeResponse:
    def __init__(self, payload=None, status=200, exc=None):
        self._payload = payload
        self.status_code = status
        self._exc = exc

    def raise_for_status(self):
        import requests

        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        if self._exc is not None:
            raise self._exc
        return self._payload


class FakeSession:
    """
    Brief: Minimal requests.Session stand-in recording every call.

    Inputs:
      - responses: list of FakeResponse objects or exceptions, consumed in
        order; the last one repeats.
      - delay: optional seconds to sleep inside get().
    """

    def __init__(self, responses, delay=0.0):
        self.responses = list(responses)
        self.delay = delay
        self.calls = []
        self._lock = threading.Lock()

    def get(self, url, params=None, headers=None, timeout=None):
        import time

        with self._lock:
            self.calls.append(
                {"url": url, "params": params, "headers": headers, "timeout": timeout}
            )
            item = self.responses[0] if len(self.responses) == 1 else self.responses.pop(0)
        if self.delay:
            time.sleep(self.delay)
        if isinstance(item, BaseException):
            raise item
        return item


@pytest.fixture
def fake_session_factory():
    return FakeSession


@pytest.fixture
def fake_response_factory():
    return FakeResponse
