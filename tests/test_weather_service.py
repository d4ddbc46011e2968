"""
Brief: Tests for dnstoys.services.weather (forecast parsing, caching, errors).

Inputs:
  - None

Outputs:
  - None
"""

import threading

import pytest
import requests

from dnstoys.config.config_schema import WeatherConfig
from dnstoys.errors import FormatError, ResolutionError, UpstreamError
from dnstoys.query import parse_qname
from dnstoys.services.weather import MAX_POINTS, WeatherService, parse_forecast


def _forecast(hours=12, start_temp=10.0):
    series = []
    for h in range(hours):
        series.append(
            {
                "time": f"2024-06-01T{h:02d}:00:00Z",
                "data": {
                    "instant": {
                        "details": {
                            "air_temperature": start_temp + h,
                            "relative_humidity": 50.0 + h,
                        }
                    },
                    "next_1_hours": {"summary": {"symbol_code": "clearsky_day"}},
                },
            }
        )
    return {"type": "Feature", "properties": {"timeseries": series}}


def _config(**overrides):
    data = {"enabled": True, "max_entries": 10, "cache_ttl": "30m", "timeout": 2}
    data.update(overrides)
    return WeatherConfig(**data)


def test_parse_forecast_spaces_points():
    """
    Brief: Points are at least two hours apart and capped at MAX_POINTS.

    Inputs:
      - 12 hourly timeseries items

    Outputs:
      - None: Asserts hours and count
    """
    report = parse_forecast(_forecast(), location_id=7)
    assert report.location_id == 7
    assert len(report.points) == MAX_POINTS
    assert [p.time.hour for p in report.points] == [0, 2, 4, 6, 8]
    first = report.points[0]
    assert first.temperature_c == 10.0
    assert first.temperature_f == pytest.approx(50.0)
    assert first.humidity == 50.0
    assert first.condition == "clearsky_day"


@pytest.mark.parametrize(
    "payload",
    [
        None,
        {},
        {"properties": {"timeseries": []}},
        {"properties": {"timeseries": [{"time": "nope", "data": {}}]}},
    ],
)
def test_parse_forecast_rejects_malformed(payload):
    with pytest.raises(UpstreamError):
        parse_forecast(payload, location_id=1)


def test_weather_answer_rows(geo, fake_session_factory, fake_response_factory):
    """
    Brief: berlin.weather answers one TXT row per forecast point.

    Inputs:
      - fake session returning a 12h forecast

    Outputs:
      - None: Asserts row shape, local time rendering and request details
    """
    session = fake_session_factory([fake_response_factory(_forecast())])
    svc = WeatherService(_config(), geo, user_agent="dns.example", session=session)
    try:
        answer = svc.handle(parse_qname("berlin.weather"))
        assert len(answer.values) == MAX_POINTS
        assert answer.values[0] == (
            "Berlin (DE)",
            "10.00C (50.00F)",
            "50.00% hu.",
            "clearsky_day",
            "02:00, Sat",
        )
        assert 1 <= answer.ttl <= 1800
        call = session.calls[0]
        assert call["headers"] == {"User-Agent": "dns.example"}
        assert call["params"] == {"lat": "52.5244", "lon": "13.4105"}
    finally:
        svc.close()


def test_aliases_share_one_cache_entry(geo, fake_session_factory, fake_response_factory):
    session = fake_session_factory([fake_response_factory(_forecast())])
    svc = WeatherService(_config(), geo, user_agent="dns.example", session=session)
    try:
        svc.handle(parse_qname("mumbai.weather"))
        svc.handle(parse_qname("bombay.weather"))
        svc.handle(parse_qname("mumbay.weather"))
        assert len(session.calls) == 1
        assert len(svc.cache) == 1
    finally:
        svc.close()


def test_concurrent_queries_fetch_once(geo, fake_session_factory, fake_response_factory):
    """
    Brief: Simultaneous misses for one city make a single upstream request.

    Inputs:
      - 20 threads, slow fake session

    Outputs:
      - None: Asserts one upstream call and no errors
    """
    session = fake_session_factory([fake_response_factory(_forecast())], delay=0.2)
    svc = WeatherService(_config(), geo, user_agent="dns.example", session=session)
    barrier = threading.Barrier(20)
    errors = []

    def worker():
        barrier.wait()
        try:
            svc.handle(parse_qname("tokyo.weather"))
        except Exception as exc:  # pragma: no cover - surfaced by assert below
            errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(20)]
    try:
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)
        assert errors == []
        assert len(session.calls) == 1
    finally:
        svc.close()


def test_upstream_failure_is_not_cached(geo, fake_session_factory, fake_response_factory):
    session = fake_session_factory(
        [requests.ConnectionError("down"), fake_response_factory(_forecast())]
    )
    svc = WeatherService(_config(), geo, user_agent="dns.example", session=session)
    try:
        with pytest.raises(UpstreamError):
            svc.handle(parse_qname("berlin.weather"))
        assert len(svc.cache) == 0
        assert len(svc.handle(parse_qname("berlin.weather")).values) == MAX_POINTS
        assert len(session.calls) == 2
    finally:
        svc.close()


def test_http_error_status(geo, fake_session_factory, fake_response_factory):
    session = fake_session_factory([fake_response_factory({}, status=503)])
    svc = WeatherService(_config(), geo, user_agent="dns.example", session=session)
    try:
        with pytest.raises(UpstreamError):
            svc.handle(parse_qname("berlin.weather"))
    finally:
        svc.close()


def test_unknown_place_and_bad_grammar(geo, fake_session_factory):
    session = fake_session_factory([requests.ConnectionError("unused")])
    svc = WeatherService(_config(), geo, user_agent="dns.example", session=session)
    try:
        with pytest.raises(ResolutionError):
            svc.handle(parse_qname("qwertyuiop.weather"))
        with pytest.raises(FormatError):
            svc.handle(parse_qname("weather"))
        assert session.calls == []
    finally:
        svc.close()
