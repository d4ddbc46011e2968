"""Weather forecasts for a place, cached per resolved location."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional, Tuple, Union

import requests

from ..cache import UpstreamCache
from ..config.config_schema import WeatherConfig
from ..errors import InternalError, UpstreamError
from ..geo import GeoIndex, GeoLocation
from ..query import Query, parse_place
from .base import Answer, Service
from .timezones import load_zone

logger = logging.getLogger(__name__)

MAX_POINTS = 5
POINT_SPACING = timedelta(hours=2)


@dataclass(frozen=True)
class ForecastPoint:
    time: datetime
    temperature_c: float
    humidity: Optional[float]
    condition: str

    @property
    def temperature_f(self) -> float:
        return self.temperature_c * 9.0 / 5.0 + 32.0


@dataclass(frozen=True)
class WeatherReport:
    """Brief: Forecast for one resolved location.

    Inputs (fields):
      - location_id: GeoLocation.id the report belongs to.
      - points: Forecast points, earliest first.
      - fetched_at: UTC time of the upstream fetch.
    """

    location_id: int
    points: Tuple[ForecastPoint, ...]
    fetched_at: datetime


def _parse_time(text: str) -> datetime:
    value = datetime.fromisoformat(str(text).replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _symbol(data: Any) -> str:
    for period in ("next_1_hours", "next_6_hours", "next_12_hours"):
        summary = (data.get(period) or {}).get("summary") or {}
        code = summary.get("symbol_code")
        if code:
            return str(code)
    return ""


def parse_forecast(payload: Any, location_id: int) -> WeatherReport:
    """Brief: Parse a MET Norway ``locationforecast/2.0/compact`` payload.

    Inputs:
      - payload: Decoded JSON document.
      - location_id: Id of the location the forecast was fetched for.

    Outputs:
      - WeatherReport holding up to MAX_POINTS points spaced at least
        POINT_SPACING apart.

    Raises:
      - UpstreamError: When the payload is malformed or has no usable points.
    """

    points: List[ForecastPoint] = []
    try:
        timeseries = payload["properties"]["timeseries"]
        last: Optional[datetime] = None
        for item in timeseries:
            when = _parse_time(item["time"])
            if last is not None and when - last < POINT_SPACING:
                continue
            data = item["data"]
            details = data["instant"]["details"]
            humidity = details.get("relative_humidity")
            points.append(
                ForecastPoint(
                    time=when,
                    temperature_c=float(details["air_temperature"]),
                    humidity=float(humidity) if humidity is not None else None,
                    condition=_symbol(data),
                )
            )
            last = when
            if len(points) >= MAX_POINTS:
                break
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise UpstreamError(f"weather: malformed forecast payload: {exc!r}") from exc

    if not points:
        raise UpstreamError("weather: forecast payload has no data points")
    return WeatherReport(
        location_id=location_id,
        points=tuple(points),
        fetched_at=datetime.now(timezone.utc),
    )


class WeatherService(Service):
    """Brief: Answer ``<place>.weather`` queries.

    Inputs:
      - config: WeatherConfig (max_entries, cache_ttl, timeout, api_url).
      - geo: GeoIndex used to resolve the place.
      - user_agent: User-Agent sent upstream (the API requires one).
      - session: Optional requests.Session-like object.

    Behaviour:
      - Unknown places raise ResolutionError.
      - Reports are cached by GeoLocation.id, so aliases of one place share a
        cache entry; concurrent misses trigger a single upstream fetch.
      - One TXT record per forecast point:
        ``"<Place> (<CC>)" "<t>C (<t>F)" "<h>% hu." "<condition>" "<HH:MM, Day>"``.
      - TTL is the remaining lifetime of the cached report.
    """

    zone = "weather"
    description = "get weather forecast for a city"
    example = "dig berlin.weather @{domain}"

    def __init__(
        self,
        config: WeatherConfig,
        geo: GeoIndex,
        *,
        user_agent: str,
        session: Optional[Any] = None,
    ) -> None:
        self._geo = geo
        self._api_url = config.api_url
        self._timeout = float(config.timeout)
        self._headers = {"User-Agent": user_agent}
        self._session = session if session is not None else requests.Session()
        self._cache: UpstreamCache[int, WeatherReport] = UpstreamCache(
            self._fetch_report,
            max_entries=int(config.max_entries or 1),
            ttl=float(config.cache_ttl or 1),
            timeout=self._timeout,
            name="weather",
        )

    @property
    def cache(self) -> UpstreamCache:
        return self._cache

    def _fetch_report(self, location_id: int) -> WeatherReport:
        loc = self._geo.get(location_id)
        if loc is None:
            raise InternalError(f"weather: unknown location id {location_id}")

        logger.debug("weather: fetching forecast for %s (%s)", loc.name, loc.country)
        try:
            resp = self._session.get(
                self._api_url,
                params={"lat": f"{loc.latitude:.4f}", "lon": f"{loc.longitude:.4f}"},
                headers=self._headers,
                timeout=self._timeout,
            )
            resp.raise_for_status()
            payload = resp.json()
        except requests.RequestException as exc:
            raise UpstreamError(f"weather: request failed for {loc.name}: {exc}") from exc
        except ValueError as exc:
            raise UpstreamError(f"weather: invalid JSON for {loc.name}: {exc}") from exc
        return parse_forecast(payload, loc.id)

    def handle(self, query: Query) -> Answer:
        place = parse_place(query.labels)
        loc = self._geo.resolve(place.name, place.hint).location

        report, remaining = self._cache.get_with_meta(loc.id)
        rows = [self.format_point(loc, p) for p in report.points]
        return Answer.txt(rows, ttl=remaining)

    @staticmethod
    def format_point(loc: GeoLocation, point: ForecastPoint) -> Tuple[str, ...]:
        tz: Union[timezone, Any] = timezone.utc
        if loc.timezone:
            try:
                tz = load_zone(loc.timezone)
            except InternalError:
                logger.debug("weather: no timezone data for %s, using UTC", loc.timezone)
        local = point.time.astimezone(tz)

        humidity = f"{point.humidity:.2f}% hu." if point.humidity is not None else "-"
        return (
            f"{loc.name} ({loc.country})",
            f"{point.temperature_c:.2f}C ({point.temperature_f:.2f}F)",
            humidity,
            point.condition or "-",
            local.strftime("%H:%M, %a"),
        )

    def close(self) -> None:
        self._cache.close()
