"""Current time for a place or for every timezone of a country."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Callable, List, Optional, Tuple

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..errors import InternalError
from ..geo import GeoIndex, GeoLocation
from ..query import Query, parse_place
from .base import Answer, Service

logger = logging.getLogger(__name__)

# The answer changes every second.
TIME_TTL = 1


def load_zone(name: str) -> ZoneInfo:
    """Brief: Load an IANA timezone.

    Inputs:
      - name: Timezone identifier such as "Asia/Kolkata".

    Outputs:
      - ZoneInfo.

    Raises:
      - InternalError: When the identifier is empty or unknown to the tz
        database; the geo data and tz data disagree, not the client.
    """

    if not name:
        raise InternalError("location has no timezone")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise InternalError(f"unknown timezone {name!r}") from exc


class TimeService(Service):
    """Brief: Answer ``<place>.time`` and ``<cc>.time`` queries.

    Inputs:
      - geo: GeoIndex used to resolve places and country codes.
      - now: Optional clock returning an aware datetime; defaults to UTC now.

    Behaviour:
      - A two-letter label that is a known country code yields one TXT record
        per distinct timezone of that country.
      - Anything else is resolved as a place name (with optional country
        hint) and yields a single record.
      - Records read ``"<Place> (<Timezone>, <CC>)" "<RFC 2822 time>"``.
    """

    zone = "time"
    description = "get time for a city or country code"
    example = "dig mumbai.time @{domain}"

    def __init__(
        self, geo: GeoIndex, *, now: Optional[Callable[[], datetime]] = None
    ) -> None:
        self._geo = geo
        self._now = now or (lambda: datetime.now(timezone.utc))

    def handle(self, query: Query) -> Answer:
        place = parse_place(query.labels)

        locations: List[GeoLocation] = []
        if place.hint is None and len(place.name) == 2 and place.name.isalpha():
            locations = self._geo.by_country(place.name)
        if not locations:
            locations = [self._geo.resolve(place.name, place.hint).location]

        now = self._now()
        rows = [self.format_time(loc, now) for loc in locations]
        return Answer.txt(rows, ttl=TIME_TTL)

    @staticmethod
    def format_time(loc: GeoLocation, now: datetime) -> Tuple[str, str]:
        local = now.astimezone(load_zone(loc.timezone))
        return (f"{loc.name} ({loc.timezone}, {loc.country})", format_datetime(local))
