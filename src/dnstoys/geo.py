"""Place-name resolution index backing the time and weather services.

Brief:
  GeoIndex is built once at startup from a list of GeoLocation records and is
  read-only afterwards, so lookups need no locking (the memo of fuzzy results
  carries its own lock).

Resolution policy for resolve(name, hint):
  1. exact, case-insensitive match on a canonical name or alias;
  2. several matches: prefer the hinted country code, then the highest
     priority (population), then the lexicographically first name, then id;
  3. no exact match: fuzzy match where distance = 1 - SequenceMatcher.ratio()
     and only candidates with distance <= FUZZY_THRESHOLD are kept, then the
     same tie-break chain as (2);
  4. otherwise ResolutionError.
"""

from __future__ import annotations

import difflib
import logging
import math
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple

from cachetools import LRUCache

from .errors import ConfigError, ResolutionError

logger = logging.getLogger(__name__)

FUZZY_THRESHOLD = 0.2
FUZZY_MIN_LENGTH = 3

# GeoNames column positions (tab separated).
_COL_ID = 0
_COL_NAME = 1
_COL_ASCII = 2
_COL_ALTERNATES = 3
_COL_LAT = 4
_COL_LON = 5
_COL_COUNTRY = 8
_COL_POPULATION = 14
_COL_TIMEZONE = 17


@dataclass(frozen=True)
class GeoLocation:
    """Brief: One resolvable place.

    Inputs (fields):
      - id: Dataset identifier, unique per location.
      - name: Canonical display name ("Mumbai").
      - aliases: Alternative names ("Bombay", ASCII spellings, ...).
      - country: ISO 3166 alpha-2 country code, uppercase.
      - latitude, longitude: Coordinates in decimal degrees.
      - timezone: IANA timezone identifier ("Asia/Kolkata").
      - priority: Tie-break weight; the dataset's population.
    """

    id: int
    name: str
    aliases: Tuple[str, ...]
    country: str
    latitude: float
    longitude: float
    timezone: str
    priority: int = 0


class GeoMatch(NamedTuple):
    location: GeoLocation
    matched: str


def normalize_name(text: str) -> str:
    """Brief: Normalize a place name or query label for index lookups.

    Inputs:
      - text: Raw name; hyphens and underscores stand in for spaces.

    Outputs:
      - str: Lowercased name with single spaces.

    Example:
      >>> normalize_name("New_York-City")
      'new york city'
    """

    text = str(text or "").replace("-", " ").replace("_", " ")
    return " ".join(text.lower().split())


def _tie_break_key(loc: GeoLocation, hint: Optional[str]) -> Tuple[int, int, str, int]:
    hint_miss = 0 if hint and loc.country == hint else 1
    return (hint_miss, -loc.priority, loc.name.lower(), loc.id)


class GeoIndex:
    """Brief: Exact and fuzzy place-name lookups.

    Inputs:
      - locations: Iterable of GeoLocation records.
      - fuzzy_threshold: Maximum normalized distance accepted by fuzzy matches.
      - fuzzy_cache_size: Number of memoized fuzzy lookups.

    Outputs:
      - GeoIndex instance.

    Example use:
        >>> idx = GeoIndex([GeoLocation(1, "Mumbai", ("Bombay",), "IN",
        ...                              19.07, 72.88, "Asia/Kolkata", 12691836)])
        >>> idx.resolve("bombay").location.name
        'Mumbai'
    """

    def __init__(
        self,
        locations: Iterable[GeoLocation],
        *,
        fuzzy_threshold: float = FUZZY_THRESHOLD,
        fuzzy_cache_size: int = 4096,
    ) -> None:
        self._locations: Tuple[GeoLocation, ...] = tuple(locations)
        self._by_id: Dict[int, GeoLocation] = {loc.id: loc for loc in self._locations}
        self._cutoff = 1.0 - float(fuzzy_threshold)

        by_name: Dict[str, Dict[int, GeoLocation]] = defaultdict(dict)
        by_country: Dict[str, List[GeoLocation]] = defaultdict(list)
        for loc in self._locations:
            for raw in (loc.name,) + tuple(loc.aliases):
                key = normalize_name(raw)
                if key:
                    by_name[key][loc.id] = loc
            by_country[loc.country].append(loc)

        self._by_name: Dict[str, Tuple[GeoLocation, ...]] = {
            k: tuple(v.values()) for k, v in by_name.items()
        }

        self._by_country: Dict[str, Tuple[GeoLocation, ...]] = {}
        for cc, locs in by_country.items():
            self._by_country[cc] = tuple(
                sorted(locs, key=lambda loc: _tie_break_key(loc, None))
            )

        # Names bucketed by length so fuzzy lookups only score names whose
        # length allows a ratio above the cutoff.
        by_len: Dict[int, List[str]] = defaultdict(list)
        for key in self._by_name:
            by_len[len(key)].append(key)
        self._names_by_len: Dict[int, Tuple[str, ...]] = {
            n: tuple(sorted(keys)) for n, keys in by_len.items()
        }

        self._fuzzy_cache: LRUCache = LRUCache(maxsize=max(1, int(fuzzy_cache_size)))
        self._fuzzy_lock = threading.Lock()

    @classmethod
    def from_file(cls, path: str, **kwargs: object) -> "GeoIndex":
        """Brief: Build an index from a GeoNames dataset file.

        Inputs:
          - path: Path to a GeoNames cities TSV file.
          - **kwargs: Forwarded to GeoIndex().

        Outputs:
          - GeoIndex.

        Raises:
          - ConfigError: When the file is unreadable or contains no locations.
        """

        locations = load_geonames(path)
        if not locations:
            raise ConfigError(f"no geo locations found in {path}")
        return cls(locations, **kwargs)  # type: ignore[arg-type]

    def count(self) -> int:
        return len(self._locations)

    def get(self, loc_id: int) -> Optional[GeoLocation]:
        return self._by_id.get(loc_id)

    def by_country(self, code: str) -> List[GeoLocation]:
        """Brief: Return one location per distinct timezone of a country.

        Inputs:
          - code: ISO alpha-2 country code (any case).

        Outputs:
          - list[GeoLocation]: Highest-priority location for each timezone,
            ordered by priority; empty for unknown codes.
        """

        seen = set()
        out: List[GeoLocation] = []
        for loc in self._by_country.get(str(code or "").upper(), ()):
            if not loc.timezone or loc.timezone in seen:
                continue
            seen.add(loc.timezone)
            out.append(loc)
        return out

    def resolve(self, name: str, hint: Optional[str] = None) -> GeoMatch:
        """Brief: Resolve a place name to a single location.

        Inputs:
          - name: Place name as typed in the query.
          - hint: Optional ISO alpha-2 country code preferred on ties.

        Outputs:
          - GeoMatch(location, matched) where matched is the normalized name or
            alias that produced the match.

        Raises:
          - ResolutionError: When neither an exact nor a fuzzy match exists.
        """

        key = normalize_name(name)
        hint_cc = str(hint).upper() if hint else None
        if not key:
            raise ResolutionError("empty place name")

        exact = self._by_name.get(key)
        if exact:
            best = min(exact, key=lambda loc: _tie_break_key(loc, hint_cc))
            return GeoMatch(best, key)

        candidates = self._fuzzy_candidates(key)
        if not candidates:
            raise ResolutionError(f"unknown place {name!r}")

        best_loc, best_name = min(
            candidates, key=lambda pair: _tie_break_key(pair[0], hint_cc)
        )
        logger.debug("geo: fuzzy matched %r to %r (%s)", name, best_name, best_loc.name)
        return GeoMatch(best_loc, best_name)

    def _fuzzy_candidates(self, key: str) -> Sequence[Tuple[GeoLocation, str]]:
        """Brief: Return (location, matched name) pairs within the threshold.

        Inputs:
          - key: Normalized query name.

        Outputs:
          - Sequence of pairs; memoized per key.
        """

        if len(key) < FUZZY_MIN_LENGTH:
            return ()

        with self._fuzzy_lock:
            cached = self._fuzzy_cache.get(key)
        if cached is not None:
            return cached

        # ratio = 2*M/(la+lb) <= 2*min(la,lb)/(la+lb); bound lb for a given la.
        n = len(key)
        lo = int(math.floor(n * self._cutoff / (2.0 - self._cutoff)))
        hi = int(math.ceil(n * (2.0 - self._cutoff) / self._cutoff))
        pool: List[str] = []
        for length in range(max(1, lo), hi + 1):
            pool.extend(self._names_by_len.get(length, ()))

        matches = difflib.get_close_matches(key, pool, n=max(1, len(pool)), cutoff=self._cutoff)

        pairs: Dict[int, Tuple[GeoLocation, str]] = {}
        for matched in matches:
            for loc in self._by_name.get(matched, ()):
                # get_close_matches yields closest names first; keep the
                # closest name per location.
                pairs.setdefault(loc.id, (loc, matched))
        result = tuple(pairs.values())

        with self._fuzzy_lock:
            self._fuzzy_cache[key] = result
        return result


def parse_geonames_line(line: str) -> Optional[GeoLocation]:
    """Brief: Parse one GeoNames TSV line.

    Inputs:
      - line: Raw line including the trailing newline.

    Outputs:
      - GeoLocation, or None for blank, comment and malformed lines.
    """

    text = line.rstrip("\r\n")
    if not text.strip() or text.startswith("#"):
        return None

    cols = text.split("\t")
    if len(cols) <= _COL_TIMEZONE:
        return None

    name = cols[_COL_NAME].strip()
    if not name:
        return None
    try:
        loc_id = int(cols[_COL_ID])
        lat = float(cols[_COL_LAT])
        lon = float(cols[_COL_LON])
    except ValueError:
        return None
    try:
        population = int(cols[_COL_POPULATION] or 0)
    except ValueError:
        population = 0

    aliases: List[str] = []
    for alias in [cols[_COL_ASCII]] + cols[_COL_ALTERNATES].split(","):
        alias = alias.strip()
        if alias and alias != name and alias not in aliases:
            aliases.append(alias)

    return GeoLocation(
        id=loc_id,
        name=name,
        aliases=tuple(aliases),
        country=cols[_COL_COUNTRY].strip().upper(),
        latitude=lat,
        longitude=lon,
        timezone=cols[_COL_TIMEZONE].strip(),
        priority=population,
    )


def load_geonames(path: str) -> List[GeoLocation]:
    """Brief: Read every location from a GeoNames TSV file.

    Inputs:
      - path: Filesystem path.

    Outputs:
      - list[GeoLocation]; malformed lines are skipped.

    Raises:
      - ConfigError: When the file cannot be opened or read.
    """

    out: List[GeoLocation] = []
    skipped = 0
    try:
        with open(path, "r", encoding="utf-8") as fh:
            for lineno, line in enumerate(fh, start=1):
                loc = parse_geonames_line(line)
                if loc is None:
                    if line.strip() and not line.startswith("#"):
                        skipped += 1
                        logger.debug("geo: skipping malformed line %d in %s", lineno, path)
                    continue
                out.append(loc)
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"error reading geo locations from {path}: {exc}") from exc

    if skipped:
        logger.warning("geo: skipped %d malformed lines in %s", skipped, path)
    return out
