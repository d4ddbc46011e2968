"""Typed configuration models for dnstoys.

Brief:
  The YAML configuration is validated into an AppConfig instance once at
  startup and then handed to each component's constructor. The section and key
  names mirror the documented configuration surface:

    server:    domain, address
    timezones: enabled, geo_filepath
    fx:        enabled, api_key, refresh_interval, api_url, timeout
    myip:      enabled
    weather:   enabled, max_entries, cache_ttl, timeout, api_url
    logging:   level, stderr, file, syslog

Durations accept integers (seconds) or strings such as "90s", "30m", "6h" or
"1h30m".
"""

from __future__ import annotations

import re
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h|d)")
_DURATION_UNITS = {
    "ms": 0.001,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
    "d": 86400.0,
}

DEFAULT_FX_API_URL = "https://openexchangerates.org/api/latest.json"
DEFAULT_WEATHER_API_URL = (
    "https://api.met.no/weatherapi/locationforecast/2.0/compact"
)


def parse_duration(value: object) -> float:
    """Brief: Parse a duration config value into seconds.

    Inputs:
      - value: int/float seconds, a numeric string, or a string made of
        <number><unit> parts where unit is one of ms, s, m, h, d.

    Outputs:
      - float: Duration in seconds.

    Raises:
      - ValueError: When the value is empty, negative or not a duration.

    Example:
      >>> parse_duration("1h30m")
      5400.0
      >>> parse_duration(45)
      45.0
    """

    if isinstance(value, bool):
        raise ValueError(f"invalid duration {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = str(value or "").strip().lower()
        if not text:
            raise ValueError("duration must not be empty")
        try:
            seconds = float(text)
        except ValueError:
            pos = 0
            seconds = 0.0
            for match in _DURATION_PART.finditer(text):
                if match.start() != pos:
                    raise ValueError(f"invalid duration {value!r}")
                seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
                pos = match.end()
            if pos != len(text):
                raise ValueError(f"invalid duration {value!r}")
    if seconds < 0:
        raise ValueError(f"duration must not be negative: {value!r}")
    return seconds


def split_host_port(address: str) -> Tuple[str, int]:
    """Brief: Split a "host:port" listen address.

    Inputs:
      - address: "127.0.0.1:5353", "[::1]:53" or ":53" (empty host means all
        IPv4 interfaces).

    Outputs:
      - (host, port) tuple.

    Raises:
      - ValueError: When the port is missing or out of range.
    """

    text = str(address or "").strip()
    host, sep, port_text = text.rpartition(":")
    if not sep or not port_text:
        raise ValueError(f"address {address!r} must be in host:port form")
    host = host.strip()
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    port = int(port_text)
    if not 0 <= port <= 65535:
        raise ValueError(f"port out of range in address {address!r}")
    return host or "0.0.0.0", port


class ServerConfig(BaseModel):
    """Brief: Listener and identity settings.

    Inputs:
      - domain: Public name of this server, used in help examples, the SOA of
        negative answers and the upstream User-Agent.
      - address: UDP listen address in host:port form.
    """

    domain: str = Field(...)
    address: str = Field(...)

    model_config = ConfigDict(extra="allow")

    @field_validator("domain", mode="before")
    @classmethod
    def _normalize_domain(cls, v: object) -> str:
        text = str(v or "").strip()
        if not text:
            raise ValueError("server.domain must be a non-empty string")
        return text.rstrip(".").lower()

    @field_validator("address")
    @classmethod
    def _check_address(cls, v: str) -> str:
        split_host_port(v)
        return v

    def host_port(self) -> Tuple[str, int]:
        return split_host_port(self.address)


class TimezonesConfig(BaseModel):
    enabled: bool = False
    geo_filepath: Optional[str] = None

    model_config = ConfigDict(extra="allow")


class FxConfig(BaseModel):
    """Brief: Currency conversion settings.

    Inputs:
      - enabled: Register the fx zone.
      - api_key: Key for the exchange-rate API.
      - refresh_interval: Seconds (or duration string) between rate refreshes.
      - api_url: Rates endpoint returning {"base", "rates", "timestamp"}.
      - timeout: HTTP timeout for one refresh.
    """

    enabled: bool = False
    api_key: Optional[str] = None
    refresh_interval: Optional[float] = None
    api_url: str = DEFAULT_FX_API_URL
    timeout: float = 10.0

    model_config = ConfigDict(extra="allow")

    @field_validator("refresh_interval", "timeout", mode="before")
    @classmethod
    def _parse_durations(cls, v: object) -> Optional[float]:
        if v is None:
            return None
        seconds = parse_duration(v)
        if seconds <= 0:
            raise ValueError("duration must be positive")
        return seconds


class MyIPConfig(BaseModel):
    enabled: bool = False

    model_config = ConfigDict(extra="allow")


class WeatherConfig(BaseModel):
    """Brief: Weather forecast settings.

    Inputs:
      - enabled: Register the weather zone.
      - max_entries: Maximum number of cached forecasts.
      - cache_ttl: Lifetime of a cached forecast.
      - timeout: Upper bound for one upstream forecast fetch.
      - api_url: Forecast endpoint (MET Norway compact format).
    """

    enabled: bool = False
    max_entries: Optional[int] = Field(default=None, ge=1)
    cache_ttl: Optional[float] = None
    timeout: float = 3.0
    api_url: str = DEFAULT_WEATHER_API_URL

    model_config = ConfigDict(extra="allow")

    @field_validator("cache_ttl", "timeout", mode="before")
    @classmethod
    def _parse_durations(cls, v: object) -> Optional[float]:
        if v is None:
            return None
        seconds = parse_duration(v)
        if seconds <= 0:
            raise ValueError("duration must be positive")
        return seconds


class AppConfig(BaseModel):
    """Brief: Root configuration object passed to every component."""

    server: ServerConfig
    timezones: TimezonesConfig = Field(default_factory=TimezonesConfig)
    fx: FxConfig = Field(default_factory=FxConfig)
    myip: MyIPConfig = Field(default_factory=MyIPConfig)
    weather: WeatherConfig = Field(default_factory=WeatherConfig)
    logging: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="allow")
