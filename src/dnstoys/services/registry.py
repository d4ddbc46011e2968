"""Build the enabled services and the zone router from configuration."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from ..config.config_schema import AppConfig
from ..errors import ConfigError
from ..geo import GeoIndex
from ..router import ZoneRouter
from .base import Service, ServiceKind
from .fx import FXService
from .help import HelpService
from .myip import MyIPService
from .timezones import TimeService
from .weather import WeatherService

logger = logging.getLogger(__name__)


def enabled_kinds(cfg: AppConfig) -> list:
    """Brief: Return the enabled ServiceKind members in enum order.

    Inputs:
      - cfg: AppConfig.

    Outputs:
      - list[ServiceKind].
    """

    flags = {
        ServiceKind.TIME: cfg.timezones.enabled,
        ServiceKind.FX: cfg.fx.enabled,
        ServiceKind.MYIP: cfg.myip.enabled,
        ServiceKind.WEATHER: cfg.weather.enabled,
    }
    return [kind for kind in ServiceKind if flags[kind]]


def load_geo(cfg: AppConfig) -> GeoIndex:
    """Brief: Load the geo index named by timezones.geo_filepath.

    Raises:
      - ConfigError: When no path is configured or the dataset is unreadable
        or empty.
    """

    if not cfg.timezones.geo_filepath:
        raise ConfigError("timezones.geo_filepath is required by the time and weather zones")
    path = str(cfg.timezones.geo_filepath)
    logger.info("reading geo locations from %s", path)
    geo = GeoIndex.from_file(path)
    logger.info("%d geo location names loaded", geo.count())
    return geo


def _require_geo(geo: Optional[GeoIndex], kind: ServiceKind) -> GeoIndex:
    if geo is None:
        raise ConfigError(f"{kind.value}: no geo index available")
    return geo


def build_services(
    cfg: AppConfig,
    *,
    geo: Optional[GeoIndex] = None,
    session: Optional[Any] = None,
    start_background: bool = True,
) -> Dict[ServiceKind, Service]:
    """Brief: Instantiate one service per enabled ServiceKind.

    Inputs:
      - cfg: Validated AppConfig.
      - geo: Optional pre-built GeoIndex; loaded from config when needed and
        not supplied.
      - session: Optional HTTP session shared by upstream-backed services.
      - start_background: Start background refresh tasks (fx).

    Outputs:
      - dict mapping ServiceKind to service instance, in ServiceKind order.

    Raises:
      - ConfigError: When required resources cannot be loaded.
    """

    kinds = enabled_kinds(cfg)
    if geo is None and (ServiceKind.TIME in kinds or ServiceKind.WEATHER in kinds):
        geo = load_geo(cfg)

    services: Dict[ServiceKind, Service] = {}
    for kind in kinds:
        if kind is ServiceKind.TIME:
            services[kind] = TimeService(_require_geo(geo, kind))
        elif kind is ServiceKind.FX:
            services[kind] = FXService(cfg.fx, session=session, start=start_background)
        elif kind is ServiceKind.MYIP:
            services[kind] = MyIPService()
        elif kind is ServiceKind.WEATHER:
            services[kind] = WeatherService(
                cfg.weather,
                _require_geo(geo, kind),
                user_agent=cfg.server.domain,
                session=session,
            )
        logger.info("enabled service %s", kind.value)
    return services


def build_router(cfg: AppConfig, services: Dict[ServiceKind, Service]) -> ZoneRouter:
    """Brief: Register each service under its zone plus the static help zone.

    Inputs:
      - cfg: AppConfig (server.domain is used in help examples).
      - services: Output of build_services().

    Outputs:
      - ZoneRouter.
    """

    entries = []
    for service in services.values():
        entry = service.help_entry()
        if entry is not None:
            entries.append(entry)

    router = ZoneRouter(HelpService(entries, cfg.server.domain))
    for kind, service in services.items():
        router.register(kind.value, service)
    return router


def close_services(services: Dict[ServiceKind, Service]) -> None:
    for kind, service in services.items():
        try:
            service.close()
        except Exception:  # pragma: no cover - shutdown is best-effort
            logger.exception("error closing service %s", kind.value)
