from __future__ import annotations

import logging
from typing import Dict, List, Optional, Union

from .errors import ConfigError
from .query import Query
from .services.base import Service
from .services.help import DefaultService, HelpService

logger = logging.getLogger(__name__)


def normalize_zone(zone: str) -> str:
    """Brief: Lowercase a zone label and strip surrounding dots/whitespace."""

    return str(zone or "").strip().strip(".").lower()


class ZoneRouter:
    """Brief: Map the top-level label of a query to its service.

    Inputs:
      - help_service: Handler for the ``help`` zone, always registered.
      - default: Handler for unregistered zones (NXDOMAIN by default).

    Outputs:
      - ZoneRouter instance.

    Example use:
        >>> from dnstoys.services.myip import MyIPService
        >>> router = ZoneRouter(HelpService([], "dns.example"))
        >>> router.register("myip", MyIPService())
        >>> router.route("MyIP.").zone
        'myip'
        >>> router.route("nope").__class__.__name__
        'DefaultService'
    """

    def __init__(
        self, help_service: HelpService, default: Optional[Service] = None
    ) -> None:
        self._handlers: Dict[str, Service] = {"help": help_service}
        self._default: Service = default or DefaultService()

    def register(self, zone: str, handler: Service) -> None:
        """Brief: Register handler for zone.

        Raises:
          - ConfigError: For empty or already registered zones.
        """

        key = normalize_zone(zone)
        if not key or "." in key:
            raise ConfigError(f"invalid zone label {zone!r}")
        if key in self._handlers:
            raise ConfigError(f"zone {key!r} is already registered")
        self._handlers[key] = handler
        logger.debug("router: registered zone %s -> %r", key, handler)

    def route(self, query: Union[Query, str]) -> Service:
        zone = query.zone if isinstance(query, Query) else normalize_zone(query)
        handler = self._handlers.get(zone)
        if handler is None:
            return self._default
        return handler

    def zones(self) -> List[str]:
        return list(self._handlers)

    def services(self) -> List[Service]:
        return list(self._handlers.values())
