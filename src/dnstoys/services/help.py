from __future__ import annotations

from typing import Iterable, Tuple

from ..query import Query
from .base import Answer, HelpEntry, Service

HELP_TTL = 86400


class HelpService(Service):
    """Brief: Static catalog of the enabled services.

    Inputs:
      - entries: One HelpEntry per enabled service, in display order.
      - domain: server.domain substituted into the examples.

    Behaviour:
      - The answer is rendered once at construction; every query to the help
        zone gets the same records whatever its labels or type.
    """

    zone = "help"

    def __init__(self, entries: Iterable[HelpEntry], domain: str) -> None:
        self.entries: Tuple[HelpEntry, ...] = tuple(entries)
        self._answer = Answer.txt(
            [e.render(domain) for e in self.entries], ttl=HELP_TTL
        )

    def handle(self, query: Query) -> Answer:
        return self._answer


class DefaultService(Service):
    """Brief: Fallback for zones nobody registered; always NXDOMAIN."""

    zone = ""

    def handle(self, query: Query) -> Answer:
        return Answer.nxdomain()
