from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Iterable, Optional, Sequence, Tuple, Union

from ..query import Query

logger = logging.getLogger(__name__)


class ServiceKind(str, Enum):
    """Brief: The closed set of optional services, keyed by their zone label.

    The enum order is the order in which services are registered and listed
    in the help zone.
    """

    TIME = "time"
    FX = "fx"
    MYIP = "myip"
    WEATHER = "weather"


class RecordKind(str, Enum):
    TXT = "TXT"
    ADDRESS = "ADDRESS"
    NXDOMAIN = "NXDOMAIN"


AnswerValue = Union[Tuple[str, ...], str]


@dataclass(frozen=True)
class Answer:
    """Brief: Successful outcome of a service handler.

    Inputs (fields):
      - values: For TXT answers, one tuple of strings per record; for ADDRESS
        answers, one IP address string per record; empty for NXDOMAIN.
      - kind: RecordKind of the answer.
      - ttl: TTL in seconds for every record of the answer.

    Example use:
        >>> Answer.txt([("hello", "world")], ttl=60).values
        (('hello', 'world'),)
    """

    values: Tuple[AnswerValue, ...]
    kind: RecordKind = RecordKind.TXT
    ttl: int = 1

    @classmethod
    def txt(cls, rows: Iterable[Sequence[str]], ttl: float) -> "Answer":
        return cls(
            values=tuple(tuple(str(s) for s in row) for row in rows),
            kind=RecordKind.TXT,
            ttl=max(1, int(ttl)),
        )

    @classmethod
    def address(cls, addresses: Iterable[str], ttl: float) -> "Answer":
        values = tuple(str(ipaddress.ip_address(a)) for a in addresses)
        return cls(values=values, kind=RecordKind.ADDRESS, ttl=max(1, int(ttl)))

    @classmethod
    def nxdomain(cls) -> "Answer":
        return cls(values=(), kind=RecordKind.NXDOMAIN, ttl=1)


@dataclass(frozen=True)
class HelpEntry:
    """Brief: Help catalog line for one enabled service.

    Inputs (fields):
      - service: Zone label of the service.
      - description: Short human-readable description.
      - example: Example command; "{domain}" is replaced by server.domain.
    """

    service: str
    description: str
    example: str

    def render(self, domain: str) -> Tuple[str, str]:
        return (self.description, self.example.replace("{domain}", domain))


class Service:
    """Brief: Base class for zone handlers.

    Subclasses set ``zone`` plus the help ``description``/``example`` and
    implement handle(). handle() either returns an Answer or raises one of the
    dnstoys.errors request-time errors; the resolver converts those into DNS
    responses.

    Example use:
        >>> class Echo(Service):
        ...     zone = "echo"
        ...     def handle(self, query):
        ...         return Answer.txt([query.labels], ttl=1)
    """

    zone: ClassVar[str] = ""
    description: ClassVar[str] = ""
    example: ClassVar[str] = ""

    def handle(self, query: Query) -> Answer:
        raise NotImplementedError

    def help_entry(self) -> Optional[HelpEntry]:
        if not self.description:
            return None
        return HelpEntry(self.zone, self.description, self.example)

    def close(self) -> None:
        """Release background resources; the default has none."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} zone={self.zone!r}>"
