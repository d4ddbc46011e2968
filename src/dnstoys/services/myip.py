from __future__ import annotations

import ipaddress
import logging

from dnslib import QTYPE

from ..errors import InternalError
from ..query import Query, parse_no_params
from .base import Answer, Service

logger = logging.getLogger(__name__)

MYIP_TTL = 1

_ADDRESS_QTYPES = frozenset({QTYPE.A, QTYPE.AAAA, QTYPE.ANY})


def client_address(raw: str) -> str:
    """Brief: Normalize a transport source address.

    Inputs:
      - raw: Address as reported by the socket; may carry an IPv6 zone id or
        be an IPv4-mapped IPv6 address.

    Outputs:
      - str: Canonical textual address (IPv4-mapped addresses as IPv4).

    Raises:
      - InternalError: When the transport did not supply a valid address.
    """

    text = str(raw or "").split("%", 1)[0]
    try:
        ip = ipaddress.ip_address(text)
    except ValueError as exc:
        raise InternalError(f"myip: invalid client address {raw!r}") from exc
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return str(ip)


class MyIPService(Service):
    """Brief: Echo the requester's source address.

    A, AAAA and ANY questions get an address record matching the client's
    address family; every other question type gets a TXT record.
    """

    zone = "myip"
    description = "get your host's requesting IP."
    example = "dig myip @{domain}"

    def handle(self, query: Query) -> Answer:
        parse_no_params(query.labels)
        address = client_address(query.client_ip)
        if query.qtype in _ADDRESS_QTYPES:
            return Answer.address([address], ttl=MYIP_TTL)
        return Answer.txt([(address,)], ttl=MYIP_TTL)
