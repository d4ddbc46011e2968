"""Per-query pipeline: decode, route, handle, assemble.

Brief:
  Resolver.resolve_bytes(data, client_ip) is the single entry point used by
  the transports. Every request-time failure is converted into a DNS response
  here; only datagrams that cannot be decoded at all (or are themselves
  responses) are dropped, since there is no question to answer.
"""

from __future__ import annotations

import logging

from dnslib import OPCODE, RCODE, DNSError, DNSRecord

from .errors import FormatError, InternalError, ResolutionError, UpstreamError
from .query import parse_qname
from .response import ResponseAssembler, udp_payload_limit
from .router import ZoneRouter

logger = logging.getLogger(__name__)


class Resolver:
    """Brief: Answer decoded DNS requests through the zone router.

    Inputs:
      - router: ZoneRouter holding the enabled services.
      - assembler: ResponseAssembler for this server.

    Example use:
        >>> from dnstoys.services.help import HelpService
        >>> r = Resolver(ZoneRouter(HelpService([], "dns.example")),
        ...              ResponseAssembler("dns.example"))
        >>> reply = r.resolve(DNSRecord.question("x.unknown", "TXT"), "192.0.2.1")
        >>> reply.header.rcode == RCODE.NXDOMAIN
        True
    """

    def __init__(self, router: ZoneRouter, assembler: ResponseAssembler) -> None:
        self.router = router
        self.assembler = assembler

    def resolve(self, request: DNSRecord, client_ip: str) -> DNSRecord:
        if request.header.opcode != OPCODE.QUERY:
            return self.assembler.rcode(request, RCODE.NOTIMP)
        if not request.questions:
            return self.assembler.rcode(request, RCODE.FORMERR)

        qname = str(request.q.qname)
        try:
            query = parse_qname(qname, request.q.qtype, client_ip)
            handler = self.router.route(query)
            answer = handler.handle(query)
            return self.assembler.answer(request, answer)
        except (FormatError, ResolutionError) as exc:
            logger.debug("negative answer for %s from %s: %s", qname, client_ip, exc)
            return self.assembler.error(request, exc)
        except UpstreamError as exc:
            logger.warning("upstream failure for %s: %s", qname, exc)
            return self.assembler.error(request, exc)
        except InternalError as exc:
            logger.exception("internal error for %s: %s", qname, exc)
            return self.assembler.error(request, exc)
        except Exception as exc:
            logger.exception("unexpected error handling %s", qname)
            return self.assembler.error(request, exc)

    def resolve_bytes(self, data: bytes, client_ip: str) -> bytes:
        """Brief: Wire-level wrapper around resolve().

        Inputs:
          - data: Raw DNS request datagram.
          - client_ip: Requester address.

        Outputs:
          - bytes: Packed response; b"" when the datagram is dropped. A
            reply that does not fit the client's UDP buffer is sent empty
            with TC set.
        """

        try:
            request = DNSRecord.parse(data)
        except (DNSError, ValueError, IndexError) as exc:
            logger.debug("dropping undecodable datagram from %s: %s", client_ip, exc)
            return b""
        if request.header.qr:
            logger.debug("dropping response datagram from %s", client_ip)
            return b""

        reply = self.resolve(request, client_ip)
        try:
            wire = reply.pack()
        except Exception:
            logger.exception("failed to encode reply for %s", request.q.qname)
            return self.assembler.servfail(request).pack()

        limit = udp_payload_limit(request)
        if len(wire) > limit:
            logger.debug(
                "truncating %d byte reply for %s to %s (limit %d)",
                len(wire),
                request.q.qname,
                client_ip,
                limit,
            )
            return self.assembler.truncated(request).pack()
        return wire
