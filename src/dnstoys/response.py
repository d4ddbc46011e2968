"""Turn service outcomes into DNS responses.

Brief:
  - Answers become TXT or A/AAAA records named after the question.
  - FormatError, ResolutionError and unknown zones become NXDOMAIN with an SOA
    for server.domain in the authority section, so resolvers cache the
    negative answer for ERROR_TTL seconds only.
  - UpstreamError, InternalError and anything unexpected become SERVFAIL.
  - Replies larger than the client's UDP buffer (512 bytes, or the EDNS
    size it advertises) are replaced by an empty reply with TC set.
"""

from __future__ import annotations

import ipaddress
import logging
import time

from dnslib import AAAA, QTYPE, RCODE, RR, SOA, TXT, A, DNSHeader, DNSRecord

from .errors import FormatError, ResolutionError
from .services.base import Answer, RecordKind

logger = logging.getLogger(__name__)

ERROR_TTL = 1

# SOA timers: refresh, retry, expire, minimum (negative-caching TTL).
_SOA_TIMERS = (3600, 600, 86400, ERROR_TTL)

# Largest UDP reply a client accepts when it sends no EDNS OPT record.
UDP_PAYLOAD_LIMIT = 512


def udp_payload_limit(request: DNSRecord) -> int:
    """Brief: Size limit for a UDP reply to request.

    Inputs:
      - request: Parsed request; an OPT record in its additional section
        advertises the client's buffer size in its class field.

    Outputs:
      - int: The advertised size, never below UDP_PAYLOAD_LIMIT.
    """

    for rr in request.ar:
        if rr.rtype == QTYPE.OPT:
            return max(UDP_PAYLOAD_LIMIT, int(rr.rclass))
    return UDP_PAYLOAD_LIMIT


class ResponseAssembler:
    """Brief: Build protocol-correct replies for one server identity.

    Inputs:
      - domain: server.domain, used as the SOA owner of negative answers.

    Example use:
        >>> req = DNSRecord.question("nope.example", "TXT")
        >>> ResponseAssembler("dns.example").nxdomain(req).header.rcode == RCODE.NXDOMAIN
        True
    """

    def __init__(self, domain: str) -> None:
        self.domain = str(domain or "").rstrip(".") or "localhost"

    def answer(self, request: DNSRecord, answer: Answer) -> DNSRecord:
        if answer.kind == RecordKind.NXDOMAIN:
            return self.nxdomain(request)

        reply = request.reply()
        qname = request.q.qname
        for value in answer.values:
            if answer.kind == RecordKind.ADDRESS:
                ip = ipaddress.ip_address(str(value))
                if ip.version == 4:
                    rr = RR(qname, QTYPE.A, ttl=answer.ttl, rdata=A(str(ip)))
                else:
                    rr = RR(qname, QTYPE.AAAA, ttl=answer.ttl, rdata=AAAA(str(ip)))
            else:
                strings = [value] if isinstance(value, str) else list(value)
                rr = RR(qname, QTYPE.TXT, ttl=answer.ttl, rdata=TXT(strings))
            reply.add_answer(rr)
        return reply

    def nxdomain(self, request: DNSRecord) -> DNSRecord:
        reply = request.reply()
        reply.header.rcode = RCODE.NXDOMAIN
        serial = int(time.time()) & 0xFFFFFFFF
        reply.add_auth(
            RR(
                self.domain,
                QTYPE.SOA,
                ttl=ERROR_TTL,
                rdata=SOA(
                    f"ns.{self.domain}",
                    f"hostmaster.{self.domain}",
                    (serial,) + _SOA_TIMERS,
                ),
            )
        )
        return reply

    def truncated(self, request: DNSRecord) -> DNSRecord:
        """Empty reply with TC set, telling the client the answer did not fit."""

        reply = request.reply()
        reply.header.tc = 1
        return reply

    def servfail(self, request: DNSRecord) -> DNSRecord:
        reply = request.reply()
        reply.header.rcode = RCODE.SERVFAIL
        return reply

    def rcode(self, request: DNSRecord, rcode: int) -> DNSRecord:
        if request.questions:
            reply = request.reply()
        else:
            # reply() would invent a root question for an empty request.
            reply = DNSRecord(
                DNSHeader(
                    id=request.header.id,
                    bitmap=request.header.bitmap,
                    qr=1,
                    ra=1,
                    aa=1,
                )
            )
        reply.header.rcode = rcode
        return reply

    def error(self, request: DNSRecord, exc: BaseException) -> DNSRecord:
        """Brief: Map a request-time exception to a negative or failure reply.

        Inputs:
          - request: Parsed request.
          - exc: Exception raised while handling it.

        Outputs:
          - DNSRecord: NXDOMAIN for FormatError/ResolutionError, SERVFAIL for
            everything else.
        """

        if isinstance(exc, (FormatError, ResolutionError)):
            return self.nxdomain(request)
        return self.servfail(request)
