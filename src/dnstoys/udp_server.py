from __future__ import annotations

import logging
import socket
import socketserver
import threading
from typing import Callable, Tuple

logger = logging.getLogger(__name__)

# Large enough for any request a resolver will send us over UDP.
MAX_DATAGRAM = 65535


class _UDPHandler(socketserver.BaseRequestHandler):
    """
    Brief: UDP handler that delegates each datagram to a resolver callable.

    Inputs:
    - request: (data, socket) tuple provided by socketserver
    - client_address: peer address

    Outputs:
    - None; a reply is sent only when the resolver returns non-empty bytes.
    """

    def handle(self) -> None:
        data, sock = self.request  # type: ignore
        peer_ip = (
            self.client_address[0]
            if isinstance(self.client_address, tuple)
            else "0.0.0.0"
        )
        resp = self.server.resolver(data, peer_ip)  # type: ignore[attr-defined]
        if not resp:
            return
        try:
            sock.sendto(resp, self.client_address)
        except OSError as exc:
            logger.debug("failed to send reply to %s: %s", peer_ip, exc)


class _ThreadingUDPServer(socketserver.ThreadingUDPServer):
    daemon_threads = True
    allow_reuse_address = True
    max_packet_size = MAX_DATAGRAM

    def __init__(
        self,
        address: Tuple[str, int],
        resolver: Callable[[bytes, str], bytes],
    ) -> None:
        if ":" in address[0]:
            self.address_family = socket.AF_INET6
        self.resolver = resolver
        super().__init__(address, _UDPHandler)

    def handle_error(self, request, client_address) -> None:
        logger.exception("error handling datagram from %s", client_address)


class DNSServer:
    """Brief: UDP DNS listener bound to server.address.

    Inputs:
      - host: Listen address ("0.0.0.0", "::", "127.0.0.1", ...).
      - port: Listen port; 0 picks a free port.
      - resolver: Callable mapping (query_bytes, client_ip) -> response_bytes.

    Outputs:
      - DNSServer; the socket is bound at construction so bind errors surface
        before serve_forever() is called.

    Example use:
        >>> import threading
        >>> server = DNSServer("127.0.0.1", 0, lambda data, ip: b"")
        >>> t = threading.Thread(target=server.serve_forever, daemon=True)
        >>> t.start()
        >>> server.stop()
    """

    def __init__(
        self, host: str, port: int, resolver: Callable[[bytes, str], bytes]
    ) -> None:
        self.server = _ThreadingUDPServer((host, int(port)), resolver)
        self._lock = threading.Lock()
        self._serving = False
        self._closed = False

    @property
    def address(self) -> Tuple[str, int]:
        host, port = self.server.server_address[:2]
        return str(host), int(port)

    def serve_forever(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._serving = True
        host, port = self.address
        logger.info("listening for DNS on udp %s:%d", host, port)
        self.server.serve_forever(poll_interval=0.5)

    def stop(self) -> None:
        """Brief: Stop accepting datagrams and close the socket.

        Must not be called from the thread running serve_forever(), since
        socketserver.shutdown() waits for that loop to exit.
        """

        with self._lock:
            if self._closed:
                return
            self._closed = True
            serving = self._serving
        if serving:
            self.server.shutdown()
        self.server.server_close()
        logger.info("udp listener closed")
