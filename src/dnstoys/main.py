from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from typing import List, Optional

from . import __version__
from .config import parse_config_files
from .errors import ConfigError
from .logging_config import init_logging
from .resolver import Resolver
from .response import ResponseAssembler
from .services.registry import build_router, build_services, close_services
from .udp_server import DNSServer


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dnstoys",
        description="Utility services (time, fx, weather, myip) over DNS",
    )
    parser.add_argument(
        "--config",
        action="append",
        default=None,
        metavar="PATH",
        help=(
            "Path to a YAML config file; may be repeated, later files "
            "override earlier ones (default: config.yaml)"
        ),
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the dnstoys server.
    Loads configuration, builds the enabled services and serves DNS over UDP
    until SIGINT or SIGTERM.

    Args:
        argv: Command-line arguments.

    Returns:
        An exit code: 0 after a clean shutdown, 1 on configuration or startup
        errors.

    Example use:
        CLI:
            PYTHONPATH=src python -m dnstoys.main --config config.yaml
    """
    args = build_parser().parse_args(argv)
    paths = args.config or ["config.yaml"]

    try:
        cfg = parse_config_files(paths)
    except ConfigError as exc:
        print(f"dnstoys: {exc}", file=sys.stderr)
        return 1

    init_logging(cfg.logging)
    logger = logging.getLogger("dnstoys.main")
    logger.info("loaded config from %s", ", ".join(paths))

    try:
        services = build_services(cfg)
    except ConfigError as exc:
        logger.error("startup failed: %s", exc)
        return 1

    try:
        router = build_router(cfg, services)
        resolver = Resolver(router, ResponseAssembler(cfg.server.domain))
        host, port = cfg.server.host_port()
        server = DNSServer(host, port, resolver.resolve_bytes)
    except (ConfigError, OSError) as exc:
        logger.error("startup failed: %s", exc)
        close_services(services)
        return 1

    shutdown_event = threading.Event()

    def _request_shutdown(signum, _frame) -> None:
        if shutdown_event.is_set():
            return
        shutdown_event.set()
        logger.info("received %s, shutting down", signal.Signals(signum).name)
        # shutdown() blocks until serve_forever returns; never call it on the
        # thread that is running the loop.
        threading.Thread(target=server.stop, name="dnstoys-stop", daemon=True).start()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            signal.signal(sig, _request_shutdown)
        except ValueError:
            logger.warning("could not install %s handler", sig.name)

    logger.info(
        "serving zones %s for %s",
        ", ".join(router.zones()),
        cfg.server.domain,
    )

    exit_code = 0
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("received interrupt, shutting down")
    except Exception:
        logger.exception("unhandled exception in udp listener")
        exit_code = 1
    finally:
        server.stop()
        close_services(services)
        logger.info("shutdown complete")
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
