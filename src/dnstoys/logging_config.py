"""Root logger setup driven by the ``logging`` section of the config.

Brief:
  dnstoys logs with bracketed lowercase level tags (``[info]``, ``[warn]``)
  to any mix of stderr, a file and syslog. Lines written to stderr or a file
  start with a UTC timestamp; syslog lines do not, the daemon stamps them.

Example config:
  logging:
    level: info
    stderr: true
    file: ./dnstoys.log
    syslog: {address: [localhost, 514], facility: local0}
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import sys
import time
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

# Config level names; "warn" and "crit" are also the tags printed in lines.
_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "crit": logging.CRITICAL,
    "critical": logging.CRITICAL,
}
_TAG_NAMES = {logging.WARNING: "warn", logging.CRITICAL: "crit"}

LINE_FORMAT = "%(asctime)s %(level_tag)s %(name)s: %(message)s"
DEFAULT_SYSLOG_ADDRESS = "/dev/log"

SyslogAddress = Union[str, Tuple[str, int]]


def level_tag(levelno: int) -> str:
    """Return the bracketed tag for a level, e.g. ``[warn]``."""

    name = _TAG_NAMES.get(levelno) or logging.getLevelName(levelno)
    if not isinstance(name, str) or name.startswith("Level "):
        return f"[lvl{levelno}]"
    return f"[{name.lower()}]"


def level_from_name(name: object) -> int:
    """Brief: Map a config level string to a logging level constant.

    Inputs:
      - name: Level name such as "debug", "info", "warn" (case-insensitive).

    Outputs:
      - int: logging level; INFO when the name is unknown.
    """

    return _LEVELS.get(str(name or "info").strip().lower(), logging.INFO)


class BracketLevelFormatter(logging.Formatter):
    """Timestamped line formatter: ``2024-01-02T00:00:00Z [info] name: msg``."""

    converter = time.gmtime
    default_time_format = "%Y-%m-%dT%H:%M:%SZ"
    default_msec_format = None

    def __init__(self, fmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt or LINE_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        record.level_tag = level_tag(record.levelno)
        return super().format(record)


class SyslogFormatter(logging.Formatter):
    """Syslog line formatter without a timestamp: ``[info] name: msg``."""

    def format(self, record: logging.LogRecord) -> str:
        return f"{level_tag(record.levelno)} {record.name}: {record.getMessage()}"


def syslog_target(option: Any) -> Tuple[SyslogAddress, int]:
    """Brief: Resolve the ``syslog`` option into a handler address and facility.

    Inputs:
      - option: ``true`` for the local socket with facility USER, or a mapping
        with optional ``address`` (socket path or ``[host, port]``) and
        ``facility`` (``user``, ``local0`` ...).

    Outputs:
      - (address, facility) suitable for ``logging.handlers.SysLogHandler``.

    Raises:
      - ValueError: When the facility name is unknown.
    """

    handler_cls = logging.handlers.SysLogHandler
    if not isinstance(option, Mapping):
        return DEFAULT_SYSLOG_ADDRESS, handler_cls.LOG_USER

    address = option.get("address") or DEFAULT_SYSLOG_ADDRESS
    if isinstance(address, (list, tuple)):
        host, port = address
        address = (str(host), int(port))

    facility_name = str(option.get("facility") or "user").upper()
    facility = getattr(handler_cls, f"LOG_{facility_name}", None)
    if not isinstance(facility, int):
        raise ValueError(f"unknown syslog facility {facility_name.lower()!r}")
    return address, facility


def _file_handler(path: str) -> logging.Handler:
    path = os.path.abspath(os.path.expanduser(path))
    os.makedirs(os.path.dirname(path), exist_ok=True)
    return logging.FileHandler(path, mode="a", encoding="utf-8")


def _local_handlers(cfg: Mapping[str, Any]) -> List[logging.Handler]:
    handlers: List[logging.Handler] = []
    if cfg.get("stderr", True):
        handlers.append(logging.StreamHandler(sys.stderr))
    path = cfg.get("file")
    if isinstance(path, str) and path.strip():
        handlers.append(_file_handler(path.strip()))
    for handler in handlers:
        handler.setFormatter(BracketLevelFormatter())
    return handlers


def _syslog_handler(option: Any) -> logging.Handler:
    address, facility = syslog_target(option)
    handler = logging.handlers.SysLogHandler(address=address, facility=facility)
    handler.setFormatter(SyslogFormatter())
    return handler


def init_logging(cfg: Optional[Dict[str, Any]]) -> None:
    """Brief: Replace the root logger's handlers with those named in cfg.

    Inputs:
      - cfg: The ``logging`` config section; keys ``level`` (default info),
        ``stderr`` (default true), ``file`` and ``syslog``. ``None`` means
        defaults.

    Outputs:
      - None. A syslog target that cannot be opened is reported as a warning
        on the remaining handlers instead of stopping startup.
    """

    cfg = cfg or {}
    root = logging.getLogger()
    root.setLevel(level_from_name(cfg.get("level")))
    for old in list(root.handlers):
        root.removeHandler(old)

    for handler in _local_handlers(cfg):
        root.addHandler(handler)

    if cfg.get("syslog"):
        try:
            root.addHandler(_syslog_handler(cfg["syslog"]))
        except (OSError, ValueError) as exc:
            root.warning("syslog logging disabled: %s", exc)
    logging.captureWarnings(True)
