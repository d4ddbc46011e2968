"""
Brief: Tests for dnstoys.logging_config.init_logging and formatters.

Inputs:
  - None

Outputs:
  - None
"""

import logging
import logging.handlers

import pytest

from dnstoys.logging_config import (
    LINE_FORMAT,
    BracketLevelFormatter,
    SyslogFormatter,
    init_logging,
    level_from_name,
    level_tag,
    syslog_target,
)


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for h in list(root.handlers):
        if h not in handlers:
            root.removeHandler(h)
            close = getattr(h, "close", None)
            if callable(close):
                close()
    for h in handlers:
        if h not in root.handlers:
            root.addHandler(h)
    root.setLevel(level)


@pytest.mark.parametrize(
    "name,level",
    [
        ("debug", logging.DEBUG),
        ("INFO", logging.INFO),
        ("warn", logging.WARNING),
        ("crit", logging.CRITICAL),
        ("bogus", logging.INFO),
        (None, logging.INFO),
    ],
)
def test_level_from_name(name, level):
    assert level_from_name(name) == level


def test_init_logging_stderr_default():
    """
    Brief: init_logging installs one stderr handler and applies the level.

    Inputs:
      - cfg: level only

    Outputs:
      - None: Asserts handler and level
    """
    init_logging({"level": "warn"})
    root = logging.getLogger()
    assert root.level == logging.WARNING
    assert len(root.handlers) == 1
    assert isinstance(root.handlers[0].formatter, BracketLevelFormatter)


def test_init_logging_file_handler(tmp_path):
    log_path = tmp_path / "logs" / "dnstoys.log"
    init_logging({"level": "info", "stderr": False, "file": str(log_path)})
    logging.getLogger("dnstoys.test").info("file message")
    for h in logging.getLogger().handlers:
        h.flush()
    content = log_path.read_text()
    assert "[info] dnstoys.test: file message" in content


def test_init_logging_syslog(monkeypatch):
    """
    Brief: syslog: true and syslog: {address, facility} build a SysLogHandler.

    Inputs:
      - monkeypatched SysLogHandler recording its arguments

    Outputs:
      - None: Asserts address, facility and formatter
    """
    created = []

    class RecordingSysLogHandler(logging.Handler):
        LOG_USER = 8
        LOG_LOCAL0 = 128

        def __init__(self, address=None, facility=None):
            super().__init__()
            created.append((address, facility))

        def emit(self, record):
            pass

    monkeypatch.setattr(logging.handlers, "SysLogHandler", RecordingSysLogHandler)

    init_logging({"stderr": False, "syslog": True})
    assert created[-1] == ("/dev/log", 8)
    assert isinstance(logging.getLogger().handlers[0].formatter, SyslogFormatter)

    init_logging({"stderr": False, "syslog": {"address": ["localhost", 514], "facility": "local0"}})
    assert created[-1] == (("localhost", 514), 128)

    init_logging({"stderr": False, "syslog": {"facility": "LOCAL0"}})
    assert created[-1] == ("/dev/log", 128)


def test_formatters_tags():
    bracket = BracketLevelFormatter(fmt="%(asctime)s %(level_tag)s %(name)s: %(message)s")
    rec = logging.LogRecord("n", logging.ERROR, __file__, 1, "m", (), None)
    rec.created = 0.0
    assert bracket.format(rec) == "1970-01-01T00:00:00Z [error] n: m"

    rec2 = logging.LogRecord("n2", logging.WARNING, __file__, 2, "m2", (), None)
    assert SyslogFormatter().format(rec2) == "[warn] n2: m2"


def test_bracket_formatter_defaults_to_line_format():
    rec = logging.LogRecord("dnstoys.fx", logging.INFO, __file__, 3, "rates %s", ("ok",), None)
    rec.created = 86400.5
    assert BracketLevelFormatter().format(rec) == "1970-01-02T00:00:00Z [info] dnstoys.fx: rates ok"
    assert BracketLevelFormatter()._fmt == LINE_FORMAT


def test_level_tag_names():
    assert level_tag(logging.DEBUG) == "[debug]"
    assert level_tag(logging.CRITICAL) == "[crit]"
    assert level_tag(5) == "[lvl5]"


def test_syslog_target_rejects_unknown_facility():
    assert syslog_target(True) == ("/dev/log", logging.handlers.SysLogHandler.LOG_USER)
    with pytest.raises(ValueError):
        syslog_target({"facility": "nope"})


def test_bad_syslog_option_keeps_other_handlers(capsys):
    """
    Brief: An unusable syslog option is logged as a warning; stderr still works.

    Inputs:
      - cfg with stderr on and an unknown syslog facility

    Outputs:
      - None: Asserts one stderr handler and the warning text
    """
    init_logging({"level": "info", "syslog": {"facility": "nope"}})
    root = logging.getLogger()
    assert len(root.handlers) == 1
    assert isinstance(root.handlers[0].formatter, BracketLevelFormatter)
    assert "[warn] root: syslog logging disabled: unknown syslog facility 'nope'" in capsys.readouterr().err
