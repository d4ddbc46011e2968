"""
Brief: Tests for dnstoys.services.registry and the dnstoys.main entry point.

Inputs:
  - None

Outputs:
  - None
"""

import logging

import pytest

from dnstoys import __version__
from dnstoys import main as main_mod
from dnstoys.config import AppConfig, build_config
from dnstoys.errors import ConfigError
from dnstoys.services.base import ServiceKind
from dnstoys.services.fx import FXService
from dnstoys.services.help import DefaultService, HelpService
from dnstoys.services.myip import MyIPService
from dnstoys.services import registry
from dnstoys.services.registry import (
    build_router,
    build_services,
    close_services,
    enabled_kinds,
)
from dnstoys.services.timezones import TimeService
from dnstoys.services.weather import WeatherService

SERVER = {"domain": "dns.example", "address": "127.0.0.1:0"}


def _all_enabled():
    return build_config(
        {
            "server": SERVER,
            "timezones": {"enabled": True, "geo_filepath": "/unused"},
            "fx": {"enabled": True, "api_key": "k", "refresh_interval": "1h"},
            "myip": {"enabled": True},
            "weather": {"enabled": True, "max_entries": 5, "cache_ttl": 60},
        }
    )


def test_enabled_kinds_follow_enum_order():
    cfg = _all_enabled()
    assert enabled_kinds(cfg) == [
        ServiceKind.TIME,
        ServiceKind.FX,
        ServiceKind.MYIP,
        ServiceKind.WEATHER,
    ]
    assert enabled_kinds(build_config({"server": SERVER})) == []


def test_build_services_and_router(geo, fake_session_factory, fake_response_factory):
    """
    Brief: Every enabled kind gets one service, registered under its zone.

    Inputs:
      - all services enabled, pre-built geo index, no background threads

    Outputs:
      - None: Asserts service types, router zones and help order
    """
    session = fake_session_factory([fake_response_factory({})])
    services = build_services(_all_enabled(), geo=geo, session=session, start_background=False)
    try:
        assert isinstance(services[ServiceKind.TIME], TimeService)
        assert isinstance(services[ServiceKind.FX], FXService)
        assert isinstance(services[ServiceKind.MYIP], MyIPService)
        assert isinstance(services[ServiceKind.WEATHER], WeatherService)

        router = build_router(_all_enabled(), services)
        assert router.zones() == ["help", "time", "fx", "myip", "weather"]
        help_svc = router.route("help")
        assert isinstance(help_svc, HelpService)
        assert [e.service for e in help_svc.entries] == ["time", "fx", "myip", "weather"]
        assert isinstance(router.route("nope"), DefaultService)
    finally:
        close_services(services)


def test_build_services_loads_geo_file(tmp_path):
    row = ["1", "Mumbai", "Mumbai", "Bombay", "19.0", "72.8", "P", "PPLC", "IN"]
    row += [""] * 5 + ["100", "", "", "Asia/Kolkata", "2024-01-01"]
    path = tmp_path / "cities.txt"
    path.write_text("\t".join(row) + "\n", encoding="utf-8")
    cfg = build_config(
        {"server": SERVER, "timezones": {"enabled": True, "geo_filepath": str(path)}}
    )
    services = build_services(cfg)
    assert list(services) == [ServiceKind.TIME]


def test_build_services_missing_geo_file(tmp_path):
    cfg = build_config(
        {
            "server": SERVER,
            "timezones": {"enabled": True, "geo_filepath": str(tmp_path / "nope.txt")},
        }
    )
    with pytest.raises(ConfigError):
        build_services(cfg)


def test_build_services_without_geo_path_is_config_error():
    """
    Brief: A weather-enabled AppConfig built without geo_filepath fails with ConfigError.

    Inputs:
      - AppConfig constructed directly, skipping build_config required-key checks

    Outputs:
      - None: Asserts ConfigError naming the missing key
    """
    cfg = AppConfig(server=SERVER, weather={"enabled": True, "max_entries": 5, "cache_ttl": 60})
    with pytest.raises(ConfigError, match="geo_filepath"):
        build_services(cfg, start_background=False)


@pytest.mark.parametrize(
    "section",
    [
        {"timezones": {"enabled": True, "geo_filepath": "/unused"}},
        {
            "timezones": {"geo_filepath": "/unused"},
            "weather": {"enabled": True, "max_entries": 5, "cache_ttl": 60},
        },
    ],
)
def test_build_services_geo_unavailable_is_config_error(monkeypatch, section):
    monkeypatch.setattr(registry, "load_geo", lambda cfg: None)
    cfg = build_config({"server": SERVER, **section})
    with pytest.raises(ConfigError, match="no geo index"):
        build_services(cfg, start_background=False)


def test_main_version(capsys):
    with pytest.raises(SystemExit) as excinfo:
        main_mod.main(["--version"])
    assert excinfo.value.code == 0
    assert __version__ in capsys.readouterr().out


def test_main_missing_config_returns_1(tmp_path, capsys):
    assert main_mod.main(["--config", str(tmp_path / "missing.yaml")]) == 1
    assert "missing.yaml" in capsys.readouterr().err


def test_main_invalid_config_returns_1(tmp_path):
    path = tmp_path / "c.yaml"
    path.write_text("server:\n  domain: dns.example\n  address: '127.0.0.1:0'\nfx:\n  enabled: true\n")
    assert main_mod.main(["--config", str(path)]) == 1


def test_main_runs_and_shuts_down(tmp_path, monkeypatch):
    """
    Brief: main() builds the server, serves, and closes services on exit.

    Inputs:
      - myip-only config, DNSServer replaced by a stub whose loop returns

    Outputs:
      - None: Asserts exit code and lifecycle calls
    """
    path = tmp_path / "c.yaml"
    path.write_text(
        "server:\n  domain: dns.example\n  address: '127.0.0.1:0'\n"
        "myip:\n  enabled: true\n"
        "logging:\n  level: debug\n  stderr: false\n"
    )
    events = []

    class StubServer:
        def __init__(self, host, port, resolver):
            events.append(("init", host, port))
            self.resolver = resolver

        def serve_forever(self):
            events.append(("serve",))

        def stop(self):
            events.append(("stop",))

    monkeypatch.setattr(main_mod, "DNSServer", StubServer)
    monkeypatch.setattr(main_mod.signal, "signal", lambda *a, **k: None)
    try:
        assert main_mod.main(["--config", str(path)]) == 0
    finally:
        logging.getLogger().handlers.clear()
    assert events == [("init", "127.0.0.1", 0), ("serve",), ("stop",)]


def test_main_bind_failure_returns_1(tmp_path, monkeypatch):
    path = tmp_path / "c.yaml"
    path.write_text(
        "server:\n  domain: dns.example\n  address: '127.0.0.1:0'\n"
        "logging:\n  stderr: false\n"
    )

    def boom(*args, **kwargs):
        raise OSError("address in use")

    monkeypatch.setattr(main_mod, "DNSServer", boom)
    try:
        assert main_mod.main(["--config", str(path)]) == 1
    finally:
        logging.getLogger().handlers.clear()
