"""Error taxonomy shared by the dnstoys services.

Brief:
  Startup problems raise ConfigError and abort the process. Everything else is
  raised while handling a single query and is converted into a DNS response by
  the resolver boundary (see dnstoys.response):

    - FormatError, ResolutionError -> NXDOMAIN
    - UpstreamError, InternalError -> SERVFAIL
"""

from __future__ import annotations


class DnsToysError(Exception):
    """Base class for all dnstoys errors."""


class ConfigError(DnsToysError):
    """Required configuration or data source is missing or unreadable."""


class FormatError(DnsToysError):
    """Query labels do not match the grammar of the target service."""


class ResolutionError(DnsToysError):
    """A place name could not be resolved in the geo index."""


class UpstreamError(DnsToysError):
    """An external data source failed, timed out or is not yet available."""


class InternalError(DnsToysError):
    """Unexpected failure while computing an answer."""
