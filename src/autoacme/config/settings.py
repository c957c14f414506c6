"""Typed, frozen dataclasses for every configuration section.

This module is the **single source of truth** for default values.
JSON Schema defaults exist only for documentation; these builders are
what the engine and the strategies actually read.

Settings objects are passed explicitly to constructors::

    from autoacme.config import load_settings
    from autoacme.challenge.registry import create_strategy

    settings = load_settings("autoacme.yaml")
    strategy = create_strategy(settings.challenges)
"""

from __future__ import annotations

from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Validation engine
# ---------------------------------------------------------------------------

DEFAULT_RETRY_COUNT = 10
DEFAULT_WAIT_SECONDS = 5.0


@dataclass(frozen=True)
class EngineSettings:
    """Polling budget of the validation engine.

    Attributes
    ----------
    retry_count:
        Maximum number of polling iterations.
    wait_seconds:
        Pause between two polling iterations.
    max_workers:
        Upper bound on concurrent status refreshes per iteration.

    """

    retry_count: int = DEFAULT_RETRY_COUNT
    wait_seconds: float = DEFAULT_WAIT_SECONDS
    max_workers: int = 8


def _build_engine(data: dict | None) -> EngineSettings:
    d = data or {}
    return EngineSettings(
        retry_count=d.get("retry_count", DEFAULT_RETRY_COUNT),
        wait_seconds=float(d.get("wait_seconds", DEFAULT_WAIT_SECONDS)),
        max_workers=d.get("max_workers", 8),
    )


# ---------------------------------------------------------------------------
# Challenge strategies
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HttpFileSettings:
    """Folder served by an existing web server at ``/.well-known/acme-challenge/``."""

    challenge_folder: str
    timeout_seconds: float = 10


@dataclass(frozen=True)
class HttpHostedSettings:
    """Self-hosted listener bound to ``url_prefix``."""

    url_prefix: str = "http://+:80/.well-known/acme-challenge/"
    timeout_seconds: float = 10


@dataclass(frozen=True)
class DnsSettings:
    """RFC 2136 nameserver and delegation domain for DNS-01."""

    server: str
    domain: str
    port: int = 53
    tsig_key_name: str | None = None
    tsig_secret: str | None = None
    tsig_algorithm: str = "HMAC-SHA256"
    resolvers: tuple[str, ...] = ()
    timeout_seconds: float = 30
    ttl: int = 10


@dataclass(frozen=True)
class ChallengeSettings:
    """Strategy selection.

    ``mode`` is one of ``auto``, ``file``, ``hosted``, ``dns`` or
    ``fallback``.  ``auto`` prefers DNS when configured, then the
    self-hosted listener, then the file strategy.
    """

    mode: str
    fallback_order: tuple[str, ...]
    http_file: HttpFileSettings | None
    http_hosted: HttpHostedSettings | None
    dns: DnsSettings | None


def _build_http_file(data: dict | None) -> HttpFileSettings | None:
    if not data:
        return None
    return HttpFileSettings(
        challenge_folder=data["challenge_folder"],
        timeout_seconds=data.get("timeout_seconds", 10),
    )


def _build_http_hosted(data: dict | None) -> HttpHostedSettings | None:
    if data is None:
        return None
    return HttpHostedSettings(
        url_prefix=data.get("url_prefix", "http://+:80/.well-known/acme-challenge/"),
        timeout_seconds=data.get("timeout_seconds", 10),
    )


def _build_dns(data: dict | None) -> DnsSettings | None:
    if not data:
        return None
    return DnsSettings(
        server=data["server"],
        domain=data["domain"],
        port=data.get("port", 53),
        tsig_key_name=data.get("tsig_key_name"),
        tsig_secret=data.get("tsig_secret"),
        tsig_algorithm=data.get("tsig_algorithm", "HMAC-SHA256"),
        resolvers=tuple(data.get("resolvers", [])),
        timeout_seconds=data.get("timeout_seconds", 30),
        ttl=data.get("ttl", 10),
    )


def _build_challenges(data: dict | None) -> ChallengeSettings:
    d = data or {}
    return ChallengeSettings(
        mode=d.get("mode", "auto"),
        fallback_order=tuple(d.get("fallback_order", ["dns", "hosted", "file"])),
        http_file=_build_http_file(d.get("http_file")),
        http_hosted=_build_http_hosted(d.get("http_hosted")),
        dns=_build_dns(d.get("dns")),
    )


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"
    format: str = "text"


def _build_logging(data: dict | None) -> LoggingSettings:
    d = data or {}
    return LoggingSettings(
        level=d.get("level", "INFO"),
        format=d.get("format", "text"),
    )


# ---------------------------------------------------------------------------
# Root settings aggregate
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AutoAcmeSettings:
    engine: EngineSettings
    challenges: ChallengeSettings
    logging: LoggingSettings


def build_settings(data: dict) -> AutoAcmeSettings:
    """Build the full typed settings tree from raw config data.

    Called by :func:`~autoacme.config.loader.load_settings` after
    environment-variable resolution and schema validation.
    """
    return AutoAcmeSettings(
        engine=_build_engine(data.get("engine")),
        challenges=_build_challenges(data.get("challenges")),
        logging=_build_logging(data.get("logging")),
    )
