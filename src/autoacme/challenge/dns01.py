"""DNS-01 strategy publishing TXT records through a delegated zone.

The certified host's zone usually cannot be updated directly, so each
``_acme-challenge.<host>`` is expected to be a CNAME pointing into a
*delegation domain* that the configured nameserver manages.  Challenge
records are created at the CNAME target with the value
``base64url(SHA-256(key_authorization))``.

The reachability test checks, per host:

1. the CNAME exists and points into the delegation domain
   (:class:`DnsDelegationError` otherwise)
2. a random TXT record created under the delegation domain resolves
   back through DNS (:class:`ReachabilityError` otherwise)

Delegation is checked first, so a missing or foreign CNAME is reported
as a delegation problem even when the nameserver is also unreachable.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import secrets
from typing import TYPE_CHECKING

import dns.exception
import dns.resolver

from autoacme.challenge.base import (
    ChallengeHandler,
    ChallengeStrategy,
    CleanupError,
    DnsDelegationError,
    HandlerCreationError,
    ReachabilityError,
)
from autoacme.challenge.dns_update import DnsUpdateError, Rfc2136Client
from autoacme.core.hostname import parse_host_names, to_ascii_host_name
from autoacme.core.types import ChallengeType

if TYPE_CHECKING:
    from collections.abc import Iterable

    from autoacme.challenge.dns_update import TxtRecordHandle
    from autoacme.config.settings import DnsSettings
    from autoacme.core.hostname import HostName

log = logging.getLogger(__name__)


def dns01_digest(key_authorization: str) -> str:
    """Return the DNS-01 TXT value for *key_authorization* (RFC 8555 §8.4)."""
    digest = hashlib.sha256(key_authorization.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


class DnsStrategy(ChallengeStrategy):
    """DNS-01 strategy backed by RFC 2136 updates and CNAME delegation.

    Parameters
    ----------
    settings:
        The ``challenges.dns`` settings section.
    updater:
        Record management client; built from *settings* when omitted.
    resolver:
        Resolver used for CNAME and TXT lookups; built from *settings*
        when omitted.

    """

    challenge_type = ChallengeType.DNS_01
    name = "dns"

    def __init__(
        self,
        settings: DnsSettings,
        *,
        updater: Rfc2136Client | None = None,
        resolver: dns.resolver.Resolver | None = None,
    ) -> None:
        super().__init__()
        self.settings = settings
        self.domain = to_ascii_host_name(settings.domain)
        self.updater = updater or Rfc2136Client.from_settings(settings)
        if resolver is None:
            # Explicit resolvers replace the system configuration entirely.
            resolver = dns.resolver.Resolver(configure=not settings.resolvers)
            if settings.resolvers:
                resolver.nameservers = list(settings.resolvers)
            resolver.lifetime = settings.timeout_seconds
        self.resolver = resolver

    # -- lookups -----------------------------------------------------------

    def _lookup_cname(self, name: str) -> str | None:
        """Return the CNAME target of *name* without trailing dot, or None."""
        try:
            answer = self.resolver.resolve(name, "CNAME")
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            return None
        for rdata in answer:
            return rdata.target.to_text().rstrip(".").lower()
        return None

    def _lookup_txt(self, name: str) -> list[str]:
        try:
            answer = self.resolver.resolve(name, "TXT")
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            return []
        return [b"".join(rdata.strings).decode("ascii", errors="replace") for rdata in answer]

    def _in_domain(self, name: str) -> bool:
        return name.lower().endswith("." + self.domain)

    # -- strategy ----------------------------------------------------------

    def create_handler(
        self,
        host: HostName | None,
        token: str,
        key_authorization: str,
    ) -> ChallengeHandler:
        if host is None:
            msg = "DNS-01 challenges need a host name"
            raise HandlerCreationError(msg)

        try:
            target = self._lookup_cname(host.challenge_name)
        except dns.exception.DNSException as exc:
            msg = f"CNAME lookup for {host.challenge_name} failed: {exc}"
            raise HandlerCreationError(msg) from exc
        if target is None:
            target = host.challenge_name
        log.debug("DNS CNAME target for %s: %s", host.challenge_name, target)

        value = dns01_digest(key_authorization)
        log.debug("DNS value for %s: %s", host, value)
        try:
            record = self.updater.create_txt_record(
                self.domain,
                target,
                value,
                self.settings.ttl,
            )
        except DnsUpdateError as exc:
            msg = f"Cannot create TXT record {target} for {host}: {exc.detail}"
            raise HandlerCreationError(msg) from exc
        log.info("Created TXT record %s for %s", target, host)
        return ChallengeHandler(
            token=token,
            challenge_type=self.challenge_type,
            resource=record,
            host=host.name,
        )

    def cleanup(self, handler: ChallengeHandler) -> None:
        record: TxtRecordHandle = handler.resource
        try:
            self.updater.delete_record(record)
        except DnsUpdateError as exc:
            raise CleanupError(exc.detail) from exc
        log.info("Deleted TXT record %s", record.name)

    def test_reachability(self, host_names: Iterable[HostName | str]) -> bool:
        self.last_failure = None
        unique: dict[str, HostName] = {}
        for host in parse_host_names(host_names):
            unique.setdefault(host.name.lower(), host)

        try:
            for host in unique.values():
                self._check_delegation(host)
                self._check_round_trip()
        except ReachabilityError as exc:
            return self._fail(exc)
        return True

    def _check_delegation(self, host: HostName) -> None:
        name = host.challenge_name
        try:
            target = self._lookup_cname(name)
        except dns.exception.DNSException as exc:
            msg = f"CNAME lookup for {name} failed: {exc}"
            raise ReachabilityError(msg) from exc
        if target is None:
            msg = f"No DNS CNAME record found for {name}; delegation to {self.domain} is not configured"
            raise DnsDelegationError(msg)
        if not self._in_domain(target):
            msg = (
                f"The DNS CNAME record for {name} points to {target} "
                f"which is not part of {self.domain}"
            )
            raise DnsDelegationError(msg)
        log.debug("The DNS CNAME record for %s points to %s", name, target)

    def _check_round_trip(self) -> None:
        # Random name and value so resolver caches cannot fake success.
        probe_id = secrets.token_hex(16)
        name = f"_{probe_id}.{self.domain}"
        try:
            record = self.updater.create_txt_record(self.domain, name, probe_id, self.settings.ttl)
        except DnsUpdateError as exc:
            msg = f"Error occurred while communicating to the DNS server: {exc.detail}"
            raise ReachabilityError(msg) from exc

        try:
            try:
                values = self._lookup_txt(name)
            except dns.exception.DNSException as exc:
                msg = f"TXT lookup for test record {name} failed: {exc}"
                raise ReachabilityError(msg) from exc
            if not values:
                msg = (
                    f"The DNS TXT test record was added to {self.domain} on "
                    f"{self.settings.server}, but could not be retrieved via DNS"
                )
                raise ReachabilityError(msg)
            if not any(probe_id in v for v in values):
                msg = "The DNS TXT test record does not have the expected content"
                raise ReachabilityError(msg)
        finally:
            try:
                self.updater.delete_record(record)
            except DnsUpdateError as exc:
                log.warning("Could not delete DNS test record %s: %s", name, exc.detail)
