"""Remote DNS record management via RFC 2136 dynamic updates.

Creates and deletes TXT records on the managing nameserver, optionally
signing updates with a TSIG key.  A created record is identified by a
:class:`TxtRecordHandle`, which is all :meth:`Rfc2136Client.delete_record`
needs to remove it again.
"""

from __future__ import annotations

import ipaddress
import logging
import socket
from dataclasses import dataclass
from typing import TYPE_CHECKING

import dns.exception
import dns.name
import dns.query
import dns.rcode
import dns.rdatatype
import dns.tsig
import dns.tsigkeyring
import dns.update

from autoacme.challenge.base import ChallengeError

if TYPE_CHECKING:
    from autoacme.config.settings import DnsSettings

log = logging.getLogger(__name__)

DEFAULT_PORT = 53
DEFAULT_TTL = 10

ALGORITHMS: dict[str, dns.name.Name] = {
    "HMAC-MD5": dns.tsig.HMAC_MD5,
    "HMAC-SHA1": dns.tsig.HMAC_SHA1,
    "HMAC-SHA224": dns.tsig.HMAC_SHA224,
    "HMAC-SHA256": dns.tsig.HMAC_SHA256,
    "HMAC-SHA384": dns.tsig.HMAC_SHA384,
    "HMAC-SHA512": dns.tsig.HMAC_SHA512,
}


class DnsUpdateError(ChallengeError):
    """The nameserver refused or did not answer a dynamic update."""


@dataclass(frozen=True)
class TxtRecordHandle:
    """Identity of a TXT record created on the managing nameserver."""

    zone: str
    name: str
    value: str


class Rfc2136Client:
    """Send RFC 2136 dynamic updates to one nameserver.

    Parameters
    ----------
    server:
        IP address or host name of the nameserver accepting updates.
        A host name is resolved before every update.
    port:
        Nameserver port.
    key_name, key_secret:
        Optional TSIG key; updates are unsigned when omitted.
    key_algorithm:
        TSIG algorithm name (see :data:`ALGORITHMS`).
    timeout:
        Per-update network timeout in seconds.

    """

    def __init__(  # noqa: PLR0913
        self,
        server: str,
        *,
        port: int = DEFAULT_PORT,
        key_name: str | None = None,
        key_secret: str | None = None,
        key_algorithm: str = "HMAC-SHA256",
        timeout: float = 30,
    ) -> None:
        self.server = server
        self.port = port
        self.timeout = timeout
        self.keyring = None
        self.algorithm = ALGORITHMS.get(key_algorithm.upper())
        if self.algorithm is None:
            msg = f"Unknown TSIG algorithm: {key_algorithm}"
            raise ValueError(msg)
        if key_name and key_secret:
            self.keyring = dns.tsigkeyring.from_text({key_name: key_secret})

    @classmethod
    def from_settings(cls, settings: DnsSettings) -> Rfc2136Client:
        return cls(
            settings.server,
            port=settings.port,
            key_name=settings.tsig_key_name,
            key_secret=settings.tsig_secret,
            key_algorithm=settings.tsig_algorithm,
            timeout=settings.timeout_seconds,
        )

    def _relative_name(self, zone: str, name: str) -> tuple[dns.name.Name, dns.name.Name]:
        origin = dns.name.from_text(zone)
        owner = dns.name.from_text(name)
        if not owner.is_subdomain(origin):
            msg = f"Record {name} is not part of zone {zone}"
            raise DnsUpdateError(msg)
        return origin, owner.relativize(origin)

    def _server_address(self) -> str:
        """Return the nameserver as an IP literal, resolving a host name."""
        try:
            ipaddress.ip_address(self.server)
        except ValueError:
            pass
        else:
            return self.server
        try:
            addrinfos = socket.getaddrinfo(self.server, self.port, proto=socket.IPPROTO_TCP)
        except (socket.gaierror, UnicodeError) as exc:
            msg = f"Could not resolve DNS server {self.server}: {exc}"
            raise DnsUpdateError(msg) from exc
        if not addrinfos:
            msg = f"DNS server {self.server} has no address"
            raise DnsUpdateError(msg)
        return addrinfos[0][4][0]

    def _send(self, update: dns.update.Update, action: str) -> None:
        address = self._server_address()
        try:
            response = dns.query.tcp(update, address, timeout=self.timeout, port=self.port)
        except (dns.exception.DNSException, OSError, ValueError) as exc:
            msg = f"Error {action} on DNS server {self.server}: {exc}"
            raise DnsUpdateError(msg) from exc
        rcode = response.rcode()
        if rcode != dns.rcode.NOERROR:
            msg = (
                f"DNS server {self.server} answered {dns.rcode.to_text(rcode)} "
                f"while {action}"
            )
            raise DnsUpdateError(msg)

    def create_txt_record(
        self,
        zone: str,
        name: str,
        value: str,
        ttl: int = DEFAULT_TTL,
    ) -> TxtRecordHandle:
        """Add a TXT record *name* = *value* to *zone*.

        Raises
        ------
        DnsUpdateError
            If the name is outside the zone or the server rejects the update.

        """
        origin, rel = self._relative_name(zone, name)
        update = dns.update.Update(origin, keyring=self.keyring, keyalgorithm=self.algorithm)
        update.add(rel, ttl, dns.rdatatype.TXT, value)
        self._send(update, f"adding TXT record {name}")
        log.debug("Added TXT record %s = %s in %s", name, value, zone)
        return TxtRecordHandle(zone=zone, name=name, value=value)

    def delete_record(self, handle: TxtRecordHandle) -> None:
        """Delete the record identified by *handle*.

        Deleting a record that no longer exists succeeds.
        """
        origin, rel = self._relative_name(handle.zone, handle.name)
        update = dns.update.Update(origin, keyring=self.keyring, keyalgorithm=self.algorithm)
        update.delete(rel, dns.rdatatype.TXT, handle.value)
        self._send(update, f"deleting TXT record {handle.name}")
        log.debug("Deleted TXT record %s from %s", handle.name, handle.zone)
