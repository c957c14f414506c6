"""Host name parsing and validation.

A :class:`HostName` is the immutable, IDNA-encoded form of a DNS name
that a certificate is requested for.  Wildcard names keep their ``*.``
prefix only as a flag: strategies address the stripped name, while the
certificate request keeps the wildcard form (``str(host)``).
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

_SPLIT_RE = re.compile(r"\s+|\s*[;,]\s*")

_HOST_RE = re.compile(
    r"^(((?!-))(xn--|_)?[a-z0-9-]{0,61}[a-z0-9]\.)*"
    r"(xn--)?([a-z0-9\-]{1,61}|[a-z0-9-]{1,30}\.[a-z]{2,})$",
)

WILDCARD_PREFIX = "*."
ACME_CHALLENGE_LABEL = "_acme-challenge"


def to_ascii_host_name(host_name: str) -> str:
    """Return the lowercase IDNA (punycode) form of *host_name*.

    Raises
    ------
    ValueError
        If the result is not a syntactically valid host name.

    """
    normalized = unicodedata.normalize("NFC", host_name.strip().lower())
    try:
        result = normalized.encode("idna").decode("ascii")
    except UnicodeError as exc:
        msg = f"The name {host_name} is not a valid hostname"
        raise ValueError(msg) from exc
    if not _HOST_RE.match(result):
        msg = f"The name {host_name} is not a valid hostname"
        raise ValueError(msg)
    return result


def explain_host_name(host_name: str) -> str:
    """Render *host_name* for humans: ``unicode (ascii)`` when they differ."""
    try:
        unicode_name = host_name.encode("ascii").decode("idna")
    except UnicodeError:
        return host_name
    if unicode_name.lower() != host_name.lower():
        return f"{unicode_name} ({host_name})"
    return unicode_name


def split_host_names(text: str) -> list[str]:
    """Split a user supplied list of names on whitespace, ``,`` or ``;``."""
    return [part for part in _SPLIT_RE.split(text.strip()) if part]


@dataclass(frozen=True)
class HostName:
    """Validated ASCII host name with an explicit wildcard flag.

    Attributes
    ----------
    name:
        The IDNA-encoded name, always without the ``*.`` prefix.
    wildcard:
        Whether the certificate is requested for ``*.<name>``.

    """

    name: str
    wildcard: bool = False

    def __post_init__(self) -> None:
        if not _HOST_RE.match(self.name):
            msg = f"The name {self.name} is not a valid hostname"
            raise ValueError(msg)

    @classmethod
    def parse(cls, text: str) -> HostName:
        """Parse user input such as ``*.Bücher.example`` into a HostName."""
        stripped = text.strip()
        wildcard = stripped.startswith(WILDCARD_PREFIX)
        if wildcard:
            stripped = stripped[len(WILDCARD_PREFIX) :]
        return cls(name=to_ascii_host_name(stripped), wildcard=wildcard)

    @property
    def challenge_name(self) -> str:
        """The DNS-01 owner name ``_acme-challenge.<name>``."""
        return f"{ACME_CHALLENGE_LABEL}.{self.name}"

    def __str__(self) -> str:
        return f"{WILDCARD_PREFIX}{self.name}" if self.wildcard else self.name


def parse_host_names(names: str | Iterable[str | HostName]) -> list[HostName]:
    """Parse a delimited string or a sequence of names into HostNames."""
    if isinstance(names, str):
        names = split_host_names(names)
    return [n if isinstance(n, HostName) else HostName.parse(n) for n in names]
