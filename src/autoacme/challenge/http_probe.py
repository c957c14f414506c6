"""HTTP reachability probe shared by the HTTP-01 strategies.

Fetches ``http://{host}/.well-known/acme-challenge/{probe}`` (falling
back to ``https://`` when plain HTTP fails) and checks that the response
is exactly what an ACME CA would accept:

1. status code 200
2. ``Content-Type`` absent or one of the accepted values
3. body byte-exact equal to the probe value
"""

from __future__ import annotations

import logging
import ssl
import urllib.error
import urllib.request
from typing import TYPE_CHECKING

from autoacme.challenge.base import ReachabilityError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from autoacme.core.hostname import HostName

log = logging.getLogger(__name__)

WELL_KNOWN_PATH = "/.well-known/acme-challenge/"
DEFAULT_CONTENT_TYPES: tuple[str, ...] = ("text/json",)


def challenge_url(scheme: str, host: str, token: str) -> str:
    """Return the HTTP-01 resource URL for *token* on *host*."""
    return f"{scheme}://{host}{WELL_KNOWN_PATH}{token}"


def _insecure_context() -> ssl.SSLContext:
    # Hosts commonly still carry a self-signed certificate at this stage.
    ctx = ssl.create_default_context()
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    return ctx


def compare_probe(
    url: str,
    expected: str,
    *,
    timeout: float = 10,
    accepted_content_types: tuple[str, ...] = DEFAULT_CONTENT_TYPES,
) -> None:
    """Fetch *url* and compare the response with *expected*.

    Raises
    ------
    ReachabilityError
        Listing every problem found with the response.

    """
    if not url or not url.strip():
        msg = "Probe URL cannot be empty"
        raise ValueError(msg)
    if not expected or not expected.strip():
        msg = "Expected probe value cannot be empty"
        raise ValueError(msg)

    log.debug("Probing %s", url)
    req = urllib.request.Request(url, method="GET")  # noqa: S310
    try:
        resp = urllib.request.urlopen(  # noqa: S310
            req,
            timeout=timeout,
            context=_insecure_context(),
        )
    except urllib.error.HTTPError as exc:
        msg = f"{url}: response contains status code {exc.code}, expecting 200 (OK)"
        raise ReachabilityError(msg) from exc
    except (urllib.error.URLError, OSError) as exc:
        msg = f"{url}: request failed: {exc}"
        raise ReachabilityError(msg) from exc

    try:
        status = resp.status
        content_type = resp.headers.get("Content-Type")
        body = resp.read()
    except OSError as exc:
        msg = f"{url}: error reading response: {exc}"
        raise ReachabilityError(msg) from exc
    finally:
        resp.close()

    problems: list[str] = []
    if status != 200:  # noqa: PLR2004
        problems.append(f"response contains status code {status}, expecting 200 (OK)")
    if content_type is not None and content_type not in accepted_content_types:
        problems.append(
            f"response contains Content-Type {content_type}; this header must "
            f"either be {' or '.join(repr(t) for t in accepted_content_types)} "
            "or be missing",
        )
    if body != expected.encode("utf-8"):
        problems.append(
            f"invalid response content, expected {expected!r}, "
            f"got {body.decode('utf-8', errors='replace')!r}",
        )

    if problems:
        msg = f"{url}: " + "; ".join(problems)
        raise ReachabilityError(msg)
    log.debug("Probe %s returned the expected response", url)


def check_hosts(
    host_names: Iterable[HostName],
    token: str,
    expected: str,
    *,
    timeout: float = 10,
    accepted_content_types: tuple[str, ...] = DEFAULT_CONTENT_TYPES,
) -> None:
    """Probe every host over HTTP, falling back to HTTPS per host.

    Raises :class:`ReachabilityError` for the first host where both
    schemes fail.
    """
    for host in host_names:
        try:
            compare_probe(
                challenge_url("http", host.name, token),
                expected,
                timeout=timeout,
                accepted_content_types=accepted_content_types,
            )
            continue
        except ReachabilityError as http_exc:
            log.info("HTTP probe failed for %s, trying HTTPS: %s", host, http_exc.detail)

        try:
            compare_probe(
                challenge_url("https", host.name, token),
                expected,
                timeout=timeout,
                accepted_content_types=accepted_content_types,
            )
        except ReachabilityError as https_exc:
            msg = f"Challenge probe for {host} is not reachable: {https_exc.detail}"
            raise ReachabilityError(msg) from https_exc
