"""HTTP-01 strategy that drops challenge files into a web-served folder.

The configured folder must be served by an existing web server at
``/.well-known/acme-challenge/``.  Each challenge becomes one file named
after the token whose content is the key authorization, byte for byte.
"""

from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import TYPE_CHECKING

from autoacme.challenge import http_probe
from autoacme.challenge.base import (
    ChallengeHandler,
    ChallengeStrategy,
    CleanupError,
    HandlerCreationError,
    ReachabilityError,
)
from autoacme.core.hostname import parse_host_names
from autoacme.core.types import ChallengeType

if TYPE_CHECKING:
    from collections.abc import Iterable

    from autoacme.config.settings import HttpFileSettings
    from autoacme.core.hostname import HostName

log = logging.getLogger(__name__)


def _check_token(token: str) -> None:
    if not token or "/" in token or "\\" in token or token in {".", ".."}:
        msg = f"Challenge token {token!r} cannot be used as a file name"
        raise HandlerCreationError(msg)


class HttpFileStrategy(ChallengeStrategy):
    """HTTP-01 strategy writing ``<challenge_folder>/<token>`` files.

    Parameters
    ----------
    settings:
        The ``challenges.http_file`` settings section.

    """

    challenge_type = ChallengeType.HTTP_01
    name = "file"

    def __init__(self, settings: HttpFileSettings) -> None:
        super().__init__()
        self.settings = settings
        self._folder = Path(settings.challenge_folder)

    @property
    def challenge_folder(self) -> Path:
        return self._folder

    def create_handler(
        self,
        host: HostName | None,
        token: str,
        key_authorization: str,
    ) -> ChallengeHandler:
        _check_token(token)
        path = self._folder / token
        log.debug("Key authorization for %s: %s", host or token, key_authorization)
        log.info("Writing challenge to %s", path)
        try:
            path.write_bytes(key_authorization.encode("utf-8"))
        except OSError as exc:
            msg = f"Failed to write challenge file {path}: {exc}"
            raise HandlerCreationError(msg) from exc
        return ChallengeHandler(
            token=token,
            challenge_type=self.challenge_type,
            resource=path,
            host=host.name if host is not None else None,
        )

    def cleanup(self, handler: ChallengeHandler) -> None:
        path: Path = handler.resource
        if not path.exists():
            return
        log.info("Deleting challenge from %s", path)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            msg = f"Failed to delete challenge file {path}: {exc}"
            raise CleanupError(msg) from exc

    def test_reachability(self, host_names: Iterable[HostName | str]) -> bool:
        self.last_failure = None
        hosts = parse_host_names(host_names)
        probe_name = f"probe_{uuid.uuid4()}"
        probe_value = str(uuid.uuid4())

        try:
            with self.serve(None, probe_name, probe_value):
                http_probe.check_hosts(
                    hosts,
                    probe_name,
                    probe_value,
                    timeout=self.settings.timeout_seconds,
                )
        except HandlerCreationError as exc:
            return self._fail(ReachabilityError(exc.detail))
        except ReachabilityError as exc:
            return self._fail(exc)
        return True
