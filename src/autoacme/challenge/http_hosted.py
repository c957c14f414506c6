"""HTTP-01 strategy with its own standalone listener.

Independent of any external web server: the strategy binds a threaded
werkzeug server to the configured URL prefix for its whole lifetime and
answers challenge requests from an in-memory token map.

Request handling:

- the last path segment is the token
- unknown token → ``404 Not Found``
- any method other than ``GET`` → ``405 Method Not Allowed``
- otherwise ``200`` with the key authorization as the body

The accept loop runs in a dedicated thread and hands every request to a
new worker thread before accepting the next one, so challenges for
several hosts (and several concurrent validation calls) are served in
parallel.
"""

from __future__ import annotations

import logging
import threading
import uuid
from typing import TYPE_CHECKING
from urllib.parse import urlsplit

from flask import Flask, Response, request
from werkzeug.serving import make_server

from autoacme.challenge import http_probe
from autoacme.challenge.base import (
    ChallengeHandler,
    ChallengeStrategy,
    HandlerCreationError,
    ListenerStartupError,
    ReachabilityError,
)
from autoacme.core.hostname import parse_host_names
from autoacme.core.types import ChallengeType

if TYPE_CHECKING:
    from collections.abc import Iterable

    from werkzeug.serving import BaseWSGIServer

    from autoacme.config.settings import HttpHostedSettings
    from autoacme.core.hostname import HostName

log = logging.getLogger(__name__)

RESPONSE_CONTENT_TYPE = "application/json"

_ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
_WILDCARD_HOSTS = frozenset({"+", "*", ""})


def parse_url_prefix(url_prefix: str) -> tuple[str, int, str]:
    """Split a listener prefix such as ``http://+:80/.well-known/acme-challenge/``.

    Returns ``(bind_address, port, path_prefix)``.  ``+`` and ``*`` bind
    to all interfaces.

    Raises
    ------
    ListenerStartupError
        If the prefix is not a plain ``http://`` URL.

    """
    # urlsplit rejects "+" and "*" as host names in some versions.
    parts = urlsplit(url_prefix.replace("://+", "://0.0.0.0").replace("://*", "://0.0.0.0"))
    if parts.scheme != "http":
        msg = f"Listener prefix {url_prefix!r} must use the http:// scheme"
        raise ListenerStartupError(msg)
    try:
        port = parts.port or 80
    except ValueError as exc:
        msg = f"Listener prefix {url_prefix!r} has an invalid port"
        raise ListenerStartupError(msg) from exc
    host = parts.hostname or ""
    bind = "0.0.0.0" if host in _WILDCARD_HOSTS else host  # noqa: S104
    path = parts.path or "/"
    if not path.endswith("/"):
        path += "/"
    return bind, port, path


class HttpHostedStrategy(ChallengeStrategy):
    """HTTP-01 strategy serving challenges from a self-hosted listener.

    The listener is started by the constructor and stopped by
    :meth:`close` (or by leaving a ``with`` block).

    Parameters
    ----------
    settings:
        The ``challenges.http_hosted`` settings section.

    Raises
    ------
    ListenerStartupError
        If the listener cannot bind (address in use, bad prefix, ...).

    """

    challenge_type = ChallengeType.HTTP_01
    name = "hosted"

    def __init__(self, settings: HttpHostedSettings) -> None:
        super().__init__()
        self.settings = settings
        self._responses: dict[str, str] = {}
        self._lock = threading.Lock()
        self._bind, port, self._path_prefix = parse_url_prefix(settings.url_prefix)
        self.app = self._build_app()

        try:
            self._server: BaseWSGIServer = make_server(
                self._bind,
                port,
                self.app,
                threaded=True,
            )
        except (OSError, SystemExit) as exc:
            # werkzeug reports bind failures by printing and calling sys.exit()
            msg = f"Cannot start challenge listener on {settings.url_prefix}: {exc}"
            raise ListenerStartupError(msg) from exc

        # Non-daemon request threads are joined by server_close(), so
        # close() lets in-flight responses finish.
        self._server.daemon_threads = False
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            name="challenge-listener",
            daemon=True,
        )
        self._thread.start()
        self._closed = False
        log.info(
            "Listening on http://%s:%d%s",
            self._bind,
            self.port,
            self._path_prefix,
        )

    # -- listener ----------------------------------------------------------

    @property
    def port(self) -> int:
        """The bound TCP port (useful when configured with port 0)."""
        return self._server.server_port

    @property
    def path_prefix(self) -> str:
        return self._path_prefix

    def _build_app(self) -> Flask:
        app = Flask(__name__)
        app.add_url_rule(
            "/",
            "challenge_root",
            self._handle_request,
            defaults={"path": ""},
            methods=_ALL_METHODS,
        )
        app.add_url_rule(
            "/<path:path>",
            "challenge",
            self._handle_request,
            methods=_ALL_METHODS,
        )
        return app

    def _handle_request(self, path: str) -> Response:
        full_path = "/" + path
        log.debug("Handling %s %s from %s", request.method, full_path, request.remote_addr)
        token = full_path.rsplit("/", 1)[-1]
        value = None
        if full_path.startswith(self._path_prefix) and token:
            with self._lock:
                value = self._responses.get(token)
        if value is None:
            return Response("Not Found", status=404, content_type="text/plain")
        if request.method != "GET":
            return Response("Method Not Allowed", status=405, content_type="text/plain")
        return Response(value, status=200, content_type=RESPONSE_CONTENT_TYPE)

    def close(self) -> None:
        """Stop accepting, wait for in-flight requests, release the socket."""
        if self._closed:
            return
        self._closed = True
        self._server.shutdown()
        self._server.server_close()
        self._thread.join(timeout=5)
        log.info("Challenge listener on port %d stopped", self.port)

    # -- strategy ----------------------------------------------------------

    def create_handler(
        self,
        host: HostName | None,
        token: str,
        key_authorization: str,
    ) -> ChallengeHandler:
        if self._closed:
            msg = "Challenge listener is closed"
            raise HandlerCreationError(msg)
        if not token or "/" in token:
            msg = f"Challenge token {token!r} cannot be served"
            raise HandlerCreationError(msg)
        log.debug("Key authorization for %s: %s", host or token, key_authorization)
        with self._lock:
            self._responses[token] = key_authorization
        return ChallengeHandler(
            token=token,
            challenge_type=self.challenge_type,
            resource=token,
            host=host.name if host is not None else None,
        )

    def cleanup(self, handler: ChallengeHandler) -> None:
        with self._lock:
            self._responses.pop(handler.resource, None)

    def is_serving(self, token: str) -> bool:
        with self._lock:
            return token in self._responses

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
                    accepted_content_types=(
                        *http_probe.DEFAULT_CONTENT_TYPES,
                        RESPONSE_CONTENT_TYPE,
                    ),
                )
        except HandlerCreationError as exc:
            return self._fail(ReachabilityError(exc.detail))
        except ReachabilityError as exc:
            return self._fail(exc)
        return True
