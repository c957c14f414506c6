"""Abstract base class for ACME challenge strategies.

A strategy publishes the proof the CA looks for (a file, an in-memory
response, a DNS record) and removes it again.  Every strategy
(built-in and custom) must inherit from :class:`ChallengeStrategy` and
implement :meth:`~ChallengeStrategy.create_handler`,
:meth:`~ChallengeStrategy.cleanup` and
:meth:`~ChallengeStrategy.test_reachability`.
"""

from __future__ import annotations

import abc
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Generator, Iterable

    from autoacme.core.hostname import HostName
    from autoacme.core.types import ChallengeType

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ChallengeError(Exception):
    """Base class for all challenge strategy failures.

    Parameters
    ----------
    detail:
        Human-readable description of the failure.

    """

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(detail)


class HandlerCreationError(ChallengeError):
    """The proof could not be published; aborts the validation attempt."""


class CleanupError(ChallengeError):
    """The proof could not be removed.  Logged, never fatal."""


class ListenerStartupError(ChallengeError):
    """The self-hosted HTTP listener could not be started."""


class ReachabilityError(ChallengeError):
    """A self-test probe was not externally observable."""


class DnsDelegationError(ReachabilityError):
    """``_acme-challenge.<host>`` is not delegated into the managed zone."""


class StrategyNotSelectedError(ChallengeError):
    """A fallback strategy was used before a reachability test succeeded."""


# ---------------------------------------------------------------------------
# Handler
# ---------------------------------------------------------------------------


@dataclass
class ChallengeHandler:
    """A proof that is currently being served.

    Attributes
    ----------
    token:
        The challenge token (or synthetic probe name).
    challenge_type:
        The ACME challenge type the proof answers.
    resource:
        Strategy-specific handle: a file path, a map key, a DNS record
        handle.
    host:
        The host the proof belongs to, if any.
    released:
        Set once :meth:`ChallengeStrategy.cleanup` has removed the proof.
    owner:
        The strategy that published the proof, when it was created
        through a composite such as the fallback strategy.

    """

    token: str
    challenge_type: ChallengeType
    resource: Any = None
    host: str | None = None
    released: bool = field(default=False, compare=False)
    owner: ChallengeStrategy | None = field(default=None, compare=False, repr=False)


# ---------------------------------------------------------------------------
# Strategy
# ---------------------------------------------------------------------------


class ChallengeStrategy(abc.ABC):
    """Base class for all challenge strategies.

    Subclasses set :attr:`challenge_type` and implement the three
    abstract operations.  Strategies that own long-lived resources
    override :meth:`close`; all strategies can be used as context
    managers.
    """

    challenge_type: ChallengeType
    """The ACME challenge type this strategy answers."""

    name: str = "strategy"
    """Short name used in configuration and log output."""

    def __init__(self) -> None:
        self.last_failure: ReachabilityError | None = None

    @abc.abstractmethod
    def create_handler(
        self,
        host: HostName | None,
        token: str,
        key_authorization: str,
    ) -> ChallengeHandler:
        """Publish the proof for *token*.

        Must raise :class:`HandlerCreationError` on failure.

        Parameters
        ----------
        host:
            The host being validated.  HTTP strategies ignore it; probes
            pass ``None`` for HTTP and a host for DNS.
        token:
            The challenge token (served resource name / record suffix).
        key_authorization:
            The exact value to serve (HTTP) or hash (DNS).

        """

    @abc.abstractmethod
    def cleanup(self, handler: ChallengeHandler) -> None:
        """Remove the proof published by :meth:`create_handler`.

        Idempotent: removing something that is already gone succeeds
        silently.  Raises :class:`CleanupError` on real failures.
        """

    @abc.abstractmethod
    def test_reachability(self, host_names: Iterable[HostName]) -> bool:
        """Prove that this strategy would work for *host_names*.

        Publishes a synthetic probe, checks it is externally observable
        and removes it again.  Never raises for probe failures: the
        reason is stored in :attr:`last_failure` and ``False`` returned.
        """

    def release(self, handler: ChallengeHandler) -> bool:
        """Clean up *handler*, logging instead of raising on failure.

        Returns ``True`` when the proof is gone.
        """
        if handler.released:
            return True
        try:
            self.cleanup(handler)
        except CleanupError as exc:
            log.warning(
                "Cleanup of %s challenge %s failed: %s",
                handler.challenge_type,
                handler.token,
                exc.detail,
            )
            return False
        handler.released = True
        return True

    @contextmanager
    def serve(
        self,
        host: HostName | None,
        token: str,
        key_authorization: str,
    ) -> Generator[ChallengeHandler, None, None]:
        """Publish a proof for the duration of a ``with`` block."""
        handler = self.create_handler(host, token, key_authorization)
        try:
            yield handler
        finally:
            self.release(handler)

    def _fail(self, exc: ReachabilityError) -> bool:
        """Record a reachability failure and return ``False``."""
        self.last_failure = exc
        log.warning("%s reachability test failed: %s", self.name, exc.detail)
        return False

    def close(self) -> None:  # noqa: B027
        """Release long-lived resources.  Default implementation is a no-op."""

    def __enter__(self) -> ChallengeStrategy:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
