"""Abstract boundary to the ACME protocol client.

The validation engine never talks to a CA directly.  It goes through an
:class:`AcmeClient`, which hides directory, account and JWS handling and
exposes only the three operations the engine needs: look up a challenge
of a given type, tell the CA it is ready, and refresh its status.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from autoacme.core.hostname import HostName
    from autoacme.core.types import ChallengeStatus, ChallengeType


class AcmeClientError(Exception):
    """Raised by ACME clients when the CA cannot be reached or answers badly.

    Parameters
    ----------
    detail:
        Human-readable description of the failure.

    """

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(detail)


@dataclass(frozen=True)
class AcmeChallenge:
    """One challenge of one authorization, as offered by the CA.

    Attributes
    ----------
    host:
        The identifier the authorization is for.
    challenge_type:
        The challenge type.
    token:
        CA-issued token.
    key_authorization:
        ``token || '.' || base64url(JWK thumbprint)``, computed by the
        client from the account key.
    challenge:
        Client-specific challenge object.
    authorization:
        Client-specific authorization object.

    """

    host: HostName
    challenge_type: ChallengeType
    token: str
    key_authorization: str
    challenge: Any = None
    authorization: Any = None


@dataclass(frozen=True)
class ChallengeStatusReport:
    """Result of refreshing a challenge."""

    status: ChallengeStatus
    error_detail: str | None = None


class AcmeClient(abc.ABC):
    """Base class for the ACME protocol client used by the engine.

    Implementations must be safe to call from several threads at once:
    :meth:`refresh_challenge_status` runs concurrently for all pending
    challenges of a validation call.
    """

    @abc.abstractmethod
    def get_challenge(
        self,
        authorization: Any,  # noqa: ANN401
        challenge_type: ChallengeType,
    ) -> AcmeChallenge:
        """Return the challenge of *challenge_type* offered in *authorization*.

        Raises
        ------
        AcmeClientError
            If the CA offers no such challenge.

        """

    @abc.abstractmethod
    def trigger_challenge(self, challenge: AcmeChallenge) -> None:
        """Tell the CA the proof for *challenge* is published."""

    @abc.abstractmethod
    def refresh_challenge_status(self, challenge: AcmeChallenge) -> ChallengeStatusReport:
        """Fetch the current status of *challenge* from the CA."""
