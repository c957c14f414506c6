"""ACME client adapter for the ``acme`` library.

Wraps an already registered :class:`acme.client.ClientV2` and the
account key so the validation engine can drive challenges through the
:class:`~autoacme.ca.base.AcmeClient` interface.

Usage::

    from acme import client, messages

    net = client.ClientNetwork(account_key, account=regr)
    directory = client.ClientV2.get_directory(directory_url, net)
    acme = client.ClientV2(directory, net)

    adapter = AcmeLibClient(acme, account_key)
    authorizations = acme.new_order(csr_pem).authorizations
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from acme import errors as acme_errors

from autoacme.ca.base import (
    AcmeChallenge,
    AcmeClient,
    AcmeClientError,
    ChallengeStatusReport,
)
from autoacme.core.hostname import HostName
from autoacme.core.types import ChallengeStatus, ChallengeType

if TYPE_CHECKING:
    import josepy as jose
    from acme import client, messages

log = logging.getLogger(__name__)


def _error_detail(challb: messages.ChallengeBody) -> str | None:
    error = challb.error
    if error is None:
        return None
    return error.detail or str(error)


class AcmeLibClient(AcmeClient):
    """:class:`AcmeClient` backed by :class:`acme.client.ClientV2`.

    Parameters
    ----------
    acme_client:
        A client whose network layer already carries the account.
    account_key:
        The account's JWK, used to compute key authorizations.

    """

    def __init__(self, acme_client: client.ClientV2, account_key: jose.JWK) -> None:
        self._client = acme_client
        self._account_key = account_key
        # ClientNetwork keeps a shared nonce pool; one request at a time.
        self._lock = threading.Lock()

    def get_challenge(
        self,
        authorization: messages.AuthorizationResource,
        challenge_type: ChallengeType,
    ) -> AcmeChallenge:
        body = authorization.body
        host = HostName.parse(body.identifier.value)
        if body.wildcard:
            host = HostName(name=host.name, wildcard=True)

        for challb in body.challenges:
            if challb.chall.typ != challenge_type.value:
                continue
            token = challb.chall.encode("token")
            key_authorization = challb.chall.key_authorization(self._account_key)
            log.debug("Found %s challenge for %s at %s", challenge_type, host, challb.uri)
            return AcmeChallenge(
                host=host,
                challenge_type=challenge_type,
                token=token,
                key_authorization=key_authorization,
                challenge=challb,
                authorization=authorization,
            )

        offered = ", ".join(c.chall.typ for c in body.challenges) or "none"
        msg = f"CA offers no {challenge_type} challenge for {host} (offered: {offered})"
        raise AcmeClientError(msg)

    def trigger_challenge(self, challenge: AcmeChallenge) -> None:
        challb = challenge.challenge
        response = challb.chall.response(self._account_key)
        try:
            with self._lock:
                self._client.answer_challenge(challb, response)
        except (acme_errors.Error, OSError) as exc:
            msg = f"Cannot trigger {challenge.challenge_type} challenge for {challenge.host}: {exc}"
            raise AcmeClientError(msg) from exc
        log.info("Triggered %s challenge for %s", challenge.challenge_type, challenge.host)

    def refresh_challenge_status(self, challenge: AcmeChallenge) -> ChallengeStatusReport:
        try:
            with self._lock:
                authzr, _ = self._client.poll(challenge.authorization)
        except (acme_errors.Error, OSError) as exc:
            msg = f"Cannot refresh authorization for {challenge.host}: {exc}"
            raise AcmeClientError(msg) from exc

        uri = challenge.challenge.uri
        for challb in authzr.body.challenges:
            if challb.uri != uri:
                continue
            try:
                status = ChallengeStatus(challb.status.name)
            except ValueError:
                log.warning(
                    "Unexpected status %r for challenge %s, treating as pending",
                    challb.status.name,
                    uri,
                )
                status = ChallengeStatus.PENDING
            return ChallengeStatusReport(status=status, error_detail=_error_detail(challb))

        msg = f"Challenge {uri} is missing from the authorization for {challenge.host}"
        raise AcmeClientError(msg)
