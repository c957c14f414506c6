"""Validation engine: publish proofs, trigger challenges, poll the CA.

One :meth:`ValidationEngine.validate` call walks through

``preparing``
    For every authorization: look up the challenge of the strategy's
    type, publish the proof, trigger the challenge.  The first failure
    aborts the call with a ``local_error``.
``polling``
    Up to ``retry_count`` rounds.  Each round refreshes every pending
    challenge concurrently and waits for all of them.  ``valid`` and
    ``invalid`` challenges leave the pending set; the call stops early
    once nothing is pending.  Whatever is still pending after the last
    round has ``timed_out``.
``succeeded`` / ``failed``
    Success requires every challenge to be ``valid``.

Every published proof is removed before :meth:`validate` returns,
whatever the outcome.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from autoacme.ca.base import AcmeClientError
from autoacme.challenge.base import ChallengeError
from autoacme.config.settings import EngineSettings
from autoacme.core.hostname import parse_host_names
from autoacme.core.state import (
    CHALLENGE_TRANSITIONS,
    VALIDATION_TRANSITIONS,
    assert_transition,
    log_transition,
)
from autoacme.core.types import ChallengeStatus, FailureKind, ValidationState

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from autoacme.ca.base import AcmeChallenge, AcmeClient, ChallengeStatusReport
    from autoacme.challenge.base import ChallengeHandler, ChallengeStrategy
    from autoacme.core.hostname import HostName

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass
class ChallengeRecord:
    """Engine-owned state of one challenge during a validation call."""

    challenge: AcmeChallenge
    handler: ChallengeHandler
    status: ChallengeStatus = ChallengeStatus.PENDING
    error_detail: str | None = None

    @property
    def state(self) -> ValidationState | None:
        """State most recently reached by a validation call."""
        return self._state

    def _transition(
        self,
        current: ValidationState | None,
        target: ValidationState,
        reason: str | None = None,
    ) -> ValidationState:
        if current is not None:
            assert_transition(current, target, VALIDATION_TRANSITIONS)
            log_transition("validation", self.strategy.name, current, target, reason=reason)
        self._state = target
        return target

    # -- public API --------------------------------------------------------

    def validate(self, authorizations: Iterable[Any]) -> ValidationResult:
        """Prove control for every authorization of one order.

        Never raises for CA or strategy failures; those are reported in
        the returned :class:`ValidationResult`.  Each call tracks its own
        state, so one engine may validate several orders concurrently.
        """
        state = self._transition(None, ValidationState.PREPARING)
        records: list[ChallengeRecord] = []
        try:
            failure = self._prepare(authorizations, records)
            if failure is not None:
                self._transition(state, ValidationState.FAILED, reason="preparation failed")
                return ValidationResult(valid=False, failures=failure)

            state = self._transition(state, ValidationState.POLLING)
            failures = self._poll(records)
            validated = tuple(str(r.host) for r in records if r.status is ChallengeStatus.VALID)
            if failures:
                self._transition(state, ValidationState.FAILED, reason=f"{len(failures)} host(s) failed")
                return ValidationResult(valid=False, failures=failures, validated=validated)
            self._transition(state, ValidationState.SUCCEEDED)
            return ValidationResult(valid=True, validated=validated)
        finally:
            self._cleanup(records)

    # -- preparing ---------------------------------------------------------

    def _prepare(
        self,
        authorizations: Iterable[Any],
        records: list[ChallengeRecord],
    ) -> dict[str, HostFailure] | None:
        """Publish and trigger every challenge.

        Appends to *records* as handlers are created so the caller can
        clean up after a partial failure.  Returns the failure, if any.
        """
        challenge_type = None
        for index, authorization in enumerate(authorizations):
            label = f"authorization #{index}"
            try:
                if challenge_type is None:
                    challenge_type = self.strategy.challenge_type
                challenge = self.client.get_challenge(authorization, challenge_type)
                label = str(challenge.host)
                handler = self.strategy.create_handler(
                    challenge.host,
                    challenge.token,
                    challenge.key_authorization,
                )
                records.append(ChallengeRecord(challenge=challenge, handler=handler))
                self.client.trigger_challenge(challenge)
            except (ChallengeError, AcmeClientError) as exc:
                log.error(
                    "Cannot prepare challenge for %s: %s",
                    label,
                    exc.detail,
                    extra={"host": label, "challenge_type": str(challenge_type or "")},
                )
                return {label: HostFailure(FailureKind.LOCAL_ERROR, exc.detail)}
            log.debug(
                "Prepared %s challenge for %s",
                challenge_type,
                label,
                extra={"host": label, "challenge_type": str(challenge_type)},
            )
        return None

    # -- polling -----------------------------------------------------------

    def _refresh(self, record: ChallengeRecord) -> ChallengeStatusReport | None:
        try:
            return self.client.refresh_challenge_status(record.challenge)
        except AcmeClientError as exc:
            log.warning(
                "Refreshing challenge status for %s failed, will retry: %s",
                record.host,
                exc.detail,
                extra={"host": str(record.host)},
            )
            return None

    def _apply(self, record: ChallengeRecord, report: ChallengeStatusReport) -> None:
        if report.status is not record.status:
            assert_transition(record.status, report.status, CHALLENGE_TRANSITIONS)
            log_transition(
                "challenge",
                str(record.host),
                record.status,
                report.status,
                reason=report.error_detail,
            )
        record.status = report.status
        record.error_detail = report.error_detail

    def _poll(self, records: list[ChallengeRecord]) -> dict[str, HostFailure]:
        failures: dict[str, HostFailure] = {}
        pending = list(records)
        if not pending:
            return failures

        retry_count = self.settings.retry_count
        workers = max(1, min(self.settings.max_workers, len(pending)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="acme-poll") as pool:
            for attempt in range(1, retry_count + 1):
                log.debug("Polling %d challenge(s), round %d/%d", len(pending), attempt, retry_count)
                reports = list(pool.map(self._refresh, pending))

                still_pending = []
                for record, report in zip(pending, reports, strict=True):
                    if report is not None:
                        self._apply(record, report)
                    if record.status is ChallengeStatus.VALID:
                        log.info("Authorization for %s is valid", record.host)
                    elif record.status is ChallengeStatus.INVALID:
                        detail = record.error_detail or "challenge rejected by the CA"
                        log.error("Authorization for %s is invalid: %s", record.host, detail)
                        failures[str(record.host)] = HostFailure(FailureKind.INVALID, detail)
                    else:
                        still_pending.append(record)

                pending = still_pending
                if not pending:
                    break
                if attempt < retry_count:
                    self._sleep(self.settings.wait_seconds)

        for record in pending:
            detail = f"still {record.status} after {retry_count} polling rounds"
            log.error("Authorization for %s timed out: %s", record.host, detail)
            failures[str(record.host)] = HostFailure(FailureKind.TIMED_OUT, detail)
        return failures

    # -- cleanup -----------------------------------------------------------

    def _cleanup(self, records: list[ChallengeRecord]) -> None:
        for record in records:
            try:
                self.strategy.release(record.handler)
            except Exception:
                log.exception("Unexpected error while cleaning up challenge for %s", record.host)


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------


def prove_control(
    engine: ValidationEngine,
    host_names: str | Iterable[str | HostName],
    authorizations: Iterable[Any],
    *,
    skip_test: bool = False,
) -> ValidationResult:
    """Self-test the strategy, then validate every authorization.

    Parameters
    ----------
    engine:
        Engine carrying the client and the strategy.
    host_names:
        The names being certified, used for the reachability test.
    authorizations:
        The order's authorizations, passed to the ACME client.
    skip_test:
        Skip :meth:`~autoacme.challenge.base.ChallengeStrategy.test_reachability`.
        Not allowed for a fallback strategy, which selects its child there.

    Raises
    ------
    AuthorizationFailedError
        If the self-test or the validation fails.

    """
    hosts = parse_host_names(host_names)
    strategy = engine.strategy
    if not skip_test:
        log.info("Testing %s reachability for %s", strategy.name, ", ".join(map(str, hosts)))
        if not strategy.test_reachability(hosts):
            reason = strategy.last_failure.detail if strategy.last_failure else "unknown"
            msg = f"Reachability test of the {strategy.name} strategy failed: {reason}"
            raise AuthorizationFailedError(msg)

    result = engine.validate(authorizations)
    if not result:
        msg = f"Authorization failed: {result.describe()}"
        raise AuthorizationFailedError(msg, result)
    log.info("Control of %s proven", ", ".join(map(str, hosts)))
    return result
