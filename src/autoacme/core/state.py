"""State machines of the validation engine and of CA challenges.

Usage::

    from autoacme.core.state import VALIDATION_TRANSITIONS, assert_transition
    from autoacme.core.types import ValidationState

    assert_transition(
        ValidationState.PREPARING, ValidationState.POLLING,
        VALIDATION_TRANSITIONS,
    )
"""

from __future__ import annotations

import logging
from enum import StrEnum

from autoacme.core.types import ChallengeStatus, ValidationState

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Validation call: preparing → polling/failed, polling → succeeded/failed.
# succeeded & failed are terminal.
# ---------------------------------------------------------------------------

VALIDATION_TRANSITIONS: dict[ValidationState, frozenset[ValidationState]] = {
    ValidationState.PREPARING: frozenset({ValidationState.POLLING, ValidationState.FAILED}),
    ValidationState.POLLING: frozenset({ValidationState.SUCCEEDED, ValidationState.FAILED}),
    ValidationState.SUCCEEDED: frozenset(),
    ValidationState.FAILED: frozenset(),
}

# ---------------------------------------------------------------------------
# Challenge as seen by polling: pending ↔ processing, either → valid/invalid.
# A CA may report the same status again, so self-transitions are allowed.
# ---------------------------------------------------------------------------

CHALLENGE_TRANSITIONS: dict[ChallengeStatus, frozenset[ChallengeStatus]] = {
    ChallengeStatus.PENDING: frozenset(
        {
            ChallengeStatus.PENDING,
            ChallengeStatus.PROCESSING,
            ChallengeStatus.VALID,
            ChallengeStatus.INVALID,
        }
    ),
    ChallengeStatus.PROCESSING: frozenset(
        {
            ChallengeStatus.PROCESSING,
            ChallengeStatus.VALID,
            ChallengeStatus.INVALID,
            ChallengeStatus.PENDING,  # retry
        }
    ),
    ChallengeStatus.VALID: frozenset(),
    ChallengeStatus.INVALID: frozenset(),
}


def assert_transition(
    current: StrEnum,
    target: StrEnum,
    table: dict,
) -> None:
    """Raise :class:`ValueError` if *current* → *target* is not allowed.

    Parameters
    ----------
    current:
        The current state.
    target:
        The desired new state.
    table:
        :data:`VALIDATION_TRANSITIONS` or :data:`CHALLENGE_TRANSITIONS`.

    """
    allowed = table.get(current)
    if allowed is None:
        msg = f"Unknown status {current!r}"
        raise ValueError(msg)
    if target not in allowed:
        msg = (
            f"Invalid transition {current.value!r} -> {target.value!r}; "
            f"allowed targets: {sorted(s.value for s in allowed) or '(terminal)'}"
        )
        raise ValueError(msg)


def log_transition(
    resource_type: str,
    resource_id: str,
    from_status: StrEnum,
    to_status: StrEnum,
    *,
    reason: str | None = None,
) -> None:
    """Emit a structured log entry for a state transition.

    Parameters
    ----------
    resource_type:
        ``"validation"`` or ``"challenge"``.
    resource_id:
        Host name or other identifier of the resource.
    from_status:
        The previous state.
    to_status:
        The new state.
    reason:
        Optional human-readable reason for the transition.

    """
    extra = {
        "event": "state_transition",
        "resource_type": resource_type,
        "resource_id": str(resource_id),
        "from_status": from_status.value,
        "to_status": to_status.value,
    }
    if reason:
        extra["reason"] = reason
    log.info(
        "%s %s: %s -> %s%s",
        resource_type,
        resource_id,
        extra["from_status"],
        extra["to_status"],
        f" ({reason})" if reason else "",
        extra=extra,
    )
