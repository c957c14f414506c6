"""Enumerated types shared by the challenge strategies and the engine.

All enums inherit from ``StrEnum`` so their ``.value`` is the plain
string used on the ACME wire and in log output.
"""

from __future__ import annotations

from enum import StrEnum

# ---------------------------------------------------------------------------
# Challenge types
# ---------------------------------------------------------------------------


class ChallengeType(StrEnum):
    HTTP_01 = "http-01"
    DNS_01 = "dns-01"


# ---------------------------------------------------------------------------
# Challenge status (as reported by the CA)
# ---------------------------------------------------------------------------


class ChallengeStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    VALID = "valid"
    INVALID = "invalid"

    @property
    def is_terminal(self) -> bool:
        """Whether polling for this challenge can stop."""
        return self in (ChallengeStatus.VALID, ChallengeStatus.INVALID)


# ---------------------------------------------------------------------------
# Validation failure classification
# ---------------------------------------------------------------------------


class FailureKind(StrEnum):
    """Why a host failed validation.

    ``INVALID`` means the CA rejected the proof (likely a real
    misconfiguration), ``TIMED_OUT`` means the retry budget ran out while
    the CA still reported pending (retry with a longer wait), and
    ``LOCAL_ERROR`` means the proof could not be published at all
    (listener or DNS management problem).
    """

    INVALID = "invalid"
    TIMED_OUT = "timed_out"
    LOCAL_ERROR = "local_error"


# ---------------------------------------------------------------------------
# Engine state machine
# ---------------------------------------------------------------------------


class ValidationState(StrEnum):
    PREPARING = "preparing"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
