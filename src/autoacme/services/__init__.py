"""Validation engine and the proof-of-control workflow."""

from autoacme.services.validation import (
    AuthorizationFailedError,
    ChallengeRecord,
    HostFailure,
    ValidationEngine,
    ValidationResult,
    prove_control,
)

__all__ = [
    "AuthorizationFailedError",
    "ChallengeRecord",
    "HostFailure",
    "ValidationEngine",
    "ValidationResult",
    "prove_control",
]
