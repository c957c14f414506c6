"""ACME protocol client boundary used by the validation engine."""

from autoacme.ca.base import (
    AcmeChallenge,
    AcmeClient,
    AcmeClientError,
    ChallengeStatusReport,
)

__all__ = [
    "AcmeChallenge",
    "AcmeClient",
    "AcmeClientError",
    "ChallengeStatusReport",
]
