"""Challenge strategies: publish, self-test and remove ACME proofs."""

from autoacme.challenge.base import (
    ChallengeError,
    ChallengeHandler,
    ChallengeStrategy,
    CleanupError,
    DnsDelegationError,
    HandlerCreationError,
    ListenerStartupError,
    ReachabilityError,
    StrategyNotSelectedError,
)
from autoacme.challenge.fallback import FallbackStrategy
from autoacme.challenge.registry import create_strategy

__all__ = [
    "ChallengeError",
    "ChallengeHandler",
    "ChallengeStrategy",
    "CleanupError",
    "DnsDelegationError",
    "FallbackStrategy",
    "HandlerCreationError",
    "ListenerStartupError",
    "ReachabilityError",
    "StrategyNotSelectedError",
    "create_strategy",
]
