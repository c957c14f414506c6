"""Fallback composite strategy.

Wraps several strategies and tries their reachability tests in order.
The first one that passes is remembered and handles every subsequent
challenge; strategies after it are never tested.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from autoacme.challenge.base import (
    ChallengeStrategy,
    ReachabilityError,
    StrategyNotSelectedError,
)
from autoacme.core.hostname import parse_host_names

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from autoacme.challenge.base import ChallengeHandler
    from autoacme.core.hostname import HostName
    from autoacme.core.types import ChallengeType

log = logging.getLogger(__name__)


class FallbackStrategy(ChallengeStrategy):
    """Tries child strategies in priority order.

    Parameters
    ----------
    strategies:
        Ordered children; earlier entries are preferred.

    """

    name = "fallback"

    def __init__(self, strategies: Sequence[ChallengeStrategy]) -> None:
        super().__init__()
        if not strategies:
            msg = "FallbackStrategy requires at least one strategy"
            raise ValueError(msg)
        self._strategies = list(strategies)
        self._selected: int | None = None

    @property
    def strategies(self) -> list[ChallengeStrategy]:
        return list(self._strategies)

    @property
    def selected_index(self) -> int | None:
        """Index of the child that passed the last test, if any."""
        return self._selected

    @property
    def selected(self) -> ChallengeStrategy:
        """The active child.

        Raises
        ------
        StrategyNotSelectedError
            If no reachability test has succeeded yet.

        """
        if self._selected is None:
            msg = "No strategy selected; run test_reachability() first"
            raise StrategyNotSelectedError(msg)
        return self._strategies[self._selected]

    @property
    def challenge_type(self) -> ChallengeType:  # type: ignore[override]
        return self.selected.challenge_type

    def test_reachability(self, host_names: Iterable[HostName | str]) -> bool:
        self.last_failure = None
        self._selected = None
        hosts = parse_host_names(host_names)
        failures: list[str] = []

        for index, strategy in enumerate(self._strategies):
            if strategy.test_reachability(hosts):
                self._selected = index
                log.info("Using %s strategy (fallback position %d)", strategy.name, index)
                return True
            reason = strategy.last_failure.detail if strategy.last_failure else "unknown"
            failures.append(f"{strategy.name}: {reason}")
            log.info("%s strategy failed its reachability test, trying next", strategy.name)

        return self._fail(ReachabilityError("All strategies failed: " + "; ".join(failures)))

    def create_handler(
        self,
        host: HostName | None,
        token: str,
        key_authorization: str,
    ) -> ChallengeHandler:
        strategy = self.selected
        handler = strategy.create_handler(host, token, key_authorization)
        handler.owner = strategy
        return handler

    def cleanup(self, handler: ChallengeHandler) -> None:
        # Owned by the creating child, whichever one is selected now.
        owner = handler.owner if handler.owner is not None else self.selected
        owner.cleanup(handler)

    def close(self) -> None:
        for strategy in self._strategies:
            strategy.close()
