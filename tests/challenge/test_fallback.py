"""Tests for the fallback composite strategy."""

from __future__ import annotations

import pytest

from autoacme.challenge.base import (
    ChallengeHandler,
    ChallengeStrategy,
    ReachabilityError,
    StrategyNotSelectedError,
)
from autoacme.challenge.fallback import FallbackStrategy
from autoacme.core.hostname import HostName
from autoacme.core.types import ChallengeType

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _FakeStrategy(ChallengeStrategy):
    """Strategy whose reachability result is fixed at construction."""

    def __init__(self, name: str, reachable: bool, challenge_type=ChallengeType.HTTP_01) -> None:
        super().__init__()
        self.name = name
        self.reachable = reachable
        self.challenge_type = challenge_type
        self.tested_with: list[list[HostName]] = []
        self.created: list[str] = []
        self.cleaned: list[str] = []
        self.closed = False

    def create_handler(self, host, token, key_authorization):
        self.created.append(token)
        return ChallengeHandler(token=token, challenge_type=self.challenge_type, resource=self.name)

    def cleanup(self, handler):
        self.cleaned.append(handler.token)

    def test_reachability(self, host_names):
        self.tested_with.append(list(host_names))
        if self.reachable:
            self.last_failure = None
            return True
        return self._fail(ReachabilityError(f"{self.name} unreachable"))

    def close(self):
        self.closed = True


HOSTS = [HostName.parse("example.com")]


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestFallbackStrategy:
    def test_requires_children(self):
        with pytest.raises(ValueError, match="at least one"):
            FallbackStrategy([])

    def test_first_failing_second_passing(self):
        a = _FakeStrategy("a", reachable=False)
        b = _FakeStrategy("b", reachable=True, challenge_type=ChallengeType.DNS_01)
        fallback = FallbackStrategy([a, b])

        assert fallback.test_reachability(HOSTS) is True
        assert fallback.selected_index == 1
        assert fallback.selected is b
        assert fallback.challenge_type == ChallengeType.DNS_01

        handler = fallback.create_handler(HOSTS[0], "tok", "tok.thumb")
        fallback.cleanup(handler)
        assert a.created == []
        assert b.created == ["tok"]
        assert b.cleaned == ["tok"]

    def test_stops_at_first_success(self):
        a = _FakeStrategy("a", reachable=True)
        b = _FakeStrategy("b", reachable=True)
        fallback = FallbackStrategy([a, b])
        assert fallback.test_reachability(HOSTS) is True
        assert fallback.selected_index == 0
        assert b.tested_with == []

    def test_children_receive_parsed_hosts(self):
        a = _FakeStrategy("a", reachable=True)
        FallbackStrategy([a]).test_reachability("example.com, www.example.com")
        assert [h.name for h in a.tested_with[0]] == ["example.com", "www.example.com"]

    def test_all_fail(self):
        a = _FakeStrategy("a", reachable=False)
        b = _FakeStrategy("b", reachable=False)
        fallback = FallbackStrategy([a, b])

        assert fallback.test_reachability(HOSTS) is False
        assert fallback.selected_index is None
        assert "a: a unreachable" in fallback.last_failure.detail
        assert "b: b unreachable" in fallback.last_failure.detail
        with pytest.raises(StrategyNotSelectedError):
            fallback.create_handler(HOSTS[0], "tok", "tok.thumb")

    @pytest.mark.parametrize("operation", ["create_handler", "cleanup", "challenge_type"])
    def test_use_before_selection(self, operation):
        fallback = FallbackStrategy([_FakeStrategy("a", reachable=True)])
        with pytest.raises(StrategyNotSelectedError, match="test_reachability"):
            if operation == "create_handler":
                fallback.create_handler(HOSTS[0], "tok", "v")
            elif operation == "cleanup":
                fallback.cleanup(ChallengeHandler(token="tok", challenge_type=ChallengeType.HTTP_01))
            else:
                _ = fallback.challenge_type

    def test_failed_retest_clears_selection(self):
        a = _FakeStrategy("a", reachable=True)
        fallback = FallbackStrategy([a])
        assert fallback.test_reachability(HOSTS) is True
        a.reachable = False
        assert fallback.test_reachability(HOSTS) is False
        assert fallback.selected_index is None

    def test_close_closes_all_children(self):
        a = _FakeStrategy("a", reachable=False)
        b = _FakeStrategy("b", reachable=True)
        with FallbackStrategy([a, b]):
            pass
        assert a.closed
        assert b.closed

    def test_release_after_failed_retest_reaches_creating_child(self):
        a = _FakeStrategy("a", reachable=True)
        fallback = FallbackStrategy([a])
        assert fallback.test_reachability(HOSTS) is True
        handler = fallback.create_handler(HOSTS[0], "tok", "tok.thumb")

        a.reachable = False
        assert fallback.test_reachability(HOSTS) is False

        assert fallback.release(handler) is True
        assert a.cleaned == ["tok"]
        assert handler.released

    def test_cleanup_after_reselection_goes_to_creating_child(self):
        a = _FakeStrategy("a", reachable=True)
        b = _FakeStrategy("b", reachable=True)
        fallback = FallbackStrategy([a, b])
        assert fallback.test_reachability(HOSTS) is True
        handler = fallback.create_handler(HOSTS[0], "tok", "tok.thumb")
        assert handler.owner is a

        a.reachable = False
        assert fallback.test_reachability(HOSTS) is True
        assert fallback.selected is b

        fallback.cleanup(handler)
        assert a.cleaned == ["tok"]
        assert b.cleaned == []
