"""Tests for autoacme.services.validation — engine and workflow."""

from __future__ import annotations

import threading
from unittest.mock import MagicMock

import pytest

from autoacme.ca.base import AcmeChallenge, AcmeClient, AcmeClientError, ChallengeStatusReport
from autoacme.challenge.base import (
    ChallengeHandler,
    ChallengeStrategy,
    CleanupError,
    HandlerCreationError,
    ReachabilityError,
)
from autoacme.challenge.fallback import FallbackStrategy
from autoacme.config.settings import EngineSettings
from autoacme.core.hostname import HostName
from autoacme.core.types import ChallengeStatus, ChallengeType, FailureKind, ValidationState
from autoacme.services.validation import (
    AuthorizationFailedError,
    ValidationEngine,
    ValidationResult,
    prove_control,
)

PENDING = ChallengeStatus.PENDING
PROCESSING = ChallengeStatus.PROCESSING
VALID = ChallengeStatus.VALID
INVALID = ChallengeStatus.INVALID

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class _FakeClient(AcmeClient):
    """Authorizations are plain host names; statuses are scripted per host."""

    def __init__(self, statuses: dict[str, list[ChallengeStatus]] | None = None) -> None:
        self.statuses = statuses or {}
        self.refresh_errors: dict[str, int] = {}
        self.fail_get: set[str] = set()
        self.fail_trigger: set[str] = set()
        self.triggered: list[str] = []
        self.refreshed: list[str] = []
        self.barrier: threading.Barrier | None = None
        self._lock = threading.Lock()

    def get_challenge(self, authorization, challenge_type):
        if authorization in self.fail_get:
            msg = f"CA offers no {challenge_type} challenge for {authorization}"
            raise AcmeClientError(msg)
        return AcmeChallenge(
            host=HostName.parse(authorization),
            challenge_type=challenge_type,
            token=f"tok-{authorization}",
            key_authorization=f"tok-{authorization}.thumb",
        )

    def trigger_challenge(self, challenge):
        name = challenge.host.name
        if name in self.fail_trigger:
            msg = f"Cannot trigger challenge for {name}"
            raise AcmeClientError(msg)
        self.triggered.append(name)

    def refresh_challenge_status(self, challenge):
        name = challenge.host.name
        if self.barrier is not None:
            self.barrier.wait()
        with self._lock:
            self.refreshed.append(name)
            if self.refresh_errors.get(name, 0) > 0:
                self.refresh_errors[name] -= 1
                msg = f"connection reset while polling {name}"
                raise AcmeClientError(msg)
            script = self.statuses.get(name, [VALID])
            status = script.pop(0) if len(script) > 1 else script[0]
        detail = f"{name} answered 404" if status is INVALID else None
        return ChallengeStatusReport(status=status, error_detail=detail)


class _FakeStrategy(ChallengeStrategy):
    challenge_type = ChallengeType.HTTP_01
    name = "fake"

    def __init__(self) -> None:
        super().__init__()
        self.created: list[str] = []
        self.cleaned: list[str] = []
        self.fail_create: set[str] = set()
        self.fail_cleanup: set[str] = set()
        self.crash_cleanup: set[str] = set()
        self.reachable = True

    def create_handler(self, host, token, key_authorization):
        if token in self.fail_create:
            msg = f"cannot publish {token}"
            raise HandlerCreationError(msg)
        self.created.append(token)
        return ChallengeHandler(token=token, challenge_type=self.challenge_type, host=host.name)

    def cleanup(self, handler):
        if handler.token in self.fail_cleanup:
            msg = f"cannot remove {handler.token}"
            raise CleanupError(msg)
        if handler.token in self.crash_cleanup:
            msg = "unexpected"
            raise RuntimeError(msg)
        self.cleaned.append(handler.token)

    def test_reachability(self, host_names):
        if self.reachable:
            return True
        return self._fail(ReachabilityError("challenge file not found"))


@pytest.fixture()
def strategy():
    return _FakeStrategy()


@pytest.fixture()
def sleep():
    return MagicMock()


def _engine(client, strategy, sleep, retry_count=10, wait_seconds=5.0):
    settings = EngineSettings(retry_count=retry_count, wait_seconds=wait_seconds, max_workers=4)
    return ValidationEngine(client, strategy, settings, sleep=sleep)


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


class TestOutcomes:
    def test_all_valid(self, strategy, sleep):
        client = _FakeClient()
        engine = _engine(client, strategy, sleep)

        result = engine.validate(["example.com", "www.example.com"])

        assert result.valid is True
        assert bool(result) is True
        assert result.failures == {}
        assert set(result.validated) == {"example.com", "www.example.com"}
        assert client.triggered == ["example.com", "www.example.com"]
        assert engine.state is ValidationState.SUCCEEDED
        sleep.assert_not_called()

    def test_cleanup_count_equals_create_count(self, strategy, sleep):
        client = _FakeClient({"b.example": [INVALID]})
        _engine(client, strategy, sleep).validate(["a.example", "b.example", "c.example"])
        assert sorted(strategy.cleaned) == sorted(strategy.created)
        assert len(strategy.created) == 3

    def test_one_invalid_fails_whole_set(self, strategy, sleep):
        client = _FakeClient({"b.example": [PENDING, INVALID]})
        engine = _engine(client, strategy, sleep)

        result = engine.validate(["a.example", "b.example"])

        assert result.valid is False
        assert list(result.failures) == ["b.example"]
        failure = result.failures["b.example"]
        assert failure.kind is FailureKind.INVALID
        assert failure.detail == "b.example answered 404"
        assert result.validated == ("a.example",)
        assert engine.state is ValidationState.FAILED
        assert "b.example: invalid" in result.describe()

    def test_pending_then_valid(self, strategy, sleep):
        client = _FakeClient({"example.com": [PENDING, PROCESSING, VALID]})
        result = _engine(client, strategy, sleep, wait_seconds=2).validate(["example.com"])
        assert result.valid is True
        assert client.refreshed == ["example.com"] * 3
        assert sleep.call_count == 2
        sleep.assert_called_with(2)

    def test_valid_hosts_not_polled_again(self, strategy, sleep):
        client = _FakeClient({"a.example": [VALID], "b.example": [PENDING, VALID]})
        _engine(client, strategy, sleep).validate(["a.example", "b.example"])
        assert client.refreshed.count("a.example") == 1
        assert client.refreshed.count("b.example") == 2

    def test_bounded_polling(self, strategy, sleep):
        client = _FakeClient({"example.com": [PENDING]})
        result = _engine(client, strategy, sleep, retry_count=3).validate(["example.com"])

        assert result.valid is False
        assert result.failures["example.com"].kind is FailureKind.TIMED_OUT
        assert client.refreshed == ["example.com"] * 3
        assert sleep.call_count == 2
        assert strategy.cleaned == strategy.created

    def test_no_authorizations(self, strategy, sleep):
        result = _engine(_FakeClient(), strategy, sleep).validate([])
        assert result == ValidationResult(valid=True)


# ---------------------------------------------------------------------------
# Preparing failures
# ---------------------------------------------------------------------------


class TestPreparing:
    def test_handler_failure_aborts_and_cleans_up(self, strategy, sleep):
        strategy.fail_create = {"tok-b.example"}
        client = _FakeClient()
        engine = _engine(client, strategy, sleep)

        result = engine.validate(["a.example", "b.example", "c.example"])

        assert result.valid is False
        assert result.failures["b.example"].kind is FailureKind.LOCAL_ERROR
        assert "cannot publish" in result.failures["b.example"].detail
        assert strategy.created == ["tok-a.example"]
        assert strategy.cleaned == ["tok-a.example"]
        assert client.triggered == ["a.example"]
        assert client.refreshed == []
        assert engine.state is ValidationState.FAILED

    def test_missing_challenge_type(self, strategy, sleep):
        client = _FakeClient()
        client.fail_get = {"example.com"}
        result = _engine(client, strategy, sleep).validate(["example.com"])
        assert result.failures["authorization #0"].kind is FailureKind.LOCAL_ERROR
        assert strategy.created == []

    def test_trigger_failure_releases_handler(self, strategy, sleep):
        client = _FakeClient()
        client.fail_trigger = {"example.com"}
        result = _engine(client, strategy, sleep).validate(["example.com"])
        assert result.failures["example.com"].kind is FailureKind.LOCAL_ERROR
        assert strategy.cleaned == ["tok-example.com"]

    def test_unselected_fallback_is_local_error(self, sleep):
        fallback = FallbackStrategy([_FakeStrategy()])
        result = _engine(_FakeClient(), fallback, sleep).validate(["example.com"])
        assert result.failures["authorization #0"].kind is FailureKind.LOCAL_ERROR
        assert "test_reachability" in result.failures["authorization #0"].detail


# ---------------------------------------------------------------------------
# Polling robustness & cleanup
# ---------------------------------------------------------------------------


class TestPollingAndCleanup:
    def test_refresh_error_keeps_host_pending(self, strategy, sleep, caplog):
        client = _FakeClient()
        client.refresh_errors = {"a.example": 1}
        result = _engine(client, strategy, sleep).validate(["a.example", "b.example"])

        assert result.valid is True
        assert client.refreshed.count("a.example") == 2
        assert client.refreshed.count("b.example") == 1
        assert "will retry" in caplog.text

    def test_refreshes_run_concurrently(self, strategy, sleep):
        client = _FakeClient()
        # Both refreshes must be in flight at the same time to pass.
        client.barrier = threading.Barrier(2, timeout=5)
        result = _engine(client, strategy, sleep).validate(["a.example", "b.example"])
        assert result.valid is True

    def test_engine_shared_by_concurrent_calls(self, strategy):
        client = _FakeClient({"a.example": [PENDING, VALID]})
        results: dict[str, ValidationResult] = {}

        def run_other_call(_seconds):
            # A second order is validated start to finish while the first
            # is between polling rounds.
            other = threading.Thread(
                target=lambda: results.update(b=engine.validate(["b.example"])),
            )
            other.start()
            other.join(timeout=5)

        engine = _engine(client, strategy, MagicMock(side_effect=run_other_call))
        results["a"] = engine.validate(["a.example"])

        assert results["a"].valid is True
        assert results["b"].valid is True
        assert engine.state is ValidationState.SUCCEEDED
        assert sorted(strategy.cleaned) == ["tok-a.example", "tok-b.example"]

    def test_cleanup_failure_does_not_stop_others(self, strategy, sleep, caplog):
        strategy.fail_cleanup = {"tok-a.example"}
        strategy.crash_cleanup = {"tok-b.example"}
        result = _engine(_FakeClient(), strategy, sleep).validate(
            ["a.example", "b.example", "c.example"],
        )
        assert result.valid is True
        assert strategy.cleaned == ["tok-c.example"]
        assert "Cleanup of http-01 challenge tok-a.example failed" in caplog.text
        assert "Unexpected error while cleaning up challenge for b.example" in caplog.text

    def test_cleanup_runs_when_polling_raises(self, strategy):
        client = _FakeClient({"example.com": [PENDING]})
        sleep = MagicMock(side_effect=RuntimeError("stop"))
        with pytest.raises(RuntimeError, match="stop"):
            _engine(client, strategy, sleep).validate(["example.com"])
        assert strategy.cleaned == ["tok-example.com"]


# ---------------------------------------------------------------------------
# prove_control
# ---------------------------------------------------------------------------


class TestProveControl:
    def test_success(self, strategy, sleep):
        engine = _engine(_FakeClient(), strategy, sleep)
        result = prove_control(engine, "example.com", ["example.com"])
        assert result.valid is True

    def test_reachability_failure(self, strategy, sleep):
        strategy.reachable = False
        client = _FakeClient()
        with pytest.raises(AuthorizationFailedError, match="challenge file not found") as exc_info:
            prove_control(_engine(client, strategy, sleep), ["example.com"], ["example.com"])
        assert exc_info.value.result is None
        assert client.triggered == []

    def test_skip_test(self, strategy, sleep):
        strategy.reachable = False
        result = prove_control(
            _engine(_FakeClient(), strategy, sleep),
            ["example.com"],
            ["example.com"],
            skip_test=True,
        )
        assert result.valid is True

    def test_validation_failure_carries_result(self, strategy, sleep):
        client = _FakeClient({"example.com": [INVALID]})
        with pytest.raises(AuthorizationFailedError, match="example.com: invalid") as exc_info:
            prove_control(_engine(client, strategy, sleep), ["example.com"], ["example.com"])
        assert exc_info.value.result.failures["example.com"].kind is FailureKind.INVALID

    def test_fallback_selected_by_reachability(self, sleep):
        first = _FakeStrategy()
        first.reachable = False
        second = _FakeStrategy()
        engine = _engine(_FakeClient(), FallbackStrategy([first, second]), sleep)

        assert prove_control(engine, ["example.com"], ["example.com"]).valid
        assert first.created == []
        assert second.created == ["tok-example.com"]
        assert second.cleaned == ["tok-example.com"]
