"""Tests for the three-state circuit breaker and its registry."""

from __future__ import annotations

import pytest

from openflow.errors import CircuitOpenError
from openflow.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitState,
    all_circuit_breakers,
    get_circuit_breaker,
    reset_circuit_breakers,
)


# ---------------------------------------------------------------------------
# Fixtures / helpers
# ---------------------------------------------------------------------------

class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def breaker(clock: FakeClock) -> CircuitBreaker:
    return CircuitBreaker(
        "test", failure_threshold=3, success_threshold=2, reset_timeout=60.0, clock=clock
    )


@pytest.fixture(autouse=True)
def _clean_registry():
    reset_circuit_breakers()
    yield
    reset_circuit_breakers()


def _boom() -> None:
    raise ConnectionError("dependency down")


def _trip(breaker: CircuitBreaker) -> None:
    for _ in range(breaker.failure_threshold):
        with pytest.raises(ConnectionError):
            breaker.execute(_boom)


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

class TestTransitions:
    def test_starts_closed(self, breaker: CircuitBreaker) -> None:
        assert breaker.state == CircuitState.CLOSED
        assert breaker.execute(lambda: "ok") == "ok"

    def test_opens_after_failure_threshold(self, breaker: CircuitBreaker) -> None:
        for _ in range(2):
            with pytest.raises(ConnectionError):
                breaker.execute(_boom)
        assert breaker.state == CircuitState.CLOSED
        with pytest.raises(ConnectionError):
            breaker.execute(_boom)
        assert breaker.state == CircuitState.OPEN

    def test_open_rejects_without_invoking(self, breaker: CircuitBreaker) -> None:
        _trip(breaker)
        calls: list[int] = []
        with pytest.raises(CircuitOpenError) as info:
            breaker.execute(lambda: calls.append(1))
        assert calls == []
        assert info.value.kind == "circuit_open"

    def test_half_open_after_reset_timeout(
        self, breaker: CircuitBreaker, clock: FakeClock
    ) -> None:
        _trip(breaker)
        clock.advance(59.9)
        with pytest.raises(CircuitOpenError):
            breaker.execute(lambda: "early")
        clock.advance(0.2)
        assert breaker.execute(lambda: "probe") == "probe"
        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.success_count == 1

    def test_closes_after_success_threshold(
        self, breaker: CircuitBreaker, clock: FakeClock
    ) -> None:
        _trip(breaker)
        clock.advance(60)
        breaker.execute(lambda: 1)
        breaker.execute(lambda: 2)
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0
        assert breaker.success_count == 0

    def test_failure_in_half_open_reopens(
        self, breaker: CircuitBreaker, clock: FakeClock
    ) -> None:
        _trip(breaker)
        clock.advance(60)
        breaker.execute(lambda: 1)
        with pytest.raises(ConnectionError):
            breaker.execute(_boom)
        assert breaker.state == CircuitState.OPEN
        with pytest.raises(CircuitOpenError):
            breaker.execute(lambda: "rejected")

    def test_reset_closes(self, breaker: CircuitBreaker) -> None:
        _trip(breaker)
        breaker.reset()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.execute(lambda: "ok") == "ok"

    def test_metrics(self, breaker: CircuitBreaker, clock: FakeClock) -> None:
        _trip(breaker)
        metrics = breaker.metrics()
        assert metrics["name"] == "test"
        assert metrics["state"] == "OPEN"
        assert metrics["failure_count"] == 3
        assert metrics["last_failure_time"] == clock.now


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class TestRegistry:
    def test_same_name_same_instance(self) -> None:
        assert get_circuit_breaker("llm") is get_circuit_breaker("llm")

    def test_services_are_independent(self) -> None:
        llm = get_circuit_breaker("llm")
        images = get_circuit_breaker("image_generation")
        _trip(llm)
        assert llm.state == CircuitState.OPEN
        assert images.state == CircuitState.CLOSED
        assert {b.name for b in all_circuit_breakers()} == {"llm", "image_generation"}
