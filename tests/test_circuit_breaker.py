import pytest

from presearch_core.utils.circuit_breaker import CircuitBreaker, CircuitState


@pytest.fixture
def breaker(clock):
    return CircuitBreaker("test", failure_threshold=3, recovery_timeout=60.0, clock=clock)


def test_starts_closed(breaker):
    assert breaker.state == CircuitState.CLOSED
    assert breaker.can_proceed() is True
    assert breaker.failure_count == 0


def test_trips_open_after_threshold(breaker, clock):
    for _ in range(3):
        breaker.record_failure()

    assert breaker.state == CircuitState.OPEN
    assert breaker.can_proceed() is False
    assert breaker.next_attempt_time == clock.now + 60.0
    assert breaker.stats.rejected_calls == 1


def test_below_threshold_stays_closed(breaker):
    breaker.record_failure()
    breaker.record_failure()
    assert breaker.state == CircuitState.CLOSED
    assert breaker.can_proceed() is True


def test_recovery_cycle(breaker, clock):
    for _ in range(3):
        breaker.record_failure()
    clock.advance(59.9)
    assert breaker.can_proceed() is False

    clock.advance(0.2)
    assert breaker.can_proceed() is True
    assert breaker.state == CircuitState.HALF_OPEN

    breaker.record_success()
    assert breaker.state == CircuitState.CLOSED
    assert breaker.failure_count == 0


def test_half_open_admits_single_probe(breaker, clock):
    for _ in range(3):
        breaker.record_failure()
    clock.advance(61)

    assert breaker.can_proceed() is True
    assert breaker.can_proceed() is False


def test_released_slot_admits_next_caller(breaker, clock):
    for _ in range(3):
        breaker.record_failure()
    clock.advance(61)
    assert breaker.can_proceed() is True
    assert breaker.can_proceed() is False

    breaker.release_slot()

    assert breaker.state == CircuitState.HALF_OPEN
    assert breaker.can_proceed() is True
    assert breaker.can_proceed() is False


def test_release_slot_outside_half_open_is_noop(breaker):
    breaker.release_slot()
    assert breaker.state == CircuitState.CLOSED
    assert breaker.can_proceed() is True


def test_half_open_permissive_when_unbounded(clock):
    breaker = CircuitBreaker("loose", failure_threshold=1, recovery_timeout=5.0,
                             half_open_max_probes=None, clock=clock)
    breaker.record_failure()
    clock.advance(5)

    assert breaker.can_proceed() is True
    assert breaker.can_proceed() is True
    assert breaker.state == CircuitState.HALF_OPEN


def test_failure_in_half_open_reopens(breaker, clock):
    for _ in range(3):
        breaker.record_failure()
    clock.advance(61)
    assert breaker.can_proceed() is True

    breaker.record_failure()
    assert breaker.state == CircuitState.OPEN
    assert breaker.next_attempt_time == clock.now + 60.0
    assert breaker.can_proceed() is False


def test_success_in_closed_is_noop(breaker):
    breaker.record_success()
    assert breaker.failure_count == 0
    assert breaker.state == CircuitState.CLOSED


def test_listeners_receive_transitions(breaker, clock):
    seen = []
    breaker.add_listener(lambda old, new: seen.append((old, new)))

    for _ in range(3):
        breaker.record_failure()
    clock.advance(61)
    breaker.can_proceed()
    breaker.record_success()

    assert seen == [
        (CircuitState.CLOSED, CircuitState.OPEN),
        (CircuitState.OPEN, CircuitState.HALF_OPEN),
        (CircuitState.HALF_OPEN, CircuitState.CLOSED),
    ]


def test_failing_listener_does_not_break_transition(breaker):
    def boom(old, new):
        raise RuntimeError("listener bug")

    breaker.add_listener(boom)
    for _ in range(3):
        breaker.record_failure()
    assert breaker.state == CircuitState.OPEN


def test_retry_after_and_status(breaker, clock):
    assert breaker.retry_after() is None
    for _ in range(3):
        breaker.record_failure()
    clock.advance(20)
    assert breaker.retry_after() == pytest.approx(40.0)

    status = breaker.get_status()
    assert status["state"] == "open"
    assert status["failureCount"] == 3
    assert status["totalFailures"] == 3
    assert status["nextAttemptTime"] is not None


def test_reset(breaker):
    for _ in range(3):
        breaker.record_failure()
    breaker.reset()
    assert breaker.state == CircuitState.CLOSED
    assert breaker.failure_count == 0
    assert breaker.can_proceed() is True


def test_invalid_threshold():
    with pytest.raises(ValueError):
        CircuitBreaker(failure_threshold=0)
