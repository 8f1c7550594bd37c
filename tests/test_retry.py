from __future__ import annotations

import threading

import pytest

from app.config import RetryConfig
from app.errors import ConfigurationError, InvalidRequest, RequestCancelled, UpstreamError
from app.services.retry import RetryExecutor, RetryState


class Flaky:
    def __init__(self, failures: int, error: Exception | None = None, result: str = "ok") -> None:
        self.failures = failures
        self.error = error or UpstreamError("boom", code="HTTP_ERROR", status_code=503)
        self.result = result
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.result


def make_executor(**overrides):
    sleeps: list[float] = []
    config = RetryConfig(**{"max_attempts": 3, "base_delay": 2.0, **overrides})
    return RetryExecutor(config, sleep=sleeps.append), sleeps


def test_fails_twice_then_succeeds() -> None:
    executor, sleeps = make_executor()
    fn = Flaky(failures=2)

    assert executor.run(fn) == "ok"
    assert fn.calls == 3
    assert sleeps == [2.0, 4.0]


def test_always_failing_raises_last_error_after_max_attempts() -> None:
    executor, sleeps = make_executor()
    errors = [UpstreamError(f"fail {i}") for i in range(1, 4)]
    calls = []

    def fn():
        calls.append(1)
        raise errors[len(calls) - 1]

    with pytest.raises(UpstreamError) as excinfo:
        executor.run(fn)

    assert len(calls) == 3
    assert excinfo.value is errors[-1]
    assert sleeps == [2.0, 4.0]


def test_per_call_overrides() -> None:
    executor, sleeps = make_executor()
    fn = Flaky(failures=10)

    with pytest.raises(UpstreamError):
        executor.run(fn, max_attempts=4, base_delay=0.5)

    assert fn.calls == 4
    assert sleeps == [0.5, 1.0, 1.5]


@pytest.mark.parametrize("status", [401, 403])
def test_auth_failures_fail_fast_by_default(status) -> None:
    executor, sleeps = make_executor()
    fn = Flaky(failures=5, error=UpstreamError("denied", status_code=status))

    with pytest.raises(UpstreamError):
        executor.run(fn)

    assert fn.calls == 1
    assert sleeps == []


def test_auth_failures_retried_when_fast_fail_disabled() -> None:
    executor, _ = make_executor(fast_fail_auth=False)
    fn = Flaky(failures=2, error=UpstreamError("denied", status_code=401))

    assert executor.run(fn) == "ok"
    assert fn.calls == 3


@pytest.mark.parametrize("error", [ConfigurationError("no key"), InvalidRequest("bad")])
def test_fatal_errors_are_not_retried(error) -> None:
    executor, _ = make_executor()
    fn = Flaky(failures=5, error=error)

    with pytest.raises(type(error)):
        executor.run(fn)

    assert fn.calls == 1


def test_unexpected_errors_are_retried() -> None:
    executor, _ = make_executor()
    fn = Flaky(failures=1, error=KeyError("output"))

    assert executor.run(fn) == "ok"
    assert fn.calls == 2


def test_cancel_before_first_attempt() -> None:
    executor, _ = make_executor()
    event = threading.Event()
    event.set()
    fn = Flaky(failures=0)

    with pytest.raises(RequestCancelled):
        executor.run(fn, cancel_event=event)

    assert fn.calls == 0


def test_cancel_during_backoff_stops_retrying() -> None:
    executor, _ = make_executor(base_delay=0.01)
    event = threading.Event()

    def fn():
        event.set()
        raise UpstreamError("boom")

    with pytest.raises(RequestCancelled):
        executor.run(fn, cancel_event=event)


def test_retry_state_linear_delays() -> None:
    state = RetryState(max_attempts=3, base_delay=2.0)
    state.attempt = 1
    assert state.next_delay() == 2.0
    state.attempt = 2
    assert state.next_delay() == 4.0
    state.attempt = 3
    assert state.exhausted
