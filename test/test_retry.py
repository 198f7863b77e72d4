import asyncio

import pytest

from margintrack.domain.errors import (
    ConfigError,
    NotFoundError,
    RateLimitError,
    TerminalStoreError,
    TransientStoreError,
    ValidationError,
)
from margintrack.services.retry import ErrorClass, RetryExecutor, backoff_delay, classify_error, with_retry


class Recorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def flaky(errors, result="ok"):
    calls = {"n": 0}

    async def op():
        calls["n"] += 1
        if errors:
            raise errors.pop(0)
        return result

    return op, calls


def test_classification():
    assert classify_error(NotFoundError()) is ErrorClass.TERMINAL
    assert classify_error(TerminalStoreError("bad", 400)) is ErrorClass.TERMINAL
    assert classify_error(ValidationError("bad")) is ErrorClass.TERMINAL
    assert classify_error(RateLimitError()) is ErrorClass.RATE_LIMITED
    assert classify_error(TransientStoreError("down", 503)) is ErrorClass.TRANSIENT
    assert classify_error(ConnectionError("reset")) is ErrorClass.TRANSIENT
    assert classify_error(RuntimeError("no status")) is ErrorClass.TRANSIENT


def test_backoff_doubles_and_is_capped():
    assert [backoff_delay(n, 1.0, 30.0) for n in (1, 2, 3)] == [1.0, 2.0, 4.0]
    assert [backoff_delay(n, 1.0, 30.0, rate_limited=True) for n in (1, 2, 3)] == [2.0, 4.0, 8.0]
    assert backoff_delay(10, 1.0, 30.0) == 30.0


def test_terminal_error_is_not_retried():
    sleep = Recorder()
    op, calls = flaky([NotFoundError("gone")])
    callbacks = []

    with pytest.raises(NotFoundError):
        asyncio.run(with_retry(op, 3, 1.0, lambda a, e: callbacks.append(a), sleep=sleep))

    assert calls["n"] == 1
    assert callbacks == []
    assert sleep.delays == []


def test_rate_limited_three_times_then_success():
    sleep = Recorder()
    op, calls = flaky([RateLimitError(), RateLimitError(), RateLimitError()])
    callbacks = []

    result = asyncio.run(with_retry(op, 4, 1.0, lambda a, e: callbacks.append(a), sleep=sleep))

    assert result == "ok"
    assert calls["n"] == 4
    assert callbacks == [1, 2, 3]
    assert sleep.delays == [2.0, 4.0, 8.0]


def test_exhausted_attempts_reraise_last_error():
    sleep = Recorder()
    first, last = TransientStoreError("one"), TransientStoreError("two")
    op, calls = flaky([first, TransientStoreError("mid"), last])

    with pytest.raises(TransientStoreError) as exc:
        asyncio.run(with_retry(op, 3, 0.5, sleep=sleep))

    assert exc.value is last
    assert calls["n"] == 3
    assert sleep.delays == [0.5, 1.0]


def test_single_attempt_never_sleeps():
    sleep = Recorder()
    op, calls = flaky([TransientStoreError("down")])
    with pytest.raises(TransientStoreError):
        asyncio.run(with_retry(op, 1, 1.0, sleep=sleep))
    assert calls["n"] == 1
    assert sleep.delays == []


def test_max_backoff_caps_every_wait():
    sleep = Recorder()
    op, _ = flaky([RateLimitError()] * 5)
    asyncio.run(with_retry(op, 6, 10.0, max_backoff=15.0, sleep=sleep))
    assert max(sleep.delays) == 15.0


def test_zero_attempts_is_a_config_error():
    op, calls = flaky([])
    with pytest.raises(ConfigError):
        asyncio.run(with_retry(op, 0))
    assert calls["n"] == 0
    with pytest.raises(ConfigError):
        RetryExecutor(max_attempts=0)


def test_executor_uses_its_policy():
    sleep = Recorder()
    executor = RetryExecutor(max_attempts=2, base_delay=0.25, sleep=sleep)
    op, calls = flaky([TransientStoreError("blip")], result=42)

    assert asyncio.run(executor.run(op)) == 42
    assert calls["n"] == 2
    assert sleep.delays == [0.25]
