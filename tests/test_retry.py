import asyncio

import pytest

from release_readiness import retry as retry_module
from release_readiness.retry import RetryPolicy, call_with_retry

FAST = RetryPolicy(max_attempts=3, base_delay_seconds=0, max_delay_seconds=0)


def test_retries_until_success() -> None:
    attempts: list[int] = []
    retried: list[int] = []

    async def flaky() -> str:
        attempts.append(1)
        if len(attempts) < 3:
            raise RuntimeError("temporary")
        return "ok"

    result = asyncio.run(call_with_retry(flaky, policy=FAST, on_retry=lambda attempt, exc: retried.append(attempt)))

    assert result == "ok"
    assert len(attempts) == 3
    assert retried == [1, 2]


def test_gives_up_after_max_attempts() -> None:
    attempts: list[int] = []

    async def broken() -> str:
        attempts.append(1)
        raise RuntimeError(f"attempt {len(attempts)}")

    with pytest.raises(RuntimeError, match="attempt 3"):
        asyncio.run(call_with_retry(broken, policy=FAST))
    assert len(attempts) == 3


def test_non_retryable_errors_stop_immediately() -> None:
    attempts: list[int] = []

    async def denied() -> str:
        attempts.append(1)
        raise PermissionError("invalid_auth")

    with pytest.raises(PermissionError):
        asyncio.run(call_with_retry(denied, policy=FAST, is_retryable=lambda exc: not isinstance(exc, PermissionError)))
    assert len(attempts) == 1


def test_delay_is_exponential_and_capped() -> None:
    policy = RetryPolicy(base_delay_seconds=0.5, max_delay_seconds=2.0)

    assert [policy.delay_for(attempt) for attempt in (1, 2, 3, 4)] == [0.5, 1.0, 2.0, 2.0]


def test_server_hint_extends_delay_up_to_cap() -> None:
    policy = RetryPolicy(base_delay_seconds=0.5, max_delay_seconds=2.0, max_hinted_delay_seconds=10.0)

    assert policy.delay_for(1, hint=4.0) == 4.0
    assert policy.delay_for(3, hint=1.0) == 2.0
    assert policy.delay_for(1, hint=120.0) == 10.0
    assert policy.delay_for(1, hint=0) == 0.5


def test_delay_hint_is_read_from_the_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    slept: list[float] = []

    async def _fake_sleep(delay: float) -> None:
        slept.append(delay)

    monkeypatch.setattr(retry_module.asyncio, "sleep", _fake_sleep)
    attempts: list[int] = []

    async def throttled() -> str:
        attempts.append(1)
        if len(attempts) == 1:
            raise RuntimeError("ratelimited")
        return "ok"

    result = asyncio.run(call_with_retry(throttled, policy=FAST, delay_hint=lambda exc: 3.0))

    assert result == "ok"
    assert slept == [3.0]
