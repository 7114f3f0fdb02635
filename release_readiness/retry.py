"""Async retry with capped exponential backoff and server-provided delay hints."""
from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

T = TypeVar("T")


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    base_delay_seconds: float = 0.5
    max_delay_seconds: float = 2.0
    # Upper bound for delays requested by the server (e.g. Retry-After on HTTP 429).
    max_hinted_delay_seconds: float = 30.0

    def delay_for(self, attempt: int, hint: float | None = None) -> float:
        backoff = min(self.base_delay_seconds * (2 ** (attempt - 1)), self.max_delay_seconds)
        if hint is None or hint <= 0:
            return backoff
        return max(backoff, min(hint, self.max_hinted_delay_seconds))


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    on_retry: Callable[[int, Exception], None] | None = None,
    is_retryable: Callable[[Exception], bool] | None = None,
    delay_hint: Callable[[Exception], float | None] | None = None,
) -> T:
    attempts = max(1, policy.max_attempts)
    attempt = 0
    while True:
        attempt += 1
        try:
            return await fn()
        except Exception as exc:  # noqa: BLE001
            exhausted = attempt >= attempts
            if exhausted or (is_retryable is not None and not is_retryable(exc)):
                raise
            if on_retry:
                on_retry(attempt, exc)
            hint = delay_hint(exc) if delay_hint is not None else None
            await asyncio.sleep(policy.delay_for(attempt, hint))
