"""Structured fan-out helpers: run operations together, then partition outcomes."""
from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Hashable
from dataclasses import dataclass, field
from typing import Generic, TypeVar

K = TypeVar("K", bound=Hashable)
T = TypeVar("T")


@dataclass
class FanoutOutcome(Generic[K, T]):
    successes: dict[K, T] = field(default_factory=dict)
    failures: dict[K, Exception] = field(default_factory=dict)

    @property
    def all_failed(self) -> bool:
        return bool(self.failures) and not self.successes

    @property
    def partial_failure(self) -> bool:
        return bool(self.failures) and bool(self.successes)


async def gather_outcomes(operations: dict[K, Awaitable[T]]) -> FanoutOutcome[K, T]:
    """Await every operation and split results by key into successes and failures.

    Only ``Exception`` subclasses raised by individual operations are captured
    as failures. Cancellation and other ``BaseException`` results (interrupts,
    exit requests) are re-raised.
    """
    keys = list(operations)
    results = await asyncio.gather(*(operations[key] for key in keys), return_exceptions=True)
    outcome: FanoutOutcome[K, T] = FanoutOutcome()
    for key, result in zip(keys, results):
        if isinstance(result, Exception):
            outcome.failures[key] = result
        elif isinstance(result, BaseException):
            raise result
        else:
            outcome.successes[key] = result
    return outcome
