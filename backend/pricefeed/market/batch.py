"""Join-with-partial-results for concurrent per-ticker calls."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Generic, TypeVar, Union

K = TypeVar("K")
T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Ok(Generic[K, T]):
    key: K
    value: T


@dataclass(frozen=True, slots=True)
class Err(Generic[K]):
    key: K
    error: Exception


Outcome = Union[Ok[K, T], Err[K]]


async def settle_all(
    keys: Iterable[K],
    func: Callable[[K], Awaitable[T]],
) -> list[Outcome]:
    """Run ``func`` for every key concurrently and wait for all of them.

    One failure never cancels or fails the others. Each key yields either
    ``Ok(key, value)`` or ``Err(key, exception)``, in input order, so the
    caller decides whether to log, retry or drop each failure.
    Cancellation of the caller still propagates.
    """

    async def _one(key: K) -> Outcome:
        try:
            return Ok(key, await func(key))
        except Exception as e:
            return Err(key, e)

    return list(await asyncio.gather(*(_one(k) for k in keys)))


def successes(outcomes: Iterable[Outcome]) -> list:
    """Values of the ``Ok`` outcomes, in order."""
    return [o.value for o in outcomes if isinstance(o, Ok)]


def failures(outcomes: Iterable[Outcome]) -> list[Err]:
    return [o for o in outcomes if isinstance(o, Err)]
