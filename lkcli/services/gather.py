"""
Small fan-out helpers over asyncio.
"""

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from typing import TypeVar

A = TypeVar("A")
B = TypeVar("B")
K = TypeVar("K")
V = TypeVar("V")


async def gather_pair(first: Awaitable[A], second: Awaitable[B]) -> tuple[A, B]:
    """
    Run two awaitables concurrently and return both results.

    If either raises, the other is cancelled and the first error propagates.
    """
    t1 = asyncio.ensure_future(first)
    t2 = asyncio.ensure_future(second)
    try:
        a, b = await asyncio.gather(t1, t2)
    except BaseException:
        t1.cancel()
        t2.cancel()
        raise
    return a, b


async def gather_settled(
    keys: Iterable[K],
    fn: Callable[[K], Awaitable[V]],
    limit: int = 8,
) -> tuple[dict[K, V], dict[K, Exception]]:
    """
    Call fn for every key concurrently, keeping results and errors apart.

    Errors from one key never cancel the others.
    """
    sem = asyncio.Semaphore(limit)
    results: dict[K, V] = {}
    errors: dict[K, Exception] = {}

    async def _one(key: K):
        async with sem:
            try:
                results[key] = await fn(key)
            except Exception as e:
                errors[key] = e

    await asyncio.gather(*(_one(k) for k in keys))
    return results, errors
