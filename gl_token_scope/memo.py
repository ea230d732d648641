"""Async memoization that also shares lookups still in flight."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Generic, Hashable, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class AsyncMemo(Generic[K, V]):
    """
    Cache of async lookups keyed by ``K``.

    The first caller for a key runs the loader; callers arriving while it is
    still pending await the same future instead of issuing their own request.
    Successful results are cached for the lifetime of the memo. A loader that
    raises propagates the exception to every waiter and leaves the key
    uncached, so a later call tries again.

    Must only be used from a single event loop.
    """

    def __init__(self) -> None:
        self._values: dict[K, V] = {}
        self._pending: dict[K, asyncio.Future[V]] = {}

    def __contains__(self, key: K) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)

    def set(self, key: K, value: V) -> None:
        self._values[key] = value

    async def get(self, key: K, loader: Callable[[], Awaitable[V]]) -> V:
        while key not in self._values:
            pending = self._pending.get(key)
            if pending is None:
                return await self._load(key, loader)
            try:
                return await asyncio.shield(pending)
            except asyncio.CancelledError:
                # Only swallow the owner's cancellation, then take over the lookup
                if not pending.cancelled():
                    raise
        return self._values[key]

    async def _load(self, key: K, loader: Callable[[], Awaitable[V]]) -> V:
        future: asyncio.Future[V] = asyncio.get_running_loop().create_future()
        self._pending[key] = future
        try:
            value = await loader()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # Mark retrieved so a failure nobody else awaited does not warn at GC
            future.exception()
            raise
        else:
            self._values[key] = value
            future.set_result(value)
            return value
        finally:
            del self._pending[key]
