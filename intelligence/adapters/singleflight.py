from __future__ import annotations
"""Coalescing of concurrent calls that share a cache key.

The first caller for a key runs the coroutine; callers arriving while it is
in flight await the same future instead of issuing a second paid request.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Tuple

from core.errors import NetworkError

__all__ = ["SingleFlight"]


class SingleFlight:
    def __init__(self) -> None:
        self._inflight: Dict[str, asyncio.Future] = {}
        self._lock = asyncio.Lock()

    @property
    def in_flight(self) -> int:
        return len(self._inflight)

    async def do(self, key: str, fn: Callable[[], Awaitable[Any]]) -> Tuple[Any, bool]:
        """Run ``fn`` once per key among concurrent callers.

        Returns ``(result, shared)`` where ``shared`` is True for callers that
        joined an in-flight call.  Exceptions propagate to every waiter.  When
        the owner is cancelled, joiners get a NetworkError instead of the
        cancellation, so only the cancelled caller unwinds.
        """
        async with self._lock:
            future = self._inflight.get(key)
            if future is None:
                future = asyncio.get_running_loop().create_future()
                self._inflight[key] = future
                owner = True
            else:
                owner = False

        if not owner:
            return await asyncio.shield(future), True

        try:
            result = await fn()
        except asyncio.CancelledError:
            future.set_exception(NetworkError(f"In-flight call for {key} was cancelled"))
            future.exception()
            raise
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so an unobserved failure does not warn on GC
            future.exception()
            raise
        else:
            future.set_result(result)
            return result, False
        finally:
            async with self._lock:
                self._inflight.pop(key, None)

    async def wait_idle(self, timeout: float) -> bool:
        """Wait for in-flight calls to settle; False if ``timeout`` expired."""
        pending = list(self._inflight.values())
        if not pending:
            return True
        done, not_done = await asyncio.wait(pending, timeout=timeout)
        return not not_done
