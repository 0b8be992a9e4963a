"""Request coalescing: one computation per key, everyone else waits for it.

Hey future me - two people opening the same playlist at the same time must NOT trigger two
cascades + two analysis runs for the same track. The first caller becomes the "owner" and
does the work, later callers just await the owner's future.

Two ways to use it:
- do(key, fn): the single-track path, owner runs fn() and everybody gets its result
- acquire/resolve/reject: the batched path, where one owner settles MANY keys from a
  shared analysis stream and can't wrap each one in its own coroutine

Keys are always released when settled, so a failure is never cached in here (the
database is the cache, this is only about concurrent duplicates).
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from tempokey.domain.exceptions import AnalysisAbortedError

logger = logging.getLogger(__name__)


def _consume_exception(future: asyncio.Future[Any]) -> None:
    # Nobody else may be waiting - fetch the exception so asyncio doesn't log
    # "Future exception was never retrieved".
    if not future.cancelled():
        future.exception()


class SingleFlight:
    """In-flight registry of futures keyed by track id."""

    def __init__(self) -> None:
        self._inflight: dict[str, asyncio.Future[Any]] = {}

    def __contains__(self, key: object) -> bool:
        return key in self._inflight

    @property
    def in_flight(self) -> int:
        return len(self._inflight)

    def acquire(self, key: str) -> tuple[asyncio.Future[Any], bool]:
        """Return (future, owner). owner=True means the caller must settle the key."""
        future = self._inflight.get(key)
        if future is not None:
            return future, False

        future = asyncio.get_running_loop().create_future()
        future.add_done_callback(_consume_exception)
        self._inflight[key] = future
        return future, True

    def resolve(self, key: str, value: Any) -> None:
        future = self._inflight.pop(key, None)
        if future is not None and not future.done():
            future.set_result(value)

    def reject(self, key: str, exc: BaseException) -> None:
        future = self._inflight.pop(key, None)
        if future is None or future.done():
            return
        if isinstance(exc, asyncio.CancelledError):
            future.cancel()
        else:
            future.set_exception(exc)

    async def do(self, key: str, fn: Callable[[], Awaitable[Any]]) -> Any:
        """Run fn once per key while in flight, share the outcome with all callers.

        A waiter that gets cancelled doesn't cancel the shared computation (shield).
        If the OWNER gets cancelled, waiters get AnalysisAbortedError instead of
        hanging forever.
        """
        future, owner = self.acquire(key)
        if not owner:
            logger.debug("Joining in-flight computation for %s", key)
            return await asyncio.shield(future)

        try:
            value = await fn()
        except asyncio.CancelledError:
            self.reject(key, AnalysisAbortedError())
            raise
        except Exception as e:
            self.reject(key, e)
            raise
        self.resolve(key, value)
        return value
