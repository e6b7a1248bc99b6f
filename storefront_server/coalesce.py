"""Collapse duplicate in-flight reads into a single request."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_GRACE_PERIOD = 0.1  # seconds


class RequestCoalescer:
    """
    Share one pending result between callers that ask for the same key.

    A slot is cleared immediately when its request fails and
    ``grace_period`` seconds after it succeeds, so a caller arriving just
    after settlement still reuses the result while a later call starts a
    fresh request.
    """

    def __init__(self, grace_period: float = DEFAULT_GRACE_PERIOD) -> None:
        self.grace_period = grace_period
        self._pending: dict[str, asyncio.Future[Any]] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._pending

    def subscribe(self, key: str) -> Optional[asyncio.Future[Any]]:
        """Return the pending result for key, if any."""
        return self._pending.get(key)

    async def run(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        """
        Await the shared result for key, starting it with factory if needed.

        Args:
            key: Dedup key (cart ID, or a constant for the product list)
            factory: Zero-argument coroutine function issuing the request

        Returns:
            The shared result
        """
        future = self._pending.get(key)
        if future is None:
            future = asyncio.ensure_future(factory())
            self._pending[key] = future
            future.add_done_callback(lambda done: self._settle(key, done))
        else:
            logger.debug(f"Joining in-flight request for {key}")
        # One subscriber going away must not cancel the others.
        return await asyncio.shield(future)

    def clear(self, key: str) -> None:
        """Forget the slot for key."""
        self._pending.pop(key, None)

    def _settle(self, key: str, future: asyncio.Future[Any]) -> None:
        if future.cancelled() or future.exception() is not None:
            self._clear_if_current(key, future)
            return
        loop = asyncio.get_running_loop()
        loop.call_later(self.grace_period, self._clear_if_current, key, future)

    def _clear_if_current(self, key: str, future: asyncio.Future[Any]) -> None:
        if self._pending.get(key) is future:
            del self._pending[key]
