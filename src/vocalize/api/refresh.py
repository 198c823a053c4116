"""
Single-flight coordination of session renewal.

Many requests can hit an expired token at once. Only the first one (the
owner) renews the session; the rest wait on a FIFO list of futures and are
released together, in enqueue order, with the owner's outcome. Refresh
tokens are single-use server side, so a second concurrent refresh would
invalidate the first and log the user out.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum

logger = logging.getLogger(__name__)


class RefreshState(Enum):
    IDLE = "idle"
    REFRESHING = "refreshing"


Renewal = Callable[[], Awaitable[str | None]]


class RefreshCoordinator:
    """
    Owns the Idle/Refreshing state and the waiter queue.

    One instance per client context; create a fresh one per test.
    """

    def __init__(self) -> None:
        self._state = RefreshState.IDLE
        self._waiters: list[asyncio.Future[str | None]] = []
        self.renewals_started = 0

    @property
    def state(self) -> RefreshState:
        return self._state

    @property
    def is_refreshing(self) -> bool:
        return self._state is RefreshState.REFRESHING

    @property
    def waiting(self) -> int:
        """Number of callers suspended on the current renewal."""
        return len(self._waiters)

    async def run(self, renew: Renewal) -> str | None:
        """
        Renew the session, or join the renewal already in flight.

        Args:
            renew: Coroutine factory returning the new access token, or None
                when the session could not be renewed

        Returns:
            The new access token, or None if renewal failed

        Raises:
            Whatever ``renew`` raised; waiters receive the same exception
        """
        if self._state is RefreshState.REFRESHING:
            future: asyncio.Future[str | None] = asyncio.get_running_loop().create_future()
            self._waiters.append(future)
            logger.debug(f"Waiting on in-flight session renewal ({len(self._waiters)} queued)")
            return await future

        self._state = RefreshState.REFRESHING
        self.renewals_started += 1
        try:
            try:
                token = await renew()
            except BaseException as e:
                self._release(error=e)
                raise
            self._release(token=token)
            return token
        finally:
            self._state = RefreshState.IDLE

    def _release(
        self, token: str | None = None, error: BaseException | None = None
    ) -> None:
        waiters, self._waiters = self._waiters, []
        if waiters:
            outcome = "failed" if error is not None or token is None else "succeeded"
            logger.debug(f"Releasing {len(waiters)} queued request(s): renewal {outcome}")
        for future in waiters:
            if future.done():
                continue
            if isinstance(error, asyncio.CancelledError):
                future.cancel()
            elif error is not None:
                future.set_exception(error)
            else:
                future.set_result(token)
