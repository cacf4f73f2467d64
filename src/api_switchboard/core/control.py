import asyncio
from typing import Awaitable, Callable, Optional

from loguru import logger

SleepFunc = Callable[[float], Awaitable[None]]

DEFAULT_POLL_INTERVAL = 0.5


class JobControl:
    """Cooperative pause/cancel flags shared by a job and its waits.

    Every suspension (inter-request delay, backoff, pause) goes through
    ``sleep`` so that cancellation is noticed within one poll interval,
    even in the middle of a long wait.
    """

    def __init__(
        self,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        sleep_func: Optional[SleepFunc] = None
    ):
        self.poll_interval = poll_interval
        self._sleep_func = sleep_func or asyncio.sleep
        self._paused = False
        self._cancelled = False

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def pause(self) -> None:
        self._paused = True

    def resume(self) -> None:
        self._paused = False

    def cancel(self) -> None:
        self._cancelled = True

    def reset(self) -> None:
        """Clear both flags for a new run on the same job."""
        self._paused = False
        self._cancelled = False

    async def sleep(self, seconds: float) -> bool:
        """Sleep in poll-interval steps.

        Returns:
            False if the wait was cut short by cancellation, True otherwise
        """
        remaining = max(seconds, 0.0)
        while remaining > 0:
            if self._cancelled:
                return False
            step = min(remaining, self.poll_interval)
            await self._sleep_func(step)
            remaining -= step
        return not self._cancelled

    async def wait_while_paused(self) -> bool:
        """Block while paused.

        Returns:
            False if cancelled while (or before) waiting, True otherwise
        """
        if self._paused and not self._cancelled:
            logger.info("Job paused, waiting for resume")
        while self._paused and not self._cancelled:
            await self._sleep_func(self.poll_interval)
        return not self._cancelled

    async def checkpoint(self) -> bool:
        """Loop-top check: honour pause, then report whether to continue."""
        if self._cancelled:
            return False
        return await self.wait_while_paused()
