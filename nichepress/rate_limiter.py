"""
Fixed-interval pacing for rate-limited external services.

Suggestion and LLM endpoints are called strictly one after another with a
fixed pause in between. The pause goes through an injectable sleep so tests
never wait on the wall clock, and it can be cut short by a stop signal.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


class FixedIntervalGate:
    """
    Pause a fixed interval between sequential calls.

    Usage:
        gate = FixedIntervalGate(0.5)
        for seed in seeds:
            ...
            if not await gate.wait(stop):
                break  # stop signal was set
    """

    def __init__(self, interval: float, sleep: Optional[SleepFn] = None):
        if interval < 0:
            raise ValueError("interval must be >= 0")
        self.interval = interval
        self._sleep = sleep or asyncio.sleep
        self.waits = 0

    async def wait(self, stop: Optional[asyncio.Event] = None) -> bool:
        """
        Pause for one interval.

        Returns False when the stop signal is (or becomes) set, meaning the
        caller should abandon its remaining calls.
        """
        if stop is not None and stop.is_set():
            return False

        self.waits += 1
        if self.interval <= 0:
            return not (stop is not None and stop.is_set())

        if stop is None:
            await self._sleep(self.interval)
            return True

        sleeper = asyncio.ensure_future(self._sleep(self.interval))
        stopper = asyncio.ensure_future(stop.wait())
        try:
            await asyncio.wait({sleeper, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, stopper):
                if not task.done():
                    task.cancel()

        if stop.is_set():
            logger.info("Pacing interrupted by stop signal")
            return False
        return True
