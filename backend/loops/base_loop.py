"""Abstract base class for fixed-interval background loops."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime
from typing import Any

from backend.utils.timestamps import utc_now


class PollingLoop(ABC):
    """Base class for loops that do one unit of work every ``interval`` seconds.

    Subclasses must implement:
        - tick(now) -> result of one pass

    The clock is injectable so a single pass can be driven directly in tests.
    """

    def __init__(self, interval: float = 30, clock: Callable[[], datetime] = utc_now):
        self.interval = interval
        self.clock = clock
        self.logger = logging.getLogger(self.__class__.__name__)
        self._running = False

    @abstractmethod
    async def tick(self, now: datetime) -> Any:
        """Run one pass at instant ``now``."""

    async def run_once(self) -> Any:
        return await self.tick(self.clock())

    @property
    def running(self) -> bool:
        return self._running

    def stop(self) -> None:
        self._running = False

    async def run(self) -> None:
        """Main polling loop. A failing pass is logged and the loop continues."""
        self.logger.info("Starting %s (interval: %ss)", self.__class__.__name__, self.interval)
        self._running = True
        while self._running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                self.logger.exception("Error in %s", self.__class__.__name__)
            await asyncio.sleep(self.interval)
        self.logger.info("Stopped %s", self.__class__.__name__)
