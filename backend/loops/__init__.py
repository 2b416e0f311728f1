"""Background loops: scheduled-message delivery and the polling base class."""

from backend.loops.base_loop import PollingLoop
from backend.loops.scheduler import SchedulerLoop

__all__ = ["PollingLoop", "SchedulerLoop"]
