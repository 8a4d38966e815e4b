"""Pure idle-shutdown decision: (state, uptime, occupancy, record) -> action.

No I/O happens here; ``monitor.IdleMonitor`` gathers the inputs and carries
out the result.
"""

import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from .compute import RUNNING


class Action(enum.Enum):
    NOOP = "none"
    RESET = "reset"
    STOP = "stop"


@dataclass(frozen=True)
class Decision:
    action: Action
    reason: str
    idle_seconds: Optional[int] = None
    remaining_seconds: Optional[int] = None


def uptime_minutes(launch_time: datetime, now: float) -> float:
    """Minutes between ``launch_time`` and the epoch timestamp ``now``."""
    if launch_time.tzinfo is None:
        launch_time = launch_time.replace(tzinfo=timezone.utc)
    return max(now - launch_time.timestamp(), 0) / 60


def decide(state, uptime, occupancy, record, now, idle_timeout_seconds, startup_grace_minutes) -> Decision:
    """Decide what one monitor pass should do.

    Order matters:
      1) anything but ``running`` -> nothing to check
      2) inside the startup grace window -> reset, whatever the probe said
         (the game takes minutes to accept connections after boot)
      3) players online -> reset
      4) no record yet -> reset, so the idle clock gets an origin
      5) idle for at least the timeout -> stop
      6) otherwise idle but under the timeout -> nothing
    """
    if state != RUNNING:
        return Decision(Action.NOOP, "not running")

    if uptime < startup_grace_minutes:
        return Decision(Action.RESET, "startup grace")

    if occupancy.count > 0:
        return Decision(Action.RESET, "players online", idle_seconds=0)

    if record is None:
        return Decision(Action.RESET, "initialized", idle_seconds=0)

    idle = max(int(now) - int(record.last_activity), 0)
    if idle >= idle_timeout_seconds:
        return Decision(Action.STOP, "idle timeout reached", idle_seconds=idle, remaining_seconds=0)

    return Decision(
        Action.NOOP,
        "idle but timeout not reached",
        idle_seconds=idle,
        remaining_seconds=idle_timeout_seconds - idle,
    )
