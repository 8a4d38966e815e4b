"""Idle-sleep controller for an on-demand game server."""

__version__ = "1.0.0"

from .config import Settings
from .decision import Action, Decision, decide
from .interactions import Dispatch, Dispatcher
from .monitor import IdleMonitor
from .store import ActivityRecord, ActivityStore

__all__ = [
    "Settings",
    "Action",
    "Decision",
    "decide",
    "Dispatch",
    "Dispatcher",
    "IdleMonitor",
    "ActivityRecord",
    "ActivityStore",
]
