"""Work-distribution and real-time synchronisation engine for modqueue.

Keeps the in-memory registry of pending items, assigns them to connected
moderators by least load, and pushes each client a consistent view.

Public API
----------
PendingRegistry
    In-memory set of unresolved items and their current owners.
rebalance
    Least-loaded assignment of unclaimed items.
ModeratorSessionManager
    Connection lifecycle and the lock that serialises every update.
UpdateBroadcaster
    Builds per-session payloads and delivers them.
SubmissionIntake, ResolutionHandler
    The mutation entry points used by the HTTP layer.
"""

from modqueue.distribution.balancer import rebalance
from modqueue.distribution.broadcaster import UpdateBroadcaster
from modqueue.distribution.handlers import ResolutionHandler, SubmissionIntake
from modqueue.distribution.registry import (
    DuplicateItemError,
    PendingItem,
    PendingRegistry,
    UnknownItemError,
)
from modqueue.distribution.sessions import (
    ClientSession,
    ModeratorSessionManager,
    SessionRole,
    SessionStateError,
)

__all__: list[str] = [
    "ClientSession",
    "DuplicateItemError",
    "ModeratorSessionManager",
    "PendingItem",
    "PendingRegistry",
    "ResolutionHandler",
    "SessionRole",
    "SessionStateError",
    "SubmissionIntake",
    "UnknownItemError",
    "UpdateBroadcaster",
    "rebalance",
]
