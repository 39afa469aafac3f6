"""Connection lifecycle for moderators and viewers.

Each WebSocket connection is wrapped in a :class:`ClientSession` that moves
through a small state machine::

    UNIDENTIFIED ──► MODERATOR ──► CLOSED
         │                            ▲
         ├─────────► VIEWER ──────────┤
         └────────────────────────────┘

The role is set once, from the first identifying message.  ``CLOSED`` is
terminal.

:class:`ModeratorSessionManager` owns the live-moderator set and the single
:class:`asyncio.Lock` that serialises every "mutate registry → rebalance →
push" sequence.  Pushes are awaited inside the lock: a disconnect can never
interleave with a rebalance and leave a moderator holding a stale view.

Moderator ids
-------------
A fresh random id (``mod_`` + 12 hex digits, 48 bits) is generated on every
moderator identification and never reused; a reconnecting client rejoins the
pool with zero load.  A colliding id is detected and regenerated rather than
merged with the live session that holds it.
"""

from __future__ import annotations

import asyncio
import enum
import itertools
import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass, field

from modqueue.distribution.balancer import rebalance
from modqueue.distribution.broadcaster import PushChannel, UpdateBroadcaster
from modqueue.distribution.messages import AssignedId
from modqueue.distribution.registry import PendingRegistry

logger = logging.getLogger(__name__)

#: Number of fresh ids tried before giving up on a colliding id factory.
_MAX_ID_ATTEMPTS: int = 8

_session_counter = itertools.count(1)


# ---------------------------------------------------------------------------
# Custom exceptions
# ---------------------------------------------------------------------------


class SessionStateError(RuntimeError):
    """Raised on an illegal session transition (e.g. identifying twice)."""


class ModeratorIdCollisionError(RuntimeError):
    """Raised when no unique moderator id could be generated."""


# ---------------------------------------------------------------------------
# Session model
# ---------------------------------------------------------------------------


class SessionRole(enum.Enum):
    """Lifecycle state of a client connection."""

    UNIDENTIFIED = "unidentified"
    MODERATOR = "moderator"
    VIEWER = "viewer"
    CLOSED = "closed"


def new_moderator_id() -> str:
    """Return a random moderator id such as ``"mod_3f9a0c12be47"``."""
    return f"mod_{secrets.token_hex(6)}"


@dataclass(eq=False)
class ClientSession:
    """One live client connection.

    Attributes
    ----------
    channel:
        The transport used to push frames to the client.
    session_id:
        Process-unique sequence number, used in log messages.
    role:
        Current :class:`SessionRole`.
    moderator_id:
        Id assigned at moderator identification; ``None`` otherwise.
    """

    channel: PushChannel
    session_id: int = field(default_factory=lambda: next(_session_counter))
    role: SessionRole = SessionRole.UNIDENTIFIED
    moderator_id: str | None = None

    @property
    def closed(self) -> bool:
        return self.role is SessionRole.CLOSED

    @property
    def label(self) -> str:
        """Short human-readable identity for logs."""
        if self.moderator_id is not None:
            return f"session#{self.session_id}({self.moderator_id})"
        return f"session#{self.session_id}({self.role.value})"


# ---------------------------------------------------------------------------
# ModeratorSessionManager
# ---------------------------------------------------------------------------


class ModeratorSessionManager:
    """Tracks connected sessions and keeps the balance on join and leave.

    Parameters
    ----------
    registry:
        The shared pending registry.
    broadcaster:
        Pushes views to sessions.
    id_factory:
        Zero-argument callable producing candidate moderator ids.  Defaults
        to :func:`new_moderator_id`; injectable for deterministic tests.
    """

    def __init__(
        self,
        registry: PendingRegistry,
        broadcaster: UpdateBroadcaster,
        id_factory: Callable[[], str] = new_moderator_id,
    ) -> None:
        self._registry = registry
        self._broadcaster = broadcaster
        self._id_factory = id_factory
        self._lock = asyncio.Lock()

        # moderator_id → session, in registration order (balancer tie-break)
        self._moderators: dict[str, ClientSession] = {}

        # viewer sessions, in registration order
        self._viewers: dict[ClientSession, None] = {}

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def registry(self) -> PendingRegistry:
        return self._registry

    @property
    def broadcaster(self) -> UpdateBroadcaster:
        return self._broadcaster

    def transaction(self) -> asyncio.Lock:
        """Return the lock guarding the registry and the live-moderator set.

        Usage::

            async with manager.transaction():
                registry.insert(item_id)
                changed = rebalance(registry, manager.moderator_ids())
                await broadcaster.push_moderator_views(manager.moderator_sessions(changed))
        """
        return self._lock

    def moderator_ids(self) -> list[str]:
        """Connected moderator ids in registration order."""
        return list(self._moderators)

    def moderator_sessions(self, moderator_ids: set[str] | None = None) -> list[ClientSession]:
        """Connected moderator sessions, optionally restricted to *moderator_ids*."""
        if moderator_ids is None:
            return list(self._moderators.values())
        return [
            session
            for moderator_id, session in self._moderators.items()
            if moderator_id in moderator_ids
        ]

    def viewer_sessions(self) -> list[ClientSession]:
        """Connected viewer sessions in registration order."""
        return list(self._viewers)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self, channel: PushChannel) -> ClientSession:
        """Wrap a newly accepted connection in an unidentified session."""
        session = ClientSession(channel=channel)
        logger.info("WebSocket client connected: %s", session.label)
        return session

    async def identify_moderator(self, session: ClientSession) -> str:
        """Register *session* as a moderator and hand it its share of work.

        Sequence, under the lock: assign a fresh id, register, send
        ``assignedId``, rebalance, then push views to the new moderator and
        to every moderator whose owned set changed.

        Returns
        -------
        str
            The new moderator id.

        Raises
        ------
        SessionStateError
            If *session* is already identified or closed.
        ModeratorIdCollisionError
            If the id factory keeps returning ids already in use.
        """
        async with self._lock:
            self._require_unidentified(session)
            moderator_id = self._fresh_moderator_id()
            session.role = SessionRole.MODERATOR
            session.moderator_id = moderator_id
            self._moderators[moderator_id] = session
            logger.info(
                "Moderator %s identified. Moderators: %d, viewers: %d",
                moderator_id,
                len(self._moderators),
                len(self._viewers),
            )

            # the client learns its id before any view arrives
            await self._broadcaster.send(session, AssignedId(id=moderator_id).to_wire())

            changed = rebalance(self._registry, self.moderator_ids())
            changed.add(moderator_id)
            await self._broadcaster.push_moderator_views(self.moderator_sessions(changed))
            return moderator_id

    async def identify_viewer(self, session: ClientSession) -> None:
        """Register *session* as a viewer and send it the public collection.

        Raises
        ------
        SessionStateError
            If *session* is already identified or closed.
        """
        async with self._lock:
            self._require_unidentified(session)
            session.role = SessionRole.VIEWER
            self._viewers[session] = None
            logger.info(
                "Viewer connected: %s. Moderators: %d, viewers: %d",
                session.label,
                len(self._moderators),
                len(self._viewers),
            )
            await self._broadcaster.push_public_collection(session)

    async def close(self, session: ClientSession) -> list[str]:
        """Tear down *session*.  Safe to call more than once.

        For a moderator: release its items, deregister, rebalance and push
        updated views to every remaining moderator.  For a viewer: deregister
        only.

        Returns
        -------
        list[str]
            Item ids released by a departing moderator (empty otherwise).
        """
        async with self._lock:
            previous = session.role
            session.role = SessionRole.CLOSED
            released: list[str] = []

            if previous is SessionRole.MODERATOR and session.moderator_id is not None:
                released = self._registry.release_all_owned_by(session.moderator_id)
                self._moderators.pop(session.moderator_id, None)
                rebalance(self._registry, self.moderator_ids())
                await self._broadcaster.push_moderator_views(self.moderator_sessions())
            elif previous is SessionRole.VIEWER:
                self._viewers.pop(session, None)

            if previous is not SessionRole.CLOSED:
                logger.info(
                    "WebSocket client disconnected: %s. Moderators: %d, viewers: %d",
                    session.label,
                    len(self._moderators),
                    len(self._viewers),
                )
            return released

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _require_unidentified(session: ClientSession) -> None:
        if session.role is not SessionRole.UNIDENTIFIED:
            raise SessionStateError(
                f"{session.label} is already {session.role.value}; "
                "a connection identifies itself once."
            )

    def _fresh_moderator_id(self) -> str:
        for _ in range(_MAX_ID_ATTEMPTS):
            candidate = self._id_factory()
            if candidate not in self._moderators:
                return candidate
            logger.warning("Moderator id collision on %s; regenerating", candidate)
        raise ModeratorIdCollisionError(
            f"No unique moderator id after {_MAX_ID_ATTEMPTS} attempts."
        )
