"""Serialisation and delivery of registry state to connected sessions.

:class:`UpdateBroadcaster` turns :class:`~modqueue.distribution.registry.PendingRegistry`
state and the artifact store's public listing into wire payloads and sends
them over each session's channel.

Delivery is best-effort per session: a send that fails (closed socket,
broken pipe) is logged at debug level and skipped, and the loop continues
with the remaining sessions.  One dead connection never blocks delivery to
the rest.

The broadcaster holds no lock.  Callers push from inside
:meth:`~modqueue.distribution.sessions.ModeratorSessionManager.transaction`
so that each moderator sees views in the same order the registry changed.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any, Protocol

from modqueue.distribution.messages import (
    ErrorMessage,
    ItemDeleted,
    ModeratorView,
    PendingEntry,
    PublicCollection,
)
from modqueue.distribution.registry import PendingRegistry
from modqueue.store.retry import StorageError

if TYPE_CHECKING:
    from modqueue.distribution.sessions import ClientSession
    from modqueue.store.artifacts import ArtifactStore

logger = logging.getLogger(__name__)


class PushChannel(Protocol):
    """The live transport of one client.  FastAPI's ``WebSocket`` satisfies it."""

    async def send_json(self, data: Any) -> None: ...


class UpdateBroadcaster:
    """Builds per-session views and pushes them.

    Parameters
    ----------
    registry:
        The pending registry the moderator views are computed from.
    store:
        Artifact store supplying locators and the public collection.
    """

    def __init__(self, registry: PendingRegistry, store: ArtifactStore) -> None:
        self._registry = registry
        self._store = store

    # ------------------------------------------------------------------
    # Payloads
    # ------------------------------------------------------------------

    def moderator_view(self, moderator_id: str) -> ModeratorView:
        """Return the items owned by *moderator_id* mapped to their locators."""
        return ModeratorView(
            pending_images=[
                PendingEntry(url=self._store.pending_url(item.item_id), owner_id=item.owner_id)
                for item in self._registry.items_owned_by(moderator_id)
            ]
        )

    async def public_collection(self) -> PublicCollection:
        """Return the approved collection as locators, oldest first."""
        item_ids = await self._store.list_public()
        return PublicCollection(images=[self._store.public_url(item_id) for item_id in item_ids])

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def send(self, session: ClientSession, payload: dict[str, Any]) -> bool:
        """Send *payload* to one session.

        Returns
        -------
        bool
            ``True`` if the channel accepted the frame; ``False`` if the
            session is closed or the send failed.
        """
        if session.closed:
            return False
        try:
            await session.channel.send_json(payload)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Dropped frame to %s: %s", session.label, exc)
            return False
        return True

    async def push_moderator_view(self, session: ClientSession) -> bool:
        """Push the receiving moderator's own pending items to *session*."""
        if session.moderator_id is None:
            return await self.send(session, ModeratorView().to_wire())
        view = self.moderator_view(session.moderator_id)
        return await self.send(session, view.to_wire())

    async def push_moderator_views(self, sessions: Iterable[ClientSession]) -> int:
        """Push each moderator session its own view.  Returns the delivered count."""
        delivered = 0
        for session in list(sessions):
            if await self.push_moderator_view(session):
                delivered += 1
        return delivered

    async def push_public_collection(self, session: ClientSession) -> bool:
        """Send the full approved collection to a single viewer."""
        try:
            collection = await self.public_collection()
        except StorageError as exc:
            logger.error("Error listing public collection for %s: %s", session.label, exc)
            return await self.send(session, ErrorMessage(error="Failed to fetch images.").to_wire())
        return await self.send(session, collection.to_wire())

    async def broadcast_public_collection(self, sessions: Iterable[ClientSession]) -> int:
        """Send the approved collection to every session in *sessions*.

        The listing is read once and shared.  A listing failure is logged and
        nothing is sent.
        """
        targets = list(sessions)
        if not targets:
            return 0
        try:
            payload = (await self.public_collection()).to_wire()
        except StorageError as exc:
            logger.error("Error broadcasting public collection: %s", exc)
            return 0
        return await self._fan_out(targets, payload)

    async def notify_removal(self, sessions: Iterable[ClientSession], item_id: str) -> int:
        """Tell every session in *sessions* that *item_id* was deleted."""
        return await self._fan_out(list(sessions), ItemDeleted(id=item_id).to_wire())

    async def _fan_out(self, sessions: list[ClientSession], payload: dict[str, Any]) -> int:
        delivered = 0
        for session in sessions:
            if await self.send(session, payload):
                delivered += 1
        return delivered
