"""Mutation entry points: new submissions and moderator decisions.

Both handlers follow the same shape:

1. Call the artifact store *outside* the lock.  Storage calls may be slow
   (the approval existence poll can take up to ``attempts × interval``) and
   must not stall other sessions.
2. Take :meth:`~modqueue.distribution.sessions.ModeratorSessionManager.transaction`
   and, as one unit, mutate the registry, rebalance, and push views.

If the storage call fails, step 2 never runs: the item stays in the registry
with its current owner and the moderator can simply retry.
"""

from __future__ import annotations

import logging

from modqueue.distribution.balancer import rebalance
from modqueue.distribution.broadcaster import UpdateBroadcaster
from modqueue.distribution.registry import DuplicateItemError, PendingRegistry, UnknownItemError
from modqueue.distribution.sessions import ModeratorSessionManager
from modqueue.store.artifacts import ArtifactStore

logger = logging.getLogger(__name__)


class SubmissionIntake:
    """Stores a new submission and hands it to a moderator.

    Parameters
    ----------
    store:
        Durable artifact store.
    sessions:
        Session manager owning the registry lock and the live-moderator set.
    """

    def __init__(self, store: ArtifactStore, sessions: ModeratorSessionManager) -> None:
        self._store = store
        self._sessions = sessions

    @property
    def _registry(self) -> PendingRegistry:
        return self._sessions.registry

    @property
    def _broadcaster(self) -> UpdateBroadcaster:
        return self._sessions.broadcaster

    async def submit(self, image: bytes, caption: str, content_type: str) -> str:
        """Persist a submission, register it and push it to its new owner.

        Returns
        -------
        str
            The new item id.

        Raises
        ------
        StorageError
            If the artifact store rejects the write.  Nothing is registered.
        DuplicateItemError
            If the store hands back an id that is already pending.
        """
        item_id = await self._store.put_pending(image, caption, content_type)
        await self.enqueue(item_id)
        return item_id

    async def enqueue(self, item_id: str) -> set[str]:
        """Register an already-stored item and distribute it.

        Returns
        -------
        set[str]
            Moderator ids that received new work.
        """
        async with self._sessions.transaction():
            try:
                self._registry.insert(item_id)
            except DuplicateItemError:
                logger.error("Intake of %s rejected: already pending", item_id)
                raise
            changed = rebalance(self._registry, self._sessions.moderator_ids())
            await self._broadcaster.push_moderator_views(self._sessions.moderator_sessions(changed))
        logger.info("Item %s queued (pending=%d)", item_id, len(self._registry))
        return changed


class ResolutionHandler:
    """Applies approve, deny and delete decisions.

    Parameters
    ----------
    store:
        Durable artifact store.
    sessions:
        Session manager owning the registry lock and the live-moderator set.
    """

    def __init__(self, store: ArtifactStore, sessions: ModeratorSessionManager) -> None:
        self._store = store
        self._sessions = sessions

    @property
    def _registry(self) -> PendingRegistry:
        return self._sessions.registry

    @property
    def _broadcaster(self) -> UpdateBroadcaster:
        return self._sessions.broadcaster

    async def approve(self, item_id: str) -> None:
        """Promote *item_id* to the public collection.

        On success the item leaves the registry, every moderator gets a fresh
        view and every viewer gets the updated collection.

        Raises
        ------
        UnknownItemError
            If *item_id* is not pending.
        StorageError
            If promotion fails.  The registry is left untouched.
        """
        self._require_pending(item_id)
        await self._store.promote(item_id)
        async with self._sessions.transaction():
            self._resolve(item_id)
            await self._broadcaster.push_moderator_views(self._sessions.moderator_sessions())
            await self._broadcaster.broadcast_public_collection(self._sessions.viewer_sessions())
        logger.info("Image %s approved", item_id)

    async def deny(self, item_id: str) -> None:
        """Discard *item_id*; only moderators are notified.

        Raises
        ------
        UnknownItemError
            If *item_id* is not pending.
        StorageError
            If the delete fails.  The registry is left untouched.
        """
        self._require_pending(item_id)
        await self._store.discard(item_id)
        async with self._sessions.transaction():
            self._resolve(item_id)
            await self._broadcaster.push_moderator_views(self._sessions.moderator_sessions())
        logger.info("Image %s denied", item_id)

    async def delete_public(self, item_id: str) -> None:
        """Remove an approved item from the public collection.

        Moderators receive an ``itemDeleted`` notice; viewers receive the
        refreshed collection.  The pending registry is not involved.

        Raises
        ------
        ArtifactNotFoundError
            If *item_id* is not in the public collection.
        StorageError
            If the delete fails.
        """
        await self._store.delete_public(item_id)
        async with self._sessions.transaction():
            await self._broadcaster.notify_removal(self._sessions.moderator_sessions(), item_id)
            await self._broadcaster.broadcast_public_collection(self._sessions.viewer_sessions())
        logger.info("Approved image %s deleted", item_id)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _require_pending(self, item_id: str) -> None:
        if item_id not in self._registry:
            raise UnknownItemError(item_id)

    def _resolve(self, item_id: str) -> None:
        # a concurrent resolution may already have removed it; remove() is idempotent
        self._registry.remove(item_id)
        rebalance(self._registry, self._sessions.moderator_ids())
