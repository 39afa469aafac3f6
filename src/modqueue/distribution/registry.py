"""In-memory registry of pending (unresolved) moderation items.

This module implements the :class:`PendingItem` dataclass and the
:class:`PendingRegistry` class, the single source of truth for which items
are awaiting a decision and which connected moderator currently owns each one.

Design notes
------------
- ``PendingItem`` is a ``dataclass`` rather than a Pydantic model.  Pydantic
  models are reserved for API boundaries; internal state uses dataclasses.
- Items are stored in a ``dict`` keyed by ``item_id``.  Python dicts keep
  insertion order, so iteration order *is* intake (FIFO) order and no
  separate sequence needs to be maintained.
- The registry is never persisted.  At process start it is rebuilt from the
  artifact store's pending listing, with every item unclaimed.
- The registry performs no locking of its own.  Callers that interleave
  registry access with ``await`` points must hold
  :meth:`~modqueue.distribution.sessions.ModeratorSessionManager.transaction`.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Custom exceptions
# ---------------------------------------------------------------------------


class DuplicateItemError(ValueError):
    """Raised when an ``item_id`` is inserted while already pending."""


class UnknownItemError(KeyError):
    """Raised when an operation names an ``item_id`` that is not pending."""


# ---------------------------------------------------------------------------
# PendingItem dataclass
# ---------------------------------------------------------------------------


@dataclass
class PendingItem:
    """A submitted item awaiting an approve/deny decision.

    Attributes
    ----------
    item_id:
        Opaque identifier derived from the artifact's storage key
        (e.g. ``"image_1718000000000.jpg"``).
    owner_id:
        ``moderator_id`` of the connected moderator reviewing this item, or
        ``None`` while unclaimed.
    assigned_at:
        UTC timestamp of the assignment, or ``None`` while unclaimed.
    """

    item_id: str
    owner_id: str | None = None
    assigned_at: datetime | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.item_id, str) or not self.item_id.strip():
            raise ValueError("item_id must be a non-empty string")

    @property
    def claimed(self) -> bool:
        """``True`` when the item is owned by a moderator."""
        return self.owner_id is not None


# ---------------------------------------------------------------------------
# PendingRegistry
# ---------------------------------------------------------------------------


class PendingRegistry:
    """Authoritative in-memory set of unresolved items and their owners.

    Only :func:`~modqueue.distribution.balancer.rebalance` assigns owners
    (via :meth:`assign`); only the resolution path removes items.

    Parameters
    ----------
    item_ids:
        Optional initial item ids, inserted unclaimed in the given order.
    """

    def __init__(self, item_ids: Iterable[str] | None = None) -> None:
        # item_id → PendingItem, in intake order
        self._items: dict[str, PendingItem] = {}
        for item_id in item_ids or ():
            self.insert(item_id)

    # ------------------------------------------------------------------
    # Container protocol
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._items

    def __iter__(self) -> Iterator[PendingItem]:
        return iter(list(self._items.values()))

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def insert(self, item_id: str) -> PendingItem:
        """Append a new unclaimed item.

        Parameters
        ----------
        item_id:
            Identifier of the newly submitted item.

        Returns
        -------
        PendingItem
            The newly created registry entry.

        Raises
        ------
        DuplicateItemError
            If *item_id* is already pending.  The existing entry is left
            untouched.
        """
        if item_id in self._items:
            raise DuplicateItemError(f"Item {item_id!r} is already pending.")
        item = PendingItem(item_id=item_id)
        self._items[item_id] = item
        logger.debug("Registry insert %s (size=%d)", item_id, len(self._items))
        return item

    def remove(self, item_id: str) -> PendingItem | None:
        """Delete an item regardless of its ownership state.

        Idempotent: removing an absent item is a no-op, because a resolution
        may race with a disconnect-triggered rebalance.

        Returns
        -------
        PendingItem | None
            The removed entry, or ``None`` if it was not present.
        """
        item = self._items.pop(item_id, None)
        if item is not None:
            logger.debug("Registry remove %s (size=%d)", item_id, len(self._items))
        return item

    def assign(self, item_id: str, moderator_id: str, when: datetime | None = None) -> None:
        """Record that *moderator_id* owns the unclaimed item *item_id*.

        Raises
        ------
        UnknownItemError
            If *item_id* is not pending.
        ValueError
            If the item is already owned.  Double ownership is not permitted.
        """
        item = self._items.get(item_id)
        if item is None:
            raise UnknownItemError(item_id)
        if item.owner_id is not None:
            raise ValueError(
                f"Item {item_id!r} is already owned by {item.owner_id!r}. "
                "Double-assignment is not permitted."
            )
        item.owner_id = moderator_id
        item.assigned_at = when if when is not None else datetime.now(timezone.utc)

    def release_all_owned_by(self, moderator_id: str) -> list[str]:
        """Unclaim every item currently owned by *moderator_id*.

        Called exactly once per moderator disconnect.

        Returns
        -------
        list[str]
            The released item ids, in intake order.
        """
        released: list[str] = []
        for item in self._items.values():
            if item.owner_id == moderator_id:
                item.owner_id = None
                item.assigned_at = None
                released.append(item.item_id)
        if released:
            logger.info("Released %d item(s) held by %s", len(released), moderator_id)
        return released

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, item_id: str) -> PendingItem | None:
        """Return the entry for *item_id*, or ``None`` if not pending."""
        return self._items.get(item_id)

    def items_owned_by(self, moderator_id: str) -> list[PendingItem]:
        """Return the items owned by *moderator_id*, in intake order."""
        return [item for item in self._items.values() if item.owner_id == moderator_id]

    def unclaimed_items(self) -> list[PendingItem]:
        """Return all unclaimed items, oldest first."""
        return [item for item in self._items.values() if item.owner_id is None]

    def load_counts(self, moderator_ids: Iterable[str]) -> dict[str, int]:
        """Count owned items for each of *moderator_ids*.

        Every requested moderator appears in the result, with ``0`` when it
        owns nothing.  Items owned by ids outside *moderator_ids* are ignored.
        """
        loads: dict[str, int] = {moderator_id: 0 for moderator_id in moderator_ids}
        for item in self._items.values():
            if item.owner_id is not None and item.owner_id in loads:
                loads[item.owner_id] += 1
        return loads

    def owners(self) -> set[str]:
        """Return the set of moderator ids that currently own at least one item."""
        return {item.owner_id for item in self._items.values() if item.owner_id is not None}
