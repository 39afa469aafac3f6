"""Least-loaded assignment of unclaimed items to connected moderators.

The balancer is a pure function over a :class:`~modqueue.distribution.registry.PendingRegistry`
and the ordered list of connected moderator ids.  It only ever *adds*
ownership: items that already have an owner are never moved to improve
balance.  Work changes hands only when its owner disconnects and the session
manager releases it back to the unclaimed pool.

Algorithm
---------
1. No connected moderators → nothing happens; items stay unclaimed.
2. ``load[m]`` is the number of items currently owned by each connected
   moderator (zero for moderators that own nothing).
3. Each unclaimed item, oldest first, goes to the moderator with the smallest
   current load.  Ties go to the earliest-registered moderator, i.e. the
   first one in *moderator_ids*.  The winner's load is incremented before the
   next item is considered (greedy, not batch-optimal).
4. The set of moderators that received at least one item is returned so the
   caller can push targeted updates.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import datetime, timezone

from modqueue.distribution.registry import PendingRegistry

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def rebalance(
    registry: PendingRegistry,
    moderator_ids: Sequence[str],
    clock: Callable[[], datetime] = _utcnow,
) -> set[str]:
    """Assign every unclaimed item to the least-loaded connected moderator.

    Parameters
    ----------
    registry:
        The pending registry to update in place.
    moderator_ids:
        Connected moderator ids in registration order.  Order is the
        tie-breaker, which keeps assignment deterministic.
    clock:
        Callable returning the assignment timestamp.  Injectable for tests.

    Returns
    -------
    set[str]
        Moderator ids whose owned-item set changed during this pass.
    """
    if not moderator_ids:
        unclaimed = len(registry.unclaimed_items())
        if unclaimed:
            logger.debug("No moderators connected; %d item(s) stay unclaimed", unclaimed)
        return set()

    loads = registry.load_counts(moderator_ids)
    changed: set[str] = set()
    now = clock()

    for item in registry.unclaimed_items():
        # min() keeps the first minimum, so earlier-registered ids win ties
        target = min(moderator_ids, key=lambda moderator_id: loads[moderator_id])
        registry.assign(item.item_id, target, now)
        loads[target] += 1
        changed.add(target)
        logger.info("Assigned %s to %s (load=%d)", item.item_id, target, loads[target])

    return changed
