"""Tests for PendingItem and PendingRegistry.

Covers:
    - insert appends unclaimed items in intake order
    - duplicate insert raises and leaves the existing entry untouched
    - remove is idempotent
    - assign refuses unknown items and double ownership
    - release_all_owned_by unclaims exactly one moderator's items
    - load_counts reports zero for idle moderators and ignores stale owners
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from modqueue.distribution.registry import (
    DuplicateItemError,
    PendingItem,
    PendingRegistry,
    UnknownItemError,
)

_WHEN = datetime(2025, 1, 1, tzinfo=timezone.utc)


def _registry_with(*item_ids: str) -> PendingRegistry:
    return PendingRegistry(item_ids)


# ---------------------------------------------------------------------------
# PendingItem
# ---------------------------------------------------------------------------


class TestPendingItem:
    def test_new_item_is_unclaimed(self) -> None:
        item = PendingItem(item_id="image_1.jpg")
        assert item.owner_id is None
        assert item.assigned_at is None
        assert item.claimed is False

    def test_empty_item_id_rejected(self) -> None:
        with pytest.raises(ValueError):
            PendingItem(item_id="   ")


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


class TestInsert:
    def test_insert_preserves_intake_order(self) -> None:
        registry = _registry_with("c.jpg", "a.jpg", "b.jpg")
        assert [item.item_id for item in registry] == ["c.jpg", "a.jpg", "b.jpg"]

    def test_inserted_item_is_unclaimed(self) -> None:
        registry = PendingRegistry()
        item = registry.insert("image_1.jpg")
        assert not item.claimed
        assert "image_1.jpg" in registry
        assert len(registry) == 1

    def test_duplicate_insert_raises(self) -> None:
        registry = _registry_with("image_1.jpg")
        registry.assign("image_1.jpg", "mod_a", _WHEN)
        with pytest.raises(DuplicateItemError):
            registry.insert("image_1.jpg")

    def test_duplicate_insert_keeps_existing_owner(self) -> None:
        registry = _registry_with("image_1.jpg")
        registry.assign("image_1.jpg", "mod_a", _WHEN)
        with pytest.raises(DuplicateItemError):
            registry.insert("image_1.jpg")
        item = registry.get("image_1.jpg")
        assert item is not None
        assert item.owner_id == "mod_a"
        assert len(registry) == 1


class TestRemove:
    def test_remove_returns_entry(self) -> None:
        registry = _registry_with("image_1.jpg")
        removed = registry.remove("image_1.jpg")
        assert removed is not None
        assert removed.item_id == "image_1.jpg"
        assert len(registry) == 0

    def test_remove_absent_is_noop(self) -> None:
        registry = _registry_with("image_1.jpg")
        assert registry.remove("missing.jpg") is None
        assert len(registry) == 1

    def test_remove_twice_is_noop(self) -> None:
        registry = _registry_with("image_1.jpg")
        registry.remove("image_1.jpg")
        assert registry.remove("image_1.jpg") is None

    def test_remove_claimed_item(self) -> None:
        registry = _registry_with("image_1.jpg")
        registry.assign("image_1.jpg", "mod_a", _WHEN)
        registry.remove("image_1.jpg")
        assert registry.items_owned_by("mod_a") == []


class TestAssign:
    def test_assign_sets_owner_and_timestamp(self) -> None:
        registry = _registry_with("image_1.jpg")
        registry.assign("image_1.jpg", "mod_a", _WHEN)
        item = registry.get("image_1.jpg")
        assert item is not None
        assert item.owner_id == "mod_a"
        assert item.assigned_at == _WHEN

    def test_assign_defaults_timestamp_to_now(self) -> None:
        registry = _registry_with("image_1.jpg")
        registry.assign("image_1.jpg", "mod_a")
        item = registry.get("image_1.jpg")
        assert item is not None
        assert item.assigned_at is not None
        assert item.assigned_at.tzinfo is not None

    def test_assign_unknown_item_raises(self) -> None:
        registry = PendingRegistry()
        with pytest.raises(UnknownItemError):
            registry.assign("missing.jpg", "mod_a")

    def test_double_assignment_raises(self) -> None:
        registry = _registry_with("image_1.jpg")
        registry.assign("image_1.jpg", "mod_a", _WHEN)
        with pytest.raises(ValueError, match="already owned"):
            registry.assign("image_1.jpg", "mod_b", _WHEN)


class TestReleaseAllOwnedBy:
    def test_release_unclaims_only_that_moderator(self) -> None:
        registry = _registry_with("a.jpg", "b.jpg", "c.jpg")
        registry.assign("a.jpg", "mod_a", _WHEN)
        registry.assign("b.jpg", "mod_b", _WHEN)
        registry.assign("c.jpg", "mod_a", _WHEN)

        released = registry.release_all_owned_by("mod_a")

        assert released == ["a.jpg", "c.jpg"]
        assert [item.item_id for item in registry.unclaimed_items()] == ["a.jpg", "c.jpg"]
        assert [item.item_id for item in registry.items_owned_by("mod_b")] == ["b.jpg"]

    def test_release_clears_timestamp(self) -> None:
        registry = _registry_with("a.jpg")
        registry.assign("a.jpg", "mod_a", _WHEN)
        registry.release_all_owned_by("mod_a")
        item = registry.get("a.jpg")
        assert item is not None
        assert item.assigned_at is None

    def test_release_for_idle_moderator_returns_empty(self) -> None:
        registry = _registry_with("a.jpg")
        assert registry.release_all_owned_by("mod_x") == []


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


class TestQueries:
    def test_load_counts_includes_idle_moderators(self) -> None:
        registry = _registry_with("a.jpg", "b.jpg")
        registry.assign("a.jpg", "mod_a", _WHEN)
        registry.assign("b.jpg", "mod_a", _WHEN)
        assert registry.load_counts(["mod_a", "mod_b"]) == {"mod_a": 2, "mod_b": 0}

    def test_load_counts_ignores_unlisted_owners(self) -> None:
        registry = _registry_with("a.jpg", "b.jpg")
        registry.assign("a.jpg", "mod_gone", _WHEN)
        registry.assign("b.jpg", "mod_a", _WHEN)
        assert registry.load_counts(["mod_a"]) == {"mod_a": 1}

    def test_owners(self) -> None:
        registry = _registry_with("a.jpg", "b.jpg", "c.jpg")
        registry.assign("a.jpg", "mod_a", _WHEN)
        registry.assign("b.jpg", "mod_b", _WHEN)
        assert registry.owners() == {"mod_a", "mod_b"}

    def test_iteration_snapshot_tolerates_mutation(self) -> None:
        registry = _registry_with("a.jpg", "b.jpg")
        for item in registry:
            registry.remove(item.item_id)
        assert len(registry) == 0
