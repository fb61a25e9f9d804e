"""Tests for HierarchyMutator against an in-memory node store."""

from __future__ import annotations

import gc

import pytest

from tasktree.board.enums import PricingType
from tasktree.board.event_bus import EventBus
from tasktree.board.hierarchy import (
    Decision,
    HierarchyMutator,
    Outcome,
    Reason,
    ReorderItem,
)
from tasktree.board.node_store import NodeRef
from tasktree.board.updates import (
    ReplaceLabels,
    SetField,
    SetFixedPrice,
    SetGroup,
    SetParent,
    SetPricingType,
)


class FakeStore:
    """Dict-backed node store counting lookups."""

    def __init__(self, parents: dict[int, int | None], scoped: bool = False,
                 scopes: dict[int, int] | None = None):
        self.scoped = scoped
        self.rows = {node_id: {"parent_id": parent} for node_id, parent in parents.items()}
        self.scopes = scopes or {}
        self.lookups = 0
        self.writes: list[tuple] = []
        self.memberships: dict[tuple[int, str], list[int]] = {}

    async def find_by_id(self, scope, node_id):
        self.lookups += 1
        if node_id not in self.rows:
            return None
        if self.scoped and self.scopes.get(node_id) != scope:
            return None
        return NodeRef(id=node_id, parent_id=self.rows[node_id]["parent_id"])

    async def write(self, scope, node_id, fields):
        self.writes.append((scope, node_id, dict(fields)))
        self.rows[node_id].update(fields)

    async def replace_membership(self, node_id, relation, ids):
        self.memberships[(node_id, relation)] = list(ids)

    def parent_of(self, node_id):
        return self.rows[node_id]["parent_id"]


def _mutator(store, max_hops=100, event_type="task.updated"):
    return HierarchyMutator(store, EventBus(), max_hops=max_hops, event_type=event_type)


# ------------------------------------------------------------------
# propose_parent_change
# ------------------------------------------------------------------


async def test_detach_to_root_always_accepts():
    store = FakeStore({1: None, 2: 1, 3: 2})
    decision = await _mutator(store).propose_parent_change(3, None)
    assert decision == Decision.accept(None)
    assert store.lookups == 0


async def test_self_parent_rejected():
    store = FakeStore({1: None})
    decision = await _mutator(store).propose_parent_change(1, 1)
    assert decision.outcome is Outcome.REJECT
    assert decision.reason is Reason.SELF_REFERENCE


async def test_direct_cycle_rejected():
    store = FakeStore({1: None, 2: 1})
    decision = await _mutator(store).propose_parent_change(1, 2)
    assert decision.outcome is Outcome.REJECT
    assert decision.reason is Reason.CYCLE


async def test_transitive_cycle_rejected():
    store = FakeStore({1: None, 2: 1, 3: 2})
    decision = await _mutator(store).propose_parent_change(1, 3)
    assert decision.outcome is Outcome.REJECT
    assert decision.reason is Reason.CYCLE


async def test_reparent_root_under_leaf_of_other_tree():
    # Trees: 1 -> 2 (leaf) and 10 (root).
    store = FakeStore({1: None, 2: 1, 10: None})
    decision = await _mutator(store).propose_parent_change(10, 2)
    assert decision.outcome is Outcome.ACCEPT
    assert decision.parent_id == 2


async def test_missing_ancestor_ends_walk_with_accept():
    store = FakeStore({1: None, 2: 99})
    decision = await _mutator(store).propose_parent_change(1, 2)
    assert decision == Decision.accept(2)


async def test_chain_within_bound_is_accepted():
    # 1 -> 2 -> 3 -> 4 -> 5, walking from 5 takes five lookups.
    store = FakeStore({1: None, 2: 1, 3: 2, 4: 3, 5: 4, 100: None})
    decision = await _mutator(store, max_hops=5).propose_parent_change(100, 5)
    assert decision.outcome is Outcome.ACCEPT
    assert store.lookups == 5


async def test_chain_longer_than_bound_is_rejected_within_bound():
    parents = {i: i + 1 for i in range(1, 50)}
    parents[50] = None
    parents[100] = None
    store = FakeStore(parents)
    decision = await _mutator(store, max_hops=10).propose_parent_change(100, 1)
    assert decision.outcome is Outcome.REJECT
    assert decision.reason is Reason.TRAVERSAL_LIMIT
    assert store.lookups == 10


async def test_preexisting_loop_does_not_hang():
    # 2 and 3 already point at each other; node 1 is not part of the loop.
    store = FakeStore({1: None, 2: 3, 3: 2})
    decision = await _mutator(store, max_hops=1000).propose_parent_change(1, 2)
    assert decision.outcome is Outcome.REJECT
    assert decision.reason is Reason.TRAVERSAL_LIMIT
    assert store.lookups <= 3


def test_max_hops_must_be_positive():
    with pytest.raises(ValueError):
        HierarchyMutator(FakeStore({}), EventBus(), max_hops=0)


# ------------------------------------------------------------------
# Scoped variant
# ------------------------------------------------------------------


async def test_scoped_out_of_scope_parent_normalizes():
    store = FakeStore({1: None, 2: None}, scoped=True, scopes={1: 10, 2: 20})
    decision = await _mutator(store).propose_parent_change(1, 2, scope=10)
    assert decision.outcome is Outcome.NORMALIZE
    assert decision.reason is Reason.OUT_OF_SCOPE
    assert decision.parent_id is None


async def test_scoped_apply_writes_null_for_out_of_scope_parent():
    store = FakeStore({1: 3, 2: None, 3: None}, scoped=True, scopes={1: 10, 2: 20, 3: 10})
    result = await _mutator(store).apply_field_update(1, SetParent(2), scope=10)
    assert result.written is True
    assert store.parent_of(1) is None


async def test_scoped_cycle_rejected():
    store = FakeStore({1: None, 2: 1}, scoped=True, scopes={1: 10, 2: 10})
    decision = await _mutator(store).propose_parent_change(1, 2, scope=10)
    assert decision.reason is Reason.CYCLE


async def test_normalize_parent_id():
    store = FakeStore({1: None, 2: None}, scoped=True, scopes={1: 10, 2: 20})
    mutator = _mutator(store)
    assert await mutator.normalize_parent_id(10, 1) == 1
    assert await mutator.normalize_parent_id(10, 2) is None
    assert await mutator.normalize_parent_id(10, None) is None


# ------------------------------------------------------------------
# apply_field_update
# ------------------------------------------------------------------


async def test_example_scenario_rejects_and_keeps_parent():
    store = FakeStore({1: None, 2: 1, 3: 2})
    result = await _mutator(store).apply_field_update(1, SetParent(3))
    assert result.written is False
    assert result.decision.reason is Reason.CYCLE
    assert store.parent_of(1) is None
    assert store.writes == []


async def test_rejected_parent_change_still_notifies():
    store = FakeStore({1: None})
    bus = EventBus()
    mutator = HierarchyMutator(store, bus, event_type="task.updated")
    await mutator.apply_field_update(1, SetParent(1))
    events = bus.get_history("task.updated")
    assert events == [{"type": "task.updated", "node_id": 1, "field": "parent_id", "scope": None}]


async def test_accepted_parent_change_written():
    store = FakeStore({1: None, 2: None})
    result = await _mutator(store).apply_field_update(2, SetParent(1))
    assert result.written is True
    assert store.parent_of(2) == 1


async def test_hourly_pricing_clears_fixed_price():
    store = FakeStore({1: None})
    store.rows[1]["fixed_price"] = 5000
    await _mutator(store).apply_field_update(1, SetPricingType(PricingType.HOURLY))
    assert store.rows[1]["pricing_type"] == "hourly"
    assert store.rows[1]["fixed_price"] is None


async def test_fixed_pricing_keeps_price():
    store = FakeStore({1: None})
    store.rows[1]["fixed_price"] = 5000
    await _mutator(store).apply_field_update(1, SetPricingType(PricingType.FIXED))
    assert store.rows[1]["fixed_price"] == 5000


async def test_fixed_price_written_as_int():
    store = FakeStore({1: None})
    await _mutator(store).apply_field_update(1, SetFixedPrice(1999))
    assert store.rows[1]["fixed_price"] == 1999


async def test_group_move_resets_order():
    store = FakeStore({1: None})
    store.rows[1]["order_column"] = 7
    await _mutator(store).apply_field_update(1, SetGroup(4))
    assert store.rows[1]["group_id"] == 4
    assert store.rows[1]["order_column"] == 0


async def test_membership_bypasses_column_write():
    store = FakeStore({1: None})
    await _mutator(store).apply_field_update(1, ReplaceLabels((3, 4)))
    assert store.memberships[(1, "labels")] == [3, 4]
    assert store.writes == []


async def test_plain_field_written_as_is():
    store = FakeStore({1: None})
    result = await _mutator(store).apply_field_update(1, SetField("name", "Renamed"))
    assert result.field == "name"
    assert store.rows[1]["name"] == "Renamed"


async def test_unknown_command_raises_type_error():
    store = FakeStore({1: None})
    with pytest.raises(TypeError):
        await _mutator(store).apply_field_update(1, object())


# ------------------------------------------------------------------
# batch_reorder
# ------------------------------------------------------------------


async def test_batch_sanitizes_bad_items_without_blocking_others():
    store = FakeStore(
        {1: None, 2: 1, 3: None, 4: None},
        scoped=True,
        scopes={1: 10, 2: 10, 3: 10, 4: 10},
    )
    bus = EventBus()
    mutator = HierarchyMutator(store, bus, max_hops=1000, event_type="subtask.updated")
    sanitized = await mutator.batch_reorder(
        [
            ReorderItem(id=3, parent_id=3, order_column=2),  # self
            ReorderItem(id=1, parent_id=2, order_column=0),  # cycle
            ReorderItem(id=4, parent_id=1, order_column=1),  # valid
        ],
        scope=10,
    )
    assert sanitized == [3, 1]
    assert store.parent_of(3) is None
    assert store.rows[3]["order_column"] == 2
    assert store.parent_of(1) is None
    assert store.parent_of(4) == 1
    assert store.rows[4]["order_column"] == 1
    (event,) = bus.get_history("subtasks.reordered")
    assert event["count"] == 3
    assert event["sanitized"] == [3, 1]


async def test_batch_validates_against_tree_as_modified():
    store = FakeStore({1: None, 2: None}, scoped=True, scopes={1: 10, 2: 10})
    sanitized = await _mutator(store).batch_reorder(
        [ReorderItem(id=2, parent_id=1), ReorderItem(id=1, parent_id=2)],
        scope=10,
    )
    # The second item sees 2 already under 1.
    assert sanitized == [1]
    assert store.parent_of(2) == 1
    assert store.parent_of(1) is None


async def test_batch_out_of_scope_parent_sanitized_and_foreign_items_skipped():
    store = FakeStore({1: None, 2: None, 3: None}, scoped=True, scopes={1: 10, 2: 20, 3: 20})
    sanitized = await _mutator(store).batch_reorder(
        [
            ReorderItem(id=1, parent_id=2, order_column=5),
            ReorderItem(id=3, parent_id=None, order_column=9),
            ReorderItem(id=0, parent_id=None),
        ],
        scope=10,
    )
    assert sanitized == [1]
    assert store.parent_of(1) is None
    assert store.rows[1]["order_column"] == 5
    assert "order_column" not in store.rows[3]


# ------------------------------------------------------------------
# Scope locks
# ------------------------------------------------------------------


async def test_scope_lock_shared_while_alive():
    store = FakeStore({1: None}, scoped=True, scopes={1: 10})
    mutator = _mutator(store)
    lock = mutator._lock_for(10)
    assert mutator._lock_for(10) is lock
    assert mutator._lock_for(20) is not lock


async def test_unscoped_store_uses_one_lock():
    mutator = _mutator(FakeStore({1: None}))
    lock = mutator._lock_for(10)
    assert mutator._lock_for(20) is lock


async def test_scope_locks_released_after_use():
    scopes = {node_id: node_id for node_id in range(1, 51)}
    store = FakeStore({node_id: None for node_id in scopes}, scoped=True, scopes=scopes)
    mutator = _mutator(store)
    for node_id, scope in scopes.items():
        await mutator.apply_field_update(node_id, SetField("name", f"n{node_id}"), scope=scope)
    gc.collect()
    assert len(mutator._locks) == 0
