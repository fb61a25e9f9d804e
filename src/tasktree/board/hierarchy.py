"""Guarded mutation of parent-pointer hierarchies.

Tasks reference other tasks of the same collection through ``parent_id``;
subtasks reference subtasks of the same owning task.  Every parent change
goes through :meth:`HierarchyMutator.propose_parent_change`, which walks the
ancestor chain of the candidate parent and refuses any change that would
make a node its own ancestor.  Refusals are policy, not failure: the write
is dropped (or normalized to ``None``) and the request carries on.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable

from tasktree.board.enums import PricingType
from tasktree.board.event_bus import EventBus
from tasktree.board.node_store import NodeStore
from tasktree.board.updates import (
    FieldUpdate,
    ReplaceLabels,
    ReplaceSubscribers,
    SetField,
    SetFixedPrice,
    SetGroup,
    SetParent,
    SetPricingType,
)

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"
    NORMALIZE = "normalize"


class Reason(str, Enum):
    SELF_REFERENCE = "self_reference"
    CYCLE = "cycle"
    OUT_OF_SCOPE = "out_of_scope"
    TRAVERSAL_LIMIT = "traversal_limit"


@dataclass(frozen=True)
class Decision:
    """Outcome of a proposed parent change.

    ``parent_id`` is the value to write when the decision applies: the
    candidate for ``accept``, ``None`` for ``normalize``.
    """

    outcome: Outcome
    parent_id: int | None = None
    reason: Reason | None = None

    @property
    def applies(self) -> bool:
        return self.outcome is not Outcome.REJECT

    @classmethod
    def accept(cls, parent_id: int | None) -> Decision:
        return cls(Outcome.ACCEPT, parent_id)

    @classmethod
    def reject(cls, reason: Reason) -> Decision:
        return cls(Outcome.REJECT, None, reason)

    @classmethod
    def normalize(cls, reason: Reason) -> Decision:
        return cls(Outcome.NORMALIZE, None, reason)


@dataclass(frozen=True)
class UpdateResult:
    """What :meth:`HierarchyMutator.apply_field_update` did.

    ``written`` is False when a rejected parent change suppressed the
    write; the change notification is emitted either way.
    """

    node_id: int
    field: str
    written: bool
    decision: Decision | None = None


@dataclass(frozen=True)
class ReorderItem:
    id: int
    parent_id: int | None = None
    order_column: int = 0


class HierarchyMutator:
    """Apply single-field updates to nodes of one hierarchy.

    Parameters
    ----------
    store:
        The node store; ``store.scoped`` selects the subtask-style variant
        (scope containment and normalization of out-of-scope parents).
    event_bus:
        Receives one ``<event_type>`` notification per update.
    max_hops:
        Upper bound on ancestor lookups per walk.
    event_type:
        Notification type, e.g. ``"task.updated"``.
    """

    def __init__(
        self,
        store: NodeStore,
        event_bus: EventBus,
        max_hops: int = 100,
        event_type: str = "task.updated",
    ) -> None:
        if max_hops < 1:
            raise ValueError(f"max_hops must be >= 1, got {max_hops}")
        self._store = store
        self._event_bus = event_bus
        self._max_hops = max_hops
        self._event_type = event_type
        # Entries vanish once no coroutine holds or waits on the lock.
        self._locks: weakref.WeakValueDictionary[Any, asyncio.Lock] = weakref.WeakValueDictionary()

    @property
    def max_hops(self) -> int:
        return self._max_hops

    def _lock_for(self, scope: Any) -> asyncio.Lock:
        # Unscoped stores share a single lock for the whole collection.
        key = scope if self._store.scoped else None
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    # ------------------------------------------------------------------
    # Parent validation
    # ------------------------------------------------------------------

    async def normalize_parent_id(self, scope: Any, parent_id: int | None) -> int | None:
        """Return *parent_id* if it names a node inside *scope*, else ``None``."""
        if not parent_id:
            return None
        if await self._store.find_by_id(scope, parent_id) is None:
            return None
        return parent_id

    async def propose_parent_change(
        self,
        node_id: int,
        candidate_parent_id: int | None,
        scope: Any = None,
    ) -> Decision:
        """Decide whether *node_id* may be re-parented under *candidate_parent_id*.

        Never raises for policy reasons; storage errors propagate.
        """
        if candidate_parent_id is None:
            return Decision.accept(None)

        if candidate_parent_id == node_id:
            return Decision.reject(Reason.SELF_REFERENCE)

        if self._store.scoped:
            if await self.normalize_parent_id(scope, candidate_parent_id) is None:
                return Decision.normalize(Reason.OUT_OF_SCOPE)

        return await self._walk_ancestors(node_id, candidate_parent_id, scope)

    async def _walk_ancestors(
        self, node_id: int, candidate_parent_id: int, scope: Any
    ) -> Decision:
        visited: set[int] = set()
        current: int | None = candidate_parent_id
        for _ in range(self._max_hops):
            if current == node_id:
                return Decision.reject(Reason.CYCLE)
            if current in visited:
                # The stored chain already loops without passing node_id.
                logger.warning(
                    "Ancestor chain of %s loops at %s", candidate_parent_id, current,
                    extra={"node_id": node_id, "scope": scope},
                )
                return Decision.reject(Reason.TRAVERSAL_LIMIT)
            visited.add(current)

            ref = await self._store.find_by_id(scope, current)
            if ref is None or ref.parent_id is None:
                return Decision.accept(candidate_parent_id)
            current = ref.parent_id

        logger.warning(
            "Ancestor walk from %s exceeded %d hops", candidate_parent_id, self._max_hops,
            extra={"node_id": node_id, "scope": scope},
        )
        return Decision.reject(Reason.TRAVERSAL_LIMIT)

    # ------------------------------------------------------------------
    # Single-field updates
    # ------------------------------------------------------------------

    async def apply_field_update(
        self,
        node_id: int,
        update: FieldUpdate,
        scope: Any = None,
    ) -> UpdateResult:
        """Apply one logical field update and emit a change notification."""
        async with self._lock_for(scope):
            result = await self._apply(node_id, update, scope)

        await self._event_bus.emit(
            self._event_type,
            {"node_id": node_id, "field": update.field, "scope": scope},
        )
        return result

    async def _apply(self, node_id: int, update: FieldUpdate, scope: Any) -> UpdateResult:
        if isinstance(update, SetParent):
            decision = await self.propose_parent_change(node_id, update.parent_id, scope)
            if not decision.applies:
                logger.info(
                    "Dropping parent change to %s: %s", update.parent_id, decision.reason.value,
                    extra={"node_id": node_id, "scope": scope},
                )
                return UpdateResult(node_id, update.field, written=False, decision=decision)
            await self._store.write(scope, node_id, {"parent_id": decision.parent_id})
            return UpdateResult(node_id, update.field, written=True, decision=decision)

        if isinstance(update, SetPricingType):
            fields: dict[str, Any] = {"pricing_type": update.pricing_type.value}
            if update.pricing_type is PricingType.HOURLY:
                fields["fixed_price"] = None
            await self._store.write(scope, node_id, fields)
        elif isinstance(update, SetFixedPrice):
            amount = int(update.amount) if update.amount is not None else None
            await self._store.write(scope, node_id, {"fixed_price": amount})
        elif isinstance(update, SetGroup):
            # Moved nodes go first in their new group; siblings are
            # renumbered by a later reorder call.
            await self._store.write(
                scope, node_id, {"group_id": update.group_id, "order_column": 0}
            )
        elif isinstance(update, ReplaceLabels):
            await self._store.replace_membership(node_id, "labels", update.label_ids)
        elif isinstance(update, ReplaceSubscribers):
            await self._store.replace_membership(node_id, "subscribed_users", update.user_ids)
        elif isinstance(update, SetField):
            await self._store.write(scope, node_id, {update.field: update.value})
        else:
            raise TypeError(f"Unsupported update command: {update!r}")

        return UpdateResult(node_id, update.field, written=True)

    # ------------------------------------------------------------------
    # Batch reorder
    # ------------------------------------------------------------------

    async def batch_reorder(self, items: Iterable[ReorderItem], scope: Any = None) -> list[int]:
        """Write parent and order for every item in one scope.

        Items are validated one by one against the tree as already modified
        by earlier items.  An item whose parent is itself, out of scope, or
        would close a cycle is written with ``parent_id = None``; its
        ``order_column`` is still applied.  Returns the ids of sanitized
        items.
        """
        sanitized: list[int] = []
        written = 0
        async with self._lock_for(scope):
            for item in items:
                if not item.id:
                    continue
                if await self._store.find_by_id(scope, item.id) is None:
                    logger.debug("Skipping reorder of %s outside scope %s", item.id, scope)
                    continue

                decision = await self.propose_parent_change(item.id, item.parent_id, scope)
                parent_id = decision.parent_id if decision.applies else None
                if decision.outcome is not Outcome.ACCEPT:
                    sanitized.append(item.id)
                    logger.info(
                        "Sanitized requested parent %s: %s", item.parent_id, decision.reason.value,
                        extra={"node_id": item.id, "scope": scope},
                    )
                await self._store.write(
                    scope, item.id,
                    {"parent_id": parent_id, "order_column": int(item.order_column)},
                )
                written += 1

        await self._event_bus.emit(
            "subtasks.reordered" if self._store.scoped else "tasks.reordered",
            {"scope": scope, "count": written, "sanitized": sanitized},
        )
        return sanitized
