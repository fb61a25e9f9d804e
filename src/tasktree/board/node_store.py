"""Storage adapters for parent-pointer nodes (tasks and subtasks).

The hierarchy logic only needs three capabilities from storage: a minimal
``{id, parent_id}`` lookup, a column write, and a replace-set for
membership relations.  :class:`NodeStore` describes that surface;
:class:`TaskStore` and :class:`SubTaskStore` implement it on top of
:class:`~tasktree.board.database.Database`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Protocol

from tasktree.board.database import Database

logger = logging.getLogger(__name__)


def _utcnow() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class NodeRef:
    """Minimal projection of a node used by ancestor walks."""

    id: int
    parent_id: int | None


class NodeStore(Protocol):
    """Collaborator surface consumed by :class:`HierarchyMutator`.

    ``scoped`` stores restrict every lookup and write to one scope key
    (the owning task for subtasks); unscoped stores ignore *scope*.
    """

    scoped: bool

    async def find_by_id(self, scope: Any, node_id: int) -> NodeRef | None: ...

    async def write(self, scope: Any, node_id: int, fields: dict[str, Any]) -> None: ...

    async def replace_membership(
        self, node_id: int, relation: str, ids: Iterable[int]
    ) -> None: ...


def _build_set_clause(fields: dict[str, Any], allowed: frozenset[str], table: str) -> str:
    unknown = sorted(set(fields) - allowed)
    if unknown:
        raise ValueError(f"Unknown {table} column(s): {unknown}")
    return ", ".join(f"{name} = ?" for name in fields)


class TaskStore:
    """Unscoped store over the ``tasks`` table.

    Ancestor lookups span the whole table; membership relations
    (``labels``, ``subscribed_users``) live in join tables.
    """

    scoped = False

    COLUMNS = frozenset({
        "parent_id", "group_id", "name", "description", "assigned_to_user_id",
        "due_on", "estimation", "pricing_type", "fixed_price", "priority",
        "complexity", "hidden_from_clients", "billable", "order_column",
        "completed_at", "archived_at",
    })

    # relation name -> (join table, member column)
    RELATIONS = {
        "labels": ("task_labels", "label_id"),
        "subscribed_users": ("task_subscribers", "user_id"),
    }

    def __init__(self, db: Database) -> None:
        self._db = db

    async def find_by_id(self, scope: Any, node_id: int) -> NodeRef | None:
        row = await self._db.execute_fetchone(
            "SELECT id, parent_id FROM tasks WHERE id = ?", (node_id,)
        )
        if row is None:
            return None
        return NodeRef(id=row["id"], parent_id=row["parent_id"])

    async def write(self, scope: Any, node_id: int, fields: dict[str, Any]) -> None:
        if not fields:
            return
        set_clause = _build_set_clause(fields, self.COLUMNS, "tasks")
        await self._db.execute(
            f"UPDATE tasks SET {set_clause}, updated_at = ? WHERE id = ?",
            tuple(fields.values()) + (_utcnow(), node_id),
        )

    async def replace_membership(
        self, node_id: int, relation: str, ids: Iterable[int]
    ) -> None:
        if relation not in self.RELATIONS:
            raise ValueError(f"Unknown task relation: {relation!r}")
        table, member_column = self.RELATIONS[relation]
        member_ids = list(dict.fromkeys(ids))
        async with self._db.transaction() as conn:
            await conn.execute(f"DELETE FROM {table} WHERE task_id = ?", (node_id,))
            if member_ids:
                await conn.executemany(
                    f"INSERT INTO {table} (task_id, {member_column}) VALUES (?, ?)",
                    [(node_id, member_id) for member_id in member_ids],
                )
        logger.debug("Synced %s for task %s: %s", relation, node_id, member_ids)


class SubTaskStore:
    """Store over the ``sub_tasks`` table, scoped by owning ``task_id``."""

    scoped = True

    COLUMNS = frozenset({
        "parent_id", "name", "description", "assigned_to_user_id", "due_on",
        "estimation", "priority", "complexity", "order_column", "completed_at",
    })

    def __init__(self, db: Database) -> None:
        self._db = db

    async def find_by_id(self, scope: Any, node_id: int) -> NodeRef | None:
        row = await self._db.execute_fetchone(
            "SELECT id, parent_id FROM sub_tasks WHERE task_id = ? AND id = ?",
            (scope, node_id),
        )
        if row is None:
            return None
        return NodeRef(id=row["id"], parent_id=row["parent_id"])

    async def write(self, scope: Any, node_id: int, fields: dict[str, Any]) -> None:
        if not fields:
            return
        set_clause = _build_set_clause(fields, self.COLUMNS, "sub_tasks")
        await self._db.execute(
            f"UPDATE sub_tasks SET {set_clause}, updated_at = ? "
            f"WHERE task_id = ? AND id = ?",
            tuple(fields.values()) + (_utcnow(), scope, node_id),
        )

    async def replace_membership(
        self, node_id: int, relation: str, ids: Iterable[int]
    ) -> None:
        raise ValueError(f"Subtasks have no membership relation {relation!r}")
