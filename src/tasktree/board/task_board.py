"""Task board: projects, groups, tasks and subtasks on top of the hierarchy core."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from tasktree.board.database import Database
from tasktree.board.enums import Complexity, PricingType, Priority
from tasktree.board.event_bus import EventBus
from tasktree.board.hierarchy import HierarchyMutator, ReorderItem, UpdateResult
from tasktree.board.node_store import SubTaskStore, TaskStore
from tasktree.board.project_notes import ProjectNotes
from tasktree.board.updates import (
    FieldUpdate,
    SetField,
    SetGroup,
    SetParent,
    parse_subtask_update,
    parse_task_update,
    to_minor_units,
)

logger = logging.getLogger(__name__)


def _utcnow() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


# Columns captured in task audit snapshots.
_AUDITED_COLUMNS = (
    "name", "description", "assigned_to_user_id", "due_on", "estimation",
    "pricing_type", "fixed_price", "priority", "complexity",
    "hidden_from_clients", "billable", "group_id", "parent_id",
    "order_column", "completed_at", "archived_at",
)

# Fields that may be re-applied from an audit snapshot.
RESTORABLE_FIELDS = (
    "name", "description", "due_on", "estimation", "assigned_to_user_id",
    "pricing_type", "fixed_price", "hidden_from_clients", "billable",
    "group_id", "completed_at", "parent_id", "priority", "complexity",
)

_BOOLEAN_COLUMNS = ("hidden_from_clients", "billable")


def _enum_or_none(enum_cls, value: Any) -> str | None:
    if value is None:
        return None
    return enum_cls(value).value


class TaskBoard:
    """High-level interface for projects, task groups, tasks and subtasks.

    Parameters
    ----------
    db:
        An initialised :class:`Database` instance.
    event_bus:
        Receives change notifications for every mutation.
    max_task_hops / max_subtask_hops:
        Bounds for the ancestor walks of the task and subtask hierarchies.
    """

    def __init__(
        self,
        db: Database,
        event_bus: EventBus,
        max_task_hops: int = 100,
        max_subtask_hops: int = 1000,
    ) -> None:
        self._db = db
        self._event_bus = event_bus
        self.task_mutator = HierarchyMutator(
            TaskStore(db), event_bus, max_hops=max_task_hops, event_type="task.updated",
        )
        self.subtask_mutator = HierarchyMutator(
            SubTaskStore(db), event_bus, max_hops=max_subtask_hops, event_type="subtask.updated",
        )
        self.notes = ProjectNotes(db, event_bus)

    @property
    def db(self) -> Database:
        return self._db

    # ------------------------------------------------------------------
    # Projects, groups, users, labels
    # ------------------------------------------------------------------

    async def create_project(self, name: str) -> dict:
        now = _utcnow()
        project_id = await self._db.execute_insert(
            "INSERT INTO projects (name, created_at) VALUES (?, ?)", (name, now)
        )
        return {"id": project_id, "name": name, "created_at": now, "archived_at": None}

    async def get_project(self, project_id: int) -> dict | None:
        return await self._db.execute_fetchone(
            "SELECT * FROM projects WHERE id = ?", (project_id,)
        )

    async def create_group(self, project_id: int, name: str) -> dict:
        """Create a task group appended after the project's existing groups."""
        if await self.get_project(project_id) is None:
            raise ValueError(f"Project not found: {project_id}")
        row = await self._db.execute_fetchone(
            "SELECT COUNT(*) AS n FROM task_groups WHERE project_id = ?", (project_id,)
        )
        now = _utcnow()
        group_id = await self._db.execute_insert(
            "INSERT INTO task_groups (project_id, name, order_column, created_at) "
            "VALUES (?, ?, ?, ?)",
            (project_id, name, row["n"], now),
        )
        return {
            "id": group_id,
            "project_id": project_id,
            "name": name,
            "order_column": row["n"],
            "created_at": now,
        }

    async def get_groups(self, project_id: int) -> list[dict]:
        return await self._db.execute_fetchall(
            "SELECT * FROM task_groups WHERE project_id = ? ORDER BY order_column, id",
            (project_id,),
        )

    async def create_user(self, name: str, email: str | None = None) -> dict:
        user_id = await self._db.execute_insert(
            "INSERT INTO users (name, email) VALUES (?, ?)", (name, email)
        )
        return {"id": user_id, "name": name, "email": email}

    async def create_label(self, name: str, color: str | None = None) -> dict:
        label_id = await self._db.execute_insert(
            "INSERT INTO labels (name, color) VALUES (?, ?)", (name, color)
        )
        return {"id": label_id, "name": name, "color": color}

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def _group_in_project(self, project_id: int, group_id: int) -> bool:
        row = await self._db.execute_fetchone(
            "SELECT 1 FROM task_groups WHERE id = ? AND project_id = ?",
            (group_id, project_id),
        )
        return row is not None

    async def _parent_in_project(self, project_id: int, parent_id: int) -> bool:
        row = await self._db.execute_fetchone(
            "SELECT 1 FROM tasks WHERE id = ? AND project_id = ?",
            (parent_id, project_id),
        )
        return row is not None

    async def _check_project_scope(self, project_id: int, update: FieldUpdate) -> None:
        """Reject group or parent values that point into another project."""
        if isinstance(update, SetGroup):
            if not await self._group_in_project(project_id, update.group_id):
                raise ValueError(
                    f"Group {update.group_id} does not belong to project {project_id}"
                )
        elif isinstance(update, SetParent) and update.parent_id is not None:
            if not await self._parent_in_project(project_id, update.parent_id):
                raise ValueError(
                    f"Invalid parent: task {update.parent_id} not found in project"
                )

    async def create_task(
        self,
        project_id: int,
        group_id: int,
        name: str,
        *,
        parent_id: int | None = None,
        description: str | None = None,
        assigned_to_user_id: int | None = None,
        due_on: str | None = None,
        estimation: float | None = None,
        pricing_type: str = PricingType.HOURLY.value,
        fixed_price: Any = None,
        priority: str | None = None,
        complexity: str | None = None,
        hidden_from_clients: bool = False,
        billable: bool = True,
        labels: Iterable[int] | None = None,
        subscribed_users: Iterable[int] | None = None,
    ) -> dict:
        """Create a task at the end of *group_id*.

        A new task has no descendants, so the only parent check needed is
        that *parent_id* names a task of the same project.

        Raises
        ------
        ValueError
            For an unknown group, a parent outside the project, or an
            invalid enum value.
        """
        if not await self._group_in_project(project_id, group_id):
            raise ValueError(f"Group {group_id} does not belong to project {project_id}")
        if parent_id is not None:
            if not await self._parent_in_project(project_id, parent_id):
                raise ValueError(f"Invalid parent: task {parent_id} not found in project")

        pricing = PricingType(pricing_type)
        price = to_minor_units(fixed_price) if pricing is PricingType.FIXED else None

        now = _utcnow()
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                "SELECT COALESCE(MAX(number), 0) + 1 FROM tasks WHERE project_id = ?",
                (project_id,),
            )
            number = (await cursor.fetchone())[0]
            cursor = await conn.execute(
                "SELECT COALESCE(MAX(order_column) + 1, 0) FROM tasks WHERE group_id = ?",
                (group_id,),
            )
            order_column = (await cursor.fetchone())[0]
            cursor = await conn.execute(
                "INSERT INTO tasks (project_id, group_id, parent_id, number, name, "
                "description, assigned_to_user_id, due_on, estimation, pricing_type, "
                "fixed_price, priority, complexity, hidden_from_clients, billable, "
                "order_column, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    project_id, group_id, parent_id, number, name,
                    description, assigned_to_user_id, due_on, estimation, pricing.value,
                    price, _enum_or_none(Priority, priority),
                    _enum_or_none(Complexity, complexity),
                    int(hidden_from_clients), int(billable),
                    order_column, now, now,
                ),
            )
            task_id = cursor.lastrowid

        store = TaskStore(self._db)
        if labels:
            await store.replace_membership(task_id, "labels", labels)
        if subscribed_users:
            await store.replace_membership(task_id, "subscribed_users", subscribed_users)

        task = await self.get_task(task_id)
        await self._record_audit(task_id, "created", {}, task)
        await self._event_bus.emit(
            "task.created", {"task_id": task_id, "project_id": project_id}
        )
        logger.info("Created task %s (#%s) in project %s", task_id, number, project_id)
        return task

    def _hydrate(self, row: dict) -> dict:
        for column in _BOOLEAN_COLUMNS:
            if column in row and row[column] is not None:
                row[column] = bool(row[column])
        return row

    async def _fetch_task_row(self, task_id: int) -> dict | None:
        row = await self._db.execute_fetchone("SELECT * FROM tasks WHERE id = ?", (task_id,))
        return self._hydrate(row) if row else None

    async def get_task(self, task_id: int) -> dict | None:
        """Return the task with its label and subscriber ids, or None."""
        task = await self._fetch_task_row(task_id)
        if task is None:
            return None
        labels = await self._db.execute_fetchall(
            "SELECT label_id FROM task_labels WHERE task_id = ? ORDER BY label_id", (task_id,)
        )
        subscribers = await self._db.execute_fetchall(
            "SELECT user_id FROM task_subscribers WHERE task_id = ? ORDER BY user_id", (task_id,)
        )
        task["labels"] = [r["label_id"] for r in labels]
        task["subscribed_users"] = [r["user_id"] for r in subscribers]
        return task

    async def get_project_tasks(
        self,
        project_id: int,
        group_id: int | None = None,
        roots_only: bool = False,
        include_archived: bool = False,
        include_completed: bool = True,
    ) -> list[dict]:
        clauses = ["project_id = ?"]
        params: list[Any] = [project_id]
        if group_id is not None:
            clauses.append("group_id = ?")
            params.append(group_id)
        if roots_only:
            clauses.append("parent_id IS NULL")
        if not include_archived:
            clauses.append("archived_at IS NULL")
        if not include_completed:
            clauses.append("completed_at IS NULL")
        where = " AND ".join(clauses)
        rows = await self._db.execute_fetchall(
            f"SELECT * FROM tasks WHERE {where} ORDER BY group_id, order_column, id",
            tuple(params),
        )
        return [self._hydrate(r) for r in rows]

    async def get_children(self, task_id: int) -> list[dict]:
        rows = await self._db.execute_fetchall(
            "SELECT * FROM tasks WHERE parent_id = ? ORDER BY order_column, id", (task_id,)
        )
        return [self._hydrate(r) for r in rows]

    async def _apply_task_update(self, task_id: int, update: FieldUpdate) -> UpdateResult:
        before = await self._fetch_task_row(task_id)
        result = await self.task_mutator.apply_field_update(task_id, update)
        if result.written:
            after = await self._fetch_task_row(task_id)
            await self._record_audit(task_id, "updated", before, after)
        return result

    async def update_task(self, task_id: int, payload: Mapping[str, Any]) -> UpdateResult | None:
        """Apply a one-field payload to a task.

        Returns None when the task does not exist.  A parent change that
        would create a cycle is dropped silently; inspect
        ``result.decision`` to find out.

        Raises
        ------
        ValueError
            If the payload is malformed, or names a group or parent task
            of another project.
        """
        update = parse_task_update(payload)
        task = await self._fetch_task_row(task_id)
        if task is None:
            return None
        await self._check_project_scope(task["project_id"], update)
        return await self._apply_task_update(task_id, update)

    async def complete_task(self, task_id: int, completed: bool = True) -> dict | None:
        if await self._fetch_task_row(task_id) is None:
            return None
        await self._apply_task_update(
            task_id, SetField("completed_at", _utcnow() if completed else None)
        )
        return await self.get_task(task_id)

    async def _set_archived(self, task_id: int, archived: bool, event_type: str) -> dict | None:
        before = await self._fetch_task_row(task_id)
        if before is None:
            return None
        await TaskStore(self._db).write(
            None, task_id, {"archived_at": _utcnow() if archived else None}
        )
        after = await self._fetch_task_row(task_id)
        await self._record_audit(task_id, "archived" if archived else "restored", before, after)
        await self._event_bus.emit(
            event_type, {"task_id": task_id, "project_id": before["project_id"]}
        )
        return after

    async def archive_task(self, task_id: int) -> dict | None:
        return await self._set_archived(task_id, True, "task.deleted")

    async def restore_task(self, task_id: int) -> dict | None:
        return await self._set_archived(task_id, False, "task.restored")

    async def reorder_tasks(
        self,
        project_id: int,
        ids: list[int],
        group_id: int | None = None,
        from_index: int | None = None,
        to_index: int | None = None,
    ) -> int:
        """Set ``order_column`` of *ids* to their position in the list."""
        updated = 0
        async with self._db.transaction() as conn:
            for position, task_id in enumerate(ids):
                cursor = await conn.execute(
                    "UPDATE tasks SET order_column = ? WHERE id = ? AND project_id = ?",
                    (position, task_id, project_id),
                )
                updated += cursor.rowcount
        await self._event_bus.emit("task.order_changed", {
            "project_id": project_id,
            "group_id": group_id,
            "from_index": from_index,
            "to_index": to_index,
        })
        return updated

    async def move_tasks(
        self,
        project_id: int,
        ids: list[int],
        to_group_id: int,
        from_group_id: int | None = None,
        from_index: int | None = None,
        to_index: int | None = None,
    ) -> int:
        """Move *ids* into *to_group_id*, ordered by their position in the list."""
        if not await self._group_in_project(project_id, to_group_id):
            raise ValueError(f"Group {to_group_id} does not belong to project {project_id}")
        updated = 0
        async with self._db.transaction() as conn:
            for position, task_id in enumerate(ids):
                cursor = await conn.execute(
                    "UPDATE tasks SET order_column = ?, group_id = ? "
                    "WHERE id = ? AND project_id = ?",
                    (position, to_group_id, task_id, project_id),
                )
                updated += cursor.rowcount
        await self._event_bus.emit("task.group_changed", {
            "project_id": project_id,
            "from_group_id": from_group_id,
            "to_group_id": to_group_id,
            "from_index": from_index,
            "to_index": to_index,
        })
        return updated

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    async def _record_audit(
        self, task_id: int, event: str, before: Mapping[str, Any] | None, after: Mapping[str, Any] | None
    ) -> None:
        before = before or {}
        after = after or {}
        old_values: dict[str, Any] = {}
        new_values: dict[str, Any] = {}
        for column in _AUDITED_COLUMNS:
            if before.get(column) != after.get(column):
                if column in before:
                    old_values[column] = before.get(column)
                new_values[column] = after.get(column)
        if not new_values and event == "updated":
            return
        await self._db.execute(
            "INSERT INTO task_audits (task_id, event, old_values, new_values, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (task_id, event, json.dumps(old_values), json.dumps(new_values), _utcnow()),
        )

    async def get_history(self, task_id: int) -> list[dict]:
        """Return the audit trail of a task, latest first."""
        rows = await self._db.execute_fetchall(
            "SELECT id, event, old_values, new_values, created_at FROM task_audits "
            "WHERE task_id = ? ORDER BY id DESC",
            (task_id,),
        )
        for row in rows:
            row["old_values"] = json.loads(row["old_values"] or "{}")
            row["new_values"] = json.loads(row["new_values"] or "{}")
        return rows

    async def restore_history(
        self,
        task_id: int,
        audit_id: int,
        fields: Iterable[str] | None = None,
    ) -> dict | None:
        """Re-apply the values captured by one audit entry.

        ``new_values`` are preferred, ``old_values`` are used when the entry
        recorded no new values.  Only :data:`RESTORABLE_FIELDS` are applied,
        optionally narrowed to *fields*, one single-field update at a time.
        Returns the refreshed task, or None when the task or audit is
        unknown.
        """
        audit = await self._db.execute_fetchone(
            "SELECT * FROM task_audits WHERE id = ? AND task_id = ?", (audit_id, task_id)
        )
        if audit is None:
            return None
        task = await self._fetch_task_row(task_id)
        if task is None:
            return None

        payload = json.loads(audit["new_values"] or "{}") or json.loads(audit["old_values"] or "{}")
        data = {k: v for k, v in payload.items() if k in RESTORABLE_FIELDS}
        if fields:
            requested = set(fields) & set(RESTORABLE_FIELDS)
            data = {k: v for k, v in data.items() if k in requested}

        if data.get("pricing_type") == PricingType.HOURLY.value:
            data["fixed_price"] = None

        # Parse and check everything first so a bad snapshot applies nothing.
        updates = [parse_task_update({name: value}) for name, value in data.items()]
        for update in updates:
            await self._check_project_scope(task["project_id"], update)
        for update in updates:
            await self._apply_task_update(task_id, update)

        return await self.get_task(task_id)

    # ------------------------------------------------------------------
    # Subtasks
    # ------------------------------------------------------------------

    async def list_subtasks(self, task_id: int) -> list[dict]:
        return await self._db.execute_fetchall(
            "SELECT * FROM sub_tasks WHERE task_id = ? ORDER BY order_column, id", (task_id,)
        )

    async def get_subtask(self, task_id: int, subtask_id: int) -> dict | None:
        return await self._db.execute_fetchone(
            "SELECT * FROM sub_tasks WHERE task_id = ? AND id = ?", (task_id, subtask_id)
        )

    async def create_subtask(
        self,
        task_id: int,
        name: str,
        *,
        parent_id: int | None = None,
        description: str | None = None,
        assigned_to_user_id: int | None = None,
        due_on: str | None = None,
        estimation: float | None = None,
        priority: str | None = None,
        complexity: str | None = None,
    ) -> dict:
        """Create a subtask; a parent outside the owning task becomes ``None``."""
        if await self._fetch_task_row(task_id) is None:
            raise ValueError(f"Task not found: {task_id}")
        parent_id = await self.subtask_mutator.normalize_parent_id(task_id, parent_id)

        count = await self._db.execute_fetchone(
            "SELECT COUNT(*) AS n FROM sub_tasks WHERE task_id = ?", (task_id,)
        )
        now = _utcnow()
        subtask_id = await self._db.execute_insert(
            "INSERT INTO sub_tasks (task_id, parent_id, assigned_to_user_id, name, "
            "description, due_on, estimation, priority, complexity, order_column, "
            "created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                task_id, parent_id, assigned_to_user_id, name,
                description, due_on, estimation,
                _enum_or_none(Priority, priority), _enum_or_none(Complexity, complexity),
                count["n"], now, now,
            ),
        )
        await self._event_bus.emit(
            "subtask.created", {"subtask_id": subtask_id, "task_id": task_id}
        )
        return await self.get_subtask(task_id, subtask_id)

    async def update_subtask(
        self, task_id: int, subtask_id: int, payload: Mapping[str, Any]
    ) -> UpdateResult | None:
        """Apply a one-field payload to a subtask of *task_id*.

        Returns None when the subtask does not belong to the task.
        """
        update = parse_subtask_update(payload)
        if await self.get_subtask(task_id, subtask_id) is None:
            return None
        return await self.subtask_mutator.apply_field_update(subtask_id, update, scope=task_id)

    async def reorder_subtasks(self, task_id: int, items: Iterable[Mapping[str, Any]]) -> list[int]:
        """Apply ``[{id, parent_id, order_column}, ...]`` within one task.

        Returns the ids whose requested parent was replaced by ``None``.
        """
        parsed = []
        for item in items:
            raw_parent = item.get("parent_id")
            parsed.append(ReorderItem(
                id=int(item.get("id") or 0),
                parent_id=int(raw_parent) if raw_parent else None,
                order_column=int(item.get("order_column") or 0),
            ))
        return await self.subtask_mutator.batch_reorder(parsed, scope=task_id)

    async def delete_subtask(self, task_id: int, subtask_id: int) -> bool:
        deleted = await self._db.execute(
            "DELETE FROM sub_tasks WHERE task_id = ? AND id = ?", (task_id, subtask_id)
        )
        if deleted:
            await self._event_bus.emit(
                "subtask.deleted", {"subtask_id": subtask_id, "task_id": task_id}
            )
        return bool(deleted)
