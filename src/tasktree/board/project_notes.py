"""Free-text notes attached to a project, with an audit trail."""

from __future__ import annotations

import json
import logging
import math
from datetime import datetime, timezone

from tasktree.board.database import Database
from tasktree.board.event_bus import EventBus

logger = logging.getLogger(__name__)

MIN_CONTENT_LENGTH = 8


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _validate_content(content: str) -> str:
    if not isinstance(content, str) or len(content.strip()) < MIN_CONTENT_LENGTH:
        raise ValueError(f"'content' must be at least {MIN_CONTENT_LENGTH} characters")
    return content


class ProjectNotes:
    """CRUD for ``project_notes``.

    Deletes are soft: ``deleted_at`` is set and the note disappears from
    listings and lookups.  Every create, update and delete is written to
    ``note_audits``.
    """

    def __init__(self, db: Database, event_bus: EventBus) -> None:
        self._db = db
        self._event_bus = event_bus

    async def _audit(self, note_id: int, event: str, old: dict, new: dict) -> None:
        await self._db.execute(
            "INSERT INTO note_audits (note_id, event, old_values, new_values, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (note_id, event, json.dumps(old), json.dumps(new), _utcnow()),
        )

    async def get_note(self, project_id: int, note_id: int) -> dict | None:
        return await self._db.execute_fetchone(
            "SELECT * FROM project_notes "
            "WHERE id = ? AND project_id = ? AND deleted_at IS NULL",
            (note_id, project_id),
        )

    async def list_notes(self, project_id: int, page: int = 1, per_page: int = 10) -> dict:
        """Return one page of notes, newest first, with pagination meta."""
        if per_page < 1:
            raise ValueError("'per_page' must be >= 1")
        page = max(page, 1)
        count = await self._db.execute_fetchone(
            "SELECT COUNT(*) AS n FROM project_notes "
            "WHERE project_id = ? AND deleted_at IS NULL",
            (project_id,),
        )
        notes = await self._db.execute_fetchall(
            "SELECT * FROM project_notes WHERE project_id = ? AND deleted_at IS NULL "
            "ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
            (project_id, per_page, (page - 1) * per_page),
        )
        total = count["n"]
        return {
            "notes": notes,
            "meta": {
                "current_page": page,
                "last_page": max(1, math.ceil(total / per_page)),
                "per_page": per_page,
                "total": total,
            },
        }

    async def create_note(self, project_id: int, content: str, user_id: int | None = None) -> dict:
        content = _validate_content(content)
        now = _utcnow()
        note_id = await self._db.execute_insert(
            "INSERT INTO project_notes (project_id, user_id, content, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (project_id, user_id, content, now, now),
        )
        await self._audit(note_id, "created", {}, {"content": content, "user_id": user_id})
        await self._event_bus.emit("note.created", {"note_id": note_id, "project_id": project_id})
        return await self.get_note(project_id, note_id)

    async def update_note(self, project_id: int, note_id: int, content: str) -> dict | None:
        content = _validate_content(content)
        note = await self.get_note(project_id, note_id)
        if note is None:
            return None
        if note["content"] != content:
            await self._db.execute(
                "UPDATE project_notes SET content = ?, updated_at = ? WHERE id = ?",
                (content, _utcnow(), note_id),
            )
            await self._audit(note_id, "updated", {"content": note["content"]}, {"content": content})
            await self._event_bus.emit("note.updated", {"note_id": note_id, "project_id": project_id})
        return await self.get_note(project_id, note_id)

    async def delete_note(self, project_id: int, note_id: int) -> bool:
        note = await self.get_note(project_id, note_id)
        if note is None:
            return False
        now = _utcnow()
        await self._db.execute(
            "UPDATE project_notes SET deleted_at = ? WHERE id = ?", (now, note_id)
        )
        await self._audit(note_id, "deleted", {"content": note["content"]}, {})
        await self._event_bus.emit("note.deleted", {"note_id": note_id, "project_id": project_id})
        logger.info("Soft-deleted note %s", note_id, extra={"project_id": project_id})
        return True

    async def get_history(self, project_id: int, note_id: int) -> list[dict] | None:
        """Audit entries of a live note, latest first; None if it is gone."""
        if await self.get_note(project_id, note_id) is None:
            return None
        rows = await self._db.execute_fetchall(
            "SELECT id, event, old_values, new_values, created_at FROM note_audits "
            "WHERE note_id = ? ORDER BY id DESC",
            (note_id,),
        )
        for row in rows:
            row["old_values"] = json.loads(row["old_values"] or "{}")
            row["new_values"] = json.loads(row["new_values"] or "{}")
        return rows
