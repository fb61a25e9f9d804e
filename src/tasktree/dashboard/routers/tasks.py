"""Health, project, group and task routes."""

from __future__ import annotations

import sqlite3
from typing import Any

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse

from tasktree.dashboard.models import (
    CompleteTaskBody,
    CreateGroupBody,
    CreateProjectBody,
    CreateTaskBody,
    MoveTasksBody,
    ReorderTasksBody,
    RestoreHistoryBody,
)
from tasktree.dashboard.routers._deps import (
    board_or_none,
    get_board,
    require_project,
    require_task,
)

router = APIRouter()


# ------------------------------------------------------------------
# Health
# ------------------------------------------------------------------


@router.get("/api/health")
async def health():
    board = board_or_none()
    if board is None:
        return {"status": "ok", "db": "not_configured"}
    try:
        await board.db.execute_fetchone("SELECT 1")
        return {"status": "ok", "db": "connected"}
    except Exception as e:
        return JSONResponse(
            status_code=503,
            content={"status": "degraded", "db": str(e)},
        )


# ------------------------------------------------------------------
# Projects and groups
# ------------------------------------------------------------------


@router.post("/api/projects", status_code=201)
async def create_project(body: CreateProjectBody):
    board = get_board()
    if not body.name.strip():
        raise HTTPException(status_code=422, detail="name is required")
    return await board.create_project(body.name)


@router.get("/api/projects/{project_id}")
async def get_project(project_id: int):
    board = get_board()
    return await require_project(board, project_id)


@router.post("/api/projects/{project_id}/groups", status_code=201)
async def create_group(project_id: int, body: CreateGroupBody):
    board = get_board()
    await require_project(board, project_id)
    return await board.create_group(project_id, body.name)


@router.get("/api/projects/{project_id}/groups")
async def get_groups(project_id: int):
    board = get_board()
    await require_project(board, project_id)
    return await board.get_groups(project_id)


# ------------------------------------------------------------------
# Tasks
# ------------------------------------------------------------------


@router.get("/api/projects/{project_id}/tasks")
async def list_tasks(
    project_id: int,
    group_id: int | None = None,
    roots_only: bool = False,
    include_archived: bool = False,
    include_completed: bool = True,
):
    board = get_board()
    await require_project(board, project_id)
    return await board.get_project_tasks(
        project_id,
        group_id=group_id,
        roots_only=roots_only,
        include_archived=include_archived,
        include_completed=include_completed,
    )


@router.post("/api/projects/{project_id}/tasks", status_code=201)
async def create_task(project_id: int, body: CreateTaskBody):
    board = get_board()
    await require_project(board, project_id)
    try:
        return await board.create_task(
            project_id,
            body.group_id,
            body.name,
            parent_id=body.parent_id,
            description=body.description,
            assigned_to_user_id=body.assigned_to_user_id,
            due_on=body.due_on,
            estimation=body.estimation,
            pricing_type=body.pricing_type,
            fixed_price=body.fixed_price,
            priority=body.priority,
            complexity=body.complexity,
            hidden_from_clients=body.hidden_from_clients,
            billable=body.billable,
            labels=body.labels,
            subscribed_users=body.subscribed_users,
        )
    except (ValueError, sqlite3.IntegrityError) as e:
        raise HTTPException(status_code=422, detail=str(e))


# Static paths are registered before /tasks/{task_id} routes.


@router.post("/api/projects/{project_id}/tasks/reorder")
async def reorder_tasks(project_id: int, body: ReorderTasksBody):
    board = get_board()
    await require_project(board, project_id)
    updated = await board.reorder_tasks(
        project_id, body.ids,
        group_id=body.group_id, from_index=body.from_index, to_index=body.to_index,
    )
    return {"updated": updated}


@router.post("/api/projects/{project_id}/tasks/move")
async def move_tasks(project_id: int, body: MoveTasksBody):
    board = get_board()
    await require_project(board, project_id)
    try:
        updated = await board.move_tasks(
            project_id, body.ids, body.to_group_id,
            from_group_id=body.from_group_id,
            from_index=body.from_index,
            to_index=body.to_index,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {"updated": updated}


@router.get("/api/projects/{project_id}/tasks/{task_id}")
async def get_task(project_id: int, task_id: int):
    board = get_board()
    return await require_task(board, project_id, task_id)


@router.put("/api/projects/{project_id}/tasks/{task_id}")
async def update_task(project_id: int, task_id: int, body: dict[str, Any]):
    """Update exactly one field.  Refused parent changes leave the task as is."""
    board = get_board()
    await require_task(board, project_id, task_id)
    try:
        await board.update_task(task_id, body)
    except (ValueError, sqlite3.IntegrityError) as e:
        raise HTTPException(status_code=422, detail=str(e))
    return await board.get_task(task_id)


@router.post("/api/projects/{project_id}/tasks/{task_id}/complete")
async def complete_task(project_id: int, task_id: int, body: CompleteTaskBody | None = None):
    board = get_board()
    await require_task(board, project_id, task_id)
    completed = body.completed if body is not None else True
    return await board.complete_task(task_id, completed)


@router.delete("/api/projects/{project_id}/tasks/{task_id}")
async def archive_task(project_id: int, task_id: int):
    board = get_board()
    await require_task(board, project_id, task_id)
    return await board.archive_task(task_id)


@router.post("/api/projects/{project_id}/tasks/{task_id}/restore")
async def restore_task(project_id: int, task_id: int):
    board = get_board()
    await require_task(board, project_id, task_id)
    return await board.restore_task(task_id)


@router.get("/api/projects/{project_id}/tasks/{task_id}/children")
async def get_children(project_id: int, task_id: int):
    board = get_board()
    await require_task(board, project_id, task_id)
    return await board.get_children(task_id)


# ------------------------------------------------------------------
# History
# ------------------------------------------------------------------


@router.get("/api/projects/{project_id}/tasks/{task_id}/history")
async def get_history(project_id: int, task_id: int):
    board = get_board()
    await require_task(board, project_id, task_id)
    return await board.get_history(task_id)


@router.post("/api/projects/{project_id}/tasks/{task_id}/history/{audit_id}/restore")
async def restore_history(
    project_id: int, task_id: int, audit_id: int, body: RestoreHistoryBody | None = None,
):
    board = get_board()
    await require_task(board, project_id, task_id)
    fields = body.fields if body is not None else None
    try:
        task = await board.restore_history(task_id, audit_id, fields=fields)
    except (ValueError, sqlite3.IntegrityError) as e:
        raise HTTPException(status_code=422, detail=str(e))
    if task is None:
        raise HTTPException(status_code=404, detail="Audit entry not found")
    return task
