"""Subtask routes, nested under a task."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse

from tasktree.board.hierarchy import Reason
from tasktree.dashboard.models import CreateSubTaskBody, ReorderSubTasksBody
from tasktree.dashboard.routers._deps import get_board, require_task

router = APIRouter(prefix="/api/projects/{project_id}/tasks/{task_id}/subtasks")

# Refusals reported to the client; a self-reference is dropped quietly.
_CYCLE_REASONS = (Reason.CYCLE, Reason.TRAVERSAL_LIMIT)


@router.get("")
async def list_subtasks(project_id: int, task_id: int):
    board = get_board()
    await require_task(board, project_id, task_id)
    return await board.list_subtasks(task_id)


@router.post("", status_code=201)
async def create_subtask(project_id: int, task_id: int, body: CreateSubTaskBody):
    board = get_board()
    await require_task(board, project_id, task_id)
    try:
        return await board.create_subtask(
            task_id,
            body.name,
            parent_id=body.parent_id,
            description=body.description,
            assigned_to_user_id=body.assigned_to_user_id,
            due_on=body.due_on,
            estimation=body.estimation,
            priority=body.priority,
            complexity=body.complexity,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.post("/reorder")
async def reorder_subtasks(project_id: int, task_id: int, body: ReorderSubTasksBody):
    board = get_board()
    await require_task(board, project_id, task_id)
    try:
        sanitized = await board.reorder_subtasks(task_id, body.items)
    except (TypeError, ValueError) as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {"status": "ok", "sanitized": sanitized}


@router.put("/{subtask_id}")
async def update_subtask(project_id: int, task_id: int, subtask_id: int, body: dict[str, Any]):
    board = get_board()
    await require_task(board, project_id, task_id)
    try:
        result = await board.update_subtask(task_id, subtask_id, body)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    if result is None:
        raise HTTPException(status_code=404, detail="Subtask not found")

    decision = result.decision
    if decision is not None and not decision.applies and decision.reason in _CYCLE_REASONS:
        return JSONResponse(
            status_code=422,
            content={
                "message": "Invalid parent: would create a cycle (parent is a descendant of the node).",
                "errors": {"parent_id": ["Parent cannot be a descendant of the subtask."]},
            },
        )
    return await board.get_subtask(task_id, subtask_id)


@router.delete("/{subtask_id}")
async def delete_subtask(project_id: int, task_id: int, subtask_id: int):
    board = get_board()
    await require_task(board, project_id, task_id)
    if not await board.delete_subtask(task_id, subtask_id):
        raise HTTPException(status_code=404, detail="Subtask not found")
    return {"status": "deleted", "id": subtask_id}
