"""Board injection and the lookups every nested route starts with.

``create_app`` hands the board over through :func:`set_task_board`; routes
fetch it with :func:`get_board` and resolve their path ids with the
``require_*`` helpers, which turn a missing or foreign row into a 404.
"""

from __future__ import annotations

from fastapi import HTTPException

from tasktree.board.task_board import TaskBoard

_board: TaskBoard | None = None


def set_task_board(board: TaskBoard | None) -> None:
    global _board
    _board = board


def get_board() -> TaskBoard:
    """Return the board, or 409 while the app runs without one."""
    if _board is None:
        raise HTTPException(409, "Task board is not initialised.")
    return _board


def board_or_none() -> TaskBoard | None:
    return _board


# ------------------------------------------------------------------
# Path lookups
# ------------------------------------------------------------------


async def require_project(board: TaskBoard, project_id: int) -> dict:
    project = await board.get_project(project_id)
    if project is None:
        raise HTTPException(status_code=404, detail="Project not found")
    return project


async def require_task(board: TaskBoard, project_id: int, task_id: int) -> dict:
    """A task is only reachable through the project that owns it."""
    task = await board.get_task(task_id)
    if task is None or task["project_id"] != project_id:
        raise HTTPException(status_code=404, detail="Task not found")
    return task


async def require_note(board: TaskBoard, project_id: int, note_id: int) -> dict:
    note = await board.notes.get_note(project_id, note_id)
    if note is None:
        raise HTTPException(status_code=404, detail="Note not found")
    return note
