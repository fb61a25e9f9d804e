"""Project note routes."""

from __future__ import annotations

import sqlite3

from fastapi import APIRouter, HTTPException

from tasktree.dashboard.models import CreateNoteBody, UpdateNoteBody
from tasktree.dashboard.routers._deps import get_board, require_note, require_project

router = APIRouter(prefix="/api/projects/{project_id}/notes")


@router.get("")
async def list_notes(project_id: int, page: int = 1, per_page: int = 10):
    board = get_board()
    await require_project(board, project_id)
    try:
        return await board.notes.list_notes(project_id, page=page, per_page=per_page)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.post("", status_code=201)
async def create_note(project_id: int, body: CreateNoteBody):
    board = get_board()
    await require_project(board, project_id)
    try:
        note = await board.notes.create_note(project_id, body.content, user_id=body.user_id)
    except (ValueError, sqlite3.IntegrityError) as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {"note": note}


@router.put("/{note_id}")
async def update_note(project_id: int, note_id: int, body: UpdateNoteBody):
    board = get_board()
    await require_note(board, project_id, note_id)
    try:
        note = await board.notes.update_note(project_id, note_id, body.content)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {"note": note}


@router.delete("/{note_id}")
async def delete_note(project_id: int, note_id: int):
    board = get_board()
    await require_note(board, project_id, note_id)
    await board.notes.delete_note(project_id, note_id)
    return {"status": "deleted", "id": note_id}


@router.get("/{note_id}/history")
async def note_history(project_id: int, note_id: int):
    board = get_board()
    await require_note(board, project_id, note_id)
    return {"history": await board.notes.get_history(project_id, note_id)}
