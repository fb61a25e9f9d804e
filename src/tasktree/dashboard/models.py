"""Pydantic models shared across dashboard routers."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel


class CreateProjectBody(BaseModel):
    name: str


class CreateGroupBody(BaseModel):
    name: str


class CreateTaskBody(BaseModel):
    group_id: int
    name: str
    parent_id: Optional[int] = None
    description: Optional[str] = None
    assigned_to_user_id: Optional[int] = None
    due_on: Optional[str] = None
    estimation: Optional[float] = None
    pricing_type: str = "hourly"
    fixed_price: Optional[Any] = None
    priority: Optional[str] = None
    complexity: Optional[str] = None
    hidden_from_clients: bool = False
    billable: bool = True
    labels: Optional[list[int]] = None
    subscribed_users: Optional[list[int]] = None


class CreateSubTaskBody(BaseModel):
    name: str
    parent_id: Optional[int] = None
    description: Optional[str] = None
    assigned_to_user_id: Optional[int] = None
    due_on: Optional[str] = None
    estimation: Optional[float] = None
    priority: Optional[str] = None
    complexity: Optional[str] = None


class ReorderTasksBody(BaseModel):
    ids: list[int]
    group_id: Optional[int] = None
    from_index: Optional[int] = None
    to_index: Optional[int] = None


class MoveTasksBody(BaseModel):
    ids: list[int]
    to_group_id: int
    from_group_id: Optional[int] = None
    from_index: Optional[int] = None
    to_index: Optional[int] = None


class CompleteTaskBody(BaseModel):
    completed: bool = True


class ReorderSubTasksBody(BaseModel):
    items: list[dict[str, Any]] = []


class RestoreHistoryBody(BaseModel):
    fields: Optional[list[str]] = None


class CreateNoteBody(BaseModel):
    content: str
    user_id: Optional[int] = None


class UpdateNoteBody(BaseModel):
    content: str
