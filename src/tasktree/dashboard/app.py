"""FastAPI application exposing the task board."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

from tasktree.board.event_bus import EventBus
from tasktree.board.task_board import TaskBoard
from tasktree.config_loader import AppConfig

_logger = logging.getLogger(__name__)

_DEFAULT_CORS_ORIGINS = ["http://localhost:8000", "http://localhost:3000"]


def create_app(
    task_board: TaskBoard | None = None,
    event_bus: EventBus | None = None,
    config: AppConfig | None = None,
) -> FastAPI:
    app = FastAPI(
        title=config.app_name if config else "TaskTree",
        description="Projects, task groups, nested tasks and subtasks.",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    cors_origins = config.cors_origins if config else _DEFAULT_CORS_ORIGINS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept"],
    )

    app.state.event_bus = event_bus

    # ------------------------------------------------------------------
    # Wire up shared deps for routers
    # ------------------------------------------------------------------
    from tasktree.dashboard.routers._deps import set_task_board

    set_task_board(task_board)
    if task_board is None:
        _logger.warning("Dashboard created without a task board; API routes will return 409")

    # ------------------------------------------------------------------
    # Include routers
    # ------------------------------------------------------------------
    from tasktree.dashboard.routers.tasks import router as tasks_router
    from tasktree.dashboard.routers.subtasks import router as subtasks_router
    from tasktree.dashboard.routers.notes import router as notes_router

    app.include_router(tasks_router, tags=["Tasks"])
    app.include_router(subtasks_router, tags=["Subtasks"])
    app.include_router(notes_router, tags=["Notes"])

    return app
