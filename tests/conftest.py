# tests/conftest.py
import pytest

from tasktree.board.database import Database
from tasktree.board.event_bus import EventBus
from tasktree.board.task_board import TaskBoard


@pytest.fixture
async def db():
    """Create and initialise an in-memory database."""
    database = Database(":memory:")
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
async def board(db: Database, event_bus: EventBus) -> TaskBoard:
    return TaskBoard(db, event_bus)


@pytest.fixture
async def seeded(board: TaskBoard) -> dict:
    """A project with two groups."""
    project = await board.create_project("Website")
    todo = await board.create_group(project["id"], "Todo")
    done = await board.create_group(project["id"], "Done")
    return {"project": project, "todo": todo, "done": done}
