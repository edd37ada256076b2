from __future__ import annotations

import sys
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
  sys.path.insert(0, str(ROOT))

from taskboard.config import Settings
from taskboard.db import Database
from taskboard.main import create_app
from taskboard.models import BoardColumn, Project, ProjectMember, Task
from taskboard.seed import ensure_user, issue_token

TEST_SECRET = "test-secret"


@pytest.fixture(scope="session")
def anyio_backend() -> str:
  return "asyncio"


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
  return Settings(
    database_url=f"sqlite+aiosqlite:///{tmp_path / 'taskboard_test.db'}",
    app_secret=TEST_SECRET,
    log_level="WARNING",
    log_file=None,
  )


@pytest.fixture
async def database(settings: Settings) -> Database:
  db = Database.from_settings(settings)
  await db.create_all()
  yield db
  await db.dispose()


@pytest.fixture
async def session(database: Database):
  async with database.session() as s:
    yield s


@pytest.fixture
def app(settings: Settings, database: Database):
  return create_app(settings, database)


@pytest.fixture
async def client(app) -> AsyncClient:
  transport = ASGITransport(app=app)
  async with AsyncClient(transport=transport, base_url="http://test") as c:
    yield c


async def make_user(database: Database, email: str, name: str | None = None) -> tuple[str, dict[str, str]]:
  """Create a user with an API token; returns (user_id, auth headers)."""
  async with database.session() as db:
    u = await ensure_user(db, email=email, name=name or email.split("@")[0])
    token = await issue_token(db, user=u, token_name="test", secret=TEST_SECRET)
    await db.commit()
    return u.id, {"Authorization": f"Bearer {token}"}


async def make_project(database: Database, owner_id: str, *, name: str = "P") -> str:
  """Bare project with no columns, for session-level tests."""
  async with database.session() as db:
    p = Project(name=name, description="", owner_id=owner_id, columns_version=0)
    db.add(p)
    await db.flush()
    db.add(ProjectMember(project_id=p.id, user_id=owner_id, role="owner"))
    await db.commit()
    return p.id


async def add_column(database: Database, project_id: str, name: str, order_key: float) -> str:
  async with database.session() as db:
    c = BoardColumn(project_id=project_id, name=name, order_key=order_key, tasks_version=0)
    db.add(c)
    await db.commit()
    return c.id


async def add_task(database: Database, project_id: str, column_id: str, title: str, order_key: float, **fields) -> str:
  """Insert a task at a fixed key, bypassing the allocator."""
  async with database.session() as db:
    t = Task(project_id=project_id, column_id=column_id, title=title, order_key=order_key, **fields)
    db.add(t)
    await db.commit()
    return t.id
