from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.activity import delete_column_everything
from taskboard.config import Settings
from taskboard.deps import get_current_user, get_db, get_settings, member_authorizer, require_project_member
from taskboard.errors import NotFound
from taskboard.logging import get_logger
from taskboard.models import BoardColumn, User
from taskboard.ordering.moves import MoveRequest, MoveTransaction, retry_on_conflict
from taskboard.ordering.scope import COLUMNS_IN_PROJECT, TASKS_IN_COLUMN, ScopeIndex
from taskboard.schemas import ColumnCreateIn, ColumnMoveIn, ColumnMoveOut, ColumnOut, ColumnUpdateIn, RenormalizeOut

logger = get_logger(__name__)

router = APIRouter(tags=["columns"])


def _column_out(c: BoardColumn) -> ColumnOut:
  return ColumnOut(id=c.id, projectId=c.project_id, name=c.name, orderKey=c.order_key, version=c.version)


async def _get_column(db: AsyncSession, column_id: str, user: User) -> BoardColumn:
  res = await db.execute(select(BoardColumn).where(BoardColumn.id == column_id))
  c = res.scalar_one_or_none()
  if not c:
    raise NotFound("column not found", item_id=column_id)
  await require_project_member(c.project_id, user, db)
  return c


@router.get("/projects/{project_id}/columns", response_model=list[ColumnOut])
async def list_columns(project_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[ColumnOut]:
  await require_project_member(project_id, user, db)
  columns = await ScopeIndex(db, COLUMNS_IN_PROJECT).members(project_id)
  return [_column_out(c) for c in columns]


@router.post("/projects/{project_id}/columns", response_model=ColumnOut)
async def create_column(
  project_id: str,
  payload: ColumnCreateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  settings: Settings = Depends(get_settings),
) -> ColumnOut:
  await require_project_member(project_id, user, db)
  columns = ScopeIndex.from_settings(db, COLUMNS_IN_PROJECT, settings)

  async def _create() -> BoardColumn:
    c = BoardColumn(project_id=project_id, name=payload.name.strip(), tasks_version=0)
    await columns.insert(project_id, c, payload.position)
    await db.commit()
    return c

  c = await retry_on_conflict(db, _create, attempts=settings.move_max_attempts, action="create_column", scope="project")
  logger.info("column_created", project_id=project_id, column_id=c.id, order_key=c.order_key)
  return _column_out(c)


@router.patch("/columns/{column_id}", response_model=ColumnOut)
async def rename_column(
  column_id: str,
  payload: ColumnUpdateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> ColumnOut:
  c = await _get_column(db, column_id, user)
  c.name = payload.name.strip()
  await db.commit()
  return _column_out(c)


@router.delete("/columns/{column_id}")
async def delete_column(column_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> dict:
  c = await _get_column(db, column_id, user)
  project_id = c.project_id
  await delete_column_everything(db, column_id=column_id)
  await ScopeIndex(db, COLUMNS_IN_PROJECT).remove(project_id, column_id)
  await db.commit()
  logger.info("column_deleted", project_id=project_id, column_id=column_id)
  return {"ok": True}


@router.post("/columns/{column_id}/move", response_model=ColumnMoveOut)
async def move_column(
  column_id: str,
  payload: ColumnMoveIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  settings: Settings = Depends(get_settings),
) -> ColumnMoveOut:
  move = MoveTransaction.from_settings(
    db,
    COLUMNS_IN_PROJECT,
    MoveRequest(item_id=column_id, position=payload.position, expected_version=payload.version),
    settings,
    authorize=member_authorizer(user.id, db),
  )
  result = await move.execute()
  return ColumnMoveOut(
    column=_column_out(result.item),
    fromScopeId=result.from_scope_id,
    toScopeId=result.to_scope_id,
    index=result.index,
    orderKey=result.order_key,
    noop=result.noop,
    attempts=result.attempts,
  )


@router.post("/columns/{column_id}/renormalize", response_model=RenormalizeOut)
async def renormalize_column(
  column_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  settings: Settings = Depends(get_settings),
) -> RenormalizeOut:
  """Respace the task keys inside one column."""
  await _get_column(db, column_id, user)
  tasks = ScopeIndex.from_settings(db, TASKS_IN_COLUMN, settings)

  async def _run() -> int:
    n = await tasks.renormalize(column_id)
    await db.commit()
    return n

  n = await retry_on_conflict(db, _run, attempts=settings.move_max_attempts, action="renormalize", scope="column")
  return RenormalizeOut(scopeId=column_id, items=n)


@router.post("/projects/{project_id}/columns/renormalize", response_model=RenormalizeOut)
async def renormalize_project_columns(
  project_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  settings: Settings = Depends(get_settings),
) -> RenormalizeOut:
  """Respace the column keys of a project."""
  await require_project_member(project_id, user, db)
  columns = ScopeIndex.from_settings(db, COLUMNS_IN_PROJECT, settings)

  async def _run() -> int:
    n = await columns.renormalize(project_id)
    await db.commit()
    return n

  n = await retry_on_conflict(db, _run, attempts=settings.move_max_attempts, action="renormalize", scope="project")
  return RenormalizeOut(scopeId=project_id, items=n)
