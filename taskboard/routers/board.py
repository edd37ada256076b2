from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.deps import get_current_user, get_db, require_project_member
from taskboard.models import User
from taskboard.ordering.board import BoardAssembler, ColumnView, TaskFilter
from taskboard.routers.tasks import _task_out
from taskboard.schemas import BoardColumnOut, BoardOut, TaskPriority, TaskStatus

router = APIRouter(tags=["board"])


def _board_column_out(view: ColumnView) -> BoardColumnOut:
  c = view.column
  return BoardColumnOut(
    id=c.id,
    projectId=c.project_id,
    name=c.name,
    orderKey=c.order_key,
    version=c.version,
    tasks=[_task_out(t) for t in view.tasks],
  )


@router.get("/projects/{project_id}/board", response_model=BoardOut)
async def get_board(
  project_id: str,
  text: str | None = None,
  status_: TaskStatus | None = Query(default=None, alias="status"),
  priority: TaskPriority | None = None,
  assignee: str | None = None,
  dueFrom: datetime | None = None,
  dueTo: datetime | None = None,
  label: list[str] = Query(default=[]),
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> BoardOut:
  await require_project_member(project_id, user, db)
  task_filter = TaskFilter(
    text=text,
    status=status_,
    priority=priority,
    assignee=assignee,
    due_from=dueFrom,
    due_to=dueTo,
    labels=tuple(label),
  )
  views = await BoardAssembler(db).assemble_board(project_id, task_filter)
  return BoardOut(projectId=project_id, columns=[_board_column_out(v) for v in views])
