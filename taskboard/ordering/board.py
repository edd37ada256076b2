"""Board reads: ordered columns with their ordered tasks, and the flat task list.

Filters are applied to the flattened task list before regrouping, so a
filtered board keeps every surviving task at its own order key.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.models import BoardColumn, Task
from taskboard.ordering.keys import ordered
from taskboard.ordering.scope import COLUMNS_IN_PROJECT, ScopeIndex


def _as_utc(dt: datetime) -> datetime:
  # SQLite hands back naive datetimes for timezone-aware columns.
  if dt.tzinfo is None:
    return dt.replace(tzinfo=timezone.utc)
  return dt.astimezone(timezone.utc)


@dataclass(frozen=True)
class TaskFilter:
  text: str | None = None
  status: str | None = None
  priority: str | None = None
  assignee: str | None = None
  due_from: datetime | None = None
  due_to: datetime | None = None
  labels: tuple[str, ...] = ()

  def is_active(self) -> bool:
    return bool(
      (self.text and self.text.strip())
      or self.status
      or self.priority
      or self.assignee
      or self.due_from
      or self.due_to
      or self.labels
    )

  def matches(self, task: Task) -> bool:
    if self.status and task.status != self.status:
      return False
    if self.priority and task.priority != self.priority:
      return False
    if self.assignee and self.assignee not in (task.assignees or []):
      return False
    if self.labels and not set(self.labels).intersection(task.labels or []):
      return False
    if self.due_from or self.due_to:
      if task.due_date is None:
        return False
      due = _as_utc(task.due_date)
      if self.due_from and due < _as_utc(self.due_from):
        return False
      if self.due_to and due > _as_utc(self.due_to):
        return False
    needle = (self.text or "").strip().lower()
    if needle and needle not in (task.title or "").lower() and needle not in (task.description or "").lower():
      return False
    return True


@dataclass
class ColumnView:
  column: BoardColumn
  tasks: list[Task] = field(default_factory=list)


def group_by_column(columns: Iterable[BoardColumn], tasks: Iterable[Task]) -> list[ColumnView]:
  """Nest tasks under their columns. Input order is kept; tasks of unknown columns are dropped."""
  views = [ColumnView(column=c) for c in columns]
  by_id = {v.column.id: v for v in views}
  for t in tasks:
    view = by_id.get(t.column_id)
    if view is not None:
      view.tasks.append(t)
  return views


def flatten(views: Iterable[ColumnView]) -> list[Task]:
  return [t for v in views for t in v.tasks]


class BoardAssembler:
  def __init__(self, db: AsyncSession) -> None:
    self.db = db
    self.columns = ScopeIndex(db, COLUMNS_IN_PROJECT)

  async def assemble_board(self, project_id: str, task_filter: TaskFilter | None = None) -> list[ColumnView]:
    columns = await self.columns.members(project_id)
    res = await self.db.execute(select(Task).where(Task.project_id == project_id))
    tasks = ordered(res.scalars().all())
    if task_filter is not None and task_filter.is_active():
      tasks = [t for t in tasks if task_filter.matches(t)]
    return group_by_column(columns, tasks)

  async def flattened(self, project_id: str, task_filter: TaskFilter | None = None) -> list[Task]:
    return flatten(await self.assemble_board(project_id, task_filter))
