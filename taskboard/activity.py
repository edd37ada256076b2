from __future__ import annotations

from typing import Any

from fastapi.encoders import jsonable_encoder
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.errors import Conflict, NotFound
from taskboard.models import Comment, Task, TaskActivity


async def record_activity(
  db: AsyncSession,
  *,
  task_id: str,
  actor_id: str | None,
  action: str,
  field: str | None = None,
  old: Any = None,
  new: Any = None,
) -> TaskActivity:
  """Append one entry to a task's history. Entries are never edited afterwards.

  The task row is locked first so concurrent writers to one task take
  consecutive seq values. The unique (task_id, seq) constraint backs that up
  where the backend ignores row locks; a collision surfaces as a retryable
  Conflict.
  """
  await db.execute(select(Task.id).where(Task.id == task_id).with_for_update())
  res = await db.execute(select(func.max(TaskActivity.seq)).where(TaskActivity.task_id == task_id))
  last = res.scalar_one_or_none()
  ev = TaskActivity(
    task_id=task_id,
    actor_id=actor_id,
    action=action,
    field=field,
    old_value=jsonable_encoder(old),
    new_value=jsonable_encoder(new),
    seq=(last or 0) + 1,
  )
  db.add(ev)
  try:
    await db.flush()
  except IntegrityError as exc:
    raise Conflict("task activity changed concurrently", item_id=task_id) from exc
  return ev


async def list_activity(db: AsyncSession, task_id: str) -> list[TaskActivity]:
  res = await db.execute(select(TaskActivity).where(TaskActivity.task_id == task_id).order_by(TaskActivity.seq.asc(), TaskActivity.created_at.asc(), TaskActivity.id.asc()))
  return list(res.scalars().all())


async def append_comment(db: AsyncSession, *, task_id: str, author_id: str, body: str) -> Comment:
  c = Comment(task_id=task_id, author_id=author_id, body=body)
  db.add(c)
  await db.flush()
  await record_activity(db, task_id=task_id, actor_id=author_id, action="commented", new={"commentId": c.id, "body": body[:500]})
  return c


async def remove_comment(db: AsyncSession, *, task_id: str, comment_id: str, actor_id: str) -> None:
  res = await db.execute(delete(Comment).where(Comment.id == comment_id, Comment.task_id == task_id))
  if res.rowcount != 1:
    raise NotFound("comment not found", item_id=comment_id)
  await record_activity(db, task_id=task_id, actor_id=actor_id, action="deleted_comment", old={"commentId": comment_id})


async def list_comments(db: AsyncSession, task_id: str) -> list[Comment]:
  res = await db.execute(select(Comment).where(Comment.task_id == task_id).order_by(Comment.created_at.asc(), Comment.id.asc()))
  return list(res.scalars().all())


async def delete_task_children(db: AsyncSession, *, task_ids: Any) -> None:
  # task_ids may be a list or a scalar subquery.
  await db.execute(delete(Comment).where(Comment.task_id.in_(task_ids)))
  await db.execute(delete(TaskActivity).where(TaskActivity.task_id.in_(task_ids)))


async def delete_column_everything(db: AsyncSession, *, column_id: str) -> None:
  await delete_task_children(db, task_ids=select(Task.id).where(Task.column_id == column_id))
  await db.execute(delete(Task).where(Task.column_id == column_id))
