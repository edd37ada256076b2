from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from taskboard.activity import append_comment, delete_task_children, list_activity, list_comments, record_activity, remove_comment
from taskboard.config import Settings
from taskboard.deps import get_current_user, get_db, get_settings, member_authorizer, require_project_member
from taskboard.errors import Conflict, NotFound
from taskboard.logging import get_logger
from taskboard.models import BoardColumn, Comment, ProjectMember, Task, TaskActivity, User
from taskboard.ordering.board import BoardAssembler, TaskFilter
from taskboard.ordering.moves import MoveRequest, MoveResult, MoveTransaction, retry_on_conflict
from taskboard.ordering.scope import TASKS_IN_COLUMN, ScopeIndex
from taskboard.schemas import (
  ActivityOut,
  CommentCreateIn,
  CommentOut,
  TaskCreateIn,
  TaskDetailOut,
  TaskMoveIn,
  TaskMoveOut,
  TaskOut,
  TaskPriority,
  TaskStatus,
  TaskUpdateIn,
)

logger = get_logger(__name__)

router = APIRouter(tags=["tasks"])

# (model attribute, payload field) pairs that PATCH may change.
_UPDATABLE = [
  ("title", "title"),
  ("description", "description"),
  ("status", "status"),
  ("priority", "priority"),
  ("due_date", "dueDate"),
  ("assignees", "assignees"),
  ("labels", "labels"),
]


def _task_out(t: Task) -> TaskOut:
  return TaskOut(
    id=t.id,
    projectId=t.project_id,
    columnId=t.column_id,
    orderKey=t.order_key,
    title=t.title,
    description=t.description,
    status=t.status,
    priority=t.priority,
    dueDate=t.due_date,
    assignees=list(t.assignees or []),
    labels=list(t.labels or []),
    createdBy=t.created_by,
    version=t.version,
    createdAt=t.created_at,
    updatedAt=t.updated_at,
  )


def _comment_out(c: Comment) -> CommentOut:
  return CommentOut(id=c.id, taskId=c.task_id, authorId=c.author_id, body=c.body, createdAt=c.created_at)


def _activity_out(a: TaskActivity) -> ActivityOut:
  return ActivityOut(
    id=a.id,
    taskId=a.task_id,
    actorId=a.actor_id,
    action=a.action,
    field=a.field,
    oldValue=a.old_value,
    newValue=a.new_value,
    createdAt=a.created_at,
  )


def _clean_labels(labels: list[str]) -> list[str]:
  out: list[str] = []
  for label in labels:
    s = label.strip()
    if s and s not in out:
      out.append(s)
  return out


async def _get_task(db: AsyncSession, task_id: str, user: User) -> Task:
  res = await db.execute(select(Task).where(Task.id == task_id))
  t = res.scalar_one_or_none()
  if not t:
    raise NotFound("task not found", item_id=task_id)
  await require_project_member(t.project_id, user, db)
  return t


async def _validate_assignees(project_id: str, assignees: list[str], db: AsyncSession) -> None:
  wanted = set(assignees)
  if not wanted:
    return
  res = await db.execute(
    select(ProjectMember.user_id).where(ProjectMember.project_id == project_id, ProjectMember.user_id.in_(wanted))
  )
  found = set(res.scalars().all())
  if wanted - found:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid assignees (must be project members)")


@router.get("/projects/{project_id}/tasks", response_model=list[TaskOut])
async def list_tasks(
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
) -> list[TaskOut]:
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
  tasks = await BoardAssembler(db).flattened(project_id, task_filter)
  return [_task_out(t) for t in tasks]


@router.post("/projects/{project_id}/tasks", response_model=TaskOut)
async def create_task(
  project_id: str,
  payload: TaskCreateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  settings: Settings = Depends(get_settings),
) -> TaskOut:
  await require_project_member(project_id, user, db)
  cres = await db.execute(select(BoardColumn.project_id).where(BoardColumn.id == payload.columnId))
  if cres.scalar_one_or_none() != project_id:
    raise NotFound("column not found in this project", scope_id=payload.columnId)
  await _validate_assignees(project_id, payload.assignees, db)

  user_id = user.id
  tasks = ScopeIndex.from_settings(db, TASKS_IN_COLUMN, settings)

  async def _create() -> Task:
    t = Task(
      project_id=project_id,
      title=payload.title.strip(),
      description=payload.description or "",
      status=payload.status,
      priority=payload.priority,
      due_date=payload.dueDate,
      assignees=list(dict.fromkeys(payload.assignees)),
      labels=_clean_labels(payload.labels),
      created_by=user_id,
    )
    await tasks.insert(payload.columnId, t, payload.position)
    await record_activity(db, task_id=t.id, actor_id=user_id, action="created", new={"title": t.title, "columnId": t.column_id})
    await db.commit()
    return t

  t = await retry_on_conflict(db, _create, attempts=settings.move_max_attempts, action="create_task", scope="column")
  logger.info("task_created", project_id=project_id, task_id=t.id, column_id=t.column_id, order_key=t.order_key)
  return _task_out(t)


@router.get("/tasks/{task_id}", response_model=TaskDetailOut)
async def get_task(task_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> TaskDetailOut:
  t = await _get_task(db, task_id, user)
  return TaskDetailOut(
    **_task_out(t).model_dump(),
    comments=[_comment_out(c) for c in await list_comments(db, t.id)],
    activity=[_activity_out(a) for a in await list_activity(db, t.id)],
  )


@router.patch("/tasks/{task_id}", response_model=TaskOut)
async def update_task(task_id: str, payload: TaskUpdateIn, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> TaskOut:
  t = await _get_task(db, task_id, user)
  if t.version != payload.version:
    raise Conflict("task version is stale", scope_id=t.column_id, item_id=t.id, retryable=False)

  fields_set = payload.model_fields_set
  if "assignees" in fields_set and payload.assignees is not None:
    await _validate_assignees(t.project_id, payload.assignees, db)

  changes: list[tuple[str, object, object]] = []
  for model_attr, field_name in _UPDATABLE:
    if field_name not in fields_set:
      continue
    val = getattr(payload, field_name)
    if val is None and field_name != "dueDate":
      raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"{field_name} cannot be null")
    if field_name == "title":
      val = val.strip()
    elif field_name == "labels":
      val = _clean_labels(val)
    elif field_name == "assignees":
      val = list(dict.fromkeys(val))
    old = getattr(t, model_attr)
    if old == val:
      continue
    setattr(t, model_attr, val)
    changes.append((field_name, old, val))

  try:
    await db.flush()
  except StaleDataError as exc:
    await db.rollback()
    raise Conflict("task changed concurrently", scope_id=t.column_id, item_id=t.id, retryable=False) from exc

  for field_name, old, new in changes:
    await record_activity(db, task_id=t.id, actor_id=user.id, action="updated", field=field_name, old=old, new=new)
  await db.commit()
  return _task_out(t)


@router.delete("/tasks/{task_id}")
async def delete_task(task_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> dict:
  t = await _get_task(db, task_id, user)
  column_id = t.column_id
  await delete_task_children(db, task_ids=[task_id])
  await ScopeIndex(db, TASKS_IN_COLUMN).remove(column_id, task_id)
  await db.commit()
  logger.info("task_deleted", task_id=task_id, column_id=column_id)
  return {"ok": True}


@router.post("/tasks/{task_id}/move", response_model=TaskMoveOut)
async def move_task(
  task_id: str,
  payload: TaskMoveIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  settings: Settings = Depends(get_settings),
) -> TaskMoveOut:
  user_id = user.id

  async def _log_move(result: MoveResult) -> None:
    if result.noop:
      return
    await record_activity(
      db,
      task_id=result.item.id,
      actor_id=user_id,
      action="moved",
      field="columnId" if result.from_scope_id != result.to_scope_id else "position",
      old={"columnId": result.from_scope_id},
      new={"columnId": result.to_scope_id, "index": result.index},
    )

  move = MoveTransaction.from_settings(
    db,
    TASKS_IN_COLUMN,
    MoveRequest(item_id=task_id, target_scope_id=payload.columnId, position=payload.position, expected_version=payload.version),
    settings,
    authorize=member_authorizer(user_id, db),
    before_commit=_log_move,
  )
  result = await move.execute()
  return TaskMoveOut(
    task=_task_out(result.item),
    fromScopeId=result.from_scope_id,
    toScopeId=result.to_scope_id,
    index=result.index,
    orderKey=result.order_key,
    noop=result.noop,
    attempts=result.attempts,
  )


@router.get("/tasks/{task_id}/comments", response_model=list[CommentOut])
async def get_comments(task_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[CommentOut]:
  t = await _get_task(db, task_id, user)
  return [_comment_out(c) for c in await list_comments(db, t.id)]


@router.post("/tasks/{task_id}/comments", response_model=CommentOut)
async def create_comment(
  task_id: str,
  payload: CommentCreateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  settings: Settings = Depends(get_settings),
) -> CommentOut:
  await _get_task(db, task_id, user)
  body = payload.body.strip()
  if not body:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="body is required")
  user_id = user.id

  async def _append() -> Comment:
    c = await append_comment(db, task_id=task_id, author_id=user_id, body=body)
    await db.commit()
    return c

  c = await retry_on_conflict(db, _append, attempts=settings.move_max_attempts, action="comment", scope="task")
  return _comment_out(c)


@router.delete("/tasks/{task_id}/comments/{comment_id}")
async def delete_comment(
  task_id: str,
  comment_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  settings: Settings = Depends(get_settings),
) -> dict:
  await _get_task(db, task_id, user)
  user_id = user.id

  async def _remove() -> None:
    await remove_comment(db, task_id=task_id, comment_id=comment_id, actor_id=user_id)
    await db.commit()

  await retry_on_conflict(db, _remove, attempts=settings.move_max_attempts, action="delete_comment", scope="task")
  return {"ok": True}


@router.get("/tasks/{task_id}/activity", response_model=list[ActivityOut])
async def get_activity(task_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[ActivityOut]:
  t = await _get_task(db, task_id, user)
  return [_activity_out(a) for a in await list_activity(db, t.id)]
