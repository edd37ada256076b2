from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field
from pydantic import field_validator


_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

ProjectRole = Literal["owner", "admin", "member", "viewer"]
InviteRole = Literal["admin", "member", "viewer"]
TaskStatus = Literal["todo", "in_progress", "in_review", "done"]
TaskPriority = Literal["low", "medium", "high", "urgent"]
Position = Annotated[int, Field(ge=0)] | Literal["end"]


def _parse_dt_utc(value: object) -> object:
  if value is None:
    return None
  if isinstance(value, datetime):
    dt = value
  elif isinstance(value, str):
    s = value.strip()
    if not s:
      return None
    if _DATE_ONLY_RE.fullmatch(s):
      dt = datetime.fromisoformat(s)
    else:
      dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
  else:
    return value

  if dt.tzinfo is None:
    return dt.replace(tzinfo=timezone.utc)
  return dt.astimezone(timezone.utc)


class UserOut(BaseModel):
  id: str
  email: str
  name: str


class ProjectCreateIn(BaseModel):
  name: str = Field(min_length=1, max_length=120)
  description: str = Field(default="", max_length=5000)


class ProjectUpdateIn(BaseModel):
  name: str | None = Field(default=None, min_length=1, max_length=120)
  description: str | None = Field(default=None, max_length=5000)


class ProjectMemberOut(BaseModel):
  userId: str
  email: str
  name: str
  role: ProjectRole


class ProjectOut(BaseModel):
  id: str
  name: str
  description: str
  ownerId: str
  members: list[ProjectMemberOut] = []
  createdAt: datetime
  updatedAt: datetime


class MemberInviteIn(BaseModel):
  email: str = Field(min_length=3, max_length=320)
  role: InviteRole = "member"


class ColumnCreateIn(BaseModel):
  name: str = Field(min_length=1, max_length=120)
  position: Position = "end"


class ColumnUpdateIn(BaseModel):
  name: str = Field(min_length=1, max_length=120)


class ColumnMoveIn(BaseModel):
  position: Position = "end"
  version: int | None = None


class ColumnOut(BaseModel):
  id: str
  projectId: str
  name: str
  orderKey: float
  version: int


class TaskCreateIn(BaseModel):
  columnId: str
  title: str = Field(min_length=1, max_length=500)
  description: str = ""
  status: TaskStatus = "todo"
  priority: TaskPriority = "medium"
  dueDate: datetime | None = None
  assignees: list[str] = []
  labels: list[str] = []
  position: Position = "end"

  @field_validator("dueDate", mode="before")
  @classmethod
  def _due_date_to_utc(cls, v: object) -> object:
    return _parse_dt_utc(v)


class TaskUpdateIn(BaseModel):
  version: int
  title: str | None = Field(default=None, min_length=1, max_length=500)
  description: str | None = None
  status: TaskStatus | None = None
  priority: TaskPriority | None = None
  dueDate: datetime | None = None
  assignees: list[str] | None = None
  labels: list[str] | None = None

  @field_validator("dueDate", mode="before")
  @classmethod
  def _due_date_to_utc(cls, v: object) -> object:
    return _parse_dt_utc(v)


class TaskMoveIn(BaseModel):
  columnId: str | None = None
  position: Position = "end"
  version: int | None = None


class TaskOut(BaseModel):
  id: str
  projectId: str
  columnId: str
  orderKey: float
  title: str
  description: str
  status: TaskStatus
  priority: TaskPriority
  dueDate: datetime | None = None
  assignees: list[str] = []
  labels: list[str] = []
  createdBy: str | None = None
  version: int
  createdAt: datetime
  updatedAt: datetime


class CommentCreateIn(BaseModel):
  body: str = Field(min_length=1, max_length=20000)


class CommentOut(BaseModel):
  id: str
  taskId: str
  authorId: str
  body: str
  createdAt: datetime


class ActivityOut(BaseModel):
  id: str
  taskId: str
  actorId: str | None
  action: str
  field: str | None = None
  oldValue: Any = None
  newValue: Any = None
  createdAt: datetime


class TaskDetailOut(TaskOut):
  comments: list[CommentOut] = []
  activity: list[ActivityOut] = []


class MoveOut(BaseModel):
  fromScopeId: str
  toScopeId: str
  index: int
  orderKey: float
  noop: bool
  attempts: int


class TaskMoveOut(MoveOut):
  task: TaskOut


class ColumnMoveOut(MoveOut):
  column: ColumnOut


class BoardColumnOut(ColumnOut):
  tasks: list[TaskOut] = []


class BoardOut(BaseModel):
  projectId: str
  columns: list[BoardColumnOut]


class RenormalizeOut(BaseModel):
  scopeId: str
  items: int
