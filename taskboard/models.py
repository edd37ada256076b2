from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Double, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
  return datetime.now(timezone.utc)


def new_id() -> str:
  return str(uuid.uuid4())


class Base(DeclarativeBase):
  pass


class User(Base):
  __tablename__ = "users"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
  email: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
  name: Mapped[str] = mapped_column(String, nullable=False)
  active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class ApiToken(Base):
  __tablename__ = "api_tokens"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
  user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
  name: Mapped[str] = mapped_column(String, nullable=False)
  token_hash: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
  token_hint: Mapped[str] = mapped_column(String, nullable=False)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
  last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Project(Base):
  __tablename__ = "projects"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
  name: Mapped[str] = mapped_column(String, nullable=False)
  description: Mapped[str] = mapped_column(Text, nullable=False, default="")
  owner_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
  # Scope version of the column ordering; bumped by every column insert/move/renormalize.
  columns_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class ProjectMember(Base):
  __tablename__ = "project_members"
  __table_args__ = (UniqueConstraint("project_id", "user_id", name="ux_project_member_project_user"),)

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
  project_id: Mapped[str] = mapped_column(String(36), ForeignKey("projects.id"), nullable=False, index=True)
  user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
  role: Mapped[str] = mapped_column(String, nullable=False)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class BoardColumn(Base):
  __tablename__ = "columns"
  __table_args__ = (UniqueConstraint("project_id", "order_key", name="ux_columns_project_order_key"),)

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
  project_id: Mapped[str] = mapped_column(String(36), ForeignKey("projects.id"), nullable=False, index=True)
  name: Mapped[str] = mapped_column(String, nullable=False)
  order_key: Mapped[float] = mapped_column(Double, nullable=False, default=0.0)
  # Scope version of the task ordering inside this column.
  tasks_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  version: Mapped[int] = mapped_column(Integer, nullable=False)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

  __mapper_args__ = {"version_id_col": version}

  @property
  def scope_id(self) -> str:
    return self.project_id


class Task(Base):
  __tablename__ = "tasks"
  __table_args__ = (
    UniqueConstraint("column_id", "order_key", name="ux_tasks_column_order_key"),
    Index("ix_tasks_project_column", "project_id", "column_id"),
  )

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
  project_id: Mapped[str] = mapped_column(String(36), ForeignKey("projects.id"), nullable=False)
  column_id: Mapped[str] = mapped_column(String(36), ForeignKey("columns.id"), nullable=False)
  order_key: Mapped[float] = mapped_column(Double, nullable=False, default=0.0)
  title: Mapped[str] = mapped_column(String, nullable=False)
  description: Mapped[str] = mapped_column(Text, nullable=False, default="")
  status: Mapped[str] = mapped_column(String, nullable=False, default="todo")
  priority: Mapped[str] = mapped_column(String, nullable=False, default="medium")
  due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
  assignees: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
  labels: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
  created_by: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
  version: Mapped[int] = mapped_column(Integer, nullable=False)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

  __mapper_args__ = {"version_id_col": version}

  @property
  def scope_id(self) -> str:
    return self.column_id


class Comment(Base):
  __tablename__ = "comments"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
  task_id: Mapped[str] = mapped_column(String(36), ForeignKey("tasks.id"), nullable=False, index=True)
  author_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
  body: Mapped[str] = mapped_column(Text, nullable=False)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class TaskActivity(Base):
  __tablename__ = "task_activity"
  __table_args__ = (UniqueConstraint("task_id", "seq", name="ux_task_activity_task_seq"),)

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
  task_id: Mapped[str] = mapped_column(String(36), ForeignKey("tasks.id"), nullable=False, index=True)
  actor_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
  action: Mapped[str] = mapped_column(String, nullable=False)
  field: Mapped[str | None] = mapped_column(String, nullable=True)
  old_value: Mapped[Any] = mapped_column(JSON, nullable=True)
  new_value: Mapped[Any] = mapped_column(JSON, nullable=True)
  # Monotonic per task; created_at alone can tie within one request.
  seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
