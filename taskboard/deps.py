from __future__ import annotations

from typing import AsyncIterator

import structlog
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.config import Settings
from taskboard.errors import Forbidden, NotFound
from taskboard.models import ApiToken, Project, ProjectMember, User
from taskboard.ordering.moves import Authorizer
from taskboard.security import api_token_hash


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
  async with request.app.state.db.session() as session:
    yield session


def get_settings(request: Request) -> Settings:
  return request.app.state.settings


async def get_current_user(
  request: Request,
  db: AsyncSession = Depends(get_db),
  settings: Settings = Depends(get_settings),
) -> User:
  auth = request.headers.get("authorization")
  if not auth or not auth.lower().startswith("bearer "):
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
  token = auth.split(" ", 1)[1].strip()
  if not token:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

  tres = await db.execute(
    select(ApiToken).where(ApiToken.token_hash == api_token_hash(token, settings.app_secret), ApiToken.revoked_at.is_(None))
  )
  t = tres.scalar_one_or_none()
  if not t:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
  ures = await db.execute(select(User).where(User.id == t.user_id))
  u = ures.scalar_one_or_none()
  if not u:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
  if not u.active:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User disabled")
  structlog.contextvars.bind_contextvars(user_id=u.id)
  return u


async def project_role(project_id: str, user_id: str, db: AsyncSession) -> str:
  """Membership gate by plain user id. Returns the caller's role."""
  res = await db.execute(select(Project.owner_id).where(Project.id == project_id))
  owner_id = res.scalar_one_or_none()
  if owner_id is None:
    raise NotFound("project not found", scope_id=project_id)
  if owner_id == user_id:
    return "owner"
  mres = await db.execute(
    select(ProjectMember.role).where(ProjectMember.project_id == project_id, ProjectMember.user_id == user_id)
  )
  role = mres.scalar_one_or_none()
  if role is None:
    raise Forbidden("not a project member", scope_id=project_id)
  return role


async def require_project_member(project_id: str, user: User, db: AsyncSession) -> str:
  """Membership gate for every project-scoped read and write. Returns the caller's role."""
  return await project_role(project_id, user.id, db)


async def require_project_owner(project_id: str, user: User, db: AsyncSession) -> Project:
  res = await db.execute(select(Project).where(Project.id == project_id))
  p = res.scalar_one_or_none()
  if not p:
    raise NotFound("project not found", scope_id=project_id)
  if p.owner_id != user.id:
    raise Forbidden("only the project owner can do this", scope_id=project_id)
  return p


def member_authorizer(user_id: str, db: AsyncSession) -> Authorizer:
  # Takes the id, not the User: a retry rolls the session back and expires loaded rows.
  async def _authorize(project_id: str) -> None:
    await project_role(project_id, user_id, db)

  return _authorize
