from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.activity import delete_task_children
from taskboard.config import Settings
from taskboard.deps import get_current_user, get_db, get_settings, require_project_member, require_project_owner
from taskboard.errors import NotFound
from taskboard.logging import get_logger
from taskboard.models import BoardColumn, Project, ProjectMember, Task, User
from taskboard.ordering.scope import COLUMNS_IN_PROJECT, ScopeIndex
from taskboard.schemas import MemberInviteIn, ProjectCreateIn, ProjectMemberOut, ProjectOut, ProjectUpdateIn

logger = get_logger(__name__)

router = APIRouter(prefix="/projects", tags=["projects"])

# One column per task status, in workflow order.
DEFAULT_COLUMNS = ("To Do", "In Progress", "In Review", "Done")


async def _members_out(db: AsyncSession, project_id: str) -> list[ProjectMemberOut]:
  res = await db.execute(
    select(ProjectMember, User)
    .join(User, User.id == ProjectMember.user_id)
    .where(ProjectMember.project_id == project_id)
    .order_by(ProjectMember.created_at.asc(), ProjectMember.id.asc())
  )
  return [ProjectMemberOut(userId=u.id, email=u.email, name=u.name, role=m.role) for m, u in res.all()]


async def _project_out(db: AsyncSession, p: Project) -> ProjectOut:
  return ProjectOut(
    id=p.id,
    name=p.name,
    description=p.description,
    ownerId=p.owner_id,
    members=await _members_out(db, p.id),
    createdAt=p.created_at,
    updatedAt=p.updated_at,
  )


async def _delete_project_everything(db: AsyncSession, *, project_id: str) -> None:
  await delete_task_children(db, task_ids=select(Task.id).where(Task.project_id == project_id))
  await db.execute(delete(Task).where(Task.project_id == project_id))
  await db.execute(delete(BoardColumn).where(BoardColumn.project_id == project_id))
  await db.execute(delete(ProjectMember).where(ProjectMember.project_id == project_id))
  await db.execute(delete(Project).where(Project.id == project_id))


@router.get("", response_model=list[ProjectOut])
async def list_projects(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[ProjectOut]:
  res = await db.execute(
    select(Project)
    .join(ProjectMember, ProjectMember.project_id == Project.id)
    .where(ProjectMember.user_id == user.id)
    .order_by(Project.updated_at.desc(), Project.id.asc())
  )
  return [await _project_out(db, p) for p in res.scalars().all()]


@router.post("", response_model=ProjectOut)
async def create_project(
  payload: ProjectCreateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  settings: Settings = Depends(get_settings),
) -> ProjectOut:
  name = payload.name.strip()
  if not name:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="name is required")

  p = Project(name=name, description=payload.description, owner_id=user.id, columns_version=0)
  db.add(p)
  await db.flush()
  db.add(ProjectMember(project_id=p.id, user_id=user.id, role="owner"))

  columns = ScopeIndex.from_settings(db, COLUMNS_IN_PROJECT, settings)
  for col_name in DEFAULT_COLUMNS:
    await columns.insert(p.id, BoardColumn(project_id=p.id, name=col_name, tasks_version=0))

  await db.commit()
  logger.info("project_created", project_id=p.id)
  return await _project_out(db, p)


@router.get("/{project_id}", response_model=ProjectOut)
async def get_project(project_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> ProjectOut:
  await require_project_member(project_id, user, db)
  res = await db.execute(select(Project).where(Project.id == project_id))
  return await _project_out(db, res.scalar_one())


@router.patch("/{project_id}", response_model=ProjectOut)
async def update_project(
  project_id: str,
  payload: ProjectUpdateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> ProjectOut:
  p = await require_project_owner(project_id, user, db)
  if payload.name is not None:
    name = payload.name.strip()
    if not name:
      raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="name is required")
    p.name = name
  if payload.description is not None:
    p.description = payload.description
  await db.commit()
  return await _project_out(db, p)


@router.delete("/{project_id}")
async def delete_project(project_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> dict:
  await require_project_owner(project_id, user, db)
  await _delete_project_everything(db, project_id=project_id)
  await db.commit()
  logger.info("project_deleted", project_id=project_id)
  return {"ok": True}


@router.get("/{project_id}/members", response_model=list[ProjectMemberOut])
async def list_members(project_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[ProjectMemberOut]:
  await require_project_member(project_id, user, db)
  return await _members_out(db, project_id)


@router.post("/{project_id}/members", response_model=ProjectMemberOut)
async def invite_member(
  project_id: str,
  payload: MemberInviteIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> ProjectMemberOut:
  await require_project_owner(project_id, user, db)
  email = payload.email.strip().lower()
  ures = await db.execute(select(User).where(User.email == email))
  u = ures.scalar_one_or_none()
  if not u:
    raise NotFound("user not found", scope_id=project_id)
  existing = await db.execute(select(ProjectMember.id).where(ProjectMember.project_id == project_id, ProjectMember.user_id == u.id))
  if existing.scalar_one_or_none():
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User is already a member")
  db.add(ProjectMember(project_id=project_id, user_id=u.id, role=payload.role))
  await db.commit()
  logger.info("project_member_added", project_id=project_id, member_id=u.id, role=payload.role)
  return ProjectMemberOut(userId=u.id, email=u.email, name=u.name, role=payload.role)


@router.delete("/{project_id}/members/{member_id}")
async def remove_member(
  project_id: str,
  member_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> dict:
  p = await require_project_owner(project_id, user, db)
  if member_id == p.owner_id:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="The owner cannot be removed")
  res = await db.execute(delete(ProjectMember).where(ProjectMember.project_id == project_id, ProjectMember.user_id == member_id))
  if res.rowcount != 1:
    raise NotFound("member not found", scope_id=project_id, item_id=member_id)
  await db.commit()
  logger.info("project_member_removed", project_id=project_id, member_id=member_id)
  return {"ok": True}
