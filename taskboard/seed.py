"""Provision a user and an API token out of band.

  python -m taskboard.seed --email ada@example.com --name Ada [--token-name laptop] [--demo]

The plaintext token is printed once; only its keyed hash is stored.
"""

from __future__ import annotations

import argparse
import asyncio

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.config import Settings
from taskboard.db import Database
from taskboard.models import ApiToken, BoardColumn, Project, ProjectMember, Task, User
from taskboard.ordering.scope import COLUMNS_IN_PROJECT, TASKS_IN_COLUMN, ScopeIndex
from taskboard.security import api_token_hash, api_token_hint, new_api_token

DEMO_PROJECT_NAME = "Taskboard Demo"


async def ensure_user(db: AsyncSession, *, email: str, name: str) -> User:
  email = email.strip().lower()
  res = await db.execute(select(User).where(User.email == email))
  u = res.scalar_one_or_none()
  if not u:
    u = User(email=email, name=name.strip() or email, active=True)
    db.add(u)
    await db.flush()
  return u


async def issue_token(db: AsyncSession, *, user: User, token_name: str, secret: str) -> str:
  token = new_api_token()
  db.add(ApiToken(user_id=user.id, name=token_name, token_hash=api_token_hash(token, secret), token_hint=api_token_hint(token)))
  await db.flush()
  return token


async def ensure_demo_project(db: AsyncSession, *, owner: User, settings: Settings) -> Project:
  res = await db.execute(select(Project).where(Project.name == DEMO_PROJECT_NAME, Project.owner_id == owner.id))
  p = res.scalar_one_or_none()
  if p:
    return p
  p = Project(name=DEMO_PROJECT_NAME, description="Sample board", owner_id=owner.id, columns_version=0)
  db.add(p)
  await db.flush()
  db.add(ProjectMember(project_id=p.id, user_id=owner.id, role="owner"))

  columns = ScopeIndex.from_settings(db, COLUMNS_IN_PROJECT, settings)
  tasks = ScopeIndex.from_settings(db, TASKS_IN_COLUMN, settings)
  samples = {
    "To Do": ["Try moving tasks", "Reorder columns"],
    "In Progress": ["Filter the board by label"],
    "In Review": [],
    "Done": ["Create a project"],
  }
  for col_name, titles in samples.items():
    col = BoardColumn(project_id=p.id, name=col_name, tasks_version=0)
    await columns.insert(p.id, col)
    for title in titles:
      await tasks.insert(col.id, Task(project_id=p.id, title=title, labels=["demo"], created_by=owner.id))
  return p


async def seed(settings: Settings, *, email: str, name: str, token_name: str, demo: bool = False) -> str:
  database = Database.from_settings(settings)
  try:
    async with database.session() as db:
      user = await ensure_user(db, email=email, name=name)
      token = await issue_token(db, user=user, token_name=token_name, secret=settings.app_secret)
      if demo:
        await ensure_demo_project(db, owner=user, settings=settings)
      await db.commit()
  finally:
    await database.dispose()
  return token


def main() -> None:
  parser = argparse.ArgumentParser(prog="taskboard.seed", description="Create a user (if needed) and print a new API token")
  parser.add_argument("--email", required=True)
  parser.add_argument("--name", required=True)
  parser.add_argument("--token-name", default="cli")
  parser.add_argument("--demo", action="store_true", help="also create a sample project owned by the user")
  args = parser.parse_args()

  token = asyncio.run(seed(Settings(), email=args.email, name=args.name, token_name=args.token_name, demo=args.demo))
  print(f"API token for {args.email.strip().lower()}:")
  print(f"  {token}")


if __name__ == "__main__":
  main()
