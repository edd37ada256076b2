from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from taskboard.config import Settings
from taskboard.models import Base


class Database:
  """Engine plus session factory. Built by the process entry point, never at import time."""

  def __init__(self, url: str, *, echo: bool = False) -> None:
    self.url = url
    self.engine: AsyncEngine = create_async_engine(url, echo=echo, pool_pre_ping=True)
    self.sessionmaker = async_sessionmaker(self.engine, expire_on_commit=False)

  @classmethod
  def from_settings(cls, settings: Settings) -> Database:
    return cls(settings.database_url, echo=settings.database_echo)

  def session(self) -> AsyncSession:
    return self.sessionmaker()

  async def create_all(self) -> None:
    async with self.engine.begin() as conn:
      await conn.run_sync(Base.metadata.create_all)

  async def drop_all(self) -> None:
    async with self.engine.begin() as conn:
      await conn.run_sync(Base.metadata.drop_all)

  async def dispose(self) -> None:
    await self.engine.dispose()
