from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.config import Settings
from taskboard.deps import get_current_user, get_db, get_settings
from taskboard.logging import get_logger
from taskboard.metrics import runtime_metrics
from taskboard.models import BoardColumn, Project, Task, User

logger = get_logger(__name__)

router = APIRouter(prefix="/system", tags=["system"])


def _as_state(ok: bool, warn: bool = False) -> str:
  if not ok:
    return "red"
  return "yellow" if warn else "green"


@router.get("/metrics")
async def get_system_metrics(
  _: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  settings: Settings = Depends(get_settings),
) -> dict:
  runtime = runtime_metrics.snapshot()

  db_ok = True
  counts: dict[str, int] = {}
  try:
    await db.execute(text("select 1"))
    for key, model in (("projects", Project), ("columns", BoardColumn), ("tasks", Task)):
      counts[key] = int((await db.execute(select(func.count()).select_from(model))).scalar_one() or 0)
  except Exception as exc:
    db_ok = False
    logger.warning("system_metrics_db_unavailable", error=str(exc))

  return {
    "state": _as_state(db_ok, warn=runtime["errorCount15m"] > 0 or runtime["moveConflictsSurfaced"] > 0),
    "version": settings.app_version,
    "buildSha": settings.build_sha,
    "generatedAt": datetime.now(timezone.utc),
    "database": {"ok": db_ok, **counts},
    "runtime": runtime,
  }
