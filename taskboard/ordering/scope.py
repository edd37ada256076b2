"""Ordered membership of a single scope.

Every mutation claims the scope's version with a compare-and-swap UPDATE on
the parent row (the column for tasks, the project for columns). A writer that
planned against an older snapshot gets Conflict instead of writing a stale or
colliding key. Nothing here commits: the caller owns the transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from taskboard.config import Settings
from taskboard.errors import Conflict, KeySpaceExhausted, NotFound
from taskboard.logging import get_logger
from taskboard.metrics import runtime_metrics
from taskboard.models import BoardColumn, Project, Task
from taskboard.ordering.keys import DEFAULT_MIN_GAP, DEFAULT_STEP, allocate_key, neighbours, parking_keys, spaced_keys

logger = get_logger(__name__)

END = "end"
Position = int | Literal["end"]

DEFAULT_SPACING = 1024.0


@dataclass(frozen=True)
class ScopeKind:
  name: str
  item_model: type[Any]
  scope_attr: str
  parent_model: type[Any]
  version_attr: str
  # Attribute on the parent row naming the project the scope belongs to.
  parent_project_attr: str

  @property
  def item_scope_col(self) -> Any:
    return getattr(self.item_model, self.scope_attr)

  @property
  def version_col(self) -> Any:
    return getattr(self.parent_model, self.version_attr)

  @property
  def parent_project_col(self) -> Any:
    return getattr(self.parent_model, self.parent_project_attr)


TASKS_IN_COLUMN = ScopeKind(
  name="column",
  item_model=Task,
  scope_attr="column_id",
  parent_model=BoardColumn,
  version_attr="tasks_version",
  parent_project_attr="project_id",
)

COLUMNS_IN_PROJECT = ScopeKind(
  name="project",
  item_model=BoardColumn,
  scope_attr="project_id",
  parent_model=Project,
  version_attr="columns_version",
  parent_project_attr="id",
)


@dataclass(frozen=True)
class Placement:
  scope_id: str
  order_key: float
  index: int
  version: int
  noop: bool = False


def effective_index(position: Position | None, count: int) -> int:
  if position is None or position == END:
    return count
  if isinstance(position, bool) or not isinstance(position, int) or position < 0:
    raise ValueError(f"invalid position: {position!r}")
  return min(position, count)


class ScopeIndex:
  def __init__(
    self,
    db: AsyncSession,
    kind: ScopeKind,
    *,
    step: float = DEFAULT_STEP,
    spacing: float = DEFAULT_SPACING,
    min_gap: float = DEFAULT_MIN_GAP,
  ) -> None:
    self.db = db
    self.kind = kind
    self.step = step
    self.spacing = spacing
    self.min_gap = min_gap

  @classmethod
  def from_settings(cls, db: AsyncSession, kind: ScopeKind, settings: Settings) -> ScopeIndex:
    return cls(
      db,
      kind,
      step=settings.order_key_step,
      spacing=settings.order_key_spacing,
      min_gap=settings.order_key_min_gap,
    )

  async def scope_version(self, scope_id: str) -> int:
    res = await self.db.execute(select(self.kind.version_col).where(self.kind.parent_model.id == scope_id))
    version = res.scalar_one_or_none()
    if version is None:
      raise NotFound(f"{self.kind.name} not found", scope_id=scope_id)
    return int(version)

  async def scope_project_id(self, scope_id: str) -> str:
    res = await self.db.execute(select(self.kind.parent_project_col).where(self.kind.parent_model.id == scope_id))
    project_id = res.scalar_one_or_none()
    if project_id is None:
      raise NotFound(f"{self.kind.name} not found", scope_id=scope_id)
    return project_id

  async def members(self, scope_id: str) -> list[Any]:
    model = self.kind.item_model
    res = await self.db.execute(
      select(model).where(self.kind.item_scope_col == scope_id).order_by(model.order_key.asc(), model.id.asc())
    )
    return list(res.scalars().all())

  async def list_ordered(self, scope_id: str) -> list[str]:
    await self.scope_version(scope_id)
    model = self.kind.item_model
    res = await self.db.execute(
      select(model.id).where(self.kind.item_scope_col == scope_id).order_by(model.order_key.asc(), model.id.asc())
    )
    return list(res.scalars().all())

  async def plan(self, scope_id: str, position: Position | None = END, *, exclude_id: str | None = None) -> Placement:
    """Compute the key for placing an item at `position` among the scope's other members."""
    version = await self.scope_version(scope_id)
    items = await self.members(scope_id)

    current_index: int | None = None
    others: list[Any] = []
    for idx, it in enumerate(items):
      if exclude_id is not None and it.id == exclude_id:
        current_index = idx
        continue
      others.append(it)

    index = effective_index(position, len(others))
    if current_index is not None and current_index == index:
      return Placement(scope_id=scope_id, order_key=items[current_index].order_key, index=index, version=version, noop=True)

    lo, hi = neighbours([it.order_key for it in others], index)
    try:
      key = allocate_key(lo, hi, step=self.step, min_gap=self.min_gap)
    except KeySpaceExhausted as exc:
      raise KeySpaceExhausted(exc.message, scope_id=scope_id, item_id=exclude_id) from exc
    return Placement(scope_id=scope_id, order_key=key, index=index, version=version)

  async def allocate(self, scope_id: str, position: Position | None = END, *, exclude_id: str | None = None) -> Placement:
    """plan(), renormalizing the scope once if its key space is exhausted."""
    try:
      return await self.plan(scope_id, position, exclude_id=exclude_id)
    except KeySpaceExhausted as exc:
      logger.info("key_space_exhausted", scope=self.kind.name, scope_id=scope_id, item_id=exclude_id, reason=exc.message)
      await self.renormalize(scope_id)
      return await self.plan(scope_id, position, exclude_id=exclude_id)

  async def commit(self, placement: Placement, item: Any) -> float:
    """Write a planned placement. Conflict if the scope moved on since plan()."""
    if placement.noop:
      return item.order_key
    await self._claim(placement.scope_id, placement.version, item_id=item.id)
    setattr(item, self.kind.scope_attr, placement.scope_id)
    item.order_key = placement.order_key
    self.db.add(item)
    await self._flush(placement.scope_id, item_id=item.id)
    return placement.order_key

  async def insert(self, scope_id: str, item: Any, position: Position | None = END) -> float:
    # item must not be in the session yet: an autoflush would write its default key.
    placement = await self.allocate(scope_id, position)
    return await self.commit(placement, item)

  async def remove(self, scope_id: str, item_id: str) -> None:
    model = self.kind.item_model
    res = await self.db.execute(delete(model).where(model.id == item_id, self.kind.item_scope_col == scope_id))
    if res.rowcount != 1:
      raise NotFound(f"item not found in {self.kind.name}", scope_id=scope_id, item_id=item_id)
    await self.touch(scope_id)

  async def reposition(self, item_id: str, from_scope: str, to_scope: str, position: Position | None = END) -> Placement:
    model = self.kind.item_model
    res = await self.db.execute(select(model).where(model.id == item_id))
    item = res.scalar_one_or_none()
    if item is None:
      raise NotFound("item not found", scope_id=from_scope, item_id=item_id)
    if item.scope_id != from_scope:
      raise Conflict(f"item is no longer in this {self.kind.name}", scope_id=from_scope, item_id=item_id)
    placement = await self.allocate(to_scope, position, exclude_id=item_id)
    await self.commit(placement, item)
    if not placement.noop and from_scope != to_scope:
      await self.touch(from_scope)
    return placement

  async def renormalize(self, scope_id: str) -> int:
    """Rewrite every key in the scope to index * spacing."""
    version = await self.scope_version(scope_id)
    items = await self.members(scope_id)
    await self._claim(scope_id, version)
    if items:
      # Park everything below both the current minimum and zero first, so no
      # intermediate row collides with a sibling under the unique constraint.
      for it, key in zip(items, parking_keys(len(items), below=items[0].order_key)):
        it.order_key = key
      await self._flush(scope_id)
      for it, key in zip(items, spaced_keys(len(items), spacing=self.spacing)):
        it.order_key = key
      await self._flush(scope_id)
    runtime_metrics.observe_renormalization()
    logger.info("scope_renormalized", scope=self.kind.name, scope_id=scope_id, items=len(items))
    return len(items)

  async def touch(self, scope_id: str) -> None:
    """Bump the scope version unconditionally so in-flight plans against it conflict."""
    parent = self.kind.parent_model
    await self.db.execute(
      update(parent)
      .where(parent.id == scope_id)
      .values({self.kind.version_attr: self.kind.version_col + 1})
      .execution_options(synchronize_session=False)
    )

  async def _claim(self, scope_id: str, version: int, *, item_id: str | None = None) -> None:
    parent = self.kind.parent_model
    res = await self.db.execute(
      update(parent)
      .where(parent.id == scope_id, self.kind.version_col == version)
      .values({self.kind.version_attr: version + 1})
      .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
      raise Conflict(f"{self.kind.name} order changed concurrently", scope_id=scope_id, item_id=item_id)

  async def _flush(self, scope_id: str, *, item_id: str | None = None) -> None:
    try:
      await self.db.flush()
    except IntegrityError as exc:
      raise Conflict("order key already taken", scope_id=scope_id, item_id=item_id) from exc
    except StaleDataError as exc:
      raise Conflict("item changed concurrently", scope_id=scope_id, item_id=item_id) from exc
