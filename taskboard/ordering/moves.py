"""Relocating a task or column, with optimistic retries.

A move walks REQUESTED -> VALIDATED -> KEY_ALLOCATED -> COMMITTED. Any failure
before COMMITTED lands in ABORTED with the session rolled back, so readers
never see an item in zero or two scopes. A retryable Conflict restarts the
walk from REQUESTED against fresh state, up to `max_attempts`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.config import Settings
from taskboard.errors import Conflict, NotFound
from taskboard.logging import get_logger
from taskboard.metrics import runtime_metrics
from taskboard.ordering.scope import END, Placement, Position, ScopeIndex, ScopeKind

logger = get_logger(__name__)

R = TypeVar("R")

Authorizer = Callable[[str], Awaitable[Any]]
BeforeCommit = Callable[["MoveResult"], Awaitable[None]]


class MoveState(str, Enum):
  REQUESTED = "requested"
  VALIDATED = "validated"
  KEY_ALLOCATED = "key_allocated"
  COMMITTED = "committed"
  ABORTED = "aborted"


_TRANSITIONS: dict[MoveState, frozenset[MoveState]] = {
  MoveState.REQUESTED: frozenset({MoveState.VALIDATED, MoveState.ABORTED}),
  MoveState.VALIDATED: frozenset({MoveState.KEY_ALLOCATED, MoveState.ABORTED}),
  MoveState.KEY_ALLOCATED: frozenset({MoveState.COMMITTED, MoveState.ABORTED}),
  MoveState.COMMITTED: frozenset(),
  MoveState.ABORTED: frozenset({MoveState.REQUESTED}),
}


@dataclass
class MoveRequest:
  item_id: str
  target_scope_id: str | None = None
  position: Position = END
  expected_version: int | None = None


@dataclass
class MoveResult:
  item: Any
  from_scope_id: str
  to_scope_id: str
  order_key: float
  index: int
  noop: bool
  attempts: int


async def retry_on_conflict(
  db: AsyncSession,
  operation: Callable[[], Awaitable[R]],
  *,
  attempts: int,
  **context: Any,
) -> R:
  """Run `operation` (which must commit itself), rolling back and retrying on retryable Conflict."""
  attempt = 0
  while True:
    attempt += 1
    try:
      return await operation()
    except Conflict as exc:
      await db.rollback()
      if not exc.retryable or attempt >= max(1, attempts):
        runtime_metrics.observe_conflict(surfaced=True)
        logger.warning("order_conflict_surfaced", attempt=attempt, scope_id=exc.scope_id, item_id=exc.item_id, **context)
        raise
      runtime_metrics.observe_conflict(surfaced=False)
      logger.info("order_conflict_retry", attempt=attempt, scope_id=exc.scope_id, item_id=exc.item_id, **context)


class MoveTransaction:
  def __init__(
    self,
    db: AsyncSession,
    kind: ScopeKind,
    request: MoveRequest,
    *,
    authorize: Authorizer,
    index: ScopeIndex | None = None,
    max_attempts: int = 3,
    before_commit: BeforeCommit | None = None,
  ) -> None:
    self.db = db
    self.kind = kind
    self.request = request
    self.authorize = authorize
    self.index = index or ScopeIndex(db, kind)
    self.max_attempts = max_attempts
    self.before_commit = before_commit
    self.state = MoveState.REQUESTED
    self.history: list[MoveState] = [MoveState.REQUESTED]
    self.attempts = 0

  @classmethod
  def from_settings(
    cls,
    db: AsyncSession,
    kind: ScopeKind,
    request: MoveRequest,
    settings: Settings,
    *,
    authorize: Authorizer,
    before_commit: BeforeCommit | None = None,
  ) -> MoveTransaction:
    return cls(
      db,
      kind,
      request,
      authorize=authorize,
      index=ScopeIndex.from_settings(db, kind, settings),
      max_attempts=settings.move_max_attempts,
      before_commit=before_commit,
    )

  def _transition(self, new_state: MoveState) -> None:
    if new_state not in _TRANSITIONS[self.state]:
      raise RuntimeError(f"illegal move transition {self.state.value} -> {new_state.value}")
    self.state = new_state
    self.history.append(new_state)

  async def execute(self) -> MoveResult:
    return await retry_on_conflict(
      self.db,
      self._run_once,
      attempts=self.max_attempts,
      action="move",
      scope=self.kind.name,
    )

  async def _run_once(self) -> MoveResult:
    if self.state is MoveState.ABORTED:
      self._transition(MoveState.REQUESTED)
    self.attempts += 1
    try:
      return await self._attempt()
    except Exception:
      self._transition(MoveState.ABORTED)
      await self.db.rollback()
      raise

  async def _attempt(self) -> MoveResult:
    req = self.request
    model = self.kind.item_model

    res = await self.db.execute(select(model).where(model.id == req.item_id))
    item = res.scalar_one_or_none()
    if item is None:
      raise NotFound("item not found", item_id=req.item_id)
    await self.authorize(item.project_id)
    from_scope = item.scope_id
    if req.expected_version is not None and item.version != req.expected_version:
      raise Conflict("item version is stale", scope_id=from_scope, item_id=item.id, retryable=False)

    to_scope = req.target_scope_id or from_scope
    if await self.index.scope_project_id(to_scope) != item.project_id:
      raise NotFound(f"{self.kind.name} not found in this project", scope_id=to_scope, item_id=item.id)
    self._transition(MoveState.VALIDATED)

    placement: Placement = await self.index.allocate(to_scope, req.position, exclude_id=item.id)
    self._transition(MoveState.KEY_ALLOCATED)

    if not placement.noop:
      await self.index.commit(placement, item)
      if from_scope != to_scope:
        await self.index.touch(from_scope)

    result = MoveResult(
      item=item,
      from_scope_id=from_scope,
      to_scope_id=to_scope,
      order_key=placement.order_key,
      index=placement.index,
      noop=placement.noop,
      attempts=self.attempts,
    )
    if self.before_commit is not None:
      await self.before_commit(result)
    await self.db.commit()
    self._transition(MoveState.COMMITTED)
    logger.info(
      "move_committed",
      scope=self.kind.name,
      item_id=item.id,
      from_scope_id=from_scope,
      to_scope_id=to_scope,
      index=placement.index,
      noop=placement.noop,
      attempts=self.attempts,
    )
    return result
