"""Order keys for items positioned inside a scope.

A scope is the parent container that defines sibling order: a column for
tasks, a project for columns. Keys are sparse floats, so an item can be placed
between two neighbours without touching any other sibling. Keys are only ever
compared within one scope.
"""

from __future__ import annotations

import math
from typing import Iterable, Protocol, TypeVar, runtime_checkable

from taskboard.errors import KeySpaceExhausted

SEED_KEY = 0.0
DEFAULT_STEP = 1.0
DEFAULT_MIN_GAP = 1e-9


@runtime_checkable
class OrderedItem(Protocol):
  id: str
  order_key: float

  @property
  def scope_id(self) -> str: ...


T = TypeVar("T", bound=OrderedItem)


def sort_key(item: OrderedItem) -> tuple[float, str]:
  # Ties cannot happen for committed data; the id keeps corrupt data deterministic.
  return (item.order_key, item.id)


def ordered(items: Iterable[T]) -> list[T]:
  return sorted(items, key=sort_key)


def allocate_key(
  lo: float | None,
  hi: float | None,
  *,
  step: float = DEFAULT_STEP,
  min_gap: float = DEFAULT_MIN_GAP,
) -> float:
  """Return a key strictly between lo and hi (either bound may be open).

  Raises KeySpaceExhausted when float resolution leaves no usable key.
  """
  if lo is None and hi is None:
    return SEED_KEY
  if lo is None:
    key = hi - step
    if not key < hi:
      raise KeySpaceExhausted(f"no key below {hi!r}")
    return key
  if hi is None:
    key = lo + step
    if not lo < key:
      raise KeySpaceExhausted(f"no key above {lo!r}")
    return key
  if hi - lo <= min_gap:
    raise KeySpaceExhausted(f"gap between {lo!r} and {hi!r} is below {min_gap!r}")
  key = (lo + hi) / 2
  if not lo < key < hi:
    raise KeySpaceExhausted(f"no key between {lo!r} and {hi!r}")
  return key


def neighbours(keys: list[float], index: int) -> tuple[float | None, float | None]:
  """Keys around insertion point `index` of an ascending key list."""
  lo = keys[index - 1] if index > 0 else None
  hi = keys[index] if index < len(keys) else None
  return lo, hi


def spaced_keys(count: int, *, spacing: float) -> list[float]:
  return [idx * spacing for idx in range(count)]


def parking_keys(count: int, *, below: float) -> list[float]:
  """Distinct descending keys strictly under both `below` and zero.

  The stride starts at the spacing of floats near `below` and doubles until
  every key is exactly representable, so huge keys still park without ties.
  """
  if count <= 0:
    return []
  step = max(1.0, math.ulp(below))
  while True:
    top = min(0.0, below) - step
    keys = [top - idx * step for idx in range(count)]
    if keys[0] < below and all(a > b for a, b in zip(keys, keys[1:])):
      return keys
    step *= 2
