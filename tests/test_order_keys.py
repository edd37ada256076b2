from __future__ import annotations

from dataclasses import dataclass

import pytest

from taskboard.errors import KeySpaceExhausted
from taskboard.ordering.keys import SEED_KEY, OrderedItem, allocate_key, neighbours, ordered, parking_keys, spaced_keys


@dataclass
class Item:
  id: str
  order_key: float
  column_id: str = "c1"

  @property
  def scope_id(self) -> str:
    return self.column_id


def test_empty_scope_gets_seed_key() -> None:
  assert allocate_key(None, None) == SEED_KEY


def test_append_and_prepend_step_away_from_neighbour() -> None:
  assert allocate_key(5.0, None) == 6.0
  assert allocate_key(None, 5.0) == 4.0
  assert allocate_key(5.0, None, step=0.5) == 5.5


def test_between_is_midpoint_and_strictly_inside() -> None:
  key = allocate_key(0.0, 10.0)
  assert key == 5.0
  assert 0.0 < allocate_key(0.0, 1e-6) < 1e-6


def test_gap_at_min_gap_is_exhausted() -> None:
  with pytest.raises(KeySpaceExhausted):
    allocate_key(1.0, 1.0 + 1e-10)
  with pytest.raises(KeySpaceExhausted):
    allocate_key(1.0, 2.0, min_gap=1.0)


def test_float_resolution_limit_is_exhausted() -> None:
  lo = 1.0
  hi = 1.0 + 2.220446049250313e-16
  with pytest.raises(KeySpaceExhausted):
    allocate_key(lo, hi, min_gap=0.0)
  # Appending past the largest finite float cannot produce a bigger key.
  with pytest.raises(KeySpaceExhausted):
    allocate_key(1.7976931348623157e308, None)


def test_repeated_bisection_eventually_exhausts() -> None:
  lo, hi = 0.0, 1.0
  with pytest.raises(KeySpaceExhausted):
    for _ in range(200):
      hi = allocate_key(lo, hi)


def test_neighbours_around_insertion_point() -> None:
  keys = [0.0, 10.0, 20.0]
  assert neighbours(keys, 0) == (None, 0.0)
  assert neighbours(keys, 1) == (0.0, 10.0)
  assert neighbours(keys, 3) == (20.0, None)
  assert neighbours([], 0) == (None, None)


def test_ordered_sorts_by_key_then_id() -> None:
  items = [Item("b", 2.0), Item("z", 1.0), Item("a", 2.0), Item("m", -3.5)]
  assert [i.id for i in ordered(items)] == ["m", "z", "a", "b"]


def test_item_satisfies_ordered_item_protocol() -> None:
  assert isinstance(Item("a", 0.0), OrderedItem)


def test_spaced_keys() -> None:
  assert spaced_keys(4, spacing=1024.0) == [0.0, 1024.0, 2048.0, 3072.0]
  assert spaced_keys(0, spacing=1024.0) == []


@pytest.mark.parametrize("below", [0.0, 5.0, -3.0, -1e17, -2.0**60])
def test_parking_keys_are_distinct_and_below_everything(below: float) -> None:
  keys = parking_keys(5, below=below)
  assert len(set(keys)) == 5
  assert keys == sorted(keys, reverse=True)
  assert keys[0] < min(below, 0.0)


def test_parking_keys_small_magnitudes_use_unit_stride() -> None:
  assert parking_keys(3, below=2.0) == [-1.0, -2.0, -3.0]
  assert parking_keys(0, below=2.0) == []
