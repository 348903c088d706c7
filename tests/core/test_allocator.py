"""
Tests for the Identifier Allocator.
"""

from concurrent.futures import ThreadPoolExecutor

from sg_instrumenter.core.allocator import IdentifierAllocator


def test_ids_start_at_zero_and_are_stable():
  alloc = IdentifierAllocator()

  assert alloc.allocate("State", "Idle") == 0
  assert alloc.allocate("State", "Busy") == 1
  assert alloc.allocate("State", "Idle") == 0
  assert len(alloc) == 2


def test_wildcard_is_its_own_key():
  alloc = IdentifierAllocator()
  idle = alloc.allocate("State", "Idle")
  wildcard = alloc.allocate("State", None)

  assert wildcard != idle
  assert alloc.allocate("State") == wildcard
  assert alloc.lookup("State", None) == wildcard
  assert alloc.lookup("Other", None) is None


def test_same_variant_name_in_different_types():
  alloc = IdentifierAllocator()
  assert alloc.allocate("A", "Idle") != alloc.allocate("B", "Idle")


def test_locations_start_at_one():
  alloc = IdentifierAllocator()
  assert [alloc.next_location() for _ in range(3)] == [1, 2, 3]
  assert len(alloc) == 0


def test_concurrent_allocation_is_unique():
  """Many threads requesting overlapping keys never produce duplicate IDs."""
  alloc = IdentifierAllocator()
  keys = [("T", f"V{i % 50}") for i in range(2000)]

  with ThreadPoolExecutor(max_workers=8) as pool:
    results = list(pool.map(lambda key: (key, alloc.allocate(*key)), keys))

  by_key = {}
  for key, state_id in results:
    by_key.setdefault(key, set()).add(state_id)

  assert all(len(ids) == 1 for ids in by_key.values())
  assert sorted(ids.pop() for ids in by_key.values()) == list(range(50))


def test_export_ordered_by_id():
  alloc = IdentifierAllocator()
  alloc.allocate("State", "Busy")
  alloc.allocate("State", None)

  assert alloc.export() == [
    {"id": 0, "type": "State", "variant": "Busy"},
    {"id": 1, "type": "State", "variant": None},
  ]
