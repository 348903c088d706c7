"""
Identifier Allocator.

Owns the run-scoped identifier table mapping ``(type_name, variant)`` keys to
the integers carried by instrumentation calls. ``(Type, None)`` is a key of
its own: the shared "unknown variant of Type" ID.

IDs are handed out in first-seen order starting at 0 and never change for the
rest of the run. Location numbers (for call templates with ``{location_id}``)
start at 1 and are unique per site.
"""

import threading
from typing import Dict, List, Optional, Tuple

IdentifierKey = Tuple[str, Optional[str]]

STATE_ID_BASE = 0
LOCATION_ID_BASE = 1


class IdentifierAllocator:
  """
  Thread-safe, monotonic ID table.

  Only this class mutates the table. All mutations happen under one lock.
  """

  def __init__(self) -> None:
    self._lock = threading.Lock()
    self._table: Dict[IdentifierKey, int] = {}
    self._next_state = STATE_ID_BASE
    self._next_location = LOCATION_ID_BASE

  def allocate(self, type_name: str, variant: Optional[str] = None) -> int:
    """
    Returns the ID of a (type, variant) pair, assigning one on first request.

    Args:
        type_name: Enum type name.
        variant: Variant name, or None for the type's runtime-only wildcard.

    Returns:
        int: The stable ID of the key.
    """
    key = (type_name, variant)
    with self._lock:
      existing = self._table.get(key)
      if existing is not None:
        return existing
      assigned = self._next_state
      self._table[key] = assigned
      self._next_state += 1
      return assigned

  def next_location(self) -> int:
    """Returns a fresh per-site location number."""
    with self._lock:
      assigned = self._next_location
      self._next_location += 1
      return assigned

  def lookup(self, type_name: str, variant: Optional[str] = None) -> Optional[int]:
    with self._lock:
      return self._table.get((type_name, variant))

  def __len__(self) -> int:
    with self._lock:
      return len(self._table)

  def snapshot(self) -> Dict[IdentifierKey, int]:
    """Copy of the table, safe to iterate while other threads allocate."""
    with self._lock:
      return dict(self._table)

  def export(self) -> List[Dict[str, object]]:
    """
    Serializable form of the table, ordered by ID.

    Returns:
        List of ``{"id", "type", "variant"}`` dicts; ``variant`` is None for
        wildcard entries.
    """
    entries = sorted(self.snapshot().items(), key=lambda item: item[1])
    return [{"id": state_id, "type": type_name, "variant": variant} for (type_name, variant), state_id in entries]
