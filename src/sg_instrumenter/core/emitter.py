"""
Emitter.

Applies the planned insertions of a unit to its original bytes and produces
the instrumented text. Everything outside the insertion points is copied
verbatim, so formatting and comments survive untouched.
"""

import logging
from typing import Iterable, List, Tuple

from sg_instrumenter.core.loader import SourceUnit, find_first_error, parse_source
from sg_instrumenter.core.rewriter import Insertion, RewriteEdit
from sg_instrumenter.enums import UnitState
from sg_instrumenter.errors import AnalysisError, EditConflictError

logger = logging.getLogger(__name__)


def check_conflicts(edits: Iterable[RewriteEdit], limit: int) -> List[Insertion]:
  """
  Flattens edits into insertions sorted by offset.

  Args:
      edits: Planned edits of one unit.
      limit: Length of the source in bytes.

  Returns:
      All insertions in ascending offset order.

  Raises:
      EditConflictError: If two edits insert at the same offset or an offset
          lies outside the source.
  """
  owned: List[Tuple[int, int, Insertion]] = []
  for owner, edit in enumerate(edits):
    for insertion in edit.insertions:
      if not 0 <= insertion.offset <= limit:
        raise EditConflictError(f"Insertion offset {insertion.offset} outside source of {limit} bytes", insertion.offset)
      owned.append((insertion.offset, owner, insertion))
  owned.sort(key=lambda item: (item[0], item[1]))

  for (offset, owner, _), (next_offset, next_owner, _) in zip(owned, owned[1:]):
    if offset == next_offset and owner != next_owner:
      raise EditConflictError(f"Two edits insert at byte {offset}", offset)
  return [insertion for _, _, insertion in owned]


def emit(unit: SourceUnit, edits: Iterable[RewriteEdit], validate: bool = True) -> str:
  """
  Produces the instrumented text of a unit.

  Args:
      unit: The unit, in state EDITED.
      edits: Edits planned for the unit.
      validate: Re-parse the output and reject syntax errors.

  Returns:
      str: The rewritten source text.

  Raises:
      EditConflictError: On overlapping insertions.
      AnalysisError: If the unit is not EDITED or the output does not parse.
  """
  insertions = check_conflicts(edits, len(unit.source))

  output = bytearray(unit.source)
  for insertion in reversed(insertions):
    output[insertion.offset : insertion.offset] = insertion.text.encode("utf-8")
  result = bytes(output)

  if validate and insertions:
    tree = parse_source(result)
    if tree.root_node.has_error:
      bad = find_first_error(tree.root_node) or tree.root_node
      raise AnalysisError(f"{unit.label}: instrumented output does not parse (line {bad.start_point[0] + 1})")

  unit.advance(UnitState.EMITTED)
  logger.debug("%s: applied %d insertions", unit.label, len(insertions))
  return result.decode("utf-8")
