"""
Rewriter.

Turns an `InstrumentationSite` plus its allocated IDs into a `RewriteEdit`:
a small set of text insertions at byte offsets of the original source. The
original text is never deleted or reordered, so the right-hand side of the
assignment keeps being evaluated exactly once at its original point and the
instrumentation call runs after the store has completed.

Placement by site kind:

- **Statements** (``let``, ``=``, field/deref/compound assignment): the call
  goes on a new line after the statement, with the same indentation and the
  statement's ``#[cfg(..)]`` attributes.
- **Block tail** ``{ s = X }``: ``;`` and the call are appended, so the block
  still evaluates to ``()``.
- **Match arm / closure body** ``=> s = X``: wrapped as ``{ s = X; call }``.
- **Call argument** ``f(State::A)``: wrapped as ``{ call State::A }``.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

from sg_instrumenter.config import InstrumenterConfig
from sg_instrumenter.core.loader import SourceUnit
from sg_instrumenter.core.locator import InstrumentationSite
from sg_instrumenter.enums import SiteKind


@dataclass(frozen=True)
class Insertion:
  """Text spliced in at a byte offset of the original source."""

  offset: int
  text: str


@dataclass(frozen=True)
class RewriteEdit:
  """
  All insertions planned for one site.

  Attributes:
      site: The site being instrumented.
      state_id: ID allocated for the site's (type, variant) key.
      location_id: Per-site location number (0 when the template has none).
      call: The rendered instrumentation statement.
      insertions: Insertions in ascending offset order.
  """

  site: InstrumentationSite
  state_id: int
  location_id: int
  call: str
  insertions: Tuple[Insertion, ...]


class Rewriter:
  """
  Plans the edits for the sites of one unit.
  """

  def __init__(self, unit: SourceUnit, config: Optional[InstrumenterConfig] = None):
    self.unit = unit
    self.config = config or InstrumenterConfig()

  def plan_edit(self, site: InstrumentationSite, state_id: int, location_id: int = 0) -> RewriteEdit:
    """
    Builds the insertions that host the instrumentation call for a site.

    Args:
        site: Located site.
        state_id: Allocated ID for ``site.key``.
        location_id: Per-site location number.

    Returns:
        RewriteEdit: The planned insertions.
    """
    call = self.config.render_call(state_id, location_id)
    kind = site.kind

    if kind in (SiteKind.MATCH_ARM, SiteKind.CLOSURE_BODY):
      insertions = (
        Insertion(site.start_byte, "{ "),
        Insertion(site.end_byte, f"; {call} }}"),
      )
    elif kind == SiteKind.CALL_ARGUMENT:
      insertions = (
        Insertion(site.start_byte, f"{{ {call} "),
        Insertion(site.end_byte, " }"),
      )
    elif kind == SiteKind.TAIL_ASSIGN:
      insertions = (Insertion(site.end_byte, f"; {call}"),)
    else:
      indent = self._indent_of(site.start_byte)
      lines = [f"{indent}{attribute}" for attribute in site.cfg_attributes]
      lines.append(f"{indent}{call}")
      insertions = (Insertion(site.end_byte, "".join(f"\n{line}" for line in lines)),)

    return RewriteEdit(site=site, state_id=state_id, location_id=location_id, call=call, insertions=insertions)

  def _indent_of(self, offset: int) -> str:
    """Leading whitespace of the line containing `offset`."""
    source = self.unit.source
    line_start = source.rfind(b"\n", 0, offset) + 1
    end = line_start
    while end < offset and source[end : end + 1] in (b" ", b"\t"):
      end += 1
    return source[line_start:end].decode("utf-8")
