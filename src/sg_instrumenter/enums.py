"""
Enumerations for sg-instrumenter.

This module defines the categorical values shared by the analysis passes,
the rewriter and the configuration layer.
"""

from enum import Enum


class SiteKind(str, Enum):
  """
  Syntactic shape of an instrumentation site.

  The kind decides how the Rewriter hosts the extra call.
  """

  LET = "let"  # let s = State::Idle;
  ASSIGN = "assign"  # s = State::Running;
  FIELD_ASSIGN = "field_assign"  # self.state = State::Done;
  DEREF_ASSIGN = "deref_assign"  # *slot = State::Idle;
  COMPOUND_ASSIGN = "compound_assign"  # flags |= Flag::A;
  TAIL_ASSIGN = "tail_assign"  # { s = State::Idle }
  MATCH_ARM = "match_arm"  # Pat => s = other,
  CLOSURE_BODY = "closure_body"  # || s = State::Idle
  CALL_ARGUMENT = "call_argument"  # f(State::Idle)

  @property
  def needs_wrapper(self) -> bool:
    """True if the hosting construct cannot take a following statement."""
    return self in (SiteKind.MATCH_ARM, SiteKind.CLOSURE_BODY, SiteKind.CALL_ARGUMENT)


class UnknownVariantPolicy(str, Enum):
  """
  What to do with sites whose variant is only known at runtime.
  """

  WILDCARD = "wildcard"  # Instrument with the shared (Type, None) ID
  SKIP = "skip"  # Leave the site alone


class UnitState(str, Enum):
  """
  Lifecycle of a SourceUnit. Transitions are strictly linear.
  """

  LOADED = "loaded"
  ANALYZED = "analyzed"
  EDITED = "edited"
  EMITTED = "emitted"

  @property
  def order(self) -> int:
    return _UNIT_STATE_ORDER.index(self)


_UNIT_STATE_ORDER = [UnitState.LOADED, UnitState.ANALYZED, UnitState.EDITED, UnitState.EMITTED]
