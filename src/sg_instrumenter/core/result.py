"""
Data structures representing the output of the instrumentation pipeline.

This module defines the `InstrumentationResult` Pydantic model, which
encapsulates the rewritten code, the located sites, any errors encountered,
and the execution trace logs.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class SiteRecord(BaseModel):
  """
  Serializable summary of one instrumented site.
  """

  type_name: str
  variant: Optional[str] = None
  kind: str
  line: int
  state_id: int
  location_id: Optional[int] = None
  snippet: str = ""


class InstrumentationResult(BaseModel):
  """
  Container for the results of instrumenting one unit.
  """

  path: Optional[str] = Field(default=None, description="File the unit was read from, if any.")
  code: str = Field(default="", description="The rewritten source code (empty on failure).")
  errors: List[str] = Field(default_factory=list, description="List of error messages encountered.")
  success: bool = Field(
    default=True,
    description="True if the unit was emitted without fatal errors.",
  )
  sites: List[SiteRecord] = Field(default_factory=list, description="Instrumented sites in source order.")
  trace_events: List[Dict[str, Any]] = Field(default_factory=list, description="Execution trace log data.")

  @property
  def has_errors(self) -> bool:
    """
    Check if the result contains any error messages.

    Returns:
        True if one or more errors are present.
    """
    return len(self.errors) > 0

  @property
  def site_count(self) -> int:
    return len(self.sites)
