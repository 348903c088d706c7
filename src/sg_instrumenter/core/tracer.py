"""
Instrumentation Trace Logger.

Records the step-by-step execution of the pipeline for one unit:
1. Lifecycle Phases (Load, Locate, Rewrite, Emit).
2. Located Sites (``State::Idle`` assigned at line 12).
3. Insertions (text spliced at a byte offset).

The output is a structured list of event dictionaries suitable for JSON
serialization. Each unit gets its own logger so that units processed in
parallel never interleave their events.
"""

import time
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class TraceEventType(str, Enum):
  PHASE_START = "phase_start"
  PHASE_END = "phase_end"
  SITE_FOUND = "site_found"
  INSERTION = "insertion"
  ANALYSIS_WARNING = "analysis_warning"


@dataclass
class TraceEvent:
  id: str
  type: TraceEventType
  timestamp: float
  description: str
  parent_id: Optional[str] = None
  metadata: Dict[str, Any] = field(default_factory=dict)


class TraceLogger:
  """
  Records pipeline events for one unit.
  Injected into the Engine; exported into the InstrumentationResult.
  """

  def __init__(self):
    self._events: List[TraceEvent] = []
    self._active_phases: List[str] = []  # Stack of phase IDs

  def start_phase(self, name: str, description: str = "") -> str:
    """Starts a nested phase (e.g., 'Locate'). Returns Phase ID."""
    phase_id = str(uuid.uuid4())
    parent = self._active_phases[-1] if self._active_phases else None

    self._events.append(
      TraceEvent(
        id=phase_id,
        type=TraceEventType.PHASE_START,
        timestamp=time.time(),
        description=name,
        parent_id=parent,
        metadata={"detail": description},
      )
    )
    self._active_phases.append(phase_id)
    return phase_id

  def end_phase(self):
    """Ends the current active phase."""
    if not self._active_phases:
      return

    phase_id = self._active_phases.pop()
    self._events.append(
      TraceEvent(
        id=str(uuid.uuid4()),
        type=TraceEventType.PHASE_END,
        timestamp=time.time(),
        description="End Phase",
        parent_id=phase_id,
      )
    )

  def log_site(self, type_name: str, variant: Optional[str], kind: str, line: int):
    """Logs a located instrumentation site."""
    label = f"{type_name}::{variant}" if variant is not None else f"{type_name}::*"
    self._log_simple(
      TraceEventType.SITE_FOUND,
      f"Found {label} at line {line}",
      {"type": type_name, "variant": variant, "kind": kind, "line": line},
    )

  def log_insertion(self, offset: int, inserted: str, state_id: int):
    """Logs a planned text insertion."""
    self._log_simple(
      TraceEventType.INSERTION,
      f"Insert at byte {offset}",
      {"offset": offset, "text": inserted, "state_id": state_id},
    )

  def log_warning(self, message: str):
    self._log_simple(TraceEventType.ANALYSIS_WARNING, message, {"level": "warning"})

  def _log_simple(self, evt_type: TraceEventType, desc: str, meta: Dict[str, Any]):
    parent = self._active_phases[-1] if self._active_phases else None
    self._events.append(
      TraceEvent(
        id=str(uuid.uuid4()), type=evt_type, timestamp=time.time(), description=desc, parent_id=parent, metadata=meta
      )
    )

  def export(self) -> List[Dict[str, Any]]:
    """Returns list of dicts for JSON serialization."""
    return [asdict(e) for e in self._events]
