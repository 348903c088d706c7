"""
Orchestration Engine for Enum-Assignment Instrumentation.

This module provides the `InstrumentationEngine`, the unit boundary of the
pipeline. Each unit moves through the stages below, its `UnitState`
advancing ``LOADED -> ANALYZED -> EDITED -> EMITTED``:

1.  **Load**: parse the text (or file) into a `SourceUnit`.
2.  **Index**: collect the unit's declarations and link the visible enums
    (local ones, configured ``known_enums`` and, in batch mode, enums shared
    by other units of the batch).
3.  **Locate**: walk the tree and collect instrumentation sites.
4.  **Allocate & Plan**: assign IDs from the shared `IdentifierAllocator`
    and plan one `RewriteEdit` per site.
5.  **Emit**: apply the insertions and (optionally) re-parse the output.

A failure at any stage aborts that unit only; the error is reported in its
`InstrumentationResult`.

`process_batch` runs stages 1-3 and 5 on a thread pool. Stage 4 runs
serially, in input order then site order, so IDs are identical to a
sequential run.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

from sg_instrumenter.config import InstrumenterConfig
from sg_instrumenter.core.allocator import IdentifierAllocator
from sg_instrumenter.core.declarations import DeclarationIndex, DeclarationPool, EnumTypeDecl
from sg_instrumenter.core.emitter import emit
from sg_instrumenter.core.loader import SourceUnit, load_file, load_unit
from sg_instrumenter.core.locator import InstrumentationSite, SiteLocator
from sg_instrumenter.core.result import InstrumentationResult, SiteRecord
from sg_instrumenter.core.rewriter import RewriteEdit, Rewriter
from sg_instrumenter.core.tracer import TraceLogger
from sg_instrumenter.enums import UnitState
from sg_instrumenter.errors import AnalysisError, InstrumenterError

logger = logging.getLogger(__name__)

SourceInput = Union[str, Path]


@dataclass
class _UnitJob:
  """Book-keeping for one input while it moves through a batch."""

  source: SourceInput
  label: Optional[str] = None
  unit: Optional[SourceUnit] = None
  sites: List[InstrumentationSite] = field(default_factory=list)
  edits: List[RewriteEdit] = field(default_factory=list)
  code: str = ""
  error: Optional[str] = None
  tracer: TraceLogger = field(default_factory=TraceLogger)

  @property
  def failed(self) -> bool:
    return self.error is not None


class InstrumentationEngine:
  """
  Instruments Rust source units.

  The engine owns the run-scoped `IdentifierAllocator`; every unit processed
  by the same engine draws IDs from the same table.
  """

  def __init__(
    self,
    config: Optional[InstrumenterConfig] = None,
    allocator: Optional[IdentifierAllocator] = None,
  ):
    """
    Initializes the Engine.

    Args:
        config (InstrumenterConfig, optional): Runtime configuration. Defaults are used if None.
        allocator (IdentifierAllocator, optional): ID table to draw from. A fresh one if None.
    """
    self.config = config or InstrumenterConfig()
    self.allocator = allocator or IdentifierAllocator()
    self.known_enums = [EnumTypeDecl(name, tuple(variants)) for name, variants in self.config.known_enums.items()]

  # --- Stages ---

  def load(self, source: SourceInput, path: Optional[Union[str, Path]] = None) -> SourceUnit:
    """
    Loads a unit from text or from a file.

    Args:
        source: Source text (str) or a file location (Path).
        path: Label for text input, used in diagnostics.

    Returns:
        SourceUnit: The parsed unit with its declarations collected (not yet linked).
    """
    unit = load_file(source) if isinstance(source, Path) else load_unit(source, path)
    unit.declarations = DeclarationIndex.build(unit.root)
    return unit

  def link(self, unit: SourceUnit, pool: Optional[DeclarationPool] = None) -> None:
    """Makes configured (and, with a pool, shared) enums visible in the unit."""
    shared = pool.shared() if pool is not None else None
    unit.declarations.link(shared, self.known_enums)

  def locate(self, unit: SourceUnit) -> List[InstrumentationSite]:
    """
    Collects the sites of a linked unit.

    Returns:
        List[InstrumentationSite]: Sites in source order.
    """
    sites = list(SiteLocator(self.config).locate(unit))
    unit.advance(UnitState.ANALYZED)
    return sites

  def plan(self, unit: SourceUnit, sites: Sequence[InstrumentationSite], tracer: TraceLogger) -> List[RewriteEdit]:
    """
    Allocates IDs for the sites and plans their edits.

    Must run serially across units to keep ID assignment deterministic.
    """
    rewriter = Rewriter(unit, self.config)
    edits: List[RewriteEdit] = []
    for site in sites:
      state_id = self.allocator.allocate(*site.key)
      location_id = self.allocator.next_location() if self.config.uses_location_ids else 0
      edit = rewriter.plan_edit(site, state_id, location_id)
      tracer.log_site(site.enum.name, site.variant, site.kind.value, site.line)
      for insertion in edit.insertions:
        tracer.log_insertion(insertion.offset, insertion.text, state_id)
      edits.append(edit)
    unit.advance(UnitState.EDITED)
    return edits

  # --- Unit boundary ---

  def process(self, source: SourceInput, path: Optional[Union[str, Path]] = None) -> InstrumentationResult:
    """
    Executes the full pipeline on one unit.

    Args:
        source: Source text (str) or a file location (Path).
        path: Label for text input.

    Returns:
        InstrumentationResult: Rewritten code, sites, errors and trace events.
    """
    job = _UnitJob(source=source, label=str(path) if path is not None else None)
    self._run_stage(job, "Load", lambda: self._load_job(job, path))
    self._run_stage(job, "Locate", lambda: self._locate_job(job, None))
    self._run_stage(job, "Plan", lambda: self._plan_job(job))
    self._run_stage(job, "Emit", lambda: self._emit_job(job))
    return self._result(job)

  def process_batch(self, sources: Sequence[SourceInput]) -> List[InstrumentationResult]:
    """
    Instruments many units with parallel analysis and a deterministic ID merge.

    Args:
        sources: Texts or file locations, in the order that defines ID assignment.

    Returns:
        List[InstrumentationResult]: One result per input, in input order.
    """
    jobs = [_UnitJob(source=source) for source in sources]
    workers = max(1, min(self.config.jobs, len(jobs) or 1))
    logger.debug("Batch of %d units on %d workers", len(jobs), workers)

    with ThreadPoolExecutor(max_workers=workers) as pool:
      list(pool.map(lambda job: self._run_stage(job, "Load", lambda: self._load_job(job, None)), jobs))

      declaration_pool: Optional[DeclarationPool] = None
      if self.config.share_declarations:
        declaration_pool = DeclarationPool()
        for job in jobs:
          if not job.failed:
            declaration_pool.add(job.unit.declarations)

      list(pool.map(lambda job: self._run_stage(job, "Locate", lambda: self._locate_job(job, declaration_pool)), jobs))

      for job in jobs:
        self._run_stage(job, "Plan", lambda: self._plan_job(job))

      list(pool.map(lambda job: self._run_stage(job, "Emit", lambda: self._emit_job(job)), jobs))

    return [self._result(job) for job in jobs]

  # --- Job helpers ---

  def _run_stage(self, job: _UnitJob, name: str, action: Callable[[], None]) -> None:
    if job.failed:
      return
    job.tracer.start_phase(name, job.label or "<string>")
    try:
      action()
    except (InstrumenterError, OSError) as e:
      self._record_failure(job, name, e)
    except Exception as e:
      # Unexpected errors are internal bugs; they fail this unit only.
      self._record_failure(job, name, AnalysisError(f"{name} stage failed unexpectedly: {type(e).__name__}: {e}"))
    finally:
      job.tracer.end_phase()

  def _record_failure(self, job: _UnitJob, name: str, error: Exception) -> None:
    job.error = str(error)
    job.tracer.log_warning(f"{name} failed: {error}")
    logger.debug("%s: %s stage failed", job.label or "<string>", name, exc_info=True)

  def _load_job(self, job: _UnitJob, path: Optional[Union[str, Path]]) -> None:
    if isinstance(job.source, Path):
      job.label = str(job.source)
    job.unit = self.load(job.source, path)

  def _locate_job(self, job: _UnitJob, pool: Optional[DeclarationPool]) -> None:
    self.link(job.unit, pool)
    job.sites = self.locate(job.unit)

  def _plan_job(self, job: _UnitJob) -> None:
    job.edits = self.plan(job.unit, job.sites, job.tracer)

  def _emit_job(self, job: _UnitJob) -> None:
    job.code = emit(job.unit, job.edits, validate=self.config.validate_output)

  def _result(self, job: _UnitJob) -> InstrumentationResult:
    if job.failed:
      return InstrumentationResult(
        path=job.label,
        code="",
        errors=[job.error],
        success=False,
        trace_events=job.tracer.export(),
      )
    return InstrumentationResult(
      path=job.label,
      code=job.code,
      success=True,
      sites=[
        SiteRecord(
          type_name=edit.site.enum.name,
          variant=edit.site.variant,
          kind=edit.site.kind.value,
          line=edit.site.line,
          state_id=edit.state_id,
          location_id=edit.location_id if self.config.uses_location_ids else None,
          snippet=edit.site.snippet,
        )
        for edit in job.edits
      ],
      trace_events=job.tracer.export(),
    )
