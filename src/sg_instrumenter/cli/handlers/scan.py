"""
Scan Command Handler.

Reports the instrumentation sites of a file or crate without rewriting
anything and without allocating IDs.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from rich.table import Table

from sg_instrumenter.cli.handlers.instrument import collect_sources
from sg_instrumenter.config import InstrumenterConfig
from sg_instrumenter.core.declarations import DeclarationPool
from sg_instrumenter.core.engine import InstrumentationEngine
from sg_instrumenter.core.loader import SourceUnit
from sg_instrumenter.errors import ConfigError, InstrumenterError
from sg_instrumenter.utils.console import console, log_error, log_success, log_warning


def handle_scan(input_path: Path, settings: Dict[str, Any]) -> int:
  """
  Handles the 'scan' command execution.

  Args:
      input_path: Source file or crate directory.
      settings: ``key=value`` configuration overrides.

  Returns:
      int: Exit code (0 for success, 1 if any file failed).
  """
  if not input_path.exists():
    log_error(f"Input not found: {input_path}")
    return 1

  try:
    config = InstrumenterConfig.load(settings, search_path=input_path if input_path.is_dir() else input_path.parent)
  except ConfigError as e:
    log_error(str(e))
    return 1

  files = collect_sources(input_path, config.extensions)
  if not files:
    log_warning(f"No source files found in {input_path}")
    return 0

  engine = InstrumentationEngine(config)
  units: List[Tuple[Path, Optional[SourceUnit]]] = []
  failed = 0
  for src_file in files:
    try:
      units.append((src_file, engine.load(src_file)))
    except (InstrumenterError, OSError) as e:
      log_error(str(e))
      units.append((src_file, None))
      failed += 1

  pool: Optional[DeclarationPool] = None
  if config.share_declarations:
    pool = DeclarationPool()
    for _, unit in units:
      if unit is not None:
        pool.add(unit.declarations)

  table = Table(title="Enum Assignment Sites")
  table.add_column("File", style="cyan")
  table.add_column("Line", justify="right")
  table.add_column("Type")
  table.add_column("Variant")
  table.add_column("Kind")

  total = 0
  for src_file, unit in units:
    if unit is None:
      continue
    try:
      engine.link(unit, pool)
      sites = engine.locate(unit)
    except InstrumenterError as e:
      log_error(f"{src_file}: {e}")
      failed += 1
      continue
    name = str(src_file.relative_to(input_path)) if input_path.is_dir() else src_file.name
    for site in sites:
      table.add_row(name, str(site.line), f"[enum]{site.enum.name}[/enum]", site.variant or "*", site.kind.value)
    total += len(sites)

  console.print(table)
  if failed:
    log_warning(f"{failed} files could not be analyzed.")
    return 1
  log_success(f"Found {total} sites in {len(files)} files.")
  return 0
