"""
Instrument Command Handler.

This module implements the logic for the `sg-instrumenter instrument` command.
It orchestrates:
1. Configuration loading (pyproject table + CLI overrides).
2. Source discovery (``*.rs`` files in stable, sorted order).
3. Batch instrumentation via the Engine.
4. Output writing (to ``--out``, in place, or stdout), the ID map and trace logs.
5. Optional formatting with ``rustfmt``.
"""

import json
import os
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from rich.table import Table

from sg_instrumenter.config import InstrumenterConfig
from sg_instrumenter.core.engine import InstrumentationEngine
from sg_instrumenter.core.result import InstrumentationResult
from sg_instrumenter.errors import ConfigError
from sg_instrumenter.utils.console import console, log_error, log_info, log_success, log_warning

# Directories never descended into when collecting sources.
SKIPPED_DIRS = frozenset({"target"})


def handle_instrument(
  input_path: Path,
  output_path: Optional[Path],
  in_place: bool,
  jobs: Optional[int],
  settings: Dict[str, Any],
  id_map_path: Optional[Path] = None,
  json_trace_path: Optional[Path] = None,
  run_rustfmt: bool = False,
) -> int:
  """
  Handles the 'instrument' command execution.

  Args:
      input_path: Source file or crate directory.
      output_path: Destination file (for a file input) or directory.
      in_place: Overwrite the inputs instead of writing elsewhere.
      jobs: Worker threads (overrides config).
      settings: ``key=value`` configuration overrides.
      id_map_path: Where to write the JSON ID table.
      json_trace_path: Where to write the per-file trace events.
      run_rustfmt: Format written files with rustfmt.

  Returns:
      int: Exit code (0 for success, 1 if any unit failed).
  """
  if not input_path.exists():
    log_error(f"Input not found: {input_path}")
    return 1

  overrides = dict(settings)
  if jobs is not None:
    overrides["jobs"] = jobs
  try:
    config = InstrumenterConfig.load(
      overrides,
      search_path=input_path if input_path.is_dir() else input_path.parent,
    )
  except ConfigError as e:
    log_error(str(e))
    return 1

  if input_path.is_dir() and not (output_path or in_place):
    log_error("Directory instrumentation requires --out destination directory or --in-place.")
    return 1

  files = collect_sources(input_path, config.extensions)
  if not files:
    log_warning(f"No source files found in {input_path}")
    return 0

  log_info(f"Instrumenting {len(files)} files from [path]{input_path}[/path]...")
  engine = InstrumentationEngine(config)
  results = engine.process_batch(files)

  batch_results: Dict[str, InstrumentationResult] = {}
  written: List[Path] = []
  for src_file, result in zip(files, results):
    rel_path = src_file.relative_to(input_path) if input_path.is_dir() else Path(src_file.name)
    batch_results[str(rel_path)] = result
    if not result.success:
      continue

    if in_place:
      destination: Optional[Path] = src_file
    elif output_path is None:
      destination = None
    elif input_path.is_dir():
      destination = output_path / rel_path
    else:
      destination = output_path

    if destination is None:
      print(result.code)
      continue
    write_atomic(destination, result.code)
    written.append(destination)
    log_success(f"Instrumented {result.site_count} sites: [path]{src_file}[/path] -> [path]{destination}[/path]")

  if json_trace_path:
    _write_json(json_trace_path, {name: res.trace_events for name, res in batch_results.items()})
    log_info(f"Trace saved to [path]{json_trace_path}[/path]")

  if id_map_path:
    _write_json(id_map_path, {"call_template": config.call_template, "ids": engine.allocator.export()})
    log_info(f"ID map saved to [path]{id_map_path}[/path]")

  if run_rustfmt and written:
    format_files(written)

  _print_batch_summary(batch_results)
  return 0 if all(r.success for r in batch_results.values()) else 1


def collect_sources(root: Path, extensions: Sequence[str]) -> List[Path]:
  """
  Lists the source files under `root` in sorted (ID-stable) order.

  ``target/`` build directories and hidden directories are skipped.

  Args:
      root: A file or a directory.
      extensions: Accepted file suffixes (e.g. ``[".rs"]``).

  Returns:
      List[Path]: Files to process.
  """
  if root.is_file():
    return [root]

  found: List[Path] = []
  for candidate in root.rglob("*"):
    if not candidate.is_file() or candidate.suffix not in extensions:
      continue
    parents = candidate.relative_to(root).parts[:-1]
    if any(part in SKIPPED_DIRS or part.startswith(".") for part in parents):
      continue
    found.append(candidate)
  return sorted(found, key=lambda p: p.relative_to(root).as_posix())


def write_atomic(destination: Path, content: str) -> None:
  """
  Writes a file through a temporary sibling and an atomic rename.

  Args:
      destination: Final location.
      content: Text to write (UTF-8).
  """
  destination.parent.mkdir(parents=True, exist_ok=True)
  fd, tmp_name = tempfile.mkstemp(dir=destination.parent, prefix=f".{destination.name}.", suffix=".tmp")
  try:
    with os.fdopen(fd, "wt", encoding="utf-8", newline="") as f:
      f.write(content)
    os.replace(tmp_name, destination)
  except BaseException:
    if os.path.exists(tmp_name):
      os.unlink(tmp_name)
    raise


def format_files(paths: Sequence[Path]) -> bool:
  """
  Runs rustfmt on written files. Only warns when it is unavailable or fails.

  Returns:
      bool: True if rustfmt ran successfully.
  """
  executable = shutil.which("rustfmt")
  if executable is None:
    log_warning("rustfmt not found on PATH; output left unformatted.")
    return False

  proc = subprocess.run([executable, *[str(p) for p in paths]], capture_output=True, text=True)
  if proc.returncode != 0:
    log_warning(f"rustfmt failed: {proc.stderr.strip()}")
    return False
  return True


def _write_json(path: Path, payload: Any) -> None:
  path.parent.mkdir(parents=True, exist_ok=True)
  with open(path, "wt", encoding="utf-8") as f:
    json.dump(payload, f, indent=2)


def _print_batch_summary(results: Dict[str, InstrumentationResult]) -> None:
  """
  Renders a summary table of instrumentation results to the console.

  Args:
      results: Dictionary mapping filenames to results.
  """
  total = len(results)
  failures = sum(1 for r in results.values() if not r.success)
  sites = sum(r.site_count for r in results.values())

  if failures == 0:
    log_success(f"Batch Complete: {total}/{total} files instrumented ({sites} sites).")
    return

  table = Table(title="Instrumentation Report")
  table.add_column("File", style="cyan")
  table.add_column("Status", justify="center")
  table.add_column("Issues", style="red")

  for filename, res in results.items():
    if res.success:
      continue
    issues = "; ".join(res.errors) if res.errors else "Unknown Error"
    table.add_row(filename, "❌ Failed", issues)

  console.print(table)
  console.print(f"\n[bold]Summary:[/bold] {total - failures} Passed, {failures} Failed.")
