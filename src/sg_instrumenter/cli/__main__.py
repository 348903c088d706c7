"""
Main Entry Point for sg-instrumenter CLI.

This module handles argument parsing and dispatches to specific command
handlers defined in `sg_instrumenter.cli.commands`.
"""

import argparse
import logging
from pathlib import Path
from typing import List, Optional

from sg_instrumenter import __version__
from sg_instrumenter.cli import commands
from sg_instrumenter.config import parse_cli_key_values
from sg_instrumenter.errors import ConfigError
from sg_instrumenter.utils.console import console, log_error


def main(argv: Optional[List[str]] = None) -> int:
  """
  Main CLI entry point.

  Parses arguments via argparse and calls the appropriate handler function.

  Args:
      argv: Optional list of command line arguments (defaults to sys.argv).

  Returns:
      int: Exit code (0 for success, non-zero for failure).
  """
  parser = argparse.ArgumentParser(description="sg-instrumenter: Enum state instrumentation for Rust fuzzing")
  parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
  parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

  subparsers = parser.add_subparsers(dest="command", required=True)

  # --- Command: INSTRUMENT ---
  cmd_inst = subparsers.add_parser("instrument", help="Instrument a Rust file or crate directory")
  cmd_inst.add_argument("path", type=Path, help="Input source file or directory")
  destination = cmd_inst.add_mutually_exclusive_group()
  destination.add_argument("--out", type=Path, default=None, help="Output destination (file or dir)")
  destination.add_argument("--in-place", action="store_true", help="Overwrite the input files")
  cmd_inst.add_argument("--jobs", type=int, default=None, help="Worker threads (default: from config)")
  cmd_inst.add_argument(
    "--config",
    nargs="*",
    help="Configuration flags in key=value format (e.g. unknown_variant_policy=skip validate_output=False)",
  )
  cmd_inst.add_argument("--id-map", type=Path, default=None, help="Write the (type, variant) -> ID table as JSON")
  cmd_inst.add_argument(
    "--json-trace", type=Path, default=None, help="Dump the execution trace of every file to a JSON file."
  )
  cmd_inst.add_argument("--rustfmt", action="store_true", help="Run rustfmt on the written files")

  # --- Command: SCAN ---
  cmd_scan = subparsers.add_parser("scan", help="List instrumentation sites without rewriting")
  cmd_scan.add_argument("path", type=Path, help="Input source file or directory")
  cmd_scan.add_argument("--config", nargs="*", help="Configuration flags in key=value format")

  args = parser.parse_args(argv)

  if args.verbose:
    console.set_level(logging.DEBUG)

  try:
    settings = parse_cli_key_values(args.config)
  except ConfigError as e:
    log_error(str(e))
    return 1

  if args.command == "instrument":
    return commands.handle_instrument(
      args.path,
      args.out,
      args.in_place,
      args.jobs,
      settings,
      id_map_path=args.id_map,
      json_trace_path=args.json_trace,
      run_rustfmt=args.rustfmt,
    )

  elif args.command == "scan":
    return commands.handle_scan(args.path, settings)

  return 0


if __name__ == "__main__":
  raise SystemExit(main())
