"""
Pytest Configuration and Fixtures.

Includes:
- Syspath patching for local imports.
- Helpers to run the analysis stages on inline Rust snippets.
- Console capture for CLI output assertions.
"""

import io
import sys
import textwrap
from pathlib import Path
from typing import Callable, List

import pytest

# Add src to path so we can import 'sg_instrumenter' without installing it
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from rich.console import Console

from sg_instrumenter.config import InstrumenterConfig
from sg_instrumenter.core.engine import InstrumentationEngine
from sg_instrumenter.core.loader import SourceUnit
from sg_instrumenter.core.locator import InstrumentationSite
from sg_instrumenter.utils.console import reset_console, set_console


def rust(code: str) -> str:
  """Dedents an inline Rust snippet and strips the leading newline."""
  return textwrap.dedent(code).lstrip("\n")


@pytest.fixture
def load_linked() -> Callable[..., SourceUnit]:
  """Loads a snippet and links its declarations (known_enums via config kwargs)."""

  def _load(code: str, **settings) -> SourceUnit:
    engine = InstrumentationEngine(InstrumenterConfig(**settings))
    unit = engine.load(rust(code))
    engine.link(unit)
    return unit

  return _load


@pytest.fixture
def locate() -> Callable[..., List[InstrumentationSite]]:
  """Returns the sites of a snippet under the given config overrides."""

  def _locate(code: str, **settings) -> List[InstrumentationSite]:
    engine = InstrumentationEngine(InstrumenterConfig(**settings))
    unit = engine.load(rust(code))
    engine.link(unit)
    return engine.locate(unit)

  return _locate


@pytest.fixture
def captured_console():
  """Routes console and logging output into an in-memory buffer."""
  buffer = io.StringIO()
  set_console(Console(file=buffer, width=200, force_terminal=False, color_system=None))
  yield buffer
  reset_console()
