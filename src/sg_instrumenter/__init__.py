"""
sg-instrumenter Package.

A source-to-source instrumenter that makes enum-variant assignments in Rust
code observable to a state-tracking fuzzer. After every statement that stores
a value of an enum type, a call to the instrumentation primitive
(``sginstrument::instrument(id)``) is inserted, carrying a stable ID for the
``(type, variant)`` pair.

Usage
-----

Simple String Instrumentation
^^^^^^^^^^^^^^^^^^^^^^^^^^^^^

.. code-block:: python

    import sg_instrumenter as sgi
    code = "enum S { A, B }\\nfn f() { let mut s = S::A; s = S::B; }"
    print(sgi.instrument(code))

Advanced Usage (Engine)
^^^^^^^^^^^^^^^^^^^^^^^

.. code-block:: python

    from pathlib import Path
    from sg_instrumenter import InstrumentationEngine, InstrumenterConfig

    engine = InstrumentationEngine(InstrumenterConfig(jobs=4))
    results = engine.process_batch([Path("src/a.rs"), Path("src/b.rs")])
    print(engine.allocator.export())
"""

from typing import Optional

from sg_instrumenter.config import InstrumenterConfig
from sg_instrumenter.core.allocator import IdentifierAllocator
from sg_instrumenter.core.emitter import emit
from sg_instrumenter.core.engine import InstrumentationEngine
from sg_instrumenter.core.result import InstrumentationResult
from sg_instrumenter.core.tracer import TraceLogger
from sg_instrumenter.errors import AnalysisError, ConfigError, EditConflictError, InstrumenterError, ParseError

__version__ = "0.1.0"


def instrument(code: str, config: Optional[InstrumenterConfig] = None) -> str:
  """
  Instruments a string of Rust code.

  This is a high-level convenience wrapper around the `InstrumentationEngine`.
  For files or batches use the CLI or the engine directly.

  Args:
      code (str): Complete contents of one Rust source file.
      config (InstrumenterConfig, optional): Runtime configuration.

  Returns:
      str: The instrumented source code.

  Raises:
      InstrumenterError: If the unit cannot be instrumented (e.g. ParseError).
  """
  engine = InstrumentationEngine(config=config)
  unit = engine.load(code)
  engine.link(unit)
  sites = engine.locate(unit)
  edits = engine.plan(unit, sites, TraceLogger())
  return emit(unit, edits, validate=engine.config.validate_output)


__all__ = [
  "AnalysisError",
  "ConfigError",
  "EditConflictError",
  "IdentifierAllocator",
  "InstrumentationEngine",
  "InstrumentationResult",
  "InstrumenterConfig",
  "InstrumenterError",
  "ParseError",
  "instrument",
  "__version__",
]
