"""
Error taxonomy for the instrumentation pipeline.

Every failure raised by the core derives from `InstrumenterError`, so drivers
can catch one type and report the unit as failed while other units continue.

- `ParseError`: the unit is not valid Rust (fatal for that unit).
- `AnalysisError`: an internal invariant was violated (a bug, not user input).
- `EditConflictError`: two planned edits collide (a locator/rewriter bug).
- `ConfigError`: configuration values failed validation.
"""

from pathlib import Path
from typing import Optional, Union


class InstrumenterError(Exception):
  """Base class for all instrumentation failures."""


class ParseError(InstrumenterError):
  """
  Raised when a source unit cannot be parsed.

  Attributes:
      path: File the text came from, if any.
      line: 1-based line of the first offending node.
      column: 1-based column of the first offending node.
      snippet: Source text at the failure location.
  """

  def __init__(
    self,
    message: str,
    path: Optional[Union[str, Path]] = None,
    line: Optional[int] = None,
    column: Optional[int] = None,
    snippet: str = "",
  ):
    self.path = str(path) if path is not None else None
    self.line = line
    self.column = column
    self.snippet = snippet
    self.reason = message
    super().__init__(self._format())

  def _format(self) -> str:
    location = self.path or "<string>"
    if self.line is not None:
      location = f"{location}:{self.line}:{self.column}"
    text = f"{location}: {self.reason}"
    if self.snippet:
      text = f"{text} near {self.snippet!r}"
    return text


class AnalysisError(InstrumenterError):
  """Raised when the analyzer reaches a state that well-formed input cannot produce."""


class EditConflictError(InstrumenterError):
  """
  Raised when two planned edits touch the same source offset.

  Attributes:
      offset: The byte offset both edits target.
  """

  def __init__(self, message: str, offset: int):
    self.offset = offset
    super().__init__(message)


class ConfigError(InstrumenterError):
  """Raised when configuration values are invalid."""
