"""
Source Loader.

Reads one unit of Rust source text and produces a `SourceUnit`: the raw text,
its UTF-8 bytes and a tree-sitter syntax tree. Node byte ranges
(``start_byte``/``end_byte``) are the mapping from syntax nodes back to the
original text used by the Rewriter and the Emitter.

tree-sitter recovers from syntax errors by inserting ``ERROR`` and ``MISSING``
nodes. Such trees are rejected here: the pipeline only ever edits complete,
unambiguous parses.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional, Union

import tree_sitter_rust
from tree_sitter import Language, Node, Parser, Tree

from sg_instrumenter.enums import UnitState
from sg_instrumenter.errors import AnalysisError, ParseError

if TYPE_CHECKING:
  from sg_instrumenter.core.declarations import DeclarationIndex

RUST_LANGUAGE = Language(tree_sitter_rust.language())

_SNIPPET_LIMIT = 40


@dataclass
class SourceUnit:
  """
  One compilable Rust file moving through the pipeline.

  The tree is owned by the unit; nothing else keeps a reference to it once
  the unit has been emitted.
  """

  text: str
  source: bytes
  tree: Tree
  path: Optional[Path] = None
  declarations: Optional["DeclarationIndex"] = None
  state: UnitState = UnitState.LOADED
  history: List[UnitState] = field(default_factory=list)

  @property
  def root(self) -> Node:
    return self.tree.root_node

  @property
  def label(self) -> str:
    """Human readable name used in logs and error messages."""
    return str(self.path) if self.path else "<string>"

  def node_text(self, node: Optional[Node]) -> str:
    """
    Returns the source text spanned by a node.

    Args:
        node: Any node of this unit's tree (None yields "").

    Returns:
        str: Decoded text of the node's byte range.
    """
    if node is None:
      return ""
    return self.source[node.start_byte : node.end_byte].decode("utf-8")

  def advance(self, new_state: UnitState) -> None:
    """
    Moves the unit to the next lifecycle state.

    Args:
        new_state: Must be exactly one step after the current state.

    Raises:
        AnalysisError: On backward or skipped transitions.
    """
    if new_state.order != self.state.order + 1:
      raise AnalysisError(f"{self.label}: illegal transition {self.state.value} -> {new_state.value}")
    self.history.append(self.state)
    self.state = new_state


def make_parser() -> Parser:
  """Creates a fresh Rust parser. Parsers are not shared between threads."""
  return Parser(RUST_LANGUAGE)


def parse_source(source: bytes) -> Tree:
  return make_parser().parse(source)


def find_first_error(node: Node) -> Optional[Node]:
  """
  Locates the first ERROR or MISSING node in document order.

  Only subtrees flagged with ``has_error`` are descended into.

  Args:
      node: Root of the subtree to search.

  Returns:
      The offending node, or None if the subtree is clean.
  """
  stack = [node]
  while stack:
    current = stack.pop()
    if current.type == "ERROR" or current.is_missing:
      return current
    if current.has_error:
      stack.extend(reversed(current.children))
  return None


def load_unit(text: str, path: Optional[Union[str, Path]] = None) -> SourceUnit:
  """
  Parses Rust source text into a SourceUnit.

  Args:
      text: Complete contents of one source file.
      path: Where the text came from, for diagnostics.

  Returns:
      SourceUnit: The loaded unit in state LOADED.

  Raises:
      ParseError: If the text is not encodable as UTF-8 or is not a complete parse.
  """
  unit_path = Path(path) if path is not None else None
  try:
    source = text.encode("utf-8")
  except UnicodeEncodeError as e:
    raise ParseError(f"not valid UTF-8 ({e.reason})", path=unit_path) from e
  tree = parse_source(source)

  if tree.root_node.has_error:
    bad = find_first_error(tree.root_node) or tree.root_node
    row, col_bytes = bad.start_point
    line_start = source.rfind(b"\n", 0, bad.start_byte) + 1
    column = len(source[line_start : line_start + col_bytes].decode("utf-8", errors="replace")) + 1
    if bad.is_missing:
      reason = f"missing '{bad.type}'"
    else:
      reason = "unexpected syntax"
    snippet = source[bad.start_byte : bad.start_byte + _SNIPPET_LIMIT].decode("utf-8", errors="replace")
    raise ParseError(reason, path=unit_path, line=row + 1, column=column, snippet=snippet.split("\n")[0])

  return SourceUnit(text=text, source=source, tree=tree, path=unit_path)


def load_file(path: Union[str, Path]) -> SourceUnit:
  """
  Reads and parses a file from disk.

  Args:
      path: Location of a ``.rs`` file.

  Returns:
      SourceUnit: The loaded unit.

  Raises:
      ParseError: If the file is not UTF-8 or does not parse.
      OSError: If the file cannot be read.
  """
  file_path = Path(path)
  raw = file_path.read_bytes()
  try:
    text = raw.decode("utf-8")
  except UnicodeDecodeError as e:
    raise ParseError(f"not valid UTF-8 ({e.reason})", path=file_path) from e
  return load_unit(text, file_path)
