"""
Helpers for reading tree-sitter Rust nodes.

Small, stateless accessors shared by the declaration collector, the resolver
and the locator. They flatten paths (``crate::m::State::Idle``) into segment
tuples and hide comment/attribute noise when walking children.
"""

from typing import List, Optional, Tuple

from tree_sitter import Node

COMMENT_TYPES = frozenset({"line_comment", "block_comment", "comment"})

# Statement node types that may appear inside a block before the tail expression.
STATEMENT_TYPES = frozenset(
  {
    "expression_statement",
    "let_declaration",
    "empty_statement",
    "attribute_item",
    "inner_attribute_item",
    "function_item",
    "function_signature_item",
    "struct_item",
    "enum_item",
    "union_item",
    "impl_item",
    "trait_item",
    "mod_item",
    "use_declaration",
    "const_item",
    "static_item",
    "type_item",
    "macro_definition",
    "extern_crate_declaration",
    "foreign_mod_item",
    "associated_type",
  }
)

ASSIGNMENT_TYPES = frozenset({"assignment_expression", "compound_assignment_expr"})

# Macros whose expansion never produces a value.
DIVERGING_MACROS = frozenset({"panic", "unreachable", "todo", "unimplemented"})

PATH_LEAF_TYPES = frozenset({"identifier", "self", "super", "crate", "metavariable", "type_identifier"})


def text(node: Optional[Node]) -> str:
  """Returns the decoded source text of a node ("" for None)."""
  if node is None or node.text is None:
    return ""
  return node.text.decode("utf-8")


def significant_children(node: Node) -> List[Node]:
  """Named children without comments."""
  return [c for c in node.named_children if c.type not in COMMENT_TYPES]


def first_significant_child(node: Node) -> Optional[Node]:
  children = significant_children(node)
  return children[0] if children else None


def path_segments(node: Optional[Node]) -> Tuple[str, ...]:
  """
  Flattens a path node into its segments.

  Examples:
      ``State::Idle`` -> ("State", "Idle")
      ``crate::m::State`` -> ("crate", "m", "State")

  Args:
      node: A scoped_identifier, scoped_type_identifier or leaf name node.

  Returns:
      Tuple of segment strings. Empty when the node is not a plain path
      (e.g. generic paths like ``Vec::<u8>::new``).
  """
  if node is None:
    return ()
  if node.type in ("scoped_identifier", "scoped_type_identifier"):
    name = node.child_by_field_name("name")
    if name is None:
      return ()
    prefix_node = node.child_by_field_name("path")
    prefix = path_segments(prefix_node) if prefix_node is not None else ()
    if prefix_node is not None and not prefix:
      return ()
    return prefix + (text(name),)
  if node.type in PATH_LEAF_TYPES:
    return (text(node),)
  return ()


def block_tail(block: Node) -> Optional[Node]:
  """
  Returns the tail expression of a block (the value-producing expression
  without a trailing ``;``), or None if the block ends with a statement.
  """
  children = significant_children(block)
  if not children:
    return None
  last = children[-1]
  if last.type in STATEMENT_TYPES or last.type == "label":
    return None
  return last


def block_value(block: Node) -> Optional[Node]:
  """
  Returns the expression that produces a block's value.

  This is the tail expression, or a trailing block-like expression
  (``if``/``match``/``loop``) written without ``;`` which tree-sitter files
  as an expression statement.
  """
  tail = block_tail(block)
  if tail is not None:
    return tail
  children = significant_children(block)
  if children and children[-1].type == "expression_statement":
    statement = children[-1]
    if statement.children and statement.children[-1].type != ";":
      return first_significant_child(statement)
  return None


def inner_block(node: Node) -> Optional[Node]:
  """Returns the ``block`` child of wrappers like ``unsafe { }`` or ``async { }``."""
  if node.type == "block":
    return node
  for child in node.named_children:
    if child.type == "block":
      return child
  return None


def macro_name(node: Node) -> str:
  """Returns the invoked name of a macro_invocation (``panic`` for ``std::panic!``)."""
  segments = path_segments(node.child_by_field_name("macro"))
  return segments[-1] if segments else ""


def is_diverging(node: Optional[Node]) -> bool:
  """
  True if evaluating the expression never yields a value.

  Args:
      node: An expression node.

  Returns:
      bool: True for return/break/continue, diverging macros, and blocks
      whose tail diverges.
  """
  current = node
  # Nested blocks are followed iteratively; their depth is unbounded.
  while current is not None:
    if current.type in ("return_expression", "break_expression", "continue_expression"):
      return True
    if current.type == "macro_invocation":
      return macro_name(current) in DIVERGING_MACROS
    if current.type == "expression_statement":
      current = first_significant_child(current)
    elif current.type in ("block", "unsafe_block"):
      block = inner_block(current)
      if block is None:
        return False
      current = block_value(block)
      if current is None:
        children = significant_children(block)
        current = children[-1] if children else None
    else:
      return False
  return False


def has_const_modifier(function_item: Node) -> bool:
  """True for ``const fn`` items."""
  for child in function_item.children:
    if child.type == "function_modifiers":
      return any(mod.type == "const" for mod in child.children)
  return False


def preceding_attributes(node: Node) -> List[Node]:
  """
  Collects the outer attributes written directly before a statement or item.

  Comments between attributes are skipped; anything else stops the scan.
  """
  attributes: List[Node] = []
  sibling = node.prev_named_sibling
  while sibling is not None and (sibling.type == "attribute_item" or sibling.type in COMMENT_TYPES):
    if sibling.type == "attribute_item":
      attributes.append(sibling)
    sibling = sibling.prev_named_sibling
  attributes.reverse()
  return attributes
