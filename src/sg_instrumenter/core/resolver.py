"""
Type Resolver (lightweight).

Given an expression node and the lexical scope it is evaluated in, decides
whether the expression's static type is a visible enum and, when the
expression is a literal constructor, which variant it denotes.

Resolution is purely syntactic and unit-local:

1.  **Constructors**: ``Type::Variant``, ``Type::Variant(..)``,
    ``Type::Variant { .. }``, ``Self::Variant`` and imported bare variants
    resolve to ``(Type, Variant)``.
2.  **Typed places**: identifiers, ``self``, ``*ref`` and field accesses whose
    declared type is an enum resolve to ``(Type, None)``.
3.  **Calls**: functions and inherent methods declared in the unit with an
    enum return type resolve to ``(Type, None)``.
4.  **Control flow**: blocks, ``if``/``else`` and ``match`` resolve through
    their non-diverging branches.

Everything else is unresolved. Missing a site is acceptable, instrumenting a
non-enum is not.
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from tree_sitter import Node

from sg_instrumenter.core.declarations import DeclarationIndex, EnumTypeDecl, TypeRef, type_ref_from_node
from sg_instrumenter.core.scopes import Scope
from sg_instrumenter.core.syntax import (
  block_value,
  first_significant_child,
  inner_block,
  is_diverging,
  path_segments,
  significant_children,
  text,
)
from sg_instrumenter.errors import AnalysisError


@dataclass(frozen=True)
class Typed:
  """Intermediate inference result: a type and, if known, the variant."""

  ref: TypeRef
  variant: Optional[str] = None


@dataclass(frozen=True)
class Resolution:
  """
  An expression proven to be a value of a visible enum.

  Attributes:
      enum: The enum declaration.
      variant: The variant name, or None if only known at runtime.
  """

  enum: EnumTypeDecl
  variant: Optional[str] = None


class _Diverges:
  """Marker for branches that never produce a value."""


_DIVERGES = _Diverges()

# Pattern node types whose identifier descendants are never bindings.
_NON_BINDING_PATTERN_TYPES = frozenset({"scoped_identifier", "macro_invocation", "field_identifier"})


class TypeResolver:
  """
  Answers "is this expression an enum value?" for one unit.
  """

  def __init__(self, index: DeclarationIndex, max_depth: int = 200):
    """
    Args:
        index: Linked declarations of the unit.
        max_depth: Maximum expression nesting followed before giving up with AnalysisError.
    """
    self.index = index
    self.max_depth = max_depth
    self._depth = 0
    self._dispatch: Dict[str, Callable[[Node, Scope], Optional[Typed]]] = {
      "scoped_identifier": self._infer_path,
      "identifier": self._infer_identifier,
      "self": self._infer_identifier,
      "call_expression": self._infer_call,
      "struct_expression": self._infer_struct_expression,
      "field_expression": self._infer_field,
      "parenthesized_expression": self._infer_parenthesized,
      "unary_expression": self._infer_unary,
      "reference_expression": self._infer_reference,
      "block": self._infer_block,
      "unsafe_block": self._infer_block,
      "if_expression": self._infer_if,
      "match_expression": self._infer_match,
    }

  # --- Public API ---

  def resolve(self, expr: Optional[Node], scope: Scope) -> Optional[Resolution]:
    """
    Resolves an expression to an enum type and optional variant.

    Args:
        expr: Expression node (None resolves to None).
        scope: Scope the expression is evaluated in.

    Returns:
        Resolution or None if the expression is not provably an enum value.
    """
    if expr is None:
      return None
    return self._to_resolution(self.infer(expr, scope))

  def resolve_place(self, place: Optional[Node], scope: Scope) -> Optional[Resolution]:
    """
    Resolves the static type of an assignment target.

    Only variables, ``self``, dereferences and field accesses are followed.
    The variant is always unknown.
    """
    if place is None or place.type not in ("identifier", "self", "field_expression", "unary_expression"):
      return None
    resolution = self._to_resolution(self.infer(place, scope))
    if resolution is None:
      return None
    return Resolution(resolution.enum, None)

  def infer(self, expr: Node, scope: Scope) -> Optional[Typed]:
    """
    Infers the declared type of an expression, enum or not.

    Args:
        expr: Expression node.
        scope: Scope the expression is evaluated in.

    Returns:
        Typed or None when the type is not visible.

    Raises:
        AnalysisError: If nesting exceeds `max_depth`.
    """
    handler = self._dispatch.get(expr.type)
    if handler is None:
      return None
    self.enter(expr)
    try:
      return handler(expr, scope)
    finally:
      self.leave()

  def enter(self, node: Node) -> None:
    """
    Counts one level of nesting.

    The locator walks statements through the same counter, so statement and
    expression nesting share one `max_depth` budget.

    Raises:
        AnalysisError: If nesting exceeds `max_depth`.
    """
    self._depth += 1
    if self._depth > self.max_depth:
      self._depth -= 1
      raise AnalysisError(f"Nesting exceeds max_depth={self.max_depth} at line {node.start_point[0] + 1}")

  def leave(self) -> None:
    self._depth -= 1

  def type_ref(self, node: Optional[Node], scope: Scope) -> Optional[TypeRef]:
    """Reduces a written type, treating generic parameters in scope as unknown types."""
    return type_ref_from_node(node, scope.self_type, scope.generics())

  def enum_of_path(self, segments, scope: Scope) -> Optional[Resolution]:
    """
    Resolves ``Owner::Variant`` path segments to a constructor.

    Args:
        segments: Path segments, at least two.
        scope: Scope used to resolve ``Self``.

    Returns:
        Resolution when the owner is a visible enum declaring the variant.
    """
    if len(segments) < 2:
      return None
    owner = segments[-2]
    if owner == "Self":
      owner = scope.self_type
    elif scope.hides_type(owner):
      return None
    decl = self.index.enum(owner)
    if decl is None or not decl.has_variant(segments[-1]):
      return None
    return Resolution(decl, segments[-1])

  # --- Pattern bindings ---

  def bind_pattern(self, pattern: Optional[Node], ref: Optional[TypeRef], scope: Scope) -> None:
    """
    Introduces the bindings of a pattern into `scope`.

    The top-level binding receives `ref`; bindings nested inside
    destructuring patterns are registered as untracked so they shadow
    outer names.

    Args:
        pattern: Pattern node (let, match arm, parameter, closure parameter).
        ref: Type of the value matched against the whole pattern.
        scope: Scope receiving the bindings.
    """
    if pattern is None:
      return
    kind = pattern.type
    if kind == "identifier":
      name = text(pattern)
      if self.index.imported_variant(name) or self.index.is_constant(name):
        return
      typed = ref if ref is not None and not self.index.names_a_value(name) else None
      scope.set(name, typed)
    elif kind == "mut_pattern":
      self.bind_pattern(significant_children(pattern)[-1], ref, scope)
    elif kind == "ref_pattern":
      self.bind_pattern(significant_children(pattern)[-1], ref.as_reference() if ref else None, scope)
    elif kind == "captured_pattern":
      children = significant_children(pattern)
      sub = children[-1] if len(children) > 1 else None
      sub_ref = self._pattern_enum(sub, scope)
      self.bind_pattern(children[0], sub_ref or ref, scope)
      if sub is not None:
        self._bind_untracked(sub, scope)
    else:
      self._bind_untracked(pattern, scope)

  def bind_condition(self, condition: Optional[Node], scope: Scope) -> None:
    """Binds the patterns of ``if let`` / ``while let`` conditions (and let chains)."""
    if condition is None:
      return
    if condition.type == "let_condition":
      value = self.infer_value_ref(condition.child_by_field_name("value"), scope)
      self.bind_pattern(condition.child_by_field_name("pattern"), value, scope)
    elif condition.type == "let_chain":
      for child in significant_children(condition):
        self.bind_condition(child, scope)

  def infer_value_ref(self, expr: Optional[Node], scope: Scope) -> Optional[TypeRef]:
    if expr is None:
      return None
    typed = self.infer(expr, scope)
    return typed.ref if typed else None

  def _bind_untracked(self, pattern: Node, scope: Scope) -> None:
    stack = [pattern]
    while stack:
      node = stack.pop()
      if node.type in _NON_BINDING_PATTERN_TYPES:
        continue
      if node.type in ("identifier", "shorthand_field_identifier"):
        name = text(node)
        if not (self.index.imported_variant(name) or self.index.is_constant(name)):
          scope.set(name, None)
        continue
      # The path of ``Some(x)`` / ``Point { x }`` is not a binding.
      excluded = node.child_by_field_name("type") if node.type in ("tuple_struct_pattern", "struct_pattern") else None
      stack.extend(c for c in node.named_children if excluded is None or c != excluded)

  def _pattern_enum(self, pattern: Optional[Node], scope: Scope) -> Optional[TypeRef]:
    """Enum type matched by a variant pattern (``State::A``, ``State::B(..)``, ``A | B``)."""
    if pattern is None:
      return None
    if pattern.type == "or_pattern":
      refs = [self._pattern_enum(p, scope) for p in significant_children(pattern)]
      if refs and all(r is not None and r == refs[0] for r in refs):
        return refs[0]
      return None
    if pattern.type in ("tuple_struct_pattern", "struct_pattern"):
      path_node = pattern.child_by_field_name("type")
    else:
      path_node = pattern
    segments = path_segments(path_node)
    resolution = self.enum_of_path(segments, scope)
    if resolution is None and len(segments) == 1:
      imported = self.index.imported_variant(segments[0])
      if imported is not None:
        return TypeRef(imported[0].name)
    return TypeRef(resolution.enum.name) if resolution else None

  # --- Handlers ---

  def _infer_path(self, node: Node, scope: Scope) -> Optional[Typed]:
    resolution = self.enum_of_path(path_segments(node), scope)
    if resolution is None or not resolution.enum.is_value_path(resolution.variant):
      return None
    return Typed(TypeRef(resolution.enum.name), resolution.variant)

  def _infer_identifier(self, node: Node, scope: Scope) -> Optional[Typed]:
    name = text(node)
    if scope.has(name):
      ref = scope.get(name)
      return Typed(ref) if ref else None
    if node.type == "identifier":
      imported = self.index.imported_variant(name)
      if imported is not None and imported[0].is_value_path(imported[1]):
        return Typed(TypeRef(imported[0].name), imported[1])
    return None

  def _infer_call(self, node: Node, scope: Scope) -> Optional[Typed]:
    function = node.child_by_field_name("function")
    if function is None:
      return None

    if function.type == "scoped_identifier":
      segments = path_segments(function)
      constructor = self.enum_of_path(segments, scope)
      if constructor is not None:
        return Typed(TypeRef(constructor.enum.name), constructor.variant)
      if len(segments) < 2:
        return None
      owner = scope.self_type if segments[-2] == "Self" else segments[-2]
      if owner is None or (segments[-2] != "Self" and scope.hides_type(owner)):
        return None
      owner_enum = self.index.enum(owner)
      returns = self.index.method_return(owner_enum.name if owner_enum else owner, segments[-1])
      return Typed(returns) if returns else None

    if function.type == "identifier":
      name = text(function)
      if scope.has(name):
        return None
      imported = self.index.imported_variant(name)
      if imported is not None:
        return Typed(TypeRef(imported[0].name), imported[1])
      returns = self.index.function_return(name)
      return Typed(returns) if returns else None

    if function.type == "field_expression":
      receiver = self.infer(function.child_by_field_name("value"), scope)
      if receiver is None:
        return None
      method = text(function.child_by_field_name("field"))
      receiver_enum = self.index.enum(receiver.ref.name)
      if method == "clone":
        if receiver_enum is not None and receiver_enum.derives & {"Clone", "Copy"}:
          return Typed(TypeRef(receiver_enum.name), receiver.variant)
        return None
      owner = receiver_enum.name if receiver_enum else receiver.ref.name
      returns = self.index.method_return(owner, method)
      return Typed(returns) if returns else None

    return None

  def _infer_struct_expression(self, node: Node, scope: Scope) -> Optional[Typed]:
    name_node = node.child_by_field_name("name")
    segments = path_segments(name_node)
    constructor = self.enum_of_path(segments, scope)
    if constructor is not None:
      return Typed(TypeRef(constructor.enum.name), constructor.variant)
    if len(segments) == 1:
      imported = self.index.imported_variant(segments[0])
      if imported is not None:
        return Typed(TypeRef(imported[0].name), imported[1])
    return None

  def _infer_field(self, node: Node, scope: Scope) -> Optional[Typed]:
    value = node.child_by_field_name("value")
    if value is None:
      return None
    base = self.infer(value, scope)
    if base is None:
      return None
    field_type = self.index.struct_field(base.ref.name, text(node.child_by_field_name("field")))
    return Typed(field_type) if field_type else None

  def _infer_parenthesized(self, node: Node, scope: Scope) -> Optional[Typed]:
    inner = first_significant_child(node)
    return self.infer(inner, scope) if inner is not None else None

  def _infer_unary(self, node: Node, scope: Scope) -> Optional[Typed]:
    if not node.children or node.children[0].type != "*":
      return None
    operand = first_significant_child(node)
    inner = self.infer(operand, scope) if operand is not None else None
    if inner is None or not inner.ref.by_ref:
      return None
    return Typed(inner.ref.as_value(), inner.variant)

  def _infer_reference(self, node: Node, scope: Scope) -> Optional[Typed]:
    value = node.child_by_field_name("value")
    inner = self.infer(value, scope) if value is not None else None
    if inner is None or inner.ref.by_ref:
      return None
    return Typed(inner.ref.as_reference(), inner.variant)

  def _infer_block(self, node: Node, scope: Scope) -> Optional[Typed]:
    block = inner_block(node)
    if block is None:
      return None
    value = block_value(block)
    if value is None or is_diverging(value):
      return None
    local = scope.child("block")
    for statement in significant_children(block):
      if statement == value or statement.start_byte >= value.start_byte:
        break
      if statement.type == "let_declaration":
        self.bind_pattern(
          statement.child_by_field_name("pattern"),
          self.let_type(statement, local),
          local,
        )
    return self.infer(value, local)

  def let_type(self, statement: Node, scope: Scope) -> Optional[TypeRef]:
    """Type bound by a ``let``: its annotation, else the inferred initializer type."""
    type_node = statement.child_by_field_name("type")
    if type_ref_from_node(type_node, scope.self_type) is not None:
      return self.type_ref(type_node, scope)
    return self.infer_value_ref(statement.child_by_field_name("value"), scope)

  def _infer_if(self, node: Node, scope: Scope) -> Optional[Typed]:
    results: List[object] = []
    current: Optional[Node] = node
    while current is not None:
      branch_scope = scope.child("if")
      self.bind_condition(current.child_by_field_name("condition"), branch_scope)
      results.append(self._infer_branch(current.child_by_field_name("consequence"), branch_scope))

      alternative = current.child_by_field_name("alternative")
      if alternative is None:
        return None
      body = first_significant_child(alternative)
      if body is None:
        return None
      if body.type == "if_expression":
        current = body
      else:
        results.append(self._infer_branch(body, scope))
        current = None
    return self._combine(results)

  def _infer_match(self, node: Node, scope: Scope) -> Optional[Typed]:
    scrutinee = self.infer_value_ref(node.child_by_field_name("value"), scope)
    body = node.child_by_field_name("body")
    if body is None:
      return None
    results: List[object] = []
    for arm in body.named_children:
      if arm.type != "match_arm":
        continue
      arm_scope = scope.child("arm")
      self.bind_arm(arm, scrutinee, arm_scope)
      results.append(self._infer_branch(arm.child_by_field_name("value"), arm_scope))
    return self._combine(results)

  def bind_arm(self, arm: Node, scrutinee: Optional[TypeRef], scope: Scope) -> None:
    """Binds a match arm's pattern, typing a bare binding with the scrutinee's type."""
    match_pattern = arm.child_by_field_name("pattern")
    if match_pattern is None:
      return
    pattern = first_significant_child(match_pattern)
    ref = scrutinee if scrutinee is not None and self.index.enum(scrutinee.name) else None
    self.bind_pattern(pattern, ref, scope)

  def _infer_branch(self, expr: Optional[Node], scope: Scope) -> object:
    if expr is None:
      return None
    if is_diverging(expr):
      return _DIVERGES
    return self.infer(expr, scope)

  def _combine(self, results: List[object]) -> Optional[Typed]:
    """Joins branch results: all live branches must agree on the type."""
    live = [r for r in results if r is not _DIVERGES]
    if not live or any(r is None for r in live):
      return None
    first = live[0]
    if any(r.ref != first.ref for r in live):
      return None
    variants = {r.variant for r in live}
    return Typed(first.ref, first.variant if len(variants) == 1 else None)

  def _to_resolution(self, typed: Optional[Typed]) -> Optional[Resolution]:
    if typed is None or typed.ref.by_ref:
      return None
    decl = self.index.enum(typed.ref.name)
    if decl is None:
      return None
    variant = typed.variant if typed.variant and decl.has_variant(typed.variant) else None
    return Resolution(decl, variant)
