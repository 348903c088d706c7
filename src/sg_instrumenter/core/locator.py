"""
Site Locator.

Walks a unit's syntax tree and yields every assignment whose value is proven
(by the `TypeResolver`) to be a value of a visible enum.

The walk is a pre-order traversal driven by a dispatch table keyed by
tree-sitter node type. Handlers maintain lexical scopes as they go:

- ``fn`` items open a fresh root scope (parameters and ``self``),
- blocks open a child scope that ``let`` statements extend in order,
- ``match`` arms, closures, ``for`` loops and ``if let`` / ``while let``
  open child scopes for the bindings their patterns introduce.

Constant contexts (``const fn``, ``const`` / ``static`` items and
``const { }`` blocks) are skipped: a call to the instrumentation primitive
would not compile there.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, Optional, Tuple

from tree_sitter import Node

from sg_instrumenter.config import InstrumenterConfig
from sg_instrumenter.core.declarations import (
  DeclarationIndex,
  EnumTypeDecl,
  TypeRef,
  enclosing_impl,
  impl_type_name,
  type_parameter_names,
)
from sg_instrumenter.core.loader import SourceUnit
from sg_instrumenter.core.resolver import Resolution, TypeResolver
from sg_instrumenter.core.scopes import Scope
from sg_instrumenter.core.syntax import (
  ASSIGNMENT_TYPES,
  block_tail,
  first_significant_child,
  has_const_modifier,
  preceding_attributes,
  significant_children,
  text,
)
from sg_instrumenter.enums import SiteKind, UnknownVariantPolicy
from sg_instrumenter.errors import AnalysisError

logger = logging.getLogger(__name__)

_CFG_RE = re.compile(r"^#\s*\[\s*cfg\s*\(")
_SNIPPET_LIMIT = 60

Visitor = Callable[[Node, Scope], Iterator["InstrumentationSite"]]


@dataclass(frozen=True)
class InstrumentationSite:
  """
  One place where an enum value is stored.

  Attributes:
      kind: Syntactic shape of the site; decides how the call is hosted.
      enum: The resolved enum declaration.
      variant: The variant name, or None if only known at runtime.
      start_byte: Start of the host node (statement or expression).
      end_byte: End of the host node.
      line: 1-based line of the host node.
      snippet: First line of the host node's text, for reports.
      cfg_attributes: ``#[cfg(..)]`` attributes guarding the host statement.
      node: The host node itself.
  """

  kind: SiteKind
  enum: EnumTypeDecl
  variant: Optional[str]
  start_byte: int
  end_byte: int
  line: int
  snippet: str = ""
  cfg_attributes: Tuple[str, ...] = ()
  node: Optional[Node] = field(default=None, compare=False, repr=False)

  @property
  def key(self) -> Tuple[str, Optional[str]]:
    """Identifier table key: ``(type_name, variant_or_None)``."""
    return (self.enum.name, self.variant)

  def describe(self) -> str:
    variant = self.variant if self.variant is not None else "*"
    return f"{self.enum.name}::{variant} ({self.kind.value}) at line {self.line}"


class SiteLocator:
  """
  Finds instrumentation sites in one SourceUnit.
  """

  def __init__(self, config: Optional[InstrumenterConfig] = None):
    self.config = config or InstrumenterConfig()
    self.resolver: Optional[TypeResolver] = None
    self._dispatch: Dict[str, Visitor] = {
      "function_item": self._visit_function,
      "const_item": self._visit_const_context,
      "static_item": self._visit_const_context,
      "const_block": self._visit_const_context,
      "block": self._visit_block,
      "expression_statement": self._visit_expression_statement,
      "let_declaration": self._visit_let,
      "match_expression": self._visit_match,
      "closure_expression": self._visit_closure,
      "for_expression": self._visit_for,
      "if_expression": self._visit_conditional,
      "while_expression": self._visit_conditional,
      "arguments": self._visit_arguments,
      "macro_invocation": self._skip,
      "attribute_item": self._skip,
      "inner_attribute_item": self._skip,
    }

  def locate(self, unit: SourceUnit) -> Iterator[InstrumentationSite]:
    """
    Yields the sites of a unit in source order.

    The returned generator is lazy, finite and can be consumed once.

    Args:
        unit: A loaded unit whose declarations have been indexed.

    Yields:
        InstrumentationSite: Each site, outer sites before the sites nested in them.

    Raises:
        AnalysisError: If the unit has no declaration index or nests deeper than `max_depth`.
    """
    if unit.declarations is None:
      raise AnalysisError(f"{unit.label}: declarations must be indexed before locating sites")
    return self._locate(unit.declarations, unit.root)

  def _locate(self, index: DeclarationIndex, root: Node) -> Iterator[InstrumentationSite]:
    self.resolver = TypeResolver(index, max_depth=self.config.max_depth)
    yield from self._visit(root, Scope())

  # --- Traversal ---

  def _visit(self, node: Node, scope: Scope) -> Iterator[InstrumentationSite]:
    self.resolver.enter(node)
    try:
      handler = self._dispatch.get(node.type, self._visit_children)
      yield from handler(node, scope)
    finally:
      self.resolver.leave()

  def _visit_children(self, node: Node, scope: Scope) -> Iterator[InstrumentationSite]:
    for child in significant_children(node):
      yield from self._visit(child, scope)

  def _skip(self, node: Node, scope: Scope) -> Iterator[InstrumentationSite]:
    return iter(())

  def _visit_const_context(self, node: Node, scope: Scope) -> Iterator[InstrumentationSite]:
    if self.config.skip_const_contexts:
      logger.debug("Skipping const context at line %d", node.start_point[0] + 1)
      return
    yield from self._visit_children(node, scope)

  def _visit_function(self, node: Node, scope: Scope) -> Iterator[InstrumentationSite]:
    if self.config.skip_const_contexts and has_const_modifier(node):
      logger.debug("Skipping const fn %s", text(node.child_by_field_name("name")))
      return

    impl = enclosing_impl(node)
    fn_scope = Scope(
      name=text(node.child_by_field_name("name")),
      self_type=impl_type_name(impl) if impl is not None else None,
      type_params=type_parameter_names(node) | type_parameter_names(impl),
    )
    params = node.child_by_field_name("parameters")
    if params is not None:
      for param in significant_children(params):
        self._bind_parameter(param, fn_scope)

    body = node.child_by_field_name("body")
    if body is not None:
      yield from self._visit(body, fn_scope)

  def _bind_parameter(self, param: Node, scope: Scope) -> None:
    if param.type == "self_parameter":
      if scope.self_type:
        by_ref = any(c.type == "&" for c in param.children)
        scope.set("self", TypeRef(scope.self_type, by_ref=by_ref))
      return
    if param.type != "parameter":
      return
    pattern = param.child_by_field_name("pattern")
    declared = self.resolver.type_ref(param.child_by_field_name("type"), scope)
    if pattern is not None and pattern.type == "self":
      scope.set("self", declared)
    else:
      self.resolver.bind_pattern(pattern, declared, scope)

  def _visit_block(self, node: Node, scope: Scope) -> Iterator[InstrumentationSite]:
    local = scope.child("block")
    tail = block_tail(node)
    for child in significant_children(node):
      if tail is not None and child == tail and child.type in ASSIGNMENT_TYPES:
        yield from self._visit_assignment(child, local, SiteKind.TAIL_ASSIGN)
      else:
        yield from self._visit(child, local)

  def _visit_let(self, node: Node, scope: Scope) -> Iterator[InstrumentationSite]:
    value = node.child_by_field_name("value")
    if value is not None:
      resolution = self._let_resolution(node, value, scope)
      site = self._make_site(resolution, SiteKind.LET, node)
      if site is not None:
        yield site
      yield from self._visit(value, scope)
    alternative = node.child_by_field_name("alternative")
    if alternative is not None:
      yield from self._visit(alternative, scope)
    self.resolver.bind_pattern(node.child_by_field_name("pattern"), self.resolver.let_type(node, scope), scope)

  def _let_resolution(self, node: Node, value: Node, scope: Scope) -> Optional[Resolution]:
    resolution = self.resolver.resolve(value, scope)
    type_node = node.child_by_field_name("type")
    annotated = self.resolver.type_ref(type_node, scope)
    if annotated is None and type_node is not None and scope.hides_type(text(type_node)):
      return None
    if annotated is None or annotated.by_ref:
      return resolution
    decl = self.resolver.index.enum(annotated.name)
    if decl is None:
      return resolution
    if resolution is not None and resolution.enum.name == decl.name:
      return resolution
    return Resolution(decl, None)

  def _visit_expression_statement(self, node: Node, scope: Scope) -> Iterator[InstrumentationSite]:
    inner = first_significant_child(node)
    if inner is None:
      return
    if inner.type in ASSIGNMENT_TYPES:
      yield from self._visit_assignment(inner, scope, _statement_kind(inner), host=node)
    else:
      yield from self._visit(inner, scope)

  def _visit_assignment(
    self, node: Node, scope: Scope, kind: SiteKind, host: Optional[Node] = None
  ) -> Iterator[InstrumentationSite]:
    site = self._make_site(self._assignment_resolution(node, scope), kind, host or node)
    if site is not None:
      yield site
    yield from self._visit_children(node, scope)

  def _assignment_resolution(self, node: Node, scope: Scope) -> Optional[Resolution]:
    left = node.child_by_field_name("left")
    if node.type == "compound_assignment_expr":
      return self.resolver.resolve_place(left, scope)
    resolution = self.resolver.resolve(node.child_by_field_name("right"), scope)
    if resolution is None:
      resolution = self.resolver.resolve_place(left, scope)
    return resolution

  def _visit_match(self, node: Node, scope: Scope) -> Iterator[InstrumentationSite]:
    value = node.child_by_field_name("value")
    if value is not None:
      yield from self._visit(value, scope)
    scrutinee = self.resolver.infer_value_ref(value, scope)

    body = node.child_by_field_name("body")
    if body is None:
      return
    for arm in body.named_children:
      if arm.type != "match_arm":
        continue
      arm_scope = scope.child("arm")
      self.resolver.bind_arm(arm, scrutinee, arm_scope)
      arm_value = arm.child_by_field_name("value")
      if arm_value is None:
        continue
      if arm_value.type in ASSIGNMENT_TYPES:
        yield from self._visit_assignment(arm_value, arm_scope, SiteKind.MATCH_ARM)
      else:
        yield from self._visit(arm_value, arm_scope)

  def _visit_closure(self, node: Node, scope: Scope) -> Iterator[InstrumentationSite]:
    closure_scope = scope.child("closure")
    params = node.child_by_field_name("parameters")
    if params is not None:
      for param in significant_children(params):
        if param.type == "parameter":
          declared = self.resolver.type_ref(param.child_by_field_name("type"), scope)
          self.resolver.bind_pattern(param.child_by_field_name("pattern"), declared, closure_scope)
        else:
          self.resolver.bind_pattern(param, None, closure_scope)

    body = node.child_by_field_name("body")
    if body is None:
      return
    if body.type in ASSIGNMENT_TYPES:
      yield from self._visit_assignment(body, closure_scope, SiteKind.CLOSURE_BODY)
    else:
      yield from self._visit(body, closure_scope)

  def _visit_for(self, node: Node, scope: Scope) -> Iterator[InstrumentationSite]:
    value = node.child_by_field_name("value")
    if value is not None:
      yield from self._visit(value, scope)
    loop_scope = scope.child("for")
    self.resolver.bind_pattern(node.child_by_field_name("pattern"), None, loop_scope)
    body = node.child_by_field_name("body")
    if body is not None:
      yield from self._visit(body, loop_scope)

  def _visit_conditional(self, node: Node, scope: Scope) -> Iterator[InstrumentationSite]:
    """``if`` / ``while``: let-condition bindings are visible in the first branch only."""
    condition = node.child_by_field_name("condition")
    branch_scope = scope.child(node.type)
    if condition is not None:
      yield from self._visit_condition(condition, scope)
      self.resolver.bind_condition(condition, branch_scope)

    body = node.child_by_field_name("consequence") or node.child_by_field_name("body")
    if body is not None:
      yield from self._visit(body, branch_scope)
    alternative = node.child_by_field_name("alternative")
    if alternative is not None:
      yield from self._visit(alternative, scope)

  def _visit_condition(self, condition: Node, scope: Scope) -> Iterator[InstrumentationSite]:
    if condition.type == "let_condition":
      value = condition.child_by_field_name("value")
      if value is not None:
        yield from self._visit(value, scope)
    elif condition.type == "let_chain":
      for child in significant_children(condition):
        yield from self._visit_condition(child, scope)
    else:
      yield from self._visit(condition, scope)

  def _visit_arguments(self, node: Node, scope: Scope) -> Iterator[InstrumentationSite]:
    for argument in significant_children(node):
      if self.config.instrument_call_arguments and argument.type in ("scoped_identifier", "identifier"):
        resolution = self.resolver.resolve(argument, scope)
        if resolution is not None and resolution.variant is not None:
          site = self._make_site(resolution, SiteKind.CALL_ARGUMENT, argument)
          if site is not None:
            yield site
      yield from self._visit(argument, scope)

  # --- Site construction ---

  def _make_site(self, resolution: Optional[Resolution], kind: SiteKind, host: Node) -> Optional[InstrumentationSite]:
    if resolution is None:
      return None
    if resolution.variant is None and self.config.unknown_variant_policy == UnknownVariantPolicy.SKIP:
      logger.debug("Skipping runtime-only variant of %s at line %d", resolution.enum.name, host.start_point[0] + 1)
      return None

    cfg_attributes: Tuple[str, ...] = ()
    if not kind.needs_wrapper and kind != SiteKind.TAIL_ASSIGN:
      cfg_attributes = tuple(text(a) for a in preceding_attributes(host) if _CFG_RE.match(text(a)))

    return InstrumentationSite(
      kind=kind,
      enum=resolution.enum,
      variant=resolution.variant,
      start_byte=host.start_byte,
      end_byte=host.end_byte,
      line=host.start_point[0] + 1,
      snippet=text(host).split("\n")[0][:_SNIPPET_LIMIT],
      cfg_attributes=cfg_attributes,
      node=host,
    )


def _statement_kind(assignment: Node) -> SiteKind:
  if assignment.type == "compound_assignment_expr":
    return SiteKind.COMPOUND_ASSIGN
  left = assignment.child_by_field_name("left")
  if left is not None and left.type == "field_expression":
    return SiteKind.FIELD_ASSIGN
  if left is not None and left.type == "unary_expression":
    return SiteKind.DEREF_ASSIGN
  return SiteKind.ASSIGN

