"""
Declaration Index.

Collects the declarations of a single unit that the Type Resolver is allowed
to rely on:

1.  **Enums**: name -> ordered, de-duplicated variants (plus derived traits).
2.  **Structs**: field name (or tuple index) -> declared field type.
3.  **Functions**: free functions and inherent methods -> declared return type.
4.  **Imports**: ``use`` declarations, so that imported enums and imported
    variants (``use State::*``) are visible under their local names.

No inference happens here. A name that is declared both as an enum and as a
non-enum type in the same unit is dropped, because the resolver could not
tell which one an expression refers to. Free functions declared twice (e.g.
in sibling modules) are dropped for the same reason.
"""

import re
from dataclasses import dataclass, field, replace
from typing import AbstractSet, Dict, FrozenSet, Iterable, List, Mapping, Optional, Set, Tuple

from tree_sitter import Node

from sg_instrumenter.core.syntax import path_segments, preceding_attributes, significant_children, text

_DERIVE_RE = re.compile(r"derive\s*\(([^)]*)\)")

_NON_ENUM_TYPE_ITEMS = ("union_item", "type_item")

# Context marker for functions that must not be indexed (trait items, trait impls).
_UNINDEXED = ""


@dataclass(frozen=True)
class EnumTypeDecl:
  """
  A named enum with its variants in declaration order.

  Attributes:
      name: The enum's identifier (IDs are keyed by this name).
      variants: Unique variant names, in declaration order.
      derives: Trait names listed in ``#[derive(...)]`` attributes.
      tuple_variants: Variants declared with positional fields. A bare path to
          one of them is a constructor function, not a value.
  """

  name: str
  variants: Tuple[str, ...]
  derives: FrozenSet[str] = frozenset()
  tuple_variants: FrozenSet[str] = frozenset()

  def has_variant(self, variant: str) -> bool:
    return variant in self.variants

  def is_value_path(self, variant: str) -> bool:
    """True if ``Type::variant`` on its own is a value of the enum."""
    return self.has_variant(variant) and variant not in self.tuple_variants

  def merged_with(self, other: "EnumTypeDecl") -> "EnumTypeDecl":
    """Union of variants (first-seen order) and intersection of derives."""
    variants = tuple(dict.fromkeys(self.variants + other.variants))
    return EnumTypeDecl(
      self.name, variants, self.derives & other.derives, self.tuple_variants | other.tuple_variants
    )


@dataclass(frozen=True)
class TypeRef:
  """
  A statically declared type, reduced to what the resolver needs.

  Attributes:
      name: Last path segment of the type (``State`` for ``crate::m::State<T>``).
      by_ref: True for ``&T`` / ``&mut T``.
  """

  name: str
  by_ref: bool = False

  def as_reference(self) -> "TypeRef":
    return replace(self, by_ref=True)

  def as_value(self) -> "TypeRef":
    return replace(self, by_ref=False)


@dataclass(frozen=True)
class UseImport:
  """One leaf of a ``use`` tree, e.g. ``crate::m::State as S``."""

  segments: Tuple[str, ...]
  alias: Optional[str] = None
  glob: bool = False

  @property
  def local_name(self) -> str:
    return self.alias or self.segments[-1]


def type_ref_from_node(
  node: Optional[Node], self_type: Optional[str] = None, generics: AbstractSet[str] = frozenset()
) -> Optional[TypeRef]:
  """
  Reduces a type node to a TypeRef.

  Args:
      node: A type node (type_identifier, scoped_type_identifier, generic_type, reference_type).
      self_type: The name ``Self`` stands for in the current impl, if any.
      generics: Type parameters in scope. A bare name among them is not a declared type.

  Returns:
      The TypeRef, or None for types the resolver does not follow (tuples,
      arrays, pointers, trait objects, primitives).
  """
  if node is None:
    return None
  if node.type == "reference_type":
    inner = type_ref_from_node(node.child_by_field_name("type"), self_type, generics)
    return inner.as_reference() if inner else None
  if node.type == "generic_type":
    return type_ref_from_node(node.child_by_field_name("type"), self_type, generics)
  if node.type in ("type_identifier", "identifier", "scoped_type_identifier", "scoped_identifier"):
    segments = path_segments(node)
    if not segments:
      return None
    name = segments[-1]
    if name == "Self":
      return TypeRef(self_type) if self_type else None
    if len(segments) == 1 and name in generics:
      return None
    return TypeRef(name)
  return None


def type_parameter_names(item: Optional[Node]) -> FrozenSet[str]:
  """
  Names of the generic type parameters of an item (``fn``, ``impl``, ``struct``).

  Lifetimes and const parameters are not types and are left out.
  """
  if item is None:
    return frozenset()
  params = item.child_by_field_name("type_parameters")
  if params is None:
    return frozenset()
  names: Set[str] = set()
  for param in params.named_children:
    name = _type_parameter_name(param)
    if name:
      names.add(name)
  return frozenset(names)


def _type_parameter_name(param: Node) -> Optional[str]:
  if param.type == "type_identifier":
    return text(param)
  # `T: Bound`, `T = Default` and `type_parameter` nodes keep the name in a field.
  for field_name in ("name", "left"):
    inner = param.child_by_field_name(field_name)
    if inner is not None:
      return _type_parameter_name(inner)
  return None


def enclosing_impl(function: Node) -> Optional[Node]:
  """The ``impl`` block a function is declared directly in, if any."""
  parent = function.parent
  if parent is None or parent.type != "declaration_list":
    return None
  owner = parent.parent
  return owner if owner is not None and owner.type == "impl_item" else None


def impl_type_name(impl_node: Node) -> Optional[str]:
  """Returns the name of the type an ``impl`` block is for."""
  ref = type_ref_from_node(impl_node.child_by_field_name("type"))
  if ref is None or ref.by_ref:
    return None
  return ref.name


def _derives_of(item: Node) -> FrozenSet[str]:
  names: Set[str] = set()
  for attribute in preceding_attributes(item):
    for match in _DERIVE_RE.finditer(text(attribute)):
      for raw in match.group(1).split(","):
        raw = raw.strip()
        if raw:
          names.add(raw.split("::")[-1])
  return frozenset(names)


def _flatten_use(node: Node, prefix: Tuple[str, ...]) -> List[UseImport]:
  """Expands a use tree into its leaves."""
  kind = node.type
  if kind in ("identifier", "scoped_identifier", "self", "crate", "super"):
    segments = path_segments(node)
    return [UseImport(prefix + segments)] if segments else []
  if kind == "use_as_clause":
    segments = path_segments(node.child_by_field_name("path"))
    alias = text(node.child_by_field_name("alias"))
    return [UseImport(prefix + segments, alias=alias)] if segments else []
  if kind == "use_wildcard":
    children = significant_children(node)
    segments = path_segments(children[0]) if children else ()
    return [UseImport(prefix + segments, glob=True)] if prefix + segments else []
  if kind == "scoped_use_list":
    path_node = node.child_by_field_name("path")
    nested_prefix = prefix + (path_segments(path_node) if path_node is not None else ())
    list_node = node.child_by_field_name("list")
    return _flatten_use(list_node, nested_prefix) if list_node is not None else []
  if kind == "use_list":
    imports: List[UseImport] = []
    for child in significant_children(node):
      imports.extend(_flatten_use(child, prefix))
    return imports
  return []


class DeclarationIndex:
  """
  Declarations visible inside one unit.

  Built in two steps: `build` collects what the unit itself declares, `link`
  makes enums from outside the unit (configured or shared by a batch)
  visible and resolves the unit's imports against them. Until `link` has been
  called only local enums are visible.
  """

  def __init__(self) -> None:
    self.local_enums: Dict[str, EnumTypeDecl] = {}
    self.non_enum_types: Set[str] = set()
    self.structs: Dict[str, Dict[str, TypeRef]] = {}
    self.functions: Dict[str, Optional[TypeRef]] = {}
    self.methods: Dict[Tuple[str, str], Optional[TypeRef]] = {}
    self.constants: Set[str] = set()
    self.imports: List[UseImport] = []

    self._visible: Dict[str, EnumTypeDecl] = {}
    self._imported_variants: Dict[str, Tuple[EnumTypeDecl, str]] = {}
    self._ambiguous_functions: Set[str] = set()
    self._ambiguous_structs: Set[str] = set()

  # --- Collection ---

  @classmethod
  def build(cls, root: Node) -> "DeclarationIndex":
    """
    Walks a whole unit and collects its declarations.

    Args:
        root: The unit's ``source_file`` node.

    Returns:
        DeclarationIndex: Index with local declarations, already linked with
        nothing external.
    """
    index = cls()
    stack: List[Tuple[Node, Optional[str]]] = [(root, None)]
    while stack:
      node, impl_type = stack.pop()
      kind = node.type

      if kind == "enum_item":
        index._add_enum(node)
      elif kind == "struct_item":
        index._add_struct(node)
      elif kind in _NON_ENUM_TYPE_ITEMS:
        index.non_enum_types.add(text(node.child_by_field_name("name")))
      elif kind in ("const_item", "static_item"):
        index.constants.add(text(node.child_by_field_name("name")))
      elif kind == "use_declaration":
        argument = node.child_by_field_name("argument")
        if argument is not None:
          index.imports.extend(_flatten_use(argument, ()))
      elif kind == "function_item":
        index._add_function(node, impl_type)
        # Items nested in a function body are not part of the impl.
        impl_type = None
      elif kind == "impl_item":
        is_inherent = node.child_by_field_name("trait") is None
        impl_type = (impl_type_name(node) if is_inherent else None) or _UNINDEXED
        body = node.child_by_field_name("body")
        if body is not None:
          stack.extend((child, impl_type) for child in reversed(body.named_children))
        continue
      elif kind == "trait_item":
        index.non_enum_types.add(text(node.child_by_field_name("name")))
        impl_type = _UNINDEXED

      stack.extend((child, impl_type) for child in reversed(node.named_children))

    index.link()
    return index

  def _add_enum(self, node: Node) -> None:
    name = text(node.child_by_field_name("name"))
    body = node.child_by_field_name("body")
    variants: List[str] = []
    tuple_variants: Set[str] = set()
    if body is not None:
      for child in body.named_children:
        if child.type == "enum_variant":
          variant = text(child.child_by_field_name("name"))
          variants.append(variant)
          fields = child.child_by_field_name("body")
          if fields is not None and fields.type == "ordered_field_declaration_list":
            tuple_variants.add(variant)
    decl = EnumTypeDecl(name, tuple(dict.fromkeys(variants)), _derives_of(node), frozenset(tuple_variants))
    existing = self.local_enums.get(name)
    self.local_enums[name] = existing.merged_with(decl) if existing else decl

  def _add_struct(self, node: Node) -> None:
    name = text(node.child_by_field_name("name"))
    self.non_enum_types.add(name)
    if name in self.structs:
      self._ambiguous_structs.add(name)
      return
    generics = type_parameter_names(node)
    fields: Dict[str, TypeRef] = {}
    body = node.child_by_field_name("body")
    if body is not None and body.type == "field_declaration_list":
      for decl in body.named_children:
        if decl.type != "field_declaration":
          continue
        ref = type_ref_from_node(decl.child_by_field_name("type"), name, generics)
        if ref is not None:
          fields[text(decl.child_by_field_name("name"))] = ref
    elif body is not None and body.type == "ordered_field_declaration_list":
      for position, type_node in enumerate(body.children_by_field_name("type")):
        ref = type_ref_from_node(type_node, name, generics)
        if ref is not None:
          fields[str(position)] = ref
    self.structs[name] = fields

  def _add_function(self, node: Node, impl_type: Optional[str]) -> None:
    name = text(node.child_by_field_name("name"))
    if impl_type == _UNINDEXED:
      return
    generics = type_parameter_names(node)
    if impl_type is not None:
      generics |= type_parameter_names(enclosing_impl(node))
    returns = type_ref_from_node(node.child_by_field_name("return_type"), impl_type, generics)
    if impl_type is not None:
      self.methods[(impl_type, name)] = returns
      return
    if name in self.functions:
      self._ambiguous_functions.add(name)
    self.functions[name] = returns

  # --- Linking ---

  def link(
    self,
    external: Optional[Mapping[str, EnumTypeDecl]] = None,
    always_visible: Iterable[EnumTypeDecl] = (),
  ) -> None:
    """
    Computes the set of visible enums.

    Args:
        external: Enums declared elsewhere (e.g. other units of a batch).
            They become visible only through a ``use`` naming them.
        always_visible: Enums visible without an import (configured ``known_enums``).
    """
    external = external or {}
    visible: Dict[str, EnumTypeDecl] = {decl.name: decl for decl in always_visible}
    visible.update(self.local_enums)

    for imp in self.imports:
      if imp.glob or imp.local_name in self.local_enums:
        continue
      target = imp.segments[-1]
      decl = external.get(target) or visible.get(target)
      if decl is not None:
        visible[imp.local_name] = decl

    for name in self.non_enum_types:
      visible.pop(name, None)
    self._visible = visible

    imported: Dict[str, Tuple[EnumTypeDecl, str]] = {}
    for imp in self.imports:
      if imp.glob:
        owner = self._visible.get(imp.segments[-1])
        if owner is not None:
          for variant in owner.variants:
            imported.setdefault(variant, (owner, variant))
      elif len(imp.segments) >= 2:
        owner = self._visible.get(imp.segments[-2])
        if owner is not None and owner.has_variant(imp.segments[-1]):
          imported[imp.local_name] = (owner, imp.segments[-1])
    self._imported_variants = imported

  # --- Queries ---

  @property
  def visible_enums(self) -> Dict[str, EnumTypeDecl]:
    return dict(self._visible)

  def enum(self, name: Optional[str]) -> Optional[EnumTypeDecl]:
    """Returns the visible enum called `name`, if any."""
    if not name:
      return None
    return self._visible.get(name)

  def imported_variant(self, name: str) -> Optional[Tuple[EnumTypeDecl, str]]:
    """Resolves a bare identifier that a ``use`` brought in as an enum variant."""
    return self._imported_variants.get(name)

  def struct_field(self, type_name: str, field_name: str) -> Optional[TypeRef]:
    if type_name in self._ambiguous_structs:
      return None
    return self.structs.get(type_name, {}).get(field_name)

  def function_return(self, name: str) -> Optional[TypeRef]:
    if name in self._ambiguous_functions:
      return None
    return self.functions.get(name)

  def method_return(self, type_name: str, method: str) -> Optional[TypeRef]:
    return self.methods.get((type_name, method))

  def is_constant(self, name: str) -> bool:
    return name in self.constants

  def names_a_value(self, name: str) -> bool:
    """
    True if a bare identifier in a pattern refers to something other than a
    fresh binding (an imported variant, a constant, or a capitalised path).
    """
    return name in self._imported_variants or name in self.constants or name[:1].isupper()


@dataclass
class DeclarationPool:
  """
  Enums collected from every unit of a batch, keyed by name.

  Used when declarations are shared between units. Units are added in input
  order so merging stays deterministic.
  """

  enums: Dict[str, EnumTypeDecl] = field(default_factory=dict)
  non_enum_types: Set[str] = field(default_factory=set)

  def add(self, index: DeclarationIndex) -> None:
    self.non_enum_types.update(index.non_enum_types)
    for name, decl in index.local_enums.items():
      existing = self.enums.get(name)
      self.enums[name] = existing.merged_with(decl) if existing else decl

  def shared(self) -> Dict[str, EnumTypeDecl]:
    return {name: decl for name, decl in self.enums.items() if name not in self.non_enum_types}
