"""
Lexical scopes for local bindings.

A `Scope` maps binding names to their declared or inferred `TypeRef`. A name
bound to ``None`` is known to exist but has an untracked type; it still
shadows any enum-typed binding of the same name in an enclosing scope.
Generic type parameters are tracked the same way: inside `fn f<State>` the
name `State` is a type parameter, not the enum.
"""

from typing import AbstractSet, Dict, FrozenSet, Optional

from sg_instrumenter.core.declarations import TypeRef


class Scope:
  """
  Represents a variable scope (function body, block, match arm or closure).
  """

  def __init__(
    self,
    parent: Optional["Scope"] = None,
    name: str = "<root>",
    self_type: Optional[str] = None,
    type_params: AbstractSet[str] = frozenset(),
  ):
    """
    Initialize the scope.

    Args:
        parent: The enclosing scope (None for a function's outermost scope).
        name: Debug name for the scope.
        self_type: Type that ``Self`` and ``self`` refer to. Inherited from the parent when omitted.
        type_params: Generic type parameter names introduced by this scope.
    """
    self.parent = parent
    self.name = name
    self.symbols: Dict[str, Optional[TypeRef]] = {}
    if self_type is None and parent is not None:
      self_type = parent.self_type
    self.self_type = self_type
    self.type_params: FrozenSet[str] = frozenset(type_params)

  def child(self, name: str) -> "Scope":
    return Scope(parent=self, name=name)

  def set(self, name: str, sym_type: Optional[TypeRef]) -> None:
    """
    Register a binding in the current scope.

    Args:
        name: Variable identifier.
        sym_type: Its type, or None if untracked.
    """
    self.symbols[name] = sym_type

  def has(self, name: str) -> bool:
    """True if any enclosing scope binds `name`."""
    if name in self.symbols:
      return True
    return self.parent.has(name) if self.parent else False

  def get(self, name: str) -> Optional[TypeRef]:
    """
    Resolve a binding, traversing parent scopes.

    The nearest binding wins, so an untracked inner binding hides a typed
    outer one.

    Args:
        name: Variable identifier to lookup.

    Returns:
        The TypeRef if the nearest binding is typed, else None.
    """
    if name in self.symbols:
      return self.symbols[name]
    if self.parent:
      return self.parent.get(name)
    return None

  def generics(self) -> FrozenSet[str]:
    """Generic type parameters visible here (own and enclosing)."""
    if self.parent is None:
      return self.type_params
    return self.type_params | self.parent.generics()

  def hides_type(self, name: Optional[str]) -> bool:
    return name is not None and name in self.generics()

  def __repr__(self) -> str:
    return f"Scope({self.name}, {sorted(self.symbols)})"
