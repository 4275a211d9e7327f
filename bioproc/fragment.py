"""
Fragments and port binding for bioproc.

A fragment is an immutable, named bundle of local symbols, equations and
child fragments. Fragments are built bottom-up by builder functions and
composed by passing already-built fragments as children of a new one; a
child is never modified by composition.

================================================================================
DESIGN PRINCIPLES - DO NOT REMOVE OR IGNORE
================================================================================

1. TYPE SAFETY: All functions MUST use beartype for runtime type checking.
2. IMMUTABILITY: Fragments are never mutated after construction.
3. OWNERSHIP: A symbol is owned by the fragment that declared it. Ports are
   non-owning aliases used only to write coupling equations.
4. FAIL AT BUILD TIME: collisions and unbound ports abort the builder call.

================================================================================

Ports
=====

Accessing a symbol on a fragment returns a port to it::

    F1 = flow(name="F1")
    R = tank(F1, name="R")
    R.V_L          # port to the tank's liquid volume
    R.F1.F         # port to the flow rate of the tank's child F1

A port is *immediate* when its owner is the referencing fragment's child (or
deeper descendant). When the owner is not below the referencing fragment,
for example a component that needs the volume of the tank it is dissolved
in, the port is made *deferred* with :func:`parent_scope`::

    c == m / parent_scope(reactor.V_L)

A deferred port is resolved during flattening at the first ancestor of the
referencing fragment whose subtree contains the owner.
"""

from __future__ import annotations

import itertools
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple, Union

from beartype import beartype

from bioproc.equations import Equation
from bioproc.errors import NameCollisionError, UnresolvedPortError
from bioproc.expr import Expr, ExprKind, iter_symbols, map_symbols
from bioproc.types import Var, VarKind

_uids = itertools.count(1)


class Fragment:
    """
    Immutable model fragment.

    Parameters
    ----------
    name : str
        Fragment name; becomes one level of the qualified names of its symbols
    equations : sequence of Equation
        Equations written in terms of local symbols and ports
    variables, parameters : sequence of Expr
        Symbols created with variable()/parameter()/constant(). Symbols that
        appear in the equations are registered automatically; listing them
        fixes the declaration order.
    children : sequence of Fragment
        Sub-fragments composed into this one
    description : str
        Free text
    """

    __slots__ = ("_name", "_uid", "_symbols", "_equations", "_children", "_absorbed", "_subtree", "_description")

    def __init__(
        self,
        name: str,
        equations: Sequence[Equation] = (),
        variables: Sequence[Expr] = (),
        parameters: Sequence[Expr] = (),
        children: Sequence["Fragment"] = (),
        description: str = "",
        _absorbed: FrozenSet[int] = frozenset(),
    ):
        if not name.isidentifier():
            raise ValueError(f"Fragment name '{name}' is not a valid identifier")
        uid = next(_uids)
        absorbed = frozenset(_absorbed)

        symbols: Dict[str, Var] = {}
        for sym in list(variables) + list(parameters):
            if sym.kind != ExprKind.VARIABLE or sym.var is None or sym.owner is not None:
                raise TypeError(f"Fragment '{name}': '{sym}' is not a freshly created symbol")
            _register(name, symbols, sym.var)

        # Symbols discovered from the equations
        for eq in equations:
            for node in _equation_symbols(eq):
                if node.owner is None and node.var is not None:
                    _register(name, symbols, node.var)

        child_map: Dict[str, Fragment] = {}
        for child in children:
            if child._name in child_map:
                raise NameCollisionError(
                    f"Fragment '{name}' has two children named '{child._name}' "
                    f"(fragments #{child_map[child._name]._uid} and #{child._uid})"
                )
            if child._name in symbols:
                raise NameCollisionError(f"Fragment '{name}': child '{child._name}' collides with a local symbol")
            child_map[child._name] = child

        subtree = {uid} | set(absorbed)
        for child in child_map.values():
            if child._subtree & subtree:
                raise NameCollisionError(f"Fragment '{child._name}' appears more than once below '{name}'")
            subtree |= child._subtree

        local = {uid} | set(absorbed)
        for eq in equations:
            for node in _equation_symbols(eq):
                if node.deferred:
                    continue
                if node.owner is None or node.owner in local:
                    if node.name not in symbols:
                        raise UnresolvedPortError(f"Fragment '{name}': symbol '{node.name}' is not declared")
                elif node.owner not in subtree:
                    raise UnresolvedPortError(
                        f"Fragment '{name}': port '{node.label}' does not point into its children; "
                        f"use parent_scope() for a deferred binding"
                    )

        set_ = object.__setattr__
        set_(self, "_name", name)
        set_(self, "_uid", uid)
        set_(self, "_symbols", MappingProxyType(symbols))
        set_(self, "_equations", tuple(equations))
        set_(self, "_children", tuple(child_map.values()))
        set_(self, "_absorbed", absorbed)
        set_(self, "_subtree", frozenset(subtree))
        set_(self, "_description", description)

    def __setattr__(self, attr: str, value: Any) -> None:
        raise AttributeError(f"Fragment '{self._name}' is immutable")

    def __delattr__(self, attr: str) -> None:
        raise AttributeError(f"Fragment '{self._name}' is immutable")

    def __getattr__(self, attr: str) -> Any:
        """Ports to local symbols and access to children."""
        if attr.startswith("_"):
            raise AttributeError(attr)
        if attr in self._symbols:
            return self.port(attr)
        for child in self._children:
            if child._name == attr:
                return child
        raise AttributeError(f"Fragment '{self._name}' has no symbol or child '{attr}'")

    def __repr__(self) -> str:
        parts = [f"'{self._name}'"]
        variables = [n for n, v in self._symbols.items() if v.kind == VarKind.VARIABLE]
        parameters = [n for n, v in self._symbols.items() if v.kind != VarKind.VARIABLE]
        if variables:
            parts.append(f"variables={variables}")
        if parameters:
            parts.append(f"parameters={parameters}")
        if self._children:
            parts.append(f"children={[c._name for c in self._children]}")
        parts.append(f"equations={len(self._equations)}")
        return f"Fragment({', '.join(parts)})"

    @property
    def name(self) -> str:
        return self._name

    @property
    def uid(self) -> int:
        """Identity of this fragment; ports refer to their owner by uid."""
        return self._uid

    @property
    def symbols(self) -> Mapping[str, Var]:
        return self._symbols

    @property
    def equations(self) -> Tuple[Equation, ...]:
        return self._equations

    @property
    def children(self) -> Tuple["Fragment", ...]:
        return self._children

    @property
    def absorbed(self) -> FrozenSet[int]:
        """Uids of fragments merged into this one by extend()."""
        return self._absorbed

    @property
    def description(self) -> str:
        return self._description

    def owns(self, uid: int) -> bool:
        return uid == self._uid or uid in self._absorbed

    def contains(self, uid: int) -> bool:
        """True if the fragment with this uid is this one or below it."""
        return uid in self._subtree

    def has_symbol(self, name: str, kind: Optional[VarKind] = None) -> bool:
        var = self._symbols.get(name)
        return var is not None and (kind is None or var.kind == kind)

    def symbol(self, name: str) -> Var:
        try:
            return self._symbols[name]
        except KeyError:
            raise UnresolvedPortError(f"Fragment '{self._name}' has no symbol '{name}'") from None

    def child(self, name: str) -> "Fragment":
        for child in self._children:
            if child._name == name:
                return child
        raise KeyError(f"Fragment '{self._name}' has no child '{name}'")

    def port(self, name: str, deferred: bool = False) -> Expr:
        """Port to one of this fragment's symbols."""
        self.symbol(name)
        return Expr(ExprKind.VARIABLE, name=name, owner=self._uid, scope=self._name, deferred=deferred)


def _register(fragment_name: str, symbols: Dict[str, Var], var: Var) -> None:
    known = symbols.get(var.name)
    if known is None:
        symbols[var.name] = var
    elif known is not var:
        # one declaration per name, even when two symbols carry equal metadata
        raise NameCollisionError(f"Fragment '{fragment_name}' declares '{var.name}' twice: {known} and {var}")


def _equation_symbols(eq: Equation) -> List[Expr]:
    return list(iter_symbols(eq.lhs)) + list(iter_symbols(eq.rhs))


# =============================================================================
# Port binding
# =============================================================================


@beartype
def bind_port(owner: Fragment, symbol: Union[str, Expr], deferred: bool = False) -> Expr:
    """
    Bind a port to a symbol owned by another fragment.

    Parameters
    ----------
    owner : Fragment
        Fragment that declared the symbol
    symbol : str or Expr
        Symbol name, the symbol itself, or an existing port to it
    deferred : bool
        Resolve against the referencing fragment's ancestors instead of its
        children

    Returns
    -------
    Expr
        A VARIABLE node usable in equations like a local symbol. No new
        symbol is created.
    """
    if isinstance(symbol, Expr):
        if symbol.kind != ExprKind.VARIABLE:
            raise TypeError(f"Cannot bind a port to expression '{symbol}'")
        if symbol.owner is not None and not owner.owns(symbol.owner):
            raise UnresolvedPortError(f"'{symbol.label}' is not owned by fragment '{owner.name}'")
        symbol = symbol.name
    return owner.port(symbol, deferred=deferred)


@beartype
def parent_scope(expr: Expr) -> Expr:
    """
    Defer every port in an expression to the referencing fragment's ancestors.

    This is a pure rewrite: the returned expression holds deferred copies of
    the ports; the argument is unchanged.
    """

    def defer(node: Expr) -> Expr:
        if node.owner is None:
            raise UnresolvedPortError(f"Local symbol '{node.name}' cannot be deferred; bind a port to its owner")
        return Expr(node.kind, name=node.name, owner=node.owner, scope=node.scope, deferred=True)

    return map_symbols(expr, defer)


# =============================================================================
# Composition
# =============================================================================


@beartype
def extend(
    base: Fragment,
    name: str,
    equations: Sequence[Equation] = (),
    variables: Sequence[Expr] = (),
    parameters: Sequence[Expr] = (),
    children: Sequence[Fragment] = (),
    description: str = "",
) -> Fragment:
    """
    Build a fragment that merges ``base`` without adding a namespace level.

    The result owns the symbols, equations (base first) and children of
    ``base`` plus the given ones. Ports taken on ``base`` can be used in
    ``equations`` and resolve to the result::

        qiS = extend(mnd, "qiS", [r == r_max * mnd.r_norm])
    """
    inherited = [Expr(ExprKind.VARIABLE, name=v.name, var=v) for v in base.symbols.values()]
    return Fragment(
        name,
        equations=base.equations + tuple(equations),
        variables=inherited + list(variables),
        parameters=parameters,
        children=base.children + tuple(children),
        description=description or base.description,
        _absorbed=base.absorbed | {base.uid},
    )


@beartype
def require_symbol(fragment: Fragment, name: str, error: type, role: str, kind: VarKind = VarKind.VARIABLE) -> Expr:
    """Port to a symbol a builder depends on, or ``error`` if it is missing."""
    if not fragment.has_symbol(name, kind):
        raise error(f"Fragment '{fragment.name}' cannot be used as {role}: it has no {kind.name.lower()} '{name}'")
    return fragment.port(name)
