"""
Expression tree representation for bioproc.

This module contains the core Expr class and ExprKind enum that form
the abstract syntax tree for symbolic expressions. Equations, fragments
and the flattened system are all built from these immutable nodes; the
tree is backend-agnostic and compiled to CasADi or SymPy by backends.

================================================================================
DESIGN PRINCIPLES - DO NOT REMOVE OR IGNORE
================================================================================

1. TYPE SAFETY: All functions MUST use beartype for runtime type checking.
2. SELF-CONTAINED: NO external compute libraries (CasADi, SymPy) in the core.
3. IMMUTABILITY: Expr nodes are frozen; every rewrite returns a new tree.

================================================================================

Symbol references
=================

VARIABLE and DERIVATIVE nodes refer to a symbol by its local name. Two extra
fields say where that name lives:

- ``owner``: uid of the fragment that declared the symbol. ``None`` means
  "the fragment whose equation contains this node" (a local symbol).
- ``deferred``: the owner is not below the referencing fragment; it is
  looked up among the referencing fragment's ancestors when flattening.

After flattening every reference is owner-less and carries its qualified
name (``R.F1.F``).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Callable, Dict, Optional, Set, Tuple

import numpy as np
from beartype import beartype

from bioproc.types import Var


class ExprKind(Enum):
    """Kinds of expression nodes."""

    # Leaf nodes
    VARIABLE = auto()  # Named symbol (variable, parameter or constant)
    DERIVATIVE = auto()  # der(x) - time derivative of a variable
    CONSTANT = auto()  # Numeric literal
    TIME = auto()  # Independent variable t

    # Unary operations
    NEG = auto()

    # Binary arithmetic operations
    ADD = auto()
    SUB = auto()
    MUL = auto()
    DIV = auto()
    POW = auto()

    # Math functions
    EXP = auto()
    LOG = auto()
    SQRT = auto()
    MIN = auto()
    MAX = auto()


_BINARY_SYMBOLS = {
    ExprKind.ADD: "+",
    ExprKind.SUB: "-",
    ExprKind.MUL: "*",
    ExprKind.DIV: "/",
    ExprKind.POW: "**",
}


@dataclass(frozen=True, eq=False)
class Expr:
    """
    Immutable expression tree node.

    ``==`` does not compare: it builds an :class:`~bioproc.equations.Equation`
    (acausal equality), so fragment builders can write ``F_m == rho * F``.
    Use :meth:`same` for structural comparison.
    """

    kind: ExprKind
    children: Tuple["Expr", ...] = ()
    name: Optional[str] = None  # For VARIABLE, DERIVATIVE
    value: Optional[float] = None  # For CONSTANT
    owner: Optional[int] = None  # uid of the owning fragment, None = local
    scope: Optional[str] = None  # owner's name, for display only
    deferred: bool = False
    var: Optional[Var] = None  # declaration, set on freshly created symbols

    def __repr__(self) -> str:
        if self.kind == ExprKind.VARIABLE:
            return self.label
        elif self.kind == ExprKind.DERIVATIVE:
            return f"der({self.label})"
        elif self.kind == ExprKind.CONSTANT:
            return f"{self.value}"
        elif self.kind == ExprKind.TIME:
            return "t"
        elif self.kind == ExprKind.NEG:
            return f"(-{self.children[0]})"
        elif self.kind in _BINARY_SYMBOLS:
            return f"({self.children[0]} {_BINARY_SYMBOLS[self.kind]} {self.children[1]})"
        elif self.kind in (ExprKind.MIN, ExprKind.MAX):
            return f"{self.kind.name.lower()}({self.children[0]}, {self.children[1]})"
        return f"{self.kind.name.lower()}({self.children[0]})"

    @property
    def label(self) -> str:
        """Display name: 'x', 'F1.F' or '^R.V_L' for a deferred port."""
        label = f"{self.scope}.{self.name}" if self.scope else f"{self.name}"
        return f"^{label}" if self.deferred else label

    @property
    def is_symbol(self) -> bool:
        return self.kind in (ExprKind.VARIABLE, ExprKind.DERIVATIVE)

    def key(self) -> Tuple[Any, ...]:
        """Structural identity (ignores declaration metadata)."""
        return (
            self.kind,
            tuple(c.key() for c in self.children),
            self.name,
            self.value,
            self.owner,
            self.deferred,
        )

    def same(self, other: "Expr") -> bool:
        """Structural equality."""
        return self.key() == other.key()

    # Arithmetic operators - return new Expr nodes
    def __add__(self, other: Any) -> "Expr":
        return Expr(ExprKind.ADD, (self, to_expr(other)))

    def __radd__(self, other: Any) -> "Expr":
        return Expr(ExprKind.ADD, (to_expr(other), self))

    def __sub__(self, other: Any) -> "Expr":
        return Expr(ExprKind.SUB, (self, to_expr(other)))

    def __rsub__(self, other: Any) -> "Expr":
        return Expr(ExprKind.SUB, (to_expr(other), self))

    def __mul__(self, other: Any) -> "Expr":
        return Expr(ExprKind.MUL, (self, to_expr(other)))

    def __rmul__(self, other: Any) -> "Expr":
        return Expr(ExprKind.MUL, (to_expr(other), self))

    def __truediv__(self, other: Any) -> "Expr":
        return Expr(ExprKind.DIV, (self, to_expr(other)))

    def __rtruediv__(self, other: Any) -> "Expr":
        return Expr(ExprKind.DIV, (to_expr(other), self))

    def __pow__(self, other: Any) -> "Expr":
        return Expr(ExprKind.POW, (self, to_expr(other)))

    def __rpow__(self, other: Any) -> "Expr":
        return Expr(ExprKind.POW, (to_expr(other), self))

    def __neg__(self) -> "Expr":
        return Expr(ExprKind.NEG, (self,))

    def __pos__(self) -> "Expr":
        return self

    def __eq__(self, other: Any) -> Any:  # type: ignore[override]
        """Build the equation ``self == other``."""
        from bioproc.equations import Equation

        return Equation(lhs=self, rhs=to_expr(other))

    def __hash__(self) -> int:
        """Hash based on structure.

        Required because we override __eq__.
        """
        return hash(self.key())


@beartype
def to_expr(x: Any) -> Expr:
    """Convert numbers and expressions to Expr."""
    if isinstance(x, Expr):
        return x
    if isinstance(x, bool):
        raise TypeError("Cannot use a bool in a symbolic expression")
    if isinstance(x, (int, float)):
        return Expr(ExprKind.CONSTANT, value=float(x))
    if isinstance(x, np.ndarray) and x.size == 1:
        return Expr(ExprKind.CONSTANT, value=float(x.flat[0]))
    raise TypeError(f"Cannot convert {type(x)} to Expr")


@beartype
def find_derivatives(expr: Expr) -> Set[str]:
    """
    Find all variable names whose derivative (der) appears in an expression.

    This is used for automatic state detection: if der(x) appears anywhere
    in the equations, then x is a state variable.
    """
    result: Set[str] = set()

    if expr.kind == ExprKind.DERIVATIVE and expr.name:
        result.add(expr.name)

    for child in expr.children:
        result.update(find_derivatives(child))

    return result


@beartype
def find_symbols(expr: Expr) -> Set[str]:
    """Find all names referenced by VARIABLE or DERIVATIVE nodes."""
    result: Set[str] = set()

    if expr.is_symbol and expr.name:
        result.add(expr.name)

    for child in expr.children:
        result.update(find_symbols(child))

    return result


def iter_symbols(expr: Expr):
    """Yield every VARIABLE and DERIVATIVE node, pre-order."""
    if expr.is_symbol:
        yield expr
    for child in expr.children:
        yield from iter_symbols(child)


def map_symbols(expr: Expr, fn: Callable[[Expr], Expr]) -> Expr:
    """
    Rebuild an expression with every VARIABLE/DERIVATIVE node replaced by fn(node).

    This is the single rewrite primitive used by renaming (flattening),
    port deferral and substitution.
    """
    if expr.is_symbol:
        return fn(expr)
    if not expr.children:
        return expr
    return Expr(
        kind=expr.kind,
        children=tuple(map_symbols(c, fn) for c in expr.children),
        name=expr.name,
        value=expr.value,
    )


@beartype
def substitute(expr: Expr, replacements: Dict[str, Expr]) -> Expr:
    """Replace VARIABLE nodes (by qualified name) with expressions."""

    def replace(node: Expr) -> Expr:
        if node.kind == ExprKind.VARIABLE and node.name in replacements:
            return replacements[node.name]
        return node

    return map_symbols(expr, replace)
