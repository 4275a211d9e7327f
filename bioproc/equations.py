"""
Equation representation for bioproc.

An equation is an acausal equality between two expressions. It carries no
orientation: ``F_m == rho * F`` and ``rho * F == F_m`` describe the same
constraint, and structural simplification decides which unknown each
equation determines.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Set

from bioproc.expr import Expr, ExprKind, find_derivatives, find_symbols, map_symbols


@dataclass(frozen=True, eq=False)
class Equation:
    """
    Represents an equation: lhs == rhs.

    Immutable representation of a model equation that can be processed
    by backends for compilation.
    """

    lhs: Expr
    rhs: Expr

    def __repr__(self) -> str:
        return f"Eq({self.lhs} == {self.rhs})"

    @property
    def is_derivative(self) -> bool:
        """True if the LHS is der(x)."""
        return self.lhs.kind == ExprKind.DERIVATIVE

    def symbols(self) -> Set[str]:
        """Names of all symbols referenced on either side."""
        return find_symbols(self.lhs) | find_symbols(self.rhs)

    def derivatives(self) -> Set[str]:
        return find_derivatives(self.lhs) | find_derivatives(self.rhs)

    def map_symbols(self, fn: Callable[[Expr], Expr]) -> "Equation":
        """Create a new equation with every symbol node rewritten by fn."""
        return Equation(lhs=map_symbols(self.lhs, fn), rhs=map_symbols(self.rhs, fn))

    def same(self, other: "Equation") -> bool:
        return self.lhs.same(other.lhs) and self.rhs.same(other.rhs)
