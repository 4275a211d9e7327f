"""
SymPy backend for bioproc.

Converts flattened (or simplified) systems to SymPy for symbolic analysis
and LaTeX export.

================================================================================
SymPy Backend Features
================================================================================

- **Equations**: every flattened equation as ``sympy.Eq``
- **LaTeX Output**: the equation set as an ``align`` environment
- **Defining expressions**: the right-hand side of an algebraic variable with
  the other algebraics substituted, e.g. the closed form of a kinetic rate

================================================================================
"""

from __future__ import annotations

from typing import Dict, List, Optional, Set, Union

import sympy as sp
from beartype import beartype
from sympy import Eq, Max, Min, Symbol, exp, log, sqrt

from bioproc.causality import SimplifiedSystem, der_name
from bioproc.equations import Equation
from bioproc.expr import Expr, ExprKind
from bioproc.flat_model import FlatSystem

# =============================================================================
# Expression Conversion - Dispatch Table
# =============================================================================


def _make_expr_handlers():
    """Create dispatch table for expression conversion to SymPy."""
    unary_math = {
        ExprKind.NEG: lambda c, e: -c(e.children[0]),
        ExprKind.SQRT: lambda c, e: sqrt(c(e.children[0])),
        ExprKind.EXP: lambda c, e: exp(c(e.children[0])),
        ExprKind.LOG: lambda c, e: log(c(e.children[0])),
    }

    binary_math = {
        ExprKind.ADD: lambda c, e: c(e.children[0]) + c(e.children[1]),
        ExprKind.SUB: lambda c, e: c(e.children[0]) - c(e.children[1]),
        ExprKind.MUL: lambda c, e: c(e.children[0]) * c(e.children[1]),
        ExprKind.DIV: lambda c, e: c(e.children[0]) / c(e.children[1]),
        ExprKind.POW: lambda c, e: c(e.children[0]) ** c(e.children[1]),
        ExprKind.MIN: lambda c, e: Min(c(e.children[0]), c(e.children[1])),
        ExprKind.MAX: lambda c, e: Max(c(e.children[0]), c(e.children[1])),
    }

    return {**unary_math, **binary_math}


EXPR_HANDLERS = _make_expr_handlers()


class SympyBackend:
    """
    SymPy view of a flattened system.

    Parameters
    ----------
    system : FlatSystem or SimplifiedSystem
        With a SimplifiedSystem, :meth:`expression` uses the solved and
        alias equations; with a FlatSystem it uses equations whose left-hand
        side is the variable itself.

    Example
    -------
    >>> sym = SympyBackend(flatten(monod(name="mnd")))  # doctest: +SKIP
    >>> sym.expression("r_norm")  # doctest: +SKIP
    c/(K + c)
    """

    @beartype
    def __init__(self, system: Union[FlatSystem, SimplifiedSystem]):
        if isinstance(system, SimplifiedSystem):
            self.simplified: Optional[SimplifiedSystem] = system
            self.flat = system.flat
        else:
            self.simplified = None
            self.flat = system

        self.t_sym = Symbol("t", real=True)
        self.symbols: Dict[str, Symbol] = {}
        for name in self.flat.variables:
            self.symbols[name] = Symbol(name, real=True)
        for name in self.flat.parameters:
            self.symbols[name] = Symbol(name, real=True, positive=True)
        for name in self.flat.constants:
            self.symbols[name] = Symbol(name, real=True, positive=True)
        self.derivative_symbols: Dict[str, Symbol] = {}

    @beartype
    def symbol(self, name: str) -> Symbol:
        """SymPy symbol of a qualified name."""
        if name not in self.symbols:
            raise KeyError(f"'{name}' is not a symbol of '{self.flat.name}'")
        return self.symbols[name]

    def expr_to_sympy(self, expr: Expr) -> sp.Basic:
        """Convert an Expr tree to a SymPy expression."""
        kind = expr.kind

        if kind == ExprKind.CONSTANT:
            value = expr.value
            return sp.Integer(int(value)) if float(value).is_integer() else sp.Float(value)

        if kind == ExprKind.VARIABLE:
            return self.symbol(expr.name)

        # Derivative: der(x) -> der(x) symbol
        if kind == ExprKind.DERIVATIVE:
            name = expr.name
            if name not in self.derivative_symbols:
                self.symbol(name)
                self.derivative_symbols[name] = Symbol(der_name(name), real=True)
            return self.derivative_symbols[name]

        if kind == ExprKind.TIME:
            return self.t_sym

        if kind in EXPR_HANDLERS:
            return EXPR_HANDLERS[kind](self.expr_to_sympy, expr)

        raise ValueError(f"Unsupported expression kind: {kind}")

    def equation_to_sympy(self, eq: Equation) -> Eq:
        return Eq(self.expr_to_sympy(eq.lhs), self.expr_to_sympy(eq.rhs), evaluate=False)

    def equations(self) -> List[Eq]:
        """All flattened equations, in flattening order."""
        return [self.equation_to_sympy(eq) for eq in self.flat.equations]

    def _definitions(self) -> Dict[str, Expr]:
        if self.simplified is not None:
            definitions = {s.var_name: s.expr for s in self.simplified.observed}
            definitions.update(self.simplified.aliases)
            return definitions
        definitions: Dict[str, Expr] = {}
        for eq in self.flat.equations:
            lhs = eq.lhs
            if lhs.kind == ExprKind.VARIABLE and lhs.name in self.flat.variables and lhs.name not in definitions:
                definitions[lhs.name] = eq.rhs
        return definitions

    @beartype
    def expression(self, name: str, constants: bool = True) -> sp.Basic:
        """
        Defining expression of a variable or state derivative.

        Algebraic variables with a defining equation are substituted
        recursively, so the result is in terms of states, inputs, parameters
        and variables without one.

        Parameters
        ----------
        name : str
            Qualified variable name, or ``der(name)`` for a state derivative
        constants : bool
            Replace constants by their values
        """
        definitions = self._definitions()
        if name.startswith("der("):
            state = name[4:-1]
            if self.simplified is not None and state in self.simplified.state_equations:
                root = self.simplified.state_equations[state]
            else:
                matches = [eq.rhs for eq in self.flat.equations if eq.is_derivative and eq.lhs.name == state]
                if not matches:
                    raise KeyError(f"No equation defines '{name}' in '{self.flat.name}'")
                root = matches[0]
        elif name in definitions:
            root = definitions[name]
        else:
            raise KeyError(f"No equation defines '{name}' in '{self.flat.name}'")

        result = self.expr_to_sympy(root)
        expanded: Set[str] = {name}
        while True:
            pending = {
                self.symbols[n]: self.expr_to_sympy(definitions[n])
                for n in definitions
                if n not in expanded and self.symbols[n] in result.free_symbols
            }
            if not pending:
                break
            expanded |= {str(s) for s in pending}
            result = result.xreplace(pending)

        if constants:
            result = result.xreplace(
                {self.symbols[n]: sp.Float(v) for n, v in self.flat.constant_values.items()}
            )
        return result

    def latex(self) -> str:
        """LaTeX ``align`` environment with one line per equation."""
        lines = [f"{sp.latex(eq.lhs)} &= {sp.latex(eq.rhs)}" for eq in self.equations()]
        body = " \\\\\n".join(lines)
        return f"\\begin{{align}}\n{body}\n\\end{{align}}"

    def __repr__(self) -> str:
        return f"SympyBackend('{self.flat.name}', equations={len(self.flat.equations)})"
