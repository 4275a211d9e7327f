"""
Symbol factories, the time domain and math functions for bioproc.

================================================================================
DESIGN PRINCIPLES - DO NOT REMOVE OR IGNORE
================================================================================

1. TYPE SAFETY: All functions MUST use beartype for runtime type checking.
2. SELF-CONTAINED: Math functions return Expr nodes for symbolic inputs and
   Python floats for numeric inputs. Backends compile Expr trees.
3. ONE TIME DOMAIN: the independent variable and the differential operator
   live in a single TimeDomain created at import. Builders close over it;
   it is never redefined per call.

================================================================================
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Optional, Union

from beartype import beartype

from bioproc.expr import Expr, ExprKind, to_expr
from bioproc.types import Number, Var, VarKind


@dataclass(frozen=True)
class TimeDomain:
    """Independent variable ``t`` and the differential operator ``D``."""

    name: str = "t"
    unit: str = "h"

    @property
    def t(self) -> Expr:
        return Expr(ExprKind.TIME)

    def D(self, x: Expr) -> Expr:
        """Time derivative of a variable or of a port to a variable."""
        if x.kind != ExprKind.VARIABLE:
            raise TypeError(f"der() expects a variable, got '{x}'")
        if x.var is not None and not x.var.is_variable:
            raise TypeError(f"der() of {x.var.kind.name.lower()} '{x.name}' is always zero")
        return Expr(
            ExprKind.DERIVATIVE,
            name=x.name,
            owner=x.owner,
            scope=x.scope,
            deferred=x.deferred,
            var=x.var,
        )


TIME = TimeDomain()
t = TIME.t


@beartype
def der(x: Expr) -> Expr:
    """
    Return the time derivative of a variable.

    Works on local symbols and on ports alike::

        der(V_L) == F_in - F_out
        der(X.m) == X.r + feed.Q_in_X
    """
    return TIME.D(x)


# =============================================================================
# Symbol factories
# =============================================================================


def _check_name(name: str) -> None:
    if not name.isidentifier():
        raise ValueError(f"Symbol name '{name}' is not a valid identifier")


@beartype
def variable(name: str, start: Optional[Number] = None, unit: Optional[str] = None, desc: str = "") -> Expr:
    """Create a time-varying variable with an optional start value."""
    _check_name(name)
    return Expr(ExprKind.VARIABLE, name=name, var=Var(name, VarKind.VARIABLE, start, unit, desc))


@beartype
def parameter(name: str, default: Optional[Number] = None, unit: Optional[str] = None, desc: str = "") -> Expr:
    """Create a time-invariant parameter, assignable at solve time."""
    _check_name(name)
    return Expr(ExprKind.VARIABLE, name=name, var=Var(name, VarKind.PARAMETER, default, unit, desc))


@beartype
def constant(name: str, value: Number, unit: Optional[str] = None, desc: str = "") -> Expr:
    """Create a named constant; its value is fixed at build time."""
    _check_name(name)
    return Expr(ExprKind.VARIABLE, name=name, var=Var(name, VarKind.CONSTANT, value, unit, desc))


# =============================================================================
# Math functions
# =============================================================================


def _to_symbolic(x: Any) -> Union[Expr, float]:
    """Convert to Expr or return float for numeric values."""
    if isinstance(x, (int, float)) and not isinstance(x, bool):
        return float(x)
    if isinstance(x, Expr):
        return x
    raise TypeError(f"Cannot convert {type(x)} to symbolic expression")


@beartype
def exp(x: Any) -> Union[Expr, float]:
    """Exponential function."""
    val = _to_symbolic(x)
    if isinstance(val, float):
        return math.exp(val)
    return Expr(ExprKind.EXP, (val,))


@beartype
def log(x: Any) -> Union[Expr, float]:
    """Natural logarithm."""
    val = _to_symbolic(x)
    if isinstance(val, float):
        return math.log(val)
    return Expr(ExprKind.LOG, (val,))


@beartype
def sqrt(x: Any) -> Union[Expr, float]:
    """Square root."""
    val = _to_symbolic(x)
    if isinstance(val, float):
        return math.sqrt(val)
    return Expr(ExprKind.SQRT, (val,))


@beartype
def min(x: Any, y: Any) -> Union[Expr, float]:
    """Minimum of two values (e.g. Blackman saturation ``min(1, K * c)``)."""
    a, b = _to_symbolic(x), _to_symbolic(y)
    if isinstance(a, float) and isinstance(b, float):
        return a if a <= b else b
    return Expr(ExprKind.MIN, (to_expr(a), to_expr(b)))


@beartype
def max(x: Any, y: Any) -> Union[Expr, float]:
    """Maximum of two values."""
    a, b = _to_symbolic(x), _to_symbolic(y)
    if isinstance(a, float) and isinstance(b, float):
        return a if a >= b else b
    return Expr(ExprKind.MAX, (to_expr(a), to_expr(b)))
