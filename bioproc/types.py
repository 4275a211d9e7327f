"""
Symbol descriptors for bioproc.

================================================================================
DESIGN PRINCIPLES - DO NOT REMOVE OR IGNORE
================================================================================

1. TYPE SAFETY: All functions MUST use beartype for runtime type checking.
   - Numeric options are typed with the Number alias (int or float)
2. IMMUTABILITY: Symbol descriptors are frozen dataclasses. A symbol is
   owned by exactly one fragment and never modified after creation.

================================================================================

Symbol Kinds
============

- **variable**: time-varying quantity, classified after flattening as
  state (its derivative appears) or algebraic (otherwise)
- **parameter**: time-invariant, value supplied at solve time
- **constant**: time-invariant, value fixed at build time
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional, Union

# Numeric option values (builder defaults, start values)
Number = Union[float, int]


class VarKind(Enum):
    """Declared kind of a symbol."""

    VARIABLE = auto()  # time-varying, depends on t
    PARAMETER = auto()  # time-invariant, assignable at solve time
    CONSTANT = auto()  # time-invariant, fixed at build time


@dataclass(frozen=True)
class Var:
    """
    Metadata of a declared symbol.

    Attributes
    ----------
    name : str
        Local (unqualified) name inside the declaring fragment
    kind : VarKind
        Variable, parameter or constant
    default : Number, optional
        Default parameter value, constant value, or start value of a variable
    unit : str, optional
        Physical unit (e.g. "g/L", "L/h")
    desc : str
        Free-text description
    """

    name: str
    kind: VarKind = VarKind.VARIABLE
    default: Optional[Number] = None
    unit: Optional[str] = None
    desc: str = ""

    @property
    def is_variable(self) -> bool:
        return self.kind == VarKind.VARIABLE

    def renamed(self, name: str) -> "Var":
        """Return a copy with a (qualified) name."""
        return Var(name=name, kind=self.kind, default=self.default, unit=self.unit, desc=self.desc)

    def __repr__(self) -> str:
        parts = [repr(self.name)]
        if self.kind != VarKind.VARIABLE:
            parts.append(self.kind.name.lower())
        if self.default is not None:
            parts.append(f"default={self.default}")
        if self.unit:
            parts.append(f"unit={self.unit!r}")
        return f"Var({', '.join(parts)})"
