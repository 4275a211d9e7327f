"""
FlatSystem - Backend-agnostic representation of a flattened fragment tree.

This is the output of the elaboration pass and the input of structural
simplification. All names are qualified: symbols of the root fragment keep
their local name, symbols of descendants are prefixed with the dot-joined
path of fragment names (``R.F1.F``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List

from bioproc.equations import Equation
from bioproc.expr import Expr
from bioproc.types import Number, Var


@dataclass
class FlatSystem:
    """
    Flattened system: one global set of symbols and equations.

    Attributes
    ----------
    name : str
        Name of the root fragment
    variables : dict
        Qualified name -> Var for every time-varying variable
    parameters : dict
        Qualified name -> Var for every parameter
    constants : dict
        Qualified name -> Var for every constant
    equations : list of Equation
        All equations in tree pre-order
    fragment_paths : list of str
        Qualified path of every fragment in pre-order ("" for the root)
    paths : dict
        Fragment uid -> qualified path, used to resolve ports after flattening
    """

    name: str
    variables: Dict[str, Var] = field(default_factory=dict)
    parameters: Dict[str, Var] = field(default_factory=dict)
    constants: Dict[str, Var] = field(default_factory=dict)
    equations: List[Equation] = field(default_factory=list)
    fragment_paths: List[str] = field(default_factory=list)
    paths: Dict[int, str] = field(default_factory=dict)

    def resolve(self, port: Expr) -> str:
        """Qualified name of a port, or of an already qualified symbol."""
        if port.owner is None:
            return port.name
        if port.owner not in self.paths:
            raise KeyError(f"'{port.label}' does not belong to system '{self.name}'")
        path = self.paths[port.owner]
        return f"{path}.{port.name}" if path else port.name

    @property
    def symbols(self) -> Dict[str, Var]:
        return {**self.variables, **self.parameters, **self.constants}

    @property
    def parameter_defaults(self) -> Dict[str, Number]:
        return {n: v.default for n, v in self.parameters.items() if v.default is not None}

    @property
    def constant_values(self) -> Dict[str, Number]:
        return {n: v.default for n, v in self.constants.items()}

    def __repr__(self) -> str:
        parts = [f"'{self.name}'", f"variables={len(self.variables)}"]
        if self.parameters:
            parts.append(f"parameters={len(self.parameters)}")
        if self.constants:
            parts.append(f"constants={len(self.constants)}")
        parts.append(f"equations={len(self.equations)}")
        return f"FlatSystem({', '.join(parts)})"
