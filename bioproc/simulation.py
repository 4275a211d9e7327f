"""
Simulation results for bioproc.

Provides a backend-independent container for trajectories produced by a
compiled model.

================================================================================
DESIGN PRINCIPLES - DO NOT REMOVE OR IGNORE
================================================================================

1. BACKEND-AGNOSTIC: The SimulationResult works with any conforming backend.

2. NUMPY ARRAYS: Results are numpy arrays for direct use with matplotlib/numpy.
   Users plot with: plt.plot(result.t, result[bp.X.m])

3. TYPE SAFETY: All functions MUST use beartype for runtime type checking.

================================================================================
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Union

import numpy as np
from beartype import beartype

from bioproc.expr import Expr


@dataclass
class SimulationResult:
    """
    Result of a model simulation.

    Trajectories are looked up by qualified name or by a port on any
    fragment of the simulated tree::

        result = compiled.simulate(tf=12.0, x0={"R.V_L": 1.0})
        result["X.m"]
        result[bp.X.m]          # same array
        result[bp.R.V_L]

    Attributes
    ----------
    t : np.ndarray
        Output time grid
    model_name : str
        Name of the root fragment
    state_names, algebraic_names, input_names : list of str
        Qualified names of the stored trajectories, by role
    """

    # Time vector
    t: np.ndarray

    # Trajectory data: qualified name -> array
    _data: Dict[str, np.ndarray] = field(default_factory=dict)

    # Metadata
    model_name: str = ""
    state_names: List[str] = field(default_factory=list)
    algebraic_names: List[str] = field(default_factory=list)
    input_names: List[str] = field(default_factory=list)
    _paths: Dict[int, str] = field(default_factory=dict)

    def _name_of(self, key: Union[str, Expr]) -> str:
        if isinstance(key, str):
            return key
        if key.owner is None:
            return key.name
        if key.owner not in self._paths:
            raise KeyError(f"Port '{key.label}' does not belong to model '{self.model_name}'")
        path = self._paths[key.owner]
        return f"{path}.{key.name}" if path else key.name

    @beartype
    def __getitem__(self, key: Union[str, Expr]) -> np.ndarray:
        """Get a trajectory by qualified name or port."""
        name = self._name_of(key)
        if name == "t":
            return self.t
        if name not in self._data:
            raise KeyError(f"No trajectory named '{name}'. Available: {self.available_names}")
        return self._data[name]

    @beartype
    def __call__(self, key: Union[str, Expr]) -> np.ndarray:
        return self[key]

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, (str, Expr)):
            return False
        try:
            return self._name_of(key) in self._data
        except KeyError:
            return False

    @property
    def available_names(self) -> List[str]:
        """List all available trajectory names."""
        return list(self._data.keys())

    @property
    def final(self) -> Dict[str, float]:
        """Values of every trajectory at the last time point."""
        return {name: float(values[-1]) for name, values in self._data.items()}

    @property
    def states(self) -> Dict[str, np.ndarray]:
        """State trajectories as a dict."""
        return {name: self._data[name] for name in self.state_names if name in self._data}

    @property
    def algebraics(self) -> Dict[str, np.ndarray]:
        return {name: self._data[name] for name in self.algebraic_names if name in self._data}

    @property
    def inputs(self) -> Dict[str, np.ndarray]:
        return {name: self._data[name] for name in self.input_names if name in self._data}

    @property
    def data(self) -> Dict[str, np.ndarray]:
        """All trajectories as a single dict."""
        result = {"t": self.t}
        result.update(self._data)
        return result
