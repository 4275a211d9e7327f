"""
Compute backends for bioproc.

Available backends:
- casadi: compiles a SimplifiedSystem to CasADi functions and integrates it
- sympy: symbolic view of a flattened system, LaTeX output

Integrators:
- RK4: Fixed-step 4th-order Runge-Kutta (simple, fast)
- CVODES: SUNDIALS variable-step BDF/Adams method (accurate, handles stiff systems)
- IDAS: SUNDIALS variable-step BDF for DAEs
"""

from bioproc.backends.casadi import CasadiBackend, CompiledModel, Integrator
from bioproc.backends.sympy import SympyBackend
from bioproc.simulation import SimulationResult

__all__ = [
    "CasadiBackend",
    "CompiledModel",
    "Integrator",
    "SympyBackend",
    "SimulationResult",
]
