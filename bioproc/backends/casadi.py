"""
CasADi backend for bioproc.

Compiles a SimplifiedSystem into CasADi functions and integrates it with
SUNDIALS (CVODES for explicit ODEs, IDAS when algebraic loops remain) or a
fixed-step RK4 scheme.

================================================================================
DESIGN PRINCIPLES - DO NOT REMOVE OR IGNORE
================================================================================

1. TYPE SAFETY: All functions MUST use beartype for runtime type checking.
2. CONSTANTS ARE BAKED IN: constants become numeric literals of the compiled
   functions; only parameters are assignable at solve time.
3. NAMES, NOT POSITIONS: every public entry point takes qualified names (or
   ports) and converts them to vectors using state_index / param_index.

================================================================================

Compiled functions
==================

- ``f_x(x, z, u, p, t) -> xdot``: state derivatives
- ``f_obs(x, z, u, p, t) -> y``: every algebraic variable (observed, aliases,
  implicit unknowns)
- ``f_alg(x, z, u, p, t) -> res``: residuals of implicit blocks (IDAS only)

``z`` holds the unknowns of implicit blocks and is empty for a pure ODE.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Dict, List, Mapping, Optional, Sequence, Union

import casadi as ca
import numpy as np
from beartype import beartype

from bioproc.causality import SimplifiedSystem, der_name
from bioproc.expr import Expr, ExprKind
from bioproc.simulation import SimulationResult
from bioproc.types import Number

# Named values passed to simulate()/evaluate(): keys are qualified names or ports
NamedValues = Optional[Mapping[Union[str, Expr], Number]]


class Integrator(Enum):
    """Integration method selection."""

    RK4 = auto()  # Fixed-step 4th-order Runge-Kutta on the output grid
    CVODES = auto()  # SUNDIALS CVODES - variable-step BDF/Adams (stiff/non-stiff ODEs)
    IDAS = auto()  # SUNDIALS IDAS - variable-step BDF for DAEs


# =============================================================================
# Expression Conversion - Dispatch Table
# =============================================================================


def _make_expr_handlers():
    """Create dispatch table for expression conversion."""
    unary_math = {
        ExprKind.NEG: lambda c, e: -c(e.children[0]),
        ExprKind.SQRT: lambda c, e: ca.sqrt(c(e.children[0])),
        ExprKind.EXP: lambda c, e: ca.exp(c(e.children[0])),
        ExprKind.LOG: lambda c, e: ca.log(c(e.children[0])),
    }

    binary_math = {
        ExprKind.ADD: lambda c, e: c(e.children[0]) + c(e.children[1]),
        ExprKind.SUB: lambda c, e: c(e.children[0]) - c(e.children[1]),
        ExprKind.MUL: lambda c, e: c(e.children[0]) * c(e.children[1]),
        ExprKind.DIV: lambda c, e: c(e.children[0]) / c(e.children[1]),
        ExprKind.POW: lambda c, e: c(e.children[0]) ** c(e.children[1]),
        ExprKind.MIN: lambda c, e: ca.fmin(c(e.children[0]), c(e.children[1])),
        ExprKind.MAX: lambda c, e: ca.fmax(c(e.children[0]), c(e.children[1])),
    }

    return {**unary_math, **binary_math}


# Global dispatch table
_EXPR_HANDLERS = _make_expr_handlers()


# =============================================================================
# Compiler
# =============================================================================


class CasadiCompiler:
    """
    Builds CasADi SX functions for one SimplifiedSystem.

    Observed algebraics and aliases are compiled on first use and cached, so
    an algebraic shared by several right-hand sides is converted once.
    """

    def __init__(self, system: SimplifiedSystem):
        self.system = system
        flat = system.flat

        self.state_syms: Dict[str, ca.SX] = {n: ca.SX.sym(n) for n in system.state_names}
        self.implicit_syms: Dict[str, ca.SX] = {n: ca.SX.sym(n) for n in system.implicit_names}
        self.input_syms: Dict[str, ca.SX] = {n: ca.SX.sym(n) for n in system.input_names}
        self.param_syms: Dict[str, ca.SX] = {n: ca.SX.sym(n) for n in system.param_names}
        self.t_sym = ca.SX.sym("t")

        self.base_syms: Dict[str, ca.SX] = {
            **self.state_syms,
            **self.implicit_syms,
            **self.input_syms,
            **self.param_syms,
        }
        self.constants: Dict[str, float] = {n: float(v) for n, v in flat.constant_values.items()}

        # Lazily compiled definitions
        self.definitions: Dict[str, Expr] = {s.var_name: s.expr for s in system.observed}
        self.definitions.update(system.aliases)
        self.compiled: Dict[str, ca.SX] = {}
        self.compiled_derivatives: Dict[str, ca.SX] = {}

    def expr_to_casadi(self, expr: Expr) -> ca.SX:
        """Convert an Expr tree to a CasADi expression."""
        if expr.kind == ExprKind.VARIABLE:
            name = expr.name
            if name in self.base_syms:
                return self.base_syms[name]
            if name in self.constants:
                return ca.SX(self.constants[name])
            if name in self.definitions:
                if name not in self.compiled:
                    self.compiled[name] = self.expr_to_casadi(self.definitions[name])
                return self.compiled[name]
            raise ValueError(f"Unknown variable: {name}")

        # der(x) inside an implicit residual: the solved state derivative
        if expr.kind == ExprKind.DERIVATIVE:
            name = expr.name
            if name not in self.system.state_equations:
                raise ValueError(f"Unknown derivative variable: {name}")
            if name not in self.compiled_derivatives:
                self.compiled_derivatives[name] = self.expr_to_casadi(self.system.state_equations[name])
            return self.compiled_derivatives[name]

        if expr.kind == ExprKind.CONSTANT:
            return ca.SX(expr.value)

        if expr.kind == ExprKind.TIME:
            return self.t_sym

        handler = _EXPR_HANDLERS.get(expr.kind)
        if handler:
            return handler(self.expr_to_casadi, expr)

        raise ValueError(f"Unsupported expression kind: {expr.kind}")

    def compile(self) -> "CompiledModel":
        """
        Compile the system to CasADi functions.

        Raises
        ------
        ValueError
            If an implicit block determines a state derivative
        """
        system = self.system
        flat = system.flat

        for block in system.implicit_blocks:
            implicit_derivatives = [u for u in block.unknowns if u.startswith("der(")]
            if implicit_derivatives:
                raise ValueError(
                    f"Implicit derivative block for {implicit_derivatives} in '{system.name}' is not supported; "
                    "write the balance in der(x) == expr form"
                )

        x = ca.vertcat(*[self.state_syms[n] for n in system.state_names]) if system.state_names else ca.SX.sym("x", 0)
        z = ca.vertcat(*[self.implicit_syms[n] for n in system.implicit_names]) if system.implicit_names else ca.SX.sym("z", 0)
        u = ca.vertcat(*[self.input_syms[n] for n in system.input_names]) if system.input_names else ca.SX.sym("u", 0)
        p = ca.vertcat(*[self.param_syms[n] for n in system.param_names]) if system.param_names else ca.SX.sym("p", 0)

        xdot_list = [self.expr_to_casadi(system.state_equations[n]) for n in system.state_names]
        xdot = ca.vertcat(*xdot_list) if xdot_list else ca.SX(0, 1)
        f_x = ca.Function("f_x", [x, z, u, p, self.t_sym], [xdot], ["x", "z", "u", "p", "t"], ["xdot"])

        algebraic_names = system.algebraic_names
        y_list = [self.expr_to_casadi(Expr(ExprKind.VARIABLE, name=n)) for n in algebraic_names]
        y = ca.vertcat(*y_list) if y_list else ca.SX(0, 1)
        f_obs = ca.Function("f_obs", [x, z, u, p, self.t_sym], [y], ["x", "z", "u", "p", "t"], ["y"])

        f_alg = None
        if system.implicit_blocks:
            residuals = [
                self.expr_to_casadi(eq.lhs) - self.expr_to_casadi(eq.rhs)
                for block in system.implicit_blocks
                for eq in block.equations
            ]
            f_alg = ca.Function(
                "f_alg", [x, z, u, p, self.t_sym], [ca.vertcat(*residuals)], ["x", "z", "u", "p", "t"], ["alg"]
            )

        def start(name: str) -> Optional[Number]:
            return flat.variables[name].default

        return CompiledModel(
            name=system.name,
            f_x=f_x,
            f_obs=f_obs,
            f_alg=f_alg,
            _state_names=list(system.state_names),
            _algebraic_names=list(algebraic_names),
            _implicit_names=list(system.implicit_names),
            _input_names=list(system.input_names),
            _param_names=list(system.param_names),
            state_defaults={n: start(n) for n in system.state_names if start(n) is not None},
            input_defaults={n: start(n) for n in system.input_names if start(n) is not None},
            param_defaults=dict(flat.parameter_defaults),
            implicit_defaults={n: start(n) for n in system.implicit_names if start(n) is not None},
            paths=dict(flat.paths),
        )


# =============================================================================
# Backend Interface
# =============================================================================


class CasadiBackend:
    """
    Backend that compiles a SimplifiedSystem to CasADi functions.

    Example
    -------
    >>> flat = flatten(bp)  # doctest: +SKIP
    >>> compiled = CasadiBackend.compile(simplify(flat))  # doctest: +SKIP
    >>> result = compiled.simulate(tf=12.0, x0={"R.V_L": 1.0})  # doctest: +SKIP
    """

    @staticmethod
    @beartype
    def compile(system: SimplifiedSystem) -> "CompiledModel":
        """
        Compile a SimplifiedSystem into a CompiledModel.

        Parameters
        ----------
        system : SimplifiedSystem
            Output of simplify()

        Returns
        -------
        CompiledModel
            A compiled model ready for simulation
        """
        return CasadiCompiler(system).compile()


# =============================================================================
# CompiledModel
# =============================================================================


@dataclass
class CompiledModel:
    """
    A compiled model ready for simulation.

    Contains CasADi functions and metadata for numerical integration. All
    vectors follow the order of state_names / param_names / input_names.

    DAE Support (IDAS)
    ------------------
    Systems with implicit algebraic blocks are integrated with IDAS:

        ẋ = f(x, z, u, p, t)    (differential equations)
        0 = g(x, z, u, p, t)    (algebraic equations)
    """

    name: str
    f_x: ca.Function  # f_x(x, z, u, p, t) -> xdot
    f_obs: ca.Function  # f_obs(x, z, u, p, t) -> algebraic values
    f_alg: Optional[ca.Function] = None  # f_alg(x, z, u, p, t) -> residual
    _state_names: List[str] = field(default_factory=list)
    _algebraic_names: List[str] = field(default_factory=list)
    _implicit_names: List[str] = field(default_factory=list)
    _input_names: List[str] = field(default_factory=list)
    _param_names: List[str] = field(default_factory=list)
    state_defaults: Dict[str, Number] = field(default_factory=dict)
    input_defaults: Dict[str, Number] = field(default_factory=dict)
    param_defaults: Dict[str, Number] = field(default_factory=dict)
    implicit_defaults: Dict[str, Number] = field(default_factory=dict)
    paths: Dict[int, str] = field(default_factory=dict)

    @property
    def state_names(self) -> List[str]:
        return self._state_names

    @property
    def algebraic_names(self) -> List[str]:
        return self._algebraic_names

    @property
    def input_names(self) -> List[str]:
        return self._input_names

    @property
    def param_names(self) -> List[str]:
        return self._param_names

    @property
    def state_index(self) -> Dict[str, int]:
        return {n: i for i, n in enumerate(self._state_names)}

    @property
    def param_index(self) -> Dict[str, int]:
        return {n: i for i, n in enumerate(self._param_names)}

    @property
    def is_dae(self) -> bool:
        """True if implicit algebraic blocks remain."""
        return self.f_alg is not None

    def _qualified(self, key: Union[str, Expr]) -> str:
        if isinstance(key, str):
            return key
        if key.owner is None:
            return key.name
        if key.owner not in self.paths:
            raise KeyError(f"Port '{key.label}' does not belong to model '{self.name}'")
        path = self.paths[key.owner]
        return f"{path}.{key.name}" if path else key.name

    def _vector(
        self,
        kind: str,
        names: Sequence[str],
        values: NamedValues,
        defaults: Mapping[str, Number],
        fallback: Optional[float],
    ) -> np.ndarray:
        """Build a vector from named values, defaults and a fallback."""
        given = {self._qualified(k): float(v) for k, v in (values or {}).items()}
        unknown = sorted(set(given) - set(names))
        if unknown:
            raise KeyError(f"Unknown {kind} names for model '{self.name}': {unknown}. Known: {list(names)}")

        vec = np.zeros(len(names))
        missing = []
        for i, name in enumerate(names):
            if name in given:
                vec[i] = given[name]
            elif name in defaults:
                vec[i] = defaults[name]
            elif fallback is not None:
                vec[i] = fallback
            else:
                missing.append(name)
        if missing:
            raise ValueError(f"No value for {kind} {missing} of model '{self.name}' and no default")
        return vec

    @beartype
    def evaluate(
        self,
        x: NamedValues = None,
        params: NamedValues = None,
        inputs: NamedValues = None,
        t: Number = 0.0,
    ) -> Dict[str, float]:
        """
        Evaluate every state derivative and algebraic variable at one point.

        Parameters
        ----------
        x : dict, optional
            State values (missing -> start value, else 0.0)
        params : dict, optional
            Parameter values (overrides defaults)
        inputs : dict, optional
            Input values (overrides start values)
        t : float
            Time

        Returns
        -------
        dict
            Qualified name -> value for states, ``der(state)`` and algebraics
        """
        x_vec = self._vector("state", self._state_names, x, self.state_defaults, 0.0)
        p_vec = self._vector("parameter", self._param_names, params, self.param_defaults, None)
        u_vec = self._vector("input", self._input_names, inputs, self.input_defaults, None)
        z_vec = self._solve_implicit(x_vec, u_vec, p_vec, float(t))

        xdot = np.array(self.f_x(x_vec, z_vec, u_vec, p_vec, t)).flatten()
        y = np.array(self.f_obs(x_vec, z_vec, u_vec, p_vec, t)).flatten()

        values: Dict[str, float] = {}
        for i, name in enumerate(self._state_names):
            values[name] = float(x_vec[i])
            values[der_name(name)] = float(xdot[i])
        for i, name in enumerate(self._algebraic_names):
            values[name] = float(y[i])
        return values

    def _solve_implicit(self, x: np.ndarray, u: np.ndarray, p: np.ndarray, t: float) -> np.ndarray:
        """Solve the implicit blocks for z with Newton's method."""
        z0 = np.array([float(self.implicit_defaults.get(n, 0.0)) for n in self._implicit_names])
        if self.f_alg is None:
            return z0
        z_sym = ca.SX.sym("z", len(self._implicit_names))
        res = self.f_alg(x, z_sym, u, p, t)
        solver = ca.rootfinder("alg", "newton", ca.Function("g", [z_sym], [res]))
        return np.array(solver(z0)).flatten()

    @beartype
    def simulate(
        self,
        tf: Number,
        t0: Number = 0.0,
        x0: NamedValues = None,
        params: NamedValues = None,
        inputs: NamedValues = None,
        n_points: int = 201,
        abstol: float = 1e-8,
        reltol: float = 1e-8,
        integrator: Integrator = Integrator.CVODES,
    ) -> SimulationResult:
        """
        Simulate the model on a uniform output grid.

        Parameters
        ----------
        tf : float
            Final time
        t0 : float
            Initial time
        x0 : dict, optional
            Initial state values by qualified name or port
            (missing -> variable start value, else 0.0)
        params : dict, optional
            Parameter values (overrides defaults)
        inputs : dict, optional
            Constant input values
        n_points : int, default=201
            Number of output time points including t0 and tf
        abstol, reltol : float, default=1e-8
            Tolerances of the SUNDIALS integrators
        integrator : Integrator, default=Integrator.CVODES
            Integration method; systems with implicit blocks always use IDAS

        Returns
        -------
        SimulationResult
            State and algebraic trajectories

        Raises
        ------
        KeyError
            A name in x0/params/inputs is not part of the model
        ValueError
            Missing parameter or input value, or an empty time span
        """
        if tf <= t0:
            raise ValueError(f"Final time {tf} must be greater than initial time {t0}")
        if n_points < 2:
            raise ValueError("n_points must be at least 2")

        x_init = self._vector("state", self._state_names, x0, self.state_defaults, 0.0)
        p = self._vector("parameter", self._param_names, params, self.param_defaults, None)
        u = self._vector("input", self._input_names, inputs, self.input_defaults, None)

        if self.is_dae and integrator != Integrator.IDAS:
            warnings.warn(f"Model '{self.name}' has implicit algebraic blocks; integrating with IDAS")
            integrator = Integrator.IDAS

        t = np.linspace(float(t0), float(tf), n_points)
        n_states = len(self._state_names)
        n_z = len(self._implicit_names)

        x_hist = np.zeros((n_points, n_states))
        z_hist = np.zeros((n_points, n_z))
        x_hist[0] = x_init

        if n_states == 0:
            for i in range(n_points):
                z_hist[i] = self._solve_implicit(x_init, u, p, float(t[i]))
        elif integrator == Integrator.RK4:
            z_empty = np.zeros(0)
            for i in range(n_points - 1):
                x_hist[i + 1] = self._rk4_step(x_hist[i], z_empty, u, p, t[i], t[i + 1] - t[i])
        else:
            x_sym = ca.SX.sym("x", n_states)
            z_sym = ca.SX.sym("z", n_z)
            pu_sym = ca.SX.sym("pu", len(u) + len(p))
            u_in = pu_sym[: len(u)]
            p_in = pu_sym[len(u) :]
            t_sym = ca.SX.sym("t")
            dae = {
                "x": x_sym,
                "t": t_sym,
                "p": pu_sym,
                "ode": self.f_x(x_sym, z_sym, u_in, p_in, t_sym),
            }
            opts = {"abstol": abstol, "reltol": reltol}
            pu = np.concatenate([u, p])

            if integrator == Integrator.IDAS:
                dae["z"] = z_sym
                dae["alg"] = self.f_alg(x_sym, z_sym, u_in, p_in, t_sym) if self.f_alg is not None else ca.SX(0, 1)
                z_init = self._solve_implicit(x_init, u, p, float(t0))
                integ = ca.integrator("integ", "idas", dae, float(t0), t[1:].tolist(), opts)
                result = integ(x0=x_init, z0=z_init, p=pu)
                z_hist[0] = z_init
                if n_z:
                    z_hist[1:] = np.array(result["zf"]).reshape(n_z, -1).T
            else:
                integ = ca.integrator("integ", "cvodes", dae, float(t0), t[1:].tolist(), opts)
                result = integ(x0=x_init, p=pu)
            x_hist[1:] = np.array(result["xf"]).reshape(n_states, -1).T

        return self._build_result(t, x_hist, z_hist, u, p)

    def _rk4_step(self, x: np.ndarray, z: np.ndarray, u: np.ndarray, p: np.ndarray, ti: float, h: float) -> np.ndarray:
        """Single RK4 integration step (ODE only, no algebraic)."""
        k1 = np.array(self.f_x(x, z, u, p, ti)).flatten()
        k2 = np.array(self.f_x(x + 0.5 * h * k1, z, u, p, ti + 0.5 * h)).flatten()
        k3 = np.array(self.f_x(x + 0.5 * h * k2, z, u, p, ti + 0.5 * h)).flatten()
        k4 = np.array(self.f_x(x + h * k3, z, u, p, ti + h)).flatten()
        return x + (h / 6.0) * (k1 + 2 * k2 + 2 * k3 + k4)

    def _build_result(
        self, t: np.ndarray, x_hist: np.ndarray, z_hist: np.ndarray, u: np.ndarray, p: np.ndarray
    ) -> SimulationResult:
        """Build SimulationResult from trajectory data."""
        n_steps = len(t)
        y_hist = np.zeros((n_steps, len(self._algebraic_names)))
        for i in range(n_steps):
            y_hist[i] = np.array(self.f_obs(x_hist[i], z_hist[i], u, p, t[i])).flatten()

        data: Dict[str, np.ndarray] = {}
        for j, name in enumerate(self._state_names):
            data[name] = x_hist[:, j]
        for j, name in enumerate(self._algebraic_names):
            data[name] = y_hist[:, j]
        for j, name in enumerate(self._input_names):
            data[name] = np.full(n_steps, u[j])

        return SimulationResult(
            t=t,
            _data=data,
            model_name=self.name,
            state_names=list(self._state_names),
            algebraic_names=list(self._algebraic_names),
            input_names=list(self._input_names),
            _paths=dict(self.paths),
        )

    def __repr__(self) -> str:
        parts = [f"'{self.name}'", f"states={self._state_names}"]
        if self._input_names:
            parts.append(f"inputs={self._input_names}")
        if self._param_names:
            parts.append(f"params={self._param_names}")
        if self.is_dae:
            parts.append(f"implicit={self._implicit_names}")
        return f"CompiledModel({', '.join(parts)})"
