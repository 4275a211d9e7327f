"""
Structural simplification of a flattened system.

Converts the acausal FlatSystem into a form suitable for integration:

    der(x) = f(x, u, p, t)      -- explicit ODE in the states
    z      = g(x, u, p, t)      -- observed algebraic variables

================================================================================
ALGORITHM OVERVIEW
================================================================================

1. Classify symbols: parameters/constants and declared inputs are known,
   variables whose derivative appears are states, the rest are algebraic
   unknowns. Unknowns of the equations are der(state) and the algebraics.
2. Count check: one equation per unknown, else Under/Overdetermined error.
3. Alias elimination: ``a == b`` and ``a == -b`` with ``a`` algebraic are
   removed and ``a`` substituted everywhere.
4. Match equations to unknowns (augmenting paths, trying the unknown on the
   left-hand side first). Unmatched unknowns/equations mean a structurally
   singular system.
5. Sort into BLT form with Tarjan's algorithm and solve scalar blocks that
   are linear in their unknown symbolically. Anything else stays an
   implicit block (DAE residual).
6. Substitute observed algebraics into the state derivatives.

================================================================================
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set, Tuple

from beartype import beartype

from bioproc.equations import Equation
from bioproc.errors import OverdeterminedSystemError, UnderdeterminedSystemError
from bioproc.expr import Expr, ExprKind, find_derivatives, substitute
from bioproc.flat_model import FlatSystem


def der_name(name: str) -> str:
    """Unknown name used for the derivative of a state."""
    return f"der({name})"


@dataclass
class SolvedEquation:
    """An equation that has been solved for a specific variable.

    Represents: var = expr
    """

    var_name: str  # The variable being solved for (state name if is_derivative)
    expr: Expr  # The RHS expression
    original: Equation  # The original equation this came from
    is_derivative: bool = False  # True if solving for der(x)

    def __repr__(self) -> str:
        lhs = der_name(self.var_name) if self.is_derivative else self.var_name
        return f"{lhs} := {self.expr}"


@dataclass
class ImplicitBlock:
    """A block of equations that must be solved simultaneously.

    These equations couldn't be solved symbolically and require
    Newton iteration or similar at runtime.
    """

    equations: List[Equation]
    unknowns: List[str]  # Variables to solve for


@dataclass
class SimplifiedSystem:
    """
    The result of structural simplification.

    Attributes
    ----------
    flat : FlatSystem
        The system this was derived from (variable metadata)
    state_names : list of str
        Qualified names of the states, in solver order
    input_names : list of str
        Free inputs supplied externally
    param_names : list of str
        Parameters, in solver order (constants are folded in)
    observed : list of SolvedEquation
        Algebraic variables in evaluation order
    aliases : dict
        Eliminated alias variable -> expression it equals
    derivatives : dict
        State -> right-hand side with observed algebraics substituted
    implicit_blocks : list of ImplicitBlock
        Algebraic loops left for a DAE solver
    """

    flat: FlatSystem
    state_names: List[str] = field(default_factory=list)
    input_names: List[str] = field(default_factory=list)
    param_names: List[str] = field(default_factory=list)
    observed: List[SolvedEquation] = field(default_factory=list)
    aliases: Dict[str, Expr] = field(default_factory=dict)
    state_equations: Dict[str, Expr] = field(default_factory=dict)
    derivatives: Dict[str, Expr] = field(default_factory=dict)
    implicit_blocks: List[ImplicitBlock] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.flat.name

    @property
    def is_ode(self) -> bool:
        """True if no algebraic loop is left."""
        return not self.implicit_blocks

    @property
    def observed_names(self) -> List[str]:
        return [s.var_name for s in self.observed]

    @property
    def implicit_names(self) -> List[str]:
        return [u for block in self.implicit_blocks for u in block.unknowns]

    @property
    def algebraic_names(self) -> List[str]:
        """Every non-state variable computed by the system."""
        return self.observed_names + self.implicit_names + list(self.aliases)

    @property
    def state_index(self) -> Dict[str, int]:
        """Qualified state name -> position in the solver state vector."""
        return {name: i for i, name in enumerate(self.state_names)}

    @property
    def param_index(self) -> Dict[str, int]:
        return {name: i for i, name in enumerate(self.param_names)}

    @property
    def input_index(self) -> Dict[str, int]:
        return {name: i for i, name in enumerate(self.input_names)}

    def __repr__(self) -> str:
        parts = [f"'{self.name}'", f"states={self.state_names}"]
        if self.input_names:
            parts.append(f"inputs={self.input_names}")
        parts.append(f"observed={len(self.observed)}")
        if self.aliases:
            parts.append(f"aliases={len(self.aliases)}")
        if self.implicit_blocks:
            parts.append(f"implicit_blocks={len(self.implicit_blocks)}")
        return f"SimplifiedSystem({', '.join(parts)})"


def find_variables(expr: Expr) -> Set[str]:
    """Find all variable names referenced in an expression.

    Derivatives are reported as "der(x)".
    """
    result: Set[str] = set()

    if expr.kind == ExprKind.VARIABLE and expr.name:
        result.add(expr.name)
    elif expr.kind == ExprKind.DERIVATIVE and expr.name:
        result.add(der_name(expr.name))

    for child in expr.children:
        result.update(find_variables(child))

    return result


def _const(value: float) -> Expr:
    return Expr(ExprKind.CONSTANT, value=value)


def _is_target(expr: Expr, var_name: str) -> bool:
    if expr.kind == ExprKind.VARIABLE:
        return expr.name == var_name
    if expr.kind == ExprKind.DERIVATIVE:
        return der_name(expr.name) == var_name
    return False


def is_linear_in(expr: Expr, var_name: str) -> Tuple[bool, Optional[Expr], Optional[Expr]]:
    """Check if expression is linear in a variable.

    Returns (is_linear, coefficient, constant) where:
        expr = coefficient * var + constant

    If not linear, returns (False, None, None).

    This is a simplified check - handles common cases like:
    - x, -x
    - a * x, x * a, x / a
    - x + b, b + x, x - b, b - x
    """
    if var_name not in find_variables(expr):
        # Variable not in expression - it's constant w.r.t. this var
        return True, _const(0.0), expr

    if _is_target(expr, var_name):
        return True, _const(1.0), _const(0.0)

    if expr.kind == ExprKind.NEG:
        is_lin, coef, const = is_linear_in(expr.children[0], var_name)
        if is_lin:
            return True, Expr(ExprKind.NEG, (coef,)), Expr(ExprKind.NEG, (const,))
        return False, None, None

    if expr.kind in (ExprKind.MUL, ExprKind.DIV):
        left, right = expr.children
        if var_name not in find_variables(right):
            is_lin, coef, const = is_linear_in(left, var_name)
            if is_lin:
                return True, Expr(expr.kind, (coef, right)), Expr(expr.kind, (const, right))
        if expr.kind == ExprKind.MUL and var_name not in find_variables(left):
            is_lin, coef, const = is_linear_in(right, var_name)
            if is_lin:
                return True, Expr(ExprKind.MUL, (left, coef)), Expr(ExprKind.MUL, (left, const))
        return False, None, None

    if expr.kind in (ExprKind.ADD, ExprKind.SUB):
        left, right = expr.children
        l_lin, l_coef, l_const = is_linear_in(left, var_name)
        r_lin, r_coef, r_const = is_linear_in(right, var_name)
        if l_lin and r_lin:
            return True, Expr(expr.kind, (l_coef, r_coef)), Expr(expr.kind, (l_const, r_const))

    # Not linear (or too complex for us to detect)
    return False, None, None


def _fold(expr: Expr) -> Expr:
    """Fold constant arithmetic and drop neutral elements."""
    if not expr.children:
        return expr
    children = tuple(_fold(c) for c in expr.children)
    values = [c.value if c.kind == ExprKind.CONSTANT else None for c in children]
    kind = expr.kind

    if kind == ExprKind.NEG:
        if values[0] is not None:
            return _const(-values[0])
        if children[0].kind == ExprKind.NEG:
            return children[0].children[0]
    elif kind in (ExprKind.ADD, ExprKind.SUB, ExprKind.MUL, ExprKind.DIV) and None not in values:
        a, b = values
        if kind == ExprKind.ADD:
            return _const(a + b)
        if kind == ExprKind.SUB:
            return _const(a - b)
        if kind == ExprKind.MUL:
            return _const(a * b)
        if b != 0.0:
            return _const(a / b)
    elif kind == ExprKind.ADD:
        if values[0] == 0.0:
            return children[1]
        if values[1] == 0.0:
            return children[0]
    elif kind == ExprKind.SUB:
        if values[1] == 0.0:
            return children[0]
        if values[0] == 0.0:
            return _fold(Expr(ExprKind.NEG, (children[1],)))
    elif kind == ExprKind.MUL:
        if 0.0 in values:
            return _const(0.0)
        if values[0] == 1.0:
            return children[1]
        if values[1] == 1.0:
            return children[0]
        if values[0] == -1.0:
            return _fold(Expr(ExprKind.NEG, (children[1],)))
    elif kind == ExprKind.DIV:
        if values[1] == 1.0:
            return children[0]
        if values[0] == 0.0:
            return _const(0.0)
    return Expr(kind, children, name=expr.name, value=expr.value)


def solve_linear(eq: Equation, var_name: str) -> Optional[SolvedEquation]:
    """Try to solve equation for a variable.

    For equation: lhs == rhs
    Rearrange to: (lhs_coef - rhs_coef) * var == rhs_const - lhs_const

    Returns SolvedEquation if successful, None otherwise.
    """
    lhs_linear, lhs_coef, lhs_const = is_linear_in(eq.lhs, var_name)
    rhs_linear, rhs_coef, rhs_const = is_linear_in(eq.rhs, var_name)

    if not (lhs_linear and rhs_linear):
        return None

    numerator = _fold(Expr(ExprKind.SUB, (rhs_const, lhs_const)))
    denominator = _fold(Expr(ExprKind.SUB, (lhs_coef, rhs_coef)))

    if denominator.kind == ExprKind.CONSTANT and denominator.value == 0.0:
        # Coefficient is zero - can't solve for this variable
        return None

    solution = _fold(Expr(ExprKind.DIV, (numerator, denominator)))
    is_deriv = var_name.startswith("der(")

    return SolvedEquation(
        var_name=var_name[4:-1] if is_deriv else var_name,
        expr=solution,
        original=eq,
        is_derivative=is_deriv,
    )


def _alias_of(eq: Equation, algebraic: Set[str]) -> Optional[Tuple[str, Expr]]:
    """Return (alias, expression) if eq is ``a == b`` or ``a == -b``."""

    def bare(expr: Expr) -> Optional[str]:
        if expr.kind == ExprKind.VARIABLE:
            return expr.name
        if expr.kind == ExprKind.NEG and expr.children[0].kind == ExprKind.VARIABLE:
            return expr.children[0].name
        return None

    lhs_name, rhs_name = bare(eq.lhs), bare(eq.rhs)
    if lhs_name is None or rhs_name is None or lhs_name == rhs_name:
        return None
    for side, other in ((eq.lhs, eq.rhs), (eq.rhs, eq.lhs)):
        if side.kind == ExprKind.VARIABLE and side.name in algebraic:
            return side.name, other
        if side.kind == ExprKind.NEG and side.children[0].name in algebraic:
            return side.children[0].name, _fold(Expr(ExprKind.NEG, (other,)))
    return None


def eliminate_aliases(equations: Sequence[Equation], algebraic: Set[str]) -> Tuple[List[Equation], Dict[str, Expr]]:
    """Remove alias equations between algebraic unknowns and other symbols.

    Returns the remaining equations (with aliases substituted) and the
    alias map, fully resolved.
    """
    aliases: Dict[str, Expr] = {}
    kept: List[Equation] = []

    for eq in equations:
        eq = Equation(substitute(eq.lhs, aliases), substitute(eq.rhs, aliases))
        alias = _alias_of(eq, algebraic - set(aliases))
        if alias is None:
            kept.append(eq)
        else:
            aliases[alias[0]] = alias[1]

    # Later aliases never mention earlier ones; resolve back to front
    for name in reversed(list(aliases)):
        aliases[name] = substitute(aliases[name], aliases)

    kept = [Equation(substitute(eq.lhs, aliases), substitute(eq.rhs, aliases)) for eq in kept]
    return kept, aliases


def _classify(flat: FlatSystem, inputs: Sequence[str]) -> Tuple[List[str], List[str], List[str]]:
    unknown_inputs = [n for n in inputs if n not in flat.variables]
    if unknown_inputs:
        raise ValueError(f"Inputs {unknown_inputs} are not variables of '{flat.name}'")

    derivatives_used: Set[str] = set()
    for eq in flat.equations:
        derivatives_used |= eq.derivatives()

    bad = sorted(derivatives_used & set(inputs))
    if bad:
        raise ValueError(f"Inputs {bad} are differentiated; an input cannot be a state")

    states = [n for n in flat.variables if n in derivatives_used]
    algebraic = [n for n in flat.variables if n not in derivatives_used and n not in inputs]
    return states, algebraic, list(inputs)


@beartype
def simplify(flat: FlatSystem, inputs: Sequence[str] = ()) -> SimplifiedSystem:
    """Perform structural simplification of a flattened system.

    Parameters
    ----------
    flat : FlatSystem
        Output of flatten()
    inputs : sequence of str
        Qualified names of variables supplied externally

    Returns
    -------
    SimplifiedSystem

    Raises
    ------
    UnderdeterminedSystemError
        Fewer equations than unknowns, or unknowns no equation can determine
    OverdeterminedSystemError
        More equations than unknowns
    """
    states, algebraic, input_names = _classify(flat, inputs)
    result = SimplifiedSystem(
        flat=flat,
        state_names=states,
        input_names=input_names,
        param_names=list(flat.parameters),
    )

    # Count check
    n_eq = len(flat.equations)
    n_unknown = len(states) + len(algebraic)
    if n_eq < n_unknown:
        raise UnderdeterminedSystemError(
            f"System '{flat.name}' has {n_eq} equations for {n_unknown} unknowns; "
            f"unknowns: {[der_name(s) for s in states] + algebraic}",
            names=[der_name(s) for s in states] + algebraic,
        )
    if n_eq > n_unknown:
        raise OverdeterminedSystemError(
            f"System '{flat.name}' has {n_eq} equations for {n_unknown} unknowns; equations: {flat.equations}",
            names=[repr(eq) for eq in flat.equations],
        )

    equations, result.aliases = eliminate_aliases(flat.equations, set(algebraic))
    algebraic = [n for n in algebraic if n not in result.aliases]

    unknowns: List[str] = [der_name(s) for s in states] + algebraic
    unknown_to_idx = {u: i for i, u in enumerate(unknowns)}

    # Incidence: unknowns of each equation, left-hand side unknown first
    incidence: List[List[int]] = []
    for eq in equations:
        found = sorted(unknown_to_idx[v] for v in find_variables(eq.lhs) | find_variables(eq.rhs) if v in unknown_to_idx)
        lead = find_variables(eq.lhs) if eq.lhs.is_symbol else set()
        lead_idx = [unknown_to_idx[v] for v in lead if v in unknown_to_idx]
        incidence.append(lead_idx + [i for i in found if i not in lead_idx])

    n_eq = len(equations)
    n_var = len(unknowns)

    # Maximum matching using augmenting paths
    # matching[eq_idx] = var_idx that this equation is matched to (-1 if unmatched)
    # var_matched[var_idx] = eq_idx that this variable is matched to (-1 if unmatched)
    matching: List[int] = [-1] * n_eq
    var_matched: List[int] = [-1] * n_var

    def find_augmenting_path(eq: int, visited: Set[int]) -> bool:
        """Try to find an augmenting path starting from equation eq."""
        for var in incidence[eq]:
            if var in visited:
                continue
            visited.add(var)

            # If var is unmatched, or we can rematch its current equation
            if var_matched[var] == -1 or find_augmenting_path(var_matched[var], visited):
                matching[eq] = var
                var_matched[var] = eq
                return True
        return False

    for eq in range(n_eq):
        find_augmenting_path(eq, set())

    unmatched_vars = [unknowns[i] for i in range(n_var) if var_matched[i] == -1]
    unmatched_eqs = [equations[i] for i in range(n_eq) if matching[i] == -1]
    if unmatched_vars or unmatched_eqs:
        raise UnderdeterminedSystemError(
            f"System '{flat.name}' is structurally singular: no equation determines {unmatched_vars}; "
            f"redundant equations: {unmatched_eqs}",
            names=unmatched_vars,
        )

    # Dependency graph: eq_i -> eq_j if eq_i uses the unknown eq_j solves for
    adj: Dict[int, List[int]] = {eq: [] for eq in range(n_eq)}
    for eq in range(n_eq):
        for var in incidence[eq]:
            if var != matching[eq]:
                adj[eq].append(var_matched[var])

    # Tarjan emits dependencies before dependents: evaluation order
    for scc in _tarjan_scc(list(range(n_eq)), adj):
        block_eqs = [equations[i] for i in scc]
        block_unknowns = [unknowns[matching[i]] for i in scc]

        solved = solve_linear(block_eqs[0], block_unknowns[0]) if len(scc) == 1 else None
        if solved is None or find_derivatives(solved.expr):
            result.implicit_blocks.append(ImplicitBlock(equations=block_eqs, unknowns=block_unknowns))
        elif solved.is_derivative:
            result.state_equations[solved.var_name] = solved.expr
        else:
            result.observed.append(solved)

    if result.implicit_blocks:
        warnings.warn(
            f"System '{flat.name}' keeps {len(result.implicit_blocks)} implicit block(s) "
            f"for unknowns {result.implicit_names}; a DAE solver is required"
        )

    # Minimal ODE: substitute observed algebraics into the state derivatives
    values: Dict[str, Expr] = {}
    for solved in result.observed:
        values[solved.var_name] = substitute(solved.expr, values)
    result.derivatives = {
        s: substitute(result.state_equations[s], values) for s in states if s in result.state_equations
    }

    return result


def _tarjan_scc(nodes: List[int], adj: Dict[int, List[int]]) -> List[List[int]]:
    """Find strongly connected components using Tarjan's algorithm.

    Args:
        nodes: List of node identifiers
        adj: Adjacency list (adj[node] = list of nodes this node points to)

    Returns:
        List of SCCs, each SCC is a list of nodes.
        SCCs are returned in reverse topological order (successors first).
    """
    index_counter = [0]
    stack: List[int] = []
    lowlink: Dict[int, int] = {}
    index: Dict[int, int] = {}
    on_stack: Dict[int, bool] = {}
    sccs: List[List[int]] = []

    def strongconnect(node: int) -> None:
        # Set the depth index for this node
        index[node] = index_counter[0]
        lowlink[node] = index_counter[0]
        index_counter[0] += 1
        stack.append(node)
        on_stack[node] = True

        # Consider successors
        for successor in adj.get(node, []):
            if successor not in index:
                # Successor has not been visited; recurse
                strongconnect(successor)
                lowlink[node] = min(lowlink[node], lowlink[successor])
            elif on_stack.get(successor, False):
                # Successor is on stack, so in current SCC
                lowlink[node] = min(lowlink[node], index[successor])

        # If node is a root node, pop the stack and generate SCC
        if lowlink[node] == index[node]:
            scc: List[int] = []
            while True:
                w = stack.pop()
                on_stack[w] = False
                scc.append(w)
                if w == node:
                    break
            sccs.append(scc)

    for node in nodes:
        if node not in index:
            strongconnect(node)

    return sccs
