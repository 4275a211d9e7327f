"""
Process fragments: flows, tank, dissolved components and their couplings.

================================================================================
DESIGN PRINCIPLES - DO NOT REMOVE OR IGNORE
================================================================================

1. TYPE SAFETY: All functions MUST use beartype for runtime type checking.
2. ONE OWNER: a fragment is the child of exactly one composite. Components
   are owned by the bioprocess; the reaction and feed systems reach them
   through deferred ports.
3. PER-PAIR PARAMETERS: yields and feed concentrations are created by the
   parameter() factory with names built by string formatting.

================================================================================

Tree of a complete bioprocess::

    bp
    ├── R            tank           (V_L, children: flows)
    ├── react        reaction_system (Y_<comp>_<rxn>, children: reactions)
    ├── X, S, ...    component      (m, n, r, r_n, q, c)
    └── feedsys      feed_system    (Q_in_<comp>, c_<comp>_<feed>)
"""

from __future__ import annotations

import warnings
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
from beartype import beartype

from bioproc.equations import Equation
from bioproc.errors import InvalidCatalystError, InvalidKineticsError, NameCollisionError, ShapeMismatchError
from bioproc.errors import UnresolvedPortError
from bioproc.expr import Expr, to_expr
from bioproc.fragment import Fragment, parent_scope, require_symbol
from bioproc.operators import constant, der, parameter, variable
from bioproc.types import Number


def _sum(terms: Sequence[Expr]) -> Expr:
    """Sum of expressions; zero for an empty sequence."""
    if not terms:
        return to_expr(0.0)
    total = terms[0]
    for term in terms[1:]:
        total = total + term
    return total


def _pair_matrix(
    values: Optional[Sequence[Sequence[Number]]], shape: Tuple[int, int], what: str
) -> Optional[np.ndarray]:
    if values is None:
        return None
    try:
        array = np.asarray(values, dtype=float)
    except ValueError:
        raise ShapeMismatchError(f"{what} must have shape {shape} (components x {what.split()[-1]}), got ragged rows") from None
    if array.shape != shape:
        raise ShapeMismatchError(f"{what} must have shape {shape} (components x {what.split()[-1]}), got {array.shape}")
    return array


def _pair_parameters(
    prefix: str,
    components: Sequence[Fragment],
    others: Sequence[Fragment],
    defaults: Optional[np.ndarray],
    unit: str,
    desc: str,
) -> List[List[Expr]]:
    """One parameter per (component, other) pair, named prefix_<comp>_<other>."""
    created: Dict[str, Tuple[str, str]] = {}
    matrix: List[List[Expr]] = []
    for i, comp in enumerate(components):
        row = []
        for j, other in enumerate(others):
            pname = f"{prefix}_{comp.name}_{other.name}"
            if pname in created:
                raise NameCollisionError(
                    f"Parameter '{pname}' is synthesized for pair {created[pname]} and for pair "
                    f"('{comp.name}', '{other.name}')"
                )
            created[pname] = (comp.name, other.name)
            default = None if defaults is None else float(defaults[i, j])
            row.append(parameter(pname, default, unit=unit, desc=f"{desc} of {comp.name} in {other.name}"))
        matrix.append(row)
    return matrix


# =============================================================================
# Leaf fragments
# =============================================================================


@beartype
def flow(*, name: str, rho: Number = 1000) -> Fragment:
    """Liquid flow: volumetric rate ``F`` and mass rate ``F_m = rho * F``."""
    rho_ = parameter("rho", rho, unit="g/L", desc="density")
    F = variable("F", unit="L/h", desc="flow rate")
    F_m = variable("F_m", unit="g/h", desc="mass flow rate")
    return Fragment(name, [F_m == rho_ * F], variables=[F, F_m], parameters=[rho_], description="liquid flow")


@beartype
def gasflow(*, name: str, V_nM: Number = 22.414) -> Fragment:
    """Gas flow: volumetric rate ``F`` and molar rate ``F_n = F / V_nM``."""
    V_nM_ = constant("V_nM", V_nM, unit="L/mol", desc="molar volume")
    F = variable("F", unit="L/h", desc="gas flow rate")
    F_n = variable("F_n", unit="mol/h", desc="molar gas flow rate")
    return Fragment(name, [F_n == F / V_nM_], variables=[F, F_n], parameters=[V_nM_], description="gas flow")


# =============================================================================
# Composites
# =============================================================================


@beartype
def tank(
    *flows: Fragment,
    name: str,
    outflows: Sequence[Fragment] = (),
    gasflows: Sequence[Fragment] = (),
    rho: Number = 1000,
    V_L: Optional[Number] = None,
) -> Fragment:
    """
    Liquid tank with volume balance ``der(V_L) = sum(inflows) - sum(outflows)``.

    Parameters
    ----------
    *flows : Fragment
        Inflows (fragments with a variable ``F``); they become children
    name : str
        Fragment name
    outflows : sequence of Fragment
        Flows entering the balance with a minus sign
    gasflows : sequence of Fragment
        Gas flows, composed as children; they do not enter the liquid balance
    rho : float
        Liquid density [g/L]
    V_L : float, optional
        Start value of the liquid volume

    Notes
    -----
    The sign of each flow value is the caller's responsibility; nothing checks
    that inflows are positive. With no flows at all the balance is
    ``der(V_L) == 0``.
    """
    inflow_rates = [require_symbol(f, "F", TypeError, "a tank inflow") for f in flows]
    outflow_rates = [require_symbol(f, "F", TypeError, "a tank outflow") for f in outflows]
    for g in gasflows:
        require_symbol(g, "F_n", TypeError, "a tank gas flow")

    V = variable("V_L", start=V_L, unit="L", desc="liquid volume")
    rho_ = parameter("rho", rho, unit="g/L", desc="density")

    balance = _sum(inflow_rates)
    if outflow_rates:
        balance = balance - _sum(outflow_rates)

    return Fragment(
        name,
        [der(V) == balance],
        variables=[V],
        parameters=[rho_],
        children=list(flows) + list(outflows) + list(gasflows),
        description="liquid tank",
    )


@beartype
def component(
    reactor: Fragment,
    catalyst: Any = None,
    *,
    name: str,
    M: Optional[Number] = None,
    m: Optional[Number] = None,
) -> Fragment:
    """
    Component dissolved in the liquid of ``reactor``.

    Equations::

        r   == q * catalyst.m     (q * m without catalyst)
        r_n == r / M
        n   == m / M
        c   == m / reactor.V_L

    The reactor and the catalyst are not children: both are reached through
    deferred ports and resolved by the composite that owns them.

    Parameters
    ----------
    reactor : Fragment
        Fragment exposing the liquid volume ``V_L``
    catalyst : Fragment, optional
        Component whose mass catalyzes the reaction (e.g. the biomass); None
        for an uncatalyzed component
    M : float, optional
        Default molar mass [g/mol]
    m : float, optional
        Start value of the mass [g]

    Raises
    ------
    InvalidCatalystError
        If ``catalyst`` is neither None nor a fragment with a mass variable ``m``
    """
    if catalyst is not None:
        if not isinstance(catalyst, Fragment):
            raise InvalidCatalystError(f"Component '{name}': catalyst must be a component fragment or None, got {catalyst!r}")
        catalyst_mass = parent_scope(require_symbol(catalyst, "m", InvalidCatalystError, "a catalyst"))
    V_L = parent_scope(require_symbol(reactor, "V_L", TypeError, "a reactor"))

    m_ = variable("m", start=m, unit="g", desc="mass")
    n = variable("n", unit="mol", desc="amount")
    r = variable("r", unit="g/h", desc="reaction rate")
    r_n = variable("r_n", unit="mol/h", desc="molar reaction rate")
    q = variable("q", unit="g/g/h", desc="specific reaction rate")
    c = variable("c", unit="g/L", desc="concentration")
    M_ = parameter("M", M, unit="g/mol", desc="molar mass")

    equations = [
        r == q * (catalyst_mass if catalyst is not None else m_),
        r_n == r / M_,
        n == m_ / M_,
        c == m_ / V_L,
    ]
    return Fragment(name, equations, variables=[m_, n, r, r_n, q, c], parameters=[M_], description="component")


@beartype
def feed_system(
    components: Sequence[Fragment],
    feeds: Sequence[Fragment],
    *,
    name: str,
    concentrations: Optional[Sequence[Sequence[Number]]] = None,
) -> Fragment:
    """
    Mass inflow of every component from every feed.

    For each component ``X`` and feed ``F1`` a concentration parameter
    ``c_X_F1`` is created, and ``Q_in_X == sum(c_X_F * F.F)`` over feeds.
    Components and feeds are reached through deferred ports.

    Parameters
    ----------
    components : sequence of Fragment
        Components (fragments with a mass ``m``)
    feeds : sequence of Fragment
        Flows (fragments with a rate ``F``)
    concentrations : array-like, optional
        Default feed concentrations, shape (len(components), len(feeds))

    Raises
    ------
    ShapeMismatchError
        If ``concentrations`` has the wrong shape
    NameCollisionError
        If two pairs synthesize the same parameter name
    """
    if not components or not feeds:
        warnings.warn(f"feed_system '{name}' has no components or no feeds; all inflows are zero")
    for comp in components:
        require_symbol(comp, "m", TypeError, "a fed component")
    rates = [parent_scope(require_symbol(f, "F", TypeError, "a feed")) for f in feeds]

    defaults = _pair_matrix(concentrations, (len(components), len(feeds)), "concentrations of feeds")
    c_F = _pair_parameters("c", components, feeds, defaults, "g/L", "feed concentration")

    inflows: List[Expr] = []
    equations: List[Equation] = []
    for comp, row in zip(components, c_F):
        Q_in = variable(f"Q_in_{comp.name}", unit="g/h", desc=f"mass inflow of {comp.name}")
        inflows.append(Q_in)
        equations.append(Q_in == _sum([c * F for c, F in zip(row, rates)]))

    return Fragment(
        name,
        equations,
        variables=inflows,
        parameters=[p for row in c_F for p in row],
        description="feed system",
    )


@beartype
def reaction_system(
    components: Sequence[Fragment],
    reactions: Sequence[Fragment],
    *,
    name: str,
    yields: Optional[Sequence[Sequence[Number]]] = None,
) -> Fragment:
    """
    Couple components to reactions through yield coefficients.

    For each component ``X`` and reaction ``qiS`` a yield parameter
    ``Y_X_qiS`` is created, and ``X.q == sum(Y_X_rxn * rxn.r)`` over
    reactions. The reactions become children; the components are reached
    through deferred ports.

    Parameters
    ----------
    components : sequence of Fragment
        Components (fragments with a specific rate ``q``)
    reactions : sequence of Fragment
        Reactions (fragments with a rate ``r``, e.g. from kinetic())
    yields : array-like, optional
        Default yields, shape (len(components), len(reactions))

    Raises
    ------
    InvalidKineticsError
        If a reaction has no rate ``r``
    ShapeMismatchError
        If ``yields`` has the wrong shape
    NameCollisionError
        If two pairs synthesize the same parameter name
    """
    if not components or not reactions:
        warnings.warn(f"reaction_system '{name}' has no components or no reactions; all rates are zero")
    rates = [require_symbol(rxn, "r", InvalidKineticsError, "a reaction") for rxn in reactions]
    specific_rates = [parent_scope(require_symbol(comp, "q", TypeError, "a reacting component")) for comp in components]

    defaults = _pair_matrix(yields, (len(components), len(reactions)), "yields of reactions")
    Y = _pair_parameters("Y", components, reactions, defaults, "g/g", "yield")

    equations = [q == _sum([y * r for y, r in zip(row, rates)]) for q, row in zip(specific_rates, Y)]
    return Fragment(
        name,
        equations,
        parameters=[p for row in Y for p in row],
        children=reactions,
        description="reaction system",
    )


@beartype
def bioprocess(
    reactor: Fragment,
    reactions: Fragment,
    components: Sequence[Fragment],
    feeds: Optional[Fragment] = None,
    *,
    name: str,
    control_inflow: Optional[str] = None,
) -> Fragment:
    """
    Top-level assembly of a bioprocess.

    For every component ``der(X.m) == X.r + feeds.Q_in_X`` (``X.r`` alone
    without a feed system). One reactor inflow is pinned to zero; it is
    reserved for a control input.

    Parameters
    ----------
    reactor : Fragment
        Tank (fragment with ``V_L`` and flow children)
    reactions : Fragment
        Output of reaction_system()
    components : sequence of Fragment
        Components dissolved in the reactor
    feeds : Fragment, optional
        Output of feed_system() for the same components
    control_inflow : str, optional
        Name of the reactor child flow pinned to zero; defaults to the
        reactor's first child with a rate ``F``
    """
    equations: List[Equation] = []
    for comp in components:
        m = require_symbol(comp, "m", TypeError, "a bioprocess component")
        r = require_symbol(comp, "r", TypeError, "a bioprocess component")
        if feeds is not None:
            inflow = f"Q_in_{comp.name}"
            if not feeds.has_symbol(inflow):
                raise UnresolvedPortError(f"Feed system '{feeds.name}' has no inflow '{inflow}' for '{comp.name}'")
            equations.append(der(m) == r + feeds.port(inflow))
        else:
            equations.append(der(m) == r)

    if control_inflow is None:
        candidates = [child for child in reactor.children if child.has_symbol("F")]
        pinned = candidates[0] if candidates else None
    else:
        pinned = reactor.child(control_inflow)
    if pinned is not None:
        equations.append(require_symbol(pinned, "F", TypeError, "a control inflow") == 0)

    children = [reactor, reactions, *components]
    if feeds is not None:
        children.append(feeds)
    return Fragment(name, equations, children=children, description="bioprocess")
