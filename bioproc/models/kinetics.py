"""
Kinetic expressions.

Every builder here returns a fragment exposing a normalized rate ``r_norm``
as a function of a substrate concentration ``c``. ``kinetic`` turns a
normalized fragment into a dimensional rate ``r = r_max * r_norm``.

The concentration is a free variable unless a substrate component is
given, in which case ``c`` is bound to the substrate's concentration
through a deferred port::

    mnd = monod(S, name="mnd")
    qiS = kinetic(mnd, name="qiS", r_max=1.2)
"""

from __future__ import annotations

from typing import Callable, List, Optional

from beartype import beartype

from bioproc.errors import InvalidKineticsError
from bioproc.expr import Expr
from bioproc.fragment import Fragment, extend, parent_scope, require_symbol
from bioproc.operators import exp, min, parameter, variable
from bioproc.types import Number


def _substrate_concentration(substrate: Fragment) -> Expr:
    return parent_scope(require_symbol(substrate, "c", TypeError, "a substrate"))


def _normalized(
    name: str,
    law: Callable[[Expr], Expr],
    parameters: List[Expr],
    substrate: Optional[Fragment],
    description: str,
) -> Fragment:
    r_norm = variable("r_norm", desc="normalized reaction rate [-]")
    c = variable("c", unit="g/L", desc="substrate concentration")

    equations = [r_norm == law(c)]
    if substrate is not None:
        equations.append(c == _substrate_concentration(substrate))

    return Fragment(name, equations, variables=[r_norm, c], parameters=parameters, description=description)


def _normalized_rate(kin: Fragment, role: str) -> Expr:
    """Port to r_norm; checked before any equation is built."""
    return require_symbol(kin, "r_norm", InvalidKineticsError, role)


@beartype
def monod(substrate: Optional[Fragment] = None, *, name: str, K: Number = 0.05) -> Fragment:
    """Monod kinetics ``r_norm = c / (K + c)``."""
    K_ = parameter("K", K, unit="g/L", desc="Monod constant")
    return _normalized(name, lambda c: c / (K_ + c), [K_], substrate, "Monod kinetics")


@beartype
def blackman(substrate: Optional[Fragment] = None, *, name: str, K: Number = 0.05) -> Fragment:
    """Blackman kinetics ``r_norm = min(1, K * c)``, saturated from ``c = 1/K``."""
    K_ = parameter("K", K, unit="L/g", desc="Blackman constant")
    return _normalized(name, lambda c: min(1, K_ * c), [K_], substrate, "Blackman kinetics")


@beartype
def teissier(substrate: Optional[Fragment] = None, *, name: str, K: Number = 0.05) -> Fragment:
    """Teissier kinetics ``r_norm = 1 - exp(-K * c)``."""
    K_ = parameter("K", K, unit="L/g", desc="Teissier constant")
    return _normalized(name, lambda c: 1 - exp(-K_ * c), [K_], substrate, "Teissier kinetics")


@beartype
def moser(substrate: Optional[Fragment] = None, *, name: str, K: Number = 0.05, N: Number = 2) -> Fragment:
    """Moser kinetics ``r_norm = c**N / (K**N + c**N)``."""
    K_ = parameter("K", K, unit="g/L", desc="Moser constant")
    N_ = parameter("N", N, desc="Moser order")
    return _normalized(name, lambda c: c**N_ / (K_**N_ + c**N_), [K_, N_], substrate, "Moser kinetics")


@beartype
def haldane(
    substrate: Optional[Fragment] = None, *, name: str, K: Number = 0.05, K_i: Number = 0.05
) -> Fragment:
    """
    Haldane kinetics with substrate inhibition.

    ``r_norm = c / (K + c * (1 + c / K_i))``. The rate peaks at
    ``c = sqrt(K * K_i)`` and decays for larger concentrations.
    """
    K_ = parameter("K", K, unit="g/L", desc="Haldane constant")
    Ki_ = parameter("K_i", K_i, unit="g/L", desc="Haldane inhibition constant")
    return _normalized(name, lambda c: c / (K_ + c * (1 + c / Ki_)), [K_, Ki_], substrate, "Haldane kinetics")


@beartype
def compose_kinetics(
    kin1: Fragment, kin2: Fragment, *, name: str, substrate: Optional[Fragment] = None
) -> Fragment:
    """
    Product of two normalized kinetic expressions.

    Both fragments become children. The composite has its own ``c``, tied to
    the concentration of each child that declares one, so the product is a
    kinetic expression of a single substrate like any other.

    Raises
    ------
    InvalidKineticsError
        If either fragment has no ``r_norm``
    """
    r1 = _normalized_rate(kin1, "the first factor of a kinetic product")
    r2 = _normalized_rate(kin2, "the second factor of a kinetic product")

    r_norm = variable("r_norm", desc="normalized reaction rate [-]")
    c = variable("c", unit="g/L", desc="substrate concentration")
    equations = [r_norm == r1 * r2]
    for kin in (kin1, kin2):
        if kin.has_symbol("c"):
            equations.append(kin.c == c)
    if substrate is not None:
        equations.append(c == _substrate_concentration(substrate))

    return Fragment(
        name,
        equations,
        variables=[r_norm, c],
        children=[kin1, kin2],
        description=f"{kin1.name} * {kin2.name}",
    )


@beartype
def monod_haldane(
    substrate: Optional[Fragment] = None, *, name: str, K: Number = 0.05, K_i: Number = 0.05
) -> Fragment:
    """Product of Monod and Haldane kinetics (children ``mnd`` and ``hld``)."""
    mnd = monod(name="mnd", K=K)
    hld = haldane(name="hld", K=K, K_i=K_i)
    return compose_kinetics(mnd, hld, name=name, substrate=substrate)


@beartype
def kinetic(kin: Fragment, *, name: str, r_max: Number = 1) -> Fragment:
    """
    Denormalize a kinetic expression: ``r = r_max * r_norm``.

    The result extends ``kin`` (no extra namespace level), so it exposes
    ``r``, ``r_max`` and every symbol of ``kin``.

    Raises
    ------
    InvalidKineticsError
        If ``kin`` has no ``r_norm``
    """
    r_norm = _normalized_rate(kin, "a kinetic expression")
    r = variable("r", unit="g/g/h", desc="reaction rate")
    r_max_ = parameter("r_max", r_max, unit="g/g/h", desc="maximal reaction rate")
    return extend(kin, name, [r == r_max_ * r_norm], variables=[r], parameters=[r_max_])
