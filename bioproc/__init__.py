"""
bioproc - Composable acausal bioprocess models.

Fragments (flows, tanks, dissolved components, kinetic expressions,
reaction and feed systems) are built bottom-up by builder functions and
composed into a tree. The tree is flattened into one equation system,
structurally simplified and handed to a backend for simulation.

================================================================================
DESIGN PRINCIPLES - DO NOT REMOVE OR IGNORE
================================================================================

1. TYPE SAFETY: All functions MUST use beartype for runtime type checking.
   - beartype_package() instruments every module of this package
   - All public functions decorated with @beartype

2. SELF-CONTAINED CORE: the core modules (expr, fragment, flatten, causality)
   use NO external compute libraries. CasADi and SymPy are only imported by
   bioproc.backends.

3. IMMUTABILITY: Fragments, expressions and equations are never mutated;
   composition always builds new objects.

================================================================================

Example
-------
>>> from bioproc import flatten, simplify  # doctest: +SKIP
>>> from bioproc.models import flow, tank, component, monod, kinetic  # doctest: +SKIP
>>> from bioproc.models import reaction_system, feed_system, bioprocess  # doctest: +SKIP
>>> from bioproc.backends import CasadiBackend  # doctest: +SKIP
>>>
>>> F1 = flow(name="F1")  # doctest: +SKIP
>>> R = tank(F1, name="R")  # doctest: +SKIP
>>> X = component(R, name="X")  # doctest: +SKIP
>>> S = component(R, X, name="S")  # doctest: +SKIP
>>> qiS = kinetic(monod(S, name="mnd"), name="qiS")  # doctest: +SKIP
>>> react = reaction_system([X, S], [qiS], name="react")  # doctest: +SKIP
>>> feedsys = feed_system([X, S], [F1], name="feedsys")  # doctest: +SKIP
>>> bp = bioprocess(R, react, [X, S], feedsys, name="bp")  # doctest: +SKIP
>>> compiled = CasadiBackend.compile(simplify(flatten(bp)))  # doctest: +SKIP
"""

from beartype.claw import beartype_package

beartype_package(__name__)

__version__ = "0.1.0"

from bioproc.causality import SimplifiedSystem, simplify
from bioproc.equations import Equation
from bioproc.errors import (
    InvalidCatalystError,
    InvalidKineticsError,
    ModelBuildError,
    NameCollisionError,
    OverdeterminedSystemError,
    ShapeMismatchError,
    StructuralError,
    UnderdeterminedSystemError,
    UnresolvedPortError,
)
from bioproc.expr import Expr, ExprKind
from bioproc.flat_model import FlatSystem
from bioproc.flatten import flatten
from bioproc.fragment import Fragment, bind_port, extend, parent_scope
from bioproc.operators import TIME, TimeDomain, constant, der, exp, log, max, min, parameter, sqrt, t, variable
from bioproc.types import Var, VarKind

__all__ = [
    # Fragments and ports
    "Fragment",
    "bind_port",
    "parent_scope",
    "extend",
    # Symbols and equations
    "variable",
    "parameter",
    "constant",
    "der",
    "t",
    "TIME",
    "TimeDomain",
    "exp",
    "log",
    "sqrt",
    "min",
    "max",
    "Expr",
    "ExprKind",
    "Equation",
    "Var",
    "VarKind",
    # Passes
    "flatten",
    "FlatSystem",
    "simplify",
    "SimplifiedSystem",
    # Errors
    "ModelBuildError",
    "NameCollisionError",
    "UnresolvedPortError",
    "ShapeMismatchError",
    "InvalidCatalystError",
    "InvalidKineticsError",
    "StructuralError",
    "UnderdeterminedSystemError",
    "OverdeterminedSystemError",
    "__version__",
]
