"""
Build errors raised while composing, flattening and simplifying fragments.

Every error derives from ModelBuildError and from the builtin exception
that matches its nature, so ``except ValueError`` style handlers keep
working.
"""

from typing import Sequence


class ModelBuildError(Exception):
    """Base class for all model construction errors."""


class NameCollisionError(ModelBuildError, ValueError):
    """Two siblings, two synthesized parameters or two qualified names clash."""


class UnresolvedPortError(ModelBuildError, LookupError):
    """A port reference could not be bound to a symbol of its owner."""


class ShapeMismatchError(ModelBuildError, ValueError):
    """Array arguments of a bilinear coupling have incompatible lengths."""


class InvalidCatalystError(ModelBuildError, TypeError):
    """A catalyst argument lacks the mass variable of a component."""


class InvalidKineticsError(ModelBuildError, TypeError):
    """A fragment lacks the normalized rate of a kinetic expression."""


class StructuralError(ModelBuildError, ValueError):
    """Equation count does not match the number of unknowns."""

    def __init__(self, message: str, names: Sequence[str] = ()):
        super().__init__(message)
        self.names = tuple(names)


class UnderdeterminedSystemError(StructuralError):
    """More unknowns than equations."""


class OverdeterminedSystemError(StructuralError):
    """More equations than unknowns."""
