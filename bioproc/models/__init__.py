"""
Bioprocess model library.

Leaf fragments (flows, kinetic expressions) and the composites built from
them (tank, component, reaction and feed systems, bioprocess).
"""

from bioproc.models.kinetics import blackman, compose_kinetics, haldane, kinetic, monod, monod_haldane, moser, teissier
from bioproc.models.process import bioprocess, component, feed_system, flow, gasflow, reaction_system, tank

__all__ = [
    "flow",
    "gasflow",
    "tank",
    "component",
    "feed_system",
    "reaction_system",
    "bioprocess",
    "monod",
    "blackman",
    "teissier",
    "moser",
    "haldane",
    "compose_kinetics",
    "monod_haldane",
    "kinetic",
]
