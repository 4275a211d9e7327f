#!/usr/bin/env python3
"""
Example: Batch fermentation of biomass on a single substrate.

This demonstrates how to:
1. Build flows, a tank and dissolved components
2. Attach Monod kinetics to the substrate and couple it through yields
3. Flatten and simplify the composed bioprocess
4. Simulate with the CasADi backend and plot biomass and substrate
5. Export the equations with the SymPy backend

Requires the plot extra: pip install 'bioproc[plot]'
"""

import matplotlib.pyplot as plt

from bioproc import flatten, simplify
from bioproc.backends import CasadiBackend, SympyBackend
from bioproc.models import bioprocess, component, feed_system, flow, kinetic, monod, reaction_system, tank


def build_bioprocess():
    """Biomass X grows on substrate S in tank R; feed F1 is pinned to zero."""
    F1 = flow(name="F1")
    R = tank(F1, name="R")

    X = component(R, name="X")
    S = component(R, X, name="S")
    components = [X, S]

    mnd = monod(S, name="mnd")
    qiS = kinetic(mnd, name="qiS")

    react = reaction_system(components, [qiS], name="react")
    feedsys = feed_system(components, [F1], name="feedsys", concentrations=[[0.0], [100.0]])

    return bioprocess(R, react, components, feedsys, name="bp")


def main():
    bp = build_bioprocess()

    flat = flatten(bp)
    print(flat)
    system = simplify(flat)
    print(system)
    print()

    for solved in system.observed:
        print(f"  {solved}")
    print()

    compiled = CasadiBackend.compile(system)

    x0 = {bp.R.V_L: 1.0, bp.X.m: 0.1, bp.S.m: 10.0}
    params = {
        "react.Y_X_qiS": 0.45,
        "react.Y_S_qiS": -1.0,
        bp.X.M: 26.5,
        bp.S.M: 30.0,
    }

    print("Simulating 12 hours...")
    result = compiled.simulate(tf=12.0, x0=x0, params=params, n_points=241)
    print(f"Final biomass:   {result.final['X.m']:.4f} g")
    print(f"Final substrate: {result.final['S.m']:.4f} g")
    print()

    print(SympyBackend(flat).latex())

    fig, ax = plt.subplots(figsize=(10, 6))
    ax.plot(result.t, result[bp.X.m], label="X.m (biomass)")
    ax.plot(result.t, result[bp.S.m], label="S.m (substrate)")
    ax.set_xlabel("Time (h)")
    ax.set_ylabel("Mass (g)")
    ax.set_title("Batch fermentation")
    ax.grid(True)
    ax.legend()

    plt.tight_layout()
    plt.savefig("batch_fermentation.png", dpi=150)
    print("Plot saved to batch_fermentation.png")


if __name__ == "__main__":
    main()
