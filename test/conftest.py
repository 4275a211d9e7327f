"""
Shared fixtures.

``batch_process`` builds the batch fermentation used by the process and
backend tests: biomass X growing on substrate S in a tank R, one Monod
reaction, and a feed system whose only flow is pinned to zero.
"""

from types import SimpleNamespace

import pytest


@pytest.fixture
def batch_process():
    """Factory for the batch fermentation; keyword arguments override defaults."""
    from bioproc.models import bioprocess, component, feed_system, flow, kinetic, monod, reaction_system, tank

    def build(r_max=1.2, X0=0.1, S0=10.0, V0=1.0, with_feed=True):
        F1 = flow(name="F1")
        R = tank(F1, name="R", V_L=V0)
        X = component(R, name="X", M=24.6, m=X0)
        S = component(R, X, name="S", M=180.16, m=S0)
        qiS = kinetic(monod(S, name="mnd", K=0.05), name="qiS", r_max=r_max)
        react = reaction_system([X, S], [qiS], name="react", yields=[[0.45], [-1.0]])
        feedsys = None
        if with_feed:
            feedsys = feed_system([X, S], [F1], name="feedsys", concentrations=[[0.0], [100.0]])
        bp = bioprocess(R, react, [X, S], feedsys, name="bp")
        return SimpleNamespace(bp=bp, R=R, F1=F1, X=X, S=S, qiS=qiS, react=react, feedsys=feedsys)

    return build
