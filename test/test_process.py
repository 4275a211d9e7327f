"""
Tests for bioproc.models.process.

Covers: flow, gasflow, tank, component, feed_system, reaction_system,
bioprocess.
"""

import pytest

# =============================================================================
# Leaf fragments
# =============================================================================


class TestFlow:
    """Liquid and gas flows."""

    def test_flow(self) -> None:
        from bioproc.models import flow

        F1 = flow(name="F1", rho=998.0)
        assert [repr(eq) for eq in F1.equations] == ["Eq(F_m == (rho * F))"]
        assert F1.symbol("rho").default == 998.0

    def test_gasflow_molar_volume_is_constant(self) -> None:
        from bioproc.models import gasflow
        from bioproc.types import VarKind

        G = gasflow(name="G")
        assert [repr(eq) for eq in G.equations] == ["Eq(F_n == (F / V_nM))"]
        assert G.symbol("V_nM").kind == VarKind.CONSTANT
        assert G.symbol("V_nM").default == 22.414


# =============================================================================
# Tank
# =============================================================================


class TestTank:
    """Volume balance of a tank."""

    def test_empty_tank(self) -> None:
        from bioproc.models import tank

        R = tank(name="R")
        assert [repr(eq) for eq in R.equations] == ["Eq(der(V_L) == 0.0)"]
        assert R.children == ()

    def test_inflows(self) -> None:
        from bioproc.models import flow, tank

        R = tank(flow(name="F1"), flow(name="F2"), name="R")
        assert [repr(eq) for eq in R.equations] == ["Eq(der(V_L) == (F1.F + F2.F))"]

    def test_outflow(self) -> None:
        from bioproc.models import flow, tank

        R = tank(flow(name="F1"), name="R", outflows=[flow(name="Fo")])
        assert [repr(eq) for eq in R.equations] == ["Eq(der(V_L) == (F1.F - Fo.F))"]
        assert [child.name for child in R.children] == ["F1", "Fo"]

    def test_only_outflows(self) -> None:
        from bioproc.models import flow, tank

        R = tank(name="R", outflows=[flow(name="Fo")])
        assert [repr(eq) for eq in R.equations] == ["Eq(der(V_L) == (0.0 - Fo.F))"]

    def test_gasflows_do_not_enter_balance(self) -> None:
        from bioproc.models import flow, gasflow, tank

        R = tank(flow(name="F1"), name="R", gasflows=[gasflow(name="G")])
        assert [repr(eq) for eq in R.equations] == ["Eq(der(V_L) == F1.F)"]
        assert [child.name for child in R.children] == ["F1", "G"]

    def test_start_volume_and_density(self) -> None:
        from bioproc.models import tank

        R = tank(name="R", V_L=2.5)
        assert R.symbol("V_L").default == 2.5
        assert R.symbol("rho").default == 1000

    def test_inflow_without_rate(self) -> None:
        from bioproc.models import tank

        with pytest.raises(TypeError, match="tank inflow"):
            tank(tank(name="T"), name="R")

    def test_gasflow_without_molar_rate(self) -> None:
        from bioproc.models import flow, tank

        with pytest.raises(TypeError, match="gas flow"):
            tank(name="R", gasflows=[flow(name="F1")])


# =============================================================================
# Component
# =============================================================================


class TestComponent:
    """Dissolved components."""

    def test_equations(self) -> None:
        from bioproc.models import component, tank

        X = component(tank(name="R"), name="X", M=24.6, m=0.1)
        assert [repr(eq) for eq in X.equations] == [
            "Eq(r == (q * m))",
            "Eq(r_n == (r / M))",
            "Eq(n == (m / M))",
            "Eq(c == (m / ^R.V_L))",
        ]
        assert list(X.symbols) == ["m", "n", "r", "r_n", "q", "c", "M"]
        assert X.symbol("m").default == 0.1
        assert X.symbol("M").default == 24.6

    def test_catalyst(self) -> None:
        from bioproc.models import component, tank

        R = tank(name="R")
        X = component(R, name="X")
        S = component(R, X, name="S")
        assert repr(S.equations[0]) == "Eq(r == (q * ^X.m))"

    def test_reactor_is_not_a_child(self) -> None:
        from bioproc.models import component, tank

        X = component(tank(name="R"), name="X")
        assert X.children == ()

    def test_invalid_catalyst(self) -> None:
        from bioproc.errors import InvalidCatalystError
        from bioproc.models import component, flow, tank

        with pytest.raises(InvalidCatalystError, match="catalyst"):
            component(tank(name="R"), flow(name="F1"), name="S")

    def test_catalyst_not_a_fragment(self) -> None:
        from bioproc.errors import InvalidCatalystError
        from bioproc.models import component, tank

        R = tank(name="R")
        for bad in (True, False, "X", 1.0):
            with pytest.raises(InvalidCatalystError, match="catalyst must be"):
                component(R, bad, name="S")

    def test_invalid_catalyst_is_type_error(self) -> None:
        from bioproc.models import component, flow, tank

        with pytest.raises(TypeError):
            component(tank(name="R"), flow(name="F1"), name="S")

    def test_reactor_without_volume(self) -> None:
        from bioproc.models import component, flow

        with pytest.raises(TypeError, match="reactor"):
            component(flow(name="F1"), name="X")


# =============================================================================
# Feed and reaction systems
# =============================================================================


class TestFeedSystem:
    """Mass inflows from feeds."""

    def test_parameters_and_equations(self) -> None:
        from bioproc.models import component, feed_system, flow, tank

        F1 = flow(name="F1")
        F2 = flow(name="F2")
        R = tank(F1, F2, name="R")
        X = component(R, name="X")
        S = component(R, name="S")
        fs = feed_system([X, S], [F1, F2], name="feedsys", concentrations=[[0.0, 0.0], [100.0, 50.0]])

        assert list(fs.symbols) == ["Q_in_X", "Q_in_S", "c_X_F1", "c_X_F2", "c_S_F1", "c_S_F2"]
        assert fs.symbol("c_S_F2").default == 50.0
        assert repr(fs.equations[1]) == "Eq(Q_in_S == ((c_S_F1 * ^F1.F) + (c_S_F2 * ^F2.F)))"

    def test_one_parameter_and_equation_per_pair(self) -> None:
        from bioproc.models import component, feed_system, flow, tank

        F1 = flow(name="F1")
        R = tank(F1, name="R")
        X = component(R, name="X")
        S = component(R, X, name="S")
        fs = feed_system([X, S], [F1], name="feedsys")

        assert [n for n in fs.symbols if n.startswith("c_")] == ["c_X_F1", "c_S_F1"]
        assert len(fs.equations) == 2

    def test_no_default_concentrations(self) -> None:
        from bioproc.models import component, feed_system, flow, tank

        F1 = flow(name="F1")
        X = component(tank(F1, name="R"), name="X")
        fs = feed_system([X], [F1], name="feedsys")
        assert fs.symbol("c_X_F1").default is None

    def test_shape_mismatch(self) -> None:
        from bioproc.errors import ShapeMismatchError
        from bioproc.models import component, feed_system, flow, tank

        F1 = flow(name="F1")
        R = tank(F1, name="R")
        X = component(R, name="X")
        S = component(R, name="S")
        with pytest.raises(ShapeMismatchError, match=r"\(2, 1\)"):
            feed_system([X, S], [F1], name="feedsys", concentrations=[[1.0, 2.0]])

    def test_ragged_concentrations(self) -> None:
        from bioproc.errors import ShapeMismatchError
        from bioproc.models import component, feed_system, flow, tank

        F1 = flow(name="F1")
        R = tank(F1, name="R")
        X = component(R, name="X")
        S = component(R, name="S")
        with pytest.raises(ShapeMismatchError, match="ragged"):
            feed_system([X, S], [F1], name="feedsys", concentrations=[[0.0], [100.0, 50.0]])

    def test_same_component_twice(self) -> None:
        from bioproc.errors import NameCollisionError
        from bioproc.models import component, feed_system, tank

        X = component(tank(name="R"), name="X")
        with pytest.raises(NameCollisionError, match="Q_in_X"):
            feed_system([X, X], [], name="feedsys")

    def test_empty_warns(self) -> None:
        from bioproc.models import feed_system, flow

        with pytest.warns(UserWarning, match="no components"):
            fs = feed_system([], [flow(name="F1")], name="feedsys")
        assert fs.equations == ()


class TestReactionSystem:
    """Yield coupling of components and reactions."""

    def test_equations(self, batch_process) -> None:
        bp = batch_process()
        react = bp.react

        assert [repr(eq) for eq in react.equations] == [
            "Eq(^X.q == (Y_X_qiS * qiS.r))",
            "Eq(^S.q == (Y_S_qiS * qiS.r))",
        ]
        assert react.symbol("Y_X_qiS").default == 0.45
        assert react.symbol("Y_S_qiS").default == -1.0
        assert react.qiS is bp.qiS

    def test_synthesized_name_collision(self) -> None:
        from bioproc.errors import NameCollisionError
        from bioproc.models import component, kinetic, monod, reaction_system, tank

        R = tank(name="R")
        comps = [component(R, name="a_b"), component(R, name="a")]
        rxns = [kinetic(monod(name="m1"), name="c"), kinetic(monod(name="m2"), name="b_c")]
        with pytest.raises(NameCollisionError, match="Y_a_b_c"):
            reaction_system(comps, rxns, name="react")

    def test_shape_mismatch(self) -> None:
        from bioproc.errors import ShapeMismatchError
        from bioproc.models import component, kinetic, monod, reaction_system, tank

        X = component(tank(name="R"), name="X")
        qiS = kinetic(monod(name="mnd"), name="qiS")
        with pytest.raises(ShapeMismatchError):
            reaction_system([X], [qiS], name="react", yields=[[1.0], [2.0]])

    def test_ragged_yields(self) -> None:
        from bioproc.errors import ShapeMismatchError
        from bioproc.models import component, kinetic, monod, reaction_system, tank

        R = tank(name="R")
        X = component(R, name="X")
        S = component(R, X, name="S")
        qiS = kinetic(monod(name="mnd"), name="qiS")
        with pytest.raises(ShapeMismatchError, match="ragged"):
            reaction_system([X, S], [qiS], name="react", yields=[[0.45], [-1.0, 2.0]])

    def test_reaction_without_rate(self) -> None:
        from bioproc.errors import InvalidKineticsError
        from bioproc.models import component, monod, reaction_system, tank

        X = component(tank(name="R"), name="X")
        with pytest.raises(InvalidKineticsError):
            reaction_system([X], [monod(name="mnd")], name="react")

    def test_no_reactions_warns(self) -> None:
        from bioproc.models import component, reaction_system, tank

        X = component(tank(name="R"), name="X")
        with pytest.warns(UserWarning):
            react = reaction_system([X], [], name="react")
        assert [repr(eq) for eq in react.equations] == ["Eq(^X.q == 0.0)"]


# =============================================================================
# Bioprocess
# =============================================================================


class TestBioprocess:
    """Top-level assembly."""

    def test_balanced_system(self, batch_process) -> None:
        from bioproc import flatten

        flat = flatten(batch_process().bp)
        assert len(flat.equations) == 20
        assert len(flat.variables) == 20

    def test_mass_balances_and_pin(self, batch_process) -> None:
        from bioproc import flatten

        eqs = [repr(eq) for eq in flatten(batch_process().bp).equations]
        assert "Eq(der(X.m) == (X.r + feedsys.Q_in_X))" in eqs
        assert "Eq(der(S.m) == (S.r + feedsys.Q_in_S))" in eqs
        assert "Eq(R.F1.F == 0.0)" in eqs

    def test_children(self, batch_process) -> None:
        bp = batch_process().bp
        assert [child.name for child in bp.children] == ["R", "react", "X", "S", "feedsys"]

    def test_without_feed_system(self, batch_process) -> None:
        from bioproc import flatten

        flat = flatten(batch_process(with_feed=False).bp)
        eqs = [repr(eq) for eq in flat.equations]
        assert "Eq(der(X.m) == X.r)" in eqs
        assert len(flat.equations) == len(flat.variables) == 18

    def test_control_inflow(self) -> None:
        from bioproc import flatten
        from bioproc.models import bioprocess, component, flow, kinetic, monod, reaction_system, tank

        R = tank(flow(name="F1"), flow(name="F2"), name="R")
        X = component(R, name="X")
        react = reaction_system([X], [kinetic(monod(X, name="mnd"), name="mu")], name="react")
        bp = bioprocess(R, react, [X], name="bp", control_inflow="F2")

        eqs = [repr(eq) for eq in flatten(bp).equations]
        assert "Eq(R.F2.F == 0.0)" in eqs
        assert "Eq(R.F1.F == 0.0)" not in eqs

    def test_feed_system_missing_component(self) -> None:
        from bioproc.errors import UnresolvedPortError
        from bioproc.models import bioprocess, component, feed_system, flow, kinetic, monod, reaction_system, tank

        F1 = flow(name="F1")
        R = tank(F1, name="R")
        X = component(R, name="X")
        S = component(R, X, name="S")
        react = reaction_system([X, S], [kinetic(monod(S, name="mnd"), name="qiS")], name="react")
        feeds = feed_system([X], [F1], name="feedsys")
        with pytest.raises(UnresolvedPortError, match="Q_in_S"):
            bioprocess(R, react, [X, S], feeds, name="bp")
