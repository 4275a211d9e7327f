"""
Tests for bioproc.fragment.

Covers: Fragment construction checks, immutability, ports, deferred ports,
extend, bind_port.
"""

import pytest


class TestFragmentConstruction:
    """Test Fragment() and its build-time checks."""

    def test_symbols_discovered_from_equations(self) -> None:
        from bioproc.fragment import Fragment
        from bioproc.operators import parameter, variable

        F = variable("F")
        F_m = variable("F_m")
        rho = parameter("rho", 1000)
        frag = Fragment("fl", [F_m == rho * F])

        assert set(frag.symbols) == {"F", "F_m", "rho"}
        assert len(frag.equations) == 1

    def test_declared_order_is_kept(self) -> None:
        from bioproc.fragment import Fragment
        from bioproc.operators import variable

        a = variable("a")
        b = variable("b")
        frag = Fragment("f", [b == a], variables=[a, b])
        assert list(frag.symbols) == ["a", "b"]

    def test_invalid_name(self) -> None:
        from bioproc.fragment import Fragment

        with pytest.raises(ValueError):
            Fragment("not a name")

    def test_duplicate_child_names(self) -> None:
        from bioproc.errors import NameCollisionError
        from bioproc.fragment import Fragment
        from bioproc.models import flow

        with pytest.raises(NameCollisionError, match="two children named 'F1'"):
            Fragment("R", children=[flow(name="F1"), flow(name="F1")])

    def test_same_child_twice(self) -> None:
        from bioproc.errors import NameCollisionError
        from bioproc.fragment import Fragment
        from bioproc.models import flow

        F1 = flow(name="F1")
        with pytest.raises(NameCollisionError):
            Fragment("R", children=[F1, F1])

    def test_child_composed_in_two_branches(self) -> None:
        from bioproc.errors import NameCollisionError
        from bioproc.fragment import Fragment
        from bioproc.models import flow

        F1 = flow(name="F1")
        a = Fragment("a", children=[F1])
        b = Fragment("b", children=[F1])
        with pytest.raises(NameCollisionError, match="more than once"):
            Fragment("top", children=[a, b])

    def test_child_collides_with_symbol(self) -> None:
        from bioproc.errors import NameCollisionError
        from bioproc.fragment import Fragment
        from bioproc.models import flow
        from bioproc.operators import variable

        x = variable("F1")
        with pytest.raises(NameCollisionError):
            Fragment("R", [x == 1], children=[flow(name="F1")])

    def test_conflicting_declarations(self) -> None:
        from bioproc.errors import NameCollisionError
        from bioproc.fragment import Fragment
        from bioproc.operators import parameter, variable

        with pytest.raises(NameCollisionError):
            Fragment("f", [variable("K") == parameter("K", 1.0)])

    def test_equal_declarations_of_distinct_symbols(self) -> None:
        from bioproc.errors import NameCollisionError
        from bioproc.fragment import Fragment
        from bioproc.operators import variable

        with pytest.raises(NameCollisionError, match="declares 'x' twice"):
            Fragment("f", [variable("x") == 1], variables=[variable("x")])

    def test_symbol_reused_across_equations(self) -> None:
        from bioproc.fragment import Fragment
        from bioproc.operators import der, variable

        x = variable("x")
        f = Fragment("f", [der(x) == -x], variables=[x])
        assert list(f.symbols) == ["x"]

    def test_undeclared_symbol(self) -> None:
        from bioproc.errors import UnresolvedPortError
        from bioproc.expr import Expr, ExprKind
        from bioproc.fragment import Fragment
        from bioproc.operators import variable

        ghost = Expr(ExprKind.VARIABLE, name="ghost")
        with pytest.raises(UnresolvedPortError, match="ghost"):
            Fragment("f", [variable("x") == ghost])

    def test_immediate_port_outside_subtree(self) -> None:
        from bioproc.errors import UnresolvedPortError
        from bioproc.fragment import Fragment
        from bioproc.models import flow

        F1 = flow(name="F1")
        with pytest.raises(UnresolvedPortError, match="parent_scope"):
            Fragment("R", [F1.F == 0])


class TestImmutability:
    """Fragments cannot be modified after construction."""

    def test_setattr_rejected(self) -> None:
        from bioproc.models import flow

        F1 = flow(name="F1")
        with pytest.raises(AttributeError, match="immutable"):
            F1.F = 3.0

    def test_delattr_rejected(self) -> None:
        from bioproc.models import flow

        F1 = flow(name="F1")
        with pytest.raises(AttributeError):
            del F1.F

    def test_composition_leaves_child_unchanged(self) -> None:
        from bioproc.models import flow, tank

        F1 = flow(name="F1")
        before = (dict(F1.symbols), F1.equations, F1.children)
        tank(F1, name="R")
        assert (dict(F1.symbols), F1.equations, F1.children) == before


class TestPorts:
    """Test attribute ports, bind_port and parent_scope."""

    def test_attribute_port(self) -> None:
        from bioproc.expr import ExprKind
        from bioproc.models import flow

        F1 = flow(name="F1")
        port = F1.F
        assert port.kind == ExprKind.VARIABLE
        assert port.owner == F1.uid
        assert port.deferred is False
        assert repr(port) == "F1.F"

    def test_child_access(self) -> None:
        from bioproc.models import flow, tank

        F1 = flow(name="F1")
        R = tank(F1, name="R")
        assert R.F1 is F1
        assert R.child("F1") is F1
        assert R.F1.F.owner == F1.uid

    def test_unknown_attribute(self) -> None:
        from bioproc.models import flow

        with pytest.raises(AttributeError, match="no symbol or child"):
            flow(name="F1").volume

    def test_bind_port(self) -> None:
        from bioproc.fragment import bind_port
        from bioproc.models import flow

        F1 = flow(name="F1")
        assert bind_port(F1, "F").same(F1.F)
        assert bind_port(F1, F1.F_m, deferred=True).deferred

    def test_bind_port_unknown_symbol(self) -> None:
        from bioproc.errors import UnresolvedPortError
        from bioproc.fragment import bind_port
        from bioproc.models import flow

        with pytest.raises(UnresolvedPortError):
            bind_port(flow(name="F1"), "V_L")

    def test_bind_port_wrong_owner(self) -> None:
        from bioproc.errors import UnresolvedPortError
        from bioproc.fragment import bind_port
        from bioproc.models import flow

        F1 = flow(name="F1")
        F2 = flow(name="F2")
        with pytest.raises(UnresolvedPortError):
            bind_port(F2, F1.F)

    def test_parent_scope_is_pure(self) -> None:
        from bioproc.fragment import parent_scope
        from bioproc.models import tank

        R = tank(name="R")
        port = R.V_L
        deferred = parent_scope(port)
        assert deferred.deferred is True
        assert port.deferred is False
        assert repr(deferred) == "^R.V_L"

    def test_parent_scope_of_local_symbol(self) -> None:
        from bioproc.errors import UnresolvedPortError
        from bioproc.fragment import parent_scope
        from bioproc.operators import variable

        with pytest.raises(UnresolvedPortError):
            parent_scope(variable("x"))

    def test_require_symbol(self) -> None:
        from bioproc.errors import InvalidCatalystError
        from bioproc.fragment import require_symbol
        from bioproc.models import flow

        F1 = flow(name="F1")
        assert require_symbol(F1, "F", TypeError, "a flow").same(F1.F)
        with pytest.raises(InvalidCatalystError, match="a catalyst"):
            require_symbol(F1, "m", InvalidCatalystError, "a catalyst")


class TestExtend:
    """Test extend()."""

    def test_extend_merges_without_namespace(self) -> None:
        from bioproc.fragment import extend
        from bioproc.models import monod
        from bioproc.operators import variable

        mnd = monod(name="mnd")
        r = variable("r")
        ext = extend(mnd, "qiS", [r == 2 * mnd.r_norm])

        assert ext.name == "qiS"
        assert set(ext.symbols) == {"r_norm", "c", "K", "r"}
        assert len(ext.equations) == 2
        assert ext.equations[0] is mnd.equations[0]
        assert ext.owns(mnd.uid)
        assert ext.children == ()

    def test_extend_keeps_base_unchanged(self) -> None:
        from bioproc.fragment import extend
        from bioproc.models import monod
        from bioproc.operators import variable

        mnd = monod(name="mnd")
        extend(mnd, "qiS", [variable("r") == mnd.r_norm])
        assert set(mnd.symbols) == {"r_norm", "c", "K"}
