"""
Test flow concatenation
"""
import numpy as np
import pytest
from conftest import energyState

from pmpflows.concatenation import concatenate
from pmpflows.flow import HamiltonianFlow, VectorFieldFlow, buildFlow
from pmpflows.functions import (
    ControlLaw,
    Hamiltonian,
    HamiltonianVectorField,
    NonAutonomous,
    NonFixed,
    VectorField,
)
from pmpflows.ocp import OptimalControlModel
from pmpflows.ocpflow import OptimalControlFlow
from pmpflows.propagate import SolverOptions

T0, TF = 0.0, 1.0
X0 = np.array([-1.0, 0.0])
P0 = np.array([12.0, 6.0])
Z0 = np.concatenate((X0, P0))


def zExact(t):
    x, p = energyState(t)
    return np.concatenate((x, p))


# The energy-minimal double integrator (u = p[1]), its reverse, and a
# time-dependent copy, written for each kind of flow
def H1(x, p):
    return p[0] * x[1] + p[1] * p[1] - 0.5 * p[1] ** 2


def Hv1(x, p):
    return [x[1], p[1]], [0.0, -p[0]]


def V1(z):
    return np.array([z[1], z[3], 0.0, -z[2]])


FLOWS = {
    "hamiltonian": lambda: (
        buildFlow(Hamiltonian(H1)),
        buildFlow(Hamiltonian(lambda x, p: -H1(x, p))),
        buildFlow(Hamiltonian(lambda t, x, p: H1(x, p), autonomous=False)),
    ),
    "hamiltonianVectorField": lambda: (
        buildFlow(HamiltonianVectorField(Hv1)),
        buildFlow(
            HamiltonianVectorField(
                lambda x, p: tuple(-np.asarray(v) for v in Hv1(x, p))
            )
        ),
        buildFlow(HamiltonianVectorField(lambda t, x, p: Hv1(x, p), autonomous=False)),
    ),
    "vectorField": lambda: (
        buildFlow(VectorField(V1)),
        buildFlow(VectorField(lambda z: -V1(z))),
        buildFlow(VectorField(lambda t, z: V1(z), autonomous=False)),
    ),
    "function": lambda: (
        buildFlow(V1),
        buildFlow(lambda z: -V1(z)),
        buildFlow(lambda t, z: V1(z), autonomous=False),
    ),
}


def evaluate(f, t0, tf, **kwargs):
    """Evaluate a flow of any kind from Z0, returning the [x, p] bundle"""
    if isinstance(f, HamiltonianFlow):
        xf, pf = f(t0, X0, P0, tf, **kwargs)
        return np.concatenate((xf, pf))
    return f(t0, Z0, tf, **kwargs)


def trajectory(f, t0, tf, **kwargs):
    if isinstance(f, HamiltonianFlow):
        return f((t0, tf), X0, P0, **kwargs)
    return f((t0, tf), Z0, **kwargs)


@pytest.mark.parametrize("kind", FLOWS.keys())
class TestSwitching:
    def test_lateSwitch(self, kind):
        # the second flow is never used because t1 > tf
        f1, f2, _ = FLOWS[kind]()
        zf = evaluate(f1 * (2 * TF, f2), T0, TF)
        np.testing.assert_allclose(zf, zExact(TF), atol=1e-6)
        np.testing.assert_allclose(zf, evaluate(f1, T0, TF), atol=1e-10)

    def test_backAndForth(self, kind):
        f1, f2, _ = FLOWS[kind]()
        zf = evaluate(f1 * ((T0 + TF) / 2, f2), T0, TF)
        np.testing.assert_allclose(zf, Z0, atol=1e-6)

    def test_threeFlows(self, kind):
        f1, f2, _ = FLOWS[kind]()
        f = f1 * ((T0 + TF) / 4, f2) * ((T0 + TF) / 2, f1)
        zf = evaluate(f, T0, TF + (T0 + TF) / 2)
        np.testing.assert_allclose(zf, zExact(TF), atol=1e-6)

    def test_timeDependent(self, kind):
        f1, f2, f3 = FLOWS[kind]()
        f = f1 * ((T0 + TF) / 4, f2) * ((T0 + TF) / 2, f3)
        zf = evaluate(f, T0, TF + (T0 + TF) / 2)
        np.testing.assert_allclose(zf, zExact(TF), atol=1e-6)

    def test_grid(self, kind):
        f1, _, _ = FLOWS[kind]()
        f = f1 * ((T0 + TF) / 4, f1) * ((T0 + TF) / 2, f1)
        times = np.linspace(T0, TF, 100)
        sol = trajectory(f, T0, TF, saveat=times)

        np.testing.assert_allclose(sol.t, times)
        np.testing.assert_allclose(sol.yf, zExact(TF), atol=1e-6)
        for t, z in zip(sol.t, sol.y.T):
            np.testing.assert_allclose(z, zExact(t), atol=1e-6)

    def test_zeroJump(self, kind):
        f1, f2, f3 = FLOWS[kind]()
        zero = np.zeros(2 if isinstance(f1, HamiltonianFlow) else 4)
        tf = TF + (T0 + TF) / 2

        fJump = f1 * ((T0 + TF) / 4, zero, f2) * ((T0 + TF) / 2, f3)
        fPlain = f1 * ((T0 + TF) / 4, f2) * ((T0 + TF) / 2, f3)
        zJump = evaluate(fJump, T0, tf)
        np.testing.assert_allclose(zJump, zExact(TF), atol=1e-6)
        np.testing.assert_allclose(zJump, evaluate(fPlain, T0, tf), atol=1e-10)

    def test_associative(self, kind):
        f1, f2, f3 = FLOWS[kind]()
        t1, t2 = 0.25, 0.5
        left = f1 * (t1, f2) * (t2, f3)
        right = f1 * (t1, f2 * (t2, f3))
        assert left.tstops == right.tstops
        np.testing.assert_allclose(
            evaluate(left, T0, 1.5), evaluate(right, T0, 1.5), atol=1e-10
        )

    def test_fourFlows(self, kind):
        f1, f2, f3 = FLOWS[kind]()
        left = f1 * (0.2, f2) * (0.4, f3) * (0.6, f1)
        nested = f1 * (0.2, f2 * (0.4, f3 * (0.6, f1)))
        grouped = (f1 * (0.2, f2)) * (0.4, f3 * (0.6, f1))
        zLeft = evaluate(left, T0, 1.2)
        np.testing.assert_allclose(zLeft, evaluate(nested, T0, 1.2), atol=1e-10)
        np.testing.assert_allclose(zLeft, evaluate(grouped, T0, 1.2), atol=1e-10)


class TestConcatenationRules:
    def test_tstops(self):
        f = buildFlow(VectorField(lambda x: -x))
        g = f * (0.7, f) * (0.2, f)
        assert g.tstops == (0.2, 0.7)

        h = g * (0.5, f * (0.7, f)) * (0.2, f)
        assert h.tstops == (0.2, 0.5, 0.7)
        assert isinstance(h.tstops, tuple)

    def test_jumpsOrder(self):
        f = buildFlow(VectorField(lambda x: -x))
        g = f * (0.3, [1.0], f)
        h = f * (0.1, [2.0], f)
        k = g * (0.2, [3.0], h)
        assert [t for t, _ in k.jumps] == [0.3, 0.1, 0.2]
        assert [d[0] for _, d in k.jumps] == [1.0, 2.0, 3.0]

    def test_returnsSameClass(self):
        f = buildFlow(VectorField(lambda x: -x))
        assert type(f * (0.5, f)) is VectorFieldFlow
        assert type(concatenate(f, (0.5, [1.0], f))) is VectorFieldFlow

    def test_driverInheritance(self):
        fa = buildFlow(VectorField(lambda x: -x), options=SolverOptions(method="RK45"))
        fb = buildFlow(VectorField(lambda x: -x), method="LSODA")
        fc = buildFlow(VectorField(lambda x: -x), method="Radau")

        chain = fa * (0.2, fb) * (0.4, fc)
        assert chain.driver is fa.driver
        assert chain.driver.options.method == "RK45"
        assert (fb * (0.2, fa)).driver is fb.driver

        sol = chain((0.0, 1.0), 1.0)
        assert sol.options.method == "RK45"

    def test_operandsUnchanged(self):
        f = buildFlow(VectorField(lambda x: -x))
        g = buildFlow(VectorField(lambda x: x))
        h1 = f * (0.5, [1.0], g)
        h2 = f * (0.25, [2.0], g)

        assert f.tstops == () and f.jumps == ()
        assert g.tstops == () and g.jumps == ()
        assert h1.tstops == (0.5,)
        assert h2.tstops == (0.25,)
        assert h1.jumps is not h2.jumps

        # each composite is independently valid
        x1 = h1(0.0, 1.0, 1.0)
        x2 = h2(0.0, 1.0, 1.0)
        assert x1 == pytest.approx(np.exp(-0.5) * np.exp(0.5) + np.exp(0.5), rel=1e-8)
        assert x2 == pytest.approx((np.exp(-0.25) + 2.0) * np.exp(0.75), rel=1e-8)
        assert f(0.0, 1.0, 1.0) == pytest.approx(np.exp(-1.0), rel=1e-8)

    def test_tieFavorsSecond(self):
        f = buildFlow(VectorField(lambda x: 0.0))
        g = buildFlow(VectorField(lambda x: 1.0))
        h = f * (0.5, g)
        dx = np.zeros(1)
        h.rhs(dx, np.zeros(1), np.array([]), 0.5)
        assert dx[0] == 1.0
        h.rhs(dx, np.zeros(1), np.array([]), np.nextafter(0.5, 0.0))
        assert dx[0] == 0.0

    @pytest.mark.parametrize(
        "switch",
        [
            "abc",
            (0.5,),
            (0.5, 1.0, 2.0, 3.0),
            (0.5, buildFlow(Hamiltonian(lambda x, p: 0.5 * p**2))),
        ],
    )
    def test_badSwitch(self, switch):
        f = buildFlow(VectorField(lambda x: -x))
        with pytest.raises(TypeError):
            f * switch

    def test_mixedKinds(self):
        f = buildFlow(VectorField(lambda x: -x))
        g = buildFlow(lambda x: -x)
        with pytest.raises(TypeError):
            concatenate(f, (0.5, g))

    def test_badJumpSize(self):
        f = buildFlow(Hamiltonian(lambda x, p: 0.5 * p[0] ** 2 + 0.5 * p[1] ** 2))
        g = f * (0.5, [1.0, 2.0, 3.0], f)
        with pytest.raises(ValueError):
            g(0.0, [0.0, 0.0], [0.0, 0.0], 1.0)

    def test_switchOutsideSpan(self):
        # the jump is never reached
        f = buildFlow(VectorField(lambda x: -x))
        g = f * (2.0, [10.0], f)
        assert g(0.0, 1.0, 1.0) == pytest.approx(np.exp(-1.0), rel=1e-8)


class TestBounce:
    def test_vectorField(self):
        def exact(t):
            x = 10 * np.exp(-t)
            if t >= 4:
                x += 10 * np.exp(-(t - 4))
            if t >= 8:
                x += 10 * np.exp(-(t - 8))
            return x

        f = buildFlow(VectorField(lambda x: -x))
        sol = (f * (4, 10, f) * (8, 10, f))((0.0, 10.0), 10.0)

        g = buildFlow(lambda x: -x)
        sol2 = (g * (4, 10, g) * (6, g) * (8, 10, g) * (9, g))((0.0, 10.0), 10.0)

        for t in np.linspace(0, 10, 100):
            assert sol(t)[0] == pytest.approx(exact(t), rel=1e-7)
            assert sol2(t)[0] == pytest.approx(exact(t), rel=1e-7)

    def test_backward(self):
        # a jump adds its delta in either direction of integration
        f = buildFlow(VectorField(lambda x: 0.0))
        g = f * (0.5, [1.0], f)
        assert g(0.0, 0.0, 1.0) == pytest.approx(1.0)
        assert g(1.0, 0.0, 0.0) == pytest.approx(1.0)

    def test_hamiltonian(self):
        f = buildFlow(Hamiltonian(lambda x, p: 0.5 * p**2))
        fc = (
            f
            * (1, 1, f)
            * (1.5, f)
            * (2, 1, f)
            * (2.5, f)
            * (3, 1, f)
            * (3.5, f)
            * (4, 1, f)
        )
        xf, pf = fc(0.0, 0.0, 0.0, 5.0)
        assert xf == pytest.approx(10.0, abs=1e-6)
        assert pf == pytest.approx(4.0, abs=1e-6)

    def test_hamiltonianVectorField(self):
        f = buildFlow(HamiltonianVectorField(lambda x, p: ([p[0], 0.0], [0.0, 0.0])))
        fc = (
            f
            * (1, [1, 0], f)
            * (1.5, f)
            * (2, [1, 0], f)
            * (2.5, f)
            * (3, [1, 0], f)
            * (3.5, f)
            * (4, [1, 0], f)
        )
        xf, pf = fc(0.0, [0.0, 0.0], [0.0, 0.0], 5.0)
        assert xf[0] == pytest.approx(10.0, abs=1e-6)
        assert pf[0] == pytest.approx(4.0, abs=1e-6)

    def test_wholeBundleJump(self):
        f = buildFlow(Hamiltonian(lambda x, p: 0.5 * p**2))
        xf, pf = (f * (1.0, [2.0, 1.0], f))(0.0, 0.0, 0.0, 2.0)
        assert xf == pytest.approx(3.0, abs=1e-8)
        assert pf == pytest.approx(1.0, abs=1e-8)


class TestOptimalControlConcatenation:
    def test_bounce(self):
        ocp = OptimalControlModel(
            2, 2, dynamics=lambda x, u: u, mayer=lambda x0, xf: xf[0]
        )
        f = buildFlow(ocp, lambda x, p: [p[0] / 2, 0.0])
        fc = (
            f
            * (1, [1, 0], f)
            * (1.5, f)
            * (2, [1, 0], f)
            * (2.5, f)
            * (3, [1, 0], f)
            * (3.5, f)
            * (4, [1, 0], f)
        )
        assert isinstance(fc, OptimalControlFlow)
        assert fc.ocp is ocp
        xf, pf = fc(0.0, [0.0, 0.0], [0.0, 0.0], 5.0)
        assert xf[0] == pytest.approx(10.0, abs=1e-6)
        assert pf[0] == pytest.approx(4.0, abs=1e-6)

    def test_switchedControl(self):
        ocp = OptimalControlModel(
            1, 1, dynamics=lambda x, u: -x + u, lagrange=lambda x, u: abs(u)
        )
        f0 = buildFlow(ocp, ControlLaw(lambda x, p: 0.0))
        f1 = buildFlow(ocp, lambda x, p: 1.0)

        p0 = 1 / (-1 - (0 - 1) / np.exp(-1))
        t1 = -np.log(p0)
        f = f0 * (t1, f1)
        xf, pf = f(0.0, -1.0, p0, 1.0)
        assert xf == pytest.approx(0.0, abs=1e-6)

        u = f.feedbackControl
        assert u.timeDependence == NonAutonomous
        assert u.variableDependence == NonFixed
        assert u(0.5 * t1, -1.0, p0, np.array([])) == 0.0
        assert u(t1, -1.0, p0, np.array([])) == 1.0

    def test_operandsKeepControl(self):
        ocp = OptimalControlModel(1, 1, dynamics=lambda x, u: u)
        f0 = buildFlow(ocp, lambda x, p: 0.0)
        f1 = buildFlow(ocp, lambda x, p: 1.0)
        f = f0 * (0.5, f1)
        assert f0.feedbackControl(1.0, 0.0, 0.0, np.array([])) == 0.0
        assert f1.feedbackControl(0.0, 0.0, 0.0, np.array([])) == 1.0
        assert f(0.0, 0.0, 0.0, 1.0)[0] == pytest.approx(0.5)
