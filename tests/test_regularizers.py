import pytest

np = pytest.importorskip("numpy")

from glrm.regularizers import (
    ZeroReg,
    QuadReg,
    L1Reg,
    NonNegConstraint,
    NonNegL1Reg,
    NonNegQuadReg,
    QuadConstraint,
    LastEntryUnpenalized,
    FixedLastEntry,
)


def _prox_objective(reg, w, v, step):
    return reg.value(w) + np.sum((w - v) ** 2) / (2 * step)


@pytest.mark.parametrize(
    "reg",
    [
        ZeroReg(),
        QuadReg(0.7),
        L1Reg(0.4),
        NonNegConstraint(),
        NonNegL1Reg(0.3),
        NonNegQuadReg(0.5),
        QuadConstraint(1.5),
    ],
)
def test_prox_minimizes_prox_objective(reg):
    """No nearby feasible point beats the prox output."""
    rng = np.random.default_rng(0)
    v = rng.standard_normal(4) * 2
    step = 0.8
    p = reg.prox(v, step)
    best = _prox_objective(reg, p, v, step)
    assert np.isfinite(best)
    for _ in range(200):
        w = p + 0.05 * rng.standard_normal(4)
        assert _prox_objective(reg, w, v, step) >= best - 1e-12


def test_prox_closed_forms():
    v = np.array([3.0, -0.5, 1.0, -2.0])
    np.testing.assert_allclose(ZeroReg().prox(v, 1.0), v)
    np.testing.assert_allclose(QuadReg(0.5).prox(v, 1.0), v / 2.0)
    np.testing.assert_allclose(L1Reg(1.0).prox(v, 1.0), [2.0, 0.0, 0.0, -1.0])
    np.testing.assert_allclose(NonNegConstraint().prox(v, 1.0), [3.0, 0.0, 1.0, 0.0])
    np.testing.assert_allclose(NonNegL1Reg(1.0).prox(v, 0.5), [2.5, 0.0, 0.5, 0.0])
    p = QuadConstraint(1.0).prox(np.array([3.0, 4.0]), 1.0)
    np.testing.assert_allclose(p, [0.6, 0.8])


def test_prox_does_not_modify_input():
    v = np.array([1.0, -2.0, 3.0])
    orig = v.copy()
    for reg in (ZeroReg(), QuadReg(1.0), L1Reg(1.0), NonNegConstraint(),
                LastEntryUnpenalized(QuadReg(1.0)), FixedLastEntry(L1Reg(1.0))):
        out = reg.prox(v, 0.5)
        assert out is not v
        np.testing.assert_array_equal(v, orig)


def test_values():
    v = np.array([1.0, -2.0])
    assert ZeroReg().value(v) == 0.0
    assert QuadReg(2.0).value(v) == pytest.approx(10.0)
    assert L1Reg(2.0).value(v) == pytest.approx(6.0)
    assert NonNegConstraint().value(v) == np.inf
    assert NonNegConstraint().value(np.abs(v)) == 0.0
    assert QuadConstraint(1.0).value(v) == np.inf


def test_last_entry_unpenalized():
    reg = LastEntryUnpenalized(QuadReg(1.0))
    v = np.array([2.0, 4.0, 10.0])
    np.testing.assert_allclose(reg.prox(v, 0.5), [1.0, 2.0, 10.0])
    assert reg.value(v) == pytest.approx(20.0)
    # column blocks of Y: the last latent row is free
    block = np.ones((3, 2))
    out = reg.prox(block, 0.5)
    np.testing.assert_allclose(out[:-1], 0.5)
    np.testing.assert_allclose(out[-1], 1.0)


def test_fixed_last_entry():
    reg = FixedLastEntry(ZeroReg())
    out = reg.prox(np.array([2.0, -1.0, 7.0]), 1.0)
    np.testing.assert_allclose(out, [2.0, -1.0, 1.0])
    assert reg.value(out) == 0.0
    assert reg.value(np.array([2.0, -1.0, 7.0])) == np.inf
