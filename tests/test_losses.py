import math
import pytest

np = pytest.importorskip("numpy")

from glrm.losses import (
    QuadLoss,
    L1Loss,
    HuberLoss,
    QuantileLoss,
    PoissonLoss,
    LogisticLoss,
    HingeLoss,
    OrdinalHingeLoss,
    MultinomialLoss,
    OvALoss,
    get_yidxs,
    embedding_dim,
    span_width,
)


def _numeric_gradient(loss, u, a, eps=1e-6):
    u = np.asarray(u, dtype=float)
    g = np.zeros_like(u)
    for idx in np.ndindex(u.shape):
        up = u.copy()
        um = u.copy()
        up[idx] += eps
        um[idx] -= eps
        g[idx] = (loss.value(up, a) - loss.value(um, a)) / (2 * eps)
    return g


# points chosen away from the kinks of the piecewise losses
SCALAR_CASES = [
    (QuadLoss(), [0.3, -1.2, 2.5], [1.0, 0.0, 2.0]),
    (L1Loss(), [0.3, -1.2, 2.5], [1.0, 0.0, 2.0]),
    (HuberLoss(crossover=1.0), [0.3, -1.7, 2.6], [1.0, 0.0, 0.4]),
    (QuantileLoss(quantile=0.3), [0.3, -1.2, 2.5], [1.0, 0.0, 2.0]),
    (PoissonLoss(), [0.3, -1.2, 1.5], [1.0, 0.0, 4.0]),
    (LogisticLoss(), [0.3, -1.2, 2.5], [1.0, -1.0, 1.0]),
    (HingeLoss(), [0.3, -1.2, 2.5], [1.0, 1.0, -1.0]),
    (OrdinalHingeLoss(1, 5), [0.3, 2.4, 4.7], [1.0, 4.0, 3.0]),
    (QuadLoss(scale=3.0), [0.3, -1.2], [1.0, 0.0]),
]


@pytest.mark.parametrize("loss,u,a", SCALAR_CASES)
def test_scalar_loss_gradient_matches_finite_differences(loss, u, a):
    u = np.asarray(u)
    a = np.asarray(a)
    g = loss.gradient(u, a)
    assert g.shape == u.shape
    np.testing.assert_allclose(g, _numeric_gradient(loss, u, a), rtol=1e-4, atol=1e-6)


@pytest.mark.parametrize(
    "loss",
    [MultinomialLoss(4), OvALoss(4), MultinomialLoss(3, scale=2.0)],
)
def test_vector_loss_gradient_matches_finite_differences(loss):
    rng = np.random.default_rng(0)
    u = rng.standard_normal((5, loss.n_levels))
    a = np.array([1, 2, loss.n_levels, 1, 2], dtype=float)
    g = loss.gradient(u, a)
    assert g.shape == u.shape
    np.testing.assert_allclose(g, _numeric_gradient(loss, u, a), rtol=1e-4, atol=1e-6)


def test_known_values():
    assert QuadLoss().value(3.0, 1.0) == pytest.approx(4.0)
    assert L1Loss().value([3.0, -1.0], [1.0, 0.0]) == pytest.approx(3.0)
    # quadratic inside the crossover, linear outside
    assert HuberLoss(crossover=1.0).value(0.5, 0.0) == pytest.approx(0.25)
    assert HuberLoss(crossover=1.0).value(3.0, 0.0) == pytest.approx(5.0)
    assert LogisticLoss().value(0.0, 1.0) == pytest.approx(math.log(2.0))
    assert HingeLoss().value(2.0, 1.0) == pytest.approx(0.0)
    assert HingeLoss().value(0.0, -1.0) == pytest.approx(1.0)
    # Poisson deviance is zero at u = log(a)
    assert PoissonLoss().value(math.log(3.0), 3.0) == pytest.approx(0.0, abs=1e-12)
    assert PoissonLoss().value(0.0, 0.0) == pytest.approx(1.0)
    assert QuantileLoss(quantile=0.5).value(0.0, 2.0) == pytest.approx(
        0.5 * L1Loss().value(0.0, 2.0)
    )


def test_boolean_labels_zero_one_and_pm_one_agree():
    u = np.array([0.4, -0.3, 1.2])
    pm = np.array([1.0, -1.0, -1.0])
    zero_one = np.array([1.0, 0.0, 0.0])
    for loss in (LogisticLoss(), HingeLoss()):
        assert loss.value(u, pm) == pytest.approx(loss.value(u, zero_one))


def test_ordinal_hinge_zero_only_at_true_level():
    loss = OrdinalHingeLoss(1, 5)
    for a in range(1, 6):
        assert loss.value(float(a), float(a)) == pytest.approx(0.0)
        assert loss.value(a + 0.5, float(a)) > 0.0 or a == 5
        assert loss.value(a - 0.5, float(a)) > 0.0 or a == 1
    with pytest.raises(ValueError):
        loss.value(1.0, 7.0)


def test_multinomial_gradient_rows_sum_to_zero():
    rng = np.random.default_rng(1)
    loss = MultinomialLoss(3)
    g = loss.gradient(rng.standard_normal((4, 3)), [1, 2, 3, 1])
    np.testing.assert_allclose(g.sum(axis=1), 0.0, atol=1e-12)


def test_categorical_single_entry_shapes():
    loss = MultinomialLoss(3)
    u = np.array([0.1, 2.0, -1.0])
    assert loss.gradient(u, 2.0).shape == (3,)
    assert loss.impute(u) == 2.0
    np.testing.assert_array_equal(loss.impute(np.eye(3)), [1.0, 2.0, 3.0])


def test_categorical_rejects_bad_levels():
    loss = OvALoss(3)
    with pytest.raises(ValueError):
        loss.value(np.zeros(3), 0.0)
    with pytest.raises(ValueError):
        loss.value(np.zeros(3), 1.5)
    with pytest.raises(ValueError):
        loss.value(np.zeros(4), 1.0)


def test_poisson_rejects_negative_counts():
    with pytest.raises(ValueError):
        PoissonLoss().value(0.0, -1.0)


def test_impute():
    np.testing.assert_allclose(QuadLoss().impute([1.5, -2.0]), [1.5, -2.0])
    np.testing.assert_allclose(PoissonLoss().impute(0.0), 1.0)
    np.testing.assert_array_equal(
        LogisticLoss(negative_label=0.0).impute([0.3, -0.3]), [1.0, 0.0]
    )
    np.testing.assert_array_equal(
        OrdinalHingeLoss(1, 5).impute([0.2, 2.6, 9.0]), [1.0, 3.0, 5.0]
    )


def test_yidxs_tile_embedding_columns():
    losses = [QuadLoss(), MultinomialLoss(3), QuadLoss(), OvALoss(2)]
    yidxs = get_yidxs(losses)
    assert yidxs == [0, slice(1, 4), 4, slice(5, 7)]
    assert embedding_dim(losses) == 7
    assert sum(span_width(y) for y in yidxs) == embedding_dim(losses)
