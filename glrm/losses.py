# Loss functions for generalized low-rank models.
#
# A loss scores a prediction u = x_i' y_j against an observed entry a.
# Scalar losses (embedding_dim == 1) take u and a elementwise; vector
# losses (embedding_dim > 1) take one row of width embedding_dim per entry.
import numpy as np
from typing import List, Sequence, Union
from scipy.special import expit, logsumexp, softmax


YIndex = Union[int, slice]


class Loss:
    """
    Base class for losses.

    Subclasses implement ``_value`` and ``_gradient`` on float arrays; the
    public ``value``/``gradient`` apply ``scale`` and handle shapes.
    """

    embedding_dim = 1
    domain = "real"

    def __init__(self, scale: float = 1.0):
        self.scale = float(scale)

    def value(self, u, a) -> float:
        """Sum of the loss over the supplied entries."""
        u = np.asarray(u, dtype=np.float64)
        a = np.asarray(a, dtype=np.float64)
        return self.scale * float(np.sum(self._value(u, a)))

    def gradient(self, u, a) -> np.ndarray:
        """d loss / d u, same shape as ``u``."""
        u = np.asarray(u, dtype=np.float64)
        a = np.asarray(a, dtype=np.float64)
        return self.scale * np.asarray(self._gradient(u, a), dtype=np.float64)

    def impute(self, u):
        return np.asarray(u, dtype=np.float64)

    def _value(self, u: np.ndarray, a: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def _gradient(self, u: np.ndarray, a: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(scale={self.scale})"


# ----------------------------
# Real-valued losses
# ----------------------------
class QuadLoss(Loss):
    def _value(self, u, a):
        return (u - a) ** 2

    def _gradient(self, u, a):
        return 2.0 * (u - a)


class L1Loss(Loss):
    def _value(self, u, a):
        return np.abs(u - a)

    def _gradient(self, u, a):
        return np.sign(u - a)


class HuberLoss(Loss):
    """Quadratic within ``crossover`` of the target, linear outside."""

    def __init__(self, scale: float = 1.0, crossover: float = 1.0):
        super().__init__(scale)
        if crossover <= 0:
            raise ValueError("crossover must be positive")
        self.crossover = float(crossover)

    def _value(self, u, a):
        r = np.abs(u - a)
        c = self.crossover
        return np.where(r > c, 2.0 * c * r - c * c, r * r)

    def _gradient(self, u, a):
        r = u - a
        c = self.crossover
        return np.where(np.abs(r) > c, 2.0 * c * np.sign(r), 2.0 * r)

    def __repr__(self) -> str:
        return f"HuberLoss(scale={self.scale}, crossover={self.crossover})"


class QuantileLoss(Loss):
    """Pinball loss; ``quantile=0.5`` is half the L1 loss."""

    def __init__(self, scale: float = 1.0, quantile: float = 0.5):
        super().__init__(scale)
        if not 0.0 < quantile < 1.0:
            raise ValueError("quantile must be in (0, 1)")
        self.quantile = float(quantile)

    def _value(self, u, a):
        r = a - u
        return np.where(r >= 0, self.quantile * r, (self.quantile - 1.0) * r)

    def _gradient(self, u, a):
        r = a - u
        return np.where(r >= 0, -self.quantile, 1.0 - self.quantile)

    def __repr__(self) -> str:
        return f"QuantileLoss(scale={self.scale}, quantile={self.quantile})"


# ----------------------------
# Count and boolean losses
# ----------------------------
class PoissonLoss(Loss):
    """Poisson deviance with log link: exp(u) - a u + a log a - a."""

    domain = "count"

    def _value(self, u, a):
        if np.any(a < 0):
            raise ValueError("PoissonLoss requires non-negative counts")
        # a log a - a, with 0 log 0 = 0
        const = np.where(a > 0, a * np.log(np.where(a > 0, a, 1.0)) - a, 0.0)
        return np.exp(u) - a * u + const

    def _gradient(self, u, a):
        return np.exp(u) - a

    def impute(self, u):
        return np.exp(np.asarray(u, dtype=np.float64))


class _MarginLoss(Loss):
    """Boolean losses on the margin a*u, with a mapped to {-1, +1}."""

    domain = "boolean"

    def __init__(self, scale: float = 1.0, negative_label: float = -1.0):
        super().__init__(scale)
        self.negative_label = float(negative_label)

    @staticmethod
    def _signs(a):
        return np.where(a > 0, 1.0, -1.0)

    def impute(self, u):
        u = np.asarray(u, dtype=np.float64)
        return np.where(u >= 0, 1.0, self.negative_label)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(scale={self.scale}, "
            f"negative_label={self.negative_label})"
        )


class LogisticLoss(_MarginLoss):
    def _value(self, u, a):
        return np.logaddexp(0.0, -self._signs(a) * u)

    def _gradient(self, u, a):
        s = self._signs(a)
        return -s * expit(-s * u)


class HingeLoss(_MarginLoss):
    def _value(self, u, a):
        return np.maximum(1.0 - self._signs(a) * u, 0.0)

    def _gradient(self, u, a):
        s = self._signs(a)
        return np.where(s * u < 1.0, -s, 0.0)


class OrdinalHingeLoss(Loss):
    """
    All-threshold hinge loss for ordinal data on levels ``min..max``.

    Thresholds sit between consecutive levels; every threshold the
    prediction falls on the wrong side of contributes a hinge penalty,
    so the loss is zero exactly when u == a.
    """

    domain = "ordinal"

    def __init__(self, min: int, max: int, scale: float = 1.0):
        super().__init__(scale)
        if max <= min:
            raise ValueError("OrdinalHingeLoss requires max > min")
        self.min = int(min)
        self.max = int(max)
        self._thresholds = np.arange(self.min, self.max, dtype=np.float64)

    def _check(self, a):
        if np.any((a < self.min) | (a > self.max)):
            raise ValueError(
                f"ordinal values must lie in [{self.min}, {self.max}]"
            )

    def _value(self, u, a):
        self._check(a)
        t = self._thresholds
        u_ = u[..., None]
        a_ = a[..., None]
        below = np.where(t < a_, np.maximum(t + 1.0 - u_, 0.0), 0.0)
        above = np.where(t >= a_, np.maximum(u_ - t, 0.0), 0.0)
        return np.sum(below + above, axis=-1)

    def _gradient(self, u, a):
        self._check(a)
        t = self._thresholds
        u_ = u[..., None]
        a_ = a[..., None]
        below = (t < a_) & (t + 1.0 > u_)
        above = (t >= a_) & (u_ > t)
        return np.sum(above, axis=-1) - np.sum(below, axis=-1).astype(np.float64)

    def impute(self, u):
        u = np.asarray(u, dtype=np.float64)
        return np.clip(np.round(u), self.min, self.max)

    def __repr__(self) -> str:
        return f"OrdinalHingeLoss(min={self.min}, max={self.max}, scale={self.scale})"


# ----------------------------
# Vector-valued (categorical) losses
# ----------------------------
class _CategoricalLoss(Loss):
    """
    Categorical losses spanning ``n_levels`` columns of Y.

    ``u`` is (n_levels,) for one entry or (n_obs, n_levels) for several;
    ``a`` holds levels coded 1..n_levels.
    """

    domain = "categorical"

    def __init__(self, n_levels: int, scale: float = 1.0):
        super().__init__(scale)
        if n_levels < 2:
            raise ValueError("categorical losses need at least 2 levels")
        self.n_levels = int(n_levels)
        self.embedding_dim = self.n_levels

    def _prepare(self, u, a):
        U = np.atleast_2d(u)
        if U.shape[-1] != self.n_levels:
            raise ValueError(
                f"expected predictions of width {self.n_levels}, got {U.shape}"
            )
        levels = np.atleast_1d(a).astype(np.float64).ravel()
        if levels.shape[0] != U.shape[0]:
            raise ValueError(
                f"{levels.shape[0]} labels for {U.shape[0]} prediction rows"
            )
        if np.any((levels < 1) | (levels > self.n_levels)) or np.any(
            levels != np.round(levels)
        ):
            raise ValueError(f"levels must be integers in 1..{self.n_levels}")
        onehot = np.zeros_like(U)
        onehot[np.arange(U.shape[0]), levels.astype(int) - 1] = 1.0
        return U, onehot

    def value(self, u, a) -> float:
        U, onehot = self._prepare(np.asarray(u, dtype=np.float64), a)
        return self.scale * float(np.sum(self._value(U, onehot)))

    def gradient(self, u, a) -> np.ndarray:
        u = np.asarray(u, dtype=np.float64)
        U, onehot = self._prepare(u, a)
        return self.scale * self._gradient(U, onehot).reshape(u.shape)

    def impute(self, u):
        U = np.atleast_2d(np.asarray(u, dtype=np.float64))
        levels = np.argmax(U, axis=-1).astype(np.float64) + 1.0
        return levels if np.ndim(u) > 1 else levels[0]

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(n_levels={self.n_levels}, scale={self.scale})"


class MultinomialLoss(_CategoricalLoss):
    """Softmax cross-entropy."""

    def _value(self, U, onehot):
        return logsumexp(U, axis=1) - np.sum(U * onehot, axis=1)

    def _gradient(self, U, onehot):
        return softmax(U, axis=1) - onehot


class OvALoss(_CategoricalLoss):
    """One-vs-all logistic loss, one column per level."""

    def _value(self, U, onehot):
        s = 2.0 * onehot - 1.0
        return np.sum(np.logaddexp(0.0, -s * U), axis=1)

    def _gradient(self, U, onehot):
        s = 2.0 * onehot - 1.0
        return -s * expit(-s * U)


# ----------------------------
# Column spans
# ----------------------------
def get_yidxs(losses: Sequence[Loss]) -> List[YIndex]:
    """
    Columns of Y used by each loss: an int for scalar losses, a slice for
    vector losses. The spans tile [0, d) in order.
    """
    yidxs = []
    start = 0
    for loss in losses:
        width = int(loss.embedding_dim)
        if width == 1:
            yidxs.append(start)
        else:
            yidxs.append(slice(start, start + width))
        start += width
    return yidxs


def embedding_dim(losses: Sequence[Loss]) -> int:
    return int(sum(int(loss.embedding_dim) for loss in losses))


def span_width(yidx: YIndex) -> int:
    if isinstance(yidx, slice):
        return yidx.stop - yidx.start
    return 1
