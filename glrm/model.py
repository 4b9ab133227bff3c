# Generalized low-rank model: data, losses, regularizers, factors and the
# observation index the solvers read.
import copy
import numpy as np
import pandas as pd
from typing import List, Optional, Sequence, Union
from scipy.sparse import issparse
from scipy.optimize import minimize, minimize_scalar

from glrm.losses import Loss, get_yidxs, embedding_dim, span_width
from glrm.regularizers import (
    Regularizer,
    FixedLastEntry,
    LastEntryUnpenalized,
)
from glrm.utils import get_logger

logger = get_logger(__name__)


def _as_table(A) -> np.ndarray:
    """Dense float table with NaN for missing entries."""
    if isinstance(A, pd.DataFrame):
        return A.apply(pd.to_numeric, errors="coerce").to_numpy(
            dtype=np.float64, na_value=np.nan
        )
    if issparse(A):
        coo = A.tocoo()
        table = np.full(coo.shape, np.nan)
        table[coo.row, coo.col] = coo.data
        return table
    table = np.array(A, dtype=np.float64)
    if table.ndim != 2:
        raise ValueError(f"A must be 2-D, got shape {table.shape}")
    return table


def _broadcast(obj, n: int, kind, name: str) -> list:
    if isinstance(obj, kind):
        return [copy.deepcopy(obj) for _ in range(n)]
    objs = list(obj)
    if len(objs) != n:
        raise ValueError(f"expected {n} {name}, got {len(objs)}")
    for o in objs:
        if not isinstance(o, kind):
            raise ValueError(f"{name} must be {kind.__name__} instances, got {o!r}")
    # per-column copies: equilibrate_variance rescales losses one by one
    return [copy.deepcopy(o) for o in objs]


def sort_observations(
    obs, m: int, n: int
) -> tuple[List[np.ndarray], List[np.ndarray]]:
    """
    Build (observed_features, observed_examples) from (i, j) pairs.

    observed_features[i] lists the columns observed in row i and
    observed_examples[j] the rows observed in column j, both sorted.
    """
    obs = np.asarray(list(obs), dtype=np.int64).reshape(-1, 2)
    if obs.size and (
        obs[:, 0].min() < 0
        or obs[:, 0].max() >= m
        or obs[:, 1].min() < 0
        or obs[:, 1].max() >= n
    ):
        raise ValueError("observation index out of bounds")
    mask = np.zeros((m, n), dtype=bool)
    mask[obs[:, 0], obs[:, 1]] = True
    return _index_from_mask(mask)


def _index_from_mask(mask: np.ndarray):
    observed_features = [np.flatnonzero(mask[i, :]) for i in range(mask.shape[0])]
    observed_examples = [np.flatnonzero(mask[:, j]) for j in range(mask.shape[1])]
    return observed_features, observed_examples


class GLRM:
    """
    Generalized low-rank model of an m×n table A.

    Finds X (k×m) and Y (k×d) minimizing

        sum_{(i,j) observed} L_j(x_i' Y_j, A_ij) + sum_i rx_i(x_i) + sum_j ry_j(Y_j)

    where Y_j is the column (or block of columns, for vector losses) of Y
    belonging to column j.

    Parameters
    ----------
    A : array-like, DataFrame or scipy sparse matrix
        Data; NaN (or an absent sparse entry) marks a missing entry.
    losses : Loss or sequence of Loss
        One loss per column; a single loss is copied to every column.
    rx, ry : Regularizer or sequence of Regularizer
        Regularizers for the rows of the table (columns of X) and for the
        columns of the table (column blocks of Y).
    k : int
        Rank.
    observed_features, observed_examples : sequences of int arrays, optional
        Explicit observation index; overrides the NaN mask of A.
    X, Y : np.ndarray, optional
        Initial factors. Drawn from N(0, 1) when omitted.
    offset : bool
        Add a latent coordinate fixed to 1 in X and unpenalized in Y,
        giving every column an intercept. The rank grows by one.
    scale : bool
        Rescale each column's loss so the best constant fit costs one
        unit per observation.
    random_state : int, optional
        Seed for the default factors.
    """

    def __init__(
        self,
        A,
        losses: Union[Loss, Sequence[Loss]],
        rx: Union[Regularizer, Sequence[Regularizer]],
        ry: Union[Regularizer, Sequence[Regularizer]],
        k: int,
        observed_features: Optional[Sequence] = None,
        observed_examples: Optional[Sequence] = None,
        X: Optional[np.ndarray] = None,
        Y: Optional[np.ndarray] = None,
        offset: bool = False,
        scale: bool = False,
        random_state: Optional[int] = None,
    ):
        self.A = _as_table(A)
        m, n = self.A.shape
        if int(k) < 1:
            raise ValueError(f"k must be a positive integer, got {k}")

        self.losses = _broadcast(losses, n, Loss, "losses")
        # column spans of Y, fixed once the losses are
        self._yidxs = get_yidxs(self.losses)
        self._d = embedding_dim(self.losses)
        self.rx = _broadcast(rx, m, Regularizer, "row regularizers")
        self.ry = _broadcast(ry, n, Regularizer, "column regularizers")
        self.offset = bool(offset)
        self.k = int(k) + (1 if self.offset else 0)
        if self.offset:
            self.rx = [FixedLastEntry(r) for r in self.rx]
            self.ry = [LastEntryUnpenalized(r) for r in self.ry]

        self._build_index(observed_features, observed_examples)

        rng = np.random.default_rng(random_state)
        if X is None:
            X = rng.standard_normal((self.k, m))
        X = np.array(X, dtype=np.float64)
        if X.shape != (self.k, m):
            raise ValueError(f"X must have shape {(self.k, m)}, got {X.shape}")
        if Y is None:
            Y = rng.standard_normal((self.k, self.d))
        self.X = X
        # Y's width is checked (and repaired) by the solvers
        self.Y = np.array(Y, dtype=np.float64)
        if self.offset:
            self.X[-1, :] = 1.0

        if scale:
            self.equilibrate_variance()

    # -------- Observation index --------
    def _build_index(self, observed_features, observed_examples):
        m, n = self.A.shape
        if observed_features is None and observed_examples is None:
            mask = ~np.isnan(self.A)
            self.observed_features, self.observed_examples = _index_from_mask(mask)
        else:
            if observed_features is not None:
                if len(observed_features) != m:
                    raise ValueError(
                        f"observed_features must have {m} entries, got {len(observed_features)}"
                    )
                pairs = [(i, j) for i in range(m) for j in observed_features[i]]
            else:
                if len(observed_examples) != n:
                    raise ValueError(
                        f"observed_examples must have {n} entries, got {len(observed_examples)}"
                    )
                pairs = [(i, j) for j in range(n) for i in observed_examples[j]]
            feats, exs = sort_observations(pairs, m, n)
            if observed_features is not None and observed_examples is not None:
                given = [np.unique(np.asarray(e, dtype=np.int64)) for e in observed_examples]
                if len(given) != n or any(
                    not np.array_equal(g, e) for g, e in zip(given, exs)
                ):
                    raise ValueError(
                        "observed_features and observed_examples disagree"
                    )
            self.observed_features, self.observed_examples = feats, exs

        for j, obsex in enumerate(self.observed_examples):
            if obsex.size and np.any(np.isnan(self.A[obsex, j])):
                raise ValueError(f"column {j} has NaN values at observed entries")

    # -------- Shapes --------
    @property
    def m(self) -> int:
        return self.A.shape[0]

    @property
    def n(self) -> int:
        return self.A.shape[1]

    @property
    def yidxs(self):
        return self._yidxs

    @property
    def d(self) -> int:
        return self._d

    @property
    def n_observations(self) -> int:
        return int(sum(len(f) for f in self.observed_features))

    # -------- Objectives --------
    def col_objective(
        self,
        j: int,
        y: np.ndarray,
        X: Optional[np.ndarray] = None,
        include_regularization: bool = True,
    ) -> float:
        """Loss of column j over its observed rows with Y_j = y, plus ry[j](y)."""
        X = self.X if X is None else X
        obsex = self.observed_examples[j]
        obj = 0.0
        if obsex.size:
            # (|obs|,) for scalar losses, (|obs|, width) for vector losses
            u = X[:, obsex].T @ y
            obj += self.losses[j].value(u, self.A[obsex, j])
        if include_regularization:
            obj += self.ry[j].value(y)
        return obj

    def row_objective(
        self,
        i: int,
        x: np.ndarray,
        Y: Optional[np.ndarray] = None,
        include_regularization: bool = True,
    ) -> float:
        """Loss of row i over its observed columns with x_i = x, plus rx[i](x)."""
        Y = self.Y if Y is None else Y
        yidxs = self.yidxs
        u = x @ Y
        obj = 0.0
        for j in self.observed_features[i]:
            obj += self.losses[j].value(u[yidxs[j]], self.A[i, j])
        if include_regularization:
            obj += self.rx[i].value(x)
        return obj

    def objective(
        self,
        X: Optional[np.ndarray] = None,
        Y: Optional[np.ndarray] = None,
        XY: Optional[np.ndarray] = None,
        include_regularization: bool = True,
    ) -> float:
        X = self.X if X is None else X
        Y = self.Y if Y is None else Y
        if XY is None:
            XY = X.T @ Y
        obj = 0.0
        for j, yidx in enumerate(self.yidxs):
            obsex = self.observed_examples[j]
            if obsex.size:
                obj += self.losses[j].value(XY[obsex, yidx], self.A[obsex, j])
        if include_regularization:
            obj += sum(self.rx[i].value(X[:, i]) for i in range(X.shape[1]))
            obj += sum(
                self.ry[j].value(Y[:, yidx]) for j, yidx in enumerate(self.yidxs)
            )
        return obj

    def error_metric(self) -> float:
        """Mean loss per observed entry, without regularization."""
        n_obs = self.n_observations
        if n_obs == 0:
            return 0.0
        return self.objective(include_regularization=False) / n_obs

    # -------- Predictions --------
    def reconstruct(self) -> np.ndarray:
        """XY = X' Y, (m × d)."""
        return self.X.T @ self.Y

    def impute(self) -> np.ndarray:
        """Most likely value of every entry of A under the fitted model (m × n)."""
        XY = self.reconstruct()
        out = np.empty((self.m, self.n))
        for j, yidx in enumerate(self.yidxs):
            out[:, j] = self.losses[j].impute(XY[:, yidx])
        return out

    # -------- Scaling --------
    def _constant_fit_value(self, j: int) -> float:
        """Loss of the best constant prediction for column j."""
        loss = self.losses[j]
        obsex = self.observed_examples[j]
        a = self.A[obsex, j]
        width = span_width(self.yidxs[j])
        if width == 1:
            res = minimize_scalar(lambda c: loss.value(np.full(a.shape, c), a))
            return float(res.fun)
        res = minimize(
            lambda c: loss.value(np.tile(c, (a.size, 1)), a),
            x0=np.zeros(width),
            jac=lambda c: loss.gradient(np.tile(c, (a.size, 1)), a).sum(axis=0),
            method="L-BFGS-B",
        )
        return float(res.fun)

    def equilibrate_variance(self) -> None:
        """Scale each loss so the best constant fit costs 1 per observation."""
        for j, loss in enumerate(self.losses):
            n_obs = len(self.observed_examples[j])
            if n_obs == 0:
                continue
            per_obs = self._constant_fit_value(j) / n_obs
            if per_obs > 0 and np.isfinite(per_obs):
                loss.scale /= per_obs
            else:
                logger.debug(f"column {j}: constant fit loss {per_obs}, scale unchanged")

    def __repr__(self) -> str:
        return (
            f"GLRM(m={self.m}, n={self.n}, k={self.k}, d={self.d}, "
            f"n_observations={self.n_observations}, offset={self.offset})"
        )
