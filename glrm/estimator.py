# scikit-learn style front end for GLRM fitting
import numpy as np
from typing import Optional, Sequence, Union
from sklearn.base import BaseEstimator, TransformerMixin

from glrm.losses import Loss, QuadLoss
from glrm.regularizers import Regularizer, QuadReg, ZeroReg
from glrm.model import GLRM
from glrm.initialization import init_random, init_svd
from glrm.solver_proxgrad import ProxGradParams, fit as proxgrad_fit, fit_rows
from glrm.utils import get_logger

logger = get_logger(__name__)


class GLRMEstimator(BaseEstimator, TransformerMixin):
    """
    Generalized low-rank model fitted by alternating proximal gradient.

    Parameters
    ----------
    k : int, default=2
        Rank of the factorization.
    loss : Loss or sequence of Loss, default=None
        Per-column losses; QuadLoss() when None.
    rx, ry : Regularizer or sequence of Regularizer, default=None
        Row / column regularizers; QuadReg(0.1) when None.
    offset : bool, default=False
        Fit a free intercept per column.
    scale : bool, default=False
        Equilibrate column losses before fitting.
    init : {"svd", "random"}, default="svd"
        Starting point for X and Y.
    stepsize, max_iter, inner_iter, abs_tol, rel_tol, min_stepsize, n_jobs
        Solver settings, see ProxGradParams.
    random_state : int or None, default=0
        Seed for the initialization.
    verbose : bool, default=False
        Log progress every 10 iterations.
    """

    def __init__(
        self,
        k: int = 2,
        loss: Optional[Union[Loss, Sequence[Loss]]] = None,
        rx: Optional[Union[Regularizer, Sequence[Regularizer]]] = None,
        ry: Optional[Union[Regularizer, Sequence[Regularizer]]] = None,
        offset: bool = False,
        scale: bool = False,
        init: str = "svd",
        stepsize: float = 1.0,
        max_iter: int = 100,
        inner_iter: int = 1,
        abs_tol: float = 1e-5,
        rel_tol: float = 1e-4,
        min_stepsize: Optional[float] = None,
        n_jobs: int = 1,
        random_state: Optional[int] = 0,
        verbose: bool = False,
    ):
        self.k = k
        self.loss = loss
        self.rx = rx
        self.ry = ry
        self.offset = offset
        self.scale = scale
        self.init = init
        self.stepsize = stepsize
        self.max_iter = max_iter
        self.inner_iter = inner_iter
        self.abs_tol = abs_tol
        self.rel_tol = rel_tol
        self.min_stepsize = min_stepsize
        self.n_jobs = n_jobs
        self.random_state = random_state
        self.verbose = verbose

    def _params(self) -> ProxGradParams:
        return ProxGradParams.create(
            stepsize=self.stepsize,
            max_iter=self.max_iter,
            inner_iter=self.inner_iter,
            abs_tol=self.abs_tol,
            rel_tol=self.rel_tol,
            min_stepsize=self.min_stepsize,
            n_jobs=self.n_jobs,
        )

    def _build_model(self, A) -> GLRM:
        glrm = GLRM(
            A,
            losses=QuadLoss() if self.loss is None else self.loss,
            rx=QuadReg(0.1) if self.rx is None else self.rx,
            ry=QuadReg(0.1) if self.ry is None else self.ry,
            k=self.k,
            offset=self.offset,
            scale=self.scale,
            random_state=self.random_state,
        )
        if self.init == "svd":
            init_svd(glrm, random_state=self.random_state)
        elif self.init == "random":
            init_random(glrm, random_state=self.random_state)
        else:
            raise ValueError(f"init must be 'svd' or 'random', got {self.init!r}")
        return glrm

    def fit(self, A, y=None):
        """Fit the model to A; NaN entries are treated as missing."""
        _ = y
        params = self._params()
        glrm = self._build_model(A)
        X, Y, ch = proxgrad_fit(
            glrm, params, verbose=self.verbose, random_state=self.random_state
        )
        self.model_ = glrm
        self.X_ = X
        self.Y_ = Y
        self.history_ = ch
        self.n_iter_ = ch.iterations
        logger.info(
            f"GLRM fit done: n_iter={self.n_iter_}, objective={ch.last_objective():.6e}"
        )
        return self

    def check_fitted(self):
        if getattr(self, "model_", None) is None:
            raise ValueError("Model has not been fitted yet.")

    def transform(self, A=None) -> np.ndarray:
        """
        Row embeddings (m × k). With A given, its rows are embedded against
        the fitted Y, which stays fixed.
        """
        self.check_fitted()
        if A is None:
            return self.X_.T.copy()
        rx = QuadReg(0.1) if self.rx is None else self.rx
        if not isinstance(rx, Regularizer):
            raise ValueError("embedding new rows needs a single row regularizer `rx`")
        glrm = GLRM(
            A,
            losses=self.model_.losses,
            rx=rx,
            ry=ZeroReg(),
            k=self.k,
            offset=self.offset,
            Y=self.Y_.copy(),
            random_state=self.random_state,
        )
        X, _ = fit_rows(glrm, self._params())
        return X.T.copy()

    def fit_transform(self, A, y=None, **fit_params) -> np.ndarray:
        return self.fit(A, y).transform()

    def reconstruct(self) -> np.ndarray:
        """X' Y for the training table (m × d)."""
        self.check_fitted()
        return self.model_.reconstruct()

    def impute(self) -> np.ndarray:
        """Training table with every entry replaced by its model prediction."""
        self.check_fitted()
        return self.model_.impute()

    def score(self, A=None, y=None) -> float:
        """
        Negative mean loss per observed entry (higher is better).

        ``A`` defaults to the training table; otherwise it must have the
        training shape (e.g. held-out entries of the same table).
        """
        _ = y
        self.check_fitted()
        if A is None:
            return -self.model_.error_metric()
        glrm = GLRM(
            A,
            losses=self.model_.losses,
            rx=ZeroReg(),
            ry=ZeroReg(),
            k=self.model_.k,
            X=self.X_,
            Y=self.Y_,
        )
        return -glrm.error_metric()
