# Alternating proximal gradient method for GLRMs.
#
# Each outer iteration updates every row of X (one backtracking prox-grad
# step per row), then every column block of Y, recomputing XY = X' Y after
# each pass. Rows (columns) are independent within a pass, so the per-unit
# searches and the per-column gradient work run on a thread pool.
import time
import logging
import warnings
from dataclasses import dataclass
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional
import numpy as np

from glrm.model import GLRM
from glrm.regularizers import Regularizer
from glrm.convergence import ConvergenceHistory
from glrm.utils import get_logger, get_n_jobs

logger = get_logger(__name__)

# per-unit step size multipliers
STEP_GROW = 1.05
STEP_SHRINK = 0.7
STEP_FLOOR_RESET = 1.1


@dataclass
class ProxGradParams:
    stepsize: float = 1.0  # initial stepsize
    max_iter: int = 100  # maximum number of outer iterations
    inner_iter_X: int = 1  # prox grad passes over X before moving on to Y
    inner_iter_Y: int = 1  # prox grad passes over Y before moving on to X
    abs_tol: float = 1e-5  # stop if decrease < abs_tol * number of observations
    rel_tol: float = 1e-4  # stop if decrease < rel_tol * objective
    min_stepsize: Optional[float] = None  # step size floor; 1% of stepsize when None
    n_jobs: int = 1  # worker threads; -1 for all CPUs

    def __post_init__(self):
        self.stepsize = float(self.stepsize)
        if self.min_stepsize is None:
            self.min_stepsize = 0.01 * self.stepsize
        self.abs_tol = float(self.abs_tol)
        self.rel_tol = float(self.rel_tol)
        self.min_stepsize = float(self.min_stepsize)
        self.max_iter = int(self.max_iter)
        self.inner_iter_X = int(self.inner_iter_X)
        self.inner_iter_Y = int(self.inner_iter_Y)
        self.n_jobs = int(self.n_jobs)
        if self.stepsize <= 0:
            raise ValueError(f"stepsize must be positive, got {self.stepsize}")
        if self.min_stepsize <= 0:
            raise ValueError(f"min_stepsize must be positive, got {self.min_stepsize}")
        if self.min_stepsize >= self.stepsize:
            raise ValueError(
                f"min_stepsize ({self.min_stepsize}) must be smaller than stepsize ({self.stepsize})"
            )
        if self.max_iter < 0:
            raise ValueError(f"max_iter must be >= 0, got {self.max_iter}")
        if self.inner_iter_X < 1 or self.inner_iter_Y < 1:
            raise ValueError(
                f"inner iterations must be >= 1, got X={self.inner_iter_X}, Y={self.inner_iter_Y}"
            )
        if self.abs_tol < 0 or self.rel_tol < 0:
            raise ValueError("tolerances must be non-negative")

    @classmethod
    def create(
        cls,
        stepsize: float = 1.0,
        max_iter: int = 100,
        inner_iter_X: int = 1,
        inner_iter_Y: int = 1,
        inner_iter: int = 1,
        abs_tol: float = 0.00001,
        rel_tol: float = 0.0001,
        min_stepsize: Optional[float] = None,
        n_jobs: int = 1,
    ) -> "ProxGradParams":
        """
        Build parameters the usual way: ``inner_iter`` raises both inner
        counts over the per-factor ones.
        """
        return cls(
            stepsize=stepsize,
            max_iter=max_iter,
            inner_iter_X=max(inner_iter_X, inner_iter),
            inner_iter_Y=max(inner_iter_Y, inner_iter),
            abs_tol=abs_tol,
            rel_tol=rel_tol,
            min_stepsize=min_stepsize,
            n_jobs=n_jobs,
        )


def _map(executor: Optional[ThreadPoolExecutor], fn, items) -> list:
    if executor is None:
        return [fn(item) for item in items]
    return list(executor.map(fn, items))


# ----------------------------
# Gradients
# ----------------------------
def _column_group_gradient(glrm: GLRM, XY: np.ndarray, j: int, yidx):
    """
    dL_j/dXY over the observed rows of column j: a (|obs|,) vector for
    scalar losses, an (|obs|, width) matrix for vector losses.
    """
    obsex = glrm.observed_examples[j]
    if obsex.size == 0:
        return obsex, None
    XYj = XY[obsex, yidx]
    Aj = glrm.A[obsex, j]
    return obsex, glrm.losses[j].gradient(XYj, Aj)


def _column_group_grad_x(glrm: GLRM, XY: np.ndarray, j: int, yidx):
    obsex, grads = _column_group_gradient(glrm, XY, j, yidx)
    if grads is None:
        return obsex, None
    Yj = glrm.Y[:, yidx]
    if grads.ndim == 1:
        # column e of the result is grads[e] * Yj
        return obsex, np.outer(Yj, grads)
    return obsex, Yj @ grads.T


def _column_group_grad_y(glrm: GLRM, XY: np.ndarray, j: int, yidx):
    obsex, grads = _column_group_gradient(glrm, XY, j, yidx)
    if grads is None:
        return yidx, None
    # (k,) for scalar losses, (k, width) for vector losses
    return yidx, glrm.X[:, obsex] @ grads


def update_grad_x(
    glrm: GLRM,
    XY: np.ndarray,
    gx: np.ndarray,
    executor: Optional[ThreadPoolExecutor] = None,
) -> np.ndarray:
    """
    Overwrite gx (k×m) with dL/dX.

    Workers compute one column group each and return their partial
    (k × |obs_j|) contributions; the row sets of different columns overlap,
    so the partials are summed into gx on the calling thread.
    """
    gx.fill(0.0)
    tasks = list(enumerate(glrm.yidxs))
    partials = _map(executor, lambda t: _column_group_grad_x(glrm, XY, *t), tasks)
    for obsex, contrib in partials:
        if contrib is not None:
            gx[:, obsex] += contrib
    return gx


def update_grad_y(
    glrm: GLRM,
    XY: np.ndarray,
    gy: np.ndarray,
    executor: Optional[ThreadPoolExecutor] = None,
) -> np.ndarray:
    """Overwrite gy (k×d) with dL/dY; each column group owns its own span."""
    gy.fill(0.0)
    tasks = list(enumerate(glrm.yidxs))
    blocks = _map(executor, lambda t: _column_group_grad_y(glrm, XY, *t), tasks)
    for yidx, contrib in blocks:
        if contrib is not None:
            gy[:, yidx] = contrib
    return gy


# ----------------------------
# Per-unit line search
# ----------------------------
def prox_grad_step(
    objective: Callable[[np.ndarray], float],
    v: np.ndarray,
    g: np.ndarray,
    reg: Regularizer,
    alpha: float,
    lipschitz: float,
    min_stepsize: float,
) -> tuple[float, float]:
    """
    Backtracking proximal gradient step on one row of X / column block of Y.

    ``v`` is a view into the factor matrix and is overwritten only when a
    candidate strictly decreases ``objective``. Returns the updated step
    size memory ``alpha`` and the local objective at the (possibly
    unchanged) ``v``.
    """
    obj = objective(v)
    while alpha > min_stepsize:
        stepsize = alpha / lipschitz
        candidate = reg.prox(v - stepsize * g, stepsize)
        new_obj = objective(candidate)
        if new_obj < obj:
            v[...] = candidate
            alpha *= STEP_GROW
            obj = new_obj
            break
        # too big; try again only smaller
        alpha *= STEP_SHRINK
        if alpha < min_stepsize:
            alpha = min_stepsize * STEP_FLOOR_RESET
            break
    return alpha, obj


def _update_rows(glrm, X, gx, alpharow, params, executor) -> np.ndarray:
    def step(i):
        # each loss is taken to be 1-Lipschitz; this bounds the row's constant
        lipschitz = len(glrm.observed_features[i]) + 1
        alpharow[i], obj = prox_grad_step(
            lambda x: glrm.row_objective(i, x),
            X[:, i],
            gx[:, i],
            glrm.rx[i],
            alpharow[i],
            lipschitz,
            params.min_stepsize,
        )
        return obj

    return np.asarray(_map(executor, step, range(X.shape[1])), dtype=np.float64)


def _update_cols(glrm, Y, gy, alphacol, params, executor) -> np.ndarray:
    yidxs = glrm.yidxs

    def step(j):
        lipschitz = len(glrm.observed_examples[j]) + 1
        alphacol[j], obj = prox_grad_step(
            lambda y: glrm.col_objective(j, y),
            Y[:, yidxs[j]],
            gy[:, yidxs[j]],
            glrm.ry[j],
            alphacol[j],
            lipschitz,
            params.min_stepsize,
        )
        return obj

    return np.asarray(_map(executor, step, range(len(yidxs))), dtype=np.float64)


# ----------------------------
# Fitting
# ----------------------------
def _check_factors(glrm: GLRM, rng: np.random.Generator) -> None:
    k, m, d = glrm.k, glrm.m, glrm.d
    if glrm.X.shape != (k, m):
        raise ValueError(f"X must have shape {(k, m)}, got {glrm.X.shape}")
    # a zero Y has zero gradient wrt X and we would never move
    if np.linalg.norm(glrm.Y) == 0:
        logger.warning("Y is identically zero; reinitializing as 0.1 * randn")
        glrm.Y = 0.1 * rng.standard_normal(glrm.Y.shape)
    if glrm.Y.shape != (k, d):
        msg = (
            f"The width of Y should match the embedding dimension of the losses. "
            f"Instead, embedding_dim(losses) = {d} and Y.shape = {glrm.Y.shape}. "
            f"Reinitializing Y as randn({k}, {d})."
        )
        logger.warning(msg)
        warnings.warn(msg, UserWarning)
        glrm.Y = rng.standard_normal((k, d))


def fit(
    glrm: GLRM,
    params: Optional[ProxGradParams] = None,
    ch: Optional[ConvergenceHistory] = None,
    verbose: bool = True,
    random_state: Optional[int] = None,
):
    """
    Fit ``glrm`` in place by alternating proximal gradient descent.

    Returns (X, Y, ch): the fitted factors (the same arrays as glrm.X and
    glrm.Y) and the convergence history, with one entry for the starting
    point and one per outer iteration.
    """
    params = ProxGradParams() if params is None else params
    ch = ConvergenceHistory("ProxGradGLRM") if ch is None else ch
    rng = np.random.default_rng(random_state)

    _check_factors(glrm, rng)
    X, Y = glrm.X, glrm.Y
    k, m, n, d = glrm.k, glrm.m, glrm.n, glrm.d

    XY = np.empty((m, d))
    np.matmul(X.T, Y, out=XY)

    # step size memory, one per row / column
    alpharow = np.full(m, params.stepsize)
    alphacol = np.full(n, params.stepsize)
    # stopping criterion: decrease in objective < tol, scaled by the number of observations
    scaled_abs_tol = params.abs_tol * glrm.n_observations

    gx = np.zeros((k, m))
    gy = np.zeros((k, d))
    obj_by_col = np.zeros(n)

    n_jobs = get_n_jobs(params.n_jobs)
    logger.info(
        f"Fitting GLRM: m={m},n={n},k={k},d={d},n_obs={glrm.n_observations}\n"
        f"stepsize={params.stepsize},min_stepsize={params.min_stepsize},max_iter={params.max_iter}\n"
        f"inner_iter_X={params.inner_iter_X},inner_iter_Y={params.inner_iter_Y}\n"
        f"abs_tol={params.abs_tol},rel_tol={params.rel_tol},n_jobs={n_jobs}"
    )
    ch.update(0, glrm.objective(X, Y, XY))
    restart_steps = params.inner_iter_X > 1 or params.inner_iter_Y > 1

    with ThreadPoolExecutor(max_workers=n_jobs) as pool:
        executor = pool if n_jobs > 1 else None
        t = time.time()
        for it in range(1, params.max_iter + 1):
            # STEP 1: X update
            # reset step sizes if we're doing something more like alternating minimization
            if restart_steps:
                alpharow.fill(params.stepsize)
                alphacol.fill(params.stepsize)

            tX0 = time.perf_counter()
            for _ in range(params.inner_iter_X):
                update_grad_x(glrm, XY, gx, executor)
                _update_rows(glrm, X, gx, alpharow, params, executor)
                np.matmul(X.T, Y, out=XY)  # recompute XY with the new X
            tX1 = time.perf_counter()

            # STEP 2: Y update
            for _ in range(params.inner_iter_Y):
                update_grad_y(glrm, XY, gy, executor)
                obj_by_col[:] = _update_cols(glrm, Y, gy, alphacol, params, executor)
                np.matmul(X.T, Y, out=XY)  # recompute XY with the new Y
            tY1 = time.perf_counter()

            # STEP 3: record objective; column objectives already hold the
            # losses and ry. The rx terms are re-evaluated at the new X, which
            # the plain column sum leaves out, so every entry equals
            # glrm.objective(X, Y) and is comparable with entry 0. A large rx
            # therefore also enters the rel_tol denominator.
            obj = float(np.sum(obj_by_col)) + sum(
                glrm.rx[i].value(X[:, i]) for i in range(m)
            )
            ch.update(time.time() - t, obj)
            t = time.time()

            if logger.isEnabledFor(logging.DEBUG):
                logger.debug(
                    f"it:{it:03d},obj={obj:.6e},time X={tX1-tX0:.3f}s,Y={tY1-tX1:.3f}s\n"
                    f"alpharow: min={alpharow.min():.3e},median={np.median(alpharow):.3e}\n"
                    f"alphacol: min={alphacol.min():.3e},median={np.median(alphacol):.3e}"
                )

            # STEP 4: check stopping criterion
            obj_decrease = ch.second_last_objective() - obj
            rel_decrease = obj_decrease / obj if obj != 0 else 0.0
            if it > 10 and (obj_decrease < scaled_abs_tol or rel_decrease < params.rel_tol):
                logger.info(
                    f"it:{it},Stopping (decrease={obj_decrease:.3e}, abs_tol*n_obs={scaled_abs_tol:.3e}, "
                    f"rel_decrease={rel_decrease:.3e}, rel_tol={params.rel_tol:.1e})"
                )
                break
            if verbose and it % 10 == 0:
                logger.info(f"Iteration {it}: objective value = {ch.last_objective():.6e}")

    return glrm.X, glrm.Y, ch


def fit_rows(
    glrm: GLRM,
    params: Optional[ProxGradParams] = None,
    ch: Optional[ConvergenceHistory] = None,
):
    """
    Fit X with Y held fixed (embedding new rows against learned features).

    Runs only the X pass of ``fit``, with the same step size memory and
    stopping rule. Returns (X, ch).
    """
    params = ProxGradParams() if params is None else params
    ch = ConvergenceHistory("ProxGradGLRM-rows") if ch is None else ch
    k, m, d = glrm.k, glrm.m, glrm.d
    if glrm.Y.shape != (k, d):
        raise ValueError(f"Y must have shape {(k, d)}, got {glrm.Y.shape}")
    if glrm.X.shape != (k, m):
        raise ValueError(f"X must have shape {(k, m)}, got {glrm.X.shape}")
    X, Y = glrm.X, glrm.Y

    XY = np.empty((m, d))
    np.matmul(X.T, Y, out=XY)
    alpharow = np.full(m, params.stepsize)
    gx = np.zeros((k, m))
    scaled_abs_tol = params.abs_tol * glrm.n_observations
    n_jobs = get_n_jobs(params.n_jobs)

    ch.update(0, glrm.objective(X, Y, XY))
    with ThreadPoolExecutor(max_workers=n_jobs) as pool:
        executor = pool if n_jobs > 1 else None
        t = time.time()
        for it in range(1, params.max_iter + 1):
            update_grad_x(glrm, XY, gx, executor)
            obj_by_row = _update_rows(glrm, X, gx, alpharow, params, executor)
            np.matmul(X.T, Y, out=XY)
            # row objectives hold the losses and rx; add the (fixed) ry terms
            obj = float(np.sum(obj_by_row)) + sum(
                glrm.ry[j].value(Y[:, yidx]) for j, yidx in enumerate(glrm.yidxs)
            )
            ch.update(time.time() - t, obj)
            t = time.time()
            obj_decrease = ch.second_last_objective() - obj
            rel_decrease = obj_decrease / obj if obj != 0 else 0.0
            if it > 10 and (obj_decrease < scaled_abs_tol or rel_decrease < params.rel_tol):
                logger.info(f"it:{it},Stopping row fit (decrease={obj_decrease:.3e})")
                break

    return glrm.X, ch
