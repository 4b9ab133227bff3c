# Starting points for the factor matrices.
import numpy as np
from typing import Optional
from sklearn.utils.extmath import randomized_svd

from glrm.model import GLRM
from glrm.losses import span_width
from glrm.utils import get_logger

logger = get_logger(__name__)


def init_random(glrm: GLRM, scale: float = 0.1, random_state: Optional[int] = None) -> GLRM:
    """Small Gaussian factors; keeps the offset row of X at 1."""
    rng = np.random.default_rng(random_state)
    glrm.X = scale * rng.standard_normal((glrm.k, glrm.m))
    glrm.Y = scale * rng.standard_normal((glrm.k, glrm.d))
    if glrm.offset:
        glrm.X[-1, :] = 1.0
    return glrm


def init_svd(glrm: GLRM, random_state: Optional[int] = None) -> GLRM:
    """
    Initialize X, Y from a truncated SVD of the mean-filled table.

    Observed entries are centered by their column mean and rescaled by
    m*n / n_observations so the missing entries (filled with 0 after
    centering) do not shrink the spectrum. With an offset the column means
    go into the unpenalized last row of Y. Column blocks of vector losses
    get small random values.
    """
    m, n = glrm.m, glrm.n
    rng = np.random.default_rng(random_state)
    k_latent = glrm.k - 1 if glrm.offset else glrm.k

    A = glrm.A
    mask = np.zeros((m, n), dtype=bool)
    for j, obsex in enumerate(glrm.observed_examples):
        mask[obsex, j] = True
    n_obs = int(mask.sum())
    if n_obs == 0:
        logger.warning("No observed entries; falling back to random init")
        return init_random(glrm, random_state=random_state)

    col_means = np.zeros(n)
    for j, obsex in enumerate(glrm.observed_examples):
        if obsex.size:
            col_means[j] = float(np.mean(A[obsex, j]))

    if glrm.offset:
        filled = np.where(mask, A - col_means[None, :], 0.0)
    else:
        # without an intercept the factors have to carry the means
        filled = np.where(mask, A, 0.0)
    filled *= (m * n) / n_obs

    X = np.zeros((glrm.k, m))
    Y = 0.1 * rng.standard_normal((glrm.k, glrm.d))
    if k_latent > 0:
        n_comp = min(k_latent, m, n)
        U, s, Vt = randomized_svd(
            filled, n_components=n_comp, random_state=random_state
        )
        root_s = np.sqrt(s)
        X[:n_comp, :] = (U * root_s[None, :]).T
        Yv = (Vt.T * root_s[None, :]).T  # (n_comp, n)
        for j, yidx in enumerate(glrm.yidxs):
            if span_width(yidx) == 1:
                Y[:n_comp, yidx] = Yv[:, j]
        if n_comp < k_latent:
            X[n_comp:k_latent, :] = 0.1 * rng.standard_normal((k_latent - n_comp, m))

    if glrm.offset:
        X[-1, :] = 1.0
        for j, yidx in enumerate(glrm.yidxs):
            if span_width(yidx) == 1:
                Y[-1, yidx] = col_means[j]

    logger.debug(f"init_svd: k={glrm.k}, n_obs={n_obs}, offset={glrm.offset}")
    glrm.X, glrm.Y = X, Y
    return glrm
