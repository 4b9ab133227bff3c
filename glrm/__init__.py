from glrm.losses import (
    Loss,
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
)
from glrm.regularizers import (
    Regularizer,
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
from glrm.convergence import ConvergenceHistory
from glrm.model import GLRM, sort_observations
from glrm.initialization import init_random, init_svd
from glrm.solver_proxgrad import ProxGradParams, fit, fit_rows
from glrm.estimator import GLRMEstimator

__version__ = "0.1.0"
