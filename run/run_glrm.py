#!/usr/bin/env python3
"""
Fit a generalized low-rank model to a table.

This script handles the complete fitting pipeline including:
- Data loading (CSV or Parquet; empty cells are missing entries)
- Model construction, initialization and proximal gradient fitting
- Saving factors, imputed table and convergence history
- Logging
"""

import sys
import argparse
from datetime import datetime
from pathlib import Path

import pandas as pd

# Add project root to path to allow importing glrm without installing
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from glrm.estimator import GLRMEstimator
from glrm.losses import (
    QuadLoss,
    L1Loss,
    HuberLoss,
    PoissonLoss,
    LogisticLoss,
    HingeLoss,
)
from glrm.regularizers import ZeroReg, QuadReg, L1Reg, NonNegConstraint
from glrm.utils import (
    setup_logging,
    read_table,
    save_table,
    set_seed,
    str2bool,
)

LOSSES = {
    "quad": QuadLoss,
    "l1": L1Loss,
    "huber": HuberLoss,
    "poisson": PoissonLoss,
    "logistic": LogisticLoss,
    "hinge": HingeLoss,
}


def make_regularizer(name: str, scale: float):
    if name == "zero":
        return ZeroReg()
    if name == "quad":
        return QuadReg(scale)
    if name == "l1":
        return L1Reg(scale)
    if name == "nonneg":
        return NonNegConstraint()
    raise ValueError(f"Unknown regularizer: {name}")


def load_table(data_fn: Path, index_col: str | None = None) -> pd.DataFrame:
    df = read_table(data_fn)
    if index_col:
        df = df.set_index(index_col)
    # non-numeric cells become missing entries
    return df.apply(pd.to_numeric, errors="coerce")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Fit a generalized low-rank model by alternating proximal gradient"
    )
    parser.add_argument(
        "--data-fn",
        type=str,
        required=True,
        help="Path to the data table (CSV or Parquet)",
    )
    parser.add_argument(
        "--index-col",
        type=str,
        default=None,
        help="Column holding row labels (excluded from the fit)",
    )
    parser.add_argument(
        "--output-dir",
        type=str,
        default="../output/glrm",
        help="Directory for X.csv, Y.csv, imputed.csv and history.csv",
    )
    parser.add_argument(
        "--log-dir",
        type=str,
        default="../output/logs",
        help="Directory to save log files",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level",
    )
    parser.add_argument("--k", type=int, default=2, help="Rank")
    parser.add_argument(
        "--loss",
        type=str,
        default="quad",
        choices=sorted(LOSSES),
        help="Loss applied to every column",
    )
    parser.add_argument(
        "--reg",
        type=str,
        default="quad",
        choices=["zero", "quad", "l1", "nonneg"],
        help="Regularizer for both X and Y",
    )
    parser.add_argument(
        "--reg-scale", type=float, default=0.1, help="Regularization strength"
    )
    parser.add_argument(
        "--offset", type=str2bool, default=False, help="Fit per-column intercepts"
    )
    parser.add_argument(
        "--scale", type=str2bool, default=False, help="Equilibrate column losses"
    )
    parser.add_argument(
        "--init", type=str, default="svd", choices=["svd", "random"]
    )
    parser.add_argument("--stepsize", type=float, default=1.0)
    parser.add_argument("--min-stepsize", type=float, default=None)
    parser.add_argument("--max-iter", type=int, default=100)
    parser.add_argument("--inner-iter", type=int, default=1)
    parser.add_argument("--abs-tol", type=float, default=1e-5)
    parser.add_argument("--rel-tol", type=float, default=1e-4)
    parser.add_argument(
        "--n-jobs", type=int, default=1, help="Worker threads (-1 for all CPUs)"
    )
    parser.add_argument("--seed", type=int, default=0)
    return parser.parse_args(argv)


def main(argv=None):
    """Main fitting function."""
    args = parse_args(argv)
    data_fn = Path(args.data_fn).resolve()
    output_dir = Path(args.output_dir).resolve()
    log_dir = Path(args.log_dir).resolve()
    log_dir.mkdir(parents=True, exist_ok=True)
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    logger = setup_logging(log_dir / f"run_glrm_{timestamp}.log", args.log_level)
    try:
        logger.info("Starting GLRM fit with configuration:")
        logger.info(f"  Data fn: {data_fn}")
        logger.info(f"  Output dir: {output_dir}")
        logger.info(f"  k={args.k}, loss={args.loss}, reg={args.reg}({args.reg_scale})")
        set_seed(args.seed)

        df = load_table(data_fn, args.index_col)
        logger.info(f"Loaded table with shape {df.shape}, {int(df.notna().sum().sum())} observed entries")

        reg = make_regularizer(args.reg, args.reg_scale)
        est = GLRMEstimator(
            k=args.k,
            loss=LOSSES[args.loss](),
            rx=reg,
            ry=reg,
            offset=args.offset,
            scale=args.scale,
            init=args.init,
            stepsize=args.stepsize,
            max_iter=args.max_iter,
            inner_iter=args.inner_iter,
            abs_tol=args.abs_tol,
            rel_tol=args.rel_tol,
            min_stepsize=args.min_stepsize,
            n_jobs=args.n_jobs,
            random_state=args.seed,
            verbose=True,
        )
        est.fit(df)

        latent = [f"latent_{i}" for i in range(est.X_.shape[0])]
        X_df = pd.DataFrame(est.X_.T, index=df.index, columns=latent)
        Y_df = pd.DataFrame(est.Y_, index=latent, columns=df.columns)
        imputed = pd.DataFrame(est.impute(), index=df.index, columns=df.columns)

        save_table(X_df, output_dir / "X.csv")
        save_table(Y_df, output_dir / "Y.csv")
        save_table(imputed, output_dir / "imputed.csv")
        save_table(est.history_.to_frame(), output_dir / "history.csv", index=False)
        logger.info(
            f"GLRM fit completed: {est.n_iter_} iterations, "
            f"final objective {est.history_.last_objective():.6e}, "
            f"mean loss {-est.score():.6e}"
        )
        return est
    except Exception as e:
        logger.error(f"Error fitting GLRM: {e}")
        raise


if __name__ == "__main__":
    main()
