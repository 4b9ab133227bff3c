import os
import sys
import random
import argparse
import logging
import multiprocessing
from pathlib import Path
import numpy as np
import pandas as pd


# Every module logs under "glrm.<module>"; only the base is configured.
BASE_LOGGER = "glrm"
_BASE = logging.getLogger(BASE_LOGGER)
LOG_FORMAT = (
    "%(asctime)s - %(name)s - %(levelname)s - pid=%(process)d - "
    "%(filename)s:%(lineno)d - %(funcName)s - %(message)s"
)
TABLE_SUFFIXES = (".csv", ".parquet")


def setup_logging(
    log_path: str | Path | None = None, level: str = "INFO"
) -> logging.Logger:
    """
    Attach console (and optional file) handlers to the glrm base logger.

    Handlers are attached on the first call only; later calls just
    change the level.
    """
    _BASE.setLevel(getattr(logging, level.upper(), logging.INFO))
    if getattr(_BASE, "_configured", False):
        return _BASE

    _BASE.handlers.clear()
    fmt = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_path:
        handlers.append(logging.FileHandler(str(log_path), encoding="utf-8"))
    for h in handlers:
        h.setFormatter(fmt)
        _BASE.addHandler(h)

    # keep fit logs out of the root logger
    _BASE.propagate = False
    _BASE._configured = True
    return _BASE


def get_logger(name: str | None = None) -> logging.Logger:
    if not name or name == BASE_LOGGER:
        return _BASE
    if name.startswith(f"{BASE_LOGGER}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{BASE_LOGGER}.{name}")


logger = get_logger(__name__)


def str2bool(v) -> bool:
    """argparse type for --offset/--scale style flags."""
    if isinstance(v, bool):
        return v
    s = str(v).strip().lower()
    if s in ("yes", "true", "t", "y", "1"):
        return True
    if s in ("no", "false", "f", "n", "0"):
        return False
    raise argparse.ArgumentTypeError(f"Expected a boolean value, got {v!r}")


def set_seed(seed: int) -> np.random.Generator:
    """Seed python's and numpy's global generators; returns a Generator for `seed`."""
    random.seed(seed)
    np.random.seed(seed)
    os.environ["PYTHONHASHSEED"] = str(seed)
    return np.random.default_rng(seed)


def _table_suffix(fn: Path) -> str:
    suffix = Path(fn).suffix.lower()
    if suffix not in TABLE_SUFFIXES:
        raise ValueError(f"Unsupported table format {suffix!r} for {fn}; use CSV or Parquet")
    return suffix


def read_table(fn: Path) -> pd.DataFrame:
    """Read a CSV or Parquet table; empty cells come back as NaN."""
    fn = Path(fn)
    if _table_suffix(fn) == ".parquet":
        df = pd.read_parquet(fn)
    else:
        df = pd.read_csv(fn)
    logger.info(f"Loaded {fn} with shape {df.shape}")
    return df


def save_table(df: pd.DataFrame, fn: Path, index: bool = True) -> None:
    fn = Path(fn)
    if _table_suffix(fn) == ".parquet":
        df.to_parquet(fn, index=index)
    else:
        df.to_csv(fn, index=index)
    logger.info(f"Saved {df.shape} table to {fn}")


def get_n_jobs(n_jobs: int) -> int:
    """Worker count: -1 uses all CPUs, -2 all but one, and so on; 0 or 1 is serial."""
    n_jobs = int(n_jobs)
    if n_jobs < 0:
        return max(multiprocessing.cpu_count() + 1 + n_jobs, 1)
    return max(n_jobs, 1)
