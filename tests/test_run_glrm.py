import importlib.util
from pathlib import Path

import pytest

pd = pytest.importorskip("pandas")
np = pytest.importorskip("numpy")

from glrm.regularizers import ZeroReg, QuadReg, L1Reg, NonNegConstraint

SCRIPT = Path(__file__).resolve().parent.parent / "run" / "run_glrm.py"


@pytest.fixture(scope="module")
def run_glrm():
    spec = importlib.util.spec_from_file_location("run_glrm", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_parse_args_defaults(run_glrm):
    args = run_glrm.parse_args(["--data-fn", "table.csv"])
    assert args.k == 2
    assert args.loss == "quad"
    assert args.reg == "quad"
    assert args.offset is False
    assert args.min_stepsize is None
    assert args.max_iter == 100


def test_parse_args_requires_data(run_glrm):
    with pytest.raises(SystemExit):
        run_glrm.parse_args([])


def test_make_regularizer(run_glrm):
    assert isinstance(run_glrm.make_regularizer("zero", 1.0), ZeroReg)
    assert run_glrm.make_regularizer("quad", 0.3).scale == 0.3
    assert isinstance(run_glrm.make_regularizer("l1", 1.0), L1Reg)
    assert isinstance(run_glrm.make_regularizer("nonneg", 1.0), NonNegConstraint)
    assert isinstance(run_glrm.make_regularizer("quad", 1.0), QuadReg)
    with pytest.raises(ValueError):
        run_glrm.make_regularizer("elastic", 1.0)


def test_main_writes_outputs(run_glrm, tmp_path, monkeypatch):
    seeds = []
    monkeypatch.setattr(run_glrm, "set_seed", seeds.append)
    rng = np.random.default_rng(0)
    values = rng.standard_normal((12, 2)) @ rng.standard_normal((2, 5))
    values[rng.random(values.shape) < 0.15] = np.nan
    df = pd.DataFrame(values, columns=[f"c{j}" for j in range(5)])
    df.insert(0, "row_id", [f"r{i}" for i in range(12)])
    data_fn = tmp_path / "table.csv"
    df.to_csv(data_fn, index=False)
    out_dir = tmp_path / "out"

    est = run_glrm.main(
        [
            "--data-fn", str(data_fn),
            "--index-col", "row_id",
            "--output-dir", str(out_dir),
            "--log-dir", str(tmp_path / "logs"),
            "--k", "2",
            "--max-iter", "5",
            "--seed", "11",
        ]
    )
    assert seeds == [11]
    assert est.X_.shape == (2, 12)
    for name in ("X.csv", "Y.csv", "imputed.csv", "history.csv"):
        assert (out_dir / name).exists()
    imputed = pd.read_csv(out_dir / "imputed.csv", index_col=0)
    assert imputed.shape == (12, 5)
    assert list(imputed.index) == [f"r{i}" for i in range(12)]
    history = pd.read_csv(out_dir / "history.csv")
    assert len(history) == 6
