import pytest

from glrm.convergence import ConvergenceHistory


def test_update_accumulates_times():
    ch = ConvergenceHistory("test")
    ch.update(0, 10.0)
    ch.update(0.5, 8.0)
    ch.update(0.25, 7.5)
    assert len(ch) == 3
    assert ch.iterations == 2
    assert ch.times == pytest.approx([0.0, 0.5, 0.75])
    assert ch.last_objective() == 7.5
    assert ch.second_last_objective() == 8.0


def test_empty_history_raises():
    ch = ConvergenceHistory()
    with pytest.raises(IndexError):
        ch.last_objective()
    ch.update(0, 1.0)
    with pytest.raises(IndexError):
        ch.second_last_objective()


def test_to_frame():
    ch = ConvergenceHistory("frame")
    for dt, obj in [(0, 3.0), (1.0, 2.0), (1.0, 1.5)]:
        ch.update(dt, obj)
    df = ch.to_frame()
    assert list(df.columns) == ["iteration", "time", "objective"]
    assert df["iteration"].tolist() == [0, 1, 2]
    assert df["time"].tolist() == pytest.approx([0.0, 1.0, 2.0])
    assert "frame" in repr(ch)
