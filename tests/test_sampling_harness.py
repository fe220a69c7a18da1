from __future__ import annotations

import multiprocessing
import pickle

import numpy as np
import pytest

from coin_reductions import CoinDieOracle, CoinReduction
from dice_config import EnterpriseConfig
from dice_errors import DiceEnterpriseInputError, InvalidOracleOutcome
from evaluation import evaluate, goodness_of_fit, homogeneity_test
from ladder import build_ladder
from oracles import CoinOracle, DieOracle
from polynomial_model import RationalMap
from sampling_harness import sample

CFG = EnterpriseConfig()
SQUARES = RationalMap.from_faces([(["1"], ["20"]), (["1"], ["02"])])

needs_fork = pytest.mark.skipif(
    "fork" not in multiprocessing.get_all_start_methods(), reason="fork start method unavailable"
)


@pytest.fixture(scope="module")
def ladder():
    return build_ladder(SQUARES, config=CFG)


class FlakyOracle:
    """Die oracle that breaks its contract on every third call."""

    def __init__(self, p, rng=None):
        self.inner = DieOracle(p, rng=rng)
        self.calls = 0

    def bind(self, generator):
        return FlakyOracle(self.inner.p.tolist(), rng=generator)

    def __call__(self, n):
        self.calls += 1
        if self.calls % 3 == 0:
            return np.zeros(n, dtype=np.int64)
        return self.inner(n)


def test_seeded_runs_are_reproducible(ladder):
    oracle = DieOracle([0.4, 0.6])
    a = sample(ladder, 200, oracle, seed=7)
    b = sample(ladder, 200, oracle, seed=7)
    assert a.labels == b.labels
    assert len(a.labels) == 200
    assert a.rolls is None


def test_verbose_report(ladder):
    report = sample(ladder, 50, DieOracle([0.4, 0.6]), seed=1, verbose=True, config=CFG)
    assert len(report.rolls) == 50
    assert all(r >= 1 for r in report.rolls)
    assert report.diagnostics["ladder"]["degree"] == 3
    assert report.diagnostics["config"]["threshold"] == 100
    assert report.diagnostics["mean_rolls"] > 0


def test_strict_mode_propagates(ladder):
    with pytest.raises(InvalidOracleOutcome):
        sample(ladder, 100, FlakyOracle([0.5, 0.5]), seed=3, double_time=True)


def test_best_effort_records_failures(ladder):
    report = sample(ladder, 100, FlakyOracle([0.5, 0.5]), seed=3, best_effort=True)
    assert report.failed_draws > 0
    assert len(report.labels) + report.failed_draws == 100
    assert "InvalidOracleOutcome" in report.first_error


@pytest.mark.parametrize("kwargs", [{"n": 0}, {"n": 2.5}, {"n": 10, "num_cores": 0}])
def test_argument_validation(ladder, kwargs):
    n = kwargs.pop("n")
    with pytest.raises(DiceEnterpriseInputError):
        sample(ladder, n, DieOracle([0.5, 0.5]), **kwargs)


@needs_fork
def test_parallel_matches_serial(ladder):
    p = (0.35, 0.65)
    serial = sample(ladder, 3000, DieOracle(p), seed=101, double_time=True)
    parallel = sample(ladder, 3000, DieOracle(p), seed=202, num_cores=2, double_time=True)
    assert len(parallel.labels) == 3000
    assert parallel.diagnostics["workers"] == 2
    assert homogeneity_test(serial.labels, parallel.labels, 2)["p_value"] > 1e-3
    expected = evaluate(SQUARES, p)
    assert goodness_of_fit(parallel.labels, expected)["p_value"] > 1e-3
    assert goodness_of_fit(serial.labels, expected)["p_value"] > 1e-3


@needs_fork
def test_workers_roll_from_distinct_streams(ladder, tmp_path):
    class RecordingOracle:
        def __init__(self, rng=None, path=None):
            self.inner = DieOracle([0.5, 0.5], rng=rng)
            self.path = path

        def bind(self, generator):
            key = "-".join(str(k) for k in generator.bit_generator.seed_seq.spawn_key)
            return RecordingOracle(rng=generator, path=tmp_path / f"rolls-{key}.txt")

        def __call__(self, n):
            out = self.inner(n)
            with open(self.path, "a") as fh:
                fh.write(" ".join(str(int(x)) for x in out) + "\n")
            return out

    report = sample(ladder, 400, RecordingOracle(), num_cores=2, seed=1)
    assert len(report.labels) == 400
    files = sorted(tmp_path.glob("rolls-*.txt"))
    assert len(files) == 2
    first, second = (f.read_text().split() for f in files)
    n = min(len(first), len(second))
    assert n > 0
    assert first[:n] != second[:n]


@pytest.mark.parametrize("num_cores", [2, 4])
def test_unbindable_oracle_rejected_with_several_cores(ladder, num_cores):
    rng = np.random.default_rng(0)

    def roll(n):
        return rng.integers(1, 3, size=n)

    with pytest.raises(DiceEnterpriseInputError):
        sample(ladder, 100, roll, num_cores=num_cores, seed=1)
    assert len(sample(ladder, 20, roll, num_cores=1, seed=1).labels) == 20


def test_coin_die_oracle_with_plain_coin_rejected_with_several_cores(ladder):
    rng = np.random.default_rng(0)
    oracle = CoinDieOracle([lambda n: rng.integers(0, 2, size=n)], CoinReduction.TOSS_ALL)
    assert oracle.independent_streams is False
    with pytest.raises(DiceEnterpriseInputError):
        sample(ladder, 100, oracle, num_cores=2, seed=1)
    assert CoinDieOracle([CoinOracle(0.5)], CoinReduction.TOSS_ALL).independent_streams is True


@needs_fork
def test_unpicklable_bindable_oracle_runs_in_workers(ladder):
    class LocalOracle:
        def __init__(self, rng=None):
            gen = rng if rng is not None else np.random.default_rng()
            self.roll = lambda n: gen.integers(1, 3, size=n)

        def bind(self, generator):
            return LocalOracle(rng=generator)

        def __call__(self, n):
            return self.roll(n)

    oracle = LocalOracle()
    with pytest.raises(Exception):
        pickle.dumps(oracle)
    report = sample(ladder, 300, oracle, num_cores=2, seed=5, double_time=True)
    assert len(report.labels) == 300
    assert report.diagnostics["workers"] == 2
    assert set(report.labels) <= {1, 2}


@needs_fork
def test_best_effort_across_workers(ladder):
    report = sample(ladder, 200, FlakyOracle([0.5, 0.5]), seed=3, num_cores=2, best_effort=True)
    assert report.diagnostics["workers"] == 2
    assert report.failed_draws > 0
    assert len(report.labels) + report.failed_draws == 200
    assert report.first_error is not None
    assert "InvalidOracleOutcome" in report.first_error
