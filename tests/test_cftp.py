from __future__ import annotations

import numpy as np
import pytest

from cftp import CFTPSampler
from dice_config import EnterpriseConfig
from dice_errors import DiceEnterpriseInputError, InvalidOracleOutcome
from evaluation import evaluate, goodness_of_fit
from ladder import build_ladder
from oracles import DieOracle
from polynomial_model import RationalMap

CFG = EnterpriseConfig()
SQUARES = RationalMap.from_faces([(["1"], ["20"]), (["1"], ["02"])])
CUBE_FACES = RationalMap.from_faces([([1], ["200"]), ([1], ["020"]), ([1], ["002"])])


@pytest.fixture(scope="module")
def squares_ladder():
    return build_ladder(SQUARES, config=CFG)


def _always(face):
    def roll(n):
        return np.full(n, face, dtype=np.int64)

    return roll


def test_degenerate_oracle_gives_top_rung_face(squares_ladder):
    sampler = CFTPSampler(squares_ladder)
    rng = np.random.default_rng(3)
    faces = {sampler.draw(_always(1), rng).face for _ in range(200)}
    assert faces == {1}
    faces = {sampler.draw(_always(2), rng).face for _ in range(200)}
    assert faces == {2}


def test_monotone_and_general_agree(squares_ladder):
    mono = CFTPSampler(squares_ladder, monotone=True)
    general = CFTPSampler(squares_ladder, monotone=False)
    out = []
    for sampler in (mono, general):
        oracle = DieOracle([0.3, 0.7], rng=np.random.default_rng(11))
        rng = np.random.default_rng(12)
        out.append([sampler.draw(oracle, rng) for _ in range(300)])
    assert [r.face for r in out[0]] == [r.face for r in out[1]]
    assert [r.rolls for r in out[0]] == [r.rolls for r in out[1]]


def test_monotone_requires_two_letter_alphabet():
    ladder = build_ladder(CUBE_FACES, config=CFG)
    with pytest.raises(DiceEnterpriseInputError):
        CFTPSampler(ladder, monotone=True)


def test_oracle_called_once_per_extension(squares_ladder):
    calls = []

    def roll(n):
        calls.append(n)
        return np.random.default_rng(len(calls)).integers(1, 3, size=n)

    result = CFTPSampler(squares_ladder, double_time=True).draw(roll, np.random.default_rng(5))
    assert len(calls) == result.extensions
    assert sum(calls) == result.rolls == result.window
    assert calls[0] == 1
    assert all(n == 2 ** (i - 1) for i, n in enumerate(calls) if i > 0)


def test_single_rung_needs_no_rolls():
    ladder = build_ladder(RationalMap.from_faces([([2], ["10"]), ([3], ["10"])]), config=CFG)
    sampler = CFTPSampler(ladder)
    rng = np.random.default_rng(0)

    def roll(n):
        raise AssertionError("oracle must not be called")

    results = [sampler.draw(roll, rng) for _ in range(4000)]
    assert all(r.rolls == 0 for r in results)
    fit = goodness_of_fit([r.face for r in results], [0.4, 0.6])
    assert fit["p_value"] > 1e-3


@pytest.mark.parametrize(
    "bad",
    [
        lambda n: np.zeros(n, dtype=np.int64),
        lambda n: np.full(n, 3, dtype=np.int64),
        lambda n: np.full(n, 1.0),
        lambda n: np.ones(n + 1, dtype=np.int64),
    ],
)
def test_invalid_oracle_outcomes(squares_ladder, bad):
    with pytest.raises(InvalidOracleOutcome):
        CFTPSampler(squares_ladder).draw(bad, np.random.default_rng(0))


def test_general_cftp_three_faces():
    ladder = build_ladder(CUBE_FACES, config=CFG)
    p = (0.2, 0.3, 0.5)
    oracle = DieOracle(p, rng=np.random.default_rng(21))
    rng = np.random.default_rng(22)
    sampler = CFTPSampler(ladder, double_time=True)
    labels = [sampler.draw(oracle, rng).face for _ in range(3000)]
    fit = goodness_of_fit(labels, evaluate(CUBE_FACES, p))
    assert fit["p_value"] > 1e-3


def test_two_output_faces_on_three_faced_die_run_general():
    rm = RationalMap.from_faces([([1], ["200"]), ([1, 1], ["020", "002"])])
    ladder = build_ladder(rm, config=CFG)
    assert ladder.num_faces == 2
    assert ladder.num_variables == 3
    sampler = CFTPSampler(ladder)
    assert sampler.monotone is False
    with pytest.raises(DiceEnterpriseInputError):
        CFTPSampler(ladder, monotone=True)
