from __future__ import annotations

import json
import math

import numpy as np
import pytest

from coin_reductions import CoinReduction
from dice_config import EnterpriseConfig
from dice_enterprise import BernoulliFactory, DiceEnterprise, main
from dice_errors import LadderConstructionTimeout, UnboundedOrBoundaryTouchingFunction
from evaluation import goodness_of_fit
from oracles import CoinOracle, DieOracle

CFG = EnterpriseConfig()
SQUARES = [(["1"], ["20"]), (["1"], ["02"])]


@pytest.fixture(scope="module")
def squares():
    return DiceEnterprise(SQUARES, config=CFG)


@pytest.mark.parametrize("p", [0.1, 0.5, 0.9])
def test_bernoulli_squares_frequency(squares, p):
    n = 10000
    exact = p * p / (p * p + (1 - p) ** 2)
    assert squares.evaluate((p, 1 - p))[0] == pytest.approx(exact)
    report = squares.sample(n, DieOracle([p, 1 - p]), seed=int(p * 100), double_time=True)
    freq = report.labels.count(1) / n
    sigma = math.sqrt(exact * (1 - exact) / n)
    assert abs(freq - exact) <= 3 * sigma


def test_diagnostics(squares):
    diag = squares.diagnostics
    assert diag["degree"] == 3
    assert diag["rung_count"] == 4
    assert squares.num_faces == 2
    result = squares.draw(DieOracle([0.5, 0.5]), np.random.default_rng(0))
    assert result.face in (1, 2)


def test_three_faced_output():
    enterprise = DiceEnterprise([([1], ["20"]), ([2], ["11"]), ([1], ["02"])], config=CFG)
    p = (0.25, 0.75)
    report = enterprise.sample(3000, DieOracle(p), seed=9, double_time=True)
    assert goodness_of_fit(report.labels, enterprise.evaluate(p))["p_value"] > 1e-3


def test_bernoulli_factory_two_p_rejected():
    with pytest.raises(UnboundedOrBoundaryTouchingFunction):
        BernoulliFactory([2], [1], config=CFG)


def test_bernoulli_factory_timeout_example():
    with pytest.raises(LadderConstructionTimeout):
        BernoulliFactory(["0.251", "-1", "1"], [0, 1, 2], config=CFG)
    factory = BernoulliFactory(["0.251", "-1", "1"], [0, 1, 2], threshold=500, config=CFG)
    assert factory.evaluate(0.5) == pytest.approx((0.001, 0.999))


@pytest.mark.parametrize(
    "coefficients,exponents,reduction,p",
    [
        ([1], [2], CoinReduction.TOSS_ALL, (0.6,)),
        ([1], ["11"], CoinReduction.FIRST_HEADS, (0.7, 0.4)),
        (["1/2", "1/2"], ["10", "01"], CoinReduction.UNIFORM, (0.3, 0.8)),
    ],
)
def test_bernoulli_factory_sampling(coefficients, exponents, reduction, p):
    factory = BernoulliFactory(coefficients, exponents, reduction=reduction, config=CFG)
    assert factory.num_coins == len(p)
    coins = [CoinOracle(x) for x in p]
    report = factory.sample(3000, coins, seed=17, double_time=True)
    expected = factory.evaluate(p)
    assert goodness_of_fit(report.labels, expected)["p_value"] > 1e-3
    assert factory.diagnostics["reduction"] == reduction.value


def test_smoke_cli():
    assert main(["--n", "400", "--seed", "1", "--double-time", "--quiet", "--alpha", "1e-6"]) == 0


def test_cli_json_dump(capsys):
    assert main(["--n", "200", "--seed", "3", "--quiet", "--alpha", "1e-6", "--json"]) == 0
    lines = capsys.readouterr().out.strip().splitlines()
    assert lines[0].startswith("[RESULT] success=1")
    payload = json.loads(lines[-1])
    ladder = payload["ladder"]
    assert ladder["degree"] == 3
    assert [r["words"] for r in ladder["rungs"]] == [1, 3, 3, 1]
    assert ladder["rational_map"]["num_faces"] == 2
    assert len(payload["report"]["labels"]) == 200
    assert len(payload["report"]["rolls"]) == 200
    assert payload["report"]["failed_draws"] == 0
    assert payload["fit"]["n"] == 200
    assert payload["success"] is True
