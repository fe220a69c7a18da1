from __future__ import annotations

import pickle
from fractions import Fraction

import pytest

from coin_reductions import reduce_coin_map
from dice_config import EnterpriseConfig
from dice_errors import (
    DiceEnterpriseInputError,
    LadderConstructionTimeout,
    UnboundedOrBoundaryTouchingFunction,
)
from ladder import build_ladder, probe_boundary
from polynomial_model import Polynomial, RationalMap

SQUARES = [(["1"], ["20"]), (["1"], ["02"])]
CFG = EnterpriseConfig()


def _coin_ladder(coefficients, exponents, **kwargs):
    coin_map = RationalMap.bernoulli_factory(Polynomial.from_terms(coefficients, exponents))
    return build_ladder(reduce_coin_map(coin_map), config=CFG, **kwargs)


def test_squares_ladder_shape():
    ladder = build_ladder(RationalMap.from_faces(SQUARES), config=CFG)
    assert ladder.degree == 3
    assert ladder.monotone is True
    assert [r.exponent for r in ladder.rungs] == [(0, 3), (1, 2), (2, 1), (3, 0)]
    assert [r.face_weights for r in ladder.rungs] == [(0, 1), (0, 1), (1, 0), (1, 0)]
    assert ladder.diagnostics["iterations"] == 2
    assert ladder.diagnostics["base_degree"] == 2


def test_rung_arena_invariants():
    rm = RationalMap.from_faces([([1], ["200"]), ([1], ["020"]), ([1], ["002"])])
    ladder = build_ladder(rm, config=CFG)
    m = ladder.num_variables
    assert ladder.monotone is False
    assert ladder.degree == 3
    index = {r.exponent: r.index for r in ladder.rungs}
    for rung in ladder.rungs:
        assert rung.weight > 0
        assert sum(rung.face_weights) == rung.weight
        assert all(w >= 0 for w in rung.face_weights)
        assert sum(rung.exponent) == ladder.degree
        for k in rung.neighbors:
            assert rung.index in ladder.rungs[k].neighbors
        assert ladder.face_cdf[rung.index][-1] == 1.0
        for j in range(m):
            for a in range(m):
                pos = (rung.index * m + j) * m + a
                target = ladder.moves[pos]
                if target < 0:
                    continue
                assert j != a
                expected = tuple(
                    x + (1 if c == j else 0) - (1 if c == a else 0) for c, x in enumerate(rung.exponent)
                )
                assert index[expected] == target
                ratio = ladder.rungs[target].weight / rung.weight
                assert ladder.acceptance[pos] == pytest.approx(float(min(Fraction(1), ratio)))


def test_rungs_reproduce_every_term():
    rm = RationalMap.from_faces(SQUARES)
    ladder = build_ladder(rm, config=CFG)
    tables = rm.homogenize(ladder.degree)
    for i, table in enumerate(tables):
        rebuilt = {r.exponent: r.face_weights[i] for r in ladder.rungs if r.face_weights[i] != 0}
        assert rebuilt == table


def test_builder_is_idempotent():
    rm = RationalMap.from_faces(SQUARES)
    first = build_ladder(rm, config=CFG)
    second = build_ladder(rm, config=CFG)
    assert first == second
    assert pickle.loads(pickle.dumps(first)) == first


def test_double_degree():
    ladder = build_ladder(RationalMap.from_faces(SQUARES), double_degree=True, config=CFG)
    assert ladder.degree == 4
    assert ladder.num_rungs == 5
    assert ladder.diagnostics["growth"] == "DOUBLE"


def test_single_rung_ladder():
    ladder = build_ladder(RationalMap.from_faces([([2], ["10"]), ([3], ["10"])]), config=CFG)
    assert ladder.num_rungs == 1
    assert ladder.rungs[0].face_weights == (2, 3)


def test_two_p_rejected_before_iterating():
    with pytest.raises(UnboundedOrBoundaryTouchingFunction) as exc:
        _coin_ladder([2], [1], threshold=1)
    assert exc.value.witness["face"] == 2


def test_interior_zero_rejected():
    rm = RationalMap.from_faces([([1, -2, 1], ["20", "11", "02"]), ([1], ["11"])])
    with pytest.raises(UnboundedOrBoundaryTouchingFunction):
        probe_boundary(rm, CFG)


def test_documented_timeout_example():
    with pytest.raises(LadderConstructionTimeout) as exc:
        _coin_ladder(["0.251", "-1", "1"], [0, 1, 2])
    assert exc.value.iterations == 100
    ladder = _coin_ladder(["0.251", "-1", "1"], [0, 1, 2], threshold=500)
    assert 100 < ladder.diagnostics["iterations"] <= 500


def test_rung_ceiling_raises_timeout():
    with pytest.raises(LadderConstructionTimeout):
        build_ladder(RationalMap.from_faces(SQUARES), config=CFG.with_overrides(max_rungs=3))


def test_coin_domain_needs_reduction():
    coin_map = RationalMap.bernoulli_factory(Polynomial.from_terms([1], [2]))
    with pytest.raises(DiceEnterpriseInputError):
        build_ladder(coin_map, config=CFG)


def test_float_noise_is_snapped():
    # -1e-20 * p1 * p2 survives every degree raise unless snapped to zero
    rm = RationalMap.from_faces([([2 ** 0.5], ["20"]), ([1, -1e-20], ["02", "11"])])
    ladder = build_ladder(rm, config=CFG)
    assert ladder.diagnostics["inexact"] is True
    assert ladder.degree == 3
    with pytest.raises(LadderConstructionTimeout):
        build_ladder(rm, config=CFG.with_overrides(coefficient_tolerance=Fraction(0), threshold=20))
