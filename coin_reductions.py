#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Coin reductions: k independent coins -> one virtual die.

A coin function f(p_1, ..., p_k) lives on the hypercube; the ladder machinery
works on the die simplex. Every reduction below defines a die whose face
probabilities q satisfy p_i = N_i(q) / S_i(q) for linear forms N_i, S_i. A
coin-domain term c * p^a then becomes

    c * prod_i N_i^{a_i} * S_i^{D_i - a_i}      (D_i = max exponent of coin i),

which multiplies every face by the same positive prod_i S_i^{D_i} and therefore
leaves f unchanged.

  TOSS_ALL     toss every coin once; 2^k faces = bit vectors, all heads first.
  FIRST_HEADS  toss coins 1, 2, ... until the first head; face i = coin i was
               the first head, face k+1 = all tails.
  UNIFORM      pick a coin uniformly and toss it; faces (1H, 1T, 2H, 2T, ...).

The reduced map is an ordinary die-domain RationalMap; ladder construction
may still time out on it.
"""

from __future__ import annotations

import itertools
import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from dice_errors import DiceEnterpriseInputError, InvalidOracleOutcome
from polynomial_model import DOMAIN_HYPERCUBE, DOMAIN_SIMPLEX, Polynomial, RationalMap

logger = logging.getLogger(__name__)


class CoinReduction(Enum):
    TOSS_ALL = "toss_all"
    FIRST_HEADS = "first_heads"
    UNIFORM = "uniform"


def as_reduction(value: Any) -> CoinReduction:
    if isinstance(value, CoinReduction):
        return value
    if isinstance(value, str):
        key = value.strip().lower().replace("-", "_")
        for r in CoinReduction:
            if key in (r.value, r.name.lower()):
                return r
    raise DiceEnterpriseInputError(
        f"reduction must be one of {[r.value for r in CoinReduction]}, got {value!r}"
    )


def num_die_faces(num_coins: int, reduction: Any) -> int:
    red = as_reduction(reduction)
    if not isinstance(num_coins, int) or num_coins < 1:
        raise DiceEnterpriseInputError(f"num_coins must be int >= 1, got {num_coins!r}")
    if red is CoinReduction.TOSS_ALL:
        return 2 ** num_coins
    if red is CoinReduction.FIRST_HEADS:
        return num_coins + 1
    return 2 * num_coins


def toss_all_faces(num_coins: int) -> List[Tuple[int, ...]]:
    """Face order of TOSS_ALL: heads (1) before tails (0), coin 1 most significant."""
    return list(itertools.product((1, 0), repeat=num_coins))


def coin_forms(num_coins: int, reduction: Any) -> List[Tuple[Polynomial, Polynomial]]:
    """(N_i, S_i) per coin, as linear forms over the die faces."""
    red = as_reduction(reduction)
    m = num_die_faces(num_coins, red)
    everything = Polynomial.linear_form(m, range(m))
    forms: List[Tuple[Polynomial, Polynomial]] = []
    if red is CoinReduction.TOSS_ALL:
        faces = toss_all_faces(num_coins)
        for i in range(num_coins):
            heads = [b for b, bits in enumerate(faces) if bits[i] == 1]
            forms.append((Polynomial.linear_form(m, heads), everything))
    elif red is CoinReduction.FIRST_HEADS:
        for i in range(num_coins):
            forms.append((Polynomial.linear_form(m, [i]), Polynomial.linear_form(m, range(i, m))))
    else:
        for i in range(num_coins):
            forms.append(
                (Polynomial.linear_form(m, [2 * i]), Polynomial.linear_form(m, [2 * i, 2 * i + 1]))
            )
    return forms


def reduce_coin_map(rational_map: RationalMap, reduction: Any = CoinReduction.TOSS_ALL) -> RationalMap:
    """Rewrite a coin-domain map over k coins as a die-domain map over the reduction's faces."""
    if not isinstance(rational_map, RationalMap):
        raise DiceEnterpriseInputError(f"expected RationalMap, got {type(rational_map).__name__}")
    if rational_map.domain != DOMAIN_HYPERCUBE:
        raise DiceEnterpriseInputError(f"coin reductions take HYPERCUBE maps, got {rational_map.domain}")
    red = as_reduction(reduction)
    k = rational_map.num_variables
    m = num_die_faces(k, red)
    forms = coin_forms(k, red)

    tables = [g.as_table() for g in rational_map.faces]
    top = [max((n[i] for t in tables for n in t), default=0) for i in range(k)]

    powers: Dict[Tuple[int, str, int], Polynomial] = {}

    def _pow(i: int, which: str, e: int) -> Polynomial:
        key = (i, which, e)
        if key not in powers:
            base = forms[i][0] if which == "N" else forms[i][1]
            powers[key] = base.power(e)
        return powers[key]

    faces: List[Polynomial] = []
    for table in tables:
        acc = Polynomial(terms=(), num_variables=m)
        for n, c in table.items():
            term = Polynomial.constant(c, m)
            for i in range(k):
                term = term.multiply(_pow(i, "N", n[i])).multiply(_pow(i, "S", top[i] - n[i]))
            acc = acc.add(term)
        faces.append(Polynomial(terms=acc.terms, num_variables=m, inexact=rational_map.inexact))

    logger.debug(
        "[Coins] reduced: reduction=%s coins=%s die_faces=%s degree=%s",
        red.value,
        k,
        m,
        sum(top),
    )
    return RationalMap(faces=tuple(faces), domain=DOMAIN_SIMPLEX)


# =============================================================================
# Coin oracles -> die oracle
# =============================================================================


def _toss(coin: Any, n: int, idx: int) -> np.ndarray:
    fn = getattr(coin, "toss", None)
    if not callable(fn):
        fn = coin
    out = np.asarray(fn(int(n)))
    if out.ndim != 1 or out.shape[0] != n:
        raise InvalidOracleOutcome(f"coin #{idx + 1} returned shape {out.shape}, expected ({n},)")
    if out.dtype.kind not in ("i", "u", "b"):
        raise InvalidOracleOutcome(f"coin #{idx + 1} outcomes must be 0/1 integers, got dtype {out.dtype}")
    out = out.astype(np.int64)
    if n and (int(out.min()) < 0 or int(out.max()) > 1):
        raise InvalidOracleOutcome(f"coin #{idx + 1} outcomes must be 0 or 1 (1 = heads)")
    return out


class CoinDieOracle:
    """
    Die oracle built from k coin oracles for a given reduction.

    Each coin is an object with toss(n) or a plain callable returning n values
    in {0, 1}. Calling the oracle with n returns n die faces in 1..m.
    """

    def __init__(
        self,
        coins: Sequence[Any],
        reduction: Any = CoinReduction.TOSS_ALL,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        self.coins = list(coins)
        if not self.coins:
            raise DiceEnterpriseInputError("at least one coin is required")
        self.reduction = as_reduction(reduction)
        self.rng = rng if rng is not None else np.random.default_rng()
        self.num_faces = num_die_faces(len(self.coins), self.reduction)

    @property
    def independent_streams(self) -> bool:
        """True when every coin can be rebound, i.e. workers never share a coin stream."""
        return all(callable(getattr(coin, "bind", None)) for coin in self.coins)

    def bind(self, generator: np.random.Generator) -> "CoinDieOracle":
        streams = generator.spawn(len(self.coins) + 1)
        coins = []
        for coin, stream in zip(self.coins, streams[1:]):
            bind = getattr(coin, "bind", None)
            coins.append(bind(stream) if callable(bind) else coin)
        return CoinDieOracle(coins, self.reduction, rng=streams[0])

    def __call__(self, n: int) -> np.ndarray:
        n = int(n)
        k = len(self.coins)
        if self.reduction is CoinReduction.TOSS_ALL:
            idx = np.zeros(n, dtype=np.int64)
            for i, coin in enumerate(self.coins):
                tails = 1 - _toss(coin, n, i)
                idx = idx * 2 + tails
            return idx + 1

        if self.reduction is CoinReduction.FIRST_HEADS:
            faces = np.full(n, k + 1, dtype=np.int64)
            pending = np.arange(n)
            for i, coin in enumerate(self.coins):
                if pending.size == 0:
                    break
                heads = _toss(coin, int(pending.size), i) == 1
                faces[pending[heads]] = i + 1
                pending = pending[~heads]
            return faces

        choice = self.rng.integers(0, k, size=n)
        faces = np.empty(n, dtype=np.int64)
        for i, coin in enumerate(self.coins):
            where = np.flatnonzero(choice == i)
            if where.size == 0:
                continue
            tails = 1 - _toss(coin, int(where.size), i)
            faces[where] = 2 * i + tails + 1
        return faces
