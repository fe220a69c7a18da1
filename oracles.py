#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Known-p oracles: a die and a coin simulated from numpy generators.

The sampler never sees p; these oracles exist for tests, the smoke CLI and
callers that want to study the roll cost of a given f. Both expose
`bind(generator)` so the sampling harness can hand every worker its own stream.
"""

from __future__ import annotations

import math
import numbers
from typing import Any, Optional, Sequence

import numpy as np

from dice_errors import DiceEnterpriseInputError


def _probability(x: Any, name: str) -> float:
    if isinstance(x, bool) or not isinstance(x, numbers.Real):
        raise DiceEnterpriseInputError(f"{name} must be a real number, got {type(x).__name__}")
    xf = float(x)
    if not math.isfinite(xf) or not 0.0 <= xf <= 1.0:
        raise DiceEnterpriseInputError(f"{name} must lie in [0, 1], got {x!r}")
    return xf


class DieOracle:
    """
    m-sided die with face probabilities p; `oracle(n)` returns n rolls in 1..m.

    p may sit on the boundary (e.g. (1, 0)), which is how degenerate oracles
    are modelled in tests.
    """

    def __init__(self, p: Sequence[Any], rng: Optional[np.random.Generator] = None) -> None:
        probs = [_probability(x, f"p[{i}]") for i, x in enumerate(p)]
        if len(probs) < 2:
            raise DiceEnterpriseInputError("a die needs at least 2 faces")
        if abs(sum(probs) - 1.0) > 1e-9:
            raise DiceEnterpriseInputError(f"die probabilities must sum to 1, got {sum(probs)!r}")
        self.p = np.asarray(probs, dtype=float)
        self.p = self.p / self.p.sum()
        self.rng = rng if rng is not None else np.random.default_rng()
        self.calls = 0
        self.rolled = 0

    @property
    def num_faces(self) -> int:
        return int(self.p.shape[0])

    def bind(self, generator: np.random.Generator) -> "DieOracle":
        return DieOracle(self.p.tolist(), rng=generator)

    def __call__(self, n: int) -> np.ndarray:
        self.calls += 1
        self.rolled += int(n)
        return self.rng.choice(self.num_faces, size=int(n), p=self.p) + 1


class CoinOracle:
    """Coin with heads probability p; `toss(n)` returns n values in {0, 1}, 1 = heads."""

    def __init__(self, p: Any, rng: Optional[np.random.Generator] = None) -> None:
        self.p = _probability(p, "p")
        self.rng = rng if rng is not None else np.random.default_rng()
        self.tossed = 0

    def bind(self, generator: np.random.Generator) -> "CoinOracle":
        return CoinOracle(self.p, rng=generator)

    def toss(self, n: int) -> np.ndarray:
        self.tossed += int(n)
        return (self.rng.random(int(n)) < self.p).astype(np.int64)

    __call__ = toss
