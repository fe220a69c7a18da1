#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Coupling From The Past over a compiled Ladder.

One draw:
  T = 1, 2, 3, ... (or 1, 2, 4, ... with double_time). For the window [-T, -1]
  every chain (general) or the two extremal chains (monotone) start at time -T
  and are driven by the SAME randomness (roll_t, a_t, u_t) per time index. If
  they meet at time 0 the common rung is an exact draw from pi; the output
  face is then split off with the rung's face weights.

Randomness is cached per time index for the duration of one draw: extending
the window only draws the newly added (earlier) time indices; the oracle is
called exactly once per extension. Never re-roll a time index that was already
used; that would bias the output.

Redlines:
  - The chain never looks at p; only the oracle does.
  - No cap on T: a valid ladder coalesces with probability 1.
  - Monotone and general variants consume randomness identically.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

import numpy as np

from dice_errors import DiceEnterpriseInputError, InvalidOracleOutcome
from ladder import Ladder

logger = logging.getLogger(__name__)

ChainState = int
RollOracle = Callable[[int], Sequence[int]]


@dataclass(frozen=True)
class SampleResult:
    """face is 1-based; rolls counts oracle outcomes consumed by this draw."""

    face: int
    rolls: int
    window: int
    extensions: int


def _validate_rolls(batch: Any, need: int, num_variables: int) -> np.ndarray:
    """Oracle output -> 0-based int array, or InvalidOracleOutcome."""
    try:
        arr = np.asarray(batch)
    except Exception as e:
        raise InvalidOracleOutcome(f"oracle returned a non-array value: {type(batch).__name__}") from e
    if arr.ndim != 1 or arr.shape[0] != need:
        raise InvalidOracleOutcome(f"oracle returned shape {arr.shape}, expected ({need},)")
    if arr.dtype.kind not in ("i", "u"):
        raise InvalidOracleOutcome(f"oracle outcomes must be integers, got dtype {arr.dtype}")
    lo = int(arr.min())
    hi = int(arr.max())
    if lo < 1 or hi > num_variables:
        raise InvalidOracleOutcome(f"oracle outcomes must lie in 1..{num_variables}, got range [{lo}, {hi}]")
    return arr.astype(np.int64) - 1


class CFTPSampler:
    """
    Exact sampler for one Ladder.

    The monotone variant is picked by the input die, not the output: only a
    two-faced die (m == 2) orders the rungs, so a two-face map on an m > 2 die
    runs the general variant.

    Args:
      ladder: compiled Ladder (read-only; may be shared across samplers).
      double_time: double T on each failed window instead of T += 1.
      monotone: track only the minimal and maximal rung. Defaults to
                ladder.monotone; forcing True on a non-monotone ladder is an error.
    """

    def __init__(self, ladder: Ladder, *, double_time: bool = False, monotone: Optional[bool] = None) -> None:
        if not isinstance(ladder, Ladder):
            raise DiceEnterpriseInputError(f"expected Ladder, got {type(ladder).__name__}")
        if monotone is None:
            monotone = ladder.monotone
        if monotone and not ladder.monotone:
            raise DiceEnterpriseInputError("monotone CFTP needs a totally ordered ladder (a 2-faced input die)")
        self.ladder = ladder
        self.double_time = bool(double_time)
        self.monotone = bool(monotone)
        self._m = ladder.num_variables
        self._moves = np.asarray(ladder.moves, dtype=np.int64)
        self._acceptance = np.asarray(ladder.acceptance, dtype=float)

    def _next_window(self, T: int) -> int:
        return 2 * T if self.double_time else T + 1

    def _run(self, states: np.ndarray, rolls: np.ndarray, coords: np.ndarray, us: np.ndarray) -> np.ndarray:
        m = self._m
        for t in range(rolls.shape[0]):
            pos = (states * m + rolls[t]) * m + coords[t]
            target = self._moves[pos]
            move = (target >= 0) & (us[t] < self._acceptance[pos])
            states = np.where(move, target, states)
            if not self.monotone and states.shape[0] > 1:
                states = np.unique(states)
        return states

    def draw(self, oracle: RollOracle, rng: np.random.Generator) -> SampleResult:
        """
        One exact draw.

        oracle(n) must return n outcomes in 1..m; rng is the caller-owned
        generator supplying the swap coordinates, acceptance uniforms and the
        final face split.
        """
        ladder = self.ladder
        if ladder.num_rungs == 1:
            face = ladder.face_of(0, float(rng.random()))
            return SampleResult(face=face, rolls=0, window=0, extensions=0)

        m = self._m
        # chronological order: index 0 is time -T, last index is time -1
        rolls = np.empty(0, dtype=np.int64)
        coords = np.empty(0, dtype=np.int64)
        us = np.empty(0, dtype=float)
        T = 0
        extensions = 0
        while True:
            new_T = 1 if T == 0 else self._next_window(T)
            need = new_T - T
            batch = _validate_rolls(oracle(need), need, m)
            new_coords = rng.integers(0, m, size=need)
            new_us = rng.random(need)
            rolls = np.concatenate([batch, rolls])
            coords = np.concatenate([new_coords.astype(np.int64), coords])
            us = np.concatenate([new_us, us])
            T = new_T
            extensions += 1

            if self.monotone:
                start = np.array([0, ladder.num_rungs - 1], dtype=np.int64)
            else:
                start = np.arange(ladder.num_rungs, dtype=np.int64)
            final = self._run(start, rolls, coords, us)
            if np.all(final == final[0]):
                state: ChainState = int(final[0])
                break
            logger.debug("[CFTP] window=%s not coalesced (%s states left)", T, int(np.unique(final).shape[0]))

        face = ladder.face_of(state, float(rng.random()))
        logger.debug("[CFTP] coalesced: window=%s extensions=%s rung=%s face=%s", T, extensions, state, face)
        return SampleResult(face=face, rolls=int(T), window=int(T), extensions=int(extensions))
