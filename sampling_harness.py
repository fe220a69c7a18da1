#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Sampling harness: n independent exact draws, optionally across processes.

Streams
-------
numpy SeedSequence(seed).spawn(workers) gives every worker its own substream;
each worker splits it again into an oracle stream (handed to oracles exposing
`bind(generator)`) and a chain stream (swap coordinates, acceptance uniforms,
face splits). No global generator is touched. With num_cores > 1 the oracle
must expose bind(); a bare roll function carries one stream and is rejected.

Workers are forked with the ladder and oracle installed by the pool
initializer, so neither has to be picklable (closures are fine).

Redlines:
  - The ladder is read-only; workers inherit it through fork and never mutate it.
  - Labels come back in submission order regardless of worker scheduling.
  - Strict mode propagates the first per-draw error; best-effort mode records it.
"""

from __future__ import annotations

import logging
import multiprocessing
import numbers
import time
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from cftp import CFTPSampler
from dice_config import EnterpriseConfig
from dice_errors import DiceEnterpriseInputError
from ladder import Ladder

logger = logging.getLogger(__name__)


@dataclass
class SamplingReport:
    """
    labels:       1-based output faces, in draw order (failed draws omitted).
    rolls:        per-draw oracle rolls (verbose only), aligned with labels.
    diagnostics:  run summary; ladder diagnostics included when verbose.
    failed_draws: draws aborted in best-effort mode.
    first_error:  repr of the first aborted draw's exception.
    """

    labels: List[int]
    rolls: Optional[List[int]] = None
    diagnostics: Dict[str, Any] = field(default_factory=dict)
    failed_draws: int = 0
    first_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "labels": list(self.labels),
            "rolls": None if self.rolls is None else list(self.rolls),
            "diagnostics": dict(self.diagnostics),
            "failed_draws": int(self.failed_draws),
            "first_error": self.first_error,
        }


def _bind_oracle(oracle: Any, generator: np.random.Generator) -> Any:
    bind = getattr(oracle, "bind", None)
    if callable(bind):
        return bind(generator)
    return oracle


def _rebindable(oracle: Any) -> bool:
    # composite oracles report whether every inner stream is rebound too
    return callable(getattr(oracle, "bind", None)) and bool(getattr(oracle, "independent_streams", True))


# ladder and oracle of the running pool; set by the initializer, inherited through fork
_WORKER_CONTEXT: Optional[Tuple[Ladder, Any]] = None


def _init_worker(ladder: Ladder, oracle: Any) -> None:
    global _WORKER_CONTEXT
    _WORKER_CONTEXT = (ladder, oracle)


def _sample_chunk(task: Tuple[Any, ...]) -> Tuple[List[int], List[int], int, Optional[str]]:
    """Pool entry point; task = (count, seed_seq, double_time, best_effort)."""
    if _WORKER_CONTEXT is None:
        raise RuntimeError("internal error: sampling worker started without a ladder")
    ladder, oracle = _WORKER_CONTEXT
    return _run_chunk(ladder, oracle, *task)


def _run_chunk(
    ladder: Ladder,
    oracle: Any,
    count: int,
    seed_seq: np.random.SeedSequence,
    double_time: bool,
    best_effort: bool,
) -> Tuple[List[int], List[int], int, Optional[str]]:
    oracle_seq, chain_seq = seed_seq.spawn(2)
    worker_oracle = _bind_oracle(oracle, np.random.default_rng(oracle_seq))
    rng = np.random.default_rng(chain_seq)
    sampler = CFTPSampler(ladder, double_time=double_time)

    labels: List[int] = []
    rolls: List[int] = []
    failed = 0
    first_error: Optional[str] = None
    for _ in range(count):
        try:
            result = sampler.draw(worker_oracle, rng)
        except Exception as e:
            if not best_effort:
                raise
            failed += 1
            if first_error is None:
                first_error = repr(e)
                logger.warning("[Sample] draw aborted (best effort): %r", e)
            continue
        labels.append(result.face)
        rolls.append(result.rolls)
    return labels, rolls, failed, first_error


def _fork_available() -> bool:
    return "fork" in multiprocessing.get_all_start_methods()


def sample(
    ladder: Ladder,
    n: int,
    oracle: Any,
    *,
    num_cores: int = 1,
    double_time: bool = False,
    verbose: bool = False,
    seed: Optional[int] = None,
    best_effort: bool = False,
    config: Optional[EnterpriseConfig] = None,
) -> SamplingReport:
    """
    Draw n labels from f(p) with the compiled ladder.

    Args:
      ladder: compiled Ladder.
      n: number of draws (>= 1).
      oracle: callable roll(n) -> n outcomes in 1..m; oracles exposing
              bind(generator) get a worker-local copy on the worker stream.
      num_cores: worker processes (fork start method only; needs a bindable oracle).
      double_time: CFTP window doubling.
      verbose: return per-draw roll counts and ladder diagnostics.
      seed: root seed for the SeedSequence (None = fresh entropy).
      best_effort: keep going after a failed draw and report it.
      config: recorded in the verbose diagnostics.
    """
    if not isinstance(ladder, Ladder):
        raise DiceEnterpriseInputError(f"expected Ladder, got {type(ladder).__name__}")
    if isinstance(n, bool) or not isinstance(n, numbers.Integral) or int(n) < 1:
        raise DiceEnterpriseInputError(f"n must be int >= 1, got {n!r}")
    if isinstance(num_cores, bool) or not isinstance(num_cores, numbers.Integral) or int(num_cores) < 1:
        raise DiceEnterpriseInputError(f"num_cores must be int >= 1, got {num_cores!r}")
    if not callable(oracle):
        raise DiceEnterpriseInputError(f"oracle must be callable, got {type(oracle).__name__}")
    n = int(n)
    num_cores = int(num_cores)
    if num_cores > 1 and not _fork_available():
        raise DiceEnterpriseInputError("num_cores > 1 needs the 'fork' start method; use num_cores=1 on this platform")
    if num_cores > 1 and not _rebindable(oracle):
        raise DiceEnterpriseInputError(
            "num_cores > 1 needs an oracle exposing bind(generator) so every worker rolls from its own "
            "stream; wrap the roll function in an object with bind() or use num_cores=1"
        )

    workers = min(num_cores, n)
    base, extra = divmod(n, workers)
    chunk_sizes = [base + (1 if i < extra else 0) for i in range(workers)]
    child_seeds = np.random.SeedSequence(seed).spawn(workers)
    tasks = [(size, child, bool(double_time), bool(best_effort)) for size, child in zip(chunk_sizes, child_seeds)]

    start = time.perf_counter()
    if workers == 1:
        chunk_results = [_run_chunk(ladder, oracle, *tasks[0])]
    else:
        # fork hands the initializer arguments over without pickling them
        ctx = multiprocessing.get_context("fork")
        with ProcessPoolExecutor(
            max_workers=workers,
            mp_context=ctx,
            initializer=_init_worker,
            initargs=(ladder, oracle),
        ) as pool:
            chunk_results = list(pool.map(_sample_chunk, tasks))
    elapsed_ms = (time.perf_counter() - start) * 1000.0

    labels: List[int] = []
    rolls: List[int] = []
    failed = 0
    first_error: Optional[str] = None
    for chunk_labels, chunk_rolls, chunk_failed, chunk_error in chunk_results:
        labels.extend(chunk_labels)
        rolls.extend(chunk_rolls)
        failed += chunk_failed
        if first_error is None and chunk_error is not None:
            first_error = chunk_error

    diagnostics: Dict[str, Any] = {
        "n": n,
        "completed": len(labels),
        "workers": workers,
        "double_time": bool(double_time),
        "elapsed_ms": float(elapsed_ms),
    }
    if verbose:
        roll_arr = np.asarray(rolls, dtype=float)
        diagnostics["ladder"] = dict(ladder.diagnostics)
        diagnostics["mean_rolls"] = float(roll_arr.mean()) if roll_arr.size else None
        diagnostics["max_rolls"] = int(roll_arr.max()) if roll_arr.size else None
        diagnostics["seed"] = seed
        if config is not None:
            diagnostics["config"] = config.to_dict()

    logger.info(
        "[Sample] n=%s workers=%s completed=%s failed=%s elapsed_ms=%.2f",
        n,
        workers,
        len(labels),
        failed,
        elapsed_ms,
    )
    return SamplingReport(
        labels=labels,
        rolls=rolls if verbose else None,
        diagnostics=diagnostics,
        failed_draws=failed,
        first_error=first_error,
    )
