#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Dice Enterprise: exact sampling of f(p) from rolls of a die with unknown p.

Public entry points
-------------------
- DiceEnterprise(G): die in, die out. G holds one (coefficients, exponents)
  pair per output face; f(p) = G(p) / sum_i G_i(p).
- BernoulliFactory(coefficients, exponents): coins in, coin out. The
  polynomial is f over k coins; the second face 1 - f is implied.
- main(): smoke run of the classic factory p^2 / (p^2 + (1 - p)^2).

Construction compiles the polynomials into a ladder once (may raise
UnboundedOrBoundaryTouchingFunction or LadderConstructionTimeout); sampling
runs CFTP on it and never looks at p.
"""

from __future__ import annotations

import argparse
import json
import logging
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np

from cftp import CFTPSampler, SampleResult
from coin_reductions import CoinDieOracle, CoinReduction, as_reduction, reduce_coin_map
from dice_config import EnterpriseConfig, load_config
from dice_errors import DiceEnterpriseError, DiceEnterpriseInputError
from evaluation import evaluate, goodness_of_fit
from ladder import Ladder, build_ladder
from oracles import DieOracle
from polynomial_model import DOMAIN_SIMPLEX, Polynomial, RationalMap
from sampling_harness import SamplingReport, sample

logger = logging.getLogger(__name__)


class DiceEnterprise:
    """
    Compiled die-to-die sampler.

    Args:
      G: one entry per output face, each a (coefficients, exponents) pair,
         a {'coefficients', 'exponents'} mapping or a Polynomial; or a
         ready RationalMap.
      threshold: ladder-construction iteration cap (default from config).
      double_degree: degree growth d -> 2d instead of d -> d + 1.
      config: explicit EnterpriseConfig (default: load_config()).
    """

    def __init__(
        self,
        G: Any,
        *,
        threshold: Optional[int] = None,
        double_degree: Optional[bool] = None,
        config: Optional[EnterpriseConfig] = None,
    ) -> None:
        self.config = config or load_config()
        self.rational_map = RationalMap.from_faces(G, domain=DOMAIN_SIMPLEX)
        self.ladder: Ladder = build_ladder(
            self.rational_map,
            threshold=threshold,
            double_degree=double_degree,
            config=self.config,
        )

    @property
    def num_variables(self) -> int:
        return self.rational_map.num_variables

    @property
    def num_faces(self) -> int:
        return self.rational_map.num_faces

    @property
    def diagnostics(self) -> dict:
        return dict(self.ladder.diagnostics)

    def evaluate(self, p: Any) -> Tuple[float, ...]:
        return evaluate(self.rational_map, p, config=self.config)

    def draw(self, roll_fun: Any, rng: Optional[np.random.Generator] = None, *, double_time: bool = False) -> SampleResult:
        sampler = CFTPSampler(self.ladder, double_time=double_time)
        return sampler.draw(roll_fun, rng if rng is not None else np.random.default_rng())

    def sample(
        self,
        n: int,
        roll_fun: Any,
        *,
        num_cores: int = 1,
        double_time: bool = False,
        verbose: bool = False,
        seed: Optional[int] = None,
        best_effort: bool = False,
    ) -> SamplingReport:
        return sample(
            self.ladder,
            n,
            roll_fun,
            num_cores=num_cores,
            double_time=double_time,
            verbose=verbose,
            seed=seed,
            best_effort=best_effort,
            config=self.config,
        )


class BernoulliFactory:
    """
    Coin-to-coin sampler for a polynomial f(p_1, ..., p_k).

    Face 1 of every label is "f" (heads), face 2 is "1 - f". Coins are
    reduced to a virtual die with `reduction` before the ladder is built.
    """

    def __init__(
        self,
        coefficients: Sequence[Any],
        exponents: Sequence[Any],
        *,
        reduction: Any = CoinReduction.TOSS_ALL,
        threshold: Optional[int] = None,
        double_degree: Optional[bool] = None,
        config: Optional[EnterpriseConfig] = None,
    ) -> None:
        self.config = config or load_config()
        self.reduction = as_reduction(reduction)
        self.coin_map = RationalMap.bernoulli_factory(Polynomial.from_terms(coefficients, exponents))
        self.rational_map = reduce_coin_map(self.coin_map, self.reduction)
        self.ladder: Ladder = build_ladder(
            self.rational_map,
            threshold=threshold,
            double_degree=double_degree,
            config=self.config,
        )

    @property
    def num_coins(self) -> int:
        return self.coin_map.num_variables

    @property
    def diagnostics(self) -> dict:
        out = dict(self.ladder.diagnostics)
        out["reduction"] = self.reduction.value
        out["num_coins"] = self.num_coins
        return out

    def evaluate(self, p: Any) -> Tuple[float, ...]:
        """(f(p), 1 - f(p)) for coin probabilities p (scalar when k == 1)."""
        return evaluate(self.coin_map, p, config=self.config)

    def die_oracle(self, coins: Any) -> CoinDieOracle:
        if callable(coins) or callable(getattr(coins, "toss", None)):
            coins = [coins]
        coins = list(coins)
        if len(coins) != self.num_coins:
            raise DiceEnterpriseInputError(f"expected {self.num_coins} coins, got {len(coins)}")
        return CoinDieOracle(coins, self.reduction)

    def sample(
        self,
        n: int,
        coins: Any,
        *,
        num_cores: int = 1,
        double_time: bool = False,
        verbose: bool = False,
        seed: Optional[int] = None,
        best_effort: bool = False,
    ) -> SamplingReport:
        return sample(
            self.ladder,
            n,
            self.die_oracle(coins),
            num_cores=num_cores,
            double_time=double_time,
            verbose=verbose,
            seed=seed,
            best_effort=best_effort,
            config=self.config,
        )


# =============================================================================
# Smoke CLI
# =============================================================================


def _configure_logging(quiet: bool) -> None:
    """Install a default handler only when the host application has none."""
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(
            level=logging.INFO,
            format="[%(levelname)s] %(name)s: %(message)s",
        )
    root.setLevel(logging.WARNING if quiet else logging.INFO)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Dice Enterprise smoke run: p^2 / (p^2 + (1-p)^2) from a p-coin")
    parser.add_argument("--p", type=float, default=0.3, help="heads probability of the simulated coin (default: 0.3)")
    parser.add_argument("--n", type=int, default=2000, help="number of draws (default: 2000)")
    parser.add_argument("--cores", type=int, default=1, help="worker processes (default: 1)")
    parser.add_argument("--seed", type=int, help="root seed (default: fresh entropy)")
    parser.add_argument("--threshold", type=int, help="ladder iteration cap (default: config)")
    parser.add_argument("--double-time", action="store_true", help="double the CFTP window instead of +1")
    parser.add_argument("--alpha", type=float, default=1e-3, help="chi-square rejection level (default: 1e-3)")
    parser.add_argument("--quiet", action="store_true", help="suppress INFO logs")
    parser.add_argument("--json", action="store_true", help="print ladder, report and fit as JSON after the result line")
    args = parser.parse_args(argv)
    _configure_logging(args.quiet)

    try:
        enterprise = DiceEnterprise(
            [(["1"], ["20"]), (["1"], ["02"])],
            threshold=args.threshold,
        )
        p = (float(args.p), 1.0 - float(args.p))
        exact = enterprise.evaluate(p)
        report = enterprise.sample(
            int(args.n),
            DieOracle(p),
            num_cores=int(args.cores),
            double_time=bool(args.double_time),
            verbose=True,
            seed=args.seed,
        )
        fit = goodness_of_fit(report.labels, exact)
    except DiceEnterpriseError as ex:
        print(f"[FATAL] {ex}")
        return 1

    logger.info(
        "[Smoke] exact=%.6f empirical=%.6f mean_rolls=%.3f p_value=%.4f",
        exact[0],
        fit["empirical_frequency"][0],
        report.diagnostics["mean_rolls"],
        fit["p_value"],
    )
    ok = fit["p_value"] >= float(args.alpha)
    print(
        f"[RESULT] success={int(ok)} exact={exact[0]:.6f} empirical={fit['empirical_frequency'][0]:.6f} "
        f"p_value={fit['p_value']:.4f} rungs={enterprise.ladder.num_rungs} degree={enterprise.ladder.degree}"
    )
    if args.json:
        payload = {
            "ladder": enterprise.ladder.to_dict(),
            "report": report.to_dict(),
            "fit": fit,
            "success": bool(ok),
        }
        print(json.dumps(payload, sort_keys=True))
    return 0 if ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
