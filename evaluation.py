#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Evaluation oracle: f(p) computed directly from the polynomials.

Used for diagnostics and as the reference in tests. Production sampling never
calls this module (it must stay independent of the unknown p).
"""

from __future__ import annotations

import logging
import math
import numbers
from collections import Counter
from fractions import Fraction
from typing import Any, Dict, Optional, Sequence, Tuple

import numpy as np
from scipy import stats

from dice_config import EnterpriseConfig
from dice_errors import DomainError, UnboundedOrBoundaryTouchingFunction
from polynomial_model import DOMAIN_SIMPLEX, RationalMap

logger = logging.getLogger(__name__)


def _as_point(p: Any, num_variables: int) -> Tuple[Any, ...]:
    if isinstance(p, numbers.Real) and not isinstance(p, bool):
        coords: Tuple[Any, ...] = (p,)
    else:
        try:
            coords = tuple(p)
        except TypeError as e:
            raise DomainError(f"p must be a sequence of {num_variables} numbers, got {p!r}") from e
    if len(coords) != num_variables:
        raise DomainError(f"p has {len(coords)} coordinates, the map has {num_variables} variables")
    out = []
    for i, x in enumerate(coords):
        if isinstance(x, bool) or not isinstance(x, numbers.Real):
            raise DomainError(f"p[{i}] must be a real number, got {type(x).__name__}")
        if isinstance(x, numbers.Rational):
            out.append(Fraction(int(x.numerator), int(x.denominator)))
        else:
            xf = float(x)
            if not math.isfinite(xf):
                raise DomainError(f"p[{i}] must be finite, got {x!r}")
            out.append(xf)
    return tuple(out)


def check_domain(rational_map: RationalMap, p: Any, *, config: Optional[EnterpriseConfig] = None) -> Tuple[Any, ...]:
    """
    Validate p against the map's domain and return it as a tuple.

    SIMPLEX: every coordinate in (0, 1) and |sum - 1| <= simplex_tolerance.
    HYPERCUBE: every coordinate in (0, 1).
    """
    cfg = config or EnterpriseConfig()
    point = _as_point(p, rational_map.num_variables)
    for i, x in enumerate(point):
        if not (0 < x < 1):
            raise DomainError(f"p[{i}]={x} is outside the open interval (0, 1)")
    if rational_map.domain == DOMAIN_SIMPLEX:
        total = sum(point)
        if abs(total - 1) > cfg.simplex_tolerance:
            raise DomainError(f"p must sum to 1 (tolerance {cfg.simplex_tolerance}), got {float(total)!r}")
    return point


def evaluate(rational_map: RationalMap, p: Any, *, config: Optional[EnterpriseConfig] = None) -> Tuple[float, ...]:
    """
    f(p) as a tuple of v floats summing to 1.

    Raises DomainError for p outside the domain and
    UnboundedOrBoundaryTouchingFunction if the map is not a distribution at p.
    """
    point = check_domain(rational_map, p, config=config)
    values = rational_map.numerators(point)
    for i, g in enumerate(values):
        if g < 0:
            raise UnboundedOrBoundaryTouchingFunction(
                f"G_{i + 1}(p) = {float(g)!r} < 0 at p={tuple(float(x) for x in point)}",
                witness={"face": i + 1, "point": [float(x) for x in point]},
            )
    total = sum(values)
    if total <= 0:
        raise UnboundedOrBoundaryTouchingFunction(
            f"C(p) = {float(total)!r} <= 0 at p={tuple(float(x) for x in point)}",
            witness={"point": [float(x) for x in point]},
        )
    return tuple(float(g / total) for g in values)


# =============================================================================
# Statistical diagnostics (scipy)
# =============================================================================


def label_counts(labels: Sequence[int], num_faces: int) -> np.ndarray:
    counts = Counter(int(x) for x in labels)
    unknown = sorted(k for k in counts if not 1 <= k <= num_faces)
    if unknown:
        raise ValueError(f"labels outside 1..{num_faces}: {unknown}")
    return np.array([counts.get(i, 0) for i in range(1, num_faces + 1)], dtype=np.int64)


def goodness_of_fit(labels: Sequence[int], expected: Sequence[float]) -> Dict[str, Any]:
    """
    Pearson chi-square of empirical labels against probabilities `expected`.

    Faces with zero expected probability must not be observed; they are
    excluded from the statistic.
    """
    probs = np.asarray(expected, dtype=float)
    if probs.ndim != 1 or probs.size < 2:
        raise ValueError("expected must be a vector with at least 2 probabilities")
    observed = label_counts(labels, int(probs.size))
    n = int(observed.sum())
    if n == 0:
        raise ValueError("no labels to test")
    support = probs > 0
    if np.any(observed[~support] > 0):
        raise ValueError("observed a face with zero expected probability")
    exp_counts = probs[support] / probs[support].sum() * n
    stat, p_value = stats.chisquare(observed[support], f_exp=exp_counts)
    out = {
        "n": n,
        "observed": [int(x) for x in observed],
        "expected_frequency": [float(x) for x in probs],
        "empirical_frequency": [float(x) / n for x in observed],
        "statistic": float(stat),
        "p_value": float(p_value),
    }
    logger.debug("[GOF] n=%s statistic=%.4f p_value=%.4f", n, out["statistic"], out["p_value"])
    return out


def homogeneity_test(labels_a: Sequence[int], labels_b: Sequence[int], num_faces: int) -> Dict[str, Any]:
    """Chi-square test that two label samples come from the same distribution."""
    table = np.vstack([label_counts(labels_a, num_faces), label_counts(labels_b, num_faces)])
    keep = table.sum(axis=0) > 0
    table = table[:, keep]
    if table.shape[1] < 2:
        return {"statistic": 0.0, "p_value": 1.0, "dof": 0, "table": table.tolist()}
    stat, p_value, dof, _expected = stats.chi2_contingency(table)
    return {"statistic": float(stat), "p_value": float(p_value), "dof": int(dof), "table": table.tolist()}
