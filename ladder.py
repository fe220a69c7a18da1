#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Ladder builder: compile a RationalMap into a fine, connected ladder.

Words and rungs
---------------
A word of length d over the m die faces has weight p^n, where n counts the
letters. All words with the same letter counts n form the rung n; after
homogenizing every G_i to degree d the coefficient of p^n in G_i is the share
of rung n that belongs to output face i. The ladder is the distribution

    pi_n(p) = C_n p^n / sum_k C_k p^k,     C_n = sum_i G_i[n],

and drawing a rung from pi, then a face with probability G_i[n] / C_n, gives
exactly f_i(p).

Fineness: every G_i[n] >= 0, so the rungs (distinct n, C_n > 0) reproduce every
term of every G_i. Connectedness: rungs linked by n' = n + e_j - e_a form one
component. A map that is strictly positive on the open simplex becomes fine
after enough multiplications by (p_1 + ... + p_m) (Polya); each failed
iteration performs one such raise (or doubles the degree).

Chain on the ladder (used by cftp.py)
-------------------------------------
From rung i, roll j ~ p and a uniform coordinate a. If j != a and the rung
l = n_i + e_j - e_a exists, move there with probability min(1, C_l / C_i).
Detailed balance holds with p-free acceptance because
p^{n_i} p_j = p^{n_l} p_a.

Redlines:
  - Rejections before iteration are structural (boundary probe), never heuristic.
  - No partial ladder is ever returned.
  - The ladder is an arena of rungs referring to each other by index.
"""

from __future__ import annotations

import itertools
import logging
import math
import time
from collections import deque
from dataclasses import dataclass, field
from fractions import Fraction
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from dice_config import EnterpriseConfig, load_config
from dice_errors import (
    DiceEnterpriseInputError,
    LadderConstructionTimeout,
    UnboundedOrBoundaryTouchingFunction,
)
from polynomial_model import (
    DOMAIN_SIMPLEX,
    CoefficientTable,
    Exponent,
    RationalMap,
    multinomial,
    raise_degree,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Ladder data model
# =============================================================================


@dataclass(frozen=True)
class Rung:
    """
    One ladder state: the class of words with letter counts `exponent`.

    face_weights[i] is the coefficient of p^exponent in the homogenized G_{i+1};
    weight is their sum. neighbors are rung indices one letter-swap away.
    """

    index: int
    exponent: Exponent
    weight: Fraction
    face_weights: Tuple[Fraction, ...]
    neighbors: Tuple[int, ...]

    @property
    def word_count(self) -> int:
        return multinomial(self.exponent)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": int(self.index),
            "exponent": list(self.exponent),
            "words": int(self.word_count),
            "weight": str(self.weight),
            "face_weights": [str(w) for w in self.face_weights],
            "neighbors": list(self.neighbors),
        }


@dataclass(frozen=True)
class Ladder:
    """
    Immutable compiled ladder.

    moves[(i * m + j) * m + a] is the rung reached from rung i on roll j
    (0-based) with swap coordinate a, or -1; acceptance holds min(1, C_l / C_i)
    at the same position. face_cdf[i] is the cumulative face split of rung i.
    monotone is True when rung order is a total order preserved by the chain
    (two-letter alphabet: rungs sorted by the count of face 1).
    """

    rational_map: RationalMap
    degree: int
    rungs: Tuple[Rung, ...]
    moves: Tuple[int, ...]
    acceptance: Tuple[float, ...]
    face_cdf: Tuple[Tuple[float, ...], ...]
    monotone: bool
    diagnostics: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def num_variables(self) -> int:
        return self.rational_map.num_variables

    @property
    def num_faces(self) -> int:
        return self.rational_map.num_faces

    @property
    def num_rungs(self) -> int:
        return len(self.rungs)

    def face_of(self, state: int, u: float) -> int:
        """1-based output face of rung `state` for a uniform u in [0, 1)."""
        cdf = self.face_cdf[state]
        for i, c in enumerate(cdf):
            if u < c:
                return i + 1
        # cdf is 1.0 from the last positive face on
        raise RuntimeError(f"internal error: u={u!r} outside [0, 1) for rung {state}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "degree": int(self.degree),
            "num_variables": int(self.num_variables),
            "num_faces": int(self.num_faces),
            "monotone": bool(self.monotone),
            "rational_map": self.rational_map.to_dict(),
            "rungs": [r.to_dict() for r in self.rungs],
            "diagnostics": dict(self.diagnostics),
        }


# =============================================================================
# Boundary probe
# =============================================================================


def _compositions(total: int, parts: int) -> Iterator[Tuple[int, ...]]:
    if parts == 1:
        yield (total,)
        return
    for k in range(total, -1, -1):
        for rest in _compositions(total - k, parts - 1):
            yield (k,) + rest


def _probe_points(num_variables: int, resolution: int, budget: int) -> Tuple[List[Tuple[Fraction, ...]], Dict[str, Any]]:
    """
    Deterministic probe set on the closed simplex.

    Full lattice of resolution r (r >= m so the barycentre-like interior point
    exists), shrinking r to fit the budget; for very large m fall back to
    vertices, barycentre, edge midpoints and vertex/barycentre midpoints.
    """
    m = int(num_variables)
    r = max(int(resolution), m)
    while r > m and math.comb(r + m - 1, m - 1) > budget:
        r -= 1
    if math.comb(r + m - 1, m - 1) <= budget:
        pts = [tuple(Fraction(k, r) for k in comp) for comp in _compositions(r, m)]
        return pts, {"kind": "lattice", "resolution": int(r), "points": len(pts)}

    pts_set: Dict[Tuple[Fraction, ...], None] = {}
    bary = tuple(Fraction(1, m) for _ in range(m))
    pts_set[bary] = None
    for i in range(m):
        vertex = tuple(Fraction(1 if k == i else 0) for k in range(m))
        pts_set[vertex] = None
        pts_set[tuple((v + b) / 2 for v, b in zip(vertex, bary))] = None
    for i, j in itertools.combinations(range(m), 2):
        pts_set[tuple(Fraction(1, 2) if k in (i, j) else Fraction(0) for k in range(m))] = None
    pts = list(pts_set)
    return pts, {"kind": "sparse", "resolution": None, "points": len(pts)}


def probe_boundary(rational_map: RationalMap, config: EnterpriseConfig) -> Dict[str, Any]:
    """
    Reject maps that leave or touch the boundary of the simplex.

    Every G_i must be >= 0 on the probe set and > 0 on its interior points;
    evaluation is exact. For inexact maps values within coefficient_tolerance
    times the polynomial's absolute coefficient mass count as zero.
    """
    m = rational_map.num_variables
    for i, g in enumerate(rational_map.faces):
        if not g.as_table():
            raise UnboundedOrBoundaryTouchingFunction(
                f"G_{i + 1} is identically zero; f_{i + 1} touches 0 everywhere",
                witness={"face": i + 1},
            )

    eps: List[Fraction] = []
    for g in rational_map.faces:
        if rational_map.inexact:
            mass = sum((abs(c) for c in g.as_table().values()), Fraction(0))
            eps.append(config.coefficient_tolerance * mass)
        else:
            eps.append(Fraction(0))

    points, info = _probe_points(m, config.probe_resolution, config.probe_budget)
    for x in points:
        interior = all(c > 0 for c in x)
        for i, g in enumerate(rational_map.faces):
            val = g.evaluate(x)
            if val < -eps[i] or (interior and val <= eps[i]):
                where = "interior" if interior else "boundary"
                raise UnboundedOrBoundaryTouchingFunction(
                    f"G_{i + 1}({', '.join(str(c) for c in x)}) = {val} at a {where} point: "
                    "f leaves the open simplex inside the domain",
                    witness={"face": i + 1, "point": [str(c) for c in x], "value": str(val)},
                )
    logger.debug("[Ladder] boundary probe ok: kind=%s points=%s", info["kind"], info["points"])
    return info


# =============================================================================
# Fineness / connectedness
# =============================================================================


def _snap_tables(tables: Sequence[CoefficientTable], tolerance: Fraction) -> List[CoefficientTable]:
    scale = max((abs(c) for t in tables for c in t.values()), default=Fraction(0))
    cut = tolerance * scale
    return [{n: c for n, c in t.items() if abs(c) > cut} for t in tables]


def _fine_rungs(
    tables: Sequence[CoefficientTable], num_faces: int
) -> Tuple[Optional[Dict[Exponent, List[Fraction]]], Dict[str, Any]]:
    """
    Group face coefficients by exponent. Returns (None, reason) if some face
    coefficient is negative or some face owns no rung.
    """
    merged: Dict[Exponent, List[Fraction]] = {}
    negatives = 0
    worst: Optional[Tuple[int, Exponent, Fraction]] = None
    for i, table in enumerate(tables):
        for n, c in table.items():
            if c < 0:
                negatives += 1
                if worst is None or c < worst[2]:
                    worst = (i + 1, n, c)
                continue
            merged.setdefault(n, [Fraction(0)] * num_faces)[i] = c
    if negatives:
        assert worst is not None
        return None, {"negative_terms": negatives, "worst_face": worst[0], "worst_exponent": list(worst[1])}
    owned = [False] * num_faces
    for weights in merged.values():
        for i, w in enumerate(weights):
            if w > 0:
                owned[i] = True
    if not all(owned):
        return None, {"faces_without_rungs": [i + 1 for i, o in enumerate(owned) if not o]}
    return merged, {}


def _neighbor_exponents(n: Exponent) -> Iterator[Tuple[int, int, Exponent]]:
    m = len(n)
    for j in range(m):
        for a in range(m):
            if a == j or n[a] == 0:
                continue
            nxt = list(n)
            nxt[j] += 1
            nxt[a] -= 1
            yield j, a, tuple(nxt)


def _components(exponents: Sequence[Exponent]) -> int:
    """Number of connected components under single letter swaps (BFS over indices)."""
    index = {n: i for i, n in enumerate(exponents)}
    seen = [False] * len(exponents)
    comps = 0
    for start in range(len(exponents)):
        if seen[start]:
            continue
        comps += 1
        seen[start] = True
        queue = deque([start])
        while queue:
            i = queue.popleft()
            for _j, _a, nb in _neighbor_exponents(exponents[i]):
                k = index.get(nb)
                if k is not None and not seen[k]:
                    seen[k] = True
                    queue.append(k)
    return comps


# =============================================================================
# Assembly
# =============================================================================


def _assemble(
    rational_map: RationalMap,
    degree: int,
    merged: Dict[Exponent, List[Fraction]],
    diagnostics: Dict[str, Any],
) -> Ladder:
    m = rational_map.num_variables
    exponents = sorted(merged)
    index = {n: i for i, n in enumerate(exponents)}
    weights = [sum(merged[n], Fraction(0)) for n in exponents]

    rungs: List[Rung] = []
    moves: List[int] = [-1] * (len(exponents) * m * m)
    acceptance: List[float] = [0.0] * (len(exponents) * m * m)
    face_cdf: List[Tuple[float, ...]] = []
    for i, n in enumerate(exponents):
        nbrs: List[int] = []
        for j, a, nb in _neighbor_exponents(n):
            k = index.get(nb)
            if k is None:
                continue
            pos = (i * m + j) * m + a
            moves[pos] = k
            acceptance[pos] = float(min(Fraction(1), weights[k] / weights[i]))
            nbrs.append(k)
        rungs.append(
            Rung(
                index=i,
                exponent=n,
                weight=weights[i],
                face_weights=tuple(merged[n]),
                neighbors=tuple(sorted(set(nbrs))),
            )
        )
        acc = Fraction(0)
        cdf: List[float] = []
        last_positive = max(f for f, w in enumerate(merged[n]) if w > 0)
        for f, w in enumerate(merged[n]):
            acc += w
            cdf.append(1.0 if f >= last_positive else float(acc / weights[i]))
        face_cdf.append(tuple(cdf))

    return Ladder(
        rational_map=rational_map,
        degree=int(degree),
        rungs=tuple(rungs),
        moves=tuple(moves),
        acceptance=tuple(acceptance),
        face_cdf=tuple(face_cdf),
        monotone=bool(m == 2),
        diagnostics=diagnostics,
    )


def build_ladder(
    rational_map: RationalMap,
    *,
    threshold: Optional[int] = None,
    double_degree: Optional[bool] = None,
    config: Optional[EnterpriseConfig] = None,
) -> Ladder:
    """
    Compile `rational_map` into a fine and connected Ladder.

    Args:
      rational_map: SIMPLEX-domain map (coin maps go through coin_reductions).
      threshold: max iterations; defaults to config.threshold (100).
      double_degree: grow d -> 2d instead of d -> d+1 per failed iteration;
                     defaults to config.growth.
      config: explicit configuration; defaults to load_config().

    Raises:
      UnboundedOrBoundaryTouchingFunction before any iteration,
      LadderConstructionTimeout after `threshold` failed iterations.
    """
    if not isinstance(rational_map, RationalMap):
        raise DiceEnterpriseInputError(f"expected RationalMap, got {type(rational_map).__name__}")
    if rational_map.domain != DOMAIN_SIMPLEX:
        raise DiceEnterpriseInputError(
            f"ladders are built over the die simplex; reduce {rational_map.domain} maps with coin_reductions first"
        )
    cfg = config or load_config()
    limit = int(cfg.threshold if threshold is None else threshold)
    if limit < 1:
        raise DiceEnterpriseInputError(f"threshold must be >= 1, got {threshold!r}")
    doubling = (cfg.growth == "DOUBLE") if double_degree is None else bool(double_degree)

    t0 = time.perf_counter()
    probe = probe_boundary(rational_map, cfg)

    m = rational_map.num_variables
    v = rational_map.num_faces
    base_degree = max(1, rational_map.max_degree)
    degree = base_degree
    tables = rational_map.homogenize(degree)

    for iteration in range(1, limit + 1):
        view = _snap_tables(tables, cfg.coefficient_tolerance) if rational_map.inexact else list(tables)
        merged, reason = _fine_rungs(view, v)
        components = _components(sorted(merged)) if merged is not None else None
        logger.debug(
            "[Ladder] iteration=%s degree=%s fine=%s components=%s reason=%s",
            iteration,
            degree,
            merged is not None,
            components,
            reason,
        )
        if merged is not None and components == 1:
            elapsed_ms = (time.perf_counter() - t0) * 1000.0
            diagnostics = {
                "base_degree": int(base_degree),
                "degree": int(degree),
                "iterations": int(iteration),
                "threshold": int(limit),
                "growth": "DOUBLE" if doubling else "INCREMENT",
                "rung_count": int(len(merged)),
                "num_variables": int(m),
                "num_faces": int(v),
                "monotone": bool(m == 2),
                "inexact": bool(rational_map.inexact),
                "probe": dict(probe),
                "elapsed_ms": float(elapsed_ms),
            }
            ladder = _assemble(rational_map, degree, merged, diagnostics)
            logger.info(
                "[Ladder] built: degree=%s rungs=%s iterations=%s monotone=%s elapsed_ms=%.2f",
                degree,
                ladder.num_rungs,
                iteration,
                ladder.monotone,
                elapsed_ms,
            )
            return ladder
        if iteration == limit:
            break

        step = degree if doubling else 1
        next_rungs = math.comb(degree + step + m - 1, m - 1)
        if next_rungs > cfg.max_rungs:
            raise LadderConstructionTimeout(
                f"degree {degree + step} would need up to {next_rungs} rungs (> max_rungs={cfg.max_rungs}) "
                f"after {iteration} iterations",
                iterations=iteration,
                degree=degree,
            )
        tables = tuple(raise_degree(t, m, step) for t in tables)
        degree += step

    logger.info("[Ladder] timeout: iterations=%s degree=%s", limit, degree)
    raise LadderConstructionTimeout(
        f"no fine and connected ladder within threshold={limit} iterations (reached degree {degree}); "
        "f likely approaches the boundary of the simplex, raise the threshold to search deeper",
        iterations=limit,
        degree=degree,
    )
