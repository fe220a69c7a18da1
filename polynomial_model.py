#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Sparse multivariate polynomials and rational maps over the simplex.

A RationalMap is a family of v polynomials {G_1, ..., G_v} over m variables;
it encodes f(p) = (G_1(p), ..., G_v(p)) / C(p) with C = sum_i G_i.

Conventions
-----------
- An exponent vector has one entry per die face (SIMPLEX domain) or per coin
  (HYPERCUBE domain). Variable i is the probability of face / heads of coin i.
- Coefficients are exact `Fraction`s. Floats are converted from their binary
  value (exact); the map then carries `inexact=True` and downstream sign
  decisions use the configured relative tolerance.
- Exponents come either as an integer matrix (rows = terms) or as fixed-width
  digit strings ("012" = p_2 * p_3^2), one digit 0-9 per variable.

Redlines:
  - Fail fast with typed errors at construction (no late runtime surprise).
  - No floats inside the exact arithmetic unless the caller supplied them.
"""

from __future__ import annotations

import math
import numbers
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from fractions import Fraction
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple

from dice_errors import (
    DiceEnterpriseInputError,
    DimensionMismatch,
    MalformedExponentEncoding,
)

Exponent = Tuple[int, ...]
CoefficientTable = Dict[Exponent, Fraction]

DOMAIN_SIMPLEX = "SIMPLEX"
DOMAIN_HYPERCUBE = "HYPERCUBE"
_DOMAINS = (DOMAIN_SIMPLEX, DOMAIN_HYPERCUBE)

_DIGITS = "0123456789"


# =============================================================================
# Input coercion
# =============================================================================


def as_coefficient(value: Any, *, name: str = "coefficient") -> Tuple[Fraction, bool]:
    """
    Coerce one coefficient to an exact Fraction.

    Returns (coefficient, inexact) where inexact is True when the value came
    from a binary float (e.g. math.sqrt(2)).
    """
    if isinstance(value, bool):
        raise DiceEnterpriseInputError(f"{name} must be a number, got bool")
    inexact = False
    if isinstance(value, Fraction):
        coef = value
    elif isinstance(value, numbers.Integral):
        coef = Fraction(int(value))
    elif isinstance(value, Decimal):
        if not value.is_finite():
            raise DiceEnterpriseInputError(f"{name} must be finite, got {value!r}")
        coef = Fraction(value)
    elif isinstance(value, str):
        try:
            coef = Fraction(value.strip())
        except (ValueError, ZeroDivisionError) as e:
            raise DiceEnterpriseInputError(f"{name} is not a decimal/rational literal: {value!r}") from e
    elif isinstance(value, numbers.Rational):
        coef = Fraction(int(value.numerator), int(value.denominator))
    elif isinstance(value, numbers.Real):
        x = float(value)
        if not math.isfinite(x):
            raise DiceEnterpriseInputError(f"{name} must be finite, got {value!r}")
        coef = Fraction(x)
        inexact = True
    else:
        raise DiceEnterpriseInputError(f"{name} must be a real number, got {type(value).__name__}")
    if coef == 0:
        raise DiceEnterpriseInputError(f"{name} must be non-zero (drop the term instead)")
    return coef, inexact


def _parse_digit_string(row: str, width: int, idx: int) -> Exponent:
    if len(row) == 0:
        raise MalformedExponentEncoding(f"exponent string #{idx} is empty")
    bad = [ch for ch in row if ch not in _DIGITS]
    if bad:
        raise MalformedExponentEncoding(
            f"exponent string #{idx}={row!r} must hold one digit 0-9 per variable; offending chars {bad!r} "
            "(use the integer-matrix form for exponents above 9)"
        )
    if len(row) != width:
        raise DimensionMismatch(f"exponent string #{idx}={row!r} has width {len(row)}, expected {width}")
    return tuple(int(ch) for ch in row)


def _parse_matrix_row(row: Any, idx: int) -> Exponent:
    if isinstance(row, numbers.Integral) and not isinstance(row, bool):
        # single-variable shorthand: [0, 1, 2] == [[0], [1], [2]]
        cells: List[Any] = [row]
    else:
        try:
            cells = list(row)
        except TypeError as e:
            raise DiceEnterpriseInputError(f"exponent row #{idx} must be a sequence of ints, got {row!r}") from e
    out: List[int] = []
    for j, cell in enumerate(cells):
        if isinstance(cell, bool) or not isinstance(cell, numbers.Integral):
            raise DiceEnterpriseInputError(
                f"exponent[{idx}][{j}] must be int (no floats), got {type(cell).__name__}"
            )
        if int(cell) < 0:
            raise DiceEnterpriseInputError(f"exponent[{idx}][{j}] must be >= 0, got {int(cell)}")
        out.append(int(cell))
    if not out:
        raise DimensionMismatch(f"exponent row #{idx} is empty")
    return tuple(out)


def parse_exponents(exponents: Iterable[Any]) -> Tuple[Exponent, ...]:
    """
    Parse exponent rows given as an integer matrix or as digit strings.

    Mixed encodings are rejected; every row must have the same width.
    """
    if isinstance(exponents, str):
        rows: List[Any] = [exponents]
    else:
        try:
            rows = list(exponents)
        except TypeError as e:
            raise DiceEnterpriseInputError(f"exponents must be iterable, got {type(exponents).__name__}") from e
    if not rows:
        raise DiceEnterpriseInputError("exponents must contain at least one row")

    kinds = {isinstance(r, str) for r in rows}
    if kinds == {True}:
        width = len(rows[0])
        return tuple(_parse_digit_string(r, width, i) for i, r in enumerate(rows))
    if True in kinds:
        raise MalformedExponentEncoding("exponents mix digit strings with integer rows")

    parsed = tuple(_parse_matrix_row(r, i) for i, r in enumerate(rows))
    width = len(parsed[0])
    for i, row in enumerate(parsed):
        if len(row) != width:
            raise DimensionMismatch(f"exponent row #{i} has {len(row)} entries, expected {width}")
    return parsed


# =============================================================================
# Table helpers (exponent -> coefficient)
# =============================================================================


def unit_vector(num_variables: int, index: int) -> Exponent:
    return tuple(1 if i == index else 0 for i in range(num_variables))


def add_exponents(a: Exponent, b: Exponent) -> Exponent:
    return tuple(x + y for x, y in zip(a, b))


def raise_degree(table: Mapping[Exponent, Fraction], num_variables: int, steps: int = 1) -> CoefficientTable:
    """
    Multiply a coefficient table by (p_1 + ... + p_m)^steps.

    On the simplex this leaves the function unchanged and lifts every word of
    length d to its m one-letter extensions.
    """
    if steps < 0:
        raise ValueError(f"steps must be >= 0, got {steps}")
    current: CoefficientTable = dict(table)
    for _ in range(int(steps)):
        nxt: Dict[Exponent, Fraction] = defaultdict(Fraction)
        for n, c in current.items():
            for j in range(num_variables):
                lifted = n[:j] + (n[j] + 1,) + n[j + 1:]
                nxt[lifted] += c
        current = {n: c for n, c in nxt.items() if c != 0}
    return current


def multinomial(exponent: Exponent) -> int:
    """Number of words whose letter counts equal `exponent`."""
    total = 0
    out = 1
    for k in exponent:
        total += int(k)
        out *= math.comb(total, int(k))
    return int(out)


# =============================================================================
# Term / Polynomial
# =============================================================================


@dataclass(frozen=True)
class Term:
    """Monomial coefficient * prod_i p_i^exponent[i]."""

    coefficient: Fraction
    exponent: Exponent

    def __post_init__(self) -> None:
        if not isinstance(self.coefficient, Fraction):
            raise DiceEnterpriseInputError(
                f"Term coefficient must be Fraction, got {type(self.coefficient).__name__}"
            )
        if self.coefficient == 0:
            raise DiceEnterpriseInputError("Term coefficient must be non-zero")
        if not isinstance(self.exponent, tuple) or len(self.exponent) == 0:
            raise DiceEnterpriseInputError("Term exponent must be a non-empty tuple")
        for i, k in enumerate(self.exponent):
            if not isinstance(k, int) or isinstance(k, bool) or k < 0:
                raise DiceEnterpriseInputError(f"Term exponent[{i}] must be int >= 0, got {k!r}")

    @property
    def degree(self) -> int:
        return int(sum(self.exponent))

    def evaluate(self, point: Sequence[Any]) -> Any:
        acc: Any = self.coefficient
        for x, k in zip(point, self.exponent):
            if k:
                acc = acc * (x ** k)
        return acc


@dataclass(frozen=True)
class Polynomial:
    """
    Ordered collection of Terms over `num_variables` variables.

    Term order carries no meaning; it is kept for reproducible diagnostics.
    The zero polynomial (no terms) only appears as an intermediate result.
    """

    terms: Tuple[Term, ...]
    num_variables: int
    inexact: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.num_variables, int) or self.num_variables < 1:
            raise DiceEnterpriseInputError(f"num_variables must be int >= 1, got {self.num_variables!r}")
        if not isinstance(self.terms, tuple):
            raise DiceEnterpriseInputError("Polynomial terms must be a tuple")
        for i, t in enumerate(self.terms):
            if not isinstance(t, Term):
                raise DiceEnterpriseInputError(f"terms[{i}] must be Term, got {type(t).__name__}")
            if len(t.exponent) != self.num_variables:
                raise DimensionMismatch(
                    f"terms[{i}] has {len(t.exponent)} variables, polynomial declares {self.num_variables}"
                )

    # ---- constructors -------------------------------------------------------

    @classmethod
    def from_terms(cls, coefficients: Iterable[Any], exponents: Iterable[Any]) -> "Polynomial":
        """Build from parallel coefficient / exponent sequences (matrix or digit strings)."""
        if isinstance(coefficients, (str, bytes)) or not isinstance(coefficients, Iterable):
            coefficients = [coefficients]
        coefs = list(coefficients)
        rows = parse_exponents(exponents)
        if len(coefs) != len(rows):
            raise DimensionMismatch(f"{len(coefs)} coefficients vs {len(rows)} exponent rows")
        inexact = False
        terms: List[Term] = []
        for i, (c, n) in enumerate(zip(coefs, rows)):
            coef, flag = as_coefficient(c, name=f"coefficients[{i}]")
            inexact = inexact or flag
            terms.append(Term(coefficient=coef, exponent=n))
        return cls(terms=tuple(terms), num_variables=len(rows[0]), inexact=inexact)

    @classmethod
    def from_table(cls, table: Mapping[Exponent, Fraction], num_variables: int, *, inexact: bool = False) -> "Polynomial":
        terms = tuple(
            Term(coefficient=Fraction(c), exponent=tuple(int(k) for k in n))
            for n, c in sorted(table.items(), key=lambda kv: tuple(-k for k in kv[0]))
            if c != 0
        )
        return cls(terms=terms, num_variables=int(num_variables), inexact=bool(inexact))

    @classmethod
    def constant(cls, value: Any, num_variables: int) -> "Polynomial":
        coef, inexact = as_coefficient(value, name="constant")
        return cls(terms=(Term(coef, (0,) * int(num_variables)),), num_variables=int(num_variables), inexact=inexact)

    @classmethod
    def linear_form(cls, num_variables: int, indices: Iterable[int]) -> "Polynomial":
        """sum_{i in indices} p_i (0-based indices)."""
        idx = sorted(set(int(i) for i in indices))
        if not idx:
            raise DiceEnterpriseInputError("linear_form needs at least one index")
        for i in idx:
            if not 0 <= i < num_variables:
                raise DimensionMismatch(f"linear_form index {i} out of range for {num_variables} variables")
        return cls(
            terms=tuple(Term(Fraction(1), unit_vector(num_variables, i)) for i in idx),
            num_variables=int(num_variables),
        )

    # ---- structure ----------------------------------------------------------

    @property
    def is_zero(self) -> bool:
        return len(self.terms) == 0

    @property
    def max_degree(self) -> int:
        return max((t.degree for t in self.terms), default=0)

    def as_table(self) -> CoefficientTable:
        """Like terms merged, exact zeros dropped."""
        table: Dict[Exponent, Fraction] = defaultdict(Fraction)
        for t in self.terms:
            table[t.exponent] += t.coefficient
        return {n: c for n, c in table.items() if c != 0}

    def combine(self) -> "Polynomial":
        return Polynomial.from_table(self.as_table(), self.num_variables, inexact=self.inexact)

    def _check_same_space(self, other: "Polynomial") -> None:
        if not isinstance(other, Polynomial):
            raise DiceEnterpriseInputError(f"expected Polynomial, got {type(other).__name__}")
        if other.num_variables != self.num_variables:
            raise DimensionMismatch(f"{self.num_variables} vs {other.num_variables} variables")

    # ---- arithmetic ---------------------------------------------------------

    def scale(self, factor: Any) -> "Polynomial":
        coef, flag = as_coefficient(factor, name="factor")
        return Polynomial(
            terms=tuple(Term(t.coefficient * coef, t.exponent) for t in self.terms),
            num_variables=self.num_variables,
            inexact=self.inexact or flag,
        )

    def add(self, other: "Polynomial") -> "Polynomial":
        self._check_same_space(other)
        table: Dict[Exponent, Fraction] = defaultdict(Fraction, self.as_table())
        for n, c in other.as_table().items():
            table[n] += c
        return Polynomial.from_table(table, self.num_variables, inexact=self.inexact or other.inexact)

    def subtract(self, other: "Polynomial") -> "Polynomial":
        self._check_same_space(other)
        table: Dict[Exponent, Fraction] = defaultdict(Fraction, self.as_table())
        for n, c in other.as_table().items():
            table[n] -= c
        return Polynomial.from_table(table, self.num_variables, inexact=self.inexact or other.inexact)

    def multiply(self, other: "Polynomial") -> "Polynomial":
        self._check_same_space(other)
        table: Dict[Exponent, Fraction] = defaultdict(Fraction)
        for na, ca in self.as_table().items():
            for nb, cb in other.as_table().items():
                table[add_exponents(na, nb)] += ca * cb
        return Polynomial.from_table(table, self.num_variables, inexact=self.inexact or other.inexact)

    def power(self, k: int) -> "Polynomial":
        if not isinstance(k, int) or k < 0:
            raise DiceEnterpriseInputError(f"power must be int >= 0, got {k!r}")
        out = Polynomial.constant(1, self.num_variables)
        base = self
        while k:
            if k & 1:
                out = out.multiply(base)
            k >>= 1
            if k:
                base = base.multiply(base)
        return out

    def homogenize(self, degree: int) -> CoefficientTable:
        """
        Rewrite as a form of total degree `degree` by multiplying each term by
        (sum p)^(degree - |n|). Equal to the polynomial on the simplex.
        """
        if degree < self.max_degree:
            raise DiceEnterpriseInputError(f"cannot homogenize degree-{self.max_degree} polynomial to {degree}")
        by_degree: Dict[int, Dict[Exponent, Fraction]] = defaultdict(lambda: defaultdict(Fraction))
        for n, c in self.as_table().items():
            by_degree[sum(n)][n] += c
        out: Dict[Exponent, Fraction] = defaultdict(Fraction)
        for t, table in sorted(by_degree.items()):
            for n, c in raise_degree(table, self.num_variables, degree - t).items():
                out[n] += c
        return {n: c for n, c in out.items() if c != 0}

    def evaluate(self, point: Sequence[Any]) -> Any:
        if len(point) != self.num_variables:
            raise DimensionMismatch(f"point has {len(point)} coordinates, polynomial has {self.num_variables}")
        acc: Any = Fraction(0)
        for t in self.terms:
            acc = acc + t.evaluate(point)
        return acc

    def to_dict(self) -> Dict[str, Any]:
        return {
            "num_variables": int(self.num_variables),
            "inexact": bool(self.inexact),
            "terms": [{"coefficient": str(t.coefficient), "exponent": list(t.exponent)} for t in self.terms],
        }


# =============================================================================
# RationalMap
# =============================================================================


def _as_polynomial(face: Any, idx: int) -> Polynomial:
    if isinstance(face, Polynomial):
        return face
    if isinstance(face, Mapping):
        try:
            return Polynomial.from_terms(face["coefficients"], face["exponents"])
        except KeyError as e:
            raise DiceEnterpriseInputError(f"G[{idx}] mapping needs 'coefficients' and 'exponents'") from e
    try:
        coefficients, exponents = face
    except (TypeError, ValueError) as e:
        raise DiceEnterpriseInputError(
            f"G[{idx}] must be a Polynomial or a (coefficients, exponents) pair"
        ) from e
    return Polynomial.from_terms(coefficients, exponents)


@dataclass(frozen=True)
class RationalMap:
    """
    f(p) = (G_1(p), ..., G_v(p)) / sum_i G_i(p).

    domain=SIMPLEX: p is a die distribution (m >= 2 faces).
    domain=HYPERCUBE: p are independent coin probabilities (m >= 1 coins);
    such maps feed the coin reductions, never the ladder builder directly.
    """

    faces: Tuple[Polynomial, ...]
    domain: str = DOMAIN_SIMPLEX

    def __post_init__(self) -> None:
        if self.domain not in _DOMAINS:
            raise DiceEnterpriseInputError(f"domain must be one of {list(_DOMAINS)}, got {self.domain!r}")
        if not isinstance(self.faces, tuple) or len(self.faces) < 2:
            raise DiceEnterpriseInputError("a rational map needs at least 2 faces (v >= 2)")
        for i, g in enumerate(self.faces):
            if not isinstance(g, Polynomial):
                raise DiceEnterpriseInputError(f"faces[{i}] must be Polynomial, got {type(g).__name__}")
        widths = {g.num_variables for g in self.faces}
        if len(widths) != 1:
            raise DimensionMismatch(f"faces disagree on the number of variables: {sorted(widths)}")
        if self.domain == DOMAIN_SIMPLEX and self.num_variables < 2:
            raise DiceEnterpriseInputError("a die needs at least 2 faces (m >= 2)")

    @classmethod
    def from_faces(cls, G: Sequence[Any], *, domain: str = DOMAIN_SIMPLEX) -> "RationalMap":
        """
        G: one entry per output face, each a Polynomial, a (coefficients,
        exponents) pair or a {'coefficients', 'exponents'} mapping.
        """
        if isinstance(G, RationalMap):
            return G
        try:
            faces = list(G)
        except TypeError as e:
            raise DiceEnterpriseInputError("G must be a sequence of faces") from e
        return cls(faces=tuple(_as_polynomial(g, i) for i, g in enumerate(faces)), domain=domain)

    @classmethod
    def bernoulli_factory(cls, f: Polynomial) -> "RationalMap":
        """
        Coin-domain map (f, 1 - f) for a coin function f(p_1, ..., p_k).

        The second face is the implied complement; it is computed exactly and
        may carry negative terms.
        """
        if not isinstance(f, Polynomial):
            raise DiceEnterpriseInputError(f"f must be Polynomial, got {type(f).__name__}")
        head = f.combine()
        if head.is_zero:
            raise DiceEnterpriseInputError("f is identically zero")
        tail = Polynomial.constant(1, f.num_variables).subtract(head)
        if tail.is_zero:
            raise DiceEnterpriseInputError("1 - f is identically zero")
        return cls(faces=(head, tail), domain=DOMAIN_HYPERCUBE)

    @property
    def num_variables(self) -> int:
        return int(self.faces[0].num_variables)

    @property
    def num_faces(self) -> int:
        return int(len(self.faces))

    @property
    def max_degree(self) -> int:
        return max(g.max_degree for g in self.faces)

    @property
    def inexact(self) -> bool:
        return any(g.inexact for g in self.faces)

    def numerators(self, point: Sequence[Any]) -> Tuple[Any, ...]:
        return tuple(g.evaluate(point) for g in self.faces)

    def homogenize(self, degree: int) -> Tuple[CoefficientTable, ...]:
        return tuple(g.homogenize(degree) for g in self.faces)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "domain": self.domain,
            "num_variables": self.num_variables,
            "num_faces": self.num_faces,
            "faces": [g.to_dict() for g in self.faces],
        }
