#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Exception taxonomy for the Dice Enterprise sampler.

Redlines:
  - Construction-time errors abort the whole builder call; no partial ladder.
  - Per-draw errors abort the draw in flight only.
  - No silent retries anywhere; callers decide (e.g. raise threshold).

Every exception keeps its constructor arguments optional beyond the message so
instances survive pickling across worker processes.
"""

from __future__ import annotations

from typing import Any, Optional


class DiceEnterpriseError(RuntimeError):
    """Hard failure in the Dice Enterprise layer (must interrupt, never swallowed)."""


class DiceEnterpriseInputError(DiceEnterpriseError):
    """Invalid caller input (shape, type, range)."""


class DimensionMismatch(DiceEnterpriseInputError):
    """Polynomials / exponent rows disagree on the number of variables."""


class MalformedExponentEncoding(DiceEnterpriseInputError):
    """Digit-string exponent encoding is not a fixed-width string of digits 0-9."""


class DomainError(DiceEnterpriseInputError):
    """Evaluation point outside the open simplex."""


class UnboundedOrBoundaryTouchingFunction(DiceEnterpriseError):
    """
    The rational map leaves the simplex (or touches its boundary) inside the domain.

    Detected structurally before any ladder iteration; the user must redefine f.
    """

    def __init__(self, message: str, witness: Optional[Any] = None) -> None:
        super().__init__(message)
        self.witness = witness


class LadderConstructionTimeout(DiceEnterpriseError):
    """No fine and connected ladder within `threshold` iterations."""

    def __init__(self, message: str, iterations: Optional[int] = None, degree: Optional[int] = None) -> None:
        super().__init__(message)
        self.iterations = iterations
        self.degree = degree


class InvalidOracleOutcome(DiceEnterpriseError):
    """The external die/coin oracle violated its contract."""
