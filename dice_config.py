#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Runtime configuration for ladder construction, evaluation and sampling.

All knobs are explicit: either passed as an `EnterpriseConfig` or read from
environment variables by `load_config()`.

Redlines:
  - No silent downgrade: an invalid env value raises (deployment/config error).
  - Tolerances are exact `Fraction`s where they feed exact comparisons.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from fractions import Fraction
from typing import Any, Dict, Tuple

GROWTH_POLICIES: Tuple[str, ...] = ("INCREMENT", "DOUBLE")

DEFAULT_THRESHOLD = 100


def _env_strict_enum(name: str, *, allowed: Tuple[str, ...], default: str) -> str:
    """
    Read an env var as an enum-like string with strict validation.
    """
    raw = os.getenv(name)
    if raw is None or not str(raw).strip():
        return str(default)
    val = str(raw).strip().upper()
    if val not in allowed:
        raise ValueError(f"{name} must be one of {list(allowed)}, got {raw!r}")
    return val


def _env_int(name: str, *, default: int, minimum: int) -> int:
    raw = os.getenv(name)
    if raw is None or not str(raw).strip():
        return int(default)
    try:
        val = int(str(raw).strip(), 10)
    except Exception as e:
        raise ValueError(f"{name} must be an integer (base-10), got {raw!r}") from e
    if val < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {val}")
    return val


def _env_fraction(name: str, *, default: Fraction) -> Fraction:
    """
    Read a non-negative rational ("1e-12", "1/1000", "0.001").
    """
    raw = os.getenv(name)
    if raw is None or not str(raw).strip():
        return Fraction(default)
    try:
        val = Fraction(str(raw).strip())
    except Exception as e:
        raise ValueError(f"{name} must be a decimal or rational literal, got {raw!r}") from e
    if val < 0:
        raise ValueError(f"{name} must be non-negative, got {raw!r}")
    return val


@dataclass(frozen=True)
class EnterpriseConfig:
    """
    threshold:             max ladder-construction iterations.
    coefficient_tolerance: relative snap-to-zero tolerance, only applied to maps
                           carrying float coefficients.
    simplex_tolerance:     |sum(p) - 1| accepted by the evaluation oracle.
    probe_resolution:      lattice resolution of the boundary probe.
    probe_budget:          max lattice points the probe may evaluate.
    max_rungs:             rung-count ceiling for degree raising.
    growth:                INCREMENT (d+1) or DOUBLE (2d) per failed iteration.
    """

    threshold: int = DEFAULT_THRESHOLD
    coefficient_tolerance: Fraction = Fraction(1, 10 ** 12)
    simplex_tolerance: Fraction = Fraction(1, 10 ** 9)
    probe_resolution: int = 8
    probe_budget: int = 20000
    max_rungs: int = 250000
    growth: str = "INCREMENT"

    def __post_init__(self) -> None:
        if not isinstance(self.threshold, int) or self.threshold < 1:
            raise ValueError(f"threshold must be int >= 1, got {self.threshold!r}")
        if not isinstance(self.coefficient_tolerance, Fraction) or self.coefficient_tolerance < 0:
            raise ValueError("coefficient_tolerance must be a non-negative Fraction")
        if not isinstance(self.simplex_tolerance, Fraction) or self.simplex_tolerance < 0:
            raise ValueError("simplex_tolerance must be a non-negative Fraction")
        if not isinstance(self.probe_resolution, int) or self.probe_resolution < 1:
            raise ValueError(f"probe_resolution must be int >= 1, got {self.probe_resolution!r}")
        if not isinstance(self.probe_budget, int) or self.probe_budget < 1:
            raise ValueError(f"probe_budget must be int >= 1, got {self.probe_budget!r}")
        if not isinstance(self.max_rungs, int) or self.max_rungs < 1:
            raise ValueError(f"max_rungs must be int >= 1, got {self.max_rungs!r}")
        if self.growth not in GROWTH_POLICIES:
            raise ValueError(f"growth must be one of {list(GROWTH_POLICIES)}, got {self.growth!r}")

    def with_overrides(self, **kwargs: Any) -> "EnterpriseConfig":
        return replace(self, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "threshold": int(self.threshold),
            "coefficient_tolerance": str(self.coefficient_tolerance),
            "simplex_tolerance": str(self.simplex_tolerance),
            "probe_resolution": int(self.probe_resolution),
            "probe_budget": int(self.probe_budget),
            "max_rungs": int(self.max_rungs),
            "growth": str(self.growth),
        }


def load_config() -> EnterpriseConfig:
    """Build the configuration from DICE_ENTERPRISE_* environment variables."""
    defaults = EnterpriseConfig()
    return EnterpriseConfig(
        threshold=_env_int("DICE_ENTERPRISE_THRESHOLD", default=defaults.threshold, minimum=1),
        coefficient_tolerance=_env_fraction(
            "DICE_ENTERPRISE_COEFFICIENT_TOLERANCE", default=defaults.coefficient_tolerance
        ),
        simplex_tolerance=_env_fraction("DICE_ENTERPRISE_SIMPLEX_TOLERANCE", default=defaults.simplex_tolerance),
        probe_resolution=_env_int("DICE_ENTERPRISE_PROBE_RESOLUTION", default=defaults.probe_resolution, minimum=1),
        probe_budget=_env_int("DICE_ENTERPRISE_PROBE_BUDGET", default=defaults.probe_budget, minimum=1),
        max_rungs=_env_int("DICE_ENTERPRISE_MAX_RUNGS", default=defaults.max_rungs, minimum=1),
        growth=_env_strict_enum("DICE_ENTERPRISE_GROWTH", allowed=GROWTH_POLICIES, default=defaults.growth),
    )
