"""
fusion/grid/belief_grid.py
Bayesian Forward Operator — Belief Grid Data Model

The belief grid is a row-major list of rows, grid[y][x] → Cell, owned by the
orchestration layer. The fusion core reads it freely; only the explicit write
operations (posterior update, diffusion, strike execution) modify it.

Field ownership:
  - has_hostile / has_infrastructure : ground truth, write-once at generation
  - hostile_prior_probability        : θ(x, y) from the generative field, immutable
  - infra_prior_probability          : infrastructure belief, immutable
  - posterior_probability            : P(hostile | observations), updater only
  - recon_history                    : append-only
  - neutralized                      : set by strike execution only
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Tuple

import numpy as np


@dataclass
class ReconResult:
    """One sensor observation of one cell, with the numbers used to fuse it."""
    sensor:               str       # SensorType value
    result:               bool      # True = positive detection
    turn:                 int
    effective_tpr:        float
    effective_fpr:        float
    confidence:           float     # sensor confidence 0–1
    prior_probability:    float     # belief before this reading
    posterior_probability: float    # belief after this reading
    context_summary:      str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Cell:
    x: int
    y: int
    has_hostile:               bool
    has_infrastructure:        bool
    posterior_probability:     float
    hostile_prior_probability: float
    infra_prior_probability:   float
    recon_history: List[ReconResult] = field(default_factory=list)
    neutralized:   bool = False

    @property
    def observation_count(self) -> int:
        return len(self.recon_history)

    @property
    def observed(self) -> bool:
        return bool(self.recon_history)

    def to_dict(self, include_truth: bool = False) -> Dict[str, Any]:
        """Plain-data view. Truth flags are omitted unless asked for."""
        data = asdict(self)
        if not include_truth:
            data.pop("has_hostile")
            data.pop("has_infrastructure")
        return data


Grid = List[List[Cell]]


# ─── Shape helpers ────────────────────────────────────────────────────────────

def grid_shape(grid: Grid) -> Tuple[int, int]:
    """(height, width); (0, 0) for an empty grid."""
    if not grid or not grid[0]:
        return 0, 0
    return len(grid), len(grid[0])


def in_bounds(grid: Grid, x: int, y: int) -> bool:
    height, width = grid_shape(grid)
    return 0 <= x < width and 0 <= y < height


def window_bounds(cx: int, cy: int, radius: int,
                  width: int, height: int) -> Tuple[int, int, int, int]:
    """Clipped square window [x0, x1) × [y0, y1) around (cx, cy)."""
    return (max(0, cx - radius), min(width, cx + radius + 1),
            max(0, cy - radius), min(height, cy + radius + 1))


# ─── Array views ──────────────────────────────────────────────────────────────

def posterior_array(grid: Grid) -> np.ndarray:
    return np.array([[c.posterior_probability for c in row] for row in grid], dtype=float)


def infra_prior_array(grid: Grid) -> np.ndarray:
    return np.array([[c.infra_prior_probability for c in row] for row in grid], dtype=float)


def truth_arrays(grid: Grid) -> Tuple[np.ndarray, np.ndarray]:
    """(hostile truth, infrastructure truth) boolean arrays."""
    hostile = np.array([[c.has_hostile for c in row] for row in grid], dtype=bool)
    infra   = np.array([[c.has_infrastructure for c in row] for row in grid], dtype=bool)
    return hostile, infra


# ─── Construction ─────────────────────────────────────────────────────────────

def uniform_grid(width: int, height: int,
                 posterior: float,
                 infra_prior: float,
                 hostile_prior: Optional[float] = None,
                 has_hostile: bool = False,
                 has_infrastructure: bool = False) -> Grid:
    """Grid where every cell carries the same beliefs and truth."""
    if width <= 0 or height <= 0:
        raise ValueError(f"Grid dimensions must be positive, got {width}×{height}")
    theta = posterior if hostile_prior is None else hostile_prior
    return [
        [
            Cell(
                x=x, y=y,
                has_hostile=has_hostile,
                has_infrastructure=has_infrastructure,
                posterior_probability=float(posterior),
                hostile_prior_probability=float(theta),
                infra_prior_probability=float(infra_prior),
            )
            for x in range(width)
        ]
        for y in range(height)
    ]


def snapshot(grid: Grid) -> Grid:
    """Deep copy, safe to hand to another thread."""
    return copy.deepcopy(grid)