"""
fusion/field/spatial_field.py
Bayesian Forward Operator — Spatial Truth Field Generator

Produces the hidden world for one game from a seed:

  θ(x, y)  hostile probability field
           noise ~ N(0, noise_scale)  →  Gaussian smoothing (radius ⌈3σ⌉,
           edge cells replicated)  →  + logit(hostile_base_probability)
           →  logistic(steepness · z)
  ι(x, y)  infrastructure probability field
           base rate with 10 % relative Gaussian jitter, clipped [0.001, 0.999]
  H, I     Bernoulli truth sampled from θ and ι

Per-cell belief priors are drawn independently from Beta distributions.
They model what the operator believes before any recon and deliberately
differ from the generative field.

Streams (see fusion/rng/seeded_rng.py):
  (seed, "hostiles")        noise for θ
  (seed, "infrastructure")  jitter for ι
  (seed, "sampling")        truth draws, row-major, hostile then infra
  (seed, "beta-priors")     belief priors, all hostile draws then all infra
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Tuple

import numpy as np
from scipy import ndimage
from scipy.special import expit, logit

from fusion.config.game_config import BetaPriorConfig, SpatialFieldConfig
from fusion.grid.belief_grid import Cell, Grid
from fusion.rng.seeded_rng import SeededRNG, sub_rng

logger = logging.getLogger("FIELD")

INFRA_JITTER_FRACTION = 0.1
INFRA_PROB_MIN        = 0.001
INFRA_PROB_MAX        = 0.999
KERNEL_SIGMAS         = 3.0     # smoothing kernel radius in units of sigma


@dataclass(frozen=True)
class TruthField:
    """Generated world. Arrays are read-only once built."""
    hostile_field: np.ndarray     # θ(x, y), float (H, W)
    infra_field:   np.ndarray     # ι(x, y), float (H, W)
    hostile_truth: np.ndarray     # bool (H, W)
    infra_truth:   np.ndarray     # bool (H, W)

    def __post_init__(self):
        shapes = {a.shape for a in (self.hostile_field, self.infra_field,
                                    self.hostile_truth, self.infra_truth)}
        if len(shapes) != 1:
            raise ValueError(f"TruthField arrays disagree on shape: {shapes}")
        for arr in (self.hostile_field, self.infra_field, self.hostile_truth, self.infra_truth):
            arr.setflags(write=False)

    @property
    def shape(self) -> Tuple[int, int]:
        return self.hostile_field.shape

    def to_dict(self) -> dict:
        return {
            "hostile_field": self.hostile_field.tolist(),
            "infra_field":   self.infra_field.tolist(),
            "hostile_truth": self.hostile_truth.tolist(),
            "infra_truth":   self.infra_truth.tolist(),
        }


def _check_dims(width: int, height: int) -> None:
    if int(width) != width or int(height) != height or width <= 0 or height <= 0:
        raise ValueError(f"Grid dimensions must be positive integers, got {width}×{height}")


# ─── Field transforms ─────────────────────────────────────────────────────────

def smooth_field(field: np.ndarray, sigma: float) -> np.ndarray:
    """Gaussian smoothing with a ⌈3σ⌉ kernel radius and replicated edges."""
    if sigma <= 0:
        return field.astype(float, copy=True)
    radius = max(1, int(math.ceil(KERNEL_SIGMAS * sigma)))
    return ndimage.gaussian_filter(field, sigma=sigma, mode="nearest", radius=radius)


def logistic_transform(field: np.ndarray, steepness: float = 1.0) -> np.ndarray:
    return expit(steepness * field)


def generate_hostile_field(width: int, height: int,
                           config: SpatialFieldConfig, rng: SeededRNG) -> np.ndarray:
    noise    = rng.gaussian_field(width, height, 0.0, config.noise_scale)
    smoothed = smooth_field(noise, config.smoothing_sigma)
    biased   = smoothed + logit(config.hostile_base_probability)
    return logistic_transform(biased, config.logistic_steepness)


def generate_infrastructure_field(width: int, height: int,
                                  config: SpatialFieldConfig, rng: SeededRNG) -> np.ndarray:
    variation = rng.gaussian_field(width, height, 0.0, INFRA_JITTER_FRACTION)
    base = config.infra_base_probability
    return np.clip(base + variation * base, INFRA_PROB_MIN, INFRA_PROB_MAX)


def sample_truth(hostile_field: np.ndarray, infra_field: np.ndarray,
                 rng: SeededRNG) -> Tuple[np.ndarray, np.ndarray]:
    """One Bernoulli per cell per field; draws interleave hostile, infra row-major."""
    height, width = hostile_field.shape
    draws = rng.uniform((height, width, 2))
    return draws[..., 0] < hostile_field, draws[..., 1] < infra_field


# ─── Public API ───────────────────────────────────────────────────────────────

def generate_truth_field(width: int, height: int,
                         spatial_config: SpatialFieldConfig,
                         beta_priors: BetaPriorConfig,
                         seed) -> TruthField:
    """
    Deterministic world for (seed, configs). beta_priors is accepted so the
    whole generation contract lives behind one call; priors themselves are
    drawn by initialize_beta_priors.
    """
    _check_dims(width, height)

    hostile_field = generate_hostile_field(width, height, spatial_config, sub_rng(seed, "hostiles"))
    infra_field   = generate_infrastructure_field(width, height, spatial_config,
                                                  sub_rng(seed, "infrastructure"))
    hostile_truth, infra_truth = sample_truth(hostile_field, infra_field, sub_rng(seed, "sampling"))

    logger.debug(
        f"FIELD: generated {width}×{height} seed={seed!r} | "
        f"mean θ={hostile_field.mean():.3f} hostiles={int(hostile_truth.sum())} "
        f"infra={int(infra_truth.sum())}"
    )
    return TruthField(
        hostile_field=hostile_field,
        infra_field=infra_field,
        hostile_truth=hostile_truth,
        infra_truth=infra_truth,
    )


def initialize_beta_priors(width: int, height: int,
                           config: BetaPriorConfig, seed) -> Tuple[np.ndarray, np.ndarray]:
    """Per-cell (hostile, infra) belief priors, independent Beta draws."""
    _check_dims(width, height)
    rng = sub_rng(seed, "beta-priors")
    hostile = rng.beta(config.hostile_alpha, config.hostile_beta, size=(height, width))
    infra   = rng.beta(config.infra_alpha, config.infra_beta, size=(height, width))
    return hostile, infra


def create_cells(truth: TruthField,
                 hostile_priors: np.ndarray,
                 infra_priors: np.ndarray) -> Grid:
    if hostile_priors.shape != truth.shape or infra_priors.shape != truth.shape:
        raise ValueError(
            f"Prior shapes {hostile_priors.shape}/{infra_priors.shape} "
            f"do not match truth field {truth.shape}"
        )
    height, width = truth.shape
    return [
        [
            Cell(
                x=x, y=y,
                has_hostile=bool(truth.hostile_truth[y, x]),
                has_infrastructure=bool(truth.infra_truth[y, x]),
                posterior_probability=float(hostile_priors[y, x]),
                hostile_prior_probability=float(truth.hostile_field[y, x]),
                infra_prior_probability=float(infra_priors[y, x]),
            )
            for x in range(width)
        ]
        for y in range(height)
    ]


def build_game_grid(width: int, height: int,
                    spatial_config: SpatialFieldConfig,
                    beta_priors: BetaPriorConfig,
                    seed) -> Tuple[TruthField, Grid]:
    """Truth field plus the initial belief grid for a new game."""
    truth = generate_truth_field(width, height, spatial_config, beta_priors, seed)
    hostile_priors, infra_priors = initialize_beta_priors(width, height, beta_priors, seed)
    return truth, create_cells(truth, hostile_priors, infra_priors)


# ─── Belief-vs-truth diagnostics ──────────────────────────────────────────────

def spatial_correlation(field_a: np.ndarray, field_b: np.ndarray) -> float:
    """Pearson correlation of two same-shaped fields; 0.0 if either is constant."""
    a = np.asarray(field_a, dtype=float).ravel()
    b = np.asarray(field_b, dtype=float).ravel()
    if a.size == 0 or a.shape != b.shape:
        return 0.0
    a = a - a.mean()
    b = b - b.mean()
    denom = math.sqrt(float((a * a).sum() * (b * b).sum()))
    return 0.0 if denom == 0 else float((a * b).sum() / denom)


def spatial_accuracy(posterior: np.ndarray, truth: np.ndarray, threshold: float = 0.5) -> float:
    """Fraction of cells where thresholded belief agrees with thresholded truth."""
    posterior = np.asarray(posterior, dtype=float)
    truth     = np.asarray(truth, dtype=float)
    if posterior.size == 0:
        return 0.0
    return float(np.mean((posterior > threshold) == (truth > threshold)))
