"""
fusion/inference/bayes_updater.py
Bayesian Forward Operator — Odds-Form Posterior Update & Spatial Diffusion

Update rule for one binary reading:

    p'          = clamp(p, ε, 1 − ε)
    prior odds  = p' / (1 − p')
    LR          = TPR / FPR                  positive reading
                = (1 − TPR) / (1 − FPR)      negative reading
                  (TPR, FPR clamped to [ε, 1 − ε])
    post odds   = prior odds · LR
    posterior   = post odds / (1 + post odds)

explain_update() returns every intermediate value; update_posterior() is
defined as explain_update(...).posterior so the auditable walkthrough and the
number written to the grid can never drift apart.

Diffusion: a recon at (x, y) moving the target from p_old to p_new moves
each neighbour within a square kernel by the same odds ratio raised to a
distance-decayed weight:

    w          = strength · exp(−d / decay)          d = Euclidean distance
    odds_n'    = odds_n · (odds_new / odds_old) ** w

which is the log-odds update  logit(n') = logit(n) + w · Δlogit(target).
"""

import logging
import math
from dataclasses import dataclass, asdict
from typing import Optional, Union

from fusion.constants import EPSILON
from fusion.grid.belief_grid import Grid, ReconResult, grid_shape, in_bounds
from fusion.sensors.sensor_model import (
    SensorReading, SensorType, cell_context, get_sensor, reading_rng, simulate_reading,
)

logger = logging.getLogger("BAYES")


def clamp_probability(p: float, eps: float = EPSILON) -> float:
    if math.isnan(p):
        return 0.5
    return max(eps, min(1.0 - eps, p))


def probability_to_odds(p: float) -> float:
    p = clamp_probability(p)
    return p / (1.0 - p)


def odds_to_probability(odds: float) -> float:
    if odds <= 0.0:
        return 0.0
    if math.isinf(odds):
        return 1.0
    return odds / (1.0 + odds)


def log_odds(p: float) -> float:
    return math.log(probability_to_odds(p))


def likelihood_ratio(result: bool, tpr: float, fpr: float) -> float:
    """P(reading | hostile) / P(reading | clear) with rates kept off 0 and 1."""
    tpr = clamp_probability(tpr)
    fpr = clamp_probability(fpr)
    if result:
        return tpr / fpr
    return (1.0 - tpr) / (1.0 - fpr)


@dataclass(frozen=True)
class BayesWalkthrough:
    """Every number in one update, in the order it is computed."""
    prior:            float
    clamped_prior:    float
    prior_odds:       float
    result:           bool
    tpr:              float
    fpr:              float
    likelihood_ratio: float
    posterior_odds:   float
    posterior:        float

    def to_dict(self) -> dict:
        return asdict(self)


def explain_update(prior: float, reading: SensorReading) -> BayesWalkthrough:
    clamped = clamp_probability(prior)
    prior_odds = clamped / (1.0 - clamped)
    lr = likelihood_ratio(reading.result, reading.effective_tpr, reading.effective_fpr)
    posterior_odds = prior_odds * lr
    posterior = min(1.0, max(0.0, odds_to_probability(posterior_odds)))
    return BayesWalkthrough(
        prior=prior,
        clamped_prior=clamped,
        prior_odds=prior_odds,
        result=bool(reading.result),
        tpr=reading.effective_tpr,
        fpr=reading.effective_fpr,
        likelihood_ratio=lr,
        posterior_odds=posterior_odds,
        posterior=posterior,
    )


def update_posterior(prior: float, reading: SensorReading) -> float:
    return explain_update(prior, reading).posterior


def hypothetical_posterior(prior: float, result: bool, tpr: float, fpr: float) -> float:
    """Posterior for a reading that has not been taken (used by VOI)."""
    odds = probability_to_odds(prior) * likelihood_ratio(result, tpr, fpr)
    return odds_to_probability(odds)


# ─── Spatial diffusion ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class DiffusionConfig:
    kernel_size:        int   = 1       # radius; 1 = 3×3 neighbourhood
    diffusion_strength: float = 0.15    # weight at distance 0 (0–1)
    distance_decay:     float = 1.5     # e-folding distance in cells

    def __post_init__(self):
        if int(self.kernel_size) != self.kernel_size or self.kernel_size < 0:
            raise ValueError(f"kernel_size must be a non-negative integer, got {self.kernel_size}")
        if not 0.0 <= self.diffusion_strength <= 1.0:
            raise ValueError(f"diffusion_strength must be in [0, 1], got {self.diffusion_strength}")
        if self.distance_decay <= 0:
            raise ValueError(f"distance_decay must be positive, got {self.distance_decay}")


DEFAULT_DIFFUSION_CONFIG = DiffusionConfig()


def apply_spatial_diffusion(grid: Grid, x: int, y: int,
                            updated_posterior: float,
                            config: DiffusionConfig = DEFAULT_DIFFUSION_CONFIG) -> int:
    """
    Spread the target's belief change to its neighbours.

    Must be called while grid[y][x] still holds the pre-update posterior.
    The target cell itself is not written. Returns the number of neighbours
    touched; an out-of-bounds target touches none.
    """
    if not in_bounds(grid, x, y):
        return 0
    height, width = grid_shape(grid)

    odds_ratio = probability_to_odds(updated_posterior) / probability_to_odds(
        grid[y][x].posterior_probability
    )
    if odds_ratio == 1.0:
        return 0

    k = int(config.kernel_size)
    touched = 0
    for dy in range(-k, k + 1):
        for dx in range(-k, k + 1):
            if dx == 0 and dy == 0:
                continue
            nx, ny = x + dx, y + dy
            if not (0 <= nx < width and 0 <= ny < height):
                continue
            weight = config.diffusion_strength * math.exp(-math.hypot(dx, dy) / config.distance_decay)
            neighbour = grid[ny][nx]
            odds = probability_to_odds(neighbour.posterior_probability) * odds_ratio ** weight
            neighbour.posterior_probability = min(1.0, max(0.0, odds_to_probability(odds)))
            touched += 1
    return touched


# ─── One recon step ───────────────────────────────────────────────────────────

def perform_recon(grid: Grid, x: int, y: int,
                  sensor: Union[str, SensorType],
                  turn: int,
                  seed,
                  diffusion: Optional[DiffusionConfig] = DEFAULT_DIFFUSION_CONFIG,
                  ) -> Optional[ReconResult]:
    """
    Observe cell (x, y) with one sensor and fuse the reading.

    Context comes from (seed, "context", x, y) and the reading from
    (seed, "recon", turn, x, y, sensor), so replaying the same action
    sequence with the same seed reproduces identical beliefs. Pass
    diffusion=None to update the target cell only.

    Returns None and leaves the grid untouched for an out-of-bounds cell.
    """
    if not in_bounds(grid, x, y):
        logger.warning(f"BAYES: recon at ({x},{y}) outside grid, ignored")
        return None

    height, width = grid_shape(grid)
    profile = get_sensor(sensor)
    cell = grid[y][x]

    context = cell_context(seed, x, y, max(width, height))
    reading = simulate_reading(profile.sensor_type, cell.has_hostile, context,
                               reading_rng(seed, turn, x, y, profile.sensor_type))
    walk = explain_update(cell.posterior_probability, reading)

    if diffusion is not None:
        apply_spatial_diffusion(grid, x, y, walk.posterior, diffusion)
    cell.posterior_probability = walk.posterior

    result = ReconResult(
        sensor=profile.sensor_type.value,
        result=reading.result,
        turn=turn,
        effective_tpr=reading.effective_tpr,
        effective_fpr=reading.effective_fpr,
        confidence=reading.confidence,
        prior_probability=walk.prior,
        posterior_probability=walk.posterior,
        context_summary=context.summary,
    )
    cell.recon_history.append(result)

    logger.info(
        f"BAYES: turn {turn} {profile.sensor_type.value}@({x},{y}) "
        f"{'+' if reading.result else '-'} | {walk.prior:.3f} → {walk.posterior:.3f} "
        f"(LR={walk.likelihood_ratio:.3f})"
    )
    return result
