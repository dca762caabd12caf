"""
fusion/decision/decision_engine.py
─────────────────────────────────────────────────────────────────────────────
Bayesian Forward Operator  —  Strike Expected Value & Value of Information

Strike model (square area of effect, radius r covers (2r+1)² cells before
clipping at the grid edge):

  EV(c)        = hostile_value · Σ pᵢ  −  infra_penalty · Σ qᵢ  −  strike_cost
  P(infra hit) = 1 − Π (1 − qᵢ)

  pᵢ = posterior hostile probability, qᵢ = infrastructure prior, i ∈ AoE(c)

Heatmaps evaluate every centre at once with window sums over an integral
image, so a full grid costs O(H·W) regardless of radius.

Value of information for observing cell k with a sensor of context-adjusted
rates (TPR, FPR):

  P(+)  = p·TPR + (1 − p)·FPR
  p±    = posterior after a ± reading (odds-form update)
  M     = best EV among strike centres whose AoE covers k
  A     = max(0, best EV among centres whose AoE misses k)
  VOI   = P(+)·max(A, M + hv·(p₊ − p)) + P(−)·max(A, M + hv·(p₋ − p)) − max(A, M)

A reading at k moves every covering centre by the same hv·Δp and leaves the
others (and declining to strike, value 0) untouched. VOI is therefore the
expected gain of a convex function of a mean-preserving belief change: never
negative, positive only when the reading can change which action wins, and
largest for beliefs near 0.5.

Truth flags are read by execute_strike() only.
─────────────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional, Tuple, Union

import numpy as np
from scipy import ndimage

from fusion.config.game_config import GameConfig
from fusion.constants import DEFAULT_STRIKE_RADIUS, EPSILON
from fusion.grid.belief_grid import (
    Grid, grid_shape, in_bounds, infra_prior_array, posterior_array, window_bounds,
)
from fusion.inference.bayes_updater import clamp_probability, hypothetical_posterior
from fusion.sensors.sensor_model import SensorType, cell_context, effective_performance, get_sensor

logger = logging.getLogger("DECISION")

# Fraction of the collateral threshold above which a strike needs confirmation
BORDERLINE_BAND      = 0.8
# Turns remaining at or below which recommend_action favours striking
TIME_PRESSURE_TURNS  = 2
# Recon preferred over an immediate strike when VOI exceeds this fraction of its EV
RECON_PREFERENCE     = 0.3
MAX_ALTERNATIVES     = 3


# ──────────────────────────────────────────────────────────────────────────────
# Records
# ──────────────────────────────────────────────────────────────────────────────

@dataclass
class StrikeOutcome:
    center_x:              int
    center_y:              int
    radius:                int
    expected_value:        float = 0.0
    cost:                  float = 0.0
    infra_hit_probability: float = 0.0
    expected_hostiles_hit: float = 0.0
    expected_infra_hit:    float = 0.0
    expected_reward:       float = 0.0
    expected_penalty:      float = 0.0
    affected_cells: List[Tuple[int, int]] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class StrikeValidation:
    allowed:               bool
    requires_confirmation: bool
    reason:                str
    outcome:               StrikeOutcome

    def to_dict(self) -> dict:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)


@dataclass
class StrikeResult:
    executed:      bool
    hostiles_hit:  int   = 0
    infra_hit:     int   = 0
    total_reward:  float = 0.0
    total_penalty: float = 0.0
    cost:          float = 0.0
    net_points:    float = 0.0
    affected_cells: List[Dict[str, object]] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)


@dataclass
class VOIAnalysis:
    x: int
    y: int
    current_ev:              float   # value of the best action now (0 = do nothing)
    expected_ev_after_recon: float
    value_of_information:    float
    recon_cost:              float
    net_voi:                 float   # VOI − recon cost
    probability_positive:    float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Candidate:
    x:     int
    y:     int
    value: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class PolicyRecommendation:
    policy:     str
    action:     str                      # "strike" | "recon" | "wait"
    value:      float
    confidence: float
    reasoning:  str
    x:          Optional[int] = None
    y:          Optional[int] = None
    sensor:     Optional[str] = None
    radius:     Optional[int] = None
    alternatives: List[Candidate] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)


# ──────────────────────────────────────────────────────────────────────────────
# Area of effect
# ──────────────────────────────────────────────────────────────────────────────

def check_radius(radius: int) -> int:
    if int(radius) != radius or radius < 0:
        raise ValueError(f"Strike radius must be a non-negative integer, got {radius}")
    return int(radius)


def aoe_cells(cx: int, cy: int, radius: int, width: int, height: int) -> List[Tuple[int, int]]:
    """(x, y) cells of the square window around (cx, cy), clipped to the grid."""
    radius = check_radius(radius)
    if not (0 <= cx < width and 0 <= cy < height):
        return []
    x0, x1, y0, y1 = window_bounds(cx, cy, radius, width, height)
    return [(x, y) for y in range(y0, y1) for x in range(x0, x1)]


def window_sum(values: np.ndarray, radius: int) -> np.ndarray:
    """
    Sum of values over the clipped (2r+1)² window centred on every cell.
    Works on the last two axes, so a stack of Monte-Carlo samples
    (n, H, W) is summed per sample.
    """
    values = np.asarray(values, dtype=float)
    h, w = values.shape[-2:]
    integral = np.zeros(values.shape[:-2] + (h + 1, w + 1))
    integral[..., 1:, 1:] = values.cumsum(axis=-2).cumsum(axis=-1)

    ys = np.arange(h)
    xs = np.arange(w)
    y0 = np.clip(ys - radius, 0, h)
    y1 = np.clip(ys + radius + 1, 0, h)
    x0 = np.clip(xs - radius, 0, w)
    x1 = np.clip(xs + radius + 1, 0, w)

    def corner(rows, cols):
        return integral[..., rows, :][..., :, cols]

    return corner(y1, x1) - corner(y0, x1) - corner(y1, x0) + corner(y0, x0)


# ──────────────────────────────────────────────────────────────────────────────
# Strike expected value
# ──────────────────────────────────────────────────────────────────────────────

def strike_ev(grid: Grid, x: int, y: int, radius: int, config: GameConfig) -> StrikeOutcome:
    """
    Expected outcome of a strike centred on (x, y) under current beliefs.
    An out-of-bounds centre yields an empty outcome (no cells, no cost).
    """
    radius = check_radius(radius)
    height, width = grid_shape(grid)
    cells = aoe_cells(x, y, radius, width, height)
    if not cells:
        return StrikeOutcome(center_x=x, center_y=y, radius=radius)

    hostiles = sum(grid[cy][cx].posterior_probability for cx, cy in cells)
    infra = sum(grid[cy][cx].infra_prior_probability for cx, cy in cells)
    p_no_infra = math.prod(1.0 - grid[cy][cx].infra_prior_probability for cx, cy in cells)

    reward = hostiles * config.hostile_value
    penalty = infra * config.infra_penalty
    return StrikeOutcome(
        center_x=x,
        center_y=y,
        radius=radius,
        expected_value=reward - penalty - config.strike_cost,
        cost=config.strike_cost,
        infra_hit_probability=min(1.0, max(0.0, 1.0 - p_no_infra)),
        expected_hostiles_hit=hostiles,
        expected_infra_hit=infra,
        expected_reward=reward,
        expected_penalty=penalty,
        affected_cells=cells,
    )


def ev_heatmap(grid: Grid, radius: int, config: GameConfig) -> np.ndarray:
    """Strike EV with every cell as centre, shape (height, width)."""
    radius = check_radius(radius)
    if grid_shape(grid) == (0, 0):
        return np.zeros((0, 0))
    hostiles = window_sum(posterior_array(grid), radius)
    infra = window_sum(infra_prior_array(grid), radius)
    return config.hostile_value * hostiles - config.infra_penalty * infra - config.strike_cost


def infra_hit_heatmap(grid: Grid, radius: int) -> np.ndarray:
    """P(at least one infrastructure cell hit) for every centre."""
    radius = check_radius(radius)
    if grid_shape(grid) == (0, 0):
        return np.zeros((0, 0))
    q = np.clip(infra_prior_array(grid), 0.0, 1.0 - 1e-12)
    return np.clip(1.0 - np.exp(window_sum(np.log1p(-q), radius)), 0.0, 1.0)


# ──────────────────────────────────────────────────────────────────────────────
# Validation and execution
# ──────────────────────────────────────────────────────────────────────────────

def validate_strike(grid: Grid, x: int, y: int, radius: int, config: GameConfig,
                    remaining_budget: Optional[float] = None,
                    override: bool = False) -> StrikeValidation:
    """
    Decide whether a strike may go ahead. The computed outcome is always
    attached, whatever the verdict.

      unaffordable                      → blocked (no override)
      P(infra hit) > threshold          → blocked, or allowed + confirm with override
      P(infra hit) > 0.8 · threshold    → allowed + confirm
      EV < 0                            → allowed + confirm
    """
    outcome = strike_ev(grid, x, y, radius, config)
    budget = config.initial_budget if remaining_budget is None else remaining_budget
    threshold = config.collateral_threshold
    risk = outcome.infra_hit_probability

    if not outcome.affected_cells:
        verdict = StrikeValidation(False, False, f"Strike centre ({x},{y}) is outside the grid", outcome)
    elif config.strike_cost > budget:
        verdict = StrikeValidation(
            False, False,
            f"Insufficient budget: strike costs {config.strike_cost:.0f}, {budget:.0f} remaining",
            outcome,
        )
    elif risk > threshold:
        message = f"High collateral risk: {risk * 100:.1f}% > {threshold * 100:.1f}% threshold"
        if override:
            verdict = StrikeValidation(True, True, f"{message} (operator override)", outcome)
        else:
            verdict = StrikeValidation(False, True, message, outcome)
    elif risk > BORDERLINE_BAND * threshold:
        verdict = StrikeValidation(
            True, True,
            f"Borderline collateral risk: {risk * 100:.1f}% near {threshold * 100:.1f}% threshold",
            outcome,
        )
    elif outcome.expected_value < 0:
        verdict = StrikeValidation(
            True, True, f"Negative expected value: {outcome.expected_value:.0f} points", outcome,
        )
    else:
        verdict = StrikeValidation(True, False, "Strike approved", outcome)

    if not verdict.allowed:
        logger.warning(f"DECISION: strike ({x},{y}) r={radius} blocked | {verdict.reason}")
    else:
        logger.debug(f"DECISION: strike ({x},{y}) r={radius} | {verdict.reason}")
    return verdict


def execute_strike(grid: Grid, x: int, y: int, radius: int, config: GameConfig) -> StrikeResult:
    """
    Resolve a strike against ground truth.

    Each hostile inside the AoE is scored once and marked neutralized;
    the truth flags themselves are left untouched. Out-of-bounds centres
    execute nothing and cost nothing.
    """
    radius = check_radius(radius)
    height, width = grid_shape(grid)
    cells = aoe_cells(x, y, radius, width, height)
    if not cells:
        logger.warning(f"DECISION: strike at ({x},{y}) outside grid, not executed")
        return StrikeResult(executed=False)

    hostiles_hit = 0
    infra_hit = 0
    detail = []
    for cx, cy in cells:
        cell = grid[cy][cx]
        was_hostile = cell.has_hostile and not cell.neutralized
        if was_hostile:
            hostiles_hit += 1
            cell.neutralized = True
        if cell.has_infrastructure:
            infra_hit += 1
        detail.append({"x": cx, "y": cy,
                       "was_hostile": was_hostile,
                       "was_infrastructure": cell.has_infrastructure})

    reward = hostiles_hit * config.hostile_value
    penalty = infra_hit * config.infra_penalty
    result = StrikeResult(
        executed=True,
        hostiles_hit=hostiles_hit,
        infra_hit=infra_hit,
        total_reward=reward,
        total_penalty=penalty,
        cost=config.strike_cost,
        net_points=reward - penalty - config.strike_cost,
        affected_cells=detail,
    )
    logger.info(
        f"DECISION: strike ({x},{y}) r={radius} | hostiles={hostiles_hit} "
        f"infra={infra_hit} net={result.net_points:+.0f}"
    )
    return result


# ──────────────────────────────────────────────────────────────────────────────
# Value of information
# ──────────────────────────────────────────────────────────────────────────────

def sensor_rate_maps(seed, sensor: Union[str, SensorType],
                     width: int, height: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Per-cell context-adjusted (TPR, FPR, cost) for one sensor."""
    profile = get_sensor(sensor)
    tpr = np.empty((height, width))
    fpr = np.empty((height, width))
    cost = np.empty((height, width))
    grid_size = max(width, height)
    for y in range(height):
        for x in range(width):
            perf = effective_performance(profile.sensor_type, cell_context(seed, x, y, grid_size))
            tpr[y, x] = perf.effective_tpr
            fpr[y, x] = perf.effective_fpr
            cost[y, x] = perf.effective_cost
    return tpr, fpr, cost


def local_best_ev(ev: np.ndarray, radius: int) -> np.ndarray:
    """Best strike EV among the centres whose AoE covers each cell."""
    size = 2 * check_radius(radius) + 1
    return ndimage.maximum_filter(ev, size=size, mode="constant", cval=-np.inf)


def excluded_best_ev(ev: np.ndarray, radius: int) -> np.ndarray:
    """
    Best strike EV among the centres whose AoE does not cover each cell,
    −inf where every centre covers it. The complement of a Chebyshev
    window is four half-planes, so prefix/suffix maxima of the row and
    column bests give the answer in O(H·W).
    """
    radius = check_radius(radius)
    ev = np.asarray(ev, dtype=float)

    def outside(best):
        n = best.size
        prefix = np.maximum.accumulate(best)
        suffix = np.maximum.accumulate(best[::-1])[::-1]
        lo = np.arange(n) - radius - 1
        hi = np.arange(n) + radius + 1
        below = np.where(lo >= 0, prefix[np.clip(lo, 0, n - 1)], -np.inf)
        above = np.where(hi < n, suffix[np.clip(hi, 0, n - 1)], -np.inf)
        return np.maximum(below, above)

    rows = outside(ev.max(axis=1))
    cols = outside(ev.max(axis=0))
    return np.maximum(rows[:, None], cols[None, :])


def _voi_terms(p, tpr, fpr, best, alternative, hostile_value):
    """Vectorised (P(+), expected value after observing, VOI)."""
    p = np.clip(p, EPSILON, 1.0 - EPSILON)
    tpr = np.clip(tpr, EPSILON, 1.0 - EPSILON)
    fpr = np.clip(fpr, EPSILON, 1.0 - EPSILON)

    prior_odds = p / (1.0 - p)
    odds_pos = prior_odds * (tpr / fpr)
    odds_neg = prior_odds * ((1.0 - tpr) / (1.0 - fpr))
    p_pos = odds_pos / (1.0 + odds_pos)
    p_neg = odds_neg / (1.0 + odds_neg)

    alternative = np.maximum(0.0, alternative)
    prob_pos = p * tpr + (1.0 - p) * fpr
    after = (prob_pos * np.maximum(alternative, best + hostile_value * (p_pos - p))
             + (1.0 - prob_pos) * np.maximum(alternative, best + hostile_value * (p_neg - p)))
    voi = np.maximum(0.0, after - np.maximum(alternative, best))
    return prob_pos, after, voi


def voi_heatmap(grid: Grid, sensor: Union[str, SensorType], config: GameConfig,
                radius: int = DEFAULT_STRIKE_RADIUS, seed=None) -> np.ndarray:
    """
    Gross VOI of one more observation of each cell, shape (height, width).
    Sensor rates come from each cell's context under `seed` (config.seed
    when omitted).
    """
    radius = check_radius(radius)
    height, width = grid_shape(grid)
    if height == 0:
        return np.zeros((0, 0))
    seed = config.seed if seed is None else seed

    tpr, fpr, _ = sensor_rate_maps(seed, sensor, width, height)
    ev = ev_heatmap(grid, radius, config)
    _, _, voi = _voi_terms(posterior_array(grid), tpr, fpr,
                           local_best_ev(ev, radius), excluded_best_ev(ev, radius),
                           config.hostile_value)
    return voi


def recon_voi(grid: Grid, x: int, y: int, sensor: Union[str, SensorType],
              config: GameConfig, radius: int = DEFAULT_STRIKE_RADIUS,
              seed=None) -> Optional[VOIAnalysis]:
    """VOI breakdown for observing (x, y); None for an out-of-bounds cell."""
    radius = check_radius(radius)
    if not in_bounds(grid, x, y):
        return None
    height, width = grid_shape(grid)
    seed = config.seed if seed is None else seed

    perf = effective_performance(sensor, cell_context(seed, x, y, max(width, height)))
    tpr, fpr = perf.effective_tpr, perf.effective_fpr
    ev = ev_heatmap(grid, radius, config)
    best = float(local_best_ev(ev, radius)[y, x])
    alternative = max(0.0, float(excluded_best_ev(ev, radius)[y, x]))
    hv = config.hostile_value

    p = clamp_probability(grid[y][x].posterior_probability)
    p_pos = hypothetical_posterior(p, True, tpr, fpr)
    p_neg = hypothetical_posterior(p, False, tpr, fpr)
    prob_pos = p * tpr + (1.0 - p) * fpr

    current = max(alternative, best)
    after = (prob_pos * max(alternative, best + hv * (p_pos - p))
             + (1.0 - prob_pos) * max(alternative, best + hv * (p_neg - p)))
    voi = max(0.0, after - current)

    return VOIAnalysis(
        x=x, y=y,
        current_ev=current,
        expected_ev_after_recon=after,
        value_of_information=voi,
        recon_cost=float(perf.effective_cost),
        net_voi=voi - perf.effective_cost,
        probability_positive=prob_pos,
    )


def net_voi_heatmap(grid: Grid, sensor: Union[str, SensorType], config: GameConfig,
                    radius: int = DEFAULT_STRIKE_RADIUS, seed=None) -> Tuple[np.ndarray, np.ndarray]:
    """(VOI − effective recon cost, effective recon cost) per cell."""
    height, width = grid_shape(grid)
    if height == 0:
        return np.zeros((0, 0)), np.zeros((0, 0))
    seed = config.seed if seed is None else seed
    _, _, cost = sensor_rate_maps(seed, sensor, width, height)
    return voi_heatmap(grid, sensor, config, radius, seed) - cost, cost


# ──────────────────────────────────────────────────────────────────────────────
# Optimal actions
# ──────────────────────────────────────────────────────────────────────────────

def ranked_candidates(values: np.ndarray, mask: Optional[np.ndarray] = None,
                      limit: int = MAX_ALTERNATIVES + 1) -> List[Candidate]:
    """Top cells by value, ties broken row-major; masked-out cells skipped."""
    flat = np.where(mask, values, -np.inf).ravel() if mask is not None else values.ravel()
    order = np.argsort(-flat, kind="stable")
    width = values.shape[1]
    out = []
    for idx in order[:limit]:
        if not np.isfinite(flat[idx]):
            break
        out.append(Candidate(x=int(idx % width), y=int(idx // width), value=float(flat[idx])))
    return out


def find_optimal_strike(grid: Grid, radius: int, config: GameConfig) -> Optional[Candidate]:
    """Centre with the highest EV, or None for an empty grid."""
    ev = ev_heatmap(grid, radius, config)
    if ev.size == 0:
        return None
    return ranked_candidates(ev, limit=1)[0]


def find_optimal_recon(grid: Grid, sensor: Union[str, SensorType], config: GameConfig,
                       radius: int = DEFAULT_STRIKE_RADIUS, seed=None) -> Optional[Candidate]:
    """Cell with the highest net VOI, or None when no recon pays for itself."""
    net, _ = net_voi_heatmap(grid, sensor, config, radius, seed)
    if net.size == 0:
        return None
    best = ranked_candidates(net, limit=1)[0]
    return best if best.value > 0 else None


def recommend_action(grid: Grid, config: GameConfig,
                     remaining_budget: float, current_turn: int,
                     sensor: Union[str, SensorType] = SensorType.DRONE,
                     radius: int = DEFAULT_STRIKE_RADIUS) -> PolicyRecommendation:
    """
    Single blended recommendation: strike under time or budget pressure,
    otherwise recon when its net VOI is worth a meaningful share of the
    best strike, otherwise strike.
    """
    sensor_name = get_sensor(sensor).sensor_type.value
    strike = find_optimal_strike(grid, radius, config)
    recon = find_optimal_recon(grid, sensor, config, radius)

    can_strike = remaining_budget >= config.strike_cost
    can_recon = remaining_budget >= config.recon_cost
    time_pressure = config.max_turns - current_turn <= TIME_PRESSURE_TURNS

    def strike_rec(confidence, reasoning):
        return PolicyRecommendation(policy="blended", action="strike", value=strike.value,
                                    confidence=confidence, reasoning=reasoning,
                                    x=strike.x, y=strike.y, radius=radius)

    def recon_rec(confidence, reasoning):
        return PolicyRecommendation(policy="blended", action="recon", value=recon.value,
                                    confidence=confidence, reasoning=reasoning,
                                    x=recon.x, y=recon.y, sensor=sensor_name)

    if (time_pressure or not can_recon) and strike and can_strike and strike.value > 0:
        return strike_rec(0.8, "Time pressure: execute best strike" if time_pressure
                          else "Limited budget: execute available strike")

    if recon and strike and can_recon and can_strike:
        if recon.value > strike.value * RECON_PREFERENCE:
            return recon_rec(0.7, "Information gathering will improve future decisions")
        return strike_rec(0.8, "Immediate strike has better expected value than reconnaissance")

    if recon and can_recon:
        return recon_rec(0.6, "Gather more information before acting")

    if strike and can_strike and strike.value > 0:
        return strike_rec(0.6, "Execute available strike opportunity")

    return PolicyRecommendation(policy="blended", action="wait", value=0.0, confidence=0.5,
                                reasoning="Insufficient budget or no profitable actions available")
