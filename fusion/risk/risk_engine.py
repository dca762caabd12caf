"""
fusion/risk/risk_engine.py
─────────────────────────────────────────────────────────────────────────────
Bayesian Forward Operator  —  Monte-Carlo Risk Analysis & Policies

Samples joint realisations of the hidden grid state from current beliefs
and scores every strike centre against the simulated outcome distribution
instead of the point-estimate posterior.

Sampling schemes (MonteCarloConfig):
  independent   H ~ Bernoulli(p), I ~ Bernoulli(q) per cell
  correlated    Gaussian copula: smoothed N(0,1) fields rescaled to unit
                variance, H = Φ(z) < p. Marginals are preserved exactly,
                neighbouring cells co-vary.
  importance    hostile draws inside the focus window use the proposal
                q' = 0.3 + 0.4 p; each sample carries the likelihood ratio
                Π p/q' or (1−p)/(1−q'), normalised so the largest is 1.

Per-centre statistics (weighted by sample likelihood):
  mean, variance, σ, CVaR95/99 (mean of worst 5 % / 1 % tail), worst and
  best case, P(value < 0), expected shortfall (mean value given a loss).

Policies:
  greedy_ev     argmax EV                         confidence min(0.9, 0.5 + EV/100)
  risk_averse   argmax  mean − λ·σ                confidence min(0.9, 0.4 + U/50)
  recon_voi     argmax  VOI − recon cost          confidence min(0.8, 0.4 + VOI/20)

All draws come from (seed, "monte-carlo"), (seed, "monte-carlo-correlated")
or (seed, "importance-sampling") streams. Nothing here writes to the grid.
─────────────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional, Tuple, Union

import numpy as np
from scipy import ndimage
from scipy.special import ndtr

from fusion.config.game_config import GameConfig
from fusion.constants import DEFAULT_STRIKE_RADIUS, EPSILON
from fusion.decision.decision_engine import (
    MAX_ALTERNATIVES, PolicyRecommendation, check_radius, ev_heatmap,
    net_voi_heatmap, ranked_candidates, window_sum,
)
from fusion.grid.belief_grid import (
    Grid, grid_shape, infra_prior_array, posterior_array, window_bounds,
)
from fusion.rng.seeded_rng import sub_rng
from fusion.sensors.sensor_model import SensorType, get_sensor

logger = logging.getLogger("RISK")

PROPOSAL_FLOOR     = 0.3     # importance proposal q' = floor + span · p
PROPOSAL_SPAN      = 0.4
DEFAULT_NUM_SAMPLES = 200
RECENT_RECON_TURNS = 2       # recon_voi skips cells seen this often ...
RECENT_RECON_LIMIT = 2       # ... by the same sensor within this many turns

POLICY_KEYS = ("greedy_ev", "risk_averse", "recon_voi")


@dataclass(frozen=True)
class MonteCarloConfig:
    num_samples:             int
    seed:                    str
    use_importance_sampling: bool  = False
    spatial_correlation:     bool  = False
    correlation_sigma:       float = 1.0
    focus: Optional[Tuple[int, int, int]] = None    # (x, y, radius) for importance sampling

    def __post_init__(self):
        if int(self.num_samples) != self.num_samples or self.num_samples < 0:
            raise ValueError(f"num_samples must be a non-negative integer, got {self.num_samples}")
        if self.correlation_sigma <= 0:
            raise ValueError(f"correlation_sigma must be positive, got {self.correlation_sigma}")
        if self.focus is not None and (len(self.focus) != 3 or self.focus[2] < 0):
            raise ValueError(f"focus must be (x, y, radius) with radius >= 0, got {self.focus}")
        if not isinstance(self.seed, str):
            object.__setattr__(self, "seed", str(self.seed))


@dataclass
class MonteCarloSample:
    hostile_states: np.ndarray    # bool (H, W)
    infra_states:   np.ndarray    # bool (H, W)
    likelihood:     float = 1.0   # in (0, 1]

    def to_dict(self) -> dict:
        return {
            "hostile_states": self.hostile_states.tolist(),
            "infra_states":   self.infra_states.tolist(),
            "likelihood":     self.likelihood,
        }


@dataclass
class RiskMetrics:
    num_samples:         int   = 0
    expected_value:      float = 0.0
    variance:            float = 0.0
    std_dev:             float = 0.0
    cvar_95:             float = 0.0
    cvar_99:             float = 0.0
    worst_case:          float = 0.0
    best_case:           float = 0.0
    probability_of_loss: float = 0.0
    expected_shortfall:  float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


# ──────────────────────────────────────────────────────────────────────────────
# Sampling
# ──────────────────────────────────────────────────────────────────────────────

def _correlated_uniforms(rng, n: int, height: int, width: int, sigma: float) -> np.ndarray:
    """n smoothed unit-variance Gaussian fields mapped through Φ to U(0, 1)."""
    z = rng.generator.standard_normal((n, height, width))
    smoothed = ndimage.gaussian_filter(z, sigma=(0, sigma, sigma), mode="wrap")
    # wrap mode keeps the field stationary: every cell has variance Σ k²
    impulse = np.zeros((height, width))
    impulse[0, 0] = 1.0
    kernel = ndimage.gaussian_filter(impulse, sigma=sigma, mode="wrap")
    std = float(np.sqrt((kernel ** 2).sum()))
    return ndtr(smoothed / std)


def monte_carlo_samples(grid: Grid, config: MonteCarloConfig) -> List[MonteCarloSample]:
    """Joint draws of (hostile, infrastructure) state from current beliefs."""
    height, width = grid_shape(grid)
    n = int(config.num_samples)
    if n == 0 or height == 0:
        return []

    p = np.clip(posterior_array(grid), 0.0, 1.0)
    q = np.clip(infra_prior_array(grid), 0.0, 1.0)

    if config.use_importance_sampling:
        return _importance_samples(p, q, config)

    if config.spatial_correlation:
        rng = sub_rng(config.seed, "monte-carlo-correlated")
        u_hostile = _correlated_uniforms(rng, n, height, width, config.correlation_sigma)
        u_infra = _correlated_uniforms(rng, n, height, width, config.correlation_sigma)
    else:
        rng = sub_rng(config.seed, "monte-carlo")
        u = rng.uniform((n, height, width, 2))
        u_hostile, u_infra = u[..., 0], u[..., 1]

    hostile = u_hostile < p
    infra = u_infra < q
    logger.debug(
        f"RISK: {n} samples {'correlated' if config.spatial_correlation else 'independent'} "
        f"on {width}×{height}"
    )
    return [MonteCarloSample(hostile[i], infra[i], 1.0) for i in range(n)]


def _importance_samples(p: np.ndarray, q: np.ndarray,
                        config: MonteCarloConfig) -> List[MonteCarloSample]:
    height, width = p.shape
    n = int(config.num_samples)
    rng = sub_rng(config.seed, "importance-sampling")

    focus = np.zeros((height, width), dtype=bool)
    if config.focus is None:
        focus[:, :] = True
    else:
        fx, fy, fr = config.focus
        if 0 <= fx < width and 0 <= fy < height:
            x0, x1, y0, y1 = window_bounds(fx, fy, int(fr), width, height)
            focus[y0:y1, x0:x1] = True

    proposal = np.where(focus, PROPOSAL_FLOOR + PROPOSAL_SPAN * p, p)
    u = rng.uniform((n, height, width, 2))
    hostile = u[..., 0] < proposal
    infra = u[..., 1] < q

    pc = np.clip(p, EPSILON, 1.0 - EPSILON)
    prop = np.clip(proposal, EPSILON, 1.0 - EPSILON)
    log_ratio = np.where(hostile, np.log(pc / prop), np.log((1.0 - pc) / (1.0 - prop)))
    log_w = np.where(focus, log_ratio, 0.0).sum(axis=(1, 2))
    weights = np.exp(log_w - log_w.max())
    weights = np.maximum(weights, np.finfo(float).tiny)

    logger.debug(
        f"RISK: {n} importance samples, focus cells={int(focus.sum())} "
        f"ESS={weights.sum() ** 2 / (weights ** 2).sum():.1f}"
    )
    return [MonteCarloSample(hostile[i], infra[i], float(weights[i])) for i in range(n)]


# ──────────────────────────────────────────────────────────────────────────────
# Outcome distribution per strike centre
# ──────────────────────────────────────────────────────────────────────────────

def simulated_strike_values(samples: List[MonteCarloSample], radius: int,
                            config: GameConfig) -> np.ndarray:
    """Net strike value for every (sample, centre), shape (n, H, W)."""
    radius = check_radius(radius)
    hostile = np.stack([s.hostile_states for s in samples]).astype(float)
    infra = np.stack([s.infra_states for s in samples]).astype(float)
    return (config.hostile_value * window_sum(hostile, radius)
            - config.infra_penalty * window_sum(infra, radius)
            - config.strike_cost)


def _weights(samples: List[MonteCarloSample]) -> np.ndarray:
    w = np.array([s.likelihood for s in samples], dtype=float)
    return w / w.sum()


def _weighted_cvar(values: np.ndarray, weights: np.ndarray, alpha: float) -> np.ndarray:
    """Weighted mean of the worst (1 − alpha) tail along axis 0."""
    order = np.argsort(values, axis=0, kind="stable")
    sorted_values = np.take_along_axis(values, order, axis=0)
    sorted_w = weights[order]
    before = np.cumsum(sorted_w, axis=0) - sorted_w
    tail = before < (1.0 - alpha)
    tail_w = np.where(tail, sorted_w, 0.0)
    return (tail_w * sorted_values).sum(axis=0) / tail_w.sum(axis=0)


def _moments(values: np.ndarray, weights: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    w = weights.reshape((-1,) + (1,) * (values.ndim - 1))
    mean = (w * values).sum(axis=0)
    var = (w * (values - mean) ** 2).sum(axis=0)
    return mean, var


def evaluate_strike_risk(x: int, y: int, radius: int,
                         samples: List[MonteCarloSample],
                         config: GameConfig) -> RiskMetrics:
    """Risk profile of one strike centre; empty metrics when nothing applies."""
    radius = check_radius(radius)
    if not samples:
        return RiskMetrics()
    height, width = samples[0].hostile_states.shape
    if not (0 <= x < width and 0 <= y < height):
        return RiskMetrics(num_samples=len(samples))

    x0, x1, y0, y1 = window_bounds(x, y, radius, width, height)
    values = np.array([
        config.hostile_value * s.hostile_states[y0:y1, x0:x1].sum()
        - config.infra_penalty * s.infra_states[y0:y1, x0:x1].sum()
        - config.strike_cost
        for s in samples
    ], dtype=float)
    w = _weights(samples)

    mean, var = _moments(values, w)
    loss = values < 0
    loss_mass = float(w[loss].sum())
    return RiskMetrics(
        num_samples=len(samples),
        expected_value=float(mean),
        variance=float(var),
        std_dev=float(np.sqrt(var)),
        cvar_95=float(_weighted_cvar(values, w, 0.95)),
        cvar_99=float(_weighted_cvar(values, w, 0.99)),
        worst_case=float(values.min()),
        best_case=float(values.max()),
        probability_of_loss=loss_mass,
        expected_shortfall=float((w[loss] * values[loss]).sum() / loss_mass) if loss_mass > 0 else 0.0,
    )


def _samples_for(grid: Grid, config: GameConfig, label: str,
                 samples: Optional[List[MonteCarloSample]], num_samples: int):
    if samples is not None:
        return samples
    return monte_carlo_samples(grid, MonteCarloConfig(num_samples, f"{config.seed}-{label}"))


def risk_averse_heatmap(grid: Grid, radius: int, config: GameConfig,
                        risk_aversion: Optional[float] = None,
                        samples: Optional[List[MonteCarloSample]] = None,
                        num_samples: int = DEFAULT_NUM_SAMPLES) -> np.ndarray:
    """
    CVaR-adjusted strike value: mean − λ·(mean − CVaR95).
    λ = 0 gives the Monte-Carlo mean, λ = 1 the CVaR95 itself.
    """
    lam = config.risk_aversion if risk_aversion is None else risk_aversion
    samples = _samples_for(grid, config, "risk", samples, num_samples)
    if not samples:
        return np.zeros(grid_shape(grid))
    values = simulated_strike_values(samples, radius, config)
    w = _weights(samples)
    mean, _ = _moments(values, w)
    return mean - lam * (mean - _weighted_cvar(values, w, 0.95))


def variance_heatmap(grid: Grid, radius: int, config: GameConfig,
                     samples: Optional[List[MonteCarloSample]] = None,
                     num_samples: int = DEFAULT_NUM_SAMPLES) -> np.ndarray:
    """
    Weighted sample variance (points², not σ) of simulated strike value per
    centre. risk_averse_policy penalises σ = sqrt of this map.
    """
    samples = _samples_for(grid, config, "variance", samples, num_samples)
    if not samples:
        return np.zeros(grid_shape(grid))
    _, var = _moments(simulated_strike_values(samples, radius, config), _weights(samples))
    return var


def loss_risk_heatmap(grid: Grid, radius: int, config: GameConfig,
                      samples: Optional[List[MonteCarloSample]] = None,
                      num_samples: int = DEFAULT_NUM_SAMPLES) -> np.ndarray:
    """P(simulated strike value < 0) per centre."""
    samples = _samples_for(grid, config, "loss", samples, num_samples)
    if not samples:
        return np.zeros(grid_shape(grid))
    values = simulated_strike_values(samples, radius, config)
    w = _weights(samples).reshape((-1, 1, 1))
    return (w * (values < 0)).sum(axis=0)


# ──────────────────────────────────────────────────────────────────────────────
# Policy recommendations
# ──────────────────────────────────────────────────────────────────────────────

def _top(values: np.ndarray, mask: Optional[np.ndarray]):
    ranked = ranked_candidates(values, mask, limit=MAX_ALTERNATIVES + 1)
    if not ranked:
        return None, []
    return ranked[0], [c for c in ranked[1:] if c.value > 0]


def greedy_ev_policy(grid: Grid, config: GameConfig, budget: float,
                     radius: int = DEFAULT_STRIKE_RADIUS) -> PolicyRecommendation:
    ev = ev_heatmap(grid, radius, config)
    best, alternatives = (None, []) if ev.size == 0 or config.strike_cost > budget else _top(ev, None)
    if best is not None and best.value > 0:
        return PolicyRecommendation(
            policy="greedy_ev", action="strike", value=best.value,
            confidence=min(0.9, 0.5 + best.value / 100.0),
            reasoning=f"Highest expected value strike: +{best.value:.0f} points",
            x=best.x, y=best.y, radius=radius, alternatives=alternatives,
        )
    return PolicyRecommendation(policy="greedy_ev", action="wait", value=0.0, confidence=0.6,
                                reasoning="No profitable strikes available")


def risk_averse_policy(grid: Grid, config: GameConfig, budget: float,
                       risk_aversion: Optional[float] = None,
                       radius: int = DEFAULT_STRIKE_RADIUS,
                       num_samples: int = DEFAULT_NUM_SAMPLES) -> PolicyRecommendation:
    """
    Strike the centre maximising mean − λ·σ of the simulated value, with
    σ = sqrt(variance_heatmap()) so both terms are in points.
    """
    lam = config.risk_aversion if risk_aversion is None else risk_aversion
    samples = monte_carlo_samples(grid, MonteCarloConfig(num_samples, f"{config.seed}-policy"))
    best, alternatives = None, []
    if samples and config.strike_cost <= budget:
        values = simulated_strike_values(samples, radius, config)
        mean, var = _moments(values, _weights(samples))
        best, alternatives = _top(mean - lam * np.sqrt(var), None)

    if best is not None and best.value > 0:
        return PolicyRecommendation(
            policy="risk_averse", action="strike", value=best.value,
            confidence=min(0.9, 0.4 + best.value / 50.0),
            reasoning=f"Risk-adjusted optimal strike: +{best.value:.0f} utility (λ={lam})",
            x=best.x, y=best.y, radius=radius, alternatives=alternatives,
        )
    return PolicyRecommendation(policy="risk_averse", action="wait", value=0.0, confidence=0.5,
                                reasoning="No risk-acceptable strikes available")


def _recently_observed(grid: Grid, sensor_name: str, turn: int) -> np.ndarray:
    return np.array([
        [sum(1 for r in c.recon_history
             if r.sensor == sensor_name and r.turn >= turn - RECENT_RECON_TURNS) >= RECENT_RECON_LIMIT
         for c in row]
        for row in grid
    ], dtype=bool)


def recon_voi_policy(grid: Grid, config: GameConfig, budget: float, turn: int,
                     sensor: Union[str, SensorType],
                     radius: int = DEFAULT_STRIKE_RADIUS) -> PolicyRecommendation:
    sensor_name = get_sensor(sensor).sensor_type.value
    net, cost = net_voi_heatmap(grid, sensor, config, radius)
    best, alternatives = None, []
    if net.size:
        mask = (cost <= budget) & ~_recently_observed(grid, sensor_name, turn)
        best, alternatives = _top(net, mask)

    if best is not None and best.value > 0:
        return PolicyRecommendation(
            policy="recon_voi", action="recon", value=best.value,
            confidence=min(0.8, 0.4 + best.value / 20.0),
            reasoning=f"Highest information value: +{best.value:.0f} net VOI",
            x=best.x, y=best.y, sensor=sensor_name, alternatives=alternatives,
        )
    return PolicyRecommendation(policy="recon_voi", action="wait", value=0.0, confidence=0.3,
                                reasoning="No valuable reconnaissance opportunities")


def policy_recommendations(grid: Grid, config: GameConfig, budget: float, turn: int,
                           sensor: Union[str, SensorType] = SensorType.DRONE,
                           risk_aversion: Optional[float] = None,
                           radius: int = DEFAULT_STRIKE_RADIUS) -> Dict[str, PolicyRecommendation]:
    """One recommendation per policy, keyed greedy_ev / risk_averse / recon_voi."""
    recs = dict(zip(POLICY_KEYS, (
        greedy_ev_policy(grid, config, budget, radius),
        risk_averse_policy(grid, config, budget, risk_aversion, radius),
        recon_voi_policy(grid, config, budget, turn, sensor, radius),
    )))
    summary = " ".join(f"{k}={r.action}@({r.x},{r.y})" for k, r in recs.items())
    logger.info(f"RISK: turn {turn} budget {budget:.0f} | {summary}")
    return recs
