"""
fusion/config/game_config.py
Bayesian Forward Operator — Configuration Records

Read-only configuration handed to the fusion core by the orchestration layer.
Every record validates itself in __post_init__: a malformed configuration
fails fast at construction instead of surfacing as garbage heatmaps later.

Defaults mirror the reference game setup:
  - 14×14 grid, budget 1000, 10 turns
  - hostile value 100, infrastructure penalty 200
  - strike cost 50, base recon cost 10
  - collateral threshold 10 % P(infra hit), risk aversion λ = 0.5
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field, asdict
from typing import Any, Dict


def _require_probability(name: str, value: float, open_interval: bool = True) -> None:
    if open_interval:
        if not 0.0 < value < 1.0:
            raise ValueError(f"{name} must be in (0, 1), got {value}")
    elif not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be in [0, 1], got {value}")


def _require_positive(name: str, value: float) -> None:
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")


def _require_non_negative(name: str, value: float) -> None:
    if value < 0:
        raise ValueError(f"{name} must be non-negative, got {value}")


# ─── Truth generation ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class SpatialFieldConfig:
    """Parameters of the generative hostile / infrastructure fields."""
    noise_scale:            float = 1.0    # std of per-cell Gaussian noise
    smoothing_sigma:        float = 1.5    # Gaussian smoothing kernel sigma (cells)
    logistic_steepness:     float = 1.2    # slope of the logistic transform
    hostile_base_probability: float = 0.25
    infra_base_probability:   float = 0.05

    def __post_init__(self):
        _require_non_negative("noise_scale", self.noise_scale)
        _require_non_negative("smoothing_sigma", self.smoothing_sigma)
        _require_positive("logistic_steepness", self.logistic_steepness)
        _require_probability("hostile_base_probability", self.hostile_base_probability)
        _require_probability("infra_base_probability", self.infra_base_probability)


@dataclass(frozen=True)
class BetaPriorConfig:
    """Beta shape parameters for the per-cell belief priors."""
    hostile_alpha: float = 2.0     # mean 2/8 = 0.25
    hostile_beta:  float = 6.0
    infra_alpha:   float = 1.0     # mean 1/20 = 0.05
    infra_beta:    float = 19.0

    def __post_init__(self):
        for name in ("hostile_alpha", "hostile_beta", "infra_alpha", "infra_beta"):
            _require_positive(name, getattr(self, name))

    @property
    def hostile_mean(self) -> float:
        return self.hostile_alpha / (self.hostile_alpha + self.hostile_beta)

    @property
    def infra_mean(self) -> float:
        return self.infra_alpha / (self.infra_alpha + self.infra_beta)


DEFAULT_SPATIAL_CONFIG = SpatialFieldConfig()
DEFAULT_BETA_PRIORS    = BetaPriorConfig()
DEFAULT_SEED           = "bfo-default"


# ─── Game configuration ───────────────────────────────────────────────────────

@dataclass(frozen=True)
class GameConfig:
    """
    Scenario economics and sizing.

    The fusion core only reads this record; budget and turn bookkeeping stay
    with the caller.
    """
    grid_size:            int   = 14
    initial_budget:       float = 1000.0
    max_turns:            int   = 10
    hostile_value:        float = 100.0   # reward per hostile neutralised
    infra_penalty:        float = 200.0   # penalty per infrastructure cell hit
    strike_cost:          float = 50.0
    recon_cost:           float = 10.0    # minimum recon cost (before context modifiers)
    collateral_threshold: float = 0.1     # max allowed P(at least one infra hit)
    risk_aversion:        float = 0.5     # λ for risk-adjusted utilities
    seed:                 str   = DEFAULT_SEED
    spatial_field:        SpatialFieldConfig = field(default_factory=SpatialFieldConfig)
    beta_priors:          BetaPriorConfig    = field(default_factory=BetaPriorConfig)

    def __post_init__(self):
        if int(self.grid_size) != self.grid_size or self.grid_size <= 0:
            raise ValueError(f"grid_size must be a positive integer, got {self.grid_size}")
        if int(self.max_turns) != self.max_turns or self.max_turns <= 0:
            raise ValueError(f"max_turns must be a positive integer, got {self.max_turns}")
        _require_non_negative("initial_budget", self.initial_budget)
        _require_non_negative("hostile_value", self.hostile_value)
        _require_non_negative("infra_penalty", self.infra_penalty)
        _require_non_negative("strike_cost", self.strike_cost)
        _require_non_negative("recon_cost", self.recon_cost)
        _require_probability("collateral_threshold", self.collateral_threshold, open_interval=False)
        _require_non_negative("risk_aversion", self.risk_aversion)
        if not isinstance(self.seed, str):
            object.__setattr__(self, "seed", str(self.seed))

    @property
    def width(self) -> int:
        return int(self.grid_size)

    @property
    def height(self) -> int:
        return int(self.grid_size)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GameConfig":
        """Build from plain data; nested field/prior dicts are promoted."""
        payload = dict(data)
        if isinstance(payload.get("spatial_field"), dict):
            payload["spatial_field"] = SpatialFieldConfig(**payload["spatial_field"])
        if isinstance(payload.get("beta_priors"), dict):
            payload["beta_priors"] = BetaPriorConfig(**payload["beta_priors"])
        return cls(**payload)


def daily_seed(day: datetime.date) -> str:
    """Shared seed for everyone playing on the same calendar day."""
    return f"daily-{day.isoformat()}"
