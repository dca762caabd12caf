"""
fusion/sensors/sensor_model.py
─────────────────────────────────────────────────────────────────────────────
Bayesian Forward Operator  —  Context-Aware Sensor Model

Three sensor types are characterised by a base detection profile plus
multiplicative modifiers per environmental factor:

  DRONE    Electro-optical imagery drone.   TPR 0.85  FPR 0.15  cost 10
  SIGINT   Signals intelligence.            TPR 0.60  FPR 0.05  cost 15
  GROUND   Ground spotter / HUMINT.         TPR 0.75  FPR 0.10  cost 20

Effective performance in a cell:

  TPR_eff  = clamp(TPR  · Π modifier_TPR(factor),  0.01, 0.99)
  FPR_eff  = clamp(FPR  · Π modifier_FPR(factor),  0.01, 0.99)
  cost_eff = ⌈cost · m_terrain · m_weather⌉

Context is a per-cell draw of (terrain, lighting, weather, concealment,
jamming) from stream (seed, "context", x, y), so the same cell always has
the same context for a given game seed.

Readings:
  raw signal  ~ N(1 if hostile else 0, 0.3)
  result      ~ Bernoulli(TPR_eff if hostile else FPR_eff)
  confidence  = clamp((base + |raw| / 2) / 2, 0.1, 0.9)
                base = TPR_eff if hostile else 1 − FPR_eff

Usage
─────
  from fusion.sensors.sensor_model import SensorType, cell_context, effective_performance

  ctx  = cell_context(config.seed, x, y, config.grid_size)
  perf = effective_performance(SensorType.DRONE, ctx)
─────────────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Dict, Union

from fusion.rng.seeded_rng import SeededRNG, sub_rng

logger = logging.getLogger("SENSOR")

TPR_FPR_MIN        = 0.01
TPR_FPR_MAX        = 0.99
CONFIDENCE_MIN     = 0.1
CONFIDENCE_MAX     = 0.9
RAW_SIGNAL_STD     = 0.3


# ──────────────────────────────────────────────────────────────────────────────
# Context factors
# ──────────────────────────────────────────────────────────────────────────────

class SensorType(str, Enum):
    DRONE  = "drone"
    SIGINT = "sigint"
    GROUND = "ground"


class Terrain(str, Enum):
    URBAN    = "urban"
    FOREST   = "forest"
    DESERT   = "desert"
    MOUNTAIN = "mountain"
    OPEN     = "open"


class Lighting(str, Enum):
    DAY      = "day"
    DUSK     = "dusk"
    NIGHT    = "night"
    INFRARED = "infrared"


class Weather(str, Enum):
    CLEAR    = "clear"
    OVERCAST = "overcast"
    RAIN     = "rain"
    FOG      = "fog"
    STORM    = "storm"


class Concealment(str, Enum):
    NONE     = "none"
    LIGHT    = "light"
    MODERATE = "moderate"
    HEAVY    = "heavy"


class Jamming(str, Enum):
    NONE     = "none"
    LIGHT    = "light"
    MODERATE = "moderate"
    HEAVY    = "heavy"


# Draw weights, in enum declaration order
TERRAIN_WEIGHTS     = (0.2, 0.2, 0.2, 0.2, 0.2)
LIGHTING_WEIGHTS    = (0.4, 0.2, 0.2, 0.2)
WEATHER_WEIGHTS     = (0.4, 0.25, 0.15, 0.1, 0.1)
CONCEALMENT_WEIGHTS = (0.3, 0.3, 0.25, 0.15)
JAMMING_WEIGHTS     = (0.5, 0.25, 0.15, 0.1)


@dataclass(frozen=True)
class CellContext:
    terrain:     Terrain
    lighting:    Lighting
    weather:     Weather
    concealment: Concealment
    jamming:     Jamming

    @property
    def summary(self) -> str:
        return (f"{self.terrain.value} terrain, {self.lighting.value} lighting, "
                f"{self.weather.value} weather, {self.concealment.value} concealment, "
                f"{self.jamming.value} jamming")

    def to_dict(self) -> Dict[str, str]:
        return {k: v.value for k, v in asdict(self).items()}


DEFAULT_CONTEXT = CellContext(
    terrain=Terrain.OPEN,
    lighting=Lighting.DAY,
    weather=Weather.CLEAR,
    concealment=Concealment.LIGHT,
    jamming=Jamming.NONE,
)


# ──────────────────────────────────────────────────────────────────────────────
# Sensor catalog
# ──────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class SensorProfile:
    """
    Base performance and context modifiers for one sensor type.

    Modifier tables map each factor value to a multiplier on the base rate.
    A multiplier above 1 on TPR means better detection; above 1 on FPR
    means more false alarms.
    """
    sensor_type: SensorType
    name:        str
    description: str
    base_tpr:    float
    base_fpr:    float
    base_cost:   float
    tpr_modifiers:  Dict[str, Dict[str, float]]
    fpr_modifiers:  Dict[str, Dict[str, float]]
    cost_modifiers: Dict[str, Dict[str, float]]


def _modifiers(terrain, lighting, weather, concealment, jamming) -> Dict[str, Dict[str, float]]:
    return {
        "terrain":     dict(zip([t.value for t in Terrain], terrain)),
        "lighting":    dict(zip([v.value for v in Lighting], lighting)),
        "weather":     dict(zip([w.value for w in Weather], weather)),
        "concealment": dict(zip([c.value for c in Concealment], concealment)),
        "jamming":     dict(zip([j.value for j in Jamming], jamming)),
    }


def _cost_modifiers(terrain, weather) -> Dict[str, Dict[str, float]]:
    return {
        "terrain": dict(zip([t.value for t in Terrain], terrain)),
        "weather": dict(zip([w.value for w in Weather], weather)),
    }


#                  terrain: urban forest desert mountain open
#                  lighting: day dusk night infrared
#                  weather: clear overcast rain fog storm
#                  concealment / jamming: none light moderate heavy

DRONE = SensorProfile(
    sensor_type=SensorType.DRONE,
    name="Drone Imagery",
    description="High-resolution visual reconnaissance drone with electro-optical sensors",
    base_tpr=0.85, base_fpr=0.15, base_cost=10,
    tpr_modifiers=_modifiers(
        terrain=(0.9, 0.7, 1.1, 0.8, 1.2),
        lighting=(1.0, 0.8, 0.3, 0.9),
        weather=(1.0, 0.9, 0.6, 0.3, 0.2),
        concealment=(1.0, 0.8, 0.5, 0.2),
        jamming=(1.0, 0.9, 0.7, 0.4),
    ),
    fpr_modifiers=_modifiers(
        terrain=(1.3, 1.1, 0.8, 1.0, 0.9),
        lighting=(1.0, 1.2, 1.5, 1.1),
        weather=(1.0, 1.1, 1.3, 1.4, 1.6),
        concealment=(1.0, 1.1, 1.2, 1.4),
        jamming=(1.0, 1.2, 1.4, 1.8),
    ),
    cost_modifiers=_cost_modifiers(
        terrain=(1.2, 1.3, 0.9, 1.4, 0.8),
        weather=(1.0, 1.1, 1.4, 1.5, 2.0),
    ),
)

SIGINT = SensorProfile(
    sensor_type=SensorType.SIGINT,
    name="SIGINT",
    description="Signals intelligence: electronic signature detection and analysis",
    base_tpr=0.60, base_fpr=0.05, base_cost=15,
    tpr_modifiers=_modifiers(
        terrain=(1.2, 0.8, 1.0, 0.7, 1.1),
        lighting=(1.0, 1.0, 1.1, 1.0),
        weather=(1.0, 1.0, 0.9, 1.0, 0.7),
        concealment=(1.0, 0.9, 0.7, 0.4),
        jamming=(1.0, 0.8, 0.5, 0.2),
    ),
    fpr_modifiers=_modifiers(
        terrain=(1.5, 0.8, 0.7, 0.9, 0.8),
        lighting=(1.0, 1.0, 1.2, 1.0),
        weather=(1.0, 1.0, 1.1, 1.0, 1.4),
        concealment=(1.0, 1.1, 1.2, 1.3),
        jamming=(1.0, 1.3, 1.6, 2.0),
    ),
    cost_modifiers=_cost_modifiers(
        terrain=(1.3, 1.0, 0.9, 1.2, 0.8),
        weather=(1.0, 1.0, 1.1, 1.0, 1.3),
    ),
)

GROUND = SensorProfile(
    sensor_type=SensorType.GROUND,
    name="Ground Spotter",
    description="Human intelligence and ground-based reconnaissance",
    base_tpr=0.75, base_fpr=0.10, base_cost=20,
    tpr_modifiers=_modifiers(
        terrain=(1.1, 0.6, 0.9, 0.7, 1.2),
        lighting=(1.0, 0.7, 0.4, 0.8),
        weather=(1.0, 0.9, 0.5, 0.3, 0.2),
        concealment=(1.0, 0.7, 0.4, 0.1),
        jamming=(1.0, 0.95, 0.9, 0.8),
    ),
    fpr_modifiers=_modifiers(
        terrain=(1.2, 1.0, 0.8, 0.9, 0.7),
        lighting=(1.0, 1.3, 1.8, 1.2),
        weather=(1.0, 1.1, 1.4, 1.6, 1.8),
        concealment=(1.0, 1.2, 1.4, 1.7),
        jamming=(1.0, 1.1, 1.2, 1.3),
    ),
    cost_modifiers=_cost_modifiers(
        terrain=(1.1, 1.4, 1.3, 1.5, 0.9),
        weather=(1.0, 1.1, 1.5, 1.4, 2.2),
    ),
)

SENSOR_REGISTRY: Dict[str, SensorProfile] = {
    SensorType.DRONE.value:  DRONE,
    SensorType.SIGINT.value: SIGINT,
    SensorType.GROUND.value: GROUND,
}


def get_sensor(name: Union[str, SensorType]) -> SensorProfile:
    """
    Look up a SensorProfile by name or SensorType.

    Raises
    ──────
    ValueError if name not found in SENSOR_REGISTRY.
    """
    key = name.value if isinstance(name, SensorType) else str(name).lower()
    if key not in SENSOR_REGISTRY:
        valid = ", ".join(SENSOR_REGISTRY.keys())
        raise ValueError(f"Unknown sensor '{name}'. Valid options: {valid}")
    return SENSOR_REGISTRY[key]


# ──────────────────────────────────────────────────────────────────────────────
# Context generation
# ──────────────────────────────────────────────────────────────────────────────

def generate_cell_context(x: int, y: int, grid_size: int, rng: SeededRNG) -> CellContext:
    """
    Draw one context per cell. Position is not used by the weighting yet;
    the draw order (terrain, lighting, weather, concealment, jamming) is
    fixed so streams stay reproducible.
    """
    return CellContext(
        terrain=rng.weighted_choice(list(Terrain), TERRAIN_WEIGHTS),
        lighting=rng.weighted_choice(list(Lighting), LIGHTING_WEIGHTS),
        weather=rng.weighted_choice(list(Weather), WEATHER_WEIGHTS),
        concealment=rng.weighted_choice(list(Concealment), CONCEALMENT_WEIGHTS),
        jamming=rng.weighted_choice(list(Jamming), JAMMING_WEIGHTS),
    )


def cell_context(seed, x: int, y: int, grid_size: int) -> CellContext:
    """Context of cell (x, y) for this game seed."""
    return generate_cell_context(x, y, grid_size, sub_rng(seed, "context", x, y))


# ──────────────────────────────────────────────────────────────────────────────
# Effective performance and readings
# ──────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class EffectivePerformance:
    sensor:          SensorType
    effective_tpr:   float
    effective_fpr:   float
    effective_cost:  int
    context_summary: str

    def to_dict(self) -> dict:
        data = asdict(self)
        data["sensor"] = self.sensor.value
        return data


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def effective_performance(sensor: Union[str, SensorType],
                          context: CellContext) -> EffectivePerformance:
    profile = get_sensor(sensor)
    factors = {
        "terrain":     context.terrain.value,
        "lighting":    context.lighting.value,
        "weather":     context.weather.value,
        "concealment": context.concealment.value,
        "jamming":     context.jamming.value,
    }

    tpr = profile.base_tpr
    fpr = profile.base_fpr
    for factor, value in factors.items():
        tpr *= profile.tpr_modifiers[factor][value]
        fpr *= profile.fpr_modifiers[factor][value]

    cost = profile.base_cost
    for factor, table in profile.cost_modifiers.items():
        cost *= table[factors[factor]]

    return EffectivePerformance(
        sensor=profile.sensor_type,
        effective_tpr=_clamp(tpr, TPR_FPR_MIN, TPR_FPR_MAX),
        effective_fpr=_clamp(fpr, TPR_FPR_MIN, TPR_FPR_MAX),
        # round before ceil so 10 × 1.1 × 1.0 lands on 11, not 12
        effective_cost=int(math.ceil(round(cost, 9))),
        context_summary=context.summary,
    )


@dataclass(frozen=True)
class SensorReading:
    sensor:        SensorType
    result:        bool          # True = positive detection
    confidence:    float         # 0.1–0.9
    effective_tpr: float
    effective_fpr: float
    raw_signal:    float
    context:       CellContext

    def to_dict(self) -> dict:
        data = asdict(self)
        data["sensor"] = self.sensor.value
        data["context"] = self.context.to_dict()
        return data


def simulate_reading(sensor: Union[str, SensorType],
                     true_state: bool,
                     context: CellContext,
                     rng: SeededRNG) -> SensorReading:
    """One noisy observation of a cell whose hidden state is true_state."""
    perf = effective_performance(sensor, context)

    raw_signal = rng.normal(1.0 if true_state else 0.0, RAW_SIGNAL_STD)
    result = rng.bernoulli(perf.effective_tpr if true_state else perf.effective_fpr)

    base = perf.effective_tpr if true_state else 1.0 - perf.effective_fpr
    confidence = _clamp((base + abs(raw_signal) / 2.0) / 2.0, CONFIDENCE_MIN, CONFIDENCE_MAX)

    logger.debug(
        f"SENSOR: {perf.sensor.value} result={'+' if result else '-'} "
        f"TPR={perf.effective_tpr:.3f} FPR={perf.effective_fpr:.3f} "
        f"conf={confidence:.2f} | {perf.context_summary}"
    )
    return SensorReading(
        sensor=perf.sensor,
        result=result,
        confidence=confidence,
        effective_tpr=perf.effective_tpr,
        effective_fpr=perf.effective_fpr,
        raw_signal=raw_signal,
        context=context,
    )


def reading_rng(seed, turn: int, x: int, y: int, sensor: Union[str, SensorType]) -> SeededRNG:
    """Stream for the reading taken on (turn, x, y, sensor)."""
    return sub_rng(seed, "recon", turn, x, y, get_sensor(sensor).sensor_type.value)
