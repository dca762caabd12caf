"""
fusion/calibration/calibration_tracker.py
Bayesian Forward Operator — Prediction Calibration Tracking

Scores the belief system's own predictions against ground truth as the game
unfolds. The tracker is an ordinary object held by the caller; there is no
module-level instance.

Metrics over N (prediction p, outcome o) pairs:
  Brier score        mean (p − o)²                         lower is better
  Log loss           mean −log p  or  −log(1 − p)          p clamped to [ε, 1 − ε]

Murphy decomposition over K fixed-width buckets (bucket k: nₖ pairs,
mean prediction p̄ₖ, outcome rate ōₖ, overall base rate ō):
  uncertainty        ō (1 − ō)
  resolution         Σ nₖ/N (ōₖ − ō)²
  reliability        Σ nₖ/N (p̄ₖ − ōₖ)²
  calibration error  Σ nₖ/N |p̄ₖ − ōₖ|

  brier ≈ reliability − resolution + uncertainty
  (exact when every prediction inside a bucket is identical)
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Sequence

import numpy as np
from scipy.stats import norm

from fusion.constants import DEFAULT_CALIBRATION_BUCKETS, EPSILON

logger = logging.getLogger("CALIB")


@dataclass
class CalibrationBucket:
    min_probability:    float
    max_probability:    float
    count:              int   = 0
    average_prediction: float = 0.0
    actual_rate:        float = 0.0
    brier_contribution: float = 0.0   # mean Brier score of the bucket's pairs


@dataclass
class CalibrationMetrics:
    brier_score:       float = 0.0
    log_loss:          float = 0.0
    calibration_error: float = 0.0
    reliability:       float = 0.0
    resolution:        float = 0.0
    uncertainty:       float = 0.0
    buckets:           List[CalibrationBucket] = field(default_factory=list)

    @property
    def count(self) -> int:
        return sum(b.count for b in self.buckets)

    def to_dict(self) -> dict:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)


@dataclass(frozen=True)
class ConfidenceInterval:
    brier_lower:    float
    brier_upper:    float
    log_loss_lower: float
    log_loss_upper: float

    def to_dict(self) -> dict:
        return asdict(self)


# ─── Scoring rules ────────────────────────────────────────────────────────────

def brier_score(prediction: float, outcome: bool) -> float:
    return (prediction - (1.0 if outcome else 0.0)) ** 2


def log_loss(prediction: float, outcome: bool) -> float:
    p = max(EPSILON, min(1.0 - EPSILON, prediction))
    return -math.log(p) if outcome else -math.log(1.0 - p)


def _as_arrays(predictions: Sequence[float], outcomes: Sequence[bool]):
    p = np.asarray(predictions, dtype=float)
    o = np.asarray(outcomes, dtype=bool)
    if p.shape != o.shape:
        raise ValueError(
            f"predictions and outcomes must have the same length, got {p.size} and {o.size}"
        )
    return p, o


def calibration_buckets(predictions: Sequence[float],
                        outcomes: Sequence[bool],
                        num_buckets: int = DEFAULT_CALIBRATION_BUCKETS) -> List[CalibrationBucket]:
    """Fixed-width reliability-diagram buckets; p = 1.0 lands in the last one."""
    if num_buckets <= 0:
        raise ValueError(f"num_buckets must be positive, got {num_buckets}")
    p, o = _as_arrays(predictions, outcomes)
    index = np.minimum(np.floor(np.clip(p, 0.0, 1.0) * num_buckets).astype(int), num_buckets - 1)

    buckets = []
    for k in range(num_buckets):
        bucket = CalibrationBucket(min_probability=k / num_buckets,
                                   max_probability=(k + 1) / num_buckets)
        mask = index == k
        n = int(mask.sum())
        if n:
            bucket.count = n
            bucket.average_prediction = float(p[mask].mean())
            bucket.actual_rate = float(o[mask].mean())
            bucket.brier_contribution = float(((p[mask] - o[mask]) ** 2).mean())
        buckets.append(bucket)
    return buckets


def calibration_metrics(predictions: Sequence[float],
                        outcomes: Sequence[bool],
                        num_buckets: int = DEFAULT_CALIBRATION_BUCKETS) -> CalibrationMetrics:
    p, o = _as_arrays(predictions, outcomes)
    if p.size == 0:
        return CalibrationMetrics()

    buckets = calibration_buckets(p, o, num_buckets)
    n = p.size
    clamped = np.clip(p, EPSILON, 1.0 - EPSILON)
    base_rate = float(o.mean())

    reliability = resolution = calibration_error = 0.0
    for b in buckets:
        if b.count == 0:
            continue
        w = b.count / n
        reliability += w * (b.average_prediction - b.actual_rate) ** 2
        resolution += w * (b.actual_rate - base_rate) ** 2
        calibration_error += w * abs(b.average_prediction - b.actual_rate)

    return CalibrationMetrics(
        brier_score=float(((p - o) ** 2).mean()),
        log_loss=float(np.where(o, -np.log(clamped), -np.log1p(-clamped)).mean()),
        calibration_error=calibration_error,
        reliability=reliability,
        resolution=resolution,
        uncertainty=base_rate * (1.0 - base_rate),
        buckets=buckets,
    )


def confidence_interval(metrics: CalibrationMetrics, confidence: float = 0.95) -> ConfidenceInterval:
    """
    Normal-approximation interval on Brier score and log loss.
    SE(brier) = sqrt(b (1 − b) / n), SE(log loss) ≈ sqrt(ll / n).
    """
    if not 0.0 < confidence < 1.0:
        raise ValueError(f"confidence must be in (0, 1), got {confidence}")
    n = metrics.count
    if n == 0:
        return ConfidenceInterval(0.0, 0.0, 0.0, 0.0)

    z = float(norm.ppf(0.5 + confidence / 2.0))
    b, ll = metrics.brier_score, metrics.log_loss
    brier_se = math.sqrt(max(0.0, b * (1.0 - b)) / n)
    ll_se = math.sqrt(ll / n)
    return ConfidenceInterval(
        brier_lower=max(0.0, b - z * brier_se),
        brier_upper=min(1.0, b + z * brier_se),
        log_loss_lower=max(0.0, ll - z * ll_se),
        log_loss_upper=ll + z * ll_se,
    )


# ─── Stateful tracker ─────────────────────────────────────────────────────────

class CalibrationTracker:
    """
    Accumulates (prediction, outcome) pairs until reset().

    Running Brier / log-loss sums are kept incrementally so the cheap
    running_averages() view never rescans history.
    """

    def __init__(self, num_buckets: int = DEFAULT_CALIBRATION_BUCKETS):
        if num_buckets <= 0:
            raise ValueError(f"num_buckets must be positive, got {num_buckets}")
        self.num_buckets = num_buckets
        self._predictions: List[float] = []
        self._outcomes: List[bool] = []
        self._brier_sum = 0.0
        self._log_loss_sum = 0.0

    @property
    def count(self) -> int:
        return len(self._predictions)

    def add_prediction(self, predicted_probability: float, actual_outcome: bool) -> None:
        p = float(predicted_probability)
        if math.isnan(p) or not 0.0 <= p <= 1.0:
            raise ValueError(f"prediction must be in [0, 1], got {predicted_probability}")
        outcome = bool(actual_outcome)
        self._predictions.append(p)
        self._outcomes.append(outcome)
        self._brier_sum += brier_score(p, outcome)
        self._log_loss_sum += log_loss(p, outcome)
        logger.debug(f"CALIB: #{self.count} p={p:.3f} outcome={int(outcome)}")

    def metrics(self, num_buckets: int = None) -> CalibrationMetrics:
        return calibration_metrics(self._predictions, self._outcomes,
                                   num_buckets or self.num_buckets)

    def running_averages(self) -> Dict[str, float]:
        n = self.count
        return {
            "brier_score": self._brier_sum / n if n else 0.0,
            "log_loss":    self._log_loss_sum / n if n else 0.0,
            "count":       n,
        }

    def raw_data(self) -> Dict[str, list]:
        """Copies of the accumulated history."""
        return {"predictions": list(self._predictions), "outcomes": list(self._outcomes)}

    def reset(self) -> None:
        logger.info(f"CALIB: reset after {self.count} predictions")
        self._predictions.clear()
        self._outcomes.clear()
        self._brier_sum = 0.0
        self._log_loss_sum = 0.0

    def __len__(self) -> int:
        return self.count
