"""
tests/test_calibration.py
Bayesian Forward Operator — Calibration Tracker

Acceptance criteria:
  [K1] Brier score within [0, 1]; log loss finite at p = 0 and p = 1
  [K2] Truthful probabilities beat a constant 0.5 forecast over many trials
  [K3] Murphy decomposition: brier = reliability − resolution + uncertainty
       when predictions within each bucket are identical
  [K4] Bucketing: p = 1.0 lands in the last bucket; counts sum to n
  [K5] Tracker validation, running averages, raw_data copies, reset
  [K6] Confidence interval brackets the point estimate; wider at 99 %
"""

import json
import math
import os
import sys

import numpy as np
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from fusion.calibration.calibration_tracker import (
    CalibrationTracker, brier_score, calibration_buckets, calibration_metrics,
    confidence_interval, log_loss,
)


# ─── K1–K2 Scoring rules ──────────────────────────────────────────────────────

def test_k1_brier_bounds():
    for p in np.linspace(0.0, 1.0, 21):
        for outcome in (True, False):
            assert 0.0 <= brier_score(p, outcome) <= 1.0


def test_k1_log_loss_finite_at_extremes():
    for p in (0.0, 1.0):
        for outcome in (True, False):
            assert math.isfinite(log_loss(p, outcome))


def test_k2_truthful_forecast_beats_coin_flip():
    rng = np.random.default_rng(7)
    truthful = CalibrationTracker()
    coin = CalibrationTracker()
    for _ in range(2000):
        p = float(rng.random())
        outcome = bool(rng.random() < p)
        truthful.add_prediction(p, outcome)
        coin.add_prediction(0.5, outcome)
    assert coin.metrics().brier_score == pytest.approx(0.25)
    assert truthful.metrics().brier_score < coin.metrics().brier_score


# ─── K3–K4 Decomposition and buckets ──────────────────────────────────────────

def test_k3_decomposition_identity():
    predictions = [0.15] * 10 + [0.55] * 8 + [0.85] * 10
    outcomes = ([True] * 2 + [False] * 8
                + [True] * 3 + [False] * 5
                + [True] * 8 + [False] * 2)
    m = calibration_metrics(predictions, outcomes)
    assert m.brier_score == pytest.approx(m.reliability - m.resolution + m.uncertainty, abs=1e-12)
    assert m.count == 28


def test_k3_perfect_calibration_has_zero_error():
    predictions = [0.25] * 4 + [0.75] * 4
    outcomes = [True, False, False, False, True, True, True, False]
    m = calibration_metrics(predictions, outcomes)
    assert m.calibration_error == pytest.approx(0.0)
    assert m.reliability == pytest.approx(0.0)


def test_k4_bucket_edges():
    buckets = calibration_buckets([0.0, 0.05, 0.1, 0.99, 1.0], [False, False, True, True, True])
    assert len(buckets) == 10
    assert buckets[0].count == 2
    assert buckets[1].count == 1
    assert buckets[-1].count == 2
    assert sum(b.count for b in buckets) == 5


def test_k4_length_mismatch_raises():
    with pytest.raises(ValueError):
        calibration_metrics([0.1, 0.2], [True])
    with pytest.raises(ValueError):
        calibration_buckets([0.1], [True], num_buckets=0)


def test_k4_empty_metrics():
    m = calibration_metrics([], [])
    assert m.brier_score == 0.0 and m.count == 0


# ─── K5 Tracker ───────────────────────────────────────────────────────────────

def test_k5_tracker_basic_values():
    t = CalibrationTracker()
    t.add_prediction(0.9, True)
    t.add_prediction(0.1, False)
    assert len(t) == 2
    assert t.metrics().brier_score == pytest.approx(0.01)
    assert t.running_averages()["brier_score"] == pytest.approx(0.01)
    assert t.running_averages()["log_loss"] == pytest.approx(-math.log(0.9))


def test_k5_rejects_out_of_range_prediction():
    t = CalibrationTracker()
    with pytest.raises(ValueError):
        t.add_prediction(1.5, True)
    with pytest.raises(ValueError):
        t.add_prediction(float("nan"), False)
    assert t.count == 0


def test_k5_raw_data_is_a_copy_and_reset_clears():
    t = CalibrationTracker()
    t.add_prediction(0.3, False)
    raw = t.raw_data()
    raw["predictions"].append(0.99)
    assert t.count == 1
    t.reset()
    assert t.count == 0
    assert t.running_averages() == {"brier_score": 0.0, "log_loss": 0.0, "count": 0}
    assert t.metrics().buckets == []


def test_k5_metrics_serialise():
    t = CalibrationTracker(num_buckets=5)
    t.add_prediction(0.7, True)
    data = json.loads(t.metrics().to_json())
    assert len(data["buckets"]) == 5


# ─── K6 Confidence interval ───────────────────────────────────────────────────

def test_k6_interval_brackets_estimate():
    rng = np.random.default_rng(11)
    p = rng.random(300)
    o = rng.random(300) < p
    m = calibration_metrics(p, o)
    ci95 = confidence_interval(m, 0.95)
    ci99 = confidence_interval(m, 0.99)
    assert ci95.brier_lower <= m.brier_score <= ci95.brier_upper
    assert ci95.log_loss_lower <= m.log_loss <= ci95.log_loss_upper
    assert ci99.brier_upper - ci99.brier_lower > ci95.brier_upper - ci95.brier_lower


def test_k6_interval_edge_cases():
    empty = confidence_interval(calibration_metrics([], []))
    assert (empty.brier_lower, empty.brier_upper) == (0.0, 0.0)
    with pytest.raises(ValueError):
        confidence_interval(calibration_metrics([0.5], [True]), confidence=1.0)
