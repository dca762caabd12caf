"""
tests/test_integration_game_turns.py
Bayesian Forward Operator — End-to-End Game Turns

Drives the fusion core the way an orchestration layer would: generate a
world, ask for recommendations, run recon or strikes, score calibration.

Acceptance criteria:
  [G1] A full scripted game replays bit-identically from the same seed
  [G2] Budget bookkeeping: recon and strike costs come from the core's numbers
  [G3] Calibration tracker receives one prediction per recon
  [G4] Strikes never alter ground truth; only the neutralized flag moves
"""

import os
import sys

import numpy as np
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from fusion.calibration.calibration_tracker import CalibrationTracker
from fusion.config.game_config import GameConfig
from fusion.decision.decision_engine import execute_strike, validate_strike
from fusion.field.spatial_field import build_game_grid, spatial_accuracy
from fusion.grid.belief_grid import posterior_array, truth_arrays
from fusion.inference.bayes_updater import perform_recon
from fusion.risk.risk_engine import policy_recommendations
from fusion.sensors.sensor_model import cell_context, effective_performance


def _play(seed: str, turns: int = 6):
    cfg = GameConfig(grid_size=8, max_turns=turns, seed=seed)
    truth, grid = build_game_grid(cfg.width, cfg.height, cfg.spatial_field, cfg.beta_priors, cfg.seed)
    tracker = CalibrationTracker()
    budget = cfg.initial_budget
    log = []

    for turn in range(1, turns + 1):
        recs = policy_recommendations(grid, cfg, budget, turn)
        recon, strike = recs["recon_voi"], recs["greedy_ev"]

        if recon.action == "recon":
            x, y, sensor = recon.x, recon.y, recon.sensor
        elif strike.action != "strike":
            x, y, sensor = turn % cfg.width, (2 * turn) % cfg.height, "drone"
        else:
            x = y = sensor = None

        if sensor is not None:
            cost = effective_performance(sensor, cell_context(cfg.seed, x, y, cfg.grid_size)).effective_cost
            if cost > budget:
                log.append(("wait", turn))
                continue
            res = perform_recon(grid, x, y, sensor, turn, cfg.seed)
            budget -= cost
            tracker.add_prediction(res.posterior_probability, grid[y][x].has_hostile)
            log.append(("recon", x, y, sensor, res.result))
        else:
            verdict = validate_strike(grid, strike.x, strike.y, 1, cfg, remaining_budget=budget)
            if verdict.allowed and not verdict.requires_confirmation:
                outcome = execute_strike(grid, strike.x, strike.y, 1, cfg)
                budget -= outcome.cost
                log.append(("strike", strike.x, strike.y, outcome.net_points))
            else:
                log.append(("blocked", strike.x, strike.y))

    return cfg, truth, grid, tracker, budget, log


@pytest.fixture(scope="module")
def played():
    return _play("integration")


def test_g1_replay_is_identical(played):
    _, _, grid_a, tracker_a, budget_a, log_a = played
    _, _, grid_b, tracker_b, budget_b, log_b = _play("integration")
    assert log_a == log_b
    assert budget_a == budget_b
    assert np.array_equal(posterior_array(grid_a), posterior_array(grid_b))
    assert tracker_a.raw_data() == tracker_b.raw_data()


def test_g2_budget_stays_non_negative(played):
    cfg, _, _, _, budget, log = played
    assert 0 <= budget <= cfg.initial_budget
    assert len(log) == cfg.max_turns


def test_g3_one_prediction_per_recon(played):
    _, _, grid, tracker, _, log = played
    recons = [e for e in log if e[0] == "recon"]
    assert tracker.count == len(recons)
    assert sum(c.observation_count for row in grid for c in row) == len(recons)
    if tracker.count:
        m = tracker.metrics()
        assert 0.0 <= m.brier_score <= 1.0


def test_g4_truth_untouched(played):
    _, truth, grid, _, _, _ = played
    hostile, infra = truth_arrays(grid)
    assert np.array_equal(hostile, truth.hostile_truth)
    assert np.array_equal(infra, truth.infra_truth)
    assert 0.0 <= spatial_accuracy(posterior_array(grid), truth.hostile_truth) <= 1.0
