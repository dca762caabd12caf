"""
tests/test_bayes_updater.py
Bayesian Forward Operator — Odds-Form Update, Diffusion & Recon Step

Acceptance criteria:
  [B1] Posterior always within [0, 1] and finite, for any prior / TPR / FPR
  [B2] Positive reading with TPR > FPR raises belief; negative lowers it
  [B3] Sequential updates are order-independent
  [B4] Walkthrough intermediates are consistent and match update_posterior()
  [B5] TPR == FPR is uninformative: posterior equals clamped prior
  [D1] Diffusion moves neighbours by the distance-weighted log-odds change
  [D2] Diffusion never writes the target; out-of-bounds is a no-op
  [R1] perform_recon() fuses one reading, appends history, replays exactly
  [R2] Out-of-bounds recon returns None and leaves the grid untouched
"""

import math
import os
import sys

import numpy as np
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from fusion.config.game_config import DEFAULT_BETA_PRIORS, DEFAULT_SPATIAL_CONFIG
from fusion.constants import EPSILON
from fusion.field.spatial_field import build_game_grid
from fusion.grid.belief_grid import posterior_array, uniform_grid
from fusion.inference.bayes_updater import (
    DiffusionConfig, apply_spatial_diffusion, clamp_probability, explain_update,
    hypothetical_posterior, log_odds, perform_recon, update_posterior,
)
from fusion.sensors.sensor_model import DEFAULT_CONTEXT, SensorReading, SensorType


def _reading(result=True, tpr=0.8, fpr=0.2):
    return SensorReading(
        sensor=SensorType.DRONE, result=result, confidence=0.5,
        effective_tpr=tpr, effective_fpr=fpr, raw_signal=1.0, context=DEFAULT_CONTEXT,
    )


PRIORS = [0.0, 1e-9, 0.01, 0.25, 0.5, 0.75, 0.99, 1.0 - 1e-9, 1.0]
RATES = [(0.8, 0.2), (0.5, 0.5), (1.0, 0.0), (0.0, 1.0), (0.01, 0.99), (0.99, 0.01)]


# ─── B1–B5 Single update ──────────────────────────────────────────────────────

def test_b1_posterior_bounded_and_finite():
    for p in PRIORS:
        for tpr, fpr in RATES:
            for result in (True, False):
                post = update_posterior(p, _reading(result, tpr, fpr))
                assert math.isfinite(post), f"non-finite posterior for p={p} ({tpr},{fpr})"
                assert 0.0 <= post <= 1.0


def test_b2_direction_of_update():
    for p in np.linspace(0.01, 0.99, 25):
        assert update_posterior(p, _reading(True)) > p
        assert update_posterior(p, _reading(False)) < p


def test_b2_known_value():
    assert update_posterior(0.5, _reading(True, 0.8, 0.2)) == pytest.approx(0.8)
    assert update_posterior(0.5, _reading(False, 0.8, 0.2)) == pytest.approx(0.2)


def test_b3_order_independence():
    r1, r2 = _reading(True, 0.8, 0.2), _reading(False, 0.7, 0.1)
    for p in (0.05, 0.3, 0.6, 0.95):
        ab = update_posterior(update_posterior(p, r1), r2)
        ba = update_posterior(update_posterior(p, r2), r1)
        assert ab == pytest.approx(ba, rel=1e-9)


def test_b4_walkthrough_consistency():
    walk = explain_update(0.3, _reading(True, 0.9, 0.1))
    assert walk.clamped_prior == pytest.approx(0.3)
    assert walk.prior_odds == pytest.approx(0.3 / 0.7)
    assert walk.likelihood_ratio == pytest.approx(9.0)
    assert walk.posterior_odds == pytest.approx(walk.prior_odds * walk.likelihood_ratio)
    assert walk.posterior == pytest.approx(walk.posterior_odds / (1 + walk.posterior_odds))
    assert walk.posterior == update_posterior(0.3, _reading(True, 0.9, 0.1))


def test_b5_uninformative_sensor():
    for p in (0.0, 0.2, 0.8, 1.0):
        post = update_posterior(p, _reading(True, 0.4, 0.4))
        assert post == pytest.approx(clamp_probability(p))


def test_hypothetical_matches_real_update():
    assert hypothetical_posterior(0.4, False, 0.85, 0.15) == pytest.approx(
        update_posterior(0.4, _reading(False, 0.85, 0.15)))


def test_clamp_handles_nan():
    assert clamp_probability(float("nan")) == 0.5
    assert clamp_probability(0.0) == EPSILON


# ─── D1–D2 Diffusion ──────────────────────────────────────────────────────────

def test_d1_neighbour_odds_follow_weighted_ratio():
    grid = uniform_grid(5, 5, posterior=0.3, infra_prior=0.05)
    touched = apply_spatial_diffusion(grid, 2, 2, 0.8)
    assert touched == 8

    cfg = DiffusionConfig()
    w = cfg.diffusion_strength * math.exp(-1.0 / cfg.distance_decay)
    expected = log_odds(0.3) + w * (log_odds(0.8) - log_odds(0.3))
    assert log_odds(grid[2][3].posterior_probability) == pytest.approx(expected)


def test_d1_orthogonal_moves_more_than_diagonal():
    grid = uniform_grid(5, 5, posterior=0.3, infra_prior=0.05)
    apply_spatial_diffusion(grid, 2, 2, 0.8)
    orth, diag = grid[2][3].posterior_probability, grid[3][3].posterior_probability
    assert orth > diag > 0.3


def test_d2_target_and_far_cells_untouched():
    grid = uniform_grid(5, 5, posterior=0.3, infra_prior=0.05)
    apply_spatial_diffusion(grid, 2, 2, 0.05)
    assert grid[2][2].posterior_probability == 0.3
    assert grid[0][0].posterior_probability == 0.3
    assert grid[2][1].posterior_probability < 0.3
    assert np.all((posterior_array(grid) >= 0) & (posterior_array(grid) <= 1))


def test_d2_corner_and_out_of_bounds():
    grid = uniform_grid(4, 4, posterior=0.5, infra_prior=0.05)
    assert apply_spatial_diffusion(grid, 0, 0, 0.9) == 3
    before = posterior_array(grid)
    assert apply_spatial_diffusion(grid, 9, 9, 0.9) == 0
    assert apply_spatial_diffusion(grid, -1, 0, 0.9) == 0
    assert np.array_equal(before, posterior_array(grid))


def test_d2_bad_config_raises():
    with pytest.raises(ValueError):
        DiffusionConfig(diffusion_strength=1.5)
    with pytest.raises(ValueError):
        DiffusionConfig(kernel_size=-1)


# ─── R1–R2 Recon step ─────────────────────────────────────────────────────────

def _game(seed="recon-test"):
    _, grid = build_game_grid(8, 8, DEFAULT_SPATIAL_CONFIG, DEFAULT_BETA_PRIORS, seed)
    return grid


def test_r1_recon_updates_and_records():
    grid = _game()
    prior = grid[3][4].posterior_probability
    res = perform_recon(grid, 4, 3, "drone", turn=1, seed="recon-test")
    assert res is not None
    assert res.prior_probability == prior
    assert grid[3][4].posterior_probability == res.posterior_probability
    assert grid[3][4].recon_history == [res]
    assert res.sensor == "drone"
    assert 0.01 <= res.effective_tpr <= 0.99


def test_r1_replay_is_identical():
    actions = [(1, 1, "drone"), (4, 3, "sigint"), (4, 3, "ground"), (6, 7, "drone")]
    grids = [_game(), _game()]
    for g in grids:
        for turn, (x, y, sensor) in enumerate(actions, start=1):
            perform_recon(g, x, y, sensor, turn, "recon-test")
    assert np.array_equal(posterior_array(grids[0]), posterior_array(grids[1]))


def test_r1_no_diffusion_touches_target_only():
    grid = _game()
    before = posterior_array(grid)
    perform_recon(grid, 4, 3, "drone", 1, "recon-test", diffusion=None)
    after = posterior_array(grid)
    changed = np.argwhere(before != after)
    assert all(tuple(rc) == (3, 4) for rc in changed)


def test_r2_out_of_bounds_recon():
    grid = _game()
    before = posterior_array(grid)
    assert perform_recon(grid, 8, 0, "drone", 1, "recon-test") is None
    assert np.array_equal(before, posterior_array(grid))
