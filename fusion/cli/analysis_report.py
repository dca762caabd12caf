"""
fusion/cli/analysis_report.py — Opening-Position Analysis Report

Generates the world for one seed and writes the fusion core's view of the
opening position: belief summary, top EV / VOI cells, risk profile of the
best strike and the three policy recommendations. Ground truth is only
included with --reveal-truth.

CLI:
  PYTHONPATH=. python fusion/cli/analysis_report.py
  PYTHONPATH=. python fusion/cli/analysis_report.py --seed daily-2026-10-19 --grid-size 14
  PYTHONPATH=. python fusion/cli/analysis_report.py --sensor sigint --out report.json -v
"""
from __future__ import annotations

import argparse
import datetime
import json
import logging
import pathlib
import sys
from typing import Any, Dict, Optional

import numpy as np

from fusion.config.game_config import GameConfig, daily_seed
from fusion.constants import DEFAULT_STRIKE_RADIUS
from fusion.decision.decision_engine import (
    check_radius, ev_heatmap, find_optimal_strike, infra_hit_heatmap, ranked_candidates,
    voi_heatmap,
)
from fusion.field.spatial_field import build_game_grid
from fusion.grid.belief_grid import posterior_array
from fusion.risk.risk_engine import (
    DEFAULT_NUM_SAMPLES, MonteCarloConfig, evaluate_strike_risk, monte_carlo_samples,
    policy_recommendations,
)
from fusion.sensors.sensor_model import SENSOR_REGISTRY

logger = logging.getLogger("REPORT")

TOP_CELLS = 5


def build_report(config: GameConfig, sensor: str = "drone",
                 radius: int = DEFAULT_STRIKE_RADIUS,
                 num_samples: int = DEFAULT_NUM_SAMPLES,
                 reveal_truth: bool = False) -> Dict[str, Any]:
    """Plain-data report of the opening position for config.seed."""
    truth, grid = build_game_grid(config.width, config.height,
                                  config.spatial_field, config.beta_priors, config.seed)
    posterior = posterior_array(grid)
    ev = ev_heatmap(grid, radius, config)
    voi = voi_heatmap(grid, sensor, config, radius)
    collateral = infra_hit_heatmap(grid, radius)

    best = find_optimal_strike(grid, radius, config)
    samples = monte_carlo_samples(grid, MonteCarloConfig(num_samples, f"{config.seed}-report"))
    risk = evaluate_strike_risk(best.x, best.y, radius, samples, config)
    policies = policy_recommendations(grid, config, config.initial_budget, turn=1,
                                      sensor=sensor, radius=radius)

    report = {
        "config": config.to_dict(),
        "sensor": sensor,
        "radius": radius,
        "beliefs": {
            "mean_posterior": round(float(posterior.mean()), 4),
            "max_posterior":  round(float(posterior.max()), 4),
            "expected_hostiles": round(float(posterior.sum()), 2),
        },
        "top_ev":  [c.to_dict() for c in ranked_candidates(ev, limit=TOP_CELLS)],
        "top_voi": [c.to_dict() for c in ranked_candidates(voi, limit=TOP_CELLS)],
        "max_collateral_risk": round(float(collateral.max()), 4),
        "best_strike_risk": {"x": best.x, "y": best.y, **risk.to_dict()},
        "policies": {k: rec.to_dict() for k, rec in policies.items()},
    }
    if reveal_truth:
        report["truth"] = {
            "hostiles":       int(truth.hostile_truth.sum()),
            "infrastructure": int(truth.infra_truth.sum()),
            "mean_theta":     round(float(truth.hostile_field.mean()), 4),
        }
    logger.info(
        f"REPORT: seed={config.seed!r} best strike ({best.x},{best.y}) "
        f"EV={best.value:+.0f} CVaR95={risk.cvar_95:+.0f}"
    )
    return report


def _parse_args(argv=None):
    p = argparse.ArgumentParser(
        description="Fusion core opening-position analysis report",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p.add_argument("--seed", type=str, default=None,
                   help="Game seed (default: today's daily seed)")
    p.add_argument("--grid-size", type=int, default=GameConfig().grid_size, help="Grid edge length")
    p.add_argument("--sensor", choices=list(SENSOR_REGISTRY.keys()), default="drone",
                   help="Sensor used for the VOI map and recon policy")
    p.add_argument("--radius", type=int, default=DEFAULT_STRIKE_RADIUS, help="Strike radius")
    p.add_argument("--samples", type=int, default=DEFAULT_NUM_SAMPLES,
                   help="Monte-Carlo samples for the risk profile")
    p.add_argument("--reveal-truth", action="store_true",
                   help="Include ground-truth counts in the report")
    p.add_argument("--out", type=str, default=None,
                   help="Write the JSON report here instead of stdout")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return p.parse_args(argv)


def main(argv=None, today: Optional[datetime.date] = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(name)-8s %(levelname)-7s %(message)s",
    )

    seed = args.seed or daily_seed(today or datetime.date.today())
    try:
        config = GameConfig(grid_size=args.grid_size, seed=seed)
        check_radius(args.radius)
        MonteCarloConfig(args.samples, f"{seed}-report")
    except ValueError as exc:
        print(f"[REPORT] invalid configuration: {exc}", file=sys.stderr)
        return 2

    report = build_report(config, args.sensor, args.radius, args.samples, args.reveal_truth)
    text = json.dumps(report, indent=2, default=_json_default)

    if args.out:
        pathlib.Path(args.out).write_text(text)
        print(f"[REPORT] seed={seed}  written to {args.out}")
    else:
        print(text)
    return 0


def _json_default(obj):
    if isinstance(obj, np.generic):
        return obj.item()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


if __name__ == "__main__":
    sys.exit(main())
