"""
tests/test_analysis_report.py
Bayesian Forward Operator — Opening-Position Analysis Report CLI

Acceptance criteria:
  [A1] build_report() is deterministic for a seed and hides truth by default
  [A2] main() writes valid JSON to --out and returns 0
  [A3] Omitted --seed falls back to the daily seed
  [A4] Invalid configuration (grid size, strike radius, sample count)
       returns exit code 2 without a traceback
"""

import datetime
import json
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from fusion.cli.analysis_report import build_report, main
from fusion.config.game_config import GameConfig
from fusion.risk.risk_engine import POLICY_KEYS


def test_a1_report_deterministic_and_truth_hidden():
    cfg = GameConfig(grid_size=6, seed="report-test")
    a = build_report(cfg, num_samples=40)
    b = build_report(cfg, num_samples=40)
    assert json.dumps(a, sort_keys=True) == json.dumps(b, sort_keys=True)
    assert "truth" not in a
    assert set(a["policies"]) == set(POLICY_KEYS)
    assert len(a["top_ev"]) == 5
    assert build_report(cfg, num_samples=40, reveal_truth=True)["truth"]["hostiles"] >= 0


def test_a2_cli_writes_json(tmp_path):
    out = tmp_path / "report.json"
    rc = main(["--seed", "cli", "--grid-size", "5", "--samples", "30",
               "--sensor", "ground", "--out", str(out)])
    assert rc == 0
    data = json.loads(out.read_text())
    assert data["config"]["seed"] == "cli"
    assert data["sensor"] == "ground"


def test_a3_daily_seed_default(tmp_path):
    out = tmp_path / "daily.json"
    rc = main(["--grid-size", "4", "--samples", "20", "--out", str(out)],
              today=datetime.date(2026, 10, 19))
    assert rc == 0
    assert json.loads(out.read_text())["config"]["seed"] == "daily-2026-10-19"


@pytest.mark.parametrize("bad", [
    ["--grid-size", "0"],
    ["--radius", "-1"],
    ["--samples", "-1"],
])
def test_a4_invalid_arguments_exit_2(bad, capsys):
    assert main(["--seed", "x", "--grid-size", "4"] + bad) == 2
    assert "invalid configuration" in capsys.readouterr().err
