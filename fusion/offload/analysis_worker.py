"""
fusion/offload/analysis_worker.py
Bayesian Forward Operator — Background Analysis Worker

Runs the CPU-heavy heatmap and Monte-Carlo jobs off the interactive path.

Design constraints:
  - Jobs receive a deep-copied grid snapshot: the caller may keep mutating
    its own grid while a job runs.
  - Results depend only on (grid state, config, job parameters); the
    worker adds no randomness of its own.
  - Cancelling is discarding the Future (or Future.cancel()); jobs have no
    side effects to roll back.
  - Identical requests share one result, keyed by SHA-256 of the grid
    state, config and parameters. Array results are returned read-only.

Usage:
    with AnalysisWorker(config) as worker:
        fut = worker.submit("ev", grid, radius=1)
        heat = fut.result()
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from collections import OrderedDict
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict

import numpy as np

from fusion.config.game_config import GameConfig
from fusion.decision import decision_engine
from fusion.grid.belief_grid import Grid, snapshot
from fusion.risk import risk_engine

logger = logging.getLogger("WORKER")

DEFAULT_MAX_WORKERS = 2
DEFAULT_CACHE_SIZE  = 32


def _job_ev(grid, config, radius=1):
    return decision_engine.ev_heatmap(grid, radius, config)


def _job_voi(grid, config, sensor="drone", radius=1, seed=None):
    return decision_engine.voi_heatmap(grid, sensor, config, radius, seed)


def _job_risk_averse(grid, config, radius=1, risk_aversion=None, num_samples=risk_engine.DEFAULT_NUM_SAMPLES):
    return risk_engine.risk_averse_heatmap(grid, radius, config, risk_aversion, num_samples=num_samples)


def _job_variance(grid, config, radius=1, num_samples=risk_engine.DEFAULT_NUM_SAMPLES):
    return risk_engine.variance_heatmap(grid, radius, config, num_samples=num_samples)


def _job_loss_risk(grid, config, radius=1, num_samples=risk_engine.DEFAULT_NUM_SAMPLES):
    return risk_engine.loss_risk_heatmap(grid, radius, config, num_samples=num_samples)


def _job_monte_carlo(grid, config, **mc_params):
    mc_params.setdefault("seed", config.seed)
    mc_params.setdefault("num_samples", risk_engine.DEFAULT_NUM_SAMPLES)
    if mc_params.get("focus") is not None:
        mc_params["focus"] = tuple(mc_params["focus"])
    return risk_engine.monte_carlo_samples(grid, risk_engine.MonteCarloConfig(**mc_params))


def _job_policies(grid, config, budget, turn, sensor="drone", risk_aversion=None, radius=1):
    return risk_engine.policy_recommendations(grid, config, budget, turn, sensor, risk_aversion, radius)


JOB_REGISTRY: Dict[str, Callable[..., Any]] = {
    "ev":           _job_ev,
    "voi":          _job_voi,
    "risk_averse":  _job_risk_averse,
    "variance":     _job_variance,
    "loss_risk":    _job_loss_risk,
    "monte_carlo":  _job_monte_carlo,
    "policies":     _job_policies,
}


def grid_fingerprint(grid: Grid) -> str:
    """SHA-256 over every belief-side field the analyses read."""
    h = hashlib.sha256()
    for row in grid:
        for c in row:
            h.update(np.array([c.posterior_probability, c.infra_prior_probability,
                               c.hostile_prior_probability], dtype=float).tobytes())
            h.update(json.dumps([(r.sensor, r.turn) for r in c.recon_history]).encode("utf-8"))
    return h.hexdigest()


def request_key(grid: Grid, config: GameConfig, kind: str, params: Dict[str, Any]) -> str:
    payload = json.dumps({"config": config.to_dict(), "kind": kind, "params": params},
                         sort_keys=True, default=str)
    return hashlib.sha256((grid_fingerprint(grid) + payload).encode("utf-8")).hexdigest()


def _freeze(result):
    if isinstance(result, np.ndarray):
        result.setflags(write=False)
    return result


class AnalysisWorker:
    """
    Thread-pool front end for heatmap / Monte-Carlo / policy jobs.

    Thread-safe: submit() may be called from any thread. The cache holds
    Futures, so a request identical to one still running joins it instead
    of starting a second computation.
    """

    def __init__(self, config: GameConfig,
                 max_workers: int = DEFAULT_MAX_WORKERS,
                 cache_size: int = DEFAULT_CACHE_SIZE):
        if max_workers <= 0:
            raise ValueError(f"max_workers must be positive, got {max_workers}")
        if cache_size < 0:
            raise ValueError(f"cache_size must be non-negative, got {cache_size}")

        self.config = config
        self._cache_size = cache_size
        self._executor = ThreadPoolExecutor(max_workers=max_workers,
                                            thread_name_prefix="bfo-analysis")
        self._lock = threading.Lock()
        self._cache: "OrderedDict[str, Future]" = OrderedDict()
        self._jobs = 0
        self._cache_hits = 0
        self._completed = 0
        self._latency_total = 0.0
        self._closed = False

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(self, kind: str, grid: Grid, **params) -> Future:
        if kind not in JOB_REGISTRY:
            valid = ", ".join(JOB_REGISTRY.keys())
            raise ValueError(f"Unknown analysis job '{kind}'. Valid options: {valid}")

        key = request_key(grid, self.config, kind, params)
        with self._lock:
            if self._closed:
                raise RuntimeError("AnalysisWorker.submit() called after shutdown()")
            cached = self._cache.get(key)
            if cached is not None and not cached.cancelled():
                self._cache.move_to_end(key)
                self._cache_hits += 1
                logger.debug(f"WORKER: cache hit {kind} {key[:12]}")
                return cached

            frozen = snapshot(grid)
            future = self._executor.submit(self._run, kind, frozen, params)
            self._jobs += 1
            if self._cache_size:
                self._cache[key] = future
                while len(self._cache) > self._cache_size:
                    self._cache.popitem(last=False)

        future.add_done_callback(lambda f, k=key: self._on_done(k, f))
        logger.debug(f"WORKER: submitted {kind} {key[:12]}")
        return future

    def _run(self, kind: str, grid: Grid, params: Dict[str, Any]):
        start = time.perf_counter()
        result = _freeze(JOB_REGISTRY[kind](grid, self.config, **params))
        elapsed = time.perf_counter() - start
        with self._lock:
            self._completed += 1
            self._latency_total += elapsed
        logger.debug(f"WORKER: {kind} done in {elapsed * 1000:.1f} ms")
        return result

    def _on_done(self, key: str, future: Future) -> None:
        if future.cancelled() or future.exception() is not None:
            with self._lock:
                if self._cache.get(key) is future:
                    del self._cache[key]
            if not future.cancelled():
                logger.warning(f"WORKER: job {key[:12]} failed: {future.exception()!r}")

    # ------------------------------------------------------------------
    # Convenience wrappers
    # ------------------------------------------------------------------

    def ev_heatmap(self, grid: Grid, radius: int = 1) -> Future:
        return self.submit("ev", grid, radius=radius)

    def voi_heatmap(self, grid: Grid, sensor: str = "drone", radius: int = 1) -> Future:
        return self.submit("voi", grid, sensor=str(getattr(sensor, "value", sensor)), radius=radius)

    def policies(self, grid: Grid, budget: float, turn: int,
                 sensor: str = "drone", risk_aversion=None) -> Future:
        return self.submit("policies", grid, budget=budget, turn=turn,
                           sensor=str(getattr(sensor, "value", sensor)),
                           risk_aversion=risk_aversion)

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def stats(self) -> Dict[str, float]:
        with self._lock:
            return {
                "jobs":           self._jobs,
                "completed":      self._completed,
                "cache_hits":     self._cache_hits,
                "cache_entries":  len(self._cache),
                "mean_latency_s": self._latency_total / self._completed if self._completed else 0.0,
            }

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    def shutdown(self, wait: bool = True, cancel_pending: bool = False) -> None:
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=wait, cancel_futures=cancel_pending)
        logger.info(f"WORKER: shutdown after {self._jobs} jobs ({self._cache_hits} cache hits)")

    def __enter__(self) -> "AnalysisWorker":
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown()
