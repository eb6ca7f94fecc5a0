"""
training.py - Headless driver loops for the stealth simulation.

- run_episode      : tick one simulation until its current episode ends
- train_with_logs  : run many episodes, recording per-episode statistics
                     and periodic snapshots for later plotting

Both loops check `sim.running` between ticks, so another thread can stop
training by clearing the flag.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List

import numpy as np

from .simulation import LifecycleState, StealthSimulation
from .utils import EpisodeLog

logger = logging.getLogger(__name__)


# =====================================================================
# Configuration dataclasses
# =====================================================================

@dataclass
class TrainConfig:
    """
    Settings of a training run.

    Parameters
    ----------
    episodes : int
        Number of episodes to run.
    max_ticks : int
        Safety cap on ticks per episode, on top of the simulation's own
        step limit (detection and recovery ticks do not count as steps).
    snapshot_every : int
        Record a snapshot every `snapshot_every` episodes, plus the first
        and last ones.
    """
    episodes: int = 500
    max_ticks: int = 1000
    snapshot_every: int = 50


@dataclass
class EpisodeResult:
    """Summary of one finished (or interrupted) episode."""
    episode: int
    total_reward: float
    ticks: int
    success: bool
    detected: bool
    status: LifecycleState


# =====================================================================
# Loops
# =====================================================================

def run_episode(sim: StealthSimulation, max_ticks: int = 1000) -> EpisodeResult:
    """
    Step `sim` until the current episode ends.

    An episode ends on completion, on a detection reset, on the step limit
    or on a defensive recovery reset. The loop also stops when `max_ticks`
    is reached or `sim.running` is cleared.

    Returns
    -------
    EpisodeResult
    """
    episode = sim.stats.episode
    G, ticks = 0.0, 0
    status = LifecycleState.OUTBOUND
    detected = False

    for _ in range(max_ticks):
        if not sim.running:
            logger.info("Stopped during episode %d", episode)
            break
        outcome = sim.step()
        G += outcome.reward
        ticks += 1
        status = outcome.status
        detected = outcome.detected
        if outcome.reset:
            break

    return EpisodeResult(episode=episode, total_reward=G, ticks=ticks,
                         success=status is LifecycleState.COMPLETE,
                         detected=detected, status=status)


def train_with_logs(sim: StealthSimulation, cfg: TrainConfig) -> Dict[str, Any]:
    """
    Train for `cfg.episodes` episodes and collect statistics.

    Parameters
    ----------
    sim : StealthSimulation
    cfg : TrainConfig

    Returns
    -------
    logs : dict
        Dictionary with keys:
          - "returns":    np.ndarray of episodic returns
          - "steps":      np.ndarray of episodic tick counts
          - "successes":  np.ndarray of bools, one per episode
          - "detections": np.ndarray of 0/1, one per episode
          - "snapshots":  list of dicts with:
                {
                  "episode": int,
                  "epsilon": float,
                  "q_states": int,
                  "success_rate": float (over the last snapshot window)
                }
    """
    log = EpisodeLog()
    snapshots: List[Dict[str, Any]] = []
    sim.running = True
    try:
        for ep in range(cfg.episodes):
            if not sim.running:
                break
            result = run_episode(sim, cfg.max_ticks)
            log.append(result.total_reward, result.ticks, result.success,
                       int(result.detected))

            take = (
                (ep == 0) or
                ((ep + 1) % cfg.snapshot_every == 0) or
                (ep == cfg.episodes - 1)
            )
            if take:
                snap = {
                    "episode": ep + 1,
                    "epsilon": sim.epsilon,
                    "q_states": len(sim.q_table),
                    "success_rate": log.success_rate(cfg.snapshot_every),
                }
                snapshots.append(snap)
                logger.info("Episode %d: return=%.2f eps=%.3f states=%d success=%.2f",
                            ep + 1, result.total_reward, snap["epsilon"],
                            snap["q_states"], snap["success_rate"])
    finally:
        sim.running = False

    return {
        "returns": np.array(log.returns),
        "steps": np.array(log.lengths),
        "successes": np.array(log.successes, dtype=bool),
        "detections": np.array(log.detections),
        "snapshots": snapshots,
    }
