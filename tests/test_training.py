"""
tests/test_training.py

Unit tests for the headless training loops and the CLI.

These tests verify:
- run_episode stops at the end of an episode or when `running` is cleared
- train_with_logs returns one entry per episode and clears `running`
- The command-line entry point trains, saves and reloads a model
"""

import numpy as np
import pytest

from stealth_rl.__main__ import main
from stealth_rl.persistence import read_model
from stealth_rl.simulation import LifecycleState, StealthSimulation
from stealth_rl.training import TrainConfig, run_episode, train_with_logs


@pytest.fixture
def sim():
    return StealthSimulation(seed=21)


def test_run_episode_ends_on_reset(sim):
    sim.running = True
    result = run_episode(sim, max_ticks=500)
    assert result.episode == 1
    assert result.ticks >= 1
    assert result.status in (LifecycleState.DETECTED_RESET,
                             LifecycleState.STEP_LIMIT_RESET,
                             LifecycleState.COMPLETE)
    assert sim.stats.episode == 2


def test_run_episode_respects_running_flag(sim):
    sim.running = False
    result = run_episode(sim, max_ticks=50)
    assert result.ticks == 0
    assert sim.stats.step == 0


def test_train_with_logs_shapes(sim):
    logs = train_with_logs(sim, TrainConfig(episodes=6, max_ticks=500, snapshot_every=3))
    assert len(logs["returns"]) == 6
    assert logs["steps"].shape == (6,)
    assert logs["successes"].dtype == bool
    assert [s["episode"] for s in logs["snapshots"]] == [1, 3, 6]
    assert np.all(logs["steps"] >= 1)
    assert not sim.running


def test_cli_trains_and_saves(tmp_path):
    path = tmp_path / "model.json"
    code = main(["--episodes", "3", "--seed", "1", "--mode", "line",
                 "--save", str(path), "--set", "alpha=0.2", "--log-level", "WARNING"])
    assert code == 0
    record = read_model(path)
    assert record is not None and record.q_table

    assert main(["--episodes", "1", "--load", str(path), "--log-level", "WARNING"]) == 0


def test_cli_missing_model(tmp_path):
    assert main(["--episodes", "1", "--load", str(tmp_path / "none.json"),
                 "--log-level", "ERROR"]) == 1


def test_cli_bad_override():
    assert main(["--episodes", "1", "--set", "alpha", "--log-level", "ERROR"]) == 2
