"""
tests/test_policy.py

Unit tests for the Q-table and the ε-greedy policy.

These tests verify:
- Lazy row creation with small positive values, five actions per row
- Deterministic first-index tie-breaking
- The one-step Q-learning update
- ε decay floor, boost cap and re-exploration
- The tactical override near enemies
- State tokens and Q-table plain-data conversion
"""

import numpy as np
import pytest

from stealth_rl.gridmap import GridMap
from stealth_rl.policy import (ACTIONS, Q_INIT_HIGH, Q_INIT_LOW, QLearningPolicy,
                               QTable, StateKey, TacticalView, distance_bucket,
                               greedy_policy_grid, tactical_scores)
from stealth_rl.utils import set_seed


STATE = StateKey(0, 0, False, "far", False)


@pytest.fixture
def policy():
    return QLearningPolicy(set_seed(0), epsilon=0.0)


# =====================================================================
# Q-table
# =====================================================================

def test_rows_created_lazily():
    """Rows appear on first access, one value per action, in the init range."""
    q = QTable(set_seed(1))
    assert STATE not in q
    row = q.row(STATE)
    assert STATE in q and len(q) == 1
    assert row.shape == (len(ACTIONS),)
    assert np.all((row >= Q_INIT_LOW) & (row < Q_INIT_HIGH))


def test_token_round_trip():
    key = StateKey(3, 7, True, "mid", True)
    assert key.to_token() == "3,7,1,mid,1"
    assert StateKey.from_token(key.to_token()) == key


@pytest.mark.parametrize("token", ["1,2,0,far", "1,2,0,close,0", "a,b,0,far,0"])
def test_bad_tokens_rejected(token):
    with pytest.raises(ValueError):
        StateKey.from_token(token)


def test_load_dict_skips_malformed_rows():
    """Bad tokens are skipped; missing actions get fresh values."""
    q = QTable(set_seed(2))
    skipped = q.load_dict({
        "0,0,0,far,0": {"up": 1.5},
        "garbage": {"up": 1.0},
        "1,0,0,near,0": {"down": "not a number"},
    })
    assert skipped == 2
    assert len(q) == 1
    assert q.value(STATE, "up") == pytest.approx(1.5)
    assert Q_INIT_LOW <= q.value(STATE, "wait") < Q_INIT_HIGH


@pytest.mark.parametrize("d, bucket", [(0.1, "near"), (2.99, "near"), (3.0, "mid"),
                                       (6.0, "mid"), (6.01, "far"), (float("inf"), "far")])
def test_distance_bucket(d, bucket):
    assert distance_bucket(d) == bucket


# =====================================================================
# Action selection and update
# =====================================================================

def test_ties_pick_first_action(policy):
    """Equal values resolve to the earliest action in canonical order."""
    policy.q_table.row(STATE)[:] = 1.0
    assert policy.choose_action(STATE) == "up"
    policy.q_table.set_value(STATE, "left", 2.0)
    assert policy.choose_action(STATE) == "left"


def test_full_exploration_uses_all_actions():
    p = QLearningPolicy(set_seed(3), epsilon=1.0)
    chosen = {p.choose_action(STATE) for _ in range(200)}
    assert chosen == set(ACTIONS)


def test_q_update(policy):
    """Q[s,a] += α (r + γ max Q[s'] − Q[s,a])."""
    nxt = StateKey(0, 1, False, "far", False)
    policy.q_table.row(STATE)[:] = 0.0
    policy.q_table.row(nxt)[:] = [0.0, 2.0, 0.0, 0.0, 0.0]
    new = policy.update(STATE, "right", 1.0, nxt, alpha=0.5, gamma=0.9)
    assert new == pytest.approx(0.5 * (1.0 + 0.9 * 2.0))
    assert policy.q_table.value(STATE, "right") == pytest.approx(new)


def test_epsilon_schedule(policy):
    """Decay never goes below the floor; boosts cap at 1."""
    policy.epsilon = 0.01
    for _ in range(100):
        policy.decay_epsilon(0.9, 0.005)
    assert policy.epsilon == pytest.approx(0.005)
    policy.epsilon = 0.98
    assert policy.boost_epsilon(0.05) == 1.0
    policy.epsilon = 0.1
    assert policy.reexplore(0.3) == pytest.approx(0.3)
    assert policy.reexplore(0.2) == pytest.approx(0.3)


# =====================================================================
# Tactical override
# =====================================================================

def test_override_prefers_cover_away_from_enemy(policy):
    """Near an enemy in the open, stepping into Cover away from it wins."""
    grid = GridMap(["S....", "C....", "....G"])
    view = TacticalView(grid=grid, position=(0, 0), target=grid.goal,
                        enemy_positions=((0, 2),), visited=frozenset({(0, 0)}),
                        min_distance=2.0)
    assert view.needs_override()
    policy.q_table.row(STATE)[:] = 0.0
    assert policy.choose_action(STATE, view) == "down"


def test_override_skipped_in_cover():
    grid = GridMap(["SC...", "....G"])
    view = TacticalView(grid=grid, position=(0, 1), target=grid.goal,
                        enemy_positions=((0, 2),), visited=frozenset(),
                        min_distance=1.0)
    assert not view.needs_override()


def test_blocked_moves_penalised():
    grid = GridMap(["SW", ".G"])
    view = TacticalView(grid=grid, position=(0, 0), target=grid.goal,
                        enemy_positions=((1, 1),), visited=frozenset(),
                        min_distance=1.4)
    scores = tactical_scores(np.zeros(len(ACTIONS)), view)
    assert scores[ACTIONS.index("up")] == pytest.approx(-1.0)
    assert scores[ACTIONS.index("right")] == pytest.approx(-1.0)


def test_greedy_policy_grid_only_known_rows(policy):
    grid = GridMap(["S.", ".G"])
    policy.q_table.row(STATE)[:] = [0, 0, 0, 1, 0]
    assert greedy_policy_grid(policy.q_table, grid) == {(0, 0): "right"}
