"""
policy.py - Tabular Q-learning policy for the stealth agent.

- QTable           : lazily materialised rows of 5 action values
- QLearningPolicy  : ε-greedy selection with a tactical override near
                     enemies, and the one-step Q-learning update
- StateKey         : discretised state (position, cover, enemy distance
                     bucket, mission phase)
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterator, NamedTuple, Optional, Tuple

import numpy as np

from .config import RISK_RADIUS
from .gridmap import MOVES, Coord, GridMap
from .visibility import euclidean

logger = logging.getLogger(__name__)

# Canonical action order; argmax ties resolve to the earliest entry
ACTIONS: Tuple[str, ...] = ("up", "down", "left", "right", "wait")
ACTION_INDEX: Dict[str, int] = {a: i for i, a in enumerate(ACTIONS)}

Q_INIT_LOW = 0.001
Q_INIT_HIGH = 0.01


def distance_bucket(distance: float) -> str:
    """Discretise the nearest-enemy distance: near < 3, mid <= 6, far > 6."""
    if distance < 3.0:
        return "near"
    if distance <= 6.0:
        return "mid"
    return "far"


class StateKey(NamedTuple):
    """Discretised state used to index the Q-table."""
    row: int
    col: int
    in_cover: bool
    bucket: str
    returning: bool

    def to_token(self) -> str:
        """Flat string form used in saved models."""
        return f"{self.row},{self.col},{int(self.in_cover)},{self.bucket},{int(self.returning)}"

    @classmethod
    def from_token(cls, token: str) -> "StateKey":
        """
        Parse `to_token` output.

        Raises
        ------
        ValueError
            If the token is malformed.
        """
        parts = token.split(",")
        if len(parts) != 5 or parts[3] not in ("near", "mid", "far"):
            raise ValueError(f"Malformed state token: {token!r}")
        return cls(int(parts[0]), int(parts[1]), parts[2] == "1", parts[3], parts[4] == "1")


class QTable:
    """
    Mapping from StateKey to a row of Q-values, one per action.

    Rows are created on first access with small random positive values so
    that untried actions are not all tied.

    Parameters
    ----------
    rng : np.random.Generator
        Source of the initial values.
    """

    def __init__(self, rng: np.random.Generator) -> None:
        self.rng = rng
        self._rows: Dict[StateKey, np.ndarray] = {}

    def _fresh_row(self) -> np.ndarray:
        return self.rng.uniform(Q_INIT_LOW, Q_INIT_HIGH, size=len(ACTIONS))

    def row(self, state: StateKey) -> np.ndarray:
        """Q-values for `state`, materialising the row if needed."""
        values = self._rows.get(state)
        if values is None:
            values = self._fresh_row()
            self._rows[state] = values
        return values

    def value(self, state: StateKey, action: str) -> float:
        return float(self.row(state)[ACTION_INDEX[action]])

    def set_value(self, state: StateKey, action: str, value: float) -> None:
        self.row(state)[ACTION_INDEX[action]] = value

    def __contains__(self, state: object) -> bool:
        return state in self._rows

    def __len__(self) -> int:
        return len(self._rows)

    def __iter__(self) -> Iterator[StateKey]:
        return iter(self._rows)

    def clear(self) -> None:
        self._rows.clear()

    # -----------------------------
    # Plain-data conversion
    # -----------------------------

    def to_dict(self) -> Dict[str, Dict[str, float]]:
        """Rows as ``{token: {action: value}}``."""
        return {
            key.to_token(): {a: float(v) for a, v in zip(ACTIONS, row)}
            for key, row in self._rows.items()
        }

    def load_dict(self, data: Dict[str, Dict[str, float]]) -> int:
        """
        Replace the table with rows from `to_dict` output.

        Malformed tokens and non-numeric values are skipped; missing actions
        get fresh random values.

        Returns
        -------
        int
            Number of rows skipped.
        """
        self._rows.clear()
        skipped = 0
        for token, actions in data.items():
            try:
                key = StateKey.from_token(token)
                row = self._fresh_row()
                for a, v in actions.items():
                    if a in ACTION_INDEX:
                        row[ACTION_INDEX[a]] = float(v)
            except (ValueError, TypeError, AttributeError) as e:
                logger.warning("Skipping malformed Q-table row %r: %s", token, e)
                skipped += 1
                continue
            self._rows[key] = row
        return skipped


# =====================================================================
# Tactical override
# =====================================================================

@dataclass(frozen=True)
class TacticalWeights:
    """Score adjustments layered on Q-values when an enemy is close."""
    wait_bonus: float = 0.1
    blocked_penalty: float = 1.0
    distance_step: float = 0.1
    cover_entry_bonus: float = 0.2
    progress_step: float = 0.05
    unexplored_bonus: float = 0.05


@dataclass(frozen=True)
class TacticalView:
    """What the tactical heuristic needs to know about the current tick."""
    grid: GridMap
    position: Coord
    target: Coord
    enemy_positions: Tuple[Coord, ...]
    visited: FrozenSet[Coord]
    min_distance: float

    def needs_override(self) -> bool:
        return self.min_distance <= RISK_RADIUS and not self.grid.is_cover(self.position)


def tactical_scores(q: np.ndarray, view: TacticalView,
                    weights: TacticalWeights = TacticalWeights()) -> np.ndarray:
    """
    Q-values adjusted by movement heuristics.

    Parameters
    ----------
    q : np.ndarray shape (5,)
        Q-row for the current state.
    view : TacticalView
    weights : TacticalWeights

    Returns
    -------
    np.ndarray shape (5,)
    """
    scores = np.array(q, dtype=float)
    here_target = euclidean(view.position, view.target)

    for i, action in enumerate(ACTIONS):
        if action == "wait":
            scores[i] += weights.wait_bonus * RISK_RADIUS / max(view.min_distance, 1.0)
            continue

        dr, dc = MOVES[action]
        nxt = (view.position[0] + dr, view.position[1] + dc)
        if not view.grid.is_passable(nxt):
            scores[i] -= weights.blocked_penalty
            continue

        new_min = min((euclidean(nxt, e) for e in view.enemy_positions), default=math.inf)
        scores[i] += weights.distance_step if new_min > view.min_distance else -weights.distance_step

        if view.grid.is_cover(nxt):
            scores[i] += weights.cover_entry_bonus

        nxt_target = euclidean(nxt, view.target)
        if nxt_target < here_target:
            scores[i] += weights.progress_step
        elif nxt_target > here_target:
            scores[i] -= weights.progress_step

        if nxt not in view.visited:
            scores[i] += weights.unexplored_bonus

    return scores


# =====================================================================
# Policy
# =====================================================================

class QLearningPolicy:
    """
    ε-greedy Q-learning with a tactical override.

    Parameters
    ----------
    rng : np.random.Generator
        Used for exploration draws and Q-row initialisation.
    epsilon : float
        Initial exploration rate.
    weights : TacticalWeights, optional
    """

    def __init__(self, rng: np.random.Generator, epsilon: float,
                 weights: Optional[TacticalWeights] = None) -> None:
        self.rng = rng
        self.epsilon = float(epsilon)
        self.q_table = QTable(rng)
        self.weights = weights or TacticalWeights()

    def greedy_action(self, state: StateKey) -> str:
        """Argmax of the Q-row; ties go to the first action in ACTIONS."""
        return ACTIONS[int(np.argmax(self.q_table.row(state)))]

    def choose_action(self, state: StateKey, view: Optional[TacticalView] = None) -> str:
        """
        Pick an action for `state`.

        With probability ε a uniformly random action is returned. Otherwise
        the greedy action, unless `view` reports a nearby enemy while the
        agent is outside Cover, in which case heuristic scores are added to
        the Q-row before taking the argmax.
        """
        if self.rng.random() < self.epsilon:
            return ACTIONS[int(self.rng.integers(len(ACTIONS)))]

        q = self.q_table.row(state)
        if view is not None and view.needs_override():
            scores = tactical_scores(q, view, self.weights)
            action = ACTIONS[int(np.argmax(scores))]
            logger.debug("Tactical override picked %s (scores=%s)", action, np.round(scores, 3))
            return action
        return ACTIONS[int(np.argmax(q))]

    def update(self, state: StateKey, action: str, reward: float,
               next_state: StateKey, alpha: float, gamma: float) -> float:
        """
        One-step Q-learning update.

        Q[s, a] += α · (r + γ · max_a' Q[s', a'] − Q[s, a])

        Returns
        -------
        float
            The new value of Q[s, a].
        """
        row = self.q_table.row(state)
        next_row = self.q_table.row(next_state)
        i = ACTION_INDEX[action]
        td_target = reward + gamma * float(np.max(next_row))
        row[i] += alpha * (td_target - row[i])
        return float(row[i])

    # -----------------------------
    # Exploration schedule
    # -----------------------------

    def decay_epsilon(self, decay: float, floor: float) -> float:
        """Multiplicative decay, never below `floor`."""
        self.epsilon = max(self.epsilon * decay, floor)
        return self.epsilon

    def boost_epsilon(self, amount: float) -> float:
        """Nudge ε upward (capped at 1.0)."""
        self.epsilon = min(1.0, self.epsilon + amount)
        return self.epsilon

    def reexplore(self, value: float) -> float:
        """Raise ε to at least `value`."""
        self.epsilon = max(self.epsilon, value)
        return self.epsilon


def greedy_policy_grid(q_table: QTable, grid: GridMap, bucket: str = "far",
                       returning: bool = False) -> Dict[Coord, str]:
    """
    Greedy action per passable tile for a fixed bucket and phase.

    Only tiles whose row is already materialised are included.
    """
    policy: Dict[Coord, str] = {}
    for cell in grid.cells():
        key = StateKey(cell[0], cell[1], grid.is_cover(cell), bucket, returning)
        if key in q_table:
            policy[cell] = ACTIONS[int(np.argmax(q_table.row(key)))]
    return policy

