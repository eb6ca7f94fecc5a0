"""
config.py - Hyperparameters for the stealth simulation.

Every learning rate, exploration setting and reward weight lives in one
frozen dataclass with a documented valid range. Updates go through
`Hyperparameters.updated`, which validates, clamps and returns a new
instance, so a half-applied update can never be observed.
"""

from __future__ import annotations

import dataclasses
import logging
import math
import numbers
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Tuple

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------
# Fixed geometric constants (not tunable at runtime)
# ---------------------------------------------------------------------

RISK_RADIUS: float = 3.0          # enemies closer than this count as exposure
NEAR_RISK_DISTANCE: float = 1.5   # "about to be spotted" threshold
DISTANCE_FLOOR: float = 0.1       # keeps 1/d terms bounded
HISTORY_LENGTH: int = 3           # positions kept for stagnation checks


@dataclass(frozen=True)
class Hyperparameters:
    """
    Learning and reward-shaping parameters.

    Parameters
    ----------
    alpha : float
        Learning rate for the Q-learning update.
    gamma : float
        Discount factor.
    epsilon : float
        Initial exploration rate.
    epsilon_decay : float
        Multiplicative decay applied to ε after every tick.
    min_epsilon : float
        Floor for ε.
    reexplore_epsilon : float
        ε is raised to at least this value after a detection reset.
    stagnation_epsilon_boost : float
        Added to ε when the agent has not moved across the history window.
    time_penalty : float
        Constant reward applied every tick (negative).
    distance_penalty : float
        Multiplied by the remaining distance to the mission target.
    forward_reward : float
        Base bonus when distance to the mission target decreases.
    progress_scale : float
        Maximum multiplier of the forward bonus (scaled by 1 / distance).
    cover_progress_multiplier : float
        Forward bonus factor when the destination tile is Cover.
    risky_progress_multiplier : float
        Forward bonus factor when an enemy is within the near-risk distance.
    cover_bonus : float
        Flat bonus for occupying a Cover tile.
    cover_streak_bonus : float
        Per-tick bonus for consecutive ticks spent in Cover.
    cover_streak_cap : int
        Maximum streak length that is rewarded.
    tactical_cover_bonus : float
        Extra bonus for using Cover while an enemy is within the risk radius.
    goal_reward : float
        Bonus for first reaching the Goal while outbound.
    completion_reward : float
        Bonus for reaching the Start while returning.
    proximity_weight : float
        Numerator of the inverse-distance proximity penalty.
    proximity_cap : float
        Upper bound of the proximity penalty.
    risk_exposure_weight : float
        Scale of the accumulated risk-exposure penalty.
    risk_exposure_increment : float
        Accumulator growth per enemy inside the risk radius.
    safe_distance_reward : float
        Bonus when every enemy is outside the risk radius.
    stealth_reward : float
        Bonus granted on ticks with no enemy inside the risk radius.
    predictive_wait_reward : float
        Bonus for holding position while an enemy approaches.
    exploration_bonus : float
        Bonus for the first visit to a tile in the current episode.
    stagnation_penalty : float
        Penalty when the last recorded positions are identical.
    detection_penalty : float
        Penalty applied when the agent is detected.
    wall_penalty : float
        Flat reward for bumping into a wall or the grid edge.
    enemy_radius : float
        Detection radius used in ``radius`` mode.
    los_range : float
        Ray length used in ``line`` mode.
    max_steps : int
        Step cap per episode.
    """
    alpha: float = 0.1
    gamma: float = 0.9
    epsilon: float = 1.0
    epsilon_decay: float = 0.99
    min_epsilon: float = 0.005
    reexplore_epsilon: float = 0.3
    stagnation_epsilon_boost: float = 0.05

    time_penalty: float = -0.01
    distance_penalty: float = -0.005
    forward_reward: float = 0.5
    progress_scale: float = 10.0
    cover_progress_multiplier: float = 1.5
    risky_progress_multiplier: float = 0.5
    cover_bonus: float = 0.2
    cover_streak_bonus: float = 0.05
    cover_streak_cap: int = 10
    tactical_cover_bonus: float = 0.1
    goal_reward: float = 50.0
    completion_reward: float = 100.0
    proximity_weight: float = 15.0
    proximity_cap: float = 1.0
    risk_exposure_weight: float = 5.0
    risk_exposure_increment: float = 0.1
    safe_distance_reward: float = 0.2
    stealth_reward: float = 0.1
    predictive_wait_reward: float = 0.15
    exploration_bonus: float = 0.05
    stagnation_penalty: float = -0.5
    detection_penalty: float = -10.0
    wall_penalty: float = -1.0

    enemy_radius: float = 1.5
    los_range: float = 4.0
    max_steps: int = 100

    def updated(self, partial: Mapping[str, Any]
                ) -> Tuple["Hyperparameters", Dict[str, float], Dict[str, str]]:
        """
        Validate and merge a partial set of parameters.

        Unknown keys and non-numeric values are rejected one by one; every
        other value is clamped into its range and applied.

        Parameters
        ----------
        partial : Mapping[str, Any]
            Parameter names mapped to new values.

        Returns
        -------
        params : Hyperparameters
            New instance with the accepted values merged in.
        applied : dict[str, float]
            Accepted keys with their (possibly clamped) values.
        rejected : dict[str, str]
            Rejected keys with the reason.
        """
        applied: Dict[str, float] = {}
        rejected: Dict[str, str] = {}

        for key, value in partial.items():
            if key not in PARAM_RANGES:
                rejected[key] = "unknown parameter"
                logger.warning("Rejected unknown parameter %r", key)
                continue
            if (isinstance(value, bool) or not isinstance(value, numbers.Real)
                    or math.isnan(float(value))):
                rejected[key] = "not a number"
                logger.warning("Rejected non-numeric value %r for %s", value, key)
                continue

            low, high = PARAM_RANGES[key]
            clamped = min(high, max(low, float(value)))
            if key in _INTEGER_FIELDS:
                clamped = int(round(clamped))
            if clamped != value:
                logger.info("Clamped %s from %r to %r", key, value, clamped)
            applied[key] = clamped

        return dataclasses.replace(self, **applied), applied, rejected


# Documented domain of every tunable field: name -> (low, high)
PARAM_RANGES: Dict[str, Tuple[float, float]] = {
    "alpha": (0.0, 1.0),
    "gamma": (0.0, 1.0),
    "epsilon": (0.0, 1.0),
    "epsilon_decay": (0.9, 1.0),
    "min_epsilon": (0.0, 0.1),
    "reexplore_epsilon": (0.0, 1.0),
    "stagnation_epsilon_boost": (0.0, 0.5),
    "time_penalty": (-1.0, 0.0),
    "distance_penalty": (-0.1, 0.0),
    "forward_reward": (0.0, 2.0),
    "progress_scale": (1.0, 20.0),
    "cover_progress_multiplier": (1.0, 5.0),
    "risky_progress_multiplier": (0.0, 1.0),
    "cover_bonus": (0.0, 1.0),
    "cover_streak_bonus": (0.0, 0.5),
    "cover_streak_cap": (1, 50),
    "tactical_cover_bonus": (0.0, 1.0),
    "goal_reward": (0.0, 500.0),
    "completion_reward": (0.0, 1000.0),
    "proximity_weight": (0.0, 50.0),
    "proximity_cap": (0.0, 10.0),
    "risk_exposure_weight": (0.0, 20.0),
    "risk_exposure_increment": (0.0, 1.0),
    "safe_distance_reward": (0.0, 1.0),
    "stealth_reward": (0.0, 1.0),
    "predictive_wait_reward": (0.0, 1.0),
    "exploration_bonus": (0.0, 1.0),
    "stagnation_penalty": (-5.0, 0.0),
    "detection_penalty": (-20.0, 0.0),
    "wall_penalty": (-10.0, 0.0),
    "enemy_radius": (0.5, 5.0),
    "los_range": (1.0, 10.0),
    "max_steps": (1, 10_000),
}

_INTEGER_FIELDS = frozenset({"cover_streak_cap", "max_steps"})

# Changing any of these invalidates the precomputed visibility sets
VISIBILITY_FIELDS = frozenset({"enemy_radius", "los_range"})
