"""
rewards.py - Composite reward for the stealth agent.

The reward of a tick is built from additive terms, applied in order:

 1. time penalty
 2. progress toward the mission target (plus a distance penalty)
 3. cover occupancy, cover streak and tactical cover use
 4. goal / completion bonuses
 5. proximity penalty
 6. risk exposure penalty, or stealth bonus when nobody is close
 7. safe-distance bonus
 8. predictive-wait bonus
 9. exploration bonus
10. stagnation penalty

Wall bumps do not go through this function; the lifecycle assigns them a
flat penalty and calls `RewardShaper.observe_blocked` instead.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Optional, Sequence

from .config import NEAR_RISK_DISTANCE, RISK_RADIUS, Hyperparameters
from .gridmap import Coord, GridMap
from .patrol import Enemy
from .visibility import enemies_within, euclidean, min_enemy_distance

if TYPE_CHECKING:
    from .simulation import Agent

logger = logging.getLogger(__name__)


@dataclass
class ShapingState:
    """Accumulators carried between ticks of one episode."""
    risk_exposure: float = 0.0
    cover_streak: int = 0
    prev_target_distance: Optional[float] = None
    prev_min_enemy_distance: Optional[float] = None


class RewardShaper:
    """
    Computes shaped rewards and owns the cross-tick accumulators.

    Parameters
    ----------
    grid : GridMap

    Attributes
    ----------
    state : ShapingState
        Risk exposure, cover streak and previous distances.
    last_terms : dict[str, float]
        Terms of the most recent committed calculation, by name.
    """

    def __init__(self, grid: GridMap) -> None:
        self.grid = grid
        self.state = ShapingState()
        self.last_terms: Dict[str, float] = {}

    def reset(self) -> None:
        """Clear episode-scoped accumulators."""
        self.state = ShapingState()
        self.last_terms = {}

    def target_of(self, agent: "Agent") -> Coord:
        return self.grid.start if agent.returning else self.grid.goal

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    def calculate(self, agent: "Agent", enemies: Sequence[Enemy],
                  params: Hyperparameters, *,
                  reached_goal: bool = False, completed: bool = False,
                  previous: Optional[Coord] = None, commit: bool = True) -> float:
        """
        Reward for the agent's current situation.

        Parameters
        ----------
        agent : Agent
            Position, phase, visited tiles and position history.
        enemies : sequence of Enemy
        params : Hyperparameters
            Reward weights.
        reached_goal : bool
            The agent just reached the Goal while outbound.
        completed : bool
            The agent just returned to the Start.
        previous : Coord, optional
            Cell the agent came from. Defaults to the last recorded
            position, which is already the current cell once a move has
            been committed.
        commit : bool
            If False, nothing is written back (used for snapshots).

        Returns
        -------
        float
            Sum of the reward terms.
        """
        st = self.state
        pos = agent.position
        terms: Dict[str, float] = {}
        prev_pos = previous
        if prev_pos is None and agent.history:
            prev_pos = agent.history[-1]
        in_cover = self.grid.is_cover(pos)
        min_d = min_enemy_distance(pos, enemies)

        # 1. time
        terms["time"] = params.time_penalty

        # 2. progress toward the target
        # the tick that reaches the Goal is still scored against the Goal
        target = self.grid.goal if reached_goal else self.target_of(agent)
        new_target_d = euclidean(pos, target)
        prev_target_d = st.prev_target_distance
        if prev_target_d is None:
            prev_target_d = euclidean(prev_pos, target) if prev_pos is not None else new_target_d
        if new_target_d < prev_target_d:
            forward = params.forward_reward * (params.progress_scale / max(1.0, new_target_d))
            if in_cover:
                forward *= params.cover_progress_multiplier
            if min_d <= NEAR_RISK_DISTANCE:
                forward *= params.risky_progress_multiplier
            terms["progress"] = forward
        terms["distance"] = params.distance_penalty * new_target_d

        # 3. cover
        streak = st.cover_streak
        if in_cover:
            streak = min(streak + 1, params.cover_streak_cap)
            terms["cover"] = params.cover_bonus + streak * params.cover_streak_bonus
            if min_d <= RISK_RADIUS:
                terms["tactical_cover"] = params.tactical_cover_bonus
        else:
            streak = 0

        # 4. terminal bonuses
        exposure = st.risk_exposure
        if reached_goal:
            terms["goal"] = params.goal_reward
            exposure = 0.0
            streak = 0
        if completed:
            terms["completion"] = params.completion_reward

        # 5. proximity
        if not math.isinf(min_d):
            terms["proximity"] = -min(params.proximity_cap,
                                      params.proximity_weight / min_d)

        # 6. risk exposure / stealth
        exposed = enemies_within(pos, enemies, RISK_RADIUS)
        if exposed:
            exposure += exposed * params.risk_exposure_increment
            terms["risk"] = -params.risk_exposure_weight * exposure
        else:
            exposure = 0.0
            terms["stealth"] = params.stealth_reward

        # 7. safe distance
        if min_d > RISK_RADIUS:
            terms["safe_distance"] = params.safe_distance_reward

        # 8. predictive wait
        prev_min_d = st.prev_min_enemy_distance
        if (prev_pos == pos and prev_min_d is not None
                and min_d < prev_min_d and min_d <= RISK_RADIUS):
            terms["predictive_wait"] = params.predictive_wait_reward

        # 9. exploration
        if pos not in agent.visited:
            terms["exploration"] = params.exploration_bonus

        # 10. stagnation
        if prev_pos == pos:
            terms["stagnation"] = params.stagnation_penalty

        total = float(sum(terms.values()))

        if commit:
            st.prev_target_distance = euclidean(pos, self.target_of(agent))
            st.prev_min_enemy_distance = min_d
            st.cover_streak = streak
            st.risk_exposure = exposure
            agent.visited.add(pos)
            agent.history.append(pos)
            self.last_terms = terms
            logger.debug("Reward %.3f at %s: %s", total, pos, self.last_terms)
        return total

    def observe_blocked(self, agent: "Agent", enemies: Sequence[Enemy]) -> None:
        """
        Bookkeeping for a tick whose move was blocked by a wall.

        Only the position history and the distance trackers advance.
        """
        self.state.prev_target_distance = euclidean(agent.position, self.target_of(agent))
        self.state.prev_min_enemy_distance = min_enemy_distance(agent.position, enemies)
        agent.history.append(agent.position)
        self.last_terms = {}
