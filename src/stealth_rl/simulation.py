"""
simulation.py - Episode lifecycle of the stealth mission.

`StealthSimulation` owns the agent, the sentries, the episode statistics
and the learning policy, and advances all of them one tick at a time:

    validate -> detection check -> enemies advance -> step-limit check
    -> choose action -> move / bump -> reward -> Q update -> ε decay

Mission flow per episode: OUTBOUND (to the Goal) -> RETURNING (back to the
Start) -> COMPLETE. Detection and the step cap reset the episode early.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import (Any, Callable, Deque, Dict, List, Mapping, Optional,
                    Sequence, Set, Tuple, Union)

import numpy as np

from .config import HISTORY_LENGTH, VISIBILITY_FIELDS, Hyperparameters
from .gridmap import DEFAULT_MAP, DEFAULT_PATROLS, MOVES, Coord, GridMap
from .patrol import Enemy, EnemySpec, advance, make_enemy
from .persistence import ModelRecord, parse_tile_token, tile_token
from .policy import QLearningPolicy, StateKey, TacticalView, distance_bucket
from .rewards import RewardShaper
from .utils import set_seed
from .visibility import (DETECTION_MODES, VisibilityCache, is_at_risk_of_detection,
                         is_detected, min_enemy_distance)

logger = logging.getLogger(__name__)


class MissionPhase(str, Enum):
    OUTBOUND = "outbound"
    RETURNING = "returning"


class LifecycleState(str, Enum):
    """Outcome status of one tick."""
    OUTBOUND = "OUTBOUND"
    RETURNING = "RETURNING"
    DETECTED_RESET = "DETECTED_RESET"
    STEP_LIMIT_RESET = "STEP_LIMIT_RESET"
    COMPLETE = "COMPLETE"
    RECOVERED_RESET = "RECOVERED_RESET"


@dataclass
class Agent:
    """The stealth agent's position and episode memory."""
    position: Coord
    phase: MissionPhase = MissionPhase.OUTBOUND
    history: Deque[Coord] = field(default_factory=lambda: deque(maxlen=HISTORY_LENGTH))
    visited: Set[Coord] = field(default_factory=set)

    @property
    def returning(self) -> bool:
        return self.phase is MissionPhase.RETURNING

    def reset(self, origin: Coord) -> None:
        self.position = origin
        self.phase = MissionPhase.OUTBOUND
        self.history.clear()
        self.history.append(origin)
        self.visited = {origin}


@dataclass
class EpisodeStats:
    """Counters for the current episode and the run as a whole."""
    episode: int = 1
    step: int = 0
    reward: float = 0.0
    episode_reward: float = 0.0
    total_reward: float = 0.0
    cover_uses: int = 0
    detections: int = 0
    successes: int = 0
    stagnation_events: int = 0
    last_detected_step: Optional[int] = None

    def new_episode(self) -> None:
        """Advance the episode counter and clear per-episode counters."""
        self.episode += 1
        self.step = 0
        self.reward = 0.0
        self.episode_reward = 0.0
        self.cover_uses = 0


@dataclass
class StepOutcome:
    """
    Result of one tick.

    Attributes
    ----------
    position : Coord
        Agent position after the tick.
    path : list[Coord]
        Cells traversed this tick (previous and new position when moved).
    done : bool
        The episode ended (completion or step cap).
    reward : float
    detected : bool
    reset : bool
        Agent and enemies were put back to their starting cells.
    exposures : int
        Cumulative number of detections.
    status : LifecycleState
    action : str or None
        Action taken, None when the tick ended before action selection.
    """
    position: Coord
    path: List[Coord]
    done: bool
    reward: float
    detected: bool
    reset: bool
    exposures: int
    status: LifecycleState
    action: Optional[str] = None


ModeSource = Union[str, Callable[[], str]]


class StealthSimulation:
    """
    Single-agent stealth mission trained with tabular Q-learning.

    Parameters
    ----------
    grid : GridMap, optional
        Tile layout; the reference 10x10 map by default.
    patrols : sequence of EnemySpec, optional
        Sentry routes; the reference patrols when `grid` is also omitted,
        otherwise no enemies.
    params : Hyperparameters, optional
    detection_mode : str or callable
        ``radius``, ``line`` or ``none``, or a zero-argument callable that
        returns one of them each time detection is evaluated.
    seed : int or None
        Seed for exploration and Q-row initialisation.
    model_sink : callable, optional
        Receives a `ModelRecord` every time the mission is completed.

    Raises
    ------
    ValueError
        If a patrol route cannot be placed on the grid.
    """

    def __init__(self,
                 grid: Optional[GridMap] = None,
                 patrols: Optional[Sequence[EnemySpec]] = None,
                 params: Optional[Hyperparameters] = None,
                 detection_mode: ModeSource = "radius",
                 seed: Optional[int] = None,
                 model_sink: Optional[Callable[[ModelRecord], None]] = None) -> None:
        if grid is None:
            grid = GridMap(DEFAULT_MAP)
            if patrols is None:
                patrols = [EnemySpec(route, facing) for route, facing in DEFAULT_PATROLS]
        self.grid = grid
        self.params = params or Hyperparameters()
        self._mode_source = detection_mode
        self._bad_mode: Optional[str] = None
        self.model_sink = model_sink
        self.running = False

        self.rng: np.random.Generator = set_seed(seed)
        self.enemies: List[Enemy] = [make_enemy(i, spec, grid)
                                     for i, spec in enumerate(patrols or ())]
        self.cache = VisibilityCache(grid, self.params.enemy_radius, self.params.los_range)
        self.policy = QLearningPolicy(self.rng, self.params.epsilon)
        self.shaper = RewardShaper(grid)
        self.agent = Agent(position=grid.start)
        self.agent.reset(grid.start)
        self.stats = EpisodeStats()

        self._last_transition: Optional[Tuple[StateKey, str]] = None
        self._lock = threading.RLock()
        logger.info("Simulation ready: %r with %d enemies", grid, len(self.enemies))

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def detection_mode(self) -> str:
        """Current mode; unknown values are reported once and treated as ``none``."""
        mode = self._mode_source() if callable(self._mode_source) else self._mode_source
        if mode in DETECTION_MODES:
            return mode
        if mode != self._bad_mode:
            logger.warning("Unknown detection mode %r, treating as none", mode)
            self._bad_mode = mode
        return "none"

    @property
    def epsilon(self) -> float:
        return self.policy.epsilon

    @property
    def q_table(self):
        return self.policy.q_table

    def target(self) -> Coord:
        return self.grid.start if self.agent.returning else self.grid.goal

    def min_enemy_distance(self) -> float:
        return min_enemy_distance(self.agent.position, self.enemies)

    def get_state(self) -> StateKey:
        """Discretised state of the current tick."""
        r, c = self.agent.position
        return StateKey(r, c, self.grid.is_cover(self.agent.position),
                        distance_bucket(self.min_enemy_distance()),
                        self.agent.returning)

    def is_detected(self) -> bool:
        return is_detected(self.grid, self.agent.position, self.enemies,
                           self.cache, self.detection_mode)

    def is_at_risk_of_detection(self) -> bool:
        return is_at_risk_of_detection(self.grid, self.agent.position, self.enemies)

    def get_metrics(self) -> Dict[str, Any]:
        """Snapshot of counters for display."""
        metrics = asdict(self.stats)
        metrics.update(
            exploration_rate=self.policy.epsilon,
            exposures=self.stats.detections,
            risk_exposure=self.shaper.state.risk_exposure,
            mission_status="Returning" if self.agent.returning else "To Goal",
            q_states=len(self.policy.q_table),
        )
        return metrics

    # ------------------------------------------------------------------
    # Validation and resets
    # ------------------------------------------------------------------

    def validate(self) -> bool:
        """True iff agent and every enemy stand on passable in-bounds cells."""
        if self.grid is None or self.agent is None or self.enemies is None:
            return False
        if not self.grid.is_passable(self.agent.position):
            return False
        for enemy in self.enemies:
            if not enemy.path or not self.grid.is_passable(enemy.position):
                return False
        return True

    def _reset_positions(self) -> None:
        self.agent.reset(self.grid.start)
        for enemy in self.enemies:
            enemy.reset()
        self.shaper.reset()
        self._last_transition = None

    def _start_new_episode(self) -> None:
        self.stats.new_episode()
        self._reset_positions()

    def reset_simulation(self) -> StepOutcome:
        """Abandon the current episode and start the next one."""
        with self._lock:
            self._start_new_episode()
            logger.info("Manual reset to episode %d", self.stats.episode)
            return self._outcome([self.agent.position], done=False, reward=0.0,
                                 reset=True, status=LifecycleState.OUTBOUND)

    def clear_model(self) -> None:
        """Forget everything learned and restart from episode 1."""
        with self._lock:
            self.policy.q_table.clear()
            self.policy.epsilon = self.params.epsilon
            self._reset_positions()
            self.stats = EpisodeStats()
            logger.info("Model cleared, starting fresh training")

    # ------------------------------------------------------------------
    # Parameters
    # ------------------------------------------------------------------

    def update_params(self, partial: Mapping[str, Any]
                      ) -> Tuple[Dict[str, float], Dict[str, str]]:
        """
        Merge validated parameter values into the live configuration.

        Returns
        -------
        applied : dict
            Accepted keys and their clamped values.
        rejected : dict
            Rejected keys and the reason.
        """
        with self._lock:
            params, applied, rejected = self.params.updated(partial)
            self.params = params
            if "epsilon" in applied:
                self.policy.epsilon = params.epsilon
            if VISIBILITY_FIELDS & applied.keys():
                self.cache = VisibilityCache(self.grid, params.enemy_radius, params.los_range)
            if applied:
                logger.info("Updated parameters: %s", applied)
            return applied, rejected

    # ------------------------------------------------------------------
    # Model import / export
    # ------------------------------------------------------------------

    def export_model(self) -> ModelRecord:
        with self._lock:
            return ModelRecord(
                q_table=self.policy.q_table.to_dict(),
                epsilon=self.policy.epsilon,
                risk_exposure=self.shaper.state.risk_exposure,
                visited_tiles=sorted(tile_token(p) for p in self.agent.visited),
            )

    def import_model(self, record: Union[ModelRecord, Mapping[str, Any]]) -> None:
        """
        Restore learned state. Missing fields fall back to the minimum ε,
        zero exposure and a visited set holding only the agent's tile.
        A loaded ε is clamped into [min_epsilon, 1].
        """
        if not isinstance(record, ModelRecord):
            record = ModelRecord.from_dict(record)
        with self._lock:
            skipped = self.policy.q_table.load_dict(record.q_table)
            epsilon = self.params.min_epsilon if record.epsilon is None else record.epsilon
            self.policy.epsilon = min(1.0, max(self.params.min_epsilon, float(epsilon)))
            self.shaper.state.risk_exposure = record.risk_exposure

            visited = set()
            for token in record.visited_tiles:
                try:
                    visited.add(parse_tile_token(token))
                except ValueError:
                    logger.warning("Skipping malformed visited tile %r", token)
            self.agent.visited = visited or {self.agent.position}
            logger.info("Model imported: %d states (%d skipped), epsilon=%.3f",
                        len(self.policy.q_table), skipped, self.policy.epsilon)

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def _outcome(self, path: List[Coord], *, done: bool, reward: float, reset: bool,
                 status: LifecycleState, detected: bool = False,
                 action: Optional[str] = None) -> StepOutcome:
        return StepOutcome(position=self.agent.position, path=path, done=done,
                           reward=reward, detected=detected, reset=reset,
                           exposures=self.stats.detections, status=status,
                           action=action)

    def _tactical_view(self, min_d: float) -> TacticalView:
        return TacticalView(grid=self.grid, position=self.agent.position,
                            target=self.target(),
                            enemy_positions=tuple(e.position for e in self.enemies),
                            visited=frozenset(self.agent.visited),
                            min_distance=min_d)

    def step(self) -> StepOutcome:
        """Advance the simulation by one tick."""
        with self._lock:
            return self._step()

    def _step(self) -> StepOutcome:
        params = self.params

        # 1. invalid state -> defensive reset
        if not self.validate():
            logger.warning("Invalid simulation state (agent=%s), resetting to origin",
                           getattr(self.agent, "position", None))
            self._reset_positions()
            self.stats.step = 0
            self.stats.reward = 0.0
            self.stats.episode_reward = 0.0
            return self._outcome([self.agent.position], done=False, reward=0.0,
                                 reset=True, status=LifecycleState.RECOVERED_RESET)

        state = self.get_state()

        # 2. detection
        if self.is_detected():
            # scored against the cell the agent came from, not the one it stands on
            history = self.agent.history
            previous = history[-2] if len(history) >= 2 else None
            reward = (self.shaper.calculate(self.agent, self.enemies, params,
                                            previous=previous, commit=False)
                      + params.detection_penalty)
            prev_state, prev_action = self._last_transition or (state, "wait")
            self.policy.update(prev_state, prev_action, reward, state,
                               params.alpha, params.gamma)
            self.stats.detections += 1
            self.stats.last_detected_step = self.stats.step
            self.stats.reward = reward
            self.stats.total_reward += reward
            logger.info("Detected at %s on step %d, episode %d",
                        self.agent.position, self.stats.step, self.stats.episode)
            self._start_new_episode()
            self.policy.reexplore(params.reexplore_epsilon)
            return self._outcome([self.agent.position], done=False, reward=reward,
                                 reset=True, detected=True,
                                 status=LifecycleState.DETECTED_RESET)

        # 3. enemies move
        for enemy in self.enemies:
            advance(enemy, self.grid)

        # 4. step cap
        if self.stats.step >= params.max_steps:
            logger.info("Step limit %d reached in episode %d", params.max_steps,
                        self.stats.episode)
            self._start_new_episode()
            return self._outcome([self.agent.position], done=True, reward=0.0,
                                 reset=True, status=LifecycleState.STEP_LIMIT_RESET)

        # 5. act
        min_d = self.min_enemy_distance()
        action = self.policy.choose_action(state, self._tactical_view(min_d))
        prev = self.agent.position
        dr, dc = MOVES[action]
        candidate = (prev[0] + dr, prev[1] + dc)

        reached_goal = completed = False
        if not self.grid.is_passable(candidate):
            reward = params.wall_penalty
            self.shaper.observe_blocked(self.agent, self.enemies)
            path = [prev]
        else:
            self.agent.position = candidate
            path = [prev] if candidate == prev else [prev, candidate]
            if self.grid.is_cover(candidate):
                self.stats.cover_uses += 1
            if not self.agent.returning and candidate == self.grid.goal:
                self.agent.phase = MissionPhase.RETURNING
                reached_goal = True
                logger.info("Goal reached on step %d, returning", self.stats.step + 1)
            elif self.agent.returning and candidate == self.grid.start:
                completed = True

            # 6. reward for the committed move
            reward = self.shaper.calculate(self.agent, self.enemies, params,
                                           reached_goal=reached_goal, completed=completed)
            if "stagnation" in self.shaper.last_terms:
                self.stats.stagnation_events += 1

        self.stats.step += 1
        self.stats.reward = reward
        self.stats.episode_reward += reward
        self.stats.total_reward += reward
        next_state = self.get_state()
        self.policy.update(state, action, reward, next_state, params.alpha, params.gamma)

        history = self.agent.history
        if len(history) == history.maxlen and len(set(history)) == 1:
            self.policy.boost_epsilon(params.stagnation_epsilon_boost)
        self.policy.decay_epsilon(params.epsilon_decay, params.min_epsilon)

        if completed:
            self.stats.successes += 1
            logger.info("Mission complete in %d steps (episode %d, successes %d)",
                        self.stats.step, self.stats.episode, self.stats.successes)
            if self.model_sink is not None:
                try:
                    self.model_sink(self.export_model())
                except Exception:
                    logger.exception("Failed to save model after completed mission")
            self._start_new_episode()
            return self._outcome(path, done=True, reward=reward, reset=True,
                                 status=LifecycleState.COMPLETE, action=action)

        self._last_transition = (state, action)
        status = LifecycleState.RETURNING if self.agent.returning else LifecycleState.OUTBOUND
        return self._outcome(path, done=False, reward=reward, reset=False,
                             status=status, action=action)
