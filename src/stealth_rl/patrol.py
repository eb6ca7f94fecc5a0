"""
patrol.py - Enemy sentries walking cyclic patrol routes.

A route is an ordered list of waypoints that wraps from the last back to
the first. It is expanded once into a dense path of unit steps; each tick
an enemy moves one phase along that path and turns to face the next cell.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import List, Sequence, Tuple

from .gridmap import Coord, GridMap

logger = logging.getLogger(__name__)

FACINGS = ("up", "down", "left", "right")


@dataclass(frozen=True)
class EnemySpec:
    """Static description of a sentry: its waypoints and starting facing."""
    route: Tuple[Coord, ...]
    facing: str = "right"


@dataclass
class Enemy:
    """
    A patrolling sentry.

    Attributes
    ----------
    index : int
        Identity of the enemy.
    route : tuple[Coord, ...]
        Original waypoints.
    path : list[Coord]
        Dense unit-step path derived from `route`.
    phase : int
        Index into `path`.
    position : Coord
        Current cell, always `path[phase]`.
    facing : str
        One of up/down/left/right.
    initial_facing : str
        Facing restored on reset.
    """
    index: int
    route: Tuple[Coord, ...]
    path: List[Coord]
    phase: int = 0
    position: Coord = (0, 0)
    facing: str = "right"
    initial_facing: str = "right"

    def reset(self) -> None:
        """Return to the first cell of the patrol."""
        self.phase = 0
        self.position = self.path[0]
        self.facing = self.initial_facing


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def interpolate(route: Sequence[Coord], grid: GridMap) -> List[Coord]:
    """
    Expand waypoints into a dense path of unit steps.

    Each consecutive pair (wrapping last -> first) is walked in
    ``max(|dr|, |dc|)`` steps. Impassable cells are skipped. The endpoint of
    a segment is emitted as the start of the next one, so a cyclic route
    produces no duplicated joints.

    Parameters
    ----------
    route : Sequence[Coord]
        Patrol waypoints.
    grid : GridMap

    Returns
    -------
    list[Coord]
        Dense path; ``[route[0]]`` when nothing survives.
    """
    if not route:
        return []
    dense: List[Coord] = []
    n = len(route)
    for i in range(n):
        (r0, c0), (r1, c1) = route[i], route[(i + 1) % n]
        dr, dc = r1 - r0, c1 - c0
        steps = max(abs(dr), abs(dc))
        for s in range(steps):
            cell = (r0 + _round_half_up(dr * s / steps),
                    c0 + _round_half_up(dc * s / steps))
            if grid.is_passable(cell):
                dense.append(cell)
    if not dense:
        # Single-waypoint routes and fully blocked ones end up here
        return [tuple(route[0])]
    return dense


def derive_facing(current: Coord, nxt: Coord, previous: str) -> str:
    """
    Facing toward `nxt` from `current`.

    Column delta dominates (left/right), otherwise row delta (up/down).
    Equal magnitudes, including no movement, keep `previous`.
    """
    dr, dc = nxt[0] - current[0], nxt[1] - current[1]
    if abs(dc) > abs(dr):
        return "right" if dc > 0 else "left"
    if abs(dr) > abs(dc):
        return "down" if dr > 0 else "up"
    return previous


def make_enemy(index: int, spec: EnemySpec, grid: GridMap) -> Enemy:
    """
    Build an enemy at the start of its patrol.

    Raises
    ------
    ValueError
        If the route is empty or none of its cells are passable.
    """
    if not spec.route:
        raise ValueError(f"Enemy {index} has an empty patrol route.")
    path = interpolate(spec.route, grid)
    if not any(grid.is_passable(p) for p in path):
        raise ValueError(f"Enemy {index} patrol route has no passable cell.")
    if spec.facing not in FACINGS:
        raise ValueError(f"Enemy {index} has unknown facing {spec.facing!r}.")
    enemy = Enemy(index=index, route=tuple(spec.route), path=path,
                  facing=spec.facing, initial_facing=spec.facing)
    enemy.reset()
    return enemy


def advance(enemy: Enemy, grid: GridMap) -> None:
    """
    Move `enemy` one phase along its dense path and update its facing.

    If the new cell is impassable the next phase is tried once; if that
    fails as well the enemy restarts at phase 0.
    """
    n = len(enemy.path)
    phase = (enemy.phase + 1) % n
    if not grid.is_passable(enemy.path[phase]):
        phase = (phase + 1) % n
        if not grid.is_passable(enemy.path[phase]):
            logger.warning("Enemy %d blocked twice, restarting patrol", enemy.index)
            phase = 0

    enemy.phase = phase
    enemy.position = enemy.path[phase]
    enemy.facing = derive_facing(enemy.position, enemy.path[(phase + 1) % n],
                                 enemy.facing)
    logger.debug("Enemy %d at %s facing %s", enemy.index, enemy.position, enemy.facing)
