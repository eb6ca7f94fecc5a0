"""
visibility.py - Line-of-sight cache and detection checks.

Two detection modes are supported:

- ``radius`` : an enemy sees every unoccluded tile within the detection
               radius around it.
- ``line``   : an enemy sees along a straight ray in its facing direction.

``none`` disables detection. The mode is chosen by the caller; this module
only evaluates it. A Cover tile under the agent always suppresses
detection, and a Cover tile under an enemy halves its range.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence

from .config import DISTANCE_FLOOR, NEAR_RISK_DISTANCE, RISK_RADIUS
from .gridmap import MOVES, Coord, GridMap, WALL
from .patrol import FACINGS, Enemy

logger = logging.getLogger(__name__)

DETECTION_MODES = ("radius", "line", "none")


# -----------------------------
# Distance helpers
# -----------------------------

def euclidean(a: Coord, b: Coord) -> float:
    return math.hypot(a[0] - b[0], a[1] - b[1])


def min_enemy_distance(pos: Coord, enemies: Iterable[Enemy]) -> float:
    """
    Distance to the closest enemy, floored at DISTANCE_FLOOR.

    Returns ``math.inf`` when there are no enemies.
    """
    best = math.inf
    for enemy in enemies:
        best = min(best, euclidean(pos, enemy.position))
    return max(DISTANCE_FLOOR, best)


def enemies_within(pos: Coord, enemies: Iterable[Enemy],
                   radius: float = RISK_RADIUS) -> int:
    """Number of enemies no farther than `radius` from `pos`."""
    return sum(1 for e in enemies if euclidean(pos, e.position) <= radius)


# -----------------------------
# Line-of-sight geometry
# -----------------------------

def bresenham(a: Coord, b: Coord) -> List[Coord]:
    """Cells on the integer line from `a` to `b`, both ends included."""
    r0, c0 = a
    r1, c1 = b
    dr, dc = abs(r1 - r0), abs(c1 - c0)
    sr = 1 if r1 > r0 else -1
    sc = 1 if c1 > c0 else -1
    err = dc - dr
    cells = []
    while True:
        cells.append((r0, c0))
        if (r0, c0) == (r1, c1):
            return cells
        e2 = 2 * err
        if e2 > -dr:
            err -= dr
            c0 += sc
        if e2 < dc:
            err += dc
            r0 += sr


def cast_ray(grid: GridMap, origin: Coord, facing: str, length: float) -> FrozenSet[Coord]:
    """
    Tiles seen along a straight ray, stopping at the first wall or edge.

    The origin tile itself is not part of the ray.
    """
    dr, dc = MOVES[facing]
    seen = []
    i = 1
    while i <= length:
        cell = (origin[0] + dr * i, origin[1] + dc * i)
        if grid.tile_at(cell) == WALL:
            break
        seen.append(cell)
        i += 1
    return frozenset(seen)


def visible_disc(grid: GridMap, origin: Coord, radius: float) -> FrozenSet[Coord]:
    """
    Tiles within `radius` of `origin` whose line to it crosses no wall.
    """
    seen = []
    reach = int(math.floor(radius))
    for r in range(origin[0] - reach, origin[0] + reach + 1):
        for c in range(origin[1] - reach, origin[1] + reach + 1):
            cell = (r, c)
            if not grid.is_passable(cell) or euclidean(origin, cell) > radius:
                continue
            if all(grid.tile_at(p) != WALL for p in bresenham(origin, cell)[1:-1]):
                seen.append(cell)
    return frozenset(seen)


@dataclass(frozen=True)
class TileVisibility:
    """Precomputed sight lines for one tile."""
    rays: Dict[str, FrozenSet[Coord]]
    disc: FrozenSet[Coord]


class VisibilityCache:
    """
    Read-only sight lines for every tile of a grid.

    Parameters
    ----------
    grid : GridMap
    radius : float
        Detection radius for the circular set.
    los_range : float
        Length of the directional rays.

    Notes
    -----
    Both ranges are halved for tiles that are Cover. Rebuild the cache
    (construct a new one) when either range changes.
    """

    def __init__(self, grid: GridMap, radius: float, los_range: float) -> None:
        self.grid = grid
        self.radius = float(radius)
        self.los_range = float(los_range)
        self._tiles: Dict[Coord, TileVisibility] = {}
        for cell in grid.cells():
            scale = 0.5 if grid.is_cover(cell) else 1.0
            rays = {f: cast_ray(grid, cell, f, self.los_range * scale) for f in FACINGS}
            disc = visible_disc(grid, cell, self.radius * scale)
            self._tiles[cell] = TileVisibility(rays=rays, disc=disc)
        logger.debug("Built visibility cache: radius=%.2f los_range=%.2f",
                     self.radius, self.los_range)

    def ray(self, origin: Coord, facing: str) -> FrozenSet[Coord]:
        tile = self._tiles.get(origin)
        return tile.rays.get(facing, frozenset()) if tile else frozenset()

    def disc(self, origin: Coord) -> FrozenSet[Coord]:
        tile = self._tiles.get(origin)
        return tile.disc if tile else frozenset()


# -----------------------------
# Detection
# -----------------------------

def is_detected(grid: Optional[GridMap],
                agent_pos: Optional[Coord],
                enemies: Optional[Sequence[Enemy]],
                cache: Optional[VisibilityCache],
                mode: str) -> bool:
    """
    Whether any enemy currently sees the agent.

    Returns False straight away when the mode is ``none``, when any input
    is missing or out of bounds, or when the agent stands on Cover.

    Parameters
    ----------
    grid : GridMap or None
    agent_pos : Coord or None
    enemies : sequence of Enemy or None
    cache : VisibilityCache or None
        Must have been built for `grid`.
    mode : str
        One of ``radius``, ``line`` or ``none``.

    Returns
    -------
    bool
    """
    if mode not in DETECTION_MODES:
        logger.warning("Unknown detection mode %r, treating as none", mode)
        return False
    if mode == "none":
        return False
    if grid is None or cache is None or agent_pos is None or enemies is None:
        return False
    if not grid.in_bounds(agent_pos):
        return False
    if grid.is_cover(agent_pos):
        return False

    for enemy in enemies:
        if not enemy.path or not grid.in_bounds(enemy.position):
            return False
        distance = euclidean(agent_pos, enemy.position)
        scale = 0.5 if grid.is_cover(enemy.position) else 1.0

        if mode == "radius":
            if distance <= cache.radius * scale and agent_pos in cache.disc(enemy.position):
                logger.debug("Agent at %s seen by enemy %d (radius, d=%.2f)",
                             agent_pos, enemy.index, distance)
                return True
        elif mode == "line":
            if (distance <= cache.los_range * scale
                    and agent_pos in cache.ray(enemy.position, enemy.facing)):
                logger.debug("Agent at %s seen by enemy %d (line %s, d=%.2f)",
                             agent_pos, enemy.index, enemy.facing, distance)
                return True
    return False


def is_at_risk_of_detection(grid: GridMap, agent_pos: Coord,
                            enemies: Iterable[Enemy]) -> bool:
    """
    Cheap proximity test ignoring sight lines: an enemy within
    NEAR_RISK_DISTANCE while the agent is not in Cover.
    """
    if grid.is_cover(agent_pos):
        return False
    return any(euclidean(agent_pos, e.position) <= NEAR_RISK_DISTANCE for e in enemies)
