"""
tests/test_patrol.py

Unit tests for the enemy patrol engine.

These tests verify:
- Route interpolation into unit steps without duplicated joints
- Facing derived from the direction of travel
- Patrol positions always lie on passable tiles
- Rejection of unusable routes
"""

import pytest

from stealth_rl.gridmap import DEFAULT_MAP, DEFAULT_PATROLS, GridMap
from stealth_rl.patrol import (EnemySpec, advance, derive_facing, interpolate,
                               make_enemy)


def open_grid(width=6, height=6) -> GridMap:
    rows = ["." * width for _ in range(height)]
    rows[0] = "S" + rows[0][1:]
    rows[-1] = rows[-1][:-1] + "G"
    return GridMap(rows)


# =====================================================================
# Interpolation
# =====================================================================

def test_interpolate_back_and_forth():
    """A two-waypoint route expands into a cycle of unit steps."""
    grid = open_grid()
    path = interpolate([(1, 1), (1, 4)], grid)
    assert path == [(1, 1), (1, 2), (1, 3), (1, 4), (1, 3), (1, 2)]


def test_interpolate_steps_are_unit_moves():
    """Consecutive cells of the dense path differ by at most one step."""
    grid = GridMap(DEFAULT_MAP)
    for route, _ in DEFAULT_PATROLS:
        path = interpolate(route, grid)
        for a, b in zip(path, path[1:] + path[:1]):
            assert max(abs(a[0] - b[0]), abs(a[1] - b[1])) <= 1


def test_interpolate_skips_walls():
    """Impassable cells on a segment are dropped."""
    grid = GridMap(["S.W..", "....G"])
    path = interpolate([(0, 0), (0, 4)], grid)
    assert (0, 2) not in path


def test_single_waypoint_route():
    """A one-cell route stays on that cell."""
    grid = open_grid()
    assert interpolate([(2, 2)], grid) == [(2, 2)]


# =====================================================================
# Facing and movement
# =====================================================================

@pytest.mark.parametrize("current, nxt, expected", [
    ((0, 0), (0, 1), "right"),
    ((0, 1), (0, 0), "left"),
    ((0, 0), (1, 0), "down"),
    ((1, 0), (0, 0), "up"),
    ((0, 0), (0, 0), "up"),
    ((0, 0), (1, 1), "up"),
])
def test_derive_facing(current, nxt, expected):
    """Column delta wins, then row delta; ties keep the previous facing."""
    assert derive_facing(current, nxt, "up") == expected


def test_advance_cycles_and_faces_travel():
    """Enemies walk the path, wrap around and face the next cell."""
    grid = open_grid()
    enemy = make_enemy(0, EnemySpec(((1, 1), (1, 3)), "right"), grid)
    seen = []
    for _ in range(4):
        advance(enemy, grid)
        seen.append((enemy.position, enemy.facing))
    assert seen == [((1, 2), "right"), ((1, 3), "left"),
                    ((1, 2), "left"), ((1, 1), "right")]


def test_default_patrols_stay_passable():
    """Every position visited by the reference sentries is passable."""
    grid = GridMap(DEFAULT_MAP)
    enemies = [make_enemy(i, EnemySpec(r, f), grid)
               for i, (r, f) in enumerate(DEFAULT_PATROLS)]
    for _ in range(50):
        for enemy in enemies:
            advance(enemy, grid)
            assert grid.is_passable(enemy.position)


def test_reset_restores_start():
    """reset() puts the enemy back on its first cell and facing."""
    grid = open_grid()
    enemy = make_enemy(0, EnemySpec(((2, 0), (2, 4)), "left"), grid)
    advance(enemy, grid)
    enemy.reset()
    assert enemy.position == (2, 0)
    assert enemy.phase == 0
    assert enemy.facing == "left"


# =====================================================================
# Validation
# =====================================================================

def test_make_enemy_rejects_bad_routes():
    """Empty, walled-in and badly-facing routes raise ValueError."""
    grid = GridMap(["SW", ".G"])
    with pytest.raises(ValueError):
        make_enemy(0, EnemySpec(()), grid)
    with pytest.raises(ValueError):
        make_enemy(0, EnemySpec(((0, 1),)), grid)
    with pytest.raises(ValueError):
        make_enemy(0, EnemySpec(((1, 0),), "north"), grid)
