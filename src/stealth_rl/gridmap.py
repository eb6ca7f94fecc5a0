"""
GridMap: the static tile layout of the stealth mission.

- Tiles are Open ('.'), Wall ('W'), Cover ('C'), Start ('S') and Goal ('G')
- Coordinates are (row, col) with (0, 0) at the top-left cell.
- Out-of-bounds queries answer as Wall instead of raising, since every
  prospective move is bounds-checked.

This file exposes:
    - tile symbols and MOVES
    - GridMap: the immutable map
    - DEFAULT_MAP / DEFAULT_PATROLS: the reference mission layout
"""

from __future__ import annotations

from typing import Dict, Iterable, Sequence, Tuple

import numpy as np

Coord = Tuple[int, int]

OPEN = "."
WALL = "W"
COVER = "C"
START = "S"
GOAL = "G"

TILE_SYMBOLS = frozenset({OPEN, WALL, COVER, START, GOAL})

# Unit moves, keyed by action name
MOVES: Dict[str, Coord] = {
    "up": (-1, 0),
    "down": (1, 0),
    "left": (0, -1),
    "right": (0, 1),
    "wait": (0, 0),
}


class GridMap:
    """
    Immutable 2D tile map with exactly one Start and one Goal.

    Parameters
    ----------
    rows : Sequence[str]
        One string per grid row, all of the same length, built from the
        tile symbols.

    Raises
    ------
    ValueError
        If the map is empty or ragged, contains unknown symbols, or does
        not have exactly one Start and one Goal.
    """

    def __init__(self, rows: Sequence[str]) -> None:
        if not rows or not rows[0]:
            raise ValueError("Grid must have at least one row and one column.")
        width = len(rows[0])
        if any(len(r) != width for r in rows):
            raise ValueError("All grid rows must have the same length.")

        tiles = np.array([list(r) for r in rows], dtype="<U1")
        unknown = set(np.unique(tiles)) - TILE_SYMBOLS
        if unknown:
            raise ValueError(f"Unknown tile symbols: {sorted(unknown)}")

        starts = list(zip(*np.nonzero(tiles == START)))
        goals = list(zip(*np.nonzero(tiles == GOAL)))
        if len(starts) != 1:
            raise ValueError(f"Grid needs exactly one Start tile, found {len(starts)}.")
        if len(goals) != 1:
            raise ValueError(f"Grid needs exactly one Goal tile, found {len(goals)}.")

        tiles.setflags(write=False)
        self._tiles = tiles
        self.rows: int = tiles.shape[0]
        self.cols: int = tiles.shape[1]
        self.start: Coord = (int(starts[0][0]), int(starts[0][1]))
        self.goal: Coord = (int(goals[0][0]), int(goals[0][1]))

    # --------------------------------------------------------
    # Queries
    # --------------------------------------------------------

    def in_bounds(self, pos: Coord) -> bool:
        """True iff 0 <= row < rows and 0 <= col < cols."""
        r, c = pos
        return 0 <= r < self.rows and 0 <= c < self.cols

    def tile_at(self, pos: Coord) -> str:
        """
        Tile symbol at `pos`.

        Returns
        -------
        str
            The symbol, or WALL when `pos` is out of bounds.
        """
        if not self.in_bounds(pos):
            return WALL
        return str(self._tiles[pos[0], pos[1]])

    def is_passable(self, pos: Coord) -> bool:
        """True iff `pos` is in bounds and not a wall."""
        return self.tile_at(pos) != WALL

    def is_cover(self, pos: Coord) -> bool:
        return self.tile_at(pos) == COVER

    def neighbors(self, pos: Coord) -> Tuple[Coord, ...]:
        """Passable cells one unit move away from `pos`."""
        nbs = []
        for name, (dr, dc) in MOVES.items():
            if name == "wait":
                continue
            q = (pos[0] + dr, pos[1] + dc)
            if self.is_passable(q):
                nbs.append(q)
        return tuple(nbs)

    def cells(self) -> Iterable[Coord]:
        """Every (row, col) in row-major order."""
        for r in range(self.rows):
            for c in range(self.cols):
                yield (r, c)

    def as_codes(self) -> np.ndarray:
        """
        Integer tile codes for plotting: 0 open, 1 wall, 2 cover, 3 start, 4 goal.
        """
        codes = np.zeros((self.rows, self.cols), dtype=int)
        for code, sym in enumerate((OPEN, WALL, COVER, START, GOAL)):
            codes[self._tiles == sym] = code
        return codes

    def __repr__(self) -> str:
        return f"GridMap({self.rows}x{self.cols}, start={self.start}, goal={self.goal})"


# ---------------------------------------------------------------------
# Reference mission layout
# ---------------------------------------------------------------------

DEFAULT_MAP: Tuple[str, ...] = (
    "S..C......",
    "...C......",
    "W..C......",
    "...W....C.",
    "....W....C",
    "....W....C",
    "...C....W.",
    "..........",
    "C..C....W.",
    ".........G",
)

# Patrol waypoints and initial facing of the three sentries
DEFAULT_PATROLS: Tuple[Tuple[Tuple[Coord, ...], str], ...] = (
    (((2, 4), (2, 5), (2, 6), (2, 7), (2, 6), (2, 5)), "right"),
    (((5, 7), (5, 8), (5, 9), (5, 8), (5, 7)), "right"),
    (((7, 3), (8, 3), (9, 3), (8, 3), (7, 3)), "down"),
)
