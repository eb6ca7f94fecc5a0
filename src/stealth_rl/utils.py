"""
utils.py - Small, reusable helpers for training runs and plots.

Includes:
- Seeding and RNG utilities
- Episode logging and rolling averages
- Learning-curve plot
- Value heatmap and greedy-policy arrows over the mission map
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional

import numpy as np
import matplotlib.pyplot as plt

from .gridmap import MOVES, GridMap
from .policy import QTable, StateKey, greedy_policy_grid

if TYPE_CHECKING:
    from .simulation import StealthSimulation


# -----------------------------
# Reproducibility / RNG
# -----------------------------

def set_seed(seed: Optional[int] = None) -> np.random.Generator:
    """
    Create a NumPy Generator seeded with `seed`.

    Parameters
    ----------
    seed : int or None
        If None, uses unpredictable entropy; else deterministic.

    Returns
    -------
    np.random.Generator
    """
    return np.random.default_rng(seed)


# -----------------------------
# Logging / smoothing
# -----------------------------

@dataclass
class EpisodeLog:
    """
    Per-episode metrics gathered during training
    """
    returns: List[float] = field(default_factory=list)
    lengths: List[int] = field(default_factory=list)
    successes: List[bool] = field(default_factory=list)
    detections: List[int] = field(default_factory=list)

    def append(self, G: float, L: int, success: bool = False, detected: int = 0) -> None:
        self.returns.append(G)
        self.lengths.append(L)
        self.successes.append(success)
        self.detections.append(detected)

    def __len__(self) -> int:
        return len(self.returns)

    def success_rate(self, last: Optional[int] = None) -> float:
        """Fraction of successful episodes, optionally over the last `last` only."""
        s = self.successes if last is None else self.successes[-last:]
        return float(np.mean(s)) if s else 0.0


def rolling(x, k: int = 25) -> np.ndarray:
    """
    Rolling average of `x`:
    - uses 'valid' convolution
    - pads the front with the first smoothed value.

    This keeps the length equal to len(x).
    """
    x = np.asarray(x, dtype=float)
    if len(x) == 0:
        return np.array([])
    k = max(1, min(k, len(x)))
    y = np.convolve(x, np.ones(k)/k, mode="valid")
    pad = np.full(k-1, y[0])
    return np.concatenate([pad, y])


def plot_learning_curve(returns: List[float], window: int = 21,
                        title: str = "Learning Curve") -> None:
    """
    Plot raw and smoothed episode returns.
    """
    plt.figure(figsize=(7.5, 4))
    r = np.asarray(returns, dtype=float)
    rs = rolling(r, window)
    plt.plot(r, alpha=0.35, label="Return (raw)")
    plt.plot(rs, linewidth=2.0, label=f"Return (MA{window})")
    plt.xlabel("Episode")
    plt.ylabel("Return")
    plt.title(title)
    plt.legend()
    plt.tight_layout()
    plt.show()


# -----------------------------
# Map-specific helpers
# -----------------------------

def value_grid(q_table: QTable, grid: GridMap, bucket: str = "far",
               returning: bool = False) -> np.ndarray:
    """
    Map V(s) = max_a Q(s,a) onto a (rows x cols) grid for one distance
    bucket and mission phase. Tiles without a learned row are NaN.
    """
    V = np.full((grid.rows, grid.cols), np.nan)
    for r, c in grid.cells():
        key = StateKey(r, c, grid.is_cover((r, c)), bucket, returning)
        if key in q_table:
            V[r, c] = float(np.max(q_table.row(key)))
    return V


def plot_world(sim: "StealthSimulation", bucket: str = "far", returning: bool = False,
               title: str = "Value & Policy (Top-Left Origin)") -> None:
    """
    Visualize the learned values as a heatmap with greedy-policy arrows,
    walls and cover outlined, and the enemy patrol paths overlaid.
    """
    grid = sim.grid
    Vg = value_grid(sim.q_table, grid, bucket, returning)
    codes = grid.as_codes()

    plt.figure(figsize=(6.6, 6.6))
    plt.imshow(Vg, origin='upper')
    plt.colorbar(label="V(s) = maxₐ Q(s,a)")
    walls = np.ma.masked_where(codes != 1, codes)
    plt.imshow(walls, origin='upper', cmap="Greys", vmin=0, vmax=1)
    plt.title(title)
    plt.xticks(range(grid.cols))
    plt.yticks(range(grid.rows))

    for (r, c), code in np.ndenumerate(codes):
        if code == 2:
            plt.text(c, r, "C", ha="center", va="center", color="white")
        elif code in (3, 4):
            plt.text(c, r, "S" if code == 3 else "G", ha="center", va="center",
                     color="red", fontweight="bold")

    X, Y, U, V = [], [], [], []
    for (r, c), action in greedy_policy_grid(sim.q_table, grid, bucket, returning).items():
        if action == "wait":
            continue
        dr, dc = MOVES[action]
        X.append(c)
        Y.append(r)
        U.append(dc)
        V.append(dr)
    if X:
        plt.quiver(X, Y, U, V, scale=2, angles='xy', scale_units='xy', width=0.004)

    for enemy in sim.enemies:
        rows, cols = zip(*enemy.path)
        plt.plot(cols, rows, linestyle="--", linewidth=1.0)
        plt.scatter([enemy.position[1]], [enemy.position[0]], marker="x", color="red")

    plt.grid(False)
    plt.tight_layout()
    plt.show()
