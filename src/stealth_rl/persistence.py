"""
persistence.py - Saved-model record and its JSON file boundary.

The simulation only exchanges a plain `ModelRecord`; reading and writing
files happens here and is never done inside a tick.
"""

from __future__ import annotations

import json
import logging
import numbers
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass
class ModelRecord:
    """
    Learned state of the agent.

    Attributes
    ----------
    q_table : dict[str, dict[str, float]]
        State tokens mapped to per-action values.
    epsilon : float or None
        Exploration rate; None means "use the configured minimum".
    risk_exposure : float
        Risk-exposure accumulator.
    visited_tiles : list[str]
        ``"row,col"`` strings of tiles visited in the current episode.
    """
    q_table: Dict[str, Dict[str, float]] = field(default_factory=dict)
    epsilon: Optional[float] = None
    risk_exposure: float = 0.0
    visited_tiles: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "qTable": self.q_table,
            "epsilon": self.epsilon,
            "riskExposure": self.risk_exposure,
            "visitedTiles": list(self.visited_tiles),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ModelRecord":
        """
        Build a record from saved data, defaulting anything missing or
        of the wrong type.
        """
        q_table = data.get("qTable")
        if not isinstance(q_table, dict):
            if q_table is not None:
                logger.warning("Ignoring qTable of type %s", type(q_table).__name__)
            q_table = {}

        epsilon = data.get("epsilon")
        if isinstance(epsilon, bool) or not isinstance(epsilon, numbers.Real) or not epsilon:
            # zero and missing both fall back, as the saved format always did
            epsilon = None

        exposure = data.get("riskExposure")
        if isinstance(exposure, bool) or not isinstance(exposure, numbers.Real):
            exposure = 0.0

        visited = data.get("visitedTiles")
        if not isinstance(visited, list):
            visited = []
        visited = [v for v in visited if isinstance(v, str)]

        return cls(q_table=q_table, epsilon=None if epsilon is None else float(epsilon),
                   risk_exposure=float(exposure), visited_tiles=visited)


def tile_token(pos) -> str:
    return f"{pos[0]},{pos[1]}"


def parse_tile_token(token: str):
    """
    ``"row,col"`` -> (row, col).

    Raises
    ------
    ValueError
        If the token is malformed.
    """
    r, c = token.split(",")
    return (int(r), int(c))


def write_model(path: PathLike, record: ModelRecord) -> Path:
    """Write `record` as JSON to `path` and return the path."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as fh:
        json.dump(record.to_dict(), fh)
    logger.info("Model saved to %s (%d states)", path, len(record.q_table))
    return path


def read_model(path: PathLike) -> Optional[ModelRecord]:
    """
    Read a saved model.

    Returns
    -------
    ModelRecord or None
        None when the file cannot be read or is not a JSON object.
    """
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, json.JSONDecodeError) as e:
        logger.error("Failed to load model from %s: %s", path, e)
        return None
    if not isinstance(data, dict):
        logger.error("Model file %s does not hold a JSON object", path)
        return None
    logger.info("Model loaded from %s", path)
    return ModelRecord.from_dict(data)


class JsonModelSink:
    """Callable that writes every record it receives to one JSON file."""

    def __init__(self, path: PathLike) -> None:
        self.path = Path(path)
        self.saves = 0

    def __call__(self, record: ModelRecord) -> None:
        write_model(self.path, record)
        self.saves += 1
