"""
Package init - expose a clean, minimal API for end users.

Usage
-----
from stealth_rl import StealthSimulation, Hyperparameters
from stealth_rl import train_with_logs, TrainConfig
from stealth_rl import utils    # Optional: smoothing, plots
"""

from .config import Hyperparameters
from .gridmap import DEFAULT_MAP, DEFAULT_PATROLS, GridMap
from .patrol import EnemySpec
from .persistence import ModelRecord, read_model, write_model
from .policy import ACTIONS, StateKey
from .simulation import LifecycleState, MissionPhase, StealthSimulation, StepOutcome
from .training import TrainConfig, run_episode, train_with_logs

# Expose utils as a module so users can do: from stealth_rl import utils
from . import utils

__all__ = [
    "ACTIONS",
    "DEFAULT_MAP",
    "DEFAULT_PATROLS",
    "EnemySpec",
    "GridMap",
    "Hyperparameters",
    "LifecycleState",
    "MissionPhase",
    "ModelRecord",
    "StateKey",
    "StealthSimulation",
    "StepOutcome",
    "TrainConfig",
    "read_model",
    "run_episode",
    "train_with_logs",
    "utils",
    "write_model",
]

__version__ = "0.1.0"
