"""
Headless training entry point.

    python -m stealth_rl --episodes 300 --mode line --save model.json
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Dict, List, Optional

import numpy as np

from .log import setup_logging
from .persistence import JsonModelSink, read_model, write_model
from .simulation import StealthSimulation
from .training import TrainConfig, train_with_logs
from .visibility import DETECTION_MODES

logger = logging.getLogger("stealth_rl")


def _parse_overrides(pairs: List[str]) -> Dict[str, float]:
    overrides: Dict[str, float] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep:
            raise argparse.ArgumentTypeError(f"Expected key=value, got {pair!r}")
        try:
            overrides[key.strip()] = float(value)
        except ValueError:
            raise argparse.ArgumentTypeError(f"Value for {key!r} is not a number: {value!r}")
    return overrides


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="stealth_rl",
                                description="Train the stealth agent with tabular Q-learning.")
    p.add_argument("--episodes", type=int, default=300, help="episodes to train")
    p.add_argument("--max-ticks", type=int, default=1000, help="tick safety cap per episode")
    p.add_argument("--mode", choices=DETECTION_MODES, default="radius",
                   help="enemy detection mode")
    p.add_argument("--seed", type=int, default=None, help="RNG seed")
    p.add_argument("--load", metavar="PATH", help="import a saved model before training")
    p.add_argument("--save", metavar="PATH", help="export the model after training")
    p.add_argument("--autosave", metavar="PATH",
                   help="export the model every time the mission is completed")
    p.add_argument("--set", dest="overrides", action="append", default=[],
                   metavar="KEY=VALUE", help="override a hyperparameter (repeatable)")
    p.add_argument("--snapshot-every", type=int, default=50)
    p.add_argument("--plot", action="store_true", help="show learning curve and policy")
    p.add_argument("--log-level", default="INFO")
    return p


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    try:
        overrides = _parse_overrides(args.overrides)
    except argparse.ArgumentTypeError as e:
        logger.error("%s", e)
        return 2

    sink = JsonModelSink(args.autosave) if args.autosave else None
    sim = StealthSimulation(detection_mode=args.mode, seed=args.seed, model_sink=sink)
    if overrides:
        _, rejected = sim.update_params(overrides)
        for key, reason in rejected.items():
            logger.error("Parameter %s rejected: %s", key, reason)

    if args.load:
        record = read_model(args.load)
        if record is None:
            return 1
        sim.import_model(record)

    logs = train_with_logs(sim, TrainConfig(episodes=args.episodes,
                                            max_ticks=args.max_ticks,
                                            snapshot_every=args.snapshot_every))

    metrics = sim.get_metrics()
    logger.info("Finished %d episodes: successes=%d detections=%d mean return=%.2f",
                len(logs["returns"]), metrics["successes"], metrics["detections"],
                float(np.mean(logs["returns"])) if len(logs["returns"]) else 0.0)

    if args.save:
        write_model(args.save, sim.export_model())

    if args.plot:
        from . import utils
        utils.plot_learning_curve(logs["returns"], title=f"Stealth agent ({args.mode})")
        utils.plot_world(sim)
    return 0


if __name__ == "__main__":
    sys.exit(main())
