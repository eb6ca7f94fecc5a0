"""
tests/test_persistence.py

Unit tests for the saved-model record and its JSON files.

These tests verify:
- The camelCase field layout of saved models
- Defaults for missing or mistyped fields
- Export / import round trip through a file
- Unreadable files return None instead of raising
"""

import json

import pytest

from stealth_rl.persistence import (JsonModelSink, ModelRecord, parse_tile_token,
                                    read_model, tile_token, write_model)
from stealth_rl.simulation import StealthSimulation


def test_record_layout():
    record = ModelRecord(q_table={"0,0,0,far,0": {"up": 1.0}}, epsilon=0.2,
                         risk_exposure=0.3, visited_tiles=["0,0"])
    assert record.to_dict() == {
        "qTable": {"0,0,0,far,0": {"up": 1.0}},
        "epsilon": 0.2,
        "riskExposure": 0.3,
        "visitedTiles": ["0,0"],
    }


def test_from_dict_defaults():
    """Missing, zero and mistyped fields fall back to their defaults."""
    record = ModelRecord.from_dict({"qTable": [], "epsilon": 0, "riskExposure": "x",
                                    "visitedTiles": ["1,1", 5]})
    assert record.q_table == {}
    assert record.epsilon is None
    assert record.risk_exposure == 0.0
    assert record.visited_tiles == ["1,1"]


def test_tile_tokens():
    assert tile_token((3, 4)) == "3,4"
    assert parse_tile_token("3,4") == (3, 4)
    with pytest.raises(ValueError):
        parse_tile_token("3;4")


def test_file_round_trip(tmp_path):
    """A trained model saved to disk and loaded into a fresh simulation matches."""
    sim = StealthSimulation(seed=5)
    for _ in range(60):
        sim.step()
    path = write_model(tmp_path / "models" / "model.json", sim.export_model())

    loaded = read_model(path)
    fresh = StealthSimulation(seed=99)
    fresh.import_model(loaded)

    assert fresh.q_table.to_dict() == sim.q_table.to_dict()
    assert fresh.epsilon == pytest.approx(sim.epsilon)
    assert fresh.shaper.state.risk_exposure == pytest.approx(sim.shaper.state.risk_exposure)
    assert fresh.agent.visited == sim.agent.visited


def test_import_defaults():
    """An empty record restores the minimum ε and the current tile only."""
    sim = StealthSimulation(seed=1)
    sim.import_model({})
    assert sim.epsilon == pytest.approx(sim.params.min_epsilon)
    assert sim.agent.visited == {sim.agent.position}
    assert len(sim.q_table) == 0


def test_read_model_failures(tmp_path):
    assert read_model(tmp_path / "missing.json") is None
    bad = tmp_path / "bad.json"
    bad.write_text("{not json")
    assert read_model(bad) is None
    listing = tmp_path / "list.json"
    listing.write_text(json.dumps([1, 2]))
    assert read_model(listing) is None


def test_sink_counts_saves(tmp_path):
    sink = JsonModelSink(tmp_path / "auto.json")
    sink(ModelRecord())
    sink(ModelRecord(epsilon=0.5))
    assert sink.saves == 2
    assert read_model(sink.path).epsilon == 0.5
