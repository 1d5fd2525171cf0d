"""Tests for pipeline configuration records."""

from __future__ import annotations

import json

import pytest

pd = pytest.importorskip("pandas")

from aquifer_proxy.config import (
    CONSERVATIVE_GATE,
    EXPLORATORY_GATE,
    ConfigurationError,
    PipelineConfig,
    QualityGate,
)


def test_defaults_are_valid() -> None:
    config = PipelineConfig().validate()
    assert config.start_date == pd.Timestamp("2002-04-01")
    assert config.end_date == pd.Timestamp("2025-10-01")
    assert config.split_date == pd.Timestamp("2013-01-01")
    assert config.exploratory == QualityGate(18, 0.0, 0.30)
    assert config.conservative == QualityGate(60, 0.10, 0.70)


def test_conservative_gate_is_stricter() -> None:
    assert CONSERVATIVE_GATE.is_at_least_as_strict_as(EXPLORATORY_GATE)
    assert not EXPLORATORY_GATE.is_at_least_as_strict_as(CONSERVATIVE_GATE)


@pytest.mark.parametrize(
    "changes",
    [
        {"end_date": "2001-01-01"},
        {"split_date": "2002-06-01"},
        {"severe_threshold": -0.1},
        {"occurrence_threshold": 120.0},
        {"conservative": QualityGate(10, 0.0, 0.3)},
        {"soil_layers": ()},
        {"n_processes": 0},
    ],
)
def test_invalid_values_raise(changes) -> None:
    with pytest.raises(ConfigurationError):
        PipelineConfig().with_overrides(**changes).validate()


def test_from_mapping_coerces_plain_values() -> None:
    config = PipelineConfig.from_mapping(
        {
            "end_date": "2020-01-01",
            "tile_shape": [16, 8],
            "exploratory": {"min_observations": 12, "min_goodness_of_fit": 0.0, "min_completeness": 0.2},
        }
    )
    assert config.end_date == pd.Timestamp("2020-01-01")
    assert config.tile_shape == (16, 8)
    assert config.exploratory.min_observations == 12


def test_from_mapping_rejects_unknown_keys() -> None:
    with pytest.raises(ConfigurationError):
        PipelineConfig.from_mapping({"end": "2020-01-01"})


def test_json_round_trip(tmp_path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps(PipelineConfig(n_processes=2).to_dict()), encoding="utf-8")
    loaded = PipelineConfig.from_json(path)
    assert loaded.n_processes == 2
    assert loaded.soil_layers == PipelineConfig().soil_layers


def test_from_json_missing_file(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        PipelineConfig.from_json(tmp_path / "missing.json")


def test_config_is_hashable_and_has_no_free_form_extras() -> None:
    assert hash(PipelineConfig()) == hash(PipelineConfig())
    with pytest.raises(ConfigurationError):
        PipelineConfig.from_mapping({"extras": {}})
