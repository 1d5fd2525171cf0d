"""Configuration records for the residual storage-trend pipeline.

Defaults reproduce the reference Amazon aquifer configuration: GRACE-era
record from April 2002, trends from 2003, split-record comparison at 2013,
permanent-water exclusion only, and hotspot thresholds in cm/yr.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields, replace
import json
from pathlib import Path
from typing import Any, Dict, Mapping, Tuple, Union

import pandas as pd


class ConfigurationError(ValueError):
    """Raised when configuration values are inconsistent."""


@dataclass(frozen=True)
class QualityGate:
    """Thresholds deciding whether a pixel's trend is trustworthy."""

    min_observations: int
    min_goodness_of_fit: float
    min_completeness: float

    def is_at_least_as_strict_as(self, other: "QualityGate") -> bool:
        return (
            self.min_observations >= other.min_observations
            and self.min_goodness_of_fit >= other.min_goodness_of_fit
            and self.min_completeness >= other.min_completeness
        )

    def __str__(self) -> str:
        return (
            f"nObs>={self.min_observations}, r2>={self.min_goodness_of_fit:.2f}, "
            f"completeness>={self.min_completeness:.2f}"
        )


# Coverage screening vs. confidence screening
EXPLORATORY_GATE = QualityGate(min_observations=18, min_goodness_of_fit=0.00, min_completeness=0.30)
CONSERVATIVE_GATE = QualityGate(min_observations=60, min_goodness_of_fit=0.10, min_completeness=0.70)


@dataclass(frozen=True)
class PipelineConfig:
    """Parameters of one pipeline run.

    Dates are half-open: ``end_date`` is exclusive and is capped to gravity
    availability at run time.  Thresholds are in cm/yr.
    """

    start_date: pd.Timestamp = pd.Timestamp("2002-04-01")
    end_date: pd.Timestamp = pd.Timestamp("2025-10-01")
    trend_start: pd.Timestamp = pd.Timestamp("2003-01-01")
    split_date: pd.Timestamp = pd.Timestamp("2013-01-01")

    occurrence_threshold: float = 100.0
    severe_threshold: float = -0.50
    moderate_threshold: float = -0.20

    exploratory: QualityGate = EXPLORATORY_GATE
    conservative: QualityGate = CONSERVATIVE_GATE

    soil_layers: Tuple[str, ...] = (
        "SoilMoi0_10cm_inst",
        "SoilMoi10_40cm_inst",
        "SoilMoi40_100cm_inst",
        "SoilMoi100_200cm_inst",
    )
    canopy_variable: str = "CanopInt_inst"
    swe_variable: str = "SWE_inst"
    mm_to_cm: float = 0.1

    tile_shape: Tuple[int, int] = (32, 32)
    n_processes: int = 1
    verbose: bool = False

    def __post_init__(self) -> None:
        for name in ("start_date", "end_date", "trend_start", "split_date"):
            object.__setattr__(self, name, pd.Timestamp(getattr(self, name)))
        object.__setattr__(self, "soil_layers", tuple(self.soil_layers))
        object.__setattr__(self, "tile_shape", tuple(int(v) for v in self.tile_shape))
        for name in ("exploratory", "conservative"):
            gate = getattr(self, name)
            if isinstance(gate, Mapping):
                object.__setattr__(self, name, QualityGate(**gate))

    def validate(self) -> "PipelineConfig":
        """Return ``self`` or raise :class:`ConfigurationError`."""

        if not self.start_date < self.end_date:
            raise ConfigurationError("start_date must precede end_date")
        if not self.start_date <= self.trend_start < self.end_date:
            raise ConfigurationError("trend_start must lie within [start_date, end_date)")
        if not self.trend_start < self.split_date:
            raise ConfigurationError("split_date must follow trend_start")
        if not 0.0 <= self.occurrence_threshold <= 100.0:
            raise ConfigurationError("occurrence_threshold must lie in [0, 100]")
        if not self.severe_threshold < self.moderate_threshold:
            raise ConfigurationError("severe_threshold must be below moderate_threshold")
        if not self.conservative.is_at_least_as_strict_as(self.exploratory):
            raise ConfigurationError("conservative gate must be at least as strict as the exploratory gate")
        if not self.soil_layers:
            raise ConfigurationError("at least one soil layer is required")
        if self.mm_to_cm <= 0:
            raise ConfigurationError("mm_to_cm must be positive")
        if self.n_processes < 1 or min(self.tile_shape) < 1:
            raise ConfigurationError("n_processes and tile_shape entries must be at least 1")
        return self

    def with_overrides(self, **changes: Any) -> "PipelineConfig":
        return replace(self, **changes)

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "PipelineConfig":
        """Build a configuration from plain values, rejecting unknown keys."""

        known = {f.name for f in fields(cls)}
        unknown = set(values) - known
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {sorted(unknown)}")
        return cls(**dict(values)).validate()

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "PipelineConfig":
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")
        with path.open("r", encoding="utf-8") as handle:
            return cls.from_mapping(json.load(handle))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for name in ("start_date", "end_date", "trend_start", "split_date"):
            data[name] = getattr(self, name).strftime("%Y-%m-%d")
        return data


__all__ = [
    "CONSERVATIVE_GATE",
    "ConfigurationError",
    "EXPLORATORY_GATE",
    "PipelineConfig",
    "QualityGate",
]
