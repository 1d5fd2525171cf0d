"""Residual groundwater-storage trend analysis from gravimetry and land-surface models."""

from .config import CONSERVATIVE_GATE, EXPLORATORY_GATE, ConfigurationError, PipelineConfig, QualityGate
from .analysis import AquiferProxyPipeline, PipelineInputs, PipelineResult, run_aquifer_proxy

__version__ = "0.1.0"

__all__ = [
    "AquiferProxyPipeline",
    "CONSERVATIVE_GATE",
    "ConfigurationError",
    "EXPLORATORY_GATE",
    "PipelineConfig",
    "PipelineInputs",
    "PipelineResult",
    "QualityGate",
    "__version__",
    "run_aquifer_proxy",
]
