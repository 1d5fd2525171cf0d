"""End-to-end workflow and regional summaries."""

from .pipeline import AquiferProxyPipeline, PipelineInputs, PipelineResult, run_aquifer_proxy
from .regional import regional_mean, regional_mean_series

__all__ = [
    "AquiferProxyPipeline",
    "PipelineInputs",
    "PipelineResult",
    "regional_mean",
    "regional_mean_series",
    "run_aquifer_proxy",
]
