"""End-to-end residual groundwater-storage trend workflow.

Stages, in order:

1. reject inputs on differing spatial references;
2. cap the requested end date to gravity availability;
3. aggregate gravity and land-surface inputs to monthly composites and
   convert land-surface storage from mm to cm;
4. build the static permanent-water mask;
5. join sources by month and form the residual storage proxy;
6. deseasonalise the masked residual;
7. fit full-record, early and late Theil–Sen trend bundles;
8. apply both quality gates, grade hotspots and their overlap;
9. derive split-record stability layers;
10. relate the slope to mean gravity uncertainty (signal-to-noise proxy);
11. convert the slope to volumetric change and total it over the
    conservative-quality pixels of the region.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Dict, Optional

import pandas as pd
import xarray as xr

from ..config import PipelineConfig
from ..data_processing.raster import Raster, RasterTimeSeries, ensure_aligned
from ..data_processing.source_loaders import EndDateCap, GravityDataLoader, cap_end_date
from ..data_processing.temporal_binning import monthly_composites, scale_channels, sum_channels
from ..data_processing.water_mask import build_water_mask
from ..storage.classification import (
    StabilityLayers,
    channel_mean,
    classify_hotspots,
    hotspot_overlap,
    quality_mask,
    slope_signal_to_noise,
    split_record_stability,
)
from ..storage.deseasonalize import DeseasonalizedSeries, deseasonalize
from ..storage.residual import MASKED_RESIDUAL_CHANNEL, StorageResidualCompositor
from ..storage.trend import TrendBundle, TrendEngine
from ..storage.volumetric import total_volumetric_change, volumetric_rate
from ..utils.geodesy import pixel_area_m2
from ..utils.parallel_processing import TileParallelExecutor

LOGGER = logging.getLogger(__name__)

STORAGE_CHANNEL = GravityDataLoader.STORAGE_CHANNEL
UNCERTAINTY_CHANNEL = GravityDataLoader.UNCERTAINTY_CHANNEL


@dataclass(frozen=True, eq=False)
class PipelineInputs:
    """Pre-loaded pipeline inputs, already clipped to the region of interest.

    Attributes
    ----------
    gravity:
        Gravity solutions carrying ``tws_cm`` and ``tws_unc_cm``.
    land_surface:
        Sub-monthly land-surface samples (soil layers, canopy, SWE) in mm.
    occurrence:
        Static surface-water occurrence (percent).
    pixel_area:
        Optional pixel area in m²; derived from the grid when omitted.
    region:
        Optional boolean region-of-interest mask for the volumetric total.
    """

    gravity: RasterTimeSeries
    land_surface: RasterTimeSeries
    occurrence: Raster
    pixel_area: Optional[Raster] = None
    region: Optional[Raster] = None


@dataclass(eq=False)
class PipelineResult:
    """Every named output of a pipeline run."""

    end_date: EndDateCap
    storage: RasterTimeSeries
    deseasonalized: DeseasonalizedSeries
    water_mask: Raster
    full: TrendBundle
    early: TrendBundle
    late: TrendBundle
    qmask_exploratory: Raster
    qmask_conservative: Raster
    hotspot_exploratory: Raster
    hotspot_conservative: Raster
    hotspot_overlap: Raster
    stability: StabilityLayers
    uncertainty_mean: Raster
    slope_snr: Raster
    swe_mean: Raster
    volumetric_rate: Raster
    total_volumetric_change_km3_yr: float
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def climatology(self) -> Dict[int, Raster]:
        return self.deseasonalized.climatology

    def layers(self) -> Dict[str, Raster]:
        """Output rasters under their export names.

        Early and late windows contribute their fit, count and completeness
        layers under their per-window names next to their slopes.
        """

        layers = {
            "slope_cm_per_yr": self.full.slope,
            "r2_full": self.full.goodness_of_fit,
            "nObs_full": self.full.observation_count,
            "completeness_full": self.full.completeness,
            "qmask_expl": self.qmask_exploratory,
            "qmask_cons": self.qmask_conservative,
            "hotspot_expl": self.hotspot_exploratory,
            "hotspot_cons": self.hotspot_conservative,
            "hotspot_overlap": self.hotspot_overlap,
            "slope_early_cm_per_yr": self.early.slope,
            "slope_late_cm_per_yr": self.late.slope,
            "sign_agree": self.stability.sign_agree,
            "drying_stable": self.stability.drying_stable,
            "tws_unc_mean_cm": self.uncertainty_mean,
            "slope_snr": self.slope_snr,
            "residual_storage_km3_yr": self.volumetric_rate,
        }
        for bundle in (self.early, self.late):
            layers.update(
                (name, raster) for name, raster in bundle.named_layers().items() if not name.startswith("slope_")
            )
        return layers

    def to_dataset(self) -> xr.Dataset:
        """Collect the output layers into one :class:`xarray.Dataset`."""

        ds = xr.Dataset({name: raster.to_xarray(name) for name, raster in self.layers().items()})
        ds.attrs.update(
            {
                "requested_end_date": f"{self.end_date.requested:%Y-%m-%d}",
                "effective_end_date": f"{self.end_date.effective:%Y-%m-%d}",
                "gravity_last_date": f"{self.end_date.last_available:%Y-%m-%d}",
                "total_volumetric_change_km3_yr": self.total_volumetric_change_km3_yr,
            }
        )
        return ds

    def summary(self) -> Dict[str, Any]:
        return {
            "requested_end_date": self.end_date.requested,
            "effective_end_date": self.end_date.effective,
            "gravity_last_date": self.end_date.last_available,
            "end_date_capped": self.end_date.capped,
            "storage_months": len(self.storage),
            "deseasonalized_months": len(self.deseasonalized.series),
            "qmask_expl_pixels": int(self.qmask_exploratory.filled(False).sum()),
            "qmask_cons_pixels": int(self.qmask_conservative.filled(False).sum()),
            "total_volumetric_change_km3_yr": self.total_volumetric_change_km3_yr,
        }


class AquiferProxyPipeline:
    """Run the residual storage-trend workflow for one basin.

    Parameters
    ----------
    config:
        Run parameters; validated on construction.
    executor:
        Tile executor for the trend engine.  Built from ``config`` when
        omitted.
    """

    def __init__(self, config: Optional[PipelineConfig] = None, executor: Optional[TileParallelExecutor] = None) -> None:
        self.config = (config or PipelineConfig()).validate()
        self.executor = executor or TileParallelExecutor(
            n_processes=self.config.n_processes, verbose=self.config.verbose
        )
        self.trend_engine = TrendEngine(self.executor, tile_shape=self.config.tile_shape)
        self.compositor = StorageResidualCompositor()

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------
    @staticmethod
    def check_references(inputs: PipelineInputs) -> None:
        """Fail fast when inputs are not on one spatial reference."""

        references = [inputs.occurrence.reference]
        for series in (inputs.gravity, inputs.land_surface):
            if series:
                references.append(series.reference)
        for optional in (inputs.pixel_area, inputs.region):
            if optional is not None:
                references.append(optional.reference)
        ensure_aligned(*references)

    def monthly_gravity(self, gravity: RasterTimeSeries, end: pd.Timestamp) -> RasterTimeSeries:
        """Monthly gravity composites stamped at their mean observation time."""

        return monthly_composites(
            gravity, self.config.start_date, end, [STORAGE_CHANNEL, UNCERTAINTY_CHANNEL], stamp="mean"
        )

    def monthly_land_surface(self, land_surface: RasterTimeSeries, end: pd.Timestamp) -> Dict[str, RasterTimeSeries]:
        """Soil (summed layers) and surface (canopy, SWE) composites in cm."""

        cfg = self.config
        soil = monthly_composites(land_surface, cfg.start_date, end, cfg.soil_layers)
        soil = scale_channels(sum_channels(soil, cfg.soil_layers, "soil_mm"), cfg.mm_to_cm, {"soil_mm": "soil_cm"})

        surface = monthly_composites(land_surface, cfg.start_date, end, [cfg.canopy_variable, cfg.swe_variable])
        surface = scale_channels(
            surface, cfg.mm_to_cm, {cfg.canopy_variable: "canopy_cm", cfg.swe_variable: "swe_cm"}
        )
        return {"soil": soil, "surface": surface}

    def trend_windows(self, effective_end: pd.Timestamp) -> Dict[str, tuple]:
        """Full, early and late windows, each capped to ``effective_end``."""

        cfg = self.config
        split = min(cfg.split_date, effective_end)
        return {
            "full": (cfg.trend_start, effective_end),
            "early": (cfg.trend_start, split),
            "late": (split, effective_end),
        }

    # ------------------------------------------------------------------
    # Full run
    # ------------------------------------------------------------------
    def run(self, inputs: PipelineInputs) -> PipelineResult:
        cfg = self.config
        self.check_references(inputs)
        reference = inputs.occurrence.reference

        cap = cap_end_date(cfg.end_date, inputs.gravity)
        end = cap.effective

        gravity = self.monthly_gravity(inputs.gravity, end)
        lsm = self.monthly_land_surface(inputs.land_surface, end)
        LOGGER.info(
            "Monthly composites: gravity=%d soil=%d surface=%d",
            len(gravity),
            len(lsm["soil"]),
            len(lsm["surface"]),
        )

        water_mask = build_water_mask(inputs.occurrence, cfg.occurrence_threshold)
        storage = self.compositor.compose([gravity, lsm["soil"], lsm["surface"]], water_mask)
        deseasonalized = deseasonalize(storage, MASKED_RESIDUAL_CHANNEL)
        ds_series = deseasonalized.series

        bundles = {
            label: self.trend_engine.fit(ds_series, deseasonalized.channel, start, stop, label, reference=reference)
            for label, (start, stop) in self.trend_windows(end).items()
        }
        full = bundles["full"]

        qmask_expl = quality_mask(full, cfg.exploratory)
        qmask_cons = quality_mask(full, cfg.conservative)
        hotspot_expl = classify_hotspots(full.slope, qmask_expl, cfg.severe_threshold, cfg.moderate_threshold)
        hotspot_cons = classify_hotspots(full.slope, qmask_cons, cfg.severe_threshold, cfg.moderate_threshold)
        overlap = hotspot_overlap(hotspot_expl, hotspot_cons)

        stability = split_record_stability(bundles["early"].slope, bundles["late"].slope, cfg.moderate_threshold)

        if storage:
            uncertainty_mean = channel_mean(storage, UNCERTAINTY_CHANNEL)
            swe_mean = channel_mean(storage, "swe_cm")
        else:
            uncertainty_mean = Raster.masked(reference)
            swe_mean = Raster.masked(reference)
        snr = slope_signal_to_noise(full.slope, uncertainty_mean)

        area = inputs.pixel_area if inputs.pixel_area is not None else pixel_area_m2(reference)
        volume = volumetric_rate(full.slope, area)
        total = total_volumetric_change(volume, qmask_cons, inputs.region)

        LOGGER.info("Annual residual storage change in conservative quality areas: %.4f km3/yr", total)

        return PipelineResult(
            end_date=cap,
            storage=storage,
            deseasonalized=deseasonalized,
            water_mask=water_mask,
            full=full,
            early=bundles["early"],
            late=bundles["late"],
            qmask_exploratory=qmask_expl,
            qmask_conservative=qmask_cons,
            hotspot_exploratory=hotspot_expl,
            hotspot_conservative=hotspot_cons,
            hotspot_overlap=overlap,
            stability=stability,
            uncertainty_mean=uncertainty_mean,
            slope_snr=snr,
            swe_mean=swe_mean,
            volumetric_rate=volume,
            total_volumetric_change_km3_yr=total,
            metadata={"config": cfg.to_dict()},
        )


def run_aquifer_proxy(
    inputs: PipelineInputs,
    config: Optional[PipelineConfig] = None,
    executor: Optional[TileParallelExecutor] = None,
) -> PipelineResult:
    """Execute the full residual storage-trend pipeline."""

    return AquiferProxyPipeline(config, executor).run(inputs)


__all__ = ["AquiferProxyPipeline", "PipelineInputs", "PipelineResult", "run_aquifer_proxy"]
