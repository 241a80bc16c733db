"""
Linear pipeline for surface-metric stratified sampling and visualization.

Runs its stages strictly forward, each consuming the previous stage's
output:

1. load_source:    load raster, reproject to equal-area, crop to extent
2. compute_metric: detrended windowed surface metric with edge masking
3. sample_strata:  bin metric values and draw seeded samples per class
4. build_tiles:    crop the source around each sample
5. render:         draw the tile grid (static or interactive)

Any stage failure aborts the run with a PipelineStageError naming the stage
and the input that caused it. Nothing is rendered after a failure.

Example:
    from src.surface.pipeline import SurfaceMetricPipeline, SurfacePipelineConfig

    config = SurfacePipelineConfig(
        raster_path="data/rasters/forest_pct.tif",
        extent_path="data/extents/study_area.shp",
        metric="ssk",
        window_size=11,
    )
    result = SurfaceMetricPipeline(config).run()
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import matplotlib.pyplot as plt

from src.config import (
    DEFAULT_BREAKS,
    DEFAULT_CMAP,
    DEFAULT_EQUAL_AREA_CRS,
    DEFAULT_NCLASSES,
    DEFAULT_NSAMPLES,
    DEFAULT_PARALLEL_WORKERS,
    DEFAULT_SEED,
    DEFAULT_SOURCE_NAME,
    OUTPUT_DIR,
)
from src.sampling.binning import StratumAssignment, resolve_binning, stratify
from src.sampling.stratified import (
    Sample,
    StratumSummary,
    make_rng,
    sample_strata,
    summarize_strata,
    write_samples,
)
from src.surface.data_loading import load_study_area, metric_raster_format, write_metric_raster
from src.surface.errors import InvalidWindowError, PipelineStageError
from src.surface.metrics import canonical_metric_name, compute_metric, validate_window
from src.surface.raster import MetricRaster, SourceRaster
from src.surface.visualization.color_mapping import build_color_ramp
from src.surface.visualization.tile_grid import RENDERERS, get_renderer
from src.surface.visualization.tiles import Tile, build_tiles

logger = logging.getLogger(__name__)


@dataclass
class SurfacePipelineConfig:
    """
    Per-run configuration surface.

    Attributes:
        raster_path: Source raster file
        extent_path: Study-area polygon file (None = full raster)
        source_name: Name of the source variable (used in labels and file names)
        dst_crs: Equal-area CRS for reprojection (None = keep source CRS)
        resolution: Cell size after reprojection (None = GDAL default)
        metric: Metric name or alias
        window_size: Odd window side length in cells
        nclasses: Equal-width class count (ignored when edges apply)
        bin_edges: Explicit bin edges (override equal-width classes)
        nsamples: Samples drawn per class
        seed: Random seed for the sampler
        breaks: Color ramp breaks for the source variable
        cmap: Matplotlib colormap sampled for the ramp
        renderer: 'static' or 'interactive'
        off_screen: Render the interactive scene without a window
        parallel_workers: Worker threads for the metric kernel
        output_dir: Directory for figures, samples and metric rasters
        save_metric_raster: Write the metric raster in the source raster format
        save_samples: Write samples as CSV
    """

    raster_path: Optional[str] = None
    extent_path: Optional[str] = None
    source_name: str = DEFAULT_SOURCE_NAME
    dst_crs: Optional[str] = DEFAULT_EQUAL_AREA_CRS
    resolution: Optional[float] = None
    metric: str = "ssk"
    window_size: int = 11
    nclasses: Optional[int] = DEFAULT_NCLASSES
    bin_edges: Optional[Tuple[float, ...]] = None
    nsamples: int = DEFAULT_NSAMPLES
    seed: Optional[int] = DEFAULT_SEED
    breaks: Tuple[float, ...] = DEFAULT_BREAKS
    cmap: str = DEFAULT_CMAP
    renderer: str = "static"
    off_screen: bool = False
    parallel_workers: int = DEFAULT_PARALLEL_WORKERS
    output_dir: str = str(OUTPUT_DIR)
    save_metric_raster: bool = False
    save_samples: bool = True

    def __post_init__(self):
        """Validate the configuration."""
        self.metric = canonical_metric_name(self.metric)

        if isinstance(self.window_size, bool) or not isinstance(self.window_size, int):
            raise InvalidWindowError(f"Window size must be an integer, got {self.window_size!r}")
        if self.window_size < 3 or self.window_size % 2 == 0:
            raise InvalidWindowError(
                f"Window size must be an odd integer >= 3, got {self.window_size}"
            )
        if isinstance(self.nsamples, bool) or not isinstance(self.nsamples, int):
            raise ValueError(f"nsamples must be an integer, got {self.nsamples!r}")
        if self.nsamples < 1:
            raise ValueError(f"nsamples must be positive, got {self.nsamples}")
        if self.parallel_workers < 1:
            raise ValueError(f"parallel_workers must be positive, got {self.parallel_workers}")
        if self.renderer not in RENDERERS:
            raise ValueError(
                f"Unknown renderer '{self.renderer}'. Available: {list(RENDERERS)}"
            )

        self.breaks = tuple(self.breaks)
        if self.bin_edges is not None:
            self.bin_edges = tuple(self.bin_edges)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        data = asdict(self)
        data["breaks"] = list(self.breaks)
        data["bin_edges"] = list(self.bin_edges) if self.bin_edges is not None else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SurfacePipelineConfig":
        """Build a config from a dict, rejecting unknown keys."""
        known = set(cls.__dataclass_fields__)
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown config keys: {sorted(unknown)}")
        return cls(**data)

    @classmethod
    def from_json(cls, path: Path | str) -> "SurfacePipelineConfig":
        """Load a config from a JSON file."""
        with open(path) as f:
            return cls.from_dict(json.load(f))


@dataclass
class PipelineResult:
    """Artifacts produced by one (metric, window) run."""

    metric_raster: MetricRaster
    assignment: StratumAssignment
    samples: List[Sample]
    summaries: List[StratumSummary]
    tiles: List[Tile]
    figure_path: Optional[Path] = None
    samples_path: Optional[Path] = None
    metric_raster_path: Optional[Path] = None
    outputs: Dict[str, Path] = field(default_factory=dict)


class SurfaceMetricPipeline:
    """
    Runs the surface-metric stages for a study area.

    The source raster is loaded once per pipeline instance and reused for
    every (metric, window) run. Each run builds a fresh generator from the
    configured seed, so any single figure can be regenerated on its own.
    """

    def __init__(
        self,
        config: SurfacePipelineConfig,
        *,
        source: Optional[SourceRaster] = None,
        verbose: bool = True,
    ):
        """
        Initialize the pipeline.

        Args:
            config: Run configuration
            source: Preloaded source raster (skips load_source)
            verbose: Log stage progress
        """
        self.config = config
        self.verbose = verbose
        self._source = source

    def _log(self, msg: str, *args, level: str = "info"):
        """Log message if verbose with lazy formatting."""
        if self.verbose:
            if level == "info":
                logger.info(msg, *args)
            elif level == "debug":
                logger.debug(msg, *args)
            elif level == "warn":
                logger.warning(msg, *args)

    @contextmanager
    def _stage(self, name: str, detail: str):
        """Wrap a stage so failures name the stage and offending input."""
        try:
            yield
        except PipelineStageError:
            raise
        except Exception as e:
            logger.error(f"Stage '{name}' failed for {detail}: {e}")
            raise PipelineStageError(name, detail, e) from e

    @property
    def output_dir(self) -> Path:
        return Path(self.config.output_dir)

    def _output_stem(self, metric: str, window_size: int) -> str:
        return f"{self.config.source_name}_{metric}_w{window_size}"

    # ===== Stages =====

    def load_source(self) -> SourceRaster:
        """Stage 1: load (once) the source raster on the analysis grid."""
        if self._source is not None:
            return self._source

        cfg = self.config
        if cfg.raster_path is None:
            raise PipelineStageError("load_source", "raster_path", ValueError("not configured"))

        self._log("[1/5] Loading source raster %s", cfg.raster_path)
        with self._stage("load_source", f"raster={cfg.raster_path}, extent={cfg.extent_path}"):
            self._source = load_study_area(
                cfg.raster_path,
                cfg.extent_path,
                cfg.dst_crs,
                name=cfg.source_name,
                resolution=cfg.resolution,
            )
        self._log("      Source grid: %s cells of %.1f units", self._source.shape, self._source.cell_size)
        return self._source

    def compute_metric(self, metric: Optional[str] = None, window_size: Optional[int] = None) -> MetricRaster:
        """Stage 2: windowed metric over the source raster."""
        metric = self.config.metric if metric is None else metric
        window_size = self.config.window_size if window_size is None else window_size
        source = self.load_source()

        self._log("[2/5] Computing %s (window=%d)", metric, window_size)
        with self._stage("compute_metric", f"metric={metric!r}, window_size={window_size}"):
            metric_raster = compute_metric(source, metric, window_size, self.config.parallel_workers)
            lo, hi = metric_raster.value_range()
        self._log(
            "      Window extent %.0f units, values %.3f to %.3f", metric_raster.window_extent, lo, hi
        )
        return metric_raster

    def sample_strata(
        self, metric_raster: MetricRaster
    ) -> Tuple[StratumAssignment, List[Sample], List[StratumSummary]]:
        """Stage 3: stratify and draw samples with a freshly seeded generator."""
        cfg = self.config
        self._log("[3/5] Sampling %d per class (seed=%s)", cfg.nsamples, cfg.seed)

        with self._stage(
            "sample_strata",
            f"metric={metric_raster.metric!r}, nclasses={cfg.nclasses}, bin_edges={cfg.bin_edges}",
        ):
            binning = resolve_binning(metric_raster.metric, cfg.nclasses, cfg.bin_edges)
            assignment = stratify(metric_raster.values, binning)
            samples = sample_strata(
                metric_raster, binning, cfg.nsamples, make_rng(cfg.seed), assignment=assignment
            )
            summaries = summarize_strata(assignment, samples, cfg.nsamples)

        for s in summaries:
            self._log(
                "      class %d (%.2f, %.2f]: %d available, %d drawn",
                s.stratum, s.lower, s.upper, s.available, s.drawn,
            )
        return assignment, samples, summaries

    def build_tiles(self, samples: Sequence[Sample], window_size: int) -> List[Tile]:
        """Stage 4: crop source windows around samples."""
        self._log("[4/5] Building %d tiles", len(samples))
        with self._stage("build_tiles", f"window_size={window_size}, samples={len(samples)}"):
            return build_tiles(self.load_source(), samples, window_size)

    def render(self, tiles: Sequence[Tile], metric: str, output_path: Optional[Path]) -> Optional[Path]:
        """Stage 5: render the tile grid with the configured renderer."""
        cfg = self.config
        if not tiles:
            self._log("[5/5] No tiles to render", level="warn")
            return None

        self._log("[5/5] Rendering %d tiles (%s)", len(tiles), cfg.renderer)
        with self._stage("render", f"renderer={cfg.renderer!r}, output={output_path}"):
            ramp = build_color_ramp(cfg.breaks, cfg.cmap)
            renderer = get_renderer(cfg.renderer)

            if cfg.renderer == "static":
                fig = renderer(tiles, metric, ramp, output_path=output_path, source_label=cfg.source_name)
                plt.close(fig)
                return output_path

            return renderer(
                tiles,
                metric,
                ramp,
                output_path=output_path,
                source_label=cfg.source_name,
                off_screen=cfg.off_screen,
            )

    # ===== Runs =====

    def validate_runs(
        self, metrics: Sequence[Optional[str]], window_sizes: Sequence[Optional[int]]
    ) -> List[Tuple[str, int]]:
        """
        Check every (metric, window size) pair against the loaded source.

        Called before any stage runs, so a bad pair fails the whole request
        without leaving partial outputs behind.

        Returns:
            list: Canonical (metric, window_size) pairs in run order

        Raises:
            PipelineStageError: Naming compute_metric and the offending pair
        """
        source = self.load_source()
        pairs = []
        for metric in metrics:
            metric = self.config.metric if metric is None else metric
            for window_size in window_sizes:
                window_size = self.config.window_size if window_size is None else window_size
                with self._stage("compute_metric", f"metric={metric!r}, window_size={window_size}"):
                    pairs.append(
                        (canonical_metric_name(metric), validate_window(window_size, source.shape))
                    )
        return pairs

    def run(self, metric: Optional[str] = None, window_size: Optional[int] = None) -> PipelineResult:
        """
        Run all stages for one metric and window size.

        Returns:
            PipelineResult with every intermediate artifact and output paths
        """
        metric, window_size = self.validate_runs([metric], [window_size])[0]
        return self._run_pair(metric, window_size)

    def run_multiscale(
        self, metrics: Sequence[str], window_sizes: Sequence[int]
    ) -> Dict[Tuple[str, int], PipelineResult]:
        """Run every (metric, window size) combination over the same source."""
        pairs = self.validate_runs(metrics, window_sizes)
        results = {}
        try:
            for metric, window_size in pairs:
                results[(metric, window_size)] = self._run_pair(metric, window_size)
        except PipelineStageError:
            for result in results.values():
                self._discard_outputs(result.outputs.values())
            raise
        return results

    def _run_pair(self, metric: str, window_size: int) -> PipelineResult:
        stem = self._output_stem(metric, window_size)

        metric_raster = self.compute_metric(metric, window_size)
        assignment, samples, summaries = self.sample_strata(metric_raster)
        tiles = self.build_tiles(samples, window_size)

        result = PipelineResult(
            metric_raster=metric_raster,
            assignment=assignment,
            samples=samples,
            summaries=summaries,
            tiles=tiles,
        )

        # Files are written only after a successful render
        try:
            result.figure_path = self.render(tiles, metric, self.output_dir / f"{stem}.png")
            if result.figure_path is not None:
                result.outputs["figure"] = result.figure_path

            if self.config.save_metric_raster:
                driver, extension = metric_raster_format(self.load_source().driver)
                with self._stage("write_metric_raster", f"driver={driver}, output_dir={self.output_dir}"):
                    result.metric_raster_path = write_metric_raster(
                        metric_raster, self.output_dir / f"{stem}{extension}", driver=driver
                    )
                    result.outputs["metric_raster"] = result.metric_raster_path

            if self.config.save_samples:
                with self._stage("write_samples", f"output_dir={self.output_dir}"):
                    result.samples_path = write_samples(samples, self.output_dir / f"{stem}_samples.csv")
                    result.outputs["samples"] = result.samples_path
        except PipelineStageError:
            self._discard_outputs(result.outputs.values())
            raise

        self._log("Finished %s", stem)
        return result

    def _discard_outputs(self, paths) -> None:
        """Remove files already written by a run that failed part way."""
        for path in paths:
            path = Path(path)
            if path.exists():
                logger.warning(f"Removing partial output {path}")
                path.unlink()
