#!/usr/bin/env python3
"""
Forest Cover Surface-Metric Strata.

Computes surface metrics (skewness, RMS slope, ...) over sliding windows of a
percent forest cover raster, stratifies sample locations by metric value, and
renders one 3D tile per sample with one row per class:

1. Load & reproject - Read the raster, reproject to equal-area, crop to extent
2. Metric - Detrend and compute the windowed metric
3. Sample - Draw a fixed number of seeded samples per metric class
4. Render - Crop a window around each sample and draw the tile grid

Usage:
    # Skewness at 11 cells (330 m on a 30 m grid)
    python examples/forest_surface_strata.py forest_pct.tif --extent study_area.shp

    # Several metrics and scales in one run
    python examples/forest_surface_strata.py forest_pct.tif --metric ssk sdq --window 11 21 41

    # Default metrics at the default 330 m, 630 m and 1230 m scales
    python examples/forest_surface_strata.py forest_pct.tif --multiscale

    # Interactive scene with linked cameras
    python examples/forest_surface_strata.py forest_pct.tif --renderer interactive

    # Start from a JSON config and override the seed
    python examples/forest_surface_strata.py --config run.json --seed 7
"""

import sys
import argparse
import logging
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.config import DEFAULT_LOG_LEVEL, DEFAULT_METRICS, DEFAULT_WINDOW_SIZES
from src.surface.errors import SurfaceMetricsError
from src.surface.pipeline import SurfaceMetricPipeline, SurfacePipelineConfig

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Stratified surface-metric sampling of a percent forest cover raster",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument("raster", nargs="?", help="Source raster (percent forest cover)")
    parser.add_argument("--extent", help="Study-area polygon file")
    parser.add_argument("--config", type=Path, help="JSON config file (CLI flags override it)")

    # Metric parameters
    parser.add_argument("--metric", nargs="+", help="Metric name(s), e.g. ssk sdq sdr")
    parser.add_argument("--window", type=int, nargs="+", help="Odd window size(s) in cells")
    parser.add_argument(
        "--multiscale",
        action="store_true",
        help=f"Run every default metric {DEFAULT_METRICS} at every default window {DEFAULT_WINDOW_SIZES}",
    )
    parser.add_argument("--workers", type=int, help="Worker threads for the metric kernel")
    parser.add_argument("--dst-crs", help="Equal-area CRS for reprojection")
    parser.add_argument("--no-reproject", action="store_true", help="Keep the source CRS")
    parser.add_argument("--resolution", type=float, help="Cell size after reprojection")

    # Sampling parameters
    parser.add_argument("--nclasses", type=int, help="Equal-width metric classes")
    parser.add_argument("--bin-edges", type=float, nargs="+", help="Explicit metric bin edges")
    parser.add_argument("--nsamples", type=int, help="Samples per class")
    parser.add_argument("--seed", type=int, help="Random seed for sampling")

    # Render parameters
    parser.add_argument("--renderer", choices=["static", "interactive"], help="Tile renderer")
    parser.add_argument("--off-screen", action="store_true", help="Render without a window")
    parser.add_argument("--cmap", help="Matplotlib colormap for the source ramp")
    parser.add_argument("--breaks", type=float, nargs="+", help="Color ramp breaks")
    parser.add_argument("--source-name", help="Source variable name for labels and files")

    # Outputs
    parser.add_argument("--output-dir", type=Path, help="Output directory")
    parser.add_argument("--save-metric-raster", action="store_true", help="Write the metric raster")
    parser.add_argument("--log-level", default=DEFAULT_LOG_LEVEL, help="Logging level")

    return parser.parse_args(argv)


def build_config(args) -> SurfacePipelineConfig:
    """Merge a JSON config (if any) with command line overrides."""
    data = SurfacePipelineConfig.from_json(args.config).to_dict() if args.config else {}

    overrides = {
        "raster_path": args.raster,
        "extent_path": args.extent,
        "metric": args.metric[0] if args.metric else None,
        "window_size": args.window[0] if args.window else None,
        "parallel_workers": args.workers,
        "dst_crs": args.dst_crs,
        "resolution": args.resolution,
        "nclasses": args.nclasses,
        "bin_edges": args.bin_edges,
        "nsamples": args.nsamples,
        "seed": args.seed,
        "renderer": args.renderer,
        "cmap": args.cmap,
        "breaks": args.breaks,
        "source_name": args.source_name,
        "output_dir": str(args.output_dir) if args.output_dir else None,
    }
    data.update({k: v for k, v in overrides.items() if v is not None})

    if args.no_reproject:
        data["dst_crs"] = None
    if args.off_screen:
        data["off_screen"] = True
    if args.save_metric_raster:
        data["save_metric_raster"] = True

    return SurfacePipelineConfig.from_dict(data)


def main(argv=None):
    """Run the pipeline."""
    args = parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s: %(message)s",
    )

    try:
        config = build_config(args)
    except (SurfaceMetricsError, ValueError) as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    if config.raster_path is None:
        logger.error("No source raster given (positional argument or 'raster_path' in --config)")
        return 2

    pipeline = SurfaceMetricPipeline(config)

    if args.multiscale:
        metrics = args.metric or list(DEFAULT_METRICS)
        windows = args.window or list(DEFAULT_WINDOW_SIZES)
    else:
        metrics = args.metric or [config.metric]
        windows = args.window or [config.window_size]

    try:
        results = pipeline.run_multiscale(metrics, windows)
    except SurfaceMetricsError as e:
        logger.error(f"Run aborted: {e}")
        return 1

    for (metric, window_size), result in results.items():
        print(f"{metric} w={window_size}: {len(result.samples)} samples")
        for name, path in result.outputs.items():
            print(f"  {name}: {path}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
