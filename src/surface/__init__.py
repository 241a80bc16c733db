"""
Windowed surface metrics for continuous rasters.

Core functionality:
- SourceRaster / MetricRaster containers with shared grid geometry
- Raster loading, equal-area reprojection and cropping to a study area
- Planar detrending and windowed means
- Surface metric kernels (Sa, Sq, Ssk, Sku, Sdq, Sdr) over sliding windows

The sampling, visualization and pipeline modules build on these and are
imported from their own modules (src.sampling, src.surface.visualization,
src.surface.pipeline).
"""

from .errors import (
    InsufficientSamplesWarning,
    InvalidWindowError,
    PipelineStageError,
    ProjectionMismatchError,
    SurfaceMetricsError,
    UnsupportedMetricError,
)
from .raster import GridGeometry, MetricRaster, SourceRaster
from .metrics import (
    METRIC_KERNELS,
    canonical_metric_name,
    compute_metric,
    compute_multiscale,
)

__all__ = [
    "InsufficientSamplesWarning",
    "InvalidWindowError",
    "PipelineStageError",
    "ProjectionMismatchError",
    "SurfaceMetricsError",
    "UnsupportedMetricError",
    "GridGeometry",
    "MetricRaster",
    "SourceRaster",
    "METRIC_KERNELS",
    "canonical_metric_name",
    "compute_metric",
    "compute_multiscale",
]
