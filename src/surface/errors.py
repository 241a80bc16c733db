"""
Exceptions and warnings raised by the surface-metric pipeline.
"""


class SurfaceMetricsError(Exception):
    """Base class for surface-metric pipeline failures."""

    pass


class InvalidWindowError(SurfaceMetricsError, ValueError):
    """Raised when a window size is even, below 3, or larger than the raster."""

    pass


class UnsupportedMetricError(SurfaceMetricsError, KeyError):
    """Raised when a metric name has no registered kernel."""

    def __str__(self):
        # KeyError quotes its message; keep it readable
        return str(self.args[0]) if self.args else ""


class ProjectionMismatchError(SurfaceMetricsError):
    """Raised when the extent polygon and raster CRS cannot be reconciled."""

    pass


class PipelineStageError(SurfaceMetricsError):
    """
    Wraps a failure with the pipeline stage and the input that caused it.

    Attributes:
        stage: Name of the stage that failed (e.g. "compute_metric")
        detail: Description of the offending input
    """

    def __init__(self, stage: str, detail: str, cause: Exception = None):
        self.stage = stage
        self.detail = detail
        self.cause = cause
        message = f"[{stage}] {detail}"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)


class InsufficientSamplesWarning(UserWarning):
    """Issued when a stratum has fewer valid cells than requested samples."""

    pass
