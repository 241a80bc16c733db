"""
Windowed surface metrics for continuous rasters.

Each metric treats the raster as a height surface and summarises the
square window centred on every cell, in the manner of areal surface-texture
parameters from metrology:

- sa:  average roughness, mean absolute deviation from the window mean
- sq:  RMS roughness, standard deviation of heights in the window
- ssk: skewness of the height distribution
- sku: kurtosis of the height distribution
- sdq: root-mean-square slope
- sdr: developed interfacial area ratio (percent extra surface area)

The source is detrended (best-fit plane removed) before any metric is
computed. Cells whose window leaves the grid or touches no-data are masked,
using the windowed mean of the source as the validity reference.
"""

from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Iterable, List, Tuple
import logging

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view
from tqdm import tqdm

from src.surface.errors import InvalidWindowError, UnsupportedMetricError
from src.surface.raster import MetricRaster, SourceRaster
from src.surface.transforms import remove_plane, windowed_mean

logger = logging.getLogger(__name__)

# Upper bound on window elements materialised per chunk (~32 MB of float64)
CHUNK_ELEMENTS = 4_000_000

_WINDOW_AXES = (-2, -1)

# Windows whose RMS deviation is below this fraction of their height scale
# (floored at 1) are flat; what remains after detrending is rounding noise
FLAT_TOLERANCE = 1e-10


# =============================================================================
# Kernels
# =============================================================================
# All kernels take a stack of windows shaped (rows, cols, w, w) plus the cell
# size, and return one value per window shaped (rows, cols).


def _centered(windows: np.ndarray) -> np.ndarray:
    return windows - windows.mean(axis=_WINDOW_AXES, keepdims=True)


def _moment_ratio(windows: np.ndarray, order: int) -> np.ndarray:
    centered = _centered(windows)
    sq = np.sqrt((centered ** 2).mean(axis=_WINDOW_AXES))
    moment = (centered ** order).mean(axis=_WINDOW_AXES)
    scale = np.maximum(1.0, np.abs(windows).max(axis=_WINDOW_AXES))
    shaped = sq > FLAT_TOLERANCE * scale
    return np.divide(moment, sq ** order, out=np.zeros_like(moment), where=shaped)


def _window_gradients(windows: np.ndarray, cell_size: float) -> Tuple[np.ndarray, np.ndarray]:
    gy, gx = np.gradient(windows, cell_size, axis=_WINDOW_AXES)
    return gx, gy


def average_roughness(windows: np.ndarray, cell_size: float) -> np.ndarray:
    """Sa: mean absolute height deviation."""
    return np.abs(_centered(windows)).mean(axis=_WINDOW_AXES)


def rms_roughness(windows: np.ndarray, cell_size: float) -> np.ndarray:
    """Sq: root-mean-square height deviation."""
    return np.sqrt((_centered(windows) ** 2).mean(axis=_WINDOW_AXES))


def skewness(windows: np.ndarray, cell_size: float) -> np.ndarray:
    """Ssk: third standardised moment; 0 for balanced peaks and valleys."""
    return _moment_ratio(windows, 3)


def kurtosis(windows: np.ndarray, cell_size: float) -> np.ndarray:
    """Sku: fourth standardised moment (3 for a Gaussian surface)."""
    return _moment_ratio(windows, 4)


def rms_slope(windows: np.ndarray, cell_size: float) -> np.ndarray:
    """Sdq: root-mean-square of the local surface gradient."""
    gx, gy = _window_gradients(windows, cell_size)
    return np.sqrt((gx ** 2 + gy ** 2).mean(axis=_WINDOW_AXES))


def surface_area_ratio(windows: np.ndarray, cell_size: float) -> np.ndarray:
    """Sdr: percent of additional surface area over the projected area."""
    gx, gy = _window_gradients(windows, cell_size)
    return 100.0 * (np.sqrt(1.0 + gx ** 2 + gy ** 2).mean(axis=_WINDOW_AXES) - 1.0)


METRIC_KERNELS: Dict[str, Callable[[np.ndarray, float], np.ndarray]] = {
    "sa": average_roughness,
    "sq": rms_roughness,
    "ssk": skewness,
    "sku": kurtosis,
    "sdq": rms_slope,
    "sdr": surface_area_ratio,
}

METRIC_ALIASES = {
    "average_roughness": "sa",
    "rms_roughness": "sq",
    "skewness": "ssk",
    "kurtosis": "sku",
    "rms_slope": "sdq",
    "surface_area_ratio": "sdr",
}

METRIC_LABELS = {
    "sa": "Average roughness (Sa)",
    "sq": "RMS roughness (Sq)",
    "ssk": "Skewness (Ssk)",
    "sku": "Kurtosis (Sku)",
    "sdq": "RMS slope (Sdq)",
    "sdr": "Surface area ratio (Sdr)",
}


def canonical_metric_name(metric_name: str) -> str:
    """
    Resolve a metric name or alias to its canonical short name.

    Raises:
        UnsupportedMetricError: If the name is not recognised
    """
    key = str(metric_name).strip().lower()
    key = METRIC_ALIASES.get(key, key)
    if key not in METRIC_KERNELS:
        raise UnsupportedMetricError(
            f"Unknown metric '{metric_name}'. "
            f"Available: {sorted(METRIC_KERNELS) + sorted(METRIC_ALIASES)}"
        )
    return key


def validate_window(window_size: int, shape: Tuple[int, int]) -> int:
    """
    Check that a window has a centre cell and fits inside the grid.

    Raises:
        InvalidWindowError: If the window is not an odd integer >= 3 or is
            larger than either grid dimension
    """
    if isinstance(window_size, bool) or not isinstance(window_size, (int, np.integer)):
        raise InvalidWindowError(f"Window size must be an integer, got {window_size!r}")
    window_size = int(window_size)
    if window_size < 3:
        raise InvalidWindowError(f"Window size must be at least 3, got {window_size}")
    if window_size % 2 == 0:
        raise InvalidWindowError(f"Window size must be odd, got {window_size}")
    if window_size > shape[0] or window_size > shape[1]:
        raise InvalidWindowError(
            f"Window size {window_size} exceeds raster extent {shape[0]}x{shape[1]}"
        )
    return window_size


# =============================================================================
# Calculator
# =============================================================================


def _chunk_rows(shape: Tuple[int, int], window_size: int) -> List[Tuple[int, int]]:
    """Split interior output rows into chunks bounded by CHUNK_ELEMENTS."""
    half = window_size // 2
    n_cols = shape[1] - window_size + 1
    rows_per_chunk = max(1, CHUNK_ELEMENTS // (n_cols * window_size * window_size))
    first, stop = half, shape[0] - half
    return [(r, min(r + rows_per_chunk, stop)) for r in range(first, stop, rows_per_chunk)]


def compute_metric(
    raster: SourceRaster,
    metric_name: str,
    window_size: int,
    parallel_workers: int = 1,
) -> MetricRaster:
    """
    Compute a windowed surface metric over a source raster.

    The raster passed in is detrended, every interior cell is summarised
    over its centred window, and cells whose windowed source mean is
    undefined are masked.

    Args:
        raster: Source raster (percent cover, elevation, ...)
        metric_name: Metric name or alias (see METRIC_KERNELS, METRIC_ALIASES)
        window_size: Odd window side length in cells, >= 3
        parallel_workers: Worker threads for the per-chunk computation

    Returns:
        MetricRaster with the same grid geometry as ``raster``

    Raises:
        UnsupportedMetricError: For unrecognised metric names
        InvalidWindowError: For even, too small or too large windows
    """
    metric = canonical_metric_name(metric_name)
    window_size = validate_window(window_size, raster.shape)
    if parallel_workers < 1:
        raise ValueError(f"parallel_workers must be >= 1, got {parallel_workers}")

    cell_size = raster.cell_size
    kernel = METRIC_KERNELS[metric]
    half = window_size // 2

    logger.info(
        f"Computing {metric} over {window_size}x{window_size} windows "
        f"({window_size * cell_size:g} map units) on raster {raster.shape}"
    )

    logger.debug(f"  Detrending input raster '{raster.name}' before windowing")
    detrended = remove_plane(raster.data, cell_size)
    mean = windowed_mean(raster.data, window_size)

    values = np.full(raster.shape, np.nan, dtype=np.float64)
    chunks = _chunk_rows(raster.shape, window_size)

    def run_chunk(bounds: Tuple[int, int]) -> np.ndarray:
        start, stop = bounds
        block = detrended[start - half:stop + half]
        windows = sliding_window_view(block, (window_size, window_size))
        return kernel(windows, cell_size)

    logger.debug(f"  {len(chunks)} chunks, {parallel_workers} worker(s)")

    with ThreadPoolExecutor(max_workers=parallel_workers) as executor:
        results = executor.map(run_chunk, chunks)
        for (start, stop), chunk_values in tqdm(
            zip(chunks, results), total=len(chunks), desc=f"{metric} w={window_size}", leave=False
        ):
            values[start:stop, half:raster.shape[1] - half] = chunk_values

    invalid = np.isnan(mean)
    values[invalid] = np.nan

    n_valid = int(np.count_nonzero(~invalid))
    logger.info(f"  Valid cells: {n_valid} of {values.size}")
    if n_valid:
        logger.info(f"  Value range: {np.nanmin(values):.3f} to {np.nanmax(values):.3f}")

    return MetricRaster(
        values=values,
        window_mean=mean,
        metric=metric,
        window_size=window_size,
        geometry=raster.geometry,
        source_name=raster.name,
    )


def compute_multiscale(
    raster: SourceRaster,
    metrics: Iterable[str],
    window_sizes: Iterable[int],
    parallel_workers: int = 1,
) -> Dict[Tuple[str, int], MetricRaster]:
    """
    Compute every (metric, window size) combination over one raster.

    Returns:
        dict: {(canonical_metric, window_size): MetricRaster}
    """
    results = {}
    for metric_name in metrics:
        for window_size in window_sizes:
            metric_raster = compute_metric(raster, metric_name, window_size, parallel_workers)
            results[(metric_raster.metric, metric_raster.window_size)] = metric_raster
    return results
