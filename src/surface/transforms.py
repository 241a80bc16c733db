"""
Raster transformation operations for surface-metric processing.

This module contains the preprocessing shared by every surface metric
(planar detrending, windowed means) and the equal-area reprojection applied
to source rasters after loading.
"""

import logging
from typing import Tuple

import numpy as np
import rasterio
from rasterio.warp import calculate_default_transform, reproject, Resampling
from scipy import ndimage

from src.surface.raster import GridGeometry, SourceRaster

logger = logging.getLogger(__name__)


def fit_plane(data: np.ndarray, cell_size: float = 1.0) -> Tuple[float, float, float]:
    """
    Least-squares plane z = a + b*x + c*y over the valid (non-NaN) cells.

    x runs along columns and y along rows, both in map units.

    Args:
        data: 2D array, NaN marks no data
        cell_size: Cell side length used to scale coordinates

    Returns:
        tuple: (a, b, c) plane coefficients

    Raises:
        ValueError: If fewer than 3 valid cells are available
    """
    rows, cols = np.nonzero(~np.isnan(data))
    if rows.size < 3:
        raise ValueError(f"Need at least 3 valid cells to fit a plane, got {rows.size}")

    x = cols * cell_size
    y = rows * cell_size
    design = np.column_stack([np.ones_like(x, dtype=np.float64), x, y])
    coeffs, *_ = np.linalg.lstsq(design, data[rows, cols], rcond=None)
    a, b, c = (float(v) for v in coeffs)
    return a, b, c


def remove_plane(data: np.ndarray, cell_size: float = 1.0) -> np.ndarray:
    """
    Remove the best-fit planar trend from a surface.

    No-data cells stay NaN. The returned array is a new float64 array; the
    input is not modified.

    Args:
        data: 2D array of surface heights (NaN = no data)
        cell_size: Cell side length in map units

    Returns:
        np.ndarray: Detrended surface (residuals from the fitted plane)
    """
    a, b, c = fit_plane(data, cell_size)
    logger.debug(f"Fitted plane: z = {a:.4f} + {b:.6f}*x + {c:.6f}*y")

    rows, cols = np.indices(data.shape, dtype=np.float64)
    plane = a + b * cols * cell_size + c * rows * cell_size
    detrended = np.asarray(data, dtype=np.float64) - plane

    logger.info(
        f"Detrended surface: range {np.nanmin(detrended):.2f} to {np.nanmax(detrended):.2f}"
    )
    return detrended


def windowed_mean(data: np.ndarray, window_size: int) -> np.ndarray:
    """
    Mean over the square window centred on each cell.

    The mean is undefined (NaN) where the window extends past the grid edge
    or contains any no-data cell, so the result doubles as the validity mask
    for windowed metrics.

    Args:
        data: 2D array (NaN = no data)
        window_size: Odd window side length in cells

    Returns:
        np.ndarray: Windowed means, same shape as ``data``
    """
    data = np.asarray(data, dtype=np.float64)
    out = np.full(data.shape, np.nan, dtype=np.float64)

    if window_size > data.shape[0] or window_size > data.shape[1]:
        return out

    valid = ~np.isnan(data)
    # Cells whose whole window is valid and inside the grid
    complete = ndimage.binary_erosion(
        valid, structure=np.ones((window_size, window_size), dtype=bool), border_value=0
    )

    filled = np.where(valid, data, 0.0)
    means = ndimage.uniform_filter(filled, size=window_size, mode="constant", cval=0.0)
    out[complete] = means[complete]
    return out


def reproject_raster(
    source: SourceRaster,
    dst_crs: str,
    resolution: float = None,
    num_threads: int = 4,
) -> SourceRaster:
    """
    Reproject a source raster to a destination CRS (normally equal-area).

    Args:
        source: Raster to reproject; must carry a CRS
        dst_crs: Destination coordinate reference system
        resolution: Output cell size in destination units (default: let GDAL choose)
        num_threads: Number of threads for the warp

    Returns:
        SourceRaster: New raster on the destination grid, NaN outside the source
    """
    if source.crs is None:
        raise ValueError("Cannot reproject a raster without a CRS")

    logger.info(f"Reprojecting raster from {source.crs} to {dst_crs}")
    src_data = np.array(source.data, dtype=np.float64)
    height, width = src_data.shape

    with rasterio.Env(GDAL_NUM_THREADS=str(num_threads)):
        dst_transform, dst_width, dst_height = calculate_default_transform(
            source.crs,
            dst_crs,
            width,
            height,
            *rasterio.transform.array_bounds(height, width, source.transform),
            resolution=resolution,
        )

        dst_data = np.full((dst_height, dst_width), np.nan, dtype=np.float64)

        reproject(
            source=src_data,
            destination=dst_data,
            src_transform=source.transform,
            src_crs=source.crs,
            src_nodata=np.nan,
            dst_transform=dst_transform,
            dst_crs=dst_crs,
            dst_nodata=np.nan,
            resampling=Resampling.bilinear,
            num_threads=num_threads,
        )

    logger.info(f"Reprojection complete. New shape: {dst_data.shape}")
    if np.any(~np.isnan(dst_data)):
        logger.info(f"Value range: {np.nanmin(dst_data):.2f} to {np.nanmax(dst_data):.2f}")

    return SourceRaster(
        dst_data,
        GridGeometry(dst_transform, str(dst_crs), dst_data.shape),
        name=source.name,
        driver=source.driver,
    )
