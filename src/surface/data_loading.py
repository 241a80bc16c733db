"""
Data loading operations for surface-metric processing.

This module reads the single-band source raster and the study-area polygon,
brings both onto a common equal-area grid, and writes metric rasters back
to disk.
"""

import logging
from pathlib import Path
from typing import Optional, Tuple, Union

import geopandas as gpd
import numpy as np
import rasterio
from rasterio.features import geometry_mask
from rasterio.windows import Window, from_bounds
from shapely.geometry import box

from src.surface.errors import ProjectionMismatchError
from src.surface.raster import GridGeometry, MetricRaster, SourceRaster
from src.surface.transforms import reproject_raster

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

# Writable drivers for metric rasters and their file extensions. Inputs in any
# other format get their metric raster written as GeoTIFF.
METRIC_RASTER_FORMATS = {
    "GTiff": ".tif",
    "HFA": ".img",
    "netCDF": ".nc",
    "PCIDSK": ".pix",
    "RST": ".rst",
}

DEFAULT_METRIC_RASTER_DRIVER = "GTiff"


def load_source_raster(path: PathLike, name: Optional[str] = None, band: int = 1) -> SourceRaster:
    """
    Load one band of a raster file as a SourceRaster.

    Supports any raster format readable by rasterio. The file's nodata value
    (if any) is converted to NaN.

    Args:
        path: Raster file path
        name: Source variable name (default: file stem)
        band: 1-based band index to read (default: 1)

    Returns:
        SourceRaster

    Raises:
        ValueError: If the file does not exist or the band is out of range
        rasterio.errors.RasterioIOError: If the file cannot be read
    """
    path = Path(path)
    if not path.exists():
        raise ValueError(f"Raster file does not exist: {path}")

    logger.info(f"Loading source raster: {path}")

    with rasterio.open(path) as src:
        if band < 1 or band > src.count:
            raise ValueError(f"Band {band} out of range for {path} ({src.count} band(s))")

        data = src.read(band).astype(np.float64)
        nodata = src.nodata
        transform = src.transform
        crs = src.crs.to_string() if src.crs else None
        driver = src.driver

    if nodata is not None and not np.isnan(nodata):
        data[data == nodata] = np.nan

    raster = SourceRaster(
        data, GridGeometry(transform, crs, data.shape), name=name or path.stem, driver=driver
    )

    logger.info(f"  Shape: {raster.shape}, CRS: {crs}, driver: {driver}")
    if np.any(raster.valid_mask):
        logger.info(f"  Value range: {np.nanmin(raster.data):.2f} to {np.nanmax(raster.data):.2f}")
    else:
        logger.warning(f"  Raster {path} contains no valid cells")

    return raster


def load_extent(path: PathLike) -> gpd.GeoDataFrame:
    """
    Load a study-area polygon layer.

    Raises:
        ValueError: If the file does not exist or holds no geometries
        ProjectionMismatchError: If the layer has no CRS
    """
    path = Path(path)
    if not path.exists():
        raise ValueError(f"Extent file does not exist: {path}")

    logger.info(f"Loading extent polygon: {path}")
    extent = gpd.read_file(path)

    if extent.empty:
        raise ValueError(f"Extent file contains no features: {path}")
    if extent.crs is None:
        raise ProjectionMismatchError(f"Extent file has no CRS: {path}")

    return extent


def crop_to_extent(source: SourceRaster, extent: gpd.GeoDataFrame) -> SourceRaster:
    """
    Crop a raster to the bounding box of a polygon layer and mask outside it.

    The polygons are reprojected to the raster CRS first.

    Args:
        source: Raster to crop
        extent: Polygon layer with a CRS

    Returns:
        SourceRaster covering the polygon bounds, NaN outside the polygons

    Raises:
        ProjectionMismatchError: If either input lacks a CRS or the polygons
            do not overlap the raster
    """
    if source.crs is None:
        raise ProjectionMismatchError("Source raster has no CRS; cannot align extent polygon")
    if extent.crs is None:
        raise ProjectionMismatchError("Extent polygon has no CRS; cannot align with raster")

    try:
        shapes = extent.to_crs(source.crs).geometry
    except Exception as e:
        raise ProjectionMismatchError(
            f"Cannot transform extent from {extent.crs} to {source.crs}: {e}"
        ) from e

    shapes = shapes[~shapes.is_empty & shapes.notna()]
    raster_box = box(*source.geometry.bounds)
    if shapes.empty or not shapes.intersects(raster_box).any():
        raise ProjectionMismatchError(
            f"Extent polygon does not overlap raster bounds {source.geometry.bounds}"
        )

    minx, miny, maxx, maxy = shapes.total_bounds
    window = from_bounds(minx, miny, maxx, maxy, transform=source.transform)
    window = window.round_offsets().round_lengths()
    window = window.intersection(Window(0, 0, source.shape[1], source.shape[0]))

    row_off, col_off = int(round(window.row_off)), int(round(window.col_off))
    height, width = int(round(window.height)), int(round(window.width))
    window = Window(col_off, row_off, width, height)
    data = np.array(source.data[row_off:row_off + height, col_off:col_off + width])
    transform = rasterio.windows.transform(window, source.transform)

    outside = geometry_mask(list(shapes), out_shape=data.shape, transform=transform)
    data[outside] = np.nan

    logger.info(f"Cropped raster to extent: {source.shape} -> {data.shape}")
    return SourceRaster(
        data,
        GridGeometry(transform, source.crs, data.shape),
        name=source.name,
        driver=source.driver,
    )


def load_study_area(
    raster_path: PathLike,
    extent_path: Optional[PathLike],
    dst_crs: Optional[str],
    name: Optional[str] = None,
    resolution: Optional[float] = None,
) -> SourceRaster:
    """
    Load, reproject and crop the source raster for a study area.

    Args:
        raster_path: Source raster file
        extent_path: Polygon file (None to keep the full raster)
        dst_crs: Equal-area CRS (None to keep the source CRS)
        name: Source variable name
        resolution: Output cell size after reprojection

    Returns:
        SourceRaster on the analysis grid
    """
    source = load_source_raster(raster_path, name=name)

    extent = load_extent(extent_path) if extent_path is not None else None

    if extent is not None:
        # Coarse crop in the source CRS before warping
        source = crop_to_extent(source, extent)

    if dst_crs is not None:
        source = reproject_raster(source, dst_crs, resolution=resolution)
        if extent is not None:
            source = crop_to_extent(source, extent)

    return source


def write_metric_raster(
    metric_raster: MetricRaster, path: PathLike, driver: str = "GTiff"
) -> Path:
    """
    Write metric values to a single-band float32 raster (NaN = nodata).

    Returns:
        Path to the written file
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    height, width = metric_raster.shape
    with rasterio.open(
        path,
        "w",
        driver=driver,
        height=height,
        width=width,
        count=1,
        dtype="float32",
        crs=metric_raster.geometry.crs,
        transform=metric_raster.geometry.transform,
        nodata=np.nan,
    ) as dst:
        dst.write(metric_raster.values.astype(np.float32), 1)
        dst.update_tags(metric=metric_raster.metric, window_size=str(metric_raster.window_size))

    logger.info(f"Wrote {metric_raster.metric} (w={metric_raster.window_size}) raster: {path}")
    return path


def metric_raster_format(source_driver: str) -> Tuple[str, str]:
    """
    Pick the driver and file extension for a metric raster.

    The metric raster mirrors the source format when GDAL can create that
    format; otherwise it falls back to GeoTIFF.

    Args:
        source_driver: GDAL driver name of the source raster

    Returns:
        tuple: (driver, extension)
    """
    if source_driver in METRIC_RASTER_FORMATS:
        return source_driver, METRIC_RASTER_FORMATS[source_driver]

    logger.warning(
        f"Cannot write metric rasters as {source_driver}; "
        f"using {DEFAULT_METRIC_RASTER_DRIVER} instead"
    )
    return DEFAULT_METRIC_RASTER_DRIVER, METRIC_RASTER_FORMATS[DEFAULT_METRIC_RASTER_DRIVER]
