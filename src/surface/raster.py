"""
Raster containers for the surface-metric pipeline.

A SourceRaster holds the continuous input variable (percent forest cover)
on a georeferenced grid. A MetricRaster is co-registered with its source and
carries the windowed metric values plus the companion windowed mean used to
mask edge and no-data cells.
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple
import logging

import numpy as np
from affine import Affine
from rasterio.transform import array_bounds

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GridGeometry:
    """Grid geometry shared by a source raster and its metric rasters."""

    transform: Affine
    """Affine transform mapping (col, row) to map coordinates."""

    crs: Optional[str]
    """Coordinate reference system (WKT, PROJ or EPSG string)."""

    shape: Tuple[int, int]
    """(rows, cols) of the grid."""

    @property
    def cell_size(self) -> float:
        """
        Cell side length in map units.

        Raises:
            ValueError: If cells are not square
        """
        width = abs(self.transform.a)
        height = abs(self.transform.e)
        if not np.isclose(width, height):
            raise ValueError(
                f"Cells must be square for windowed metrics (got {width} x {height})"
            )
        return float(width)

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        """(west, south, east, north) in map units."""
        return array_bounds(self.shape[0], self.shape[1], self.transform)

    def xy(self, row: int, col: int) -> Tuple[float, float]:
        """Map coordinates of the centre of cell (row, col)."""
        x, y = self.transform * (col + 0.5, row + 0.5)
        return float(x), float(y)


@dataclass
class SourceRaster:
    """Single-band continuous raster with no-data converted to NaN."""

    data: np.ndarray
    geometry: GridGeometry
    name: str = "source"
    driver: str = "GTiff"
    """GDAL driver of the file the raster was read from."""

    def __post_init__(self):
        if self.data.ndim != 2:
            raise ValueError(f"Source raster must be 2D, got shape {self.data.shape}")
        if tuple(self.data.shape) != tuple(self.geometry.shape):
            raise ValueError(
                f"Data shape {self.data.shape} does not match grid shape {self.geometry.shape}"
            )
        # Read-only after load
        data = np.array(self.data, dtype=np.float64, copy=True)
        data.flags.writeable = False
        self.data = data

    @classmethod
    def from_array(
        cls,
        data: np.ndarray,
        transform: Affine,
        crs: Optional[str] = None,
        name: str = "source",
        nodata: Optional[float] = None,
        driver: str = "GTiff",
    ) -> "SourceRaster":
        """
        Build a SourceRaster from an array, converting nodata to NaN.

        Args:
            data: 2D array of cell values
            transform: Affine transform of the grid
            crs: Coordinate reference system
            name: Source variable name
            nodata: Value to treat as no data (in addition to NaN)
            driver: GDAL driver name of the originating file

        Returns:
            SourceRaster
        """
        values = np.asarray(data, dtype=np.float64).copy()
        if nodata is not None and not np.isnan(nodata):
            values[values == nodata] = np.nan
        return cls(values, GridGeometry(transform, crs, values.shape), name=name, driver=driver)

    @property
    def transform(self) -> Affine:
        return self.geometry.transform

    @property
    def crs(self) -> Optional[str]:
        return self.geometry.crs

    @property
    def shape(self) -> Tuple[int, int]:
        return self.geometry.shape

    @property
    def cell_size(self) -> float:
        return self.geometry.cell_size

    @property
    def valid_mask(self) -> np.ndarray:
        return ~np.isnan(self.data)


@dataclass
class MetricRaster:
    """
    Windowed surface metric co-registered with its source raster.

    Cells are invalid (NaN) exactly where ``window_mean`` is undefined, i.e.
    where the centred window leaves the grid or touches a no-data cell.
    """

    values: np.ndarray
    """Metric value per cell (NaN where invalid)."""

    window_mean: np.ndarray
    """Windowed mean of the source variable, same window as the metric."""

    metric: str
    """Canonical metric name (e.g. 'ssk', 'sdq')."""

    window_size: int
    """Window side length in cells (odd)."""

    geometry: GridGeometry
    source_name: str = "source"
    detrended: bool = field(default=True)

    def __post_init__(self):
        for label, arr in (("values", self.values), ("window_mean", self.window_mean)):
            if tuple(arr.shape) != tuple(self.geometry.shape):
                raise ValueError(
                    f"Metric {label} shape {arr.shape} does not match grid shape "
                    f"{self.geometry.shape}"
                )

    @property
    def shape(self) -> Tuple[int, int]:
        return self.geometry.shape

    @property
    def valid_mask(self) -> np.ndarray:
        return ~np.isnan(self.values)

    @property
    def window_extent(self) -> float:
        """Window side length in map units."""
        return self.window_size * self.geometry.cell_size

    def value_range(self) -> Tuple[float, float]:
        """(min, max) over valid cells."""
        if not np.any(self.valid_mask):
            raise ValueError(f"Metric raster '{self.metric}' has no valid cells")
        return float(np.nanmin(self.values)), float(np.nanmax(self.values))
