"""Pytest configuration and fixtures for surface-metric tests."""
import sys
from pathlib import Path

# Add project root to Python path for imports
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

import matplotlib

matplotlib.use("Agg")

import pytest
import numpy as np
import rasterio
from rasterio.transform import from_origin

from src.surface.raster import SourceRaster

CELL_SIZE = 30.0
TEST_CRS = "EPSG:5070"


def make_forest_cover(shape=(60, 60), seed=0):
    """Smooth percent-cover surface with patchy noise, clipped to 0-100."""
    rng = np.random.default_rng(seed)
    rows, cols = np.indices(shape, dtype=np.float64)
    base = 50 + 30 * np.sin(rows / 7.0) * np.cos(cols / 5.0)
    noise = rng.normal(0, 8, size=shape)
    return np.clip(base + noise, 0, 100)


@pytest.fixture
def forest_cover():
    """60x60 synthetic percent forest cover array."""
    return make_forest_cover()


@pytest.fixture
def source_raster(forest_cover):
    """SourceRaster on a 30 m equal-area grid."""
    return SourceRaster.from_array(
        forest_cover,
        from_origin(0, forest_cover.shape[0] * CELL_SIZE, CELL_SIZE, CELL_SIZE),
        crs=TEST_CRS,
        name="forest_pct",
    )


@pytest.fixture
def source_raster_with_hole(forest_cover):
    """SourceRaster with a block of no-data cells in the middle."""
    data = forest_cover.copy()
    data[25:30, 25:30] = np.nan
    return SourceRaster.from_array(
        data,
        from_origin(0, data.shape[0] * CELL_SIZE, CELL_SIZE, CELL_SIZE),
        crs=TEST_CRS,
        name="forest_pct",
    )


@pytest.fixture
def forest_tif(tmp_path, forest_cover):
    """GeoTIFF of the synthetic forest cover with a -9999 nodata corner."""
    data = forest_cover.astype(np.float32)
    data[:3, :3] = -9999
    path = tmp_path / "forest_pct.tif"
    with rasterio.open(
        path,
        "w",
        driver="GTiff",
        height=data.shape[0],
        width=data.shape[1],
        count=1,
        dtype=data.dtype,
        crs=TEST_CRS,
        transform=from_origin(0, data.shape[0] * CELL_SIZE, CELL_SIZE, CELL_SIZE),
        nodata=-9999,
    ) as dst:
        dst.write(data, 1)
    return path


@pytest.fixture
def project_root():
    """Get the project root directory."""
    return Path(__file__).parent.parent
