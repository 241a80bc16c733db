"""
Tile extraction around stratified samples.

Each sample gets a square crop of the source raster centred on its cell and
sized to the metric window, so the tile shows exactly the neighbourhood the
metric summarised. Tiles are plain records in class-major, sample-minor
order; renderers only read them.
"""

from dataclasses import dataclass
from typing import List, Sequence, Tuple
import logging

import numpy as np
from affine import Affine

from src.sampling.stratified import Sample
from src.surface.metrics import validate_window
from src.surface.raster import SourceRaster

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Tile:
    """Crop of the source raster centred on one sample."""

    index: int
    """Position in the class-major, sample-minor tile sequence."""

    grid_position: Tuple[int, int]
    """(row, column) in the render grid: one row per class."""

    sample: Sample
    data: np.ndarray
    """window_size x window_size source values."""

    transform: Affine
    """Affine transform of the crop."""

    side_length: float
    """Tile side in map units (window_size * cell_size)."""

    @property
    def window_size(self) -> int:
        return self.data.shape[0]

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        """(west, south, east, north) of the crop."""
        west, north = self.transform * (0, 0)
        east, south = self.transform * (self.data.shape[1], self.data.shape[0])
        return min(west, east), min(south, north), max(west, east), max(south, north)

    def cell_centers(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        Cell-centre coordinates relative to the tile's west/south corner.

        Returns:
            tuple: (x, y) 2D arrays shaped like ``data``
        """
        size = self.data.shape[0]
        cell = self.side_length / size
        offsets = (np.arange(size) + 0.5) * cell
        x, y = np.meshgrid(offsets, offsets[::-1])
        return x, y


def grid_positions(samples: Sequence[Sample]) -> List[Tuple[int, int]]:
    """Render-grid (row, column) for each sample: classes ascending, draw order."""
    classes = sorted({s.stratum for s in samples})
    row_of = {stratum: i for i, stratum in enumerate(classes)}
    next_col = {stratum: 0 for stratum in classes}

    positions = []
    for sample in samples:
        positions.append((row_of[sample.stratum], next_col[sample.stratum]))
        next_col[sample.stratum] += 1
    return positions


def grid_shape(tiles: Sequence[Tile]) -> Tuple[int, int]:
    """(rows, columns) needed to lay out the tiles."""
    if not tiles:
        return 0, 0
    return (
        max(t.grid_position[0] for t in tiles) + 1,
        max(t.grid_position[1] for t in tiles) + 1,
    )


def build_tiles(source: SourceRaster, samples: Sequence[Sample], window_size: int) -> List[Tile]:
    """
    Crop a window of the source raster around every sample.

    Args:
        source: Source raster the metric was computed from
        samples: Samples in class-major order (see sample_strata)
        window_size: Metric window size in cells

    Returns:
        list[Tile]: One tile per sample, in sample order

    Raises:
        InvalidWindowError: If the window size is invalid for the raster
        ValueError: If a sample's window extends past the raster
    """
    window_size = validate_window(window_size, source.shape)
    half = window_size // 2
    side_length = window_size * source.cell_size
    n_rows, n_cols = source.shape

    tiles = []
    for index, (sample, position) in enumerate(zip(samples, grid_positions(samples))):
        top, left = sample.row - half, sample.col - half
        if top < 0 or left < 0 or top + window_size > n_rows or left + window_size > n_cols:
            raise ValueError(
                f"Sample at cell ({sample.row}, {sample.col}) is within {half} cells of the "
                f"raster edge; cannot cut a {window_size}x{window_size} tile"
            )

        data = np.array(source.data[top:top + window_size, left:left + window_size])
        data.flags.writeable = False
        tiles.append(
            Tile(
                index=index,
                grid_position=position,
                sample=sample,
                data=data,
                transform=source.transform * Affine.translation(left, top),
                side_length=side_length,
            )
        )

    logger.info(
        f"Built {len(tiles)} tiles of {window_size}x{window_size} cells "
        f"({side_length:g} map units per side)"
    )
    return tiles
