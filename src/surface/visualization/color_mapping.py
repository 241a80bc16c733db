"""
Color mapping functions for tile visualization.

Source values are colored with a fixed ramp over fixed breaks, so tiles from
different samples, classes and runs share one legend.
"""

from dataclasses import dataclass
from typing import Sequence, Tuple
import logging

import matplotlib
import numpy as np
from matplotlib.colors import BoundaryNorm, Colormap, ListedColormap

from src.config import DEFAULT_BREAKS, DEFAULT_CMAP

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ColorRamp:
    """Stepped colormap: one color per interval between consecutive breaks."""

    cmap: Colormap
    norm: BoundaryNorm
    breaks: Tuple[float, ...]

    @property
    def limits(self) -> Tuple[float, float]:
        return self.breaks[0], self.breaks[-1]


def build_color_ramp(
    breaks: Sequence[float] = DEFAULT_BREAKS, cmap_name: str = DEFAULT_CMAP
) -> ColorRamp:
    """
    Build a stepped color ramp over ascending breaks.

    Args:
        breaks: Strictly increasing break values (default: 0-100 by 10)
        cmap_name: Matplotlib colormap to sample (default: diverging 'RdYlGn')

    Returns:
        ColorRamp
    """
    breaks = tuple(float(b) for b in breaks)
    if len(breaks) < 2 or np.any(np.diff(breaks) <= 0):
        raise ValueError(f"Breaks must be at least two strictly increasing values, got {breaks}")

    n_colors = len(breaks) - 1
    base = matplotlib.colormaps[cmap_name]
    cmap = ListedColormap(base(np.linspace(0, 1, n_colors)), name=f"{cmap_name}_{n_colors}")
    norm = BoundaryNorm(breaks, n_colors, clip=True)

    logger.debug(f"Color ramp {cmap_name}: {n_colors} steps over {breaks[0]:g}-{breaks[-1]:g}")
    return ColorRamp(cmap=cmap, norm=norm, breaks=breaks)


def ramp_colors(values: np.ndarray, ramp: ColorRamp) -> np.ndarray:
    """
    Map values to RGBA through a color ramp.

    Values outside the breaks are clipped to the end colors. NaN cells are
    transparent black.

    Returns:
        Array of RGBA floats with shape (*values.shape, 4)
    """
    valid_mask = ~np.isnan(values)
    lo, hi = ramp.limits
    clipped = np.clip(np.where(valid_mask, values, lo), lo, hi)

    colors = ramp.cmap(ramp.norm(clipped))
    colors[~valid_mask] = (0, 0, 0, 0)
    return colors
