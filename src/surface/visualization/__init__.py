"""
Visualization of stratified surface samples.

This module provides:
- Tile extraction around samples (ordered, renderer-independent records)
- Fixed color ramps over source-value breaks
- Static (matplotlib) and interactive (PyVista) tile-grid renderers
"""

from .tiles import Tile, build_tiles, grid_shape
from .color_mapping import ColorRamp, build_color_ramp, ramp_colors
from .tile_grid import (
    RENDERERS,
    get_renderer,
    link_rotation,
    render_interactive_scene,
    render_static_grid,
)

__all__ = [
    "Tile",
    "build_tiles",
    "grid_shape",
    "ColorRamp",
    "build_color_ramp",
    "ramp_colors",
    "RENDERERS",
    "get_renderer",
    "link_rotation",
    "render_interactive_scene",
    "render_static_grid",
]
