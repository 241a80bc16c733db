"""
Tile-grid renderers for stratified surface samples.

Both renderers lay tiles out with one row per metric class and one column
per sample, draw each tile as a height-mapped surface (z = source value)
colored by a fixed ramp, and keep the cameras of all tiles in step:

- render_static_grid: matplotlib mplot3d figure, optionally saved to PNG.
  Rotating any axes rotates every other axes.
- render_interactive_scene: PyVista plotter with linked views.
"""

import logging
from pathlib import Path
from typing import Callable, Dict, Optional, Sequence, Tuple

import matplotlib.pyplot as plt
import numpy as np
from matplotlib.cm import ScalarMappable

from src.surface.metrics import METRIC_LABELS, canonical_metric_name
from src.surface.visualization.color_mapping import ColorRamp, ramp_colors
from src.surface.visualization.tiles import Tile, grid_shape

logger = logging.getLogger(__name__)


def tile_title(tile: Tile, metric_name: str, source_label: str = "mean") -> str:
    """Annotation for a tile: its metric value and mean source value."""
    return (
        f"{metric_name} = {tile.sample.metric_value:.2f}\n"
        f"{source_label} = {tile.sample.source_mean:.2f}"
    )


def link_rotation(fig, axes: Sequence) -> int:
    """
    Keep the view angles of 3D axes synchronized.

    Dragging any of ``axes`` copies its elevation and azimuth to all others.

    Returns:
        Callback id from ``fig.canvas.mpl_connect``
    """
    linked = list(axes)

    def on_move(event):
        source = event.inaxes
        if source not in linked:
            return
        for ax in linked:
            if ax is not source:
                ax.view_init(elev=source.elev, azim=source.azim)
        fig.canvas.draw_idle()

    return fig.canvas.mpl_connect("motion_notify_event", on_move)


def render_static_grid(
    tiles: Sequence[Tile],
    metric_name: str,
    ramp: ColorRamp,
    output_path: Optional[Path] = None,
    source_label: str = "mean",
    tile_size: float = 2.5,
    dpi: int = 150,
    elev: float = 35.0,
    azim: float = -60.0,
):
    """
    Render tiles as a grid of matplotlib 3D surfaces.

    Args:
        tiles: Tiles from build_tiles()
        metric_name: Metric shown in annotations
        ramp: Color ramp for source values (also fixes the z range)
        output_path: Save the figure here if given
        source_label: Label for the mean source value in annotations
        tile_size: Inches per tile
        dpi: Resolution for the saved figure
        elev: Initial camera elevation (degrees)
        azim: Initial camera azimuth (degrees)

    Returns:
        matplotlib.figure.Figure (caller closes it)
    """
    if not tiles:
        raise ValueError("No tiles to render")

    metric = canonical_metric_name(metric_name)
    nrows, ncols = grid_shape(tiles)
    logger.info(f"Rendering {len(tiles)} tiles as {nrows}x{ncols} static grid")

    fig, axes = plt.subplots(
        nrows,
        ncols,
        figsize=(tile_size * ncols + 1.5, tile_size * nrows),
        subplot_kw={"projection": "3d"},
        squeeze=False,
    )
    fig.suptitle(
        f"{METRIC_LABELS[metric]}, {tiles[0].window_size}x{tiles[0].window_size} window "
        f"({tiles[0].side_length:g} m)",
        fontsize=12,
        fontweight="bold",
    )

    zmin, zmax = ramp.limits
    used = set()
    for tile in tiles:
        r, c = tile.grid_position
        ax = axes[r, c]
        used.add((r, c))

        x, y = tile.cell_centers()
        z = np.where(np.isnan(tile.data), zmin, tile.data)
        ax.plot_surface(
            x,
            y,
            z,
            facecolors=ramp_colors(tile.data, ramp),
            rstride=1,
            cstride=1,
            linewidth=0,
            antialiased=False,
            shade=False,
        )
        ax.set_zlim(zmin, zmax)
        ax.set_xticks([])
        ax.set_yticks([])
        ax.view_init(elev=elev, azim=azim)
        ax.set_title(tile_title(tile, metric, source_label), fontsize=8)

    for r in range(nrows):
        for c in range(ncols):
            if (r, c) not in used:
                axes[r, c].set_axis_off()

    # Class labels down the left edge
    for r in range(nrows):
        row_tiles = [t for t in tiles if t.grid_position[0] == r]
        axes[r, 0].text2D(
            -0.15, 0.5, f"class {row_tiles[0].sample.stratum}",
            rotation=90, va="center", fontsize=9,
        )

    mappable = ScalarMappable(norm=ramp.norm, cmap=ramp.cmap)
    mappable.set_array([])
    fig.colorbar(mappable, ax=axes.ravel().tolist(), shrink=0.6, label=source_label)

    link_rotation(fig, [axes[r, c] for r, c in sorted(used)])

    if output_path is not None:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(output_path, dpi=dpi, bbox_inches="tight")
        logger.info(f"Saved tile grid: {output_path}")

    return fig


def render_interactive_scene(
    tiles: Sequence[Tile],
    metric_name: str,
    ramp: ColorRamp,
    output_path: Optional[Path] = None,
    source_label: str = "mean",
    off_screen: bool = False,
    z_scale: float = 1.0,
    window_size: Tuple[int, int] = (1400, 900),
):
    """
    Render tiles in a PyVista multi-viewport scene with linked cameras.

    Args:
        tiles: Tiles from build_tiles()
        metric_name: Metric shown in annotations
        ramp: Color ramp for source values
        output_path: Screenshot path (PNG) if given
        source_label: Label for the mean source value in annotations
        off_screen: Render without opening a window
        z_scale: Vertical exaggeration applied to source values
        window_size: Render window size in pixels

    Returns:
        Path to the screenshot, or None
    """
    import pyvista as pv

    if not tiles:
        raise ValueError("No tiles to render")

    metric = canonical_metric_name(metric_name)
    nrows, ncols = grid_shape(tiles)
    logger.info(f"Rendering {len(tiles)} tiles as {nrows}x{ncols} interactive scene")

    zmin = ramp.limits[0]
    plotter = pv.Plotter(shape=(nrows, ncols), off_screen=off_screen, window_size=list(window_size))
    try:
        for tile in tiles:
            plotter.subplot(*tile.grid_position)

            x, y = tile.cell_centers()
            z = np.where(np.isnan(tile.data), zmin, tile.data) * z_scale
            surface = pv.StructuredGrid(x, y, z)

            rgb = (ramp_colors(tile.data, ramp)[..., :3] * 255).astype(np.uint8)
            surface["colors"] = rgb.reshape(-1, 3, order="F")

            plotter.add_mesh(surface, scalars="colors", rgb=True, show_edges=False)
            plotter.add_text(tile_title(tile, metric, source_label), font_size=8)

        # Shared camera across viewports
        plotter.link_views()

        screenshot = None
        if output_path is not None:
            screenshot = Path(output_path)
            screenshot.parent.mkdir(parents=True, exist_ok=True)

        plotter.show(screenshot=str(screenshot) if screenshot else None)
        if screenshot:
            logger.info(f"Saved scene screenshot: {screenshot}")
        return screenshot
    finally:
        plotter.close()


RENDERERS: Dict[str, Callable] = {
    "static": render_static_grid,
    "interactive": render_interactive_scene,
}


def get_renderer(name: str) -> Callable:
    """Look up a renderer by name ('static' or 'interactive')."""
    if name not in RENDERERS:
        raise ValueError(f"Unknown renderer '{name}'. Available: {list(RENDERERS)}")
    return RENDERERS[name]
