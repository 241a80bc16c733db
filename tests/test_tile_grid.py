"""
Tests for the static and interactive tile-grid renderers.
"""

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
import matplotlib.pyplot as plt

from src.sampling.stratified import Sample
from src.surface.visualization.color_mapping import build_color_ramp
from src.surface.visualization.tile_grid import (
    RENDERERS,
    get_renderer,
    link_rotation,
    render_interactive_scene,
    render_static_grid,
    tile_title,
)
from src.surface.visualization.tiles import build_tiles


def make_sample(source_raster, row, col, stratum, metric_value=0.25):
    x, y = source_raster.geometry.xy(row, col)
    return Sample(
        row=row,
        col=col,
        x=x,
        y=y,
        stratum=stratum,
        metric_value=metric_value,
        source_mean=float(source_raster.data[row, col]),
        raw_metric_value=metric_value,
    )


@pytest.fixture
def tiles(source_raster):
    samples = [
        make_sample(source_raster, 10, 10, 1, -0.81),
        make_sample(source_raster, 20, 40, 1, -0.52),
        make_sample(source_raster, 30, 30, 2, 0.05),
        make_sample(source_raster, 45, 15, 4, 1.6),
    ]
    return build_tiles(source_raster, samples, 7)


@pytest.fixture
def ramp():
    return build_color_ramp()


def test_tile_title(tiles):
    title = tile_title(tiles[2], "ssk", "forest_pct")
    assert title.splitlines()[0] == "ssk = 0.05"
    assert title.splitlines()[1].startswith("forest_pct = ")


class TestStaticGrid:
    """Tests for render_static_grid()"""

    def test_writes_png(self, tiles, ramp, tmp_path):
        output = tmp_path / "figures" / "grid.png"
        fig = render_static_grid(tiles, "ssk", ramp, output_path=output)
        try:
            assert output.exists()
            assert output.stat().st_size > 0
        finally:
            plt.close(fig)

    def test_grid_layout(self, tiles, ramp):
        fig = render_static_grid(tiles, "skewness", ramp)
        try:
            axes_3d = [ax for ax in fig.axes if ax.name == "3d"]
            # 3 classes x 2 columns, unused cells turned off
            assert len(axes_3d) == 6
            assert sum(1 for ax in axes_3d if ax.axison) == 4
            assert "Skewness" in fig._suptitle.get_text()
        finally:
            plt.close(fig)

    def test_no_tiles_raises(self, ramp):
        with pytest.raises(ValueError, match="No tiles"):
            render_static_grid([], "ssk", ramp)


class TestLinkRotation:
    """Tests for link_rotation()"""

    def test_rotation_propagates(self):
        fig = plt.figure()
        try:
            ax1 = fig.add_subplot(1, 2, 1, projection="3d")
            ax2 = fig.add_subplot(1, 2, 2, projection="3d")
            link_rotation(fig, [ax1, ax2])

            ax1.view_init(elev=10, azim=120)
            fig.canvas.callbacks.process("motion_notify_event", SimpleNamespace(inaxes=ax1))

            assert ax2.elev == 10
            assert ax2.azim == 120
        finally:
            plt.close(fig)

    def test_ignores_unlinked_axes(self):
        fig = plt.figure()
        try:
            ax1 = fig.add_subplot(1, 2, 1, projection="3d")
            ax2 = fig.add_subplot(1, 2, 2, projection="3d")
            link_rotation(fig, [ax2])

            ax1.view_init(elev=5, azim=5)
            fig.canvas.callbacks.process("motion_notify_event", SimpleNamespace(inaxes=ax1))
            fig.canvas.callbacks.process("motion_notify_event", SimpleNamespace(inaxes=None))

            assert ax2.elev != 5
        finally:
            plt.close(fig)


class TestInteractiveScene:
    """Tests for render_interactive_scene() with PyVista mocked out."""

    def test_builds_linked_subplots(self, tiles, ramp, tmp_path):
        pytest.importorskip("pyvista")

        with patch("pyvista.Plotter") as mock_plotter_cls, \
                patch("pyvista.StructuredGrid") as mock_grid:
            plotter = mock_plotter_cls.return_value
            mock_grid.return_value = MagicMock()

            result = render_interactive_scene(
                tiles, "ssk", ramp, output_path=tmp_path / "scene.png", off_screen=True
            )

        assert result == tmp_path / "scene.png"
        assert mock_plotter_cls.call_args.kwargs["shape"] == (3, 2)
        assert mock_plotter_cls.call_args.kwargs["off_screen"] is True
        subplot_calls = [c.args for c in plotter.subplot.call_args_list]
        assert subplot_calls == [(0, 0), (0, 1), (1, 0), (2, 0)]
        assert plotter.add_mesh.call_count == 4
        plotter.link_views.assert_called_once()
        plotter.show.assert_called_once_with(screenshot=str(tmp_path / "scene.png"))
        plotter.close.assert_called_once()

    def test_closes_plotter_on_error(self, tiles, ramp):
        pytest.importorskip("pyvista")

        with patch("pyvista.Plotter") as mock_plotter_cls, \
                patch("pyvista.StructuredGrid", side_effect=RuntimeError("boom")):
            with pytest.raises(RuntimeError, match="boom"):
                render_interactive_scene(tiles, "ssk", ramp, off_screen=True)

        mock_plotter_cls.return_value.close.assert_called_once()


def test_get_renderer():
    assert get_renderer("static") is render_static_grid
    assert get_renderer("interactive") is render_interactive_scene
    assert set(RENDERERS) == {"static", "interactive"}
    with pytest.raises(ValueError, match="Unknown renderer"):
        get_renderer("blender")
