"""
Tests for windowed surface metrics.
"""

import pytest
import numpy as np
from rasterio.transform import from_origin
from scipy import stats

from src.surface.errors import InvalidWindowError, UnsupportedMetricError
from src.surface.metrics import (
    METRIC_KERNELS,
    canonical_metric_name,
    compute_metric,
    compute_multiscale,
    validate_window,
)
from src.surface.raster import SourceRaster
from src.surface.transforms import remove_plane

CELL_SIZE = 30.0
TEST_CRS = "EPSG:5070"


def raster_from(data, name="forest_pct"):
    return SourceRaster.from_array(
        data,
        from_origin(0, data.shape[0] * CELL_SIZE, CELL_SIZE, CELL_SIZE),
        crs=TEST_CRS,
        name=name,
    )


class TestMetricNames:
    """Tests for metric name resolution."""

    @pytest.mark.parametrize(
        "alias,expected",
        [("skewness", "ssk"), ("rms_slope", "sdq"), ("SSK", "ssk"), (" sdr ", "sdr")],
    )
    def test_aliases_resolve(self, alias, expected):
        assert canonical_metric_name(alias) == expected

    def test_unknown_metric_raises(self):
        with pytest.raises(UnsupportedMetricError, match="Unknown metric 'roughness'"):
            canonical_metric_name("roughness")

    def test_unsupported_metric_is_key_error(self):
        with pytest.raises(KeyError):
            canonical_metric_name("nope")


class TestValidateWindow:
    """Tests for validate_window()"""

    @pytest.mark.parametrize("window_size", [0, 1, 2, 4, 10])
    def test_rejects_small_or_even(self, window_size):
        with pytest.raises(InvalidWindowError):
            validate_window(window_size, (60, 60))

    def test_rejects_oversized(self):
        with pytest.raises(InvalidWindowError, match="exceeds raster extent"):
            validate_window(61, (60, 60))

    def test_rejects_non_integer(self):
        with pytest.raises(InvalidWindowError, match="integer"):
            validate_window(11.0, (60, 60))
        with pytest.raises(InvalidWindowError):
            validate_window(True, (60, 60))

    def test_accepts_numpy_int(self):
        assert validate_window(np.int64(11), (60, 60)) == 11

    def test_invalid_window_is_value_error(self):
        with pytest.raises(ValueError):
            validate_window(4, (60, 60))


class TestComputeMetric:
    """Tests for compute_metric()"""

    def test_geometry_matches_source(self, source_raster):
        result = compute_metric(source_raster, "ssk", 11)

        assert result.shape == source_raster.shape
        assert result.geometry.transform == source_raster.transform
        assert result.geometry.crs == source_raster.crs
        assert result.metric == "ssk"
        assert result.window_size == 11
        assert result.source_name == "forest_pct"
        assert result.detrended is True

    def test_edges_masked(self, source_raster):
        result = compute_metric(source_raster, "sdq", 11)

        assert np.all(np.isnan(result.values[:5, :]))
        assert np.all(np.isnan(result.values[-5:, :]))
        assert np.all(np.isnan(result.values[:, :5]))
        assert np.all(np.isnan(result.values[:, -5:]))
        assert np.all(np.isfinite(result.values[5:-5, 5:-5]))

    def test_mask_matches_window_mean(self, source_raster_with_hole):
        result = compute_metric(source_raster_with_hole, "ssk", 5)

        assert np.array_equal(np.isnan(result.values), np.isnan(result.window_mean))
        # Hole of 5x5 at [25:30] grows by half a window on each side
        assert np.all(np.isnan(result.values[23:32, 23:32]))
        assert np.isfinite(result.values[22, 22])

    @pytest.mark.parametrize("metric_name", sorted(METRIC_KERNELS))
    def test_every_metric_runs(self, source_raster, metric_name):
        result = compute_metric(source_raster, metric_name, 7)
        assert np.count_nonzero(result.valid_mask) == (60 - 6) ** 2

    def test_skewness_matches_scipy(self, source_raster):
        result = compute_metric(source_raster, "skewness", 11)
        detrended = remove_plane(source_raster.data, CELL_SIZE)

        for row, col in [(5, 5), (20, 33), (54, 54)]:
            window = detrended[row - 5:row + 6, col - 5:col + 6].ravel()
            assert result.values[row, col] == pytest.approx(stats.skew(window))

    def test_kurtosis_matches_scipy(self, source_raster):
        result = compute_metric(source_raster, "sku", 9)
        detrended = remove_plane(source_raster.data, CELL_SIZE)

        window = detrended[26:35, 10:19].ravel()
        assert result.values[30, 14] == pytest.approx(stats.kurtosis(window, fisher=False))

    def test_flat_surface(self):
        source = raster_from(np.full((20, 20), 42.0))

        assert np.allclose(compute_metric(source, "ssk", 5).values[2:-2, 2:-2], 0.0)
        assert np.allclose(compute_metric(source, "sdq", 5).values[2:-2, 2:-2], 0.0)
        assert np.allclose(compute_metric(source, "sdr", 5).values[2:-2, 2:-2], 0.0)

    @pytest.mark.parametrize("metric_name", ["ssk", "sku"])
    def test_constant_raster_has_zero_shape_moments(self, metric_name):
        result = compute_metric(raster_from(np.full((30, 30), 100.0)), metric_name, 5)

        interior = result.values[2:-2, 2:-2]
        assert np.all(np.isfinite(interior))
        assert np.max(np.abs(interior)) == 0.0

    @pytest.mark.parametrize("metric_name", ["ssk", "sku"])
    def test_tilted_plane_has_zero_shape_moments(self, metric_name):
        rows, cols = np.indices((30, 30), dtype=np.float64)
        plane = 10.0 + 0.3 * rows + 0.7 * cols

        result = compute_metric(raster_from(plane), metric_name, 5)

        assert np.max(np.abs(result.values[2:-2, 2:-2])) == 0.0

    def test_shaped_window_is_not_treated_as_flat(self):
        data = np.full((15, 15), 100.0)
        data[7, 7] = 100.5

        result = compute_metric(raster_from(data), "ssk", 3)

        assert result.values[7, 7] > 1.0

    def test_detrends_input_raster(self, forest_cover):
        rows, cols = np.indices(forest_cover.shape, dtype=np.float64)
        tilted = forest_cover + 0.8 * cols - 0.5 * rows

        plain = compute_metric(raster_from(forest_cover), "sdq", 11)
        with_trend = compute_metric(raster_from(tilted), "sdq", 11)

        assert np.allclose(plain.values, with_trend.values, equal_nan=True)

    def test_different_inputs_give_different_results(self, forest_cover):
        other = np.flipud(forest_cover).copy()

        a = compute_metric(raster_from(forest_cover), "ssk", 11)
        b = compute_metric(raster_from(other), "ssk", 11)

        assert not np.allclose(a.values, b.values, equal_nan=True)

    def test_parallel_matches_serial(self, source_raster, monkeypatch):
        monkeypatch.setattr("src.surface.metrics.CHUNK_ELEMENTS", 5_000)

        serial = compute_metric(source_raster, "ssk", 11, parallel_workers=1)
        parallel = compute_metric(source_raster, "ssk", 11, parallel_workers=3)

        assert np.array_equal(serial.values, parallel.values, equal_nan=True)

    def test_input_not_modified(self, source_raster):
        before = source_raster.data.copy()
        compute_metric(source_raster, "sdq", 5)
        assert np.array_equal(source_raster.data, before)

    def test_invalid_window_raises(self, source_raster):
        with pytest.raises(InvalidWindowError):
            compute_metric(source_raster, "ssk", 10)

    def test_unknown_metric_raises(self, source_raster):
        with pytest.raises(UnsupportedMetricError):
            compute_metric(source_raster, "curvature", 11)

    def test_bad_worker_count_raises(self, source_raster):
        with pytest.raises(ValueError, match="parallel_workers"):
            compute_metric(source_raster, "ssk", 11, parallel_workers=0)


class TestComputeMultiscale:
    """Tests for compute_multiscale()"""

    def test_keys_cover_every_combination(self, source_raster):
        results = compute_multiscale(source_raster, ["skewness", "sdq"], [5, 11])

        assert set(results) == {("ssk", 5), ("ssk", 11), ("sdq", 5), ("sdq", 11)}
        assert results[("sdq", 11)].window_size == 11
