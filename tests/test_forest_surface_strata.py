"""Tests for the forest_surface_strata.py command line example."""

import importlib.util
import json
from pathlib import Path

import pytest

EXAMPLE_PATH = Path(__file__).parent.parent / "examples" / "forest_surface_strata.py"


@pytest.fixture(scope="module")
def cli():
    """Import the example script as a module."""
    spec = importlib.util.spec_from_file_location("forest_surface_strata", EXAMPLE_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_build_config_from_flags(cli):
    args = cli.parse_args(
        ["forest.tif", "--metric", "rms_slope", "--window", "21", "--seed", "5", "--no-reproject"]
    )
    config = cli.build_config(args)

    assert config.raster_path == "forest.tif"
    assert config.metric == "sdq"
    assert config.window_size == 21
    assert config.seed == 5
    assert config.dst_crs is None


def test_flags_override_json_config(cli, tmp_path):
    config_path = tmp_path / "run.json"
    config_path.write_text(json.dumps({"raster_path": "a.tif", "seed": 1, "nsamples": 4}))

    config = cli.build_config(cli.parse_args(["--config", str(config_path), "--seed", "9"]))

    assert config.raster_path == "a.tif"
    assert config.seed == 9
    assert config.nsamples == 4


def test_full_run(cli, forest_tif, tmp_path, capsys):
    output_dir = tmp_path / "out"
    code = cli.main([
        str(forest_tif),
        "--no-reproject",
        "--metric", "ssk", "sdq",
        "--window", "7",
        "--output-dir", str(output_dir),
        "--log-level", "WARNING",
    ])

    assert code == 0
    assert (output_dir / "forest_pct_ssk_w7.png").exists()
    assert (output_dir / "forest_pct_sdq_w7_samples.csv").exists()
    assert "sdq w=7" in capsys.readouterr().out


def test_missing_raster_argument(cli):
    assert cli.main([]) == 2


def test_invalid_window_is_config_error(cli, forest_tif):
    assert cli.main([str(forest_tif), "--window", "4"]) == 2


def test_stage_failure_returns_error(cli, tmp_path):
    code = cli.main([str(tmp_path / "missing.tif"), "--no-reproject", "--output-dir", str(tmp_path)])
    assert code == 1


def test_multiscale_flag(cli):
    args = cli.parse_args(["forest.tif", "--multiscale"])
    assert args.multiscale is True
    assert cli.build_config(args).window_size == 11


def test_unknown_flag_rejected(cli):
    with pytest.raises(SystemExit):
        cli.parse_args(["forest.tif", "--explain", "render"])
