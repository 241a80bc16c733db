"""Configuration module for the forest surface-strata project.

Centralizes output paths and default analysis settings.
"""
from pathlib import Path

# Project root
PROJECT_ROOT = Path(__file__).parent.parent

# Figures, sample tables and metric rasters (created as needed)
OUTPUT_DIR = PROJECT_ROOT / "outputs"

# USGS CONUS Albers equal-area (NAD83, metres)
DEFAULT_EQUAL_AREA_CRS = (
    "+proj=aea +lat_0=23 +lon_0=-96 +lat_1=29.5 +lat_2=45.5 "
    "+x_0=0 +y_0=0 +datum=NAD83 +units=m +no_defs"
)

# Default settings
DEFAULT_SOURCE_NAME = "forest_pct"
DEFAULT_METRICS = ("ssk", "sdq")
DEFAULT_WINDOW_SIZES = (11, 21, 41)  # 330 m, 630 m, 1230 m on a 30 m grid
DEFAULT_NCLASSES = 5
DEFAULT_NSAMPLES = 3
DEFAULT_SEED = 2020
DEFAULT_BREAKS = tuple(range(0, 101, 10))
DEFAULT_CMAP = "RdYlGn"
DEFAULT_PARALLEL_WORKERS = 1
DEFAULT_LOG_LEVEL = "INFO"
