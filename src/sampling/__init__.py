"""
Stratified sampling of surface-metric rasters.

This module provides:
- Binning strategies (equal-width classes or fixed edges per metric)
- Seeded per-class sampling of valid cells
"""

from .binning import (
    BINNING_OVERRIDES,
    STRATUM_UNASSIGNED,
    EqualWidthBins,
    FixedBinEdges,
    StratumAssignment,
    assign_strata,
    resolve_binning,
    stratify,
)
from .stratified import (
    Sample,
    StratumSummary,
    make_rng,
    sample_strata,
    samples_to_frame,
    summarize_strata,
    write_samples,
)

__all__ = [
    "BINNING_OVERRIDES",
    "STRATUM_UNASSIGNED",
    "EqualWidthBins",
    "FixedBinEdges",
    "StratumAssignment",
    "assign_strata",
    "resolve_binning",
    "stratify",
    "Sample",
    "StratumSummary",
    "make_rng",
    "sample_strata",
    "samples_to_frame",
    "summarize_strata",
    "write_samples",
]
