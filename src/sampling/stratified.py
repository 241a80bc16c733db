"""
Stratified random sampling of metric rasters.

Draws a fixed quota of cells from every metric class so that samples cover
the full value range instead of following the value frequency. Sampling is
driven by an explicit numpy Generator; the same seed always yields the same
sequence of samples.
"""

from dataclasses import asdict, dataclass
from pathlib import Path
from typing import List, Optional, Union
import logging
import warnings

import numpy as np
import pandas as pd

from src.sampling.binning import BinningStrategy, StratumAssignment, stratify
from src.surface.errors import InsufficientSamplesWarning
from src.surface.raster import MetricRaster

logger = logging.getLogger(__name__)

VALUE_PRECISION = 2


@dataclass(frozen=True)
class Sample:
    """A sampled cell with its class and rounded attributes."""

    row: int
    col: int
    x: float
    y: float
    stratum: int
    metric_value: float
    """Metric value rounded to VALUE_PRECISION decimals."""

    source_mean: float
    """Windowed mean of the source variable, rounded to VALUE_PRECISION decimals."""

    raw_metric_value: float
    """Unrounded metric value (used for class consistency checks)."""


@dataclass(frozen=True)
class StratumSummary:
    """Availability and draw counts for one class."""

    stratum: int
    lower: float
    upper: float
    available: int
    requested: int
    drawn: int

    @property
    def shortfall(self) -> int:
        return self.requested - self.drawn


def make_rng(seed: Optional[int]) -> np.random.Generator:
    """Create the seeded generator passed to the sampler."""
    return np.random.default_rng(seed)


def sample_strata(
    metric_raster: MetricRaster,
    binning: BinningStrategy,
    nsamples: int,
    rng: np.random.Generator,
    assignment: Optional[StratumAssignment] = None,
) -> List[Sample]:
    """
    Draw up to ``nsamples`` cells per class without replacement.

    Classes are visited in ascending order and samples keep their draw order
    within a class. Empty classes contribute nothing; classes with fewer
    valid cells than requested return all of them and issue an
    InsufficientSamplesWarning.

    Args:
        metric_raster: Metric raster to stratify
        binning: Equal-width or fixed-edge strategy
        nsamples: Samples per class (positive)
        rng: Seeded generator (see make_rng)
        assignment: Precomputed stratification (computed if None)

    Returns:
        list[Sample]: Class-major, draw-order-minor samples
    """
    if isinstance(nsamples, bool) or not isinstance(nsamples, (int, np.integer)) or nsamples < 1:
        raise ValueError(f"nsamples must be a positive integer, got {nsamples!r}")

    if assignment is None:
        assignment = stratify(metric_raster.values, binning)

    flat_ids = assignment.ids.ravel()
    flat_values = metric_raster.values.ravel()
    flat_means = metric_raster.window_mean.ravel()
    n_cols = metric_raster.shape[1]

    samples = []
    for stratum in range(1, assignment.nclasses + 1):
        candidates = np.flatnonzero(flat_ids == stratum)
        available = candidates.size

        if available == 0:
            logger.info(f"  Class {stratum}: no valid cells, skipped")
            continue

        take = min(int(nsamples), available)
        if take < nsamples:
            lower, upper = assignment.class_bounds(stratum)
            message = (
                f"Class {stratum} ({lower:.2f}, {upper:.2f}] has {available} valid cell(s); "
                f"{nsamples} requested"
            )
            logger.warning(message)
            warnings.warn(message, InsufficientSamplesWarning, stacklevel=2)

        drawn = rng.choice(candidates, size=take, replace=False)
        for flat_index in drawn:
            row, col = divmod(int(flat_index), n_cols)
            x, y = metric_raster.geometry.xy(row, col)
            raw = float(flat_values[flat_index])
            samples.append(
                Sample(
                    row=row,
                    col=col,
                    x=x,
                    y=y,
                    stratum=stratum,
                    metric_value=round(raw, VALUE_PRECISION),
                    source_mean=round(float(flat_means[flat_index]), VALUE_PRECISION),
                    raw_metric_value=raw,
                )
            )

        logger.debug(f"  Class {stratum}: drew {take} of {available}")

    logger.info(
        f"Drew {len(samples)} samples from {metric_raster.metric} "
        f"(w={metric_raster.window_size}), up to {nsamples} per class"
    )
    return samples


def summarize_strata(
    assignment: StratumAssignment, samples: List[Sample], nsamples: int
) -> List[StratumSummary]:
    """Per-class counts of available cells, requested and drawn samples."""
    counts = assignment.counts()
    drawn = {}
    for sample in samples:
        drawn[sample.stratum] = drawn.get(sample.stratum, 0) + 1

    summaries = []
    for stratum, available in counts.items():
        lower, upper = assignment.class_bounds(stratum)
        summaries.append(
            StratumSummary(
                stratum=stratum,
                lower=lower,
                upper=upper,
                available=available,
                requested=nsamples,
                drawn=drawn.get(stratum, 0),
            )
        )
    return summaries


def samples_to_frame(samples: List[Sample]) -> pd.DataFrame:
    """Tabulate samples, one row per sample in sampling order."""
    columns = [
        "row", "col", "x", "y", "stratum", "metric_value", "source_mean", "raw_metric_value",
    ]
    return pd.DataFrame([asdict(s) for s in samples], columns=columns)


def write_samples(samples: List[Sample], path: Union[str, Path]) -> Path:
    """Write samples to CSV."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    samples_to_frame(samples).to_csv(path, index=False)
    logger.info(f"Wrote {len(samples)} samples to {path}")
    return path
