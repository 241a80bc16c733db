"""
Binning strategies for stratifying metric rasters.

A metric's value range is split either into equal-width classes across the
observed minimum and maximum, or into a fixed list of edges. Metrics whose
values are only meaningful against known breakpoints carry a fixed-edge
override in BINNING_OVERRIDES, which takes precedence over the class count.

Class ids are 1-based. Intervals are right-closed, (lower, upper], with the
lowest edge included in class 1. Cells that are invalid or fall outside all
bins get STRATUM_UNASSIGNED.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple, Union
import logging

import numpy as np

from src.surface.metrics import canonical_metric_name

logger = logging.getLogger(__name__)

STRATUM_UNASSIGNED = 0


@dataclass(frozen=True)
class EqualWidthBins:
    """Split the observed value range into ``nclasses`` equal-width bins."""

    nclasses: int

    def __post_init__(self):
        if isinstance(self.nclasses, bool) or not isinstance(self.nclasses, (int, np.integer)):
            raise ValueError(f"nclasses must be an integer, got {self.nclasses!r}")
        if self.nclasses < 1:
            raise ValueError(f"nclasses must be positive, got {self.nclasses}")

    @property
    def kind(self) -> str:
        return "equal_width"

    def resolve_edges(self, values: np.ndarray) -> np.ndarray:
        """Edges spanning the valid min/max of ``values``."""
        valid = values[~np.isnan(values)]
        if valid.size == 0:
            raise ValueError("Cannot derive equal-width bins: no valid values")
        return np.linspace(valid.min(), valid.max(), int(self.nclasses) + 1)


@dataclass(frozen=True)
class FixedBinEdges:
    """Use an explicit, strictly increasing list of bin edges verbatim."""

    edges: Tuple[float, ...]

    def __post_init__(self):
        edges = tuple(float(e) for e in self.edges)
        if len(edges) < 2:
            raise ValueError(f"At least two bin edges are required, got {len(edges)}")
        if any(np.isnan(edges)) or np.any(np.diff(edges) <= 0):
            raise ValueError(f"Bin edges must be strictly increasing, got {edges}")
        object.__setattr__(self, "edges", edges)

    @property
    def kind(self) -> str:
        return "fixed_edges"

    @property
    def nclasses(self) -> int:
        return len(self.edges) - 1

    def resolve_edges(self, values: np.ndarray) -> np.ndarray:
        return np.asarray(self.edges, dtype=np.float64)


BinningStrategy = Union[EqualWidthBins, FixedBinEdges]

# Metric name -> fixed binning that replaces equal-width classes
BINNING_OVERRIDES: Dict[str, BinningStrategy] = {
    "sdr": FixedBinEdges((0.7, 2.25, 3.8, 5.5, 10.0)),
}


def resolve_binning(
    metric_name: str,
    nclasses: Optional[int] = None,
    bin_edges: Optional[Sequence[float]] = None,
) -> BinningStrategy:
    """
    Pick the binning strategy for a metric.

    Precedence: explicit ``bin_edges``, then the metric's entry in
    BINNING_OVERRIDES (``nclasses`` is ignored), then equal-width bins.

    Raises:
        ValueError: If no edges apply and ``nclasses`` is missing
        UnsupportedMetricError: If the metric name is unknown
    """
    metric = canonical_metric_name(metric_name)

    if bin_edges is not None:
        return FixedBinEdges(tuple(bin_edges))

    if metric in BINNING_OVERRIDES:
        strategy = BINNING_OVERRIDES[metric]
        if nclasses is not None and nclasses != strategy.nclasses:
            logger.info(
                f"Metric '{metric}' uses fixed bin edges {strategy.edges}; "
                f"ignoring nclasses={nclasses}"
            )
        return strategy

    if nclasses is None:
        raise ValueError(f"nclasses is required for equal-width binning of '{metric}'")
    return EqualWidthBins(nclasses)


def assign_strata(values: np.ndarray, edges: np.ndarray) -> np.ndarray:
    """
    Map each value to its 1-based class id under right-closed bins.

    Args:
        values: Array of metric values (NaN = invalid)
        edges: Non-decreasing bin edges, length nclasses + 1

    Returns:
        np.ndarray: int32 class ids, STRATUM_UNASSIGNED outside all bins
    """
    edges = np.asarray(edges, dtype=np.float64)
    values = np.asarray(values, dtype=np.float64)
    nclasses = edges.size - 1

    ids = np.searchsorted(edges, values, side="left").astype(np.int32)
    # Lowest edge belongs to class 1
    ids[values == edges[0]] = 1
    ids[(ids < 1) | (ids > nclasses) | np.isnan(values)] = STRATUM_UNASSIGNED
    return ids


@dataclass
class StratumAssignment:
    """Class id per cell of a metric raster plus the edges that produced it."""

    ids: np.ndarray
    edges: np.ndarray
    strategy: BinningStrategy

    @property
    def nclasses(self) -> int:
        return self.edges.size - 1

    def class_bounds(self, stratum: int) -> Tuple[float, float]:
        """(lower, upper) edges of a 1-based class."""
        return float(self.edges[stratum - 1]), float(self.edges[stratum])

    def counts(self) -> Dict[int, int]:
        """Number of assigned cells per class, including empty classes."""
        return {
            k: int(np.count_nonzero(self.ids == k)) for k in range(1, self.nclasses + 1)
        }


def stratify(values: np.ndarray, strategy: BinningStrategy) -> StratumAssignment:
    """Bin a metric array with the given strategy."""
    edges = strategy.resolve_edges(values)
    ids = assign_strata(values, edges)
    logger.info(
        f"Stratified {np.count_nonzero(ids != STRATUM_UNASSIGNED)} cells into "
        f"{edges.size - 1} {strategy.kind} classes: edges {np.round(edges, 3).tolist()}"
    )
    return StratumAssignment(ids=ids, edges=edges, strategy=strategy)
