"""
statistics.py - Per-field nearest neighbor statistics

For one field and one ordered label pair, turns the raw nearest neighbor
distances into (mean, variance, count). Labels with fewer than
``min_num_cells`` points are gated: no query is run and the mean and
variance are missing, but the count is still the raw "from" population.
"""
from __future__ import annotations
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from nnloji.data.core import Field

from dataclasses import dataclass
from typing import Optional, Sequence, Union
import logging
import math
import numpy as np
import pandas as pd

from ..data.config import EmptyInputError
from ..data.core import LabelIndex
from .query import field_distances

logger = logging.getLogger(__name__)

FLOAT_DTYPE = "Float64"
COUNT_DTYPE = "Int64"


def finite_or_none(value) -> Optional[float]:
    """Return ``value`` as float, or None if missing or non-finite."""
    if value is None or value is pd.NA:
        return None
    value = float(value)
    return value if math.isfinite(value) else None


@dataclass(frozen=True)
class PairStat:
    """
    Nearest neighbor summary for one (from, to) pair in one field.

    ``None`` marks a missing value. A missing variance with a count of
    exactly one forces the mean to be missing as well.
    """
    mean: Optional[float]
    variance: Optional[float]
    count: Optional[int]

    def __post_init__(self):
        if self.variance is None and self.count == 1 and self.mean is not None:
            object.__setattr__(self, 'mean', None)

    @property
    def is_missing(self) -> bool:
        return self.mean is None


@dataclass
class FieldStatistics:
    """
    Label x label matrices for one field, indexed ``[to, from]``.

    Attributes
    ----------
    field_name : str
    means : pd.DataFrame
        Mean nearest neighbor distance (Float64, pd.NA = missing).
    variances : pd.DataFrame
        Sample variance of the distances (Float64).
    counts : pd.DataFrame
        Number of "from" cells (Int64).
    """
    field_name: str
    means: pd.DataFrame
    variances: pd.DataFrame
    counts: pd.DataFrame

    def get(self, from_label: str, to_label: str) -> PairStat:
        return PairStat(
            mean=finite_or_none(self.means.at[to_label, from_label]),
            variance=finite_or_none(self.variances.at[to_label, from_label]),
            count=_int_or_none(self.counts.at[to_label, from_label]),
        )


def _int_or_none(value) -> Optional[int]:
    value = finite_or_none(value)
    return None if value is None else int(value)


def summarize_distances(distances: Optional[np.ndarray], n_from: int) -> PairStat:
    """
    Reduce a distance vector to a PairStat.

    Parameters
    ----------
    distances : np.ndarray or None
        Nearest neighbor distances, or None when gated.
    n_from : int
        Raw population of the "from" label, recorded as the count.
    """
    mean = variance = None
    if distances is not None and len(distances) > 0:
        mean = finite_or_none(np.mean(distances))
        if len(distances) > 1:
            variance = finite_or_none(np.var(distances, ddof=1))
    return PairStat(mean=mean, variance=variance, count=_int_or_none(n_from))


def field_pair_statistics(
    field: 'Field',
    from_label: str,
    to_label: str,
    min_num_cells: int = 10,
) -> PairStat:
    """
    Mean/variance of the distance from each ``from_label`` cell to its
    nearest ``to_label`` cell in one field.

    Parameters
    ----------
    field : Field
        Field to measure.
    from_label : str
        Source label (each source cell contributes one distance).
    to_label : str
        Target label.
    min_num_cells : int
        Both labels need at least this many cells, otherwise the mean and
        variance are missing.

    Returns
    -------
    PairStat
        ``count`` is always the number of ``from_label`` cells.
    """
    n_from = field.count(from_label)
    n_to = field.count(to_label)

    distances = None
    if n_from < min_num_cells or n_to < min_num_cells:
        logger.debug(
            "Field %s: %s->%s gated (n_from=%d, n_to=%d, min=%d)",
            field.name, from_label, to_label, n_from, n_to, min_num_cells,
        )
    else:
        try:
            distances = field_distances(field, from_label, to_label)
        except EmptyInputError as e:
            logger.warning("Field %s: %s->%s query failed: %s",
                           field.name, from_label, to_label, e)

    return summarize_distances(distances, n_from)


def field_statistics(
    field: 'Field',
    labels: Union[LabelIndex, Sequence[str]],
    min_num_cells: int = 10,
) -> FieldStatistics:
    """
    Compute PairStats for every ordered label pair in one field.

    Parameters
    ----------
    field : Field
        Field to measure.
    labels : LabelIndex or sequence of str
        Study vocabulary. Sets the row/column order of every matrix.
    min_num_cells : int
        Minimum population per label, see field_pair_statistics().

    Returns
    -------
    FieldStatistics
        Matrices indexed ``[to, from]``: rows are targets, columns sources.
    """
    if not isinstance(labels, LabelIndex):
        labels = LabelIndex(labels)

    n = len(labels)
    means = np.full((n, n), np.nan)
    variances = np.full((n, n), np.nan)
    counts = np.full((n, n), np.nan)

    for j, from_label in enumerate(labels):
        for i, to_label in enumerate(labels):
            stat = field_pair_statistics(field, from_label, to_label, min_num_cells)
            if stat.mean is not None:
                means[i, j] = stat.mean
            if stat.variance is not None:
                variances[i, j] = stat.variance
            if stat.count is not None:
                counts[i, j] = stat.count

    return FieldStatistics(
        field_name=field.name,
        means=labeled_frame(means, labels, FLOAT_DTYPE),
        variances=labeled_frame(variances, labels, FLOAT_DTYPE),
        counts=labeled_frame(counts, labels, COUNT_DTYPE),
    )


def labeled_frame(values: np.ndarray, labels: LabelIndex, dtype: str) -> pd.DataFrame:
    """
    Wrap a (to x from) float array in a vocabulary-labeled DataFrame.

    NaN and +/-inf become pd.NA in the nullable ``dtype``.
    """
    values = np.where(np.isfinite(values), values, np.nan)
    index = labels.to_index()
    frame = pd.DataFrame(values, index=index, columns=index.copy())
    return frame.astype(dtype)


def frame_values(frame: pd.DataFrame) -> np.ndarray:
    """Float array view of a nullable frame with pd.NA as NaN."""
    return frame.to_numpy(dtype=float, na_value=np.nan)
