"""
aggregation.py - Field -> sample -> study aggregation

Collapses the per-field label x label matrices of a sample into one mean,
variance and count matrix, derives the standard error, and runs the whole
pipeline over a study.

Fields are combined with an unweighted average of their means and
variances (not pooled by field size); counts are summed.
"""
from __future__ import annotations
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from nnloji.data.core import Sample, Study

from dataclasses import dataclass
from typing import List, Literal, Optional, Sequence, Union
import logging
import warnings
import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from ..data.config import ValidationError
from ..data.core import LabelIndex
from .statistics import (
    COUNT_DTYPE,
    FLOAT_DTYPE,
    FieldStatistics,
    field_statistics,
    frame_values,
    labeled_frame,
)
from .store import NeighborStore

logger = logging.getLogger(__name__)


@dataclass
class SampleStat:
    """
    Combined nearest neighbor statistics of one sample, indexed ``[to, from]``.

    Attributes
    ----------
    means : pd.DataFrame
        Average of the per-field mean distances (Float64).
    variances : pd.DataFrame
        Average of the per-field variances (Float64).
    counts : pd.DataFrame
        Sum of the per-field "from" counts (Int64).
    se : pd.DataFrame
        sqrt(variance) / sqrt(count). Missing exactly where ``means`` is.
    """
    means: pd.DataFrame
    variances: pd.DataFrame
    counts: pd.DataFrame
    se: pd.DataFrame

    @property
    def labels(self) -> LabelIndex:
        return LabelIndex(self.means.columns)


def collapse(
    frames: Sequence[pd.DataFrame],
    how: Literal['mean', 'sum'] = 'mean',
) -> np.ndarray:
    """
    Combine equally labeled frames element-wise, ignoring missing entries.

    Parameters
    ----------
    frames : sequence of pd.DataFrame
        Frames with identical index and columns.
    how : str
        'mean': average of present entries, NaN if none present.
        'sum' : sum of present entries, 0 if none present.

    Returns
    -------
    np.ndarray
        Combined float array (NaN = missing).
    """
    if len(frames) == 0:
        raise ValidationError("Nothing to collapse: no frames given")

    first = frames[0]
    for frame in frames[1:]:
        if not (frame.index.equals(first.index) and frame.columns.equals(first.columns)):
            raise ValidationError("Cannot collapse frames with different labels")

    stack = np.stack([frame_values(frame) for frame in frames])
    present = ~np.isnan(stack)
    totals = np.where(present, stack, 0.0).sum(axis=0)

    if how == 'sum':
        return totals
    if how == 'mean':
        n_present = present.sum(axis=0)
        return np.divide(
            totals, n_present,
            out=np.full(totals.shape, np.nan),
            where=n_present > 0,
        )
    raise ValueError(f"Unknown collapse method: {how}. Use 'mean' or 'sum'.")


def standard_error(variances: np.ndarray, counts: np.ndarray) -> np.ndarray:
    """sqrt(variance) / sqrt(count); NaN for missing operands or zero counts."""
    se = np.full(variances.shape, np.nan)
    valid = np.isfinite(variances) & np.isfinite(counts) & (counts > 0) & (variances >= 0)
    se[valid] = np.sqrt(variances[valid]) / np.sqrt(counts[valid])
    return se


def sample_statistics(field_stats: Sequence[FieldStatistics]) -> SampleStat:
    """
    Collapse per-field statistics into one SampleStat.

    Parameters
    ----------
    field_stats : sequence of FieldStatistics
        One entry per field of the sample (at least one).

    Returns
    -------
    SampleStat
    """
    if len(field_stats) == 0:
        raise ValidationError("A sample needs at least one field")

    labels = LabelIndex(field_stats[0].means.columns)

    means = collapse([fs.means for fs in field_stats], how='mean')
    variances = collapse([fs.variances for fs in field_stats], how='mean')
    counts = collapse([fs.counts for fs in field_stats], how='sum')

    # A single cell gives a mean but no variance; drop those means too
    means[np.isnan(variances)] = np.nan

    se = standard_error(variances, counts)
    # SE and mean are missing together
    se[np.isnan(means)] = np.nan
    means[np.isnan(se)] = np.nan

    return SampleStat(
        means=labeled_frame(means, labels, FLOAT_DTYPE),
        variances=labeled_frame(variances, labels, FLOAT_DTYPE),
        counts=labeled_frame(counts, labels, COUNT_DTYPE),
        se=labeled_frame(se, labels, FLOAT_DTYPE),
    )


def sample_nearest_neighbors(
    sample: 'Sample',
    labels: Union[LabelIndex, Sequence[str]],
    min_num_cells: int = 10,
) -> SampleStat:
    """
    Compute the nearest neighbor statistics of one sample.

    Every field is measured for all label pairs, then the fields are
    collapsed with sample_statistics().
    """
    if not isinstance(labels, LabelIndex):
        labels = LabelIndex(labels)
    field_stats = [field_statistics(field, labels, min_num_cells) for field in sample.fields]
    return sample_statistics(field_stats)


def extract_nearest_neighbor(
    study: 'Study',
    min_num_cells: Optional[int] = None,
    n_jobs: Optional[int] = None,
    verbose: bool = True,
) -> 'Study':
    """
    Extract the distance to each nearest neighbor for every label pair.

    Parameters
    ----------
    study : Study
        Study to analyze.
    min_num_cells : int, optional
        Minimum number of cells a label needs in a field for its distances
        to be computed. Defaults to ``study.config.min_num_cells`` (10).
    n_jobs : int, optional
        Number of samples processed concurrently. Defaults to
        ``study.config.n_jobs``.
    verbose : bool
        Print a short summary.

    Returns
    -------
    Study
        The same study, with ``study.nearest_neighbors`` populated.

    Examples
    --------
    >>> study = extract_nearest_neighbor(study, min_num_cells=10)
    >>> means, se = get_nearest_neighbors(study, 'SOX10+ PDL1+')
    """
    if min_num_cells is None:
        min_num_cells = study.config.min_num_cells
    if n_jobs is None:
        n_jobs = study.config.n_jobs
    if min_num_cells < 1:
        raise ValidationError(f"min_num_cells must be >= 1, got {min_num_cells}")

    labels = study.markers
    _warn_unused_markers(study)

    samples = list(study.samples)
    if n_jobs > 1 and len(samples) > 1:
        results: List[SampleStat] = Parallel(n_jobs=min(n_jobs, len(samples)))(
            delayed(sample_nearest_neighbors)(s, labels, min_num_cells) for s in samples
        )
    else:
        results = [sample_nearest_neighbors(s, labels, min_num_cells) for s in samples]

    store = NeighborStore(labels)
    for sample, stat in zip(samples, results):
        store.put(sample.name, stat)
    store.freeze()
    study.attach_nearest_neighbors(store)

    if verbose:
        n_pairs = len(labels) ** 2
        n_present = sum(int(stat.means.notna().to_numpy().sum()) for stat in results)
        print(f"  ✓ Nearest neighbors: {len(samples)} samples × {n_pairs} label pairs "
              f"(min_num_cells={min_num_cells})")
        print(f"    {n_present:,} / {len(samples) * n_pairs:,} sample-pair means available")

    return study


def _warn_unused_markers(study: 'Study') -> None:
    present = set()
    for _, field in study.iter_fields():
        present.update(np.unique(field.labels).tolist())
    unused = [label for label in study.markers if label not in present]
    if unused:
        warnings.warn(f"Markers with no cells in any field: {unused}", stacklevel=3)


def get_all_nearest_neighbors(study: 'Study') -> dict:
    """Ordered mapping sample name -> SampleStat."""
    return study.nearest_neighbors.get_all()


def get_nearest_neighbors(study: 'Study', marker: str):
    """
    Nearest neighbor means and SEs from one cell type to every other.

    Returns
    -------
    Tuple[pd.DataFrame, pd.DataFrame]
        (means, se), both indexed ``[to_label, sample]``.
    """
    return study.nearest_neighbors.get_for_label(marker)
