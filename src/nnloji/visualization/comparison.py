"""
comparison.py - Grouped nearest neighbor comparison across samples

Compares the average distance from one cell type to a family of related
cell types (typically a '+'/'-' pair such as 'CD8 PD1+' / 'CD8 PD1-') in
every sample, and tests the pair with a two-sided paired t-test.

The measurement is not symmetric: switching 'from' and 'to' (or setting
``transposed``) gives different results.
"""
from __future__ import annotations
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from nnloji.data.core import Study
    from nnloji.spatial.store import NeighborStore

from dataclasses import dataclass, field
from typing import List, Optional, Tuple
import logging
import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
from scipy import stats

from ..data.config import InsufficientDataError, NoMatchError
from ..spatial.labels import DEFAULT_RESOLVER, LabelResolver
from ..spatial.statistics import finite_or_none

logger = logging.getLogger(__name__)

BAR_COLORS = ("lightgrey", "black")


@dataclass
class ComparisonResult:
    """
    Output of compare_nearest_neighbors().

    Attributes
    ----------
    from_label : str
        Fixed source cell type.
    targets : List[str]
        Matched target cell types (one or two), table row order.
    means : pd.DataFrame
        Mean distances, rows = targets, columns = samples (ordered).
    ses : pd.DataFrame
        Standard errors, same layout as ``means``.
    pvalue : float or None
        Paired t-test p-value, None when not computed.
    tested_samples : List[str]
        Samples that entered the paired test.
    pivot : str or None
        Target row whose values set the sample order.
    label : str
        Plot title, e.g. 'Distance from SOX10+ to CD8 PD1 +/-'.
    ylab : str
        Axis title with unit.
    unit : str
        'um' or 'px'.
    transposed : bool
    """
    from_label: str
    targets: List[str]
    means: pd.DataFrame
    ses: pd.DataFrame
    pvalue: Optional[float]
    label: str
    ylab: str
    unit: str
    transposed: bool = False
    pivot: Optional[str] = None
    tested_samples: List[str] = field(default_factory=list)

    @property
    def samples(self) -> List[str]:
        return list(self.means.columns)

    def bars(self) -> pd.DataFrame:
        """
        Grouped bar data: one row per (sample, target) in plot order.

        Columns: sample, target, mean, se, lower, upper.
        """
        rows = []
        for sample in self.means.columns:
            for target in self.targets:
                mean = self.means.at[target, sample]
                se = self.ses.at[target, sample]
                rows.append({
                    'sample': sample,
                    'target': target,
                    'mean': mean,
                    'se': se,
                    'lower': mean - se,
                    'upper': mean + se,
                })
        return pd.DataFrame(rows, columns=['sample', 'target', 'mean', 'se', 'lower', 'upper'])


def build_label(from_label: str, to_pattern: str, ext: str, transposed: bool) -> str:
    """Plot title for a comparison."""
    to_part = f"{to_pattern} {ext}".strip()
    if transposed:
        return f"Distance from {to_part} to {from_label}"
    return f"Distance from {from_label} to {to_part}"


def paired_ttest(a: np.ndarray, b: np.ndarray) -> Optional[float]:
    """
    Two-sided paired t-test p-value.

    Raises
    ------
    InsufficientDataError
        With fewer than two pairs.
    """
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    if len(a) != len(b):
        raise ValueError(f"Paired samples differ in length: {len(a)} vs {len(b)}")
    if len(a) < 2:
        raise InsufficientDataError(f"Paired t-test needs >= 2 pairs, got {len(a)}")
    result = stats.ttest_rel(a, b)
    return finite_or_none(result.pvalue)


def resolve_targets(
    labels,
    from_label: str,
    to_pattern: str,
    resolver: Optional[LabelResolver] = None,
) -> List[str]:
    """
    Target labels for a comparison: pattern matches minus ``from_label``.

    Raises
    ------
    NoMatchError
        If ``from_label`` is unknown or nothing is left to compare with.
    """
    resolver = resolver or DEFAULT_RESOLVER
    if from_label not in labels:
        raise NoMatchError(f"'{from_label}' is not included in the dataset")
    targets = [t for t in resolver.resolve(to_pattern, list(labels)) if t != from_label]
    if not targets:
        raise NoMatchError(f"No cell type other than '{from_label}' matches '{to_pattern}'")
    return targets


def compare_nearest_neighbors(
    store: 'NeighborStore',
    from_label: str,
    to_pattern: str,
    transposed: bool = False,
    remove_missing: bool = False,
    microns_per_pixel: Optional[float] = None,
    paired_test: bool = True,
    resolver: Optional[LabelResolver] = None,
) -> ComparisonResult:
    """
    Average nearest neighbor distance from one cell type to one or two
    related cell types, across samples.

    Parameters
    ----------
    store : NeighborStore
        Aggregated statistics (``study.nearest_neighbors``).
    from_label : str
        Cell type from which the nearest neighbor is measured.
    to_pattern : str
        Target family. With the default resolver any label containing this
        string matches (e.g. 'CD8 PD1' matches 'CD8 PD1+' and 'CD8 PD1-').
        At most the first two matches are used.
    transposed : bool
        Measure from the targets to ``from_label`` instead.
    remove_missing : bool
        Drop samples with a missing value in any row. Otherwise missing
        means and SEs are shown as 0.
    microns_per_pixel : float, optional
        If given, distances are converted to micrometers. Default: pixels.
    paired_test : bool
        Run a two-sided paired t-test between the two targets, over the
        samples where both are nonzero.
    resolver : LabelResolver, optional
        Label family matcher. Default: fixed substring.

    Returns
    -------
    ComparisonResult

    Raises
    ------
    NoMatchError
        If ``from_label`` is unknown or no target remains.
    """
    targets = resolve_targets(store.labels, from_label, to_pattern, resolver)[:2]

    mean_rows, se_rows = [], []
    for target in targets:
        to_label, src_label = (from_label, target) if transposed else (target, from_label)
        mean_rows.append(_as_float(store.get_value('means', to_label, src_label)))
        se_rows.append(_as_float(store.get_value('se', to_label, src_label)))

    samples = np.array(store.sample_names, dtype=object)
    means = np.vstack(mean_rows)
    ses = np.vstack(se_rows)

    if microns_per_pixel is not None:
        means = means * microns_per_pixel
        ses = ses * microns_per_pixel
        unit = 'um'
    else:
        unit = 'px'

    missing = np.isnan(means) | np.isnan(ses)
    if remove_missing:
        keep = ~missing.any(axis=0)
        dropped = samples[~keep].tolist()
        if dropped:
            logger.info("Dropping samples with missing values: %s", dropped)
        means, ses, samples = means[:, keep], ses[:, keep], samples[keep]
    else:
        means[missing] = 0.0
        ses[missing] = 0.0

    pivot = None
    if samples.size:
        pivot_idx = int(np.argmax(means.sum(axis=1)))
        pivot = targets[pivot_idx]
        order = np.argsort(-means[pivot_idx], kind='stable')
        means, ses, samples = means[:, order], ses[:, order], samples[order]

    pvalue = None
    tested: List[str] = []
    if paired_test and len(targets) == 2:
        usable = (means[0] != 0) & (means[1] != 0)
        tested = samples[usable].tolist()
        try:
            pvalue = paired_ttest(means[0, usable], means[1, usable])
        except InsufficientDataError as e:
            logger.warning("No paired t-test for %s vs %s: %s", targets[0], targets[1], e)

    ext = '+/-' if len(targets) > 1 else ''
    index = pd.Index(targets, name='target')
    columns = pd.Index(samples.tolist(), name='sample')

    return ComparisonResult(
        from_label=from_label,
        targets=list(targets),
        means=pd.DataFrame(means, index=index, columns=columns).astype("Float64"),
        ses=pd.DataFrame(ses, index=index.copy(), columns=columns.copy()).astype("Float64"),
        pvalue=pvalue,
        label=build_label(from_label, to_pattern, ext, transposed),
        ylab=f"Avg. distance to NN ({unit})",
        unit=unit,
        transposed=transposed,
        pivot=pivot,
        tested_samples=tested,
    )


def _as_float(series: pd.Series) -> np.ndarray:
    return series.to_numpy(dtype=float, na_value=np.nan)


def plot_comparison(
    result: ComparisonResult,
    ax: Optional[plt.Axes] = None,
    colors: Tuple[str, ...] = BAR_COLORS,
    figsize: Tuple[float, float] = (10, 7),
) -> plt.Axes:
    """
    Draw a ComparisonResult as grouped bars with mean +/- SE whiskers.

    Parameters
    ----------
    result : ComparisonResult
    ax : plt.Axes, optional
        Axes to draw on. A new figure is created if None.
    colors : tuple of str
        Bar color per target row.
    figsize : tuple
        Figure size when a new figure is created.

    Returns
    -------
    plt.Axes
    """
    if ax is None:
        _, ax = plt.subplots(figsize=figsize)

    means = result.means.to_numpy(dtype=float, na_value=0.0)
    ses = result.ses.to_numpy(dtype=float, na_value=0.0)
    n_rows, n_samples = means.shape
    x = np.arange(n_samples)
    width = 0.8 / max(n_rows, 1)

    for i, target in enumerate(result.targets):
        offset = (i - (n_rows - 1) / 2) * width
        ax.bar(
            x + offset,
            means[i],
            width=width,
            yerr=ses[i],
            color=colors[i % len(colors)],
            edgecolor='black',
            linewidth=0.5,
            error_kw={'ecolor': 'black', 'capsize': 2, 'elinewidth': 0.8},
            label=target,
        )

    ax.set_xticks(x)
    ax.set_xticklabels(result.samples, rotation=90)
    ax.set_ylabel(result.ylab)
    ax.set_title(result.label)
    if n_samples:
        ax.set_ylim(0, max(means.max() + ses.max(), 1e-9))
    ax.legend(loc='upper right', fontsize=9)

    if result.pvalue is not None:
        ax.text(0.5, 1.0, f"Paired t-test: {result.pvalue:.4g}",
                transform=ax.transAxes, ha='center', va='bottom', fontsize=9)
        ax.set_title(result.label, pad=18)

    return ax


def plot_nearest_neighbor(
    study: 'Study',
    from_label: str,
    to_pattern: str,
    ttest: bool = True,
    transposed: bool = False,
    remove_missing: bool = False,
    use_pixel: Optional[bool] = None,
    resolver: Optional[LabelResolver] = None,
    save_path: Optional[str] = None,
    dpi: Optional[int] = None,
    show: bool = True,
) -> Tuple[ComparisonResult, plt.Figure]:
    """
    Plot average nearest neighbor bar plots for a cell type against a
    target family, across all samples of a study.

    Parameters
    ----------
    study : Study
        Study with nearest neighbors extracted.
    from_label : str
        Cell type from which the nearest neighbor is measured.
    to_pattern : str
        Target cell type, or a family stem without the trailing '+'/'-'
        (e.g. 'CD8 PD1') to compare both and run a paired t-test.
    ttest : bool
        Whether to run the paired t-test (default True).
    transposed : bool
        Switch 'from' and 'to' (default False).
    remove_missing : bool
        Do not plot samples lacking enough cells (default False).
    use_pixel : bool, optional
        Show distances in pixels instead of micrometers. Defaults to
        ``study.config.use_pixel``.
    resolver : LabelResolver, optional
        Label family matcher.
    save_path : str, optional
        Write the figure here.
    dpi : int, optional
        Resolution for the saved figure. Defaults to ``study.config.dpi``.
    show : bool
        Display the figure.

    Returns
    -------
    Tuple[ComparisonResult, plt.Figure]

    Examples
    --------
    >>> study = extract_nearest_neighbor(study)
    >>> result, fig = plot_nearest_neighbor(study, 'CD8+ PD1+', 'SOX10+ PDL1')
    >>> result.pvalue
    """
    scale, unit = study.config.unit_scale(use_pixel)

    result = compare_nearest_neighbors(
        study.nearest_neighbors,
        from_label,
        to_pattern,
        transposed=transposed,
        remove_missing=remove_missing,
        microns_per_pixel=scale if unit == 'um' else None,
        paired_test=ttest,
        resolver=resolver,
    )

    fig, ax = plt.subplots(figsize=(study.config.plot_width, study.config.plot_height))
    plot_comparison(result, ax=ax)
    plt.tight_layout()

    if save_path is not None:
        fig.savefig(save_path, dpi=dpi or study.config.dpi, bbox_inches='tight')
        print(f"Saved figure to {save_path}")

    if show:
        plt.show()
    else:
        plt.close(fig)

    return result, fig
