"""
store.py - Per-sample storage of aggregated nearest neighbor statistics
"""
from __future__ import annotations
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .aggregation import SampleStat

from types import MappingProxyType
from typing import Dict, Literal, Mapping, Tuple
import pandas as pd

from ..data.config import ValidationError
from ..data.core import LabelIndex

StatKind = Literal['means', 'se', 'variances', 'counts']


class NeighborStore:
    """
    Ordered mapping sample name -> SampleStat for one study.

    Each sample is written exactly once. After ``freeze()`` the store is
    read-only.

    Parameters
    ----------
    labels : LabelIndex
        Vocabulary every SampleStat must be indexed by.
    """

    def __init__(self, labels: LabelIndex):
        self._labels = labels
        self._stats: Dict[str, 'SampleStat'] = {}
        self._frozen = False

    @property
    def labels(self) -> LabelIndex:
        return self._labels

    @property
    def sample_names(self) -> list:
        return list(self._stats)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def put(self, sample_name: str, stat: 'SampleStat') -> None:
        if self._frozen:
            raise ValidationError("NeighborStore is frozen")
        if sample_name in self._stats:
            raise ValidationError(f"Sample '{sample_name}' already stored")
        if tuple(stat.means.columns) != self._labels.labels:
            raise ValidationError(
                f"Sample '{sample_name}': matrix labels do not match the store vocabulary"
            )
        self._stats[sample_name] = stat

    def freeze(self) -> None:
        self._frozen = True

    def get_all(self) -> Mapping[str, 'SampleStat']:
        """Read-only view of sample name -> SampleStat, in sample order."""
        return MappingProxyType(self._stats)

    def get(self, sample_name: str) -> 'SampleStat':
        return self._stats[sample_name]

    def get_for_label(self, from_label: str) -> Tuple[pd.DataFrame, pd.DataFrame]:
        """
        Distances from ``from_label`` to every label, across samples.

        Parameters
        ----------
        from_label : str
            Source cell type.

        Returns
        -------
        Tuple[pd.DataFrame, pd.DataFrame]
            (means, se), each indexed ``[to_label, sample]``.

        Raises
        ------
        UnknownLabelError
            If ``from_label`` is not in the vocabulary.
        """
        self._labels.require(from_label)
        means = self._column_table('means', from_label)
        se = self._column_table('se', from_label)
        return means, se

    def get_value(self, kind: StatKind, to_label: str, from_label: str) -> pd.Series:
        """
        One matrix cell ``[to_label, from_label]`` across samples.

        Returns
        -------
        pd.Series
            Indexed by sample name, nullable dtype.
        """
        self._labels.require(to_label)
        self._labels.require(from_label)
        values = [getattr(stat, kind).at[to_label, from_label] for stat in self._stats.values()]
        dtype = "Int64" if kind == 'counts' else "Float64"
        return pd.Series(values, index=pd.Index(self.sample_names, name='sample'),
                         dtype=dtype, name=f"{from_label}->{to_label}")

    def _column_table(self, kind: StatKind, from_label: str) -> pd.DataFrame:
        columns = {name: getattr(stat, kind)[from_label] for name, stat in self._stats.items()}
        table = pd.DataFrame(columns, index=self._labels.to_index())
        table.index.name = 'to'
        table.columns.name = 'sample'
        return table

    def to_long(self) -> pd.DataFrame:
        """
        Tidy table with one row per (sample, from, to).

        Columns: sample, from, to, mean, se, variance, count.
        """
        rows = []
        for name, stat in self._stats.items():
            for from_label in self._labels:
                for to_label in self._labels:
                    rows.append({
                        'sample': name,
                        'from': from_label,
                        'to': to_label,
                        'mean': stat.means.at[to_label, from_label],
                        'se': stat.se.at[to_label, from_label],
                        'variance': stat.variances.at[to_label, from_label],
                        'count': stat.counts.at[to_label, from_label],
                    })
        columns = ['sample', 'from', 'to', 'mean', 'se', 'variance', 'count']
        return pd.DataFrame(rows, columns=columns).astype({
            'mean': "Float64", 'se': "Float64", 'variance': "Float64", 'count': "Int64",
        })

    def __contains__(self, sample_name: object) -> bool:
        return sample_name in self._stats

    def __len__(self) -> int:
        return len(self._stats)

    def __repr__(self) -> str:
        return f"NeighborStore(n_samples={len(self._stats)}, n_labels={len(self._labels)})"
