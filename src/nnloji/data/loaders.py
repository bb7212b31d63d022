"""
loaders.py - Build a Study from per-cell tables
"""
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Union
import logging

import pandas as pd

from .config import NNConfig, ValidationError
from .core import Field, Sample, Study

logger = logging.getLogger(__name__)


@dataclass
class CellTableColumns:
    """Column names of a per-cell table."""

    sample_col: str = 'sample'
    field_col: str = 'field'
    x_col: str = 'x'
    y_col: str = 'y'
    label_col: str = 'label'

    def required(self) -> List[str]:
        return [self.sample_col, self.field_col, self.x_col, self.y_col, self.label_col]


def load_study_from_dataframe(
    df: pd.DataFrame,
    markers: Optional[Sequence[str]] = None,
    columns: Optional[CellTableColumns] = None,
    microns_per_pixel: Optional[float] = None,
    config: Optional[NNConfig] = None,
    drop_unknown: bool = False,
) -> Study:
    """
    Build a Study from a tidy table with one row per cell.

    Parameters
    ----------
    df : pd.DataFrame
        Per-cell table with sample, field, x, y and label columns.
    markers : sequence of str, optional
        Marker vocabulary in display order. Default: labels in order of
        first appearance.
    columns : CellTableColumns, optional
        Column names (default: sample, field, x, y, label).
    microns_per_pixel : float, optional
        Conversion factor; defaults to the config value (0.496).
    config : NNConfig, optional
    drop_unknown : bool
        Drop cells whose label is not in ``markers``.

    Returns
    -------
    Study
        Samples and fields in order of first appearance.
    """
    columns = columns or CellTableColumns()
    missing = [col for col in columns.required() if col not in df.columns]
    if missing:
        raise ValidationError(f"Missing columns in cell table: {missing}")

    df = df.dropna(subset=[columns.x_col, columns.y_col, columns.label_col])
    labels = df[columns.label_col].astype(str)

    if markers is None:
        markers = pd.unique(labels).tolist()
    elif drop_unknown:
        keep = labels.isin(list(markers))
        if (~keep).any():
            logger.warning(f"Dropping {(~keep).sum()} cells with labels outside the marker list")
        df = df[keep]

    samples = []
    for sample_name, sample_df in df.groupby(columns.sample_col, sort=False):
        fields = [
            Field.from_dataframe(
                field_df, str(field_name),
                x_col=columns.x_col, y_col=columns.y_col, label_col=columns.label_col,
            )
            for field_name, field_df in sample_df.groupby(columns.field_col, sort=False)
        ]
        samples.append(Sample(str(sample_name), fields))

    if not samples:
        raise ValidationError("Cell table contains no cells")

    study = Study(samples, markers, microns_per_pixel=microns_per_pixel, config=config)
    print(f"  ✓ Loaded {len(samples)} samples, "
          f"{sum(s.n_fields for s in samples)} fields, {len(df):,} cells")
    return study


def load_study_from_csv(
    path: Union[str, Path],
    markers: Optional[Sequence[str]] = None,
    columns: Optional[CellTableColumns] = None,
    **kwargs,
) -> Study:
    """Read a per-cell CSV and build a Study; see load_study_from_dataframe()."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Cell table not found: {path}")
    df = pd.read_csv(path)
    return load_study_from_dataframe(df, markers=markers, columns=columns, **kwargs)
