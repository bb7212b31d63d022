"""
core.py - Study / Sample / Field containers for nnloji

A Study holds ordered Samples, each Sample holds ordered Fields (imaged
regions), and each Field holds labeled 2D points. Fields are read-only once
built; analysis code only reads them and produces new result objects.
"""
from __future__ import annotations
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from nnloji.spatial.store import NeighborStore

from dataclasses import replace
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union
import numpy as np
import pandas as pd

from .config import NNConfig, NotComputedError, UnknownLabelError, ValidationError


class LabelIndex:
    """
    Ordered, bidirectional label <-> position map.

    Every label x label matrix in nnloji is built against one LabelIndex so
    rows and columns always line up with the study vocabulary.

    Parameters
    ----------
    labels : sequence of str
        Vocabulary in display order. Must be unique.
    """

    def __init__(self, labels: Iterable[str]):
        labels = tuple(str(label) for label in labels)
        duplicates = sorted({label for label in labels if labels.count(label) > 1})
        if duplicates:
            raise ValidationError(f"Duplicate labels in vocabulary: {duplicates}")
        self._labels = labels
        self._positions = {label: i for i, label in enumerate(labels)}

    @property
    def labels(self) -> Tuple[str, ...]:
        return self._labels

    def position(self, label: str) -> int:
        """Position of ``label`` in the vocabulary."""
        try:
            return self._positions[label]
        except KeyError:
            raise UnknownLabelError(label) from None

    def label(self, position: int) -> str:
        return self._labels[position]

    def require(self, label: str) -> str:
        """Return ``label`` if known, else raise UnknownLabelError."""
        self.position(label)
        return label

    def to_index(self) -> pd.Index:
        return pd.Index(self._labels, dtype=object)

    def __contains__(self, label: object) -> bool:
        return label in self._positions

    def __iter__(self) -> Iterator[str]:
        return iter(self._labels)

    def __len__(self) -> int:
        return len(self._labels)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LabelIndex):
            return NotImplemented
        return self._labels == other._labels

    def __hash__(self) -> int:
        return hash(self._labels)

    def __repr__(self) -> str:
        return f"LabelIndex({list(self._labels)})"


class Field:
    """
    One imaged region: labeled 2D points in pixel units.

    Parameters
    ----------
    name : str
        Field identifier, unique within its sample.
    coords : array-like
        (n_points x 2) x/y coordinates in pixels.
    labels : sequence of str
        One label per point.
    window : tuple of float, optional
        Bounding window (xmin, xmax, ymin, ymax).
    """

    def __init__(self,
                 name: str,
                 coords: Union[np.ndarray, Sequence[Sequence[float]]],
                 labels: Sequence[str],
                 window: Optional[Tuple[float, float, float, float]] = None):
        coords = np.array(coords, dtype=float)
        if coords.size == 0:
            coords = coords.reshape(0, 2)
        if coords.ndim != 2 or coords.shape[1] != 2:
            raise ValidationError(f"Field '{name}': coords must be (n, 2), got {coords.shape}")

        labels = np.array([str(label) for label in labels], dtype=object)
        if len(labels) != len(coords):
            raise ValidationError(
                f"Field '{name}': {len(coords)} points but {len(labels)} labels"
            )
        if not np.all(np.isfinite(coords)):
            raise ValidationError(f"Field '{name}': coordinates must be finite")

        coords.setflags(write=False)
        labels.setflags(write=False)

        self.name = str(name)
        self._coords = coords
        self._labels = labels
        self.window = tuple(window) if window is not None else None

    @property
    def coords(self) -> np.ndarray:
        return self._coords

    @property
    def labels(self) -> np.ndarray:
        return self._labels

    @property
    def n_points(self) -> int:
        return len(self._coords)

    def mask(self, label: str) -> np.ndarray:
        return self._labels == label

    def points_with_label(self, label: str) -> np.ndarray:
        """Coordinates (n x 2) of every point carrying ``label``."""
        return self._coords[self.mask(label)]

    def count(self, label: str) -> int:
        """Number of points carrying ``label``."""
        return int(np.count_nonzero(self.mask(label)))

    def label_counts(self) -> pd.Series:
        return pd.Series(self._labels).value_counts()

    @classmethod
    def from_dataframe(cls,
                       df: pd.DataFrame,
                       name: str,
                       x_col: str = "x",
                       y_col: str = "y",
                       label_col: str = "label") -> "Field":
        """Create a Field from a per-cell table."""
        missing = [col for col in (x_col, y_col, label_col) if col not in df.columns]
        if missing:
            raise ValidationError(f"Missing columns for field '{name}': {missing}")
        return cls(name, df[[x_col, y_col]].to_numpy(dtype=float), df[label_col].tolist())

    def __repr__(self) -> str:
        return f"Field(name={self.name!r}, n_points={self.n_points})"


class Sample:
    """
    Ordered, non-empty collection of Fields for one specimen.

    Parameters
    ----------
    name : str
        Sample identifier.
    fields : sequence of Field
        Fields in acquisition order.
    """

    def __init__(self, name: str, fields: Sequence[Field]):
        fields = tuple(fields)
        if not fields:
            raise ValidationError(f"Sample '{name}' has no fields")
        names = [f.name for f in fields]
        if len(set(names)) != len(names):
            raise ValidationError(f"Sample '{name}' has duplicate field names: {names}")
        self.name = str(name)
        self._fields = fields

    @property
    def fields(self) -> Tuple[Field, ...]:
        return self._fields

    @property
    def n_fields(self) -> int:
        return len(self._fields)

    def __iter__(self) -> Iterator[Field]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def __repr__(self) -> str:
        return f"Sample(name={self.name!r}, n_fields={self.n_fields})"


class Study:
    """
    Top-level container: samples, marker vocabulary and unit conversion.

    Attributes
    ----------
    samples : Tuple[Sample, ...]
        Samples in study order.
    markers : LabelIndex
        Marker vocabulary shared by every field and sample.
    microns_per_pixel : float
        Pixel to micrometer conversion factor.
    config : NNConfig
        Analysis and plotting settings.
    nearest_neighbors : NeighborStore
        Aggregated results, available after extract_nearest_neighbor().
    """

    def __init__(self,
                 samples: Sequence[Sample],
                 markers: Union[Sequence[str], LabelIndex],
                 microns_per_pixel: Optional[float] = None,
                 config: Optional[NNConfig] = None):
        config = config or NNConfig()
        if microns_per_pixel is not None:
            config = replace(config, microns_per_pixel=float(microns_per_pixel))
        config.validate()
        self.config = config

        samples = tuple(samples)
        names = [s.name for s in samples]
        if len(set(names)) != len(names):
            raise ValidationError(f"Duplicate sample names: {names}")

        self._samples = samples
        self.markers = markers if isinstance(markers, LabelIndex) else LabelIndex(markers)
        self._nearest_neighbors: Optional["NeighborStore"] = None

    @property
    def samples(self) -> Tuple[Sample, ...]:
        return self._samples

    @property
    def sample_names(self) -> List[str]:
        return [s.name for s in self._samples]

    @property
    def microns_per_pixel(self) -> float:
        return self.config.microns_per_pixel

    @property
    def nearest_neighbors(self) -> "NeighborStore":
        if self._nearest_neighbors is None:
            raise NotComputedError(
                "Nearest neighbors not computed. Run extract_nearest_neighbor(study) first."
            )
        return self._nearest_neighbors

    @property
    def has_nearest_neighbors(self) -> bool:
        return self._nearest_neighbors is not None

    def attach_nearest_neighbors(self, store: "NeighborStore") -> None:
        if store.labels != self.markers:
            raise ValidationError("NeighborStore vocabulary does not match study markers")
        self._nearest_neighbors = store

    def get_sample(self, name: str) -> Sample:
        for sample in self._samples:
            if sample.name == name:
                return sample
        raise KeyError(f"Sample '{name}' not found")

    def iter_fields(self) -> Iterator[Tuple[Sample, Field]]:
        """Yield (sample, field) for every field in study order."""
        for sample in self._samples:
            for field in sample.fields:
                yield sample, field

    def label_counts(self) -> pd.DataFrame:
        """Point counts per marker (rows) and sample (columns)."""
        counts: Dict[str, List[int]] = {}
        for sample in self._samples:
            counts[sample.name] = [
                sum(f.count(label) for f in sample.fields) for label in self.markers
            ]
        return pd.DataFrame(counts, index=self.markers.to_index())

    def __repr__(self) -> str:
        n_fields = sum(s.n_fields for s in self._samples)
        return (f"Study(n_samples={len(self._samples)}, n_fields={n_fields}, "
                f"n_markers={len(self.markers)})")
