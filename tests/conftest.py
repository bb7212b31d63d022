"""
conftest.py - Shared test fixtures for nnloji

pytest reads this file before running any test; every fixture defined here
is injected into tests by argument name.

The fixtures are small, hand-placed point sets whose nearest neighbor
distances are known exactly, so tests can assert concrete numbers.
"""

import matplotlib

matplotlib.use("Agg")  # no display during tests

import numpy as np
import pandas as pd
import pytest

from nnloji.data.core import Field, LabelIndex, Sample, Study
from nnloji.spatial.aggregation import SampleStat
from nnloji.spatial.statistics import labeled_frame
from nnloji.spatial.store import NeighborStore

# ===========================================================================
# Constants
# ===========================================================================

MARKERS = ["A+", "A-", "B+", "B-"]
SPACING = 100.0  # far larger than any designed distance


# ===========================================================================
# Point layouts
# ===========================================================================


def paired_rows(n_from, from_label, to_label, n_to=None, x0=0.0, y0=0.0):
    """
    Build a row of ``from_label`` points and a row of ``to_label`` points.

    Point i of the from-row sits at (x0 + i*SPACING, y0); point i of the
    to-row sits straight below it at distance i+1. The nearest to-point of
    from-point i is therefore to-point i, at distance i+1.
    """
    if n_to is None:
        n_to = n_from
    coords, labels = [], []
    for i in range(n_from):
        coords.append((x0 + i * SPACING, y0))
        labels.append(from_label)
    for i in range(n_to):
        coords.append((x0 + i * SPACING, y0 + i + 1))
        labels.append(to_label)
    return coords, labels


@pytest.fixture
def markers():
    return LabelIndex(MARKERS)


@pytest.fixture
def field_one():
    """
    12 'A+' and 12 'B+' cells. A+ -> B+ distances are exactly 1..12
    (mean 6.5, sample variance 13.0). No 'A-' or 'B-' cells.
    """
    coords, labels = paired_rows(12, "A+", "B+")
    return Field("field_1", coords, labels)


@pytest.fixture
def field_two():
    """3 'A+' cells (below the default gate of 10) and 12 'B+' cells."""
    coords, labels = paired_rows(3, "A+", "B+", n_to=12)
    return Field("field_2", coords, labels)


@pytest.fixture
def example_sample(field_one, field_two):
    return Sample("sample_1", [field_one, field_two])


@pytest.fixture
def example_study(example_sample):
    """
    Two samples. sample_2 has one field with 12 'A+', 12 'B+' and 12 'B-',
    where A+ -> B- distances are 2..13 (one further than A+ -> B+).
    """
    coords, labels = paired_rows(12, "A+", "B+")
    # B- row sits above the A+ row, one unit further away than B+
    for i in range(12):
        coords.append((i * SPACING, -(i + 2.0)))
        labels.append("B-")
    sample_2 = Sample("sample_2", [Field("field_1", coords, labels)])
    return Study([example_sample, sample_2], MARKERS)


@pytest.fixture
def random_study():
    """Three samples of uniformly scattered cells, two fields each."""
    rng = np.random.default_rng(42)
    samples = []
    for s in range(3):
        fields = []
        for f in range(2):
            n = 80
            coords = rng.uniform(0, 1000, (n, 2))
            labels = rng.choice(MARKERS, n)
            fields.append(Field(f"fov_{f}", coords, labels))
        samples.append(Sample(f"S{s}", fields))
    return Study(samples, MARKERS)


# ===========================================================================
# Hand-made stores for report tests
# ===========================================================================


def make_sample_stat(labels, means=None, ses=None):
    """
    Build a SampleStat from {(to, from): value} dicts.

    Unlisted cells are missing. Variances are SE^2 and counts 1 so the
    matrices are consistent with each other.
    """
    labels = labels if isinstance(labels, LabelIndex) else LabelIndex(labels)
    n = len(labels)
    mean_arr = np.full((n, n), np.nan)
    se_arr = np.full((n, n), np.nan)
    for (to_label, from_label), value in (means or {}).items():
        mean_arr[labels.position(to_label), labels.position(from_label)] = value
    for (to_label, from_label), value in (ses or {}).items():
        se_arr[labels.position(to_label), labels.position(from_label)] = value
    counts = np.where(np.isnan(mean_arr), np.nan, 1.0)
    return SampleStat(
        means=labeled_frame(mean_arr, labels, "Float64"),
        variances=labeled_frame(se_arr ** 2, labels, "Float64"),
        counts=labeled_frame(counts, labels, "Int64"),
        se=labeled_frame(se_arr, labels, "Float64"),
    )


@pytest.fixture
def comparison_store():
    """
    Store over labels T, CD8 PD1+, CD8 PD1-, CD4 with four samples.

    Distances T -> CD8 PD1+ / CD8 PD1- (indexed [to, from]):

        sample  PD1+   PD1-
        s1      10     20
        s2      30     25
        s3      NA     40
        s4      15     35

    Transposed values (CD8 PD1x -> T) are the same numbers times 2.
    """
    labels = LabelIndex(["T", "CD8 PD1+", "CD8 PD1-", "CD4"])
    table = {
        "s1": (10.0, 20.0),
        "s2": (30.0, 25.0),
        "s3": (None, 40.0),
        "s4": (15.0, 35.0),
    }
    store = NeighborStore(labels)
    for name, (pos, neg) in table.items():
        means, ses = {}, {}
        for target, value in (("CD8 PD1+", pos), ("CD8 PD1-", neg)):
            if value is None:
                continue
            means[(target, "T")] = value
            ses[(target, "T")] = value / 10
            means[("T", target)] = value * 2
            ses[("T", target)] = value / 5
        store.put(name, make_sample_stat(labels, means, ses))
    store.freeze()
    return store


@pytest.fixture
def cell_table():
    """Tidy per-cell table for loader tests: 2 samples, 3 fields."""
    rows = []
    for sample, field, n in [("P1", "r1", 5), ("P1", "r2", 4), ("P2", "r1", 6)]:
        for i in range(n):
            rows.append({
                "sample": sample,
                "field": field,
                "x": float(i),
                "y": float(i * 2),
                "label": "CD8+" if i % 2 else "Tumor",
            })
    return pd.DataFrame(rows)
