"""
test_comparison.py - Grouped comparison report and paired t-test

The comparison_store fixture (conftest.py) holds T -> CD8 PD1+/- distances:

    sample  PD1+   PD1-
    s1      10     20
    s2      30     25
    s3      NA     40
    s4      15     35

How to run:
    pytest tests/test_comparison.py -v
"""

import logging

import numpy as np
import pandas as pd
import pytest
from scipy import stats

from nnloji.data.config import InsufficientDataError, NoMatchError
from nnloji.data.core import LabelIndex
from nnloji.spatial.aggregation import extract_nearest_neighbor
from nnloji.spatial.labels import SubstringResolver, SuffixFamilyResolver
from nnloji.spatial.store import NeighborStore
from nnloji.visualization.comparison import (
    build_label,
    compare_nearest_neighbors,
    paired_ttest,
    plot_comparison,
    plot_nearest_neighbor,
)

from conftest import make_sample_stat


def values(frame):
    return frame.to_numpy(dtype=float, na_value=np.nan)


# ===========================================================================
# SECTION 1 — Target resolution
# ===========================================================================


class TestTargets:

    def test_family_pair(self, comparison_store):
        result = compare_nearest_neighbors(comparison_store, "T", "CD8 PD1")
        assert result.targets == ["CD8 PD1+", "CD8 PD1-"]

    def test_single_target(self, comparison_store):
        result = compare_nearest_neighbors(comparison_store, "T", "CD8 PD1-")
        assert result.targets == ["CD8 PD1-"]
        assert result.means.shape == (1, 4)
        assert result.pvalue is None

    def test_from_label_excluded(self, comparison_store):
        """'T' only matches itself, which leaves nothing to compare."""
        with pytest.raises(NoMatchError):
            compare_nearest_neighbors(comparison_store, "T", "T")

    def test_unknown_from_label(self, comparison_store):
        with pytest.raises(NoMatchError):
            compare_nearest_neighbors(comparison_store, "B cell", "CD8 PD1")

    def test_no_match(self, comparison_store):
        with pytest.raises(NoMatchError):
            compare_nearest_neighbors(comparison_store, "T", "CD19")

    def test_case_sensitive(self, comparison_store):
        with pytest.raises(NoMatchError):
            compare_nearest_neighbors(comparison_store, "T", "cd8 pd1")

    def test_at_most_two_targets(self, comparison_store):
        """'CD' matches three labels; only the first two are used."""
        result = compare_nearest_neighbors(comparison_store, "T", "CD")
        assert result.targets == ["CD8 PD1+", "CD8 PD1-"]

    def test_suffix_resolver(self, comparison_store):
        resolver = SuffixFamilyResolver()
        result = compare_nearest_neighbors(comparison_store, "T", "CD8 PD1", resolver=resolver)
        assert result.targets == ["CD8 PD1+", "CD8 PD1-"]
        with pytest.raises(NoMatchError):
            compare_nearest_neighbors(comparison_store, "T", "CD8", resolver=resolver)

    def test_resolvers_keep_vocabulary_order(self):
        labels = ["x-", "x+", "y"]
        assert SubstringResolver().resolve("x", labels) == ["x-", "x+"]
        assert SuffixFamilyResolver().resolve("x", labels) == ["x-", "x+"]


# ===========================================================================
# SECTION 2 — Missing values, ordering and units
# ===========================================================================


class TestTable:

    def test_zero_fill_and_order(self, comparison_store):
        """
        Missing means become 0. PD1- has the larger total, so samples are
        sorted by PD1- descending: s3 (40), s4 (35), s2 (25), s1 (20).
        """
        result = compare_nearest_neighbors(comparison_store, "T", "CD8 PD1")
        assert result.pivot == "CD8 PD1-"
        assert result.samples == ["s3", "s4", "s2", "s1"]
        np.testing.assert_allclose(values(result.means), [[0, 15, 30, 10], [40, 35, 25, 20]])
        assert values(result.ses)[0, 0] == 0.0

    def test_pivot_row_non_increasing(self, comparison_store):
        result = compare_nearest_neighbors(comparison_store, "T", "CD8 PD1")
        pivot = values(result.means.loc[[result.pivot]])[0]
        assert (np.diff(pivot) <= 0).all()

    def test_remove_missing(self, comparison_store):
        result = compare_nearest_neighbors(comparison_store, "T", "CD8 PD1", remove_missing=True)
        assert result.samples == ["s4", "s2", "s1"]
        np.testing.assert_allclose(values(result.means), [[15, 30, 10], [35, 25, 20]])

    def test_unit_conversion(self, comparison_store):
        """Every entry is multiplied by microns_per_pixel, SEs included."""
        raw = compare_nearest_neighbors(comparison_store, "T", "CD8 PD1", remove_missing=True)
        um = compare_nearest_neighbors(comparison_store, "T", "CD8 PD1", remove_missing=True,
                                       microns_per_pixel=0.5)
        assert raw.unit == "px"
        assert um.unit == "um"
        np.testing.assert_allclose(values(um.means), values(raw.means) * 0.5)
        np.testing.assert_allclose(values(um.ses), values(raw.ses) * 0.5)
        assert um.ylab == "Avg. distance to NN (um)"

    def test_unit_conversion_keeps_missing_missing(self, comparison_store):
        """Missing entries stay 0 (zero-filled) or dropped, never scaled into values."""
        um = compare_nearest_neighbors(comparison_store, "T", "CD8 PD1", microns_per_pixel=0.5)
        assert um.means.loc["CD8 PD1+", "s3"] == 0.0

    def test_transposed(self, comparison_store):
        """Transposed reads [to=T, from=target]: the doubled values."""
        result = compare_nearest_neighbors(comparison_store, "T", "CD8 PD1",
                                           transposed=True, remove_missing=True)
        assert result.samples == ["s4", "s2", "s1"]
        np.testing.assert_allclose(values(result.means), [[30, 60, 20], [70, 50, 40]])
        assert result.label == "Distance from CD8 PD1 +/- to T"

    def test_bars(self, comparison_store):
        result = compare_nearest_neighbors(comparison_store, "T", "CD8 PD1", remove_missing=True)
        bars = result.bars()
        assert len(bars) == 6
        first = bars.iloc[0]
        assert first["sample"] == "s4"
        assert first["target"] == "CD8 PD1+"
        assert first["upper"] == pytest.approx(15 + 1.5)
        assert first["lower"] == pytest.approx(15 - 1.5)

    def test_pivot_tie_uses_first_row(self):
        labels = LabelIndex(["F", "G+", "G-"])
        store = NeighborStore(labels)
        store.put("a", make_sample_stat(labels, {("G+", "F"): 1.0, ("G-", "F"): 2.0},
                                        {("G+", "F"): 0.1, ("G-", "F"): 0.1}))
        store.put("b", make_sample_stat(labels, {("G+", "F"): 2.0, ("G-", "F"): 1.0},
                                        {("G+", "F"): 0.1, ("G-", "F"): 0.1}))
        result = compare_nearest_neighbors(store, "F", "G", paired_test=False)
        assert result.pivot == "G+"
        assert result.samples == ["b", "a"]


# ===========================================================================
# SECTION 3 — Labels
# ===========================================================================


class TestLabels:

    def test_build_label(self):
        assert build_label("A", "B", "+/-", False) == "Distance from A to B +/-"
        assert build_label("A", "B", "", False) == "Distance from A to B"
        assert build_label("A", "B", "+/-", True) == "Distance from B +/- to A"

    def test_result_label(self, comparison_store):
        result = compare_nearest_neighbors(comparison_store, "T", "CD8 PD1")
        assert result.label == "Distance from T to CD8 PD1 +/-"
        assert result.ylab == "Avg. distance to NN (px)"


# ===========================================================================
# SECTION 4 — Paired t-test
# ===========================================================================


class TestPairedTest:

    def test_pvalue_over_nonzero_samples(self, comparison_store):
        """s3 has PD1+ = 0 after zero-fill, so only s1, s2, s4 are tested."""
        result = compare_nearest_neighbors(comparison_store, "T", "CD8 PD1")
        assert sorted(result.tested_samples) == ["s1", "s2", "s4"]
        expected = stats.ttest_rel([15, 30, 10], [35, 25, 20]).pvalue
        assert result.pvalue == pytest.approx(expected)

    def test_disabled(self, comparison_store):
        result = compare_nearest_neighbors(comparison_store, "T", "CD8 PD1", paired_test=False)
        assert result.pvalue is None

    def test_too_few_samples(self, caplog):
        labels = LabelIndex(["F", "G+", "G-"])
        store = NeighborStore(labels)
        store.put("a", make_sample_stat(labels, {("G+", "F"): 1.0, ("G-", "F"): 2.0},
                                        {("G+", "F"): 0.1, ("G-", "F"): 0.1}))
        store.put("b", make_sample_stat(labels, {("G-", "F"): 3.0}, {("G-", "F"): 0.1}))
        with caplog.at_level(logging.WARNING):
            result = compare_nearest_neighbors(store, "F", "G")
        assert result.pvalue is None
        assert result.tested_samples == ["a"]
        assert "paired t-test" in caplog.text

    def test_paired_ttest_raises(self):
        with pytest.raises(InsufficientDataError):
            paired_ttest([1.0], [2.0])

    def test_paired_ttest_length_mismatch(self):
        with pytest.raises(ValueError):
            paired_ttest([1.0, 2.0], [2.0])


# ===========================================================================
# SECTION 5 — Study-level plot
# ===========================================================================


class TestPlot:

    def test_plot_comparison_bars(self, comparison_store):
        result = compare_nearest_neighbors(comparison_store, "T", "CD8 PD1")
        ax = plot_comparison(result)
        assert len(ax.patches) == 2 * 4
        assert ax.get_ylabel() == result.ylab

    def test_plot_nearest_neighbor(self, example_study, tmp_path):
        extract_nearest_neighbor(example_study, verbose=False)
        path = tmp_path / "nn.png"
        result, fig = plot_nearest_neighbor(example_study, "A+", "B", use_pixel=False,
                                            save_path=str(path), show=False)
        assert path.exists()
        assert result.targets == ["B+", "B-"]
        assert result.unit == "um"
        assert result.means.loc["B+", "sample_1"] == pytest.approx(6.5 * 0.496)
        # sample_1 has no B- cells, so fewer than 2 samples are usable
        assert result.pvalue is None

    def test_plot_default_units_from_config(self, example_study):
        extract_nearest_neighbor(example_study, verbose=False)
        result, _ = plot_nearest_neighbor(example_study, "A+", "B+", show=False)
        assert result.unit == "px"
