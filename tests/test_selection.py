#!/usr/bin/env python
# coding: utf-8


"""
Tests for cellmix.core.mixture.selection.

Covers:
- Trimmed-mean summary over bootstrap rows only.
- Choice of K, tie-breaking and undefined scores.
- Array input and table validation.
"""


import numpy as np
import pandas as pd
import pytest
from scipy import stats

from cellmix.core.errors import InvalidParameter, ShapeMismatch
from cellmix.core.mixture.selection import (
    select_k,
    summarize_deviance,
    trimmed_mean_deviance,
)


def _table(values, ks):
    return pd.DataFrame(np.asarray(values, dtype=float), columns=ks)


class TestSelectK:
    """Choice of the number of components"""

    def setup_method(self):
        rng = np.random.default_rng(61)
        boot = np.column_stack(
            [
                rng.normal(100, 5, size=20),
                rng.normal(60, 5, size=20),
                rng.normal(20, 2, size=20),
                rng.normal(25, 2, size=20),
            ]
        )
        original = np.array([[90.0, 55.0, 18.0, 17.0]])
        self.table = _table(np.vstack([original, boot]), [1, 2, 3, 4])

    def test_picks_lowest(self):
        assert select_k(self.table) == 3

    def test_trimmed_mean_matches_scipy(self):
        scores = trimmed_mean_deviance(self.table, trim_fraction=0.1)
        expected = stats.trim_mean(self.table.iloc[1:].to_numpy(), 0.1, axis=0)
        np.testing.assert_allclose(scores.to_numpy(), expected)
        assert list(scores.index) == [1, 2, 3, 4]

    def test_original_row_ignored(self):
        table = self.table.copy()
        table.loc[0, 1] = -1e6
        assert select_k(table) == 3

    def test_ties_go_to_smallest_k(self):
        table = _table([[1, 1, 1], [5, 5, 5], [6, 6, 6]], [2, 3, 4])
        assert select_k(table, trim_fraction=0.0) == 2

    def test_unsorted_columns(self):
        table = self.table[[4, 2, 3, 1]]
        assert select_k(table) == 3

    def test_nan_column_skipped(self):
        table = self.table.copy()
        table[3] = np.nan
        assert select_k(table) == 4

    def test_all_nan(self):
        table = _table(np.full((4, 2), np.nan), [1, 2])
        with pytest.raises(InvalidParameter):
            select_k(table)

    def test_array_input_needs_ks(self):
        with pytest.raises(InvalidParameter):
            select_k(self.table.to_numpy())

    def test_array_input(self):
        assert select_k(self.table.to_numpy(), ks=[2, 3, 4, 5]) == 4

    def test_single_row(self):
        with pytest.raises(ShapeMismatch):
            select_k(self.table.iloc[:1])

    @pytest.mark.parametrize("trim", [0.5, -0.1, "a"])
    def test_invalid_trim(self, trim):
        with pytest.raises(InvalidParameter):
            select_k(self.table, trim_fraction=trim)


class TestSummarizeDeviance:
    """Per-K evidence table"""

    def test_columns_and_flag(self):
        table = _table([[3, 2], [10, 4], [12, 5], [11, 6]], [1, 2])
        summary = summarize_deviance(table)
        assert summary.index.name == "K"
        assert list(summary.columns) == [
            "original",
            "trimmed_mean",
            "mean",
            "sd",
            "selected",
        ]
        assert summary.loc[1, "original"] == 3
        assert summary.loc[2, "mean"] == pytest.approx(5.0)
        assert summary.loc[2, "sd"] == pytest.approx(1.0)
        assert summary["selected"].tolist() == [False, True]
