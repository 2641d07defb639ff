"""Tests for stratum-key construction."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from cfdecomp.exceptions import ConfigurationError
from cfdecomp.stratify import (
    NA_LABEL,
    SINGLE_STRATUM,
    bin_variable,
    discretize,
    normalize_strata,
    stratify,
)

_SEED = 42


@pytest.fixture()
def frame():
    rng = np.random.default_rng(_SEED)
    n = 200
    return pd.DataFrame(
        {
            "age": rng.uniform(18, 80, size=n),
            "sex": rng.choice(["f", "m"], size=n),
            "region": rng.integers(1, 4, size=n),
        }
    )


class TestNormalizeStrata:
    def test_none(self):
        assert normalize_strata(None) == []

    def test_single_name(self):
        assert normalize_strata("age") == ["age"]

    def test_empty_string(self):
        assert normalize_strata("") == []

    def test_sequence(self):
        assert normalize_strata(("age", "sex")) == ["age", "sex"]


class TestStratify:
    def test_no_strata_single_key(self, frame):
        keys = stratify(frame, None)
        assert keys.shape == (len(frame),)
        assert set(keys) == {SINGLE_STRATUM}

    def test_continuous_binned_at_most_nbin(self, frame):
        keys = stratify(frame, "age", nbin=5)
        assert len(set(keys)) <= 5

    def test_continuous_bins_balanced(self):
        df = pd.DataFrame({"x": np.arange(100, dtype=float)})
        keys = stratify(df, "x", nbin=4)
        counts = pd.Series(keys).value_counts()
        assert len(counts) == 4
        assert set(counts) == {25}

    def test_few_distinct_values_kept(self, frame):
        keys = stratify(frame, "region")
        assert set(keys) == {"1", "2", "3"}

    def test_categorical_used_as_is(self, frame):
        keys = stratify(frame, "sex")
        assert set(keys) == {"f", "m"}

    def test_composite_key_joins_in_order(self, frame):
        keys = stratify(frame, ["sex", "region"])
        expected = frame["sex"] + " " + frame["region"].astype(str)
        assert list(keys) == list(expected)

    def test_composite_at_most_product(self, frame):
        keys = stratify(frame, ["age", "sex"], nbin=5)
        assert len(set(keys)) <= 10

    def test_same_key_iff_same_components(self, frame):
        keys = stratify(frame, ["sex", "region"])
        a = frame[["sex", "region"]].astype(str).agg("|".join, axis=1)
        for k in set(keys):
            assert a[keys == k].nunique() == 1

    def test_missing_values_get_na_label(self):
        df = pd.DataFrame({"s": ["a", None, "b", "a"]})
        keys = stratify(df, "s")
        assert list(keys) == ["a", NA_LABEL, "b", "a"]

    def test_missing_in_binned_variable(self):
        x = np.arange(50, dtype=float)
        x[3] = np.nan
        keys = stratify(pd.DataFrame({"x": x}), "x", nbin=5)
        assert keys[3] == NA_LABEL
        assert len(set(keys) - {NA_LABEL}) == 5

    def test_missing_column_raises(self, frame):
        with pytest.raises(ConfigurationError, match="not found"):
            stratify(frame, "income")

    @pytest.mark.parametrize("nbin", [0, -1, 2.5])
    def test_invalid_nbin_raises(self, frame, nbin):
        with pytest.raises(ConfigurationError, match="nbin"):
            stratify(frame, "age", nbin=nbin)

    def test_does_not_mutate_input(self, frame):
        before = frame.copy()
        stratify(frame, ["age", "sex"])
        pd.testing.assert_frame_equal(frame, before)


class TestBinVariable:
    def test_heavy_ties_collapse_without_error(self):
        x = pd.Series(np.r_[np.zeros(80), np.arange(1, 26, dtype=float)])
        labels = bin_variable(x, 5)
        assert 1 <= labels.nunique() < 5

    def test_constant_values_single_bin(self):
        labels = bin_variable(pd.Series(np.full(30, 2.0)), 5)
        assert labels.nunique() == 1

    def test_all_missing(self):
        labels = bin_variable(pd.Series([np.nan, np.nan]), 3)
        assert list(labels) == [NA_LABEL, NA_LABEL]

    def test_lowest_value_included(self):
        x = pd.Series(np.linspace(0, 1, 30))
        labels = bin_variable(x, 3)
        assert labels.iloc[0] != NA_LABEL


class TestDiscretize:
    def test_threshold_is_twenty_distinct(self):
        twenty = pd.Series(np.arange(20, dtype=float))
        assert discretize(twenty, 5).nunique() == 20
        twenty_one = pd.Series(np.arange(21, dtype=float))
        assert discretize(twenty_one, 5).nunique() == 5

    def test_bool_not_binned(self):
        s = pd.Series([True, False] * 20)
        assert set(discretize(s, 5)) == {"True", "False"}
