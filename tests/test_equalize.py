"""Tests for the equalization index and the Monte Carlo equalizer."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from cfdecomp.equalize import (
    EqualizationIndex,
    build_index,
    counterfactual_means,
    equalize_once,
    group_means,
)
from cfdecomp.exceptions import NoReferenceDonorsError
from cfdecomp.families import OutcomeFamily

_SEED = 42


class _MediatorPassThrough:
    """Toy family: the 'prediction' is the mediator column itself."""

    name = "passthrough"

    def __init__(self, column: str = "m") -> None:
        self.column = column

    def validate_y(self, y):
        pass

    def fit(self, formula, data):
        return None

    def predict(self, model, data):
        return data[self.column].to_numpy(dtype=float)


@pytest.fixture()
def two_group_frame():
    """Reference group A with m in {1, 2, 3}; group B with m = 10."""
    return pd.DataFrame(
        {
            "g": ["A", "A", "A", "B", "B", "B", "B"],
            "m": [1.0, 2.0, 3.0, 10.0, 10.0, 10.0, 10.0],
        }
    )


# ------------------------------------------------------------------ #
# build_index
# ------------------------------------------------------------------ #


class TestBuildIndex:
    def test_positions_split_by_group(self):
        idx = build_index(
            ["A", "A", "B", "B", None], ["s1", "s2", "s1", "s2", "s1"], "A"
        )
        assert isinstance(idx, EqualizationIndex)
        assert list(idx) == ["s1", "s2"]
        np.testing.assert_array_equal(idx["s1"].reference, [0])
        np.testing.assert_array_equal(idx["s1"].other, [2])
        np.testing.assert_array_equal(idx["s2"].reference, [1])
        np.testing.assert_array_equal(idx["s2"].other, [3])

    def test_missing_group_in_neither_set(self):
        idx = build_index(["A", None, "B"], ["s", "s", "s"], "A")
        cell = idx["s"]
        assert 1 not in cell.reference
        assert 1 not in cell.other

    def test_sets_disjoint_and_cover(self):
        rng = np.random.default_rng(_SEED)
        groups = rng.choice(["A", "B", "C"], size=60)
        keys = rng.choice(["x", "y", "z"], size=60)
        idx = build_index(groups, keys, "A")
        seen = []
        for stratum in idx:
            cell = idx[stratum]
            assert not set(cell.reference) & set(cell.other)
            assert np.all(groups[cell.reference] == "A")
            assert np.all(groups[cell.other] != "A")
            assert np.all(keys[cell.reference] == stratum)
            seen.extend(cell.reference)
            seen.extend(cell.other)
        assert sorted(seen) == list(range(60))

    def test_strata_in_first_appearance_order(self):
        idx = build_index(["A"] * 3, ["c", "a", "b"], "A")
        assert list(idx) == ["c", "a", "b"]

    def test_reference_absent_everywhere(self):
        idx = build_index(["B", "B"], ["s", "s"], "A")
        assert len(idx["s"].reference) == 0
        assert idx.n_receivers == 0

    def test_length_mismatch_raises(self):
        with pytest.raises(ValueError, match="must match"):
            build_index(["A", "B"], ["s"], "A")

    def test_shortfalls_reported(self):
        idx = build_index(["A", "B", "B", "B"], ["s1", "s2", "s2", "s1"], "A")
        records = idx.shortfalls(iteration=4)
        assert len(records) == 1
        rec = records[0]
        assert isinstance(rec, NoReferenceDonorsError)
        assert rec.stratum == "s2"
        assert rec.n_other == 2
        assert rec.iteration == 4

    def test_reference_only_stratum_is_not_a_shortfall(self):
        idx = build_index(["A", "A"], ["s1", "s2"], "A")
        assert idx.shortfalls() == []


# ------------------------------------------------------------------ #
# equalize_once
# ------------------------------------------------------------------ #


class TestEqualizeOnce:
    def test_receivers_draw_from_reference_pool(self, two_group_frame):
        idx = build_index(two_group_frame["g"], ["1"] * 7, "A")
        out = equalize_once(two_group_frame, "m", idx, np.random.default_rng(_SEED))
        assert set(out["m"].iloc[3:]) <= {1.0, 2.0, 3.0}

    def test_reference_records_unchanged(self, two_group_frame):
        idx = build_index(two_group_frame["g"], ["1"] * 7, "A")
        out = equalize_once(two_group_frame, "m", idx, np.random.default_rng(_SEED))
        assert out["m"].iloc[:3].tolist() == [1.0, 2.0, 3.0]

    def test_input_not_mutated(self, two_group_frame):
        before = two_group_frame.copy()
        idx = build_index(two_group_frame["g"], ["1"] * 7, "A")
        equalize_once(two_group_frame, "m", idx, np.random.default_rng(_SEED))
        pd.testing.assert_frame_equal(two_group_frame, before)

    def test_deterministic_for_fixed_seed(self, two_group_frame):
        idx = build_index(two_group_frame["g"], ["1"] * 7, "A")
        a = equalize_once(two_group_frame, "m", idx, np.random.default_rng(3))
        b = equalize_once(two_group_frame, "m", idx, np.random.default_rng(3))
        pd.testing.assert_frame_equal(a, b)

    def test_within_stratum_only(self):
        df = pd.DataFrame(
            {
                "g": ["A", "A", "B", "B"],
                "s": ["x", "y", "x", "y"],
                "m": [1.0, 2.0, 9.0, 9.0],
            }
        )
        idx = build_index(df["g"], df["s"], "A")
        out = equalize_once(df, "m", idx, np.random.default_rng(_SEED))
        assert out["m"].tolist() == [1.0, 2.0, 1.0, 2.0]

    def test_single_donor_pool(self):
        df = pd.DataFrame({"g": ["A", "B", "B", "B"], "m": [7.0, 0.0, 0.0, 0.0]})
        idx = build_index(df["g"], ["1"] * 4, "A")
        out = equalize_once(df, "m", idx, np.random.default_rng(_SEED))
        assert out["m"].tolist() == [7.0, 7.0, 7.0, 7.0]

    def test_no_donors_keeps_observed_value(self):
        df = pd.DataFrame(
            {
                "g": ["A", "B", "B"],
                "s": ["x", "y", "y"],
                "m": [1.0, 5.0, 6.0],
            }
        )
        idx = build_index(df["g"], df["s"], "A")
        out = equalize_once(df, "m", idx, np.random.default_rng(_SEED))
        assert out["m"].tolist() == [1.0, 5.0, 6.0]

    def test_categorical_mediator_dtype_preserved(self):
        df = pd.DataFrame(
            {
                "g": ["A", "A", "B", "B"],
                "m": pd.Categorical(["lo", "hi", "hi", "hi"], categories=["lo", "hi"]),
            }
        )
        idx = build_index(df["g"], ["1"] * 4, "A")
        out = equalize_once(df, "m", idx, np.random.default_rng(_SEED))
        assert isinstance(out["m"].dtype, pd.CategoricalDtype)
        assert list(out["m"].cat.categories) == ["lo", "hi"]

    def test_joint_mediators_keep_tuples(self):
        df = pd.DataFrame(
            {
                "g": ["A"] * 3 + ["B"] * 20,
                "m1": [1.0, 2.0, 3.0] + [0.0] * 20,
                "m2": [10.0, 20.0, 30.0] + [0.0] * 20,
            }
        )
        idx = build_index(df["g"], ["1"] * len(df), "A")
        out = equalize_once(
            df, ["m1", "m2"], idx, np.random.default_rng(_SEED), joint=True
        )
        others = out.iloc[3:]
        assert np.all(others["m2"] == 10 * others["m1"])

    def test_independent_mediators_break_tuples(self):
        df = pd.DataFrame(
            {
                "g": ["A"] * 3 + ["B"] * 200,
                "m1": [1.0, 2.0, 3.0] + [0.0] * 200,
                "m2": [10.0, 20.0, 30.0] + [0.0] * 200,
            }
        )
        idx = build_index(df["g"], ["1"] * len(df), "A")
        out = equalize_once(
            df, ["m1", "m2"], idx, np.random.default_rng(_SEED), joint=False
        )
        others = out.iloc[3:]
        assert set(others["m1"]) <= {1.0, 2.0, 3.0}
        assert set(others["m2"]) <= {10.0, 20.0, 30.0}
        assert np.any(others["m2"] != 10 * others["m1"])


# ------------------------------------------------------------------ #
# group_means / counterfactual_means
# ------------------------------------------------------------------ #


class TestGroupMeans:
    def test_means_in_level_order(self):
        out = group_means([1.0, 3.0, 10.0], ["B", "B", "A"], ["A", "B"])
        np.testing.assert_allclose(out, [10.0, 2.0])

    def test_absent_level_is_nan(self):
        out = group_means([1.0, 2.0], ["A", "A"], ["A", "B"])
        assert out[0] == 1.5
        assert np.isnan(out[1])

    def test_missing_predictions_skipped(self):
        out = group_means([1.0, np.nan, 3.0], ["A", "A", "A"], ["A"])
        np.testing.assert_allclose(out, [2.0])


class TestCounterfactualMeans:
    def test_passthrough_family_satisfies_protocol(self):
        assert isinstance(_MediatorPassThrough(), OutcomeFamily)

    def test_receivers_get_reference_distribution(self, two_group_frame):
        idx = build_index(two_group_frame["g"], ["1"] * 7, "A")
        cf = counterfactual_means(
            _MediatorPassThrough(),
            None,
            two_group_frame,
            "m",
            two_group_frame["g"].to_numpy(),
            ["A", "B"],
            idx,
            200,
            np.random.default_rng(_SEED),
        )
        assert cf[0] == pytest.approx(2.0)
        # Mean of 200 x 4 draws from {1, 2, 3}.
        assert cf[1] == pytest.approx(2.0, abs=0.15)

    def test_constant_mediator_equals_natural_course(self):
        df = pd.DataFrame({"g": ["A", "A", "B", "B"], "m": [4.0] * 4})
        idx = build_index(df["g"], ["1"] * 4, "A")
        cf = counterfactual_means(
            _MediatorPassThrough(),
            None,
            df,
            "m",
            df["g"].to_numpy(),
            ["A", "B"],
            idx,
            5,
            np.random.default_rng(_SEED),
        )
        nc = group_means(df["m"].to_numpy(), df["g"], ["A", "B"])
        np.testing.assert_allclose(cf, nc)

    def test_data_not_mutated(self, two_group_frame):
        before = two_group_frame.copy()
        idx = build_index(two_group_frame["g"], ["1"] * 7, "A")
        counterfactual_means(
            _MediatorPassThrough(),
            None,
            two_group_frame,
            "m",
            two_group_frame["g"].to_numpy(),
            ["A", "B"],
            idx,
            3,
            np.random.default_rng(_SEED),
        )
        pd.testing.assert_frame_equal(two_group_frame, before)

    def test_absent_level_stays_nan(self, two_group_frame):
        idx = build_index(two_group_frame["g"], ["1"] * 7, "A")
        cf = counterfactual_means(
            _MediatorPassThrough(),
            None,
            two_group_frame,
            "m",
            two_group_frame["g"].to_numpy(),
            ["A", "B", "C"],
            idx,
            3,
            np.random.default_rng(_SEED),
        )
        assert np.isnan(cf[2])
        assert np.isfinite(cf[:2]).all()
