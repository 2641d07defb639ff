"""Synthetic example data for demonstrations and tests."""

from __future__ import annotations

import numpy as np
import pandas as pd

SES_LEVELS = ["1", "2", "3"]


def _expit(x: np.ndarray) -> np.ndarray:
    return 1.0 / (1.0 + np.exp(-x))


def make_example_data(
    n: int = 1000, random_state: int | None = None
) -> pd.DataFrame:
    """Simulate a population with an SES gradient running through mediators.

    Columns:
        ``SES``: categorical group, levels ``"1" < "2" < "3"`` (``"1"``
        is the reference).  ``age``: integer years 18–80, a natural
        stratification variable.  ``med_gauss`` / ``med_binom``:
        continuous and binary mediators, both worse at higher SES codes.
        ``out_gauss`` / ``out_binom``: continuous and binary outcomes
        that depend on SES directly and through both mediators.

    Args:
        n: Number of records.
        random_state: Seed for reproducibility.
    """
    rng = np.random.default_rng(random_state)
    ses_code = rng.integers(0, len(SES_LEVELS), size=n)
    age = rng.integers(18, 81, size=n)

    med_gauss = 5.0 + 1.5 * ses_code + 0.05 * age + rng.normal(0.0, 2.0, size=n)
    med_binom = rng.binomial(1, _expit(-1.0 + 0.6 * ses_code + 0.01 * age))

    out_gauss = (
        2.0
        + 0.5 * ses_code
        + 0.03 * age
        + 0.8 * med_gauss
        + 1.2 * med_binom
        + rng.normal(0.0, 2.0, size=n)
    )
    out_binom = rng.binomial(
        1,
        _expit(-4.0 + 0.3 * ses_code + 0.02 * age + 0.3 * med_gauss + 0.5 * med_binom),
    )

    return pd.DataFrame(
        {
            "SES": pd.Categorical.from_codes(ses_code, categories=SES_LEVELS),
            "age": age,
            "med_gauss": med_gauss,
            "med_binom": med_binom,
            "out_gauss": out_gauss,
            "out_binom": out_binom,
        }
    )
