"""Stratum keys for within-stratum mediator equalization.

The mediator is equalized *within* strata of one or more third
variables: a non-reference record only receives mediator values from
reference records in the same stratum.  This module turns the raw
stratification columns into a single discrete key per record.

Discretisation rules, per variable:

* numeric with more than 20 distinct values — cut into ``nbin``
  quantile bins.  Breakpoints are the empirical quantiles at
  ``0, 1/nbin, …, 1`` (linear interpolation), the lowest bin includes
  the minimum, and duplicate breakpoints collapse, so heavily tied
  data may yield fewer than ``nbin`` bins;
* numeric with at most 20 distinct values — every value is its own
  category;
* anything else (categorical, string, boolean) — used as-is.

Missing values get the literal label ``"NA"`` and therefore form their
own stratum.  The composite key is the per-variable labels joined with
*sep* in the order the variables were given.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

import numpy as np
import pandas as pd

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

MAX_DISCRETE_VALUES = 20
"""Numeric variables with more distinct values than this are binned."""

NA_LABEL = "NA"
SINGLE_STRATUM = "1"


def normalize_strata(strata: str | Sequence[str] | None) -> list[str]:
    """Return *strata* as a list of column names (empty for none)."""
    if strata is None:
        return []
    if isinstance(strata, str):
        return [strata] if strata else []
    return list(strata)


def _as_labels(values: pd.Series) -> pd.Series:
    """String labels with missing values mapped to ``NA_LABEL``."""
    labels = np.where(values.isna().to_numpy(), NA_LABEL, values.astype(str).to_numpy())
    return pd.Series(labels, index=values.index, dtype=object)


def bin_variable(values: pd.Series, nbin: int) -> pd.Series:
    """Cut a numeric variable into ``nbin`` quantile bins.

    Args:
        values: Numeric series.
        nbin: Requested number of bins (at least 1).

    Returns:
        Series of string interval labels, ``"NA"`` for missing input.
    """
    observed = values.dropna().to_numpy(dtype=float)
    if observed.size == 0:
        return _as_labels(values)
    breaks = np.quantile(observed, np.linspace(0.0, 1.0, nbin + 1))
    if np.unique(breaks).size < 2:
        # Every observed value is identical: one bin.
        return _as_labels(values.where(values.isna(), breaks[0]))
    binned = pd.cut(values, bins=breaks, include_lowest=True, duplicates="drop")
    return _as_labels(binned)


def discretize(values: pd.Series, nbin: int) -> pd.Series:
    """Apply the per-variable rule described in the module docstring."""
    if pd.api.types.is_numeric_dtype(values) and not pd.api.types.is_bool_dtype(
        values
    ):
        if values.nunique(dropna=False) > MAX_DISCRETE_VALUES:
            return bin_variable(values, nbin)
    return _as_labels(values)


def stratify(
    data: pd.DataFrame,
    strata: str | Sequence[str] | None,
    nbin: int = 5,
    sep: str = " ",
) -> np.ndarray:
    """Compute one stratum key per record.

    Args:
        data: The (resampled) dataset.
        strata: Stratification column name(s), or ``None`` for a
            single implicit stratum.
        nbin: Number of quantile bins for continuous variables.
        sep: Separator between per-variable labels in the composite
            key.

    Returns:
        Object array of string keys, shape ``(len(data),)``.

    Raises:
        ConfigurationError: If a stratification column is missing or
            *nbin* is not a positive integer.
    """
    columns = normalize_strata(strata)
    if not columns:
        return np.full(len(data), SINGLE_STRATUM, dtype=object)
    if int(nbin) != nbin or nbin < 1:
        raise ConfigurationError(f"nbin must be a positive integer, got {nbin!r}.")
    missing = [c for c in columns if c not in data.columns]
    if missing:
        raise ConfigurationError(f"stratification column(s) not found: {missing}.")

    parts = [discretize(data[c], int(nbin)) for c in columns]
    keys = parts[0] if len(parts) == 1 else parts[0].str.cat(parts[1:], sep=sep)
    logger.debug(
        "stratify: %d variable(s) -> %d distinct stratum key(s)",
        len(columns),
        keys.nunique(),
    )
    return keys.to_numpy(dtype=object)
