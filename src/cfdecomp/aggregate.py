"""Aggregation of bootstrap replicates into the decomposition result.

Inputs are the two ``(bs_size, k)`` replicate matrices produced by the
bootstrap driver, one column per group level (reference first):

* ``nc`` — natural-course group means;
* ``cf`` — counterfactual (mediator-equalized) group means.

Point estimates are NaN-aware column means; intervals are NaN-aware
empirical percentiles at ``alpha/2``, ``0.5`` and ``1 - alpha/2``
(percentile bootstrap).

Mediation ratio
---------------
For bootstrap row ``b`` and non-reference group ``g``::

    ratio[b, g] = 1 - (cf[b, g] - nc[b, ref]) / (nc[b, g] - nc[b, ref])

which equals ``(nc[g] - cf[g]) / (nc[g] - nc[ref])``: the share of the
natural-course gap to the reference group that is closed by equalizing
the mediator (the proportion mediated).  ``0`` means the mediator
explains none of the gap (``cf[g] == nc[g]``); ``1`` means it explains
all of it (``cf[g] == nc[ref]``).

When the gap is (numerically) zero the ratio is undefined.  Such rows
are NaN and are dropped by the NaN-aware mean and quantiles; they are
never counted as zero.  The number of such rows per group is recorded
as :class:`~cfdecomp.exceptions.DegenerateMediationError` entries.
"""

from __future__ import annotations

import logging
import warnings
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

import numpy as np
import pandas as pd

from ._results import DecompositionResult
from .exceptions import ConfigurationError, DegenerateMediationError

if TYPE_CHECKING:
    from ._context import RunContext
    from .families import OutcomeFamily

logger = logging.getLogger(__name__)

GAP_TOLERANCE = 1e-10
"""Absolute natural-course gaps at or below this are treated as zero."""


def quantile_labels(probs: Sequence[float]) -> list[str]:
    """``[0.025, 0.5]`` → ``["2.5%", "50%"]``."""
    return [f"{100 * p:g}%" for p in probs]


def interval_probs(alpha: float, *, median: bool = True) -> list[float]:
    """Quantile levels of a ``1 - alpha`` percentile interval."""
    if median:
        return [alpha / 2, 0.5, 1 - alpha / 2]
    return [alpha / 2, 1 - alpha / 2]


def column_means(replicates: np.ndarray) -> np.ndarray:
    """Column means ignoring NaN; all-NaN columns give NaN."""
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", category=RuntimeWarning)
        return np.nanmean(replicates, axis=0)


def percentile_interval(
    replicates: np.ndarray,
    alpha: float,
    columns: Sequence[Any],
    *,
    median: bool = True,
) -> pd.DataFrame:
    """NaN-aware percentile interval per column.

    Returns:
        DataFrame with one row per quantile level and one column per
        entry of *columns*.
    """
    probs = interval_probs(alpha, median=median)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", category=RuntimeWarning)
        q = np.nanquantile(replicates, probs, axis=0)
    return pd.DataFrame(
        q,
        index=quantile_labels(probs),
        columns=list(columns),
    )


def mediation_matrix(nc: np.ndarray, cf: np.ndarray) -> np.ndarray:
    """Row-wise mediation ratio for every non-reference column.

    Returns:
        Array of shape ``(bs_size, k - 1)``; NaN where the gap is
        (numerically) zero or any operand is missing.
    """
    ref = nc[:, [0]]
    gap = nc[:, 1:] - ref
    shift = cf[:, 1:] - ref
    out = np.full(gap.shape, np.nan)
    ok = np.isfinite(gap) & np.isfinite(shift) & (np.abs(gap) > GAP_TOLERANCE)
    out[ok] = 1.0 - shift[ok] / gap[ok]
    return out


def degenerate_counts(nc: np.ndarray) -> np.ndarray:
    """Per non-reference column, rows whose gap is numerically zero."""
    gap = nc[:, 1:] - nc[:, [0]]
    return np.sum(np.isfinite(gap) & (np.abs(gap) <= GAP_TOLERANCE), axis=0)


def aggregate(
    nc: np.ndarray,
    cf: np.ndarray,
    alpha: float,
    levels: Sequence[Any],
    *,
    family: OutcomeFamily,
    mc_size: int,
    ctx: RunContext | None = None,
) -> DecompositionResult:
    """Summarise the replicate matrices into a :class:`DecompositionResult`.

    Args:
        nc: Natural-course replicates, shape ``(bs_size, k)``.
        cf: Counterfactual replicates, same shape.
        alpha: Interval level, in ``(0, 1)``.
        levels: Group levels matching the columns; first = reference.
        family: The outcome family (recorded on the result).
        mc_size: Monte Carlo repeats used (recorded on the result).
        ctx: Optional run context; receives the degenerate-row records
            and is attached to the result.

    Raises:
        ConfigurationError: On an invalid *alpha* or mismatched shapes.
    """
    if not 0 < alpha < 1:
        raise ConfigurationError(f"alpha must lie in (0, 1), got {alpha!r}.")
    nc = np.asarray(nc, dtype=float)
    cf = np.asarray(cf, dtype=float)
    levels = list(levels)
    if nc.shape != cf.shape or nc.ndim != 2 or nc.shape[1] != len(levels):
        raise ConfigurationError(
            f"replicate matrices must both have shape (bs_size, {len(levels)}); "
            f"got {nc.shape} and {cf.shape}."
        )

    ratios = mediation_matrix(nc, cf)
    others = levels[1:]

    degenerate: dict[str, int] = {}
    for level, count in zip(others, degenerate_counts(nc), strict=True):
        if count == 0:
            continue
        record = DegenerateMediationError(str(level), int(count))
        degenerate[str(level)] = int(count)
        logger.warning("%s", record)
        if ctx is not None:
            ctx.degenerate_rows.append(record)

    all_nan = [lvl for j, lvl in enumerate(others) if np.all(np.isnan(ratios[:, j]))]
    if all_nan:
        warnings.warn(
            f"Mediation ratio is undefined in every bootstrap row for "
            f"group(s) {all_nan}; their mediation estimate is NaN.",
            UserWarning,
            stacklevel=2,
        )

    return DecompositionResult(
        group_levels=levels,
        reference_level=levels[0],
        natural_course=pd.Series(column_means(nc), index=levels),
        natural_course_interval=percentile_interval(nc, alpha, levels),
        counterfactual=pd.Series(column_means(cf), index=levels),
        counterfactual_interval=percentile_interval(cf, alpha, levels),
        mediation=pd.Series(column_means(ratios), index=others, dtype=float),
        mediation_interval=percentile_interval(ratios, alpha, others, median=False),
        nc_replicates=pd.DataFrame(nc, columns=levels),
        cf_replicates=pd.DataFrame(cf, columns=levels),
        alpha=float(alpha),
        bs_size=int(nc.shape[0]),
        mc_size=int(mc_size),
        family=family,
        n_donor_shortfalls=len(ctx.donor_shortfalls) if ctx is not None else 0,
        degenerate_rows=degenerate,
        context=ctx,
    )
