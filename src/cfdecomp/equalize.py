"""Stratified mediator equalization and the inner Monte Carlo loop.

Within each bootstrap resample the counterfactual world is simulated
by replacing every non-reference record's mediator value with a value
drawn (with replacement) from the reference-group records of the same
stratum, then re-predicting the outcome with the model already fitted
on that resample.  Averaging group means over ``mc_size`` such
substitutions suppresses the simulation noise of any single draw.

Structure::

    build_index(group, strata, ref)      once per bootstrap iteration
      └─ EqualizationIndex               stratum → (reference, other)
    counterfactual_means(...)            once per bootstrap iteration
      └─ mc_size ×
           ├─ donor draws per stratum    (resampling.draw_donors)
           ├─ family.predict(model, mutated copy)
           └─ group_means(predictions)
         └─ NaN-aware mean across repeats

Empty donor pools
-----------------
A stratum can contain non-reference records but no reference records
(more likely with many strata or small samples).  Sampling from an
empty set is undefined, so those records keep their observed mediator
value for the iteration.  The condition is reported by
:meth:`EqualizationIndex.shortfalls` as
:class:`~cfdecomp.exceptions.NoReferenceDonorsError` records, which the
bootstrap driver logs and counts on the run context.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import numpy as np
import pandas as pd

from .exceptions import NoReferenceDonorsError
from .resampling import draw_donors

if TYPE_CHECKING:
    from .families import OutcomeFamily


# ------------------------------------------------------------------ #
# Equalization index
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class StratumIndex:
    """Record positions of one stratum, split by group membership."""

    reference: np.ndarray
    """Positions of reference-group records (the donor pool)."""

    other: np.ndarray
    """Positions of non-reference records (the receivers)."""

    @property
    def has_donors(self) -> bool:
        return len(self.reference) > 0


@dataclass(frozen=True)
class EqualizationIndex:
    """Per-stratum donor / receiver positions for one resample.

    Strata are kept in order of first appearance in the resample, which
    fixes the order of the donor draws and therefore reproducibility.
    """

    reference_level: Any
    cells: dict[str, StratumIndex]

    def __len__(self) -> int:
        return len(self.cells)

    def __iter__(self) -> Iterator[str]:
        return iter(self.cells)

    def __getitem__(self, stratum: str) -> StratumIndex:
        return self.cells[stratum]

    @property
    def n_receivers(self) -> int:
        """Number of records whose mediator is replaced per repeat."""
        return sum(len(c.other) for c in self.cells.values() if c.has_donors)

    def shortfalls(self, iteration: int | None = None) -> list[NoReferenceDonorsError]:
        """Strata whose non-reference records have no donors."""
        return [
            NoReferenceDonorsError(stratum, len(cell.other), iteration=iteration)
            for stratum, cell in self.cells.items()
            if not cell.has_donors and len(cell.other) > 0
        ]


def build_index(
    group_values: Sequence[Any] | pd.Series | np.ndarray,
    stratum_keys: Sequence[str] | np.ndarray,
    reference_level: Any,
) -> EqualizationIndex:
    """Split every stratum into reference and non-reference positions.

    Records with a missing group value belong to neither set: they are
    never donors and never receive a substituted mediator.

    Args:
        group_values: Group label per record.
        stratum_keys: Stratum key per record (see
            :func:`cfdecomp.stratify.stratify`).
        reference_level: The reference group level.  Fixed for the
            whole run, even when a resample happens to contain no
            reference records.

    Returns:
        An :class:`EqualizationIndex`.
    """
    groups = pd.Series(np.asarray(group_values, dtype=object))
    keys = np.asarray(stratum_keys, dtype=object)
    if len(keys) != len(groups):
        raise ValueError(
            f"stratum_keys length ({len(keys)}) must match group_values "
            f"length ({len(groups)})"
        )

    is_ref = (groups == reference_level).to_numpy()
    is_other = groups.notna().to_numpy() & ~is_ref

    cells: dict[str, StratumIndex] = {}
    for stratum in pd.unique(keys):
        in_stratum = keys == stratum
        cells[stratum] = StratumIndex(
            reference=np.flatnonzero(in_stratum & is_ref),
            other=np.flatnonzero(in_stratum & is_other),
        )
    return EqualizationIndex(reference_level=reference_level, cells=cells)


# ------------------------------------------------------------------ #
# Single Monte Carlo replicate
# ------------------------------------------------------------------ #


def _as_list(mediator: str | Sequence[str]) -> list[str]:
    return [mediator] if isinstance(mediator, str) else list(mediator)


def _donor_positions(
    index: EqualizationIndex, n_samples: int, rng: np.random.Generator
) -> np.ndarray:
    """Source position for every record after one equalization draw.

    Identity everywhere except the receivers of strata with donors.
    """
    take = np.arange(n_samples)
    for cell in index.cells.values():
        if len(cell.other) == 0 or not cell.has_donors:
            continue
        take[cell.other] = draw_donors(cell.reference, len(cell.other), rng)
    return take


def _substitute(
    target: pd.DataFrame,
    source: pd.DataFrame,
    mediators: list[str],
    index: EqualizationIndex,
    rng: np.random.Generator,
    joint: bool,
) -> None:
    """Overwrite *target*'s mediator columns with fresh donor draws."""
    take = _donor_positions(index, len(source), rng) if joint else None
    for m in mediators:
        positions = take if take is not None else _donor_positions(
            index, len(source), rng
        )
        # iloc + set_axis keeps the column dtype (categoricals included).
        target[m] = source[m].iloc[positions].set_axis(target.index)


def equalize_once(
    data: pd.DataFrame,
    mediator: str | Sequence[str],
    index: EqualizationIndex,
    rng: np.random.Generator,
    *,
    joint: bool = True,
) -> pd.DataFrame:
    """Return a copy of *data* with the mediator equalized once.

    For every stratum with donors, ``len(other)`` values are drawn with
    replacement from the mediator values at the reference positions and
    written to the other positions.  *data* itself is not modified.

    Args:
        data: The bootstrap resample (positional ``RangeIndex``).
        mediator: Mediator column, or several.
        index: Equalization index built on *data*.
        rng: The iteration's generator.
        joint: With several mediators, ``True`` draws one donor record
            per receiver and copies all mediators from it (linked
            tuples); ``False`` draws each mediator independently.

    Returns:
        The mutated copy.
    """
    mutated = data.copy()
    _substitute(mutated, data, _as_list(mediator), index, rng, joint)
    return mutated


# ------------------------------------------------------------------ #
# Group means and the Monte Carlo average
# ------------------------------------------------------------------ #


def group_means(
    predictions: np.ndarray,
    group_values: Sequence[Any] | pd.Series | np.ndarray,
    levels: Sequence[Any],
) -> np.ndarray:
    """Mean prediction per group level, skipping missing predictions.

    Levels with no records (or only missing predictions) get NaN, not
    zero.

    Returns:
        Float array of shape ``(len(levels),)`` in *levels* order.
    """
    groups = pd.Categorical(np.asarray(group_values, dtype=object), categories=levels)
    means = (
        pd.Series(np.asarray(predictions, dtype=float))
        .groupby(groups, observed=False)
        .mean()
    )
    return means.reindex(list(levels)).to_numpy(dtype=float)


def counterfactual_means(
    family: OutcomeFamily,
    model: Any,
    data: pd.DataFrame,
    mediator: str | Sequence[str],
    group_values: Sequence[Any] | pd.Series | np.ndarray,
    levels: Sequence[Any],
    index: EqualizationIndex,
    mc_size: int,
    rng: np.random.Generator,
    *,
    joint: bool = True,
) -> np.ndarray:
    """Average counterfactual group means over *mc_size* equalizations.

    The model is **not** refitted: every repeat predicts with the
    model fitted on the (unmutated) resample.  Only mediator columns
    change between repeats, so *group_values* (one label per row of
    *data*) is shared by all of them.

    Returns:
        Float array of shape ``(len(levels),)``.
    """
    mediators = _as_list(mediator)
    mutated = data.copy()
    repeats = np.empty((mc_size, len(levels)), dtype=float)
    for r in range(mc_size):
        _substitute(mutated, data, mediators, index, rng, joint)
        predictions = family.predict(model, mutated)
        repeats[r] = group_means(predictions, group_values, levels)

    # Levels absent from the resample are NaN in every repeat and stay NaN.
    counts = np.sum(~np.isnan(repeats), axis=0)
    totals = np.nansum(repeats, axis=0)
    return np.where(counts > 0, totals / np.maximum(counts, 1), np.nan)
