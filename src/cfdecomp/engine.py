"""Decomposition engine — Builder for validation, the observed fit and the bootstrap.

The :class:`DecompositionEngine` centralises everything that happens
*before* the bootstrap starts, then drives it:

1. **Input normalisation** — accept pandas / polars / record input and
   work on a private copy; the caller's frame is never mutated.
2. **Configuration checks** — column names, ``bs_size``, ``mc_size``
   and ``nbin`` are validated up front so that a bad argument fails
   before any resampling.
3. **Family resolution** — map ``"binomial"`` / ``"gaussian"`` / … to
   an ``OutcomeFamily`` instance and validate the response against it.
4. **Group levels** — fixed once for the whole run; the first level is
   the reference group.
5. **Observed model fit** — fit once on the observed data so that an
   unfittable model fails fast.
6. **Backend resolution** — sequential loop or joblib workers.

:meth:`DecompositionEngine.run` then executes ``bs_size`` independent
iterations (see :func:`run_iteration`) and returns the natural-course
and counterfactual replicate matrices.
"""

from __future__ import annotations

import logging
import warnings
from collections.abc import Sequence
from typing import Any

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from sklearn.exceptions import ConvergenceWarning as SkConvergenceWarning
from statsmodels.tools.sm_exceptions import (
    ConvergenceWarning as SmConvergenceWarning,
)
from statsmodels.tools.sm_exceptions import PerfectSeparationWarning

from ._compat import _ensure_pandas_df
from ._config import get_backend
from ._context import RunContext
from .equalize import build_index, counterfactual_means, group_means
from .exceptions import ConfigurationError, ModelFitError, NoReferenceDonorsError
from .families import (
    OutcomeFamily,
    check_formula,
    resolve_family,
    response_values,
    split_formula,
)
from .resampling import bootstrap_indices, spawn_generators
from .stratify import normalize_strata, stratify

logger = logging.getLogger(__name__)


def _check_count(name: str, value: Any) -> int:
    """Return *value* as an int, rejecting non-integers and values < 1."""
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
        raise ConfigurationError(f"{name} must be a positive integer, got {value!r}.")
    if value < 1:
        raise ConfigurationError(f"{name} must be a positive integer, got {value!r}.")
    return int(value)


def resolve_levels(
    values: pd.Series, group_levels: Sequence[Any] | None = None
) -> list[Any]:
    """Fix the ordered group levels; the first one is the reference.

    Order of precedence: explicit *group_levels*, then the categories
    of a categorical column, then the sorted distinct values (order of
    first appearance when the values are not mutually comparable).

    Raises:
        ConfigurationError: If fewer than two levels result, a declared
            level has no records, or a record's group is not among the
            declared levels.
    """
    present = pd.unique(values.dropna())
    if group_levels is not None:
        levels = list(group_levels)
        if len(set(levels)) != len(levels):
            raise ConfigurationError(f"group_levels contains duplicates: {levels}.")
        unknown = [v for v in present if v not in levels]
        if unknown:
            raise ConfigurationError(
                f"group value(s) {unknown} are not among group_levels {levels}."
            )
    elif isinstance(values.dtype, pd.CategoricalDtype):
        levels = list(values.cat.categories)
    else:
        try:
            levels = sorted(present)
        except TypeError:
            levels = list(present)

    if len(levels) < 2:
        raise ConfigurationError(
            f"the group variable needs at least two levels, got {levels}."
        )
    empty = [lvl for lvl in levels if lvl not in set(present)]
    if empty:
        raise ConfigurationError(f"group level(s) {empty} have no records.")
    return levels


def run_iteration(
    iteration: int,
    rng: np.random.Generator,
    data: pd.DataFrame,
    formula: str,
    family: OutcomeFamily,
    mediators: list[str],
    group_values: np.ndarray,
    levels: list[Any],
    strata: list[str],
    nbin: int,
    mc_size: int,
    joint: bool,
) -> tuple[np.ndarray, np.ndarray, list[NoReferenceDonorsError]]:
    """One bootstrap iteration: resample, refit, predict, equalize.

    All random draws of the iteration come from *rng*, resample first
    and Monte Carlo donors after, so the result depends only on the
    generator and not on which worker runs it.

    Returns:
        ``(nc_row, cf_row, shortfalls)`` where the rows have one entry
        per level (NaN for a level absent from the resample).

    Raises:
        ModelFitError: If the outcome model cannot be fitted on the
            resample.
    """
    idx = bootstrap_indices(len(data), rng)
    sample = data.iloc[idx].reset_index(drop=True)
    groups = group_values[idx]

    try:
        model = family.fit(formula, sample)
    except ModelFitError as exc:
        raise ModelFitError(str(exc), iteration=iteration) from exc

    nc_row = group_means(family.predict(model, sample), groups, levels)

    keys = stratify(sample, strata, nbin)
    index = build_index(groups, keys, levels[0])
    cf_row = counterfactual_means(
        family,
        model,
        sample,
        mediators,
        groups,
        levels,
        index,
        mc_size,
        rng,
        joint=joint,
    )
    return nc_row, cf_row, index.shortfalls(iteration)


class DecompositionEngine:
    """Builder that validates inputs, fits once and runs the bootstrap.

    Construction does all the checking; :meth:`run` only computes.

    Attributes:
        family: The resolved ``OutcomeFamily`` instance.
        levels: Ordered group levels, reference first.
        backend: ``"threads"``, ``"processes"`` or ``"sequential"``.
        ctx: The :class:`~cfdecomp._context.RunContext` being filled.
    """

    def __init__(
        self,
        data: Any,
        formula: str,
        mediator: str | Sequence[str],
        group: str,
        *,
        strata: str | Sequence[str] | None = None,
        nbin: int = 5,
        family: str | OutcomeFamily = "binomial",
        bs_size: int = 1000,
        mc_size: int = 50,
        random_state: int | np.random.SeedSequence | None = None,
        n_jobs: int = 1,
        group_levels: Sequence[Any] | None = None,
        joint_mediators: bool = True,
        print_iteration: bool = False,
        backend: str | None = None,
        ctx: RunContext | None = None,
    ) -> None:
        self.ctx: RunContext = ctx if ctx is not None else RunContext()

        # ---- Configuration checks ---------------------------------
        self.data = _ensure_pandas_df(data)
        if len(self.data) == 0:
            raise ConfigurationError("data has no records.")
        split_formula(formula)
        self.formula = formula

        self.mediators: list[str] = (
            [mediator] if isinstance(mediator, str) else list(mediator)
        )
        if not self.mediators:
            raise ConfigurationError("at least one mediator is required.")
        if not isinstance(group, str) or not group:
            raise ConfigurationError(f"group must be a column name, got {group!r}.")
        self.group = group
        self.strata = normalize_strata(strata)

        missing = [
            c
            for c in [*self.mediators, group, *self.strata]
            if c not in self.data.columns
        ]
        if missing:
            raise ConfigurationError(f"column(s) not found in data: {missing}.")
        if group in self.mediators:
            raise ConfigurationError(
                f"the group variable {group!r} cannot also be a mediator."
            )
        check_formula(formula, self.data)

        self.bs_size = _check_count("bs_size", bs_size)
        self.mc_size = _check_count("mc_size", mc_size)
        self.nbin = _check_count("nbin", nbin)
        self.random_state = random_state
        self.joint_mediators = bool(joint_mediators)
        self.print_iteration = bool(print_iteration)

        # ---- Family resolution ------------------------------------
        self.family: OutcomeFamily = resolve_family(family)
        self.family.validate_y(response_values(formula, self.data))

        # ---- Group levels -----------------------------------------
        #
        # Group labels travel alongside the data rather than inside
        # it, so the group column enters the formula exactly as the
        # caller supplied it.
        self.levels = resolve_levels(self.data[group], group_levels)
        self.group_values: np.ndarray = self.data[group].to_numpy(dtype=object)

        # ---- Backend resolution -----------------------------------
        self.backend: str = (backend or get_backend()).strip().lower()
        if self.backend not in ("threads", "processes", "sequential"):
            raise ConfigurationError(f"Unknown backend {backend!r}.")
        self._n_jobs = int(n_jobs)
        if self._n_jobs != 1 and self.backend == "sequential":
            warnings.warn(
                "n_jobs is ignored when the sequential backend is active.  "
                "Falling back to n_jobs=1.",
                UserWarning,
                stacklevel=3,
            )
            self._n_jobs = 1

        # ---- Observed model fit -----------------------------------
        observed_model = self.family.fit(formula, self.data)

        # Populate context.
        self.ctx.n_records = len(self.data)
        self.ctx.formula = formula
        self.ctx.mediators = list(self.mediators)
        self.ctx.group = group
        self.ctx.strata = list(self.strata)
        self.ctx.family = self.family
        self.ctx.family_name = self.family.name
        self.ctx.group_levels = list(self.levels)
        self.ctx.reference_level = self.levels[0]
        self.ctx.observed_model = observed_model
        self.ctx.observed_predictions = self.family.predict(observed_model, self.data)
        self.ctx.backend = self.backend
        self.ctx.n_jobs = self._n_jobs
        self.ctx.random_state = random_state

        logger.debug(
            "engine ready: %d records, family=%s, levels=%s (reference %r), "
            "strata=%s, backend=%s, n_jobs=%d",
            len(self.data),
            self.family.name,
            self.levels,
            self.levels[0],
            self.strata,
            self.backend,
            self._n_jobs,
        )

    # ---- Bootstrap ------------------------------------------------

    def _iteration(
        self, iteration: int, rng: np.random.Generator
    ) -> tuple[np.ndarray, np.ndarray, list[NoReferenceDonorsError]]:
        if self.print_iteration:
            logger.info("bootstrap iteration %d/%d", iteration + 1, self.bs_size)
        return run_iteration(
            iteration,
            rng,
            self.data,
            self.formula,
            self.family,
            self.mediators,
            self.group_values,
            self.levels,
            self.strata,
            self.nbin,
            self.mc_size,
            self.joint_mediators,
        )

    def run(self) -> tuple[np.ndarray, np.ndarray]:
        """Execute all bootstrap iterations.

        A :class:`~cfdecomp.exceptions.ModelFitError` in any iteration
        aborts the run; no partial matrices are returned.

        Returns:
            ``(nc, cf)``, each of shape ``(bs_size, k)`` with columns
            in level order.
        """
        rngs = spawn_generators(self.random_state, self.bs_size)
        k = len(self.levels)
        nc = np.full((self.bs_size, k), np.nan)
        cf = np.full((self.bs_size, k), np.nan)

        shortfalls: list[NoReferenceDonorsError] = []
        # Warning filters are process-wide; change them only here, on the
        # calling thread.  Non-convergence surfaces as ModelFitError.
        with warnings.catch_warnings():
            warnings.filterwarnings("ignore", category=SmConvergenceWarning)
            warnings.filterwarnings("ignore", category=SkConvergenceWarning)
            warnings.filterwarnings("ignore", category=PerfectSeparationWarning)
            if self._n_jobs == 1 or self.backend == "sequential":
                rows = (self._iteration(i, rng) for i, rng in enumerate(rngs))
            else:
                # joblib returns results in submission order.
                rows = Parallel(n_jobs=self._n_jobs, prefer=self.backend)(
                    delayed(self._iteration)(i, rng) for i, rng in enumerate(rngs)
                )

            for i, (nc_row, cf_row, missing_donors) in enumerate(rows):
                nc[i] = nc_row
                cf[i] = cf_row
                for record in missing_donors:
                    logger.debug("%s (iteration %d)", record, i)
                shortfalls.extend(missing_donors)

        self.ctx.iterations_completed = self.bs_size
        self.ctx.donor_shortfalls.extend(shortfalls)
        if shortfalls:
            logger.warning(
                "%d stratum/iteration pair(s) had no reference-group donors "
                "(%d record(s) in total kept their observed mediator value).",
                len(shortfalls),
                sum(r.n_other for r in shortfalls),
            )
        return nc, cf
