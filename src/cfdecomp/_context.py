"""Computation context — mutable accumulator for run artifacts.

A :class:`RunContext` travels through one decomposition run, collecting
artifacts at their natural computation points.  Consumers (logging,
debugging, downstream reporting) read from the context instead of
re-computing.

The context is **not** part of the serialised result:
:meth:`~cfdecomp._results.DecompositionResult.to_dict` skips it.

Lifecycle::

    ┌──────────────────────────────────────────────────┐
    │  decompose_mean()                                │
    │  ├─ ctx = RunContext()                           │
    │  ├─ DecompositionEngine(…, ctx=ctx)              │
    │  │   ├─ ctx.family = resolved family             │
    │  │   ├─ ctx.group_levels / reference_level       │
    │  │   ├─ ctx.observed_model = family.fit(…)       │
    │  │   └─ ctx.observed_predictions                 │
    │  ├─ engine.run()                                 │
    │  │   ├─ ctx.donor_shortfalls += index.shortfalls │
    │  │   └─ ctx.iterations_completed = bs_size       │
    │  ├─ aggregate(…)                                 │
    │  │   └─ ctx.degenerate_rows = …                  │
    │  └─ result.context = ctx                         │
    └──────────────────────────────────────────────────┘
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import numpy as np

from .exceptions import DegenerateMediationError, NoReferenceDonorsError


@dataclass
class RunContext:
    """Mutable accumulator for one decomposition run.

    Every field defaults to ``None`` (or an empty container) so the
    context can be created empty and populated incrementally.
    """

    # ---- Inputs --------------------------------------------------
    n_records: int | None = None
    """Number of records in the observed dataset."""

    formula: str | None = None
    """Outcome model formula."""

    mediators: list[str] = field(default_factory=list)
    """Mediator column name(s)."""

    group: str | None = None
    """Group column name."""

    strata: list[str] = field(default_factory=list)
    """Stratification column names (empty for a single stratum)."""

    # ---- Family and levels ---------------------------------------
    family: Any = None
    """Resolved ``OutcomeFamily`` instance."""

    family_name: str | None = None
    """Short family name (e.g. ``"binomial"``)."""

    group_levels: list[Any] | None = None
    """Ordered group levels; the first is the reference."""

    reference_level: Any = None
    """Reference group level."""

    # ---- Observed fit --------------------------------------------
    observed_model: Any = None
    """Model fitted once on the observed data, before the bootstrap."""

    observed_predictions: np.ndarray | None = None
    """Predictions of ``observed_model`` on the observed data."""

    # ---- Execution -----------------------------------------------
    backend: str | None = None
    """Execution backend actually used for the bootstrap loop."""

    n_jobs: int | None = None
    """Worker count actually used."""

    random_state: Any = None
    """Seed the run was started from."""

    iterations_completed: int = 0
    """Number of bootstrap iterations whose rows were written."""

    # ---- Recorded conditions -------------------------------------
    donor_shortfalls: list[NoReferenceDonorsError] = field(default_factory=list)
    """Strata left unequalized for lack of reference donors."""

    degenerate_rows: list[DegenerateMediationError] = field(default_factory=list)
    """Groups with zero natural-course gap in some bootstrap rows."""


__all__ = ["RunContext"]
