"""Exception taxonomy for counterfactual decomposition.

Two of the four classes are raised:

* :class:`ConfigurationError` — bad arguments, detected before any
  resampling starts.
* :class:`ModelFitError` — the outcome model could not be fitted.
  Fatal for the whole run: bootstrap rows must be exchangeable, so a
  missing row would break the percentile semantics.

The other two are *recorded* rather than raised.  They describe
conditions the estimator absorbs into its output by design, and the
instances are collected on the run context / result so that callers
can count and log them:

* :class:`NoReferenceDonorsError` — a stratum in one bootstrap
  resample has records outside the reference group but no reference
  records to draw mediator values from.  Those records keep their
  observed mediator value for that iteration.
* :class:`DegenerateMediationError` — a bootstrap row where a group's
  natural-course mean equals the reference mean, so the mediation
  ratio is undefined.  The row contributes NaN and is excluded from
  the mediation summaries.
"""

from __future__ import annotations


class CfdecompError(Exception):
    """Base class for all package errors."""


class ConfigurationError(CfdecompError, ValueError):
    """Invalid configuration: unknown family, missing column, bad size."""


class ModelFitError(CfdecompError, RuntimeError):
    """The outcome model failed to fit or did not converge.

    Attributes:
        iteration: Zero-based bootstrap iteration that failed, or
            ``None`` for the initial fit on the observed data.
    """

    def __init__(self, message: str, *, iteration: int | None = None) -> None:
        if iteration is not None:
            message = f"bootstrap iteration {iteration}: {message}"
        super().__init__(message)
        self.iteration = iteration


class NoReferenceDonorsError(CfdecompError, LookupError):
    """A stratum has no reference-group records to resample from.

    Attributes:
        stratum: Stratum key with the empty donor pool.
        n_other: Number of non-reference records left unmutated.
        iteration: Bootstrap iteration, when known.
    """

    def __init__(
        self, stratum: str, n_other: int, *, iteration: int | None = None
    ) -> None:
        super().__init__(
            f"stratum {stratum!r} has no reference-group donors; "
            f"{n_other} record(s) keep their observed mediator value"
        )
        self.stratum = stratum
        self.n_other = n_other
        self.iteration = iteration


class DegenerateMediationError(CfdecompError, ArithmeticError):
    """Zero natural-course gap between a group and the reference.

    Attributes:
        level: Group level whose mediation ratio is undefined.
        n_rows: Number of bootstrap rows affected.
    """

    def __init__(self, level: str, n_rows: int) -> None:
        super().__init__(
            f"group {level!r}: natural-course gap to the reference group "
            f"is zero in {n_rows} bootstrap row(s); mediation ratio "
            f"excluded for those rows"
        )
        self.level = level
        self.n_rows = n_rows


__all__ = [
    "CfdecompError",
    "ConfigurationError",
    "DegenerateMediationError",
    "ModelFitError",
    "NoReferenceDonorsError",
]
