"""Outcome-model families and resolution logic.

The ``OutcomeFamily`` protocol is the only contact surface between the
resampling machinery and the regression model.  The bootstrap driver
and the Monte Carlo equalizer call exactly three things:

* ``validate_y(y)`` — once, on the observed response, before any
  resampling;
* ``fit(formula, data)`` — once per bootstrap resample;
* ``predict(model, data)`` — on the resample (natural course) and on
  every mutated copy (counterfactual), always on the response scale.

Anything satisfying that contract can be passed as ``family=``; the
resampling code never inspects the fitted model.

Built-in families
~~~~~~~~~~~~~~~~~
``GLMFamily`` wraps ``statsmodels.formula.api.glm`` and covers the
``gaussian``, ``binomial``, ``poisson`` and ``gamma`` error
distributions with their canonical links (gamma uses the log link).
``EstimatorFamily`` builds a patsy design matrix and hands it to a
scikit-learn estimator; ``linear`` and ``logistic`` are registered.

Missing data
~~~~~~~~~~~~
Rows with a missing response or predictor are dropped when fitting.
Predictions are aligned back to the input rows, with NaN wherever the
design row could not be built, so that downstream group means can
skip them rather than treat them as zero.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import numpy as np
import pandas as pd
import patsy
import statsmodels.api as sm
import statsmodels.formula.api as smf
from patsy import PatsyError
from sklearn.exceptions import ConvergenceWarning as SkConvergenceWarning
from sklearn.linear_model import LinearRegression, LogisticRegression
from statsmodels.tools.sm_exceptions import (
    ConvergenceWarning as SmConvergenceWarning,
)

from .exceptions import ConfigurationError, ModelFitError

logger = logging.getLogger(__name__)

# Exceptions that mean "this design / response could not be fitted".
_FIT_FAILURES: tuple[type[BaseException], ...] = (
    np.linalg.LinAlgError,
    PatsyError,
    SmConvergenceWarning,
    SkConvergenceWarning,
    ValueError,
    ZeroDivisionError,
)


# ------------------------------------------------------------------ #
# OutcomeFamily protocol
# ------------------------------------------------------------------ #


@runtime_checkable
class OutcomeFamily(Protocol):
    """Interface that every outcome model must implement.

    Attributes:
        name: Short identifier used in logs and on the result object
            (e.g. ``"gaussian"``, ``"binomial"``).
    """

    @property
    def name(self) -> str: ...

    def validate_y(self, y: np.ndarray) -> None:
        """Raise ``ConfigurationError`` if *y* is unsuitable.

        Called once on the observed response (missing values already
        removed), so that a wrong family fails before the bootstrap
        starts rather than inside it.
        """
        ...

    def fit(self, formula: str, data: pd.DataFrame) -> Any:
        """Fit the model and return an opaque fitted object.

        Raises:
            ModelFitError: If fitting fails or does not converge.
        """
        ...

    def predict(self, model: Any, data: pd.DataFrame) -> np.ndarray:
        """Predict on the response scale.

        Returns:
            Float array of length ``len(data)``, NaN for rows whose
            design could not be built.
        """
        ...


# ------------------------------------------------------------------ #
# Formula helpers
# ------------------------------------------------------------------ #


def split_formula(formula: str) -> tuple[str, str]:
    """Split ``"y ~ a + b"`` into ``("y", "a + b")``.

    Raises:
        ConfigurationError: If *formula* has no ``~`` or an empty side.
    """
    if not isinstance(formula, str) or "~" not in formula:
        raise ConfigurationError(
            f"formula must be a string of the form 'response ~ predictors', "
            f"got {formula!r}."
        )
    lhs, rhs = (part.strip() for part in formula.split("~", 1))
    if not lhs or not rhs:
        raise ConfigurationError(
            f"formula {formula!r} needs both a response and predictors."
        )
    return lhs, rhs


def response_values(formula: str, data: pd.DataFrame) -> np.ndarray:
    """Evaluate the response side of *formula* on *data*.

    Plain column names are read directly; expressions such as
    ``np.log(y)`` are evaluated through patsy.  Missing values are
    dropped.
    """
    lhs, _ = split_formula(formula)
    if lhs in data.columns:
        y = data[lhs]
        if isinstance(y.dtype, pd.CategoricalDtype) or y.dtype == object:
            return y.dropna().to_numpy()
        return pd.to_numeric(y, errors="coerce").dropna().to_numpy(dtype=float)
    try:
        mat = patsy.dmatrix(f"0 + {lhs}", data, return_type="dataframe")
    except PatsyError as exc:
        raise ConfigurationError(
            f"could not evaluate response {lhs!r}: {exc}"
        ) from exc
    if mat.shape[1] != 1:
        raise ConfigurationError(
            f"response {lhs!r} must evaluate to a single numeric column."
        )
    return mat.iloc[:, 0].to_numpy(dtype=float)


def check_formula(formula: str, data: pd.DataFrame) -> None:
    """Raise ``ConfigurationError`` if patsy cannot evaluate *formula*.

    Catches names that are not columns of *data* (or typos in a
    transform) before any model is fitted, so they are reported as a
    configuration problem rather than a fit failure.
    """
    split_formula(formula)
    try:
        patsy.dmatrices(formula, data, NA_action="drop", return_type="dataframe")
    except PatsyError as exc:
        raise ConfigurationError(
            f"formula {formula!r} cannot be evaluated on data: {exc}"
        ) from exc


def _require_numeric(y: np.ndarray, family: str) -> np.ndarray:
    if not np.issubdtype(np.asarray(y).dtype, np.number):
        raise ConfigurationError(f"family '{family}' requires a numeric response.")
    y = np.asarray(y, dtype=float)
    if y.size == 0:
        raise ConfigurationError(f"family '{family}' received an empty response.")
    return y


def _align(predictions: Any, index: pd.Index, data: pd.DataFrame) -> np.ndarray:
    """Place *predictions* (indexed by *index*) back onto *data*'s rows."""
    return (
        pd.Series(np.asarray(predictions, dtype=float).ravel(), index=index)
        .reindex(data.index)
        .to_numpy(dtype=float)
    )


# ------------------------------------------------------------------ #
# GLMFamily: statsmodels formula GLM
# ------------------------------------------------------------------ #

_SM_FAMILIES: dict[str, Callable[[], Any]] = {
    "gaussian": sm.families.Gaussian,
    "binomial": sm.families.Binomial,
    "poisson": sm.families.Poisson,
    "gamma": lambda: sm.families.Gamma(link=sm.families.links.Log()),
}


@dataclass(frozen=True)
class GLMFamily:
    """Generalised linear model fitted by statsmodels IRLS.

    The fitted object is a ``GLMResultsWrapper`` carrying its own
    patsy design info, so ``predict`` accepts any frame with the
    formula's columns, including mutated counterfactual copies.
    """

    family_name: str = "gaussian"

    def __post_init__(self) -> None:
        if self.family_name not in _SM_FAMILIES:
            raise ConfigurationError(
                f"Unknown GLM family {self.family_name!r}. "
                f"Available: {sorted(_SM_FAMILIES)}."
            )

    @property
    def name(self) -> str:
        return self.family_name

    # ---- Validation ------------------------------------------------

    def validate_y(self, y: np.ndarray) -> None:
        """Check the response range for the error distribution."""
        y = _require_numeric(y, self.name)
        if self.family_name == "gaussian":
            if np.ptp(y) == 0:
                raise ConfigurationError(
                    "family 'gaussian' requires non-constant Y (zero variance)."
                )
        elif self.family_name == "binomial":
            if np.any((y < 0) | (y > 1)):
                raise ConfigurationError(
                    "family 'binomial' requires Y in [0, 1] (0/1 outcomes "
                    "or proportions)."
                )
        elif self.family_name == "poisson":
            if np.any(y < 0):
                raise ConfigurationError(
                    "family 'poisson' requires non-negative Y values."
                )
        elif self.family_name == "gamma":
            if np.any(y <= 0):
                raise ConfigurationError("family 'gamma' requires strictly positive Y.")

    # ---- Single-model operations -----------------------------------
    #
    # These run on joblib worker threads, so they never touch the
    # process-wide warning filters.  Non-convergence is read from the
    # fitted model instead of being promoted from a warning, and
    # floating-point noise is silenced with np.errstate, which is
    # local to the calling thread.

    def fit(self, formula: str, data: pd.DataFrame) -> Any:
        """Fit ``formula`` on *data* via ``statsmodels.formula.api.glm``."""
        try:
            with np.errstate(all="ignore"):
                model = smf.glm(
                    formula, data=data, family=_SM_FAMILIES[self.family_name]()
                ).fit()
        except _FIT_FAILURES as exc:
            raise ModelFitError(
                f"{self.name} GLM failed to fit: {exc}"
            ) from exc
        if not getattr(model, "converged", True):
            raise ModelFitError(f"{self.name} GLM did not converge.")
        return model

    def predict(self, model: Any, data: pd.DataFrame) -> np.ndarray:
        """Return predicted means μ̂ (inverse link applied)."""
        with np.errstate(all="ignore"):
            pred = model.predict(data)
        if isinstance(pred, pd.Series):
            return _align(pred.to_numpy(), pred.index, data)
        return np.asarray(pred, dtype=float).ravel()


# ------------------------------------------------------------------ #
# EstimatorFamily: patsy design + scikit-learn estimator
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class _FittedEstimator:
    """Fitted sklearn estimator plus the design needed to rebuild X."""

    estimator: Any
    design_info: Any


@dataclass(frozen=True)
class EstimatorFamily:
    """Outcome family backed by a scikit-learn estimator.

    The formula's right-hand side is expanded by patsy (including its
    ``Intercept`` column, so the estimator is built without its own
    intercept).  For classifiers, ``predict`` returns
    ``P(Y=1 | X)`` from ``predict_proba``.
    """

    family_name: str
    estimator_factory: Callable[[], Any]
    binary: bool = False

    @property
    def name(self) -> str:
        return self.family_name

    def validate_y(self, y: np.ndarray) -> None:
        y = _require_numeric(y, self.name)
        if self.binary:
            unique = np.unique(y)
            if not (len(unique) == 2 and np.all(np.isin(unique, [0, 1]))):
                raise ConfigurationError(
                    f"family '{self.name}' requires binary Y with exactly two "
                    f"unique values in {{0, 1}}."
                )
        elif np.ptp(y) == 0:
            raise ConfigurationError(
                f"family '{self.name}' requires non-constant Y (zero variance)."
            )

    def fit(self, formula: str, data: pd.DataFrame) -> _FittedEstimator:
        try:
            y, X = patsy.dmatrices(
                formula, data, return_type="dataframe", NA_action="drop"
            )
            estimator = self.estimator_factory()
            estimator.fit(X.to_numpy(), np.ravel(y.to_numpy()))
        except _FIT_FAILURES as exc:
            raise ModelFitError(f"{self.name} estimator failed to fit: {exc}") from exc
        max_iter = getattr(estimator, "max_iter", None)
        n_iter = getattr(estimator, "n_iter_", None)
        if max_iter is not None and n_iter is not None and np.max(n_iter) >= max_iter:
            raise ModelFitError(
                f"{self.name} estimator did not converge in {max_iter} iterations."
            )
        return _FittedEstimator(estimator=estimator, design_info=X.design_info)

    def predict(self, model: _FittedEstimator, data: pd.DataFrame) -> np.ndarray:
        (X,) = patsy.build_design_matrices(
            [model.design_info], data, NA_action="drop", return_type="dataframe"
        )
        if self.binary:
            # predict_proba returns shape (n, 2); column 1 is P(Y=1).
            pred = model.estimator.predict_proba(X.to_numpy())[:, 1]
        else:
            pred = model.estimator.predict(X.to_numpy())
        return _align(pred, X.index, data)


def _linear_estimator() -> LinearRegression:
    return LinearRegression(fit_intercept=False)


def _logistic_estimator() -> LogisticRegression:
    # C=inf is an unpenalised fit; ``penalty=None`` is deprecated.
    return LogisticRegression(
        C=np.inf,
        solver="lbfgs",
        max_iter=5_000,
        fit_intercept=False,
    )


# ------------------------------------------------------------------ #
# Registry
# ------------------------------------------------------------------ #

_FAMILIES: dict[str, Callable[[], OutcomeFamily]] = {}


def register_family(name: str, factory: Callable[[], OutcomeFamily]) -> None:
    """Register a family factory under *name*.

    Args:
        name: Lookup key accepted by :func:`resolve_family`.
        factory: Zero-argument callable returning an ``OutcomeFamily``.
    """
    _FAMILIES[name] = factory


def resolve_family(family: str | OutcomeFamily) -> OutcomeFamily:
    """Map a family name (or pass an instance through) to an instance.

    Raises:
        ConfigurationError: If *family* is an unknown name or an
            object that does not implement ``OutcomeFamily``.
    """
    if isinstance(family, OutcomeFamily):
        return family
    if not isinstance(family, str):
        raise ConfigurationError(
            f"'family' not recognized: {type(family).__name__} does not "
            f"implement fit/predict/validate_y."
        )
    key = family.strip().lower()
    if key not in _FAMILIES:
        available = ", ".join(sorted(_FAMILIES)) or "(none registered)"
        raise ConfigurationError(
            f"'family' not recognized: {family!r}.  Available families: {available}."
        )
    logger.debug("resolved family %r", key)
    return _FAMILIES[key]()


# ------------------------------------------------------------------ #
# Register built-in families
# ------------------------------------------------------------------ #

for _name in _SM_FAMILIES:
    register_family(_name, lambda _n=_name: GLMFamily(_n))

register_family(
    "linear", lambda: EstimatorFamily("linear", _linear_estimator, binary=False)
)
register_family(
    "logistic", lambda: EstimatorFamily("logistic", _logistic_estimator, binary=True)
)
