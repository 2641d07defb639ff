"""Typed result object for the mean decomposition.

A frozen dataclass that provides:

* **Attribute access** — ``result.natural_course``, ``result.mediation``.
* **Dict-like access** — ``result["mediation"]``, ``result.get("key")``,
  ``"key" in result``.
* **Serialisation** — ``.to_dict()`` returns a plain ``dict[str, Any]``
  with NumPy and pandas objects converted to native Python.

The result is frozen to communicate that it is a snapshot of a
completed run.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import TYPE_CHECKING, Any, ClassVar

import numpy as np
import pandas as pd

if TYPE_CHECKING:
    from ._context import RunContext
    from .families import OutcomeFamily

# ------------------------------------------------------------------ #
# Serialisation helper
# ------------------------------------------------------------------ #


def _numpy_to_python(obj: Any) -> Any:
    """Recursively convert NumPy / pandas objects to Python-native types.

    Series become ``{label: value}`` dicts, DataFrames become
    ``{column: {row: value}}`` dicts, NaN stays a float NaN.
    """
    if isinstance(obj, pd.DataFrame):
        return {
            str(col): _numpy_to_python(obj[col]) for col in obj.columns
        }
    if isinstance(obj, pd.Series):
        return {str(k): _numpy_to_python(v) for k, v in obj.items()}
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, (np.integer, np.bool_)):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, dict):
        return {str(k): _numpy_to_python(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        converted = [_numpy_to_python(item) for item in obj]
        return type(obj)(converted)
    return obj


# ------------------------------------------------------------------ #
# Dict-compatibility mixin
# ------------------------------------------------------------------ #


class _DictAccessMixin:
    """Dict-like access convenience for result dataclasses.

    Supports ``result["key"]`` (``KeyError`` on miss),
    ``result.get(key, default)`` and ``"key" in result``.

    Subclasses may override ``_SERIALIZERS`` to register conversion
    functions for non-primitive fields.
    """

    _SERIALIZERS: ClassVar[dict[str, Any]] = {
        "family": lambda f: f.name,
    }

    # Fields to exclude from to_dict() serialisation.
    _EXCLUDE_FROM_DICT: ClassVar[frozenset[str]] = frozenset({"context"})

    def __getitem__(self, key: str) -> Any:
        try:
            return getattr(self, key)
        except AttributeError:
            raise KeyError(key) from None

    def get(self, key: str, default: Any = None) -> Any:
        return getattr(self, key, default)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, str):
            return False
        return key in {f.name for f in fields(self)}  # type: ignore[arg-type]

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain, JSON-serialisable dictionary."""
        result: dict[str, Any] = {}
        for f in fields(self):  # type: ignore[arg-type]
            if f.name in self._EXCLUDE_FROM_DICT:
                continue
            val = getattr(self, f.name)
            if f.name in self._SERIALIZERS:
                val = self._SERIALIZERS[f.name](val)
            result[f.name] = _numpy_to_python(val)
        return result


# ------------------------------------------------------------------ #
# DecompositionResult
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class DecompositionResult(_DictAccessMixin):
    """Result of a counterfactual mean decomposition.

    Returned by :func:`~cfdecomp.core.decompose_mean`.  Every per-group
    quantity is indexed by group level; interval frames have one row
    per quantile (labelled e.g. ``"2.5%"``) and one column per level.
    """

    # ---- Groups ----------------------------------------------------
    group_levels: list[Any]
    """Ordered group levels; the first is the reference."""

    reference_level: Any
    """Reference group level."""

    # ---- Natural course --------------------------------------------
    natural_course: pd.Series
    """Mean predicted outcome per group under the observed mediator."""

    natural_course_interval: pd.DataFrame
    """``alpha/2``, median and ``1 - alpha/2`` bootstrap quantiles."""

    # ---- Counterfactual --------------------------------------------
    counterfactual: pd.Series
    """Mean predicted outcome per group after mediator equalization."""

    counterfactual_interval: pd.DataFrame
    """``alpha/2``, median and ``1 - alpha/2`` bootstrap quantiles."""

    # ---- Mediation -------------------------------------------------
    mediation: pd.Series
    """Proportion mediated: share of the gap to the reference group
    closed by equalization, ``1 - (CF[g] - NC[ref]) / (NC[g] - NC[ref])``,
    averaged over bootstrap rows; non-reference levels only.  ``0``
    when ``CF == NC``, ``1`` when ``CF == NC[ref]``; the share of the
    gap that remains is ``1 - mediation``."""

    mediation_interval: pd.DataFrame
    """``alpha/2`` and ``1 - alpha/2`` quantiles of the mediation
    ratio across bootstrap rows (degenerate rows excluded)."""

    # ---- Replicates ------------------------------------------------
    nc_replicates: pd.DataFrame
    """Natural-course bootstrap matrix ``(bs_size, k)``."""

    cf_replicates: pd.DataFrame
    """Counterfactual bootstrap matrix ``(bs_size, k)``."""

    # ---- Metadata --------------------------------------------------
    alpha: float
    """Interval level: intervals cover ``1 - alpha``."""

    bs_size: int
    """Number of bootstrap iterations."""

    mc_size: int
    """Monte Carlo repeats per bootstrap iteration."""

    family: OutcomeFamily
    """Outcome family used for every fit."""

    n_donor_shortfalls: int = 0
    """Number of (iteration, stratum) pairs left unequalized for lack
    of reference-group donors."""

    degenerate_rows: dict[str, int] = field(default_factory=dict)
    """Per non-reference level, bootstrap rows with a zero gap."""

    # ---- Computation context (not serialised) ----------------------
    context: RunContext | None = field(default=None, repr=False, compare=False)
    """Run context with intermediate artifacts.  Excluded from
    ``to_dict()``."""

    def summary_frame(self) -> pd.DataFrame:
        """One row per group level with estimates and interval bounds.

        Columns: ``natural_course``, ``nc_lower``, ``nc_upper``,
        ``counterfactual``, ``cf_lower``, ``cf_upper``, ``mediation``,
        ``mediation_lower``, ``mediation_upper``.  Mediation columns
        are NaN for the reference level.
        """
        nc_iv = self.natural_course_interval
        cf_iv = self.counterfactual_interval
        med_iv = self.mediation_interval.reindex(columns=self.group_levels)
        frame = pd.DataFrame(
            {
                "natural_course": self.natural_course,
                "nc_lower": nc_iv.iloc[0],
                "nc_upper": nc_iv.iloc[-1],
                "counterfactual": self.counterfactual,
                "cf_lower": cf_iv.iloc[0],
                "cf_upper": cf_iv.iloc[-1],
                "mediation": self.mediation.reindex(self.group_levels),
                "mediation_lower": med_iv.iloc[0],
                "mediation_upper": med_iv.iloc[-1],
            },
            index=pd.Index(self.group_levels, name="group"),
        )
        return frame
