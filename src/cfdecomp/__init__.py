"""cfdecomp — Counterfactual decomposition of group differences in mean outcomes.

Implements a g-formula decomposition: the mediator of non-reference
groups is replaced, within strata, by draws from the reference group's
distribution; the outcome model is re-predicted and averaged over Monte
Carlo repeats; a nonparametric bootstrap around the whole pipeline
gives percentile intervals and the proportion of each group gap that
the mediator accounts for.

Public API:
    .. autosummary::
        decompose_mean
        make_example_data
        stratify
        build_index
        EqualizationIndex
        equalize_once
        counterfactual_means
        aggregate
        get_backend
        set_backend
        OutcomeFamily
        GLMFamily
        EstimatorFamily
        resolve_family
        register_family
        DecompositionEngine
        RunContext
        DecompositionResult
"""

from ._config import get_backend, set_backend
from ._context import RunContext
from ._results import DecompositionResult
from .aggregate import aggregate
from .core import decompose_mean
from .datasets import make_example_data
from .engine import DecompositionEngine
from .equalize import EqualizationIndex, build_index, counterfactual_means, equalize_once
from .exceptions import (
    CfdecompError,
    ConfigurationError,
    DegenerateMediationError,
    ModelFitError,
    NoReferenceDonorsError,
)
from .families import (
    EstimatorFamily,
    GLMFamily,
    OutcomeFamily,
    register_family,
    resolve_family,
)
from .stratify import stratify

__all__ = [
    "DecompositionResult",
    "RunContext",
    "decompose_mean",
    "make_example_data",
    "stratify",
    "build_index",
    "EqualizationIndex",
    "equalize_once",
    "counterfactual_means",
    "aggregate",
    "get_backend",
    "set_backend",
    "OutcomeFamily",
    "GLMFamily",
    "EstimatorFamily",
    "resolve_family",
    "register_family",
    "DecompositionEngine",
    "CfdecompError",
    "ConfigurationError",
    "DegenerateMediationError",
    "ModelFitError",
    "NoReferenceDonorsError",
]

__version__ = "0.1.0"
