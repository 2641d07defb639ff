"""Input compatibility layer.

All internal code operates on ``pandas.DataFrame``.  At the public
boundary this module converts the other accepted dataset shapes:

* ``polars.DataFrame`` / ``polars.LazyFrame`` — via ``.to_pandas()``
  (Polars is optional; if it is not installed those types are simply
  never seen).
* A sequence of record mappings (``[{"y": 1.0, "g": "A"}, ...]``) —
  every record must share the same keys.

The returned frame is always a fresh copy, so nothing downstream can
mutate the caller's data.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any, TypeAlias

import pandas as pd

from .exceptions import ConfigurationError

if TYPE_CHECKING:
    import polars as pl

    DataFrameLike: TypeAlias = (
        pd.DataFrame | pl.DataFrame | pl.LazyFrame | Sequence[Mapping[str, Any]]
    )
else:
    DataFrameLike: TypeAlias = pd.DataFrame

# Runtime detection; Polars is optional.
try:
    import polars as pl

    _HAS_POLARS = True
except ImportError:
    _HAS_POLARS = False


def _records_to_frame(records: Sequence[Mapping[str, Any]], name: str) -> pd.DataFrame:
    """Build a frame from record mappings, enforcing a shared schema."""
    if len(records) == 0:
        raise ConfigurationError(f"'{name}' contains no records.")
    for i, record in enumerate(records):
        if not isinstance(record, Mapping):
            raise ConfigurationError(
                f"'{name}' record {i} is a {type(record).__name__}, not a mapping."
            )
    schema = list(records[0].keys())
    for i, record in enumerate(records):
        if set(record.keys()) != set(schema):
            raise ConfigurationError(
                f"'{name}' record {i} does not share the schema of record 0 "
                f"(expected keys {sorted(schema)})."
            )
    return pd.DataFrame.from_records(list(records), columns=schema)


def _ensure_pandas_df(obj: DataFrameLike, *, name: str = "data") -> pd.DataFrame:
    """Convert *obj* to a fresh :class:`pandas.DataFrame`.

    Accepted types:
        * ``pandas.DataFrame`` — copied.
        * ``polars.DataFrame`` — converted via ``.to_pandas()``.
        * ``polars.LazyFrame`` — collected then converted.
        * a non-string sequence of mappings — one record per row.

    Args:
        obj: The dataset.
        name: Label used in error messages.

    Returns:
        A pandas ``DataFrame`` with a fresh ``RangeIndex``.

    Raises:
        ConfigurationError: If *obj* is not a recognised dataset type.
    """
    if isinstance(obj, pd.DataFrame):
        return obj.reset_index(drop=True).copy()

    if _HAS_POLARS:
        if isinstance(obj, pl.LazyFrame):
            return obj.collect().to_pandas()
        if isinstance(obj, pl.DataFrame):
            return obj.to_pandas()

    if isinstance(obj, Sequence) and not isinstance(obj, (str, bytes)):
        return _records_to_frame(obj, name)

    raise ConfigurationError(
        f"'{name}' must be a pandas DataFrame"
        + (", a Polars DataFrame/LazyFrame" if _HAS_POLARS else "")
        + f" or a sequence of record mappings, got {type(obj).__name__}."
    )
