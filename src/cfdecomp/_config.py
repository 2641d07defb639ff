"""Parallel-backend configuration for the cfdecomp package.

Controls how the bootstrap loop is distributed when ``n_jobs != 1``.
Bootstrap iterations are independent given their own random streams,
so they can run on joblib worker threads or processes, or strictly in
sequence.

Resolution order (first match wins):
    1. Programmatic override via :func:`set_backend`.
    2. The ``CFDECOMP_BACKEND`` environment variable.
    3. Default: ``"threads"``.

Valid backend names are ``"threads"``, ``"processes"`` and
``"sequential"`` (case-insensitive), plus ``"auto"`` to clear an
override.

Examples:
    Force sequential execution from the shell::

        export CFDECOMP_BACKEND=sequential

    Use worker processes programmatically::

        import cfdecomp
        cfdecomp.set_backend("processes")

    Re-enable the default resolution::

        cfdecomp.set_backend("auto")
"""

from __future__ import annotations

import os

_CONCRETE_BACKENDS = ("threads", "processes", "sequential")
_VALID_BACKENDS = {*_CONCRETE_BACKENDS, "auto"}
_DEFAULT_BACKEND = "threads"

# Sentinel indicating "no programmatic override has been set".
_backend_override: str | None = None


def get_backend() -> str:
    """Return the active backend name.

    Resolution order:
        1. Value set by :func:`set_backend` (unless ``"auto"``).
        2. ``CFDECOMP_BACKEND`` environment variable.
        3. ``"threads"``.

    Returns:
        ``"threads"``, ``"processes"`` or ``"sequential"``.
    """
    if _backend_override is not None and _backend_override != "auto":
        return _backend_override

    env = os.environ.get("CFDECOMP_BACKEND", "").strip().lower()
    if env in _CONCRETE_BACKENDS:
        return env

    return _DEFAULT_BACKEND


def set_backend(name: str) -> None:
    """Override the backend selection.

    Args:
        name: One of ``"threads"``, ``"processes"``, ``"sequential"``
            or ``"auto"`` (case-insensitive).  ``"auto"`` restores the
            default resolution order.

    Raises:
        ValueError: If *name* is not a recognised backend.
    """
    global _backend_override
    normalised = name.strip().lower()
    if normalised not in _VALID_BACKENDS:
        raise ValueError(
            f"Unknown backend '{name}'. Choose from: {sorted(_VALID_BACKENDS)}"
        )
    _backend_override = normalised
