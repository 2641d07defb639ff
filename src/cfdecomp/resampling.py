"""Random index generation for the bootstrap and the mediator draws.

Two kinds of index arrays drive the whole estimator:

1. **Bootstrap indices** — ``n`` record positions drawn uniformly with
   replacement from ``[0, n)``.  One array per bootstrap iteration.

2. **Donor indices** — for one stratum, ``len(other)`` positions drawn
   with replacement from that stratum's reference-group positions.
   One array per stratum per Monte Carlo repeat.

Random streams
--------------
Every bootstrap iteration owns an independent ``numpy.random.Generator``
spawned from a single :class:`numpy.random.SeedSequence`.  The
iteration draws its resample first and then all of its Monte Carlo
donor draws from that one generator, in a fixed order.  Consequently:

* the run is reproducible from one caller-supplied seed;
* iteration ``i`` sees the same draws whether the loop runs
  sequentially or on parallel workers, and whatever the completion
  order;
* no draw is shared between iterations.
"""

from __future__ import annotations

import numpy as np


def spawn_generators(
    random_state: int | np.random.SeedSequence | None,
    n_streams: int,
) -> list[np.random.Generator]:
    """Spawn *n_streams* independent generators from one seed.

    Args:
        random_state: Integer seed, an existing ``SeedSequence``, or
            ``None`` for fresh OS entropy.
        n_streams: Number of generators (one per bootstrap iteration).

    Returns:
        List of generators; element ``i`` belongs to iteration ``i``.
    """
    if isinstance(random_state, np.random.SeedSequence):
        root = random_state
    else:
        root = np.random.SeedSequence(random_state)
    return [np.random.default_rng(child) for child in root.spawn(n_streams)]


def bootstrap_indices(n_samples: int, rng: np.random.Generator) -> np.ndarray:
    """Draw one nonparametric bootstrap resample of record positions.

    Args:
        n_samples: Number of records in the original dataset.
        rng: The iteration's generator.

    Returns:
        Integer array of shape ``(n_samples,)`` with values in
        ``[0, n_samples)``, drawn uniformly with replacement.
    """
    return rng.integers(0, n_samples, size=n_samples)


def draw_donors(
    pool: np.ndarray,
    size: int,
    rng: np.random.Generator,
) -> np.ndarray:
    """Draw *size* donor positions with replacement from *pool*.

    Unlike R's ``sample(x, ...)``, a pool of length one is sampled as
    a one-element set rather than reinterpreted as ``1:x``.

    Args:
        pool: Candidate positions (reference-group records of a
            stratum).  Must be non-empty when *size* > 0.
        size: Number of draws.
        rng: The iteration's generator.

    Returns:
        Integer array of shape ``(size,)``.

    Raises:
        ValueError: If *pool* is empty and *size* is positive.
    """
    if size == 0:
        return np.empty(0, dtype=np.intp)
    if len(pool) == 0:
        raise ValueError("cannot draw donors from an empty pool")
    return pool[rng.integers(0, len(pool), size=size)]
