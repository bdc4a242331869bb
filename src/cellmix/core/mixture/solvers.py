#!/usr/bin/env python
# coding: utf-8


"""
Per-row constrained least-squares solvers and the two alternating half-steps.

The reference-free mixture model writes a beta-value matrix as
``Y ≈ Mu · Omegaᵀ``. Holding one factor fixed, the other splits into
independent small quadratic programs, one per row:

- **Omega half-step** (one problem per sample): minimise
  ``‖Mu·ω − y_j‖²`` subject to ``ω ≥ 0`` and ``Σω = 1``.
- **Mu half-step** (one problem per CpG): minimise
  ``‖Omega·μ − y_i‖²`` subject to ``0 ≤ μ ≤ 1``.

The simplex problem is solved as fully constrained least squares: an NNLS
problem (``scipy.optimize.nnls``) augmented with a heavily weighted
sum-to-one row, followed by exact renormalisation. The box problem is solved
with bounded-variable least squares (``scipy.optimize.lsq_linear``), with a
shortcut when the unconstrained solution is already feasible.

Features
--------
- Missing values: each row problem only uses its finite observations
- Degenerate rows (no observations, all-zero design, solver breakdown) \
raise :class:`DegenerateSubproblem`; the half-step drivers replace them with \
the uniform simplex point (Omega) or the zero vector (Mu) and log a warning
- Half-steps are pure functions ``(Y, other_factor) -> new_factor`` that \
allocate a fresh output and never write into their inputs
- Optional row-block parallelism through ``joblib``
"""


from typing import Callable, Tuple

import joblib
import numpy as np
from scipy.optimize import lsq_linear, nnls

from cellmix.core.errors import DegenerateSubproblem
from cellmix.utils.logger import logger

# Weight of the sum-to-one row in the augmented NNLS problem, relative to the
# largest design entry.
SIMPLEX_WEIGHT = 1e3


def _finite_system(A: np.ndarray, b: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Restrict ``A x = b`` to the equations where both sides are finite."""
    keep = np.isfinite(b) & np.all(np.isfinite(A), axis=1)
    if not keep.any():
        raise DegenerateSubproblem("no finite observations")
    return A[keep], b[keep]


def simplex_lstsq(A: np.ndarray, b: np.ndarray) -> np.ndarray:
    """
    Least squares on the probability simplex.

    Parameters
    ----------
    A : np.ndarray
        Design matrix (n_observations × K), typically the current Mu.
    b : np.ndarray
        Observation vector of length n_observations (one sample's column).

    Returns
    -------
    np.ndarray
        Length-K vector, non-negative and summing to one.

    Raises
    ------
    DegenerateSubproblem
        If there are no finite observations, the design is identically zero,
        or NNLS fails to produce a usable point.
    """
    k = A.shape[1]
    if k == 1:
        return np.ones(1)

    A, b = _finite_system(A, b)
    scale = np.abs(A).max()
    if not np.isfinite(scale) or scale == 0:
        raise DegenerateSubproblem("design matrix is identically zero")

    weight = SIMPLEX_WEIGHT * max(scale, 1.0)
    A_aug = np.vstack([A, np.full((1, k), weight)])
    b_aug = np.append(b, weight)

    try:
        w, _ = nnls(A_aug, b_aug)
    except (RuntimeError, ValueError) as e:
        raise DegenerateSubproblem(f"NNLS failed: {e}")

    w = np.clip(w, 0.0, None)
    total = w.sum()
    if not np.isfinite(total) or total <= 0:
        raise DegenerateSubproblem("NNLS returned the zero vector")
    return w / total


def box_lstsq(
    A: np.ndarray, b: np.ndarray, lower: float = 0.0, upper: float = 1.0
) -> np.ndarray:
    """
    Least squares with every coefficient bounded to ``[lower, upper]``.

    Parameters
    ----------
    A : np.ndarray
        Design matrix (n_observations × K), typically the current Omega.
    b : np.ndarray
        Observation vector of length n_observations (one CpG's row).
    lower, upper : float, default 0.0 and 1.0
        Coefficient bounds.

    Returns
    -------
    np.ndarray
        Length-K coefficient vector inside the bounds.

    Raises
    ------
    DegenerateSubproblem
        If there are no finite observations, the design is identically zero,
        or the bounded solver does not converge.
    """
    A, b = _finite_system(A, b)
    k = A.shape[1]

    if not np.any(b):
        return np.clip(np.zeros(k), lower, upper)
    if not np.any(A):
        raise DegenerateSubproblem("design matrix is identically zero")

    # Feasible unconstrained optimum is the constrained optimum
    x, _, rank, _ = np.linalg.lstsq(A, b, rcond=None)
    if rank == k and np.all(x >= lower) and np.all(x <= upper):
        return x

    try:
        res = lsq_linear(A, b, bounds=(lower, upper), method="bvls")
    except (np.linalg.LinAlgError, ValueError) as e:
        raise DegenerateSubproblem(f"bounded least squares failed: {e}")
    if res.status < 0 or not np.all(np.isfinite(res.x)):
        raise DegenerateSubproblem(f"bounded least squares failed: {res.message}")
    return np.clip(res.x, lower, upper)


def _solve_rows(
    solve: Callable[[int], np.ndarray],
    n_rows: int,
    width: int,
    fallback: np.ndarray,
    n_jobs: int,
) -> Tuple[np.ndarray, int]:
    """
    Run ``solve(i)`` for every row index, substituting ``fallback`` on
    :class:`DegenerateSubproblem`. Returns the stacked rows and the number of
    fallbacks used.
    """

    def _block(indices):
        out = np.empty((len(indices), width))
        n_fallback = 0
        for pos, i in enumerate(indices):
            try:
                out[pos] = solve(i)
            except DegenerateSubproblem as e:
                logger.debug(f"Row {i}: {e}; using fallback")
                out[pos] = fallback
                n_fallback += 1
        return out, n_fallback

    if n_jobs == 1 or n_rows < 2:
        return _block(range(n_rows))

    n_blocks = min(n_rows, joblib.effective_n_jobs(n_jobs))
    blocks = np.array_split(np.arange(n_rows), n_blocks)
    with joblib.Parallel(n_jobs=n_jobs) as par:
        parts = par(joblib.delayed(_block)(idx) for idx in blocks)
    values = np.vstack([p[0] for p in parts])
    return values, sum(p[1] for p in parts)


def update_omega(Y: np.ndarray, mu: np.ndarray, n_jobs: int = 1) -> np.ndarray:
    """
    Omega half-step: refit every sample's mixing proportions with Mu fixed.

    Parameters
    ----------
    Y : np.ndarray
        Observation matrix (features × samples).
    mu : np.ndarray
        Signature matrix (features × K). CpG rows of Mu holding NaN are
        excluded from the fit.
    n_jobs : int, default 1
        Number of joblib workers.

    Returns
    -------
    np.ndarray
        New mixing matrix (samples × K); each row lies on the simplex.
    """
    k = mu.shape[1]
    usable = ~np.any(np.isnan(mu), axis=1)
    mu_fit = mu[usable]
    Y_fit = Y[usable]
    uniform = np.full(k, 1.0 / k)

    omega, n_fallback = _solve_rows(
        lambda j: simplex_lstsq(mu_fit, Y_fit[:, j]),
        Y.shape[1],
        k,
        uniform,
        n_jobs,
    )
    if n_fallback:
        logger.warning(
            f"{n_fallback} sample(s) had a degenerate mixing problem; "
            "assigned uniform proportions"
        )
    return omega


def update_mu(
    Y: np.ndarray,
    omega: np.ndarray,
    lower: float = 0.0,
    upper: float = 1.0,
    n_jobs: int = 1,
) -> np.ndarray:
    """
    Mu half-step: refit every CpG's component signature with Omega fixed.

    Parameters
    ----------
    Y : np.ndarray
        Observation matrix (features × samples).
    omega : np.ndarray
        Mixing matrix (samples × K).
    lower, upper : float, default 0.0 and 1.0
        Bounds on signature values.
    n_jobs : int, default 1
        Number of joblib workers.

    Returns
    -------
    np.ndarray
        New signature matrix (features × K) with entries in ``[lower, upper]``.
    """
    k = omega.shape[1]
    mu, n_fallback = _solve_rows(
        lambda i: box_lstsq(omega, Y[i], lower=lower, upper=upper),
        Y.shape[0],
        k,
        np.clip(np.zeros(k), lower, upper),
        n_jobs,
    )
    if n_fallback:
        logger.warning(
            f"{n_fallback} CpG(s) had a degenerate signature problem; "
            "assigned the zero signature"
        )
    return mu
