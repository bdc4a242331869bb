#!/usr/bin/env python
# coding: utf-8


"""
Bootstrap deviance for choosing the number of latent cell types.

Each candidate model (one per K) is scored on held-out samples. For every
replicate the samples are drawn with replacement; starting from the model's
signatures, Mu and Omega are refitted on the drawn (in-bag) columns. The
samples never drawn (out-of-bag) then get their mixing proportions fitted
against the refitted Mu, and the binomial deviance of those columns is
recorded. A K with too many components spends its extra signatures on the
noise of the in-bag samples, which shows up as a worse out-of-bag fit.

Row 0 of the resulting table holds the deviance of the original fit on the
original samples. Out-of-bag deviances are rescaled to the full sample count
(``deviance × n_samples / n_out_of_bag``) so replicates with different
out-of-bag sizes, and row 0, share one scale.

Features
--------
- Binomial deviance with both observed and fitted values clamped into \
``[epsilon, 1 − epsilon]`` so exact 0/1 beta values never produce infinite \
terms; missing beta values are skipped
- Reproducible resampling: every replicate's sample indices are drawn up \
front from ``numpy.random.default_rng(seed)``, so the table does not depend \
on the number of workers; draws without an out-of-bag sample are redrawn
- Replicates evaluated serially with a progress bar, or in parallel with \
``joblib``
"""

from typing import Dict, List, Optional

import joblib
import numpy as np
import pandas as pd

from cellmix.core.errors import InvalidParameter, ShapeMismatch
from cellmix.core.mixture.solvers import update_mu, update_omega
from cellmix.core.validation import check_n_jobs, check_positive_int
from cellmix.io.data_utils import as_matrix
from cellmix.utils.logger import logger

DEFAULT_EPSILON = 1e-4


def deviance(Y, mu, omega, epsilon: float = DEFAULT_EPSILON) -> float:
    """
    Binomial deviance between beta values and a mixture reconstruction.

    ``2 Σ [y log(y/f) + (1−y) log((1−y)/(1−f))]`` over all observed cells,
    with ``f = Mu · Omegaᵀ``.

    Parameters
    ----------
    Y : array-like
        Beta-value matrix (CpGs × samples); NaN cells are ignored.
    mu : array-like
        Signature matrix (CpGs × K).
    omega : array-like
        Mixing matrix (samples × K).
    epsilon : float, default 1e-4
        Clamping margin applied to observed and fitted values.

    Returns
    -------
    float
        Non-negative lack-of-fit score.
    """
    Y = np.asarray(Y, dtype=float)
    mu = np.asarray(mu, dtype=float)
    omega = np.asarray(omega, dtype=float)
    if mu.shape[0] != Y.shape[0] or omega.shape[0] != Y.shape[1]:
        raise ShapeMismatch(
            f"Cannot compare Y {Y.shape} with Mu {mu.shape} and Omega {omega.shape}"
        )
    if not (0.0 < epsilon < 0.5):
        raise InvalidParameter(f"epsilon must lie in (0, 0.5), got {epsilon}")

    y = np.clip(Y, epsilon, 1.0 - epsilon)
    f = np.clip(mu @ omega.T, epsilon, 1.0 - epsilon)
    terms = y * np.log(y / f) + (1.0 - y) * np.log((1.0 - y) / (1.0 - f))
    return float(2.0 * np.nansum(terms))


def _refit_in_bag(Y: np.ndarray, mu: np.ndarray, iterations: int) -> np.ndarray:
    """Alternate the Omega and Mu half-steps on ``Y`` starting from ``mu``."""
    for _ in range(iterations):
        omega = update_omega(Y, mu)
        mu = update_mu(Y, omega)
    return mu


def _draw_in_bag(rng: np.random.Generator, n_samples: int) -> np.ndarray:
    """Sample indices with replacement, leaving at least one sample out."""
    while True:
        index = rng.integers(0, n_samples, size=n_samples)
        if np.unique(index).size < n_samples:
            return index


def _replicate_row(
    Y: np.ndarray,
    index: Optional[np.ndarray],
    candidates: List,
    refit_iterations: int,
    epsilon: float,
) -> List[float]:
    if index is None:
        return [deviance(Y, mu, omega, epsilon=epsilon) for omega, mu in candidates]

    n_samples = Y.shape[1]
    out_of_bag = np.setdiff1d(np.arange(n_samples), index)
    Y_in, Y_out = Y[:, index], Y[:, out_of_bag]
    scale = n_samples / out_of_bag.size
    row = []
    for _, mu in candidates:
        mu_in = _refit_in_bag(Y_in, mu, refit_iterations)
        omega_out = update_omega(Y_out, mu_in)
        row.append(scale * deviance(Y_out, mu_in, omega_out, epsilon=epsilon))
    return row


def bootstrap_deviance(
    models: Dict[int, object],
    Y,
    replicates: int = 100,
    refit_iterations: int = 5,
    seed: Optional[int] = None,
    epsilon: float = DEFAULT_EPSILON,
    n_jobs: int = 1,
) -> pd.DataFrame:
    """
    Score candidate models by bootstrap deviance.

    Parameters
    ----------
    models : dict
        Mapping ``K -> model`` where each model unpacks as ``(omega, mu)``
        (a :class:`~cellmix.core.mixture.factorization.CellMixModel` or a
        plain tuple). Mu must cover the same CpGs as ``Y``.
    Y : np.ndarray or pd.DataFrame
        Beta-value matrix the models were fitted on (CpGs × samples).
    replicates : int, default 100
        Number of bootstrap resamples R.
    refit_iterations : int, default 5
        Alternating Omega/Mu rounds on the in-bag samples per replicate and
        K, starting from the model's Mu.
    seed : int, optional
        Seed for ``numpy.random.default_rng``.
    epsilon : float, default 1e-4
        Clamping margin for the deviance.
    n_jobs : int, default 1
        joblib workers over replicates.

    Returns
    -------
    pd.DataFrame
        Deviance table of shape ``(R + 1) × len(models)``, indexed by
        ``replicate`` (0 = original fit) with one column per K.

    Raises
    ------
    InvalidParameter
        For empty ``models``, non-positive counts or fewer than two samples.
    ShapeMismatch
        If a model's factors do not match the dimensions of ``Y``.
    """
    values, _, _ = as_matrix(Y, "Y")
    replicates = check_positive_int(replicates, "replicates")
    refit_iterations = check_positive_int(refit_iterations, "refit_iterations")
    n_jobs = check_n_jobs(n_jobs)
    if not models:
        raise InvalidParameter("No candidate models supplied")

    n_features, n_samples = values.shape
    if n_samples < 2:
        raise InvalidParameter("Out-of-bag scoring needs at least two samples")
    ks = sorted(models)
    candidates = []
    for k in ks:
        omega, mu = models[k]
        omega = np.asarray(omega, dtype=float)
        mu = np.asarray(mu, dtype=float)
        if mu.shape[0] != n_features:
            raise ShapeMismatch(
                f"Mu for K={k} has {mu.shape[0]} rows but Y has {n_features} CpGs"
            )
        if omega.shape[0] != n_samples:
            raise ShapeMismatch(
                f"Omega for K={k} has {omega.shape[0]} rows but Y has "
                f"{n_samples} samples"
            )
        candidates.append((omega, mu))

    rng = np.random.default_rng(seed)
    draws = [None] + [_draw_in_bag(rng, n_samples) for _ in range(replicates)]

    logger.info(
        f"Bootstrapping deviance: {replicates} replicate(s) x {len(ks)} model(s)"
    )
    if n_jobs == 1:
        rows = []
        logger.progress("Bootstrap replicates", total=len(draws))
        for index in draws:
            rows.append(
                _replicate_row(values, index, candidates, refit_iterations, epsilon)
            )
            logger.progress_update(1)
        logger.progress_close()
    else:
        with joblib.Parallel(n_jobs=n_jobs) as par:
            rows = par(
                joblib.delayed(_replicate_row)(
                    values, index, candidates, refit_iterations, epsilon
                )
                for index in draws
            )

    table = pd.DataFrame(
        rows,
        index=pd.RangeIndex(len(draws), name="replicate"),
        columns=pd.Index(ks, name="K"),
    )
    return table
