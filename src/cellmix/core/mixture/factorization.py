#!/usr/bin/env python
# coding: utf-8


"""
Reference-free cell-mixture factorisation of DNA methylation data.

A bulk beta-value matrix ``Y`` (CpGs × samples) is modelled as
``Y ≈ Mu · Omegaᵀ`` where

- ``Omega`` (samples × K) holds the proportion of each latent cell type in
  each sample (rows on the probability simplex), and
- ``Mu`` (CpGs × K) holds the methylation level of each latent cell type at
  each CpG (entries in [0, 1]).

No reference profiles are needed. The fit alternates two constrained
least-squares half-steps (see :mod:`cellmix.core.mixture.solvers`) for a
fixed number of rounds, starting from a signature estimate obtained by
hierarchical clustering, an SVD basis, or a caller-supplied matrix.

Features
--------
- :func:`fit` for a single component count K, with optional projection of \
the final signatures onto a larger CpG set (``y_final``)
- :func:`fit_array` for a range of candidate K sharing one initialiser \
(one clustering tree or one SVD basis), serial or parallel over K
- :class:`CellMixModel` container with labelled DataFrame views, \
reconstruction, a per-component summary and the per-iteration history of \
signature changes
- Optional early stop on a signature-change tolerance (off by default so the \
iteration budget is exactly ``max_iterations``)
"""


from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Union

import joblib
import numpy as np
import pandas as pd

from cellmix.core.errors import InvalidParameter, ShapeMismatch
from cellmix.core.mixture.initialization import (
    INIT_METHODS,
    build_sample_tree,
    initialize_clusters,
    initialize_svd,
)
from cellmix.core.mixture.solvers import update_mu, update_omega
from cellmix.core.validation import check_ks, check_n_jobs, check_positive_int
from cellmix.io.data_utils import as_matrix, to_frame
from cellmix.utils.logger import logger


def _component_labels(k: int) -> List[str]:
    return [f"component_{c + 1}" for c in range(k)]


def _change_summary(delta: np.ndarray) -> Dict[str, float]:
    """Five-number summary plus mean of the absolute change in Mu."""
    a = np.abs(delta[np.isfinite(delta)])
    if a.size == 0:
        return {s: np.nan for s in ("min", "q1", "median", "mean", "q3", "max")}
    q1, med, q3 = np.quantile(a, [0.25, 0.5, 0.75])
    return {
        "min": float(a.min()),
        "q1": float(q1),
        "median": float(med),
        "mean": float(a.mean()),
        "q3": float(q3),
        "max": float(a.max()),
    }


@dataclass
class CellMixModel:
    """
    Fitted reference-free mixture for one component count K.

    Unpacks as ``omega, mu = model``.

    Parameters
    ----------
    omega : np.ndarray
        Mixing matrix (samples × K); rows are non-negative and sum to one.
    mu : np.ndarray
        Signature matrix (CpGs × K); entries lie in [0, 1].
    sample_labels, feature_labels : list of str, optional
        Sample (Omega rows) and CpG (Mu rows) identifiers.
    iterations : int, default 0
        Number of alternating rounds actually run.
    change_history : list of dict
        Per-round summary of ``|Mu_new − Mu_old|``.
    """

    omega: np.ndarray
    mu: np.ndarray
    sample_labels: Optional[List[str]] = None
    feature_labels: Optional[List[str]] = None
    iterations: int = 0
    change_history: List[Dict[str, float]] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.omega = np.asarray(self.omega, dtype=float)
        self.mu = np.asarray(self.mu, dtype=float)
        if self.omega.ndim != 2 or self.mu.ndim != 2:
            raise ShapeMismatch("Omega and Mu must both be two-dimensional")
        if self.omega.shape[1] != self.mu.shape[1]:
            raise ShapeMismatch(
                f"Omega has {self.omega.shape[1]} components but Mu has "
                f"{self.mu.shape[1]}"
            )

    def __iter__(self):
        yield self.omega
        yield self.mu

    @property
    def k(self) -> int:
        return self.omega.shape[1]

    @property
    def component_labels(self) -> List[str]:
        return _component_labels(self.k)

    def omega_frame(self) -> pd.DataFrame:
        """Mixing proportions as a samples × components DataFrame."""
        return to_frame(self.omega, self.sample_labels, self.component_labels)

    def mu_frame(self) -> pd.DataFrame:
        """Component signatures as a CpGs × components DataFrame."""
        return to_frame(self.mu, self.feature_labels, self.component_labels)

    def reconstruct(self) -> np.ndarray:
        """Fitted beta values ``Mu · Omegaᵀ`` (CpGs × samples)."""
        return self.mu @ self.omega.T

    def change_frame(self) -> pd.DataFrame:
        """Per-round signature change summary, one row per iteration."""
        df = pd.DataFrame(self.change_history)
        df.index = pd.RangeIndex(1, len(df) + 1, name="iteration")
        return df

    def summary(self) -> pd.DataFrame:
        """
        Per-component overview.

        Returns
        -------
        pd.DataFrame
            Indexed by component with columns ``mean_proportion``,
            ``min_proportion``, ``max_proportion`` and ``mean_methylation``.
        """
        return pd.DataFrame(
            {
                "mean_proportion": self.omega.mean(axis=0),
                "min_proportion": self.omega.min(axis=0),
                "max_proportion": self.omega.max(axis=0),
                "mean_methylation": np.nanmean(self.mu, axis=0),
            },
            index=pd.Index(self.component_labels, name="component"),
        )

    def with_mu(
        self, mu: np.ndarray, feature_labels: Optional[List[str]] = None
    ) -> "CellMixModel":
        """Copy of the model with Omega kept and Mu replaced."""
        return CellMixModel(
            omega=self.omega.copy(),
            mu=mu,
            sample_labels=self.sample_labels,
            feature_labels=feature_labels,
            iterations=self.iterations,
            change_history=list(self.change_history),
        )

    def __repr__(self) -> str:
        return (
            f"CellMixModel(K={self.k}, samples={self.omega.shape[0]}, "
            f"features={self.mu.shape[0]}, iterations={self.iterations})"
        )


def _simplex_rows(F: np.ndarray) -> np.ndarray:
    """Clip negatives and rescale rows to sum to one; empty rows become uniform."""
    F = np.clip(np.nan_to_num(F, nan=0.0), 0.0, None)
    totals = F.sum(axis=1, keepdims=True)
    uniform = np.full_like(F, 1.0 / F.shape[1])
    return np.where(totals > 0, F / np.where(totals > 0, totals, 1.0), uniform)


def _resolve_side(F: np.ndarray, n_features: int, n_samples: int, side: str) -> str:
    if side not in ("auto", "mu", "omega"):
        raise InvalidParameter(
            f"initial_side must be 'auto', 'mu' or 'omega', got {side!r}"
        )
    if side == "auto":
        if F.shape[0] == n_features:
            return "mu"
        if F.shape[0] == n_samples:
            return "omega"
        raise ShapeMismatch(
            f"initial factor has {F.shape[0]} rows; expected {n_features} "
            f"(CpGs) or {n_samples} (samples)"
        )
    expected = n_features if side == "mu" else n_samples
    if F.shape[0] != expected:
        raise ShapeMismatch(
            f"initial {side} factor has {F.shape[0]} rows, expected {expected}"
        )
    return side


def fit(
    Y,
    k: int,
    initial_factor=None,
    max_iterations: int = 10,
    initial_side: str = "auto",
    init: str = "ward",
    y_final=None,
    tol: Optional[float] = None,
    n_jobs: int = 1,
) -> CellMixModel:
    """
    Fit a reference-free cell mixture with K components.

    Each round fixes Mu and refits every sample's proportions on the simplex,
    then fixes Omega and refits every CpG's signature inside [0, 1].

    Parameters
    ----------
    Y : np.ndarray or pd.DataFrame
        Beta-value matrix (CpGs × samples). NaN entries are skipped.
    k : int
        Number of latent components.
    initial_factor : array-like, optional
        Starting Mu (CpGs × ≥K) or starting Omega (samples × ≥K); only the
        first K columns are used. When ``None`` the ``init`` method is used.
    max_iterations : int, default 10
        Number of alternating rounds.
    initial_side : {"auto", "mu", "omega"}, default "auto"
        Which factor ``initial_factor`` represents. ``"auto"`` matches its row
        count against the CpG count first, then the sample count.
    init : {"ward", "svd"}, default "ward"
        Initialiser used when ``initial_factor`` is ``None``.
    y_final : np.ndarray or pd.DataFrame, optional
        Larger matrix over the same samples; when given, the returned Mu is
        the projection of the final Omega onto it.
    tol : float, optional
        Stop early once the largest absolute change of Mu in a round falls
        below ``tol``. ``None`` always runs ``max_iterations`` rounds.
    n_jobs : int, default 1
        joblib workers for the per-row solves.

    Returns
    -------
    CellMixModel
        Fitted model; unpacks as ``omega, mu``.

    Raises
    ------
    InvalidParameter
        For non-positive K or iteration count, or an unknown option.
    ShapeMismatch
        If ``initial_factor`` has too few columns or rows that match neither
        axis of ``Y``, or ``y_final`` has different samples.
    """
    values, rows, cols = as_matrix(Y, "Y")
    k = check_positive_int(k, "K")
    max_iterations = check_positive_int(max_iterations, "max_iterations")
    n_jobs = check_n_jobs(n_jobs)
    n_features, n_samples = values.shape

    final = None
    if y_final is not None:
        final, final_rows, _ = as_matrix(y_final, "Y_final")
        if final.shape[1] != n_samples:
            raise ShapeMismatch(
                f"Y_final has {final.shape[1]} samples (columns) but Y has "
                f"{n_samples}"
            )

    F = side = None
    if initial_factor is not None:
        F, _, _ = as_matrix(initial_factor, "initial_factor")
        if F.shape[1] < k:
            raise ShapeMismatch(
                f"initial_factor has {F.shape[1]} columns, fewer than K={k}"
            )
        F = F[:, :k]
        side = _resolve_side(F, n_features, n_samples, initial_side)
    elif init not in INIT_METHODS:
        raise InvalidParameter(f"init must be one of {INIT_METHODS}, got {init!r}")

    if k == 1:
        # single component: every sample is pure
        omega = np.ones((n_samples, 1))
        target = values if final is None else final
        model = CellMixModel(
            omega=omega,
            mu=update_mu(target, omega, n_jobs=n_jobs),
            sample_labels=cols,
            feature_labels=rows if final is None else final_rows,
        )
        logger.debug("K=1: Omega fixed at ones, Mu set to CpG means")
        return model

    if F is None:
        if init == "ward":
            mu = initialize_clusters(values, k)
        else:
            mu = initialize_svd(values, k)
    elif side == "omega":
        mu = update_mu(values, _simplex_rows(F), n_jobs=n_jobs)
    else:
        mu = F.copy()

    history = []
    omega = None
    for it in range(max_iterations):
        omega = update_omega(values, mu, n_jobs=n_jobs)
        mu_new = update_mu(values, omega, n_jobs=n_jobs)
        history.append(_change_summary(mu_new - mu))
        mu = mu_new
        logger.debug(
            f"K={k} iteration {it + 1}: max |dMu| = {history[-1]['max']:.3g}"
        )
        if tol is not None and history[-1]["max"] < tol:
            logger.debug(f"K={k} converged after {it + 1} iteration(s)")
            break

    feature_labels = rows
    if final is not None:
        mu = update_mu(final, omega, n_jobs=n_jobs)
        feature_labels = final_rows

    return CellMixModel(
        omega=omega,
        mu=mu,
        sample_labels=cols,
        feature_labels=feature_labels,
        iterations=len(history),
        change_history=history,
    )


def fit_array(
    Y,
    ks: Union[int, Iterable[int]] = range(1, 6),
    initial_factor_full=None,
    max_iterations: int = 10,
    initial_side: str = "auto",
    init: str = "ward",
    y_final=None,
    tol: Optional[float] = None,
    n_jobs: int = 1,
    metric: str = "euclidean",
    large_ok: bool = False,
) -> Dict[int, CellMixModel]:
    """
    Fit one mixture model per candidate component count.

    Parameters
    ----------
    Y : np.ndarray or pd.DataFrame
        Beta-value matrix (CpGs × samples).
    ks : int or iterable of int, default ``range(1, 6)``
        Candidate component counts.
    initial_factor_full : array-like, optional
        Shared starting factor with at least ``max(ks)`` columns, sliced to
        its first K columns for each fit. When ``None``, ``init`` builds one
        shared initialiser (a single clustering tree cut at every K, or a
        single SVD basis sliced at every K).
    max_iterations : int, default 10
        Alternating rounds per fit.
    initial_side, init, y_final, tol
        As in :func:`fit`.
    n_jobs : int, default 1
        joblib workers; fits for different K run in parallel.
    metric : str, default "euclidean"
        Sample distance used by the clustering initialiser.
    large_ok : bool, default False
        Allow clustering-based initialisation on more than 2500 samples.

    Returns
    -------
    dict
        Mapping ``K -> CellMixModel`` in ascending K order.

    Raises
    ------
    ShapeMismatch
        If ``initial_factor_full`` has fewer than ``max(ks)`` columns.
    InvalidParameter
        For invalid K values, counts or options.
    """
    values, rows, cols = as_matrix(Y, "Y")
    ks = check_ks(ks)
    max_iterations = check_positive_int(max_iterations, "max_iterations")
    n_jobs = check_n_jobs(n_jobs)
    k_max = max(ks)

    starts: Dict[int, Optional[np.ndarray]] = {}
    if initial_factor_full is not None:
        F, _, _ = as_matrix(initial_factor_full, "initial_factor_full")
        if F.shape[1] < k_max:
            raise ShapeMismatch(
                f"initial_factor_full has {F.shape[1]} columns, fewer than "
                f"max(Ks)={k_max}"
            )
        starts = {k: F[:, :k] for k in ks}
    elif init == "ward":
        tree = None
        if k_max > 1:
            tree = build_sample_tree(values, metric=metric, large_ok=large_ok)
        starts = {
            k: None if k == 1 else initialize_clusters(values, k, tree=tree)
            for k in ks
        }
        initial_side = "mu"
    elif init == "svd":
        basis = initialize_svd(values, k_max)
        starts = {k: basis[:, :k] for k in ks}
        initial_side = "mu"
    else:
        raise InvalidParameter(f"init must be one of {INIT_METHODS}, got {init!r}")

    def _fit_one(k, inner_jobs):
        model = fit(
            Y,
            k,
            initial_factor=starts[k],
            max_iterations=max_iterations,
            initial_side=initial_side,
            init=init,
            y_final=y_final,
            tol=tol,
            n_jobs=inner_jobs,
        )
        return k, model

    logger.info(
        f"Fitting reference-free mixtures for K in {list(ks)} on "
        f"{values.shape[0]} CpGs x {values.shape[1]} samples"
    )
    if n_jobs == 1 or len(ks) == 1:
        results = []
        logger.progress("Fitting candidate K", total=len(ks))
        for k in ks:
            results.append(_fit_one(k, n_jobs))
            logger.progress_update(1)
        logger.progress_close()
    else:
        with joblib.Parallel(n_jobs=n_jobs) as par:
            results = par(joblib.delayed(_fit_one)(k, 1) for k in ks)

    models = dict(sorted(results, key=lambda kv: kv[0]))
    logger.info(f"Fitted {len(models)} candidate model(s)")
    return models
