#!/usr/bin/env python
# coding: utf-8


"""
Starting values for the alternating mixture fit.

Two initialisers produce a starting signature matrix Mu0 (CpGs × K):

- **Hierarchical clustering** (default): samples are clustered with
  ``scipy.cluster.hierarchy`` (Ward linkage on Euclidean distance by
  default), the tree is cut into K groups and each column of Mu0 is the mean
  methylation profile of one group. One tree serves every candidate K.
- **SVD**: the leading left singular vectors of the row-centred matrix, each
  rescaled into [0, 1]. One decomposition serves every candidate K by
  slicing its first K columns.

Missing values are mean-imputed per CpG for the purpose of initialisation
only.
"""

from typing import Optional

import numpy as np
from scipy import linalg
from scipy.cluster.hierarchy import cut_tree, linkage

from cellmix.core.errors import InvalidParameter
from cellmix.core.validation import check_clustering_size, check_positive_int
from cellmix.io.data_utils import as_matrix
from cellmix.utils.logger import logger

INIT_METHODS = ("ward", "svd")


def impute_by_mean(Y: np.ndarray) -> np.ndarray:
    """
    Replace missing entries with the mean of their CpG row.

    Rows with no observed value are filled with 0.5.
    """
    Y = np.array(Y, dtype=float, copy=True)
    missing = np.isnan(Y)
    if not missing.any():
        return Y
    counts = (~missing).sum(axis=1)
    means = np.where(counts > 0, np.nansum(Y, axis=1) / np.maximum(counts, 1), 0.5)
    rows, _ = np.nonzero(missing)
    Y[missing] = means[rows]
    logger.debug(f"Mean-imputed {int(missing.sum())} missing value(s)")
    return Y


def build_sample_tree(
    Y,
    method: str = "ward",
    metric: str = "euclidean",
    large_ok: bool = False,
) -> np.ndarray:
    """
    Hierarchically cluster the samples (columns) of ``Y``.

    Parameters
    ----------
    Y : array-like or pd.DataFrame
        Observation matrix (CpGs × samples).
    method : str, default "ward"
        Linkage method passed to ``scipy.cluster.hierarchy.linkage``.
    metric : str, default "euclidean"
        Distance metric between samples.
    large_ok : bool, default False
        Allow clustering of more than 2500 samples.

    Returns
    -------
    np.ndarray
        Linkage matrix.

    Raises
    ------
    InvalidParameter
        For oversized cohorts or a method/metric combination scipy rejects.
    """
    values, _, _ = as_matrix(Y, "Y")
    n_samples = values.shape[1]
    check_clustering_size(n_samples, large_ok=large_ok)
    if n_samples < 2:
        raise InvalidParameter("At least two samples are required for clustering")

    try:
        tree = linkage(impute_by_mean(values).T, method=method, metric=metric)
    except ValueError as e:
        raise InvalidParameter(f"Cannot build {method!r} linkage: {e}")
    return tree


def initialize_clusters(
    Y,
    k: int,
    method: str = "ward",
    metric: str = "euclidean",
    tree: Optional[np.ndarray] = None,
    large_ok: bool = False,
) -> np.ndarray:
    """
    Initial Mu from per-cluster mean methylation profiles.

    Parameters
    ----------
    Y : array-like or pd.DataFrame
        Observation matrix (CpGs × samples).
    k : int
        Number of clusters (components).
    method, metric : str
        Linkage settings used when ``tree`` is not supplied.
    tree : np.ndarray, optional
        Precomputed linkage matrix over the samples of ``Y``.
    large_ok : bool, default False
        Allow clustering of more than 2500 samples.

    Returns
    -------
    np.ndarray
        Initial signature matrix (CpGs × k), entries in [0, 1] for beta input.
    """
    values, _, _ = as_matrix(Y, "Y")
    k = check_positive_int(k, "K")
    n_samples = values.shape[1]
    if k > n_samples:
        raise InvalidParameter(f"K={k} exceeds the number of samples ({n_samples})")
    if k == 1:
        return impute_by_mean(values).mean(axis=1)[:, None]

    if tree is None:
        tree = build_sample_tree(
            values, method=method, metric=metric, large_ok=large_ok
        )

    labels = cut_tree(tree, n_clusters=k).ravel()
    filled = impute_by_mean(values)
    mu0 = np.column_stack([filled[:, labels == c].mean(axis=1) for c in range(k)])
    return mu0


def initialize_svd(Y, k_max: int) -> np.ndarray:
    """
    Initial Mu from leading singular vectors.

    Parameters
    ----------
    Y : array-like or pd.DataFrame
        Observation matrix (CpGs × samples).
    k_max : int
        Number of leading singular vectors to keep.

    Returns
    -------
    np.ndarray
        CpGs × k_max matrix; column ``c`` is the ``c``-th left singular vector
        of the row-centred data, min-max rescaled into [0, 1]. Slicing the
        first K columns gives the starting Mu for component count K.
    """
    values, _, _ = as_matrix(Y, "Y")
    k_max = check_positive_int(k_max, "k_max")
    if k_max > min(values.shape):
        raise InvalidParameter(
            f"k_max={k_max} exceeds the rank bound min{values.shape}"
        )

    filled = impute_by_mean(values)
    centred = filled - filled.mean(axis=1, keepdims=True)
    U, _, _ = linalg.svd(centred, full_matrices=False)
    U = U[:, :k_max]

    lo = U.min(axis=0)
    span = U.max(axis=0) - lo
    safe = np.where(span > 0, span, 1.0)
    scaled = np.where(span > 0, (U - lo) / safe, 0.5)
    return scaled
