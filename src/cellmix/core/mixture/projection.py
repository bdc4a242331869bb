#!/usr/bin/env python
# coding: utf-8


"""
Projection of a fitted mixing matrix onto a new CpG set.

Reference-free deconvolution is usually fitted on a few thousand highly
variable CpGs. Once the mixing matrix Omega is known, component signatures
for any other CpGs measured on the same samples (typically the full array)
follow from the same bounded regression used in the Mu half-step.
"""

from typing import Optional

import pandas as pd

from cellmix.core.errors import ShapeMismatch
from cellmix.core.mixture.solvers import update_mu
from cellmix.core.validation import check_n_jobs, check_sample_alignment
from cellmix.io.data_utils import as_matrix, to_frame
from cellmix.utils.logger import logger


def project(
    y_full,
    omega,
    n_jobs: int = 1,
    component_labels: Optional[list] = None,
):
    """
    Estimate the signature matrix of ``y_full`` given a fixed mixing matrix.

    Every CpG row of ``y_full`` is solved independently as
    ``min ‖Omega·μ − y_i‖²`` with ``0 ≤ μ ≤ 1``.

    Parameters
    ----------
    y_full : np.ndarray or pd.DataFrame
        Observation matrix (features′ × samples). The feature set may differ
        from the one Omega was fitted on; samples must match Omega's rows in
        number and order.
    omega : np.ndarray or pd.DataFrame
        Mixing matrix (samples × K).
    n_jobs : int, default 1
        Number of joblib workers.
    component_labels : list, optional
        Column labels for a DataFrame result.

    Returns
    -------
    np.ndarray or pd.DataFrame
        Signature matrix (features′ × K). A DataFrame indexed by the CpG
        labels of ``y_full`` is returned when ``y_full`` is a DataFrame.

    Raises
    ------
    ShapeMismatch
        If ``y_full`` and ``omega`` disagree on the number of samples, or
        both are labelled and their sample labels differ in content or order.
    """
    Y, rows, y_cols = as_matrix(y_full, "Y_full")
    W, w_rows, w_cols = as_matrix(omega, "Omega")
    check_sample_alignment(Y, W, "Y_full")
    if y_cols is not None and w_rows is not None and y_cols != w_rows:
        raise ShapeMismatch(
            "Y_full columns and Omega rows carry different sample labels or order"
        )
    n_jobs = check_n_jobs(n_jobs)

    logger.info(f"Projecting Omega (K={W.shape[1]}) onto {Y.shape[0]} CpGs")
    mu = update_mu(Y, W, n_jobs=n_jobs)

    if isinstance(y_full, pd.DataFrame):
        labels = component_labels or w_cols or [
            f"component_{c + 1}" for c in range(W.shape[1])
        ]
        return to_frame(mu, rows, labels)
    return mu
