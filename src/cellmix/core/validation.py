#!/usr/bin/env python
# coding: utf-8


"""
Input validation for the reference-free cell-mixture core.

These checks run before any numerical work so that bad counts, malformed
candidate-K lists and misaligned matrices fail immediately with a clear
message instead of surfacing as an obscure broadcasting error deep inside a
solver loop.

Features
--------
- Positive-integer checks for K, bootstrap replicate counts and iteration \
budgets
- Normalisation of candidate-K collections (ranges, lists, scalars) to a \
sorted, duplicate-free tuple
- Trimming-fraction bounds for the robust deviance summary
- Sample-axis alignment between an observation matrix and a mixing matrix
- Guard against hierarchical clustering of very large cohorts
"""

from __future__ import annotations

import numbers
from typing import Iterable, Tuple, Union

import numpy as np

from cellmix.core.errors import InvalidParameter, ShapeMismatch
from cellmix.utils.logger import logger

# Sample count above which clustering-based initialisation must be opted into
LARGE_COHORT = 2500


def check_positive_int(value, name: str) -> int:
    """
    Validate that ``value`` is a positive integer and return it as ``int``.

    Raises
    ------
    InvalidParameter
        If ``value`` is not an integer (bools excluded) or is below 1.
    """
    if isinstance(value, bool) or not isinstance(value, numbers.Integral):
        raise InvalidParameter(f"{name} must be a positive integer, got {value!r}")
    if value < 1:
        raise InvalidParameter(f"{name} must be a positive integer, got {value}")
    return int(value)


def check_ks(ks: Union[int, Iterable[int]]) -> Tuple[int, ...]:
    """
    Normalise a collection of candidate component counts.

    Parameters
    ----------
    ks : int or iterable of int
        Candidate K values, e.g. ``range(1, 6)`` or ``[2, 3, 4]``.

    Returns
    -------
    tuple of int
        Sorted, de-duplicated K values.

    Raises
    ------
    InvalidParameter
        If the collection is empty or holds a non-positive value.
    """
    if isinstance(ks, numbers.Integral) and not isinstance(ks, bool):
        ks = [ks]
    ks = [check_positive_int(k, "K") for k in ks]
    if not ks:
        raise InvalidParameter("At least one candidate K is required")
    unique = tuple(sorted(set(ks)))
    if len(unique) != len(ks):
        logger.warning(f"Duplicate candidate K values dropped: {ks} -> {unique}")
    return unique


def check_trim_fraction(trim_fraction: float) -> float:
    """
    Validate a symmetric trimming fraction (share cut from each tail).

    Raises
    ------
    InvalidParameter
        Unless ``0 <= trim_fraction < 0.5``.
    """
    try:
        value = float(trim_fraction)
    except (TypeError, ValueError):
        raise InvalidParameter(
            f"trim_fraction must be a number, got {trim_fraction!r}"
        )
    if not (0.0 <= value < 0.5):
        raise InvalidParameter(
            f"trim_fraction must satisfy 0 <= trim_fraction < 0.5, got {value}"
        )
    return value


def check_sample_alignment(
    Y: np.ndarray, omega: np.ndarray, y_name: str = "Y"
) -> None:
    """
    Check that the columns of ``Y`` line up with the rows of ``omega``.

    Raises
    ------
    ShapeMismatch
        If the sample counts differ. Inputs are never truncated or padded.
    """
    if Y.shape[1] != omega.shape[0]:
        raise ShapeMismatch(
            f"{y_name} has {Y.shape[1]} samples (columns) but Omega has "
            f"{omega.shape[0]} rows"
        )


def check_clustering_size(n_samples: int, large_ok: bool = False) -> None:
    """
    Refuse to build an all-pairs sample distance matrix for huge cohorts.

    Raises
    ------
    InvalidParameter
        If ``n_samples`` exceeds :data:`LARGE_COHORT` and ``large_ok`` is False.
    """
    if n_samples > LARGE_COHORT and not large_ok:
        raise InvalidParameter(
            f"Y has {n_samples} samples; clustering-based initialisation builds "
            f"an {n_samples} x {n_samples} distance matrix. "
            "Pass large_ok=True if this is intended."
        )


def check_n_jobs(n_jobs) -> int:
    """
    Validate a joblib worker count: a positive integer, or ``-1`` for all
    cores.

    Raises
    ------
    InvalidParameter
        For zero, booleans, non-integers or negatives other than ``-1``.
    """
    if isinstance(n_jobs, numbers.Integral) and not isinstance(n_jobs, bool):
        if n_jobs == -1:
            return -1
    return check_positive_int(n_jobs, "n_jobs")
