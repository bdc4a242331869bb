#!/usr/bin/env python
# coding: utf-8


"""
Choice of the number of latent cell types from a bootstrap deviance table.

The original-fit row (replicate 0) is reported but not used; the bootstrap
rows are summarised per K by a symmetric trimmed mean
(``scipy.stats.trim_mean``), and the K with the smallest value wins. Ties go
to the smaller K.
"""

from typing import Optional, Sequence

import numpy as np
import pandas as pd
from scipy import stats

from cellmix.core.errors import InvalidParameter, ShapeMismatch
from cellmix.core.validation import check_trim_fraction
from cellmix.utils.logger import logger


def _as_table(table, ks: Optional[Sequence[int]] = None) -> pd.DataFrame:
    if isinstance(table, pd.DataFrame):
        df = table
    else:
        values = np.asarray(table, dtype=float)
        if values.ndim != 2:
            raise ShapeMismatch("Deviance table must be two-dimensional")
        if ks is None:
            raise InvalidParameter(
                "ks is required when the deviance table is not a DataFrame"
            )
        df = pd.DataFrame(values, columns=list(ks))
    if ks is not None and list(df.columns) != list(ks):
        raise ShapeMismatch(
            f"Deviance table columns {list(df.columns)} do not match ks {list(ks)}"
        )
    if df.shape[0] < 2:
        raise ShapeMismatch(
            "Deviance table needs the original row plus at least one replicate"
        )
    if df.shape[1] == 0:
        raise ShapeMismatch("Deviance table has no candidate K columns")
    return df.sort_index(axis=1)


def trimmed_mean_deviance(
    table, trim_fraction: float = 0.25, ks: Optional[Sequence[int]] = None
) -> pd.Series:
    """
    Per-K trimmed mean of the bootstrap deviances (replicate 0 excluded).

    Parameters
    ----------
    table : pd.DataFrame or array-like
        Deviance table, rows = replicates (row 0 = original fit), columns = K.
    trim_fraction : float, default 0.25
        Share of replicates cut from each tail.
    ks : sequence of int, optional
        Column labels; required for array input.

    Returns
    -------
    pd.Series
        Trimmed mean deviance indexed by K.
    """
    trim_fraction = check_trim_fraction(trim_fraction)
    df = _as_table(table, ks)
    boot = df.iloc[1:].to_numpy(dtype=float)
    values = stats.trim_mean(boot, proportiontocut=trim_fraction, axis=0)
    return pd.Series(values, index=df.columns, name="trimmed_mean")


def select_k(
    table, trim_fraction: float = 0.25, ks: Optional[Sequence[int]] = None
) -> int:
    """
    Return the K with the smallest trimmed-mean bootstrap deviance.

    Parameters
    ----------
    table : pd.DataFrame or array-like
        Deviance table from
        :func:`~cellmix.core.mixture.bootstrap.bootstrap_deviance`.
    trim_fraction : float, default 0.25
        Share of replicates cut from each tail before averaging.
    ks : sequence of int, optional
        Column labels; required for array input.

    Returns
    -------
    int
        Selected number of components; the smallest K among ties.

    Raises
    ------
    InvalidParameter
        If every candidate's summary is undefined (NaN).
    """
    scores = trimmed_mean_deviance(table, trim_fraction=trim_fraction, ks=ks)
    finite = scores.to_numpy()
    if not np.any(np.isfinite(finite)):
        raise InvalidParameter("All trimmed mean deviances are undefined")
    best = int(np.argmin(np.where(np.isfinite(finite), finite, np.inf)))
    k = int(scores.index[best])
    logger.info(f"Selected K={k} (trimmed mean deviance {finite[best]:.4g})")
    return k


def summarize_deviance(
    table, trim_fraction: float = 0.25, ks: Optional[Sequence[int]] = None
) -> pd.DataFrame:
    """
    Tabulate the deviance evidence for every candidate K.

    Returns
    -------
    pd.DataFrame
        Indexed by K with columns ``original`` (replicate 0),
        ``trimmed_mean``, ``mean`` and ``sd`` over the bootstrap replicates,
        and a boolean ``selected`` flag.
    """
    df = _as_table(table, ks)
    boot = df.iloc[1:]
    summary = pd.DataFrame(
        {
            "original": df.iloc[0],
            "trimmed_mean": trimmed_mean_deviance(df, trim_fraction),
            "mean": boot.mean(axis=0),
            "sd": boot.std(axis=0, ddof=1),
        }
    )
    summary.index.name = "K"
    summary["selected"] = summary.index == select_k(df, trim_fraction)
    return summary
