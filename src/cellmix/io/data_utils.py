#!/usr/bin/env python
# coding: utf-8


"""
Matrix coercion helpers shared by the cellmix core.

The numerical kernels work on plain ``float64`` arrays, while users usually
hold beta-value matrices as DataFrames (CpGs × samples). The helpers here
convert between the two and keep the row/column labels so fitted factors can
be returned as labelled tables.

Key Components
--------------
- ``as_matrix(obj, name)``
    Convert an array-like or DataFrame to a 2-D float array, returning the
    string labels of rows and columns when available.
- ``_ensure_index_strings(df)``
    Copy a DataFrame with its index coerced to ``str``.
- ``to_frame(values, index, columns)``
    Wrap an array back into a DataFrame, using positional labels where none
    were supplied.
"""

from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from cellmix.core.errors import ShapeMismatch


def _ensure_index_strings(df: pd.DataFrame) -> pd.DataFrame:
    """
    Return a copy of the DataFrame with its index converted to string type.

    Columns are left untouched.

    Parameters
    ----------
    df : pd.DataFrame or None
        Input DataFrame (or ``None``).

    Returns
    -------
    pd.DataFrame or None
        New DataFrame with string index, or ``None`` if the input was ``None``.
    """
    if df is None:
        return df
    df = df.copy()
    df.index = df.index.astype(str)
    return df


def as_matrix(
    obj, name: str = "matrix"
) -> Tuple[np.ndarray, Optional[List[str]], Optional[List[str]]]:
    """
    Coerce an input to a 2-D ``float64`` array.

    Parameters
    ----------
    obj : array-like or pd.DataFrame
        Input matrix. DataFrames contribute their index and columns as labels.
    name : str, default "matrix"
        Name used in error messages.

    Returns
    -------
    tuple
        ``(values, row_labels, column_labels)``; labels are ``None`` for
        non-DataFrame input.

    Raises
    ------
    ShapeMismatch
        If the input is not two-dimensional or is empty.
    """
    if obj is None:
        raise ShapeMismatch(f"{name} must not be None")

    rows = cols = None
    if isinstance(obj, pd.DataFrame):
        rows = [str(i) for i in obj.index]
        cols = [str(c) for c in obj.columns]
        values = obj.to_numpy(dtype=float)
    else:
        values = np.asarray(obj, dtype=float)

    if values.ndim != 2:
        raise ShapeMismatch(
            f"{name} must be two-dimensional, got {values.ndim} dimension(s)"
        )
    if values.shape[0] == 0 or values.shape[1] == 0:
        raise ShapeMismatch(f"{name} is empty (shape {values.shape})")
    return values, rows, cols


def to_frame(
    values: np.ndarray,
    index: Optional[Sequence[str]] = None,
    columns: Optional[Sequence[str]] = None,
) -> pd.DataFrame:
    """
    Wrap a 2-D array in a DataFrame, falling back to positional labels.

    Parameters
    ----------
    values : np.ndarray
        Matrix to wrap.
    index, columns : sequence of str, optional
        Row and column labels; ``None`` keeps the default RangeIndex.

    Returns
    -------
    pd.DataFrame
    """
    df = pd.DataFrame(values, index=index, columns=columns)
    if index is not None:
        df = _ensure_index_strings(df)
    return df
