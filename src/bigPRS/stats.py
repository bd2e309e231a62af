"""
Narrow matrix collaborators on (possibly memory-mapped) genotype matrices.

These functions only need NumPy array semantics, so they work equally with
in-memory arrays, `np.memmap` objects and the genotype matrix exposed by
`bigPRS.io.PlinkBEDReader`. Columns are processed in chunks so that a
memory-mapped matrix is never fully materialized.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
import pandas as pd
import statsmodels.api as sm

from .errors import InputError

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1000


@dataclass
class ColStats:
    """Per-column sums and (unbiased) variances over a row/column subset."""

    sum: np.ndarray
    var: np.ndarray
    n: int


def _resolve_indices(X, ind_row, ind_col):
    n, m = X.shape
    ind_row = np.arange(n) if ind_row is None else np.asarray(ind_row, dtype=np.int64)
    ind_col = np.arange(m) if ind_col is None else np.asarray(ind_col, dtype=np.int64)
    if ind_row.size and (ind_row.min() < 0 or ind_row.max() >= n):
        raise InputError(f"Row indices out of bounds for a matrix with {n} rows")
    if ind_col.size and (ind_col.min() < 0 or ind_col.max() >= m):
        raise InputError(f"Column indices out of bounds for a matrix with {m} columns")
    return ind_row, ind_col


def _column_chunks(ind_col, chunk_size):
    for start in range(0, len(ind_col), chunk_size):
        yield start, ind_col[start:start + chunk_size]


def _block(X, ind_row, cols):
    return np.asarray(X[:, cols], dtype=np.float64)[ind_row]


def col_stats(X, ind_row=None, ind_col=None, chunk_size: int = DEFAULT_CHUNK_SIZE) -> ColStats:
    """Column sums and variances of `X[ind_row, ind_col]`."""
    ind_row, ind_col = _resolve_indices(X, ind_row, ind_col)
    n = len(ind_row)
    sums = np.zeros(len(ind_col))
    variances = np.zeros(len(ind_col))
    for start, cols in _column_chunks(ind_col, chunk_size):
        block = _block(X, ind_row, cols)
        s = block.sum(axis=0)
        sums[start:start + len(cols)] = s
        if n > 1:
            variances[start:start + len(cols)] = ((block ** 2).sum(axis=0) - s ** 2 / n) / (n - 1)
    return ColStats(sum=sums, var=variances, n=n)


def prod_vec(X, y_col, ind_row=None, ind_col=None, chunk_size: int = DEFAULT_CHUNK_SIZE) -> np.ndarray:
    """Compute `X[ind_row, ind_col] @ y_col`."""
    ind_row, ind_col = _resolve_indices(X, ind_row, ind_col)
    y_col = np.asarray(y_col, dtype=np.float64)
    if y_col.shape[0] != len(ind_col):
        raise InputError(f"Incompatible dimensions: {len(ind_col)} columns vs vector of length {y_col.shape[0]}")
    res = np.zeros(len(ind_row))
    for start, cols in _column_chunks(ind_col, chunk_size):
        res += _block(X, ind_row, cols) @ y_col[start:start + len(cols)]
    return res


def prod_mat(X, W, ind_row=None, ind_col=None, chunk_size: int = DEFAULT_CHUNK_SIZE) -> np.ndarray:
    """Compute `X[ind_row, ind_col] @ W` for a weight matrix `W` (one column per score)."""
    ind_row, ind_col = _resolve_indices(X, ind_row, ind_col)
    W = np.asarray(W, dtype=np.float64)
    if W.ndim == 1:
        W = W[:, np.newaxis]
    if W.shape[0] != len(ind_col):
        raise InputError(f"Incompatible dimensions: {len(ind_col)} columns vs weights with {W.shape[0]} rows")
    res = np.zeros((len(ind_row), W.shape[1]))
    for start, cols in _column_chunks(ind_col, chunk_size):
        block_w = np.nan_to_num(W[start:start + len(cols)])
        res += _block(X, ind_row, cols) @ block_w
    return res


def univariate_regression(
    X,
    y,
    ind_row=None,
    ind_col=None,
    family: str = "linear",
    covar: Optional[np.ndarray] = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> pd.DataFrame:
    """
    Fit one regression per column of `X` (a GWAS).

    Parameters
    ----------
    X : array-like, shape (n, m)
        Genotype matrix.
    y : array-like, shape (len(ind_row),)
        Outcome for the selected rows.
    family : str
        'linear' (closed form) or 'logistic' (statsmodels Logit per column).
    covar : np.ndarray, optional
        Covariates for the selected rows (an intercept is always added).

    Returns
    -------
    pd.DataFrame
        Columns `estim`, `std_err` and `score` (t- or z-score), one row per column.
    """
    ind_row, ind_col = _resolve_indices(X, ind_row, ind_col)
    y = np.asarray(y, dtype=np.float64)
    if y.shape[0] != len(ind_row):
        raise InputError(f"Outcome has {y.shape[0]} values but {len(ind_row)} rows are selected")

    design = np.ones((len(ind_row), 1))
    if covar is not None:
        design = np.column_stack([design, np.asarray(covar, dtype=np.float64)])

    estim = np.full(len(ind_col), np.nan)
    std_err = np.full(len(ind_col), np.nan)

    if family == "linear":
        # Residualize y and every column on the covariates, then use simple regression
        proj = design @ np.linalg.pinv(design)
        y_res = y - proj @ y
        df = len(ind_row) - design.shape[1] - 1
        for start, cols in _column_chunks(ind_col, chunk_size):
            block = _block(X, ind_row, cols)
            block = block - proj @ block
            xx = (block ** 2).sum(axis=0)
            with np.errstate(divide="ignore", invalid="ignore"):
                b = (block.T @ y_res) / xx
                rss = ((y_res[:, np.newaxis] - block * b) ** 2).sum(axis=0)
                se = np.sqrt(rss / df / xx)
            estim[start:start + len(cols)] = b
            std_err[start:start + len(cols)] = se
    elif family == "logistic":
        for k, j in enumerate(ind_col):
            x = np.asarray(X[:, j], dtype=np.float64)[ind_row]
            try:
                fit = sm.Logit(y, np.column_stack([x, design])).fit(disp=0)
            except np.linalg.LinAlgError as e:
                logger.debug(f"Logistic regression failed for column {j}: {e}")
                continue
            estim[k] = fit.params[0]
            std_err[k] = fit.bse[0]
    else:
        raise InputError(f"Unknown family: {family}. Must be 'linear' or 'logistic'")

    return pd.DataFrame({"estim": estim, "std_err": std_err, "score": estim / std_err})
