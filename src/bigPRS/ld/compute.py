"""
Windowed LD correlation from genotype matrices.

Columns are processed in fixed-size batches; for each batch only the
reference block of neighboring columns within the LD window is loaded and
correlated, so memory stays bounded by the window size.
"""

import logging

import numba
import numpy as np
import scipy.sparse
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn, TimeElapsedColumn

from ..constants import CHROMOSOME_POSITION_OFFSET
from ..errors import InputError
from ..stats import col_stats

logger = logging.getLogger(__name__)


@numba.njit(cache=True)
def get_block_limits(coords: np.ndarray, window_size: float) -> tuple:
    """
    LD window boundaries for every variant, using a two-pointer scan.

    Parameters
    ----------
    coords : np.ndarray
        Sorted positions, shape (m,)
    window_size : float
        Window size in the unit of `coords`

    Returns
    -------
    left_limits : np.ndarray
        First index within the window of each variant, shape (m,)
    right_limits : np.ndarray
        Exclusive right boundary of each window, shape (m,)

    Examples
    --------
    >>> left, right = get_block_limits(np.array([100., 200., 300., 400., 500.]), 150.)
    >>> print(left, right)
    [0 0 1 2 3] [2 3 4 5 5]
    """
    m = len(coords)
    left_limits = np.zeros(m, dtype=np.int64)
    right_limits = np.zeros(m, dtype=np.int64)

    l_ptr = 0
    r_ptr = 0
    for i in range(m):
        pos = coords[i]
        while l_ptr < m and coords[l_ptr] < pos - window_size:
            l_ptr += 1
        left_limits[i] = l_ptr
        if r_ptr < l_ptr:
            r_ptr = l_ptr
        while r_ptr < m and coords[r_ptr] <= pos + window_size:
            r_ptr += 1
        right_limits[i] = r_ptr

    return left_limits, right_limits


def genome_positions(chromosomes, positions) -> np.ndarray:
    """
    Encode (chromosome, position) pairs on a single increasing axis.

    Chromosomes are separated by `CHROMOSOME_POSITION_OFFSET`, so that a band
    built on the encoded positions never links two chromosomes.
    """
    chromosomes = np.asarray(chromosomes, dtype=np.float64)
    positions = np.asarray(positions, dtype=np.float64)
    if chromosomes.shape != positions.shape:
        raise InputError("Chromosome and position vectors must have the same length")
    if np.any(positions >= CHROMOSOME_POSITION_OFFSET):
        raise InputError("Positions exceed the per-chromosome offset")
    return chromosomes * CHROMOSOME_POSITION_OFFSET + positions


def _standardize(block: np.ndarray, means: np.ndarray, sds: np.ndarray) -> np.ndarray:
    block = (block - means[np.newaxis, :]) / np.where(sds > 0, sds, 1.0)[np.newaxis, :]
    block[:, sds == 0] = 0.0
    return block


def snp_cor(
    X,
    positions,
    size: float,
    ind_row=None,
    ind_col=None,
    thr_r2: float = 0.0,
    batch_size: int = 500,
    show_progress: bool = False,
) -> scipy.sparse.csc_matrix:
    """
    Pearson correlation between columns of `X` within a window.

    Parameters
    ----------
    X : array-like, shape (n, m)
        Genotype matrix (dosages).
    positions : array-like
        Sorted positions of the selected columns (bp, cM or `genome_positions`).
    size : float
        Window size in the unit of `positions`.
    ind_row, ind_col : array-like, optional
        Row and column subsets.
    thr_r2 : float
        Off-diagonal correlations with r² below this value are not stored.
    batch_size : int
        Number of columns correlated at once.

    Returns
    -------
    scipy.sparse.csc_matrix
        Symmetric sparse correlation matrix with a unit diagonal.
    """
    n_total, m_total = X.shape
    ind_row = np.arange(n_total) if ind_row is None else np.asarray(ind_row)
    ind_col = np.arange(m_total) if ind_col is None else np.asarray(ind_col)
    positions = np.asarray(positions, dtype=np.float64)
    m = len(ind_col)
    n = len(ind_row)

    if positions.shape[0] != m:
        raise InputError(f"Got {positions.shape[0]} positions for {m} columns")
    if np.any(np.diff(positions) < 0):
        raise InputError("Positions must be sorted in non-decreasing order")
    if not 0 <= thr_r2 <= 1:
        raise InputError(f"thr_r2 must be in [0, 1], got {thr_r2}")

    stats = col_stats(X, ind_row, ind_col)
    means = stats.sum / n
    sds = np.sqrt(stats.var * (n - 1) / n)
    n_mono = int(np.sum(sds == 0))
    if n_mono > 0:
        logger.warning(f"{n_mono} monomorphic variants get zero correlation with their neighbors")

    _, right = get_block_limits(positions, float(size))

    rows, cols, vals = [], [], []
    with Progress(
        SpinnerColumn(), TextColumn("[progress.description]{task.description}"),
        BarColumn(), TaskProgressColumn(), TimeElapsedColumn(), disable=not show_progress,
    ) as progress:
        task = progress.add_task("[cyan]Correlation", total=m)
        for b0 in range(0, m, batch_size):
            b1 = min(b0 + batch_size, m)
            # Only the upper triangle is computed; it is mirrored at the end
            r1 = int(right[b1 - 1])
            batch = _standardize(
                np.asarray(X[:, ind_col[b0:b1]], dtype=np.float64)[ind_row], means[b0:b1], sds[b0:b1]
            )
            ref = _standardize(
                np.asarray(X[:, ind_col[b0:r1]], dtype=np.float64)[ind_row], means[b0:r1], sds[b0:r1]
            )
            r = batch.T @ ref / n

            local_j = np.arange(b0, b1)[:, np.newaxis]
            ref_i = np.arange(b0, r1)[np.newaxis, :]
            keep = (ref_i > local_j) & (ref_i < right[b0:b1, np.newaxis]) & (r ** 2 >= thr_r2) & (r != 0)
            jj, ii = np.nonzero(keep)
            rows.append(jj + b0)
            cols.append(ii + b0)
            vals.append(r[jj, ii])
            progress.update(task, advance=b1 - b0)

    rows = np.concatenate(rows) if rows else np.array([], dtype=np.int64)
    cols = np.concatenate(cols) if cols else np.array([], dtype=np.int64)
    vals = np.concatenate(vals) if vals else np.array([])

    upper = scipy.sparse.coo_matrix((vals, (rows, cols)), shape=(m, m))
    corr = (upper + upper.T + scipy.sparse.identity(m, format="coo")).tocsc()
    logger.info(f"Computed correlation for {m} variants ({corr.nnz:,} non-zero values)")
    return corr
