"""
Greedy LD clumping.

Variants are visited by decreasing priority (a user score, or the minor allele
frequency). Each visited variant that is still available is kept, and every
remaining variant in LD with it (r² above the threshold, within the optional
window) becomes unavailable.
"""

import logging
from typing import Optional

import numba
import numpy as np

from .constants import DEFAULT_CLUMP_THR_R2, DEFAULT_PLOIDY
from .errors import InputError
from .parallel import run_tasks, split_by_chromosome
from .stats import _resolve_indices, col_stats

logger = logging.getLogger(__name__)


@numba.njit(nogil=True, cache=True)
def _clump_kernel(X, ordered, sums, denos, positions, size, thr_r2):
    """
    Greedy clumping of the columns of a dense block.

    Parameters
    ----------
    X : np.ndarray
        Genotypes, shape (n, m)
    ordered : np.ndarray
        Column indices by decreasing priority, shape (m,)
    sums, denos : np.ndarray
        Column sums and centered sums of squares, shape (m,)
    positions : np.ndarray
        Column positions, shape (m,)
    size : float
        Window size (np.inf for no window)
    thr_r2 : float
        Columns with r² above this value with a kept column are removed

    Returns
    -------
    np.ndarray
        Boolean keep mask, shape (m,)
    """
    n, m = X.shape
    keep = np.zeros(m, dtype=np.bool_)
    remain = np.ones(m, dtype=np.bool_)

    for k in range(m):
        j0 = ordered[k]
        if not remain[j0]:
            continue
        keep[j0] = True
        remain[j0] = False
        if denos[j0] == 0:
            continue
        for j in range(m):
            if not remain[j] or denos[j] == 0:
                continue
            if abs(positions[j] - positions[j0]) > size:
                continue
            xy = 0.0
            for i in range(n):
                xy += X[i, j0] * X[i, j]
            num = xy - sums[j0] * sums[j] / n
            if num * num / (denos[j0] * denos[j]) > thr_r2:
                remain[j] = False

    return keep


def local_clump(
    G,
    ind_row=None,
    ind_col=None,
    thr_r2: float = DEFAULT_CLUMP_THR_R2,
    scores: Optional[np.ndarray] = None,
    positions: Optional[np.ndarray] = None,
    size: Optional[float] = None,
    ploidy: int = DEFAULT_PLOIDY,
) -> np.ndarray:
    """
    Clump the columns `ind_col` of `G`.

    Parameters
    ----------
    G : array-like, shape (n, m)
        Genotype matrix.
    ind_row, ind_col : array-like, optional
        Row and column subsets.
    thr_r2 : float
        r² threshold in [0, 1].
    scores : np.ndarray, optional
        Priority of every column of `ind_col` (higher first). Defaults to the MAF.
    positions : np.ndarray, optional
        Positions of the columns of `ind_col`; required when `size` is given.
    size : float, optional
        Only pairs within this distance are compared.
    ploidy : int
        Number of allele copies per genotype.

    Returns
    -------
    np.ndarray
        Boolean mask over `ind_col` of the kept variants.
    """
    if not 0 <= thr_r2 <= 1:
        raise InputError(f"thr_r2 must be in [0, 1], got {thr_r2}")
    ind_row, ind_col = _resolve_indices(G, ind_row, ind_col)
    m = len(ind_col)
    n = len(ind_row)
    if m == 0:
        return np.zeros(0, dtype=bool)

    stats = col_stats(G, ind_row, ind_col)
    denos = (n - 1) * stats.var

    if scores is None:
        af = stats.sum / (ploidy * n)
        scores = np.minimum(af, 1 - af)
    else:
        scores = np.asarray(scores, dtype=np.float64)
        if scores.shape[0] != m:
            raise InputError(f"Got {scores.shape[0]} scores for {m} columns")
    ordered = np.argsort(-scores, kind="stable")

    if size is None:
        positions = np.zeros(m)
        size = np.inf
    else:
        if positions is None:
            raise InputError("positions are required when a window size is given")
        positions = np.asarray(positions, dtype=np.float64)
        if positions.shape[0] != m:
            raise InputError(f"Got {positions.shape[0]} positions for {m} columns")

    X = np.ascontiguousarray(np.asarray(G[:, ind_col], dtype=np.float64)[ind_row])
    keep = _clump_kernel(X, ordered.astype(np.int64), stats.sum, denos, positions, float(size), float(thr_r2))
    logger.debug(f"Clumping kept {int(keep.sum())} of {m} variants")
    return keep


def snp_clumping(
    G,
    infos_chr,
    ind_row=None,
    ind_col=None,
    thr_r2: float = DEFAULT_CLUMP_THR_R2,
    scores: Optional[np.ndarray] = None,
    infos_pos: Optional[np.ndarray] = None,
    size: Optional[float] = None,
    ploidy: int = DEFAULT_PLOIDY,
    n_workers: int = 1,
) -> np.ndarray:
    """
    Genome-wide clumping, one independent task per chromosome.

    `infos_chr`, `scores` and `infos_pos` are aligned with `ind_col`.

    Returns
    -------
    np.ndarray
        Sorted indices (columns of `G`) of the kept variants.
    """
    _, ind_col = _resolve_indices(G, ind_row, ind_col)
    infos_chr = np.asarray(infos_chr)
    if infos_chr.shape[0] != len(ind_col):
        raise InputError(f"Got {infos_chr.shape[0]} chromosomes for {len(ind_col)} columns")

    def clump_one(idx):
        keep = local_clump(
            G, ind_row, ind_col[idx], thr_r2=thr_r2,
            scores=None if scores is None else np.asarray(scores)[idx],
            positions=None if infos_pos is None else np.asarray(infos_pos)[idx],
            size=size, ploidy=ploidy,
        )
        return ind_col[idx][keep]

    kept = run_tasks(clump_one, split_by_chromosome(infos_chr), n_workers=n_workers, description="Clumping")
    kept = np.sort(np.concatenate(kept)) if kept else np.zeros(0, dtype=np.int64)
    logger.info(f"Clumping kept {len(kept):,} of {len(ind_col):,} variants (r² threshold {thr_r2})")
    return kept
