"""
LD score regression, used to initialize the heritability of the LDpred2 solvers.

Under the infinitesimal model, `E[chi2_j] = intercept + h2 * N_j * l_j / M`
where `l_j` is the LD score of variant j and M the number of variants. The
intercept is first estimated on variants with `chi2 < chi2_thr1`; h2 is then
estimated with the intercept fixed, on variants with `chi2 < chi2_thr2`.
Both fits use weighted least squares with heteroskedasticity weights, and
standard errors come from a delete-one-block jackknife over contiguous blocks.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Optional, Tuple

import numpy as np

from .constants import DEFAULT_CHI2_THR1, DEFAULT_N_BLOCKS
from .errors import InputError

logger = logging.getLogger(__name__)


@dataclass
class LDSCResult:
    """Intercept and heritability estimates with their jackknife standard errors."""

    intercept: float
    intercept_se: float
    h2: float
    h2_se: float

    def to_dict(self) -> dict:
        return asdict(self)


def _block_separators(n: int, n_blocks: int) -> np.ndarray:
    return np.floor(np.linspace(0, n, n_blocks + 1)).astype(int)


def _jackknife_lstsq(x: np.ndarray, y: np.ndarray, n_blocks: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Least-squares estimate of `y ~ x` and its delete-one-block jackknife standard error.

    Parameters
    ----------
    x : np.ndarray
        Design matrix, shape (n, k)
    y : np.ndarray
        Outcome, shape (n,)
    """
    separators = _block_separators(len(y), n_blocks)
    xty_blocks = np.array([x[s:e].T @ y[s:e] for s, e in zip(separators[:-1], separators[1:])])
    xtx_blocks = np.array([x[s:e].T @ x[s:e] for s, e in zip(separators[:-1], separators[1:])])
    xty_tot = xty_blocks.sum(axis=0)
    xtx_tot = xtx_blocks.sum(axis=0)

    try:
        est = np.linalg.solve(xtx_tot, xty_tot)
        delete_values = np.array([
            np.linalg.solve(xtx_tot - xtx_blocks[b], xty_tot - xty_blocks[b]) for b in range(n_blocks)
        ])
    except np.linalg.LinAlgError as e:
        raise InputError(f"Singular design matrix in LD score regression: {e}") from e

    pseudovalues = n_blocks * est - (n_blocks - 1) * delete_values
    se = np.std(pseudovalues, axis=0) / np.sqrt(n_blocks - 1)
    return est, se


def _weights(ld_score, sample_size, ld_size, intercept, h2):
    """Inverse of the approximate variance of chi2 given the LD score."""
    ld = np.fmax(ld_score, 1.0)
    pred = np.fmax(intercept + h2 * sample_size * ld / ld_size, 1e-8)
    return 1.0 / (pred ** 2 * ld)


def _fit(ld_score, chi2, sample_size, ld_size, n_blocks, intercept=None, n_iter=2):
    """Iteratively reweighted fit; returns (estimates, standard errors) as (h2[, intercept])."""
    x = sample_size * ld_score / ld_size
    h2 = float(np.clip((np.mean(chi2) - 1) / np.mean(x), 1e-4, 1.0))
    int_ = 1.0 if intercept is None else intercept
    for _ in range(n_iter):
        sw = np.sqrt(_weights(ld_score, sample_size, ld_size, int_, h2))
        if intercept is None:
            design = np.column_stack([x, np.ones_like(x)]) * sw[:, np.newaxis]
            est, se = _jackknife_lstsq(design, chi2 * sw, n_blocks)
            h2, int_ = float(est[0]), float(est[1])
        else:
            est, se = _jackknife_lstsq((x * sw)[:, np.newaxis], (chi2 - intercept) * sw, n_blocks)
            h2 = float(est[0])
    return est, se


def snp_ldsc(
    ld_score,
    ld_size: int,
    chi2,
    sample_size,
    blocks: int = DEFAULT_N_BLOCKS,
    intercept: Optional[float] = None,
    chi2_thr1: float = DEFAULT_CHI2_THR1,
    chi2_thr2: float = np.inf,
) -> LDSCResult:
    """
    LD score regression.

    Parameters
    ----------
    ld_score : array-like
        LD scores of the variants.
    ld_size : int
        Number of variants used to compute the LD scores (M).
    chi2 : array-like
        Chi-squared statistics, e.g. `(beta / beta_se) ** 2`.
    sample_size : array-like or float
        (Effective) sample size of every variant.
    blocks : int
        Number of contiguous jackknife blocks.
    intercept : float, optional
        Fix the intercept instead of estimating it (its standard error is then NaN).
    chi2_thr1, chi2_thr2 : float
        Only variants below these thresholds are used to estimate the
        intercept and h2, respectively.

    Returns
    -------
    LDSCResult
    """
    ld_score = np.asarray(ld_score, dtype=np.float64)
    chi2 = np.asarray(chi2, dtype=np.float64)
    sample_size = np.broadcast_to(np.asarray(sample_size, dtype=np.float64), chi2.shape)
    if ld_score.shape != chi2.shape:
        raise InputError(f"Got {ld_score.shape[0]} LD scores for {chi2.shape[0]} chi2 values")
    if ld_size <= 0:
        raise InputError(f"ld_size must be positive, got {ld_size}")

    int_se = float("nan")
    if intercept is None:
        sub = chi2 < chi2_thr1
        n_blocks = min(blocks, int(sub.sum()))
        if n_blocks < 2:
            raise InputError("Not enough variants below chi2_thr1 for LD score regression")
        est, se = _fit(ld_score[sub], chi2[sub], sample_size[sub], ld_size, n_blocks)
        intercept, int_se = float(est[1]), float(se[1])

    sub = chi2 < chi2_thr2
    n_blocks = min(blocks, int(sub.sum()))
    if n_blocks < 2:
        raise InputError("Not enough variants below chi2_thr2 for LD score regression")
    est, se = _fit(ld_score[sub], chi2[sub], sample_size[sub], ld_size, n_blocks, intercept=intercept)

    result = LDSCResult(intercept=float(intercept), intercept_se=int_se, h2=float(est[0]), h2_se=float(se[0]))
    logger.info(
        f"LD score regression: intercept={result.intercept:.4f} ({result.intercept_se:.4f}), "
        f"h2={result.h2:.4f} ({result.h2_se:.4f})"
    )
    return result
