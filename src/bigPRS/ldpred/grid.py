"""
LDpred2-grid: posterior mean for a grid of (h2, p, sparse) hyperparameters.

For each grid point, coordinate passes set every effect to its posterior mean
under the spike-and-slab prior, in position order. The returned effects are
the average over the `num_iter` passes that follow `burn_in` passes. Passes
are deterministic, so repeated runs give identical results.
"""

import itertools
import logging
from dataclasses import dataclass
from typing import Sequence, Union

import numpy as np
import pandas as pd

from ..constants import DEFAULT_GRID_BURN_IN, DEFAULT_GRID_NUM_ITER, DEFAULT_P_SEQ, DEFAULT_SPARSE_TOL
from ..errors import InputError
from ..io import check_columns
from ..ld.banded import SparseBandedMatrix
from ..parallel import run_tasks
from ._kernels import grid_block_pass
from .common import LDpredParams, ScaledBeta, check_corr, check_iterations, scale_beta

logger = logging.getLogger(__name__)


@dataclass
class GridResult:
    """
    Effects for every grid point.

    Attributes
    ----------
    beta : np.ndarray
        Effects on the allele scale of `df_beta`, shape (m, K); a column is
        NaN when its grid point failed.
    params : pd.DataFrame
        The grid (`p`, `h2`, `sparse`) plus a `converged` flag per point.
    n_failed : int
        Number of grid points whose effects became non-finite.
    """

    beta: np.ndarray
    params: pd.DataFrame
    n_failed: int


def make_grid(
    h2: Union[float, Sequence[float]],
    p_seq: Sequence[float] = DEFAULT_P_SEQ,
    sparse: Union[bool, Sequence[bool]] = (False,),
) -> pd.DataFrame:
    """Cartesian product of causal fractions, heritabilities and sparsity options."""
    h2_seq = np.atleast_1d(h2).tolist()
    sparse_seq = [sparse] if isinstance(sparse, bool) else list(sparse)
    return pd.DataFrame(list(itertools.product(p_seq, h2_seq, sparse_seq)), columns=["p", "h2", "sparse"])


def _run_grid_point(
    corr: SparseBandedMatrix,
    scaled: ScaledBeta,
    params: LDpredParams,
    burn_in: int,
    num_iter: int,
    sparse_tol: float,
) -> np.ndarray:
    m = scaled.m
    h2_per_var = params.h2 / (m * params.p)
    curr_beta = np.zeros(m)
    dotprods = np.zeros(m)
    avg_beta = np.zeros(m)

    for it in range(burn_in + num_iter):
        for j0, j1, block in corr.iter_blocks():
            grid_block_pass(
                block, corr.col_ptr, corr.first_i, j0, j1, scaled.beta_hat, scaled.n_eff,
                h2_per_var, params.p, params.sparse, curr_beta, dotprods,
            )
        if not np.all(np.isfinite(curr_beta)):
            logger.warning(f"Grid point {params} diverged at pass {it}")
            return np.full(m, np.nan)
        if it >= burn_in:
            avg_beta += curr_beta

    avg_beta /= num_iter
    if params.sparse:
        avg_beta[np.abs(avg_beta) < sparse_tol] = 0.0
    return avg_beta * scaled.scale


def ldpred2_grid(
    corr: SparseBandedMatrix,
    df_beta: pd.DataFrame,
    grid_param: pd.DataFrame,
    burn_in: int = DEFAULT_GRID_BURN_IN,
    num_iter: int = DEFAULT_GRID_NUM_ITER,
    sparse_tol: float = DEFAULT_SPARSE_TOL,
    n_workers: int = 1,
    show_progress: bool = False,
) -> GridResult:
    """
    Run LDpred2-grid.

    Parameters
    ----------
    corr : SparseBandedMatrix
        LD correlation between the m variants of `df_beta`, in the same order.
    df_beta : pd.DataFrame
        Columns `beta`, `beta_se` and `n_eff`.
    grid_param : pd.DataFrame
        Columns `p`, `h2` and `sparse`, one row per grid point (see `make_grid`).
    burn_in, num_iter : int
        Number of discarded and averaged passes.
    sparse_tol : float
        For sparse grid points, effects smaller than this (standardized scale)
        are set to exactly zero.
    n_workers : int
        Number of threads; grid points are independent tasks.

    Returns
    -------
    GridResult

    Raises
    ------
    InvalidHyperparameterError
        If any grid point has `h2 <= 0` or `p` outside (0, 1].
    """
    check_iterations(burn_in, num_iter)
    check_columns(grid_param, ["p", "h2", "sparse"], "grid_param")
    if len(grid_param) == 0:
        raise InputError("grid_param is empty")
    scaled = scale_beta(df_beta)
    check_corr(corr, scaled.m)

    points = [
        LDpredParams(h2=float(row.h2), p=float(row.p), sparse=bool(row.sparse))
        for row in grid_param.itertuples(index=False)
    ]
    logger.info(f"Running LDpred2-grid on {len(points)} grid points and {scaled.m:,} variants")

    results = run_tasks(
        lambda params: _run_grid_point(corr, scaled, params, burn_in, num_iter, sparse_tol),
        points,
        n_workers=n_workers,
        description="LDpred2-grid",
        show_progress=show_progress,
    )

    beta = np.column_stack(results)
    converged = np.all(np.isfinite(beta), axis=0)
    n_failed = int(np.sum(~converged))
    if n_failed > 0:
        logger.warning(f"{n_failed} of {len(points)} grid points failed and have NaN effects")

    params = grid_param[["p", "h2", "sparse"]].reset_index(drop=True).copy()
    params["converged"] = converged
    return GridResult(beta=beta, params=params, n_failed=n_failed)
