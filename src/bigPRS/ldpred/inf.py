"""
LDpred2-inf: posterior mean under the infinitesimal model.

Every variant is causal with effect variance `h2 / m`. On the standardized
scale the posterior mean solves the ridge system

    (R + diag(m / (h2 * n_eff))) b = beta_hat

which is solved by conjugate gradient, using only sparse products with R.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
import pandas as pd
from scipy.sparse.linalg import cg

from ..constants import DEFAULT_INF_TOL
from ..errors import ConvergenceError
from ..ld.banded import SparseBandedMatrix
from .common import check_corr, check_h2, scale_beta

logger = logging.getLogger(__name__)


@dataclass
class InfResult:
    """Effects on the allele scale of `df_beta` and solver diagnostics."""

    beta: np.ndarray
    n_iter: int
    residual: float


def ldpred2_inf(
    corr: SparseBandedMatrix,
    df_beta: pd.DataFrame,
    h2: float,
    tol: float = DEFAULT_INF_TOL,
    max_iter: Optional[int] = None,
) -> InfResult:
    """
    Run LDpred2-inf.

    Parameters
    ----------
    corr : SparseBandedMatrix
        LD correlation between the m variants of `df_beta`, in the same order.
    df_beta : pd.DataFrame
        Columns `beta`, `beta_se` and `n_eff`.
    h2 : float
        SNP heritability (> 0).
    tol : float
        Relative residual tolerance of the conjugate-gradient solve.
    max_iter : int, optional
        Maximum number of iterations (defaults to 10 * m).

    Returns
    -------
    InfResult
        Posterior mean effects, number of iterations and final relative residual.

    Raises
    ------
    InvalidHyperparameterError
        If `h2 <= 0`.
    ConvergenceError
        If the tolerance is not reached within `max_iter` iterations.
    """
    check_h2(h2)
    scaled = scale_beta(df_beta)
    check_corr(corr, scaled.m)

    m = scaled.m
    operator = corr.as_linear_operator(add_to_diag=m / (h2 * scaled.n_eff))

    n_iter = 0

    def count(_):
        nonlocal n_iter
        n_iter += 1

    b, info = cg(operator, scaled.beta_hat, rtol=tol, maxiter=max_iter, callback=count)

    norm = np.linalg.norm(scaled.beta_hat)
    residual = float(np.linalg.norm(scaled.beta_hat - operator.matvec(b)) / norm) if norm > 0 else 0.0
    if info != 0:
        raise ConvergenceError("LDpred2-inf did not converge", residual=residual, n_iter=n_iter)

    logger.info(f"LDpred2-inf converged in {n_iter} iterations (relative residual {residual:.2e})")
    return InfResult(beta=b * scaled.scale, n_iter=n_iter, residual=residual)
