"""
Combining LDpred2-auto chains and computing individual scores.
"""

import logging
from typing import List, Optional

import numpy as np
from scipy.stats import median_abs_deviation

from .constants import DEFAULT_CHAIN_N_MAD
from .errors import ConvergenceError, InputError
from .ldpred.auto import ChainResult, ChainState
from .stats import prod_mat

logger = logging.getLogger(__name__)


def filter_chains(
    results: List[ChainResult],
    preds: Optional[np.ndarray] = None,
    n_mad: float = DEFAULT_CHAIN_N_MAD,
) -> np.ndarray:
    """
    Chains to keep when averaging.

    Only finished chains are considered. Among them, a chain is discarded when
    its scale is more than `n_mad` MADs away from the median scale. The scale
    is the MAD of the chain's predicted scores when `preds` is given (one column
    per chain), and its `h2_est` otherwise.

    Returns
    -------
    np.ndarray
        Boolean mask over `results`.
    """
    done = np.array([r.state == ChainState.DONE for r in results], dtype=bool)
    if preds is not None:
        preds = np.asarray(preds, dtype=np.float64)
        if preds.ndim != 2 or preds.shape[1] != len(results):
            raise InputError(f"preds must have one column per chain ({len(results)}), got shape {preds.shape}")
        scale = median_abs_deviation(preds, axis=0, scale="normal", nan_policy="omit")
    else:
        scale = np.array([r.h2_est for r in results], dtype=np.float64)

    keep = done & np.isfinite(scale)
    if keep.sum() > 1:
        center = np.median(scale[keep])
        spread = median_abs_deviation(scale[keep], scale="normal")
        keep &= np.abs(scale - center) <= n_mad * spread

    logger.info(f"Keeping {int(keep.sum())} of {len(results)} chains")
    return keep


def final_beta_auto(
    results: List[ChainResult],
    preds: Optional[np.ndarray] = None,
    n_mad: float = DEFAULT_CHAIN_N_MAD,
) -> np.ndarray:
    """Average effects over the chains kept by `filter_chains`."""
    keep = filter_chains(results, preds, n_mad)
    if not keep.any():
        raise ConvergenceError("No LDpred2-auto chain can be kept", n_iter=max((r.n_iter for r in results), default=0))
    return np.mean([r.beta_est for r, k in zip(results, keep) if k], axis=0)


def final_pred_auto(
    results: List[ChainResult],
    preds: np.ndarray,
    n_mad: float = DEFAULT_CHAIN_N_MAD,
) -> np.ndarray:
    """Average predicted scores (one column per chain) over the kept chains."""
    keep = filter_chains(results, preds, n_mad)
    if not keep.any():
        raise ConvergenceError("No LDpred2-auto chain can be kept", n_iter=max((r.n_iter for r in results), default=0))
    return np.asarray(preds, dtype=np.float64)[:, keep].mean(axis=1)


def predict_scores(G, weights, ind_row=None, ind_col=None) -> np.ndarray:
    """
    Polygenic scores `G[ind_row, ind_col] @ weights`.

    Missing weights contribute zero; a column of weights that is entirely
    missing (a failed grid point) gives NaN scores.
    """
    scores = prod_mat(G, weights, ind_row, ind_col)
    failed = np.all(np.isnan(np.atleast_2d(np.asarray(weights, dtype=np.float64).T)), axis=1)
    scores[:, failed] = np.nan
    return scores[:, 0] if np.ndim(weights) == 1 else scores
