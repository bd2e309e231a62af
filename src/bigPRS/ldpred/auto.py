"""
LDpred2-auto: Gibbs sampler with online estimation of h2 and p.

Each chain starts from its own (h2, p) and runs `burn_in + num_iter` passes.
After every pass h2 is re-estimated as `b' R b` and p is drawn from
`Beta(1 + n_causal, 1 + m - n_causal)`. Chains are independent tasks and are
run on a thread pool; a diverged or cancelled chain does not affect the others.

Chain lifecycle::

    INITIALIZED -> BURN_IN -> SAMPLING -> DONE

A chain moves to DIVERGED (non-finite or negative h2) or CANCELLED (cancel
event set) from BURN_IN or SAMPLING.
"""

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from ..constants import DEFAULT_AUTO_BURN_IN, DEFAULT_AUTO_NUM_ITER, DEFAULT_P_BOUNDS, MIN_H2
from ..errors import DivergedChainError, InvalidHyperparameterError
from ..ld.banded import SparseBandedMatrix
from ..parallel import run_tasks
from ._kernels import gibbs_block_pass
from .common import ScaledBeta, check_corr, check_h2, check_iterations, check_p, scale_beta

logger = logging.getLogger(__name__)


class ChainState(str, Enum):
    INITIALIZED = "initialized"
    BURN_IN = "burn_in"
    SAMPLING = "sampling"
    DONE = "done"
    DIVERGED = "diverged"
    CANCELLED = "cancelled"


@dataclass
class ChainResult:
    """
    Output of one LDpred2-auto chain.

    `beta_est` (allele scale of `df_beta`) and `postp_est` are averaged over
    the sampling passes; `h2_est` and `p_est` are the means of their paths
    over the same passes. They are NaN for chains that did not finish.
    """

    chain: int
    beta_est: np.ndarray
    postp_est: np.ndarray
    h2_init: float
    p_init: float
    h2_est: float
    p_est: float
    path_h2_est: np.ndarray
    path_p_est: np.ndarray
    state: ChainState
    n_iter: int
    beta_est_sparse: Optional[np.ndarray] = None
    error: Optional[str] = field(default=None, repr=False)


def _estimate_h2(curr_beta: np.ndarray, dotprods: np.ndarray) -> float:
    """Heritability explained by the current effects, `b' R b`."""
    return float(np.dot(curr_beta, dotprods))


def _run_chain(
    corr: SparseBandedMatrix,
    scaled: ScaledBeta,
    chain: int,
    h2_init: float,
    p_init: float,
    burn_in: int,
    num_iter: int,
    sparse: bool,
    allow_jump_sign: bool,
    shrink_corr: float,
    p_bounds: Tuple[float, float],
    seed_seq: np.random.SeedSequence,
    cancel_event: Optional[threading.Event],
) -> ChainResult:
    m = scaled.m
    rng = np.random.default_rng(seed_seq)
    curr_beta = np.zeros(m)
    dotprods = np.zeros(m)
    avg_beta = np.zeros(m)
    avg_postp = np.zeros(m)
    n_total = burn_in + num_iter
    path_h2 = np.full(n_total, np.nan)
    path_p = np.full(n_total, np.nan)

    h2, p = h2_init, p_init
    state = ChainState.INITIALIZED
    n_done = 0
    error = None

    try:
        for it in range(n_total):
            if cancel_event is not None and cancel_event.is_set():
                state = ChainState.CANCELLED
                logger.info(f"Chain {chain} cancelled after {it} iterations")
                break
            state = ChainState.BURN_IN if it < burn_in else ChainState.SAMPLING

            h2_per_var = h2 / (m * p)
            unif = rng.random(m)
            normal = rng.standard_normal(m)
            n_causal = 0
            for j0, j1, block in corr.iter_blocks():
                n_causal += gibbs_block_pass(
                    block, corr.col_ptr, corr.first_i, j0, j1, scaled.beta_hat, scaled.n_eff,
                    h2_per_var, p, sparse, allow_jump_sign, shrink_corr, unif, normal,
                    state == ChainState.SAMPLING, curr_beta, dotprods, avg_beta, avg_postp,
                )

            h2_raw = _estimate_h2(curr_beta, dotprods)
            if not np.isfinite(h2_raw) or h2_raw < 0:
                raise DivergedChainError(chain, it, h2_raw)
            h2 = max(h2_raw, MIN_H2)
            p = float(np.clip(rng.beta(1 + n_causal, 1 + m - n_causal), *p_bounds))

            path_h2[it] = h2
            path_p[it] = p
            n_done = it + 1
        else:
            state = ChainState.DONE
    except DivergedChainError as e:
        logger.warning(str(e))
        state = ChainState.DIVERGED
        error = str(e)

    if state == ChainState.DONE:
        beta_est = avg_beta / num_iter * scaled.scale
        postp_est = avg_postp / num_iter
        h2_est = float(np.mean(path_h2[burn_in:]))
        p_est = float(np.mean(path_p[burn_in:]))
        beta_est_sparse = np.where(postp_est >= p_est, beta_est, 0.0) if sparse else None
        logger.info(f"Chain {chain} done: h2_est={h2_est:.4f}, p_est={p_est:.2e}")
    else:
        beta_est = np.full(m, np.nan)
        postp_est = np.full(m, np.nan)
        h2_est = p_est = float("nan")
        beta_est_sparse = np.full(m, np.nan) if sparse else None

    return ChainResult(
        chain=chain,
        beta_est=beta_est,
        postp_est=postp_est,
        h2_init=h2_init,
        p_init=p_init,
        h2_est=h2_est,
        p_est=p_est,
        path_h2_est=path_h2[:n_done],
        path_p_est=path_p[:n_done],
        state=state,
        n_iter=n_done,
        beta_est_sparse=beta_est_sparse,
        error=error,
    )


def ldpred2_auto(
    corr: SparseBandedMatrix,
    df_beta: pd.DataFrame,
    h2_init: Union[float, Sequence[float]],
    vec_p_init: Sequence[float] = (0.1,),
    burn_in: int = DEFAULT_AUTO_BURN_IN,
    num_iter: int = DEFAULT_AUTO_NUM_ITER,
    sparse: bool = False,
    allow_jump_sign: bool = True,
    shrink_corr: float = 1.0,
    p_bounds: Tuple[float, float] = DEFAULT_P_BOUNDS,
    seed: Optional[int] = None,
    n_workers: int = 1,
    cancel_event: Optional[threading.Event] = None,
    show_progress: bool = False,
) -> List[ChainResult]:
    """
    Run LDpred2-auto, one chain per initial value of p.

    Parameters
    ----------
    corr : SparseBandedMatrix
        LD correlation between the m variants of `df_beta`, in the same order.
    df_beta : pd.DataFrame
        Columns `beta`, `beta_se` and `n_eff`.
    h2_init : float or sequence of float
        Initial heritability, shared by all chains or one per chain.
    vec_p_init : sequence of float
        Initial causal fraction of every chain.
    burn_in, num_iter : int
        Number of discarded and retained passes.
    sparse : bool
        Also return effects with exact zeros where the inclusion probability is
        below the estimated p (`beta_est_sparse`).
    allow_jump_sign : bool
        If False, an effect cannot change sign in one step (it goes through 0).
    shrink_corr : float
        Multiplier in (0, 1] applied to the off-diagonal correlations.
    p_bounds : tuple of float
        Bounds on the sampled causal fraction.
    seed : int, optional
        Seed; chains use independent streams spawned from it.
    n_workers : int
        Number of threads; chains are independent tasks.
    cancel_event : threading.Event, optional
        When set, running chains stop at their next iteration (state CANCELLED).

    Returns
    -------
    List[ChainResult]
        One result per chain, in the order of `vec_p_init`.
    """
    check_iterations(burn_in, num_iter)
    scaled = scale_beta(df_beta)
    check_corr(corr, scaled.m)

    vec_p_init = [float(p) for p in np.atleast_1d(vec_p_init)]
    vec_h2_init = np.atleast_1d(np.asarray(h2_init, dtype=np.float64))
    if len(vec_h2_init) == 1:
        vec_h2_init = np.repeat(vec_h2_init, len(vec_p_init))
    if len(vec_h2_init) != len(vec_p_init):
        raise InvalidHyperparameterError(
            f"Got {len(vec_h2_init)} initial h2 values for {len(vec_p_init)} chains"
        )
    for h2 in vec_h2_init:
        check_h2(h2)
    for p in vec_p_init:
        check_p(p)
    lo, hi = p_bounds
    if not 0 < lo <= hi <= 1:
        raise InvalidHyperparameterError(f"p_bounds must satisfy 0 < lower <= upper <= 1, got {p_bounds}")
    if not 0 < shrink_corr <= 1:
        raise InvalidHyperparameterError(f"shrink_corr must be in (0, 1], got {shrink_corr}")

    n_chains = len(vec_p_init)
    if cancel_event is None:
        cancel_event = threading.Event()
    seed_seqs = np.random.SeedSequence(seed).spawn(n_chains)
    logger.info(f"Running {n_chains} LDpred2-auto chains on {scaled.m:,} variants")

    results = run_tasks(
        lambda k: _run_chain(
            corr, scaled, k, float(vec_h2_init[k]), vec_p_init[k], burn_in, num_iter, sparse,
            allow_jump_sign, shrink_corr, (float(lo), float(hi)), seed_seqs[k], cancel_event,
        ),
        list(range(n_chains)),
        n_workers=n_workers,
        description="LDpred2-auto",
        show_progress=show_progress,
        cancel_event=cancel_event,
    )

    n_diverged = sum(r.state == ChainState.DIVERGED for r in results)
    if n_diverged > 0:
        logger.warning(f"{n_diverged} of {n_chains} chains diverged")
    return results
