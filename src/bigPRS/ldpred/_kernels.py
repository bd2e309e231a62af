"""
Numba kernels for one coordinate pass over a block of columns.

Both kernels keep `dotprods = R @ curr_beta` up to date: when the effect of
variant j changes by `delta`, the stored rows of column j are added
`delta * R[:, j]`. Column j of the block starts at `col_ptr[j] - col_ptr[j0]`
and covers rows `first_i[j]` onwards.
"""

import numba
import numpy as np


@numba.njit(nogil=True, cache=True)
def _posterior(beta_hat_j, dotprod_j, diag_j, curr_j, n_j, h2_per_var, p, shrink_corr):
    """Return (C3, C4, postp) of the spike-and-slab posterior for one variant."""
    resid = beta_hat_j - shrink_corr * (dotprod_j - diag_j * curr_j)
    C1 = h2_per_var * n_j
    C2 = 1.0 / (1.0 + 1.0 / C1)
    C3 = C2 / n_j
    C4 = C2 * resid
    if p >= 1.0:
        postp = 1.0
    else:
        postp = 1.0 / (1.0 + (1.0 - p) / p * np.sqrt(1.0 + C1) * np.exp(-C4 * C4 / C3 / 2.0))
    return C3, C4, postp


@numba.njit(nogil=True, cache=True)
def _update(block, col_ptr, first_i, j0, j, delta, dotprods):
    off = col_ptr[j] - col_ptr[j0]
    i0 = first_i[j]
    for k in range(col_ptr[j + 1] - col_ptr[j]):
        dotprods[i0 + k] += delta * block[off + k]


@numba.njit(nogil=True, cache=True)
def _diag(block, col_ptr, first_i, j0, j):
    return block[col_ptr[j] - col_ptr[j0] + j - first_i[j]]


@numba.njit(nogil=True, cache=True)
def grid_block_pass(block, col_ptr, first_i, j0, j1, beta_hat, n_eff, h2_per_var, p, sparse,
                    curr_beta, dotprods):
    """Deterministic pass: every effect is set to its posterior mean."""
    for j in range(j0, j1):
        diag_j = _diag(block, col_ptr, first_i, j0, j)
        _, C4, postp = _posterior(beta_hat[j], dotprods[j], diag_j, curr_beta[j], n_eff[j], h2_per_var, p, 1.0)
        if sparse and postp < p:
            new_beta = 0.0
        else:
            new_beta = postp * C4
        delta = new_beta - curr_beta[j]
        if delta != 0:
            curr_beta[j] = new_beta
            _update(block, col_ptr, first_i, j0, j, delta, dotprods)


@numba.njit(nogil=True, cache=True)
def gibbs_block_pass(block, col_ptr, first_i, j0, j1, beta_hat, n_eff, h2_per_var, p, sparse,
                     allow_jump_sign, shrink_corr, unif, normal, accumulate,
                     curr_beta, dotprods, avg_beta, avg_postp):
    """
    Gibbs pass: every effect is drawn from its spike-and-slab posterior.

    `unif` and `normal` hold one pre-drawn random number per variant. When
    `accumulate` is set, the Rao-Blackwellized posterior mean `postp * C4` and
    the inclusion probability are added to `avg_beta` and `avg_postp`.

    Returns the number of non-zero effects in the block after the pass.
    """
    n_causal = 0
    for j in range(j0, j1):
        diag_j = _diag(block, col_ptr, first_i, j0, j)
        C3, C4, postp = _posterior(
            beta_hat[j], dotprods[j], diag_j, curr_beta[j], n_eff[j], h2_per_var, p, shrink_corr
        )
        if accumulate:
            avg_beta[j] += C4 * postp
            avg_postp[j] += postp

        if sparse and postp < p:
            new_beta = 0.0
        elif postp > unif[j]:
            new_beta = normal[j] * np.sqrt(C3) + C4
            if not allow_jump_sign and new_beta * curr_beta[j] < 0:
                new_beta = 0.0
        else:
            new_beta = 0.0

        if new_beta != 0:
            n_causal += 1
        delta = new_beta - curr_beta[j]
        if delta != 0:
            curr_beta[j] = new_beta
            _update(block, col_ptr, first_i, j0, j, delta, dotprods)
    return n_causal
