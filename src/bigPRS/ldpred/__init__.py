"""
ldpred subpackage for bigPRS

This package contains the LDpred2 solvers:
- LDpred2-inf (infinitesimal model, conjugate gradient)
- LDpred2-grid (deterministic passes over a hyperparameter grid)
- LDpred2-auto (Gibbs sampler with online h2 and p estimation)
"""

from .auto import ChainResult, ChainState, ldpred2_auto
from .common import LDpredParams
from .grid import GridResult, ldpred2_grid, make_grid
from .inf import InfResult, ldpred2_inf

__all__ = [
    'ChainResult',
    'ChainState',
    'GridResult',
    'InfResult',
    'LDpredParams',
    'ldpred2_auto',
    'ldpred2_grid',
    'ldpred2_inf',
    'make_grid',
]
