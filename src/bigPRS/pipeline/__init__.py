"""
bigPRS pipeline module.

This module provides the step functions run by the `bigprs` commands.
"""

from bigPRS.pipeline.steps import (
    estimate_h2,
    run_build_ld,
    run_clump,
    run_ldpred_auto,
    run_ldpred_grid,
    run_ldpred_inf,
    run_match,
    run_score,
)

__all__ = [
    "estimate_h2",
    "run_build_ld",
    "run_clump",
    "run_ldpred_auto",
    "run_ldpred_grid",
    "run_ldpred_inf",
    "run_match",
    "run_score",
]
