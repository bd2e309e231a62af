"""
Input handling shared by the LDpred2 solvers.

Marginal effects are put on the scale of standardized genotypes,
`beta_hat = beta / sqrt(n_eff * beta_se^2 + beta^2)`, before solving; the
solvers return effects multiplied back by the same `scale`.
"""

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd

from ..errors import InputError, InvalidHyperparameterError
from ..io import check_columns
from ..ld.banded import SparseBandedMatrix

logger = logging.getLogger(__name__)

DF_BETA_COLUMNS = ["beta", "beta_se", "n_eff"]


@dataclass
class ScaledBeta:
    """Marginal effects on the standardized scale."""

    beta_hat: np.ndarray
    scale: np.ndarray
    n_eff: np.ndarray

    @property
    def m(self) -> int:
        return len(self.beta_hat)


@dataclass(frozen=True)
class LDpredParams:
    """One (h2, p, sparse) hyperparameter set."""

    h2: float
    p: float = 1.0
    sparse: bool = False

    def __post_init__(self):
        check_h2(self.h2)
        check_p(self.p)


def check_h2(h2):
    if not np.isfinite(h2) or h2 <= 0:
        raise InvalidHyperparameterError(f"Heritability must be positive, got h2={h2}")


def check_p(p):
    if not np.isfinite(p) or not 0 < p <= 1:
        raise InvalidHyperparameterError(f"Causal fraction must be in (0, 1], got p={p}")


def check_corr(corr, m: int):
    if not isinstance(corr, SparseBandedMatrix):
        raise InputError(f"Expected a SparseBandedMatrix, got {type(corr).__name__}")
    if corr.n != m:
        raise InputError(f"Correlation matrix has {corr.n} variants but df_beta has {m} rows")


def check_iterations(burn_in: int, num_iter: int):
    if burn_in < 0:
        raise InputError(f"burn_in must be non-negative, got {burn_in}")
    if num_iter < 1:
        raise InputError(f"num_iter must be at least 1, got {num_iter}")


def scale_beta(df_beta: pd.DataFrame) -> ScaledBeta:
    """Validate `df_beta` (columns beta, beta_se, n_eff) and standardize its effects."""
    check_columns(df_beta, DF_BETA_COLUMNS, "df_beta")
    beta = df_beta["beta"].to_numpy(dtype=np.float64)
    beta_se = df_beta["beta_se"].to_numpy(dtype=np.float64)
    n_eff = df_beta["n_eff"].to_numpy(dtype=np.float64)

    if len(beta) == 0:
        raise InputError("df_beta is empty")
    if not (np.all(np.isfinite(beta)) and np.all(np.isfinite(beta_se)) and np.all(np.isfinite(n_eff))):
        raise InputError("df_beta contains missing or infinite values")
    if np.any(beta_se <= 0):
        raise InputError("beta_se must be positive")
    if np.any(n_eff <= 0):
        raise InputError("n_eff must be positive")

    scale = np.sqrt(n_eff * beta_se ** 2 + beta ** 2)
    return ScaledBeta(beta_hat=beta / scale, scale=scale, n_eff=n_eff)
