"""
Configuration for the LDpred2 solvers.
"""

from dataclasses import dataclass, field
from typing import Annotated, List, Optional
import logging

import numpy as np
import typer

from bigPRS.config.base import ConfigWithAutoPaths
from bigPRS.constants import (
    DEFAULT_AUTO_BURN_IN,
    DEFAULT_AUTO_NUM_ITER,
    DEFAULT_CACHE_BLOCKS,
    DEFAULT_CHAIN_N_MAD,
    DEFAULT_GRID_BURN_IN,
    DEFAULT_GRID_NUM_ITER,
    DEFAULT_H2_COEFS,
    DEFAULT_INF_TOL,
    DEFAULT_P_BOUNDS,
    DEFAULT_P_SEQ,
    DEFAULT_SPARSE_TOL,
)

logger = logging.getLogger("bigPRS.config")


@dataclass
class LDpredCommonConfig(ConfigWithAutoPaths):
    """Options shared by all LDpred2 solvers."""

    h2: Annotated[Optional[float], typer.Option(
        help="SNP heritability. If not given, it is estimated by LD score regression",
        min=0.0
    )] = None

    cache_blocks: Annotated[int, typer.Option(
        help="Number of LD blocks kept in memory (use at least the number of blocks of the store "
             "to avoid reading it from disk on every pass)",
        min=1
    )] = DEFAULT_CACHE_BLOCKS

    n_workers: Annotated[int, typer.Option(
        help="Number of threads",
        min=1
    )] = 1


@dataclass
class LDpredInfConfig(LDpredCommonConfig):
    """Configuration for LDpred2-inf."""

    tol: Annotated[float, typer.Option(
        help="Relative tolerance of the conjugate-gradient solve"
    )] = DEFAULT_INF_TOL

    max_iter: Annotated[Optional[int], typer.Option(
        help="Maximum number of conjugate-gradient iterations"
    )] = None

    def __post_init__(self):
        super().__post_init__()
        self.show_config("LDpred2-inf Configuration")


@dataclass
class LDpredGridConfig(LDpredCommonConfig):
    """Configuration for LDpred2-grid."""

    p_seq: Annotated[List[float], typer.Option(
        help="Causal fractions of the grid (repeat the option for several values)"
    )] = field(default_factory=lambda: list(DEFAULT_P_SEQ))

    h2_coefs: Annotated[List[float], typer.Option(
        help="Multipliers of h2 in the grid"
    )] = field(default_factory=lambda: list(DEFAULT_H2_COEFS))

    sparse: Annotated[bool, typer.Option(
        "--sparse/--no-sparse",
        help="Also run the sparse version of every grid point"
    )] = False

    burn_in: Annotated[int, typer.Option(help="Number of burn-in passes", min=0)] = DEFAULT_GRID_BURN_IN
    num_iter: Annotated[int, typer.Option(help="Number of averaged passes", min=1)] = DEFAULT_GRID_NUM_ITER
    sparse_tol: Annotated[float, typer.Option(help="Zero threshold for sparse effects")] = DEFAULT_SPARSE_TOL

    def __post_init__(self):
        super().__post_init__()
        if any(not 0 < p <= 1 for p in self.p_seq):
            raise ValueError(f"All values of p_seq must be in (0, 1], got {self.p_seq}")
        self.show_config("LDpred2-grid Configuration")


@dataclass
class LDpredAutoConfig(LDpredCommonConfig):
    """Configuration for LDpred2-auto."""

    n_chains: Annotated[int, typer.Option(
        help="Number of chains, started from log-spaced values of p between 1e-4 and 0.2",
        min=1
    )] = 30

    burn_in: Annotated[int, typer.Option(help="Number of burn-in iterations", min=0)] = DEFAULT_AUTO_BURN_IN
    num_iter: Annotated[int, typer.Option(help="Number of retained iterations", min=1)] = DEFAULT_AUTO_NUM_ITER

    sparse: Annotated[bool, typer.Option(
        "--sparse/--no-sparse",
        help="Also report sparse effects"
    )] = False

    allow_jump_sign: Annotated[bool, typer.Option(
        "--allow-jump-sign/--no-jump-sign",
        help="Allow effects to change sign without going through zero"
    )] = True

    shrink_corr: Annotated[float, typer.Option(
        help="Shrinkage multiplier applied to the correlations",
        min=0.0,
        max=1.0
    )] = 1.0

    p_lower: Annotated[float, typer.Option(help="Lower bound of p")] = DEFAULT_P_BOUNDS[0]
    p_upper: Annotated[float, typer.Option(help="Upper bound of p")] = DEFAULT_P_BOUNDS[1]

    seed: Annotated[Optional[int], typer.Option(help="Random seed")] = None

    n_mad: Annotated[float, typer.Option(
        help="Chains further than this many MADs from the median are discarded"
    )] = DEFAULT_CHAIN_N_MAD

    def __post_init__(self):
        super().__post_init__()
        self.show_config("LDpred2-auto Configuration")

    @property
    def vec_p_init(self) -> List[float]:
        return np.geomspace(1e-4, 0.2, self.n_chains).tolist()
