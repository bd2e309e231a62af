"""
Constants and default values used across matching, LD and LDpred2 solvers.

This module centralizes numerical constants to keep the solver code readable.
"""

# === Variant matching ===

# DNA complement used for strand flipping
ALLELE_COMPLEMENT = {"A": "T", "T": "A", "C": "G", "G": "C"}

# Allele pairs whose complement is the same pair (strand cannot be resolved)
AMBIGUOUS_ALLELE_PAIRS = frozenset({("A", "T"), ("T", "A"), ("C", "G"), ("G", "C")})

# Minimum proportion of variants that must match (relative to the smaller table).
# 0 disables the check: partial overlap is only reported.
DEFAULT_MATCH_MIN_PROP = 0.0

# === LD window constants ===

# LDpred2 correlation window, in centiMorgans
DEFAULT_LD_WINDOW_CM = 3.0

# Window used when no genetic map is available (base pairs)
DEFAULT_LD_WINDOW_BP = 500_000

# Offset separating chromosomes on the genome-wide position axis.
# Larger than any per-chromosome window so that bands never cross chromosomes.
CHROMOSOME_POSITION_OFFSET = 1e10

# === Banded matrix storage ===

BANDED_STORAGE_DTYPE = "float32"
DEFAULT_BLOCK_SIZE = 1024
DEFAULT_CACHE_BLOCKS = 64

# === LDpred2 ===

# Default heritability floor used when b'Rb collapses towards zero
MIN_H2 = 1e-3

# Default bounds for the causal fraction in LDpred2-auto
DEFAULT_P_BOUNDS = (1e-5, 1.0)

# LDpred2-grid defaults (number of passes)
DEFAULT_GRID_BURN_IN = 50
DEFAULT_GRID_NUM_ITER = 100

# LDpred2-auto defaults
DEFAULT_AUTO_BURN_IN = 500
DEFAULT_AUTO_NUM_ITER = 200

# Effects below this magnitude are set to exactly zero for sparse grid points
DEFAULT_SPARSE_TOL = 1e-5

# Relative tolerance of the conjugate-gradient solve in LDpred2-inf
DEFAULT_INF_TOL = 1e-6

# Number of MADs used to discard outlying chains
DEFAULT_CHAIN_N_MAD = 3.0

# Default grid of causal fractions (log-spaced, as in the LDpred2 paper)
DEFAULT_P_SEQ = (1e-4, 3.2e-4, 1e-3, 3.2e-3, 1e-2, 3.2e-2, 0.1, 0.32, 1.0)

# Default heritability multipliers used around the LDSC estimate
DEFAULT_H2_COEFS = (0.3, 0.7, 1.0, 1.4)

# === Clumping ===

DEFAULT_CLUMP_THR_R2 = 0.2
DEFAULT_PLOIDY = 2

# === LD score regression ===

# Default number of jackknife blocks for standard error estimation
DEFAULT_N_BLOCKS = 200

# Chi-squared threshold for the intercept-estimation step
DEFAULT_CHI2_THR1 = 30.0
