"""
ld subpackage for bigPRS

This package contains the LD (correlation) components:
- Windowed correlation from genotype matrices
- Out-of-core sparse banded storage of the correlation matrix
"""

from .banded import SparseBandedMatrix, band_limits
from .compute import genome_positions, get_block_limits, snp_cor

__all__ = [
    'SparseBandedMatrix',
    'band_limits',
    'genome_positions',
    'get_block_limits',
    'snp_cor',
]
