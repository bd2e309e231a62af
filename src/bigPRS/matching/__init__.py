"""
matching subpackage for bigPRS

Allele matching between summary statistics and a reference panel, with
strand-flip and allele-swap resolution.
"""

from .snp_match import MatchResult, flip_strand, is_ambiguous, snp_match

__all__ = [
    'MatchResult',
    'flip_strand',
    'is_ambiguous',
    'snp_match',
]
