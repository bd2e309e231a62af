"""
Configuration for computing polygenic scores.
"""

from dataclasses import dataclass
from typing import Annotated
import logging

import typer

from bigPRS.config.base import ConfigWithAutoPaths

logger = logging.getLogger("bigPRS.config")

SCORE_METHODS = ("inf", "grid", "auto")


@dataclass
class ScoreConfig(ConfigWithAutoPaths):
    """Configuration for scoring individuals with LDpred2 effects."""

    bfile: Annotated[str, typer.Option(
        help="PLINK bfile prefix of the genotypes to score (variants as in the reference panel)"
    )]

    method: Annotated[str, typer.Option(
        help="Which effects to use: 'inf', 'grid' or 'auto'"
    )] = "auto"

    def __post_init__(self):
        super().__post_init__()
        if self.method not in SCORE_METHODS:
            raise ValueError(f"method must be one of {SCORE_METHODS}, got {self.method}")
        self.show_config("Scoring Configuration")
