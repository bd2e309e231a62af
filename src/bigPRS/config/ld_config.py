"""
Configuration for LD matrix construction and clumping.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Optional
import logging

import typer

from bigPRS.config.base import ConfigWithAutoPaths
from bigPRS.constants import (
    DEFAULT_BLOCK_SIZE,
    DEFAULT_CLUMP_THR_R2,
    DEFAULT_LD_WINDOW_BP,
    DEFAULT_LD_WINDOW_CM,
)

logger = logging.getLogger("bigPRS.config")


@dataclass
class BuildLDConfig(ConfigWithAutoPaths):
    """Configuration for computing the banded LD matrix of the matched variants."""

    bfile: Annotated[str, typer.Option(
        help="PLINK bfile prefix of the reference panel used for matching"
    )]

    genetic_map_dir: Annotated[Optional[Path], typer.Option(
        help="Directory of per-chromosome genetic maps (chr{N}.*). If given, the window is in cM",
        exists=True,
        file_okay=False,
        dir_okay=True,
        resolve_path=True
    )] = None

    window_size: Annotated[Optional[float], typer.Option(
        help=f"LD window size (default: {DEFAULT_LD_WINDOW_CM} cM with a genetic map, "
             f"{DEFAULT_LD_WINDOW_BP} bp otherwise)",
        min=0.0
    )] = None

    thr_r2: Annotated[float, typer.Option(
        help="Correlations with r² below this threshold are not stored",
        min=0.0,
        max=1.0
    )] = 0.0

    block_size: Annotated[int, typer.Option(
        help="Number of variants per storage block",
        min=1
    )] = DEFAULT_BLOCK_SIZE

    batch_size: Annotated[int, typer.Option(
        help="Number of variants correlated at once",
        min=1
    )] = 500

    overwrite: Annotated[bool, typer.Option(
        "--overwrite/--no-overwrite",
        help="Replace an existing LD store"
    )] = False

    def __post_init__(self):
        super().__post_init__()
        if self.window_size is None:
            self.window_size = DEFAULT_LD_WINDOW_CM if self.genetic_map_dir is not None else DEFAULT_LD_WINDOW_BP
            logger.info(f"Using the default LD window of {self.window_size} "
                        f"{'cM' if self.genetic_map_dir is not None else 'bp'}")
        self.show_config("Build LD Configuration")


@dataclass
class ClumpConfig(ConfigWithAutoPaths):
    """Configuration for clumping the matched variants."""

    bfile: Annotated[str, typer.Option(
        help="PLINK bfile prefix of the reference panel used for matching"
    )]

    thr_r2: Annotated[float, typer.Option(
        help="r² threshold",
        min=0.0,
        max=1.0
    )] = DEFAULT_CLUMP_THR_R2

    window_size: Annotated[Optional[int], typer.Option(
        help="Only variants closer than this (bp) are compared"
    )] = DEFAULT_LD_WINDOW_BP

    n_workers: Annotated[int, typer.Option(
        help="Number of threads (one task per chromosome)",
        min=1
    )] = 1

    def __post_init__(self):
        super().__post_init__()
        self.show_config("Clumping Configuration")
