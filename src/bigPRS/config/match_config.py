"""
Configuration for variant matching.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Annotated
import logging

import typer

from bigPRS.config.base import ConfigWithAutoPaths
from bigPRS.constants import DEFAULT_MATCH_MIN_PROP

logger = logging.getLogger("bigPRS.config")


@dataclass
class MatchConfig(ConfigWithAutoPaths):
    """Configuration for matching summary statistics to the reference panel."""

    sumstats_file: Annotated[Path, typer.Option(
        help="GWAS summary statistics (columns chr, pos, a0, a1, beta, beta_se and n_eff, or common aliases)",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True
    )]

    panel_file: Annotated[Path, typer.Option(
        help="Reference panel variants: a PLINK .bim file or a table with chr, pos, a0 and a1 columns",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True
    )]

    strand_flip: Annotated[bool, typer.Option(
        "--strand-flip/--no-strand-flip",
        help="Also match variants reported on the opposite strand"
    )] = True

    join_by_pos: Annotated[bool, typer.Option(
        "--join-by-pos/--join-by-rsid",
        help="Join on chromosome and position, or on rsid"
    )] = True

    match_min_prop: Annotated[float, typer.Option(
        help="Minimum proportion of variants that must be matched (0 only reports partial overlap)",
        min=0.0,
        max=1.0
    )] = DEFAULT_MATCH_MIN_PROP

    remove_dups: Annotated[bool, typer.Option(
        "--remove-dups/--keep-dups",
        help="Remove matched variants sharing the same chromosome and position"
    )] = True

    dup_policy: Annotated[str, typer.Option(
        help="Several summary statistics matching one panel variant: 'drop' them or raise an 'error'"
    )] = "drop"

    def __post_init__(self):
        super().__post_init__()
        if self.dup_policy not in ("drop", "error"):
            raise ValueError(f"dup_policy must be 'drop' or 'error', got {self.dup_policy}")
        self.show_config("Variant Matching Configuration")
