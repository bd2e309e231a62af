#!/usr/bin/env python
"""
bigPRS CLI - polygenic risk scores from summary statistics with LDpred2.
"""

import logging
from typing import Annotated, Optional

import typer

from bigPRS.config import (
    dataclass_typer,
    BuildLDConfig,
    ClumpConfig,
    LDpredAutoConfig,
    LDpredGridConfig,
    LDpredInfConfig,
    MatchConfig,
    ScoreConfig,
)

logger = logging.getLogger("bigPRS")

# Create the Typer app
app = typer.Typer(
    name="bigprs",
    help="bigPRS: polygenic risk scores from GWAS summary statistics with LDpred2",
    rich_markup_mode="rich",
    add_completion=False,
)


# ============================================================================
# CLI Commands using dataclass_typer decorator
# ============================================================================

@app.command(name="match")
@dataclass_typer
def match(config: MatchConfig):
    """
    Match GWAS summary statistics to the reference panel.

    Alleles are matched allowing for swapped alleles (the effect sign is
    flipped) and, optionally, for the opposite strand. The matched table is
    written in panel order and reused by all following steps.
    """
    from bigPRS.pipeline import run_match

    try:
        result = run_match(config)
        logger.info(f"✓ Matched {result.n_matched:,} of {result.n_input:,} variants")
    except Exception as e:
        logger.error(f"Matching failed: {e}")
        raise


@app.command(name="build-ld")
@dataclass_typer
def build_ld(config: BuildLDConfig):
    """
    Compute the windowed LD correlation of the matched variants and store it.

    The correlation is stored as an out-of-core banded matrix, in the
    project's ld/ directory.
    """
    from bigPRS.pipeline import run_build_ld

    logger.info(f"LD store will be saved to: {config.ld_store_path}")
    try:
        run_build_ld(config)
        logger.info("✓ LD matrix built successfully!")
    except Exception as e:
        logger.error(f"Building the LD matrix failed: {e}")
        raise


@app.command(name="clump")
@dataclass_typer
def clump(config: ClumpConfig):
    """
    Clump the matched variants, prioritizing the strongest associations.
    """
    from bigPRS.pipeline import run_clump

    try:
        clumped = run_clump(config)
        logger.info(f"✓ {len(clumped):,} variants kept after clumping")
    except Exception as e:
        logger.error(f"Clumping failed: {e}")
        raise


@app.command(name="ldpred-inf")
@dataclass_typer
def ldpred_inf(config: LDpredInfConfig):
    """
    Run LDpred2-inf (infinitesimal model).
    """
    from bigPRS.pipeline import run_ldpred_inf

    try:
        run_ldpred_inf(config)
        logger.info(f"✓ Effects saved to {config.get_weights_path('inf')}")
    except Exception as e:
        logger.error(f"LDpred2-inf failed: {e}")
        raise


@app.command(name="ldpred-grid")
@dataclass_typer
def ldpred_grid(config: LDpredGridConfig):
    """
    Run LDpred2-grid over a grid of heritabilities and causal fractions.

    Pick the best grid point on a validation set with `bigprs score --method grid`.
    """
    from bigPRS.pipeline import run_ldpred_grid

    try:
        run_ldpred_grid(config)
        logger.info(f"✓ Effects saved to {config.get_weights_path('grid')}")
    except Exception as e:
        logger.error(f"LDpred2-grid failed: {e}")
        raise


@app.command(name="ldpred-auto")
@dataclass_typer
def ldpred_auto(config: LDpredAutoConfig):
    """
    Run LDpred2-auto, estimating the heritability and the causal fraction.

    Several chains are run; outlying and diverged chains are discarded before
    averaging the effects.
    """
    from bigPRS.pipeline import run_ldpred_auto

    try:
        run_ldpred_auto(config)
        logger.info(f"✓ Effects saved to {config.get_weights_path('auto')}")
    except Exception as e:
        logger.error(f"LDpred2-auto failed: {e}")
        raise


@app.command(name="score")
@dataclass_typer
def score(config: ScoreConfig):
    """
    Compute polygenic scores of individuals from LDpred2 effects.
    """
    from bigPRS.pipeline import run_score

    try:
        run_score(config)
        logger.info(f"✓ Scores saved to {config.get_score_path(config.method)}")
    except Exception as e:
        logger.error(f"Scoring failed: {e}")
        raise


def version_callback(value: bool):
    """Show version and exit."""
    if value:
        from bigPRS import __version__
        typer.echo(f"bigPRS version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[Optional[bool], typer.Option(
        "--version", "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit"
    )] = None,
):
    """
    bigPRS: polygenic risk scores from GWAS summary statistics with LDpred2.

    Use 'bigprs COMMAND --help' for more information on a specific command.

    Typical workflow:

    1. bigprs match --workdir /path/to/work --project-name my_trait --sumstats-file gwas.tsv --panel-file ref.bim
    2. bigprs build-ld --workdir /path/to/work --project-name my_trait --bfile ref
    3. bigprs ldpred-auto --workdir /path/to/work --project-name my_trait
    4. bigprs score --workdir /path/to/work --project-name my_trait --bfile target
    """
    pass


if __name__ == "__main__":
    app()
