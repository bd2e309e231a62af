"""
Matching of summary statistics against a reference panel.

Every summary-statistics row is expanded into candidate allele pairs (as given,
reversed, and, with strand flipping, complemented), and the candidates are
joined with the panel on position (or rsid) and alleles. Reversed candidates
carry `direction = -1`, which is applied to `beta`.
"""

import logging
from dataclasses import dataclass, field, fields

import numpy as np
import pandas as pd

from ..constants import ALLELE_COMPLEMENT, AMBIGUOUS_ALLELE_PAIRS, DEFAULT_MATCH_MIN_PROP
from ..errors import InputError, NoOverlapError
from ..io import PANEL_REQUIRED_COLUMNS, SUMSTATS_REQUIRED_COLUMNS, check_columns

logger = logging.getLogger(__name__)

DUP_POLICIES = ("drop", "error")


@dataclass
class MatchResult:
    """
    Matched-variant table and the counters describing how it was obtained.

    Attributes
    ----------
    table : pd.DataFrame
        One row per matched variant, sorted by (chr, pos), with panel alleles,
        sign-adjusted `beta`, `direction`, `is_flipped`, `is_ambiguous`,
        `panel_index` and `sumstats_index`.
    n_input : int
        Number of summary-statistics rows.
    n_panel : int
        Number of panel variants.
    n_matched : int
        Number of rows in `table`.
    n_strand_flipped : int
        Matched rows that required complementing the alleles.
    n_reversed : int
        Matched rows whose alleles were swapped (`direction == -1`).
    n_ambiguous : int
        Matched palindromic (A/T, C/G) rows when strand flipping is enabled.
    n_multi_allelic : int
        Extra panel matches discarded for summary-statistics rows matching several panel rows.
    n_dup_panel : int
        Rows dropped because several summary-statistics rows matched the same panel variant.
    n_dup_pos : int
        Rows dropped because they shared a (chr, pos) with another matched row.
    """

    table: pd.DataFrame = field(repr=False)
    n_input: int
    n_panel: int
    n_matched: int
    n_strand_flipped: int = 0
    n_reversed: int = 0
    n_ambiguous: int = 0
    n_multi_allelic: int = 0
    n_dup_panel: int = 0
    n_dup_pos: int = 0

    @property
    def n_dropped(self) -> int:
        return self.n_input - self.n_matched

    def counts(self) -> dict:
        counts = {f.name: getattr(self, f.name) for f in fields(self) if f.name != "table"}
        counts["n_dropped"] = self.n_dropped
        return counts


def flip_strand(alleles: pd.Series) -> pd.Series:
    """Complement alleles (A<->T, C<->G); anything else becomes NaN."""
    return alleles.map(ALLELE_COMPLEMENT)


def is_ambiguous(a0: pd.Series, a1: pd.Series) -> np.ndarray:
    """Palindromic allele pairs, whose strand cannot be resolved."""
    return np.array([pair in AMBIGUOUS_ALLELE_PAIRS for pair in zip(a0, a1)], dtype=bool)


def _candidates(sumstats: pd.DataFrame, strand_flip: bool) -> pd.DataFrame:
    """All allele configurations under which a summary-statistics row may match."""
    ss = sumstats.copy()
    ss["is_flipped"] = False
    ss["direction"] = 1
    parts = [ss]

    if strand_flip:
        flipped = ss[~ss["is_ambiguous"]].copy()
        flipped["a0"] = flip_strand(flipped["a0"])
        flipped["a1"] = flip_strand(flipped["a1"])
        flipped = flipped.dropna(subset=["a0", "a1"])
        flipped["is_flipped"] = True
        parts.append(flipped)

    candidates = pd.concat(parts, ignore_index=True)
    reversed_ = candidates.copy()
    reversed_["a0"] = candidates["a1"]
    reversed_["a1"] = candidates["a0"]
    reversed_["direction"] = -1
    return pd.concat([candidates, reversed_], ignore_index=True)


def snp_match(
    sumstats: pd.DataFrame,
    info_snp: pd.DataFrame,
    strand_flip: bool = True,
    join_by_pos: bool = True,
    match_min_prop: float = DEFAULT_MATCH_MIN_PROP,
    remove_dups: bool = True,
    dup_policy: str = "drop",
) -> MatchResult:
    """
    Match alleles between summary statistics and a variant panel.

    Parameters
    ----------
    sumstats : pd.DataFrame
        Summary statistics with columns `chr`, `pos`, `a0`, `a1`, `beta`
        (plus optional `beta_se`, `n_eff`, `p`, `rsid`, ...).
    info_snp : pd.DataFrame
        Panel with columns `chr`, `pos`, `a0`, `a1` (plus optional `rsid`, ...).
        Its row order defines `panel_index`, i.e. the genotype column index.
    strand_flip : bool
        Also try the complementary strand. Palindromic rows are then flagged as
        ambiguous (never complemented, since their complement is themselves).
    join_by_pos : bool
        Join on (chr, pos) if True, on `rsid` otherwise.
    match_min_prop : float
        Minimum proportion of variants (of the smaller table) that must match.
        0 (default) never rejects a partial overlap; it is only reported.
    remove_dups : bool
        Drop all matched rows that share a (chr, pos) with another one.
    dup_policy : str
        What to do when several summary-statistics rows match the same panel
        variant: 'drop' them all or raise an 'error'.

    Returns
    -------
    MatchResult
        Matched table and counters.

    Raises
    ------
    InputError
        Missing columns, unknown `dup_policy`, or duplicates under `dup_policy='error'`.
    NoOverlapError
        No variant matched, or fewer than `match_min_prop` when it is > 0.
    """
    if dup_policy not in DUP_POLICIES:
        raise InputError(f"Unknown dup_policy: {dup_policy}. Must be one of {DUP_POLICIES}")
    join_cols = ["chr", "pos"] if join_by_pos else ["rsid"]
    check_columns(sumstats, SUMSTATS_REQUIRED_COLUMNS if join_by_pos else ["rsid", "a0", "a1", "beta"],
                  "Summary statistics")
    check_columns(info_snp, PANEL_REQUIRED_COLUMNS if join_by_pos else ["rsid", "a0", "a1"], "Variant panel")

    n_input, n_panel = len(sumstats), len(info_snp)
    logger.info(f"{n_input:,} variants to be matched.")

    ss = sumstats.copy()
    panel = info_snp.copy()
    for df in (ss, panel):
        df["a0"] = df["a0"].astype(str).str.upper()
        df["a1"] = df["a1"].astype(str).str.upper()
    ss["sumstats_index"] = np.arange(n_input)
    panel["panel_index"] = np.arange(n_panel)
    ss["is_ambiguous"] = is_ambiguous(ss["a0"], ss["a1"]) & strand_flip

    # Join keys are compared as strings so that '1' and 1 (or 'chr1') agree
    keys = []
    for col in join_cols:
        key = f"_key_{col}"
        for df in (ss, panel):
            values = df[col].astype(str)
            df[key] = values.str.replace("chr", "", regex=False) if col == "chr" else values
        keys.append(key)

    candidates = _candidates(ss, strand_flip)
    matched = candidates.merge(panel, on=keys + ["a0", "a1"], how="inner", suffixes=(".ss", ""))

    # Prefer direct over flipped, then unreversed over reversed, then panel order
    matched = matched.sort_values(
        ["sumstats_index", "is_flipped", "direction", "panel_index"],
        ascending=[True, True, False, True],
        kind="stable",
    )
    n_before = len(matched)
    matched = matched.drop_duplicates(subset="sumstats_index", keep="first")
    n_multi_allelic = n_before - len(matched)
    if n_multi_allelic > 0:
        logger.info(f"{n_multi_allelic:,} additional panel matches of multi-allelic variants were discarded.")

    dup_panel = matched.duplicated(subset="panel_index", keep=False)
    n_dup_panel = int(dup_panel.sum())
    if n_dup_panel > 0:
        if dup_policy == "error":
            raise InputError(f"{n_dup_panel} summary-statistics rows match an already matched panel variant.")
        logger.warning(f"{n_dup_panel:,} summary-statistics rows matching the same panel variant were removed.")
        matched = matched[~dup_panel]

    n_dup_pos = 0
    if remove_dups:
        dups = matched.duplicated(subset=["chr", "pos"], keep=False) if join_by_pos else \
            matched.duplicated(subset=["rsid"], keep=False)
        n_dup_pos = int(dups.sum())
        if n_dup_pos > 0:
            logger.info(f"{n_dup_pos:,} duplicated variants were removed.")
            matched = matched[~dups]

    matched = matched.copy()
    matched["beta"] = matched["beta"] * matched["direction"]
    matched = matched.drop(columns=keys + [c for c in ("chr.ss", "pos.ss") if c in matched.columns])
    sort_cols = ["chr", "pos"] if "pos" in matched.columns else ["panel_index"]
    matched = matched.sort_values(sort_cols, kind="stable").reset_index(drop=True)

    first = ["chr", "pos", "a0", "a1"] if join_by_pos else ["rsid", "a0", "a1"]
    first = [c for c in first if c in matched.columns]
    matched = matched[first + [c for c in matched.columns if c not in first]]

    result = MatchResult(
        table=matched,
        n_input=n_input,
        n_panel=n_panel,
        n_matched=len(matched),
        n_strand_flipped=int(matched["is_flipped"].sum()),
        n_reversed=int((matched["direction"] < 0).sum()),
        n_ambiguous=int(matched["is_ambiguous"].sum()),
        n_multi_allelic=n_multi_allelic,
        n_dup_panel=n_dup_panel,
        n_dup_pos=n_dup_pos,
    )

    logger.info(
        f"{result.n_matched:,} variants have been matched; {result.n_strand_flipped:,} were flipped "
        f"and {result.n_reversed:,} were reversed."
    )
    if strand_flip and result.n_ambiguous > 0:
        logger.warning(
            f"{result.n_ambiguous:,} matched variants have ambiguous (palindromic) alleles; "
            f"their strand is assumed identical in both tables (see the `is_ambiguous` column)."
        )

    if result.n_matched == 0:
        raise NoOverlapError("No variant has been matched.")
    n_expected = min(n_input, n_panel)
    if result.n_matched < n_expected:
        logger.warning(
            f"Partial overlap: {result.n_matched:,} of {n_input:,} summary statistics and "
            f"{n_panel:,} panel variants have been matched ({result.counts()})."
        )
    min_match = match_min_prop * n_expected
    if match_min_prop > 0 and result.n_matched < min_match:
        raise NoOverlapError(
            f"Not enough variants have been matched ({result.n_matched} < {min_match:.0f}); "
            f"check the genome build and allele columns, or lower `match_min_prop`."
        )
    return result
