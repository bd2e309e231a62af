"""
I/O utilities: summary statistics, variant panels, genetic maps and PLINK genotypes.

Genotypes are read through pandas-plink (lazily, with Dask/Xarray) and exposed
as a dense dosage matrix so that the collaborators in `bigPRS.stats` can use
them directly.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

import numpy as np
import pandas as pd
import xarray as xr
from pandas_plink import read_plink1_bin

from .errors import InputError

logger = logging.getLogger(__name__)

# Common alternative column names, mapped to the names used throughout bigPRS
SUMSTATS_COLUMN_ALIASES = {
    "chr": ["chr", "chrom", "chromosome", "#chrom", "#chr"],
    "pos": ["pos", "bp", "position", "base_pair_location"],
    "rsid": ["rsid", "snp", "snpid", "id", "variant_id", "marker"],
    "a0": ["a0", "a2", "ref", "other_allele", "nea"],
    "a1": ["a1", "alt", "effect_allele", "ea"],
    "beta": ["beta", "b", "effect"],
    "beta_se": ["beta_se", "se", "standard_error", "sebeta"],
    "p": ["p", "pval", "p_value", "pvalue"],
    "n_eff": ["n_eff", "neff", "n"],
    "n_case": ["n_case", "ncase", "n_cas", "cases"],
    "n_control": ["n_control", "ncontrol", "n_con", "controls"],
}

PANEL_REQUIRED_COLUMNS = ["chr", "pos", "a0", "a1"]
SUMSTATS_REQUIRED_COLUMNS = ["chr", "pos", "a0", "a1", "beta"]


def _text_separator(file_path: str) -> str:
    """Separator of a text table; `.tsv` and `.csv` are exact, anything else is whitespace-delimited."""
    name = file_path.lower()
    for ext in (".gz", ".bz2"):
        if name.endswith(ext):
            name = name[:-len(ext)]
    if name.endswith(".tsv"):
        return "\t"
    if name.endswith(".csv"):
        return ","
    return r"\s+"


def read_table(file_path: Union[str, Path]) -> pd.DataFrame:
    """Read a table based on its format/extension."""
    file_path = str(file_path)
    try:
        if file_path.endswith(".feather"):
            return pd.read_feather(file_path)
        elif file_path.endswith(".parquet"):
            return pd.read_parquet(file_path)
        elif file_path.endswith(".gz"):
            return pd.read_csv(file_path, compression="gzip", sep=_text_separator(file_path))
        elif file_path.endswith(".bz2"):
            return pd.read_csv(file_path, compression="bz2", sep=_text_separator(file_path))
        else:
            return pd.read_csv(file_path, sep=_text_separator(file_path))
    except (OSError, ValueError) as e:
        logger.error(f"Failed to read file {file_path}: {str(e)}")
        raise


def write_table(df: pd.DataFrame, file_path: Union[str, Path]):
    """Write a table, choosing the format from the extension (tab-separated text by default)."""
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    if file_path.suffix == ".parquet":
        df.to_parquet(file_path, index=False)
    elif file_path.suffix == ".feather":
        df.reset_index(drop=True).to_feather(file_path)
    else:
        sep = "," if _text_separator(str(file_path)) == "," else "\t"
        df.to_csv(file_path, sep=sep, index=False)
    logger.info(f"Saved {len(df)} rows to {file_path}")


def effective_sample_size(n_case, n_control):
    """Effective sample size of a case-control GWAS: `4 / (1/n_case + 1/n_control)`."""
    n_case = np.asarray(n_case, dtype=np.float64)
    n_control = np.asarray(n_control, dtype=np.float64)
    if np.any(n_case <= 0) or np.any(n_control <= 0):
        raise InputError("Case and control counts must be positive")
    return 4.0 / (1.0 / n_case + 1.0 / n_control)


def standardize_columns(df: pd.DataFrame, column_map: Optional[Dict[str, str]] = None) -> pd.DataFrame:
    """
    Rename columns to the canonical names (chr, pos, a0, a1, beta, beta_se, ...).

    An explicit `column_map` ({original: canonical}) takes precedence over aliases.
    """
    df = df.copy()
    if column_map:
        df = df.rename(columns=column_map)

    lower = {c.lower(): c for c in df.columns}
    renames = {}
    for canonical, aliases in SUMSTATS_COLUMN_ALIASES.items():
        if canonical in df.columns:
            continue
        for alias in aliases:
            if alias in lower and lower[alias] not in renames and lower[alias] not in SUMSTATS_COLUMN_ALIASES:
                renames[lower[alias]] = canonical
                break
    return df.rename(columns=renames)


def check_columns(df: pd.DataFrame, required: List[str], what: str):
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise InputError(f"{what} is missing required columns: {missing}")


def prepare_sumstats(sumstats: pd.DataFrame, column_map: Optional[Dict[str, str]] = None) -> pd.DataFrame:
    """
    Standardize and validate summary statistics.

    Adds `n_eff` from case/control counts when it is not given, uppercases
    alleles and drops rows with missing values in the required columns.
    """
    sumstats = standardize_columns(sumstats, column_map)
    check_columns(sumstats, SUMSTATS_REQUIRED_COLUMNS, "Summary statistics")

    if "n_eff" not in sumstats.columns and {"n_case", "n_control"} <= set(sumstats.columns):
        sumstats["n_eff"] = effective_sample_size(sumstats["n_case"], sumstats["n_control"])
        logger.info("Computed effective sample sizes from case and control counts.")

    for col in ("a0", "a1"):
        sumstats[col] = sumstats[col].astype(str).str.upper()

    m = len(sumstats)
    sumstats = sumstats.dropna(subset=[c for c in SUMSTATS_REQUIRED_COLUMNS + ["beta_se", "n_eff"] if c in sumstats])
    if m > len(sumstats):
        logger.info(f"Dropped {m - len(sumstats)} variants with missing values.")

    sumstats["chr"] = sumstats["chr"].astype(str).str.replace("chr", "", regex=False).astype(int)
    sumstats["pos"] = sumstats["pos"].astype(np.int64)
    return sumstats.reset_index(drop=True)


def read_sumstats(file_path: Union[str, Path], column_map: Optional[Dict[str, str]] = None) -> pd.DataFrame:
    """Parse GWAS summary statistics into the canonical format."""
    logger.info(f"Reading summary statistics from {file_path} ...")
    sumstats = prepare_sumstats(read_table(file_path), column_map)
    logger.info(f"Read summary statistics for {len(sumstats)} variants.")
    return sumstats


def read_bim(file_path: Union[str, Path]) -> pd.DataFrame:
    """Read a PLINK .bim file as a variant panel (allele1 is `a1`, allele2 is `a0`)."""
    bim = pd.read_csv(
        file_path,
        sep=r"\s+",
        header=None,
        names=["chr", "rsid", "genetic_dist", "pos", "a1", "a0"],
        dtype={"rsid": str, "a0": str, "a1": str},
    )
    logger.info(f"Read {len(bim)} variants from {file_path}")
    return bim


def read_panel(file_path: Union[str, Path]) -> pd.DataFrame:
    """Read a variant panel from a .bim file or any table with chr/pos/a0/a1 columns."""
    if str(file_path).endswith(".bim"):
        panel = read_bim(file_path)
    else:
        panel = standardize_columns(read_table(file_path))
    check_columns(panel, PANEL_REQUIRED_COLUMNS, "Variant panel")
    for col in ("a0", "a1"):
        panel[col] = panel[col].astype(str).str.upper()
    return panel


def _read_genetic_map(genetic_maps, chrom) -> pd.DataFrame:
    if isinstance(genetic_maps, dict):
        gmap = genetic_maps[chrom]
    else:
        map_dir = Path(genetic_maps)
        candidates = sorted(map_dir.glob(f"chr{chrom}.*")) + sorted(map_dir.glob(f"*chr{chrom}_*"))
        if not candidates:
            raise FileNotFoundError(f"No genetic map found for chromosome {chrom} in {map_dir}")
        gmap = pd.read_csv(candidates[0], sep=r"\s+", header=None, comment="#")
        # OMNI interpolated maps: id, position, cM
        gmap = gmap.iloc[:, -2:]
        gmap.columns = ["pos", "cM"]
    return gmap.sort_values("pos")


def genetic_position(chromosomes, positions, genetic_maps) -> np.ndarray:
    """
    Convert physical positions to genetic positions (cM) by linear interpolation.

    Parameters
    ----------
    chromosomes, positions : array-like
        Chromosome and base-pair position of every variant.
    genetic_maps : dict or path
        Either {chromosome: DataFrame with `pos` and `cM`} or a directory of
        per-chromosome map files (`chr{chr}.*`).

    Returns
    -------
    np.ndarray
        Genetic positions. Positions outside a map are clamped to its ends.
    """
    chromosomes = np.asarray(chromosomes)
    positions = np.asarray(positions, dtype=np.float64)
    cm = np.full(len(positions), np.nan)
    for chrom in pd.unique(chromosomes):
        mask = chromosomes == chrom
        gmap = _read_genetic_map(genetic_maps, chrom)
        cm[mask] = np.interp(positions[mask], gmap["pos"].to_numpy(float), gmap["cM"].to_numpy(float))
    return cm


class PlinkBEDReader:
    """
    Reader for PLINK binary files using pandas-plink and Xarray.

    Loads genotypes lazily via Dask/Xarray, applies MAF filtering and
    converts to a dense dosage matrix with missing values mean-imputed.

    Attributes
    ----------
    bfile : str
        Base filename prefix for PLINK files
    G : xr.DataArray
        The underlying xarray DataArray (samples x variants) of allele counts
    bim : pd.DataFrame
        Variant panel (chr, rsid, genetic_dist, pos, a0, a1, maf)
    fam : pd.DataFrame
        FAM file data (individual information)
    genotypes : np.ndarray
        Dosage matrix (n_individuals, m_snps), counting allele `a1`
    """

    def __init__(self, bfile_prefix: str, maf_min: Optional[float] = None, preload: bool = True):
        self.bfile = bfile_prefix

        bed_path = f"{bfile_prefix}.bed"
        bim_path = f"{bfile_prefix}.bim"
        fam_path = f"{bfile_prefix}.fam"

        if not (Path(bed_path).exists() and Path(bim_path).exists() and Path(fam_path).exists()):
            raise FileNotFoundError(f"One or more PLINK files missing for prefix: {bfile_prefix}")

        logger.info(f"Loading PLINK files from: {bfile_prefix}")
        # pandas-plink names the 5th .bim column a0; count that allele, as PLINK does
        self.G = read_plink1_bin(bed_path, bim_path, fam_path, ref="a0", verbose=False)
        logger.info(f"Loaded metadata: {self.G.sizes['variant']} SNPs × {self.G.sizes['sample']} individuals")

        self.maf = self._calculate_maf()
        if maf_min is not None and maf_min > 0:
            mask = (self.maf >= maf_min).values
            n_removed = int(np.sum(~mask))
            if n_removed > 0:
                logger.info(f"Filtered {n_removed} SNPs with MAF < {maf_min}")
            self.G = self.G.isel(variant=mask)
            self.maf = self.maf[mask]

        self.n = self.G.sizes["sample"]
        self.m = self.G.sizes["variant"]
        self._sync_metadata()

        self.genotypes = None
        if preload:
            self.genotypes = self._load_dosages()
            logger.info(f"✓ Genotypes ready: {self.genotypes.shape}")

    @property
    def shape(self):
        return self.n, self.m

    def __getitem__(self, key):
        if self.genotypes is None:
            raise RuntimeError("Genotypes were not pre-loaded. Initialize with preload=True.")
        return self.genotypes[key]

    def _calculate_maf(self) -> xr.DataArray:
        freq_a1 = self.G.mean(dim="sample", skipna=True) / 2.0
        return np.minimum(freq_a1, 1.0 - freq_a1).compute()

    def _sync_metadata(self):
        """Extract BIM and FAM dataframes from xarray coordinates."""
        self.bim = pd.DataFrame({
            "chr": self.G.chrom.values.astype(int),
            "rsid": self.G.snp.values,
            "genetic_dist": self.G.cm.values,
            "pos": self.G.pos.values,
            "a0": self.G.a1.values,
            "a1": self.G.a0.values,
        })
        self.bim["maf"] = self.maf.values

        self.fam = pd.DataFrame({
            "fid": self.G.fid.values,
            "iid": self.G.iid.values,
            "trait": self.G.trait.values,
        })

    def _load_dosages(self) -> np.ndarray:
        X = self.G.values.astype(np.float32)
        means = np.nanmean(X, axis=0)
        means = np.where(np.isnan(means), 0.0, means)
        nan_mask = np.isnan(X)
        if nan_mask.any():
            logger.info(f"Mean-imputing {int(nan_mask.sum())} missing genotype calls")
            X = np.where(nan_mask, means[np.newaxis, :], X)
        return X
