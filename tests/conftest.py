from pathlib import Path

import numpy as np
import pandas as pd
import pytest
import xarray as xr
from pandas_plink import write_plink1_bin
from typer.testing import CliRunner

from bigPRS.ld import SparseBandedMatrix, genome_positions


def pytest_addoption(parser):
    """Add custom command line options."""
    parser.addoption(
        "--run-real-data",
        action="store_true",
        default=False,
        help="Run tests that require real data",
    )
    parser.addoption(
        "--test-data",
        action="store",
        default=None,
        help="Path to a directory with PLINK test files (ref.bed/bim/fam and sumstats.tsv)",
    )
    parser.addoption(
        "--work-dir",
        action="store",
        default=None,
        help="Path to working directory for test outputs (defaults to a temporary directory)",
    )


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "real_data: mark test that requires real data (disabled by default)"
    )


def pytest_collection_modifyitems(config, items):
    """Skip real_data tests by default unless --run-real-data is specified."""
    if not config.getoption("--run-real-data"):
        skip_real_data = pytest.mark.skip(reason="need --run-real-data option to run")
        for item in items:
            if "real_data" in item.keywords:
                item.add_marker(skip_real_data)


# ---------------------------------------------------------------------------
# Session-scoped fixtures: real data paths
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def test_data_dir(request):
    """Root test data directory."""
    test_dir = request.config.getoption("--test-data")
    if not test_dir:
        pytest.skip("--test-data not provided")
    test_dir = Path(test_dir)
    if not test_dir.exists():
        pytest.skip(f"Test data directory does not exist: {test_dir}")
    return test_dir


@pytest.fixture(scope="session")
def ref_panel_prefix(test_data_dir):
    """PLINK binary file prefix of the reference panel."""
    prefix = (test_data_dir / "ref").as_posix()
    if not Path(f"{prefix}.bed").exists():
        pytest.skip(f"Reference panel not found at {prefix}")
    return prefix


@pytest.fixture(scope="session")
def real_sumstats_file(test_data_dir):
    """GWAS summary statistics matching the reference panel."""
    p = test_data_dir / "sumstats.tsv"
    if not p.exists():
        pytest.skip(f"Summary statistics file not found: {p}")
    return p


# ---------------------------------------------------------------------------
# Simulated data
# ---------------------------------------------------------------------------


def simulate_genotypes(n: int, m: int, seed: int = 42, copy_prob: float = 0.8) -> np.ndarray:
    """
    Dosages (n, m) with LD decaying along the columns.

    Each haplotype copies the allele of the previous variant with probability
    `copy_prob`, and draws a new allele otherwise.
    """
    rng = np.random.default_rng(seed)
    freqs = rng.uniform(0.2, 0.8, size=m)
    dosages = np.zeros((n, m))
    for _ in range(2):
        hap = np.zeros((n, m))
        hap[:, 0] = rng.random(n) < freqs[0]
        for j in range(1, m):
            copy = rng.random(n) < copy_prob
            hap[:, j] = np.where(copy, hap[:, j - 1], rng.random(n) < freqs[j])
        dosages += hap
    return dosages


@pytest.fixture
def genotypes():
    """300 individuals x 40 variants, 20 on chromosome 1 and 20 on chromosome 2."""
    return simulate_genotypes(300, 40)


@pytest.fixture
def variant_info():
    return pd.DataFrame({
        "chr": np.repeat([1, 2], 20),
        "pos": np.tile(np.arange(1, 21) * 1000, 2),
    })


@pytest.fixture
def positions(variant_info):
    """Genome-wide positions of the simulated variants."""
    return genome_positions(variant_info["chr"], variant_info["pos"])


@pytest.fixture
def corr_dense(genotypes, positions):
    """Correlation of the simulated variants, zero between chromosomes."""
    corr = np.corrcoef(genotypes, rowvar=False)
    same_chr = np.abs(positions[:, None] - positions[None, :]) < 1e9
    return np.where(same_chr, corr, 0.0)


@pytest.fixture
def ld_store(tmp_path, corr_dense, positions):
    """Banded store of `corr_dense`, with small blocks to exercise block boundaries."""
    return SparseBandedMatrix.build(corr_dense, positions, 1e6, tmp_path / "corr", block_size=7)


@pytest.fixture
def df_beta(corr_dense):
    """Marginal effects generated from a few causal variants and the simulated LD."""
    rng = np.random.default_rng(1)
    m = corr_dense.shape[0]
    n_eff = 20_000
    beta_true = np.zeros(m)
    beta_true[[3, 17, 25, 32]] = [0.05, -0.04, 0.03, 0.05]
    beta_se = np.full(m, 1 / np.sqrt(n_eff))
    beta = corr_dense @ beta_true + rng.normal(scale=beta_se)
    return pd.DataFrame({"beta": beta, "beta_se": beta_se, "n_eff": np.full(m, float(n_eff))})


@pytest.fixture
def identity_store(tmp_path):
    """Banded store of a 10 x 10 identity matrix."""
    m = 10
    return SparseBandedMatrix.build(np.eye(m), np.arange(m) * 100.0, 250, tmp_path / "identity", block_size=4)


# ---------------------------------------------------------------------------
# Small matching example (chromosome 1, six summary statistics, five panel variants)
# ---------------------------------------------------------------------------


@pytest.fixture
def example_sumstats():
    return pd.DataFrame({
        "chr": 1,
        "pos": [86303, 86331, 162463, 752566, 755890, 758144],
        "a0": ["T", "G", "C", "A", "T", "G"],
        "a1": ["G", "A", "T", "G", "A", "A"],
        "beta": [-1.868, 0.250, -0.671, 2.112, 0.239, 1.272],
        "p": [0.860, 0.346, 0.900, 0.456, 0.776, 0.383],
    })


@pytest.fixture
def example_panel():
    return pd.DataFrame({
        "rsid": ["rs2949417", "rs115209712", "rs143399298", "rs3094315", "rs3115858"],
        "chr": 1,
        "pos": [86303, 86331, 162463, 752566, 755890],
        "a0": ["T", "A", "G", "A", "T"],
        "a1": ["G", "G", "A", "G", "A"],
    })


@pytest.fixture
def plink_prefix(tmp_path, genotypes, variant_info):
    """The simulated genotypes written as PLINK files, one .bim row per variant of `variant_info`."""
    n, m = genotypes.shape
    G = xr.DataArray(
        genotypes,
        dims=["sample", "variant"],
        coords={
            "sample": [f"ind{i}" for i in range(n)],
            "fid": ("sample", [f"fam{i}" for i in range(n)]),
            "iid": ("sample", [f"ind{i}" for i in range(n)]),
            "father": ("sample", ["0"] * n),
            "mother": ("sample", ["0"] * n),
            "gender": ("sample", ["0"] * n),
            "trait": ("sample", ["-9"] * n),
            "variant": [f"variant{j}" for j in range(m)],
            "snp": ("variant", [f"rs{j}" for j in range(m)]),
            "chrom": ("variant", variant_info["chr"].astype(str).tolist()),
            "cm": ("variant", np.zeros(m)),
            "pos": ("variant", variant_info["pos"].to_numpy()),
            "a0": ("variant", ["A"] * m),
            "a1": ("variant", ["G"] * m),
        },
    )
    prefix = tmp_path / "panel"
    write_plink1_bin(G, f"{prefix}.bed", verbose=False)
    return str(prefix)


# ---------------------------------------------------------------------------
# Work directory & CLI runner
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def work_dir(request, tmp_path_factory):
    """Working directory for test outputs."""
    custom_dir = request.config.getoption("--work-dir")
    if custom_dir:
        d = Path(custom_dir)
        d.mkdir(parents=True, exist_ok=True)
        return d
    return tmp_path_factory.mktemp("bigprs_test")


@pytest.fixture(scope="session")
def cli_runner():
    """Typer CliRunner instance."""
    return CliRunner()
