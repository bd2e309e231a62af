import numpy as np
import pandas as pd
import pytest

from bigPRS.errors import InputError, NoOverlapError
from bigPRS.matching import flip_strand, is_ambiguous, snp_match


def test_example_without_strand_flip(example_sumstats, example_panel):
    """Only exact and allele-swapped matches are kept."""
    result = snp_match(example_sumstats, example_panel, strand_flip=False)
    table = result.table

    assert result.n_input == 6
    assert result.n_matched == 4
    assert result.n_dropped == 2
    assert table["pos"].tolist() == [86303, 86331, 752566, 755890]
    assert table["rsid"].tolist() == ["rs2949417", "rs115209712", "rs3094315", "rs3115858"]
    np.testing.assert_allclose(table["beta"], [-1.868, -0.250, 2.112, 0.239])
    assert table["direction"].tolist() == [1, -1, 1, 1]
    assert table["panel_index"].tolist() == [0, 1, 3, 4]
    # Panel alleles are reported
    assert table["a0"].tolist() == ["T", "A", "A", "T"]
    assert table["a1"].tolist() == ["G", "G", "G", "A"]
    assert result.n_strand_flipped == 0
    assert result.n_ambiguous == 0


def test_example_with_strand_flip(example_sumstats, example_panel):
    """The C/T variant matches the G/A panel variant on the other strand."""
    result = snp_match(example_sumstats, example_panel, strand_flip=True)
    table = result.table.set_index("pos")

    assert result.n_matched == 5
    assert result.n_strand_flipped == 1
    assert bool(table.loc[162463, "is_flipped"])
    assert table.loc[162463, "direction"] == 1
    assert table.loc[162463, "beta"] == pytest.approx(-0.671)
    assert 758144 not in table.index


def test_palindromic_variants_are_flagged(example_sumstats, example_panel):
    """A T/A variant is matched as given and reported as ambiguous, never as flipped."""
    result = snp_match(example_sumstats, example_panel, strand_flip=True)
    table = result.table.set_index("pos")

    assert result.n_ambiguous == 1
    assert bool(table.loc[755890, "is_ambiguous"])
    assert not bool(table.loc[755890, "is_flipped"])
    assert table.loc[755890, "beta"] == pytest.approx(0.239)
    assert result.table["is_ambiguous"].sum() == 1


@pytest.mark.parametrize("pair", [("A", "T"), ("T", "A"), ("C", "G"), ("G", "C")])
def test_all_palindromic_pairs(pair):
    sumstats = pd.DataFrame({"chr": [1], "pos": [100], "a0": [pair[0]], "a1": [pair[1]], "beta": [0.5]})
    panel = pd.DataFrame({"chr": [1], "pos": [100], "a0": [pair[1]], "a1": [pair[0]]})

    result = snp_match(sumstats, panel, strand_flip=True)

    assert result.n_matched == 1
    assert result.n_ambiguous == 1
    assert result.n_strand_flipped == 0
    # Matched as an allele swap, the only interpretation that does not assume a strand flip
    assert result.table["beta"].iloc[0] == pytest.approx(-0.5)


def test_swapping_alleles_negates_beta(example_sumstats, example_panel):
    """Relabeling (a0, a1) and negating beta gives the same table."""
    swapped = example_sumstats.copy()
    swapped["a0"], swapped["a1"] = example_sumstats["a1"], example_sumstats["a0"]
    swapped["beta"] = -example_sumstats["beta"]

    for strand_flip in (False, True):
        ref = snp_match(example_sumstats, example_panel, strand_flip=strand_flip).table
        res = snp_match(swapped, example_panel, strand_flip=strand_flip).table
        assert res["panel_index"].tolist() == ref["panel_index"].tolist()
        np.testing.assert_allclose(res["beta"], ref["beta"])
        np.testing.assert_array_equal(res["direction"], -ref["direction"])


def test_swapping_panel_alleles_negates_beta(example_sumstats, example_panel):
    swapped = example_panel.copy()
    swapped["a0"], swapped["a1"] = example_panel["a1"], example_panel["a0"]

    ref = snp_match(example_sumstats, example_panel, strand_flip=False).table
    res = snp_match(example_sumstats, swapped, strand_flip=False).table

    assert res["panel_index"].tolist() == ref["panel_index"].tolist()
    np.testing.assert_allclose(res["beta"], -ref["beta"])


def test_beta_se_is_unchanged(example_sumstats, example_panel):
    sumstats = example_sumstats.assign(beta_se=np.arange(1, 7) / 10, n_eff=1000.0)
    table = snp_match(sumstats, example_panel, strand_flip=False).table
    np.testing.assert_allclose(table["beta_se"], [0.1, 0.2, 0.4, 0.5])
    assert (table["n_eff"] == 1000.0).all()


def test_chromosome_prefix_and_lowercase_alleles(example_sumstats, example_panel):
    sumstats = example_sumstats.assign(
        chr="chr1", a0=example_sumstats["a0"].str.lower(), a1=example_sumstats["a1"].str.lower()
    )
    result = snp_match(sumstats, example_panel, strand_flip=False)
    assert result.n_matched == 4


def test_join_by_rsid(example_panel):
    sumstats = pd.DataFrame({
        "rsid": ["rs3094315", "rs2949417", "rs000"],
        "a0": ["G", "T", "A"],
        "a1": ["A", "G", "C"],
        "beta": [1.0, 2.0, 3.0],
    })
    result = snp_match(sumstats, example_panel, join_by_pos=False, strand_flip=False)

    assert result.n_matched == 2
    table = result.table.set_index("rsid")
    assert table.loc["rs3094315", "beta"] == -1.0
    assert table.loc["rs2949417", "beta"] == 2.0
    assert table["panel_index"].tolist() == [0, 3]


def test_multi_allelic_panel_keeps_first_match():
    sumstats = pd.DataFrame({"chr": [1], "pos": [100], "a0": ["A"], "a1": ["G"], "beta": [0.3]})
    panel = pd.DataFrame({"chr": [1, 1], "pos": [100, 100], "a0": ["G", "A"], "a1": ["A", "G"]})

    result = snp_match(sumstats, panel, strand_flip=False, remove_dups=False)

    assert result.n_matched == 1
    assert result.n_multi_allelic == 1
    # The direct match is preferred over the allele swap
    assert result.table["panel_index"].iloc[0] == 1
    assert result.table["beta"].iloc[0] == pytest.approx(0.3)


def test_duplicated_sumstats_policy():
    sumstats = pd.DataFrame({
        "chr": [1, 1, 1],
        "pos": [100, 100, 200],
        "a0": ["A", "G", "C"],
        "a1": ["G", "A", "T"],
        "beta": [0.3, -0.3, 0.1],
    })
    panel = pd.DataFrame({"chr": [1, 1], "pos": [100, 200], "a0": ["A", "C"], "a1": ["G", "T"]})

    result = snp_match(sumstats, panel, strand_flip=False, dup_policy="drop", match_min_prop=0.0)
    assert result.n_dup_panel == 2
    assert result.table["pos"].tolist() == [200]

    with pytest.raises(InputError, match="already matched"):
        snp_match(sumstats, panel, strand_flip=False, dup_policy="error")


def test_each_panel_variant_matched_at_most_once(example_sumstats, example_panel):
    repeated = pd.concat([example_sumstats, example_sumstats.iloc[[0]]], ignore_index=True)
    result = snp_match(repeated, example_panel, strand_flip=True)
    assert not result.table["panel_index"].duplicated().any()
    assert result.n_dup_panel == 2
    assert 0 not in result.table["panel_index"].tolist()


def test_no_overlap():
    sumstats = pd.DataFrame({"chr": [1], "pos": [1], "a0": ["A"], "a1": ["G"], "beta": [0.1]})
    panel = pd.DataFrame({"chr": [2], "pos": [1], "a0": ["A"], "a1": ["G"]})
    with pytest.raises(NoOverlapError):
        snp_match(sumstats, panel)


def test_small_partial_overlap_is_reported():
    sumstats = pd.DataFrame({
        "chr": 1,
        "pos": np.arange(1, 11) * 100,
        "a0": "A",
        "a1": "G",
        "beta": np.linspace(-0.1, 0.1, 10),
    })
    panel = pd.DataFrame({"chr": 1, "pos": np.arange(10, 20) * 100, "a0": "A", "a1": "G"})

    result = snp_match(sumstats, panel)
    assert result.n_matched == 1
    assert result.table["pos"].tolist() == [1000]
    assert result.table["panel_index"].tolist() == [0]
    counts = result.counts()
    assert (counts["n_input"], counts["n_panel"], counts["n_dropped"]) == (10, 10, 9)


def test_partial_overlap_below_min_prop(example_sumstats, example_panel):
    """Partial overlap is reported, and only rejected below `match_min_prop`."""
    result = snp_match(example_sumstats, example_panel, strand_flip=False, match_min_prop=0.5)
    assert result.n_matched == 4
    with pytest.raises(NoOverlapError, match="Not enough"):
        snp_match(example_sumstats, example_panel, strand_flip=False, match_min_prop=0.9)


def test_missing_columns(example_sumstats, example_panel):
    with pytest.raises(InputError, match="beta"):
        snp_match(example_sumstats.drop(columns="beta"), example_panel)
    with pytest.raises(InputError, match="a1"):
        snp_match(example_sumstats, example_panel.drop(columns="a1"))
    with pytest.raises(InputError, match="dup_policy"):
        snp_match(example_sumstats, example_panel, dup_policy="keep")


def test_counts(example_sumstats, example_panel):
    counts = snp_match(example_sumstats, example_panel).counts()
    assert counts["n_input"] == 6
    assert counts["n_panel"] == 5
    assert counts["n_matched"] == 5
    assert counts["n_dropped"] == 1
    assert "table" not in counts


def test_flip_strand_and_is_ambiguous():
    alleles = pd.Series(["A", "C", "G", "T", "N"])
    assert flip_strand(alleles).tolist()[:4] == ["T", "G", "C", "A"]
    assert pd.isna(flip_strand(alleles).iloc[4])
    assert is_ambiguous(pd.Series(["A", "C", "A"]), pd.Series(["T", "G", "G"])).tolist() == [True, True, False]
