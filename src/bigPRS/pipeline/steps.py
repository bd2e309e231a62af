"""
Pipeline steps run by the CLI.

Every step reads its inputs from, and writes its outputs to, the project
directory described by its config (`ConfigWithAutoPaths`):

    match        -> match/{project}_matched.parquet
    build-ld     -> ld/{project}_corr/ (SparseBandedMatrix store)
    clump        -> clump/{project}_clumped.tsv
    ldpred-*     -> ldpred2/{project}_{method}_weights.tsv
    score        -> score/{project}_{method}_scores.tsv
"""

import logging
import threading
from typing import Optional

import numpy as np
import pandas as pd

from bigPRS.clumping import snp_clumping
from bigPRS.config import (
    BuildLDConfig,
    ClumpConfig,
    ConfigWithAutoPaths,
    LDpredAutoConfig,
    LDpredCommonConfig,
    LDpredGridConfig,
    LDpredInfConfig,
    MatchConfig,
    ScoreConfig,
    write_metadata,
)
from bigPRS.errors import InputError, InvalidHyperparameterError
from bigPRS.io import PlinkBEDReader, genetic_position, read_panel, read_sumstats, read_table, write_table
from bigPRS.ld import SparseBandedMatrix, genome_positions, snp_cor
from bigPRS.ldpred import ldpred2_auto, ldpred2_grid, ldpred2_inf, make_grid
from bigPRS.ldsc import snp_ldsc
from bigPRS.matching import MatchResult, snp_match
from bigPRS.scoring import filter_chains, final_beta_auto, predict_scores

logger = logging.getLogger(__name__)

VARIANT_COLUMNS = ["chr", "pos", "rsid", "a0", "a1", "panel_index"]


def _load_matched(config: ConfigWithAutoPaths) -> pd.DataFrame:
    path = config.matched_sumstats_path
    if not path.exists():
        raise FileNotFoundError(f"Matched summary statistics not found: {path}. Run `bigprs match` first.")
    return read_table(path)


def _check_genotypes(reader: PlinkBEDReader, variants: pd.DataFrame):
    """The variants must index the same panel as the genotype file."""
    ind_col = variants["panel_index"].to_numpy()
    if ind_col.max() >= reader.m:
        raise InputError(f"Panel indices exceed the {reader.m} variants of {reader.bfile}")
    bim_pos = reader.bim["pos"].to_numpy()[ind_col]
    n_diff = int(np.sum(bim_pos != variants["pos"].to_numpy()))
    if n_diff > 0:
        raise InputError(f"{n_diff} matched variants have another position in {reader.bfile}.bim; "
                         f"use the panel that was used for matching")


def _variant_table(matched: pd.DataFrame) -> pd.DataFrame:
    return matched[[c for c in VARIANT_COLUMNS if c in matched.columns]].copy()


def run_match(config: MatchConfig) -> MatchResult:
    sumstats = read_sumstats(config.sumstats_file)
    panel = read_panel(config.panel_file)
    result = snp_match(
        sumstats,
        panel,
        strand_flip=config.strand_flip,
        join_by_pos=config.join_by_pos,
        match_min_prop=config.match_min_prop,
        remove_dups=config.remove_dups,
        dup_policy=config.dup_policy,
    )
    write_table(result.table, config.matched_sumstats_path)
    write_metadata(config.match_metadata_path, {
        "sumstats_file": str(config.sumstats_file),
        "panel_file": str(config.panel_file),
        **result.counts(),
    })
    return result


def run_build_ld(config: BuildLDConfig) -> SparseBandedMatrix:
    matched = _load_matched(config)
    reader = PlinkBEDReader(config.bfile)
    _check_genotypes(reader, matched)

    if config.genetic_map_dir is not None:
        positions = genetic_position(matched["chr"], matched["pos"], config.genetic_map_dir)
        unit = "cM"
    else:
        positions = matched["pos"].to_numpy(dtype=np.float64)
        unit = "bp"
    positions = genome_positions(matched["chr"], positions)

    corr = snp_cor(
        reader,
        positions,
        config.window_size,
        ind_col=matched["panel_index"].to_numpy(),
        thr_r2=config.thr_r2,
        batch_size=config.batch_size,
        show_progress=True,
    )
    store = SparseBandedMatrix.build(
        corr,
        positions,
        config.window_size,
        config.ld_store_path,
        block_size=config.block_size,
        overwrite=config.overwrite,
    )
    write_metadata(config.ld_metadata_path, {
        "bfile": config.bfile,
        "store": str(config.ld_store_path),
        "n_variants": store.n,
        "nnz": store.nnz,
        "window_size": float(config.window_size),
        "window_unit": unit,
        "thr_r2": config.thr_r2,
    })
    return store


def run_clump(config: ClumpConfig) -> pd.DataFrame:
    matched = _load_matched(config)
    reader = PlinkBEDReader(config.bfile)
    _check_genotypes(reader, matched)

    if "beta_se" in matched.columns:
        scores = np.abs(matched["beta"] / matched["beta_se"]).to_numpy()
    else:
        scores = np.abs(matched["beta"]).to_numpy()

    kept = snp_clumping(
        reader,
        matched["chr"].to_numpy(),
        ind_col=matched["panel_index"].to_numpy(),
        thr_r2=config.thr_r2,
        scores=scores,
        infos_pos=matched["pos"].to_numpy(),
        size=config.window_size,
        n_workers=config.n_workers,
    )
    clumped = matched[matched["panel_index"].isin(kept)]
    write_table(clumped, config.clumped_variants_path)
    return clumped


def _open_ld(config: LDpredCommonConfig, matched: pd.DataFrame) -> SparseBandedMatrix:
    store = SparseBandedMatrix.open(config.ld_store_path, cache_blocks=config.cache_blocks)
    if store.n != len(matched):
        raise InputError(f"LD store has {store.n} variants but {len(matched)} variants are matched; "
                         f"run `bigprs build-ld --overwrite` again")
    if store.cache_blocks < store.n_blocks:
        logger.warning(f"Only {store.cache_blocks} of the {store.n_blocks} LD blocks fit in the cache; "
                       f"the other blocks are read from disk on every pass (see --cache-blocks)")
    return store


def estimate_h2(store: SparseBandedMatrix, matched: pd.DataFrame) -> float:
    """Heritability from LD score regression on the matched variants."""
    chi2 = (matched["beta"] / matched["beta_se"]).to_numpy() ** 2
    ldsc = snp_ldsc(store.ld_scores(), store.n, chi2, matched["n_eff"].to_numpy())
    if not ldsc.h2 > 0:
        raise InvalidHyperparameterError(f"LD score regression estimated h2={ldsc.h2:.4f}; provide --h2")
    return ldsc.h2


def _resolve_h2(config: LDpredCommonConfig, store: SparseBandedMatrix, matched: pd.DataFrame) -> float:
    if config.h2 is not None:
        return config.h2
    h2 = estimate_h2(store, matched)
    logger.info(f"Using h2={h2:.4f} estimated by LD score regression")
    return h2


def run_ldpred_inf(config: LDpredInfConfig) -> pd.DataFrame:
    matched = _load_matched(config)
    store = _open_ld(config, matched)
    h2 = _resolve_h2(config, store, matched)

    result = ldpred2_inf(store, matched, h2, tol=config.tol, max_iter=config.max_iter)

    weights = _variant_table(matched)
    weights["weight"] = result.beta
    write_table(weights, config.get_weights_path("inf"))
    write_metadata(config.get_ldpred_metadata_path("inf"), {
        "h2": float(h2),
        "n_iter": int(result.n_iter),
        "residual": float(result.residual),
    })
    return weights


def run_ldpred_grid(config: LDpredGridConfig) -> pd.DataFrame:
    matched = _load_matched(config)
    store = _open_ld(config, matched)
    h2 = _resolve_h2(config, store, matched)

    grid = make_grid(
        [h2 * coef for coef in config.h2_coefs],
        config.p_seq,
        sparse=[False, True] if config.sparse else [False],
    )
    result = ldpred2_grid(
        store,
        matched,
        grid,
        burn_in=config.burn_in,
        num_iter=config.num_iter,
        sparse_tol=config.sparse_tol,
        n_workers=config.n_workers,
        show_progress=True,
    )

    weights = _variant_table(matched)
    columns = [f"grid_{k}" for k in range(result.beta.shape[1])]
    weights = pd.concat([weights, pd.DataFrame(result.beta, columns=columns, index=weights.index)], axis=1)
    params = result.params.copy()
    params.insert(0, "column", columns)

    write_table(weights, config.get_weights_path("grid"))
    write_table(params, config.grid_params_path)
    write_metadata(config.get_ldpred_metadata_path("grid"), {
        "h2": float(h2),
        "n_grid_points": len(params),
        "n_failed": int(result.n_failed),
    })
    return weights


def run_ldpred_auto(config: LDpredAutoConfig, cancel_event: Optional[threading.Event] = None) -> pd.DataFrame:
    matched = _load_matched(config)
    store = _open_ld(config, matched)
    h2 = _resolve_h2(config, store, matched)

    results = ldpred2_auto(
        store,
        matched,
        h2,
        config.vec_p_init,
        burn_in=config.burn_in,
        num_iter=config.num_iter,
        sparse=config.sparse,
        allow_jump_sign=config.allow_jump_sign,
        shrink_corr=config.shrink_corr,
        p_bounds=(config.p_lower, config.p_upper),
        seed=config.seed,
        n_workers=config.n_workers,
        cancel_event=cancel_event,
        show_progress=True,
    )
    keep = filter_chains(results, n_mad=config.n_mad)

    weights = _variant_table(matched)
    weights["weight"] = final_beta_auto(results, n_mad=config.n_mad)
    if config.sparse:
        weights["weight_sparse"] = np.mean([r.beta_est_sparse for r, k in zip(results, keep) if k], axis=0)

    chains = pd.DataFrame({
        "chain": [r.chain for r in results],
        "h2_init": [r.h2_init for r in results],
        "p_init": [r.p_init for r in results],
        "h2_est": [r.h2_est for r in results],
        "p_est": [r.p_est for r in results],
        "state": [r.state.value for r in results],
        "n_iter": [r.n_iter for r in results],
        "kept": keep,
    })
    write_table(weights, config.get_weights_path("auto"))
    write_table(chains, config.auto_chains_path)
    write_metadata(config.get_ldpred_metadata_path("auto"), {
        "h2_init": float(h2),
        "n_chains": len(results),
        "n_kept": int(keep.sum()),
        "h2_est": float(np.mean(chains.loc[keep, "h2_est"])),
        "p_est": float(np.mean(chains.loc[keep, "p_est"])),
        "states": {state: int(n) for state, n in chains["state"].value_counts().items()},
    })
    return weights


def run_score(config: ScoreConfig) -> pd.DataFrame:
    weights_path = config.get_weights_path(config.method)
    if not weights_path.exists():
        raise FileNotFoundError(f"Weights not found: {weights_path}. Run `bigprs ldpred-{config.method}` first.")
    weights = read_table(weights_path)
    reader = PlinkBEDReader(config.bfile)
    _check_genotypes(reader, weights)

    weight_cols = [c for c in weights.columns if c.startswith("weight") or c.startswith("grid_")]
    scores = predict_scores(reader, weights[weight_cols].to_numpy(), ind_col=weights["panel_index"].to_numpy())

    out = reader.fam[["fid", "iid"]].reset_index(drop=True)
    out = pd.concat([out, pd.DataFrame(scores, columns=weight_cols)], axis=1)
    write_table(out, config.get_score_path(config.method))
    return out
