import numpy as np
import pytest

from bigPRS.errors import ConvergenceError, InputError
from bigPRS.ldpred import ChainResult, ChainState
from bigPRS.scoring import filter_chains, final_beta_auto, final_pred_auto, predict_scores


def make_chain(chain, h2_est, beta_value=1.0, state=ChainState.DONE, m=4):
    done = state == ChainState.DONE
    return ChainResult(
        chain=chain,
        beta_est=np.full(m, beta_value if done else np.nan),
        postp_est=np.full(m, 0.5 if done else np.nan),
        h2_init=0.3,
        p_init=0.1,
        h2_est=h2_est if done else np.nan,
        p_est=0.1 if done else np.nan,
        path_h2_est=np.array([h2_est]),
        path_p_est=np.array([0.1]),
        state=state,
        n_iter=1,
    )


def test_outlying_chain_is_discarded():
    results = [make_chain(k, h2) for k, h2 in enumerate([0.30, 0.31, 0.29, 0.30, 0.90])]
    keep = filter_chains(results)
    assert keep.tolist() == [True, True, True, True, False]


def test_unfinished_chains_are_discarded():
    results = [
        make_chain(0, 0.3, beta_value=1.0),
        make_chain(1, 0.3, state=ChainState.DIVERGED),
        make_chain(2, 0.3, beta_value=3.0),
        make_chain(3, 0.3, state=ChainState.CANCELLED),
    ]
    keep = filter_chains(results)
    assert keep.tolist() == [True, False, True, False]
    np.testing.assert_allclose(final_beta_auto(results), np.full(4, 2.0))


def test_identical_chains_are_all_kept():
    results = [make_chain(k, 0.3) for k in range(4)]
    assert filter_chains(results).all()


def test_single_finished_chain():
    results = [make_chain(0, 0.3, beta_value=2.0), make_chain(1, 0.3, state=ChainState.DIVERGED)]
    np.testing.assert_allclose(final_beta_auto(results), np.full(4, 2.0))


def test_no_chain_kept():
    results = [make_chain(k, 0.3, state=ChainState.DIVERGED) for k in range(3)]
    with pytest.raises(ConvergenceError, match="No LDpred2-auto chain"):
        final_beta_auto(results)


def test_filter_on_predictions():
    base = np.random.default_rng(0).normal(size=500)
    preds = base[:, np.newaxis] * np.array([1.0, 1.05, 10.0, 0.95, 1.0])
    results = [make_chain(k, 0.3) for k in range(5)]

    keep = filter_chains(results, preds)
    assert keep.tolist() == [True, True, False, True, True]

    pred = final_pred_auto(results, preds)
    np.testing.assert_allclose(pred, preds[:, keep].mean(axis=1))


def test_filter_on_predictions_wrong_shape():
    results = [make_chain(k, 0.3) for k in range(3)]
    with pytest.raises(InputError, match="one column per chain"):
        filter_chains(results, np.zeros((10, 2)))


def test_predict_scores(genotypes):
    rng = np.random.default_rng(0)
    ind_col = np.array([1, 5, 9, 20])
    ind_row = np.arange(0, 300, 3)
    weights = rng.normal(size=(4, 2))

    scores = predict_scores(genotypes, weights, ind_row=ind_row, ind_col=ind_col)
    np.testing.assert_allclose(scores, genotypes[np.ix_(ind_row, ind_col)] @ weights)

    single = predict_scores(genotypes, weights[:, 0], ind_row=ind_row, ind_col=ind_col)
    assert single.shape == (len(ind_row),)
    np.testing.assert_allclose(single, scores[:, 0])


def test_predict_scores_with_missing_weights(genotypes):
    weights = np.ones((40, 3))
    weights[5, 0] = np.nan
    weights[:, 1] = np.nan

    scores = predict_scores(genotypes, weights)

    expected = genotypes.sum(axis=1)
    np.testing.assert_allclose(scores[:, 0], expected - genotypes[:, 5])
    assert np.all(np.isnan(scores[:, 1]))
    np.testing.assert_allclose(scores[:, 2], expected)
