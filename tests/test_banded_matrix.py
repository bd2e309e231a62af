import json
import pickle
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest
import scipy.sparse

from bigPRS.errors import InputError
from bigPRS.ld import SparseBandedMatrix, band_limits, genome_positions, get_block_limits


def banded(corr, positions, size):
    mask = np.abs(positions[:, None] - positions[None, :]) <= size
    return np.where(mask, corr, 0.0)


@pytest.fixture
def windowed_store(tmp_path, corr_dense, positions):
    """Store with a 5 kb window, so that most pairs are out of the band."""
    return SparseBandedMatrix.build(corr_dense, positions, 5000, tmp_path / "windowed", block_size=6)


def test_get_is_symmetric_and_zero_outside_band(windowed_store, corr_dense, positions):
    expected = banded(corr_dense, positions, 5000)
    n = windowed_store.n
    for i in range(n):
        for j in range(n):
            assert windowed_store.get(i, j) == windowed_store.get(j, i)
            assert windowed_store.get(i, j) == pytest.approx(expected[i, j], abs=1e-6)


def test_out_of_band_pairs(windowed_store, positions):
    i, j = 0, 10
    assert abs(positions[i] - positions[j]) > 5000
    assert windowed_store.get(i, j) == 0.0
    # Variants on different chromosomes are never linked
    assert windowed_store.get(19, 20) == 0.0


def test_only_band_is_stored(windowed_store, positions):
    first_i, last_i = band_limits(positions, 5000)
    assert windowed_store.nnz == int(np.sum(last_i - first_i + 1))
    np.testing.assert_array_equal(windowed_store.first_i, first_i)
    np.testing.assert_array_equal(windowed_store.last_i, last_i)
    assert windowed_store.nnz < windowed_store.n ** 2


def test_multiply_vector(windowed_store, corr_dense, positions):
    x = np.random.default_rng(0).normal(size=windowed_store.n)
    expected = banded(corr_dense, positions, 5000) @ x
    np.testing.assert_allclose(windowed_store.multiply(x), expected, atol=1e-5)


def test_multiply_matrix(ld_store, corr_dense):
    x = np.random.default_rng(0).normal(size=(ld_store.n, 3))
    np.testing.assert_allclose(ld_store.multiply(x), corr_dense @ x, atol=1e-5)


def test_multiply_dimension_mismatch(ld_store):
    with pytest.raises(InputError, match="Incompatible dimensions"):
        ld_store.multiply(np.ones(ld_store.n + 1))


def test_linear_operator(ld_store, corr_dense):
    x = np.random.default_rng(0).normal(size=ld_store.n)
    op = ld_store.as_linear_operator(add_to_diag=2.0)
    np.testing.assert_allclose(op.matvec(x), corr_dense @ x + 2.0 * x, atol=1e-5)
    assert op.shape == (ld_store.n, ld_store.n)


def test_diagonal_ld_scores_and_csc(windowed_store, corr_dense, positions):
    expected = banded(corr_dense, positions, 5000)
    np.testing.assert_allclose(windowed_store.diagonal(), np.ones(windowed_store.n), atol=1e-6)
    np.testing.assert_allclose(windowed_store.ld_scores(), (expected ** 2).sum(axis=0), atol=1e-5)
    np.testing.assert_allclose(windowed_store.to_csc().toarray(), expected, atol=1e-6)


def test_column(windowed_store, corr_dense, positions):
    expected = banded(corr_dense, positions, 5000)
    first, values = windowed_store.column(7)
    assert first == windowed_store.first_i[7]
    np.testing.assert_allclose(values, expected[first:first + len(values), 7], atol=1e-6)


def test_only_upper_triangle_is_read(tmp_path):
    corr = np.array([
        [1.0, 0.5, 0.2],
        [9.0, 1.0, 0.3],
        [9.0, 9.0, 1.0],
    ])
    store = SparseBandedMatrix.build(corr, [1.0, 2.0, 3.0], 10, tmp_path / "upper")
    assert store.get(1, 0) == pytest.approx(0.5)
    assert store.get(2, 0) == pytest.approx(0.2)
    assert store.get(2, 1) == pytest.approx(0.3)


def test_build_from_sparse(tmp_path, corr_dense, positions):
    store = SparseBandedMatrix.build(scipy.sparse.csc_matrix(corr_dense), positions, 1e6, tmp_path / "sparse")
    np.testing.assert_allclose(store.to_csc().toarray(), corr_dense, atol=1e-6)


def test_reopen(ld_store, corr_dense):
    reopened = SparseBandedMatrix.open(ld_store.path, cache_blocks=2)
    assert reopened.n == ld_store.n
    assert reopened.size == ld_store.size
    assert reopened.n_blocks == int(np.ceil(ld_store.n / 7))
    np.testing.assert_allclose(reopened.to_csc().toarray(), corr_dense, atol=1e-6)


def test_existing_store_requires_overwrite(ld_store, corr_dense, positions):
    with pytest.raises(InputError, match="already exists"):
        SparseBandedMatrix.build(corr_dense, positions, 1e6, ld_store.path)
    store = SparseBandedMatrix.build(corr_dense, positions, 5000, ld_store.path, overwrite=True)
    assert store.get(0, 10) == 0.0


def test_incomplete_store_cannot_be_opened(ld_store):
    with open(ld_store.meta_path) as f:
        meta = json.load(f)
    meta["complete"] = False
    with open(ld_store.meta_path, "w") as f:
        json.dump(meta, f)

    with pytest.raises(InputError, match="incomplete"):
        SparseBandedMatrix.open(ld_store.path)


def test_missing_store(tmp_path):
    with pytest.raises(FileNotFoundError):
        SparseBandedMatrix.open(tmp_path / "nothing")


@pytest.mark.parametrize(
    "corr, positions, size",
    [
        (np.eye(3), [3.0, 2.0, 1.0], 10),
        (np.eye(3), [1.0, 2.0], 10),
        (np.eye(3), [1.0, 2.0, 3.0], -1),
    ],
)
def test_invalid_build(tmp_path, corr, positions, size):
    with pytest.raises(InputError):
        SparseBandedMatrix.build(corr, positions, size, tmp_path / "invalid")


def test_index_out_of_bounds(ld_store):
    with pytest.raises(IndexError):
        ld_store.get(0, ld_store.n)


def test_block_cache_is_bounded(tmp_path, corr_dense, positions):
    store = SparseBandedMatrix.build(corr_dense, positions, 1e6, tmp_path / "cache", block_size=5, cache_blocks=2)
    store.get(0, 1)
    store.get(2, 3)
    assert (store.cache_misses, store.cache_hits) == (1, 1)

    store.get(5, 6)
    store.get(10, 11)
    assert len(store._cache) == 2
    # Block 0 was evicted (least recently used)
    store.get(0, 1)
    assert store.cache_misses == 4


def test_block_scan_keeps_cached_blocks(tmp_path, corr_dense, positions):
    store = SparseBandedMatrix.build(corr_dense, positions, 1e6, tmp_path / "scan", block_size=5, cache_blocks=2)
    assert store.n_blocks == 8

    for _ in store.iter_blocks():
        pass
    assert (store.cache_misses, store.cache_hits) == (8, 0)
    assert list(store._cache) == [0, 1]

    # The second pass reuses the first blocks instead of evicting them all
    for _ in store.iter_blocks():
        pass
    assert (store.cache_misses, store.cache_hits) == (14, 2)
    assert list(store._cache) == [0, 1]


def test_block_scan_with_store_in_cache(tmp_path, corr_dense, positions):
    store = SparseBandedMatrix.build(corr_dense, positions, 1e6, tmp_path / "scan", block_size=5, cache_blocks=8)
    for _ in range(3):
        y = store.multiply(np.ones(store.n))
    assert store.cache_misses == 8
    np.testing.assert_allclose(y, corr_dense.sum(axis=1), rtol=1e-5, atol=1e-5)


def test_pickle(ld_store):
    restored = pickle.loads(pickle.dumps(ld_store))
    assert restored.get(3, 4) == ld_store.get(3, 4)
    assert restored.cache_hits == 0


def test_concurrent_reads(ld_store, corr_dense):
    rng = np.random.default_rng(0)
    xs = [rng.normal(size=ld_store.n) for _ in range(8)]
    with ThreadPoolExecutor(max_workers=4) as executor:
        results = list(executor.map(ld_store.multiply, xs))
    for x, y in zip(xs, results):
        np.testing.assert_allclose(y, corr_dense @ x, atol=1e-5)


def test_band_limits():
    first_i, last_i = band_limits(np.array([100.0, 200.0, 300.0, 400.0, 500.0]), 150.0)
    np.testing.assert_array_equal(first_i, [0, 0, 1, 2, 3])
    np.testing.assert_array_equal(last_i, [1, 2, 3, 4, 4])


def test_get_block_limits():
    left, right = get_block_limits(np.array([100.0, 200.0, 300.0, 400.0, 500.0]), 150.0)
    np.testing.assert_array_equal(left, [0, 0, 1, 2, 3])
    np.testing.assert_array_equal(right, [2, 3, 4, 5, 5])


def test_genome_positions():
    pos = genome_positions([1, 1, 2], [10, 20, 5])
    assert np.all(np.diff(pos) > 0)
    assert pos[2] - pos[1] > 1e9
    with pytest.raises(InputError):
        genome_positions([1, 2], [10])
