"""
Out-of-core sparse banded storage for LD correlation matrices.

Only the pairs of variants whose positions lie within `size` of each other are
stored. Because positions are sorted, the stored rows of every column form a
contiguous range `[first_i[j], last_i[j]]`, so a column is fully described by
its first row and an offset into a flat array of values (a "compact" CSC
layout). Columns are grouped into fixed-size blocks, which are the unit of
disk reads and of the in-memory LRU cache.

On-disk layout of a store directory::

    meta.json       shape, dtype, window size, block table, completion flag
    positions.npy   position of every variant (physical or genetic)
    first_i.npy     first stored row of every column
    col_ptr.npy     offsets of every column in values.dat (length n + 1)
    values.dat      float32 values, written once, column after column
"""

import json
import logging
import threading
import time
from collections import OrderedDict
from pathlib import Path
from typing import Iterator, Optional, Tuple, Union

import numba
import numpy as np
import scipy.sparse
from scipy.sparse.linalg import LinearOperator

from ..constants import BANDED_STORAGE_DTYPE, DEFAULT_BLOCK_SIZE, DEFAULT_CACHE_BLOCKS
from ..errors import InputError

logger = logging.getLogger(__name__)


@numba.njit(nogil=True, cache=True)
def _block_matvec(block_values, col_ptr, first_i, j0, j1, x, y):
    """Accumulate `M[:, j0:j1] @ x[j0:j1]` into `y`, touching stored entries only."""
    base = col_ptr[j0]
    for j in range(j0, j1):
        xj = x[j]
        if xj == 0:
            continue
        off = col_ptr[j] - base
        i0 = first_i[j]
        for k in range(col_ptr[j + 1] - col_ptr[j]):
            y[i0 + k] += block_values[off + k] * xj


def band_limits(positions: np.ndarray, size: float) -> Tuple[np.ndarray, np.ndarray]:
    """
    First and last row stored for every column.

    Parameters
    ----------
    positions : np.ndarray
        Sorted positions (bp or cM), shape (n,)
    size : float
        Window size, in the unit of `positions`

    Returns
    -------
    first_i, last_i : np.ndarray
        Inclusive row limits, shape (n,)
    """
    first_i = np.searchsorted(positions, positions - size, side="left")
    last_i = np.searchsorted(positions, positions + size, side="right") - 1
    return first_i.astype(np.int64), last_i.astype(np.int64)


def _symmetrize_upper(corr):
    """Full symmetric matrix built from the upper triangle only."""
    if scipy.sparse.issparse(corr):
        upper = scipy.sparse.triu(corr, format="csc")
        return (upper + scipy.sparse.triu(upper, k=1).T).tocsc()
    corr = np.asarray(corr)
    upper = np.triu(corr)
    return upper + np.triu(upper, k=1).T


class SparseBandedMatrix:
    """
    Symmetric banded matrix backed by a store directory.

    Instances are read-only. They can be shared between threads (the block
    cache is protected by a lock) and pickled (the memory map and the cache are
    re-created lazily in the receiving process).

    Attributes
    ----------
    path : Path
        Store directory
    positions : np.ndarray
        Positions used to define the band
    size : float
        Window size
    first_i : np.ndarray
        First stored row of every column
    col_ptr : np.ndarray
        Offsets of every column in the flat values array (length n + 1)
    block_size : int
        Number of columns per storage block
    """

    def __init__(self, path: Union[str, Path], cache_blocks: int = DEFAULT_CACHE_BLOCKS):
        self.path = Path(path)
        self.meta_path = self.path / "meta.json"
        self.data_path = self.path / "values.dat"
        self.cache_blocks = max(1, int(cache_blocks))

        if not self.meta_path.exists():
            raise FileNotFoundError(f"Metadata file not found: {self.meta_path}")

        with open(self.meta_path, "r") as f:
            meta = json.load(f)

        if not meta.get("complete", False):
            raise InputError(f"SparseBandedMatrix at {self.path} is incomplete")

        self.n = int(meta["n"])
        self.size = float(meta["size"])
        self.dtype = np.dtype(meta["dtype"])
        self.block_size = int(meta["block_size"])
        self.blocks = np.asarray(meta["blocks"], dtype=np.int64).reshape(-1, 4)

        self.positions = np.load(self.path / "positions.npy")
        self.first_i = np.load(self.path / "first_i.npy")
        self.col_ptr = np.load(self.path / "col_ptr.npy")
        self.last_i = self.first_i + np.diff(self.col_ptr) - 1

        self._init_runtime_state()
        logger.debug(f"Opened SparseBandedMatrix at {self.path}: {self.n} variants, {self.nnz} stored values")

    def _init_runtime_state(self):
        self._values = None
        self._cache = OrderedDict()
        self._lock = threading.Lock()
        self.cache_hits = 0
        self.cache_misses = 0

    def __getstate__(self):
        state = self.__dict__.copy()
        for key in ("_values", "_cache", "_lock"):
            state.pop(key, None)
        return state

    def __setstate__(self, state):
        self.__dict__.update(state)
        self._init_runtime_state()

    def __repr__(self):
        return f"SparseBandedMatrix(n={self.n}, nnz={self.nnz}, size={self.size}, path='{self.path}')"

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def open(cls, path: Union[str, Path], cache_blocks: int = DEFAULT_CACHE_BLOCKS) -> "SparseBandedMatrix":
        """Open an existing, complete store in read-only mode."""
        return cls(path, cache_blocks=cache_blocks)

    @classmethod
    def build(
        cls,
        corr,
        positions,
        size: float,
        path: Union[str, Path],
        block_size: int = DEFAULT_BLOCK_SIZE,
        cache_blocks: int = DEFAULT_CACHE_BLOCKS,
        overwrite: bool = False,
    ) -> "SparseBandedMatrix":
        """
        Write a correlation matrix to a new store and open it.

        Parameters
        ----------
        corr : np.ndarray or scipy.sparse matrix
            Symmetric correlation matrix, shape (n, n). Only the upper triangle is read.
        positions : array-like
            Non-decreasing positions of the n variants.
        size : float
            Entries with `|pos_i - pos_j| > size` are not stored.
        path : str or Path
            Store directory (created if needed).
        block_size : int
            Number of columns per storage block.
        overwrite : bool
            Replace an existing complete store.

        Returns
        -------
        SparseBandedMatrix
            Read-only handle on the flushed store.
        """
        path = Path(path)
        positions = np.asarray(positions, dtype=np.float64)
        n = positions.shape[0]
        if not scipy.sparse.issparse(corr):
            corr = np.asarray(corr, dtype=np.float64)

        if corr.ndim != 2 or corr.shape != (n, n):
            raise InputError(f"Correlation matrix of shape {corr.shape} does not match {n} positions")
        if n == 0:
            raise InputError("Cannot build a banded matrix with zero variants")
        if np.any(np.diff(positions) < 0):
            raise InputError("Positions must be sorted in non-decreasing order")
        if size < 0:
            raise InputError(f"Window size must be non-negative, got {size}")
        if block_size < 1:
            raise InputError(f"block_size must be positive, got {block_size}")

        meta_path = path / "meta.json"
        if meta_path.exists():
            with open(meta_path, "r") as f:
                complete = json.load(f).get("complete", False)
            if complete and not overwrite:
                raise InputError(
                    f"SparseBandedMatrix at {path} already exists and is marked as complete. "
                    f"Use overwrite=True to replace it."
                )
            if not complete:
                logger.warning(f"SparseBandedMatrix at {path} exists but is incomplete. Recreating.")
        path.mkdir(parents=True, exist_ok=True)

        first_i, last_i = band_limits(positions, size)
        col_ptr = np.zeros(n + 1, dtype=np.int64)
        col_ptr[1:] = np.cumsum(last_i - first_i + 1)
        nnz = int(col_ptr[-1])

        meta = {
            "n": n,
            "size": float(size),
            "dtype": BANDED_STORAGE_DTYPE,
            "block_size": int(block_size),
            "nnz": nnz,
            "blocks": [],
            "complete": False,
            "created_at": time.time(),
        }
        with open(meta_path, "w") as f:
            json.dump(meta, f, indent=2)

        full = _symmetrize_upper(corr)
        values = np.memmap(path / "values.dat", dtype=BANDED_STORAGE_DTYPE, mode="w+", shape=(max(nnz, 1),))

        blocks = []
        for j0 in range(0, n, block_size):
            j1 = min(j0 + block_size, n)
            r0, r1 = int(first_i[j0]), int(last_i[j1 - 1]) + 1
            sub = full[r0:r1, j0:j1]
            if scipy.sparse.issparse(sub):
                sub = sub.toarray()
            sub = np.asarray(sub, dtype=np.float64)
            for j in range(j0, j1):
                values[col_ptr[j]:col_ptr[j + 1]] = sub[first_i[j] - r0:last_i[j] - r0 + 1, j - j0]
            blocks.append([j0, j1, int(col_ptr[j0]), int(col_ptr[j1])])

        values.flush()
        del values

        np.save(path / "positions.npy", positions)
        np.save(path / "first_i.npy", first_i)
        np.save(path / "col_ptr.npy", col_ptr)

        meta["blocks"] = blocks
        meta["complete"] = True
        with open(meta_path, "w") as f:
            json.dump(meta, f, indent=2)

        logger.info(
            f"Created SparseBandedMatrix at {path}: {n} variants, {nnz:,} stored values "
            f"({nnz / float(n) ** 2:.2%} of dense), {len(blocks)} blocks"
        )
        return cls(path, cache_blocks=cache_blocks)

    # ------------------------------------------------------------------
    # Block access
    # ------------------------------------------------------------------

    @property
    def shape(self) -> Tuple[int, int]:
        return self.n, self.n

    @property
    def nnz(self) -> int:
        return int(self.col_ptr[-1])

    @property
    def n_blocks(self) -> int:
        return len(self.blocks)

    def _memmap(self) -> np.memmap:
        if self._values is None:
            self._values = np.memmap(self.data_path, dtype=self.dtype, mode="r", shape=(max(self.nnz, 1),))
        return self._values

    def get_block(self, block_id: int, evict: bool = True) -> np.ndarray:
        """
        Values of one block of columns, read from disk on a cache miss.

        With `evict=False` a missed block is only cached while the cache has
        room, and nothing already cached is evicted.
        """
        with self._lock:
            cached = self._cache.get(block_id)
            if cached is not None:
                self._cache.move_to_end(block_id)
                self.cache_hits += 1
                return cached

            _, _, start, end = self.blocks[block_id]
            block = np.array(self._memmap()[start:end])
            self.cache_misses += 1
            if evict or len(self._cache) < self.cache_blocks:
                self._cache[block_id] = block
            while len(self._cache) > self.cache_blocks:
                self._cache.popitem(last=False)
            return block

    def iter_blocks(self) -> Iterator[Tuple[int, int, np.ndarray]]:
        """
        Yield `(j0, j1, values)` for every block, in column order.

        Solvers call this once per pass. When the store has more blocks than
        `cache_blocks`, an LRU scan in column order would evict every block
        before its next use, so the scan keeps the blocks already cached and
        reads the others from disk on every pass. Open the store with
        `cache_blocks >= n_blocks` to keep it fully in memory.
        """
        for block_id in range(self.n_blocks):
            j0, j1 = int(self.blocks[block_id, 0]), int(self.blocks[block_id, 1])
            yield j0, j1, self.get_block(block_id, evict=False)

    def _check_index(self, k):
        if not 0 <= k < self.n:
            raise IndexError(f"Index {k} out of bounds for a matrix of size {self.n}")

    # ------------------------------------------------------------------
    # Element and column access
    # ------------------------------------------------------------------

    def get(self, i: int, j: int) -> float:
        """Entry (i, j); 0 for pairs outside the band."""
        self._check_index(i)
        self._check_index(j)
        if i < self.first_i[j] or i > self.last_i[j]:
            return 0.0
        block_id = j // self.block_size
        block = self.get_block(block_id)
        return float(block[self.col_ptr[j] - self.blocks[block_id, 2] + i - self.first_i[j]])

    def column(self, j: int) -> Tuple[int, np.ndarray]:
        """First stored row and stored values of column j."""
        self._check_index(j)
        block_id = j // self.block_size
        block = self.get_block(block_id)
        off = self.col_ptr[j] - self.blocks[block_id, 2]
        return int(self.first_i[j]), block[off:off + self.col_ptr[j + 1] - self.col_ptr[j]].copy()

    def diagonal(self) -> np.ndarray:
        diag = np.empty(self.n)
        for j0, j1, block in self.iter_blocks():
            cols = np.arange(j0, j1)
            diag[j0:j1] = block[self.col_ptr[cols] - self.col_ptr[j0] + cols - self.first_i[cols]]
        return diag

    def ld_scores(self) -> np.ndarray:
        """Sum of squared correlations of every variant with its neighbors (itself included)."""
        ld = np.empty(self.n)
        for j0, j1, block in self.iter_blocks():
            starts = self.col_ptr[j0:j1] - self.col_ptr[j0]
            ld[j0:j1] = np.add.reduceat(block.astype(np.float64) ** 2, starts)
        return ld

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    def multiply(self, x: np.ndarray) -> np.ndarray:
        """Sparse product `M @ x` for a vector (n,) or a matrix (n, k)."""
        x = np.asarray(x, dtype=np.float64)
        if x.shape[0] != self.n:
            raise InputError(f"Incompatible dimensions: matrix of size {self.n}, input of length {x.shape[0]}")
        if x.ndim == 1:
            y = np.zeros(self.n)
            for j0, j1, block in self.iter_blocks():
                _block_matvec(block, self.col_ptr, self.first_i, j0, j1, x, y)
            return y

        y = np.zeros(x.shape)
        columns = [np.ascontiguousarray(x[:, k]) for k in range(x.shape[1])]
        outputs = [np.zeros(self.n) for _ in columns]
        for j0, j1, block in self.iter_blocks():
            for xk, yk in zip(columns, outputs):
                _block_matvec(block, self.col_ptr, self.first_i, j0, j1, xk, yk)
        for k, yk in enumerate(outputs):
            y[:, k] = yk
        return y

    def as_linear_operator(self, add_to_diag: Optional[np.ndarray] = None) -> LinearOperator:
        """`scipy` linear operator for `M + diag(add_to_diag)`."""
        if add_to_diag is None:
            return LinearOperator(self.shape, matvec=self.multiply, dtype=np.float64)
        add_to_diag = np.broadcast_to(np.asarray(add_to_diag, dtype=np.float64), (self.n,))

        def matvec(x):
            x = np.asarray(x, dtype=np.float64).ravel()
            return self.multiply(x) + add_to_diag * x

        return LinearOperator(self.shape, matvec=matvec, dtype=np.float64)

    def to_csc(self) -> scipy.sparse.csc_matrix:
        """In-memory copy of the stored entries (for small matrices)."""
        lengths = np.diff(self.col_ptr)
        indices = np.concatenate([np.arange(f, f + l) for f, l in zip(self.first_i, lengths)])
        data = np.concatenate([block for _, _, block in self.iter_blocks()])[:self.nnz]
        return scipy.sparse.csc_matrix((data, indices, self.col_ptr), shape=self.shape)
