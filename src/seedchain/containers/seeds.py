"""Exact-match seed anchors tagged with the chain they belong to, plus chain identifier packing."""
from typing import Union, Iterable

import numpy as np

from seedchain.lib.resources import RESOURCES, jit
from seedchain.containers import Batch


# Exceptions -----------------------------------------------------------------------------------------------------------
class SeedError(ValueError): pass


# Constants ------------------------------------------------------------------------------------------------------------
READ_SHIFT = 32
SEQ_MASK = (1 << READ_SHIFT) - 1
MAX_READ_ID = (1 << 31) - 1


# Functions ------------------------------------------------------------------------------------------------------------
def pack_chain_ids(read_ids: Union[np.ndarray, Iterable[int]], seq_nos: Union[np.ndarray, Iterable[int]]) -> np.ndarray:
    """
    Packs read ids and per-read chain sequence numbers into 64-bit chain identifiers.

    The read id occupies the high bits, so sorting chain ids sorts by read first and by
    chain-within-read second.

    Args:
        read_ids: Read id of each chain.
        seq_nos: Sequence number of each chain within its read.

    Returns:
        An int64 array of chain ids.

    Raises:
        SeedError: If a read id or sequence number does not fit its bit field.

    Examples:
        >>> pack_chain_ids([0, 1], [3, 0]).tolist()
        [3, 4294967296]
    """
    read_ids = np.asarray(read_ids, dtype=np.int64)
    seq_nos = np.asarray(seq_nos, dtype=np.int64)
    if read_ids.shape != seq_nos.shape:
        raise SeedError(f"Got {len(read_ids)} read ids but {len(seq_nos)} sequence numbers")
    if len(read_ids) and (read_ids.min() < 0 or read_ids.max() > MAX_READ_ID):
        raise SeedError(f"Read ids must be within [0, {MAX_READ_ID}]")
    if len(seq_nos) and (seq_nos.min() < 0 or seq_nos.max() > SEQ_MASK):
        raise SeedError(f"Chain sequence numbers must be within [0, {SEQ_MASK}]")
    return (read_ids << READ_SHIFT) | seq_nos


def chain_read_ids(chain_ids: np.ndarray) -> np.ndarray:
    """Extracts the read id (high bits) of each chain id."""
    return np.asarray(chain_ids, dtype=np.int64) >> READ_SHIFT


# Classes --------------------------------------------------------------------------------------------------------------
class Seed:
    """
    A single exact-match anchor.

    Attributes:
        chain_id: Identifier of the owning chain.
        begin: Start in read coordinates (0-based, inclusive).
        end: End in read coordinates (0-based, exclusive).
    """
    __slots__ = ('_chain_id', '_begin', '_end')

    def __init__(self, chain_id: int, begin: int, end: int):
        self._chain_id = int(chain_id)
        self._begin = int(begin)
        self._end = int(end)

    @property
    def chain_id(self) -> int: return self._chain_id
    @property
    def begin(self) -> int: return self._begin
    @property
    def end(self) -> int: return self._end
    @property
    def read_id(self) -> int: return self._chain_id >> READ_SHIFT
    def __len__(self): return max(0, self._end - self._begin)
    def __iter__(self): return iter((self._chain_id, self._begin, self._end))
    def __hash__(self): return hash((self._chain_id, self._begin, self._end))
    def __repr__(self): return f"Seed({self.read_id}:{self._chain_id & SEQ_MASK}, {self._begin}:{self._end})"

    def __eq__(self, other):
        if not isinstance(other, Seed): return False
        return self._chain_id == other._chain_id and self._begin == other._begin and self._end == other._end


class SeedBatch(Batch):
    """
    Batch of seeds stored as parallel arrays, with a processing-order index.

    Seeds can be supplied in any order; the batch derives ``order``, the permutation that
    visits seeds sorted by chain id and then by ascending ``begin``. All chain-level
    slices (offset, length) index into this permutation.

    Examples:
        >>> seeds = SeedBatch(pack_chain_ids([0, 0], [0, 0]), [10, 0], [20, 15])
        >>> seeds.order.tolist()
        [1, 0]
    """
    __slots__ = ('_chain_ids', '_begins', '_ends', '_order')
    _DTYPE = np.int32  # Read-local coordinates
    _MAX_COORD = int(np.iinfo(np.int32).max)
    _ID_DTYPE = np.int64

    def __init__(self, chain_ids: np.ndarray = None, begins: np.ndarray = None, ends: np.ndarray = None,
                 order: np.ndarray = None, validate: bool = True):
        """
        Initializes a SeedBatch.

        Args:
            chain_ids: Chain id of each seed (see ``pack_chain_ids``).
            begins: Seed start positions.
            ends: Seed end positions.
            order: Precomputed processing-order index (skips sorting if given).
            validate: Whether to check array shapes and coordinates.
        """
        if chain_ids is None:
            self._chain_ids = np.empty(0, dtype=self._ID_DTYPE)
            self._begins = np.empty(0, dtype=self._DTYPE)
            self._ends = np.empty(0, dtype=self._DTYPE)
        else:
            self._chain_ids = np.ascontiguousarray(chain_ids, dtype=self._ID_DTYPE)
            self._begins = self._coordinates(begins, validate)
            self._ends = self._coordinates(ends, validate)
        if validate: self._validate()
        self._order = np.ascontiguousarray(order, dtype=np.int64) if order is not None else None
        if self._order is None: self.sort()

    @classmethod
    def _coordinates(cls, values, validate: bool) -> np.ndarray:
        values = np.asarray(values)
        if validate and values.size:
            if values.min() < 0: raise SeedError("Seed coordinates must be non-negative")
            if values.max() > cls._MAX_COORD: raise SeedError(f"Seed coordinates must not exceed {cls._MAX_COORD}")
        return np.ascontiguousarray(values, dtype=cls._DTYPE)

    def _validate(self):
        n = len(self._chain_ids)
        if len(self._begins) != n or len(self._ends) != n:
            raise SeedError(f"Seed arrays differ in length ({n}, {len(self._begins)}, {len(self._ends)})")
        if n == 0: return
        if self._chain_ids.min() < 0: raise SeedError("Chain ids must be non-negative")
        if np.any(self._ends < self._begins): raise SeedError("Seed ends must not precede their begins")

    def sort(self):
        """Computes the processing order: by chain id, then by begin (stable)."""
        n = len(self._chain_ids)
        if n < 2 or _is_sorted_kernel(self._chain_ids, self._begins):
            self._order = np.arange(n, dtype=np.int64)
        else:
            # Lexsort: Primary key is last in the tuple (chain ids), secondary is begins
            self._order = np.lexsort((self._begins, self._chain_ids)).astype(np.int64)

    @classmethod
    def empty(cls) -> 'SeedBatch':
        """Creates an empty SeedBatch."""
        return cls()

    @classmethod
    def build(cls, *seeds: Union[Seed, Iterable[Seed]]) -> 'SeedBatch':
        """Creates a SeedBatch from Seed objects (varargs or a single iterable)."""
        if not seeds: return cls.empty()
        if len(seeds) == 1 and isinstance(seeds[0], Iterable) and not isinstance(seeds[0], Seed):
            seeds = seeds[0]
        data = [(s.chain_id, s.begin, s.end) for s in seeds]
        if not data: return cls.empty()
        arr = np.array(data, dtype=cls._ID_DTYPE)
        return cls(arr[:, 0], arr[:, 1], arr[:, 2])

    @classmethod
    def from_chains(cls, read_ids: Iterable[int], chains: Iterable[Iterable[tuple[int, int]]]) -> 'SeedBatch':
        """
        Creates a SeedBatch from per-chain lists of ``(begin, end)`` spans.

        Chains of the same read are numbered in the order they are given.

        Args:
            read_ids: Read id of each chain.
            chains: For each chain, an iterable of ``(begin, end)`` seed spans.

        Examples:
            >>> seeds = SeedBatch.from_chains([0, 0], [[(0, 20)], [(5, 30), (28, 45)]])
            >>> len(seeds)
            3
        """
        read_ids = list(read_ids)
        chains = [list(c) for c in chains]
        if len(read_ids) != len(chains):
            raise SeedError(f"Got {len(read_ids)} read ids for {len(chains)} chains")
        seq_nos, counters = [], {}
        for r in read_ids:
            seq_nos.append(counters.get(r, 0))
            counters[r] = seq_nos[-1] + 1
        ids = pack_chain_ids(read_ids, seq_nos) if read_ids else np.empty(0, dtype=np.int64)
        sizes = [len(c) for c in chains]
        spans = np.array([s for c in chains for s in c], dtype=cls._ID_DTYPE).reshape(-1, 2)
        return cls(np.repeat(ids, sizes), spans[:, 0], spans[:, 1])

    @classmethod
    def random(cls, n_reads: int, rng: np.random.Generator = None, max_chains: int = 4, max_seeds: int = 6,
               read_length: int = 150, min_len: int = 5, max_len: int = 40, shuffle: bool = True) -> 'SeedBatch':
        """
        Creates random chains of overlapping, nested and disjoint seeds.

        Args:
            n_reads: Number of reads; each gets between 1 and ``max_chains`` chains.
            rng: Random number generator (optional).
            max_chains: Maximum chains per read.
            max_seeds: Maximum seeds per chain.
            read_length: Upper bound for seed end coordinates.
            min_len: Minimum seed length.
            max_len: Maximum seed length.
            shuffle: Whether to store the seeds in random order.

        Returns:
            A SeedBatch.
        """
        if rng is None: rng = RESOURCES.rng
        if n_reads <= 0: return cls.empty()
        if read_length <= max_len:
            raise ValueError(f"read_length ({read_length}) must be > max_len ({max_len})")

        chains_per_read = rng.integers(1, max_chains + 1, size=n_reads)
        chain_reads = np.repeat(np.arange(n_reads), chains_per_read)
        first_of_read = np.repeat(np.cumsum(chains_per_read) - chains_per_read, chains_per_read)
        ids = pack_chain_ids(chain_reads, np.arange(len(chain_reads)) - first_of_read)

        seeds_per_chain = rng.integers(1, max_seeds + 1, size=len(ids))
        chain_ids = np.repeat(ids, seeds_per_chain)
        n = len(chain_ids)
        lengths = rng.integers(min_len, max_len + 1, size=n)
        begins = rng.integers(0, read_length - max_len, size=n)
        ends = begins + lengths

        if shuffle:
            perm = rng.permutation(n)
            chain_ids, begins, ends = chain_ids[perm], begins[perm], ends[perm]
        return cls(chain_ids, begins, ends)

    @classmethod
    def concat(cls, batches: Iterable['SeedBatch']) -> 'SeedBatch':
        """Concatenates multiple SeedBatches."""
        batches = list(batches)
        if not batches: return cls.empty()
        return cls(np.concatenate([b._chain_ids for b in batches]),
                   np.concatenate([b._begins for b in batches]),
                   np.concatenate([b._ends for b in batches]))

    def __repr__(self): return f"<SeedBatch: {len(self)} seeds>"
    def __len__(self): return len(self._chain_ids)

    def __getitem__(self, item):
        if isinstance(item, (int, np.integer)):
            return Seed(self._chain_ids[item], self._begins[item], self._ends[item])
        elif isinstance(item, (slice, np.ndarray, list)):
            return SeedBatch(self._chain_ids[item], self._begins[item], self._ends[item], validate=False)
        raise TypeError(f"Invalid index type: {type(item)}")

    @property
    def component(self): return Seed
    @property
    def chain_ids(self) -> np.ndarray: return self._chain_ids
    @property
    def begins(self) -> np.ndarray: return self._begins
    @property
    def ends(self) -> np.ndarray: return self._ends
    @property
    def order(self) -> np.ndarray:
        """Processing-order index: seed indices sorted by chain id, then begin."""
        return self._order

    @property
    def sorted_chain_ids(self) -> np.ndarray:
        """The chain-id projection of the seeds in processing order (non-decreasing)."""
        return self._chain_ids[self._order]

    @property
    def read_ids(self) -> np.ndarray: return self._chain_ids >> READ_SHIFT
    @property
    def lengths(self) -> np.ndarray: return self._ends - self._begins


# Kernels -------------------------------------------------------------------------------------------------------------
@jit(nopython=True, cache=True, nogil=True)
def _is_sorted_kernel(chain_ids, begins):
    for i in range(1, len(chain_ids)):
        if chain_ids[i] < chain_ids[i - 1]: return False
        if chain_ids[i] == chain_ids[i - 1] and begins[i] < begins[i - 1]: return False
    return True
