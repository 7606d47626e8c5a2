"""Seed chains, the filtered chain table, and the grow-only arena backing a chunk's chain tables."""
import logging
from enum import IntEnum
from typing import Union, Iterable

import numpy as np

from seedchain.containers import Batch

logger = logging.getLogger(__name__)


# Exceptions -----------------------------------------------------------------------------------------------------------
class ChainFilterError(Exception): pass
class CapacityError(ChainFilterError): pass


# Classes --------------------------------------------------------------------------------------------------------------
class ChainStatus(IntEnum):
    """
    Outcome of the greedy overlap filter for one chain.

    ``DOMINATED`` chains are kept but stopped their scan on a strictly heavier, significantly
    overlapping chain; ``ACCEPTED`` chains extend the read's reference set by one rank.
    """
    DISCARDED = 0
    DOMINATED = 1
    ACCEPTED = 2

    @property
    def kept(self) -> bool: return self != ChainStatus.DISCARDED


class Chain:
    """
    A run of seeds sharing a chain id.

    Attributes:
        read_id: The owning read.
        offset: Start of the chain's slice into the seed processing order.
        length: Number of seeds in the chain.
        begin: Start of the union span of the chain's seeds.
        end: End of the union span of the chain's seeds.
        weight: Length of the union of the chain's seed spans.
        status: Filter outcome.
    """
    __slots__ = ('_read_id', '_offset', '_length', '_begin', '_end', '_weight', '_status')

    def __init__(self, read_id: int, offset: int, length: int, begin: int = 0, end: int = 0, weight: int = 0,
                 status: Union[ChainStatus, int] = ChainStatus.DISCARDED):
        self._read_id = int(read_id)
        self._offset = int(offset)
        self._length = int(length)
        self._begin = int(begin)
        self._end = int(end)
        self._weight = int(weight)
        self._status = ChainStatus(int(status))

    @property
    def read_id(self) -> int: return self._read_id
    @property
    def offset(self) -> int: return self._offset
    @property
    def length(self) -> int: return self._length
    @property
    def begin(self) -> int: return self._begin
    @property
    def end(self) -> int: return self._end
    @property
    def span(self) -> tuple[int, int]: return self._begin, self._end
    @property
    def weight(self) -> int: return self._weight
    @property
    def status(self) -> ChainStatus: return self._status
    @property
    def kept(self) -> bool: return self._status.kept
    def __len__(self): return self._length
    def __repr__(self):
        return (f"Chain(read={self._read_id}, seeds={self._offset}+{self._length}, "
                f"span={self._begin}:{self._end}, w={self._weight}, {self._status.name})")

    def __eq__(self, other):
        if not isinstance(other, Chain): return False
        return (self._read_id, self._offset, self._length, self._begin, self._end, self._weight, self._status) == \
            (other._read_id, other._offset, other._length, other._begin, other._end, other._weight, other._status)

    def __hash__(self):
        return hash((self._read_id, self._offset, self._length, self._begin, self._end, self._weight, self._status))


class ChainBatch(Batch):
    """
    Chain table stored as parallel arrays.

    ``offsets`` and ``lengths`` slice the processing-order index of the ``SeedBatch`` the chains
    were grouped from.
    """
    __slots__ = ('_reads', '_offsets', '_lengths', '_range_begins', '_range_ends', '_weights', '_statuses')

    def __init__(self, reads: np.ndarray = None, offsets: np.ndarray = None, lengths: np.ndarray = None,
                 range_begins: np.ndarray = None, range_ends: np.ndarray = None, weights: np.ndarray = None,
                 statuses: np.ndarray = None):
        if reads is None:
            reads = offsets = lengths = weights = np.empty(0, dtype=np.int64)
            range_begins = range_ends = np.empty(0, dtype=np.int32)
            statuses = np.empty(0, dtype=np.uint8)
        n = len(reads)
        self._reads = reads
        self._offsets = offsets
        self._lengths = lengths
        self._range_begins = range_begins if range_begins is not None else np.zeros(n, dtype=np.int32)
        self._range_ends = range_ends if range_ends is not None else np.zeros(n, dtype=np.int32)
        self._weights = weights if weights is not None else np.zeros(n, dtype=np.int64)
        self._statuses = statuses if statuses is not None else np.zeros(n, dtype=np.uint8)

    @classmethod
    def empty(cls) -> 'ChainBatch': return cls()

    @classmethod
    def build(cls, *chains: Union[Chain, Iterable[Chain]]) -> 'ChainBatch':
        """Creates a ChainBatch from Chain objects (varargs or a single iterable)."""
        if len(chains) == 1 and isinstance(chains[0], Iterable) and not isinstance(chains[0], Chain):
            chains = chains[0]
        chains = list(chains)
        if not chains: return cls.empty()
        arr = np.array([(c.read_id, c.offset, c.length, c.begin, c.end, c.weight, c.status) for c in chains],
                       dtype=np.int64)
        return cls(arr[:, 0].copy(), arr[:, 1].copy(), arr[:, 2].copy(), arr[:, 3].astype(np.int32),
                   arr[:, 4].astype(np.int32), arr[:, 5].copy(), arr[:, 6].astype(np.uint8))

    @classmethod
    def concat(cls, batches: Iterable['ChainBatch']) -> 'ChainBatch':
        """Concatenates ChainBatches. Offsets are not rebased."""
        batches = list(batches)
        if not batches: return cls.empty()
        return cls(*(np.concatenate(cols) for cols in zip(*(b.columns for b in batches))))

    def __repr__(self): return f"<ChainBatch: {len(self)} chains>"
    def __len__(self): return len(self._reads)

    def __getitem__(self, item):
        if isinstance(item, (int, np.integer)):
            return Chain(self._reads[item], self._offsets[item], self._lengths[item], self._range_begins[item],
                         self._range_ends[item], self._weights[item], self._statuses[item])
        elif isinstance(item, (slice, np.ndarray, list)):
            return ChainBatch(*(c[item] for c in self.columns))
        raise TypeError(f"Invalid index type: {type(item)}")

    def seed_indices(self, i: int, order: np.ndarray) -> np.ndarray:
        """Returns the seed indices of chain *i*, given the seed processing-order index."""
        return order[self._offsets[i]:self._offsets[i] + self._lengths[i]]

    @property
    def component(self): return Chain
    @property
    def reads(self) -> np.ndarray: return self._reads
    @property
    def offsets(self) -> np.ndarray: return self._offsets
    @property
    def lengths(self) -> np.ndarray: return self._lengths
    @property
    def range_begins(self) -> np.ndarray: return self._range_begins
    @property
    def range_ends(self) -> np.ndarray: return self._range_ends
    @property
    def weights(self) -> np.ndarray: return self._weights
    @property
    def statuses(self) -> np.ndarray: return self._statuses
    @property
    def kept(self) -> np.ndarray: return self._statuses != ChainStatus.DISCARDED
    @property
    def dominated(self) -> np.ndarray: return self._statuses == ChainStatus.DOMINATED


class ChainArena:
    """
    Chunk-scoped chain tables backed by grow-only buffers.

    Buffers are reserved once per chunk with ``ensure_capacity`` and reused by later chunks;
    capacity never shrinks. Contents do not survive a reallocation or the next chunk.
    The compacted fields are double-buffered so compaction can scatter into scratch and swap.

    Args:
        capacity: Initial number of chains to reserve.
        growth: Multiplier applied to the current capacity when it must grow.
    """
    _FIELDS = {
        'reads': np.int64, 'offsets': np.int64, 'lengths': np.int64,
        'range_begins': np.int32, 'range_ends': np.int32, 'weights': np.int64,
        'statuses': np.uint8, 'weight_keys': np.uint64, 'ranks': np.int64,
    }
    _COMPACTED = ('reads', 'offsets', 'lengths', 'range_begins', 'range_ends', 'weights', 'statuses')

    def __init__(self, capacity: int = 0, growth: float = 1.5):
        if growth < 1: raise ValueError(f"Growth factor must be >= 1, got {growth}")
        self._growth = growth
        self._capacity = 0
        self._size = 0
        self._buffers = {f: np.empty(0, dtype=d) for f, d in self._FIELDS.items()}
        self._scratch = {f: np.empty(0, dtype=self._FIELDS[f]) for f in self._COMPACTED}
        if capacity: self.ensure_capacity(capacity)

    def __repr__(self): return f"<ChainArena: {self._size}/{self._capacity} chains>"
    def __len__(self): return self._size

    @property
    def capacity(self) -> int: return self._capacity

    @property
    def nbytes(self) -> int:
        return sum(b.nbytes for b in self._buffers.values()) + sum(b.nbytes for b in self._scratch.values())

    def ensure_capacity(self, n: int) -> bool:
        """
        Reserves room for *n* chains, reallocating every buffer if the reservation is too small.

        Args:
            n: Number of chains the current chunk needs.

        Returns:
            ``True`` if the buffers were reallocated.

        Raises:
            CapacityError: If the buffers cannot be allocated.
        """
        if n <= self._capacity: return False
        new_capacity = max(int(n), int(self._capacity * self._growth))
        try:
            buffers = {f: np.empty(new_capacity, dtype=d) for f, d in self._FIELDS.items()}
            scratch = {f: np.empty(new_capacity, dtype=self._FIELDS[f]) for f in self._COMPACTED}
        except MemoryError as e:
            raise CapacityError(f"Cannot reserve chain tables for {n} chains") from e
        logger.debug('Growing chain tables from %d to %d chains', self._capacity, new_capacity)
        self._buffers, self._scratch, self._capacity = buffers, scratch, new_capacity
        return True

    def reset(self, n: int = 0):
        """Starts a new chunk holding *n* chains; *n* must fit the current reservation."""
        if n > self._capacity: raise CapacityError(f"{n} chains exceed the reserved capacity ({self._capacity})")
        self._size = n

    def compact(self, n_kept: int):
        """Swaps the scratch buffers (holding the compacted fields) in, leaving *n_kept* chains."""
        for f in self._COMPACTED:
            self._buffers[f], self._scratch[f] = self._scratch[f], self._buffers[f]
        self._size = n_kept

    def buffer(self, field: str) -> np.ndarray:
        """The live slice of *field* for the current chunk."""
        return self._buffers[field][:self._size]

    def scratch(self, field: str) -> np.ndarray:
        """The scratch slice of *field*, sized to the current chunk."""
        return self._scratch[field][:self._size]

    def view(self) -> ChainBatch:
        """A ChainBatch over the live buffers; overwritten by the next chunk."""
        return ChainBatch(*(self.buffer(f) for f in self._COMPACTED))
