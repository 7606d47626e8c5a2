"""
Chunk-by-chunk driver for the chain filter.

A ``ChainFilterContext`` owns everything that outlives a chunk: the filter policy, the
grow-only chain arena and the running statistics. Chunks are processed strictly one at a time.
"""
import logging
from dataclasses import dataclass
from time import perf_counter
from typing import Iterable, Iterator, Optional

from seedchain.lib.resources import RESOURCES
from seedchain.containers.seeds import SeedBatch
from seedchain.containers.chains import ChainArena, ChainBatch
from seedchain.engines.chaining import (ChainFilterPolicy, group_chains, compute_coverage, rank_chains,
                                        filter_chains, compact_chains)

logger = logging.getLogger(__name__)


# Exceptions -----------------------------------------------------------------------------------------------------------
class ChunkError(ValueError): pass


# Classes --------------------------------------------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class Chunk:
    """
    Half-open range of read ids processed by one invocation.

    Attributes:
        read_begin: First read id (inclusive).
        read_end: Last read id (exclusive).
    """
    read_begin: int
    read_end: int

    def __post_init__(self):
        object.__setattr__(self, 'read_begin', int(self.read_begin))
        object.__setattr__(self, 'read_end', int(self.read_end))
        if self.read_begin < 0: raise ChunkError(f"read_begin must be >= 0, got {self.read_begin}")
        if self.read_end < self.read_begin:
            raise ChunkError(f"read_end ({self.read_end}) must be >= read_begin ({self.read_begin})")

    def __len__(self): return self.read_end - self.read_begin
    def __contains__(self, read_id: int): return self.read_begin <= read_id < self.read_end

    @classmethod
    def covering(cls, seeds: SeedBatch) -> 'Chunk':
        """The smallest chunk containing every read of *seeds*."""
        if len(seeds) == 0: return cls(0, 0)
        read_ids = seeds.read_ids
        return cls(int(read_ids.min()), int(read_ids.max()) + 1)


@dataclass(slots=True)
class FilterStats:
    """Running totals across every chunk processed by a context."""
    n_chunks: int = 0
    n_seeds: int = 0
    n_chains: int = 0
    n_kept: int = 0
    elapsed: float = 0.0  # Wall seconds

    @property
    def kept_fraction(self) -> float:
        return self.n_kept / self.n_chains if self.n_chains else 0.0

    def reset(self):
        self.n_chunks = self.n_seeds = self.n_chains = self.n_kept = 0
        self.elapsed = 0.0


class ChainFilterContext:
    """
    Runs grouping, coverage, ranking, greedy filtering and compaction over successive chunks.

    Args:
        policy: Filter thresholds (defaults to ``ChainFilterPolicy()``).
        capacity: Number of chains to reserve up front.
        growth: Capacity multiplier when a chunk needs more chains than reserved.

    Examples:
        >>> context = ChainFilterContext(ChainFilterPolicy(min_seed_len=5))
        >>> chains = context.process(SeedBatch.from_chains([0, 0], [[(0, 20)], [(5, 45)]]))
        >>> chains.weights.tolist()
        [20, 40]
    """
    def __init__(self, policy: Optional[ChainFilterPolicy] = None, capacity: int = 0, growth: float = 1.5):
        self.policy = policy or ChainFilterPolicy()
        self.arena = ChainArena(capacity, growth)
        self.stats = FilterStats()
        logger.debug('Chain filter kernels run on %d thread(s)', RESOURCES.n_threads)

    def __repr__(self): return f"<ChainFilterContext: {self.stats.n_chunks} chunks, {self.arena!r}>"

    def process(self, seeds: SeedBatch, chunk: Optional[Chunk] = None) -> ChainBatch:
        """
        Filters the chains of one chunk.

        Args:
            seeds: The chunk's seeds, tagged with chain ids.
            chunk: Reads whose chains are filtered; defaults to every read in *seeds*.
                Chains of other reads are discarded.

        Returns:
            The kept chains, in chain-id order. The batch views the context's buffers and is
            overwritten by the next chunk; ``copy()`` it to keep it.

        Raises:
            CapacityError: If the chain tables cannot grow to fit the chunk.
            KernelError: If a stage fails.
        """
        if chunk is None: chunk = Chunk.covering(seeds)
        start = perf_counter()
        n_kept = n_chains = group_chains(seeds, self.arena)
        if n_chains:
            compute_coverage(seeds, self.arena)
            rank_chains(self.arena)
            filter_chains(self.arena, chunk.read_begin, chunk.read_end, self.policy)
            n_kept = compact_chains(self.arena)
        elapsed = perf_counter() - start

        self.stats.n_chunks += 1
        self.stats.n_seeds += len(seeds)
        self.stats.n_chains += n_chains
        self.stats.n_kept += n_kept
        self.stats.elapsed += elapsed
        logger.info('Reads %d-%d: kept %d of %d chains from %d seeds in %.3fs', chunk.read_begin, chunk.read_end,
                    n_kept, n_chains, len(seeds), elapsed)
        return self.arena.view()

    def process_many(self, chunks: Iterable[tuple[SeedBatch, Optional[Chunk]]]) -> Iterator[ChainBatch]:
        """
        Processes ``(seeds, chunk)`` pairs in order, yielding each chunk's kept chains.

        Unlike ``process``, every yielded batch owns its arrays and stays valid after later chunks.
        """
        for seeds, chunk in chunks:
            yield self.process(seeds, chunk).copy()
