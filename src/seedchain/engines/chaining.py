"""
Chain filtering engine: groups sorted seeds into chains, weighs them by covered length, ranks
them within each read and greedily keeps the non-redundant ones.

Every stage is a full barrier over the arena; the kernels inside a stage run one task per chain
or per read and write disjoint output slots.
"""
import logging
from dataclasses import dataclass, fields
from typing import Any, Mapping, Callable
from warnings import warn

import numpy as np

from seedchain import SeedchainWarning
from seedchain.lib.resources import RESOURCES, jit
from seedchain.containers.seeds import SeedBatch, READ_SHIFT
from seedchain.containers.chains import ChainArena, ChainStatus, ChainFilterError

if RESOURCES.has_module('numba'):
    from numba import prange
else:
    prange = range

logger = logging.getLogger(__name__)


# Exceptions -----------------------------------------------------------------------------------------------------------
class KernelError(ChainFilterError): pass


# Constants ------------------------------------------------------------------------------------------------------------
_LOW_BITS = np.uint64((1 << READ_SHIFT) - 1)
_DISCARDED = int(ChainStatus.DISCARDED)
_DOMINATED = int(ChainStatus.DOMINATED)
_ACCEPTED = int(ChainStatus.ACCEPTED)


# Classes --------------------------------------------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ChainFilterPolicy:
    """
    Defines WHICH chains survive the greedy overlap filter.
    Frozen = Immutable and Hashable.

    Attributes:
        mask_level: Fraction of the shorter chain's span two chains must share for the overlap
            to be significant.
        chain_drop_ratio: A significantly overlapping chain lighter than this fraction of an
            accepted chain's weight is dominated by it.
        min_seed_len: Dominance also needs an absolute weight gap of at least twice this length.
        min_chain_weight: Chains lighter than this are discarded before the greedy pass.
        max_chain_extend: Maximum number of dominated chains kept per read.
    """
    mask_level: float = 0.5
    chain_drop_ratio: float = 0.5
    min_seed_len: int = 19
    min_chain_weight: int = 0
    max_chain_extend: int = 1 << 30

    def __post_init__(self):
        for name, kind in (('mask_level', float), ('chain_drop_ratio', float), ('min_seed_len', int),
                           ('min_chain_weight', int), ('max_chain_extend', int)):
            value = getattr(self, name)
            try:
                converted = kind(value)
                if kind is int and float(value) != converted: raise ValueError
            except (TypeError, ValueError):
                raise ValueError(f"Invalid {name}: {value!r}")
            object.__setattr__(self, name, converted)
        if not 0 < self.mask_level <= 1: raise ValueError(f"mask_level must be in (0, 1], got {self.mask_level}")
        if not 0 < self.chain_drop_ratio <= 1:
            raise ValueError(f"chain_drop_ratio must be in (0, 1], got {self.chain_drop_ratio}")
        if self.min_seed_len < 0: raise ValueError(f"min_seed_len must be >= 0, got {self.min_seed_len}")
        if self.min_chain_weight < 0: raise ValueError(f"min_chain_weight must be >= 0, got {self.min_chain_weight}")
        if self.max_chain_extend < 1: raise ValueError(f"max_chain_extend must be >= 1, got {self.max_chain_extend}")

    @classmethod
    def from_dict(cls, options: Mapping[str, Any]) -> 'ChainFilterPolicy':
        """
        Builds a policy from a plain mapping, e.g. parsed from a config file.

        Raises:
            ValueError: On unknown option names or invalid values.
        """
        if unknown := set(options) - {f.name for f in fields(cls)}:
            raise ValueError(f"Unknown chain filter options: {', '.join(sorted(unknown))}")
        return cls(**options)


# Stages ---------------------------------------------------------------------------------------------------------------
def _run_stage(stage: str, kernel: Callable, *args):
    try:
        return kernel(*args)
    except Exception as e:
        raise KernelError(f"The {stage} stage failed: {e}") from e


def group_chains(seeds: SeedBatch, arena: ChainArena) -> int:
    """
    Run-length encodes the sorted chain-id stream into the arena's chain table.

    Each chain gets its read id, its offset (lower bound of its id in the sorted stream) and
    its length (run length). Chains are stored in ascending chain-id order, so the
    ``(offset, length)`` pairs tile ``[0, len(seeds))``.

    Args:
        seeds: The chunk's seeds.
        arena: Chain tables to (re)fill; grown if the chunk needs more chains.

    Returns:
        The number of chains.
    """
    if len(seeds) == 0:
        arena.reset(0)
        return 0
    sorted_ids = seeds.sorted_chain_ids
    ids, counts = np.unique(sorted_ids, return_counts=True)
    n_chains = len(ids)
    arena.ensure_capacity(n_chains)
    arena.reset(n_chains)
    arena.buffer('offsets')[:] = np.searchsorted(sorted_ids, ids, side='left')
    arena.buffer('lengths')[:] = counts
    arena.buffer('reads')[:] = ids >> READ_SHIFT
    arena.buffer('statuses')[:] = _DISCARDED
    logger.debug('Grouped %d seeds into %d chains', len(seeds), n_chains)
    return n_chains


def compute_coverage(seeds: SeedBatch, arena: ChainArena):
    """
    Computes each chain's union span and covered-length weight, and its ranking key
    ``(read_id << 32) | weight``.
    """
    if len(arena) == 0: return
    _run_stage('coverage', _coverage_kernel, seeds.order, seeds.begins, seeds.ends, arena.buffer('offsets'),
               arena.buffer('lengths'), arena.buffer('range_begins'), arena.buffer('range_ends'),
               arena.buffer('weights'))
    keys = arena.buffer('weight_keys')
    keys[:] = arena.buffer('reads').astype(np.uint64) << np.uint64(READ_SHIFT)
    keys |= arena.buffer('weights').astype(np.uint64)


def rank_chains(arena: ChainArena) -> np.ndarray:
    """
    Stably sorts the chains by read id ascending, then weight descending.

    Inverting the weight bits of the key turns one ascending sort into heaviest-first ranking
    within each read; chains of equal weight keep their chain-table order.

    Returns:
        The rank permutation (chain indices, best first within each read).
    """
    ranks = arena.buffer('ranks')
    if len(ranks): ranks[:] = np.argsort(arena.buffer('weight_keys') ^ _LOW_BITS, kind='stable')
    return ranks


def filter_chains(arena: ChainArena, read_begin: int, read_end: int, policy: ChainFilterPolicy) -> int:
    """
    Greedily flags the non-redundant chains of every read in ``[read_begin, read_end)``.

    Per read, the heaviest chain is accepted unconditionally and the accepted count ``n`` starts
    at 1. Each later chain is tested against the read's first ``n`` ranked chains, in rank order;
    it is dominated, and stops its scan, when it overlaps one by at least ``mask_level`` of the
    shorter span while weighing less than ``chain_drop_ratio`` of it and at least
    ``2 * min_seed_len`` less. Chains that are not dominated are accepted and increment ``n``.
    Dominated chains are still kept, up to ``max_chain_extend`` per read. Chains of reads outside
    the range stay discarded.

    Returns:
        The number of chains kept.
    """
    n_chains = len(arena)
    if n_chains == 0: return 0
    reads = arena.buffer('reads')
    if reads[0] < read_begin or reads[-1] >= read_end:
        n_outside = int(np.count_nonzero((reads < read_begin) | (reads >= read_end)))
        warn(f'{n_outside} chains belong to reads outside [{read_begin}, {read_end}) and are discarded',
             SeedchainWarning)
    query = np.unique(reads)  # Only reads with chains get a task
    query = query[(query >= read_begin) & (query < read_end)]
    lo = np.searchsorted(reads, query, side='left')
    hi = np.searchsorted(reads, query, side='right')
    statuses = arena.buffer('statuses')
    _run_stage('greedy filter', _greedy_filter_kernel, lo, hi, arena.buffer('ranks'), arena.buffer('range_begins'),
               arena.buffer('range_ends'), arena.buffer('weights'), policy.mask_level, policy.chain_drop_ratio,
               policy.min_seed_len, policy.min_chain_weight, policy.max_chain_extend, statuses)
    n_kept = int(np.count_nonzero(statuses))
    logger.debug('Kept %d of %d chains (%d dominated)', n_kept, n_chains,
                 int(np.count_nonzero(statuses == _DOMINATED)))
    return n_kept


def compact_chains(arena: ChainArena) -> int:
    """
    Removes discarded chains from the chain table, preserving the order of the kept ones.

    All chain attributes are scattered with the same selection into the arena's scratch buffers,
    which then replace the live ones.

    Returns:
        The number of chains left.
    """
    n_chains = len(arena)
    if n_chains == 0: return 0
    keep = arena.buffer('statuses') != _DISCARDED
    positions = np.cumsum(keep) - 1
    n_kept = int(positions[-1]) + 1
    _run_stage('compaction', _compact_kernel, keep, positions,
               *(arena.buffer(f) for f in ChainArena._COMPACTED), *(arena.scratch(f) for f in ChainArena._COMPACTED))
    arena.compact(n_kept)
    return n_kept


# Kernels -------------------------------------------------------------------------------------------------------------
@jit(nopython=True, cache=True, nogil=True, parallel=True)
def _coverage_kernel(order, begins, ends, offsets, lengths, range_begins, range_ends, weights):
    """Length of the union of each chain's seed spans, visited by ascending begin."""
    for c in prange(len(offsets)):
        covered = 0
        weight = 0
        lo = 2147483647
        hi = 0
        for k in range(offsets[c], offsets[c] + lengths[c]):
            s = order[k]
            a = begins[s]
            b = ends[s]
            if a >= covered:
                weight += b - a
            elif b > covered:
                weight += b - covered
            if b > covered: covered = b
            if a < lo: lo = a
            if b > hi: hi = b
        range_begins[c] = lo
        range_ends[c] = hi
        weights[c] = weight


@jit(nopython=True, cache=True, nogil=True, parallel=True)
def _greedy_filter_kernel(lo, hi, ranks, range_begins, range_ends, weights, mask_level, drop_ratio, min_seed_len,
                          min_chain_weight, max_chain_extend, statuses):
    """
    One task per read over ``ranks[lo[r]:hi[r]]``. The references for a chain are the read's
    first ``n`` ranked chains, where ``n`` counts the chains accepted so far.
    """
    min_gap = min_seed_len * 2
    for r in prange(len(lo)):
        first = lo[r]
        last = hi[r]
        # Ranked heaviest first, so chains below the weight floor form the tail
        while last > first and weights[ranks[last - 1]] < min_chain_weight: last -= 1
        if last == first: continue

        statuses[ranks[first]] = _ACCEPTED
        n = 1
        n_dominated = 0
        for k in range(first + 1, last):
            i = ranks[k]
            i_b = range_begins[i]
            i_e = range_ends[i]
            i_w = weights[i]
            dominated = False
            for m in range(first, first + n):
                j = ranks[m]
                j_b = range_begins[j]
                j_e = range_ends[j]
                overlap = min(i_e, j_e) - max(i_b, j_b)
                if overlap <= 0: continue
                if overlap >= min(i_e - i_b, j_e - j_b) * mask_level:
                    j_w = weights[j]
                    if i_w < j_w * drop_ratio and j_w - i_w >= min_gap:
                        dominated = True
                        break
            if dominated:
                n_dominated += 1
                statuses[i] = _DOMINATED if n_dominated <= max_chain_extend else _DISCARDED
            else:
                n += 1
                statuses[i] = _ACCEPTED


@jit(nopython=True, cache=True, nogil=True, parallel=True)
def _compact_kernel(keep, positions, reads, offsets, lengths, range_begins, range_ends, weights, statuses,
                    out_reads, out_offsets, out_lengths, out_range_begins, out_range_ends, out_weights, out_statuses):
    for i in prange(len(keep)):
        if not keep[i]: continue
        p = positions[i]
        out_reads[p] = reads[i]
        out_offsets[p] = offsets[i]
        out_lengths[p] = lengths[i]
        out_range_begins[p] = range_begins[i]
        out_range_ends[p] = range_ends[i]
        out_weights[p] = weights[i]
        out_statuses[p] = statuses[i]
