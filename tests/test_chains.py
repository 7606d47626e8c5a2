import numpy as np
import pytest
from seedchain.containers.chains import Chain, ChainBatch, ChainArena, ChainStatus, CapacityError


class TestChainStatus:
    def test_kept(self):
        assert not ChainStatus.DISCARDED.kept
        assert ChainStatus.DOMINATED.kept
        assert ChainStatus.ACCEPTED.kept


class TestChain:
    def test_attributes(self):
        c = Chain(3, 10, 4, 5, 45, 40, ChainStatus.ACCEPTED)
        assert c.span == (5, 45)
        assert len(c) == 4
        assert c.kept
        assert c.status is ChainStatus.ACCEPTED

    def test_status_from_int(self):
        assert Chain(0, 0, 1, status=1).status is ChainStatus.DOMINATED


class TestChainBatch:
    @pytest.fixture
    def chains(self):
        return ChainBatch.build(
            Chain(0, 0, 2, 0, 20, 10, ChainStatus.DOMINATED),
            Chain(0, 2, 1, 5, 45, 40, ChainStatus.ACCEPTED),
            Chain(1, 3, 2, 100, 110, 5, ChainStatus.DISCARDED),
        )

    def test_build_and_index(self, chains):
        assert len(chains) == 3
        assert chains[1] == Chain(0, 2, 1, 5, 45, 40, ChainStatus.ACCEPTED)
        assert chains.range_begins.dtype == np.int32
        assert chains.statuses.dtype == np.uint8

    def test_masks(self, chains):
        np.testing.assert_array_equal(chains.kept, [True, True, False])
        np.testing.assert_array_equal(chains.dominated, [True, False, False])

    def test_mask_indexing(self, chains):
        kept = chains[chains.kept]
        assert isinstance(kept, ChainBatch)
        np.testing.assert_array_equal(kept.weights, [10, 40])

    def test_concat(self, chains):
        both = ChainBatch.concat([chains, chains[:1]])
        assert len(both) == 4
        assert both[3] == chains[0]

    def test_copy_is_independent(self, chains):
        copy = chains.copy()
        copy.weights[0] = 99
        assert chains.weights[0] == 10

    def test_seed_indices(self, chains):
        order = np.array([4, 3, 2, 1, 0])
        np.testing.assert_array_equal(chains.seed_indices(2, order), [1, 0])

    def test_empty(self):
        chains = ChainBatch.empty()
        assert len(chains) == 0
        assert list(chains) == []
        assert ChainBatch.build([]).nbytes == 0


class TestChainArena:
    def test_growth_is_monotone(self):
        arena = ChainArena()
        assert arena.capacity == 0
        assert arena.ensure_capacity(10)
        assert arena.capacity == 10
        assert not arena.ensure_capacity(4)
        assert arena.capacity == 10
        assert arena.ensure_capacity(11)
        assert arena.capacity == 15  # 1.5x growth beats the request

    def test_growth_to_request(self):
        arena = ChainArena(capacity=4, growth=2)
        arena.ensure_capacity(100)
        assert arena.capacity == 100

    def test_invalid_growth(self):
        with pytest.raises(ValueError, match="Growth"):
            ChainArena(growth=0.5)

    def test_reset_within_capacity(self):
        arena = ChainArena(capacity=8)
        arena.reset(5)
        assert len(arena) == 5
        assert len(arena.buffer('reads')) == 5
        assert len(arena.scratch('weights')) == 5
        with pytest.raises(CapacityError, match="exceed"):
            arena.reset(9)

    def test_allocation_failure(self, monkeypatch):
        arena = ChainArena(capacity=2)

        def _fail(*args, **kwargs): raise MemoryError
        monkeypatch.setattr(np, 'empty', _fail)
        with pytest.raises(CapacityError, match="1000"):
            arena.ensure_capacity(1000)
        monkeypatch.undo()
        assert arena.capacity == 2

    def test_compact_swaps_buffers(self):
        arena = ChainArena(capacity=4)
        arena.reset(4)
        arena.buffer('weights')[:] = [1, 2, 3, 4]
        arena.scratch('weights')[:2] = [2, 4]
        arena.compact(2)
        np.testing.assert_array_equal(arena.buffer('weights'), [2, 4])
        np.testing.assert_array_equal(arena.view().weights, [2, 4])
