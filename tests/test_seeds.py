import numpy as np
import pytest
from seedchain.containers.seeds import (Seed, SeedBatch, SeedError, pack_chain_ids, chain_read_ids, READ_SHIFT,
                                        MAX_READ_ID)


class TestChainIds:
    def test_pack(self):
        ids = pack_chain_ids([0, 0, 1, 7], [0, 1, 0, 2])
        np.testing.assert_array_equal(ids, [0, 1, 1 << 32, (7 << 32) | 2])
        assert ids.dtype == np.int64

    def test_read_ids_roundtrip(self):
        reads = np.array([0, 3, 3, 1000, MAX_READ_ID])
        ids = pack_chain_ids(reads, [5, 0, 1, 2, 0])
        np.testing.assert_array_equal(chain_read_ids(ids), reads)

    def test_sorting_ids_sorts_by_read_then_sequence(self):
        ids = pack_chain_ids([2, 0, 1, 0], [0, 9, 3, 2])
        np.testing.assert_array_equal(chain_read_ids(np.sort(ids)), [0, 0, 1, 2])
        np.testing.assert_array_equal(np.sort(ids) & ((1 << READ_SHIFT) - 1), [2, 9, 3, 0])

    def test_read_id_overflow(self):
        with pytest.raises(SeedError, match="Read ids"):
            pack_chain_ids([MAX_READ_ID + 1], [0])

    def test_negative_sequence_number(self):
        with pytest.raises(SeedError, match="sequence numbers"):
            pack_chain_ids([0], [-1])

    def test_shape_mismatch(self):
        with pytest.raises(SeedError, match="read ids"):
            pack_chain_ids([0, 1], [0])


class TestSeed:
    def test_attributes(self):
        s = Seed((3 << 32) | 1, 10, 25)
        assert s.read_id == 3
        assert len(s) == 15
        assert tuple(s) == ((3 << 32) | 1, 10, 25)

    def test_equality(self):
        assert Seed(1, 2, 3) == Seed(1, 2, 3)
        assert Seed(1, 2, 3) != Seed(1, 2, 4)
        assert len({Seed(1, 2, 3), Seed(1, 2, 3)}) == 1


class TestSeedBatchInit:
    def test_empty(self):
        seeds = SeedBatch.empty()
        assert len(seeds) == 0
        assert not seeds
        assert len(seeds.order) == 0

    def test_sorted_input_keeps_identity_order(self):
        ids = pack_chain_ids([0, 0, 1], [0, 1, 0])
        seeds = SeedBatch(np.repeat(ids, [2, 1, 1]), [0, 5, 3, 1], [4, 9, 8, 2])
        np.testing.assert_array_equal(seeds.order, [0, 1, 2, 3])

    def test_order_sorts_by_chain_then_begin(self):
        ids = pack_chain_ids([1, 0, 0, 0], [0, 1, 0, 0])
        seeds = SeedBatch(ids, [0, 7, 30, 4], [10, 12, 40, 9])
        np.testing.assert_array_equal(seeds.order, [3, 2, 1, 0])
        assert np.all(np.diff(seeds.sorted_chain_ids) >= 0)

    def test_equal_begins_keep_input_order(self):
        seeds = SeedBatch([1, 0, 0, 0], [5, 5, 5, 2], [6, 9, 7, 3])
        np.testing.assert_array_equal(seeds.order, [3, 1, 2, 0])

    def test_mismatched_lengths(self):
        with pytest.raises(SeedError, match="differ in length"):
            SeedBatch([0, 0], [1], [2, 3])

    def test_end_before_begin(self):
        with pytest.raises(SeedError, match="must not precede"):
            SeedBatch([0], [10], [5])

    def test_negative_coordinates(self):
        with pytest.raises(SeedError, match="non-negative"):
            SeedBatch([0], [-1], [5])

    def test_coordinates_beyond_int32(self):
        with pytest.raises(SeedError, match="must not exceed"):
            SeedBatch([0], [0], np.array([2 ** 31], dtype=np.int64))
        seeds = SeedBatch([0], [0], [2 ** 31 - 1])
        assert seeds.ends[0] == 2 ** 31 - 1


class TestSeedBatchConstructors:
    def test_from_chains_numbers_chains_per_read(self):
        seeds = SeedBatch.from_chains([0, 0, 2], [[(0, 5)], [(3, 8), (10, 12)], [(1, 4)]])
        assert len(seeds) == 4
        np.testing.assert_array_equal(seeds.chain_ids, pack_chain_ids([0, 0, 0, 2], [0, 1, 1, 0]))
        np.testing.assert_array_equal(seeds.lengths, [5, 5, 2, 3])

    def test_from_chains_mismatch(self):
        with pytest.raises(SeedError, match="read ids"):
            SeedBatch.from_chains([0], [[(0, 1)], [(2, 3)]])

    def test_build(self):
        seeds = SeedBatch.build(Seed(1, 5, 10), Seed(0, 2, 4))
        assert len(seeds) == 2
        assert seeds[0] == Seed(1, 5, 10)
        np.testing.assert_array_equal(seeds.order, [1, 0])

    def test_random(self):
        rng = np.random.default_rng(7)
        seeds = SeedBatch.random(50, rng=rng, read_length=150, max_len=40)
        assert len(seeds) > 0
        assert np.all(seeds.ends <= 150)
        assert np.all(seeds.lengths >= 5)
        assert set(np.unique(seeds.read_ids)) == set(range(50))
        s = seeds.order
        keys = list(zip(seeds.chain_ids[s], seeds.begins[s]))
        assert keys == sorted(keys)

    def test_random_invalid_lengths(self):
        with pytest.raises(ValueError, match="read_length"):
            SeedBatch.random(3, read_length=20, max_len=40)

    def test_concat(self):
        a = SeedBatch.from_chains([1], [[(0, 5)]])
        b = SeedBatch.from_chains([0], [[(2, 9)]])
        seeds = SeedBatch.concat([a, b])
        assert len(seeds) == 2
        np.testing.assert_array_equal(seeds.order, [1, 0])

    def test_slicing_returns_batch(self):
        seeds = SeedBatch.from_chains([0, 1, 2], [[(0, 5)], [(1, 6)], [(2, 7)]])
        sub = seeds[1:]
        assert isinstance(sub, SeedBatch)
        np.testing.assert_array_equal(sub.read_ids, [1, 2])

    def test_invalid_index(self):
        with pytest.raises(TypeError):
            SeedBatch.empty()['a']
