#!/usr/bin/env python3
"""
Tests for the multi-process external sort.
"""

import random

import pytest

from hicconvertor.io_utils.pairs_io import iter_pairs, read_header
from hicconvertor.pairs_core import external_sorter
from hicconvertor.pairs_core.data_structures import PairRecord, PairType, PipelineStats
from hicconvertor.pairs_core.external_sorter import ExternalSorter, ExternalSortError


def random_records(n, seed=7):
    """Random records over a small coordinate space, so keys repeat."""
    rng = random.Random(seed)
    records = []
    for i in range(n):
        end1 = (rng.choice(["chr1", "chr2", "chr3"]), rng.randint(1, 20), rng.choice("+-"))
        end2 = (rng.choice(["chr1", "chr2", "chr3"]), rng.randint(1, 20), rng.choice("+-"))
        records.append(PairRecord.from_ends(f"read{i:04d}", end1, end2, PairType.NORMAL))
    return records


def sort_all(records, scratch_dir, **kwargs):
    sorter = ExternalSorter(**kwargs)
    with sorter.sorted_stream(iter(records), scratch_dir) as stream:
        return list(stream)


class TestExternalSorter:
    """Test ordering, stability and totality."""

    @pytest.mark.parametrize("nproc", [1, 4, 16])
    def test_output_is_sorted_permutation(self, scratch_dir, nproc):
        records = random_records(300)
        result = sort_all(records, scratch_dir, nproc=nproc, chunk_size=17)

        keys = [r.sort_key() for r in result]
        assert keys == sorted(keys)
        assert sorted(r.read_id for r in result) == sorted(r.read_id for r in records)

    def test_equal_keys_keep_input_order(self, scratch_dir):
        records = random_records(300)
        result = sort_all(records, scratch_dir, nproc=1, chunk_size=10)
        assert result == sorted(records, key=PairRecord.sort_key)

    def test_output_independent_of_nproc(self, scratch_dir):
        records = random_records(500, seed=11)
        single = sort_all(records, scratch_dir, nproc=1, chunk_size=23)
        parallel = sort_all(records, scratch_dir, nproc=8, chunk_size=23)
        assert [r.to_line() for r in single] == [r.to_line() for r in parallel]

    def test_multi_pass_merge(self, scratch_dir):
        records = random_records(200, seed=3)
        stats = PipelineStats()
        sorter = ExternalSorter(nproc=1, chunk_size=5, max_merge_fanin=3, stats=stats)
        with sorter.sorted_stream(iter(records), scratch_dir) as stream:
            result = list(stream)

        assert result == sorted(records, key=PairRecord.sort_key)
        assert stats.sorted_records == 200

    def test_empty_input(self, scratch_dir):
        assert sort_all([], scratch_dir, nproc=2) == []

    def test_sort_to_file(self, scratch_dir, temp_output_dir):
        records = random_records(50)
        output = temp_output_dir / "sorted.pairs"
        count = ExternalSorter(nproc=2, chunk_size=8).sort(
            iter(records), output, scratch_dir, header=["## pairs format v1.0"]
        )

        assert count == 50
        assert read_header(output) == ["## pairs format v1.0"]
        assert list(iter_pairs(output)) == sorted(records, key=PairRecord.sort_key)

    @pytest.mark.parametrize("kwargs", [
        {"nproc": 0},
        {"chunk_size": 0},
        {"max_merge_fanin": 1},
    ])
    def test_invalid_arguments(self, kwargs):
        with pytest.raises(ValueError):
            ExternalSorter(**kwargs)


class TestScratchCleanup:
    """Chunk files must never outlive the sort."""

    def test_scratch_empty_after_success(self, scratch_dir):
        sort_all(random_records(100), scratch_dir, nproc=4, chunk_size=10)
        assert list(scratch_dir.iterdir()) == []

    def test_scratch_empty_after_abandoned_stream(self, scratch_dir):
        sorter = ExternalSorter(nproc=1, chunk_size=10)
        with sorter.sorted_stream(iter(random_records(100)), scratch_dir) as stream:
            next(stream)
        assert list(scratch_dir.iterdir()) == []

    def test_worker_failure(self, scratch_dir, monkeypatch):
        def failing_spill(records, chunk_path):
            raise OSError("disk full")

        monkeypatch.setattr(external_sorter, "_sort_and_spill", failing_spill)
        with pytest.raises(ExternalSortError, match="disk full"):
            sort_all(random_records(50), scratch_dir, nproc=1, chunk_size=10)
        assert list(scratch_dir.iterdir()) == []

    def test_pooled_worker_failure(self, scratch_dir):
        records = [
            PairRecord(f"r{i:02d}", "chr1", 100 - i, "+", "chr1", 200, "+")
            for i in range(20)
        ]
        # Mixed int/str positions make the in-worker sort raise TypeError
        records[7] = PairRecord("bad", "chr1", "x", "+", "chr1", 5, "+")

        with pytest.raises(ExternalSortError, match="Sort worker failed"):
            sort_all(records, scratch_dir, nproc=2, chunk_size=5)
        assert list(scratch_dir.iterdir()) == []

    def test_input_failure_propagates(self, scratch_dir):
        def broken_input():
            yield from random_records(30)
            raise RuntimeError("upstream broke")

        sorter = ExternalSorter(nproc=2, chunk_size=7)
        with pytest.raises(RuntimeError, match="upstream broke"):
            with sorter.sorted_stream(broken_input(), scratch_dir) as stream:
                list(stream)
        assert list(scratch_dir.iterdir()) == []

    def test_corrupt_chunk_is_reported(self, scratch_dir, monkeypatch):
        def corrupt_spill(records, chunk_path):
            with open(chunk_path, "w") as f:
                f.write("not\ta\tpair\n")
            return len(records)

        monkeypatch.setattr(external_sorter, "_sort_and_spill", corrupt_spill)
        with pytest.raises(ExternalSortError):
            sort_all(random_records(20), scratch_dir, nproc=1, chunk_size=10)
        assert list(scratch_dir.iterdir()) == []
