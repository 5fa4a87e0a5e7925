#!/usr/bin/env python3
"""
End-to-end tests for the pipeline orchestrator.
"""

import pytest

from conftest import sam_line
from hicconvertor.config.schema import ConfigValidationError, load_config, merge_overrides
from hicconvertor.io_utils.pairs_io import SORTED_LINE, read_header
from hicconvertor.pairs_core import external_sorter
from hicconvertor.utils.pipeline import PipelineOrchestrator, PipelineStageError


def data_lines(path):
    return [line for line in path.read_text().splitlines() if not line.startswith("#")]


def read_stats(path):
    return {key: int(value) for key, value in
            (line.split("\t") for line in path.read_text().splitlines())}


@pytest.fixture
def make_orchestrator(scratch_dir):
    def _make(**overrides):
        config = merge_overrides(load_config(), {"runtime.scratch_dir": str(scratch_dir), **overrides})
        return PipelineOrchestrator(config)
    return _make


class TestFullPipeline:
    """Convert -> sort -> dedup in one run."""

    def test_duplicate_reads_collapse(self, make_orchestrator, write_sam,
                                      duplicate_scenario_records, temp_output_dir, scratch_dir):
        bam = write_sam(duplicate_scenario_records)
        out_dir = temp_output_dir / "out"

        stats = make_orchestrator().run_full(bam, out_dir, nproc=2)

        pairs_path = out_dir / "pairs.txt"
        assert data_lines(pairs_path) == ["readA\tchr1\t100\t+\tchr2\t500\t+\tnormal"]
        assert stats.emitted_pairs == 2
        assert stats.duplicates_removed == 1
        assert stats.pairs_kept == 1

        header = read_header(pairs_path)
        assert SORTED_LINE in header
        assert "#chromsize: chr1 10000" in header

        report = read_stats(out_dir / "stats.txt")
        assert report["duplicates_removed"] == 1
        assert report["pairs_kept"] == 1
        assert list(scratch_dir.iterdir()) == []

    def test_output_is_sorted(self, make_orchestrator, write_sam, temp_output_dir):
        bam = write_sam([
            sam_line("r1", 65, "chr2", 900), sam_line("r1", 129, "chr2", 950),
            sam_line("r2", 65, "chr1", 700), sam_line("r2", 129, "chr2", 10),
            sam_line("r3", 65, "chr1", 5), sam_line("r3", 129, "chr1", 6),
        ])
        out_dir = temp_output_dir / "out"
        make_orchestrator(**{"sort.chunk_size": 1}).run_full(bam, out_dir, nproc=3)

        assert [line.split("\t")[0] for line in data_lines(out_dir / "pairs.txt")] == \
            ["r3", "r2", "r1"]

    def test_graph_run(self, make_orchestrator, write_sam, write_gfa, simple_gfa, temp_output_dir):
        bam = write_sam([
            sam_line("g1", 65, "ctgA", 11), sam_line("g1", 129, "ctgA", 101),
            sam_line("g2", 65, "ctgA", 11), sam_line("g2", 129, "ctgA", 500),
        ], references=[("ctgA", 1000)])
        graph = write_gfa(simple_gfa)
        out_dir = temp_output_dir / "out"

        stats = make_orchestrator().run_full(bam, out_dir, graph_path=graph, nproc=1)

        assert data_lines(out_dir / "pairs.txt") == [
            "g2\t!\t0\t-\ts1\t11\t+\tunmapped",
            "g1\ts1\t11\t+\ts2\t40\t-\tgraph-mapped",
        ]
        assert stats.pairs_graph_mapped == 1
        assert stats.mapping_misses == 1
        assert "#chromsize: s2 50" in read_header(out_dir / "pairs.txt")

    def test_unmapped_pairs_can_be_dropped(self, make_orchestrator, write_sam, temp_output_dir):
        bam = write_sam([
            sam_line("r1", 65, "chr1", 100), sam_line("r1", 129, "chr1", 200),
            sam_line("r2", 73, "chr1", 300), sam_line("r2", 133, "*", 0),
        ])
        out_dir = temp_output_dir / "out"
        stats = make_orchestrator(**{"convert.emit_unmapped": False}).run_full(bam, out_dir)

        assert len(data_lines(out_dir / "pairs.txt")) == 1
        assert stats.unmapped_skipped == 1

    def test_without_header(self, make_orchestrator, write_sam,
                            duplicate_scenario_records, temp_output_dir):
        bam = write_sam(duplicate_scenario_records)
        out_dir = temp_output_dir / "out"
        make_orchestrator(**{"output.write_header": False}).run_full(bam, out_dir)

        assert read_header(out_dir / "pairs.txt") == []


class TestFailures:
    """Failed runs publish nothing and leave no scratch state."""

    def test_missing_alignment_file(self, make_orchestrator, temp_output_dir, scratch_dir):
        out_dir = temp_output_dir / "out"
        with pytest.raises(PipelineStageError) as exc_info:
            make_orchestrator().run_full(temp_output_dir / "absent.bam", out_dir)

        assert exc_info.value.stage == "convert"
        assert isinstance(exc_info.value.cause, FileNotFoundError)
        assert list(out_dir.iterdir()) == []
        assert list(scratch_dir.iterdir()) == []

    def test_sort_worker_failure(self, make_orchestrator, write_sam, duplicate_scenario_records,
                                 temp_output_dir, scratch_dir, monkeypatch):
        def failing_spill(records, chunk_path):
            raise OSError("no space left on device")

        monkeypatch.setattr(external_sorter, "_sort_and_spill", failing_spill)
        bam = write_sam(duplicate_scenario_records)
        out_dir = temp_output_dir / "out"

        with pytest.raises(PipelineStageError) as exc_info:
            make_orchestrator().run_full(bam, out_dir, nproc=1)

        assert exc_info.value.stage == "sort"
        assert not (out_dir / "pairs.txt").exists()
        assert not (out_dir / "stats.txt").exists()
        assert list(out_dir.iterdir()) == []
        assert list(scratch_dir.iterdir()) == []

    def test_malformed_graph(self, make_orchestrator, write_sam, write_gfa,
                             duplicate_scenario_records, temp_output_dir):
        bam = write_sam(duplicate_scenario_records)
        graph = write_gfa("S\ta\t*\n")

        with pytest.raises(PipelineStageError) as exc_info:
            make_orchestrator().run_full(bam, temp_output_dir / "out", graph_path=graph)
        assert exc_info.value.stage == "convert"

    def test_unusable_scratch_directory(self, write_sam, duplicate_scenario_records, temp_output_dir):
        blocker = temp_output_dir / "blocker"
        blocker.write_text("not a directory")
        config = merge_overrides(load_config(), {"runtime.scratch_dir": str(blocker / "scratch")})
        out_dir = temp_output_dir / "out"

        with pytest.raises(PipelineStageError) as exc_info:
            PipelineOrchestrator(config).run_full(write_sam(duplicate_scenario_records), out_dir)
        assert exc_info.value.stage == "setup"
        assert not (out_dir / "pairs.txt").exists()

    def test_stats_failure_publishes_nothing(self, make_orchestrator, write_sam,
                                             duplicate_scenario_records, temp_output_dir):
        out_dir = temp_output_dir / "out"
        (out_dir / "stats.txt").mkdir(parents=True)

        with pytest.raises(PipelineStageError) as exc_info:
            make_orchestrator().run_full(write_sam(duplicate_scenario_records), out_dir)

        assert exc_info.value.stage == "output"
        assert sorted(p.name for p in out_dir.iterdir()) == ["stats.txt"]
        assert (out_dir / "stats.txt").is_dir()

    def test_convert_stats_failure_publishes_nothing(self, make_orchestrator, write_sam,
                                                     duplicate_scenario_records, temp_output_dir):
        raw = temp_output_dir / "raw.pairs"
        blocked_stats = temp_output_dir / "raw.stats"
        blocked_stats.mkdir()

        with pytest.raises(PipelineStageError):
            make_orchestrator().run_convert(
                write_sam(duplicate_scenario_records), raw, stats_path=blocked_stats
            )

        assert not raw.exists()
        assert not list(temp_output_dir.glob(".*.partial"))

    def test_output_directory_is_a_file(self, make_orchestrator, write_sam,
                                        duplicate_scenario_records, temp_output_dir, scratch_dir):
        out_dir = temp_output_dir / "out"
        out_dir.write_text("occupied")

        with pytest.raises(PipelineStageError) as exc_info:
            make_orchestrator().run_full(write_sam(duplicate_scenario_records), out_dir)

        assert exc_info.value.stage == "output"
        assert list(scratch_dir.iterdir()) == []

    def test_missing_parameters(self, make_orchestrator, temp_output_dir):
        with pytest.raises(ConfigValidationError):
            make_orchestrator().run_full(None, temp_output_dir / "out")

    def test_invalid_nproc(self, make_orchestrator, write_sam, temp_output_dir):
        bam = write_sam([])
        with pytest.raises(ConfigValidationError):
            make_orchestrator().run_full(bam, temp_output_dir / "out", nproc=0)

    def test_invalid_config(self):
        config = merge_overrides(load_config(), {"sort.chunk_size": 0})
        with pytest.raises(ConfigValidationError):
            PipelineOrchestrator(config)


class TestStandaloneStages:
    """convert, sort and dedup run on their own."""

    def test_stages_match_full_run(self, make_orchestrator, write_sam, temp_output_dir):
        bam = write_sam([
            sam_line("r1", 65, "chr2", 900), sam_line("r1", 129, "chr2", 950),
            sam_line("r2", 65, "chr1", 100), sam_line("r2", 129, "chr2", 500),
            sam_line("r3", 65, "chr2", 900), sam_line("r3", 129, "chr2", 950),
            sam_line("r4", 65, "chr1", 100), sam_line("r4", 129, "chr2", 500),
        ])
        orchestrator = make_orchestrator()

        full_dir = temp_output_dir / "full"
        orchestrator.run_full(bam, full_dir, nproc=2)

        raw = temp_output_dir / "raw.pairs"
        sorted_pairs = temp_output_dir / "sorted.pairs"
        deduped = temp_output_dir / "dedup.pairs"
        orchestrator.run_convert(bam, raw)
        orchestrator.run_sort(raw, sorted_pairs, nproc=2)
        stats = orchestrator.run_dedup(sorted_pairs, deduped)

        assert data_lines(deduped) == data_lines(full_dir / "pairs.txt")
        assert stats.duplicates_removed == 2
        assert SORTED_LINE in read_header(deduped)
        assert read_stats(temp_output_dir / "dedup.pairs.stats")["pairs_kept"] == 2

    def test_convert_keeps_extraction_order(self, make_orchestrator, write_sam, temp_output_dir):
        bam = write_sam([
            sam_line("r1", 65, "chr2", 900), sam_line("r1", 129, "chr2", 950),
            sam_line("r2", 65, "chr1", 100), sam_line("r2", 129, "chr2", 500),
        ])
        raw = temp_output_dir / "raw.pairs"
        stats = make_orchestrator().run_convert(bam, raw, stats_path=temp_output_dir / "c.json")

        assert [line.split("\t")[0] for line in data_lines(raw)] == ["r1", "r2"]
        assert SORTED_LINE not in read_header(raw)
        assert stats.total_reads == 2
        assert (temp_output_dir / "c.json").exists()

    def test_convert_with_mapq(self, make_orchestrator, write_sam,
                               duplicate_scenario_records, temp_output_dir):
        bam = write_sam(duplicate_scenario_records)
        raw = temp_output_dir / "raw.pairs"
        make_orchestrator(**{"convert.report_mapq": True}).run_convert(bam, raw)

        assert data_lines(raw)[0].endswith("\tnormal\t60\t60")
        assert read_header(raw)[-1].endswith("mapq1 mapq2")

    def test_dedup_of_unsorted_file(self, make_orchestrator, write_sam, temp_output_dir):
        bam = write_sam([
            sam_line("r1", 65, "chr2", 900), sam_line("r1", 129, "chr2", 950),
            sam_line("r2", 65, "chr1", 100), sam_line("r2", 129, "chr2", 500),
            sam_line("r3", 65, "chr2", 900), sam_line("r3", 129, "chr2", 950),
        ])
        raw = temp_output_dir / "raw.pairs"
        deduped = temp_output_dir / "dedup.pairs"
        orchestrator = make_orchestrator()
        orchestrator.run_convert(bam, raw)
        stats = orchestrator.run_dedup(raw, deduped)

        assert [line.split("\t")[0] for line in data_lines(deduped)] == ["r1", "r2"]
        assert stats.duplicates_removed == 1

    def test_sorted_strategy_rejects_unsorted_file(self, make_orchestrator, temp_output_dir):
        raw = temp_output_dir / "raw.pairs"
        raw.write_text(
            "chr2_first\tchr2\t1\t+\tchr2\t5\t+\tnormal\n"
            "chr1_next\tchr1\t1\t+\tchr2\t5\t+\tnormal\n"
        )
        deduped = temp_output_dir / "dedup.pairs"

        with pytest.raises(PipelineStageError) as exc_info:
            make_orchestrator(**{"dedup.strategy": "sorted"}).run_dedup(raw, deduped)
        assert exc_info.value.stage == "dedup"
        assert not deduped.exists()

    def test_sort_carries_header_forward(self, make_orchestrator, temp_output_dir):
        raw = temp_output_dir / "raw.pairs"
        raw.write_text(
            "## pairs format v1.0\n"
            "#chromsize: chr1 100\n"
            "#columns: readID chr1 pos1 strand1 chr2 pos2 strand2 pair_type mapq1 mapq2\n"
            "b\tchr1\t50\t+\tchr1\t60\t+\tnormal\t1\t2\n"
            "a\tchr1\t10\t+\tchr1\t60\t+\tnormal\t3\t4\n"
        )
        out = temp_output_dir / "sorted.pairs"
        stats = make_orchestrator().run_sort(raw, out, nproc=1)

        header = read_header(out)
        assert "#chromsize: chr1 100" in header
        assert SORTED_LINE in header
        assert header[-1].endswith("mapq1 mapq2")
        assert [line.split("\t")[0] for line in data_lines(out)] == ["a", "b"]
        assert stats.sorted_records == 2
