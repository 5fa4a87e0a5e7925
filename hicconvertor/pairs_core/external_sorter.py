#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
HiC-Convertor v0.1.0

External Sorter - bounded-memory, multi-process merge sort of pair records.

1. The input stream is cut into chunks of ``chunk_size`` records. Chunk
   boundaries depend only on input order, never on the worker count.
2. Each chunk is sorted in memory by one worker (up to ``nproc`` in
   parallel) and spilled to its own file in a private scratch directory.
3. Chunk files are k-way merged in chunk order. Python's list sort and
   heapq.merge are both stable, so records with equal keys keep their input
   order and the output is identical for every ``nproc``.

Chunk files are deleted when the merge finishes, fails, or is abandoned.

Author: HiC-Convertor Development Team
License: Dual License (Academic/Commercial) - See LICENSE_ACADEMIC.md and LICENSE_COMMERCIAL.md
"""

import heapq
import logging
import shutil
import tempfile
from concurrent.futures import FIRST_COMPLETED, ProcessPoolExecutor, wait
from contextlib import ExitStack, contextmanager
from pathlib import Path
from typing import IO, Iterable, Iterator, List, Optional, Union

from .data_structures import PairRecord, PipelineStats

logger = logging.getLogger(__name__)


class ExternalSortError(RuntimeError):
    """Raised when a sort worker or a chunk file fails."""
    pass


# ============================================================================
#                    WORKER FUNCTIONS (module level for pickling)
# ============================================================================

def _sort_and_spill(records: List[PairRecord], chunk_path: str) -> int:
    """Sort one chunk in memory and write it to chunk_path."""
    records.sort(key=PairRecord.sort_key)
    with open(chunk_path, 'w') as f:
        for record in records:
            f.write(record.to_line() + "\n")
    return len(records)


def _read_chunk(handle: IO[str]) -> Iterator[PairRecord]:
    for line in handle:
        yield PairRecord.from_line(line)


def _merge_files(chunk_paths: List[Path], output_path: Path) -> int:
    """Merge sorted chunk files, in the given order, into one sorted file."""
    count = 0
    with ExitStack() as stack:
        streams = [_read_chunk(stack.enter_context(open(p, 'r'))) for p in chunk_paths]
        with open(output_path, 'w') as out:
            for record in heapq.merge(*streams, key=PairRecord.sort_key):
                out.write(record.to_line() + "\n")
                count += 1
    return count


# ============================================================================
#                         EXTERNAL SORTER
# ============================================================================

class ExternalSorter:
    """
    Sort a pair stream by (chrom1, pos1, chrom2, pos2) using scratch storage.
    """

    def __init__(
        self,
        nproc: int = 1,
        chunk_size: int = 1_000_000,
        max_merge_fanin: int = 64,
        stats: Optional[PipelineStats] = None
    ):
        """
        Initialize sorter.

        Args:
            nproc: Maximum number of chunks sorted in parallel
            chunk_size: Records per in-memory chunk
            max_merge_fanin: Maximum chunk files open in one merge pass
            stats: Statistics accumulator
        """
        if nproc < 1:
            raise ValueError("nproc must be >= 1")
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        if max_merge_fanin < 2:
            raise ValueError("max_merge_fanin must be >= 2")

        self.nproc = nproc
        self.chunk_size = chunk_size
        self.max_merge_fanin = max_merge_fanin
        self.stats = stats if stats is not None else PipelineStats()
        self.logger = logging.getLogger(f"{__name__}.ExternalSorter")

    # ========================================================================
    #                    CHUNKING
    # ========================================================================

    def _batches(self, records: Iterable[PairRecord]) -> Iterator[List[PairRecord]]:
        batch = []
        for record in records:
            batch.append(record)
            if len(batch) >= self.chunk_size:
                yield batch
                batch = []
        if batch:
            yield batch

    def _spill_chunks(self, records: Iterable[PairRecord], chunk_dir: Path) -> List[Path]:
        """
        Sort and spill every chunk; returns chunk paths in input order.

        Errors raised while iterating ``records`` propagate unchanged; worker
        failures are raised as ExternalSortError.
        """
        chunk_paths: List[Path] = []

        if self.nproc == 1:
            for i, batch in enumerate(self._batches(records)):
                path = chunk_dir / f"chunk_{i:06d}.pairs"
                chunk_paths.append(path)
                try:
                    _sort_and_spill(batch, str(path))
                except Exception as e:
                    raise ExternalSortError(f"Sorting chunk {i} failed: {e}") from e
            return chunk_paths

        with ProcessPoolExecutor(max_workers=self.nproc) as executor:
            pending = set()
            try:
                for i, batch in enumerate(self._batches(records)):
                    path = chunk_dir / f"chunk_{i:06d}.pairs"
                    chunk_paths.append(path)
                    pending.add(executor.submit(_sort_and_spill, batch, str(path)))

                    # Bound the number of chunks held in memory
                    if len(pending) >= self.nproc:
                        done, pending = wait(pending, return_when=FIRST_COMPLETED)
                        self._check_workers(done)

                done, pending = wait(pending)
                self._check_workers(done)
            except BaseException:
                for future in pending:
                    future.cancel()
                raise

        return chunk_paths

    @staticmethod
    def _check_workers(done):
        for future in done:
            try:
                future.result()
            except Exception as e:
                raise ExternalSortError(f"Sort worker failed: {e}") from e

    def _reduce_fanin(self, chunk_paths: List[Path], chunk_dir: Path) -> List[Path]:
        """Pre-merge consecutive chunk groups until one pass can merge them all."""
        level = 0
        while len(chunk_paths) > self.max_merge_fanin:
            level += 1
            merged = []
            for j in range(0, len(chunk_paths), self.max_merge_fanin):
                group = chunk_paths[j:j + self.max_merge_fanin]
                out_path = chunk_dir / f"merge{level}_{j // self.max_merge_fanin:06d}.pairs"
                try:
                    _merge_files(group, out_path)
                except ValueError as e:
                    raise ExternalSortError(f"Corrupt chunk during merge pass {level}: {e}") from e
                for path in group:
                    path.unlink()
                merged.append(out_path)

            self.logger.debug(f"Merge pass {level}: {len(chunk_paths)} -> {len(merged)} chunks")
            chunk_paths = merged
        return chunk_paths

    # ========================================================================
    #                    PUBLIC API
    # ========================================================================

    @contextmanager
    def sorted_stream(
        self,
        records: Iterable[PairRecord],
        scratch_dir: Union[str, Path]
    ) -> Iterator[Iterator[PairRecord]]:
        """
        Sort records and expose the merged result as a lazy stream.

        Chunk files live in a private directory under scratch_dir that is
        removed when the context exits, whatever the outcome.

        Args:
            records: Input PairRecords (any size)
            scratch_dir: Existing, writable scratch directory

        Yields:
            Iterator over the globally sorted records
        """
        scratch_dir = Path(scratch_dir)
        scratch_dir.mkdir(parents=True, exist_ok=True)
        chunk_dir = Path(tempfile.mkdtemp(prefix="sort_", dir=scratch_dir))

        try:
            chunk_paths = self._spill_chunks(records, chunk_dir)
            self.logger.info(
                f"Spilled {len(chunk_paths)} sorted chunks "
                f"(chunk_size={self.chunk_size:,}, nproc={self.nproc})"
            )
            chunk_paths = self._reduce_fanin(chunk_paths, chunk_dir)

            with ExitStack() as stack:
                streams = [
                    _read_chunk(stack.enter_context(open(p, 'r'))) for p in chunk_paths
                ]
                yield self._merged(streams)
        finally:
            shutil.rmtree(chunk_dir, ignore_errors=True)

    def _merged(self, streams: List[Iterator[PairRecord]]) -> Iterator[PairRecord]:
        try:
            for record in heapq.merge(*streams, key=PairRecord.sort_key):
                self.stats.sorted_records += 1
                yield record
        except ValueError as e:
            raise ExternalSortError(f"Corrupt chunk during final merge: {e}") from e

    def sort(
        self,
        records: Iterable[PairRecord],
        output_path: Union[str, Path],
        scratch_dir: Union[str, Path],
        header: Optional[List[str]] = None
    ) -> int:
        """
        Sort records into a pairs file.

        Args:
            records: Input PairRecords
            output_path: Destination pairs file
            scratch_dir: Scratch directory for chunk files
            header: Header lines for the output

        Returns:
            Number of records written
        """
        from ..io_utils.pairs_io import write_pairs

        with self.sorted_stream(records, scratch_dir) as stream:
            count = write_pairs(stream, output_path, header=header)
        self.logger.info(f"Sorted {count:,} records into {output_path}")
        return count


__all__ = [
    'ExternalSortError',
    'ExternalSorter',
]
