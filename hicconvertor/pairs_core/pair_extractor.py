#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
HiC-Convertor v0.1.0

Pair Extractor - Convert Hi-C alignment records into contact pair records.

Alignment records are grouped by read name; per read, one alignment is
selected for each mate and the two mates become one canonical PairRecord.

Classification (first match wins):
- unmapped: a mate is missing, unmapped, or falls outside the graph
- multi: a mate has no unique primary alignment or is below min_mapq
- graph-mapped: both mates remapped through the assembly graph
- normal: both mates placed on the linear reference

Malformed records (no read name, mapped without a position) are counted
and skipped; they never abort a run.

Author: HiC-Convertor Development Team
License: Dual License (Academic/Commercial) - See LICENSE_ACADEMIC.md and LICENSE_COMMERCIAL.md
"""

import logging
from collections import OrderedDict
from pathlib import Path
from typing import Any, Iterable, Iterator, List, Optional, Tuple, Union

from .coordinate_mapper import CoordinateResolver, DirectCoordinateResolver
from .data_structures import (
    UNMAPPED_END,
    PairEnd,
    PairRecord,
    PairType,
    PipelineStats,
)
from ..io_utils.alignment_io import (
    is_grouped_by_name,
    name_sort_alignments,
    open_alignment_file,
)

logger = logging.getLogger(__name__)

GROUPING_MODES = ('auto', 'consecutive', 'buffered')


def _is_malformed(aln) -> bool:
    if not aln.query_name:
        return True
    if aln.is_unmapped:
        return False
    return aln.reference_name is None or aln.reference_start is None or aln.reference_start < 0


def _is_primary(aln) -> bool:
    return not aln.is_secondary and not aln.is_supplementary


def five_prime_end(aln) -> PairEnd:
    """1-based 5' position and strand of a mapped alignment."""
    if aln.is_reverse:
        end = aln.reference_end
        pos = end if end is not None else aln.reference_start + 1
        return (aln.reference_name, pos, '-')
    return (aln.reference_name, aln.reference_start + 1, '+')


class PairExtractor:
    """
    Extract PairRecords from alignment records.

    The coordinate resolver is fixed at construction; the hot loop never
    branches on whether a graph is in use.
    """

    def __init__(
        self,
        resolver: Optional[CoordinateResolver] = None,
        stats: Optional[PipelineStats] = None,
        min_mapq: int = 0,
        emit_unmapped: bool = True,
        report_mapq: bool = False
    ):
        """
        Initialize extractor.

        Args:
            resolver: Coordinate resolver (default: direct linear coordinates)
            stats: Statistics accumulator, updated as records are classified
            min_mapq: Mates below this mapping quality are flagged multi
            emit_unmapped: Emit unmapped pairs (False = count and drop them)
            report_mapq: Attach the mapping-quality pair to every record
        """
        self.resolver = resolver or DirectCoordinateResolver()
        self.stats = stats if stats is not None else PipelineStats()
        self.min_mapq = min_mapq
        self.emit_unmapped = emit_unmapped
        self.report_mapq = report_mapq
        self.logger = logging.getLogger(f"{__name__}.PairExtractor")

    # ========================================================================
    #                    GROUPING
    # ========================================================================

    def _valid_records(self, alignments: Iterable[Any]) -> Iterator[Any]:
        for aln in alignments:
            self.stats.total_records += 1
            if _is_malformed(aln):
                self.stats.malformed_records += 1
                self.logger.debug(f"Skipping malformed record #{self.stats.total_records}")
                continue
            yield aln

    def group_alignments(
        self,
        alignments: Iterable[Any],
        buffered: bool = False
    ) -> Iterator[Tuple[str, List[Any]]]:
        """
        Group alignment records by read name.

        Args:
            alignments: Alignment records (pysam.AlignedSegment or look-alikes)
            buffered: Hold every group in memory until the input ends, for
                inputs whose records of one read are not adjacent

        Yields:
            (read_name, records) per read
        """
        if buffered:
            groups: "OrderedDict[str, List[Any]]" = OrderedDict()
            for aln in self._valid_records(alignments):
                groups.setdefault(aln.query_name, []).append(aln)
            yield from groups.items()
            return

        current_id = None
        group: List[Any] = []
        for aln in self._valid_records(alignments):
            if aln.query_name != current_id:
                if group:
                    yield current_id, group
                current_id, group = aln.query_name, []
            group.append(aln)
        if group:
            yield current_id, group

    # ========================================================================
    #                    PAIR CONSTRUCTION
    # ========================================================================

    def _select_alignment(self, candidates: List[Any]) -> Tuple[Optional[Any], bool]:
        """Pick the representative alignment of one mate; returns (aln, is_multi)."""
        if not candidates:
            return None, False

        primaries = [a for a in candidates if _is_primary(a)]
        if len(primaries) == 1:
            return primaries[0], False
        if primaries:
            return primaries[0], True
        return candidates[0], True

    def _resolve_mate(self, candidates: List[Any]) -> Tuple[Optional[PairEnd], int, bool]:
        """Returns (end or None if unmapped, mapq, is_multi)."""
        aln, multi = self._select_alignment(candidates)
        if aln is None or aln.is_unmapped:
            return None, 0, False

        chrom, pos, strand = five_prime_end(aln)
        end = self.resolver.resolve(chrom, pos, strand)
        if end is None:
            self.stats.mapping_misses += 1
            self.logger.debug(f"No graph position for {chrom}:{pos} ({aln.query_name})")
            return None, aln.mapping_quality, False

        if aln.mapping_quality < self.min_mapq:
            multi = True
        return end, aln.mapping_quality, multi

    def build_pair(self, read_id: str, group: List[Any]) -> PairRecord:
        """
        Build the PairRecord of one read.

        Args:
            read_id: Read name
            group: All alignment records of the read

        Returns:
            Canonical PairRecord (possibly tagged unmapped or multi)
        """
        slots: Tuple[List[Any], List[Any]] = ([], [])
        for aln in group:
            if aln.is_read1:
                slots[0].append(aln)
            elif aln.is_read2:
                slots[1].append(aln)
            else:
                slots[0 if not slots[0] else 1].append(aln)

        end1, mapq1, multi1 = self._resolve_mate(slots[0])
        end2, mapq2, multi2 = self._resolve_mate(slots[1])

        if end1 is None or end2 is None:
            pair_type = PairType.UNMAPPED
            end1 = end1 or UNMAPPED_END
            end2 = end2 or UNMAPPED_END
        elif multi1 or multi2:
            pair_type = PairType.MULTI
        elif self.resolver.is_graph:
            pair_type = PairType.GRAPH_MAPPED
        else:
            pair_type = PairType.NORMAL

        mapq = (mapq1, mapq2) if self.report_mapq else None
        return PairRecord.from_ends(read_id, end1, end2, pair_type, mapq=mapq)

    def iter_pairs(self, alignments: Iterable[Any], buffered: bool = False) -> Iterator[PairRecord]:
        """
        Lazily convert alignment records into PairRecords.

        Args:
            alignments: Alignment records
            buffered: See group_alignments()

        Yields:
            One PairRecord per read (unmapped pairs only if emit_unmapped)
        """
        for read_id, group in self.group_alignments(alignments, buffered=buffered):
            self.stats.total_reads += 1
            pair = self.build_pair(read_id, group)

            if pair.pair_type is PairType.UNMAPPED and not self.emit_unmapped:
                self.stats.unmapped_skipped += 1
                continue

            self.stats.count_pair(pair.pair_type)
            yield pair

    def iter_pairs_from_file(
        self,
        alignment_path: Union[str, Path],
        grouping: str = 'auto',
        scratch_dir: Optional[Union[str, Path]] = None
    ) -> Iterator[PairRecord]:
        """
        Stream PairRecords from an alignment file.

        Args:
            alignment_path: BAM/SAM/CRAM input
            grouping: 'auto' name-sorts the input into scratch_dir first
                unless its header declares SO:queryname or GO:query;
                'consecutive' always assumes records of one read are
                adjacent; 'buffered' groups the whole file in memory
            scratch_dir: Where a name-sorted copy may be written

        Yields:
            PairRecords in read order
        """
        if grouping not in GROUPING_MODES:
            raise ValueError(f"Unknown grouping mode: {grouping}")

        source = Path(alignment_path)
        if grouping == 'auto' and not is_grouped_by_name(source):
            if scratch_dir is None:
                raise ValueError("Input not grouped by read name requires a scratch directory")
            source = name_sort_alignments(source, scratch_dir)

        self.logger.info(f"Extracting pairs from {source} (grouping={grouping})")
        with open_alignment_file(source) as samfile:
            yield from self.iter_pairs(
                samfile.fetch(until_eof=True),
                buffered=grouping == 'buffered',
            )

        self.logger.info(
            f"Extraction complete: {self.stats.total_reads:,} reads, "
            f"{self.stats.emitted_pairs:,} pairs emitted, "
            f"{self.stats.malformed_records:,} malformed records"
        )


__all__ = [
    'GROUPING_MODES',
    'five_prime_end',
    'PairExtractor',
]
