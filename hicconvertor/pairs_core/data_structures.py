#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
HiC-Convertor v0.1.0

Core data structures shared by the conversion, deduplication and sorting stages.

Author: HiC-Convertor Development Team
License: Dual License (Academic/Commercial) - See LICENSE_ACADEMIC.md and LICENSE_COMMERCIAL.md
"""

import json
import logging
from dataclasses import dataclass, asdict
from enum import Enum
from pathlib import Path
from typing import Dict, Optional, Tuple, Union

logger = logging.getLogger(__name__)


# Pairtools convention for an end without a genomic position
UNMAPPED_CHROM = "!"
UNMAPPED_POS = 0
UNMAPPED_STRAND = "-"

PAIR_COLUMNS = [
    "readID", "chr1", "pos1", "strand1", "chr2", "pos2", "strand2", "pair_type",
]
MAPQ_COLUMNS = ["mapq1", "mapq2"]


# ============================================================================
#                         PAIR RECORDS
# ============================================================================

class PairType(Enum):
    """Classification tag written in the pair_type column."""
    UNMAPPED = "unmapped"
    MULTI = "multi"
    NORMAL = "normal"
    GRAPH_MAPPED = "graph-mapped"


# (chrom, pos, strand)
PairEnd = Tuple[str, int, str]

UNMAPPED_END: PairEnd = (UNMAPPED_CHROM, UNMAPPED_POS, UNMAPPED_STRAND)


@dataclass
class PairRecord:
    """
    One Hi-C contact observation.

    The two ends are always stored in canonical order, so two records built
    from the same contact in opposite orientation compare equal.

    Attributes:
        read_id: Read identifier (query name)
        chrom1, pos1, strand1: Lower end of the contact
        chrom2, pos2, strand2: Upper end of the contact
        pair_type: Classification tag
        mapq1, mapq2: Optional mapping qualities of the two ends
    """
    read_id: str
    chrom1: str
    pos1: int
    strand1: str
    chrom2: str
    pos2: int
    strand2: str
    pair_type: PairType = PairType.NORMAL
    mapq1: Optional[int] = None
    mapq2: Optional[int] = None

    @classmethod
    def from_ends(
        cls,
        read_id: str,
        end1: PairEnd,
        end2: PairEnd,
        pair_type: PairType,
        mapq: Optional[Tuple[int, int]] = None
    ) -> "PairRecord":
        """
        Build a record with its ends in canonical order.

        Args:
            read_id: Read identifier
            end1: (chrom, pos, strand) of the first mate
            end2: (chrom, pos, strand) of the second mate
            pair_type: Classification tag
            mapq: Optional (mapq of end1, mapq of end2)

        Returns:
            PairRecord with (chrom1, pos1, strand1) <= (chrom2, pos2, strand2)
        """
        mapq1, mapq2 = mapq if mapq is not None else (None, None)
        if end2 < end1:
            end1, end2 = end2, end1
            mapq1, mapq2 = mapq2, mapq1
        return cls(
            read_id=read_id,
            chrom1=end1[0], pos1=end1[1], strand1=end1[2],
            chrom2=end2[0], pos2=end2[1], strand2=end2[2],
            pair_type=pair_type,
            mapq1=mapq1,
            mapq2=mapq2,
        )

    def sort_key(self) -> Tuple[str, int, str, int]:
        """Global sort key (chrom1, pos1, chrom2, pos2)."""
        return (self.chrom1, self.pos1, self.chrom2, self.pos2)

    def fingerprint(self) -> Tuple[str, int, str, str, int, str]:
        """Exact-match duplicate key over both canonical ends."""
        return (self.chrom1, self.pos1, self.strand1,
                self.chrom2, self.pos2, self.strand2)

    @property
    def has_mapq(self) -> bool:
        return self.mapq1 is not None and self.mapq2 is not None

    def to_line(self) -> str:
        """Serialize as one tab-separated pairs line (without newline)."""
        fields = [
            self.read_id,
            self.chrom1, str(self.pos1), self.strand1,
            self.chrom2, str(self.pos2), self.strand2,
            self.pair_type.value,
        ]
        if self.has_mapq:
            fields.extend([str(self.mapq1), str(self.mapq2)])
        return "\t".join(fields)

    @classmethod
    def from_line(cls, line: str) -> "PairRecord":
        """
        Parse one pairs data line.

        Raises:
            ValueError: On too few columns, non-integer positions or an
                unknown pair type.
        """
        parts = line.rstrip("\n").split("\t")
        if len(parts) < 8:
            raise ValueError(f"expected at least 8 columns, got {len(parts)}")

        mapq1 = mapq2 = None
        if len(parts) >= 10:
            mapq1, mapq2 = int(parts[8]), int(parts[9])

        return cls(
            read_id=parts[0],
            chrom1=parts[1], pos1=int(parts[2]), strand1=parts[3],
            chrom2=parts[4], pos2=int(parts[5]), strand2=parts[6],
            pair_type=PairType(parts[7]),
            mapq1=mapq1,
            mapq2=mapq2,
        )


# ============================================================================
#                         GRAPH COORDINATES
# ============================================================================

@dataclass(frozen=True)
class GraphCoordinate:
    """
    Position on an assembly graph segment.

    Attributes:
        segment_id: GFA segment name
        offset: 0-based offset within the segment
        reverse: True when the contig traverses the segment in reverse, in
            which case the read strand flips relative to the segment
    """
    segment_id: str
    offset: int
    reverse: bool = False


# ============================================================================
#                         PIPELINE STATISTICS
# ============================================================================

_TYPE_COUNTERS = {
    PairType.NORMAL: "pairs_normal",
    PairType.GRAPH_MAPPED: "pairs_graph_mapped",
    PairType.UNMAPPED: "pairs_unmapped",
    PairType.MULTI: "pairs_multi",
}


@dataclass
class PipelineStats:
    """
    Counters accumulated over one pipeline run.

    Passed by reference to every stage and written once at the end.
    """
    # Conversion
    total_records: int = 0
    total_reads: int = 0
    malformed_records: int = 0
    mapping_misses: int = 0
    pairs_normal: int = 0
    pairs_graph_mapped: int = 0
    pairs_unmapped: int = 0
    pairs_multi: int = 0
    unmapped_skipped: int = 0

    # Pairs-file input
    malformed_pairs: int = 0

    # Sorting
    sorted_records: int = 0

    # Deduplication
    dedup_input: int = 0
    duplicates_removed: int = 0
    pairs_kept: int = 0

    def count_pair(self, pair_type: PairType):
        """Increment the per-type counter of an emitted pair."""
        attr = _TYPE_COUNTERS[pair_type]
        setattr(self, attr, getattr(self, attr) + 1)

    @property
    def emitted_pairs(self) -> int:
        return (self.pairs_normal + self.pairs_graph_mapped +
                self.pairs_unmapped + self.pairs_multi)

    def to_dict(self) -> Dict[str, int]:
        data = asdict(self)
        data["emitted_pairs"] = self.emitted_pairs
        return data

    def summary(self) -> str:
        """Return human-readable summary."""
        return (
            f"Pipeline Summary:\n"
            f"  Alignment records: {self.total_records:,} "
            f"({self.total_reads:,} reads, {self.malformed_records:,} malformed)\n"
            f"  Pairs emitted: {self.emitted_pairs:,} "
            f"(normal={self.pairs_normal:,}, graph-mapped={self.pairs_graph_mapped:,}, "
            f"unmapped={self.pairs_unmapped:,}, multi={self.pairs_multi:,})\n"
            f"  Unmapped skipped: {self.unmapped_skipped:,}, "
            f"graph mapping misses: {self.mapping_misses:,}\n"
            f"  Sorted records: {self.sorted_records:,}\n"
            f"  Duplicates removed: {self.duplicates_removed:,}, "
            f"kept: {self.pairs_kept:,}"
        )

    def save(self, output_path: Union[str, Path]):
        """
        Write the statistics report.

        JSON when the path ends in .json, otherwise one
        ``key<TAB>value`` line per counter.
        """
        output_path = Path(output_path)
        data = self.to_dict()

        with open(output_path, 'w') as f:
            if output_path.suffix == ".json":
                json.dump(data, f, indent=2)
            else:
                for key, value in data.items():
                    f.write(f"{key}\t{value}\n")

        logger.debug(f"Statistics written to {output_path}")


__all__ = [
    'UNMAPPED_CHROM',
    'UNMAPPED_POS',
    'UNMAPPED_STRAND',
    'UNMAPPED_END',
    'PAIR_COLUMNS',
    'MAPQ_COLUMNS',
    'PairType',
    'PairEnd',
    'PairRecord',
    'GraphCoordinate',
    'PipelineStats',
]
