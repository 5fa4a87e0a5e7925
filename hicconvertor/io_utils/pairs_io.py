#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
HiC-Convertor v0.1.0

Pairs I/O - read and write the tab-separated pairs text format.

Layout:
    ## pairs format v1.0
    #shape: upper triangle
    #chromsize: <name> <length>
    #sorted: chr1-pos1-chr2-pos2
    #columns: readID chr1 pos1 strand1 chr2 pos2 strand2 pair_type [mapq1 mapq2]
    <one PairRecord per line>

Author: HiC-Convertor Development Team
License: Dual License (Academic/Commercial) - See LICENSE_ACADEMIC.md and LICENSE_COMMERCIAL.md
"""

import logging
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Tuple, Union

from ..pairs_core.data_structures import (
    MAPQ_COLUMNS,
    PAIR_COLUMNS,
    PairRecord,
    PipelineStats,
)

logger = logging.getLogger(__name__)

FORMAT_LINE = "## pairs format v1.0"
SORTED_LINE = "#sorted: chr1-pos1-chr2-pos2"


# ============================================================================
#                           HEADER
# ============================================================================

def build_header(
    chrom_sizes: Optional[Iterable[Tuple[str, int]]] = None,
    sorted_by_key: bool = False,
    with_mapq: bool = False
) -> List[str]:
    """
    Build the header block.

    Args:
        chrom_sizes: (name, length) of every reference or graph segment
        sorted_by_key: Add the #sorted declaration
        with_mapq: Declare the trailing mapq1/mapq2 columns

    Returns:
        Header lines without newlines
    """
    lines = [FORMAT_LINE, "#shape: upper triangle"]
    for name, length in chrom_sizes or []:
        lines.append(f"#chromsize: {name} {length}")
    if sorted_by_key:
        lines.append(SORTED_LINE)

    columns = PAIR_COLUMNS + (MAPQ_COLUMNS if with_mapq else [])
    lines.append("#columns: " + " ".join(columns))
    return lines


def parse_chrom_sizes(header: List[str]) -> List[Tuple[str, int]]:
    """Extract #chromsize entries from a header block."""
    sizes = []
    for line in header:
        if line.startswith("#chromsize:"):
            fields = line.split()
            if len(fields) >= 3:
                sizes.append((fields[1], int(fields[2])))
    return sizes


def header_declares_mapq(header: List[str]) -> bool:
    for line in header:
        if line.startswith("#columns:"):
            return "mapq1" in line.split()
    return False


def header_is_sorted(header: List[str]) -> bool:
    return SORTED_LINE in header


def read_header(pairs_path: Union[str, Path]) -> List[str]:
    """Read the leading '#' lines of a pairs file."""
    header = []
    with open(pairs_path, 'r') as f:
        for line in f:
            if not line.startswith('#'):
                break
            header.append(line.rstrip('\n'))
    return header


# ============================================================================
#                           READ / WRITE
# ============================================================================

def iter_pairs(
    pairs_path: Union[str, Path],
    stats: Optional[PipelineStats] = None
) -> Iterator[PairRecord]:
    """
    Lazily read PairRecords from a pairs file.

    Header lines are skipped. Malformed data lines are logged, counted in
    stats.malformed_pairs and skipped.

    Args:
        pairs_path: Input pairs file
        stats: Optional statistics accumulator

    Yields:
        PairRecord per valid data line
    """
    with open(pairs_path, 'r') as f:
        for line_no, line in enumerate(f, 1):
            if line.startswith('#') or not line.strip():
                continue
            try:
                yield PairRecord.from_line(line)
            except ValueError as e:
                logger.warning(f"{pairs_path}:{line_no}: skipping malformed pair line ({e})")
                if stats is not None:
                    stats.malformed_pairs += 1


def write_pairs(
    records: Iterable[PairRecord],
    output_path: Union[str, Path],
    header: Optional[List[str]] = None
) -> int:
    """
    Write PairRecords to a pairs file.

    Args:
        records: Records to write, in output order
        output_path: Destination file
        header: Header lines (None = no header block)

    Returns:
        Number of records written
    """
    count = 0
    with open(output_path, 'w') as f:
        for line in header or []:
            f.write(line + "\n")
        for record in records:
            f.write(record.to_line() + "\n")
            count += 1
    return count


__all__ = [
    'FORMAT_LINE',
    'SORTED_LINE',
    'build_header',
    'parse_chrom_sizes',
    'header_declares_mapq',
    'header_is_sorted',
    'read_header',
    'iter_pairs',
    'write_pairs',
]
