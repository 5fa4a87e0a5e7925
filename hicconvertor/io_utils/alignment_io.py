#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
HiC-Convertor v0.1.0

Alignment I/O - open BAM/SAM/CRAM inputs and bring them into read-name
grouped order when needed.

Author: HiC-Convertor Development Team
License: Dual License (Academic/Commercial) - See LICENSE_ACADEMIC.md and LICENSE_COMMERCIAL.md
"""

import logging
from pathlib import Path
from typing import List, Tuple, Union

import pysam

logger = logging.getLogger(__name__)


def _open_mode(path: Path) -> str:
    suffix = path.suffix.lower()
    if suffix == ".bam":
        return "rb"
    if suffix == ".cram":
        return "rc"
    return "r"


def open_alignment_file(path: Union[str, Path]) -> pysam.AlignmentFile:
    """
    Open an alignment container for sequential reading.

    Raises:
        FileNotFoundError: If the file does not exist.
        OSError / ValueError: If pysam cannot parse it.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Alignment file not found: {path}")
    return pysam.AlignmentFile(str(path), _open_mode(path), check_sq=False)


def is_grouped_by_name(path: Union[str, Path]) -> bool:
    """
    True when the @HD line promises that records of one read are adjacent.

    Only SO:queryname and GO:query make that promise; unsorted, unknown,
    coordinate-sorted and header-less inputs do not.
    """
    with open_alignment_file(path) as samfile:
        hd = samfile.header.to_dict().get("HD", {})
    return hd.get("SO") == "queryname" or hd.get("GO") == "query"


def get_reference_sizes(path: Union[str, Path]) -> List[Tuple[str, int]]:
    """Reference names and lengths from the alignment header."""
    with open_alignment_file(path) as samfile:
        return list(zip(samfile.references, samfile.lengths))


def name_sort_alignments(
    path: Union[str, Path],
    scratch_dir: Union[str, Path],
    threads: int = 1
) -> Path:
    """
    Sort an alignment file by read name into scratch storage.

    Uses samtools sort -n through pysam so records of one read become
    adjacent.

    Args:
        path: Input alignment file
        scratch_dir: Directory for the sorted copy and samtools temporaries
        threads: samtools worker threads

    Returns:
        Path to the name-sorted BAM
    """
    scratch_dir = Path(scratch_dir)
    scratch_dir.mkdir(parents=True, exist_ok=True)
    sorted_path = scratch_dir / "name_sorted.bam"

    logger.info(f"Name-sorting {path} into {sorted_path}")
    pysam.sort(
        "-n",
        "-@", str(max(1, threads)),
        "-T", str(scratch_dir / "samtools_tmp"),
        "-o", str(sorted_path),
        str(path),
    )
    return sorted_path


__all__ = [
    'open_alignment_file',
    'is_grouped_by_name',
    'get_reference_sizes',
    'name_sort_alignments',
]
