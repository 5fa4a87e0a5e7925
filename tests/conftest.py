#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
HiC-Convertor v0.1.0

Pytest configuration and shared fixtures.

Author: HiC-Convertor Development Team
License: Dual License (Academic/Commercial) - See LICENSE_ACADEMIC.md and LICENSE_COMMERCIAL.md
"""

import pytest
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
import tempfile
import shutil


DEFAULT_REFERENCES = [("chr1", 10000), ("chr2", 10000)]


@dataclass
class FakeAlignment:
    """Stand-in for pysam.AlignedSegment with the attributes the extractor reads."""
    query_name: Optional[str]
    reference_name: Optional[str] = "chr1"
    reference_start: Optional[int] = 0
    reference_end: Optional[int] = None
    is_reverse: bool = False
    is_unmapped: bool = False
    is_secondary: bool = False
    is_supplementary: bool = False
    is_read1: bool = False
    is_read2: bool = False
    mapping_quality: int = 60


def sam_line(qname, flag, rname, pos, mapq=60, cigar="50M"):
    """One SAM record without sequence or qualities."""
    if flag & 4:
        rname, pos, mapq, cigar = "*", 0, 0, "*"
    return f"{qname}\t{flag}\t{rname}\t{pos}\t{mapq}\t{cigar}\t*\t0\t0\t*\t*"


@pytest.fixture
def temp_output_dir():
    """Create temporary output directory for tests."""
    temp_dir = tempfile.mkdtemp(prefix="hicconvertor_test_")
    yield Path(temp_dir)
    # Cleanup after test
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def scratch_dir(temp_output_dir):
    """Empty scratch directory that tests can inspect afterwards."""
    path = temp_output_dir / "scratch"
    path.mkdir()
    return path


@pytest.fixture
def write_sam(temp_output_dir):
    """Write SAM text with a header; returns the file path."""
    def _write(records, name="input.sam", sort_order="queryname", references=None,
               group_order=None):
        references = references or DEFAULT_REFERENCES
        hd = f"@HD\tVN:1.6\tSO:{sort_order}"
        if group_order:
            hd += f"\tGO:{group_order}"
        lines = [hd]
        lines += [f"@SQ\tSN:{ref}\tLN:{length}" for ref, length in references]
        lines += list(records)
        path = temp_output_dir / name
        path.write_text("\n".join(lines) + "\n")
        return path
    return _write


@pytest.fixture
def write_gfa(temp_output_dir):
    """Write GFA text; returns the file path."""
    def _write(text, name="graph.gfa"):
        path = temp_output_dir / name
        path.write_text(text)
        return path
    return _write


@pytest.fixture
def simple_gfa():
    """
    ctgA = s1(+, 100bp) then s2(-, 50bp) sharing 10bp; s3 stands alone.

    ctgA intervals: s1 [0, 90), s2 [90, 140).
    """
    return (
        "H\tVN:Z:1.0\n"
        "S\ts1\t*\tLN:i:100\n"
        "S\ts2\t*\tLN:i:50\n"
        "S\ts3\tACGTACGTAC\n"
        "L\ts1\t+\ts2\t-\t10M\n"
        "P\tctgA\ts1+,s2-\t10M\n"
    )


@pytest.fixture
def duplicate_scenario_records():
    """Two read pairs with identical contacts: one is a duplicate of the other."""
    return [
        sam_line("readA", 65, "chr1", 100),
        sam_line("readA", 129, "chr2", 500),
        sam_line("readB", 65, "chr1", 100),
        sam_line("readB", 129, "chr2", 500),
    ]
