#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
HiC-Convertor v0.1.0

GFA Reader - Load assembly graphs used for coordinate remapping.

Reads GFA v1 S-lines (segments), L-lines (adjacency) and P-lines (contigs
expressed as oriented segment paths). Only what the coordinate mapper needs
is kept; sequences are discarded once their length is known.

Author: HiC-Convertor Development Team
License: Dual License (Academic/Commercial) - See LICENSE_ACADEMIC.md and LICENSE_COMMERCIAL.md
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

_CIGAR_OP = re.compile(r'(\d+)([MIDNSHPX=])')


class GraphFormatError(ValueError):
    """Raised when a graph description cannot be parsed."""
    pass


# ============================================================================
#                           GRAPH STRUCTURES
# ============================================================================

@dataclass
class PathStep:
    """
    One oriented segment of a contig path.

    Attributes:
        segment_id: Segment name
        reverse: True for a '-' orientation
        overlap: Bases shared with the previous step (0 for the first step)
    """
    segment_id: str
    reverse: bool = False
    overlap: int = 0


@dataclass
class AssemblyGraph:
    """
    Minimal assembly graph: segment lengths and contig paths.

    L-lines are only checked against the segment table; coordinate mapping
    follows P-line paths, never adjacency.

    Attributes:
        segments: segment name -> length
        paths: contig name -> ordered path steps
        link_count: Number of validated L-lines
    """
    segments: Dict[str, int] = field(default_factory=dict)
    paths: Dict[str, List[PathStep]] = field(default_factory=dict)
    link_count: int = 0

    def chrom_sizes(self) -> List[Tuple[str, int]]:
        """Segment names and lengths, in file order."""
        return list(self.segments.items())


# ============================================================================
#                           GFA PARSING
# ============================================================================

def _overlap_length(cigar: str, line_no: int) -> int:
    """Reference-consuming length of an overlap CIGAR ('*' means 0)."""
    if cigar in ('*', '', '0M'):
        return 0

    ops = _CIGAR_OP.findall(cigar)
    if not ops or ''.join(n + op for n, op in ops) != cigar:
        raise GraphFormatError(f"GFA line {line_no}: invalid overlap CIGAR '{cigar}'")

    return sum(int(n) for n, op in ops if op in 'MD=XN')


def _parse_segment(parts: List[str], line_no: int) -> Tuple[str, int]:
    # S <name> <sequence> [LN:i:<length>] ...
    if len(parts) < 3:
        raise GraphFormatError(f"GFA line {line_no}: malformed S-line")

    name = parts[1]
    length: Optional[int] = None
    for tag in parts[3:]:
        if tag.startswith('LN:i:'):
            try:
                length = int(tag[5:])
            except ValueError:
                raise GraphFormatError(
                    f"GFA line {line_no}: non-integer LN tag '{tag}'"
                ) from None
            break

    if length is None:
        if parts[2] == '*':
            raise GraphFormatError(
                f"GFA line {line_no}: segment '{name}' has no sequence and no LN tag"
            )
        length = len(parts[2])

    if length <= 0:
        raise GraphFormatError(f"GFA line {line_no}: segment '{name}' has length {length}")

    return name, length


def _parse_path(parts: List[str], line_no: int) -> Tuple[str, List[PathStep]]:
    # P <name> <seg1+,seg2-,...> <overlaps>
    if len(parts) < 3:
        raise GraphFormatError(f"GFA line {line_no}: malformed P-line")

    name = parts[1]
    steps = []
    for token in parts[2].split(','):
        if len(token) < 2 or token[-1] not in '+-':
            raise GraphFormatError(f"GFA line {line_no}: bad path step '{token}'")
        steps.append(PathStep(segment_id=token[:-1], reverse=token[-1] == '-'))

    overlaps_field = parts[3] if len(parts) > 3 else '*'
    if overlaps_field != '*':
        overlaps = overlaps_field.split(',')
        if len(overlaps) != len(steps) - 1:
            raise GraphFormatError(
                f"GFA line {line_no}: path '{name}' has {len(steps)} steps "
                f"but {len(overlaps)} overlaps"
            )
        for step, cigar in zip(steps[1:], overlaps):
            step.overlap = _overlap_length(cigar, line_no)

    return name, steps


def load_graph_from_gfa(gfa_path: Union[str, Path]) -> AssemblyGraph:
    """
    Load an assembly graph from a GFA v1 file.

    Args:
        gfa_path: Path to a GFA v1 file

    Returns:
        AssemblyGraph with segment lengths and contig paths.

    Raises:
        FileNotFoundError: If gfa_path does not exist.
        GraphFormatError: On malformed lines or paths through unknown segments.
    """
    gfa_path = Path(gfa_path)
    if not gfa_path.exists():
        raise FileNotFoundError(f"GFA file not found: {gfa_path}")

    graph = AssemblyGraph()
    pending_links = []

    logger.info(f"Loading graph from GFA: {gfa_path}")

    with open(gfa_path, 'r') as f:
        for line_no, raw_line in enumerate(f, 1):
            line = raw_line.rstrip('\n')
            if not line or line.startswith('#'):
                continue

            parts = line.split('\t')
            record_type = parts[0]

            if record_type == 'S':
                name, length = _parse_segment(parts, line_no)
                if name in graph.segments:
                    raise GraphFormatError(f"GFA line {line_no}: duplicate segment '{name}'")
                graph.segments[name] = length

            elif record_type == 'L':
                # L <from> <from_orient> <to> <to_orient> <overlap>
                if len(parts) < 5:
                    raise GraphFormatError(f"GFA line {line_no}: malformed L-line")
                pending_links.append((parts[1], parts[3], line_no))

            elif record_type == 'P':
                name, steps = _parse_path(parts, line_no)
                if name in graph.paths:
                    raise GraphFormatError(f"GFA line {line_no}: duplicate path '{name}'")
                graph.paths[name] = steps

            # H, C, W lines carry nothing the mapper uses

    # Segments may be declared after the lines referencing them
    for from_id, to_id, line_no in pending_links:
        for seg in (from_id, to_id):
            if seg not in graph.segments:
                raise GraphFormatError(f"GFA line {line_no}: link to unknown segment '{seg}'")
    graph.link_count = len(pending_links)

    for name, steps in graph.paths.items():
        for step in steps:
            if step.segment_id not in graph.segments:
                raise GraphFormatError(
                    f"Path '{name}' references unknown segment '{step.segment_id}'"
                )
        # The overlap is cut from the tail of the previous step
        for prev, step in zip(steps, steps[1:]):
            if step.overlap >= graph.segments[prev.segment_id]:
                raise GraphFormatError(
                    f"Path '{name}': overlap {step.overlap} swallows segment "
                    f"'{prev.segment_id}'"
                )

    logger.info(
        f"Loaded graph: {len(graph.segments)} segments, "
        f"{graph.link_count} links, {len(graph.paths)} paths"
    )
    return graph


__all__ = [
    'GraphFormatError',
    'PathStep',
    'AssemblyGraph',
    'load_graph_from_gfa',
]
