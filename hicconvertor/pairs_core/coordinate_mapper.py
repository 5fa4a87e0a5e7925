#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
HiC-Convertor v0.1.0

Coordinate Mapper - Translate linear contig positions into assembly-graph
segment positions.

Each contig of the graph is laid out as a sequence of non-overlapping,
start-sorted intervals (one per path step). Lookups binary-search the
interval starts, so a query costs O(log n) in the number of steps of the
contig.

Two coordinate resolvers are selected once at pipeline setup and injected
into the pair extractor:
- DirectCoordinateResolver: positions pass through unchanged
- GraphCoordinateResolver: positions are remapped through the graph

Author: HiC-Convertor Development Team
License: Dual License (Academic/Commercial) - See LICENSE_ACADEMIC.md and LICENSE_COMMERCIAL.md
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np

from .data_structures import GraphCoordinate, PairEnd
from ..io_utils.gfa_reader import AssemblyGraph, PathStep

logger = logging.getLogger(__name__)


class MappingNotFoundError(KeyError):
    """Raised when a contig position lies outside every known interval."""
    pass


# ============================================================================
#                         INTERVAL INDEX
# ============================================================================

@dataclass
class ContigIntervals:
    """
    Sorted, non-overlapping intervals of one contig.

    Attributes:
        starts: Interval starts (0-based, inclusive), ascending
        ends: Interval ends (exclusive)
        segment_ids: Segment covering each interval
        reverse: Orientation of each segment in the contig
        seg_starts: Contig position where each segment's first base lies
        seg_lengths: Full length of each segment
    """
    starts: np.ndarray
    ends: np.ndarray
    segment_ids: List[str]
    reverse: List[bool]
    seg_starts: np.ndarray
    seg_lengths: np.ndarray


def _build_contig_intervals(steps: List[PathStep], segments: Dict[str, int]) -> ContigIntervals:
    """Lay out path steps end to end; overlaps are cut from the earlier step."""
    n = len(steps)
    seg_starts = np.zeros(n, dtype=np.int64)
    seg_lengths = np.array([segments[s.segment_id] for s in steps], dtype=np.int64)

    for i in range(1, n):
        seg_starts[i] = seg_starts[i - 1] + seg_lengths[i - 1] - steps[i].overlap

    ends = np.empty(n, dtype=np.int64)
    ends[:-1] = seg_starts[1:]
    ends[-1] = seg_starts[-1] + seg_lengths[-1]

    return ContigIntervals(
        starts=seg_starts.copy(),
        ends=ends,
        segment_ids=[s.segment_id for s in steps],
        reverse=[s.reverse for s in steps],
        seg_starts=seg_starts,
        seg_lengths=seg_lengths,
    )


class CoordinateMapper:
    """
    Map (contig, offset) to (segment_id, offset) through an assembly graph.

    Built once from an AssemblyGraph; immutable afterwards, so the same
    query always returns the same answer.
    """

    def __init__(self, graph: AssemblyGraph):
        """
        Build the per-contig interval index.

        Args:
            graph: Graph loaded by load_graph_from_gfa()
        """
        self.logger = logging.getLogger(f"{__name__}.CoordinateMapper")
        self._index: Dict[str, ContigIntervals] = {}

        covered = set()
        for contig, steps in graph.paths.items():
            if not steps:
                continue
            self._index[contig] = _build_contig_intervals(steps, graph.segments)
            covered.update(s.segment_id for s in steps)

        # Segments outside every path stand for themselves
        identity = 0
        for seg_id, length in graph.segments.items():
            if seg_id in covered or seg_id in self._index:
                continue
            self._index[seg_id] = _build_contig_intervals(
                [PathStep(segment_id=seg_id)], graph.segments
            )
            identity += 1

        self.logger.info(
            f"Indexed {len(self._index)} contigs "
            f"({len(graph.paths)} paths, {identity} standalone segments)"
        )

    @property
    def contigs(self) -> List[str]:
        return list(self._index)

    def map(self, contig: str, offset: int) -> GraphCoordinate:
        """
        Map a 0-based contig offset to its graph coordinate.

        Raises:
            MappingNotFoundError: If the contig is unknown or the offset lies
                outside all of its intervals.
        """
        intervals = self._index.get(contig)
        if intervals is None:
            raise MappingNotFoundError(f"{contig}:{offset}")

        i = int(np.searchsorted(intervals.starts, offset, side='right')) - 1
        if i < 0 or offset >= intervals.ends[i]:
            raise MappingNotFoundError(f"{contig}:{offset}")

        delta = int(offset - intervals.seg_starts[i])
        if intervals.reverse[i]:
            seg_offset = int(intervals.seg_lengths[i]) - 1 - delta
        else:
            seg_offset = delta

        return GraphCoordinate(
            segment_id=intervals.segment_ids[i],
            offset=seg_offset,
            reverse=intervals.reverse[i],
        )

    def try_map(self, contig: str, offset: int) -> Optional[GraphCoordinate]:
        """Like map(), returning None instead of raising."""
        try:
            return self.map(contig, offset)
        except MappingNotFoundError:
            return None


# ============================================================================
#                         COORDINATE RESOLVERS
# ============================================================================

class CoordinateResolver(ABC):
    """Turn an aligned end into the coordinates written to the pairs file."""

    is_graph = False

    @abstractmethod
    def resolve(self, chrom: str, pos: int, strand: str) -> Optional[PairEnd]:
        """
        Resolve one end.

        Args:
            chrom: Reference name
            pos: 1-based position
            strand: '+' or '-'

        Returns:
            (chrom, pos, strand) to record, or None if the end cannot be placed
        """


class DirectCoordinateResolver(CoordinateResolver):
    """Linear reference coordinates, used when no graph is supplied."""

    def resolve(self, chrom: str, pos: int, strand: str) -> Optional[PairEnd]:
        return (chrom, pos, strand)


class GraphCoordinateResolver(CoordinateResolver):
    """Remap ends onto assembly-graph segments."""

    is_graph = True

    def __init__(self, mapper: CoordinateMapper):
        self.mapper = mapper

    def resolve(self, chrom: str, pos: int, strand: str) -> Optional[PairEnd]:
        coord = self.mapper.try_map(chrom, pos - 1)
        if coord is None:
            return None
        if coord.reverse:
            strand = '-' if strand == '+' else '+'
        return (coord.segment_id, coord.offset + 1, strand)


__all__ = [
    'MappingNotFoundError',
    'ContigIntervals',
    'CoordinateMapper',
    'CoordinateResolver',
    'DirectCoordinateResolver',
    'GraphCoordinateResolver',
]
