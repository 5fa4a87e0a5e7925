"""
HiC-Convertor v0.1.0

Core pipeline components:
- Data structures (PairRecord, PipelineStats, GraphCoordinate)
- Coordinate mapping through an assembly graph
- Pair extraction from alignment records
- Duplicate removal
- External multi-process sort

Author: HiC-Convertor Development Team
License: Dual License (Academic/Commercial) - See LICENSE_ACADEMIC.md and LICENSE_COMMERCIAL.md
"""

from .data_structures import (
    PairType,
    PairRecord,
    GraphCoordinate,
    PipelineStats,
)
from .coordinate_mapper import (
    MappingNotFoundError,
    CoordinateMapper,
    CoordinateResolver,
    DirectCoordinateResolver,
    GraphCoordinateResolver,
)
from .pair_extractor import PairExtractor
from .deduplicator import PairDeduplicator, UnsortedInputError
from .external_sorter import ExternalSorter, ExternalSortError

__all__ = [
    "PairType",
    "PairRecord",
    "GraphCoordinate",
    "PipelineStats",
    "MappingNotFoundError",
    "CoordinateMapper",
    "CoordinateResolver",
    "DirectCoordinateResolver",
    "GraphCoordinateResolver",
    "PairExtractor",
    "PairDeduplicator",
    "UnsortedInputError",
    "ExternalSorter",
    "ExternalSortError",
]
