"""
HiC-Convertor v0.1.0

I/O utilities: GFA graphs, alignment containers and pairs files.

Author: HiC-Convertor Development Team
License: Dual License (Academic/Commercial) - See LICENSE_ACADEMIC.md and LICENSE_COMMERCIAL.md
"""

from .gfa_reader import (
    GraphFormatError,
    PathStep,
    AssemblyGraph,
    load_graph_from_gfa,
)
from .pairs_io import (
    build_header,
    parse_chrom_sizes,
    header_declares_mapq,
    header_is_sorted,
    read_header,
    iter_pairs,
    write_pairs,
)

__all__ = [
    # GFA
    "GraphFormatError",
    "PathStep",
    "AssemblyGraph",
    "load_graph_from_gfa",
    # Pairs
    "build_header",
    "parse_chrom_sizes",
    "header_declares_mapq",
    "header_is_sorted",
    "read_header",
    "iter_pairs",
    "write_pairs",
]
