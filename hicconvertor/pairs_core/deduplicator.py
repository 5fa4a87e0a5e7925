#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
HiC-Convertor v0.1.0

Pair Deduplicator - remove PCR/optical duplicate contacts.

The first record carrying a fingerprint is kept; every later record with the
same fingerprint is dropped. Fingerprints compare both canonical ends
exactly (chromosome, position and strand); there is no positional tolerance.

Strategies:
- sorted: input is ordered by (chrom1, pos1, chrom2, pos2). Only records of
  the current run of equal sort keys are remembered, so memory does not grow
  with the input. This is the strategy of the full pipeline, which sorts
  before deduplicating.
- bounded: input in any order. Fingerprints are kept in an LRU set of fixed
  capacity; duplicates further apart than the capacity are missed.

Unmapped pairs carry no positional information and pass through untouched.

Author: HiC-Convertor Development Team
License: Dual License (Academic/Commercial) - See LICENSE_ACADEMIC.md and LICENSE_COMMERCIAL.md
"""

import logging
from collections import OrderedDict
from typing import Iterable, Iterator, Optional

from .data_structures import PairRecord, PairType, PipelineStats

logger = logging.getLogger(__name__)

DEDUP_STRATEGIES = ('sorted', 'bounded')


class UnsortedInputError(ValueError):
    """Raised when the sorted strategy sees a decreasing sort key."""
    pass


class PairDeduplicator:
    """Drop repeated contact fingerprints from a pair stream."""

    def __init__(
        self,
        strategy: str = 'sorted',
        max_fingerprints: int = 1_000_000,
        stats: Optional[PipelineStats] = None
    ):
        """
        Initialize deduplicator.

        Args:
            strategy: 'sorted' or 'bounded'
            max_fingerprints: Capacity of the LRU set (bounded strategy only)
            stats: Statistics accumulator
        """
        if strategy not in DEDUP_STRATEGIES:
            raise ValueError(
                f"Unknown dedup strategy: {strategy}. "
                f"Must be one of: {', '.join(DEDUP_STRATEGIES)}"
            )
        if max_fingerprints < 1:
            raise ValueError("max_fingerprints must be >= 1")

        self.strategy = strategy
        self.max_fingerprints = max_fingerprints
        self.stats = stats if stats is not None else PipelineStats()
        self.duplicates_removed = 0
        self.logger = logging.getLogger(f"{__name__}.PairDeduplicator")

    def deduplicate(self, records: Iterable[PairRecord]) -> Iterator[PairRecord]:
        """
        Lazily filter duplicates out of a pair stream.

        Args:
            records: Input PairRecords

        Yields:
            Kept PairRecords in input order

        Raises:
            UnsortedInputError: With the sorted strategy, if the input is not
                ordered by sort key
        """
        if self.strategy == 'sorted':
            kept = self._dedup_sorted(records)
        else:
            kept = self._dedup_bounded(records)

        for record in kept:
            self.stats.pairs_kept += 1
            yield record

        self.logger.info(
            f"Deduplication ({self.strategy}) complete: "
            f"{self.stats.dedup_input:,} in, {self.duplicates_removed:,} duplicates removed"
        )

    def _drop(self, record: PairRecord):
        self.duplicates_removed += 1
        self.stats.duplicates_removed += 1
        self.logger.debug(f"Duplicate: {record.read_id}")

    def _dedup_sorted(self, records: Iterable[PairRecord]) -> Iterator[PairRecord]:
        run_key = None
        run_fingerprints = set()

        for record in records:
            self.stats.dedup_input += 1
            key = record.sort_key()

            if key != run_key:
                if run_key is not None and key < run_key:
                    raise UnsortedInputError(
                        f"Pairs are not sorted: {key} follows {run_key} "
                        f"(read {record.read_id}); sort first or use the bounded strategy"
                    )
                run_key = key
                run_fingerprints = set()

            if record.pair_type is PairType.UNMAPPED:
                yield record
                continue

            fingerprint = record.fingerprint()
            if fingerprint in run_fingerprints:
                self._drop(record)
                continue
            run_fingerprints.add(fingerprint)
            yield record

    def _dedup_bounded(self, records: Iterable[PairRecord]) -> Iterator[PairRecord]:
        seen: "OrderedDict[tuple, None]" = OrderedDict()

        for record in records:
            self.stats.dedup_input += 1

            if record.pair_type is PairType.UNMAPPED:
                yield record
                continue

            fingerprint = record.fingerprint()
            if fingerprint in seen:
                seen.move_to_end(fingerprint)
                self._drop(record)
                continue

            seen[fingerprint] = None
            if len(seen) > self.max_fingerprints:
                seen.popitem(last=False)
            yield record


__all__ = [
    'DEDUP_STRATEGIES',
    'UnsortedInputError',
    'PairDeduplicator',
]
