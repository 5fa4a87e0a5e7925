"""
HiC-Convertor Pipeline Orchestrator.

Sequences the pipeline stages and owns everything that spans them:
- Extract (BAM -> pairs) -> Sort -> Dedup for a full run
- Any single stage standalone (convert / sort / dedup)
- A per-run scratch directory, removed on success and on failure
- Atomic publication of final outputs: pairs file and stats report are
  written under temporary names and renamed only once both are complete
- One PipelineStats accumulator, written once at the end

Full runs deduplicate after sorting. The sort is stable, so the first record
of each fingerprint in sorted order is also its first occurrence in
extraction order, and deduplication needs no memory beyond the current run of
equal sort keys.
"""

import logging
import os
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple, Union

from ..config.schema import ConfigValidationError, load_config, validate_config
from ..io_utils.alignment_io import get_reference_sizes
from ..io_utils.gfa_reader import load_graph_from_gfa
from ..io_utils.pairs_io import (
    build_header,
    header_declares_mapq,
    header_is_sorted,
    iter_pairs,
    parse_chrom_sizes,
    read_header,
    write_pairs,
)
from ..pairs_core.coordinate_mapper import (
    CoordinateMapper,
    CoordinateResolver,
    DirectCoordinateResolver,
    GraphCoordinateResolver,
)
from ..pairs_core.data_structures import PairRecord, PipelineStats
from ..pairs_core.deduplicator import PairDeduplicator
from ..pairs_core.external_sorter import ExternalSorter
from ..pairs_core.pair_extractor import PairExtractor

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class PipelineStageError(RuntimeError):
    """
    A stage failed; the pipeline was aborted and its temporary state removed.

    Attributes:
        stage: Name of the failing stage ('convert', 'sort', 'dedup'), or
            'setup' / 'output' for the scratch directory and final outputs
        cause: Original exception
    """

    def __init__(self, stage: str, cause: BaseException):
        self.stage = stage
        self.cause = cause
        super().__init__(f"{stage} stage failed: {type(cause).__name__}: {cause}")


def setup_logging(level: str = 'INFO', log_file: Optional[PathLike] = None):
    """
    Configure root logging for command-line use.

    Args:
        level: Logging level name
        log_file: Optional file receiving the same records as the console
    """
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True,
    )


class PipelineOrchestrator:
    """
    Run the conversion / sort / dedup pipeline or any single stage of it.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize pipeline orchestrator.

        Args:
            config: Pipeline configuration (defaults from config.schema)

        Raises:
            ConfigValidationError: If the configuration is invalid
        """
        self.config = config if config is not None else load_config()
        errors = validate_config(self.config)
        if errors:
            raise ConfigValidationError("; ".join(errors))
        self.logger = logging.getLogger(f"{__name__}.PipelineOrchestrator")

    # ========================================================================
    #                    RUN-WIDE RESOURCES
    # ========================================================================

    @contextmanager
    def _scratch(self) -> Iterator[Path]:
        """Per-run scratch directory, removed whatever the outcome."""
        root = self.config['runtime'].get('scratch_dir')
        root = Path(root) if root else Path(tempfile.gettempdir())
        with self._stage('setup'):
            root.mkdir(parents=True, exist_ok=True)
            run_dir = Path(tempfile.mkdtemp(prefix="hicconvertor_", dir=root))

        self.logger.debug(f"Scratch directory: {run_dir}")
        try:
            yield run_dir
        finally:
            shutil.rmtree(run_dir, ignore_errors=True)

    @contextmanager
    def _stage(self, name: str) -> Iterator[None]:
        """Re-raise any failure inside the block as PipelineStageError(name)."""
        try:
            yield
        except PipelineStageError:
            raise
        except Exception as e:
            self.logger.error(f"{name} stage failed: {e}")
            raise PipelineStageError(name, e) from e

    def _tagged(self, stage: str, records: Iterable[PairRecord]) -> Iterator[PairRecord]:
        """Attribute failures of a lazily consumed stream to its producing stage."""
        with self._stage(stage):
            yield from records

    @contextmanager
    def _atomic_outputs(self, *final_paths: Path) -> Iterator[List[Path]]:
        """
        Yield temporary sibling paths, one per final path.

        Targets are published in the order given, and only after the whole
        block succeeded; on any failure, including a failed rename, every
        partial file and every target already published by this call is
        removed.
        """
        with self._stage('output'):
            for final_path in final_paths:
                final_path.parent.mkdir(parents=True, exist_ok=True)

        partials = [p.with_name(f".{p.name}.partial") for p in final_paths]
        published: List[Path] = []
        try:
            yield partials
            with self._stage('output'):
                for partial, final_path in zip(partials, final_paths):
                    os.replace(partial, final_path)
                    published.append(final_path)
        except BaseException:
            for path in partials + published:
                if path.is_file():
                    path.unlink()
            raise

    def _save_stats(self, stats: PipelineStats, partial: Path):
        with self._stage('output'):
            stats.save(partial)

    # ========================================================================
    #                    STAGE FACTORIES
    # ========================================================================

    @staticmethod
    def _require(**params):
        for name, value in params.items():
            if value is None or value == '':
                raise ConfigValidationError(f"Missing required parameter: {name}")

    def _resolve_nproc(self, nproc: Optional[int]) -> int:
        nproc = self.config['sort']['nproc'] if nproc is None else nproc
        if isinstance(nproc, bool) or not isinstance(nproc, int) or nproc < 1:
            raise ConfigValidationError(f"nproc must be a positive integer, got {nproc!r}")
        return nproc

    def _prepare_conversion(
        self,
        bam_path: Path,
        graph_path: Optional[Path]
    ) -> Tuple[CoordinateResolver, List[Tuple[str, int]]]:
        """Select the coordinate resolver once and collect header chrom sizes."""
        if graph_path is None:
            return DirectCoordinateResolver(), get_reference_sizes(bam_path)

        graph = load_graph_from_gfa(graph_path)
        return GraphCoordinateResolver(CoordinateMapper(graph)), graph.chrom_sizes()

    def _make_extractor(self, resolver: CoordinateResolver, stats: PipelineStats) -> PairExtractor:
        convert = self.config['convert']
        return PairExtractor(
            resolver=resolver,
            stats=stats,
            min_mapq=convert['min_mapq'],
            emit_unmapped=convert['emit_unmapped'],
            report_mapq=convert['report_mapq'],
        )

    def _make_sorter(self, nproc: int, stats: PipelineStats) -> ExternalSorter:
        sort = self.config['sort']
        return ExternalSorter(
            nproc=nproc,
            chunk_size=sort['chunk_size'],
            max_merge_fanin=sort['max_merge_fanin'],
            stats=stats,
        )

    def _header(self, chrom_sizes, sorted_by_key: bool, with_mapq: bool) -> Optional[List[str]]:
        if not self.config['output']['write_header']:
            return None
        return build_header(chrom_sizes, sorted_by_key=sorted_by_key, with_mapq=with_mapq)

    @staticmethod
    def _default_stats_path(output_path: Path) -> Path:
        return output_path.with_name(output_path.name + ".stats")

    # ========================================================================
    #                    PIPELINE MODES
    # ========================================================================

    def run_full(
        self,
        bam_path: PathLike,
        out_dir: PathLike,
        graph_path: Optional[PathLike] = None,
        nproc: Optional[int] = None
    ) -> PipelineStats:
        """
        Convert, sort and deduplicate in one streaming pass.

        Args:
            bam_path: Alignment input
            out_dir: Directory receiving the pairs file and the stats report
            graph_path: Optional GFA graph for coordinate remapping
            nproc: Sort workers (default: config sort.nproc)

        Returns:
            Statistics of the run

        Raises:
            ConfigValidationError: Missing or invalid parameters
            PipelineStageError: A stage failed; no output was published
        """
        self._require(bam_path=bam_path, out_dir=out_dir)
        nproc = self._resolve_nproc(nproc)

        out_dir = Path(out_dir)
        pairs_path = out_dir / self.config['output']['pairs_name']
        stats_path = out_dir / self.config['output']['stats_name']
        graph_path = Path(graph_path) if graph_path else None

        self.logger.info(
            f"Full pipeline: {bam_path} -> {pairs_path} "
            f"(graph={graph_path}, nproc={nproc})"
        )

        stats = PipelineStats()
        with self._scratch() as scratch, \
                self._atomic_outputs(stats_path, pairs_path) as (stats_partial, partial):
            with self._stage('convert'):
                resolver, chrom_sizes = self._prepare_conversion(Path(bam_path), graph_path)
            extractor = self._make_extractor(resolver, stats)
            pairs = self._tagged('convert', extractor.iter_pairs_from_file(
                bam_path,
                grouping=self.config['convert']['grouping'],
                scratch_dir=scratch / 'convert',
            ))

            sorter = self._make_sorter(nproc, stats)
            deduplicator = PairDeduplicator(strategy='sorted', stats=stats)
            header = self._header(
                chrom_sizes, sorted_by_key=True,
                with_mapq=self.config['convert']['report_mapq'],
            )

            with self._stage('sort'):
                with sorter.sorted_stream(pairs, scratch / 'sort') as sorted_pairs:
                    kept = self._tagged('dedup', deduplicator.deduplicate(
                        self._tagged('sort', sorted_pairs)
                    ))
                    write_pairs(kept, partial, header=header)
            self._save_stats(stats, stats_partial)

        self.logger.info(stats.summary())
        self.logger.info(f"Full pipeline complete: {stats.pairs_kept:,} pairs in {pairs_path}")
        return stats

    def run_convert(
        self,
        bam_path: PathLike,
        pairs_path: PathLike,
        graph_path: Optional[PathLike] = None,
        stats_path: Optional[PathLike] = None
    ) -> PipelineStats:
        """
        Convert alignments to an unsorted pairs file.

        Args:
            bam_path: Alignment input
            pairs_path: Output pairs file
            graph_path: Optional GFA graph for coordinate remapping
            stats_path: Stats report (default: <pairs_path>.stats)

        Returns:
            Statistics of the run
        """
        self._require(bam_path=bam_path, pairs_path=pairs_path)
        pairs_path = Path(pairs_path)
        stats_path = Path(stats_path) if stats_path else self._default_stats_path(pairs_path)
        graph_path = Path(graph_path) if graph_path else None

        self.logger.info(f"Convert: {bam_path} -> {pairs_path} (graph={graph_path})")

        stats = PipelineStats()
        with self._scratch() as scratch, \
                self._atomic_outputs(stats_path, pairs_path) as (stats_partial, partial):
            with self._stage('convert'):
                resolver, chrom_sizes = self._prepare_conversion(Path(bam_path), graph_path)
                extractor = self._make_extractor(resolver, stats)
                header = self._header(
                    chrom_sizes, sorted_by_key=False,
                    with_mapq=self.config['convert']['report_mapq'],
                )
                write_pairs(
                    extractor.iter_pairs_from_file(
                        bam_path,
                        grouping=self.config['convert']['grouping'],
                        scratch_dir=scratch / 'convert',
                    ),
                    partial,
                    header=header,
                )
            self._save_stats(stats, stats_partial)

        self.logger.info(stats.summary())
        return stats

    def run_sort(
        self,
        in_pairs: PathLike,
        out_pairs: PathLike,
        nproc: Optional[int] = None,
        stats_path: Optional[PathLike] = None
    ) -> PipelineStats:
        """
        Sort a pairs file by (chrom1, pos1, chrom2, pos2).

        Args:
            in_pairs: Input pairs file
            out_pairs: Output sorted pairs file
            nproc: Sort workers (default: config sort.nproc)
            stats_path: Stats report (default: <out_pairs>.stats)

        Returns:
            Statistics of the run
        """
        self._require(in_pairs=in_pairs, out_pairs=out_pairs)
        nproc = self._resolve_nproc(nproc)
        out_pairs = Path(out_pairs)
        stats_path = Path(stats_path) if stats_path else self._default_stats_path(out_pairs)

        self.logger.info(f"Sort: {in_pairs} -> {out_pairs} (nproc={nproc})")

        stats = PipelineStats()
        with self._scratch() as scratch, \
                self._atomic_outputs(stats_path, out_pairs) as (stats_partial, partial):
            with self._stage('sort'):
                in_header = read_header(in_pairs)
                header = self._header(
                    parse_chrom_sizes(in_header), sorted_by_key=True,
                    with_mapq=header_declares_mapq(in_header),
                )
                sorter = self._make_sorter(nproc, stats)
                sorter.sort(iter_pairs(in_pairs, stats), partial, scratch / 'sort', header=header)
            self._save_stats(stats, stats_partial)

        self.logger.info(stats.summary())
        return stats

    def run_dedup(
        self,
        in_pairs: PathLike,
        out_pairs: PathLike,
        stats_path: Optional[PathLike] = None
    ) -> PipelineStats:
        """
        Remove duplicate pairs from a pairs file.

        With dedup.strategy 'auto', a file declaring '#sorted:' is
        deduplicated with the sorted strategy, anything else with the
        bounded LRU strategy.

        Args:
            in_pairs: Input pairs file
            out_pairs: Output pairs file
            stats_path: Stats report (default: <out_pairs>.stats)

        Returns:
            Statistics of the run
        """
        self._require(in_pairs=in_pairs, out_pairs=out_pairs)
        out_pairs = Path(out_pairs)
        stats_path = Path(stats_path) if stats_path else self._default_stats_path(out_pairs)

        stats = PipelineStats()
        with self._atomic_outputs(stats_path, out_pairs) as (stats_partial, partial):
            with self._stage('dedup'):
                in_header = read_header(in_pairs)
                is_sorted = header_is_sorted(in_header)

                strategy = self.config['dedup']['strategy']
                if strategy == 'auto':
                    strategy = 'sorted' if is_sorted else 'bounded'
                self.logger.info(f"Dedup: {in_pairs} -> {out_pairs} (strategy={strategy})")

                deduplicator = PairDeduplicator(
                    strategy=strategy,
                    max_fingerprints=self.config['dedup']['max_fingerprints'],
                    stats=stats,
                )
                header = self._header(
                    parse_chrom_sizes(in_header), sorted_by_key=is_sorted,
                    with_mapq=header_declares_mapq(in_header),
                )
                write_pairs(
                    deduplicator.deduplicate(iter_pairs(in_pairs, stats)),
                    partial,
                    header=header,
                )
            self._save_stats(stats, stats_partial)

        self.logger.info(stats.summary())
        return stats


__all__ = [
    'PipelineStageError',
    'PipelineOrchestrator',
    'setup_logging',
]
