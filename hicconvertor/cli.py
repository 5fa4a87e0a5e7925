#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
Command-line interface for HiC-Convertor.

This module provides the main CLI entry point and the subcommands that
convert Hi-C alignments to pairs, sort them and remove duplicates.
"""

import sys
import click
from pathlib import Path

from .version import __version__
from .config.schema import (
    ConfigValidationError,
    load_config,
    merge_overrides,
    save_config_template,
    validate_config,
)
from .utils.pipeline import PipelineOrchestrator, PipelineStageError, setup_logging


@click.group()
@click.version_option(version=__version__)
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose output')
@click.option('--quiet', '-q', is_flag=True, help='Suppress non-error output')
@click.option('--config', '-c', 'config_file', type=click.Path(exists=True),
              help='Configuration file (YAML)')
@click.option('--scratch-dir', type=click.Path(file_okay=False),
              help='Directory for temporary sort chunks (default: system temp)')
@click.pass_context
def main(ctx, verbose, quiet, config_file, scratch_dir):
    """
    HiC-Convertor: Hi-C alignments to sorted, deduplicated contact pairs

    Converts BAM files with Hi-C reads to Hi-C pairs, optionally remapped
    onto an assembly graph, then sorts and deduplicates them.
    """
    ctx.ensure_object(dict)
    ctx.obj['VERBOSE'] = verbose
    ctx.obj['QUIET'] = quiet
    ctx.obj['CONFIG_FILE'] = config_file
    ctx.obj['SCRATCH_DIR'] = scratch_dir


def _load(ctx, log_dir=None, **overrides):
    """Load configuration, apply CLI overrides and configure logging."""
    try:
        config = load_config(Path(ctx.obj['CONFIG_FILE']) if ctx.obj.get('CONFIG_FILE') else None)
    except ConfigValidationError as e:
        click.echo(f"✗ {e}", err=True)
        sys.exit(1)

    overrides['runtime.scratch_dir'] = ctx.obj.get('SCRATCH_DIR')
    config = merge_overrides(config, overrides)

    level = config['output']['logging']['level']
    if ctx.obj.get('VERBOSE'):
        level = 'DEBUG'
    elif ctx.obj.get('QUIET'):
        level = 'WARNING'

    log_file = config['output']['logging']['log_file']
    if log_file and log_dir is not None:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        log_file = Path(log_dir) / log_file
    setup_logging(level, log_file)

    return config


def _run(config, method_name, *args, **kwargs):
    """Run one orchestrator mode; report failures and exit non-zero."""
    try:
        orchestrator = PipelineOrchestrator(config)
        stats = getattr(orchestrator, method_name)(*args, **kwargs)
    except ConfigValidationError as e:
        click.echo(f"✗ Invalid configuration: {e}", err=True)
        sys.exit(1)
    except PipelineStageError as e:
        click.echo(f"✗ {e}", err=True)
        sys.exit(1)
    return stats


# ============================================================================
# Pipeline Commands
# ============================================================================

@main.command('all')
@click.option('--bam', '-b', required=True, type=click.Path(),
              help='Alignments in bam format.')
@click.option('--out_dir', '-o', 'out_dir', required=True, type=click.Path(file_okay=False),
              help='Path to output directory.')
@click.option('--graph', '-g', type=click.Path(),
              help='Path to graph in gfa format.')
@click.option('--nproc', '-t', type=int,
              help='Number of processes for sorting.')
@click.pass_context
def run_all(ctx, bam, out_dir, graph, nproc):
    """Convert, sort and deduplicate Hi-C pairs."""
    config = _load(ctx, log_dir=out_dir, **{'sort.nproc': nproc})
    stats = _run(config, 'run_full', bam, out_dir, graph_path=graph, nproc=nproc)

    if not ctx.obj.get('QUIET'):
        click.echo(stats.summary())
        click.echo(f"✓ Pairs written to: {Path(out_dir) / config['output']['pairs_name']}")


@main.command()
@click.option('--bam', '-b', required=True, type=click.Path(),
              help='Alignments in bam format.')
@click.option('--pairs', '-p', required=True, type=click.Path(dir_okay=False),
              help='File where obtained pairs will be saved.')
@click.option('--graph', '-g', type=click.Path(),
              help='Path to graph in gfa format.')
@click.option('--stats', '-s', 'stats_path', type=click.Path(dir_okay=False),
              help='Statistics report (default: <pairs>.stats).')
@click.pass_context
def convert(ctx, bam, pairs, graph, stats_path):
    """Convert bam to pairs file."""
    config = _load(ctx)
    stats = _run(config, 'run_convert', bam, pairs, graph_path=graph, stats_path=stats_path)

    if not ctx.obj.get('QUIET'):
        click.echo(f"✓ {stats.emitted_pairs:,} pairs written to: {pairs}")


@main.command()
@click.option('--in_pairs', '-p', 'in_pairs', required=True, type=click.Path(),
              help='Input file with pairs.')
@click.option('--out_pairs', '-o', 'out_pairs', required=True, type=click.Path(dir_okay=False),
              help='Output file with sorted pairs.')
@click.option('--nproc', '-t', type=int,
              help='Number of processes for sorting.')
@click.option('--stats', '-s', 'stats_path', type=click.Path(dir_okay=False),
              help='Statistics report (default: <out_pairs>.stats).')
@click.pass_context
def sort(ctx, in_pairs, out_pairs, nproc, stats_path):
    """Sort pairs file with a multi-process external merge sort."""
    config = _load(ctx, **{'sort.nproc': nproc})
    stats = _run(config, 'run_sort', in_pairs, out_pairs, nproc=nproc, stats_path=stats_path)

    if not ctx.obj.get('QUIET'):
        click.echo(f"✓ {stats.sorted_records:,} pairs sorted into: {out_pairs}")


@main.command()
@click.option('--in_pairs', '-p', 'in_pairs', required=True, type=click.Path(),
              help='Input file with pairs.')
@click.option('--out_pairs', '-o', 'out_pairs', required=True, type=click.Path(dir_okay=False),
              help='Output file with deduplicated pairs.')
@click.option('--strategy', type=click.Choice(['auto', 'sorted', 'bounded']),
              help='Deduplication strategy (default from config: auto).')
@click.option('--stats', '-s', 'stats_path', type=click.Path(dir_okay=False),
              help='Statistics report (default: <out_pairs>.stats).')
@click.pass_context
def dedup(ctx, in_pairs, out_pairs, strategy, stats_path):
    """Remove duplicated Hi-C reads from file."""
    config = _load(ctx, **{'dedup.strategy': strategy})
    stats = _run(config, 'run_dedup', in_pairs, out_pairs, stats_path=stats_path)

    if not ctx.obj.get('QUIET'):
        click.echo(
            f"✓ {stats.duplicates_removed:,} duplicates removed, "
            f"{stats.pairs_kept:,} pairs written to: {out_pairs}"
        )


# ============================================================================
# Configuration Management Commands
# ============================================================================

@main.group()
def config():
    """Configuration management commands."""
    pass


@config.command('init')
@click.option('--output', '-o', type=click.Path(), default='hicconvertor_config.yaml',
              help='Output configuration file path')
def config_init(output):
    """Generate a template configuration file with all available parameters."""
    click.echo(f"Generating configuration template: {output}")

    try:
        save_config_template(Path(output))
        click.echo(f"✓ Configuration file created: {output}")
    except OSError as e:
        click.echo(f"✗ Error creating configuration: {e}", err=True)
        sys.exit(1)


@config.command('validate')
@click.argument('config_file', type=click.Path(exists=True))
def config_validate(config_file):
    """Validate a configuration file."""
    click.echo(f"Validating configuration file: {config_file}")

    try:
        config = load_config(Path(config_file))
    except ConfigValidationError as e:
        click.echo(f"✗ {e}", err=True)
        sys.exit(1)

    errors = validate_config(config)
    if errors:
        click.echo("\n✗ Configuration validation failed:")
        for error in errors:
            click.echo(f"  • {error}", err=True)
        sys.exit(1)

    click.echo("✓ Configuration is valid")
    click.echo("\nKey Settings:")
    click.echo(f"  Sort workers: {config['sort']['nproc']}")
    click.echo(f"  Chunk size: {config['sort']['chunk_size']:,}")
    click.echo(f"  Dedup strategy: {config['dedup']['strategy']}")
    click.echo(f"  Emit unmapped: {config['convert']['emit_unmapped']}")


if __name__ == '__main__':
    sys.exit(main())
