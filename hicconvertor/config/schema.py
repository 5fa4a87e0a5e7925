"""
HiC-Convertor v0.1.0

Configuration schema for HiC-Convertor.

Defines all available configuration parameters with defaults and validation.

Author: HiC-Convertor Development Team
License: Dual License (Academic/Commercial) - See LICENSE_ACADEMIC.md and LICENSE_COMMERCIAL.md
"""

import copy
from typing import Dict, Any, Optional, List
from pathlib import Path
import yaml


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""
    pass


# Default configuration values
DEFAULT_CONFIG = {
    # ========================================================================
    # Conversion (BAM -> pairs)
    # ========================================================================
    'convert': {
        'min_mapq': 0,  # Mates below this MAPQ are tagged multi
        'emit_unmapped': True,  # False: count unmapped pairs but do not write them
        'grouping': 'auto',  # 'auto', 'consecutive', 'buffered'
        'report_mapq': False,  # Append mapq1/mapq2 columns
    },

    # ========================================================================
    # Deduplication
    # ========================================================================
    'dedup': {
        'strategy': 'auto',  # 'auto', 'sorted', 'bounded' (standalone dedup only)
        'max_fingerprints': 1000000,  # LRU capacity for the bounded strategy
    },

    # ========================================================================
    # External Sort
    # ========================================================================
    'sort': {
        'nproc': 4,
        'chunk_size': 1000000,  # Records held in memory per worker
        'max_merge_fanin': 64,  # Chunk files merged in one pass
    },

    # ========================================================================
    # Output
    # ========================================================================
    'output': {
        'pairs_name': 'pairs.txt',
        'stats_name': 'stats.txt',
        'write_header': True,
        'logging': {
            'level': 'INFO',
            'log_file': 'convert.log',
        },
    },

    # ========================================================================
    # Runtime
    # ========================================================================
    'runtime': {
        'scratch_dir': None,  # Default: system temporary directory
    },
}

VALID_GROUPING = ['auto', 'consecutive', 'buffered']
VALID_DEDUP_STRATEGIES = ['auto', 'sorted', 'bounded']
VALID_LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']


def load_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load configuration from file or return defaults.

    Args:
        config_path: Path to YAML config file (None = use defaults)

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If config_path is given but missing
        ConfigValidationError: If the file is not valid YAML
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    if config_path:
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        try:
            with open(config_path) as f:
                user_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigValidationError(
                f"Invalid YAML in config file {config_path}: {e}"
            )

        if user_config:
            # Deep merge user config into defaults
            config = _deep_merge(config, user_config)

    return config


def _deep_merge(base: Dict, override: Dict) -> Dict:
    """
    Deep merge two dictionaries.

    Args:
        base: Base dictionary
        override: Override dictionary

    Returns:
        Merged dictionary
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def merge_overrides(config: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """
    Apply dotted-key overrides (e.g. {'sort.nproc': 8}); None values are ignored.
    """
    config = copy.deepcopy(config)
    for key, value in overrides.items():
        if value is None:
            continue
        keys = key.split('.')
        target = config
        for k in keys[:-1]:
            target = target.setdefault(k, {})
        target[keys[-1]] = value
    return config


def save_config_template(output_path: Path):
    """
    Save a configuration template to file.

    Args:
        output_path: Output file path
    """
    with open(output_path, 'w') as f:
        yaml.dump(DEFAULT_CONFIG, f, default_flow_style=False, sort_keys=False)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_config(config: Dict[str, Any]) -> List[str]:
    """
    Validate configuration dictionary.

    Args:
        config: Configuration to validate

    Returns:
        List of validation errors (empty if valid)
    """
    errors = []

    convert = config.get('convert', {})
    if not _is_int(convert.get('min_mapq')) or convert['min_mapq'] < 0:
        errors.append("convert.min_mapq must be a non-negative integer")
    if convert.get('grouping') not in VALID_GROUPING:
        errors.append(f"Invalid convert.grouping: {convert.get('grouping')}")

    dedup = config.get('dedup', {})
    if dedup.get('strategy') not in VALID_DEDUP_STRATEGIES:
        errors.append(f"Invalid dedup.strategy: {dedup.get('strategy')}")
    if not _is_int(dedup.get('max_fingerprints')) or dedup['max_fingerprints'] < 1:
        errors.append("dedup.max_fingerprints must be a positive integer")

    sort = config.get('sort', {})
    if not _is_int(sort.get('nproc')) or sort['nproc'] < 1:
        errors.append("sort.nproc must be a positive integer")
    if not _is_int(sort.get('chunk_size')) or sort['chunk_size'] < 1:
        errors.append("sort.chunk_size must be a positive integer")
    if not _is_int(sort.get('max_merge_fanin')) or sort['max_merge_fanin'] < 2:
        errors.append("sort.max_merge_fanin must be an integer >= 2")

    output = config.get('output', {})
    for key in ('pairs_name', 'stats_name'):
        if not output.get(key):
            errors.append(f"output.{key} must be set")
    level = output.get('logging', {}).get('level')
    if level not in VALID_LOG_LEVELS:
        errors.append(f"Invalid output.logging.level: {level}")

    scratch_dir = config.get('runtime', {}).get('scratch_dir')
    if scratch_dir is not None:
        scratch_path = Path(scratch_dir)
        if scratch_path.exists() and not scratch_path.is_dir():
            errors.append(f"runtime.scratch_dir is not a directory: {scratch_dir}")

    return errors
