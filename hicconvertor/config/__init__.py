"""
HiC-Convertor v0.1.0

Configuration management for HiC-Convertor.

Author: HiC-Convertor Development Team
License: Dual License (Academic/Commercial) - See LICENSE_ACADEMIC.md and LICENSE_COMMERCIAL.md
"""

from .schema import (
    DEFAULT_CONFIG,
    ConfigValidationError,
    load_config,
    merge_overrides,
    save_config_template,
    validate_config,
)

__all__ = [
    "DEFAULT_CONFIG",
    "ConfigValidationError",
    "load_config",
    "merge_overrides",
    "save_config_template",
    "validate_config",
]
