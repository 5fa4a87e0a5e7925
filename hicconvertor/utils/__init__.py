"""
Utilities module for HiC-Convertor.

This module provides pipeline orchestration:
- Stage sequencing (convert -> sort -> dedup, or any single stage)
- Scratch directory and atomic output management
- Logging setup for command-line use
"""

from .pipeline import (
    PipelineOrchestrator,
    PipelineStageError,
    setup_logging,
)

__all__ = [
    "PipelineOrchestrator",
    "PipelineStageError",
    "setup_logging",
]
