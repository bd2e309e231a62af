"""
bigPRS configuration module.

This module provides:
- Configuration dataclasses for all bigPRS commands
- Base classes with automatic path generation
- Decorators for CLI integration and resource tracking
"""

# Base classes and utilities
from .base import ConfigWithAutoPaths, config_logger, ensure_path_exists, read_metadata, write_metadata

# Decorators
from .decorators import dataclass_typer, track_resource_usage, show_banner

# Command configurations
from .match_config import MatchConfig
from .ld_config import BuildLDConfig, ClumpConfig
from .ldpred_config import LDpredAutoConfig, LDpredCommonConfig, LDpredGridConfig, LDpredInfConfig
from .score_config import ScoreConfig

__all__ = [
    # Base classes
    'ConfigWithAutoPaths',
    'config_logger',
    'ensure_path_exists',
    'read_metadata',
    'write_metadata',

    # Decorators
    'dataclass_typer',
    'track_resource_usage',
    'show_banner',

    # Configurations
    'MatchConfig',
    'BuildLDConfig',
    'ClumpConfig',
    'LDpredCommonConfig',
    'LDpredInfConfig',
    'LDpredGridConfig',
    'LDpredAutoConfig',
    'ScoreConfig',
]
