"""
Utility functions for the edge coach project.
"""

from .io_utils import (
    load_config,
    setup_logging,
    LOG_FORMAT,
)

__all__ = [
    'load_config',
    'setup_logging',
    'LOG_FORMAT',
]
