"""
I/O utilities for configuration files and logging setup.
"""

import logging
import os
from typing import Dict, Optional

import yaml

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(levelname)s | %(name)s | %(message)s"


def load_config(config_path: str) -> Dict:
    """
    Loads configuration from a YAML file.

    Args:
        config_path (str): Path to the YAML configuration file.

    Returns:
        Dict: The loaded configuration (empty dict for an empty file).
    """
    with open(config_path, 'r') as f:
        config = yaml.safe_load(f)
    return config or {}


def setup_logging(level: Optional[str] = None) -> None:
    """
    Configure root logging once for the service entry point.

    Args:
        level (str, optional): Level name; defaults to ``LOG_LEVEL`` env var or INFO.
    """
    level_name = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(level=getattr(logging, level_name, logging.INFO), format=LOG_FORMAT)
    logger.debug(f"Logging configured at level {level_name}")
