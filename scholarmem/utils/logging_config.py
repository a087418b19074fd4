"""
Centralized logging configuration for the memory layer.
"""

import logging
import sys
from typing import Optional

from .config import AppConfig

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Client libraries that log every request at INFO
QUIET_LOGGERS = ('botocore', 'boto3', 'urllib3', 'opensearch')


def _resolve(config: Optional[AppConfig]) -> AppConfig:
    if config is None:
        from .config import config as default_config
        return default_config
    return config


def log_level(config: Optional[AppConfig] = None) -> int:
    """Numeric level for the configured LOG_LEVEL, INFO when unrecognised."""
    level = getattr(logging, _resolve(config).log_level.upper(), None)
    return level if isinstance(level, int) else logging.INFO


def setup_logging(config: Optional[AppConfig] = None) -> None:
    """
    Configure the root logger to write to stdout.

    Args:
        config: AppConfig instance, uses default if None
    """
    logging.basicConfig(level=log_level(config), format=LOG_FORMAT, handlers=[logging.StreamHandler(sys.stdout)])
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str, config: Optional[AppConfig] = None) -> logging.Logger:
    """
    Get a module logger at the configured level.

    Args:
        name: Logger name (usually __name__)
        config: AppConfig instance, uses default if None
    """
    logger = logging.getLogger(name)
    logger.setLevel(log_level(config))
    return logger
