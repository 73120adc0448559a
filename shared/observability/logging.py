"""Logging setup for applications using postcard."""

import logging
import sys

from shared.config import Environment, PostcardConfig


def setup_logging(config: PostcardConfig | None = None) -> None:
    """Set up logging configuration."""
    if config is None:
        config = PostcardConfig()

    # Configure log level based on environment
    if config.environment == Environment.DEVELOPMENT:
        log_level = logging.DEBUG
    else:
        log_level = logging.INFO

    # Configure logging format
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # Set up root logger
    logging.basicConfig(
        level=log_level, format=log_format, handlers=[logging.StreamHandler(sys.stdout)]
    )

    # Fitting backends are chatty at DEBUG
    logging.getLogger("joblib").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance."""
    return logging.getLogger(name)
