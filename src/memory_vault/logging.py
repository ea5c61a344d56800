"""Logging configuration for memory-vault.

IMPORTANT: the CLI writes its data (context dumps, JSON payloads) to stdout,
so all log output goes to stderr.
"""

import sys

from loguru import logger

# Remove default handler
logger.remove()

# Add stderr handler with sensible format for CLI usage
LOG_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)
logger.configure(extra={"name": "memory_vault"})
_handler_id = logger.add(sys.stderr, format=LOG_FORMAT, level="INFO", colorize=True)


def configure_logging(level: str = "INFO", log_format: str = "pretty") -> None:
    """Reconfigure the stderr handler.

    Args:
        level: Minimum log level (DEBUG, INFO, WARNING, ERROR).
        log_format: 'pretty' for human-readable lines, 'json' for one
            serialized record per line.
    """
    global _handler_id
    logger.remove(_handler_id)
    if log_format == "json":
        _handler_id = logger.add(sys.stderr, level=level.upper(), serialize=True)
    else:
        _handler_id = logger.add(
            sys.stderr, format=LOG_FORMAT, level=level.upper(), colorize=True
        )


def get_logger(name: str) -> "logger":
    """Get a logger instance bound to a module name."""
    return logger.bind(name=name)
