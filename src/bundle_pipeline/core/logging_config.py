"""Logging setup for the bundle pipeline and the libraries it drives."""

import os
import sys
import logging
from typing import Iterator, Optional, Union

ROOT_LOGGER = "bundle-pipeline"

# Transport and ORM loggers that flood the output at DEBUG/INFO during a run.
LIBRARY_LOGGERS = (
    "aioboto3",
    "aiobotocore",
    "botocore",
    "urllib3",
    "sqlalchemy.engine",
    "httpx",
    "httpcore",
    "multipart",
)

STRUCTURED_FORMAT = (
    "%(asctime)s | %(name)s | %(levelname)-8s | "
    "%(filename)s:%(lineno)d | %(funcName)s() | %(message)s"
)
SIMPLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def resolve_level(level: Union[str, int, None] = None) -> int:
    """
    Turn a level name, number or ``None`` into a ``logging`` level.

    ``None`` falls back to ``LOG_LEVEL``; unknown names give INFO.
    """
    if isinstance(level, int):
        return level
    name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    resolved = logging.getLevelName(name)
    return resolved if isinstance(resolved, int) else logging.INFO


def _formatter(format_type: str) -> logging.Formatter:
    if os.getenv("LOG_FORMAT", format_type).lower() == "structured":
        return logging.Formatter(STRUCTURED_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    return logging.Formatter(SIMPLE_FORMAT)


def setup_logger(
    name: str = ROOT_LOGGER,
    level: Optional[str] = None,
    format_type: str = "structured",
) -> logging.Logger:
    """
    Configure one pipeline logger writing to stdout.

    Args:
        name: Logger name (defaults to "bundle-pipeline")
        level: Log level override (defaults to env var or INFO)
        format_type: Logging format ("structured" or "simple")

    Environment Variables:
        LOG_LEVEL: Set logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        LOG_FORMAT: Set format type ("structured" or "simple")
    """
    logger = logging.getLogger(name)
    logger.setLevel(resolve_level(level))

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(_formatter(format_type))
        logger.addHandler(handler)

    logger.propagate = False
    return logger


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """
    Get a component logger.

    Component names are namespaced under "bundle-pipeline", so
    ``get_logger("uploader")`` is ``bundle-pipeline.uploader``.
    """
    if name != ROOT_LOGGER and not name.startswith(f"{ROOT_LOGGER}."):
        name = f"{ROOT_LOGGER}.{name}"
    return setup_logger(name)


def pipeline_loggers() -> Iterator[logging.Logger]:
    """Every logger created so far under the pipeline namespace."""
    yield logging.getLogger(ROOT_LOGGER)
    for name in list(logging.root.manager.loggerDict):
        if name.startswith(f"{ROOT_LOGGER}."):
            yield logging.getLogger(name)


def set_pipeline_level(level: Union[str, int]) -> int:
    """
    Change the level of every pipeline logger at once.

    Each component logger owns its handler and level, so the root logger's
    level alone does not reach them. Returns the applied level.
    """
    resolved = resolve_level(level)
    for logger in pipeline_loggers():
        logger.setLevel(resolved)
    return resolved


def quiet_library_loggers(level: Union[str, int] = logging.WARNING) -> None:
    """Raise the threshold of the storage, ORM and HTTP library loggers."""
    resolved = resolve_level(level)
    for name in LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(resolved)


logger = setup_logger()
