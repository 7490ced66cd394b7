"""
Loguru sinks for the carecadence CLI and long-running engine processes.

Library modules log through ``loguru.logger`` directly and never add sinks;
only entry points call :func:`setup_logging`.
"""

import os
import sys

from loguru import logger

CONSOLE_FORMAT = "<level>{level: <7}</level> <dim>{name}</dim> {message}"
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <7} | {name}:{function}:{line} | {message}"
DEFAULT_LOG_FILENAME = "carecadence.log"


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    rotation: str = "10 MB",
    retention: str = "14 days",
) -> None:
    """Replace all sinks with stderr plus an optional rotating file.

    The file sink is enqueued so reminder timers firing on the event loop
    never block on disk writes.
    """
    level = level.upper()
    logger.remove()
    logger.add(sys.stderr, level=level, format=CONSOLE_FORMAT)
    if log_file:
        logger.add(
            os.path.expanduser(log_file),
            level=level,
            format=FILE_FORMAT,
            rotation=rotation,
            retention=retention,
            enqueue=True,
        )


def setup_logging_from_config(config) -> None:
    """Configure sinks from ``logging.level`` and ``logging.file``.

    ``logging.file: true`` means "``carecadence.log`` in ``paths.log_dir``".
    """
    log_file = config.get("logging.file")
    if log_file is True:
        log_dir = config.get("paths.log_dir") or os.path.join(config.get_data_dir(), "logs")
        log_file = os.path.join(log_dir, DEFAULT_LOG_FILENAME)
    setup_logging(level=str(config.get("logging.level", "WARNING")), log_file=log_file or None)
