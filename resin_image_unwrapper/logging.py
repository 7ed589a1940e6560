from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from loguru import Logger

from loguru import logger

DEFAULT_LOG_DIR = Path(
    os.environ.get(
        "RESIN_UNWRAP_LOG_DIR",
        Path.home() / ".local" / "state" / "resin-image-unwrapper" / "logs",
    )
)

# Console prefixes; anything not listed prints its own level name.
LEVEL_PREFIXES = {
    "TRACE": "DEBUG",
    "DEBUG": "DEBUG",
    "INFO": "LOG",
    "SUCCESS": "LOG",
    "WARNING": "WARNING",
    "ERROR": "ERROR",
    "CRITICAL": "ERROR",
}


def _console_format(record) -> str:
    """Render a record as ``[PREFIX] message``."""
    level_name = record["level"].name
    prefix = LEVEL_PREFIXES.get(level_name, level_name)
    # Callable formats must supply their own newline and exception slot.
    return f"[{prefix}] {{message}}\n{{exception}}"


def setup_logging(
    *,
    debug: bool = False,
    log_dir: Path | None = None,
    file_logging: bool = True,
) -> Logger:
    """
    Setup console and file logging for a single unwrap run.

    Sinks:
    - stderr: ``[LOG]`` / ``[WARNING]`` / ``[ERROR]`` lines, DEBUG when enabled
    - unwrap.log: timestamped INFO+ (DEBUG+ with ``debug``) events,
      rotated at 5 MB and kept for 7 days

    Args:
        debug: Enable DEBUG level logging (every external command is logged)
        log_dir: Custom log directory (defaults to RESIN_UNWRAP_LOG_DIR)
        file_logging: Disable to keep output on the console only
    """
    logger.remove()
    logger.configure(extra={"tags": [], "source": "system"})

    level = "DEBUG" if debug else "INFO"

    # SINK 1: Console (stderr) - User-facing
    logger.add(
        sys.stderr,
        level=level,
        backtrace=False,
        diagnose=False,
        colorize=False,
        format=_console_format,
    )

    if not file_logging:
        return logger

    log_dir = log_dir or DEFAULT_LOG_DIR
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except OSError as error:
        logger.warning(f"Log directory {log_dir} unavailable: {error}")
        return logger

    # SINK 2: Run log
    logger.add(
        log_dir / "unwrap.log",
        level=level,
        rotation="5 MB",
        retention="7 days",
        compression="zip",
        backtrace=debug,
        diagnose=False,
        format=(
            "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
            "{level: <8} | "
            "{extra[source]: <10} | "
            "{message}"
        ),
    )

    return logger


def get_logger(
    *,
    tags: Iterable[str] | None = None,
    source: str | None = None,
) -> Logger:
    """
    Get a logger with bound context.

    Args:
        tags: Tags for filtering (e.g., ["loop", "storage"])
        source: Source component (e.g., "loop", "mount", "convert")

    Returns:
        Logger with bound context
    """
    extras: dict[str, object] = {}
    if tags is not None:
        extras["tags"] = list(tags)
    if source is not None:
        extras["source"] = source
    return logger.bind(**extras)


class LoggerFactory:
    """
    Factory for creating domain-specific loggers with automatic context.
    """

    @staticmethod
    def for_loop() -> Logger:
        """Logger for loop device attach/detach."""
        return logger.bind(source="loop", tags=["loop", "storage"])

    @staticmethod
    def for_mount() -> Logger:
        """Logger for mount and unmount operations."""
        return logger.bind(source="mount", tags=["mount", "storage"])

    @staticmethod
    def for_payload() -> Logger:
        """Logger for payload discovery and extraction."""
        return logger.bind(source="payload", tags=["payload", "storage"])

    @staticmethod
    def for_boot() -> Logger:
        """Logger for boot partition configuration migration."""
        return logger.bind(source="boot", tags=["boot", "config"])

    @staticmethod
    def for_convert() -> Logger:
        """Logger for qemu-img conversions."""
        return logger.bind(source="convert", tags=["convert", "qemu-img"])

    @staticmethod
    def for_system() -> Logger:
        """Logger for system operations (startup, shutdown, config)."""
        return logger.bind(source="system", tags=["system"])
