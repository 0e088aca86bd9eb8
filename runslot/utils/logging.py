"""
Centralized logging configuration.

This module provides a consistent logging setup across all runslot components.
It configures Python's standard logging with a single format, optional file
output, and a factory for namespaced loggers.

The module uses a global flag to ensure logging is only configured once,
even if setup_logging() is called multiple times. All runslot loggers use
the "runslot." namespace prefix for easy filtering.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

_CONFIGURED = False

def setup_logging(level: str = "INFO",
                  log_file: Optional[Path] = None,
                  verbose: bool = False
                  ) -> None:
    """
    Configure the global logging system for runslot.

    Should be called once at application startup, typically from the CLI
    callback. Subsequent calls are ignored to prevent duplicate handlers.

    Verbose mode adds source location information (module:line) to each
    log message.

    :param level: Logging level as string ("DEBUG", "INFO", "WARNING",
                 "ERROR", "CRITICAL"). Case-insensitive.
    :param log_file: Optional path to write logs to a file. The parent
                    directory is created if it doesn't exist.
    :param verbose: If True, includes logger name and line number in
                   log messages.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    if verbose:
        fmt = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s"
    else:
        fmt = "%(asctime)s | %(levelname)-8s | %(message)s"

    datefmt = "%Y-%m-%d %H:%M:%S"

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=fmt,
        datefmt=datefmt,
        handlers=handlers,
    )

    # Quiet noisy third-party loggers
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("docker").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    """
    Create a namespaced logger for runslot components.

    :param name: Component name, e.g. "scheduler" or "executor.local".
                The "runslot." prefix is added automatically.
    :return: logging.Logger under the "runslot." namespace.
    """
    return logging.getLogger(f"runslot.{name}")
