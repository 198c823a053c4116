"""
Logging configuration for the Vocalize client.

Console output at INFO (DEBUG when verbose) plus a DEBUG log file in the
config directory.
"""

import logging
import sys
from pathlib import Path

from vocalize.common.config import get_config_dir

LOG_FILENAME = "vocalize.log"


def get_log_file() -> Path:
    """Get platform-specific log file path."""
    return get_config_dir() / LOG_FILENAME


def setup_logging(
    verbose: bool = False,
    component: str = "client",
    log_file: Path | None = None,
) -> logging.Logger:
    """
    Set up logging with console and file handlers.

    Args:
        verbose: Enable verbose debug logging
        component: Component name shown in every log line
        log_file: Override the log file location

    Returns:
        Logger instance for the component
    """
    level = logging.DEBUG if verbose else logging.INFO

    verbose_formatter = logging.Formatter(
        f"%(asctime)s - [{component}] %(name)s - %(levelname)s - "
        f"[%(filename)s:%(lineno)d] - %(message)s"
    )
    console_formatter = logging.Formatter(
        f"%(asctime)s - [{component}] %(name)s - %(levelname)s - %(message)s"
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    has_file_handler = any(
        isinstance(h, logging.FileHandler) for h in root_logger.handlers
    )
    has_console_handler = any(
        isinstance(h, logging.StreamHandler)
        and not isinstance(h, logging.FileHandler)
        and h.stream == sys.stderr
        for h in root_logger.handlers
    )

    # Console goes to stderr so command output on stdout stays clean
    if not has_console_handler:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        console_handler.setFormatter(console_formatter)
        root_logger.addHandler(console_handler)

    if not has_file_handler:
        try:
            path = log_file or get_log_file()
            file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(verbose_formatter)
            root_logger.addHandler(file_handler)
        except OSError as e:
            print(f"Warning: Could not set up file logging: {e}", file=sys.stderr)

    if verbose:
        logging.getLogger("aiohttp").setLevel(logging.DEBUG)
        logging.getLogger("aiohttp.client").setLevel(logging.DEBUG)
    else:
        logging.getLogger("aiohttp").setLevel(logging.WARNING)
        logging.getLogger("filelock").setLevel(logging.WARNING)

    return logging.getLogger(component)
