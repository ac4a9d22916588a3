"""
Logging configuration for the Mirror Play client.

Sets up a console handler and a per-session log file in the config directory.
"""

import logging
import sys
from pathlib import Path

from mirrorplay.common.config import get_config_dir

LOG_FILENAME = "mirrorplay.log"


def get_log_file() -> Path:
    """Get platform-specific log file path."""
    config_dir = get_config_dir()
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir / LOG_FILENAME


def setup_logging(
    verbose: bool = False,
    component: str = "client",
    wipe_on_startup: bool = True,
    log_file: Path | None = None,
) -> logging.Logger:
    """
    Set up logging with file and console handlers.

    Args:
        verbose: Enable verbose debug logging on the console
        component: Component name for log messages (e.g., "client", "cli")
        wipe_on_startup: Whether to wipe the log file on startup
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
    if not has_file_handler:
        root_logger.handlers.clear()

    # Console goes to stderr so CLI output on stdout stays clean
    has_console_handler = any(
        type(h) is logging.StreamHandler and h.stream is sys.stderr
        for h in root_logger.handlers
    )
    if not has_console_handler:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        console_handler.setFormatter(console_formatter)
        root_logger.addHandler(console_handler)

    if not has_file_handler:
        try:
            path = log_file or get_log_file()
            if wipe_on_startup and path.exists():
                path.unlink()

            file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(verbose_formatter)
            root_logger.addHandler(file_handler)
            root_logger.debug(f"Logs written to: {path}")
        except OSError as e:
            root_logger.warning(f"Could not set up file logging: {e}")

    if verbose:
        logging.getLogger("aiohttp").setLevel(logging.DEBUG)
        logging.getLogger("aiohttp.client").setLevel(logging.DEBUG)
        logging.getLogger(component).debug("Verbose logging enabled")
    else:
        logging.getLogger("aiohttp").setLevel(logging.WARNING)

    return logging.getLogger(component)
