"""Logging setup and batch progress formatting."""

from __future__ import annotations

import logging
import sys

_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_NOISY_LOGGERS = ("httpx", "httpcore", "openai", "urllib3")


def configure_logging(level: int | str = logging.INFO) -> None:
    """Install a single stdout handler on the root logger."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def progress_label(index: int, total: int) -> str:
    """Render batch progress, zero padded to the width of `total`: `[01/50]:`."""
    width = len(str(total))
    return f"[{index:0{width}d}/{total}]:"
