"""
Logging setup. Modules log through logging.getLogger(__name__).
"""
from __future__ import annotations

import logging
import sys


def configure_logging(level: str = "INFO") -> None:
    """Install a single stdout handler on the root logger."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    root_logger.setLevel(level.upper())
    root_logger.addHandler(handler)

    # uvicorn access lines are noisy with chat polling
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
