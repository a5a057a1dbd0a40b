"""Centralized logging setup for mirrorkit.

Log records go to stderr through rich so they interleave cleanly with the
CLI's console output on stdout.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler

LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def setup_logging(level: str = "info") -> None:
    """Install a rich handler on the root logger once and set its level."""
    root_logger = logging.getLogger()
    root_logger.setLevel(LEVELS.get(str(level).lower(), logging.INFO))

    if not any(isinstance(h, RichHandler) for h in root_logger.handlers):
        handler = RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=True)
        handler.setFormatter(logging.Formatter("%(name)s - %(message)s"))
        root_logger.addHandler(handler)

    # httpx logs every request at INFO; readiness polling would flood the output.
    logging.getLogger("httpx").setLevel(logging.WARNING)
