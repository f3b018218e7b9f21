"""
Console logging.

Crawl progress and warnings go through the standard logging module and are
rendered by rich on stderr; plain command output stays on stdout.
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler


console = Console(stderr=True)


def setup_logging(verbose: bool = False) -> logging.Logger:
    """
    Configure the `unitracker` logger once and return it.
    """
    logger = logging.getLogger("unitracker")
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    # Prevent adding handlers multiple times
    if logger.handlers:
        return logger

    handler = RichHandler(console=console, show_path=False, rich_tracebacks=True)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.propagate = False

    # requests/urllib3 chatter only matters when something breaks
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    return logger
