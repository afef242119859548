"""Logging configuration for the phab command."""

import logging

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "phabtree"


def setup_logging(verbose: bool = False) -> None:
    """
    Send phabtree logs to stderr through rich.

    Stdout is left to the report so ``--print-json`` output stays parseable.
    Safe to call more than once; the previous handler is replaced.
    """
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = RichHandler(
        console=Console(stderr=True),
        show_path=False,
        show_time=verbose,
        markup=False,
        rich_tracebacks=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    logger.propagate = False

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)
