import logging
from typing import Union

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "llmrelay"


def setup_logging(level: Union[int, str] = logging.INFO, console: Console = None) -> logging.Logger:
    """
    Attach a rich console handler to the `llmrelay` logger.

    Calling it again only updates the level; no second handler is added.

    Args:
        level: Log level (number or name, e.g. "DEBUG").
        console (Console, optional): Console to log to. Defaults to stderr.

    Returns:
        logging.Logger: The package logger.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        handler = RichHandler(
            console=console or Console(stderr=True),
            rich_tracebacks=True,
            show_path=False,
        )
        handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
        logger.addHandler(handler)
        logger.propagate = False

    for handler in logger.handlers:
        handler.setLevel(level)
    return logger
