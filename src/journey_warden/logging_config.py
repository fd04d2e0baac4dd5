"""Logging setup for the journey-warden CLI."""

import logging

from rich.console import Console
from rich.logging import RichHandler

LOG_FORMAT = "%(message)s"
DATE_FORMAT = "[%X]"

# Libraries that are chatty at INFO
NOISY_LOGGERS = ("httpx", "urllib3", "langfuse", "backoff")


def setup_logging(level: str = "INFO", console: Console | None = None) -> None:
    """Route all log records through a single rich handler on stderr."""
    handler = RichHandler(
        console=console or Console(stderr=True),
        rich_tracebacks=True,
        show_path=False,
        markup=False,
    )

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level.upper())

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    handler.setFormatter(formatter)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).debug("Logging configured at %s", level.upper())
