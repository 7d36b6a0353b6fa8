"""
Logging configuration shared by the API server and the CLI.

Console output keeps ANSI colors, the log file gets them stripped.
"""

import logging
import re
from pathlib import Path
from typing import Optional

from api.config import settings


class ColorStripFormatter(logging.Formatter):
    """Formatter that strips ANSI color codes from log messages."""
    ansi_escape = re.compile(r'\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])')

    def format(self, record):
        message = super().format(record)
        return self.ansi_escape.sub('', message)


def _handlers(log_file: Optional[Path], log_format: str):
    handlers = []
    if log_file is not None:
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setFormatter(ColorStripFormatter(log_format))
        handlers.append(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(log_format))
    handlers.append(console_handler)
    return handlers


def setup_logging(level: Optional[str] = None, log_file: Optional[Path] = None, to_file: bool = True):
    """
    Configure root and scraper logging.

    Args:
        level: Log level name (defaults to settings.log_level)
        log_file: Log file path (defaults to settings.log_file)
        to_file: Disable to log to the console only
    """
    level_value = getattr(logging, (level or settings.log_level).upper(), logging.INFO)

    if to_file:
        if log_file is None:
            settings.log_dir.mkdir(exist_ok=True)
            log_file = settings.log_file
    else:
        log_file = None

    logging.basicConfig(
        level=level_value,
        handlers=_handlers(log_file, settings.log_format),
        force=True,  # Override any existing configuration
    )

    # Scraper loggers get their own handlers and do not propagate, so
    # each line appears once
    scraper_logger = logging.getLogger('scrapers')
    scraper_logger.propagate = False
    for handler in list(scraper_logger.handlers):
        scraper_logger.removeHandler(handler)
        handler.close()
    for handler in _handlers(log_file, settings.log_format):
        scraper_logger.addHandler(handler)
    scraper_logger.setLevel(level_value)

    # Playwright's driver is chatty at DEBUG
    logging.getLogger('asyncio').setLevel(logging.WARNING)
