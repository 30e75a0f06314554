"""Logging configuration."""
import logging
import sys
from pathlib import Path
from typing import Optional

import structlog

from trade_escrow.core.config import LoggingConfig, logging_config


def setup_logging(config: Optional[LoggingConfig] = None, json_output: bool = True):
    """Configure stdlib logging and structlog.

    Events go to stderr and to the configured log file. Console output is
    rendered as JSON unless json_output is False.
    """
    config = config or logging_config
    level = getattr(logging, config.log_level.upper())

    log_path = Path(config.log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level)

    renderer = (
        structlog.processors.JSONRenderer() if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    file_handler = logging.FileHandler(config.log_file)
    file_handler.setLevel(level)
    logging.getLogger().addHandler(file_handler)
