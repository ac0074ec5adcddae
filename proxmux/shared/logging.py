"""Structured logging for proxmux.

Every component logs through a structlog logger bound with its component
name, so events carry key/value context (port, key, target, client_ip)
instead of formatted strings:

    from proxmux.shared.logging import get_logger

    logger = get_logger("dispatcher")
    logger.info("Listener started", port=2222, routes=3)
"""

import logging
from typing import Optional

import structlog
from structlog.processors import JSONRenderer, TimeStamper

from .config import Config
from .python_logger_config import setup_python_logging, silence_noisy_loggers


def configure_logging(log_level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """Configure stdlib logging and structlog for the process.

    Args:
        log_level: Level name, defaults to ``Config.LOG_LEVEL``
        log_format: ``console`` or ``json``, defaults to ``Config.LOG_FORMAT``
    """
    log_level = (log_level or Config.LOG_LEVEL).upper()
    log_format = log_format or Config.LOG_FORMAT

    setup_python_logging(log_level=log_level, use_colors=log_format == "console")
    silence_noisy_loggers()

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if log_format == "json":
        processors.append(JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.getLogger("proxmux").debug("Logging configured: level=%s format=%s", log_level, log_format)


def get_logger(component: str):
    """Get a structlog logger bound with the component name.

    The returned proxy resolves lazily, so module-level loggers created
    before ``configure_logging`` still pick up the final configuration.
    """
    return structlog.get_logger(f"proxmux.{component}", component=component)
