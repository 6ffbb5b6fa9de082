"""
Logging configuration.

Configures the loguru logger for application and worker processes.
"""

import sys

from loguru import logger

from settlement.config.settings import Settings, settings as default_settings


def setup_logging(settings: Settings | None = None) -> None:
    """
    Configure logger with stderr output and file rotation.

    Args:
        settings: Settings to read level and file path from
    """
    settings = settings or default_settings

    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.log_level,
        backtrace=settings.debug,
        diagnose=settings.debug,
    )

    if settings.log_file:
        logger.add(
            settings.log_file,
            rotation="1 day",
            retention="30 days",
            level=settings.log_level,
            encoding="utf-8",
            enqueue=True,
        )

    logger.info(
        f"Logging configured: level={settings.log_level}, "
        f"environment={settings.environment}"
    )
