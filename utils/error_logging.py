"""
Error logging configuration for separate system and step error logs.

This module sets up dedicated loggers for different error types so failed
runbook steps can be investigated after the fact, independently of the
regular application log.
"""
import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path


# Ensure logs directory exists
LOG_DIR = Path(os.environ.get("RUNBOOK_LOG_DIR", "persistent/logs"))
LOG_DIR.mkdir(parents=True, exist_ok=True)


def setup_error_loggers():
    """
    Set up separate loggers for system errors and step errors.

    Returns:
        tuple: (system_logger, step_logger)
    """
    detailed_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S UTC'
    )

    # System error logger - for store, config and API errors
    system_logger = logging.getLogger('errors.system')
    system_logger.setLevel(logging.ERROR)
    system_handler = RotatingFileHandler(
        LOG_DIR / 'system_errors.log',
        maxBytes=10*1024*1024,  # 10MB
        backupCount=5
    )
    system_handler.setFormatter(detailed_formatter)
    system_logger.addHandler(system_handler)

    # Step error logger - for failures inside runbook steps
    step_logger = logging.getLogger('errors.step')
    step_logger.setLevel(logging.ERROR)
    step_handler = RotatingFileHandler(
        LOG_DIR / 'step_errors.log',
        maxBytes=10*1024*1024,  # 10MB
        backupCount=5
    )
    step_handler.setFormatter(detailed_formatter)
    step_logger.addHandler(step_handler)

    return system_logger, step_logger


# Create singleton instances
system_error_logger, step_error_logger = setup_error_loggers()
