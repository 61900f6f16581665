"""
Logging setup for the smart transcriber.
"""

import logging
import os
import sys
from datetime import datetime

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def default_log_dir():
    """Return the directory log files are written to when none is given."""
    return os.path.join(os.path.expanduser("~"), ".smart_transcriber", "logs")


def setup_logging(level=logging.INFO, log_dir=None):
    """
    Set up logging for the application.

    Args:
        level: Logging level (default: INFO)
        log_dir: Directory for the daily log file (default: ~/.smart_transcriber/logs)

    Returns:
        Logger instance
    """
    logs_dir = log_dir or default_log_dir()
    os.makedirs(logs_dir, exist_ok=True)

    # One log file per day
    timestamp = datetime.now().strftime("%Y-%m-%d")
    log_file = os.path.join(logs_dir, f"smart_transcriber_{timestamp}.log")

    # Start from a clean root logger so repeated calls don't duplicate output
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    root_logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT)

    # File handler with explicit UTF-8 so transcripts in any language are safe
    try:
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
    except OSError as e:
        print(f"Error setting up file logging: {e}", file=sys.stderr)

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    root_logger.addHandler(stream_handler)

    logger = logging.getLogger()
    logger.info("Logging initialized (using UTF-8 for file)")
    logger.info(f"Log file: {log_file}")

    return logger
