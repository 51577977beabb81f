# =============================================================================
# clinic_core/logging/config.py
# Logging Configuration for the clinic session/sync layer
# =============================================================================

import logging
import sys
import time
from pathlib import Path
from datetime import datetime
from typing import Optional


# Log format
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Log directory
LOG_DIR = Path("logs")

# Libraries that log every HTTP request / websocket frame at INFO
NOISY_LOGGERS = ("urllib3", "httpx", "httpcore", "supabase", "realtime", "websockets")


def setup_logging(
    level: int = logging.INFO,
    log_to_file: bool = True,
    log_filename: Optional[str] = None,
) -> None:
    """
    Configure application-wide logging.

    Args:
        level: Logging level (default: INFO)
        log_to_file: Whether to also log to a file
        log_filename: Custom log filename (default: clinic_YYYY-MM-DD.log)
    """
    handlers = [logging.StreamHandler(sys.stdout)]

    if log_to_file:
        LOG_DIR.mkdir(exist_ok=True)
        if log_filename is None:
            log_filename = f"clinic_{datetime.now().strftime('%Y-%m-%d')}.log"
        handlers.append(logging.FileHandler(LOG_DIR / log_filename))

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        handlers=handlers,
        force=True,
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger("clinic_core").info("Logging initialized")


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the given name.

    Usage:
        from clinic_core.logging import get_logger
        logger = get_logger(__name__)
        logger.info("Bulk load started")
    """
    return logging.getLogger(name)


class LogContext:
    """
    Context manager for logging operation timing and status.

    Usage:
        with LogContext(logger, "Loading dataset snapshot"):
            snapshot = loader.load_all()
        # Logs: "Loading dataset snapshot... started"
        # Logs: "Loading dataset snapshot... completed (0.42s)"
    """

    def __init__(self, logger: logging.Logger, operation: str):
        self.logger = logger
        self.operation = operation
        self.start_time = None

    def __enter__(self):
        self.start_time = time.time()
        self.logger.info(f"{self.operation}... started")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        elapsed = time.time() - self.start_time

        if exc_type is None:
            self.logger.info(f"{self.operation}... completed ({elapsed:.2f}s)")
        else:
            self.logger.error(
                f"{self.operation}... failed ({elapsed:.2f}s): {exc_val}",
                exc_info=True
            )

        return False  # Don't suppress exceptions
