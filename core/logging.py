"""
Logging configuration
"""

import json
import logging
import sys
from core.config import settings

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


class ContextFormatter(logging.Formatter):
    """Appends a record's ``error_context`` extra (from SyncException.to_dict()) as JSON."""
    
    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        context = getattr(record, "error_context", None)
        if context:
            message = f"{message} | context={json.dumps(context, default=str, sort_keys=True)}"
        return message


def setup_logging():
    """Configure application logging"""
    
    # Get log level from settings
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ContextFormatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    
    # Configure root logger
    logging.basicConfig(level=log_level, handlers=[handler])
    
    # Third-party loggers are noisy at INFO
    for noisy in ("sqlalchemy.engine", "sqlalchemy.pool", "httpx", "httpcore", "apscheduler"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    
    logger = logging.getLogger(__name__)
    logger.info(f"Logging configured at {settings.LOG_LEVEL} level ({settings.ENVIRONMENT})")
