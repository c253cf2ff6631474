"""
Structured logging setup shared by the API and the recovery sweeper.
"""

import json
import logging
import sys
from datetime import datetime, timezone

from .config import LoggingSettings

LOGGER_NAME = "visitflow"


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging"""

    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        # Callers attach context with extra={"extra_data": {...}}
        if hasattr(record, "extra_data"):
            log_obj.update(record.extra_data)

        return json.dumps(log_obj, default=str)


def configure_logging(settings: LoggingSettings) -> logging.Logger:
    """Attach a single stdout handler to the service logger.

    Safe to call more than once; the handler is replaced rather than stacked.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(settings.level)

    for handler in list(logger.handlers):
        if getattr(handler, "_visitflow_handler", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    if settings.format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
    handler._visitflow_handler = True
    logger.addHandler(handler)
    logger.propagate = False
    return logger
