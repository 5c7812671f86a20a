"""
Logging configuration for CFB Pick'em

Console output, a main application log, an error log, and two audit logs:
scheduler.log for background jobs and scoring.log for every point change.
"""

import copy
import logging
import logging.handlers
import os

from flask import has_request_context, request

CONSOLE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DEBUG_CONSOLE_FORMAT = CONSOLE_FORMAT + " [%(filename)s:%(lineno)d]"
REQUEST_FORMAT = CONSOLE_FORMAT + " [%(method)s %(url)s] [%(remote_addr)s]"
ERROR_FORMAT = CONSOLE_FORMAT + " [%(pathname)s:%(lineno)d] [%(method)s %(url)s]"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Loggers whose records also go to a dedicated audit file
AUDIT_LOGS = {
    "scheduler.log": ["cfb_pickem.services.scheduler_service"],
    "scoring.log": ["cfb_pickem.utils.scoring"],
}

QUIET_LOGGERS = ["werkzeug", "urllib3", "requests", "apscheduler"]


class RequestContextFilter(logging.Filter):
    """Add request context to log records"""

    def filter(self, record):
        if has_request_context():
            record.url = request.url
            record.remote_addr = request.remote_addr
            record.method = request.method
        else:
            record.url = "N/A"
            record.remote_addr = "N/A"
            record.method = "N/A"
        return True


class ColoredFormatter(logging.Formatter):
    """Colored formatter for console output"""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record):
        # Other handlers share the record, color a copy
        record = copy.copy(record)
        color = self.COLORS.get(record.levelname)
        if color:
            record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


def _rotating_handler(path, level, fmt, max_mb=5, backups=3):
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_mb * 1024 * 1024, backupCount=backups
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=DATE_FORMAT))
    handler.addFilter(RequestContextFilter())
    return handler


def setup_logging(app):
    """
    Setup logging for the Flask application

    Args:
        app: Flask application instance
    """
    log_level = getattr(logging, app.config.get("LOG_LEVEL", "INFO").upper(), logging.INFO)
    log_dir = app.config.get("LOG_DIR", "logs")

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Clear existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if app.config.get("LOG_TO_CONSOLE", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_level)
        if app.debug:
            console_handler.setFormatter(
                ColoredFormatter(DEBUG_CONSOLE_FORMAT, datefmt="%H:%M:%S")
            )
        else:
            console_handler.setFormatter(
                logging.Formatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT)
            )
        console_handler.addFilter(RequestContextFilter())
        root_logger.addHandler(console_handler)

    if app.config.get("LOG_TO_FILE", True):
        os.makedirs(log_dir, exist_ok=True)

        root_logger.addHandler(
            _rotating_handler(
                os.path.join(log_dir, "cfb_pickem.log"),
                log_level,
                REQUEST_FORMAT,
                max_mb=10,
                backups=5,
            )
        )
        root_logger.addHandler(
            _rotating_handler(
                os.path.join(log_dir, "errors.log"), logging.ERROR, ERROR_FORMAT
            )
        )

        for filename, logger_names in AUDIT_LOGS.items():
            handler = _rotating_handler(
                os.path.join(log_dir, filename), logging.INFO, CONSOLE_FORMAT
            )
            for name in logger_names:
                logging.getLogger(name).addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    app.logger.info(f"Logging configured - Level: {logging.getLevelName(log_level)}")
