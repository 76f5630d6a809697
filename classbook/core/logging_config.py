import os
import logging
import logging.handlers
import re
import sys
from pathlib import Path


class SecurityFilter(logging.Filter):
    """Scrub tokens, secrets and attendee contact data from log records"""

    SENSITIVE_PATTERNS = [
        # JWT tokens (eyJ...)
        (re.compile(r'eyJ[A-Za-z0-9_-]*\.[A-Za-z0-9_-]*\.[A-Za-z0-9_-]*'), '[JWT_TOKEN]'),
        (re.compile(r'Bearer\s+[A-Za-z0-9._-]+', re.IGNORECASE), 'Bearer [TOKEN]'),
        (re.compile(r'secret["\s]*[:=]["\s]*[^,}\s]+', re.IGNORECASE), 'secret: [HIDDEN]'),
        # Attendee emails keep their domain only
        (re.compile(r'[A-Za-z0-9._%+-]+@([A-Za-z0-9.-]+\.[A-Za-z]{2,})'), r'[EMAIL]@\1'),
        # QR check-in tokens
        (re.compile(r'qr_code["\'\s]*[:=]["\'\s]*[A-Fa-f0-9]{16,}', re.IGNORECASE), 'qr_code: [QR]'),
    ]

    def scrub(self, text: str) -> str:
        for pattern, replacement in self.SENSITIVE_PATTERNS:
            text = pattern.sub(replacement, text)
        return text

    def filter(self, record):
        record.msg = self.scrub(str(record.msg))
        # Services log recipients as %s arguments, not in the format string
        if isinstance(record.args, tuple):
            record.args = tuple(
                self.scrub(arg) if isinstance(arg, str) else arg for arg in record.args
            )
        elif isinstance(record.args, dict):
            record.args = {
                key: self.scrub(value) if isinstance(value, str) else value
                for key, value in record.args.items()
            }
        return True


def setup_logging():
    """
    Configure logging for the API process and the background scheduler.

    LOG_LEVEL / SQL_LOG_LEVEL set the levels, LOG_FORMAT picks text or json,
    LOG_FILE_PATH points the rotating file handler (empty disables it) and
    ENABLE_SECURITY_FILTER turns on SecurityFilter for every handler.
    SCHEDULER_LOG_LEVEL lets the sweep and dispatch loops be quieter than
    request handling.
    """
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    sql_log_level = os.getenv("SQL_LOG_LEVEL", "WARNING").upper()
    scheduler_log_level = os.getenv("SCHEDULER_LOG_LEVEL", log_level).upper()
    log_format = os.getenv("LOG_FORMAT", "text").lower()

    default_log_path = Path(__file__).resolve().parents[2] / "logs" / "classbook.log"
    log_file_path = os.getenv("LOG_FILE_PATH", str(default_log_path))
    enable_security_filter = os.getenv("ENABLE_SECURITY_FILTER", "false").lower() == "true"

    if log_format == "json":
        formatter = logging.Formatter(
            '{"timestamp": "%(asctime)s", "level": "%(levelname)s", '
            '"logger": "%(name)s", "message": "%(message)s"}'
        )
    else:
        formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    level = getattr(logging, log_level, logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file_path:
        Path(log_file_path).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.handlers.RotatingFileHandler(
            log_file_path,
            maxBytes=10*1024*1024,  # 10MB
            backupCount=5
        ))

    security_filter = SecurityFilter() if enable_security_filter else None
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        if security_filter:
            handler.addFilter(security_filter)
        root_logger.addHandler(handler)

    logging.getLogger('sqlalchemy.engine').setLevel(getattr(logging, sql_log_level, logging.WARNING))
    logging.getLogger('classbook').setLevel(level)
    for name in ('classbook.services.scheduler', 'classbook.services.notification_dispatcher'):
        logging.getLogger(name).setLevel(getattr(logging, scheduler_log_level, level))

    # Alerts must get through whatever LOG_LEVEL says
    logging.getLogger('classbook.alerts').setLevel(logging.WARNING)

    root_logger.info(
        "Logging initialized level=%s sql=%s scheduler=%s file=%s",
        log_level, sql_log_level, scheduler_log_level, log_file_path or "-",
    )
    return root_logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"classbook.{name}")


def log_operator_alert(event_type: str, details: str):
    """Log events that need an operator's attention"""
    get_logger("alerts").critical("Operator alert: %s - %s", event_type, details)
