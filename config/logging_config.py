"""
Centralized logging configuration for the access gateway.

Every record is written as one JSON line to stdout and, when a file path is configured, to a
rotating log file. Records can carry correlation fields (`request_id`, `provider`,
`device_id`) passed through `extra=` or bound once with `get_logger(name, **context)`.

Guest tokens and vendor secrets are never passed to a logger; call sites log credential ids
and device ids only.
"""

import json
import logging
import logging.handlers
import os
import sys
from typing import Any, Dict, Optional

CORRELATION_FIELDS = ('request_id', 'provider', 'device_id')
UNSET = '-'
DEFAULT_LOG_DATE_FORMAT = '%Y-%m-%dT%H:%M:%S%z'


class StructuredLogFormatter(logging.Formatter):
    """
    Render a record as a single JSON object.

    Correlation fields are included only when they carry a real value, so a record from a
    module that never binds a device does not grow empty keys. An `extra_fields` mapping is
    merged into the top level.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            'timestamp': self.formatTime(record, self.datefmt),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }

        for attr in CORRELATION_FIELDS:
            value = getattr(record, attr, UNSET)
            if value not in (None, UNSET):
                log_data[attr] = value

        extra_fields = getattr(record, 'extra_fields', None)
        if isinstance(extra_fields, dict):
            log_data.update(extra_fields)

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def get_logger(name: str, **context: Any) -> logging.LoggerAdapter:
    """
    Get a logger whose records always carry the correlation fields.

    Args:
        name (str): Logger name (usually __name__).
        **context: Values for `request_id`, `provider` or `device_id` bound to every record.

    Returns:
        logging.LoggerAdapter: Adapter with the bound context; per-call `extra=` values win.
    """
    bound = {field: UNSET for field in CORRELATION_FIELDS}
    bound.update(context)
    return _ContextAdapter(logging.getLogger(name), bound)


class _ContextAdapter(logging.LoggerAdapter):
    def process(self, msg, kwargs):
        kwargs['extra'] = {**self.extra, **(kwargs.get('extra') or {})}
        return msg, kwargs


def setup_app_logging(config: Optional[dict] = None, default_level: int = logging.INFO) -> None:
    """
    Configure the root logger for the whole application.

    Args:
        config (dict, optional): Logging section of the app config. Keys:
            - 'level': log level name ("DEBUG", "INFO", ...)
            - 'file_path': log file; empty disables file logging
            - 'max_bytes' / 'backup_count': rotation settings
            - 'date_format': strftime format for the timestamp field
        default_level (int, optional): Level used when 'level' is missing or invalid.
    """
    config = config or {}

    log_level_str = str(config.get('level', logging.getLevelName(default_level))).upper()
    numeric_log_level = getattr(logging, log_level_str, default_level)
    if not isinstance(numeric_log_level, int):
        print(f"Warning: Invalid log level '{log_level_str}', using {logging.getLevelName(default_level)}.", file=sys.stderr)
        numeric_log_level = default_level

    formatter = StructuredLogFormatter(datefmt=config.get('date_format', DEFAULT_LOG_DATE_FORMAT))

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    log_file_path = config.get('file_path', 'gateway.log')
    if log_file_path:
        try:
            log_dir = os.path.dirname(log_file_path)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                log_file_path,
                maxBytes=int(config.get('max_bytes', 5 * 1024 * 1024)),
                backupCount=int(config.get('backup_count', 3)),
                encoding='utf-8',
            )
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)
        except OSError as e:
            print(f"Error setting up file logging to {log_file_path}: {e}. File logging disabled.", file=sys.stderr)

    get_logger(__name__).info(f"Gateway logging configured (level: {log_level_str})")
