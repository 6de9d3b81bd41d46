"""
Logging setup and configuration for Salsa Sync.

Provides root logger configuration with a stderr handler, optional daily
rotating file output, JSON or plain-text lines, and scrubbing of API keys
from every log line.
"""

import os
import re
import json
import logging
import logging.handlers
from typing import Dict, Any

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s - %(message)s'

LOG_FORMATS = ('json', 'text')

# Level names accepted from configuration, including the spellings used by
# other tooling that shares the same environment files.
LEVEL_ALIASES = {
    'trace': logging.DEBUG,
    'debug': logging.DEBUG,
    'info': logging.INFO,
    'warn': logging.WARNING,
    'warning': logging.WARNING,
    'error': logging.ERROR,
    'fatal': logging.CRITICAL,
    'panic': logging.CRITICAL,
}


def parse_level(name: str) -> int:
    """
    Translate a configured level name into a logging level.

    Raises:
        ValueError: If the name is not a known level
    """
    try:
        return LEVEL_ALIASES[str(name).strip().lower()]
    except KeyError:
        raise ValueError(f"Unknown log level: {name}")


class SensitiveDataFilter(logging.Filter):
    """Filter to scrub API keys and bearer tokens from log messages."""

    SENSITIVE_KEYWORDS = [
        'api_key', 'apikey', 'storage_api_key', 'console_api_key',
        'token', 'secret', 'password', 'authorization'
    ]

    def filter(self, record):
        """Filter out sensitive data from log records."""
        if record.args:
            record.msg = record.getMessage()
            record.args = None

        msg = str(record.msg)

        for keyword in self.SENSITIVE_KEYWORDS:
            # key=value
            msg = re.sub(rf'({keyword}\s*=\s*)[^\s,}}\]]+', r'\1****', msg, flags=re.IGNORECASE)
            # "key": "value" and 'key': 'value'
            msg = re.sub(rf'(["\']{keyword}["\']\s*:\s*["\'])[^"\']*(["\'])', r'\1****\2', msg,
                         flags=re.IGNORECASE)

        msg = re.sub(r'(X-API-Key["\']?\s*[:=]\s*["\']?)[^\s,"\'}}\]]+', r'\1****', msg, flags=re.IGNORECASE)
        msg = re.sub(r'(Bearer\s+)[^\s,"\'}}\]]+', r'\1****', msg, flags=re.IGNORECASE)

        record.msg = msg
        return True


class JsonFormatter(logging.Formatter):
    """Formatter that writes one JSON object per log record."""

    def format(self, record):
        entry = {
            'time': self.formatTime(record, '%Y-%m-%dT%H:%M:%S%z'),
            'level': record.levelname.lower(),
            'logger': record.name,
            'msg': record.getMessage(),
        }
        if record.exc_info:
            entry['error'] = self.formatException(record.exc_info)
        if record.stack_info:
            entry['stack'] = self.formatStack(record.stack_info)
        return json.dumps(entry, default=str)


def build_formatter(log_format: str) -> logging.Formatter:
    """
    Create the formatter for a configured log format.

    Raises:
        ValueError: If the format is not json or text
    """
    name = str(log_format).strip().lower()
    if name == 'json':
        return JsonFormatter()
    if name == 'text':
        return logging.Formatter(LOG_FORMAT)
    raise ValueError(f"Unknown log format: {log_format}")


class LoggingManager:
    """
    Manages logging configuration for Salsa Sync.

    Configures the root logger once per process; later calls are ignored.
    """

    def __init__(self):
        self.configured = False
        self.log_dir = None
        self.retention_days = 7

    def setup_logging(self, config: Dict[str, Any]) -> None:
        """
        Set up logging based on configuration.

        Args:
            config: Application configuration dictionary (log_level, log_format, log_dir)
        """
        if self.configured:
            return

        level = parse_level(config.get('log_level', 'info'))
        self.log_dir = config.get('log_dir')
        self.retention_days = int(config.get('log_retention_days', 7))

        root_logger = logging.getLogger()
        root_logger.setLevel(level)
        root_logger.handlers.clear()

        formatter = build_formatter(config.get('log_format', 'json'))
        sensitive_filter = SensitiveDataFilter()

        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        console_handler.addFilter(sensitive_filter)
        root_logger.addHandler(console_handler)

        if self.log_dir:
            os.makedirs(self.log_dir, exist_ok=True)
            file_handler = logging.handlers.TimedRotatingFileHandler(
                filename=os.path.join(self.log_dir, 'salsa-sync.log'),
                when='midnight',
                interval=1,
                backupCount=self.retention_days,
                encoding='utf-8'
            )
            file_handler.suffix = '%Y-%m-%d'
            file_handler.setLevel(level)
            file_handler.setFormatter(formatter)
            file_handler.addFilter(sensitive_filter)
            root_logger.addHandler(file_handler)

        self.configured = True

        logging.getLogger(__name__).debug(
            f"Logging configured: level={logging.getLevelName(level)}, dir={self.log_dir or '-'}"
        )

    def reset(self) -> None:
        """Drop all root handlers so logging can be configured again."""
        root_logger = logging.getLogger()
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
            handler.close()
        self.configured = False


_logging_manager = LoggingManager()


def setup_logging(config: Dict[str, Any]) -> None:
    """
    Convenience function to set up logging.

    Args:
        config: Application configuration dictionary
    """
    _logging_manager.setup_logging(config)


def reset_logging() -> None:
    """Undo setup_logging; used between test runs."""
    _logging_manager.reset()
