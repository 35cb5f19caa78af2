"""
Unified logging system for HiveChat.

Every module logs through the standard library with
``logging.getLogger(__name__)``; this package only decides where records go.

Usage:
    from HiveChat.core.logging import get_logger

    logger = get_logger(__name__)
    logger.info("Server started")

Configuration:
    from HiveChat.core.logging import configure_logging, LogConfig

    configure_logging(LogConfig(level="DEBUG", file_output=False))

or pick a preset from the ``HIVECHAT_ENV`` environment variable:

    from HiveChat.core.logging import auto_configure
    auto_configure()
"""

import json
import logging
import logging.handlers
import os
import sys
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional


@dataclass
class LogConfig:
    """
    Configuration for the logging system.

    Attributes:
        level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for log files
        console_output: Whether to output to console
        file_output: Whether to output to rotating files
        json_output: Write file records as JSON lines instead of text
        max_bytes: Maximum size of a log file before rotation
        backup_count: Number of rotated files to keep
        format_string: Custom format string for text records
        date_format: Date format for text records
        component_levels: Per-logger level overrides
    """
    level: str = "INFO"
    log_dir: str = "./logs"
    console_output: bool = True
    file_output: bool = True
    json_output: bool = False
    max_bytes: int = 10 * 1024 * 1024
    backup_count: int = 5
    format_string: Optional[str] = None
    date_format: str = "%Y-%m-%d %H:%M:%S"
    component_levels: Dict[str, str] = field(default_factory=dict)


class ColoredFormatter(logging.Formatter):
    """Formatter that colors the level name on ANSI terminals."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def __init__(self, fmt: str, datefmt: Optional[str] = None, use_colors: bool = True):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors and sys.platform != 'win32'

    def format(self, record: logging.LogRecord) -> str:
        if not self.use_colors or record.levelname not in self.COLORS:
            return super().format(record)
        original = record.levelname
        record.levelname = f"{self.COLORS[original]}{original}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = original


class JsonFormatter(logging.Formatter):
    """Formatter that emits one JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }
        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)
        extra = getattr(record, 'extra_data', None)
        if isinstance(extra, dict):
            log_data.update(extra)
        return json.dumps(log_data, default=str)


def get_default_format() -> str:
    """Get the default log format string."""
    return "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def get_detailed_format() -> str:
    """Get a detailed log format string with call-site context."""
    return (
        "%(asctime)s - %(name)s - %(levelname)s - "
        "[%(filename)s:%(lineno)d - %(funcName)s] - %(message)s"
    )


_installed_handlers: List[logging.Handler] = []


def configure_logging(config: LogConfig) -> None:
    """
    Configure the root logger from a LogConfig.

    Handlers installed by a previous call are replaced, handlers added
    by other code (pytest's capture handler, for instance) are left alone.
    """
    level = getattr(logging, config.level.upper())
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in _installed_handlers:
        root_logger.removeHandler(handler)
        handler.close()
    _installed_handlers.clear()

    if config.console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(
            ColoredFormatter(config.format_string or get_default_format(), config.date_format)
        )
        _installed_handlers.append(console_handler)

    if config.file_output:
        Path(config.log_dir).mkdir(parents=True, exist_ok=True)
        if config.json_output:
            formatter: logging.Formatter = JsonFormatter()
        else:
            formatter = logging.Formatter(
                config.format_string or get_detailed_format(), config.date_format
            )

        file_handler = logging.handlers.RotatingFileHandler(
            os.path.join(config.log_dir, "hivechat.log"),
            maxBytes=config.max_bytes,
            backupCount=config.backup_count,
            encoding='utf-8'
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        _installed_handlers.append(file_handler)

        error_handler = logging.handlers.RotatingFileHandler(
            os.path.join(config.log_dir, "hivechat_errors.log"),
            maxBytes=config.max_bytes,
            backupCount=config.backup_count,
            encoding='utf-8'
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(formatter)
        _installed_handlers.append(error_handler)

    for handler in _installed_handlers:
        root_logger.addHandler(handler)

    for component, component_level in config.component_levels.items():
        logging.getLogger(component).setLevel(getattr(logging, component_level.upper()))

    logging.getLogger(__name__).info("Logging configured with level: %s", config.level)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance (typically ``get_logger(__name__)``)."""
    return logging.getLogger(name)


def create_development_config() -> LogConfig:
    """Verbose console and file logging for local work."""
    return LogConfig(
        level="DEBUG",
        log_dir="./logs/dev",
        max_bytes=5 * 1024 * 1024,
        backup_count=3,
        format_string=get_detailed_format(),
        component_levels={
            "websockets": "WARNING",
            "aiohttp": "WARNING",
            "uvicorn.access": "WARNING",
        }
    )


def create_production_config() -> LogConfig:
    """JSON file logging only."""
    return LogConfig(
        level="INFO",
        log_dir="./logs/prod",
        console_output=False,
        json_output=True,
        max_bytes=50 * 1024 * 1024,
        backup_count=10,
        component_levels={
            "websockets": "ERROR",
            "aiohttp": "ERROR",
        }
    )


def create_testing_config() -> LogConfig:
    """Console only, terse."""
    return LogConfig(
        level="DEBUG",
        file_output=False,
        format_string="%(levelname)s - %(name)s - %(message)s",
        component_levels={"websockets": "ERROR"}
    )


def auto_configure(env: Optional[str] = None) -> None:
    """
    Configure logging from an environment name.

    Args:
        env: development, production or testing. Read from HIVECHAT_ENV when None.
    """
    if env is None:
        env = os.environ.get("HIVECHAT_ENV", "development").lower()

    presets = {
        "development": create_development_config,
        "dev": create_development_config,
        "production": create_production_config,
        "prod": create_production_config,
        "testing": create_testing_config,
        "test": create_testing_config,
    }
    configure_logging(presets.get(env, create_development_config)())
    get_logger(__name__).info("Logging auto-configured for environment: %s", env)


__all__ = [
    'LogConfig',
    'ColoredFormatter',
    'JsonFormatter',
    'get_logger',
    'configure_logging',
    'create_development_config',
    'create_production_config',
    'create_testing_config',
    'auto_configure',
    'get_default_format',
    'get_detailed_format',
]
