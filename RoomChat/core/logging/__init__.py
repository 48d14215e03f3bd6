"""
Logging setup for the RoomChat server.

Modules never configure logging themselves; they call
``logging.getLogger(__name__)`` and log with %-style arguments. This
package decides where records end up, per deployment profile:

    development  DEBUG to the console and rotating files under ./logs/dev
    production   INFO as JSON lines to rotating files under ./logs/prod
    testing      DEBUG to the console only

The file outputs are ``roomchat.log`` and ``roomchat_errors.log`` (ERROR
and above). Library loggers that chatter at DEBUG (``websockets``,
``aiohttp``) are raised to a quieter level.

Usage:
    from RoomChat.core.logging import auto_configure

    auto_configure("production")
"""

import json
import logging
import logging.handlers
import os
import sys
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional

# Record attributes copied into JSON lines when a caller passes them via ``extra``.
CONTEXT_FIELDS = ("conn_id", "user", "room")

CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"


@dataclass
class LogConfig:
    """
    Where and how much to log.

    Attributes:
        level: Root level name (DEBUG, INFO, WARNING, ERROR)
        log_dir: Directory for the rotating files
        console_output: Write to stdout
        file_output: Write ``roomchat.log`` / ``roomchat_errors.log``
        json_output: JSON lines instead of text in the files
        max_bytes: Rotation size per file
        backup_count: Rotated files kept
        format_string: Text format (console and text files)
        date_format: ``asctime`` format
        component_levels: Logger name -> level overrides
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

    @property
    def numeric_level(self) -> int:
        return logging.getLevelName(self.level.upper())


class ColoredFormatter(logging.Formatter):
    """Console formatter that colours the level name."""

    LEVEL_COLORS = {
        logging.DEBUG: '\033[36m',
        logging.INFO: '\033[32m',
        logging.WARNING: '\033[33m',
        logging.ERROR: '\033[31m',
        logging.CRITICAL: '\033[35m',
    }
    RESET = '\033[0m'

    def __init__(self, fmt: str, datefmt: str = None, use_colors: bool = None):
        super().__init__(fmt, datefmt)
        if use_colors is None:
            use_colors = sys.platform != 'win32' and sys.stdout.isatty()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno) if self.use_colors else None
        if color is None:
            return super().format(record)
        levelname = record.levelname
        record.levelname = f"{color}{levelname}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


class JsonFormatter(logging.Formatter):
    """One JSON object per record, with connection context when present."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'line': f"{record.module}:{record.lineno}",
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value
        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


class LoggingManager:
    """
    Installs and replaces the root handlers for a ``LogConfig``.

    Only handlers installed here are removed on reconfiguration; handlers
    added by others (e.g. pytest's capture) are left alone.
    """

    def __init__(self):
        self._config: Optional[LogConfig] = None
        self._handlers: List[logging.Handler] = []

    @property
    def config(self) -> Optional[LogConfig]:
        return self._config

    def _file_handler(self, config: LogConfig, filename: str, formatter: logging.Formatter,
                      level: int) -> logging.Handler:
        handler = logging.handlers.RotatingFileHandler(
            os.path.join(config.log_dir, filename),
            maxBytes=config.max_bytes,
            backupCount=config.backup_count,
            encoding='utf-8'
        )
        handler.setLevel(level)
        handler.setFormatter(formatter)
        return handler

    def _build_handlers(self, config: LogConfig) -> List[logging.Handler]:
        level = config.numeric_level
        handlers: List[logging.Handler] = []

        if config.console_output:
            console = logging.StreamHandler(sys.stdout)
            console.setLevel(level)
            console.setFormatter(ColoredFormatter(config.format_string or CONSOLE_FORMAT, config.date_format))
            handlers.append(console)

        if config.file_output:
            Path(config.log_dir).mkdir(parents=True, exist_ok=True)
            if config.json_output:
                formatter = JsonFormatter()
            else:
                formatter = logging.Formatter(config.format_string or FILE_FORMAT, config.date_format)
            handlers.append(self._file_handler(config, "roomchat.log", formatter, level))
            handlers.append(self._file_handler(config, "roomchat_errors.log", formatter, logging.ERROR))

        return handlers

    def configure(self, config: LogConfig) -> None:
        root = logging.getLogger()
        for handler in self._handlers:
            root.removeHandler(handler)
            handler.close()

        self._handlers = self._build_handlers(config)
        for handler in self._handlers:
            root.addHandler(handler)
        root.setLevel(config.numeric_level)

        for name, name_level in config.component_levels.items():
            logging.getLogger(name).setLevel(name_level.upper())

        self._config = config
        logging.getLogger(__name__).debug(
            "Logging configured: level=%s console=%s files=%s",
            config.level, config.console_output, config.file_output
        )


_logging_manager = LoggingManager()


def configure_logging(config: LogConfig) -> None:
    """Apply ``config`` to the root logger, replacing earlier RoomChat handlers."""
    _logging_manager.configure(config)


def create_development_config() -> LogConfig:
    return LogConfig(
        level="DEBUG",
        log_dir="./logs/dev",
        max_bytes=5 * 1024 * 1024,
        backup_count=3,
        component_levels={"websockets": "WARNING", "aiohttp": "WARNING"},
    )


def create_production_config() -> LogConfig:
    return LogConfig(
        level="INFO",
        log_dir="./logs/prod",
        console_output=False,
        json_output=True,
        max_bytes=50 * 1024 * 1024,
        backup_count=10,
        component_levels={"websockets": "ERROR", "aiohttp": "ERROR"},
    )


def create_testing_config() -> LogConfig:
    return LogConfig(
        level="DEBUG",
        log_dir="./logs/test",
        file_output=False,
        format_string="%(levelname)s - %(name)s - %(message)s",
        component_levels={"websockets": "ERROR"},
    )


PROFILES: Dict[str, Callable[[], LogConfig]] = {
    "development": create_development_config,
    "dev": create_development_config,
    "production": create_production_config,
    "prod": create_production_config,
    "testing": create_testing_config,
    "test": create_testing_config,
}


def auto_configure(env: Optional[str] = None) -> LogConfig:
    """
    Configure logging from a profile name.

    Args:
        env: Profile name; ``$ROOMCHAT_ENV`` when None. Unknown names use
             the development profile.

    Returns:
        The applied configuration
    """
    env = (env or os.environ.get("ROOMCHAT_ENV") or "development").lower()
    config = PROFILES.get(env, create_development_config)()
    configure_logging(config)
    logging.getLogger(__name__).info("Logging profile: %s", env)
    return config


__all__ = [
    'LogConfig',
    'ColoredFormatter',
    'JsonFormatter',
    'LoggingManager',
    'PROFILES',
    'auto_configure',
    'configure_logging',
    'create_development_config',
    'create_production_config',
    'create_testing_config',
]
