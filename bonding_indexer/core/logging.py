# bonding_indexer/core/logging.py
"""
Centralized logging for the bonding-curve indexer.

Provides:
- IndexerLogger: one-time configuration of the ``bonding_indexer`` logger tree
- IndexerFormatter: line formatter that appends structured context fields
- log_with_context: attach keyword context to a single log record
- LoggingMixin: per-class loggers with context-aware helpers
"""

import logging
import sys
from logging import DEBUG, INFO, WARNING, ERROR, CRITICAL
from pathlib import Path
from typing import Optional
from datetime import datetime


ROOT_LOGGER_NAME = 'bonding_indexer'

CONTEXT_ATTRS = (
    'token', 'trader', 'tx_hash', 'block_number', 'log_index',
    'from_block', 'to_block', 'epoch', 'version', 'error',
)


class IndexerFormatter(logging.Formatter):
    def __init__(self, include_context: bool = False):
        self.include_context = include_context
        super().__init__()

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]
        base_msg = f"{timestamp} - {record.name} - {record.levelname} - {record.getMessage()}"

        if record.exc_info:
            base_msg = f"{base_msg}\n{self.formatException(record.exc_info)}"

        if not self.include_context:
            return base_msg

        context_parts = [
            f"{attr}={getattr(record, attr)}"
            for attr in CONTEXT_ATTRS
            if hasattr(record, attr)
        ]

        if context_parts:
            return f"{base_msg} | {' '.join(context_parts)}"

        return base_msg


class IndexerLogger:
    """Global logging configuration and management"""

    _configured = False
    _log_dir: Optional[Path] = None
    _log_level = logging.INFO

    @classmethod
    def configure(cls,
                  log_dir: Optional[Path] = None,
                  log_level: str = "INFO",
                  console_enabled: bool = True,
                  file_enabled: bool = True,
                  structured_format: bool = True) -> None:

        if cls._configured:
            return

        level = getattr(logging, log_level.upper(), None)
        if not isinstance(level, int):
            raise ValueError(f"Unknown log level: {log_level}")

        cls._log_dir = log_dir
        cls._log_level = level

        root_logger = logging.getLogger(ROOT_LOGGER_NAME)
        root_logger.setLevel(level)
        root_logger.handlers.clear()

        if console_enabled:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(level)
            if structured_format:
                console_handler.setFormatter(IndexerFormatter(include_context=True))
            else:
                console_handler.setFormatter(logging.Formatter(
                    '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
                ))
            root_logger.addHandler(console_handler)

        if file_enabled and log_dir:
            log_dir.mkdir(parents=True, exist_ok=True)
            file_formatter = IndexerFormatter(include_context=True)

            file_handler = logging.FileHandler(log_dir / 'bonding_indexer.log')
            file_handler.setLevel(level)
            file_handler.setFormatter(file_formatter)
            root_logger.addHandler(file_handler)

            # Errors are duplicated into their own file
            error_handler = logging.FileHandler(log_dir / 'bonding_indexer_errors.log')
            error_handler.setLevel(logging.ERROR)
            error_handler.setFormatter(file_formatter)
            root_logger.addHandler(error_handler)

        cls._configured = True

    @classmethod
    def is_configured(cls) -> bool:
        return cls._configured

    @classmethod
    def reset(cls) -> None:
        root_logger = logging.getLogger(ROOT_LOGGER_NAME)
        for handler in list(root_logger.handlers):
            handler.close()
        root_logger.handlers.clear()
        cls._configured = False

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        if not name.startswith(ROOT_LOGGER_NAME):
            name = f'{ROOT_LOGGER_NAME}.{name}'
        return logging.getLogger(name)


# === Utility Functions ===

def get_class_logger(cls_instance) -> logging.Logger:
    module = cls_instance.__class__.__module__
    class_name = cls_instance.__class__.__name__

    prefix = f'{ROOT_LOGGER_NAME}.'
    if module.startswith(prefix):
        module = module[len(prefix):]

    return IndexerLogger.get_logger(f"{module}.{class_name}")


def log_with_context(logger: logging.Logger, level: int, message: str, **context) -> None:
    if logger.isEnabledFor(level):
        record = logger.makeRecord(
            logger.name, level, "", 0, message, (), None
        )
        for key, value in context.items():
            setattr(record, key, value)
        logger.handle(record)


# === LoggingMixin for Classes ===

class LoggingMixin:
    """
    Mixin giving a class its own logger under the ``bonding_indexer`` tree
    and helpers that attach structured context to each record.
    """

    @property
    def logger(self) -> logging.Logger:
        if not hasattr(self, '_logger'):
            self._logger = get_class_logger(self)
        return self._logger

    def log_debug(self, message: str, **context) -> None:
        log_with_context(self.logger, DEBUG, message, **context)

    def log_info(self, message: str, **context) -> None:
        log_with_context(self.logger, INFO, message, **context)

    def log_warning(self, message: str, **context) -> None:
        log_with_context(self.logger, WARNING, message, **context)

    def log_error(self, message: str, **context) -> None:
        log_with_context(self.logger, ERROR, message, **context)


__all__ = [
    'IndexerLogger', 'IndexerFormatter', 'LoggingMixin',
    'get_class_logger', 'log_with_context',
    'DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL',
]
