#!/usr/bin/env python3
"""
📊 Production Logger for the Escrow Service
Structured logging with correlation IDs and escrow/fee-routing events
"""

import logging
import logging.handlers
import json
import time
import uuid
import traceback
import os
import sys
from datetime import datetime, timezone
from functools import wraps
from typing import Dict, Any, Optional
from contextlib import contextmanager
from threading import local

# Thread-local storage for correlation IDs
_local = local()


def bind_correlation_id(correlation_id: Optional[str]):
    """Attach a correlation ID to everything logged by the current thread."""
    _local.correlation_id = correlation_id


def clear_correlation_id():
    if hasattr(_local, 'correlation_id'):
        delattr(_local, 'correlation_id')


def current_correlation_id() -> Optional[str]:
    return getattr(_local, 'correlation_id', None)


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record):
        """Format log record as structured JSON."""
        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        correlation_id = current_correlation_id()
        if correlation_id:
            log_entry['correlation_id'] = correlation_id

        if hasattr(record, 'extra_fields'):
            log_entry.update(record.extra_fields)

        if record.exc_info:
            log_entry['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': traceback.format_exception(*record.exc_info)
            }

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class KeyValueFormatter(logging.Formatter):
    """Plain text formatter that appends extra fields as key=value pairs."""

    def format(self, record):
        message = super().format(record)
        extra_fields = getattr(record, 'extra_fields', None)
        if extra_fields:
            pairs = ' '.join(f"{key}={value}" for key, value in extra_fields.items())
            message = f"{message} | {pairs}"
        return message


class ProductionLogger:
    """Production-ready logger with escrow specific helpers."""

    def __init__(self, name: str, config=None):
        self.name = name
        self.config = config
        self.logger = logging.getLogger(name)
        self._setup_logger()

    def _setup_logger(self):
        """Set up logger with handlers and formatters."""
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()

        log_level = getattr(logging, (self.config.logging.level if self.config else 'INFO').upper(), logging.INFO)
        self.logger.setLevel(log_level)
        self.logger.propagate = False

        log_format = (self.config.logging.format if self.config else
                      '%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        json_format = bool(self.config and self.config.logging.json_format)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(StructuredFormatter() if json_format else KeyValueFormatter(log_format))
        self.logger.addHandler(console_handler)

        # File handler (if configured)
        if self.config and self.config.logging.file_path:
            log_dir = os.path.dirname(self.config.logging.file_path)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)

            file_handler = logging.handlers.RotatingFileHandler(
                self.config.logging.file_path,
                maxBytes=self.config.logging.max_file_size,
                backupCount=self.config.logging.backup_count
            )
            file_handler.setFormatter(StructuredFormatter() if json_format else KeyValueFormatter(log_format))
            self.logger.addHandler(file_handler)

    def reconfigure(self, config):
        self.config = config
        self._setup_logger()

    @contextmanager
    def correlation_context(self, correlation_id: Optional[str] = None):
        """Context manager for correlation ID tracking."""
        if correlation_id is None:
            correlation_id = str(uuid.uuid4())

        old_correlation_id = current_correlation_id()
        bind_correlation_id(correlation_id)

        try:
            yield correlation_id
        finally:
            if old_correlation_id:
                bind_correlation_id(old_correlation_id)
            else:
                clear_correlation_id()

    def _log_with_extra(self, level: int, message: str, extra_fields: Optional[Dict[str, Any]] = None,
                        exc_info=None):
        """Log message with extra fields."""
        if not self.logger.isEnabledFor(level):
            return
        record = self.logger.makeRecord(
            self.logger.name, level, __file__, 0, message, (), exc_info
        )
        if extra_fields:
            record.extra_fields = extra_fields
        self.logger.handle(record)

    def debug(self, message: str, **kwargs):
        self._log_with_extra(logging.DEBUG, message, kwargs)

    def info(self, message: str, **kwargs):
        self._log_with_extra(logging.INFO, message, kwargs)

    def warning(self, message: str, **kwargs):
        self._log_with_extra(logging.WARNING, message, kwargs)

    def error(self, message: str, **kwargs):
        self._log_with_extra(logging.ERROR, message, kwargs)

    def critical(self, message: str, **kwargs):
        self._log_with_extra(logging.CRITICAL, message, kwargs)

    def exception(self, message: str, **kwargs):
        """Log exception with traceback."""
        self._log_with_extra(logging.ERROR, message, kwargs, exc_info=sys.exc_info())

    # Business logic specific logging methods
    def log_api_request(self, method: str, path: str, status_code: int,
                        response_time: float, user_id: Optional[str] = None):
        """Log API request with metrics."""
        self.info("API request processed",
                  method=method,
                  path=path,
                  status_code=status_code,
                  response_time_ms=response_time * 1000,
                  user_id=user_id,
                  event_type="api_request")

    def log_escrow_created(self, transaction_id: str, buyer_id: str, seller_id: str, amount: int):
        self.info("Escrow transaction created",
                  transaction_id=transaction_id,
                  buyer_id=buyer_id,
                  seller_id=seller_id,
                  amount=amount,
                  event_type="escrow_created")

    def log_escrow_status_changed(self, transaction_id: str, old_status: str, new_status: str):
        self.info("Escrow status changed",
                  transaction_id=transaction_id,
                  old_status=old_status,
                  new_status=new_status,
                  event_type="escrow_status_changed")

    def log_fee_routed(self, fee_transaction_id: str, shell_wallet_id: str,
                       amount: int, wallet_balance: int):
        self.info("Fee routed to shell wallet",
                  fee_transaction_id=fee_transaction_id,
                  shell_wallet_id=shell_wallet_id,
                  amount=amount,
                  wallet_balance=wallet_balance,
                  event_type="fee_routed")

    def log_mixing_completed(self, fee_transaction_id: str, amount: int):
        self.info("Mixing completed",
                  fee_transaction_id=fee_transaction_id,
                  amount=amount,
                  event_type="mixing_completed")

    def log_error_with_context(self, error: Exception, context: Dict[str, Any]):
        """Log error with additional context."""
        self.error(f"Error occurred: {str(error)}",
                   error_type=type(error).__name__,
                   error_message=str(error),
                   context=context,
                   event_type="error")

    def log_performance_metric(self, operation: str, duration: float,
                               success: bool, metadata: Optional[Dict] = None):
        """Log performance metrics."""
        self.debug("Performance metric",
                   operation=operation,
                   duration_ms=duration * 1000,
                   success=success,
                   metadata=metadata or {},
                   event_type="performance_metric")

    def log_security_event(self, event_type: str, severity: str,
                           details: Dict[str, Any]):
        """Log security-related events."""
        self.warning("Security event",
                     security_event_type=event_type,
                     severity=severity,
                     details=details,
                     event_type="security_event")


class LoggerFactory:
    """Factory for creating production loggers."""

    _loggers: Dict[str, ProductionLogger] = {}
    _config = None

    @classmethod
    def set_config(cls, config):
        """Set global configuration and apply it to loggers created so far."""
        cls._config = config
        for logger in cls._loggers.values():
            logger.reconfigure(config)

    @classmethod
    def get_logger(cls, name: str) -> ProductionLogger:
        """Get or create a logger instance."""
        if name not in cls._loggers:
            cls._loggers[name] = ProductionLogger(name, cls._config)
        return cls._loggers[name]

    @classmethod
    def get_api_logger(cls) -> ProductionLogger:
        return cls.get_logger('escrow.api')

    @classmethod
    def get_escrow_logger(cls) -> ProductionLogger:
        return cls.get_logger('escrow.transactions')

    @classmethod
    def get_routing_logger(cls) -> ProductionLogger:
        return cls.get_logger('escrow.routing')

    @classmethod
    def get_database_logger(cls) -> ProductionLogger:
        return cls.get_logger('escrow.database')

    @classmethod
    def get_security_logger(cls) -> ProductionLogger:
        return cls.get_logger('escrow.security')


# Performance monitoring decorator
def log_performance(operation_name: str):
    """Decorator to log performance metrics."""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            logger = LoggerFactory.get_logger(f'escrow.performance.{func.__module__}')
            start_time = time.time()
            success = True
            error = None

            try:
                with logger.correlation_context(current_correlation_id()):
                    return func(*args, **kwargs)
            except Exception as e:
                success = False
                error = e
                raise
            finally:
                duration = time.time() - start_time
                logger.log_performance_metric(
                    operation=operation_name,
                    duration=duration,
                    success=success,
                    metadata={'function': func.__name__, 'error': str(error) if error else None}
                )

        return wrapper
    return decorator


# Error handling decorator
def log_errors(logger_name: str = None):
    """Decorator to log errors with context."""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            logger = LoggerFactory.get_logger(logger_name or f'escrow.{func.__module__}')

            try:
                return func(*args, **kwargs)
            except Exception as e:
                context = {
                    'function': func.__name__,
                    'args': str(args)[:200],  # Truncate long args
                    'kwargs': str(kwargs)[:200]
                }
                logger.log_error_with_context(e, context)
                raise

        return wrapper
    return decorator
