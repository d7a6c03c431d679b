"""
Structured logging for the security layer.

This module provides structured logging with JSON output in production,
request context injection, performance timing and security event logging
so that rejected tokens, sessions and uploads can be audited.
"""

import logging
import logging.config
import sys
import time
from contextvars import ContextVar
from functools import wraps
from pathlib import Path
from typing import Any, Dict, List, Optional, Callable
from uuid import uuid4

import structlog
from structlog.types import FilteringBoundLogger

# Context variables for request tracking
request_id_context: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
user_id_context: ContextVar[Optional[str]] = ContextVar("user_id", default=None)
session_id_context: ContextVar[Optional[str]] = ContextVar("session_id", default=None)


class SecurityEventLogger:
    """Specialized logger for security events."""

    def __init__(self, logger: FilteringBoundLogger):
        self.logger = logger

    def csrf_failure(
        self,
        session_id: Optional[str] = None,
        reason: str = "unknown",
        **kwargs: Any
    ) -> None:
        """Log a rejected CSRF token."""
        self.logger.warning(
            "CSRF validation failed",
            event_type="csrf_failure",
            session_id=session_id,
            reason=reason,
            **kwargs
        )

    def session_rejected(
        self,
        session_id: Optional[str] = None,
        reason: str = "unknown",
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        **kwargs: Any
    ) -> None:
        """Log a session that failed validation."""
        # A binding mismatch is a possible hijack, plain expiry is routine.
        log_level = "error" if reason.endswith("_mismatch") else "info"
        getattr(self.logger, log_level)(
            "Session rejected",
            event_type="session_rejected",
            session_id=session_id,
            reason=reason,
            ip_address=ip_address,
            user_agent=user_agent,
            **kwargs
        )

    def upload_rejected(
        self,
        filename: Optional[str] = None,
        mime_type: Optional[str] = None,
        errors: Optional[List[str]] = None,
        **kwargs: Any
    ) -> None:
        """Log a rejected file upload."""
        self.logger.warning(
            "File upload rejected",
            event_type="upload_rejected",
            filename=filename,
            mime_type=mime_type,
            errors=errors or [],
            **kwargs
        )

    def authorization_failure(
        self,
        user_id: Optional[str] = None,
        resource: Optional[str] = None,
        action: Optional[str] = None,
        **kwargs: Any
    ) -> None:
        """Log authorization failures."""
        self.logger.error(
            "Authorization failure",
            event_type="authorization_failure",
            user_id=user_id,
            resource=resource,
            action=action,
            **kwargs
        )

    def suspicious_activity(
        self,
        activity_type: str,
        description: str,
        severity: str = "medium",
        **kwargs: Any
    ) -> None:
        """Log suspicious activities."""
        self.logger.error(
            "Suspicious activity detected",
            event_type="suspicious_activity",
            activity_type=activity_type,
            description=description,
            severity=severity,
            **kwargs
        )


class PerformanceLogger:
    """Specialized logger for performance metrics."""

    def __init__(self, logger: FilteringBoundLogger):
        self.logger = logger

    def log_execution_time(
        self,
        operation: str,
        duration_ms: float,
        success: bool = True,
        **kwargs: Any
    ) -> None:
        """Log operation execution time."""
        self.logger.info(
            "Operation performance",
            event_type="performance",
            operation=operation,
            duration_ms=duration_ms,
            success=success,
            **kwargs
        )

    def log_api_call(
        self,
        api_name: str,
        endpoint: str,
        method: str,
        status_code: int,
        duration_ms: float,
        **kwargs: Any
    ) -> None:
        """Log API call performance."""
        self.logger.info(
            "API call performance",
            event_type="api_performance",
            api_name=api_name,
            endpoint=endpoint,
            method=method,
            status_code=status_code,
            duration_ms=duration_ms,
            **kwargs
        )


def add_context_processor(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add context information to log events."""
    request_id = request_id_context.get()
    if request_id:
        event_dict["request_id"] = request_id

    user_id = user_id_context.get()
    if user_id:
        event_dict["user_id"] = user_id

    session_id = session_id_context.get()
    if session_id:
        event_dict.setdefault("session_id", session_id)

    event_dict["timestamp"] = time.time()

    return event_dict


def setup_logging(
    log_level: str = "INFO",
    environment: str = "development",
    log_file: Optional[Path] = None
) -> None:
    """
    Set up structured logging configuration.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        environment: Environment name (development, testing, staging, production)
        log_file: Optional log file path
    """
    log_level = log_level.upper()

    processors = [
        structlog.contextvars.merge_contextvars,
        add_context_processor,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
    ]

    if environment == "production":
        # JSON output for production
        processors.extend([
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer()
        ])
    else:
        # Human-readable output for development
        processors.extend([
            structlog.dev.ConsoleRenderer(colors=False)
        ])

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(log_level)
        ),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Configure standard logging
    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "format": "%(asctime)s %(name)s %(levelname)s %(message)s",
                "class": "pythonjsonlogger.json.JsonFormatter"
            },
            "standard": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
            }
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": log_level,
                "formatter": "json" if environment == "production" else "standard",
                "stream": sys.stdout
            }
        },
        "root": {
            "level": log_level,
            "handlers": ["console"]
        }
    }

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logging_config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": log_level,
            "formatter": "json",
            "filename": str(log_file),
            "maxBytes": 10485760,  # 10MB
            "backupCount": 5
        }
        logging_config["root"]["handlers"].append("file")

    logging.config.dictConfig(logging_config)


def get_logger(name: Optional[str] = None) -> FilteringBoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (defaults to caller's module name)

    Returns:
        FilteringBoundLogger: Configured logger instance
    """
    if name is None:
        import inspect
        frame = inspect.currentframe()
        if frame and frame.f_back:
            name = frame.f_back.f_globals.get("__name__", "train_station_security")

    return structlog.get_logger(name)


def get_security_logger(name: Optional[str] = None) -> SecurityEventLogger:
    """Get a security event logger."""
    logger = get_logger(name)
    return SecurityEventLogger(logger)


def get_performance_logger(name: Optional[str] = None) -> PerformanceLogger:
    """Get a performance logger."""
    logger = get_logger(name)
    return PerformanceLogger(logger)


def set_request_context(
    request_id: Optional[str] = None,
    user_id: Optional[str] = None,
    session_id: Optional[str] = None
) -> None:
    """Set request context for logging."""
    if request_id:
        request_id_context.set(request_id)
    if user_id:
        user_id_context.set(user_id)
    if session_id:
        session_id_context.set(session_id)


def generate_request_id() -> str:
    """Generate a unique request ID."""
    return str(uuid4())


def log_execution_time(operation_name: Optional[str] = None):
    """
    Decorator to log function execution time.

    Args:
        operation_name: Optional operation name (defaults to function name)
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.perf_counter()
            operation = operation_name or f"{func.__module__}.{func.__name__}"
            logger = get_performance_logger()

            try:
                result = func(*args, **kwargs)
                duration_ms = (time.perf_counter() - start_time) * 1000
                logger.log_execution_time(operation, duration_ms, success=True)
                return result
            except Exception as e:
                duration_ms = (time.perf_counter() - start_time) * 1000
                logger.log_execution_time(operation, duration_ms, success=False, error=str(e))
                raise

        return wrapper
    return decorator


__all__ = [
    "setup_logging",
    "get_logger",
    "get_security_logger",
    "get_performance_logger",
    "set_request_context",
    "generate_request_id",
    "log_execution_time",
    "SecurityEventLogger",
    "PerformanceLogger",
]
