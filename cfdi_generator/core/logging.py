"""
Structured logging for the CFDI generator
Provides JSON/text formatters, a correlation-aware audit logger and an
operation timing context manager
"""
import json
import logging
import time
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from cfdi_generator.core.config import settings


class LogLevel(str, Enum):
    """Log levels for structured logging"""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogCategory(str, Enum):
    """Log categories for filtering and analysis"""
    API_REQUEST = "api_request"
    DOCUMENT_LIFECYCLE = "document_lifecycle"
    VALIDATION = "validation"
    ENCODING = "encoding"
    DECODING = "decoding"
    SYSTEM = "system"


class JsonFormatter(logging.Formatter):
    """JSON formatter for structured logging"""

    def format(self, record):
        message = record.getMessage()
        if message.startswith('{') and message.endswith('}'):
            # Already JSON formatted by AuditLogger
            return message

        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": message,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data)


class StructuredFormatter(logging.Formatter):
    """Structured text formatter for human-readable logs"""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )


def configure_logging(level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """Attach a single stream handler to the package logger"""
    logger = logging.getLogger("cfdi_generator")
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler()
    if (log_format or settings.LOG_FORMAT).lower() == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(StructuredFormatter())

    logger.addHandler(handler)
    logger.setLevel(getattr(logging, (level or settings.LOG_LEVEL).upper()))


class AuditLogger:
    """
    Audit logger for the document lifecycle with correlation tracking
    """

    def __init__(self, name: str = "cfdi_generator.audit"):
        self.logger = logging.getLogger(name)
        self.correlation_id = None

    def set_correlation_id(self, correlation_id: Optional[str]):
        """Set correlation ID for request tracking"""
        self.correlation_id = correlation_id

    def generate_correlation_id(self) -> str:
        """Generate new correlation ID"""
        correlation_id = str(uuid.uuid4())
        self.set_correlation_id(correlation_id)
        return correlation_id

    def log_structured(
        self,
        level: LogLevel,
        category: LogCategory,
        message: str,
        **kwargs
    ):
        """
        Log structured message with metadata

        Args:
            level: Log level
            category: Log category
            message: Log message
            **kwargs: Additional metadata
        """
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level.value,
            "category": category.value,
            "message": message,
            "correlation_id": self.correlation_id,
            **kwargs
        }

        # Remove None values
        log_data = {k: v for k, v in log_data.items() if v is not None}

        self.logger.log(getattr(logging, level.value), json.dumps(log_data, default=str))

    def log_validation_result(
        self,
        rule_violations: int,
        invariant_mismatches: int,
        document_id: Optional[str] = None
    ):
        """Log the outcome of a validation pass"""
        total = rule_violations + invariant_mismatches
        self.log_structured(
            level=LogLevel.INFO if total == 0 else LogLevel.WARNING,
            category=LogCategory.VALIDATION,
            message="Document validation passed" if total == 0 else f"Document validation found {total} violations",
            rule_violations=rule_violations,
            invariant_mismatches=invariant_mismatches,
            document_id=document_id
        )

    def log_state_transition(
        self,
        from_state: str,
        to_state: str,
        success: bool,
        document_id: Optional[str] = None,
        reason: Optional[str] = None
    ):
        """Log builder state transitions, including rejected ones"""
        self.log_structured(
            level=LogLevel.INFO if success else LogLevel.WARNING,
            category=LogCategory.DOCUMENT_LIFECYCLE,
            message=f"{from_state} -> {to_state} {'accepted' if success else 'rejected'}",
            from_state=from_state,
            to_state=to_state,
            success=success,
            document_id=document_id,
            reason=reason
        )

    def log_api_request(
        self,
        method: str,
        path: str,
        status_code: Optional[int] = None,
        duration_ms: Optional[float] = None,
        client_ip: Optional[str] = None
    ):
        """Log an API request, or its response once the status is known"""
        if status_code is None:
            level, message = LogLevel.INFO, f"{method} {path}"
        else:
            level = LogLevel.INFO if status_code < 400 else LogLevel.WARNING
            message = f"{method} {path} - {status_code}"
        self.log_structured(
            level=level,
            category=LogCategory.API_REQUEST,
            message=message,
            method=method,
            path=path,
            status_code=status_code,
            duration_ms=duration_ms,
            client_ip=client_ip
        )

    def log_codec_operation(
        self,
        operation: str,
        size: Optional[int] = None,
        duration_ms: Optional[float] = None,
        error_message: Optional[str] = None
    ):
        """Log encode/decode operations"""
        category = LogCategory.ENCODING if operation == "encode" else LogCategory.DECODING
        self.log_structured(
            level=LogLevel.DEBUG if error_message is None else LogLevel.WARNING,
            category=category,
            message=f"XML {operation} {'completed' if error_message is None else 'failed'}",
            operation=operation,
            size=size,
            duration_ms=duration_ms,
            error_message=error_message
        )


@contextmanager
def log_operation_context(
    operation_name: str,
    category: LogCategory = LogCategory.SYSTEM,
    additional_data: Optional[Dict[str, Any]] = None
):
    """
    Time a block and log its outcome under the current correlation ID.

    A correlation ID is generated only when none is active, so operations
    inside an API request share the request's ID. A generated ID is
    cleared again on exit.
    """
    previous_id = audit_logger.correlation_id
    correlation_id = previous_id or audit_logger.generate_correlation_id()
    start_time = time.time()
    audit_logger.log_structured(
        level=LogLevel.DEBUG,
        category=category,
        message=f"{operation_name} started",
        operation=operation_name,
        additional_data=additional_data
    )

    error: Optional[Exception] = None
    try:
        yield correlation_id
    except Exception as e:
        error = e
        raise
    finally:
        audit_logger.log_structured(
            level=LogLevel.DEBUG if error is None else LogLevel.ERROR,
            category=category,
            message=f"{operation_name} {'finished' if error is None else 'failed'}",
            operation=operation_name,
            duration_ms=(time.time() - start_time) * 1000,
            success=error is None,
            error_message=str(error) if error is not None else None
        )
        audit_logger.set_correlation_id(previous_id)


audit_logger = AuditLogger()
