"""
Error handling for the CFDI generator HTTP surface
Maps package errors onto structured JSON responses
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from cfdi_generator.utils.error_responses import (
    CfdiError,
    ErrorSeverity,
    StateTransitionError,
    StructuralError,
)

logger = logging.getLogger(__name__)


class ErrorHandler:
    """
    Exception to response mapping with simple error counting
    """

    def __init__(self):
        self.error_counts: Dict[str, int] = {}

        self.status_mappings = {
            StructuralError: status.HTTP_400_BAD_REQUEST,
            StateTransitionError: status.HTTP_409_CONFLICT,
            CfdiError: status.HTTP_422_UNPROCESSABLE_ENTITY,
        }

    async def handle_exception(self, request: Request, exc: Exception) -> JSONResponse:
        """
        Main exception handler that routes to specific handlers

        Args:
            request: FastAPI request object
            exc: Exception to handle

        Returns:
            JSONResponse with structured error information
        """
        error_id = str(uuid.uuid4())
        self._log_exception(exc, request, error_id)

        if isinstance(exc, CfdiError):
            return self._handle_cfdi_error(exc, error_id)
        if isinstance(exc, (RequestValidationError, ValidationError)):
            return self._handle_validation_error(exc, error_id)
        if isinstance(exc, HTTPException):
            return self._respond(
                exc.status_code,
                self._create_error_response(error_id, "HTTP_ERROR", str(exc.detail), ErrorSeverity.LOW),
            )
        return self._respond(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            self._create_error_response(
                error_id,
                "INTERNAL_SERVER_ERROR",
                "An unexpected error occurred",
                ErrorSeverity.CRITICAL,
                suggestions=["Retry the request", "Contact support if the problem persists"],
            ),
        )

    def _handle_cfdi_error(self, exc: CfdiError, error_id: str) -> JSONResponse:
        status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
        for error_type, mapped in self.status_mappings.items():
            if isinstance(exc, error_type):
                status_code = mapped
                break

        return self._respond(
            status_code,
            self._create_error_response(
                error_id,
                exc.error_code or "CFDI_ERROR",
                exc.message,
                exc.severity,
                context=exc.context,
                suggestions=exc.suggestions,
            ),
        )

    def _handle_validation_error(self, exc: Exception, error_id: str) -> JSONResponse:
        field_errors = {}
        for error in exc.errors():
            field_path = " -> ".join(str(loc) for loc in error["loc"])
            field_errors[field_path] = {"message": error["msg"], "type": error["type"]}

        return self._respond(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            self._create_error_response(
                error_id,
                "SCHEMA_VALIDATION_ERROR",
                "Request data does not fit the document model",
                ErrorSeverity.MEDIUM,
                context={"field_errors": field_errors},
                suggestions=["Send amounts as strings or integers, never as floating point numbers"],
            ),
        )

    def _create_error_response(
        self,
        error_id: str,
        error_code: str,
        message: str,
        severity: ErrorSeverity,
        context: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        self.error_counts[error_code] = self.error_counts.get(error_code, 0) + 1
        return {
            "error": {
                "error_id": error_id,
                "error_code": error_code,
                "message": message,
                "severity": severity.value,
                "context": context or {},
                "suggestions": suggestions or [],
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        }

    def _respond(self, status_code: int, content: Dict[str, Any]) -> JSONResponse:
        return JSONResponse(status_code=status_code, content=content)

    def _log_exception(self, exc: Exception, request: Request, error_id: str) -> None:
        log = logger.warning if isinstance(exc, (CfdiError, RequestValidationError, HTTPException)) else logger.error
        log(
            "Request %s %s failed with %s (error_id=%s): %s",
            request.method, request.url.path, type(exc).__name__, error_id, exc,
        )

    def get_error_statistics(self) -> Dict[str, Any]:
        """Get error statistics for monitoring"""
        return {
            "error_counts": self.error_counts.copy(),
            "total_errors": sum(self.error_counts.values()),
        }


# Global error handler instance
error_handler = ErrorHandler()
