"""
Custom error classes for the CFDI generator.

Only conditions that abort an operation are exceptions. Rule violations and
invariant mismatches are collected into a validation report instead
(see ``cfdi_generator.schemas.validation``).
"""
from typing import Any, Dict, List, Optional
from enum import Enum


class ErrorSeverity(str, Enum):
    """Error severity levels"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class CfdiError(Exception):
    """
    Base error class with structured error information
    """
    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        suggestions: Optional[List[str]] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.severity = severity
        self.suggestions = suggestions or []
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "context": self.context,
            "suggestions": self.suggestions,
        }


class StructuralError(CfdiError):
    """Raised when XML input cannot be mapped onto the node model"""
    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        suggestions: Optional[List[str]] = None,
        **kwargs
    ):
        context = kwargs.pop("context", {})
        if path:
            context["path"] = path
        super().__init__(
            message=message,
            error_code="STRUCTURAL_ERROR",
            severity=ErrorSeverity.HIGH,
            suggestions=suggestions or [
                "Check the XML is well formed",
                "Verify element and attribute names against the CFDI 4.0 schema"
            ],
            context=context,
            **kwargs
        )
        self.path = path


class StateTransitionError(CfdiError):
    """Raised when a document lifecycle transition is not allowed"""
    def __init__(
        self,
        message: str,
        current_state: Optional[str] = None,
        attempted: Optional[str] = None,
        suggestions: Optional[List[str]] = None,
        **kwargs
    ):
        context = kwargs.pop("context", {})
        if current_state:
            context["current_state"] = current_state
        if attempted:
            context["attempted"] = attempted
        super().__init__(
            message=message,
            error_code="STATE_TRANSITION_ERROR",
            severity=ErrorSeverity.MEDIUM,
            suggestions=suggestions or [
                "Discard the current builder and start a new draft to change the document"
            ],
            context=context,
            **kwargs
        )
        self.current_state = current_state
        self.attempted = attempted
