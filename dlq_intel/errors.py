"""
Error taxonomy shared by services and the HTTP layer
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorType(str, Enum):
    """Broad error class, mapped to an HTTP status by the API layer"""

    VALIDATION = "Validation"
    NOT_FOUND = "NotFound"
    CONFLICT = "Conflict"
    INTERNAL = "Internal"
    EXTERNAL_SERVICE = "ExternalService"


class ErrorCode:
    """Stable machine-readable error codes"""

    RULE_NOT_FOUND = "Rule.NotFound"
    RULE_ALREADY_EXISTS = "Rule.AlreadyExists"
    RULE_VALIDATION_FAILED = "Rule.ValidationFailed"
    RULE_DISABLED = "Rule.Disabled"
    DLQ_NOT_FOUND = "Dlq.NotFound"
    NAMESPACE_NOT_FOUND = "Namespace.NotFound"
    NAMESPACE_UNAVAILABLE = "Namespace.Unavailable"
    BROKER_FAILURE = "Broker.Failure"
    STORE_FAILURE = "Store.Failure"
    INTERNAL = "Internal.Error"


class DlqIntelError(Exception):
    """
    Base exception for domain errors

    Attributes:
        message: Human-readable message
        code: Stable error code (see ErrorCode)
        error_type: Error class used for status mapping
        details: Optional extra context
    """

    error_type: ErrorType = ErrorType.INTERNAL

    def __init__(
        self,
        message: str,
        code: str = ErrorCode.INTERNAL,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details
        super().__init__(message)


class ValidationError(DlqIntelError):
    """Request is well-formed but not acceptable in the current state"""

    error_type = ErrorType.VALIDATION


class NotFoundError(DlqIntelError):
    """Rule or record id is unknown"""

    error_type = ErrorType.NOT_FOUND


class ConflictError(DlqIntelError):
    """Uniqueness violation (duplicate rule name)"""

    error_type = ErrorType.CONFLICT


class ExternalServiceError(DlqIntelError):
    """Broker or credential directory failure"""

    error_type = ErrorType.EXTERNAL_SERVICE


class InternalError(DlqIntelError):
    """Serialization or storage failure"""

    error_type = ErrorType.INTERNAL
