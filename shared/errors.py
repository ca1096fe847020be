"""
Shared error handling for the records platform services.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    code: str
    message: str
    details: Dict[str, Any] = {}


class DedupException(Exception):
    """Base exception for duplicate detection services."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(DedupException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class StoreUnavailableError(DedupException):
    """A record, rule or audit store could not be reached in time."""

    def __init__(self, store: str, message: str = "Store unavailable", details: Optional[Dict[str, Any]] = None):
        self.store = store
        super().__init__("STORE_UNAVAILABLE", f"{store}: {message}", details)


class MalformedRuleError(DedupException):
    """Rule has no field groups, or a field group with no fields."""

    def __init__(self, rule_id: str, message: str = "Rule has empty field groups", details: Optional[Dict[str, Any]] = None):
        self.rule_id = rule_id
        super().__init__("MALFORMED_RULE", message, {"rule_id": rule_id, **(details or {})})


class MissingTenantContextError(DedupException):
    """No tenant was supplied, so no query can be scoped."""

    def __init__(self, message: str = "Tenant context is required", details: Optional[Dict[str, Any]] = None):
        super().__init__("MISSING_TENANT_CONTEXT", message, details)


class AuditWriteError(DedupException):
    """An audit entry could not be persisted."""

    def __init__(self, message: str = "Audit write failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUDIT_WRITE_FAILED", message, details)
