"""
Custom exceptions for POS Bridge.

Exception Hierarchy:
    PosBridgeError (base)
    ├── AuthenticationError - missing/invalid API key or tenant mismatch (401)
    ├── NotFoundError       - unknown tenant, order or device (404)
    ├── ValidationError     - missing field or invalid enum value (400)
    ├── ConflictError       - resource already exists (409)
    ├── TransportError      - webhook timeout, connection error or non-2xx
    └── PersistenceError    - database failure (500)

Usage:
    Authentication and validation errors are raised before any state is
    touched. TransportError is captured into delivery outcomes by the
    dispatcher and never escapes a request handler.
"""

from typing import Optional, Dict, Any


class PosBridgeError(Exception):
    """
    Base exception for all POS Bridge errors.

    Subclasses set ``status_code``; the API layer uses it together with
    ``details`` to build the JSON error body.
    """

    status_code: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize the exception.

        Args:
            message: Human-readable error message
            details: Optional extra fields merged into the error response
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Error body returned to POS integrators."""
        return {"success": False, "error": self.message, **self.details}


class AuthenticationError(PosBridgeError):
    """Missing or invalid credentials, or credentials for another tenant."""

    status_code = 401


class NotFoundError(PosBridgeError):
    """Unknown tenant, order or device."""

    status_code = 404


class ValidationError(PosBridgeError):
    """Missing required field or invalid value."""

    status_code = 400


class ConflictError(PosBridgeError):
    status_code = 409


class TransportError(PosBridgeError):
    """
    Outbound webhook delivery failed (timeout, connection error, non-2xx).

    Attributes:
        status_code_received: HTTP status returned by the target, if any
    """

    status_code = 502

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code_received: Optional[int] = None,
    ):
        super().__init__(message, details)
        self.status_code_received = status_code_received


class PersistenceError(PosBridgeError):
    """Database failure; the caller only sees a generic message."""

    status_code = 500
