"""
Core module initialization.
Exports configuration, logging utilities and the error hierarchy.
"""

from posbridge.core.config import get_settings, Settings, EnvironmentMode
from posbridge.core.exceptions import (
    PosBridgeError,
    AuthenticationError,
    NotFoundError,
    ValidationError,
    ConflictError,
    TransportError,
    PersistenceError,
)

__all__ = [
    "get_settings",
    "Settings",
    "EnvironmentMode",
    "PosBridgeError",
    "AuthenticationError",
    "NotFoundError",
    "ValidationError",
    "ConflictError",
    "TransportError",
    "PersistenceError",
]
