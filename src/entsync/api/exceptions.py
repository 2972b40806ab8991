#!/usr/bin/env python3
"""Exception Hierarchy for the Entity Synchronization Engine.

This module provides a structured exception hierarchy for handling errors
across the engine, including configuration, backend (HTTP and database),
network and synchronization errors.

Design Principles:
    - All exceptions inherit from EntSyncError base class
    - Exceptions preserve context (original error, timestamps, details)
    - Exceptions are categorized by recoverability
    - Configuration-shape errors are never recoverable

Exception Hierarchy:
    EntSyncError (base)
    ├── ConfigurationError (unrecoverable - fix config)
    ├── LogicError (unrecoverable - duplicate registration, bad definition)
    ├── UnexpectedValueError (unrecoverable - unsafe or malformed value)
    ├── APIError (may be recoverable - retry)
    │   ├── RateLimitError
    │   ├── NotFoundError
    │   ├── ValidationError
    │   └── ServerError
    ├── NetworkError (recoverable - retry)
    │   ├── ConnectionError
    │   └── TimeoutError
    ├── DatabaseError (may be recoverable)
    │   ├── TransactionError
    │   └── IntegrityError
    └── SyncException (operation failed)
        ├── OperationNotImplemented
        ├── FilterPolicyViolation
        ├── SyncEntityNotFound
        ├── SyncInvalidContext
        ├── InvalidEntitySource
        ├── InvalidFilterSignature
        ├── SyncEntityRecursion
        ├── BackendUnreachable
        ├── HeartbeatCheckFailed
        └── SyncStoreException

Author: Entity Sync Team
"""
from datetime import datetime, timezone
from typing import Any, Optional

# ============================================
# Base Exception
# ============================================

class EntSyncError(Exception):
    """Base exception for all engine errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "SYNC_ENTITY_NOT_FOUND")
        details: Additional context as a dictionary
        timestamp: When the error occurred
        cause: The original exception that caused this error
        recoverable: Whether this error might be recoverable with retry
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__.upper()
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc)
        self.cause = cause
        self.recoverable = recoverable

        if cause:
            self.__cause__ = cause

    def __str__(self) -> str:
        parts = [self.message]
        if self.code:
            parts.insert(0, f"[{self.code}]")
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            parts.append(f"({detail_str})")
        return " ".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code!r}, "
            f"details={self.details!r}, "
            f"recoverable={self.recoverable})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
            "recoverable": self.recoverable,
            "cause": str(self.cause) if self.cause else None,
        }


def _describe(obj: Any) -> Optional[str]:
    """Name of a provider or entity type for error details."""
    if obj is None:
        return None
    if isinstance(obj, type):
        return obj.__qualname__
    return type(obj).__qualname__


# ============================================
# Configuration and Logic Errors (Unrecoverable)
# ============================================

class ConfigurationError(EntSyncError):
    """Raised when configuration is missing or invalid.

    These errors require fixing configuration before retry.
    """

    def __init__(
        self,
        message: str,
        missing_keys: Optional[list[str]] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if missing_keys:
            details["missing_keys"] = missing_keys
        super().__init__(
            message,
            code="CONFIGURATION_ERROR",
            details=details,
            recoverable=False,
            **kwargs,
        )


class LogicError(EntSyncError):
    """Raised when the engine is used in a way its state does not allow.

    Duplicate registrations, conflicting overrides and reserved policies
    all land here.
    """

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("code", "LOGIC_ERROR")
        super().__init__(message, recoverable=False, **kwargs)


class UnexpectedValueError(EntSyncError, ValueError):
    """Raised when a value cannot be used where it was supplied."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("code", "UNEXPECTED_VALUE")
        super().__init__(message, recoverable=False, **kwargs)


# ============================================
# API Errors
# ============================================

class APIError(EntSyncError):
    """Base class for HTTP backend response errors.

    Attributes:
        status_code: HTTP status code
        endpoint: URL that was called
        response_body: Raw response body (may be truncated)
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        endpoint: Optional[str] = None,
        response_body: Optional[str] = None,
        method: str = "GET",
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        details["status_code"] = status_code
        if endpoint:
            details["endpoint"] = endpoint
        if method:
            details["method"] = method
        if response_body:
            details["response_body"] = response_body[:500] if len(response_body) > 500 else response_body

        kwargs.setdefault("recoverable", status_code in (429, 500, 502, 503, 504))
        kwargs.setdefault("code", f"API_ERROR_{status_code}")

        super().__init__(
            message,
            details=details,
            **kwargs,
        )
        self.status_code = status_code
        self.endpoint = endpoint
        self.response_body = response_body
        self.method = method


class RateLimitError(APIError):
    """Raised when the backend rate limit is exceeded (HTTP 429).

    Attributes:
        retry_after: Seconds to wait before retrying (from Retry-After header)
    """

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: Optional[int] = None,
        **kwargs,
    ):
        kwargs.setdefault("status_code", 429)
        details = kwargs.pop("details", {})
        if retry_after:
            details["retry_after_seconds"] = retry_after
        super().__init__(
            message,
            code="RATE_LIMIT_EXCEEDED",
            details=details,
            **kwargs,
        )
        self.retry_after = retry_after or 60


class NotFoundError(APIError):
    """Raised when the requested resource does not exist (HTTP 404/410)."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        **kwargs,
    ):
        message = f"{resource_type} not found"
        if resource_id:
            message = f"{resource_type} '{resource_id}' not found"

        kwargs.setdefault("status_code", 404)
        details = kwargs.pop("details", {})
        details["resource_type"] = resource_type
        if resource_id:
            details["resource_id"] = resource_id

        super().__init__(
            message,
            code="NOT_FOUND",
            details=details,
            recoverable=False,
            **kwargs,
        )


class ValidationError(APIError):
    """Raised when the backend rejects a request (HTTP 400/422)."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        **kwargs,
    ):
        kwargs.setdefault("status_code", 400)
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field

        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details=details,
            recoverable=False,
            **kwargs,
        )


class ServerError(APIError):
    """Raised when the backend returns a 5xx error."""

    def __init__(
        self,
        message: str = "Server error",
        **kwargs,
    ):
        kwargs.setdefault("status_code", 500)
        super().__init__(
            message,
            code="SERVER_ERROR",
            recoverable=True,
            **kwargs,
        )


# ============================================
# Network Errors (Usually Recoverable)
# ============================================

class NetworkError(EntSyncError):
    """Base class for network-related errors.

    These errors are typically transient and recoverable with retry.
    """

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("recoverable", True)
        super().__init__(message, **kwargs)


class ConnectionError(NetworkError):
    """Raised when connection to a backend fails."""

    def __init__(
        self,
        message: str = "Failed to connect to server",
        host: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if host:
            details["host"] = host
        super().__init__(
            message,
            code="CONNECTION_ERROR",
            details=details,
            **kwargs,
        )


class TimeoutError(NetworkError):
    """Raised when a request times out."""

    def __init__(
        self,
        message: str = "Request timed out",
        timeout_seconds: Optional[float] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if timeout_seconds:
            details["timeout_seconds"] = timeout_seconds
        super().__init__(
            message,
            code="TIMEOUT_ERROR",
            details=details,
            **kwargs,
        )


# ============================================
# Database Errors
# ============================================

class DatabaseError(EntSyncError):
    """Base class for database-related errors."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("recoverable", True)
        super().__init__(message, **kwargs)


class TransactionError(DatabaseError):
    """Raised when a database transaction fails."""

    def __init__(
        self,
        message: str = "Database transaction failed",
        operation: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if operation:
            details["operation"] = operation
        super().__init__(
            message,
            code="TRANSACTION_ERROR",
            details=details,
            **kwargs,
        )


class IntegrityError(DatabaseError):
    """Raised when a database integrity constraint is violated."""

    def __init__(
        self,
        message: str = "Database integrity error",
        constraint: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if constraint:
            details["constraint"] = constraint
        super().__init__(
            message,
            code="INTEGRITY_ERROR",
            details=details,
            recoverable=False,
            **kwargs,
        )


# ============================================
# Sync Errors
# ============================================

class SyncException(EntSyncError):
    """Base class for synchronization errors."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, **kwargs)


class OperationNotImplemented(SyncException):
    """Raised when no override, declared method or generated closure exists.

    Attributes:
        provider: Provider the operation was requested from
        entity_type: Entity type the operation was requested for
        operation: The SyncOperation requested
    """

    def __init__(self, provider: Any, entity_type: Any, operation: Any, **kwargs):
        op_name = getattr(operation, "name", str(operation))
        details = kwargs.pop("details", {})
        details.update({
            "provider": _describe(provider),
            "entity_type": _describe(entity_type),
            "operation": op_name,
        })
        super().__init__(
            f"{_describe(provider)} does not implement {op_name} for {_describe(entity_type)}",
            code="OPERATION_NOT_IMPLEMENTED",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.provider = provider
        self.entity_type = entity_type
        self.operation = operation


class FilterPolicyViolation(SyncException):
    """Raised when unclaimed filters remain and the policy forbids them.

    Attributes:
        unclaimed_filters: Filters no path or query builder consumed
    """

    def __init__(
        self,
        provider: Any,
        entity_type: Any,
        unclaimed_filters: dict[str, Any],
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        details["unclaimed"] = sorted(unclaimed_filters)
        super().__init__(
            f"{_describe(provider)} did not claim all filters for {_describe(entity_type)}: "
            + ", ".join(sorted(unclaimed_filters)),
            code="FILTER_POLICY_VIOLATION",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.provider = provider
        self.entity_type = entity_type
        self.unclaimed_filters = dict(unclaimed_filters)


class SyncEntityNotFound(SyncException):
    """Raised when a READ finds no matching record."""

    def __init__(self, provider: Any, entity_type: Any, entity_id: Any, **kwargs):
        details = kwargs.pop("details", {})
        details["entity_id"] = entity_id
        super().__init__(
            f"{_describe(entity_type)} not found: {entity_id}",
            code="SYNC_ENTITY_NOT_FOUND",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.provider = provider
        self.entity_type = entity_type
        self.entity_id = entity_id


class SyncInvalidContext(SyncException):
    """Raised when a required path or context value cannot be resolved."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code="SYNC_INVALID_CONTEXT", recoverable=False, **kwargs)


class InvalidEntitySource(SyncException):
    """Raised when a definition names an unknown round-trip entity source."""

    def __init__(self, provider: Any, entity_type: Any, operation: Any, source: Any, **kwargs):
        details = kwargs.pop("details", {})
        details["source"] = repr(source)
        super().__init__(
            f"Invalid entity source for {_describe(entity_type)} "
            f"{getattr(operation, 'name', operation)}: {source!r}",
            code="INVALID_ENTITY_SOURCE",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.provider = provider
        self.entity_type = entity_type
        self.operation = operation
        self.source = source


class InvalidFilterSignature(SyncException):
    """Raised when operation arguments cannot be turned into filters."""

    def __init__(self, *args: Any):
        super().__init__(
            "Invalid filter signature: " + ", ".join(type(arg).__name__ for arg in args),
            code="INVALID_FILTER_SIGNATURE",
            recoverable=False,
        )
        self.args_received = args


class SyncEntityRecursion(SyncException):
    """Raised when resolving a reference would recurse into itself."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code="SYNC_ENTITY_RECURSION", recoverable=False, **kwargs)


class BackendUnreachable(SyncException):
    """Raised when a heartbeat or live call cannot reach a backend."""

    def __init__(self, message: str, provider: Any = None, **kwargs):
        details = kwargs.pop("details", {})
        if provider is not None:
            details["provider"] = _describe(provider)
        super().__init__(
            message,
            code="BACKEND_UNREACHABLE",
            details=details,
            recoverable=True,
            **kwargs,
        )
        self.provider = provider


class HeartbeatCheckFailed(SyncException):
    """Raised when one or more providers fail their heartbeat check.

    Attributes:
        providers: Providers that could not be reached
    """

    def __init__(self, *providers: Any):
        names = [_describe(provider) for provider in providers]
        super().__init__(
            f"Heartbeat check failed: {', '.join(names)}",
            code="HEARTBEAT_CHECK_FAILED",
            details={"providers": names},
            recoverable=True,
        )
        self.providers = list(providers)


class SyncStoreException(SyncException):
    """Raised when the run ledger cannot complete an expected read or write."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code="SYNC_STORE_ERROR", **kwargs)


# ============================================
# Exports
# ============================================

__all__ = [
    # Base
    "EntSyncError",
    # Configuration / logic
    "ConfigurationError",
    "LogicError",
    "UnexpectedValueError",
    # API
    "APIError",
    "RateLimitError",
    "NotFoundError",
    "ValidationError",
    "ServerError",
    # Network
    "NetworkError",
    "ConnectionError",
    "TimeoutError",
    # Database
    "DatabaseError",
    "TransactionError",
    "IntegrityError",
    # Sync
    "SyncException",
    "OperationNotImplemented",
    "FilterPolicyViolation",
    "SyncEntityNotFound",
    "SyncInvalidContext",
    "InvalidEntitySource",
    "InvalidFilterSignature",
    "SyncEntityRecursion",
    "BackendUnreachable",
    "HeartbeatCheckFailed",
    "SyncStoreException",
]
