"""Infrastructure modules for the Entity Synchronization Engine.

This package provides the plumbing every sync provider builds on.

Classes:
    HttpClient: Synchronous JSON client for a single endpoint
    OffsetPager: Offset/limit pagination driver
    SyncConfig: Environment-driven engine settings

Exceptions:
    EntSyncError: Base exception for all engine errors
    ConfigurationError: Missing or invalid configuration
    LogicError: Engine used in a way its state does not allow
    APIError: HTTP request failures
    NetworkError: Network connectivity issues
    DatabaseError: Database operation failures
    SyncException: Synchronization failures

Resilience:
    retry: Decorator for retry with exponential backoff
"""
from .client import HttpClient, OffsetPager, Pager, PaginationConfig, as_item_list
from .config import SyncConfig, configure_logging
from .database import (
    check_database_health,
    connect,
    database_transaction,
    fetch_all,
    fetch_one,
)
from .exceptions import (
    APIError,
    BackendUnreachable,
    ConfigurationError,
    ConnectionError,
    DatabaseError,
    EntSyncError,
    FilterPolicyViolation,
    HeartbeatCheckFailed,
    IntegrityError,
    InvalidEntitySource,
    InvalidFilterSignature,
    LogicError,
    NetworkError,
    NotFoundError,
    OperationNotImplemented,
    RateLimitError,
    ServerError,
    SyncEntityNotFound,
    SyncEntityRecursion,
    SyncException,
    SyncInvalidContext,
    SyncStoreException,
    TimeoutError,
    TransactionError,
    UnexpectedValueError,
    ValidationError,
)
from .resilience import retry, retry_call

__all__ = [
    # Client
    "HttpClient",
    "OffsetPager",
    "Pager",
    "PaginationConfig",
    "as_item_list",
    # Config
    "SyncConfig",
    "configure_logging",
    # Database
    "connect",
    "database_transaction",
    "fetch_all",
    "fetch_one",
    "check_database_health",
    # Exceptions
    "EntSyncError",
    "ConfigurationError",
    "LogicError",
    "UnexpectedValueError",
    "APIError",
    "RateLimitError",
    "NotFoundError",
    "ValidationError",
    "ServerError",
    "NetworkError",
    "ConnectionError",
    "TimeoutError",
    "DatabaseError",
    "TransactionError",
    "IntegrityError",
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
    # Resilience
    "retry",
    "retry_call",
]
