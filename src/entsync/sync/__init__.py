"""Sync module - Entity synchronization between local entities and backends.

Architecture:
    domain/     - Entities, context, policies, serialization and port interfaces
    use_cases/  - Per-entity operation runner (SyncEntityProvider)
    adapters/   - Providers, definitions, field mapper, deferral and the SQLite store
"""

from .adapters import (
    DbSyncDefinition,
    DbSyncProvider,
    HttpSyncDefinition,
    HttpSyncProvider,
    SyncStore,
    declared_operation,
)
from .domain import (
    DeferralPolicy,
    EntitySource,
    FilterPolicy,
    HydrationPolicy,
    ListConformity,
    Relationship,
    SyncContext,
    SyncEntity,
    SyncError,
    SyncErrorType,
    SyncOperation,
    SyncSerializeRules,
)
from .use_cases import SyncEntityProvider

__all__ = [
    # Entities
    "SyncEntity",
    "Relationship",
    "SyncError",
    # Context and policies
    "SyncContext",
    "SyncOperation",
    "DeferralPolicy",
    "EntitySource",
    "FilterPolicy",
    "HydrationPolicy",
    "ListConformity",
    "SyncErrorType",
    "SyncSerializeRules",
    # Providers
    "HttpSyncProvider",
    "HttpSyncDefinition",
    "DbSyncProvider",
    "DbSyncDefinition",
    "declared_operation",
    # Store and runner
    "SyncStore",
    "SyncEntityProvider",
]
