"""Adapters layer - Infrastructure implementations for sync operations.

This layer contains concrete implementations of the ports defined in the domain layer:
- SyncProvider: Base provider (store registration, declared operations, heartbeat cache)
- HttpSyncProvider / HttpSyncDefinition: JSON HTTP backends
- DbSyncProvider / DbSyncDefinition: SQLite table backends
- SyncEntityMapper: Backend records -> entities
- DeferredEntity / DeferredRelationship: Placeholders resolved through the store
- SyncStore: SQLite run ledger and in-memory entity registry
- SyncEntityResolver / SyncEntityFuzzyResolver: Name -> entity lookups
"""

from .db_definition import DbSyncDefinition
from .db_provider import DbSyncProvider
from .deferred import DeferredEntity, DeferredRelationship
from .definition import SyncDefinition, key_map_stage
from .field_mapper import SyncEntityMapper
from .http_definition import DEFAULT_METHOD_MAP, HttpSyncDefinition
from .http_provider import HttpSyncProvider
from .pipeline import Pipeline, SyncPipelineArgument
from .provider import SyncProvider, clear_heartbeat_cache, declared_operation
from .resolver import SyncEntityFuzzyResolver, SyncEntityResolver, TextComparison
from .sqlite_store import SyncStore

__all__ = [
    # Providers
    "SyncProvider",
    "HttpSyncProvider",
    "DbSyncProvider",
    "declared_operation",
    "clear_heartbeat_cache",
    # Definitions
    "SyncDefinition",
    "HttpSyncDefinition",
    "DbSyncDefinition",
    "DEFAULT_METHOD_MAP",
    "key_map_stage",
    "Pipeline",
    "SyncPipelineArgument",
    # Mapping and deferral
    "SyncEntityMapper",
    "DeferredEntity",
    "DeferredRelationship",
    # Store
    "SyncStore",
    # Resolvers
    "SyncEntityResolver",
    "SyncEntityFuzzyResolver",
    "TextComparison",
]
