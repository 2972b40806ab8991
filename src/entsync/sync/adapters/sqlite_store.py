"""SQLite-backed store for sync runs, entities and deferred references.

The store is the run-scoped registry of everything the engine has seen:

- Providers, identified across runs by a hash of their class and backend
- Entity types, and namespaces that give them short URIs
- Entities, at most one instance per (provider, type, id)
- Deferred entities and relationships waiting for those entities
- Structured errors recorded during the run

Runs are recorded in ``_sync_run``. A run starts lazily: providers, entity
types and namespaces registered before anything needs the database are
held in memory and written when the run starts.

Example:
    with SyncStore("entsync.db", command="sync-users") as store:
        provider = CrmProvider(store)
        users = provider.with_entity(User).get_list_a()
        store.resolve_deferred()
"""

import hashlib
import json
import logging
import re
import sqlite3
import uuid
from typing import Any

from ...api.database import connect, database_transaction, fetch_all, fetch_one
from ...api.exceptions import (
    BackendUnreachable,
    HeartbeatCheckFailed,
    LogicError,
    SyncStoreException,
)
from ..domain.entities import SyncEntity, default_type_uri
from ..domain.enums import DeferralPolicy, HydrationPolicy, SyncErrorType
from ..domain.errors import SyncError, SyncErrorCollection
from ..domain.naming import type_basename
from ..domain.serialization import serialize
from ..domain.serialize_rules import SyncSerializeRules

logger = logging.getLogger(__name__)

_PREFIX = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*$")

SCHEMA = """
CREATE TABLE IF NOT EXISTS
  _sync_run (
    run_id INTEGER NOT NULL PRIMARY KEY,
    run_uuid TEXT NOT NULL UNIQUE,
    run_command TEXT NOT NULL,
    run_arguments_json TEXT NOT NULL,
    started_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
    finished_at DATETIME,
    exit_status INTEGER,
    error_count INTEGER,
    warning_count INTEGER,
    errors_json TEXT
  );

CREATE TABLE IF NOT EXISTS
  _sync_provider (
    provider_id INTEGER NOT NULL PRIMARY KEY,
    provider_hash TEXT NOT NULL UNIQUE,
    provider_class TEXT NOT NULL,
    added_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
    last_seen DATETIME DEFAULT CURRENT_TIMESTAMP
  );

CREATE TABLE IF NOT EXISTS
  _sync_entity_type (
    entity_type_id INTEGER NOT NULL PRIMARY KEY,
    entity_type_class TEXT NOT NULL UNIQUE,
    added_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
    last_seen DATETIME DEFAULT CURRENT_TIMESTAMP
  );

CREATE TABLE IF NOT EXISTS
  _sync_entity_type_state (
    provider_id INTEGER NOT NULL,
    entity_type_id INTEGER NOT NULL,
    last_seen DATETIME DEFAULT CURRENT_TIMESTAMP,
    last_sync DATETIME,
    PRIMARY KEY (provider_id, entity_type_id),
    FOREIGN KEY (provider_id) REFERENCES _sync_provider,
    FOREIGN KEY (entity_type_id) REFERENCES _sync_entity_type
  );

CREATE TABLE IF NOT EXISTS
  _sync_entity (
    provider_id INTEGER NOT NULL,
    entity_type_id INTEGER NOT NULL,
    entity_id TEXT NOT NULL,
    canonical_id TEXT,
    is_dirty INTEGER NOT NULL DEFAULT 0,
    is_deleted INTEGER NOT NULL DEFAULT 0,
    added_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
    last_seen DATETIME DEFAULT CURRENT_TIMESTAMP,
    last_sync DATETIME,
    entity_json TEXT NOT NULL,
    PRIMARY KEY (provider_id, entity_type_id, entity_id),
    FOREIGN KEY (provider_id) REFERENCES _sync_provider,
    FOREIGN KEY (entity_type_id) REFERENCES _sync_entity_type
  ) WITHOUT ROWID;

CREATE TABLE IF NOT EXISTS
  _sync_entity_namespace (
    entity_namespace_id INTEGER NOT NULL PRIMARY KEY,
    entity_namespace_prefix TEXT NOT NULL UNIQUE,
    base_uri TEXT NOT NULL,
    python_module TEXT NOT NULL,
    added_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
    last_seen DATETIME DEFAULT CURRENT_TIMESTAMP
  );
"""


def _class_path(cls: type) -> str:
    return f"{cls.__module__}.{cls.__qualname__}"


class SyncStore:
    """Run ledger and entity registry.

    Attributes:
        filename: SQLite database file, or ":memory:"
        error_reporting: Log each error as it is recorded
    """

    def __init__(self, filename: str = ":memory:", command: str = "", arguments: list[str] | None = None):
        self.filename = filename
        self.error_reporting = False

        self._conn: sqlite3.Connection | None = connect(filename)
        try:
            self._conn.executescript(SCHEMA)
        except sqlite3.Error as e:
            self._conn.close()
            self._conn = None
            raise SyncStoreException(f"Unable to create ledger schema in {filename}: {e}", cause=e)
        self._closed = False

        self._command = command
        self._arguments = list(arguments or [])
        self._run_id: int | None = None
        self._run_uuid: str | None = None

        self._providers: dict[int, Any] = {}
        self._provider_map: dict[str, int] = {}
        self._entity_types: dict[int, type] = {}
        self._entity_type_map: dict[type, int] = {}
        self._namespaces: list[tuple[str, str, str]] | None = None
        self._registered_namespaces: set[str] = set()

        self._deferred_providers: list[Any] = []
        self._deferred_entity_types: list[type] = []
        self._deferred_namespaces: dict[str, tuple[str, str]] = {}

        self._entities: dict[tuple, SyncEntity] = {}
        self._entity_checkpoints: dict[int, int] = {}
        self._deferred_entities: dict[tuple, dict[int, Any]] = {}
        self._deferred_relationships: dict[tuple, dict[int, Any]] = {}
        self._checkpoint = 0

        self._errors = SyncErrorCollection()

    def __enter__(self) -> "SyncStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close(1 if exc_type is not None else 0)

    def __del__(self):
        if not getattr(self, "_closed", True):
            self.close(1 if self._errors.error_count else 0)

    def _db(self) -> sqlite3.Connection:
        if self._conn is None:
            raise SyncStoreException("Store is closed")
        return self._conn

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    # ----------------------------------------
    # Run lifecycle
    # ----------------------------------------

    def run_has_started(self) -> bool:
        return self._run_id is not None

    @property
    def run_id(self) -> int:
        if self._run_id is None:
            raise LogicError("Run has not started")
        return self._run_id

    @property
    def run_uuid(self) -> str:
        if self._run_uuid is None:
            raise LogicError("Run has not started")
        return self._run_uuid

    def check(self) -> "SyncStore":
        """Start the run if necessary and flush deferred registrations."""
        if self._run_id is not None:
            return self

        run_uuid = str(uuid.uuid4())
        with database_transaction(self._db()) as cur:
            cur.execute(
                "INSERT INTO _sync_run (run_uuid, run_command, run_arguments_json) VALUES (?, ?, ?)",
                (run_uuid, self._command, json.dumps(self._arguments)),
            )
            self._run_id = cur.lastrowid
        self._run_uuid = run_uuid
        logger.info(f"Started sync run {run_uuid} (#{self._run_id}): {self._command or '-'}")

        providers, self._deferred_providers = self._deferred_providers, []
        for provider in providers:
            self.register_provider(provider)

        entity_types, self._deferred_entity_types = self._deferred_entity_types, []
        for entity_type in entity_types:
            self.register_entity_type(entity_type)

        namespaces, self._deferred_namespaces = self._deferred_namespaces, {}
        for prefix, (base_uri, module) in namespaces.items():
            self._write_namespace(prefix, base_uri, module)

        return self._reload()

    def close(self, exit_status: int = 0) -> None:
        """Finish the run (if one started) and close the database.

        Only the first call has any effect.
        """
        if self._closed:
            return
        self._closed = True

        conn = self._conn
        if conn is None:
            return
        try:
            if self._run_id is not None:
                with database_transaction(conn) as cur:
                    cur.execute(
                        """
                        UPDATE _sync_run
                        SET finished_at = CURRENT_TIMESTAMP,
                            exit_status = ?,
                            error_count = ?,
                            warning_count = ?,
                            errors_json = ?
                        WHERE run_uuid = ?
                        """,
                        (
                            exit_status,
                            self._errors.error_count,
                            self._errors.warning_count,
                            json.dumps(self._errors.get_summary(), default=str),
                            self._run_uuid,
                        ),
                    )
                logger.info(f"Finished sync run {self._run_uuid} with exit status {exit_status}")
        finally:
            conn.close()
            self._conn = None

    # ----------------------------------------
    # Providers
    # ----------------------------------------

    def get_provider_signature(self, provider) -> str:
        """Stable hash of the provider's class and backend identifier."""
        parts = [_class_path(type(provider)), *map(str, provider.get_backend_identifier())]
        return hashlib.sha256("\0".join(parts).encode()).hexdigest()

    def register_provider(self, provider) -> "SyncStore":
        """Register a provider, reusing its id from earlier runs.

        Raises:
            LogicError: If a provider with the same signature is already
                registered in this run
        """
        if self._run_id is None:
            self._deferred_providers.append(provider)
            return self

        signature = self.get_provider_signature(provider)
        if signature in self._provider_map:
            raise LogicError(f"Provider already registered: {type_basename(provider)}")

        provider_class = _class_path(type(provider))
        with database_transaction(self._db()) as cur:
            cur.execute(
                """
                INSERT INTO _sync_provider (provider_hash, provider_class) VALUES (?, ?)
                ON CONFLICT (provider_hash) DO UPDATE SET last_seen = CURRENT_TIMESTAMP
                """,
                (signature, provider_class),
            )
            row = cur.execute(
                "SELECT provider_id FROM _sync_provider WHERE provider_hash = ?", (signature,)
            ).fetchone()
        if row is None:
            raise SyncStoreException("Error retrieving provider ID")

        provider_id = row[0]
        self._providers[provider_id] = provider
        self._provider_map[signature] = provider_id
        provider.set_provider_id(provider_id)
        logger.debug(f"Registered provider {provider_class} as #{provider_id}")
        return self

    def has_provider(self, provider) -> bool:
        if self._run_id is None:
            return any(p is provider for p in self._deferred_providers)
        return self.get_provider_signature(provider) in self._provider_map

    def get_provider_id(self, provider) -> int:
        """Id of a registered provider (starts the run).

        Raises:
            LogicError: If the provider is not registered
        """
        self.check()
        provider_id = self._provider_map.get(self.get_provider_signature(provider))
        if provider_id is None:
            raise LogicError(f"Provider not registered: {type_basename(provider)}")
        return provider_id

    def get_provider(self, id_or_signature: int | str):
        """Provider by id or signature, or None."""
        if isinstance(id_or_signature, int):
            return self._providers.get(id_or_signature)
        if self._run_id is None:
            for provider in self._deferred_providers:
                if self.get_provider_signature(provider) == id_or_signature:
                    return provider
            return None
        provider_id = self._provider_map.get(id_or_signature)
        return self._providers.get(provider_id) if provider_id is not None else None

    def get_providers(self) -> list[Any]:
        if self._run_id is None:
            return list(self._deferred_providers)
        return list(self._providers.values())

    # ----------------------------------------
    # Entity types and namespaces
    # ----------------------------------------

    def register_entity_type(self, entity_type: type) -> "SyncStore":
        """Register an entity type (idempotent).

        Raises:
            LogicError: If ``entity_type`` is not a SyncEntity subclass
        """
        if not (isinstance(entity_type, type) and issubclass(entity_type, SyncEntity)):
            raise LogicError(f"Not a SyncEntity subclass: {entity_type!r}")

        if self._run_id is None:
            if entity_type not in self._deferred_entity_types:
                self._deferred_entity_types.append(entity_type)
            return self

        if entity_type in self._entity_type_map:
            return self

        class_path = _class_path(entity_type)
        with database_transaction(self._db()) as cur:
            cur.execute(
                """
                INSERT INTO _sync_entity_type (entity_type_class) VALUES (?)
                ON CONFLICT (entity_type_class) DO UPDATE SET last_seen = CURRENT_TIMESTAMP
                """,
                (class_path,),
            )
            row = cur.execute(
                "SELECT entity_type_id FROM _sync_entity_type WHERE entity_type_class = ?",
                (class_path,),
            ).fetchone()
        if row is None:
            raise SyncStoreException("Error retrieving entity type ID")

        self._entity_types[row[0]] = entity_type
        self._entity_type_map[entity_type] = row[0]
        return self

    def get_entity_type_id(self, entity_type: type) -> int:
        self.check()
        self.register_entity_type(entity_type)
        return self._entity_type_map[entity_type]

    def register_namespace(self, prefix: str, base_uri: str, module: str) -> "SyncStore":
        """Give entity types in ``module`` (and below) URIs under ``base_uri``.

        Raises:
            LogicError: If the prefix is invalid or already registered
        """
        prefix = prefix.lower()
        if prefix in self._registered_namespaces or prefix in self._deferred_namespaces:
            raise LogicError(f"Prefix already registered: {prefix}")
        if not _PREFIX.match(prefix):
            raise LogicError(f"Invalid prefix: {prefix}")

        base_uri = base_uri.rstrip("/") + "/"
        module = module.strip(".") + "."

        if self._run_id is None:
            self._deferred_namespaces[prefix] = (base_uri, module)
            return self

        self._write_namespace(prefix, base_uri, module)
        return self._reload()

    def _write_namespace(self, prefix: str, base_uri: str, module: str) -> None:
        with database_transaction(self._db()) as cur:
            cur.execute(
                """
                INSERT INTO _sync_entity_namespace (entity_namespace_prefix, base_uri, python_module)
                VALUES (?, ?, ?)
                ON CONFLICT (entity_namespace_prefix) DO UPDATE SET
                  base_uri = excluded.base_uri,
                  python_module = excluded.python_module,
                  last_seen = CURRENT_TIMESTAMP
                """,
                (prefix, base_uri, module),
            )
        self._registered_namespaces.add(prefix)

    def _reload(self) -> "SyncStore":
        rows = fetch_all(
            self._db(),
            """
            SELECT entity_namespace_prefix, base_uri, python_module
            FROM _sync_entity_namespace
            ORDER BY LENGTH(python_module) DESC
            """,
        )
        self._namespaces = [
            (row["entity_namespace_prefix"], row["base_uri"], row["python_module"].lower())
            for row in rows
        ]
        return self

    def _find_namespace(self, entity_type: type) -> tuple[str, str, str] | None:
        path = _class_path(entity_type).lower()
        if self._run_id is None:
            candidates = sorted(
                ((p, uri, m.lower()) for p, (uri, m) in self._deferred_namespaces.items()),
                key=lambda ns: len(ns[2]),
                reverse=True,
            )
        else:
            candidates = self._namespaces or []
        for prefix, base_uri, module in candidates:
            if path.startswith(module):
                return prefix, base_uri, module
        return None

    def get_entity_type_namespace(self, entity_type: type) -> str | None:
        """Prefix of the namespace ``entity_type`` belongs to, or None."""
        namespace = self._find_namespace(entity_type)
        return namespace[0] if namespace else None

    def get_entity_type_uri(self, entity_type: type, compact: bool = True) -> str:
        """``prefix:Path`` (compact), ``base_uri/Path``, or ``/module/path/Name``."""
        namespace = self._find_namespace(entity_type)
        if namespace is None:
            return default_type_uri(entity_type)
        prefix, base_uri, module = namespace
        relative = _class_path(entity_type)[len(module):].replace(".", "/")
        return f"{prefix}:{relative}" if compact else f"{base_uri}{relative}"

    # ----------------------------------------
    # Entities
    # ----------------------------------------

    @property
    def deferral_checkpoint(self) -> int:
        return self._checkpoint

    def _next_checkpoint(self) -> int:
        checkpoint = self._checkpoint
        self._checkpoint += 1
        return checkpoint

    def entity(self, provider_id: int, entity: SyncEntity) -> "SyncStore":
        """Register an entity received from a provider.

        Pending deferred entities with the same coordinates are resolved.

        Raises:
            LogicError: If an entity with the same coordinates is registered
        """
        entity_type = type(entity)
        key = (provider_id, entity_type, str(entity.id))
        if key in self._entities:
            raise LogicError("Entity already registered")

        self._entities[key] = entity
        self._entity_checkpoints[id(entity)] = self._next_checkpoint()
        self._snapshot(provider_id, entity)

        pending = self._deferred_entities.pop(key, None)
        if pending:
            for deferred in pending.values():
                deferred.replace(entity)
        return self

    def _snapshot(self, provider_id: int, entity: SyncEntity) -> None:
        entity_type = type(entity)
        entity_type_id = self.get_entity_type_id(entity_type)
        rules = SyncSerializeRules(
            entity_type, for_sync_store=True, inherit=entity_type.get_serialize_rules()
        )
        entity_json = json.dumps(serialize(entity, rules, self), default=str)
        canonical_id = None if entity.canonical_id is None else str(entity.canonical_id)
        with database_transaction(self._db()) as cur:
            cur.execute(
                """
                INSERT INTO _sync_entity_type_state (provider_id, entity_type_id, last_sync)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT (provider_id, entity_type_id) DO UPDATE SET
                  last_seen = CURRENT_TIMESTAMP,
                  last_sync = CURRENT_TIMESTAMP
                """,
                (provider_id, entity_type_id),
            )
            cur.execute(
                """
                INSERT INTO _sync_entity
                  (provider_id, entity_type_id, entity_id, canonical_id, last_sync, entity_json)
                VALUES (?, ?, ?, ?, CURRENT_TIMESTAMP, ?)
                ON CONFLICT (provider_id, entity_type_id, entity_id) DO UPDATE SET
                  canonical_id = excluded.canonical_id,
                  is_deleted = 0,
                  last_seen = CURRENT_TIMESTAMP,
                  last_sync = CURRENT_TIMESTAMP,
                  entity_json = excluded.entity_json
                """,
                (provider_id, entity_type_id, str(entity.id), canonical_id, entity_json),
            )

    def get_entity(self, provider_id: int, entity_type: type, entity_id: Any) -> SyncEntity | None:
        return self._entities.get((provider_id, entity_type, str(entity_id)))

    def get_entity_checkpoint(self, entity: SyncEntity) -> int | None:
        return self._entity_checkpoints.get(id(entity))

    def get_entity_snapshot(self, provider_id: int, entity_type: type, entity_id: Any) -> dict | None:
        """Last JSON snapshot of an entity from this or an earlier run."""
        row = fetch_one(
            self._db(),
            """
            SELECT entity_json FROM _sync_entity
            WHERE provider_id = ? AND entity_type_id = ? AND entity_id = ?
            """,
            (provider_id, self.get_entity_type_id(entity_type), str(entity_id)),
        )
        return json.loads(row["entity_json"]) if row else None

    # ----------------------------------------
    # Deferred entities and relationships
    # ----------------------------------------

    def defer_entity(self, provider_id: int, entity_type: type, entity_id: Any, deferred) -> "SyncStore":
        """File a deferred entity until the entity it stands for is registered.

        If the entity is already registered, the placeholder is replaced
        immediately. Otherwise, under RESOLVE_EARLY, it is fetched now.
        """
        key = (provider_id, entity_type, str(entity_id))
        entity = self._entities.get(key)
        if entity is not None:
            deferred.replace(entity)
            return self

        self._deferred_entities.setdefault(key, {})[self._next_checkpoint()] = deferred

        ctx = getattr(deferred, "ctx", None)
        if ctx is not None and ctx.deferral_policy == DeferralPolicy.RESOLVE_EARLY:
            deferred.resolve()
        return self

    def defer_relationship(
        self,
        provider_id: int,
        entity_type: type,
        for_entity_type: type,
        for_entity_property: str,
        for_entity_id: Any,
        deferred,
    ) -> "SyncStore":
        """File a deferred relationship according to its hydration policy.

        Raises:
            LogicError: If a relationship with the same coordinates is
                already registered in this run
        """
        key = (provider_id, entity_type, for_entity_type, for_entity_property, str(for_entity_id))
        if key in self._deferred_relationships:
            raise LogicError("Relationship already registered")
        queue: dict[int, Any] = {}
        self._deferred_relationships[key] = queue

        policy = getattr(deferred, "hydration_policy", HydrationPolicy.DEFER)
        if policy == HydrationPolicy.LAZY:
            return self
        if policy == HydrationPolicy.EAGER:
            deferred.resolve()
            return self

        queue[self._next_checkpoint()] = deferred
        return self

    def resolve_deferred(
        self,
        from_checkpoint: int | None = None,
        entity_type: type | None = None,
        provider_id: int | None = None,
    ) -> list[SyncEntity]:
        """Resolve deferred relationships and entities until none remain.

        Relationships are resolved first because one request can deliver
        many entities, some of which may satisfy deferred entities.

        Args:
            from_checkpoint: Only resolve deferrals filed at or after this
                checkpoint
            entity_type: Only resolve deferrals of this type
            provider_id: Only resolve deferrals for this provider

        Returns:
            Entities resolved, without duplicates. Entities delivered by
            relationships are included only if registered during this call.
        """
        checkpoint = self._checkpoint
        resolved: dict[int, SyncEntity] = {}
        passes = 0

        while True:
            passes += 1
            relationships = self.resolve_deferred_relationships(
                from_checkpoint, entity_type, provider_id=provider_id
            )
            if relationships:
                for entities in relationships:
                    for entity in entities:
                        if self._entity_checkpoints.get(id(entity), -1) >= checkpoint:
                            resolved[id(entity)] = entity
                continue

            entities = self.resolve_deferred_entities(from_checkpoint, entity_type, provider_id)
            if not entities:
                break
            for entity in entities:
                resolved[id(entity)] = entity

        logger.debug(f"Resolved {len(resolved)} deferred entities in {passes} pass(es)")
        return list(resolved.values())

    def resolve_deferred_entities(
        self,
        from_checkpoint: int | None = None,
        entity_type: type | None = None,
        provider_id: int | None = None,
    ) -> list[SyncEntity]:
        """Fetch one entity for each set of matching deferred entities."""
        resolved = []
        for key in list(self._deferred_entities):
            pid, etype, _ = key
            if provider_id is not None and pid != provider_id:
                continue
            if entity_type is not None and etype is not entity_type:
                continue
            queue = self._deferred_entities.get(key)
            if not queue:
                continue
            if from_checkpoint is not None:
                candidates = [d for cp, d in queue.items() if cp >= from_checkpoint]
            else:
                candidates = list(queue.values())
            if not candidates:
                continue

            entity = candidates[0].resolve()
            resolved.append(entity)

            # The fetch registers the entity and clears the queue unless the
            # backend returned it under another id
            pending = self._deferred_entities.pop(key, None)
            if pending:
                for deferred in pending.values():
                    if not deferred.is_resolved:
                        deferred.replace(entity)
        return resolved

    def resolve_deferred_relationships(
        self,
        from_checkpoint: int | None = None,
        entity_type: type | None = None,
        for_entity_type: type | None = None,
        provider_id: int | None = None,
    ) -> list[list[SyncEntity]]:
        """Fetch every matching deferred relationship."""
        resolved = []
        for key in list(self._deferred_relationships):
            pid, etype, for_type, _, _ = key
            if provider_id is not None and pid != provider_id:
                continue
            if entity_type is not None and etype is not entity_type:
                continue
            if for_entity_type is not None and for_type is not for_entity_type:
                continue
            queue = self._deferred_relationships[key]
            for checkpoint in list(queue):
                if from_checkpoint is not None and checkpoint < from_checkpoint:
                    continue
                deferred = queue.pop(checkpoint)
                resolved.append(deferred.resolve())
        return resolved

    # ----------------------------------------
    # Heartbeats
    # ----------------------------------------

    def check_heartbeats(self, *providers, ttl: int = 300, fail_early: bool = True) -> "SyncStore":
        """Check that providers (default: all registered) can reach their backends.

        Raises:
            HeartbeatCheckFailed: If any provider is unreachable
        """
        self.check()
        if providers:
            unique = []
            for provider in providers:
                if not any(p is provider for p in unique):
                    unique.append(provider)
            providers = tuple(unique)
        else:
            providers = tuple(self._providers.values())

        failed = []
        for provider in providers:
            provider_id = self._provider_map.get(self.get_provider_signature(provider))
            name = f"{type_basename(provider)} [{'#' + str(provider_id) if provider_id else 'unregistered'}]"
            logger.debug(f"Checking heartbeat: {name}")
            try:
                provider.check_heartbeat(ttl)
                logger.info(f"Heartbeat OK: {name}")
            except NotImplementedError:
                logger.info(f"Heartbeat check not supported: {name}")
            except BackendUnreachable as e:
                logger.warning(f"No heartbeat: {name}: {e.message}")
                failed.append(provider)
                self.error(SyncError(
                    SyncErrorType.BACKEND_UNREACHABLE,
                    "Heartbeat check failed: %s",
                    values=[{
                        "provider_id": provider_id,
                        "provider_class": _class_path(type(provider)),
                        "exception": type(e).__name__,
                        "message": e.message,
                    }],
                    provider=provider,
                ))
            if fail_early and failed:
                break

        if failed:
            raise HeartbeatCheckFailed(*failed)
        return self

    # ----------------------------------------
    # Errors
    # ----------------------------------------

    def error(self, error: SyncError, deduplicate: bool = False) -> "SyncStore":
        """Record an error against the run."""
        seen = self._errors.append(error, deduplicate)
        if seen is error and self.error_reporting:
            error.log()
        return self

    def get_errors(self) -> SyncErrorCollection:
        return SyncErrorCollection(list(self._errors))

    @property
    def error_count(self) -> int:
        return self._errors.error_count

    @property
    def warning_count(self) -> int:
        return self._errors.warning_count

    def report_errors(self, success_text: str = "No sync errors recorded") -> "SyncStore":
        self._errors.report(success_text)
        return self

    # ----------------------------------------
    # Ledger queries
    # ----------------------------------------

    def list_runs(self, limit: int = 20) -> list[dict[str, Any]]:
        """Most recent runs, newest first."""
        return fetch_all(
            self._db(),
            """
            SELECT run_id, run_uuid, run_command, run_arguments_json, started_at,
                   finished_at, exit_status, error_count, warning_count
            FROM _sync_run
            ORDER BY run_id DESC
            LIMIT ?
            """,
            (limit,),
        )

    def get_run(self, run_uuid: str) -> dict[str, Any] | None:
        row = fetch_one(self._db(), "SELECT * FROM _sync_run WHERE run_uuid = ?", (run_uuid,))
        if row is not None:
            row["run_arguments"] = json.loads(row.pop("run_arguments_json") or "[]")
            row["errors"] = json.loads(row.pop("errors_json") or "[]")
        return row


__all__ = ["SyncStore", "SCHEMA"]
