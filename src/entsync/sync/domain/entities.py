"""Domain entities for sync operations.

Every record the engine moves between a backend and the caller is an
instance of a ``SyncEntity`` subclass. Subclasses are plain dataclasses with
a handful of class-level mapping tables that tell the field mapper how
backend keys line up with attributes:

    relationships       attribute -> Relationship(target type, many)
    removable_prefixes  key prefixes stripped before matching, e.g. "user_"
    field_aliases       normalised backend key -> attribute name
    date_fields         attributes parsed from ISO 8601 strings

Example:
    @dataclass(eq=False)
    class Post(SyncEntity):
        title: str | None = None
        author: "User | None" = None

        relationships = {"author": Relationship("User")}
"""

from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, ClassVar

from ...api.exceptions import LogicError
from .enums import EntityState
from .naming import type_basename, type_snake_name
from .serialize_rules import SyncSerializeRules

# Entity classes by unqualified name, for string relationship targets
_ENTITY_TYPES: dict[str, type["SyncEntity"]] = {}


def get_entity_type(name: str) -> type["SyncEntity"]:
    """Look up a registered entity class by its unqualified name.

    Raises:
        LogicError: If no entity class with that name has been defined
    """
    try:
        return _ENTITY_TYPES[name]
    except KeyError:
        raise LogicError(f"Unknown entity type: {name}")


@dataclass(frozen=True)
class Relationship:
    """A reference from one entity to another (or to a list of others)."""

    target: Any
    many: bool = False

    @property
    def target_type(self) -> type["SyncEntity"]:
        if isinstance(self.target, str):
            return get_entity_type(self.target)
        return self.target


@dataclass(eq=False)
class SyncEntity:
    """Base class for entities serviced by sync providers.

    Identity is object identity: the store guarantees there is at most one
    instance per (provider, type, id), so two equal records are the same
    object.

    Attributes:
        id: Identifier assigned by the backend
        canonical_id: Identifier shared across backends, if any
        meta: Backend keys with no matching attribute
        provider: Provider that produced the entity
        state: Transient flags (e.g. SERIALIZING)
    """

    id: Any = None
    canonical_id: Any = None
    meta: dict[str, Any] = field(default_factory=dict, repr=False)
    provider: Any = field(default=None, repr=False)
    state: EntityState = field(default=EntityState.NONE, repr=False)

    relationships: ClassVar[dict[str, Relationship]] = {}
    removable_prefixes: ClassVar[tuple[str, ...]] = ()
    field_aliases: ClassVar[dict[str, str]] = {}
    date_fields: ClassVar[tuple[str, ...]] = ()

    INTERNAL_FIELDS: ClassVar[frozenset[str]] = frozenset({"meta", "provider", "state"})

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        _ENTITY_TYPES[cls.__name__] = cls
        # Pin the inherited __repr__: @dataclass only generates one when the
        # class body has none
        if "__repr__" not in vars(cls):
            cls.__repr__ = cls.__repr__

    @classmethod
    def entity_fields(cls) -> list[str]:
        """Names of the attributes that carry entity data."""
        return [f.name for f in fields(cls) if f.name not in cls.INTERNAL_FIELDS]

    @classmethod
    def get_relationship(cls, name: str) -> Relationship | None:
        return cls.relationships.get(name)

    @classmethod
    def get_removable_prefixes(cls) -> tuple[str, ...]:
        """Prefixes stripped from backend keys, including the type's own name."""
        own = type_snake_name(cls) + "_"
        if own in cls.removable_prefixes:
            return cls.removable_prefixes
        return cls.removable_prefixes + (own,)

    @classmethod
    def get_serialize_rules(cls) -> SyncSerializeRules:
        """Default serialization rules; subclasses override to add rules."""
        return SyncSerializeRules(cls)

    @property
    def is_serializing(self) -> bool:
        return bool(self.state & EntityState.SERIALIZING)

    @classmethod
    def type_uri(cls, store=None, compact: bool = True) -> str:
        """URI of the entity type, via the store's namespaces when available."""
        if store is not None:
            return store.get_entity_type_uri(cls, compact=compact)
        return default_type_uri(cls)

    def uri(self, store=None, compact: bool = True) -> str:
        """Human-readable reference, e.g. ``/app/models/User/42``."""
        store = store or _provider_store(self.provider)
        ident = self.id if self.id is not None else id(self)
        return f"{self.type_uri(store, compact)}/{ident}"

    def to_link(self, store=None, compact: bool = True) -> dict[str, Any]:
        store = store or _provider_store(self.provider)
        return {
            "@type": self.type_uri(store, compact),
            "@id": self.id if self.id is not None else id(self),
        }

    def __repr__(self) -> str:
        return f"<{type_basename(self)} id={self.id!r}>"


def default_type_uri(entity_type: type) -> str:
    """``/module/path/Name`` for a type with no registered namespace."""
    return "/" + "/".join(entity_type.__module__.split(".") + [entity_type.__name__])


def _provider_store(provider):
    return getattr(provider, "store", None) if provider is not None else None


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO 8601 timestamp (``Z`` suffix allowed)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        return value
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


__all__ = [
    "SyncEntity",
    "Relationship",
    "get_entity_type",
    "default_type_uri",
    "parse_timestamp",
]
