"""Name conversions used for backend keys, filters and context values."""

import re

_CAMEL_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_ACRONYM_BOUNDARY = re.compile(r"([A-Z]+)([A-Z][a-z])")
_SEPARATORS = re.compile(r"[\s\-.]+")


def snake_case(name: str) -> str:
    """Convert ``userId``, ``UserID``, ``user-id`` or ``User Id`` to ``user_id``.

    Leading underscores are preserved.
    """
    stripped = name.lstrip("_")
    prefix = name[: len(name) - len(stripped)]
    value = _SEPARATORS.sub("_", stripped)
    value = _ACRONYM_BOUNDARY.sub(r"\1_\2", value)
    value = _CAMEL_BOUNDARY.sub(r"\1_\2", value)
    value = re.sub(r"_+", "_", value)
    return prefix + value.lower()


def type_basename(entity_type) -> str:
    """Unqualified class name of a type or instance."""
    if not isinstance(entity_type, type):
        entity_type = type(entity_type)
    return entity_type.__name__


def type_qualname(entity_type) -> str:
    """Module-qualified class name, unique per class: ``app.models.User``."""
    if not isinstance(entity_type, type):
        entity_type = type(entity_type)
    return f"{entity_type.__module__}.{entity_type.__qualname__}"


def type_snake_name(entity_type) -> str:
    """snake_case name of a type, e.g. ``BlogPost`` -> ``blog_post``."""
    return snake_case(type_basename(entity_type))


__all__ = ["snake_case", "type_basename", "type_qualname", "type_snake_name"]
