"""HTTP provider base class.

Owns one ``httpx.Client`` for the lifetime of the provider and hands out
per-endpoint HttpClient instances to its definitions. Subclasses set a base
URL (or the name of an environment variable holding one), override
``get_headers()``/``get_pager()`` where endpoints need them, override
``get_heartbeat()`` to enable heartbeat checks, and build one
HttpSyncDefinition per entity type:

    class CrmProvider(HttpSyncProvider):
        entity_types = ("User",)
        base_url_env = "CRM_BASE_URL"

        def build_definition(self, entity_type):
            return self.builder_for(
                entity_type,
                operations=[SyncOperation.READ, SyncOperation.READ_LIST],
                path="/users",
            )
"""

import logging
import os
from typing import Any, ClassVar

import httpx

from ...api.client import HttpClient, Pager
from ...api.config import SyncConfig
from ...api.exceptions import APIError, ConfigurationError, NetworkError
from ..domain.entities import SyncEntity
from .http_definition import HttpSyncDefinition
from .provider import SyncProvider

logger = logging.getLogger(__name__)


class HttpSyncProvider(SyncProvider):
    """Base class for providers backed by a JSON HTTP API.

    Attributes:
        base_url: Root URL endpoint paths are appended to
        dry_run: Skip write requests and echo their payloads
        session: Shared httpx.Client
    """

    base_url_env: ClassVar[str | None] = None
    unreachable_errors = (NetworkError, APIError)

    def __init__(
        self,
        store,
        base_url: str | None = None,
        config: SyncConfig | None = None,
        transport: httpx.BaseTransport | None = None,
        dry_run: bool | None = None,
    ):
        if base_url is None and self.base_url_env:
            base_url = os.getenv(self.base_url_env)
            if not base_url:
                raise ConfigurationError(
                    f"{self.base_url_env} environment variable is required",
                    missing_keys=[self.base_url_env],
                )
        if not base_url:
            raise ConfigurationError(f"Base URL required for {type(self).__name__}")

        config = config or SyncConfig()
        self.base_url = base_url.rstrip("/")
        self.dry_run = config.dry_run if dry_run is None else dry_run
        self.session = httpx.Client(timeout=config.http_timeout, transport=transport)
        super().__init__(store)

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "HttpSyncProvider":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def get_backend_identifier(self) -> list[str]:
        return [self.base_url]

    # ----------------------------------------
    # Clients
    # ----------------------------------------

    def get_endpoint_url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def get_headers(self, path: str) -> dict[str, str]:
        """Headers for requests to ``path`` (override to add auth)."""
        return {"Accept": "application/json"}

    def get_pager(self, path: str) -> Pager | None:
        """Default pager for ``path``."""
        return None

    def get_always_paginate(self, path: str) -> bool:
        return False

    def get_http_client(
        self,
        path: str,
        headers: dict[str, str] | None = None,
        pager: Pager | None = None,
        always_paginate: bool = False,
    ) -> HttpClient:
        if pager is None:
            pager = self.get_pager(path)
            always_paginate = bool(pager) and self.get_always_paginate(path)
        return HttpClient(
            self.session,
            self.get_endpoint_url(path),
            headers=self.get_headers(path) if headers is None else headers,
            pager=pager,
            always_paginate=always_paginate,
        )

    # ----------------------------------------
    # Definitions
    # ----------------------------------------

    def builder_for(self, entity_type: type[SyncEntity], **kwargs: Any) -> HttpSyncDefinition:
        """HttpSyncDefinition for ``entity_type`` bound to this provider."""
        return HttpSyncDefinition(entity_type, self, **kwargs)

    def build_definition(self, entity_type: type[SyncEntity]) -> HttpSyncDefinition:
        return self.builder_for(entity_type)


__all__ = ["HttpSyncProvider"]
