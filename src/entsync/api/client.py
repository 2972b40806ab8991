#!/usr/bin/env python3
"""HTTP Client for REST Sync Providers.

This module provides the request layer the HTTP sync provider builds one of
per endpoint:

    - Shared connection pooling via a single httpx.Client per provider
    - JSON request/response handling
    - Offset-based pagination with configurable page sizes
    - Comprehensive error handling with typed exceptions

Design Philosophy:
    This client knows HOW to talk to a REST backend, but not WHAT to fetch.
    It has no knowledge of entities or operations. That knowledge belongs
    in the HTTP sync definition that composes this client.

Usage:
    with httpx.Client() as session:
        client = HttpClient(session, "https://api.example.com/users")
        user = client.get()

        for item in HttpClient(session, url, pager=OffsetPager()).get_paginated():
            process(item)

Author: Entity Sync Team
"""
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional

import httpx

from .exceptions import (
    APIError,
    ConnectionError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    ServerError,
    TimeoutError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# ============================================
# Pagination
# ============================================

@dataclass
class PaginationConfig:
    """Configuration for paginated requests.

    Attributes:
        page_size: Number of items per request (backend-specific limits apply)
        delay_between_pages: Seconds to wait between requests (rate limiting)
        max_pages: Safety limit to prevent infinite loops (None = no limit)
    """
    page_size: int = 50
    delay_between_pages: float = 0.0
    max_pages: Optional[int] = None


class Pager(ABC):
    """Drives a paginated endpoint.

    A pager receives a function that performs one request for a given query
    and yields every item across all pages.
    """

    @abstractmethod
    def paginate(
        self,
        fetch: Callable[[dict[str, Any]], Any],
        query: Optional[dict[str, Any]] = None,
    ) -> Iterator[dict[str, Any]]:
        """Yield items from each page.

        Args:
            fetch: Performs one request with the given query, returns parsed JSON
            query: Query parameters of the first request
        """
        ...


class OffsetPager(Pager):
    """Offset/limit pagination over an ``{"items": [...], "total": n}`` envelope.

    Plain JSON lists are accepted too; a short page ends the iteration.
    """

    def __init__(
        self,
        config: Optional[PaginationConfig] = None,
        items_key: str = "items",
        total_key: str = "total",
        offset_param: str = "offset",
        limit_param: str = "limit",
    ):
        self.config = config or PaginationConfig()
        self.items_key = items_key
        self.total_key = total_key
        self.offset_param = offset_param
        self.limit_param = limit_param

    def paginate(self, fetch, query=None):
        config = self.config
        params = dict(query or {})

        offset = 0
        total = None
        pages_fetched = 0
        fetched_count = 0

        while True:
            params[self.offset_param] = offset
            params[self.limit_param] = config.page_size

            data = fetch(params)

            if isinstance(data, list):
                items = data
            else:
                items = (data or {}).get(self.items_key, [])
                if total is None:
                    total = (data or {}).get(self.total_key)
                    if total is not None:
                        logger.info(f"Paginating: {total:,} total items")

            yield from items

            pages_fetched += 1
            fetched_count = offset + len(items)

            if total is not None and fetched_count >= total:
                break
            if len(items) < config.page_size:
                break
            if config.max_pages and pages_fetched >= config.max_pages:
                logger.info(f"Reached max_pages limit ({config.max_pages})")
                break

            offset += config.page_size

            if config.delay_between_pages > 0:
                time.sleep(config.delay_between_pages)

        logger.debug(f"Pagination complete: {fetched_count:,} items in {pages_fetched} pages")


def as_item_list(data: Any) -> list[Any]:
    """Normalise a non-paginated list response to a list of records."""
    if data is None:
        return []
    if isinstance(data, list):
        return data
    return [data]


# ============================================
# The Client
# ============================================

class HttpClient:
    """Synchronous JSON client for a single endpoint URL.

    Attributes:
        url: Absolute URL every request is sent to
        headers: Headers merged into every request
        pager: Optional pager used by the *_paginated methods
        always_paginate: Route get()/post() through the pager as well
    """

    def __init__(
        self,
        session: httpx.Client,
        url: str,
        headers: Optional[dict[str, str]] = None,
        pager: Optional[Pager] = None,
        always_paginate: bool = False,
    ):
        self.session = session
        self.url = url
        self.headers = dict(headers or {})
        self.pager = pager
        self.always_paginate = always_paginate

    # ----------------------------------------
    # Low-Level Request Methods
    # ----------------------------------------

    def _request(
        self,
        method: str,
        params: Optional[dict] = None,
        json_body: Any = None,
    ) -> Any:
        """Make a single HTTP request (no retry logic).

        Args:
            method: HTTP method (GET, POST, PUT, PATCH, DELETE)
            params: Query parameters
            json_body: JSON request body

        Returns:
            Parsed JSON response, or None for an empty body

        Raises:
            APIError: If response status is not 2xx
            ConnectionError: If connection to server fails
            TimeoutError: If request times out
        """
        logger.debug(f"{method} {self.url} params={params}")
        try:
            response = self.session.request(
                method,
                self.url,
                params=params or None,
                json=json_body,
                headers=self.headers or None,
            )
        except httpx.ConnectError as e:
            raise ConnectionError(
                f"Failed to connect to {self.url}",
                host=self.url,
                cause=e,
            )
        except httpx.TimeoutException as e:
            raise TimeoutError(
                f"Request to {self.url} timed out",
                cause=e,
            )
        except httpx.RequestError as e:
            raise NetworkError(
                f"Network error during {method} {self.url}: {e}",
                cause=e,
            )

        if response.status_code >= 400:
            raise self._create_api_error(
                status=response.status_code,
                method=method,
                response_body=response.text,
            )

        if not response.content:
            return None
        return response.json()

    def _create_api_error(
        self,
        status: int,
        method: str,
        response_body: str,
    ) -> APIError:
        """Create appropriate APIError subclass based on status code."""
        endpoint = self.url

        if status in (404, 410):
            return NotFoundError(
                resource_type="Resource",
                resource_id=endpoint,
                status_code=status,
                endpoint=endpoint,
                method=method,
                response_body=response_body,
            )

        if status == 429:
            return RateLimitError(
                f"Rate limit exceeded for {endpoint}",
                endpoint=endpoint,
                method=method,
                response_body=response_body,
            )

        if status in (400, 422):
            return ValidationError(
                f"Validation failed for {method} {endpoint}",
                status_code=status,
                endpoint=endpoint,
                method=method,
                response_body=response_body,
            )

        if status >= 500:
            return ServerError(
                f"Server error ({status}) for {method} {endpoint}",
                status_code=status,
                endpoint=endpoint,
                method=method,
                response_body=response_body,
            )

        return APIError(
            f"{method} {endpoint} failed",
            status_code=status,
            endpoint=endpoint,
            method=method,
            response_body=response_body,
        )

    # ----------------------------------------
    # High-Level Request Methods
    # ----------------------------------------

    def get(self, query: Optional[dict] = None) -> Any:
        """Make a GET request."""
        if self.always_paginate and self.pager:
            return list(self.get_paginated(query))
        return self._request("GET", params=query)

    def post(self, data: Any = None, query: Optional[dict] = None) -> Any:
        """Make a POST request with a JSON body."""
        if self.always_paginate and self.pager:
            return list(self.post_paginated(data, query))
        return self._request("POST", params=query, json_body=data)

    def put(self, data: Any = None, query: Optional[dict] = None) -> Any:
        """Make a PUT request with a JSON body."""
        return self._request("PUT", params=query, json_body=data)

    def patch(self, data: Any = None, query: Optional[dict] = None) -> Any:
        """Make a PATCH request with a JSON body."""
        return self._request("PATCH", params=query, json_body=data)

    def delete(self, data: Any = None, query: Optional[dict] = None) -> Any:
        """Make a DELETE request, with a JSON body if one is given."""
        return self._request("DELETE", params=query, json_body=data)

    # ----------------------------------------
    # Pagination Methods
    # ----------------------------------------

    def get_paginated(self, query: Optional[dict] = None) -> Iterator[Any]:
        """Iterate over every record of a paginated GET endpoint.

        Without a pager the single response is treated as the whole list.
        """
        if not self.pager:
            yield from as_item_list(self._request("GET", params=query))
            return
        yield from self.pager.paginate(
            lambda params: self._request("GET", params=params),
            query,
        )

    def post_paginated(self, data: Any = None, query: Optional[dict] = None) -> Iterator[Any]:
        """Iterate over every record of a paginated POST endpoint."""
        if not self.pager:
            yield from as_item_list(self._request("POST", params=query, json_body=data))
            return
        yield from self.pager.paginate(
            lambda params: self._request("POST", params=params, json_body=data),
            query,
        )


__all__ = [
    "PaginationConfig",
    "Pager",
    "OffsetPager",
    "HttpClient",
    "as_item_list",
]
