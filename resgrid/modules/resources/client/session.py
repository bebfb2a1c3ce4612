"""
Resource grid client session.

Wires the API client, query cache, list controllers and mutation coordinator
together for one dashboard session. Use it as an async context manager; the
HTTP client it builds is closed and every controller disposed on exit.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any, Dict, List, Optional

import httpx
import structlog

from resgrid.modules.resources.client.cache import CacheOptions, QueryCache
from resgrid.modules.resources.client.fetcher import ResourceApiClient, TokenProvider
from resgrid.modules.resources.client.keys import QueryKey, ResourceKeys
from resgrid.modules.resources.client.mutations import ResourceMutationCoordinator
from resgrid.modules.resources.client.pagination import InfiniteResourceList
from resgrid.modules.resources.client.visibility import InfiniteScrollTrigger, ViewportObserver
from resgrid.schemas.resources import ResourceFilters, ResourceRead
from resgrid.shared.core.config import Settings, get_settings
from resgrid.shared.core.http import build_http_client, close_http_client
from resgrid.shared.core.retry import RetryPolicy

logger = structlog.get_logger()


class ResourceGridSession:
    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        token_provider: Optional[TokenProvider] = None,
        settings: Optional[Settings] = None,
        http: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.settings = settings or get_settings()
        self.base_url = base_url if base_url is not None else self.settings.API_URL
        self.page_size = self.settings.RESOURCE_PAGE_SIZE
        self._token_provider = token_provider
        self._transport = transport
        self._http = http
        self._owns_http = http is None
        self._sleep = sleep
        self._retry_policy = RetryPolicy.from_settings(self.settings)

        self.cache = QueryCache(CacheOptions.from_settings(self.settings), clock=clock)
        self.observer = ViewportObserver.from_settings(self.settings)
        self.api: Optional[ResourceApiClient] = None
        self.mutations: Optional[ResourceMutationCoordinator] = None
        self._lists: Dict[QueryKey, InfiniteResourceList] = {}
        self._triggers: List[InfiniteScrollTrigger] = []

    async def __aenter__(self) -> "ResourceGridSession":
        if self._http is None:
            self._http = build_http_client(
                self.settings, base_url=self.base_url, transport=self._transport
            )
        self.api = ResourceApiClient(
            self._http,
            token_provider=self._token_provider,
            timeout_seconds=self.settings.HTTP_TIMEOUT_SECONDS,
        )
        self.mutations = ResourceMutationCoordinator(self.api, self.cache)
        logger.info("resource_grid_session_opened", base_url=self.base_url)
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        for trigger in self._triggers:
            trigger.detach()
        self._triggers.clear()
        for controller in self._lists.values():
            controller.dispose()
        self._lists.clear()
        if self.mutations is not None:
            self.mutations.dispose()
        self.cache.clear()
        if self._owns_http and self._http is not None:
            await close_http_client(self._http)
            self._http = None
        logger.info("resource_grid_session_closed")

    def list(self, filters: Optional[ResourceFilters] = None) -> InfiniteResourceList:
        """The list controller for `filters`, created on first use."""
        if self.api is None:
            raise RuntimeError("Session is not open; use `async with`")
        key = ResourceKeys.list(filters, self.page_size)
        controller = self._lists.get(key)
        if controller is None:
            controller = InfiniteResourceList(
                self.api,
                self.cache,
                filters=filters,
                page_size=self.page_size,
                retry_policy=self._retry_policy,
                sleep=self._sleep,
            )
            self._lists[key] = controller
        return controller

    def scroll_trigger(
        self, controller: InfiniteResourceList, anchor: str = "resource-list-end"
    ) -> InfiniteScrollTrigger:
        trigger = InfiniteScrollTrigger(controller, self.observer, anchor=anchor)
        trigger.attach()
        self._triggers.append(trigger)
        return trigger

    async def update_status(self, resource_id: str, status: Any) -> ResourceRead:
        if self.mutations is None:
            raise RuntimeError("Session is not open; use `async with`")
        return await self.mutations.update_status(resource_id, status)

    async def create_resource(self, payload: Any) -> ResourceRead:
        if self.mutations is None:
            raise RuntimeError("Session is not open; use `async with`")
        return await self.mutations.create_resource(payload)
