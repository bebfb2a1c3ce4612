"""
Optimistic mutations against cached resource lists.

Every mutation runs the same sequence:

1. cancel in-flight fetches for the affected list keys
2. snapshot the affected entries
3. patch the speculative value into every page that holds the item
4. send the request
5. success: merge the server's copy of the item, then invalidate
   failure: restore the snapshot exactly and re-raise

Steps 1-3 run without yielding to the event loop, so no reader can observe
a half-applied patch.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

import structlog

from resgrid.models.resource import ResourceStatus
from resgrid.modules.resources.client.cache import PageTransform, QueryCache
from resgrid.modules.resources.client.keys import QueryKey, ResourceKeys
from resgrid.schemas.resources import (
    ResourceCreate,
    ResourcePage,
    ResourceRead,
    ResourceStatusUpdate,
    validate_input,
)
from resgrid.shared.db.base import utcnow

logger = structlog.get_logger()


class ResourceMutator(Protocol):
    async def update_status(self, resource_id: str, status: ResourceStatus) -> ResourceRead: ...

    async def create_resource(self, payload: ResourceCreate) -> ResourceRead: ...


def replace_item(
    resource_id: str, update: Callable[[ResourceRead], ResourceRead]
) -> PageTransform:
    """Page transform rewriting one item. Pages without the item are returned as-is."""

    def _transform(page: ResourcePage) -> ResourcePage:
        if not any(item.id == resource_id for item in page.data):
            return page
        data = tuple(update(item) if item.id == resource_id else item for item in page.data)
        return page.model_copy(update={"data": data})

    return _transform


@dataclass(frozen=True)
class OptimisticMutation:
    name: str
    resource_id: str
    speculate: Callable[[ResourceRead], ResourceRead]
    send: Callable[[], Awaitable[ResourceRead]]
    scope: QueryKey = ResourceKeys.lists()
    invalidate_scope: QueryKey = ResourceKeys.ALL


class ResourceMutationCoordinator:
    def __init__(
        self,
        api: ResourceMutator,
        cache: QueryCache,
        *,
        now: Callable[[], datetime] = utcnow,
    ):
        self._api = api
        self._cache = cache
        self._now = now
        self._generation = 0
        self._disposed = False

    async def mutate(self, mutation: OptimisticMutation) -> ResourceRead:
        if self._disposed:
            raise RuntimeError("Mutation coordinator has been disposed")
        generation = self._generation

        self._cache.cancel(mutation.scope)
        snapshot = self._cache.snapshot(mutation.scope)
        patched = self._cache.patch_all_matching(
            mutation.scope, replace_item(mutation.resource_id, mutation.speculate)
        )
        logger.info(
            "optimistic_update_applied",
            mutation=mutation.name,
            resource_id=mutation.resource_id,
            entries=len(patched),
        )

        try:
            result = await mutation.send()
        except BaseException as exc:
            if generation == self._generation:
                self._cache.restore(snapshot)
                logger.warning(
                    "optimistic_update_rolled_back",
                    mutation=mutation.name,
                    resource_id=mutation.resource_id,
                    entries=len(snapshot),
                    error=str(exc),
                )
            raise

        if generation != self._generation:
            logger.debug("mutation_result_discarded", mutation=mutation.name)
            return result

        self._cache.patch_all_matching(
            mutation.scope, replace_item(result.id, lambda _item: result)
        )
        self._cache.invalidate(mutation.invalidate_scope)
        logger.info(
            "optimistic_update_confirmed",
            mutation=mutation.name,
            resource_id=result.id,
        )
        return result

    async def update_status(self, resource_id: str, status: Any) -> ResourceRead:
        """
        Change a resource's status optimistically.

        The new status is visible in every cached list holding the resource
        before the request is sent. Invalid statuses raise ValidationError
        without touching the cache or the network.
        """
        update = validate_input(ResourceStatusUpdate, {"status": status})
        changed_at = self._now()

        def _speculate(item: ResourceRead) -> ResourceRead:
            return item.model_copy(update={"status": update.status, "updated_at": changed_at})

        return await self.mutate(
            OptimisticMutation(
                name="update_status",
                resource_id=resource_id,
                speculate=_speculate,
                send=lambda: self._api.update_status(resource_id, update.status),
            )
        )

    async def create_resource(self, payload: Any) -> ResourceRead:
        """
        Validate and create a resource.

        Nothing is inserted speculatively since the position of the new row
        depends on a server-assigned id; lists are invalidated on success.
        """
        validated = validate_input(ResourceCreate, payload)
        result = await self._api.create_resource(validated)
        if not self._disposed:
            self._cache.invalidate(ResourceKeys.lists())
            logger.info("resource_created", resource_id=result.id)
        return result

    def dispose(self) -> None:
        """Stop applying results of mutations still in flight."""
        self._disposed = True
        self._generation += 1

