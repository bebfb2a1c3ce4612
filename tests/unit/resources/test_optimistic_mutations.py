import asyncio
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from resgrid.models.resource import ResourceStatus
from resgrid.modules.resources.client.cache import CacheOptions, QueryCache
from resgrid.modules.resources.client.keys import ResourceKeys
from resgrid.modules.resources.client.mutations import (
    OptimisticMutation,
    ResourceMutationCoordinator,
    replace_item,
)
from resgrid.modules.resources.client.pagination import InfiniteResourceList
from resgrid.schemas.resources import ResourceFilters, ResourcePage
from resgrid.shared.core.exceptions import TransportError, ValidationError
from resgrid.shared.core.retry import RetryPolicy
from tests.utils import FakePageSource, make_resource, no_sleep

MUTATION_TIME = datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def cache(clock):
    return QueryCache(CacheOptions(), clock=clock)


@pytest.fixture
def source():
    return FakePageSource(
        200,
        status_of=lambda i: ResourceStatus.IDLE if i % 4 == 0 else ResourceStatus.ACTIVE,
    )


@pytest.fixture
def coordinator(source, cache):
    return ResourceMutationCoordinator(source, cache, now=lambda: MUTATION_TIME)


def _controller(source, cache, filters=None):
    return InfiniteResourceList(
        source,
        cache,
        filters=filters,
        page_size=50,
        retry_policy=RetryPolicy(retries=0),
        sleep=no_sleep,
    )


def _item(controller, resource_id):
    return next(r for r in controller.items if r.id == resource_id)


def _cache_state(cache):
    return {key: cache.get(key).snapshot() for key in cache.keys()}


def test_replace_item_keeps_unrelated_pages():
    page = ResourcePage(data=(make_resource(1), make_resource(2)))
    other = ResourcePage(data=(make_resource(3),))
    transform = replace_item("res-00002", lambda r: r.model_copy(update={"status": ResourceStatus.IDLE}))

    assert transform(other) is other
    patched = transform(page)
    assert patched.data[0] is page.data[0]
    assert patched.data[1].status == ResourceStatus.IDLE
    assert page.data[1].status == ResourceStatus.ACTIVE


@pytest.mark.asyncio
async def test_failed_mutation_shows_speculative_value_then_rolls_back(source, cache, coordinator):
    controller = _controller(source, cache)
    await controller.load_next_page()
    assert _item(controller, "res-00042").status == ResourceStatus.ACTIVE

    source.update_gate = asyncio.Event()
    source.update_error = TransportError("server exploded", code="http_error", upstream_status=500)
    task = asyncio.create_task(coordinator.update_status("res-00042", ResourceStatus.MAINTENANCE))
    await asyncio.sleep(0)

    optimistic = _item(controller, "res-00042")
    assert optimistic.status == ResourceStatus.MAINTENANCE
    assert optimistic.updated_at == MUTATION_TIME

    source.update_gate.set()
    with pytest.raises(TransportError):
        await task

    assert _item(controller, "res-00042").status == ResourceStatus.ACTIVE


@pytest.mark.asyncio
async def test_rollback_restores_deep_equal_cache_state(source, cache, coordinator):
    all_list = _controller(source, cache)
    idle_list = _controller(source, cache, filters=ResourceFilters(status="IDLE"))
    await all_list.load_next_page()
    await all_list.load_next_page()
    await idle_list.load_next_page()
    cache.invalidate(idle_list.key)
    before = _cache_state(cache)

    source.update_error = TransportError("reset", code="network_error")
    with patch("resgrid.modules.resources.client.mutations.logger") as mock_logger:
        with pytest.raises(TransportError):
            await coordinator.update_status("res-00040", ResourceStatus.DECOMMISSIONED)

    assert _cache_state(cache) == before
    warned = [c.args[0] for c in mock_logger.warning.call_args_list]
    assert "optimistic_update_rolled_back" in warned


@pytest.mark.asyncio
async def test_failed_mutation_does_not_invalidate(source, cache, coordinator):
    controller = _controller(source, cache)
    await controller.load_next_page()
    source.update_error = TransportError("bad gateway", code="http_error", upstream_status=502)

    with pytest.raises(TransportError):
        await coordinator.update_status("res-00001", ResourceStatus.IDLE)

    assert not cache.is_stale(controller.key)


@pytest.mark.asyncio
async def test_success_merges_server_copy_and_invalidates(source, cache, coordinator):
    controller = _controller(source, cache)
    await controller.load_next_page()

    result = await coordinator.update_status("res-00007", "MAINTENANCE")

    item = _item(controller, "res-00007")
    assert result.status == ResourceStatus.MAINTENANCE
    assert item == result
    assert cache.is_stale(controller.key)
    assert source.update_calls == [{"resource_id": "res-00007", "status": ResourceStatus.MAINTENANCE}]


@pytest.mark.asyncio
async def test_patch_reaches_every_list_holding_the_item(source, cache, coordinator):
    all_list = _controller(source, cache)
    idle_list = _controller(source, cache, filters=ResourceFilters(status="IDLE"))
    await all_list.load_next_page()
    await idle_list.load_next_page()

    source.update_gate = asyncio.Event()
    task = asyncio.create_task(coordinator.update_status("res-00004", ResourceStatus.OVERLOADED))
    await asyncio.sleep(0)

    assert _item(all_list, "res-00004").status == ResourceStatus.OVERLOADED
    assert _item(idle_list, "res-00004").status == ResourceStatus.OVERLOADED

    source.update_gate.set()
    await task


@pytest.mark.asyncio
async def test_mutating_one_filter_session_leaves_other_unaffected(source, cache, coordinator):
    active = _controller(source, cache, filters=ResourceFilters(status="ACTIVE"))
    idle = _controller(source, cache, filters=ResourceFilters(status="IDLE"))
    await active.load_next_page()
    active_pages = active.pages

    await idle.load_next_page()
    await coordinator.update_status("res-00008", ResourceStatus.MAINTENANCE)

    assert active.pages is active_pages
    assert "res-00008" not in {r.id for r in active.items}
    assert _item(idle, "res-00008").status == ResourceStatus.MAINTENANCE


@pytest.mark.asyncio
async def test_mutation_cancels_in_flight_page_load(source, cache, coordinator):
    controller = _controller(source, cache)
    await controller.load_next_page()

    source.gate = asyncio.Event()
    load = asyncio.create_task(controller.load_next_page())
    await asyncio.sleep(0)

    source.update_gate = asyncio.Event()
    mutation = asyncio.create_task(coordinator.update_status("res-00010", ResourceStatus.IDLE))
    await asyncio.sleep(0)
    source.gate.set()
    await load

    # The superseded page never lands on top of the optimistic state
    assert len(controller.items) == 50
    assert _item(controller, "res-00010").status == ResourceStatus.IDLE

    source.update_gate.set()
    await mutation
    await controller.load_next_page()
    assert len(controller.items) == 100


@pytest.mark.asyncio
async def test_mutation_for_uncached_item_still_sends(source, cache, coordinator):
    controller = _controller(source, cache)
    await controller.load_next_page()
    before = controller.pages

    result = await coordinator.update_status("res-00150", ResourceStatus.IDLE)

    assert result.id == "res-00150"
    assert controller.pages == before


@pytest.mark.asyncio
async def test_invalid_status_never_reaches_network_or_cache(source, cache, coordinator):
    controller = _controller(source, cache)
    await controller.load_next_page()
    before = _cache_state(cache)

    with pytest.raises(ValidationError) as exc:
        await coordinator.update_status("res-00001", "EXPLODED")

    assert "status" in exc.value.field_errors
    assert source.update_calls == []
    assert _cache_state(cache) == before


@pytest.mark.asyncio
async def test_create_resource_validates_then_invalidates_lists(source, cache, coordinator):
    controller = _controller(source, cache)
    await controller.load_next_page()

    created = await coordinator.create_resource(
        {
            "name": "ml-gpu-node",
            "type": "COMPUTE",
            "provider": "GCP",
            "region": "eu-central-1",
            "department": "Data Science",
            "costPerHour": 12.5,
            "tags": ["gpu"],
        }
    )

    assert created.name == "ml-gpu-node"
    assert cache.is_stale(controller.key)
    # No speculative insert
    assert len(controller.items) == 50


@pytest.mark.asyncio
async def test_create_resource_rejects_invalid_input(source, cache, coordinator):
    with pytest.raises(ValidationError) as exc:
        await coordinator.create_resource({"name": "x", "costPerHour": 5000})

    assert {"name", "costPerHour", "type"} <= set(exc.value.field_errors)
    assert len(source.resources) == 200


@pytest.mark.asyncio
async def test_disposed_coordinator_discards_in_flight_result(source, cache, coordinator):
    controller = _controller(source, cache)
    await controller.load_next_page()

    source.update_gate = asyncio.Event()
    source.update_error = TransportError("late failure", code="network_error")
    task = asyncio.create_task(coordinator.update_status("res-00003", ResourceStatus.IDLE))
    await asyncio.sleep(0)
    coordinator.dispose()
    source.update_gate.set()

    with pytest.raises(TransportError):
        await task
    # Torn-down session: the rollback is not applied either
    assert _item(controller, "res-00003").status == ResourceStatus.IDLE

    with pytest.raises(RuntimeError):
        await coordinator.update_status("res-00003", ResourceStatus.ACTIVE)


@pytest.mark.asyncio
async def test_custom_mutation_scope(cache):
    key = ResourceKeys.list(ResourceFilters(), 50)
    cache.set_pages(key, (ResourcePage(data=(make_resource(1),)),))
    coordinator = ResourceMutationCoordinator(FakePageSource(0), cache)
    renamed = make_resource(1, name="renamed")

    async def send():
        return renamed

    result = await coordinator.mutate(
        OptimisticMutation(
            name="rename",
            resource_id="res-00001",
            speculate=lambda r: r.model_copy(update={"name": "renamed"}),
            send=send,
        )
    )

    assert result is renamed
    assert cache.get_pages(key)[0].data[0] is renamed
