import os
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

import jwt

from resgrid.models.resource import CloudProvider, Department, ResourceStatus, ResourceType
from resgrid.schemas.resources import ResourceFilters, ResourcePage, ResourceRead
from resgrid.shared.core.exceptions import TransportError

FIXED_NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def create_test_token(subject: str, email: Optional[str] = None, expires_in: int = 3600) -> str:
    """Generate a bearer JWT signed with the test secret."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": subject,
        "aud": "authenticated",
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=expires_in)).timestamp()),
    }
    if email:
        payload["email"] = email
    return jwt.encode(payload, os.environ["AUTH_JWT_SECRET"], algorithm="HS256")


def make_resource(index: int, **overrides) -> ResourceRead:
    fields = {
        "id": f"res-{index:05d}",
        "name": f"prod-compute-{index:05d}",
        "type": ResourceType.COMPUTE,
        "status": ResourceStatus.ACTIVE,
        "region": "us-east-1",
        "provider": CloudProvider.AWS,
        "department": Department.ENGINEERING,
        "cpu_utilization": 40.0,
        "memory_utilization": 55.0,
        "cost_per_hour": 1.25,
        "tags": ("critical",),
        "last_health_check": FIXED_NOW,
        "created_at": FIXED_NOW,
        "updated_at": FIXED_NOW,
    }
    fields.update(overrides)
    return ResourceRead(**fields)


class FakePageSource:
    """
    In-memory stand-in for the resource API.

    Serves `total` resources in id order with the same cursor rules as the
    server, records every call and can be told to fail or block.
    """

    def __init__(self, total: int, status_of: Optional[Callable[[int], ResourceStatus]] = None):
        self.resources: List[ResourceRead] = [
            make_resource(i, status=status_of(i) if status_of else ResourceStatus.ACTIVE)
            for i in range(1, total + 1)
        ]
        self.calls: List[Dict] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.fail_next: List[Exception] = []
        self.gate = None
        self.update_calls: List[Dict] = []
        self.update_error: Optional[Exception] = None
        self.update_gate = None

    def _matching(self, filters: Optional[ResourceFilters]) -> List[ResourceRead]:
        items = self.resources
        if filters is not None and filters.status != "ALL":
            items = [r for r in items if r.status == filters.status]
        return items

    async def fetch_page(self, cursor, page_size, filters=None) -> ResourcePage:
        self.calls.append({"cursor": cursor, "page_size": page_size, "filters": filters})
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.fail_next:
                raise self.fail_next.pop(0)
            items = self._matching(filters)
            rows = [r for r in items if cursor is None or r.id > cursor][: page_size + 1]
            next_cursor = None
            if len(rows) > page_size:
                rows = rows[:page_size]
                next_cursor = rows[-1].id
            return ResourcePage(
                data=tuple(rows),
                next_cursor=next_cursor,
                total_count=len(items),
                has_more=next_cursor is not None,
            )
        finally:
            self.in_flight -= 1

    async def update_status(self, resource_id, status) -> ResourceRead:
        self.update_calls.append({"resource_id": resource_id, "status": status})
        if self.update_gate is not None:
            await self.update_gate.wait()
        if self.update_error is not None:
            raise self.update_error
        for index, resource in enumerate(self.resources):
            if resource.id == resource_id:
                updated = resource.model_copy(
                    update={"status": status, "updated_at": FIXED_NOW + timedelta(minutes=5)}
                )
                self.resources[index] = updated
                return updated
        raise TransportError("not found", code="http_error", upstream_status=404)

    async def create_resource(self, payload) -> ResourceRead:
        created = make_resource(
            len(self.resources) + 1,
            name=payload.name,
            type=payload.type,
            provider=payload.provider,
            region=payload.region,
            department=payload.department,
            cost_per_hour=payload.cost_per_hour,
            tags=tuple(payload.tags),
        )
        self.resources.append(created)
        return created


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def no_sleep(_seconds: float) -> None:
    return None


def network_error(message: str = "connection reset") -> TransportError:
    return TransportError(message, code="network_error")
