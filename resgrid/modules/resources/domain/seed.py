"""
Deterministic demo inventory.

Ids are zero-padded (`res-00042`) so lexical order equals creation order,
which keeps the cursor order readable in fixtures and dashboards.
"""

import random
from datetime import timedelta
from typing import Iterator

from sqlalchemy.ext.asyncio import AsyncSession

from resgrid.models.resource import (
    REGIONS,
    CloudProvider,
    Department,
    Resource,
    ResourceStatus,
    ResourceType,
)
from resgrid.shared.db.base import utcnow

NAME_PREFIXES = (
    "prod", "staging", "dev", "edge", "core", "cache", "proxy", "worker", "analytics", "ml",
)
# Weighted towards ACTIVE, like a healthy fleet.
SEED_STATUSES = (
    ResourceStatus.ACTIVE,
    ResourceStatus.ACTIVE,
    ResourceStatus.ACTIVE,
    ResourceStatus.IDLE,
    ResourceStatus.OVERLOADED,
    ResourceStatus.MAINTENANCE,
)
TAG_POOL = ("critical", "pci", "batch", "customer-facing", "internal", "gpu", "spot")


def resource_id(index: int) -> str:
    return f"res-{index:05d}"


def generate_resources(count: int, seed: int = 42) -> Iterator[Resource]:
    """Yield `count` ORM resources with ids res-00001..res-<count>."""
    rng = random.Random(seed)
    now = utcnow()
    for index in range(1, count + 1):
        rtype = rng.choice(list(ResourceType))
        created = now - timedelta(days=rng.randint(1, 365))
        yield Resource(
            id=resource_id(index),
            name=f"{rng.choice(NAME_PREFIXES)}-{rtype.value.lower()}-{index:05d}",
            type=rtype.value,
            status=rng.choice(SEED_STATUSES).value,
            region=rng.choice(REGIONS),
            provider=rng.choice(list(CloudProvider)).value,
            department=rng.choice(list(Department)).value,
            cpu_utilization=round(rng.uniform(2, 98), 2),
            memory_utilization=round(rng.uniform(5, 95), 2),
            cost_per_hour=round(rng.uniform(0.01, 25), 2),
            tags=rng.sample(TAG_POOL, k=rng.randint(0, 3)),
            description=None,
            last_health_check=now - timedelta(minutes=rng.randint(0, 120)),
            created_at=created,
            updated_at=created,
        )


async def seed_resources(db: AsyncSession, count: int, seed: int = 42) -> int:
    db.add_all(list(generate_resources(count, seed=seed)))
    await db.commit()
    return count
