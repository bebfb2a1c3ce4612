"""
Resource Service

Server-side data access for the resource grid: cursor-paginated listing,
creation and status changes. Cursor order is ascending resource id; the
cursor handed out is the id of the last row on the page.
"""

from typing import Optional
from uuid import uuid4

import structlog
from sqlalchemy import Select, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from resgrid.models.resource import Resource, ResourceStatus
from resgrid.schemas.resources import (
    ALL,
    ResourceCreate,
    ResourceFilters,
    ResourcePage,
    ResourceRead,
)
from resgrid.shared.core.exceptions import ResourceNotFoundError
from resgrid.shared.db.base import utcnow

logger = structlog.get_logger()


def _apply_filters(stmt: Select, filters: ResourceFilters) -> Select:
    if filters.status != ALL:
        stmt = stmt.where(Resource.status == filters.status.value)
    if filters.department != ALL:
        stmt = stmt.where(Resource.department == filters.department.value)
    if filters.provider != ALL:
        stmt = stmt.where(Resource.provider == filters.provider.value)
    if filters.search:
        pattern = f"%{filters.search.lower()}%"
        stmt = stmt.where(
            or_(
                func.lower(Resource.name).like(pattern),
                func.lower(Resource.region).like(pattern),
                func.lower(Resource.department).like(pattern),
            )
        )
    return stmt


class ResourceService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_page(
        self,
        *,
        cursor: Optional[str],
        limit: int,
        filters: Optional[ResourceFilters] = None,
    ) -> ResourcePage:
        """Return the page of resources strictly after `cursor`."""
        filters = filters or ResourceFilters()

        # One extra row tells us whether another page exists.
        stmt = _apply_filters(select(Resource), filters).order_by(Resource.id.asc())
        if cursor:
            stmt = stmt.where(Resource.id > cursor)
        rows = list((await self.db.execute(stmt.limit(limit + 1))).scalars().all())

        next_cursor: Optional[str] = None
        if len(rows) > limit:
            rows = rows[:limit]
            next_cursor = rows[-1].id

        count_stmt = _apply_filters(select(func.count(Resource.id)), filters)
        total_count = int((await self.db.execute(count_stmt)).scalar_one())

        logger.debug(
            "resource_page_served",
            cursor=cursor,
            limit=limit,
            returned=len(rows),
            has_more=next_cursor is not None,
        )
        return ResourcePage(
            data=tuple(ResourceRead.model_validate(row) for row in rows),
            next_cursor=next_cursor,
            total_count=total_count,
            has_more=next_cursor is not None,
        )

    async def get(self, resource_id: str) -> Resource:
        resource = await self.db.get(Resource, resource_id)
        if resource is None:
            raise ResourceNotFoundError(
                f"Resource {resource_id} not found",
                details={"resource_id": resource_id},
            )
        return resource

    async def create(self, payload: ResourceCreate) -> ResourceRead:
        now = utcnow()
        resource = Resource(
            id=f"res-{uuid4().hex[:12]}",
            name=payload.name,
            type=payload.type.value,
            status=ResourceStatus.ACTIVE.value,
            region=payload.region,
            provider=payload.provider.value,
            department=payload.department.value,
            cpu_utilization=0.0,
            memory_utilization=0.0,
            cost_per_hour=payload.cost_per_hour,
            tags=list(payload.tags),
            description=payload.description,
            last_health_check=now,
            created_at=now,
            updated_at=now,
        )
        self.db.add(resource)
        await self.db.commit()
        await self.db.refresh(resource)
        logger.info("resource_created", resource_id=resource.id, type=resource.type)
        return ResourceRead.model_validate(resource)

    async def update_status(
        self, resource_id: str, status: ResourceStatus
    ) -> ResourceRead:
        """Replace a resource's status. Every status may follow every other."""
        resource = await self.get(resource_id)
        previous = resource.status
        resource.status = status.value
        resource.updated_at = utcnow()
        await self.db.commit()
        await self.db.refresh(resource)
        logger.info(
            "resource_status_changed",
            resource_id=resource_id,
            previous_status=previous,
            status=status.value,
        )
        return ResourceRead.model_validate(resource)
