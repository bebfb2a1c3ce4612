from typing import Annotated, Literal, Optional, Union

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from resgrid.models.resource import CloudProvider, Department, ResourceStatus
from resgrid.modules.resources.domain.service import ResourceService
from resgrid.schemas.resources import (
    ALL,
    ResourceCreate,
    ResourceFilters,
    ResourcePage,
    ResourceRead,
    ResourceStatusUpdate,
)
from resgrid.shared.core.auth import CurrentUser, requires_role
from resgrid.shared.core.config import get_settings
from resgrid.shared.db.session import get_db

router = APIRouter(tags=["Resources"])
settings = get_settings()


@router.get("/list", response_model=ResourcePage)
async def list_resources(
    user: Annotated[CurrentUser, Depends(requires_role("USER"))],
    db: AsyncSession = Depends(get_db),
    cursor: Optional[str] = Query(default=None, description="Id of the last row seen"),
    limit: int = Query(
        default=settings.RESOURCE_PAGE_SIZE,
        ge=1,
        le=settings.RESOURCE_PAGE_SIZE_MAX,
    ),
    status: Union[ResourceStatus, Literal["ALL"]] = Query(default=ALL),
    department: Union[Department, Literal["ALL"]] = Query(default=ALL),
    provider: Union[CloudProvider, Literal["ALL"]] = Query(default=ALL),
    search: str = Query(default="", max_length=128),
) -> ResourcePage:
    """
    One page of the resource inventory, ordered by id.

    `nextCursor` is null on the last page; pass it back as `cursor` to continue.
    """
    _ = user  # dependency enforces the role check
    filters = ResourceFilters(
        status=status, department=department, provider=provider, search=search
    )
    # Some clients send the literal string "null" for the first page.
    effective_cursor = cursor if cursor and cursor != "null" else None
    return await ResourceService(db).list_page(
        cursor=effective_cursor, limit=limit, filters=filters
    )


@router.post("", response_model=ResourceRead, status_code=201)
async def create_resource(
    payload: ResourceCreate,
    user: Annotated[CurrentUser, Depends(requires_role("ADMIN"))],
    db: AsyncSession = Depends(get_db),
) -> ResourceRead:
    _ = user
    return await ResourceService(db).create(payload)


@router.put("/{resource_id}/status", response_model=ResourceRead)
async def update_resource_status(
    resource_id: str,
    payload: ResourceStatusUpdate,
    user: Annotated[CurrentUser, Depends(requires_role("ADMIN"))],
    db: AsyncSession = Depends(get_db),
) -> ResourceRead:
    """Replace a resource's status (e.g. put it into MAINTENANCE)."""
    _ = user
    return await ResourceService(db).update_status(resource_id, payload.status)
