from typing import Annotated, Any, List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from resgrid.modules.access.domain.service import AccessService
from resgrid.schemas.access import (
    AccessRequestApproved,
    AccessRequestCreate,
    AccessRequestCreated,
    AccessRequestRead,
    PendingAccessRequestRead,
)
from resgrid.shared.core.auth import CurrentUser, requires_role
from resgrid.shared.db.session import get_db

router = APIRouter(tags=["Access Requests"])
admin_router = APIRouter(tags=["Admin: Access Requests"])


@router.post("", response_model=AccessRequestCreated)
async def create_access_request(
    payload: AccessRequestCreate,
    user: Annotated[CurrentUser, Depends(requires_role("USER"))],
    db: AsyncSession = Depends(get_db),
) -> AccessRequestCreated:
    request = await AccessService(db).create_request(user, payload)
    return AccessRequestCreated(
        message="Access request recorded. Pending admin approval.",
        data=AccessRequestRead.model_validate(request),
    )


@router.get("", response_model=List[AccessRequestRead])
async def list_my_access_requests(
    user: Annotated[CurrentUser, Depends(requires_role("USER"))],
    db: AsyncSession = Depends(get_db),
) -> Any:
    return await AccessService(db).list_own_requests(user)


@admin_router.get("", response_model=List[PendingAccessRequestRead])
async def list_pending_access_requests(
    user: Annotated[CurrentUser, Depends(requires_role("ADMIN"))],
    db: AsyncSession = Depends(get_db),
) -> Any:
    _ = user
    return await AccessService(db).list_pending_requests()


@admin_router.post("/{request_id}/approve", response_model=AccessRequestApproved)
async def approve_access_request(
    request_id: str,
    user: Annotated[CurrentUser, Depends(requires_role("ADMIN"))],
    db: AsyncSession = Depends(get_db),
) -> AccessRequestApproved:
    request = await AccessService(db).approve_request(user, request_id)
    return AccessRequestApproved(
        message="Request approved successfully",
        updated_request=AccessRequestRead.model_validate(request),
    )
