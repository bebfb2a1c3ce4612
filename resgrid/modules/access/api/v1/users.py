from typing import Annotated, Any, List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from resgrid.modules.access.domain.service import AccessService
from resgrid.schemas.access import RoleUpdate, RoleUpdateResponse, UserRead
from resgrid.shared.core.auth import CurrentUser, get_current_user, requires_role
from resgrid.shared.db.session import get_db

router = APIRouter(tags=["Users"])
admin_router = APIRouter(tags=["Admin: Users"])


@router.get("/me", response_model=UserRead)
async def read_current_user(
    user: Annotated[CurrentUser, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> Any:
    """The caller's own user record, including their role."""
    return await AccessService(db).get_user(user.id)


@admin_router.get("", response_model=List[UserRead])
async def list_users(
    user: Annotated[CurrentUser, Depends(requires_role("ADMIN"))],
    db: AsyncSession = Depends(get_db),
) -> Any:
    _ = user
    return await AccessService(db).list_users()


@admin_router.put("/{user_id}/role", response_model=RoleUpdateResponse)
async def change_user_role(
    user_id: str,
    payload: RoleUpdate,
    user: Annotated[CurrentUser, Depends(requires_role("SUPERADMIN"))],
    db: AsyncSession = Depends(get_db),
) -> RoleUpdateResponse:
    updated = await AccessService(db).change_role(user, user_id, payload.role)
    return RoleUpdateResponse(
        message=f"User role changed to {payload.role.value}",
        updated_user=UserRead.model_validate(updated),
    )
