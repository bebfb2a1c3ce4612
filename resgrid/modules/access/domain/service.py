"""
Access Management Service

User role changes and the access-request workflow (request, list, approve).
"""

from typing import Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from resgrid.models.user import (
    ROLE_UPGRADE_ADMIN,
    AccessRequest,
    AccessRequestStatus,
    User,
    UserRole,
)
from resgrid.schemas.access import AccessRequestCreate
from resgrid.shared.core.auth import CurrentUser
from resgrid.shared.core.exceptions import ResourceNotFoundError
from resgrid.shared.core.logging import audit_log

logger = structlog.get_logger()


class AccessService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user(self, user_id: str) -> User:
        user = await self.db.get(User, user_id)
        if user is None:
            raise ResourceNotFoundError(
                f"User {user_id} not found", details={"user_id": user_id}
            )
        return user

    async def list_users(self) -> Sequence[User]:
        result = await self.db.execute(select(User).order_by(User.created_at.desc()))
        return result.scalars().all()

    async def change_role(self, actor: CurrentUser, user_id: str, role: UserRole) -> User:
        user = await self.get_user(user_id)
        previous = user.role
        user.role = role.value
        await self.db.commit()
        await self.db.refresh(user)
        audit_log(
            "user_role_changed",
            user_id=actor.id,
            details={"target_user_id": user_id, "from": previous, "to": role.value},
        )
        return user

    async def create_request(
        self, requester: CurrentUser, payload: AccessRequestCreate
    ) -> AccessRequest:
        request = AccessRequest(
            user_id=requester.id,
            resource=payload.resource or "UNKNOWN",
            reason=payload.reason or "",
            status=AccessRequestStatus.PENDING.value,
        )
        self.db.add(request)
        await self.db.commit()
        await self.db.refresh(request)
        logger.info(
            "access_request_created",
            request_id=request.id,
            user_id=requester.id,
            resource=request.resource,
        )
        return request

    async def list_own_requests(self, requester: CurrentUser) -> Sequence[AccessRequest]:
        result = await self.db.execute(
            select(AccessRequest)
            .where(AccessRequest.user_id == requester.id)
            .order_by(AccessRequest.created_at.desc())
        )
        return result.scalars().all()

    async def list_pending_requests(self) -> Sequence[AccessRequest]:
        result = await self.db.execute(
            select(AccessRequest)
            .options(selectinload(AccessRequest.user))
            .where(AccessRequest.status == AccessRequestStatus.PENDING.value)
            .order_by(AccessRequest.created_at.desc())
        )
        return result.scalars().all()

    async def approve_request(self, approver: CurrentUser, request_id: str) -> AccessRequest:
        """
        Approve a pending request.

        A ROLE_UPGRADE_ADMIN request approved by a SUPERADMIN also promotes
        the requester to ADMIN.
        """
        request = await self.db.get(AccessRequest, request_id)
        if request is None:
            raise ResourceNotFoundError(
                "Request not found", details={"request_id": request_id}
            )

        request.status = AccessRequestStatus.APPROVED.value
        promoted = False
        if request.resource == ROLE_UPGRADE_ADMIN and approver.role == UserRole.SUPERADMIN:
            requester = await self.get_user(request.user_id)
            requester.role = UserRole.ADMIN.value
            promoted = True

        await self.db.commit()
        await self.db.refresh(request)
        audit_log(
            "access_request_approved",
            user_id=approver.id,
            details={
                "request_id": request_id,
                "resource": request.resource,
                "requester_promoted": promoted,
            },
        )
        return request
