"""
User and Access Request Schemas
"""

from datetime import datetime
from typing import Optional

from pydantic import ConfigDict, Field

from resgrid.models.user import AccessRequestStatus, UserRole, UserStatus
from resgrid.schemas.resources import CamelModel


class UserRead(CamelModel):
    id: str
    external_id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: UserRole
    status: UserStatus
    created_at: datetime


class UserSummary(CamelModel):
    email: str
    first_name: Optional[str] = None
    role: UserRole


class RoleUpdate(CamelModel):
    role: UserRole


class RoleUpdateResponse(CamelModel):
    message: str
    updated_user: UserRead


class AccessRequestCreate(CamelModel):
    model_config = ConfigDict(extra="ignore")

    resource: str = Field(default="UNKNOWN", max_length=128)
    reason: str = Field(default="", max_length=1000)


class AccessRequestRead(CamelModel):
    id: str
    user_id: str
    resource: str
    reason: str
    status: AccessRequestStatus
    created_at: datetime


class PendingAccessRequestRead(AccessRequestRead):
    user: UserSummary


class AccessRequestCreated(CamelModel):
    message: str
    data: AccessRequestRead


class AccessRequestApproved(CamelModel):
    message: str
    updated_request: AccessRequestRead
