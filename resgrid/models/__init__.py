from resgrid.models.resource import (
    CloudProvider,
    Department,
    Resource,
    ResourceStatus,
    ResourceType,
)
from resgrid.models.user import AccessRequest, AccessRequestStatus, User, UserRole, UserStatus

__all__ = [
    "AccessRequest",
    "AccessRequestStatus",
    "CloudProvider",
    "Department",
    "Resource",
    "ResourceStatus",
    "ResourceType",
    "User",
    "UserRole",
    "UserStatus",
]
