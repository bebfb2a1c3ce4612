from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import JSON, Float, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from resgrid.shared.db.base import Base, utcnow


class ResourceType(str, Enum):
    COMPUTE = "COMPUTE"
    STORAGE = "STORAGE"
    NETWORK = "NETWORK"
    DATABASE = "DATABASE"
    CDN = "CDN"
    CONTAINER = "CONTAINER"


class ResourceStatus(str, Enum):
    """Operational status. Any value may replace any other."""

    ACTIVE = "ACTIVE"
    IDLE = "IDLE"
    OVERLOADED = "OVERLOADED"
    MAINTENANCE = "MAINTENANCE"
    DECOMMISSIONED = "DECOMMISSIONED"


class CloudProvider(str, Enum):
    AWS = "AWS"
    GCP = "GCP"
    AZURE = "Azure"
    ON_PREMISE = "On-Premise"


class Department(str, Enum):
    ENGINEERING = "Engineering"
    DESIGN = "Design"
    PRODUCT = "Product"
    DATA_SCIENCE = "Data Science"
    DEVOPS = "DevOps"
    QA = "QA"
    SECURITY = "Security"
    MANAGEMENT = "Management"


REGIONS = (
    "us-east-1",
    "us-west-2",
    "eu-west-1",
    "eu-central-1",
    "ap-southeast-1",
    "ap-northeast-1",
)


class Resource(Base):
    __tablename__ = "resources"

    # Opaque, never reused. Ordering by id is the cursor order.
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), index=True)
    type: Mapped[str] = mapped_column(String(16))
    status: Mapped[str] = mapped_column(
        String(16), default=ResourceStatus.ACTIVE.value, index=True
    )
    region: Mapped[str] = mapped_column(String(32))
    provider: Mapped[str] = mapped_column(String(16), index=True)
    department: Mapped[str] = mapped_column(String(32), index=True)
    cpu_utilization: Mapped[float] = mapped_column(Float, default=0.0)
    memory_utilization: Mapped[float] = mapped_column(Float, default=0.0)
    cost_per_hour: Mapped[float] = mapped_column(Float, default=0.0)
    tags: Mapped[list[str]] = mapped_column(JSON, default=list)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_health_check: Mapped[datetime] = mapped_column(default=utcnow)
    created_at: Mapped[datetime] = mapped_column(default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow)
