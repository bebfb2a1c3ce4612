"""
Resource Schemas

Wire models shared by the list/mutation endpoints and the client core.
Field names are snake_case in Python and camelCase on the wire.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Tuple, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from resgrid.models.resource import (
    REGIONS,
    CloudProvider,
    Department,
    ResourceStatus,
    ResourceType,
)
from resgrid.shared.core.exceptions import ValidationError

ALL = "ALL"
NAME_PATTERN = r"^[a-zA-Z0-9][a-zA-Z0-9_-]*$"
MAX_TAGS = 10
MAX_COST_PER_HOUR = 1000.0

ModelT = TypeVar("ModelT", bound=BaseModel)


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class ResourceRead(CamelModel):
    """One resource as served by the API. Immutable; patches produce copies."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    type: ResourceType
    status: ResourceStatus
    region: str
    provider: CloudProvider
    department: Department
    cpu_utilization: float = 0.0
    memory_utilization: float = 0.0
    cost_per_hour: float = Field(default=0.0, ge=0)
    tags: Tuple[str, ...] = ()
    description: Optional[str] = None
    last_health_check: datetime
    created_at: datetime
    updated_at: datetime


class ResourcePage(CamelModel):
    """One page of the cursor-paginated resource list."""

    model_config = ConfigDict(frozen=True)

    data: Tuple[ResourceRead, ...] = ()
    next_cursor: Optional[str] = None
    total_count: int = Field(default=0, ge=0)
    has_more: bool = False

    @model_validator(mode="after")
    def _has_more_matches_cursor(self) -> "ResourcePage":
        if self.has_more != (self.next_cursor is not None):
            raise ValueError("hasMore must be true exactly when nextCursor is set")
        return self


class ResourceCreate(CamelModel):
    """Payload for the create flow."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=3, max_length=128, pattern=NAME_PATTERN)
    type: ResourceType
    provider: CloudProvider
    region: Literal[REGIONS]  # type: ignore[valid-type]
    department: Department
    cost_per_hour: float = Field(ge=0, le=MAX_COST_PER_HOUR)
    tags: List[str] = Field(default_factory=list, max_length=MAX_TAGS)
    description: Optional[str] = Field(default=None, max_length=500)

    @field_validator("tags")
    @classmethod
    def _tag_lengths(cls, tags: List[str]) -> List[str]:
        for tag in tags:
            if not 1 <= len(tag) <= 50:
                raise ValueError("Each tag must be 1-50 characters")
        return tags


class ResourceStatusUpdate(CamelModel):
    status: ResourceStatus


class ResourceFilters(CamelModel):
    """List filters. Two different filter values are independent list sessions."""

    model_config = ConfigDict(frozen=True)

    status: Union[ResourceStatus, Literal["ALL"]] = ALL
    department: Union[Department, Literal["ALL"]] = ALL
    provider: Union[CloudProvider, Literal["ALL"]] = ALL
    search: str = ""

    @field_validator("search")
    @classmethod
    def _normalize_search(cls, value: str) -> str:
        return value.strip()

    def cache_token(self) -> Tuple[Tuple[str, str], ...]:
        """Stable, hashable identity of this filter set for cache keys."""
        return tuple(sorted((k, _plain(v)) for k, v in self.model_dump().items()))

    def as_query_params(self) -> Dict[str, str]:
        params: Dict[str, str] = {}
        for key in ("status", "department", "provider"):
            value = _plain(getattr(self, key))
            if value != ALL:
                params[key] = value
        if self.search:
            params["search"] = self.search
        return params


def _plain(value: Any) -> str:
    return value.value if hasattr(value, "value") else str(value)


def validate_input(model: Type[ModelT], payload: Any) -> ModelT:
    """
    Validate user input before any network call.

    Raises ValidationError with per-field messages keyed by dotted location.
    """
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        field_errors: Dict[str, List[str]] = {}
        for error in exc.errors():
            loc = ".".join(str(part) for part in error.get("loc", ())) or "__root__"
            field_errors.setdefault(loc, []).append(error.get("msg", "Invalid value"))
        raise ValidationError(
            f"Invalid {model.__name__} input", field_errors=field_errors
        ) from exc
