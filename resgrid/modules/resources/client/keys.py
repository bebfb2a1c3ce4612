"""
Query keys for the client cache.

Keys are tuples ordered from general to specific, so a key prefix selects a
whole family of entries: ("resources",) is everything, ("resources", "list")
every list session, and a full list key exactly one session.
"""

from typing import Any, Optional, Tuple

from resgrid.schemas.resources import ResourceFilters

QueryKey = Tuple[Any, ...]


class ResourceKeys:
    ALL: QueryKey = ("resources",)

    @classmethod
    def lists(cls) -> QueryKey:
        return cls.ALL + ("list",)

    @classmethod
    def list(cls, filters: Optional[ResourceFilters] = None, page_size: int = 50) -> QueryKey:
        filters = filters or ResourceFilters()
        return cls.lists() + (filters.cache_token(), page_size)

    @classmethod
    def details(cls) -> QueryKey:
        return cls.ALL + ("detail",)

    @classmethod
    def detail(cls, resource_id: str) -> QueryKey:
        return cls.details() + (resource_id,)


def key_matches(key: QueryKey, prefix: QueryKey) -> bool:
    return key[: len(prefix)] == prefix
