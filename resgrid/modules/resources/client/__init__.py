from resgrid.modules.resources.client.cache import CacheOptions, QueryCache
from resgrid.modules.resources.client.fetcher import ResourceApiClient, StaticTokenProvider
from resgrid.modules.resources.client.keys import ResourceKeys
from resgrid.modules.resources.client.mutations import ResourceMutationCoordinator
from resgrid.modules.resources.client.pagination import InfiniteResourceList, ListState
from resgrid.modules.resources.client.session import ResourceGridSession
from resgrid.modules.resources.client.visibility import InfiniteScrollTrigger, ViewportObserver

__all__ = [
    "CacheOptions",
    "InfiniteResourceList",
    "InfiniteScrollTrigger",
    "ListState",
    "QueryCache",
    "ResourceApiClient",
    "ResourceGridSession",
    "ResourceKeys",
    "ResourceMutationCoordinator",
    "StaticTokenProvider",
    "ViewportObserver",
]
