from typing import Any

from fastapi import FastAPI

_REQUIRED_API_PREFIXES = {
    "/api/resources",
    "/api/users",
    "/api/access-requests",
    "/api/admin/users",
    "/api/admin/access-requests",
}


def _validate_router_registry(routes: list[tuple[Any, str]]) -> None:
    seen_prefixes: set[str] = set()
    for router, prefix in routes:
        route_list = getattr(router, "routes", None)
        if not isinstance(route_list, list) or not route_list:
            raise RuntimeError("Router registry includes an empty router definition")
        normalized_prefix = prefix.strip()
        if not normalized_prefix.startswith("/"):
            raise RuntimeError(f"Router prefix must start with '/': {prefix!r}")
        if normalized_prefix in seen_prefixes:
            raise RuntimeError(f"Duplicate router prefix registered: {normalized_prefix}")
        seen_prefixes.add(normalized_prefix)

    missing_prefixes = sorted(_REQUIRED_API_PREFIXES - seen_prefixes)
    if missing_prefixes:
        raise RuntimeError(
            "Router registry is missing required API prefixes: "
            + ", ".join(missing_prefixes)
        )


def register_lifecycle_routes(app: FastAPI, *, app_name: str, version: str) -> None:
    """Register lifecycle and health endpoints."""

    @app.get("/", tags=["Lifecycle"])
    async def root() -> dict[str, str]:
        return {"status": "ok", "app": app_name, "version": version}

    @app.get("/health", tags=["Lifecycle"])
    async def health_check() -> dict[str, str]:
        """Fast liveness check without dependencies."""
        return {"status": "healthy"}


def register_api_routers(app: FastAPI) -> None:
    """Register API route modules in one place to keep the app entrypoint focused."""
    from resgrid.modules.access.api.v1 import access_requests, users
    from resgrid.modules.resources.api.v1.resources import router as resources_router

    routes: list[tuple[Any, str]] = [
        (resources_router, "/api/resources"),
        (users.router, "/api/users"),
        (access_requests.router, "/api/access-requests"),
        (users.admin_router, "/api/admin/users"),
        (access_requests.admin_router, "/api/admin/access-requests"),
    ]

    _validate_router_registry(routes)

    for router, prefix in routes:
        app.include_router(router, prefix=prefix)
