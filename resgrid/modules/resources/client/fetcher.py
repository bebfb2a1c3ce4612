"""
Resource API client.

Each call performs exactly one HTTP request and either returns a decoded,
validated model or raises TransportError. Retries are the caller's concern.
"""

import asyncio
from typing import Any, Dict, Mapping, Optional, Protocol, Type, TypeVar

import httpx
import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from resgrid.models.resource import ResourceStatus
from resgrid.schemas.resources import (
    ResourceCreate,
    ResourceFilters,
    ResourcePage,
    ResourceRead,
)
from resgrid.shared.core.exceptions import TransportError

logger = structlog.get_logger()

ModelT = TypeVar("ModelT", bound=BaseModel)

LIST_PATH = "/api/resources/list"
RESOURCES_PATH = "/api/resources"


class TokenProvider(Protocol):
    """Source of bearer credentials. May be slow and may fail."""

    async def get_token(self) -> Optional[str]: ...


class StaticTokenProvider:
    def __init__(self, token: Optional[str]):
        self._token = token

    async def get_token(self) -> Optional[str]:
        return self._token


class ResourceApiClient:
    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        token_provider: Optional[TokenProvider] = None,
        timeout_seconds: float = 20.0,
    ):
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self._http = http
        self._token_provider = token_provider
        self._timeout = timeout_seconds

    async def fetch_page(
        self,
        cursor: Optional[str],
        page_size: int,
        filters: Optional[ResourceFilters] = None,
    ) -> ResourcePage:
        """GET one page starting after `cursor` (None for the first page)."""
        if page_size <= 0:
            raise ValueError("page_size must be a positive integer")
        params: Dict[str, Any] = {"limit": page_size}
        if cursor is not None:
            params["cursor"] = cursor
        if filters is not None:
            params.update(filters.as_query_params())

        body = await self._send("GET", LIST_PATH, params=params, operation="fetch_page")
        return self._decode(ResourcePage, body, operation="fetch_page")

    async def update_status(
        self, resource_id: str, status: ResourceStatus
    ) -> ResourceRead:
        body = await self._send(
            "PUT",
            f"{RESOURCES_PATH}/{resource_id}/status",
            json={"status": status.value},
            operation="update_status",
        )
        return self._decode(ResourceRead, body, operation="update_status")

    async def create_resource(self, payload: ResourceCreate) -> ResourceRead:
        body = await self._send(
            "POST",
            RESOURCES_PATH,
            json=payload.model_dump(mode="json", by_alias=True),
            operation="create_resource",
        )
        return self._decode(ResourceRead, body, operation="create_resource")

    async def _auth_headers(self, operation: str) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._token_provider is None:
            return headers
        try:
            token = await self._token_provider.get_token()
        except Exception as exc:  # noqa: BLE001 - provider failures are opaque
            logger.warning("auth_token_unavailable", operation=operation, error=str(exc))
            raise TransportError(
                "Could not obtain a bearer credential",
                code="auth_unavailable",
                details={"operation": operation},
            ) from exc
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _send(
        self,
        method: str,
        url: str,
        *,
        operation: str,
        params: Optional[Mapping[str, Any]] = None,
        json: Optional[Any] = None,
    ) -> Any:
        async def _call() -> httpx.Response:
            headers = await self._auth_headers(operation)
            return await self._http.request(
                method, url, params=params, json=json, headers=headers
            )

        # The budget covers the credential lookup as well as the request.
        try:
            response = await asyncio.wait_for(_call(), timeout=self._timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            logger.warning(
                "http_request_timed_out",
                operation=operation,
                timeout_seconds=self._timeout,
            )
            raise TransportError(
                f"{operation} timed out after {self._timeout} seconds",
                code="timeout",
                details={"operation": operation},
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("http_request_failed", operation=operation, error=str(exc))
            raise TransportError(
                f"{operation} failed: {exc}",
                code="network_error",
                details={"operation": operation},
            ) from exc

        if not response.is_success:
            error_body = _error_body(response)
            logger.warning(
                "http_request_rejected",
                operation=operation,
                status_code=response.status_code,
                error=error_body.get("error"),
            )
            raise TransportError(
                f"{operation} failed with status {response.status_code}",
                code="http_error",
                upstream_status=response.status_code,
                details={"operation": operation, **error_body},
            )

        try:
            return response.json()
        except ValueError as exc:
            raise TransportError(
                f"{operation} returned a non-JSON body",
                code="malformed_response",
                upstream_status=response.status_code,
                details={"operation": operation},
            ) from exc

    @staticmethod
    def _decode(model: Type[ModelT], body: Any, *, operation: str) -> ModelT:
        try:
            return model.model_validate(body)
        except PydanticValidationError as exc:
            logger.warning(
                "http_response_malformed",
                operation=operation,
                errors=exc.error_count(),
            )
            raise TransportError(
                f"{operation} returned an unexpected body",
                code="malformed_response",
                details={"operation": operation},
            ) from exc


def _error_body(response: httpx.Response) -> Dict[str, Any]:
    """Pick `error`/`details` out of a failure body when it is JSON."""
    try:
        body = response.json()
    except ValueError:
        return {}
    if not isinstance(body, dict):
        return {}
    return {k: body[k] for k in ("error", "details") if k in body}
