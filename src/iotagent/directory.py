"""HTTP client for the platform directory services (auth, data-broker, device-manager)."""

import asyncio
import logging
from typing import Any

import aiohttp

from config.config import AgentConfig
from core.auth import mint_tenant_token
from core.errors import (
    DirectoryApiError,
    ResolutionError,
    UnknownDeviceError,
    classify_http_status,
)
from core.logging import get_logger, log_with_context
from core.logging.context import get_log_context
from core.types import ErrorCategory, TokenProvider
from iotagent.metrics import observe_directory_request

logger = get_logger(__name__)


def classify_api_error(status: int, url: str) -> DirectoryApiError:
    """Build a DirectoryApiError whose category follows the HTTP status."""
    category = classify_http_status(status)
    if category == ErrorCategory.UNKNOWN:
        category = ErrorCategory.TRANSIENT
    return DirectoryApiError(
        f"HTTP error ({status}): {url}",
        status_code=status,
        category=category,
    )


class DirectoryClient:
    """Async client for the directory services the agent depends on.

    Requests scoped to a tenant carry a bearer token minted by
    ``token_provider``.
    """

    def __init__(
        self,
        device_manager_url: str,
        auth_url: str,
        data_broker_url: str,
        token_provider: TokenProvider = mint_tenant_token,
        timeout_seconds: float = 30,
        use_internal_device_endpoint: bool = True,
    ):
        for name, url in (
            ("device_manager_url", device_manager_url),
            ("auth_url", auth_url),
            ("data_broker_url", data_broker_url),
        ):
            if not url.startswith(("http://", "https://")):
                raise ValueError(
                    f"DirectoryClient {name} must start with http:// or https://, got: {url!r}"
                )

        self.device_manager_url = device_manager_url.rstrip("/")
        self.auth_url = auth_url.rstrip("/")
        self.data_broker_url = data_broker_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.use_internal_device_endpoint = use_internal_device_endpoint
        self._token_provider = token_provider

        self._session: aiohttp.ClientSession | None = None
        self._closed = False

    @classmethod
    def from_config(
        cls, config: AgentConfig, token_provider: TokenProvider = mint_tenant_token
    ) -> "DirectoryClient":
        return cls(
            device_manager_url=config.device_manager_url,
            auth_url=config.auth_url,
            data_broker_url=config.data_broker_url,
            token_provider=token_provider,
            timeout_seconds=config.http_timeout_seconds,
            use_internal_device_endpoint=config.use_internal_device_endpoint,
        )

    async def __aenter__(self) -> "DirectoryClient":
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _ensure_session(self) -> None:
        if self._closed:
            raise RuntimeError("DirectoryClient is closed, cannot create new session")
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"Accept": "application/json"},
            )

    async def close(self) -> None:
        self._closed = True
        if self._session and not self._session.closed:
            await self._session.close()
            await asyncio.sleep(0)
        self._session = None

    async def _request(
        self,
        method: str,
        url: str,
        endpoint: str,
        tenant: str | None = None,
        params: dict[str, str] | None = None,
    ) -> Any:
        """Issue a request and return the decoded JSON body.

        Non-success statuses raise DirectoryApiError carrying the status code;
        timeouts and connection failures raise a transient DirectoryApiError.
        """
        await self._ensure_session()

        headers = {}
        if tenant is not None:
            headers["Authorization"] = f"Bearer {self._token_provider(tenant)}"

        ctx = {k: v for k, v in get_log_context().items() if v}
        start_time = asyncio.get_running_loop().time()
        try:
            if self._session is None:
                raise RuntimeError("HTTP session not initialized - call _ensure_session() first")
            async with self._session.request(
                method,
                url,
                params=params,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
            ) as response:
                duration = asyncio.get_running_loop().time() - start_time
                observe_directory_request(endpoint, str(response.status), duration)

                if response.status != 200:
                    error = classify_api_error(response.status, url)
                    log_with_context(
                        logger,
                        logging.DEBUG if response.status == 404 else logging.WARNING,
                        "Directory request failed",
                        **ctx,
                        api_endpoint=endpoint,
                        http_method=method,
                        http_url=url,
                        http_status=response.status,
                        error_category=error.category.value,
                        duration_ms=round(duration * 1000, 1),
                    )
                    raise error

                data = await response.json(content_type=None)
                log_with_context(
                    logger,
                    logging.DEBUG,
                    "Directory request succeeded",
                    **ctx,
                    api_endpoint=endpoint,
                    http_method=method,
                    http_status=response.status,
                    duration_ms=round(duration * 1000, 1),
                )
                return data

        except asyncio.TimeoutError as e:
            observe_directory_request(endpoint, "timeout", asyncio.get_running_loop().time() - start_time)
            log_with_context(
                logger,
                logging.WARNING,
                "Directory request timeout",
                **ctx,
                api_endpoint=endpoint,
                http_url=url,
                error_category="transient",
            )
            raise DirectoryApiError(
                f"Timeout after {self.timeout_seconds}s: {url}",
                category=ErrorCategory.TRANSIENT,
                cause=e,
            ) from e

        except aiohttp.ClientError as e:
            observe_directory_request(endpoint, "error", asyncio.get_running_loop().time() - start_time)
            log_with_context(
                logger,
                logging.WARNING,
                "Directory connection error",
                **ctx,
                api_endpoint=endpoint,
                http_url=url,
                error_category="transient",
                error_message=str(e),
            )
            raise DirectoryApiError(
                f"Connection error: {e}",
                category=ErrorCategory.TRANSIENT,
                cause=e,
            ) from e

    # =========================================================================
    # Endpoints
    # =========================================================================

    async def list_tenants(self) -> list[str]:
        """Tenants currently known to the auth service."""
        url = f"{self.auth_url}/admin/tenants"
        try:
            data = await self._request("GET", url, endpoint="tenants")
        except DirectoryApiError as e:
            raise ResolutionError(f"Failed to list tenants: {e.message}", cause=e) from e

        tenants = data.get("tenants") if isinstance(data, dict) else None
        if not isinstance(tenants, list):
            raise ResolutionError(f"Unexpected tenant list response from {url}")
        return [str(tenant) for tenant in tenants]

    async def get_topic(self, tenant: str, subject: str, is_global: bool = False) -> str:
        """Physical topic for a tenant's subject, as assigned by the data broker."""
        url = f"{self.data_broker_url}/topic/{subject}"
        params = {"global": "true"} if is_global else None
        try:
            data = await self._request("GET", url, endpoint="topic", tenant=tenant, params=params)
        except DirectoryApiError as e:
            raise ResolutionError(
                f"Failed to resolve topic: {e.message}",
                tenant=tenant,
                subject=subject,
                cause=e,
            ) from e

        topic = data.get("topic") if isinstance(data, dict) else None
        if not topic:
            raise ResolutionError(
                f"Data broker returned no topic for subject '{subject}'",
                tenant=tenant,
                subject=subject,
            )
        return str(topic)

    async def get_device(self, tenant: str, device_id: str) -> dict[str, Any]:
        """Full device descriptor.

        Raises:
            UnknownDeviceError: device manager answered 404
            DirectoryApiError: any other failure
        """
        prefix = "/internal/device" if self.use_internal_device_endpoint else "/device"
        url = f"{self.device_manager_url}{prefix}/{device_id}"
        try:
            return await self._request("GET", url, endpoint="device", tenant=tenant)
        except DirectoryApiError as e:
            if e.status_code == 404:
                raise UnknownDeviceError(device_id, tenant, cause=e) from e
            raise

    async def list_devices(self, tenant: str) -> list[str]:
        """Ids of every device registered for the tenant."""
        url = f"{self.device_manager_url}/device?idsOnly"
        data = await self._request("GET", url, endpoint="devices", tenant=tenant)
        return [str(device_id) for device_id in data]
