"""Base HTTP client for edu-bridge.

This module provides a base async HTTP client with connection pooling,
error classification, transparent re-authentication and request logging.
"""

import time
from typing import Any
from urllib.parse import urljoin

import httpx

from edu_migration.client.exceptions import (
    APIError,
    AuthenticationError,
    AuthorizationError,
    BackendErrorCode,
    InvalidNameError,
    NameConflictError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    RejectedError,
    ServerError,
    ServiceUnavailableError,
    classify_payload,
)
from edu_migration.utils.logging import (
    get_logger,
    log_api_request,
    sanitize_payload,
    should_log_payloads,
    truncate_payload,
)

logger = get_logger(__name__)

LOGIN_ENDPOINT = "auth/login"


def _error_message(error_data: Any) -> str:
    if isinstance(error_data, dict):
        return str(
            error_data.get("message")
            or error_data.get("detail")
            or error_data.get("title")
            or "Unknown error"
        )
    if isinstance(error_data, list):
        return ", ".join(str(item) for item in error_data) if error_data else "Unknown error"
    return str(error_data) if error_data else "Unknown error"


def raise_for_payload_code(code: BackendErrorCode | None, status_code: int, payload: Any) -> None:
    """Raise the typed exception for a classified name-related marker."""
    if code in (BackendErrorCode.USER_NAME_EXIST, BackendErrorCode.DISPLAY_NAME_EXISTED):
        raise NameConflictError(
            message=code.value, status_code=status_code, response=payload, error_code=code
        )
    if code is BackendErrorCode.INVALID_DISPLAY_NAME:
        raise InvalidNameError(
            message=code.value, status_code=status_code, response=payload, error_code=code
        )


class BaseAPIClient:
    """Base async HTTP client with error mapping and re-authentication.

    This client provides:
    - Connection pooling (shareable between an admin client and per-user sessions)
    - Request/response logging with secret redaction
    - Mapping of status codes and payload markers to typed exceptions
    - One transparent re-login and replay on 401 when credentials are known
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        credentials: tuple[str, str] | None = None,
        verify_ssl: bool = True,
        timeout: int = 30,
        max_connections: int | None = None,
        max_keepalive_connections: int | None = None,
        log_payloads: bool = False,
        max_payload_size: int = 10000,
        http_client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize base API client.

        Args:
            base_url: Base URL for API requests
            token: Bearer token (None for anonymous calls)
            credentials: (username, password) used to re-login on 401
            verify_ssl: Whether to verify SSL certificates
            timeout: Request timeout in seconds
            max_connections: Maximum number of connections in pool (default: 50)
            max_keepalive_connections: Maximum keep-alive connections (default: 20)
            log_payloads: Enable request/response payload logging at DEBUG level
            max_payload_size: Maximum payload size (chars) to log before truncation
            http_client: Existing httpx client to share instead of creating one
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.credentials = credentials
        self.verify_ssl = verify_ssl

        self.log_payloads = log_payloads
        self.max_payload_size = max_payload_size

        if max_connections is None:
            max_connections = 50
        if max_keepalive_connections is None:
            max_keepalive_connections = 20

        self._owns_client = http_client is None
        if http_client is None:
            http_client = httpx.AsyncClient(
                headers={"Content-Type": "application/json", "Accept": "application/json"},
                timeout=httpx.Timeout(timeout, connect=10.0),
                limits=httpx.Limits(
                    max_connections=max_connections,
                    max_keepalive_connections=max_keepalive_connections,
                ),
                verify=verify_ssl,
                follow_redirects=True,
                transport=transport,
            )
        self.client = http_client

    def _build_headers(self) -> dict[str, str]:
        """Build per-request HTTP headers."""
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        return {}

    def _build_url(self, endpoint: str) -> str:
        """Build full URL from endpoint."""
        endpoint = endpoint.lstrip("/")
        return urljoin(f"{self.base_url}/", endpoint)

    def _handle_error_response(self, response: httpx.Response) -> None:
        """Handle error responses by raising appropriate exceptions.

        Payload markers win over the status code, since the backend reports
        name conflicts with several different statuses.

        Raises:
            NameConflictError: Body carries USER_NAME_EXIST / DISPLAY_NAME_EXISTED
            InvalidNameError: Body carries INVALID_DISPLAY_NAME
            AuthenticationError: For 401 responses
            AuthorizationError: For 403 responses
            NotFoundError: For 404 responses
            RejectedError: For 417 responses
            RateLimitError: For 429 responses
            ServiceUnavailableError: For 503 responses
            ServerError: For other 5xx responses
            APIError: For other error responses
        """
        status_code = response.status_code

        try:
            error_data = response.json()
        except ValueError:
            error_data = {"detail": response.text}

        error_message = _error_message(error_data)
        raise_for_payload_code(classify_payload(error_data), status_code, error_data)

        if status_code == 401:
            raise AuthenticationError(
                message="Authentication failed", status_code=status_code, response=error_data
            )
        elif status_code == 403:
            raise AuthorizationError(
                message="Authorization failed", status_code=status_code, response=error_data
            )
        elif status_code == 404:
            raise NotFoundError(
                message="Resource not found", status_code=status_code, response=error_data
            )
        elif status_code == 417:
            raise RejectedError(
                message=f"Request rejected: {error_message}",
                status_code=status_code,
                response=error_data,
                error_code=BackendErrorCode.UNKNOWN,
            )
        elif status_code == 429:
            retry_after = response.headers.get("Retry-After")
            retry_seconds = int(retry_after) if retry_after and retry_after.isdigit() else None
            raise RateLimitError(
                message="Rate limit exceeded",
                status_code=status_code,
                response=error_data,
                retry_after=retry_seconds,
            )
        elif status_code == 503:
            raise ServiceUnavailableError(
                message="Service unavailable", status_code=status_code, response=error_data
            )
        elif 500 <= status_code < 600:
            raise ServerError(
                message=f"Server error: {error_message}",
                status_code=status_code,
                response=error_data,
            )
        else:
            raise APIError(
                message=f"API error: {error_message}",
                status_code=status_code,
                response=error_data,
            )

    async def request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        json_data: Any = None,
        **kwargs: Any,
    ) -> Any:
        """Make an HTTP request with error handling.

        On a 401 the client logs in again with its credentials (if any) and
        replays the request once.

        Args:
            method: HTTP method (GET, POST, PUT, DELETE, etc.)
            endpoint: API endpoint path
            params: Query parameters
            json_data: JSON request body
            **kwargs: Additional arguments passed to httpx

        Returns:
            Decoded JSON body (dict, list, bool, str) or None for an empty body

        Raises:
            NetworkError: For network-related errors
            Various APIError subclasses: For API errors
        """
        try:
            return await self._send(method, endpoint, params, json_data, **kwargs)
        except AuthenticationError:
            if not self.credentials or endpoint.lstrip("/") == LOGIN_ENDPOINT:
                raise
            logger.info("reauthenticating", base_url=self.base_url, user=self.credentials[0])
            await self.reauthenticate()
            return await self._send(method, endpoint, params, json_data, **kwargs)

    async def reauthenticate(self) -> None:
        """Log in again with stored credentials and keep the new token."""
        if not self.credentials:
            raise AuthenticationError(message="No credentials available for re-login")
        username, password = self.credentials
        data = await self._send(
            "POST", LOGIN_ENDPOINT, None, {"username": username, "password": password}
        )
        token = data.get("accessToken") if isinstance(data, dict) else None
        if not token:
            raise AuthenticationError(message="Login response carried no access token")
        self.token = token

    async def _send(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None,
        json_data: Any,
        **kwargs: Any,
    ) -> Any:
        url = self._build_url(endpoint)

        if should_log_payloads(logger, self.log_payloads) and json_data is not None:
            logger.debug(
                "api_request_payload",
                method=method,
                url=url,
                payload=truncate_payload(sanitize_payload(json_data), self.max_payload_size),
            )

        start_time = time.time()

        try:
            response = await self.client.request(
                method=method,
                url=url,
                params=params,
                json=json_data,
                headers=self._build_headers(),
                **kwargs,
            )
        except httpx.TimeoutException as e:
            logger.warning("timeout_error", method=method, url=url, error=str(e))
            raise NetworkError(f"Request timeout: {str(e)}") from e
        except httpx.TransportError as e:
            logger.warning("network_error", method=method, url=url, error=str(e))
            raise NetworkError(f"Network error: {str(e)}") from e

        duration_ms = (time.time() - start_time) * 1000
        log_api_request(
            logger,
            method=method,
            url=url,
            status_code=response.status_code,
            duration_ms=duration_ms,
        )

        if should_log_payloads(logger, self.log_payloads) and response.text:
            try:
                payload_str = truncate_payload(
                    sanitize_payload(response.json()), self.max_payload_size
                )
            except ValueError:
                payload_str = response.text[: self.max_payload_size]
            logger.debug(
                "api_response_payload",
                method=method,
                url=url,
                status_code=response.status_code,
                payload=payload_str,
            )

        if response.status_code >= 400:
            self._handle_error_response(response)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    async def get(self, endpoint: str, params: dict[str, Any] | None = None, **kwargs: Any) -> Any:
        """Make a GET request."""
        return await self.request("GET", endpoint, params=params, **kwargs)

    async def post(
        self,
        endpoint: str,
        json_data: Any = None,
        params: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> Any:
        """Make a POST request."""
        return await self.request("POST", endpoint, params=params, json_data=json_data, **kwargs)

    async def put(
        self,
        endpoint: str,
        json_data: Any = None,
        params: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> Any:
        """Make a PUT request."""
        return await self.request("PUT", endpoint, params=params, json_data=json_data, **kwargs)

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self.client.aclose()
            logger.debug("client_closed", base_url=self.base_url)

    async def __aenter__(self) -> "BaseAPIClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()
