"""
Base API Client

HTTP client with retry logic for outbound third-party calls.
Extend for provider-specific clients (GST filing data, LLM chat).
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = structlog.get_logger()


class BaseAPIClient(ABC):
    """
    Base class for outbound API clients.

    Subclasses should implement:
    - base_url property
    - default_headers property (optional)
    """

    def __init__(
        self,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.timeout = timeout
        self.transport = transport
        self._client: Optional[httpx.Client] = None

    @property
    @abstractmethod
    def base_url(self) -> str:
        """Return the base URL for the API."""
        ...

    @property
    def default_headers(self) -> Dict[str, str]:
        """Return default headers for requests."""
        return {}

    def get_client(self) -> httpx.Client:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.Client(
                base_url=self.base_url,
                headers=self.default_headers,
                timeout=self.timeout,
                transport=self.transport,
            )
        return self._client

    def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> "BaseAPIClient":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    @retry(
        retry=retry_if_exception_type(httpx.TimeoutException),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=4, max=60),
        reraise=True,
    )
    def _make_request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """Make an HTTP request, retrying on timeouts."""
        client = self.get_client()
        logger.debug("api_request", method=method, path=path)

        response = client.request(method, path, params=params, json=json)

        logger.debug("api_response", method=method, path=path, status_code=response.status_code)
        return response
