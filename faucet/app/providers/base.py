from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Dict, Optional

import httpx


class UpstreamOutcome(str, Enum):
    """Classification of one upstream call."""

    SUCCESS = "success"
    QUOTA_EXHAUSTED = "quota_exhausted"
    ERROR = "error"
    TRANSPORT_ERROR = "transport_error"


@dataclass
class UpstreamResult:
    """Typed result of a single upstream dispatch.

    Attributes:
        kind: How the call ended
        status_code: HTTP status, None for transport failures
        body: Parsed JSON body (or a raw-text fallback dict)
        error: Transport failure description
        timed_out: True when the transport failure was a timeout
    """

    kind: UpstreamOutcome
    status_code: Optional[int] = None
    body: Any = None
    error: Optional[str] = None
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.kind == UpstreamOutcome.SUCCESS


class BaseProvider(ABC):
    """Base class for upstream token-dispensing providers.

    Subclasses can accept an external httpx.AsyncClient for connection pooling,
    or create their own per call if not provided.
    """

    def __init__(
        self,
        base_url: str,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        """Initialize the provider.

        Args:
            base_url: The API base URL
            http_client: Optional shared HTTP client for connection pooling
            timeout: Per-request timeout in seconds
        """
        self._http_client = http_client
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @property
    def http_client(self) -> Optional[httpx.AsyncClient]:
        """Get the HTTP client, if one was provided."""
        return self._http_client

    def _build_headers(self, api_key: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    @asynccontextmanager
    async def _client_context(self) -> AsyncIterator[httpx.AsyncClient]:
        """Yield the shared client, or a per-call client that is closed after."""
        if self._http_client is not None:
            yield self._http_client
            return
        client = httpx.AsyncClient(timeout=self.timeout)
        try:
            yield client
        finally:
            await client.aclose()

    def _get_endpoint_url(self, endpoint: str) -> str:
        return f"{self.base_url}{endpoint}"

    @abstractmethod
    async def request_drip(
        self, api_key: str, payload: Dict[str, Any]
    ) -> UpstreamResult:
        """Ask the provider to dispense tokens using one credential.

        Implementations never raise for HTTP or transport failures; they
        classify them into an UpstreamResult.
        """
