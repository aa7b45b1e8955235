import json
from typing import Any, Dict, Iterable, Optional

import httpx

from faucet.app.core.logging import get_logger
from faucet.app.providers.base import BaseProvider, UpstreamOutcome, UpstreamResult

logger = get_logger(__name__)

RAW_BODY_PREVIEW_CHARS = 200


class CircleFaucetProvider(BaseProvider):
    """Circle testnet faucet API provider.

    Posts ``{address, blockchain, native?, usdc?, eurc?}`` to the drip
    endpoint with a bearer credential and classifies the response.
    """

    def __init__(
        self,
        base_url: str,
        drip_path: str = "/v1/faucet/drips",
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
        quota_status_codes: Iterable[int] = (429,),
        quota_error_codes: Iterable[str] = (),
    ):
        super().__init__(base_url, http_client, timeout)
        self.drip_path = drip_path
        self.quota_status_codes = frozenset(quota_status_codes)
        self.quota_error_codes = frozenset(str(c) for c in quota_error_codes)

    @staticmethod
    def _parse_body(resp: httpx.Response) -> Any:
        try:
            return resp.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return {
                "error": "Invalid JSON response",
                "raw": resp.text[:RAW_BODY_PREVIEW_CHARS],
            }

    def classify(self, status_code: int, body: Any) -> UpstreamOutcome:
        """Map an HTTP response onto an UpstreamOutcome."""
        if 200 <= status_code < 300:
            return UpstreamOutcome.SUCCESS
        if status_code in self.quota_status_codes:
            return UpstreamOutcome.QUOTA_EXHAUSTED
        if isinstance(body, dict) and str(body.get("code")) in self.quota_error_codes:
            return UpstreamOutcome.QUOTA_EXHAUSTED
        return UpstreamOutcome.ERROR

    async def request_drip(
        self, api_key: str, payload: Dict[str, Any]
    ) -> UpstreamResult:
        """Send one drip request.

        Args:
            api_key: Credential used as the bearer token
            payload: Drip request body

        Returns:
            UpstreamResult; timeouts and connection failures become
            TRANSPORT_ERROR results instead of exceptions.
        """
        url = self._get_endpoint_url(self.drip_path)
        try:
            async with self._client_context() as client:
                resp = await client.post(
                    url,
                    headers=self._build_headers(api_key),
                    json=payload,
                    timeout=self.timeout,
                )
        except httpx.TimeoutException as e:
            logger.warning(f"Upstream request timed out after {self.timeout}s: {type(e).__name__}")
            return UpstreamResult(
                kind=UpstreamOutcome.TRANSPORT_ERROR,
                error="Request timeout",
                timed_out=True,
            )
        except httpx.TransportError as e:
            logger.warning(f"Upstream transport failure: {type(e).__name__}: {e}")
            return UpstreamResult(
                kind=UpstreamOutcome.TRANSPORT_ERROR,
                error=f"{type(e).__name__}: {e}",
            )

        body = self._parse_body(resp)
        return UpstreamResult(
            kind=self.classify(resp.status_code, body),
            status_code=resp.status_code,
            body=body,
        )


def create_circle_provider(
    http_client: Optional[httpx.AsyncClient] = None,
) -> CircleFaucetProvider:
    """Create a provider configured from application settings."""
    from faucet.app.core.config import settings

    return CircleFaucetProvider(
        base_url=settings.circle_base_url,
        drip_path=settings.circle_drip_path,
        http_client=http_client,
        timeout=settings.upstream_timeout_seconds,
        quota_status_codes=settings.upstream_quota_status_codes,
        quota_error_codes=settings.upstream_quota_error_codes,
    )
