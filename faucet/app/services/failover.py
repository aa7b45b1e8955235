"""Failover dispatch across the shared credential pool."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from faucet.app.core.logging import get_log_context, get_logger
from faucet.app.providers.base import BaseProvider, UpstreamOutcome, UpstreamResult
from faucet.app.services.credential_pool import CredentialPool

logger = get_logger(__name__)


class DispatchKind(str, Enum):
    """Terminal outcome of one failover run."""

    SUCCESS = "success"
    UPSTREAM_ERROR = "upstream_error"
    EXHAUSTED = "exhausted"
    NO_CREDENTIALS = "no_credentials"


@dataclass
class DispatchResult:
    """What the dispatcher saw.

    Attributes:
        kind: Terminal outcome
        upstream: The last upstream result (None when nothing was sent)
        credential_index: Pool index of the credential behind ``upstream``
        attempts: Number of credentials tried
        transport_failures: Description of every transport failure seen
    """
    kind: DispatchKind
    upstream: Optional[UpstreamResult] = None
    credential_index: Optional[int] = None
    attempts: int = 0
    transport_failures: List[str] = field(default_factory=list)

    @property
    def ended_on_transport_error(self) -> bool:
        return (
            self.upstream is not None
            and self.upstream.kind == UpstreamOutcome.TRANSPORT_ERROR
        )


class FailoverDispatcher:
    """Send one claim through the pool, moving on when a credential is spent.

    At most ``pool.size`` credentials are tried. Success stops the loop. A
    quota-exhaustion signal or a transport failure moves on to the next
    credential. Any other upstream response stops immediately and is
    returned as is.
    """

    def __init__(self, pool: CredentialPool, provider: BaseProvider):
        self.pool = pool
        self.provider = provider

    async def dispatch(
        self, payload: Dict[str, Any], request_id: Optional[str] = None
    ) -> DispatchResult:
        if self.pool.is_empty:
            return DispatchResult(kind=DispatchKind.NO_CREDENTIALS)

        result = DispatchResult(kind=DispatchKind.EXHAUSTED)
        while result.attempts < self.pool.size:
            credential = await self.pool.acquire()
            if credential is None:
                return DispatchResult(kind=DispatchKind.NO_CREDENTIALS)

            result.attempts += 1
            result.credential_index = credential.index
            result.upstream = await self.provider.request_drip(credential.api_key, payload)
            outcome = result.upstream.kind

            if outcome == UpstreamOutcome.SUCCESS:
                result.kind = DispatchKind.SUCCESS
                return result

            if outcome == UpstreamOutcome.ERROR:
                result.kind = DispatchKind.UPSTREAM_ERROR
                return result

            if outcome == UpstreamOutcome.TRANSPORT_ERROR:
                result.transport_failures.append(result.upstream.error or "transport error")
                logger.warning(
                    f"Transport failure on credential {credential.index}, trying next",
                    extra=get_log_context(
                        request_id=request_id,
                        event="transport_failure",
                        credential_index=credential.index,
                    ),
                )
            else:
                logger.warning(
                    f"Credential {credential.index} exhausted, trying next",
                    extra=get_log_context(
                        request_id=request_id,
                        event="credential_exhausted",
                        credential_index=credential.index,
                        status_code=result.upstream.status_code,
                    ),
                )

        logger.error(
            f"All {result.attempts} credentials failed",
            extra=get_log_context(request_id=request_id, event="pool_exhausted"),
        )
        return result
