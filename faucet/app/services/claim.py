"""Claim orchestration.

One claim request runs through a fixed pipeline::

    RECEIVED -> INFRA_CHECKED -> VALIDATED -> MODE_RESOLVED
        -> QUOTA_CHECKED (shared mode only) -> DISPATCHED -> RECORDED -> RESPONDED

Guard failures raise a FaucetException and end the pipeline early. Every
dispatched claim is recorded in the ledger exactly once, before the response
(or the error) leaves the orchestrator.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from faucet.app.core.config import Settings, settings
from faucet.app.core.logging import get_log_context, get_logger
from faucet.app.core.security import (
    hash_identifier,
    is_revoked,
    is_valid_byo_key,
    verify_secret,
)
from faucet.app.core.store import STORE_ERRORS, StateStore
from faucet.app.core.utils import now_ms
from faucet.app.exceptions import (
    AuthenticationError,
    CredentialPoolExhaustedError,
    CredentialRevokedError,
    InvalidCredentialFormatError,
    NoCredentialsError,
    QuotaExceededError,
    ServiceDisabledError,
    TransportError,
    UpstreamError,
    ValidationError,
)
from faucet.app.providers.base import BaseProvider, UpstreamOutcome, UpstreamResult
from faucet.app.services.audit import AuditLog
from faucet.app.services.credential_pool import CredentialPool
from faucet.app.services.failover import DispatchKind, DispatchResult, FailoverDispatcher
from faucet.app.services.ledger import Ledger
from faucet.app.services.rate_limit import (
    INFRA_SCOPE,
    IP_SCOPE,
    WALLET_SCOPE,
    InfrastructureLimiter,
    QuotaLimiter,
    RateLimitPolicy,
    SlidingWindowCounter,
)

logger = get_logger(__name__)

QUOTA_MESSAGES = {
    WALLET_SCOPE: "This wallet already claimed tokens on this network in the last 24 hours",
}
DEFAULT_QUOTA_MESSAGE = "Too many claims from this IP address. Please try again later."


class ClaimMode(str, Enum):
    """Claim modes, valued by their wire names."""

    BYO_KEY = "own-key"
    SHARED = "default"


class ClaimState(str, Enum):
    RECEIVED = "received"
    INFRA_CHECKED = "infra_checked"
    VALIDATED = "validated"
    MODE_RESOLVED = "mode_resolved"
    QUOTA_CHECKED = "quota_checked"
    DISPATCHED = "dispatched"
    RECORDED = "recorded"
    RESPONDED = "responded"


class FailureKind(str, Enum):
    NONE = "none"
    UPSTREAM_ERROR = "upstream_error"
    TRANSPORT_ERROR = "transport_error"
    POOL_EXHAUSTED = "pool_exhausted"


class ClaimBody(BaseModel):
    """Inbound JSON body. Field presence rules are enforced by the orchestrator."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    address: Optional[str] = None
    blockchain: Optional[str] = None
    native: Optional[bool] = False
    usdc: Optional[bool] = False
    eurc: Optional[bool] = False
    api_key: Optional[str] = Field(default=None, alias="apiKey")
    password: Optional[str] = None
    mode: Optional[str] = None


@dataclass
class ClaimRequest:
    """A validated claim, before mode resolution."""
    address: str
    network: str
    native: bool = False
    usdc: bool = False
    eurc: bool = False
    mode: Optional[str] = None
    api_key: Optional[str] = field(default=None, repr=False)
    password: Optional[str] = field(default=None, repr=False)

    @property
    def tokens(self) -> Dict[str, bool]:
        return {"native": self.native, "usdc": self.usdc, "eurc": self.eurc}

    def upstream_payload(self) -> Dict[str, Any]:
        """Drip request body; unselected tokens are omitted."""
        payload: Dict[str, Any] = {"address": self.address, "blockchain": self.network}
        payload.update({name: True for name, selected in self.tokens.items() if selected})
        return payload


@dataclass
class ClaimOutcome:
    """Result of one dispatched claim, recorded once in the ledger."""
    accepted: bool
    upstream_status: Optional[int] = None
    upstream_body: Any = None
    failure_kind: FailureKind = FailureKind.NONE
    used_credential_index: Optional[int] = None


@dataclass
class ClaimResponse:
    status_code: int
    body: Dict[str, Any]


@dataclass
class ClaimContext:
    """Per-request pipeline state."""
    client_ip: str
    request_id: Optional[str] = None
    started_at: int = 0
    state: ClaimState = ClaimState.RECEIVED
    history: List[ClaimState] = field(default_factory=list)
    audit_fields: Dict[str, Any] = field(default_factory=dict)

    def advance(self, state: ClaimState) -> None:
        self.history.append(self.state)
        self.state = state


class ClaimOrchestrator:
    """Composes limiters, credential pool, dispatcher and ledger per claim.

    Every collaborator is injected; ``build_orchestrator`` wires the
    production set from settings.
    """

    def __init__(
        self,
        provider: BaseProvider,
        pool: CredentialPool,
        infra_limiter: InfrastructureLimiter,
        quota_limiter: QuotaLimiter,
        ledger: Ledger,
        audit: AuditLog,
        config: Optional[Settings] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.provider = provider
        self.pool = pool
        self.dispatcher = FailoverDispatcher(pool, provider)
        self.infra_limiter = infra_limiter
        self.quota_limiter = quota_limiter
        self.ledger = ledger
        self.audit = audit
        self.config = config or settings
        self._clock = clock

    async def handle(
        self, raw_body: bytes, client_ip: str, request_id: Optional[str] = None
    ) -> ClaimResponse:
        """Run one claim through the pipeline.

        Args:
            raw_body: Unparsed request body
            client_ip: Caller IP (hashed before it is logged or stored)
            request_id: Request ID for log and audit correlation

        Returns:
            ClaimResponse for an accepted claim

        Raises:
            FaucetException: For every rejection and failed dispatch
        """
        ctx = ClaimContext(client_ip=client_ip, request_id=request_id, started_at=self._clock())
        ctx.audit_fields["ip_hash"] = hash_identifier(client_ip)

        await self._check_infrastructure(ctx)

        if self.config.faucet_disabled:
            raise ServiceDisabledError()

        claim = self._validate(raw_body, ctx)
        mode = await self._resolve_mode(claim, ctx)

        if mode == ClaimMode.SHARED:
            await self._check_quota(claim, ctx)
            dispatch = await self.dispatcher.dispatch(claim.upstream_payload(), request_id)
            if dispatch.kind == DispatchKind.NO_CREDENTIALS:
                await self._audit(ctx, "no_api_keys_configured")
                raise NoCredentialsError()
        else:
            upstream = await self.provider.request_drip(claim.api_key, claim.upstream_payload())
            dispatch = self._direct_result(upstream)
        ctx.advance(ClaimState.DISPATCHED)

        outcome = self._to_outcome(dispatch)
        await self._record(mode, claim, outcome, ctx)
        ctx.advance(ClaimState.RECORDED)

        response = await self._respond(dispatch, outcome, ctx)
        ctx.advance(ClaimState.RESPONDED)
        return response

    async def _audit(self, ctx: ClaimContext, event: str, **fields: Any) -> None:
        await self.audit.emit(event, request_id=ctx.request_id, **ctx.audit_fields, **fields)

    @staticmethod
    def _invalid(
        ctx: ClaimContext, message: str, error: str, **details: Any
    ) -> ValidationError:
        """Log a caller-correctable rejection and build its error.

        Malformed or incomplete requests get a log line only. Rejections
        concerning credentials or limits go to the audit stream instead.
        """
        logger.warning(
            f"Claim rejected: {message}",
            extra=get_log_context(
                request_id=ctx.request_id,
                event=error,
                client_ip_hash=ctx.audit_fields.get("ip_hash"),
                network=ctx.audit_fields.get("network"),
                mode=ctx.audit_fields.get("mode"),
            ),
        )
        return ValidationError(message, error=error, **details)

    async def _check_infrastructure(self, ctx: ClaimContext) -> None:
        policy = self.infra_limiter.policy
        result = await self.infra_limiter.check(ctx.client_ip)
        if not result.allowed:
            await self._audit(ctx, "infra_limit_exceeded")
            raise QuotaExceededError(
                INFRA_SCOPE,
                reset_at=result.reset_at,
                detail=(
                    f"Infrastructure rate limit exceeded ({policy.limit} req/"
                    f"{policy.window_ms // 1000}s). Please try again later."
                ),
            )
        ctx.advance(ClaimState.INFRA_CHECKED)

    def _validate(self, raw_body: bytes, ctx: ClaimContext) -> ClaimRequest:
        try:
            data = json.loads(raw_body or b"{}")
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise self._invalid(ctx, "Request body must be valid JSON", "invalid_json") from e
        if not isinstance(data, dict):
            raise self._invalid(ctx, "Request body must be a JSON object", "invalid_json")

        try:
            body = ClaimBody.model_validate(data)
        except PydanticValidationError as e:
            fields = sorted({str(err["loc"][0]) for err in e.errors() if err.get("loc")})
            raise self._invalid(
                ctx, f"Invalid field types: {', '.join(fields)}", "invalid_fields"
            ) from e

        if not body.address or not body.address.strip() or not body.blockchain:
            raise self._invalid(
                ctx, "Address and blockchain are required", "missing_required_fields"
            )

        if body.blockchain not in self.config.supported_networks:
            raise self._invalid(
                ctx,
                f'Blockchain "{body.blockchain}" is not supported',
                "unsupported_blockchain",
                supported=list(self.config.supported_networks),
            )

        if not (body.native or body.usdc or body.eurc):
            raise self._invalid(
                ctx, "Please select at least one token to claim", "no_tokens_selected"
            )

        claim = ClaimRequest(
            address=body.address.strip(),
            network=body.blockchain,
            native=bool(body.native),
            usdc=bool(body.usdc),
            eurc=bool(body.eurc),
            mode=body.mode,
            api_key=body.api_key,
            password=body.password,
        )
        logger.info(
            "Claim request received",
            extra=get_log_context(
                request_id=ctx.request_id,
                event="claim_received",
                client_ip_hash=ctx.audit_fields["ip_hash"],
                wallet_hash=hash_identifier(claim.address),
                network=claim.network,
                mode=claim.mode,
            ),
        )
        ctx.audit_fields.update(
            wallet_hash=hash_identifier(claim.address),
            network=claim.network,
            mode=claim.mode,
            tokens=claim.tokens,
        )
        ctx.advance(ClaimState.VALIDATED)
        return claim

    async def _resolve_mode(self, claim: ClaimRequest, ctx: ClaimContext) -> ClaimMode:
        try:
            mode = ClaimMode(claim.mode)
        except ValueError:
            raise self._invalid(
                ctx, "Please select a valid claim mode (own-key or default)", "invalid_mode"
            ) from None

        if mode == ClaimMode.BYO_KEY:
            await self._check_byo_key(claim, ctx)
        else:
            await self._check_shared_secret(claim, ctx)

        ctx.advance(ClaimState.MODE_RESOLVED)
        return mode

    async def _check_byo_key(self, claim: ClaimRequest, ctx: ClaimContext) -> None:
        if not claim.api_key:
            raise self._invalid(ctx, "Please provide your Circle API key", "api_key_required")

        ctx.audit_fields["api_key_hash"] = hash_identifier(claim.api_key)
        if not is_valid_byo_key(claim.api_key):
            error = InvalidCredentialFormatError()
            await self._audit(ctx, error.check)
            raise error

        if is_revoked(claim.api_key, self.config.revoked_api_key_hashes):
            error = CredentialRevokedError()
            await self._audit(ctx, error.check)
            raise error

    async def _check_shared_secret(self, claim: ClaimRequest, ctx: ClaimContext) -> None:
        if not claim.password:
            raise self._invalid(ctx, "Please provide the faucet password", "password_required")

        if not verify_secret(claim.password, self.config.default_password_hash):
            error = AuthenticationError("The password you entered is incorrect")
            await self._audit(ctx, error.check)
            raise error

    async def _check_quota(self, claim: ClaimRequest, ctx: ClaimContext) -> None:
        # An unavailable service must not consume the caller's quota.
        if self.pool.is_empty:
            logger.error(
                "No upstream credentials configured",
                extra=get_log_context(request_id=ctx.request_id, event="no_api_keys_configured"),
            )
            await self._audit(ctx, "no_api_keys_configured")
            raise NoCredentialsError()

        decision = await self.quota_limiter.acquire(claim.address, claim.network, ctx.client_ip)
        if not decision.allowed:
            await self._audit(ctx, f"{decision.scope}_limit_exceeded")
            raise QuotaExceededError(
                decision.scope,
                reset_at=decision.result.reset_at if decision.result else None,
                detail=QUOTA_MESSAGES.get(decision.scope, DEFAULT_QUOTA_MESSAGE),
            )
        ctx.advance(ClaimState.QUOTA_CHECKED)

    @staticmethod
    def _direct_result(upstream: UpstreamResult) -> DispatchResult:
        kind = DispatchKind.SUCCESS if upstream.ok else DispatchKind.UPSTREAM_ERROR
        return DispatchResult(kind=kind, upstream=upstream, attempts=1)

    @staticmethod
    def _to_outcome(dispatch: DispatchResult) -> ClaimOutcome:
        upstream = dispatch.upstream
        if dispatch.kind == DispatchKind.SUCCESS:
            failure = FailureKind.NONE
        elif dispatch.kind == DispatchKind.EXHAUSTED:
            failure = FailureKind.POOL_EXHAUSTED
        elif upstream is not None and upstream.kind == UpstreamOutcome.TRANSPORT_ERROR:
            failure = FailureKind.TRANSPORT_ERROR
        else:
            failure = FailureKind.UPSTREAM_ERROR
        return ClaimOutcome(
            accepted=dispatch.kind == DispatchKind.SUCCESS,
            upstream_status=upstream.status_code if upstream else None,
            upstream_body=upstream.body if upstream else None,
            failure_kind=failure,
            # An exhausted pool is not any single credential's usage.
            used_credential_index=(
                None if dispatch.kind == DispatchKind.EXHAUSTED else dispatch.credential_index
            ),
        )

    async def _record(
        self, mode: ClaimMode, claim: ClaimRequest, outcome: ClaimOutcome, ctx: ClaimContext
    ) -> None:
        try:
            await self.ledger.record(
                mode.value, claim.network, outcome.accepted, outcome.used_credential_index
            )
        except STORE_ERRORS as e:
            logger.error(
                f"Failed to record claim in ledger: {type(e).__name__}: {e}",
                extra=get_log_context(request_id=ctx.request_id, event="ledger_write_failed"),
            )

    async def _respond(
        self, dispatch: DispatchResult, outcome: ClaimOutcome, ctx: ClaimContext
    ) -> ClaimResponse:
        duration = self._clock() - ctx.started_at
        upstream = dispatch.upstream

        if outcome.accepted:
            data = outcome.upstream_body if outcome.upstream_body is not None else {}
            transaction_id = None
            if isinstance(data, dict):
                transaction_id = data.get("transactionId") or data.get("id")
            await self._audit(
                ctx,
                "claim_success",
                success=True,
                duration_ms=duration,
                credential_index=outcome.used_credential_index,
            )
            return ClaimResponse(
                status_code=200,
                body={
                    "success": True,
                    "message": "Tokens claimed successfully",
                    "transactionId": transaction_id,
                    "data": data,
                },
            )

        if outcome.failure_kind == FailureKind.POOL_EXHAUSTED:
            await self._audit(
                ctx,
                "pool_exhausted",
                attempts=dispatch.attempts,
                status_code=outcome.upstream_status,
                transport_failures=len(dispatch.transport_failures) or None,
                duration_ms=duration,
            )
            error = CredentialPoolExhaustedError(
                dispatch.attempts, outcome.upstream_status, outcome.upstream_body
            )
            if dispatch.ended_on_transport_error:
                raise error from TransportError(upstream.error, timed_out=upstream.timed_out)
            raise error

        if outcome.failure_kind == FailureKind.TRANSPORT_ERROR:
            await self._audit(
                ctx,
                "upstream_unreachable",
                error=upstream.error,
                timed_out=upstream.timed_out,
                duration_ms=duration,
            )
            raise TransportError(upstream.error or "Upstream request failed", upstream.timed_out)

        body = outcome.upstream_body
        await self._audit(
            ctx,
            "circle_api_error",
            status_code=outcome.upstream_status,
            error=body.get("message") if isinstance(body, dict) else None,
            credential_index=outcome.used_credential_index,
            duration_ms=duration,
        )
        raise UpstreamError(outcome.upstream_status or 502, body)


def build_orchestrator(
    store: StateStore,
    provider: BaseProvider,
    config: Optional[Settings] = None,
    clock: Callable[[], int] = now_ms,
) -> ClaimOrchestrator:
    """Wire an orchestrator and its collaborators from settings."""
    config = config or settings
    prefix = config.store_key_prefix
    cursor_key = f"{prefix}:credential_cursor"

    counter = SlidingWindowCounter(
        store, key_prefix=prefix, fail_closed=config.rate_limit_fail_closed, clock=clock
    )
    infra_limiter = InfrastructureLimiter(
        counter,
        RateLimitPolicy.per_seconds(
            INFRA_SCOPE, config.infra_limit_requests, config.infra_limit_window_seconds
        ),
    )
    ip_policy = None
    if config.shared_ip_limit_claims is not None:
        ip_policy = RateLimitPolicy.per_seconds(
            IP_SCOPE, config.shared_ip_limit_claims, config.shared_ip_limit_window_seconds
        )
    quota_limiter = QuotaLimiter(
        counter,
        RateLimitPolicy.per_seconds(
            WALLET_SCOPE, config.wallet_limit_claims, config.wallet_limit_window_seconds
        ),
        ip_policy,
    )

    return ClaimOrchestrator(
        provider=provider,
        pool=CredentialPool(config.circle_api_keys, store, cursor_key),
        infra_limiter=infra_limiter,
        quota_limiter=quota_limiter,
        ledger=Ledger(store, f"{prefix}:ledger:v1", cursor_key, clock=clock),
        audit=AuditLog(store, f"{prefix}:audit", config.audit_stream_maxlen, clock=clock),
        config=config,
        clock=clock,
    )


# Global orchestrator instance (singleton pattern)
_orchestrator: Optional[ClaimOrchestrator] = None


def get_orchestrator() -> ClaimOrchestrator:
    """Get or create the application's claim orchestrator."""
    global _orchestrator
    if _orchestrator is None:
        from faucet.app.core.http_client import get_http_client
        from faucet.app.core.store import get_store
        from faucet.app.providers.circle import create_circle_provider

        _orchestrator = build_orchestrator(
            get_store(), create_circle_provider(get_http_client())
        )
    return _orchestrator


def reset_orchestrator() -> None:
    """Reset the global orchestrator.

    This is primarily useful for testing.
    """
    global _orchestrator
    _orchestrator = None
