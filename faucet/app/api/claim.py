"""Claim endpoint."""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from faucet.app.core.utils import get_client_ip
from faucet.app.middleware.request_id import get_request_id
from faucet.app.services.claim import get_orchestrator

router = APIRouter()


@router.post("/api/claim")
async def claim_tokens(request: Request) -> JSONResponse:
    """Request testnet tokens for a wallet.

    The body is read raw: the infrastructure limiter runs before it is parsed,
    and malformed JSON is reported as a 400 rather than a 422.
    """
    orchestrator = get_orchestrator()
    raw_body = await request.body()
    response = await orchestrator.handle(
        raw_body,
        client_ip=get_client_ip(request),
        request_id=get_request_id(request),
    )
    return JSONResponse(status_code=response.status_code, content=response.body)
