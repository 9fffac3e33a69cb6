"""SEP-6 and SEP-24 proxy for the Stellar test anchor.

The caller authenticates with SEP-10 on its own and passes the JWT in the
body. Anchor errors are relayed with the anchor's status and body.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from rampkit.api.dependencies import get_sep_client
from rampkit.api.schemas import SepTransferRequest
from rampkit.sep.auth import decode_token
from rampkit.sep.base import SepApiError
from rampkit.sep.client import SepAnchorClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/testanchor", tags=["Test anchor"])

TRANSFER_ACTIONS = ("deposit", "withdraw")


def _check(body: SepTransferRequest) -> str:
    if not body.token:
        raise HTTPException(status_code=401, detail="SEP-10 token required")
    if body.action not in TRANSFER_ACTIONS:
        raise HTTPException(status_code=400, detail=f"Unknown action: {body.action}")
    if not body.asset_code:
        raise HTTPException(status_code=400, detail="asset_code is required")
    return body.token


def _relay(e: SepApiError) -> JSONResponse:
    logger.warning(f"[testanchor] {e.code}: {e.message}")
    return JSONResponse(status_code=e.status_code, content=e.response or {"error": e.message})


@router.post("/sep6")
async def sep6_transfer(
    body: SepTransferRequest, client: SepAnchorClient = Depends(get_sep_client)
) -> Any:
    """Start a programmatic deposit or withdrawal."""
    token = _check(body)
    params = body.params()
    if body.action == "withdraw" and not params.get("type"):
        raise HTTPException(status_code=400, detail="type is required for withdrawals")

    try:
        sep6 = await client.sep6()
        if body.action == "deposit":
            account = params.pop("account", None) or decode_token(token).sub
            result = await sep6.deposit(token, body.asset_code, account, **params)
        else:
            withdraw_type = params.pop("type")
            result = await sep6.withdraw(token, body.asset_code, withdraw_type, **params)
    except SepApiError as e:
        return _relay(e)
    return result.model_dump(exclude_none=True)


@router.post("/sep24")
async def sep24_transfer(
    body: SepTransferRequest, client: SepAnchorClient = Depends(get_sep_client)
) -> Any:
    """Start a hosted deposit or withdrawal and return the interactive URL."""
    token = _check(body)
    try:
        sep24 = await client.sep24()
        start = sep24.deposit if body.action == "deposit" else sep24.withdraw
        result = await start(token, body.asset_code, **body.params())
    except SepApiError as e:
        return _relay(e)
    return result.model_dump(exclude_none=True)
