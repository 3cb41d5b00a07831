import asyncio
import json
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from ..core.privacy import (
    Deposit,
    DepositNotFoundError,
    DepositStatus,
    InvalidSwapRequestError,
    SwapEventType,
    describe_progress,
)
from ..dependencies import Services, get_services

router = APIRouter(prefix="/api/proxy")

STREAM_KEEPALIVE_SECONDS = 15.0
_STREAM_END = {SwapEventType.REQUEST_COMPLETED, SwapEventType.REQUEST_FAILED}


class TrackDepositRequest(BaseModel):
    txReference: str = Field(..., description="Deposit transaction hash or temporary placeholder")
    userAddress: str = Field(..., description="Depositor address")
    tokenAddress: str = Field(..., description="Deposited token")
    amount: str = Field(..., description="Amount in base units", pattern=r"^\d+$")
    privacyData: Optional[Dict[str, Any]] = Field(default=None, description="Opaque privacy-pool material")
    status: DepositStatus = DepositStatus.PENDING


class UpdateDepositRequest(BaseModel):
    status: DepositStatus
    remainingBalance: Optional[str] = Field(default=None, pattern=r"^\d+$")


class SwapSubmission(BaseModel):
    userAddress: str
    fromToken: str
    toToken: str
    amount: str = Field(..., description="Amount in base units")
    slippageBps: int = Field(..., description="Max slippage in basis points")
    depositReference: Optional[str] = Field(default=None, description="Funding deposit tx reference")
    recipientAddress: Optional[str] = None


# ---------------------------
# Deposits
# ---------------------------
@router.post("/deposits")
async def track_deposit(
    body: TrackDepositRequest,
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    try:
        deposit = services.ledger.track(
            Deposit(
                tx_reference=body.txReference,
                owner_address=body.userAddress,
                token_address=body.tokenAddress,
                amount=body.amount,
                status=body.status,
                privacy_data=body.privacyData,
            )
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"status": "success", "deposit": deposit.to_dict()}


@router.get("/deposits/{user_address}")
async def list_deposits(user_address: str, services: Services = Depends(get_services)) -> Dict[str, Any]:
    deposits = services.ledger.by_owner(user_address)
    return {"status": "success", "deposits": [d.to_dict() for d in deposits]}


@router.patch("/deposits/{user_address}/{tx_reference}")
async def update_deposit(
    user_address: str,
    tx_reference: str,
    body: UpdateDepositRequest,
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    try:
        deposit = services.ledger.mark_status(
            user_address, tx_reference, body.status, body.remainingBalance
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    if deposit is None:
        raise HTTPException(status_code=404, detail="Deposit not found")
    return {"status": "success", "deposit": deposit.to_dict()}


@router.get("/balance/{user_address}/{token_address}")
async def get_balance(
    user_address: str,
    token_address: str,
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    balance = services.ledger.total_balance(user_address, token_address)
    return {"status": "success", "balance": str(balance)}


# ---------------------------
# Swaps
# ---------------------------
@router.post("/swap")
async def submit_swap(body: SwapSubmission, services: Services = Depends(get_services)) -> Dict[str, Any]:
    try:
        swap = services.intake.submit(
            user_address=body.userAddress,
            from_token=body.fromToken,
            to_token=body.toToken,
            amount=body.amount,
            slippage_bps=body.slippageBps,
            deposit_reference=body.depositReference,
            recipient_address=body.recipientAddress,
        )
    except (InvalidSwapRequestError, DepositNotFoundError) as exc:
        raise HTTPException(status_code=400, detail=exc.message)

    return {
        "status": "success",
        "swapId": swap.id,
        "depositReference": swap.deposit_reference,
        "message": "Privacy swap initiated and queued for processing",
    }


@router.get("/swap/{swap_id}")
async def get_swap(swap_id: str, services: Services = Depends(get_services)) -> Dict[str, Any]:
    swap = services.queue.get_by_id(swap_id)
    if swap is None:
        raise HTTPException(status_code=404, detail="Swap not found")
    return {"status": "success", "swap": swap.to_dict()}


@router.get("/swap/{swap_id}/detailed")
async def get_swap_detailed(swap_id: str, services: Services = Depends(get_services)) -> Dict[str, Any]:
    swap = services.queue.get_by_id(swap_id)
    if swap is None:
        raise HTTPException(status_code=404, detail="Swap not found")
    return {"status": "success", "detailedStatus": describe_progress(swap).to_dict()}


@router.get("/swaps/{user_address}")
async def list_swaps(user_address: str, services: Services = Depends(get_services)) -> Dict[str, Any]:
    swaps = services.queue.get_by_owner(user_address)
    return {"status": "success", "swaps": [s.to_dict() for s in swaps]}


@router.get("/queue/status")
async def queue_status(services: Services = Depends(get_services)) -> Dict[str, Any]:
    return {"status": "success", "queue": services.queue.queue_status().to_dict()}


@router.get("/swap/{swap_id}/stream")
async def stream_swap(
    swap_id: str,
    request: Request,
    services: Services = Depends(get_services),
) -> StreamingResponse:
    """Server-sent events for one swap until it completes or fails."""
    current = services.queue.get_by_id(swap_id)
    if current is None:
        raise HTTPException(status_code=404, detail="Swap not found")

    async def event_stream() -> AsyncIterator[str]:
        async with services.events.listen(swap_id) as events:
            snapshot = services.queue.get_by_id(swap_id) or current
            yield f"event: snapshot\ndata: {json.dumps(snapshot.to_dict())}\n\n"
            if snapshot.is_terminal:
                return

            while not await request.is_disconnected():
                try:
                    event = await asyncio.wait_for(events.get(), timeout=STREAM_KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                yield f"event: {event.type.value}\ndata: {json.dumps(event.to_dict())}\n\n"
                if event.type in _STREAM_END:
                    return

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )
