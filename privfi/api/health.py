from typing import Any, Dict

from fastapi import APIRouter, Depends

from ..dependencies import Services, get_services

router = APIRouter(prefix="/api")


@router.get("/health")
async def health_check(services: Services = Depends(get_services)) -> Dict[str, Any]:
    """Liveness plus a glance at the phase queue"""
    queue_status = services.queue.queue_status()
    orphaned = services.queue.orphaned()

    healthy = queue_status.running and not orphaned
    return {
        "status": "healthy" if healthy else "degraded",
        "proxyWallet": services.executor.wallet_address,
        "queue": queue_status.to_dict(),
        "orphanedSwaps": [r.id for r in orphaned],
        "trackedOwners": len(services.ledger.all_owners()),
    }
