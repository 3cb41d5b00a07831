"""Human-facing progress breakdown of a swap request."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from .models import FlowPhase, SwapRequest

AVERAGE_PHASE_DURATION = timedelta(minutes=2)

# Order used to decide whether a request has passed a phase
_PHASE_ORDER = {
    FlowPhase.PENDING: 0,
    FlowPhase.DEPOSITING: 1,
    FlowPhase.WITHDRAWING: 2,
    FlowPhase.SWAPPING: 3,
    FlowPhase.REDEPOSITING: 4,
    FlowPhase.READY_TO_WITHDRAW: 5,
    FlowPhase.COMPLETED: 6,
}

_CURRENT_PHASE_NUMBER = {
    FlowPhase.PENDING: 1,
    FlowPhase.DEPOSITING: 1,
    FlowPhase.WITHDRAWING: 2,
    FlowPhase.SWAPPING: 3,
    FlowPhase.REDEPOSITING: 4,
    FlowPhase.READY_TO_WITHDRAW: 5,
    FlowPhase.COMPLETED: 5,
    FlowPhase.FAILED: 0,
}


@dataclass
class PhaseDetail:
    number: int
    name: str
    status: str  # pending | completed | failed
    tx_ref: Optional[str]
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.number,
            "name": self.name,
            "status": self.status,
            "txRef": self.tx_ref,
            "description": self.description,
        }


@dataclass
class ProgressReport:
    swap_id: str
    current_phase: int
    total_progress: int
    estimated_completion: datetime
    phases: List[PhaseDetail] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "swapId": self.swap_id,
            "currentPhase": self.current_phase,
            "totalProgress": self.total_progress,
            "estimatedCompletion": self.estimated_completion.isoformat(),
            "phaseDetails": [p.to_dict() for p in self.phases],
            "metadata": self.metadata,
            "error": self.error,
        }


def _custodial_status(request: SwapRequest, phase: FlowPhase) -> str:
    if request.phase == FlowPhase.FAILED:
        failed_at = request.failed_phase
        if failed_at == phase:
            return "failed"
        if failed_at is not None and _PHASE_ORDER.get(failed_at, 0) > _PHASE_ORDER[phase]:
            return "completed"
        return "pending"
    return "completed" if _PHASE_ORDER[request.phase] > _PHASE_ORDER[phase] else "pending"


def describe_progress(request: SwapRequest, now: Optional[datetime] = None) -> ProgressReport:
    """Five-phase breakdown with overall progress and a rough completion estimate."""
    ready = request.phase in (FlowPhase.READY_TO_WITHDRAW, FlowPhase.COMPLETED)
    refs = request.proxy_tx_refs

    phases = [
        PhaseDetail(
            1,
            "User Deposit",
            "completed",
            request.deposit_reference,
            "User deposits tokens into the privacy pool",
        ),
        PhaseDetail(
            2,
            "Proxy Withdrawal",
            _custodial_status(request, FlowPhase.WITHDRAWING),
            refs.withdrawal,
            "Custodial wallet withdraws the deposit from the privacy pool",
        ),
        PhaseDetail(
            3,
            "Anonymous Swap",
            _custodial_status(request, FlowPhase.SWAPPING),
            refs.trade,
            "Custodial wallet trades through the AVNU aggregator",
        ),
        PhaseDetail(
            4,
            "Re-deposit",
            _custodial_status(request, FlowPhase.REDEPOSITING),
            refs.redeposit,
            "Custodial wallet deposits the output back into the privacy pool",
        ),
        PhaseDetail(
            5,
            "Ready for Withdrawal",
            "completed" if ready else "pending",
            None,
            "User can withdraw the swapped tokens from the privacy pool",
        ),
    ]

    completed = sum(1 for p in phases if p.status == "completed")
    remaining = sum(1 for p in phases if p.status == "pending")
    if request.phase == FlowPhase.FAILED:
        remaining = 0
    now = now or datetime.now(timezone.utc)

    return ProgressReport(
        swap_id=request.id,
        current_phase=_CURRENT_PHASE_NUMBER[request.phase],
        total_progress=round(completed / len(phases) * 100),
        estimated_completion=now + remaining * AVERAGE_PHASE_DURATION,
        phases=phases,
        metadata={
            "fromToken": request.from_token,
            "toToken": request.to_token,
            "amount": request.amount,
            "outputAmount": request.output_amount,
            "slippageBps": request.slippage_bps,
            "createdAt": request.created_at.isoformat(),
            "retryCount": request.retry_count,
            "maxRetries": request.max_retries,
            "recovery": request.recovery.to_dict() if request.recovery else None,
        },
        error=request.error,
    )
