"""
Privacy Swap Models

Swap requests, funded deposits and the phase/status enums that drive them.
Amounts are integer base units carried as decimal strings; arithmetic is done
on Python ints so no precision is ever lost.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union
from uuid import uuid4


class FlowPhase(str, Enum):
    """Lifecycle phases of a privacy swap request."""

    PENDING = "pending"
    DEPOSITING = "depositing"                # User deposits into the pool (client side)
    WITHDRAWING = "withdrawing"              # Proxy withdraws the user's deposit
    SWAPPING = "swapping"                    # Proxy trades through the aggregator
    REDEPOSITING = "redepositing"            # Proxy deposits the output back into the pool
    READY_TO_WITHDRAW = "ready_to_withdraw"  # User can withdraw from the pool
    COMPLETED = "completed"
    FAILED = "failed"


# Strictly linear; FAILED is reachable from any non-terminal phase.
NEXT_PHASE: Dict[FlowPhase, FlowPhase] = {
    FlowPhase.PENDING: FlowPhase.WITHDRAWING,
    FlowPhase.DEPOSITING: FlowPhase.WITHDRAWING,
    FlowPhase.WITHDRAWING: FlowPhase.SWAPPING,
    FlowPhase.SWAPPING: FlowPhase.REDEPOSITING,
    FlowPhase.REDEPOSITING: FlowPhase.READY_TO_WITHDRAW,
    FlowPhase.READY_TO_WITHDRAW: FlowPhase.COMPLETED,
}

TERMINAL_PHASES = frozenset({FlowPhase.COMPLETED, FlowPhase.FAILED})


class DepositStatus(str, Enum):
    """Lifecycle status of a funded deposit."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    AVAILABLE = "available"
    PARTIALLY_USED = "partially_used"
    EXHAUSTED = "exhausted"


SELECTABLE_STATUSES = frozenset({DepositStatus.AVAILABLE, DepositStatus.PARTIALLY_USED})


class RecoveryStatus(str, Enum):
    """Outcome of fund recovery for a failed request."""

    NOT_NEEDED = "not_needed"
    RECOVERED = "recovered"
    FAILED = "failed"


def parse_amount(value: Union[str, int]) -> int:
    """Parse a base-unit amount. Rejects floats, fractions and negatives."""
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise ValueError(f"Amount must be a decimal string, got {type(value).__name__}")
    text = str(value).strip()
    if not text.isdigit():
        raise ValueError(f"Amount must be a non-negative integer in base units, got {value!r}")
    return int(text)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Optional[str]) -> datetime:
    if not value:
        return _utcnow()
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class ProxyTxRefs:
    """Transaction references produced by the custodial phases."""

    withdrawal: Optional[str] = None
    trade: Optional[str] = None
    redeposit: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"withdrawal": self.withdrawal, "trade": self.trade, "redeposit": self.redeposit}
        return {k: v for k, v in data.items() if v is not None}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ProxyTxRefs":
        data = data or {}
        return cls(
            withdrawal=data.get("withdrawal"),
            trade=data.get("trade"),
            redeposit=data.get("redeposit"),
        )


@dataclass
class PendingSubmission:
    """A transaction sent by the custodial wallet whose receipt has not been seen yet."""

    phase: FlowPhase
    tx_ref: str
    # Pool secrets for a re-deposit are generated before submission
    privacy_data: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"phase": self.phase.value, "txRef": self.tx_ref, "privacyData": self.privacy_data}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PendingSubmission":
        return cls(
            phase=FlowPhase(data["phase"]),
            tx_ref=data["txRef"],
            privacy_data=data.get("privacyData"),
        )


@dataclass
class RecoveryRecord:
    """What fund recovery did for a failed request."""

    status: RecoveryStatus
    token_address: Optional[str] = None
    amount: Optional[str] = None
    tx_ref: Optional[str] = None
    privacy_data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "tokenAddress": self.token_address,
            "amount": self.amount,
            "txRef": self.tx_ref,
            "privacyData": self.privacy_data,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RecoveryRecord":
        return cls(
            status=RecoveryStatus(data["status"]),
            token_address=data.get("tokenAddress"),
            amount=data.get("amount"),
            tx_ref=data.get("txRef"),
            privacy_data=data.get("privacyData"),
            error=data.get("error"),
        )


@dataclass
class SwapRequest:
    """One user's in-flight privacy swap."""

    user_address: str
    from_token: str
    to_token: str
    amount: str
    slippage_bps: int
    deposit_reference: str

    id: str = field(default_factory=lambda: str(uuid4()))
    recipient_address: Optional[str] = None
    phase: FlowPhase = FlowPhase.PENDING

    retry_count: int = 0
    max_retries: int = 3

    proxy_tx_refs: ProxyTxRefs = field(default_factory=ProxyTxRefs)
    privacy_data: Optional[Dict[str, Any]] = None
    output_amount: Optional[str] = None
    pending_submission: Optional[PendingSubmission] = None

    error: Optional[str] = None
    failed_phase: Optional[FlowPhase] = None
    recovery: Optional[RecoveryRecord] = None

    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    # Monotonic time before which a pending retry must not run; never persisted
    next_attempt_at: Optional[float] = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.recipient_address:
            self.recipient_address = self.user_address

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES

    def touch(self) -> None:
        self.updated_at = _utcnow()

    def snapshot(self) -> "SwapRequest":
        """Independent copy handed to event subscribers."""
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userAddress": self.user_address,
            "recipientAddress": self.recipient_address,
            "fromToken": self.from_token,
            "toToken": self.to_token,
            "amount": self.amount,
            "slippageBps": self.slippage_bps,
            "depositReference": self.deposit_reference,
            "phase": self.phase.value,
            "retryCount": self.retry_count,
            "maxRetries": self.max_retries,
            "proxyTxRefs": self.proxy_tx_refs.to_dict(),
            "privacyData": self.privacy_data,
            "outputAmount": self.output_amount,
            "pendingSubmission": (
                self.pending_submission.to_dict() if self.pending_submission else None
            ),
            "error": self.error,
            "failedPhase": self.failed_phase.value if self.failed_phase else None,
            "recovery": self.recovery.to_dict() if self.recovery else None,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SwapRequest":
        return cls(
            id=data["id"],
            user_address=data["userAddress"],
            recipient_address=data.get("recipientAddress"),
            from_token=data["fromToken"],
            to_token=data["toToken"],
            amount=data["amount"],
            slippage_bps=int(data["slippageBps"]),
            deposit_reference=data["depositReference"],
            phase=FlowPhase(data.get("phase", FlowPhase.PENDING.value)),
            retry_count=int(data.get("retryCount", 0)),
            max_retries=int(data.get("maxRetries", 3)),
            proxy_tx_refs=ProxyTxRefs.from_dict(data.get("proxyTxRefs")),
            privacy_data=data.get("privacyData"),
            output_amount=data.get("outputAmount"),
            pending_submission=(
                PendingSubmission.from_dict(data["pendingSubmission"])
                if data.get("pendingSubmission")
                else None
            ),
            error=data.get("error"),
            failed_phase=FlowPhase(data["failedPhase"]) if data.get("failedPhase") else None,
            recovery=RecoveryRecord.from_dict(data["recovery"]) if data.get("recovery") else None,
            created_at=_parse_dt(data.get("createdAt")),
            updated_at=_parse_dt(data.get("updatedAt")),
        )


@dataclass
class Deposit:
    """A funded privacy-pool balance that can back trades."""

    tx_reference: str
    owner_address: str
    token_address: str
    amount: str

    deposit_id: str = field(default_factory=lambda: str(uuid4()))
    status: DepositStatus = DepositStatus.PENDING
    remaining_balance: Optional[str] = None
    privacy_data: Optional[Dict[str, Any]] = None

    # Set on custodial re-deposits: the end user the balance is held for
    beneficiary_address: Optional[str] = None
    is_proxy_deposit: bool = False

    created_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        total = parse_amount(self.amount)
        if self.remaining_balance is not None and parse_amount(self.remaining_balance) > total:
            raise ValueError(
                f"remaining balance {self.remaining_balance} exceeds deposit amount {self.amount}"
            )

    @property
    def balance(self) -> int:
        """Remaining balance, falling back to the original amount when unset."""
        if self.remaining_balance is not None:
            return parse_amount(self.remaining_balance)
        return parse_amount(self.amount)

    @property
    def is_selectable(self) -> bool:
        return self.status in SELECTABLE_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "depositId": self.deposit_id,
            "txReference": self.tx_reference,
            "ownerAddress": self.owner_address,
            "tokenAddress": self.token_address,
            "amount": self.amount,
            "remainingBalance": self.remaining_balance,
            "status": self.status.value,
            "privacyData": self.privacy_data,
            "beneficiaryAddress": self.beneficiary_address,
            "isProxyDeposit": self.is_proxy_deposit,
            "createdAt": _iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Deposit":
        return cls(
            deposit_id=data.get("depositId") or str(uuid4()),
            tx_reference=data["txReference"],
            owner_address=data["ownerAddress"],
            token_address=data["tokenAddress"],
            amount=str(data["amount"]),
            remaining_balance=(
                str(data["remainingBalance"]) if data.get("remainingBalance") is not None else None
            ),
            status=DepositStatus(data.get("status", DepositStatus.PENDING.value)),
            privacy_data=data.get("privacyData"),
            beneficiary_address=data.get("beneficiaryAddress"),
            is_proxy_deposit=bool(data.get("isProxyDeposit", False)),
            created_at=_parse_dt(data.get("createdAt")),
        )

