"""
Privacy Swap Module

Deposit ledger, phase executor, event bus and the phase queue that routes a
user's trade through the custodial wallet and the privacy pool.
"""

from .errors import (
    CompensationError,
    DepositNotFoundError,
    ErrorCategory,
    ErrorContext,
    InvalidSwapRequestError,
    MissingPrivacyDataError,
    NoRouteError,
    PhaseTimeoutError,
    PrivacySwapError,
    ProviderUnavailableError,
    RecoverableError,
    SubmissionUnconfirmedError,
    TradeOutputUnavailableError,
    TransactionDroppedError,
    TransactionRevertedError,
    UnknownOutcomeError,
    UnrecoverableError,
    classify_error,
)
from .events import EventBus, SwapEvent, SwapEventHandler, SwapEventType
from .executor import PhaseExecutor, RedepositResult, SubmittedCallback, TradeResult
from .intake import SwapIntake
from .ledger import DepositLedger
from .models import (
    Deposit,
    DepositStatus,
    FlowPhase,
    PendingSubmission,
    ProxyTxRefs,
    RecoveryRecord,
    RecoveryStatus,
    SwapRequest,
    parse_amount,
)
from .persistence import DepositStore, JsonFileDepositStore, JsonFileSwapStore, SwapStore
from .queue import EscalationCallback, PhaseQueue, QueueConfig, QueueStatus
from .status import ProgressReport, describe_progress

__all__ = [
    # Errors
    "PrivacySwapError",
    "InvalidSwapRequestError",
    "DepositNotFoundError",
    "RecoverableError",
    "UnrecoverableError",
    "ProviderUnavailableError",
    "PhaseTimeoutError",
    "NoRouteError",
    "TransactionRevertedError",
    "MissingPrivacyDataError",
    "TransactionDroppedError",
    "UnknownOutcomeError",
    "SubmissionUnconfirmedError",
    "TradeOutputUnavailableError",
    "CompensationError",
    "ErrorCategory",
    "ErrorContext",
    "classify_error",
    # Models
    "FlowPhase",
    "DepositStatus",
    "RecoveryStatus",
    "SwapRequest",
    "Deposit",
    "ProxyTxRefs",
    "PendingSubmission",
    "RecoveryRecord",
    "parse_amount",
    # Services
    "DepositLedger",
    "PhaseExecutor",
    "TradeResult",
    "RedepositResult",
    "SubmittedCallback",
    "EventBus",
    "SwapEvent",
    "SwapEventType",
    "SwapEventHandler",
    "PhaseQueue",
    "QueueConfig",
    "QueueStatus",
    "EscalationCallback",
    "SwapIntake",
    # Status
    "describe_progress",
    "ProgressReport",
    # Persistence
    "DepositStore",
    "SwapStore",
    "JsonFileDepositStore",
    "JsonFileSwapStore",
]
