"""
Error Classification

Defines error types for the privacy swap flow.
Errors are classified as recoverable (the phase queue may retry) or
unrecoverable (the request fails without further attempts).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import httpx


class ErrorCategory(str, Enum):
    """Categories of errors for retry decisions."""

    NETWORK = "network"           # Network/connectivity issues
    RATE_LIMIT = "rate_limit"     # API rate limits
    TIMEOUT = "timeout"           # Operation timed out
    NO_ROUTE = "no_route"         # Aggregator has no route / liquidity right now
    INSUFFICIENT_FUNDS = "insufficient_funds"
    TRANSACTION_REVERTED = "transaction_reverted"
    PRIVACY_DATA = "privacy_data"  # Missing or malformed privacy-pool material
    OUTPUT_UNAVAILABLE = "output_unavailable"  # Realized trade output not observable
    UNCONFIRMED = "unconfirmed"   # Submission may have reached the chain, outcome unknown
    DROPPED = "dropped"           # Submitted transaction is unknown to the node
    PROVIDER = "provider"         # External provider error
    VALIDATION = "validation"     # Input validation error
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """Additional context about an error."""

    category: ErrorCategory = ErrorCategory.UNKNOWN
    recoverable: bool = True
    provider: Optional[str] = None
    tx_ref: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


class PrivacySwapError(Exception):
    """Base class for all privacy swap errors."""

    def __init__(self, message: str, category: ErrorCategory = ErrorCategory.UNKNOWN):
        super().__init__(message)
        self.message = message
        self.category = category


class InvalidSwapRequestError(PrivacySwapError):
    """Submission rejected before it reaches the queue. Never retried."""

    def __init__(self, message: str, field_name: Optional[str] = None):
        super().__init__(message, category=ErrorCategory.VALIDATION)
        self.field_name = field_name


class DepositNotFoundError(PrivacySwapError):
    """No funded deposit can back the requested trade."""

    def __init__(
        self,
        message: str = "No suitable deposit found for swap",
        owner_address: Optional[str] = None,
        token_address: Optional[str] = None,
        required_amount: Optional[str] = None,
    ):
        super().__init__(message, category=ErrorCategory.INSUFFICIENT_FUNDS)
        self.owner_address = owner_address
        self.token_address = token_address
        self.required_amount = required_amount


class RecoverableError(PrivacySwapError):
    """
    Base class for errors that can be retried.

    These errors are typically transient:
    - Network issues and RPC hiccups
    - Rate limits
    - Timeouts
    - Temporary route/liquidity unavailability
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(message, category=category)
        self.context = context or ErrorContext(category=category, recoverable=True)


class UnrecoverableError(PrivacySwapError):
    """
    Base class for errors that will not succeed on retry.

    - Transaction reverted on-chain
    - Insufficient funds in the custodial wallet
    - Privacy data missing for a withdrawal
    - Realized trade output cannot be determined
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(message, category=category)
        self.context = context or ErrorContext(category=category, recoverable=False)


class ProviderUnavailableError(RecoverableError):
    """An external capability provider could not be reached."""

    def __init__(self, message: str = "Provider unavailable", provider: Optional[str] = None):
        super().__init__(
            message,
            category=ErrorCategory.NETWORK,
            context=ErrorContext(category=ErrorCategory.NETWORK, recoverable=True, provider=provider),
        )


class PhaseTimeoutError(RecoverableError):
    """A phase call exceeded the supervisory timeout."""

    def __init__(self, message: str = "Phase call timed out", phase: Optional[str] = None):
        super().__init__(
            message,
            category=ErrorCategory.TIMEOUT,
            context=ErrorContext(
                category=ErrorCategory.TIMEOUT,
                recoverable=True,
                details={"phase": phase} if phase else {},
            ),
        )


class NoRouteError(RecoverableError):
    """The aggregator returned no usable route for the pair."""

    def __init__(
        self,
        message: str = "No quotes available for this token pair",
        token_in: Optional[str] = None,
        token_out: Optional[str] = None,
    ):
        super().__init__(
            message,
            category=ErrorCategory.NO_ROUTE,
            context=ErrorContext(
                category=ErrorCategory.NO_ROUTE,
                recoverable=True,
                provider="avnu",
                details={"token_in": token_in, "token_out": token_out},
            ),
        )


class TransactionRevertedError(UnrecoverableError):
    """Transaction reverted on-chain."""

    def __init__(
        self,
        message: str = "Transaction reverted",
        tx_ref: Optional[str] = None,
        reason: Optional[str] = None,
    ):
        super().__init__(
            message,
            category=ErrorCategory.TRANSACTION_REVERTED,
            context=ErrorContext(
                category=ErrorCategory.TRANSACTION_REVERTED,
                recoverable=False,
                tx_ref=tx_ref,
                details={"revert_reason": reason} if reason else {},
            ),
        )


class MissingPrivacyDataError(UnrecoverableError):
    """The deposit has no privacy-pool material to withdraw with."""

    def __init__(self, deposit_reference: str):
        super().__init__(
            f"No privacy data found for deposit {deposit_reference}",
            category=ErrorCategory.PRIVACY_DATA,
            context=ErrorContext(
                category=ErrorCategory.PRIVACY_DATA,
                recoverable=False,
                tx_ref=deposit_reference,
            ),
        )


class TransactionDroppedError(RecoverableError):
    """A submitted transaction never became known to the node. Safe to submit again."""

    def __init__(self, tx_ref: str):
        super().__init__(
            f"Transaction {tx_ref} is unknown to the node",
            category=ErrorCategory.DROPPED,
            context=ErrorContext(category=ErrorCategory.DROPPED, recoverable=True, tx_ref=tx_ref),
        )
        self.tx_ref = tx_ref


class UnknownOutcomeError(UnrecoverableError):
    """
    Funds may have moved on-chain but the result cannot be confirmed.

    Neither retried nor compensated: the request is escalated to an operator.
    """

    def __init__(
        self,
        message: str,
        tx_ref: Optional[str] = None,
        category: ErrorCategory = ErrorCategory.UNCONFIRMED,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message,
            category=category,
            context=ErrorContext(
                category=category,
                recoverable=False,
                tx_ref=tx_ref,
                details=details or {},
            ),
        )
        self.tx_ref = tx_ref


class SubmissionUnconfirmedError(UnknownOutcomeError):
    """The signer may have submitted the calls but no transaction hash came back."""

    def __init__(self, message: str = "Signer did not confirm submission"):
        super().__init__(message)


class TradeOutputUnavailableError(UnknownOutcomeError):
    """The trade landed but its receipt does not show the output reaching the custodial wallet."""

    def __init__(self, tx_ref: str, token_out: str):
        super().__init__(
            f"Could not determine realized output of {token_out} for trade {tx_ref}",
            tx_ref=tx_ref or None,
            category=ErrorCategory.OUTPUT_UNAVAILABLE,
            details={"token_out": token_out},
        )


class CompensationError(PrivacySwapError):
    """Fund recovery for a failed request did not succeed. Needs an operator."""

    def __init__(self, message: str, request_id: Optional[str] = None):
        super().__init__(message, category=ErrorCategory.PROVIDER)
        self.request_id = request_id


def classify_error(error: BaseException) -> ErrorContext:
    """
    Classify an exception and return its error context.

    Already-classified errors return their own context; httpx errors and
    everything else are classified from type and message.
    """
    if isinstance(error, (RecoverableError, UnrecoverableError)):
        return error.context

    if isinstance(error, InvalidSwapRequestError):
        return ErrorContext(category=ErrorCategory.VALIDATION, recoverable=False)

    if isinstance(error, httpx.TimeoutException):
        return ErrorContext(category=ErrorCategory.TIMEOUT, recoverable=True)

    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        if status == 429:
            return ErrorContext(category=ErrorCategory.RATE_LIMIT, recoverable=True)
        if status >= 500:
            return ErrorContext(category=ErrorCategory.PROVIDER, recoverable=True)
        return ErrorContext(
            category=ErrorCategory.PROVIDER,
            recoverable=False,
            details={"status_code": status},
        )

    if isinstance(error, httpx.RequestError):
        return ErrorContext(category=ErrorCategory.NETWORK, recoverable=True)

    message = str(error).lower()

    rate_limit_patterns = ["rate limit", "too many requests", "429", "throttl"]
    if any(p in message for p in rate_limit_patterns):
        return ErrorContext(category=ErrorCategory.RATE_LIMIT, recoverable=True)

    network_patterns = ["connection", "network", "unreachable", "refused", "dns", "socket"]
    if any(p in message for p in network_patterns):
        return ErrorContext(category=ErrorCategory.NETWORK, recoverable=True)

    timeout_patterns = ["timeout", "timed out", "deadline"]
    if any(p in message for p in timeout_patterns):
        return ErrorContext(category=ErrorCategory.TIMEOUT, recoverable=True)

    if "no quotes" in message or "no route" in message or "liquidity" in message:
        return ErrorContext(category=ErrorCategory.NO_ROUTE, recoverable=True)

    funds_patterns = ["insufficient", "not enough", "exceeds balance"]
    if any(p in message for p in funds_patterns):
        return ErrorContext(category=ErrorCategory.INSUFFICIENT_FUNDS, recoverable=False)

    revert_patterns = ["revert", "execution reverted", "out of gas"]
    if any(p in message for p in revert_patterns):
        return ErrorContext(category=ErrorCategory.TRANSACTION_REVERTED, recoverable=False)

    # Default to unknown but recoverable (safer to retry)
    return ErrorContext(category=ErrorCategory.UNKNOWN, recoverable=True)
