"""
Swap Intake

Validates a swap submission, resolves which funded deposit pays for it and
hands the resulting request to the phase queue. Everything rejected here is
rejected synchronously and never retried.
"""

import copy
import logging
import re
from datetime import timedelta
from typing import Optional, Union

from ..constants import get_token, normalize_address
from .errors import DepositNotFoundError, InvalidSwapRequestError
from .ledger import DepositLedger
from .models import Deposit, DepositStatus, FlowPhase, SwapRequest, parse_amount
from .queue import PhaseQueue

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{1,64}$")

MAX_SLIPPAGE_BPS = 10_000


def _require_address(value: Optional[str], field_name: str) -> str:
    if not value or not _ADDRESS_RE.match(value.strip()):
        raise InvalidSwapRequestError(f"{field_name} must be a 0x-prefixed hex address", field_name)
    return value.strip()


class SwapIntake:
    """Entry point that turns a user submission into a queued SwapRequest."""

    def __init__(
        self,
        ledger: DepositLedger,
        queue: PhaseQueue,
        pending_match_window: timedelta = timedelta(minutes=5),
        logger: Optional[logging.Logger] = None,
    ):
        self.ledger = ledger
        self.queue = queue
        self.pending_match_window = pending_match_window
        self.logger = logger or logging.getLogger(__name__)

    def submit(
        self,
        user_address: str,
        from_token: str,
        to_token: str,
        amount: Union[str, int],
        slippage_bps: int,
        deposit_reference: Optional[str] = None,
        recipient_address: Optional[str] = None,
    ) -> SwapRequest:
        """
        Validate, resolve the funding deposit and enqueue.

        Raises:
            InvalidSwapRequestError: malformed input
            DepositNotFoundError: nothing funded can back the trade
        """
        user_address = _require_address(user_address, "userAddress")
        from_token = _require_address(from_token, "fromToken")
        to_token = _require_address(to_token, "toToken")
        if recipient_address:
            recipient_address = _require_address(recipient_address, "recipientAddress")

        if normalize_address(from_token) == normalize_address(to_token):
            raise InvalidSwapRequestError("fromToken and toToken must differ", "toToken")

        try:
            required = parse_amount(amount)
        except ValueError as exc:
            raise InvalidSwapRequestError(str(exc), "amount") from exc
        if required == 0:
            raise InvalidSwapRequestError("amount must be greater than zero", "amount")

        if isinstance(slippage_bps, bool) or not isinstance(slippage_bps, int):
            raise InvalidSwapRequestError("slippageBps must be an integer", "slippageBps")
        if not 0 <= slippage_bps <= MAX_SLIPPAGE_BPS:
            raise InvalidSwapRequestError(
                f"slippageBps must be between 0 and {MAX_SLIPPAGE_BPS}", "slippageBps"
            )

        token = get_token(from_token)
        if token is not None and required < token.min_deposit_base_units:
            raise InvalidSwapRequestError(
                f"amount is below the privacy pool minimum of {token.min_deposit} {token.symbol}",
                "amount",
            )

        deposit = self._resolve_deposit(user_address, from_token, required, deposit_reference)

        request = SwapRequest(
            user_address=user_address,
            recipient_address=recipient_address,
            from_token=from_token,
            to_token=to_token,
            amount=str(required),
            slippage_bps=slippage_bps,
            deposit_reference=deposit.tx_reference,
            phase=FlowPhase.WITHDRAWING,
            max_retries=self.queue.config.max_retries,
            privacy_data=copy.deepcopy(deposit.privacy_data),
        )
        queued = self.queue.enqueue(request)

        self.logger.info(
            "Privacy swap %s submitted by %s: %s %s -> %s funded by %s",
            queued.id,
            user_address,
            queued.amount,
            from_token,
            to_token,
            deposit.tx_reference,
        )
        return queued

    def _resolve_deposit(
        self,
        user_address: str,
        from_token: str,
        required: int,
        deposit_reference: Optional[str],
    ) -> Deposit:
        if not deposit_reference:
            return self._select(user_address, from_token, required)

        deposit = self.ledger.by_tx_reference(user_address, deposit_reference)
        if deposit is not None:
            if normalize_address(deposit.token_address) != normalize_address(from_token):
                raise DepositNotFoundError(
                    f"Deposit {deposit_reference} holds a different token",
                    owner_address=user_address,
                    token_address=from_token,
                    required_amount=str(required),
                )
            if deposit.status == DepositStatus.EXHAUSTED or deposit.balance < required:
                raise DepositNotFoundError(
                    f"Deposit {deposit_reference} cannot cover {required}",
                    owner_address=user_address,
                    token_address=from_token,
                    required_amount=str(required),
                )
            return deposit

        # Unknown reference: the deposit may still be tracked under a placeholder
        deposit = self.ledger.select_optimal(user_address, from_token, required)
        if deposit is not None:
            return deposit

        pending = self.ledger.recent_pending(user_address, from_token, self.pending_match_window)
        if pending is not None:
            if pending.balance < required:
                raise DepositNotFoundError(
                    f"Pending deposit {pending.tx_reference} cannot cover {required}",
                    owner_address=user_address,
                    token_address=from_token,
                    required_amount=str(required),
                )
            if pending.balance > required:
                self.logger.warning(
                    "Pending deposit %s holds %d, more than the %d requested",
                    pending.tx_reference,
                    pending.balance,
                    required,
                )
            reconciled = self.ledger.reconcile(user_address, pending.tx_reference, deposit_reference)
            if reconciled is not None:
                return reconciled

        raise DepositNotFoundError(
            owner_address=user_address,
            token_address=from_token,
            required_amount=str(required),
        )

    def _select(self, user_address: str, from_token: str, required: int) -> Deposit:
        deposit = self.ledger.select_optimal(user_address, from_token, required)
        if deposit is None:
            raise DepositNotFoundError(
                owner_address=user_address,
                token_address=from_token,
                required_amount=str(required),
            )
        return deposit
