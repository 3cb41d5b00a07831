"""
Phase Executor

Performs the external side effect of one custodial phase: withdraw from the
privacy pool, trade through the aggregator, re-deposit into the pool. Every
submission waits for its receipt before returning so the custodial signer's
nonce order is never raced. No retries happen here.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from ...providers.base import (
    Call,
    PrivacyPoolProvider,
    TradeRouter,
    TxReceipt,
    WalletGateway,
)
from ..constants import normalize_address
from .errors import (
    MissingPrivacyDataError,
    NoRouteError,
    TradeOutputUnavailableError,
    TransactionDroppedError,
    TransactionRevertedError,
)
from .models import PendingSubmission, parse_amount


@dataclass
class TradeResult:
    tx_ref: str
    output_amount: str  # realized, read from the receipt


@dataclass
class RedepositResult:
    tx_ref: str
    privacy_data: Dict[str, Any]


# Called with the tx reference (and any pool secrets) as soon as the wallet submits
SubmittedCallback = Callable[[str, Optional[Dict[str, Any]]], None]


class PhaseExecutor:
    """
    Stateless adapter from phases to capability providers.

    Each phase call accepts the PendingSubmission left by an earlier attempt.
    When one is given the executor waits on that transaction instead of
    sending a new one, and only submits again if the node never saw it.
    """

    def __init__(
        self,
        privacy_pool: PrivacyPoolProvider,
        router: TradeRouter,
        wallet: WalletGateway,
        logger: Optional[logging.Logger] = None,
    ):
        self.privacy_pool = privacy_pool
        self.router = router
        self.wallet = wallet
        self.logger = logger or logging.getLogger(__name__)

    @property
    def wallet_address(self) -> str:
        return self.wallet.address

    @staticmethod
    def _checked(receipt: TxReceipt) -> TxReceipt:
        if receipt.reverted:
            raise TransactionRevertedError(
                f"Transaction {receipt.tx_ref} reverted",
                tx_ref=receipt.tx_ref,
                reason=receipt.revert_reason,
            )
        return receipt

    async def _resume(self, pending: Optional[PendingSubmission]) -> Optional[TxReceipt]:
        """Receipt of an earlier submission, or None if it has to be sent again."""
        if pending is None:
            return None
        try:
            receipt = await self.wallet.wait_for_receipt(pending.tx_ref)
        except TransactionDroppedError:
            self.logger.warning("Earlier submission %s was dropped; submitting again", pending.tx_ref)
            return None
        self.logger.info("Picked up earlier submission %s", pending.tx_ref)
        return self._checked(receipt)

    async def _submit(
        self,
        calls: List[Call],
        on_submitted: Optional[SubmittedCallback] = None,
        privacy_data: Optional[Dict[str, Any]] = None,
    ) -> TxReceipt:
        tx_ref = await self.wallet.execute(calls)
        if on_submitted is not None:
            on_submitted(tx_ref, privacy_data)
        return self._checked(await self.wallet.wait_for_receipt(tx_ref))

    async def withdraw(
        self,
        deposit_reference: str,
        amount: str,
        privacy_data: Optional[Dict[str, Any]],
        *,
        pending: Optional[PendingSubmission] = None,
        on_submitted: Optional[SubmittedCallback] = None,
    ) -> str:
        """Release the user's deposit to the custodial wallet."""
        if not privacy_data:
            raise MissingPrivacyDataError(deposit_reference)

        receipt = await self._resume(pending)
        if receipt is None:
            self.logger.info("Withdrawing deposit %s (%s) to custodial wallet", deposit_reference, amount)
            calls = await self.privacy_pool.build_withdrawal(
                deposit_reference, privacy_data, recipient=self.wallet.address
            )
            receipt = await self._submit(calls, on_submitted)
        self.logger.info("Withdrawal of %s confirmed in %s", deposit_reference, receipt.tx_ref)
        return receipt.tx_ref

    async def trade(
        self,
        from_token: str,
        to_token: str,
        amount: str,
        slippage_bps: int,
        *,
        pending: Optional[PendingSubmission] = None,
        on_submitted: Optional[SubmittedCallback] = None,
    ) -> TradeResult:
        """Trade through the aggregator and report the realized output."""
        sell_amount = parse_amount(amount)
        taker = self.wallet.address

        receipt = await self._resume(pending)
        if receipt is None:
            route = await self.router.best_route(from_token, to_token, sell_amount, taker)
            if route is None:
                raise NoRouteError(token_in=from_token, token_out=to_token)

            self.logger.info(
                "Trading %s %s -> %s via quote %s (estimated %d)",
                amount,
                from_token,
                to_token,
                route.quote_id,
                route.buy_amount,
            )
            calls = await self.router.build_calls(route, slippage_bps, taker)
            receipt = await self._submit(calls, on_submitted)

        token_out = normalize_address(to_token)
        recipient = normalize_address(taker)
        received = sum(
            t.amount
            for t in receipt.transfers
            if normalize_address(t.token_address) == token_out
            and normalize_address(t.to_address) == recipient
        )
        if received <= 0:
            raise TradeOutputUnavailableError(receipt.tx_ref, to_token)

        self.logger.info("Trade %s realized %d of %s", receipt.tx_ref, received, to_token)
        return TradeResult(tx_ref=receipt.tx_ref, output_amount=str(received))

    async def redeposit(
        self,
        token_address: str,
        amount: str,
        owner_address: str,
        *,
        pending: Optional[PendingSubmission] = None,
        on_submitted: Optional[SubmittedCallback] = None,
    ) -> RedepositResult:
        """Deposit custodial funds back into the pool on behalf of `owner_address`."""
        receipt = await self._resume(pending)
        if receipt is not None:
            privacy_data = pending.privacy_data or {}
        else:
            deposit = await self.privacy_pool.build_deposit(
                token_address, parse_amount(amount), depositor=self.wallet.address
            )
            privacy_data = deposit.privacy_data
            receipt = await self._submit(deposit.calls, on_submitted, privacy_data)

        self.logger.info(
            "Re-deposited %s of %s for %s in %s",
            amount,
            token_address,
            owner_address,
            receipt.tx_ref,
        )
        return RedepositResult(tx_ref=receipt.tx_ref, privacy_data=privacy_data)
