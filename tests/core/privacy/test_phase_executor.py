"""
Tests for the Phase Executor

Provider orchestration for withdraw, trade and re-deposit, including how the
realized trade output is read from the receipt.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from privfi.core.privacy import (
    FlowPhase,
    MissingPrivacyDataError,
    NoRouteError,
    PendingSubmission,
    PhaseExecutor,
    PhaseTimeoutError,
    TradeOutputUnavailableError,
    TransactionDroppedError,
    TransactionRevertedError,
)
from privfi.providers.base import (
    Call,
    DepositCalls,
    PrivacyPoolProvider,
    Route,
    TokenTransfer,
    TradeRouter,
    TxReceipt,
    WalletGateway,
)


PROXY = "0x0123"
ETH = "0x049d36570d4e46f48e99674bd3fcc84644ddd6b96f7c741b1562b82f9e004dc7"
USDC = "0x053c91253bc9682c04929ca02ed00b3e423f6710d2ee7e0d5ebb06f3ecf368a8"
CALL = Call(contract_address="0x1", entrypoint="noop")


def receipt(tx_ref, transfers=None, status="succeeded", reason=None):
    return TxReceipt(tx_ref=tx_ref, status=status, transfers=transfers or [], revert_reason=reason)


@pytest.fixture
def pool():
    pool = MagicMock(spec=PrivacyPoolProvider)
    pool.build_withdrawal = AsyncMock(return_value=[CALL])
    pool.build_deposit = AsyncMock(return_value=DepositCalls(calls=[CALL], privacy_data={"note": "n"}))
    return pool


@pytest.fixture
def router():
    router = MagicMock(spec=TradeRouter)
    router.best_route = AsyncMock(
        return_value=Route(quote_id="q1", sell_token=ETH, buy_token=USDC, sell_amount=600, buy_amount=900)
    )
    router.build_calls = AsyncMock(return_value=[CALL])
    return router


@pytest.fixture
def wallet():
    wallet = MagicMock(spec=WalletGateway)
    wallet.address = PROXY
    wallet.execute = AsyncMock(return_value="0xtx")
    wallet.wait_for_receipt = AsyncMock(return_value=receipt("0xtx"))
    return wallet


@pytest.fixture
def executor(pool, router, wallet):
    return PhaseExecutor(pool, router, wallet)


# =============================================================================
# Withdraw
# =============================================================================

class TestWithdraw:
    """Tests for releasing a user's deposit to the custodial wallet."""

    @pytest.mark.asyncio
    async def test_withdraw_to_custodial_wallet(self, executor, pool, wallet):
        """Withdrawal calls target the proxy wallet and wait for the receipt."""
        tx_ref = await executor.withdraw("0xdep", "600", {"secrets": ["s"]})

        assert tx_ref == "0xtx"
        pool.build_withdrawal.assert_awaited_once_with("0xdep", {"secrets": ["s"]}, recipient=PROXY)
        wallet.execute.assert_awaited_once_with([CALL])
        wallet.wait_for_receipt.assert_awaited_once_with("0xtx")

    @pytest.mark.asyncio
    async def test_missing_privacy_data(self, executor, wallet):
        """Without privacy data nothing is submitted."""
        with pytest.raises(MissingPrivacyDataError):
            await executor.withdraw("0xdep", "600", None)
        wallet.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reverted_withdrawal(self, executor, wallet):
        """A reverted receipt is an unrecoverable error."""
        wallet.wait_for_receipt.return_value = receipt("0xtx", status="reverted", reason="nullifier used")

        with pytest.raises(TransactionRevertedError) as exc_info:
            await executor.withdraw("0xdep", "600", {"secrets": ["s"]})
        assert exc_info.value.context.recoverable is False
        assert exc_info.value.context.details["revert_reason"] == "nullifier used"


# =============================================================================
# Trade
# =============================================================================

class TestTrade:
    """Tests for the aggregator trade and realized output."""

    @pytest.mark.asyncio
    async def test_output_read_from_receipt(self, executor, router, wallet):
        """The realized output comes from transfers, not the quote estimate."""
        wallet.wait_for_receipt.return_value = receipt(
            "0xtx",
            transfers=[
                TokenTransfer(token_address=ETH, from_address=PROXY, to_address="0xamm", amount=600),
                TokenTransfer(token_address=USDC, from_address="0xamm", to_address=PROXY, amount=880),
                TokenTransfer(token_address=USDC, from_address="0xamm", to_address="0xfees", amount=5),
            ],
        )

        result = await executor.trade(ETH, USDC, "600", 50)

        assert result.tx_ref == "0xtx"
        assert result.output_amount == "880"
        router.best_route.assert_awaited_once_with(ETH, USDC, 600, PROXY)
        router.build_calls.assert_awaited_once()
        assert router.build_calls.await_args.args[1] == 50

    @pytest.mark.asyncio
    async def test_address_padding_is_ignored(self, executor, wallet):
        """Zero-padded and unpadded addresses compare equal."""
        wallet.wait_for_receipt.return_value = receipt(
            "0xtx",
            transfers=[
                TokenTransfer(
                    token_address="0x53c91253bc9682c04929ca02ed00b3e423f6710d2ee7e0d5ebb06f3ecf368a8",
                    from_address="0xamm",
                    to_address="0x000123",
                    amount=42,
                )
            ],
        )

        result = await executor.trade(ETH, USDC, "600", 50)
        assert result.output_amount == "42"

    @pytest.mark.asyncio
    async def test_no_route(self, executor, router, wallet):
        """No route is a recoverable failure and nothing is submitted."""
        router.best_route.return_value = None

        with pytest.raises(NoRouteError) as exc_info:
            await executor.trade(ETH, USDC, "600", 50)
        assert exc_info.value.context.recoverable is True
        wallet.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_output_is_unrecoverable(self, executor, wallet):
        """A trade whose output cannot be found never falls back to the estimate."""
        wallet.wait_for_receipt.return_value = receipt("0xtx", transfers=[])

        with pytest.raises(TradeOutputUnavailableError):
            await executor.trade(ETH, USDC, "600", 50)


# =============================================================================
# Re-deposit
# =============================================================================

class TestRedeposit:
    """Tests for depositing custodial funds back into the pool."""

    @pytest.mark.asyncio
    async def test_redeposit_returns_privacy_data(self, executor, pool):
        """The new privacy material is handed back with the tx reference."""
        result = await executor.redeposit(USDC, "880", "0xuser")

        assert result.tx_ref == "0xtx"
        assert result.privacy_data == {"note": "n"}
        pool.build_deposit.assert_awaited_once_with(USDC, 880, depositor=PROXY)


# =============================================================================
# Pending Submissions
# =============================================================================

class TestPendingSubmissions:
    """Tests for picking up a transaction sent on an earlier attempt."""

    @pytest.mark.asyncio
    async def test_submission_is_reported_before_the_receipt(self, executor, wallet):
        """The tx ref is handed out even when the receipt wait times out."""
        submitted = MagicMock()
        wallet.wait_for_receipt.side_effect = PhaseTimeoutError("receipt not seen yet")

        with pytest.raises(PhaseTimeoutError):
            await executor.withdraw("0xdep", "600", {"secrets": ["s"]}, on_submitted=submitted)

        submitted.assert_called_once_with("0xtx", None)

    @pytest.mark.asyncio
    async def test_trade_resumes_without_routing(self, executor, router, wallet):
        wallet.wait_for_receipt.return_value = receipt(
            "0xearlier", [TokenTransfer(USDC, "0xamm", PROXY, 880)]
        )
        pending = PendingSubmission(phase=FlowPhase.SWAPPING, tx_ref="0xearlier")

        result = await executor.trade(ETH, USDC, "600", 50, pending=pending)

        assert result.tx_ref == "0xearlier"
        assert result.output_amount == "880"
        wallet.execute.assert_not_awaited()
        router.best_route.assert_not_awaited()
        wallet.wait_for_receipt.assert_awaited_once_with("0xearlier")

    @pytest.mark.asyncio
    async def test_dropped_submission_is_sent_again(self, executor, pool, wallet):
        wallet.wait_for_receipt.side_effect = [TransactionDroppedError("0xlost"), receipt("0xtx")]
        pending = PendingSubmission(phase=FlowPhase.WITHDRAWING, tx_ref="0xlost")

        tx_ref = await executor.withdraw("0xdep", "600", {"secrets": ["s"]}, pending=pending)

        assert tx_ref == "0xtx"
        pool.build_withdrawal.assert_awaited_once()
        wallet.execute.assert_awaited_once_with([CALL])

    @pytest.mark.asyncio
    async def test_reverted_earlier_submission(self, executor, wallet):
        wallet.wait_for_receipt.return_value = receipt("0xearlier", status="reverted", reason="nonce")
        pending = PendingSubmission(phase=FlowPhase.WITHDRAWING, tx_ref="0xearlier")

        with pytest.raises(TransactionRevertedError):
            await executor.withdraw("0xdep", "600", {"secrets": ["s"]}, pending=pending)

        wallet.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_redeposit_resume_keeps_generated_secrets(self, executor, pool, wallet):
        """Pool secrets travel with the pending submission so a resumed deposit stays spendable."""
        submitted = MagicMock()
        wallet.wait_for_receipt.side_effect = PhaseTimeoutError("receipt not seen yet")

        with pytest.raises(PhaseTimeoutError):
            await executor.redeposit(USDC, "880", "0xabc", on_submitted=submitted)

        submitted.assert_called_once_with("0xtx", {"note": "n"})

        wallet.wait_for_receipt.side_effect = None
        wallet.wait_for_receipt.return_value = receipt("0xtx")
        pending = PendingSubmission(phase=FlowPhase.REDEPOSITING, tx_ref="0xtx", privacy_data={"note": "n"})

        result = await executor.redeposit(USDC, "880", "0xabc", pending=pending)

        assert result.tx_ref == "0xtx"
        assert result.privacy_data == {"note": "n"}
        assert pool.build_deposit.await_count == 1
        assert wallet.execute.await_count == 1
