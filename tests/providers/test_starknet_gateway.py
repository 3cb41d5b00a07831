"""
Tests for the custodial Starknet wallet gateway.
"""

import json

import httpx
import pytest

from privfi.core.privacy import (
    PhaseTimeoutError,
    ProviderUnavailableError,
    SubmissionUnconfirmedError,
    TransactionDroppedError,
)
from privfi.providers.base import Call
from privfi.providers.starknet import (
    TRANSFER_SELECTOR,
    TXN_HASH_NOT_FOUND,
    StarknetWalletGateway,
    decode_transfer,
)


WALLET = "0x0ABC"
TOKEN = "0x53c91253bc9682c04929ca02ed00b3e423f6710d2ee7e0d5ebb06f3ecf368a8"
SELECTOR = hex(TRANSFER_SELECTOR)


def make_gateway(handler, **kwargs) -> StarknetWalletGateway:
    params = dict(
        address=WALLET,
        signer_url="https://signer.test/",
        rpc_url="https://rpc.test",
        poll_interval_s=0.01,
        confirmation_timeout_s=5,
        transport=httpx.MockTransport(handler),
    )
    params.update(kwargs)
    return StarknetWalletGateway(**params)


class TestDecodeTransfer:
    def test_keyed_layout(self):
        transfer = decode_transfer(
            {
                "from_address": TOKEN,
                "keys": [SELECTOR, "0x0111", "0xabc"],
                "data": ["0x64", "0x0"],
            }
        )

        assert transfer.token_address == TOKEN
        assert transfer.from_address == "0x111"
        assert transfer.to_address == "0xabc"
        assert transfer.amount == 100

    def test_legacy_layout_with_high_word(self):
        transfer = decode_transfer(
            {
                "from_address": TOKEN,
                "keys": [SELECTOR],
                "data": ["0x111", "0xabc", "0x1", "0x1"],
            }
        )

        assert transfer.amount == 1 + (1 << 128)

    def test_other_events_ignored(self):
        assert decode_transfer({"from_address": TOKEN, "keys": ["0x1"], "data": []}) is None
        assert decode_transfer({"from_address": TOKEN, "keys": [SELECTOR], "data": ["0x1"]}) is None


@pytest.mark.asyncio
async def test_execute_posts_calls_to_signer():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"transactionHash": "0xtx"})

    gateway = make_gateway(handler)
    tx_ref = await gateway.execute([Call("0xpool", "deposit", ["0x1"])])

    assert tx_ref == "0xtx"
    assert seen["url"] == "https://signer.test/execute"
    assert seen["body"]["account"] == "0x0abc"
    assert seen["body"]["calls"][0]["entrypoint"] == "deposit"


@pytest.mark.asyncio
async def test_execute_without_signer_url():
    gateway = make_gateway(lambda request: httpx.Response(200), signer_url="")
    gateway.signer_url = ""

    with pytest.raises(ProviderUnavailableError):
        await gateway.execute([Call("0xpool", "deposit")])


@pytest.mark.asyncio
async def test_signer_timeout_is_unconfirmed_submission():
    """Once the calls may have reached the signer, a timeout is not retried blindly."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("no answer", request=request)

    with pytest.raises(SubmissionUnconfirmedError) as exc_info:
        await make_gateway(handler).execute([Call("0xrouter", "swap")])
    assert exc_info.value.context.recoverable is False


@pytest.mark.asyncio
async def test_signer_connect_failure_is_retryable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(ProviderUnavailableError):
        await make_gateway(handler).execute([Call("0xrouter", "swap")])


NOT_FOUND = {"jsonrpc": "2.0", "id": 1, "error": {"code": TXN_HASH_NOT_FOUND, "message": "not found"}}
RECEIVED = {"jsonrpc": "2.0", "id": 1, "result": {"finality_status": "RECEIVED"}}


def rpc_handler(receipts, status=NOT_FOUND):
    """Serve receipts in order, and a fixed transaction status."""

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if body["method"] == "starknet_getTransactionStatus":
            return httpx.Response(200, json=status)
        assert body["method"] == "starknet_getTransactionReceipt"
        return httpx.Response(200, json=receipts.pop(0) if len(receipts) > 1 else receipts[0])

    return handler


@pytest.mark.asyncio
async def test_wait_for_receipt_polls_until_executed():
    receipts = [
        NOT_FOUND,
        {
            "jsonrpc": "2.0",
            "id": 1,
            "result": {
                "execution_status": "SUCCEEDED",
                "events": [
                    {"from_address": TOKEN, "keys": [SELECTOR, "0x1", "0xabc"], "data": ["0x2a", "0x0"]},
                    {"from_address": TOKEN, "keys": ["0x5"], "data": []},
                ],
            },
        },
    ]

    receipt = await make_gateway(rpc_handler(receipts, status=RECEIVED)).wait_for_receipt("0xtx")

    assert not receipt.reverted
    assert len(receipt.transfers) == 1
    assert receipt.transfers[0].amount == 42
    assert receipt.transfers[0].to_address == "0xabc"


@pytest.mark.asyncio
async def test_reverted_receipt():
    reverted = {
        "jsonrpc": "2.0",
        "id": 1,
        "result": {"execution_status": "REVERTED", "revert_reason": "Insufficient balance", "events": []},
    }

    receipt = await make_gateway(rpc_handler([reverted])).wait_for_receipt("0xtx")

    assert receipt.reverted
    assert receipt.revert_reason == "Insufficient balance"


@pytest.mark.asyncio
async def test_known_but_unconfirmed_transaction_times_out():
    """The node has the transaction but it never executes before the deadline."""
    gateway = make_gateway(rpc_handler([NOT_FOUND], status=RECEIVED), confirmation_timeout_s=0.05)

    with pytest.raises(PhaseTimeoutError):
        await gateway.wait_for_receipt("0xtx")


@pytest.mark.asyncio
async def test_unknown_transaction_is_dropped():
    """A hash the node never saw can safely be submitted again."""
    gateway = make_gateway(rpc_handler([NOT_FOUND]), confirmation_timeout_s=0.05)

    with pytest.raises(TransactionDroppedError) as exc_info:
        await gateway.wait_for_receipt("0xtx")
    assert exc_info.value.context.recoverable is True
