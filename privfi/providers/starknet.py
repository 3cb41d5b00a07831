"""
Custodial Starknet wallet.

Calls are signed and submitted by the custodial signing service; receipts
are read straight from Starknet JSON-RPC and ERC-20 Transfer events are
decoded so callers can see what actually moved.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Tuple

import httpx

from ..config import settings
from ..core.privacy.errors import (
    PhaseTimeoutError,
    ProviderUnavailableError,
    SubmissionUnconfirmedError,
    TransactionDroppedError,
)
from .base import Call, TokenTransfer, TxReceipt, WalletGateway

# starknet_keccak("Transfer")
TRANSFER_SELECTOR = 0x99CD8BDE557814842A3121E8DDFD433A539B8C9F14BF31EBF108D12E6196E9

# JSON-RPC error code for an unknown transaction hash
TXN_HASH_NOT_FOUND = 29


def _felt(value: Any) -> int:
    return int(str(value), 16)


def decode_transfer(event: Dict[str, Any]) -> Optional[TokenTransfer]:
    """Decode an ERC-20 Transfer event in either the keyed or the legacy layout."""
    keys = event.get("keys") or []
    data = event.get("data") or []
    if not keys or _felt(keys[0]) != TRANSFER_SELECTOR:
        return None

    if len(keys) >= 3 and len(data) >= 2:
        # Cairo 1: from/to are indexed keys, data is the u256 amount
        sender, recipient = keys[1], keys[2]
        low, high = data[0], data[1]
    elif len(data) >= 4:
        sender, recipient, low, high = data[0], data[1], data[2], data[3]
    else:
        return None

    return TokenTransfer(
        token_address=hex(_felt(event["from_address"])),
        from_address=hex(_felt(sender)),
        to_address=hex(_felt(recipient)),
        amount=_felt(low) + (_felt(high) << 128),
    )


class StarknetWalletGateway(WalletGateway):
    """The proxy wallet: one signer, strictly ordered submissions."""

    def __init__(
        self,
        *,
        address: Optional[str] = None,
        signer_url: Optional[str] = None,
        rpc_url: Optional[str] = None,
        poll_interval_s: Optional[float] = None,
        confirmation_timeout_s: Optional[float] = None,
        timeout_s: int = 30,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._address = (address or settings.proxy_wallet_address).lower()
        self.signer_url = (signer_url or settings.signer_url).rstrip("/")
        self.rpc_url = rpc_url or settings.starknet_rpc_url
        self.poll_interval_s = poll_interval_s or settings.tx_poll_interval_seconds
        self.confirmation_timeout_s = confirmation_timeout_s or settings.tx_confirmation_timeout_seconds
        self.timeout_s = timeout_s
        self._transport = transport
        self.logger = logger or logging.getLogger(__name__)

    @property
    def address(self) -> str:
        return self._address

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport)

    async def execute(self, calls: List[Call]) -> str:
        if not self.signer_url:
            raise ProviderUnavailableError("Signer service URL is not configured", provider="signer")

        payload = {"account": self._address, "calls": [c.to_dict() for c in calls]}
        try:
            async with self._client() as client:
                response = await client.post(f"{self.signer_url}/execute", json=payload)
                response.raise_for_status()
                data = response.json()
        except (httpx.ConnectError, httpx.ConnectTimeout) as exc:
            # Nothing reached the signer
            raise ProviderUnavailableError(f"Signer unreachable: {exc}", provider="signer") from exc
        except httpx.RequestError as exc:
            raise SubmissionUnconfirmedError(
                f"Signer did not answer after the calls were sent: {exc!r}"
            ) from exc

        tx_ref = data.get("transactionHash") or data.get("transaction_hash")
        if not tx_ref:
            raise SubmissionUnconfirmedError("Signer response did not include a transaction hash")

        self.logger.info("Submitted %d calls from %s as %s", len(calls), self._address, tx_ref)
        return tx_ref

    async def _rpc(self, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        payload = {"jsonrpc": "2.0", "method": method, "params": params, "id": 1}
        async with self._client() as client:
            response = await client.post(self.rpc_url, json=payload)
            response.raise_for_status()
            return response.json()

    async def _is_known(self, tx_ref: str) -> bool:
        """Whether the node has accepted the transaction at all."""
        result = await self._rpc("starknet_getTransactionStatus", {"transaction_hash": tx_ref})
        if "error" in result:
            if result["error"].get("code") == TXN_HASH_NOT_FOUND:
                return False
            raise RuntimeError(f"RPC error: {result['error']}")
        return result["result"].get("finality_status") != "REJECTED"

    async def _poll(self, tx_ref: str) -> Tuple[bool, Optional[TxReceipt]]:
        """(known to the node, receipt once executed)"""
        result = await self._rpc("starknet_getTransactionReceipt", {"transaction_hash": tx_ref})

        if "error" in result:
            if result["error"].get("code") == TXN_HASH_NOT_FOUND:
                return await self._is_known(tx_ref), None
            raise RuntimeError(f"RPC error: {result['error']}")

        receipt = result["result"]
        execution_status = receipt.get("execution_status")
        if execution_status is None:
            return True, None

        transfers = [t for t in (decode_transfer(e) for e in receipt.get("events", [])) if t]
        return True, TxReceipt(
            tx_ref=tx_ref,
            status="reverted" if execution_status == "REVERTED" else "succeeded",
            transfers=transfers,
            revert_reason=receipt.get("revert_reason"),
        )

    async def get_receipt(self, tx_ref: str) -> Optional[TxReceipt]:
        """Receipt if the transaction is known and executed, else None."""
        _, receipt = await self._poll(tx_ref)
        return receipt

    async def wait_for_receipt(self, tx_ref: str) -> TxReceipt:
        deadline = time.monotonic() + self.confirmation_timeout_s
        seen = False
        while True:
            known, receipt = await self._poll(tx_ref)
            if receipt is not None:
                return receipt
            seen = seen or known
            if time.monotonic() >= deadline:
                if not seen:
                    raise TransactionDroppedError(tx_ref)
                raise PhaseTimeoutError(
                    f"Transaction {tx_ref} not confirmed after {self.confirmation_timeout_s}s"
                )
            await asyncio.sleep(self.poll_interval_s)
