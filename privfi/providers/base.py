from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class Call:
    """A single contract invocation in a multicall."""

    contract_address: str
    entrypoint: str
    calldata: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contractAddress": self.contract_address,
            "entrypoint": self.entrypoint,
            "calldata": list(self.calldata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Call":
        return cls(
            contract_address=data["contractAddress"],
            entrypoint=data["entrypoint"],
            calldata=[str(c) for c in data.get("calldata", [])],
        )


@dataclass
class Route:
    """Best quote returned by a trade router."""

    quote_id: str
    sell_token: str
    buy_token: str
    sell_amount: int
    buy_amount: int  # estimate only
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TokenTransfer:
    token_address: str
    from_address: str
    to_address: str
    amount: int


@dataclass
class TxReceipt:
    tx_ref: str
    status: str  # "succeeded" | "reverted"
    transfers: List[TokenTransfer] = field(default_factory=list)
    revert_reason: Optional[str] = None

    @property
    def reverted(self) -> bool:
        return self.status == "reverted"


@dataclass
class DepositCalls:
    """Calls that deposit into the privacy pool plus the secret material they produce."""

    calls: List[Call]
    privacy_data: Dict[str, Any]


class PrivacyPoolProvider(ABC):
    """Opaque privacy-pool capability"""

    name: str

    @abstractmethod
    async def build_deposit(self, token_address: str, amount: int, depositor: str) -> DepositCalls:
        """Approve-and-deposit calls for `amount` of `token_address`"""
        pass

    @abstractmethod
    async def build_withdrawal(
        self,
        deposit_reference: str,
        privacy_data: Dict[str, Any],
        recipient: str,
    ) -> List[Call]:
        """Calls releasing a deposit to `recipient`"""
        pass


class TradeRouter(ABC):
    """DEX aggregator capability"""

    name: str

    @abstractmethod
    async def best_route(
        self,
        sell_token: str,
        buy_token: str,
        sell_amount: int,
        taker: str,
    ) -> Optional[Route]:
        """Best route for the pair, or None when no route exists"""
        pass

    @abstractmethod
    async def build_calls(self, route: Route, slippage_bps: int, taker: str) -> List[Call]:
        """Executable calls (approval included) for a selected route"""
        pass


class WalletGateway(ABC):
    """The single custodial signer"""

    @property
    @abstractmethod
    def address(self) -> str:
        pass

    @abstractmethod
    async def execute(self, calls: List[Call]) -> str:
        """
        Sign and submit calls, returning the transaction reference.

        Raises SubmissionUnconfirmedError when the calls may have been sent
        but no reference came back.
        """
        pass

    @abstractmethod
    async def wait_for_receipt(self, tx_ref: str) -> TxReceipt:
        """
        Block until the transaction is final.

        Raises PhaseTimeoutError if it is known but still unconfirmed at the
        deadline, TransactionDroppedError if the node never saw it.
        """
        pass
