"""
Deposit Ledger

Record of funded privacy-pool balances and the best-fit selection that picks
which balance pays for a trade. The ledger is the only writer of Deposit
records; lookups hand out copies.
"""

import copy
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set, Union

from .models import Deposit, DepositStatus, parse_amount
from .persistence import DepositStore


def _key(address: str) -> str:
    return address.strip().lower()


class DepositLedger:
    """
    Funded balances keyed by owner address.

    Features:
    - Insert-or-replace tracking by (owner, tx reference)
    - Exact integer balance totals
    - Best-fit selection (smallest eligible balance wins)
    - Placeholder reference reconciliation
    - Optional write-through store
    """

    def __init__(
        self,
        store: Optional[DepositStore] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.logger = logger or logging.getLogger(__name__)
        self._store = store
        self._deposits: Dict[str, List[Deposit]] = {}

        if store is not None:
            loaded = store.load()
            for deposit in loaded:
                self._insert(deposit)
            self.logger.info("Loaded %d deposits from store", len(loaded))

    # ---------------------------
    # Internal helpers
    # ---------------------------
    def _insert(self, deposit: Deposit) -> None:
        records = self._deposits.setdefault(_key(deposit.owner_address), [])
        ref = _key(deposit.tx_reference)
        for index, existing in enumerate(records):
            if _key(existing.tx_reference) == ref:
                records[index] = deposit
                return
        records.append(deposit)

    def _find(self, owner_address: str, tx_reference: str) -> Optional[Deposit]:
        ref = _key(tx_reference)
        for deposit in self._deposits.get(_key(owner_address), []):
            if _key(deposit.tx_reference) == ref:
                return deposit
        return None

    def _persist(self) -> None:
        if self._store is None:
            return
        self._store.save([d for records in self._deposits.values() for d in records])

    def _eligible(self, owner_address: str, token_address: str) -> List[Deposit]:
        token = _key(token_address)
        return [
            d
            for d in self._deposits.get(_key(owner_address), [])
            if _key(d.token_address) == token and d.is_selectable
        ]

    # ---------------------------
    # Mutation
    # ---------------------------
    def track(self, deposit: Deposit) -> Deposit:
        """Insert a deposit, replacing any record with the same tx reference."""
        stored = copy.deepcopy(deposit)
        self._insert(stored)
        self._persist()
        self.logger.info(
            "Tracked deposit %s for %s (%s %s, status=%s)",
            stored.tx_reference,
            stored.owner_address,
            stored.amount,
            stored.token_address,
            stored.status.value,
        )
        return copy.deepcopy(stored)

    def mark_status(
        self,
        owner_address: str,
        tx_reference: str,
        status: DepositStatus,
        remaining_balance: Optional[Union[str, int]] = None,
    ) -> Optional[Deposit]:
        """Update lifecycle status and optionally the remaining balance."""
        deposit = self._find(owner_address, tx_reference)
        if deposit is None:
            return None

        if remaining_balance is not None:
            remaining = parse_amount(remaining_balance)
            if remaining > parse_amount(deposit.amount):
                raise ValueError(
                    f"remaining balance {remaining} exceeds deposit amount {deposit.amount}"
                )
            deposit.remaining_balance = str(remaining)

        deposit.status = status
        self._persist()
        self.logger.info("Deposit %s status -> %s", deposit.tx_reference, status.value)
        return copy.deepcopy(deposit)

    def consume(
        self,
        owner_address: str,
        tx_reference: str,
        amount: Union[str, int],
    ) -> Optional[Deposit]:
        """Subtract `amount` from a deposit's remaining balance."""
        deposit = self._find(owner_address, tx_reference)
        if deposit is None:
            return None

        spend = parse_amount(amount)
        if spend > deposit.balance:
            raise ValueError(
                f"cannot consume {spend} from deposit {tx_reference} with balance {deposit.balance}"
            )

        remaining = deposit.balance - spend
        status = DepositStatus.EXHAUSTED if remaining == 0 else DepositStatus.PARTIALLY_USED
        return self.mark_status(owner_address, tx_reference, status, remaining)

    def reconcile(
        self,
        owner_address: str,
        placeholder_reference: str,
        real_reference: str,
    ) -> Optional[Deposit]:
        """Rewrite a temporary tx reference to the real on-chain one."""
        deposit = self._find(owner_address, placeholder_reference)
        if deposit is None:
            return None

        existing = self._find(owner_address, real_reference)
        if existing is not None and existing is not deposit:
            self._deposits[_key(owner_address)].remove(existing)

        deposit.tx_reference = real_reference
        self._persist()
        self.logger.info("Reconciled deposit %s -> %s", placeholder_reference, real_reference)
        return copy.deepcopy(deposit)

    def prune(self, max_age: timedelta, now: Optional[datetime] = None) -> int:
        """
        Drop records created longer than `max_age` ago and persist the result.

        Deposits that can still fund a swap are kept regardless of age.
        Returns the number of records removed.
        """
        cutoff = (now or datetime.now(timezone.utc)) - max_age
        removed = 0
        for owner in list(self._deposits):
            records = self._deposits[owner]
            kept = [d for d in records if d.created_at >= cutoff or d.is_selectable]
            removed += len(records) - len(kept)
            if kept:
                self._deposits[owner] = kept
            else:
                del self._deposits[owner]

        if removed:
            self._persist()
            self.logger.info("Pruned %d deposits older than %s", removed, max_age)
        return removed

    # ---------------------------
    # Queries
    # ---------------------------
    def total_balance(self, owner_address: str, token_address: str) -> int:
        return sum(d.balance for d in self._eligible(owner_address, token_address))

    def select_optimal(
        self,
        owner_address: str,
        token_address: str,
        required_amount: Union[str, int],
    ) -> Optional[Deposit]:
        """Smallest eligible deposit that still covers `required_amount`."""
        required = parse_amount(required_amount)
        candidates = [
            d for d in self._eligible(owner_address, token_address) if d.balance >= required
        ]
        if not candidates:
            return None

        best = min(candidates, key=lambda d: (d.balance, d.tx_reference))
        return copy.deepcopy(best)

    def by_tx_reference(self, owner_address: str, tx_reference: str) -> Optional[Deposit]:
        deposit = self._find(owner_address, tx_reference)
        return copy.deepcopy(deposit) if deposit else None

    def find_by_tx_reference(self, tx_reference: str) -> Optional[Deposit]:
        """Search every owner for a tx reference."""
        for owner in self._deposits:
            deposit = self._find(owner, tx_reference)
            if deposit is not None:
                return copy.deepcopy(deposit)
        return None

    def by_owner(self, owner_address: str) -> List[Deposit]:
        return [copy.deepcopy(d) for d in self._deposits.get(_key(owner_address), [])]

    def all_owners(self) -> Set[str]:
        return {owner for owner, records in self._deposits.items() if records}

    def recent_pending(
        self,
        owner_address: str,
        token_address: str,
        window: timedelta,
        now: Optional[datetime] = None,
    ) -> Optional[Deposit]:
        """Most recent pending deposit created inside `window`."""
        cutoff = (now or datetime.now(timezone.utc)) - window
        token = _key(token_address)
        pending = [
            d
            for d in self._deposits.get(_key(owner_address), [])
            if d.status == DepositStatus.PENDING
            and _key(d.token_address) == token
            and d.created_at >= cutoff
        ]
        if not pending:
            return None
        return copy.deepcopy(max(pending, key=lambda d: d.created_at))
