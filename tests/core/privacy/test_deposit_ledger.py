"""
Tests for the Deposit Ledger

Best-fit selection, exact balance arithmetic and reference bookkeeping.
"""

from datetime import datetime, timedelta, timezone

import pytest

from privfi.core.privacy import Deposit, DepositLedger, DepositStatus, JsonFileDepositStore


USER = "0xabc"
ETH = "0x049d36570d4e46f48e99674bd3fcc84644ddd6b96f7c741b1562b82f9e004dc7"
STRK = "0x04718f5a0fc34cc1af16a1cdee98ffb20c31f5cd61d6ab07201858f4287c938d"


def make_deposit(ref, amount, status=DepositStatus.AVAILABLE, token=ETH, owner=USER, **kwargs):
    return Deposit(
        tx_reference=ref,
        owner_address=owner,
        token_address=token,
        amount=amount,
        status=status,
        **kwargs,
    )


@pytest.fixture
def ledger():
    return DepositLedger()


# =============================================================================
# Tracking
# =============================================================================

class TestTracking:
    """Tests for insert-or-replace tracking."""

    def test_track_and_lookup(self, ledger):
        """A tracked deposit can be looked up by owner and reference."""
        ledger.track(make_deposit("0x1", "100"))

        found = ledger.by_tx_reference(USER, "0x1")
        assert found is not None
        assert found.amount == "100"

    def test_track_replaces_same_reference(self, ledger):
        """Tracking the same reference twice overwrites the first record."""
        ledger.track(make_deposit("0x1", "100", status=DepositStatus.PENDING))
        ledger.track(make_deposit("0x1", "100", status=DepositStatus.AVAILABLE))

        deposits = ledger.by_owner(USER)
        assert len(deposits) == 1
        assert deposits[0].status == DepositStatus.AVAILABLE

    def test_lookups_are_case_insensitive(self, ledger):
        """Owner and reference comparisons ignore case."""
        ledger.track(make_deposit("0xABC1", "100", owner="0xABC"))

        assert ledger.by_tx_reference("0xabc", "0xabc1") is not None
        assert ledger.total_balance("0xAbC", ETH.upper().replace("0X", "0x")) == 100

    def test_missing_lookup_returns_none(self, ledger):
        """Absence is reported as None rather than raised."""
        assert ledger.by_tx_reference(USER, "0xmissing") is None
        assert ledger.find_by_tx_reference("0xmissing") is None
        assert ledger.mark_status(USER, "0xmissing", DepositStatus.AVAILABLE) is None

    def test_returned_records_are_copies(self, ledger):
        """Mutating a returned deposit does not change the ledger."""
        ledger.track(make_deposit("0x1", "100"))

        copy = ledger.by_tx_reference(USER, "0x1")
        copy.status = DepositStatus.EXHAUSTED

        assert ledger.by_tx_reference(USER, "0x1").status == DepositStatus.AVAILABLE

    def test_all_owners_includes_custodial_wallet(self, ledger):
        """The proxy wallet shows up as an owner of its re-deposits."""
        ledger.track(make_deposit("0x1", "100"))
        ledger.track(make_deposit("0x2", "50", owner="0xproxy", beneficiary_address=USER, is_proxy_deposit=True))

        assert ledger.all_owners() == {USER, "0xproxy"}

    def test_find_by_reference_searches_every_owner(self, ledger):
        """A reference is found without knowing its owner."""
        ledger.track(make_deposit("0x9", "100", owner="0xother"))

        found = ledger.find_by_tx_reference("0x9")
        assert found.owner_address == "0xother"


# =============================================================================
# Balances and Selection
# =============================================================================

class TestSelection:
    """Tests for best-fit selection and balance totals."""

    def test_selects_smallest_sufficient_balance(self, ledger):
        """Two deposits of 500 and 800, need 400: the 500 deposit wins."""
        ledger.track(make_deposit("0xa", "800"))
        ledger.track(make_deposit("0xb", "500"))

        selected = ledger.select_optimal(USER, ETH, "400")
        assert selected.tx_reference == "0xb"

    def test_never_selects_insufficient_balance(self, ledger):
        """Deposits smaller than the requirement are never chosen."""
        ledger.track(make_deposit("0xa", "300"))
        ledger.track(make_deposit("0xb", "399"))

        assert ledger.select_optimal(USER, ETH, "400") is None

    def test_selection_uses_remaining_balance(self, ledger):
        """Partially used deposits are sized by what remains."""
        ledger.track(make_deposit("0xa", "1000", status=DepositStatus.PARTIALLY_USED, remaining_balance="450"))
        ledger.track(make_deposit("0xb", "600"))

        assert ledger.select_optimal(USER, ETH, "400").tx_reference == "0xa"

    def test_ignores_unselectable_statuses(self, ledger):
        """Pending, confirmed and exhausted deposits are not eligible."""
        ledger.track(make_deposit("0xa", "500", status=DepositStatus.PENDING))
        ledger.track(make_deposit("0xb", "500", status=DepositStatus.CONFIRMED))
        ledger.track(make_deposit("0xc", "500", status=DepositStatus.EXHAUSTED, remaining_balance="0"))

        assert ledger.select_optimal(USER, ETH, "1") is None
        assert ledger.total_balance(USER, ETH) == 0

    def test_ignores_other_tokens(self, ledger):
        """Only deposits of the requested token count."""
        ledger.track(make_deposit("0xa", "500", token=STRK))

        assert ledger.select_optimal(USER, ETH, "100") is None

    def test_ties_broken_by_reference(self, ledger):
        """Equal balances resolve deterministically."""
        ledger.track(make_deposit("0xd", "500"))
        ledger.track(make_deposit("0xc", "500"))

        assert ledger.select_optimal(USER, ETH, "100").tx_reference == "0xc"

    def test_total_balance_is_exact(self, ledger):
        """Sums beyond float precision stay exact."""
        ledger.track(make_deposit("0xa", "123456789012345678901234567890"))
        ledger.track(make_deposit("0xb", "1000", status=DepositStatus.PARTIALLY_USED, remaining_balance="1"))

        assert ledger.total_balance(USER, ETH) == 123456789012345678901234567891


# =============================================================================
# Consumption and Reconciliation
# =============================================================================

class TestConsumption:
    """Tests for balance consumption and reference reconciliation."""

    def test_partial_consumption(self, ledger):
        """Consuming 0.6 ETH of 1 ETH leaves 0.4 ETH partially used."""
        ledger.track(make_deposit("0x1", "1000000000000000000"))

        selected = ledger.select_optimal(USER, ETH, "600000000000000000")
        updated = ledger.consume(USER, selected.tx_reference, "600000000000000000")

        assert updated.remaining_balance == "400000000000000000"
        assert updated.status == DepositStatus.PARTIALLY_USED

    def test_full_consumption_exhausts(self, ledger):
        """Spending the whole balance marks the deposit exhausted."""
        ledger.track(make_deposit("0x1", "500"))

        updated = ledger.consume(USER, "0x1", "500")

        assert updated.remaining_balance == "0"
        assert updated.status == DepositStatus.EXHAUSTED

    def test_overdraw_rejected(self, ledger):
        """Consuming more than remains raises."""
        ledger.track(make_deposit("0x1", "500"))

        with pytest.raises(ValueError):
            ledger.consume(USER, "0x1", "501")

    def test_mark_status_rejects_remaining_above_amount(self, ledger):
        """remainingBalance can never exceed amount."""
        ledger.track(make_deposit("0x1", "500"))

        with pytest.raises(ValueError):
            ledger.mark_status(USER, "0x1", DepositStatus.PARTIALLY_USED, "600")

    def test_reconcile_placeholder(self, ledger):
        """A placeholder reference is rewritten to the real one."""
        ledger.track(make_deposit("user_0xabc_1700000000", "500", status=DepositStatus.PENDING))

        ledger.reconcile(USER, "user_0xabc_1700000000", "0xreal")

        assert ledger.by_tx_reference(USER, "user_0xabc_1700000000") is None
        assert ledger.by_tx_reference(USER, "0xreal").amount == "500"

    def test_recent_pending_respects_window(self, ledger):
        """Only pending deposits inside the window match."""
        now = datetime.now(timezone.utc)
        ledger.track(make_deposit("0xold", "500", status=DepositStatus.PENDING, created_at=now - timedelta(minutes=10)))
        ledger.track(make_deposit("0xnew", "500", status=DepositStatus.PENDING, created_at=now - timedelta(minutes=1)))

        found = ledger.recent_pending(USER, ETH, timedelta(minutes=5), now=now)
        assert found.tx_reference == "0xnew"

        assert ledger.recent_pending(USER, ETH, timedelta(seconds=30), now=now) is None


# =============================================================================
# Persistence
# =============================================================================

class TestLedgerStore:
    """Tests for the write-through deposit store."""

    def test_mutations_survive_reload(self, tmp_path):
        """A new ledger over the same file sees earlier mutations."""
        store = JsonFileDepositStore(tmp_path / "deposits.json")
        ledger = DepositLedger(store=store)
        ledger.track(make_deposit("0x1", "1000"))
        ledger.consume(USER, "0x1", "250")

        reloaded = DepositLedger(store=JsonFileDepositStore(tmp_path / "deposits.json"))

        deposit = reloaded.by_tx_reference(USER, "0x1")
        assert deposit.remaining_balance == "750"
        assert deposit.status == DepositStatus.PARTIALLY_USED


# =============================================================================
# Retention
# =============================================================================

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


class TestRetention:
    """Tests for age-based pruning."""

    def test_prune_drops_old_spent_records(self, ledger):
        """Old deposits that can still fund a swap are kept."""
        ledger.track(make_deposit("0xold", "100", status=DepositStatus.EXHAUSTED, created_at=NOW - timedelta(days=10)))
        ledger.track(make_deposit("0xfunded", "100", created_at=NOW - timedelta(days=10)))
        ledger.track(make_deposit("0xnew", "100", status=DepositStatus.EXHAUSTED, created_at=NOW - timedelta(days=1)))

        assert ledger.prune(timedelta(days=7), now=NOW) == 1
        assert {d.tx_reference for d in ledger.by_owner(USER)} == {"0xfunded", "0xnew"}

    def test_pruned_record_stays_gone_after_later_writes(self, tmp_path):
        """The next write-through does not bring a pruned deposit back."""
        path = tmp_path / "deposits.json"
        ledger = DepositLedger(store=JsonFileDepositStore(path))
        ledger.track(make_deposit("0xold", "100", status=DepositStatus.EXHAUSTED, created_at=NOW - timedelta(days=10)))
        ledger.prune(timedelta(days=7), now=NOW)

        ledger.track(make_deposit("0xnext", "100"))

        stored = [d.tx_reference for d in JsonFileDepositStore(path).load()]
        assert stored == ["0xnext"]

    def test_prune_without_matches_leaves_store_untouched(self, tmp_path):
        path = tmp_path / "deposits.json"
        ledger = DepositLedger(store=JsonFileDepositStore(path))

        assert ledger.prune(timedelta(days=7), now=NOW) == 0
        assert not path.exists()
