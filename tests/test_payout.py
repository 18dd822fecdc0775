"""
Payout subsystem
================
Fee deduction, the PENDING-before-call ledger discipline, failure recording
and the apply-with-confirmation unit of work.
"""

import pytest

from conftest import ScriptedGateway, add_account

from tokensale_app.engine import build_engine
from tokensale_app.errors import LedgerStateError, StoreUnavailableError
from tokensale_app.schemas import LedgerKind, LedgerStatus
from tokensale_app.services.payout import BELOW_FEE_REASON, MISSING_ADDRESS_REASON, PayoutService


# ── Helpers ──────────────────────────────────────────────────────────────────

def make_service(store, config, fail_for=()):
    gateway = ScriptedGateway(fail_for=fail_for)
    gateway.store = store
    return PayoutService(store, gateway, config), gateway


# ── Rejections without side effects ──────────────────────────────────────────

@pytest.mark.parametrize("gross", [0.01, 0.005, 0, -3])
def test_below_fee_threshold_writes_nothing(store, config, gross):
    service, gateway = make_service(store, config)
    result = service.pay("GADDR", gross, LedgerKind.DIVIDEND)
    assert not result.success
    assert result.reason == BELOW_FEE_REASON
    assert store.list_ledger() == []
    assert gateway.calls == []


@pytest.mark.parametrize("address", ["", "   ", None])
def test_missing_address_writes_nothing(store, config, address):
    service, gateway = make_service(store, config)
    result = service.pay(address, 50, LedgerKind.REFUND)
    assert not result.success
    assert result.reason == MISSING_ADDRESS_REASON
    assert store.list_ledger() == []
    assert gateway.calls == []


# ── Success path ─────────────────────────────────────────────────────────────

def test_pending_entry_exists_before_gateway_call(store, config):
    service, gateway = make_service(store, config)
    service.pay("GADDR", 100, LedgerKind.VESTING_RELEASE)

    seen = gateway.pending_at_call[0]
    assert len(seen) == 1, "Exactly one PENDING entry must exist when the network is called"
    assert seen[0].amount == 99.99
    assert seen[0].kind is LedgerKind.VESTING_RELEASE


def test_success_marks_completed_with_reference(store, config):
    service, gateway = make_service(store, config)
    result = service.pay("GADDR", 100, LedgerKind.DIVIDEND)

    assert result.success
    assert result.net_amount == 99.99
    assert gateway.calls == [("GADDR", 99.99, "Token sale settlement: DIVIDEND")]

    entries = store.list_ledger()
    assert len(entries) == 1
    assert entries[0].status is LedgerStatus.COMPLETED
    assert entries[0].external_reference == result.reference
    assert store.find_ledger_by_reference(result.reference).entry_id == result.entry_id


def test_net_amount_is_normalized(store, config):
    service, gateway = make_service(store, config)
    result = service.pay("GADDR", 5000.1234567, LedgerKind.REFUND)
    assert result.net_amount == 5000.113457
    assert gateway.calls[0][1] == 5000.113457


def test_apply_runs_after_confirmation(store, config):
    add_account(store, "GADDR", contributed=50)
    service, _ = make_service(store, config)

    def apply():
        account = store.get_account("GADDR")
        account.tranches_completed += 1
        store.upsert_account(account)

    result = service.pay("GADDR", 10, LedgerKind.VESTING_RELEASE, apply=apply)
    assert result.success
    assert store.get_account("GADDR").tranches_completed == 1


def test_failed_apply_rolls_back_completion(store, config):
    service, _ = make_service(store, config)

    def apply():
        raise StoreUnavailableError("account write failed")

    with pytest.raises(StoreUnavailableError):
        service.pay("GADDR", 10, LedgerKind.VESTING_RELEASE, apply=apply)

    # Transfer happened but was never recorded as applied: left PENDING for reconciliation.
    entries = store.list_ledger()
    assert len(entries) == 1
    assert entries[0].status is LedgerStatus.PENDING
    assert entries[0].external_reference is None


# ── Failure path ─────────────────────────────────────────────────────────────

def test_gateway_failure_marks_failed(store, config):
    add_account(store, "GBAD", contributed=50, tranches_completed=2)
    service, gateway = make_service(store, config, fail_for={"GBAD"})
    applied = []

    result = service.pay("GBAD", 10, LedgerKind.VESTING_RELEASE, apply=lambda: applied.append(1))

    assert not result.success
    assert "network rejected" in result.reason
    assert applied == [], "apply must not run when the transfer failed"
    entry = store.list_ledger()[0]
    assert entry.status is LedgerStatus.FAILED
    assert entry.memo.startswith("A2U failure: network rejected")
    assert store.get_account("GBAD").tranches_completed == 2


class BrokenGateway(ScriptedGateway):
    """Gateway whose client blows up with something other than a gateway error."""

    def send(self, address, amount, memo):
        self.calls.append((address, amount, memo))
        if address in self.fail_for:
            raise RuntimeError("connection pool closed")
        return f"tx-{len(self.calls):04d}"


def test_unexpected_gateway_error_marks_failed(store, config):
    add_account(store, "GBAD", contributed=50, tranches_completed=2)
    service = PayoutService(store, BrokenGateway(fail_for={"GBAD"}), config)
    applied = []

    result = service.pay("GBAD", 10, LedgerKind.VESTING_RELEASE, apply=lambda: applied.append(1))

    assert not result.success
    assert "connection pool closed" in result.reason
    assert applied == []
    entry = store.list_ledger()[0]
    assert entry.status is LedgerStatus.FAILED
    assert entry.entry_id == result.entry_id
    assert entry.memo.startswith("A2U failure: unexpected gateway error")
    assert store.get_account("GBAD").tranches_completed == 2


def test_unexpected_gateway_error_does_not_stop_run(store, config):
    gateway = BrokenGateway(fail_for={"GBAD"})
    engine = build_engine(config, store=store, gateway=gateway)
    add_account(store, "GBAD", contributed=500, allocated=1_000)
    add_account(store, "GA", contributed=500, allocated=1_000)

    result = engine.vesting.run()

    assert result.success
    assert result.failed == ["GBAD"]
    assert [addr for addr, _, _ in gateway.calls] == ["GBAD", "GA"]
    assert store.get_account("GA").tranches_completed == 1
    assert store.get_account("GBAD").tranches_completed == 0


def test_terminal_entries_are_immutable(store, config):
    service, _ = make_service(store, config, fail_for={"GBAD"})
    ok = service.pay("GOOD", 10, LedgerKind.DIVIDEND)
    bad = service.pay("GBAD", 10, LedgerKind.DIVIDEND)

    for entry_id in (ok.entry_id, bad.entry_id):
        with pytest.raises(LedgerStateError):
            store.update_ledger_entry(entry_id, LedgerStatus.PENDING)
