"""
Operations
==========
Run leases, ledger reconciliation and the UTC calendar scheduler.
"""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import add_account

from tokensale_app.errors import InputRejectedError, RunInProgressError
from tokensale_app.schemas import LedgerEntry, LedgerKind, LedgerStatus
from tokensale_app.scheduler import Scheduler, due_jobs
from tokensale_app.services.reconciliation import reconcile
from tokensale_app.services.run_lock import RunLock


# ── Run lock ─────────────────────────────────────────────────────────────────

class FakeClock:
    def __init__(self):
        self.now = 1_000.0

    def __call__(self):
        return self.now


def test_second_acquire_is_refused_while_lease_is_live():
    lock = RunLock(lease_seconds=60, clock=FakeClock())
    lock.acquire("vesting", holder="api")
    with pytest.raises(RunInProgressError):
        lock.acquire("vesting", holder="cron")
    # Different jobs do not block each other.
    lock.acquire("dividend", holder="cli")


def test_expired_lease_can_be_taken_over():
    clock = FakeClock()
    lock = RunLock(lease_seconds=60, clock=clock)
    stale = lock.acquire("vesting", holder="crashed")
    clock.now += 61
    assert not lock.is_held("vesting")
    fresh = lock.acquire("vesting", holder="cron")
    # Releasing the stale lease must not drop the new holder's lease.
    lock.release(stale)
    assert lock.is_held("vesting")
    lock.release(fresh)
    assert not lock.is_held("vesting")


def test_hold_releases_on_error():
    lock = RunLock()
    with pytest.raises(ValueError):
        with lock.hold("settlement"):
            raise ValueError("boom")
    assert not lock.is_held("settlement")


# ── Reconciliation ───────────────────────────────────────────────────────────

def test_reconcile_reports_failed_and_stale_pending(store, config):
    now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    old = now - timedelta(seconds=config.stale_pending_seconds + 1)

    failed = store.add_ledger_entry(LedgerEntry(address="GA", amount=5, kind=LedgerKind.REFUND))
    store.update_ledger_entry(failed.entry_id, LedgerStatus.FAILED, memo="A2U failure: timeout")
    store.add_ledger_entry(LedgerEntry(address="GB", amount=7, kind=LedgerKind.REFUND, created_at=old))
    store.add_ledger_entry(LedgerEntry(address="GC", amount=3, kind=LedgerKind.DIVIDEND, created_at=now))

    report = reconcile(store, config, now=now)

    assert report.needs_attention
    assert [e.address for e in report.failed] == ["GA"]
    assert [e.address for e in report.stale_pending] == ["GB"]
    assert report.totals_by_kind == {"REFUND": 12}


def test_reconcile_clean_ledger(store, config):
    report = reconcile(store, config)
    assert not report.needs_attention
    assert report.totals_by_kind == {}


# ── Scheduler ────────────────────────────────────────────────────────────────

def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def test_due_jobs_calendar():
    assert due_jobs(utc(2026, 5, 14, 0, 0)) == ["price_snapshot"]
    assert due_jobs(utc(2026, 5, 28, 23, 0)) == ["settlement"]
    assert due_jobs(utc(2026, 6, 1, 0, 0)) == ["price_snapshot", "vesting"]
    assert due_jobs(utc(2026, 6, 1, 0, 1)) == []


def test_due_jobs_converts_to_utc():
    tz = timezone(timedelta(hours=2))
    assert due_jobs(datetime(2026, 5, 29, 1, 0, tzinfo=tz)) == ["settlement"]


def test_tick_fires_once_per_slot():
    calls = []
    scheduler = Scheduler({"price_snapshot": lambda: calls.append("snap")})
    at = utc(2026, 5, 14, 0, 0)
    assert scheduler.tick(at) == ["price_snapshot"]
    assert scheduler.tick(at.replace(second=30)) == []
    assert scheduler.tick(at + timedelta(days=1)) == ["price_snapshot"]
    assert calls == ["snap", "snap"]


def test_tick_survives_job_errors():
    def broken():
        raise RunInProgressError("vesting", "api")

    scheduler = Scheduler({"vesting": broken})
    assert scheduler.tick(utc(2026, 6, 1, 0, 0)) == ["vesting"]


def test_engine_jobs_wired(engine, store, gateway):
    add_account(store, "GA", contributed=500, allocated=1_000)
    scheduler = Scheduler(engine.scheduled_jobs())

    ran = scheduler.tick(utc(2026, 6, 1, 0, 0))

    assert ran == ["price_snapshot", "vesting"]
    assert store.get_account("GA").tranches_completed == 1


def test_scheduled_settlement_skips_empty_pool(engine):
    assert engine.scheduled_jobs()["settlement"]() is None
    with pytest.raises(InputRejectedError):
        engine.settlement.run()
