import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from tokensale_app.config import SaleConfig
from tokensale_app.engine import build_engine
from tokensale_app.errors import PaymentGatewayError, StoreUnavailableError
from tokensale_app.schemas import Account, LedgerStatus
from tokensale_app.store import InMemoryRecordStore


# ── Fakes ────────────────────────────────────────────────────────────────────

class ScriptedGateway:
    """Payment gateway that succeeds unless the address is listed in `fail_for`."""

    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)
        self.calls = []
        self.store = None
        self.pending_at_call = []

    def send(self, address, amount, memo):
        self.calls.append((address, amount, memo))
        if self.store is not None:
            self.pending_at_call.append([
                e for e in self.store.list_ledger(status=LedgerStatus.PENDING) if e.address == address
            ])
        if address in self.fail_for:
            raise PaymentGatewayError(f"network rejected transfer to {address}")
        return f"tx-{len(self.calls):04d}"

    def paid_to(self, address):
        return [amount for addr, amount, _ in self.calls if addr == address]


class OfflineStore(InMemoryRecordStore):
    """In-memory store whose scans and aggregations fail while `offline` is set."""

    def __init__(self):
        super().__init__()
        self.offline = False

    def find_accounts(self, *args, **kwargs):
        if self.offline:
            raise StoreUnavailableError("record store unreachable")
        return super().find_accounts(*args, **kwargs)

    def sum_contributed(self):
        if self.offline:
            raise StoreUnavailableError("record store unreachable")
        return super().sum_contributed()


# ── Fixtures ─────────────────────────────────────────────────────────────────

@pytest.fixture
def config():
    return SaleConfig()


@pytest.fixture
def store():
    return OfflineStore()


@pytest.fixture
def gateway(store):
    gw = ScriptedGateway()
    gw.store = store
    return gw


@pytest.fixture
def engine(config, store, gateway):
    return build_engine(config, store=store, gateway=gateway)


def add_account(store, address, contributed=0.0, allocated=0.0, **fields):
    return store.upsert_account(Account(address=address, contributed=contributed, allocated=allocated, **fields))
