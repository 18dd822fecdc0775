import pytest

from conftest import add_account

from tokensale_app.errors import DuplicateReferenceError, InputRejectedError
from tokensale_app.schemas import ContributionRequest, LedgerKind, LedgerStatus
from tokensale_app.services.contributions import from_payload, record_contribution
from tokensale_app.services.precision import normalize
from tokensale_app.services.pricing import spot_price


# ── Legacy payload adapter ───────────────────────────────────────────────────

@pytest.mark.parametrize("payload", [
    {"address": "GA", "amount": 10, "external_reference": "tx1"},
    {"piAddress": "GA", "amount": 10, "piTxId": "tx1"},
    {"pi_address": "GA", "amount": "10", "pi_tx_id": "tx1"},
    {"uid": "GA", "amount": 10, "paymentId": "tx1"},
    {"uid": "GA", "amount": 10, "metadata": {"txid": "tx1"}},
])
def test_from_payload_accepts_legacy_spellings(payload):
    request = from_payload(payload)
    assert request == ContributionRequest(address="GA", amount=10, external_reference="tx1")


def test_from_payload_carries_allocation():
    request = from_payload({"address": "GA", "amount": 10, "txid": "tx1", "allocation": 250})
    assert request.allocation == 250


@pytest.mark.parametrize("payload", [
    {"amount": 10, "piTxId": "tx1"},
    {"piAddress": "GA", "piTxId": "tx1"},
    {"piAddress": "GA", "amount": 10},
    {"piAddress": "GA", "amount": 0, "piTxId": "tx1"},
    {"piAddress": "GA", "amount": -5, "piTxId": "tx1"},
    {"piAddress": "GA", "amount": "lots", "piTxId": "tx1"},
    "not-a-dict",
])
def test_from_payload_rejects_bad_input(payload):
    with pytest.raises(InputRejectedError):
        from_payload(payload)


# ── Recording ────────────────────────────────────────────────────────────────

def test_first_contribution_creates_account(store, config):
    receipt = record_contribution(
        store,
        ContributionRequest(address="GA", amount=100, external_reference="tx1", allocation=2_000),
        config,
    )

    assert receipt.total_contributed == 100
    assert receipt.allocated == 2_000
    account = store.get_account("GA")
    assert account.contributed == 100
    assert account.last_contribution_at is not None

    entry = store.find_ledger_by_reference("tx1")
    assert entry.kind is LedgerKind.CONTRIBUTION
    assert entry.status is LedgerStatus.COMPLETED
    assert entry.amount == 100


def test_contributions_accumulate(store, config):
    add_account(store, "GA", contributed=50, allocated=100)
    record_contribution(store, ContributionRequest(address="GA", amount=25.5, external_reference="tx2", allocation=10), config)
    account = store.get_account("GA")
    assert account.contributed == 75.5
    assert account.allocated == 110


def test_default_allocation_uses_post_contribution_price(store, config):
    add_account(store, "GB", contributed=99_900)
    receipt = record_contribution(store, ContributionRequest(address="GA", amount=100, external_reference="tx1"), config)
    assert receipt.allocated == normalize(100 * spot_price(100_000))


def test_duplicate_reference_changes_nothing(store, config):
    request = ContributionRequest(address="GA", amount=100, external_reference="tx1", allocation=1)
    record_contribution(store, request, config)

    with pytest.raises(DuplicateReferenceError) as info:
        record_contribution(store, request, config)

    assert info.value.reference == "tx1"
    assert store.get_account("GA").contributed == 100
    assert len(store.list_ledger()) == 1


def test_overallocation_logs_warning(store, config, caplog):
    request = ContributionRequest(
        address="GA", amount=100, external_reference="tx1", allocation=config.ipo_pool_supply + 1,
    )
    with caplog.at_level("WARNING", logger="tokensale_app"):
        record_contribution(store, request, config)
    assert "exceed the fixed sale supply" in caplog.text
