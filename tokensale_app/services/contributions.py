"""
Inbound contributions.

`from_payload` is the single adapter for the legacy field spellings clients send;
everything past it works with a typed ContributionRequest.
"""

import logging
from typing import Any, Dict

from pydantic import ValidationError

from tokensale_app.config import SaleConfig
from tokensale_app.errors import DuplicateReferenceError, InputRejectedError
from tokensale_app.schemas import (
    Account,
    ContributionReceipt,
    ContributionRequest,
    LedgerEntry,
    LedgerKind,
    LedgerStatus,
    utc_now,
)
from tokensale_app.services.precision import normalize
from tokensale_app.services.pricing import spot_price
from tokensale_app.store import RecordStore

logger = logging.getLogger(__name__)

_ADDRESS_KEYS = ("address", "piAddress", "pi_address", "uid")
_REFERENCE_KEYS = ("external_reference", "piTxId", "pi_tx_id", "paymentId", "txid")


def _first(payload: Dict[str, Any], keys) -> Any:
    for key in keys:
        value = payload.get(key)
        if value not in (None, ""):
            return value
    return None


def from_payload(payload: Dict[str, Any]) -> ContributionRequest:
    """Map any accepted spelling of address / amount / reference onto one request."""
    if not isinstance(payload, dict):
        raise InputRejectedError("Contribution payload must be an object")

    metadata = payload.get("metadata") if isinstance(payload.get("metadata"), dict) else {}
    address = _first(payload, _ADDRESS_KEYS)
    reference = _first(payload, _REFERENCE_KEYS) or _first(metadata, ("txid",))
    amount = payload.get("amount")
    allocation = _first(payload, ("allocation", "allocated"))

    if address is None or amount in (None, "") or reference is None:
        raise InputRejectedError("Missing metadata: address, amount and transaction reference are required")
    try:
        return ContributionRequest(
            address=address,
            amount=amount,
            external_reference=reference,
            allocation=allocation,
        )
    except ValidationError as exc:
        raise InputRejectedError(str(exc.errors()[0]["msg"])) from exc


def record_contribution(store: RecordStore, request: ContributionRequest, config: SaleConfig) -> ContributionReceipt:
    """
    Record one confirmed inbound payment.

    A reused external reference raises DuplicateReferenceError and changes nothing.
    The ledger entry and the account update are applied as one unit.
    """
    if request.amount <= 0:
        raise InputRejectedError("amount must be > 0")
    if store.find_ledger_by_reference(request.external_reference) is not None:
        raise DuplicateReferenceError(request.external_reference)

    amount = normalize(request.amount)
    now = utc_now()
    with store.atomic():
        store.add_ledger_entry(LedgerEntry(
            address=request.address,
            amount=amount,
            kind=LedgerKind.CONTRIBUTION,
            status=LedgerStatus.COMPLETED,
            external_reference=request.external_reference,
            memo="IPO contribution - water-level sync",
        ))
        pool_after = store.sum_contributed() + amount
        account = store.get_account(request.address) or Account(address=request.address)
        account.contributed = normalize(account.contributed + amount)
        if request.allocation is not None:
            grant = normalize(request.allocation)
        else:
            grant = normalize(amount * spot_price(pool_after, config.ipo_pool_supply))
        account.allocated = normalize(account.allocated + grant)
        account.last_contribution_at = now
        account = store.upsert_account(account)

    logger.info(
        "Contribution recorded: %s from %s (ref %s), total %s",
        amount,
        request.address,
        request.external_reference,
        account.contributed,
    )
    _warn_on_overallocation(store, config)

    return ContributionReceipt(
        address=account.address,
        contribution=amount,
        total_contributed=account.contributed,
        allocated=account.allocated,
        external_reference=request.external_reference,
        recorded_at=now,
    )


def _warn_on_overallocation(store: RecordStore, config: SaleConfig) -> None:
    # Issuance is not capped here; surface it instead of guessing the policy.
    allocated = sum(a.allocated for a in store.find_accounts())
    if allocated > config.ipo_pool_supply:
        logger.warning(
            "Allocated tokens %s exceed the fixed sale supply %s",
            normalize(allocated),
            config.ipo_pool_supply,
        )
