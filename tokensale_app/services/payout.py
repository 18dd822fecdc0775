"""
Payout subsystem.

`pay` is the only path from the engines to the payment network:

1. net = normalize(gross - network fee); nothing happens when net <= 0.
2. A PENDING ledger entry is written before the external call, so an
   attempted-but-unconfirmed transfer stays auditable after a crash.
3. The gateway is called once. No retries here; retry policy belongs to callers.
4. Success marks the entry COMPLETED with the external reference and runs the
   caller's `apply` step in the same store unit of work.
5. Failure marks the entry FAILED with the error text in the memo. Any
   exception out of `send` counts as a failure, not only PaymentGatewayError.
"""

import logging
from typing import Callable, Optional

from tokensale_app.config import SaleConfig
from tokensale_app.errors import PaymentGatewayError
from tokensale_app.schemas import LedgerEntry, LedgerKind, LedgerStatus, PayoutResult
from tokensale_app.services.gateway import PaymentGateway
from tokensale_app.services.precision import normalize
from tokensale_app.store import RecordStore

logger = logging.getLogger(__name__)

BELOW_FEE_REASON = "Below fee threshold"
MISSING_ADDRESS_REASON = "Missing destination address"


class PayoutService:
    def __init__(self, store: RecordStore, gateway: PaymentGateway, config: SaleConfig):
        self.store = store
        self.gateway = gateway
        self.config = config

    def pay(
        self,
        address: str,
        gross_amount: float,
        kind: LedgerKind,
        apply: Optional[Callable[[], None]] = None,
    ) -> PayoutResult:
        if not address or not str(address).strip():
            logger.warning("Payout rejected: %s (kind=%s)", MISSING_ADDRESS_REASON, kind.value)
            return PayoutResult(success=False, reason=MISSING_ADDRESS_REASON)

        gross = normalize(gross_amount)
        net = normalize(gross - self.config.network_fee)
        if net <= 0:
            logger.warning(
                "Payout rejected: %s for %s does not cover the %s network fee",
                gross,
                address,
                self.config.network_fee,
            )
            return PayoutResult(success=False, reason=BELOW_FEE_REASON)

        entry = self.store.add_ledger_entry(LedgerEntry(
            address=address,
            amount=net,
            kind=kind,
            status=LedgerStatus.PENDING,
            memo=f"A2U payout - net {net} (gross {gross}, type {kind.value})",
        ))

        try:
            reference = self.gateway.send(address, net, f"Token sale settlement: {kind.value}")
        except PaymentGatewayError as exc:
            reason = str(exc)
            self.store.update_ledger_entry(
                entry.entry_id,
                LedgerStatus.FAILED,
                memo=f"A2U failure: {reason}",
            )
            logger.critical("Payout FAILED for %s (%s, net %s): %s", address, kind.value, net, reason)
            return PayoutResult(success=False, reason=reason, net_amount=net, entry_id=entry.entry_id)
        except Exception as exc:
            reason = f"unexpected gateway error: {exc}"
            self.store.update_ledger_entry(
                entry.entry_id,
                LedgerStatus.FAILED,
                memo=f"A2U failure: {reason}",
            )
            logger.exception("Payout FAILED for %s (%s, net %s): %s", address, kind.value, net, reason)
            return PayoutResult(success=False, reason=reason, net_amount=net, entry_id=entry.entry_id)

        with self.store.atomic():
            self.store.update_ledger_entry(
                entry.entry_id,
                LedgerStatus.COMPLETED,
                external_reference=reference,
            )
            if apply is not None:
                apply()

        logger.info("Payout COMPLETED: %s to %s (%s), ref %s", net, address, kind.value, reference)
        return PayoutResult(
            success=True,
            reference=reference,
            net_amount=net,
            entry_id=entry.entry_id,
        )
