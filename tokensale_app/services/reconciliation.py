import logging
from datetime import datetime, timedelta
from typing import Optional

from tokensale_app.config import SaleConfig
from tokensale_app.schemas import LedgerStatus, ReconciliationReport, utc_now
from tokensale_app.services.precision import normalize
from tokensale_app.store import RecordStore

logger = logging.getLogger(__name__)


def reconcile(store: RecordStore, config: SaleConfig, now: Optional[datetime] = None) -> ReconciliationReport:
    """
    Collect ledger entries an operator has to resolve by hand.

    FAILED entries are payouts the network refused. PENDING entries older than
    `stale_pending_seconds` were attempted but never confirmed, which is what a
    crash between the external call and the ledger update leaves behind. Nothing
    is re-paid from here.
    """
    now = now or utc_now()
    cutoff = now - timedelta(seconds=config.stale_pending_seconds)

    failed = store.list_ledger(status=LedgerStatus.FAILED)
    stale = [e for e in store.list_ledger(status=LedgerStatus.PENDING) if e.created_at <= cutoff]

    totals = {}
    for entry in failed + stale:
        totals[entry.kind.value] = normalize(totals.get(entry.kind.value, 0.0) + entry.amount)

    report = ReconciliationReport(
        failed=sorted(failed, key=lambda e: e.created_at),
        stale_pending=sorted(stale, key=lambda e: e.created_at),
        totals_by_kind=totals,
        generated_at=now,
    )
    if report.needs_attention:
        logger.warning(
            "Reconciliation: %d failed and %d stale pending payouts need operator action (%s)",
            len(report.failed),
            len(report.stale_pending),
            ", ".join(f"{k}={v}" for k, v in sorted(totals.items())),
        )
    else:
        logger.info("Reconciliation: ledger clean")
    return report
