"""
Whale trim-back settlement.

Run once at sale close. Any account holding more than `whale_ratio` of the final
pool is refunded the excess and capped at the threshold. Each account is
independent: a failed refund is logged and the run moves on.
"""

import logging
import math
from datetime import datetime
from typing import Callable, Optional

from tokensale_app.config import SaleConfig
from tokensale_app.errors import InputRejectedError, StoreUnavailableError
from tokensale_app.schemas import Account, LedgerKind, SettlementResult, utc_now
from tokensale_app.services.payout import PayoutService
from tokensale_app.services.precision import normalize
from tokensale_app.services.run_lock import RunLock
from tokensale_app.store import RecordStore

logger = logging.getLogger(__name__)


class SettlementEngine:
    job_name = "settlement"

    def __init__(
        self,
        store: RecordStore,
        payouts: PayoutService,
        config: SaleConfig,
        run_lock: Optional[RunLock] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.payouts = payouts
        self.config = config
        self.run_lock = run_lock or RunLock(config.run_lease_seconds)
        self._clock = clock

    def run(self, final_pool: Optional[float] = None) -> SettlementResult:
        """Trim every whale back to the threshold. Pool is summed from the store when omitted."""
        if final_pool is not None and (
            isinstance(final_pool, bool) or not math.isfinite(final_pool) or final_pool <= 0
        ):
            raise InputRejectedError(f"final_pool must be > 0, got {final_pool!r}")

        with self.run_lock.hold(self.job_name):
            return self._run(final_pool)

    def _run(self, final_pool: Optional[float]) -> SettlementResult:
        logger.info("Whale settlement triggered (pool=%s)", final_pool if final_pool is not None else "derived")
        try:
            pool = final_pool if final_pool is not None else self.store.sum_contributed()
            if pool <= 0:
                raise InputRejectedError("Settlement aborted: no liquidity in the pool")
            threshold = normalize(pool * self.config.whale_ratio)
            whales = self.store.find_accounts(min_contributed_gt=threshold)
        except StoreUnavailableError as exc:
            logger.critical("SETTLEMENT_ERROR: account enumeration failed: %s", exc)
            return SettlementResult(success=False, error=str(exc))

        logger.info("Water level %s, threshold %s, %d accounts over the cap", pool, threshold, len(whales))

        result = SettlementResult(success=True, pool=pool, threshold=threshold)
        for account in whales:
            excess = normalize(account.contributed - threshold)
            if excess <= 0:
                continue

            logger.warning("Whale cap triggered: %s surplus %s", account.address, excess)
            try:
                payout = self.payouts.pay(
                    account.address,
                    excess,
                    LedgerKind.REFUND,
                    apply=lambda address=account.address: self._cap(address, threshold),
                )
            except StoreUnavailableError as exc:
                logger.critical("SETTLEMENT_ERROR: store lost while settling %s: %s", account.address, exc)
                result.success = False
                result.error = str(exc)
                return result

            if not payout.success:
                logger.critical("PAYOUT_FAILED for %s: %s", account.address, payout.reason)
                result.failed.append(account.address)
                continue

            result.total_refunded = normalize(result.total_refunded + excess)
            result.whales_impacted += 1
            logger.info("Settlement success: %s returned to %s", excess, account.address)

        logger.info(
            "Settlement finalized. Total refunded: %s | Accounts capped: %d | Failed: %d",
            result.total_refunded,
            result.whales_impacted,
            len(result.failed),
        )
        return result

    def _cap(self, address: str, threshold: float) -> None:
        account = self.store.get_account(address) or Account(address=address)
        account.contributed = threshold
        account.is_whale = True
        account.last_settlement_at = self._clock()
        self.store.upsert_account(account)
