"""
Profit-sharing distribution.

share = allocated / fixed supply * pot, capped at `dividend_ceiling_ratio` of the
pot for this round. Accounts are read but never mutated.
"""

import logging
import math
from typing import Optional

from tokensale_app.config import SaleConfig
from tokensale_app.errors import InputRejectedError, StoreUnavailableError
from tokensale_app.schemas import DividendResult, LedgerKind
from tokensale_app.services.payout import PayoutService
from tokensale_app.services.precision import normalize
from tokensale_app.services.run_lock import RunLock
from tokensale_app.store import RecordStore

logger = logging.getLogger(__name__)


class DividendEngine:
    job_name = "dividend"

    def __init__(
        self,
        store: RecordStore,
        payouts: PayoutService,
        config: SaleConfig,
        run_lock: Optional[RunLock] = None,
    ):
        self.store = store
        self.payouts = payouts
        self.config = config
        self.run_lock = run_lock or RunLock(config.run_lease_seconds)

    def run(self, total_pot: float) -> DividendResult:
        if (
            total_pot is None
            or isinstance(total_pot, bool)
            or not math.isfinite(total_pot)
            or total_pot <= 0
        ):
            raise InputRejectedError(f"total_pot must be > 0, got {total_pot!r}")

        with self.run_lock.hold(self.job_name):
            return self._run(total_pot)

    def _run(self, total_pot: float) -> DividendResult:
        logger.info("Dividend cycle started. Total pot: %s", total_pot)
        ceiling = normalize(total_pot * self.config.dividend_ceiling_ratio)
        try:
            holders = self.store.find_accounts(min_contributed_gt=0)
        except StoreUnavailableError as exc:
            logger.critical("Dividend engine failure: %s", exc)
            return DividendResult(success=False, total_pot=total_pot, ceiling=ceiling, error=str(exc))

        result = DividendResult(success=True, total_pot=total_pot, ceiling=ceiling)
        for account in holders:
            share = normalize(account.allocated / self.config.ipo_pool_supply * total_pot)
            if share > ceiling:
                logger.warning(
                    "Dividend ceiling hit for %s: %s capped at %s",
                    account.address,
                    share,
                    ceiling,
                )
                share = ceiling
                result.capped_count += 1

            if share <= 0:
                continue

            try:
                payout = self.payouts.pay(account.address, share, LedgerKind.DIVIDEND)
            except StoreUnavailableError as exc:
                logger.critical("Dividend engine failure at %s: %s", account.address, exc)
                result.success = False
                result.error = str(exc)
                return result

            if not payout.success:
                logger.critical("Dividend transfer FAILED for %s: %s", account.address, payout.reason)
                result.failed.append(account.address)
                continue

            result.paid_count += 1
            result.total_distributed = normalize(result.total_distributed + share)

        logger.info(
            "Dividend cycle finalized. Dispatched %s to %d holders (%d failed)",
            result.total_distributed,
            result.paid_count,
            len(result.failed),
        )
        return result
