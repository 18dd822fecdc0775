"""
Monthly vesting release.

Each compliant account (contributed, under the tranche limit, not a whale)
receives `tranche_ratio` of its allocation per run. Progress is only recorded
after a confirmed payout.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from tokensale_app.config import SaleConfig
from tokensale_app.errors import StoreUnavailableError
from tokensale_app.schemas import LedgerKind, VestingResult, utc_now
from tokensale_app.services.payout import PayoutService
from tokensale_app.services.precision import normalize
from tokensale_app.services.run_lock import RunLock
from tokensale_app.store import RecordStore

logger = logging.getLogger(__name__)


class VestingEngine:
    job_name = "vesting"

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

    def run(self) -> VestingResult:
        with self.run_lock.hold(self.job_name):
            return self._run()

    def _run(self) -> VestingResult:
        logger.info("Vesting engine: monthly tranche release initiated")
        try:
            accounts = self.store.find_accounts(
                min_contributed_gt=0,
                max_tranches_lt=self.config.vesting_tranches,
                is_whale=False,
            )
        except StoreUnavailableError as exc:
            logger.critical("Vesting run aborted: %s", exc)
            return VestingResult(success=False, error=str(exc))

        result = VestingResult(success=True, eligible=len(accounts))
        if not accounts:
            logger.info("Idle: no pending vesting tranches")
            return result

        for account in accounts:
            tranche = normalize(account.allocated * self.config.tranche_ratio)
            if tranche <= 0:
                continue

            try:
                payout = self.payouts.pay(
                    account.address,
                    tranche,
                    LedgerKind.VESTING_RELEASE,
                    apply=lambda address=account.address, amount=tranche: self._advance(address, amount),
                )
            except StoreUnavailableError as exc:
                logger.critical("Vesting run aborted at %s: %s", account.address, exc)
                result.success = False
                result.error = str(exc)
                return result

            if not payout.success:
                logger.critical("PAYOUT_FAILURE %s: %s", account.address, payout.reason)
                result.failed.append(account.address)
                continue

            result.released_count += 1
            result.total_released = normalize(result.total_released + tranche)
            logger.info(
                "Tranche released %d/%d to %s",
                account.tranches_completed + 1,
                self.config.vesting_tranches,
                account.address,
            )

        logger.info(
            "Vesting cycle finalized: %d released, %d failed, total %s",
            result.released_count,
            len(result.failed),
            result.total_released,
        )
        return result

    def _advance(self, address: str, tranche: float) -> None:
        account = self.store.get_account(address)
        if account is None:
            raise StoreUnavailableError(f"Account {address} vanished during vesting")
        account.tranches_completed = min(account.tranches_completed + 1, self.config.vesting_tranches)
        account.released = normalize(min(account.allocated, account.released + tranche))
        account.last_contribution_at = self._clock()
        self.store.upsert_account(account)
