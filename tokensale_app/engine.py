"""Wiring: one store, one payout path and one run lock shared by every trigger source."""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from tokensale_app.config import SaleConfig
from tokensale_app.errors import InputRejectedError
from tokensale_app.services.dividend import DividendEngine
from tokensale_app.services.gateway import A2UPaymentClient, PaymentGateway
from tokensale_app.services.payout import PayoutService
from tokensale_app.services.pricing import price_snapshot
from tokensale_app.services.run_lock import RunLock
from tokensale_app.services.settlement import SettlementEngine
from tokensale_app.services.vesting import VestingEngine
from tokensale_app.store import InMemoryRecordStore, RecordStore

logger = logging.getLogger(__name__)


@dataclass
class TokenSaleEngine:
    config: SaleConfig
    store: RecordStore
    payouts: PayoutService
    run_lock: RunLock
    settlement: SettlementEngine
    vesting: VestingEngine
    dividends: DividendEngine

    def scheduled_jobs(self) -> Dict[str, Callable[[], object]]:
        return {
            "price_snapshot": lambda: price_snapshot(self.store, self.config),
            "settlement": self._scheduled_settlement,
            "vesting": self.vesting.run,
        }

    def _scheduled_settlement(self):
        try:
            return self.settlement.run()
        except InputRejectedError as exc:
            logger.info("Scheduled settlement skipped: %s", exc)
            return None


def build_engine(
    config: SaleConfig,
    store: Optional[RecordStore] = None,
    gateway: Optional[PaymentGateway] = None,
) -> TokenSaleEngine:
    store = store if store is not None else InMemoryRecordStore()
    gateway = gateway if gateway is not None else A2UPaymentClient.from_config(config)
    run_lock = RunLock(config.run_lease_seconds)
    payouts = PayoutService(store, gateway, config)
    return TokenSaleEngine(
        config=config,
        store=store,
        payouts=payouts,
        run_lock=run_lock,
        settlement=SettlementEngine(store, payouts, config, run_lock),
        vesting=VestingEngine(store, payouts, config, run_lock),
        dividends=DividendEngine(store, payouts, config, run_lock),
    )
