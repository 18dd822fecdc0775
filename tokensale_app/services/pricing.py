import logging
import math
from typing import List, Optional

import numpy as np

from tokensale_app.config import SaleConfig
from tokensale_app.schemas import Account, PoolStats, PriceSnapshot, WhaleAuditReport, WhaleAuditRow, utc_now
from tokensale_app.services.precision import _as_number, format_currency, is_within_cap, normalize, percent_of
from tokensale_app.store import RecordStore

logger = logging.getLogger(__name__)

DEFAULT_IPO_SUPPLY = SaleConfig.model_fields["ipo_pool_supply"].default


def spot_price(pool_liquidity, supply: float = DEFAULT_IPO_SUPPLY) -> float:
    """Scarcity price: fixed supply / current pool. 0.0 for an empty or invalid pool."""
    if pool_liquidity is None or isinstance(pool_liquidity, bool):
        return 0.0
    try:
        pool = float(pool_liquidity)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(pool) or pool <= 0:
        return 0.0
    return supply / pool


def _format_fixed(price, digits: int) -> str:
    try:
        value = float(price)
    except (TypeError, ValueError):
        value = math.nan
    if not math.isfinite(value):
        value = 0.0
    return f"{value:.{digits}f}"


def format_price(price) -> str:
    """6-digit audit format."""
    return _format_fixed(price, 6)


def format_price_for_display(price) -> str:
    """4-digit dashboard format."""
    return _format_fixed(price, 4)


def alpha_gain(contribution, uplift: float = 1.20) -> float:
    """Early-participant uplift, display only; never used in settlement math."""
    amount = _as_number(contribution)
    if amount is None or amount <= 0:
        return 0.0
    return normalize(amount * uplift)


def price_snapshot(store: RecordStore, config: SaleConfig) -> PriceSnapshot:
    """Daily recalibration: current water level and the price it implies."""
    pool = store.sum_contributed()
    price = spot_price(pool, config.ipo_pool_supply)
    snapshot = PriceSnapshot(
        pool=normalize(pool),
        spot_price=format_price(price),
        display_price=format_price_for_display(price),
        timestamp=utc_now(),
    )
    logger.info("Market snapshot. Pool: %s | Spot price: %s", snapshot.pool, snapshot.spot_price)
    return snapshot


def pool_stats(store: RecordStore, config: SaleConfig, address: Optional[str] = None) -> PoolStats:
    pool = store.sum_contributed()
    account = store.get_account(address) if address else None
    stake = account.contributed if account else 0.0
    share = percent_of(stake, pool)
    whale = not is_within_cap(stake, pool, config.whale_ratio)
    completed = account.tranches_completed if account else 0
    return PoolStats(
        pioneer_count=store.count_accounts(),
        pool=normalize(pool),
        spot_price=format_currency(spot_price(pool, config.ipo_pool_supply), 6),
        user_stake=normalize(stake),
        alpha_gain=alpha_gain(stake, config.alpha_uplift),
        share_pct=share,
        is_whale=whale,
        compliance_status="PENDING_FINAL_SETTLEMENT" if whale else "COMPLIANT",
        vesting_completed=completed,
        vesting_remaining=config.vesting_tranches - completed,
    )


def whale_audit(accounts: List[Account], pool: float, config: SaleConfig) -> WhaleAuditReport:
    """Advisory scan of concentration during the sale. Does not touch `is_whale`."""
    threshold = normalize(pool * config.whale_ratio) if pool > 0 else 0.0
    report = WhaleAuditReport(pool=normalize(pool), threshold=threshold, pioneer_count=len(accounts))
    if not accounts or pool <= 0:
        return report

    contributed = np.array([a.contributed for a in accounts], dtype=float)
    over = np.flatnonzero(contributed > threshold)
    for idx in over[np.argsort(-contributed[over], kind="stable")]:
        account = accounts[int(idx)]
        report.whales.append(WhaleAuditRow(
            address=account.address,
            contributed=normalize(account.contributed),
            share_pct=percent_of(account.contributed, pool),
        ))
        logger.warning(
            "Whale flagged (advisory): %s holds %s%% of the pool",
            account.address,
            report.whales[-1].share_pct,
        )
    return report
