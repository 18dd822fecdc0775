from typing import List

import numpy as np

from tokensale_app.config import SaleConfig
from tokensale_app.schemas import Account
from tokensale_app.services.precision import normalize


def compute_release_schedule(account: Account, config: SaleConfig):
    """Project the remaining monthly tranches for one account."""
    tranche = normalize(account.allocated * config.tranche_ratio)
    remaining = 0 if account.is_whale else max(0, config.vesting_tranches - account.tranches_completed)
    monthly = np.zeros(config.vesting_tranches, dtype=float)
    monthly[:remaining] = tranche

    # Never project more than is still locked.
    cumulative = np.minimum(np.cumsum(monthly), account.remaining_vesting)
    monthly = np.diff(cumulative, prepend=0.0)

    return {
        "address": account.address,
        "tranche": tranche,
        "tranches_completed": account.tranches_completed,
        "monthly_release": [normalize(v) for v in monthly.tolist()],
        "cumulative_release": [normalize(v) for v in cumulative.tolist()],
        "locked": normalize(account.remaining_vesting),
    }


def compute_pool_release_table(accounts: List[Account], config: SaleConfig):
    """Aggregate projected vesting releases across all compliant accounts, month by month."""
    horizon = config.vesting_tranches
    total_monthly = np.zeros(horizon, dtype=float)
    vesting_accounts = 0

    for account in accounts:
        if account.is_whale or account.contributed <= 0:
            continue
        schedule = compute_release_schedule(account, config)
        total_monthly += np.array(schedule["monthly_release"], dtype=float)
        vesting_accounts += 1

    cumulative = np.cumsum(total_monthly)
    already_released = float(sum(a.released for a in accounts))

    rows = []
    for m in range(horizon):
        circulating = already_released + float(cumulative[m])
        rows.append({
            "month": m + 1,
            "label": f"T+{m + 1}M",
            "monthly_release": normalize(float(total_monthly[m])),
            "cumulative_release": normalize(float(cumulative[m])),
            "circulating_pct": normalize(circulating / config.ipo_pool_supply * 100),
        })

    peak_idx = int(np.argmax(total_monthly)) if horizon > 0 else 0
    return {
        "rows": rows,
        "summary": {
            "vesting_accounts": vesting_accounts,
            "already_released": normalize(already_released),
            "total_projected": normalize(float(cumulative[-1])) if horizon > 0 else 0.0,
            "peak_month_label": f"T+{peak_idx + 1}M",
            "peak_monthly_release": normalize(float(total_monthly[peak_idx])) if horizon > 0 else 0.0,
        },
    }
