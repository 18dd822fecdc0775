"""
Sale configuration.

Every engine receives one frozen `SaleConfig` at construction. Values come from
the defaults below, overridden by `TOKENSALE_*` environment variables (a local
`.env` file is loaded first when present).
"""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from tokensale_app.schemas import MAX_VESTING_TRANCHES

logger = logging.getLogger(__name__)

_ENV_PREFIX = "TOKENSALE_"
_ROOT_DIR = Path(__file__).resolve().parent.parent


class SaleConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    # ── Supply ──
    ipo_pool_supply: float = 2_181_818
    total_mint: float = 4_000_000
    lp_pool_reserve: float = 1_818_182
    precision_digits: int = 6

    # ── Ratios ──
    whale_ratio: float = 0.10
    dividend_ceiling_ratio: float = 0.10
    tranche_ratio: float = 0.10
    vesting_tranches: int = 10
    alpha_uplift: float = 1.20

    # ── Payment network ──
    network_fee: float = 0.01
    payment_api_url: str = "https://api.minepi.com/v2/payments"
    payment_api_key: Optional[str] = None
    payment_timeout_seconds: float = 15.0

    # ── Operations ──
    run_lease_seconds: int = 3_600
    stale_pending_seconds: int = 900
    audit_log_dir: str = str(_ROOT_DIR / "logs")
    data_file: str = str(_ROOT_DIR / "data" / "ledger.json")

    # ── Admin access ──
    admin_username: str = "admin"
    admin_salt: str = ""
    admin_password_hash: str = ""
    admin_iterations: int = 600_000
    session_ttl_seconds: int = 86_400

    @field_validator("ipo_pool_supply", "total_mint", "payment_timeout_seconds")
    @classmethod
    def positive(cls, v, info):
        if v <= 0:
            raise ValueError(f"{info.field_name} must be > 0")
        return v

    @field_validator("whale_ratio", "dividend_ceiling_ratio", "tranche_ratio")
    @classmethod
    def ratio_range(cls, v, info):
        if v <= 0 or v > 1:
            raise ValueError(f"{info.field_name} must be in (0, 1]")
        return v

    @field_validator("network_fee", "lp_pool_reserve")
    @classmethod
    def non_negative(cls, v, info):
        if v < 0:
            raise ValueError(f"{info.field_name} must be >= 0")
        return v

    @field_validator("vesting_tranches", "precision_digits")
    @classmethod
    def positive_int(cls, v, info):
        if v < 1:
            raise ValueError(f"{info.field_name} must be >= 1")
        return v

    @field_validator("vesting_tranches")
    @classmethod
    def tranche_limit(cls, v):
        if v > MAX_VESTING_TRANCHES:
            raise ValueError(f"vesting_tranches must be <= {MAX_VESTING_TRANCHES}")
        return v

    @model_validator(mode="after")
    def check_mint_split(self):
        if abs(self.ipo_pool_supply + self.lp_pool_reserve - self.total_mint) > 1e-6:
            logger.warning(
                "Mint split mismatch: IPO pool %s + LP reserve %s != total mint %s",
                self.ipo_pool_supply,
                self.lp_pool_reserve,
                self.total_mint,
            )
        return self


def load_config(env_file: Optional[Path] = None, **overrides) -> SaleConfig:
    """Build a SaleConfig from `.env`, the environment and explicit overrides."""
    env_path = env_file or (_ROOT_DIR / ".env")
    if env_path.exists():
        load_dotenv(env_path)
        logger.info("Loaded environment from %s", env_path)

    values = {}
    for name in SaleConfig.model_fields:
        raw = os.environ.get(_ENV_PREFIX + name.upper())
        if raw is not None:
            values[name] = raw
    values.update(overrides)
    return SaleConfig(**values)
