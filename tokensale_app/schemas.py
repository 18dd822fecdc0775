import enum
import math
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

# Upper bound of the per-account tranche counter; SaleConfig.vesting_tranches may not exceed it.
MAX_VESTING_TRANCHES = 10


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class LedgerKind(str, enum.Enum):
    CONTRIBUTION = "CONTRIBUTION"
    REFUND = "REFUND"
    DIVIDEND = "DIVIDEND"
    VESTING_RELEASE = "VESTING_RELEASE"


class LedgerStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self is not LedgerStatus.PENDING


# ── Records ──────────────────────────────────────────────────────────────────

class Account(BaseModel):
    """One pioneer wallet. Identity is `address`; accounts are never deleted by the engines."""

    address: str
    contributed: float = 0.0
    allocated: float = 0.0
    released: float = 0.0
    tranches_completed: int = 0
    is_whale: bool = False
    last_contribution_at: Optional[datetime] = None
    last_settlement_at: Optional[datetime] = None

    @field_validator("address")
    @classmethod
    def address_required(cls, v):
        vv = str(v).strip()
        if not vv:
            raise ValueError("address is required")
        return vv

    @field_validator("contributed", "allocated", "released")
    @classmethod
    def non_negative(cls, v, info):
        if v < 0:
            raise ValueError(f"{info.field_name} cannot be negative")
        return v

    @field_validator("tranches_completed")
    @classmethod
    def tranche_range(cls, v):
        if v < 0 or v > MAX_VESTING_TRANCHES:
            raise ValueError(f"tranches_completed must be between 0 and {MAX_VESTING_TRANCHES}")
        return v

    @model_validator(mode="after")
    def clamp_released(self):
        # The store re-validates on every write, so this holds for persisted records.
        if self.released > self.allocated:
            self.released = self.allocated
        return self

    @property
    def remaining_vesting(self) -> float:
        return max(0.0, self.allocated - self.released)


class LedgerEntry(BaseModel):
    """One money movement attempt. Terminal once COMPLETED or FAILED."""

    entry_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    address: str
    amount: float
    kind: LedgerKind
    status: LedgerStatus = LedgerStatus.PENDING
    external_reference: Optional[str] = None
    memo: str = ""
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("amount")
    @classmethod
    def amount_non_negative(cls, v):
        if v < 0:
            raise ValueError("ledger amount cannot be negative")
        return v


# ── Requests ─────────────────────────────────────────────────────────────────

class ContributionRequest(BaseModel):
    address: str
    amount: float
    external_reference: str
    # Token grant decided at issuance; priced at the post-contribution spot price when omitted.
    allocation: Optional[float] = None

    @field_validator("address", "external_reference")
    @classmethod
    def required_text(cls, v, info):
        vv = str(v).strip()
        if not vv:
            raise ValueError(f"{info.field_name} is required")
        return vv

    @field_validator("amount")
    @classmethod
    def positive_amount(cls, v):
        if not math.isfinite(v) or v <= 0:
            raise ValueError("amount must be > 0")
        return v

    @field_validator("allocation")
    @classmethod
    def allocation_non_negative(cls, v):
        if v is None:
            return v
        if not math.isfinite(v) or v < 0:
            raise ValueError("allocation must be >= 0")
        return v


class DividendRequest(BaseModel):
    total_pot: float

    @field_validator("total_pot")
    @classmethod
    def positive_pot(cls, v):
        if not math.isfinite(v) or v <= 0:
            raise ValueError("total_pot must be > 0")
        return v


class SettlementRequest(BaseModel):
    # Derived from the store when omitted.
    final_pool: Optional[float] = None

    @field_validator("final_pool")
    @classmethod
    def positive_pool(cls, v):
        if v is None:
            return v
        if not math.isfinite(v) or v <= 0:
            raise ValueError("final_pool must be > 0")
        return v


class LoginRequest(BaseModel):
    username: str
    password: str


# ── Results ──────────────────────────────────────────────────────────────────

class PayoutResult(BaseModel):
    success: bool
    reference: Optional[str] = None
    reason: Optional[str] = None
    net_amount: float = 0.0
    entry_id: Optional[str] = None


class SettlementResult(BaseModel):
    success: bool
    total_refunded: float = 0.0
    whales_impacted: int = 0
    pool: float = 0.0
    threshold: float = 0.0
    failed: List[str] = Field(default_factory=list)
    error: Optional[str] = None


class VestingResult(BaseModel):
    success: bool
    released_count: int = 0
    total_released: float = 0.0
    eligible: int = 0
    failed: List[str] = Field(default_factory=list)
    error: Optional[str] = None


class DividendResult(BaseModel):
    success: bool
    total_pot: float = 0.0
    ceiling: float = 0.0
    total_distributed: float = 0.0
    paid_count: int = 0
    capped_count: int = 0
    failed: List[str] = Field(default_factory=list)
    error: Optional[str] = None


class ContributionReceipt(BaseModel):
    address: str
    contribution: float
    total_contributed: float
    allocated: float
    external_reference: str
    recorded_at: datetime


class PriceSnapshot(BaseModel):
    pool: float
    spot_price: str
    display_price: str
    timestamp: datetime


class PoolStats(BaseModel):
    pioneer_count: int
    pool: float
    spot_price: str
    user_stake: float
    alpha_gain: float
    share_pct: float
    is_whale: bool
    compliance_status: str
    vesting_completed: int
    vesting_remaining: int


class ReconciliationReport(BaseModel):
    failed: List[LedgerEntry] = Field(default_factory=list)
    stale_pending: List[LedgerEntry] = Field(default_factory=list)
    totals_by_kind: Dict[str, float] = Field(default_factory=dict)
    generated_at: datetime = Field(default_factory=utc_now)

    @property
    def needs_attention(self) -> bool:
        return bool(self.failed or self.stale_pending)


class WhaleAuditRow(BaseModel):
    address: str
    contributed: float
    share_pct: float


class WhaleAuditReport(BaseModel):
    pool: float
    threshold: float
    whales: List[WhaleAuditRow] = Field(default_factory=list)
    pioneer_count: int = 0
