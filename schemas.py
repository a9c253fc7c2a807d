from datetime import date, datetime
from typing import Optional, Literal, Dict, List, Any
from pydantic import BaseModel, ConfigDict, Field


# =========================
# Settlement API (raw stack entries)
# =========================
class RawEntry(BaseModel):
    """One accepted action from the bid or offer settlement stack."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    bmu_id: str = Field(alias="id")
    volume: float
    so_flag: bool = Field(False, alias="soFlag")
    cadl_flag: Optional[bool] = Field(False, alias="cadlFlag")
    original_price: float = Field(alias="originalPrice")
    final_price: Optional[float] = Field(None, alias="finalPrice")
    side: Optional[Literal["bid", "offer"]] = None


class CurtailmentRecordIn(BaseModel):
    settlement_date: date
    settlement_period: int = Field(..., ge=1, le=48)
    farm_id: str
    lead_party_name: Optional[str] = None
    volume: float
    payment: float
    original_price: float
    final_price: float
    so_flag: bool = False
    cadl_flag: bool = False


class CurtailmentRecordRead(BaseModel):
    id: int
    settlement_date: date
    settlement_period: int
    farm_id: str
    lead_party_name: Optional[str] = None
    volume: float
    payment: float
    original_price: float
    final_price: float
    so_flag: bool
    cadl_flag: bool
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class ValidationOutcome(BaseModel):
    records: List[CurtailmentRecordIn] = Field(default_factory=list)
    entries_seen: int = 0
    dropped: Dict[str, int] = Field(default_factory=dict)  # reason -> count
    merged: int = 0

    @property
    def dropped_total(self) -> int:
        return sum(self.dropped.values())


# =========================
# Reconciliation
# =========================
class ChangedPair(BaseModel):
    authoritative: CurtailmentRecordIn
    persisted: CurtailmentRecordIn
    fields: List[str] = Field(default_factory=list)


class ReconciliationDiff(BaseModel):
    missing: List[CurtailmentRecordIn] = Field(default_factory=list)
    changed: List[ChangedPair] = Field(default_factory=list)
    identical: List[CurtailmentRecordIn] = Field(default_factory=list)
    stale: List[str] = Field(default_factory=list)  # farm ids stored but no longer authoritative
    kept: List[str] = Field(default_factory=list)  # stale farm ids carried over after an incomplete fetch

    @property
    def needs_replace(self) -> bool:
        return bool(self.missing or self.changed or self.stale)


class PeriodResult(BaseModel):
    settlement_date: date
    settlement_period: int
    status: Literal["ok", "unchanged", "partial", "failed"] = "ok"
    records_found: int = 0
    records_inserted: int = 0
    records_dropped: int = 0
    missing: int = 0
    changed: int = 0
    identical: int = 0
    stale: int = 0
    kept: int = 0
    volume: float = 0.0
    payment: float = 0.0
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status != "failed"


class BitcoinRunStats(BaseModel):
    calculations_written: int = 0
    calculations_failed: int = 0
    dates_failed: int = 0
    bitcoin_by_model: Dict[str, float] = Field(default_factory=dict)
    errors: List[str] = Field(default_factory=list)


class RunReport(BaseModel):
    run_id: Optional[int] = None
    start_date: date
    end_date: date
    start_period: int
    end_period: int
    status: Literal["completed", "partial", "failed"] = "completed"
    periods_requested: int = 0
    periods_succeeded: int = 0
    periods_failed: int = 0
    records_found: int = 0
    records_inserted: int = 0
    records_dropped: int = 0
    missing: int = 0
    changed: int = 0
    identical: int = 0
    total_volume: float = 0.0
    total_payment: float = 0.0
    expected_total: Optional[float] = None  # GBP, compared with total_payment
    deviation_pct: Optional[float] = None
    dates_touched: List[date] = Field(default_factory=list)
    failed_periods: List[str] = Field(default_factory=list)  # "YYYY-MM-DD P24"
    errors: List[str] = Field(default_factory=list)
    bitcoin: BitcoinRunStats = Field(default_factory=BitcoinRunStats)
    periods: List[PeriodResult] = Field(default_factory=list)


# =========================
# Summaries
# =========================
class DailySummaryRead(BaseModel):
    summary_date: date
    total_curtailed_energy: float
    total_payment: float
    record_count: int
    last_updated: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class MonthlySummaryRead(BaseModel):
    year_month: str
    total_curtailed_energy: float
    total_payment: float
    last_updated: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class YearlySummaryRead(BaseModel):
    year: str
    total_curtailed_energy: float
    total_payment: float
    last_updated: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class BitcoinSummaryRead(BaseModel):
    period_key: str  # date / year-month / year
    miner_model: str
    bitcoin_mined: float


class BitcoinEstimate(BaseModel):
    energy_mwh: float
    miner_model: str
    settlement_date: date
    difficulty: float
    block_reward: float
    bitcoin_mined: float


# =========================
# Admin tasks
# =========================
class ReconcileRequest(BaseModel):
    start_date: date
    end_date: Optional[date] = None
    start_period: int = Field(1, ge=1, le=48)
    end_period: int = Field(48, ge=1, le=48)
    expected_total: Optional[float] = Field(None, gt=0)
    sequential: bool = False


class BitcoinRequest(BaseModel):
    start_date: date
    end_date: Optional[date] = None
    miner_models: Optional[List[str]] = None


class VerifyResponse(BaseModel):
    settlement_date: date
    needs_reprocessing: bool
    empty_periods: List[int] = Field(default_factory=list)
    periods_missing_bitcoin: Dict[str, List[int]] = Field(default_factory=dict)
    details: Dict[str, Any] = Field(default_factory=dict)


class ReconciliationRunRead(BaseModel):
    id: int
    trigger: str
    start_date: date
    end_date: date
    start_period: int
    end_period: int
    status: str
    periods_requested: int
    periods_succeeded: int
    periods_failed: int
    records_inserted: int
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)
