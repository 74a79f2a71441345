"""Pydantic request/response schemas for type safety.

Every schema serializes with camelCase aliases (weeklyAverage, normalRange,
monthlyData, ...) and accepts either camelCase or snake_case on input.
"""

from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel
from datetime import datetime, timezone
from typing import Optional, Literal


Severity = Literal["low", "medium", "high"]
AnomalyKind = Literal["spending_spike", "large_transaction"]
ScenarioType = Literal["expense", "income_change", "investment", "goal", "general"]


class CamelModel(BaseModel):
    """Base schema with camelCase wire names."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


# =============================================================================
# Transactions
# =============================================================================

class TransactionIn(CamelModel):
    amount: float = Field(ge=0, description="Non-negative amount")
    category: Optional[str] = None
    description: str = ""
    occurred_at: Optional[datetime] = Field(
        None, description="Defaults to the time of insertion"
    )
    kind: Literal["expense", "income"] = "expense"

    @field_validator("occurred_at")
    @classmethod
    def _as_naive_utc(cls, value):
        # Stored columns and the analysis windows are naive UTC
        if value is not None and value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value


class TransactionBatchRequest(CamelModel):
    transactions: list[TransactionIn] = Field(..., min_length=1)


class TransactionOut(CamelModel):
    id: int
    amount: float
    category: Optional[str] = None
    description: str
    occurred_at: datetime
    kind: str
    anomaly_checked: bool = False
    created_at: Optional[datetime] = None


class TransactionSummary(CamelModel):
    total_transactions: int
    total_expenses: float
    total_income: float
    net_amount: float
    category_breakdown: dict[str, float]


class TransactionHistoryResponse(CamelModel):
    success: bool = True
    transactions: list[TransactionOut]
    summary: TransactionSummary


class AddTransactionsResponse(CamelModel):
    success: bool = True
    inserted_count: int
    anomalies_detected: int
    message: str


# =============================================================================
# Spending Patterns & Anomalies
# =============================================================================

class SpendingPattern(CamelModel):
    """Per-category baseline. Derived on every detection, never stored."""
    category: str
    weekly_average: float = 0.0
    monthly_average: float = 0.0
    standard_deviation: float = 0.0
    current_week_spend: float = 0.0
    last_week_spend: float = 0.0


class Anomaly(CamelModel):
    category: str
    amount: float
    normal_range: str
    severity: Severity
    message: str
    kind: AnomalyKind
    multiplier: Optional[float] = None
    transaction: Optional[str] = None


class DetectRequest(CamelModel):
    transaction_ids: Optional[list[int]] = Field(
        None, description="Batch to check. Defaults to the user's unchecked transactions."
    )


class DetectResponse(CamelModel):
    success: bool = True
    anomalies_detected: int
    patterns: dict[str, SpendingPattern]
    anomalies: list[Anomaly]


class AlertOut(CamelModel):
    id: int
    kind: str
    category: Optional[str] = None
    message: str
    severity: str
    amount: float
    normal_range: Optional[str] = None
    created_at: datetime
    read: bool
    dismissed: bool


class AlertListResponse(CamelModel):
    success: bool = True
    alerts: list[AlertOut]


class AlertUpdateRequest(CamelModel):
    action: Literal["read", "dismiss"]


class MessageResponse(CamelModel):
    success: bool = True
    message: str


# =============================================================================
# Scenarios & Simulation
# =============================================================================

class FinancialSnapshot(CamelModel):
    monthly_income: float = Field(ge=0)
    monthly_expenses: float = Field(ge=0)
    current_savings: float


class ScenarioImpact(CamelModel):
    one_time_expense: float = 0.0
    monthly_income_change: float = 0.0
    monthly_expense_change: float = 0.0
    duration: Optional[int] = Field(None, ge=0, description="Months the income change lasts")

    @field_validator("one_time_expense", "monthly_income_change", "monthly_expense_change", mode="before")
    @classmethod
    def _null_as_zero(cls, value):
        return 0.0 if value is None else value


class ScenarioAnalysis(CamelModel):
    scenario_type: ScenarioType = "general"
    impact: ScenarioImpact = Field(default_factory=ScenarioImpact)
    description: str = ""
    risk_level: Severity = "medium"
    recommendations: list[str] = []
    source: Literal["ai", "fallback"] = "ai"


class MonthlyProjection(CamelModel):
    month: int
    balance: int
    income: float
    expenses: float
    net_change: float
    date: str


class SimulationSummary(CamelModel):
    initial_balance: float
    final_balance: int
    total_change: float
    average_monthly_change: int
    risk_level: str
    feasible: bool


class SimulationResult(CamelModel):
    monthly_data: list[MonthlyProjection]
    summary: SimulationSummary


class ScenarioRequest(CamelModel):
    scenario: str = Field(..., min_length=1, max_length=2000, description="Free-text what-if")
    timeframe: int = Field(12, ge=1, le=60, description="Months to project")
    snapshot: Optional[FinancialSnapshot] = None


class ScenarioResponse(CamelModel):
    success: bool = True
    analysis: ScenarioAnalysis
    simulation: SimulationResult
    scenario_id: int


class ScenarioHistoryItem(CamelModel):
    id: int
    scenario: str
    risk_level: str
    feasible: bool
    total_change: float
    created_at: datetime


class ScenarioHistoryResponse(CamelModel):
    success: bool = True
    scenarios: list[ScenarioHistoryItem]


# =============================================================================
# System
# =============================================================================

class HealthResponse(CamelModel):
    status: str
    database: str
    openai: str
