"""
Pydantic schemas for API request/response models.

These models define the contract for the REST API and ensure proper
validation and serialization of data.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from enum import Enum
from pydantic import BaseModel, Field, field_validator, model_validator

from cognitive_profiler.models.contracts import (
    MAX_TEXT_LENGTH,
    AggregateResult,
    AnalysisKind,
    AnalysisRequest,
    CreditBalance,
    CreditLogEntry,
    ProgressSnapshot,
    ProviderId,
)

# Names shown to end users for each provider
PROVIDER_DISPLAY_NAMES: Dict[ProviderId, str] = {
    ProviderId.OPENAI: "Zhi1",
    ProviderId.ANTHROPIC: "Zhi2",
    ProviderId.DEEPSEEK: "Zhi3",
    ProviderId.PERPLEXITY: "Zhi4",
}


class RunStatus(str, Enum):
    """Run execution status."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class AnalyzeRequest(BaseModel):
    """Request body for the analysis endpoints."""
    text: str = Field(
        ...,
        description="Text to analyze",
        min_length=1,
        max_length=MAX_TEXT_LENGTH
    )
    additional_context: Optional[str] = Field(
        default=None,
        description="Free-text context passed to every provider",
        max_length=10_000
    )
    kind: AnalysisKind = Field(
        default=AnalysisKind.COGNITIVE,
        description="Requested profile type"
    )
    account_id: str = Field(
        ...,
        description="Account billed for the analysis",
        min_length=1,
        max_length=255
    )
    providers: Optional[List[ProviderId]] = Field(
        default=None,
        description="Providers to query; all providers when omitted",
        min_length=1
    )

    @field_validator("text")
    @classmethod
    def validate_text(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("text must not be blank")
        return v

    def to_analysis_request(self) -> AnalysisRequest:
        return AnalysisRequest(
            text=self.text,
            additional_context=self.additional_context,
            kind=self.kind,
            account_id=self.account_id,
            providers=tuple(self.providers or ProviderId),
        )


class AnalysisResponse(BaseModel):
    """Response model for the synchronous analysis endpoint."""
    run_id: str
    status: RunStatus
    partial_success: bool = Field(
        default=False,
        description="At least one provider produced a live or preview payload"
    )
    result: Optional[AggregateResult] = None


class RunStatusResponse(BaseModel):
    """Response model for run creation and polling."""
    run_id: str
    status: RunStatus
    progress: ProgressSnapshot
    result: Optional[AggregateResult] = None
    error: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


class ProviderInfo(BaseModel):
    """A provider and whether this deployment can call it."""
    provider: ProviderId
    display_name: str
    configured: bool
    timeout_seconds: float


class CostsResponse(BaseModel):
    """Credit cost per analysis kind and provider."""
    costs: Dict[str, Dict[str, int]]


class CreditPackage(BaseModel):
    """A purchasable credit package."""
    price_usd: int
    credits: int
    price_id: str


class BalanceView(BaseModel):
    """Balance of one provider for an account."""
    provider: ProviderId
    balance: int
    held: int
    available: int

    @classmethod
    def from_balance(cls, balance: CreditBalance) -> "BalanceView":
        return cls(
            provider=balance.provider,
            balance=balance.balance,
            held=balance.held,
            available=balance.available,
        )


class CreditBalancesResponse(BaseModel):
    """All provider balances for an account."""
    account_id: str
    balances: List[BalanceView] = []


class DepositRequest(BaseModel):
    """Credit deposit, either a raw amount or a package purchase."""
    provider: ProviderId
    amount: Optional[int] = Field(
        default=None,
        description="Credits to add",
        gt=0
    )
    package_price_usd: Optional[int] = Field(
        default=None,
        description="Price of the purchased credit package"
    )

    @model_validator(mode="after")
    def validate_amount_or_package(self):
        if (self.amount is None) == (self.package_price_usd is None):
            raise ValueError("Provide exactly one of amount or package_price_usd")
        return self


class DepositResponse(BaseModel):
    """Result of a deposit."""
    account_id: str
    provider: ProviderId
    deposited: int
    balance_after: int


class CreditHistoryResponse(BaseModel):
    """Recent balance mutations for an account, newest first."""
    account_id: str
    entries: List[CreditLogEntry] = []


class HealthCheck(BaseModel):
    """Health check response."""
    status: str = "healthy"
    timestamp: datetime
    version: str
    uptime_seconds: float
    dependencies: Dict[str, str] = {}  # dependency_name -> status


class ErrorResponse(BaseModel):
    """Error response model."""
    error: str
    message: str
    details: Optional[Dict[str, Any]] = None
    timestamp: datetime
