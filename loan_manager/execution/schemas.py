"""Execution-layer schemas.

Exchange payloads (Subaccount, Balance, OpenLoan, CurrencyInfo) accept the
exchange's camelCase field names through aliases. Internal models
(PlannedIncrease, ExecutionPlan, ExecutionResult, ExecutionSummary) forbid
extra fields; amounts are carried as canonical decimal strings and all
arithmetic on them goes through `loan_manager.amount`.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..amount import parse_amount
from ..data.audit import utc_now


def _canonical(value: str) -> str:
    return str(parse_amount(value))


class _ExchangeModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)


class Subaccount(_ExchangeModel):
    id: str
    label: str = ""

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, v):
        return str(v)


class Balance(_ExchangeModel):
    currency: str
    available: str = "0"
    reserved: str = "0"
    total: str = "0"


class OpenLoan(_ExchangeModel):
    loan_id: str = Field(..., alias="loanId")
    currency: str
    total_amount: str = Field(..., alias="totalAmount")
    used_amount: str = Field("0", alias="usedAmount")
    hourly_rate: Optional[str] = Field(None, alias="hourlyRate")
    created_at: Optional[str] = Field(None, alias="createdAt")
    updated_at: Optional[str] = Field(None, alias="updatedAt")

    @field_validator("loan_id", mode="before")
    @classmethod
    def _coerce_loan_id(cls, v):
        return str(v)


class CurrencyInfo(_ExchangeModel):
    symbol: str
    is_active: bool = Field(True, alias="isActive")
    short_name: Optional[str] = Field(None, alias="shortName")
    long_name: Optional[str] = Field(None, alias="longName")
    decimal_places: Optional[int] = Field(None, alias="decimalPlaces")
    withdrawal_decimal_places: int = Field(8, alias="withdrawalDecimalPlaces", ge=0)

    def matches(self, currency: str) -> bool:
        return currency in {self.symbol, self.short_name}


class PolicySource(str, Enum):
    custom = "custom"
    exchange = "exchange"
    default = "default"
    fallback = "fallback"


class CurrencyPolicy(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True, use_enum_values=True)

    currency: str
    min_increment: str
    decimal_places: int = Field(..., ge=0)
    source: PolicySource = PolicySource.default

    @field_validator("min_increment")
    @classmethod
    def _canonical_increment(cls, v: str) -> str:
        return _canonical(v)


class PlannedIncrease(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    subaccount_id: str
    subaccount_label: str = ""
    loan_id: str
    currency: str
    current_amount: str
    increase_amount: str
    new_amount: str


class RiskLevel(str, Enum):
    none = "none"
    low = "low"
    medium = "medium"
    high = "high"


class ExecutionPlan(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True, use_enum_values=True)

    created_at: datetime = Field(default_factory=utc_now)
    planned_increases: List[PlannedIncrease] = Field(default_factory=list)
    total_increases_by_currency: Dict[str, str] = Field(default_factory=dict)
    estimated_execution_time_ms: int = Field(0, ge=0)
    risk_assessment: RiskLevel = RiskLevel.none
    planning_errors: Dict[str, List[str]] = Field(default_factory=dict)


class ExecutionStatus(str, Enum):
    planned = "planned"
    executing = "executing"
    succeeded = "succeeded"
    failed = "failed"


class ExecutionResult(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True, use_enum_values=True)

    planned_increase: PlannedIncrease
    status: ExecutionStatus
    success: bool
    dry_run: bool = False
    error: Optional[str] = None
    executed_at: datetime = Field(default_factory=utc_now)
    duration_ms: int = Field(0, ge=0)


class SubaccountResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    subaccount_id: str
    subaccount_label: str = ""
    processed_loans: int = 0
    increased_loans: int = 0
    total_amount_increased: Dict[str, str] = Field(default_factory=dict)
    errors: List[str] = Field(default_factory=list)


class ExecutionSummary(BaseModel):
    model_config = ConfigDict(extra="forbid")

    run_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)
    dry_run: bool = False
    total_subaccounts: int = 0
    processed_subaccounts: int = 0
    total_loans_processed: int = 0
    total_loans_increased: int = 0
    results: List[SubaccountResult] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    duration_ms: int = 0
    execution_plan: ExecutionPlan = Field(default_factory=ExecutionPlan)
    execution_results: List[ExecutionResult] = Field(default_factory=list)


__all__ = [
    "Balance",
    "CurrencyInfo",
    "CurrencyPolicy",
    "ExecutionPlan",
    "ExecutionResult",
    "ExecutionStatus",
    "ExecutionSummary",
    "OpenLoan",
    "PlannedIncrease",
    "PolicySource",
    "RiskLevel",
    "Subaccount",
    "SubaccountResult",
]
