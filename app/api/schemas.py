"""
API Request and Response Schemas

This module defines all Pydantic models for API requests and responses.
Separated from endpoints to keep concerns separated and enable reuse by
the remote limiter client.

Design Principles:
- Wire format is camelCase (the browser client's convention)
- Python attributes stay snake_case (populate_by_name)
- Request models define input validation only
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Rate limit schemas

class ActionStatus(CamelModel):
    """Quota of one action for the caller."""
    limit: int
    remaining: int
    reset: int = Field(..., description="Epoch ms when the earliest live window ends")
    window_ms: int


class RateLimitInfoData(CamelModel):
    identifier: str
    rate_limits: dict[str, ActionStatus]
    timestamp: int


class RateLimitInfoResponse(CamelModel):
    success: bool = True
    data: RateLimitInfoData


class ActionConfigOut(CamelModel):
    max_requests: int
    window_ms: int


class RateLimitStatsData(CamelModel):
    total_entries: int
    entries_by_action: dict[str, int]
    oldest_entry: Optional[int] = None
    timestamp: int
    configs: dict[str, ActionConfigOut]


class RateLimitStatsResponse(CamelModel):
    success: bool = True
    data: RateLimitStatsData


class ConsumeResponse(CamelModel):
    """Decision of the remote limiter protocol (success == allowed)."""
    success: bool
    limit: int
    remaining: int
    reset: int
    retry_after: Optional[int] = None


# Item schemas

AssetCategory = Literal[
    "cash", "savings", "checking", "investment", "retirement",
    "real-estate", "vehicle", "personal-property", "crypto", "other",
]
DebtCategory = Literal[
    "credit-card", "student-loan", "mortgage", "auto-loan",
    "personal-loan", "medical", "other",
]


class AssetCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    value: float = Field(..., ge=0)
    category: AssetCategory
    description: Optional[str] = Field(default=None, max_length=500)
    url: Optional[str] = Field(default=None, max_length=2048)


class AssetUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    value: Optional[float] = Field(default=None, ge=0)
    category: Optional[AssetCategory] = None
    description: Optional[str] = Field(default=None, max_length=500)
    url: Optional[str] = Field(default=None, max_length=2048)


class DebtCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    amount: float = Field(..., ge=0)
    category: DebtCategory
    interest_rate: Optional[float] = Field(default=None, ge=0, le=100)
    minimum_payment: Optional[float] = Field(default=None, ge=0)
    description: Optional[str] = Field(default=None, max_length=500)
    url: Optional[str] = Field(default=None, max_length=2048)


class DebtUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    amount: Optional[float] = Field(default=None, ge=0)
    category: Optional[DebtCategory] = None
    interest_rate: Optional[float] = Field(default=None, ge=0, le=100)
    minimum_payment: Optional[float] = Field(default=None, ge=0)
    description: Optional[str] = Field(default=None, max_length=500)
    url: Optional[str] = Field(default=None, max_length=2048)
