"""
Rate Limiting Configuration

This module holds the static action catalog and the value objects that
flow between the window stores, the limiter engine and the HTTP layer.

Design Decisions:
- One catalog shared by the server engine and the client fallback
- Budgets are immutable at runtime (frozen models, read-only mapping)
- All timestamps are epoch milliseconds
"""

from __future__ import annotations

import math
import time
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.core.exceptions import ConfigurationError


class RateLimitAction(str, Enum):
    """Operation classes with their own quota."""
    ADD_ASSET = "add-asset"
    ADD_DEBT = "add-debt"
    UPDATE_ASSET = "update-asset"
    UPDATE_DEBT = "update-debt"
    DELETE_ITEM = "delete-item"
    AUTH = "auth"
    GLOBAL = "global"


class ActionConfig(BaseModel):
    """Budget for one action: max_requests per window_ms."""
    model_config = ConfigDict(frozen=True)

    max_requests: int = Field(..., gt=0)
    window_ms: int = Field(..., gt=0)


class RateLimitDecision(BaseModel):
    """Outcome of a check or a status peek."""
    model_config = ConfigDict(frozen=True)

    allowed: bool
    limit: int
    remaining: int = Field(..., ge=0)
    reset_at_epoch_ms: int
    retry_after_seconds: Optional[int] = None


# Rate limit configurations per action
# 10/60s means 10 requests per rolling 60 second window per identifier
RATE_LIMIT_CONFIGS: Mapping[str, ActionConfig] = MappingProxyType({
    RateLimitAction.ADD_ASSET.value: ActionConfig(max_requests=10, window_ms=60_000),
    RateLimitAction.ADD_DEBT.value: ActionConfig(max_requests=10, window_ms=60_000),
    RateLimitAction.UPDATE_ASSET.value: ActionConfig(max_requests=20, window_ms=60_000),
    RateLimitAction.UPDATE_DEBT.value: ActionConfig(max_requests=20, window_ms=60_000),
    RateLimitAction.DELETE_ITEM.value: ActionConfig(max_requests=15, window_ms=60_000),
    RateLimitAction.AUTH.value: ActionConfig(max_requests=5, window_ms=300_000),  # 5 per 5 minutes
    RateLimitAction.GLOBAL.value: ActionConfig(max_requests=100, window_ms=60_000),
})


def action_name(action: "str | RateLimitAction") -> str:
    """Normalise an enum member or plain string to the catalog key."""
    return action.value if isinstance(action, RateLimitAction) else str(action)


def get_action_config(
    action: "str | RateLimitAction",
    configs: Mapping[str, ActionConfig] = RATE_LIMIT_CONFIGS,
) -> ActionConfig:
    """
    Look up the budget for an action.

    Raises:
        ConfigurationError: If the action is not in the catalog
    """
    key = action_name(action)
    config = configs.get(key)
    if config is None:
        raise ConfigurationError(key)
    return config


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def retry_after_seconds(reset_at_ms: int, current_ms: int) -> int:
    """Whole seconds until reset, never negative."""
    return max(0, math.ceil((reset_at_ms - current_ms) / 1000))
