"""
Database Models for the Rate Limit Window Store

This module defines the SQLModel schema for:
- RateLimitWindow: one counter per (identifier, action, window_start)

Design Decisions:
- Unique constraint on (identifier, action, window_start) is the upsert key,
  so concurrent increments of one window collapse into a single row
- Composite index on (identifier, action, window_end) serves the live-count
  aggregation (most common query)
- Index on window_end alone serves the background cleanup sweep
- All timestamps are epoch milliseconds stored as BIGINT
"""

from typing import Optional

from sqlalchemy import BigInteger, Column, Index, Integer, String, UniqueConstraint
from sqlmodel import Field, SQLModel


class RateLimitWindow(SQLModel, table=True):
    """
    One persisted rate limit counter.

    Fields:
    - identifier: who is limited (user:<id>, ip:<addr>, auth:<addr>, ...)
    - action: which operation class is limited (add-asset, global, ...)
    - count: requests observed in this window (>= 1)
    - window_start / window_end: the interval this counter covers
    - created_at / updated_at: bookkeeping for the stats endpoint

    Lifecycle: created on the first request of a window, incremented on later
    requests with the same window_start, deleted once window_end has passed.
    """
    __tablename__ = "rate_limits"
    __table_args__ = (
        UniqueConstraint("identifier", "action", "window_start", name="uq_rate_limits_window"),
        Index("idx_rate_limits_lookup", "identifier", "action", "window_end"),
        Index("idx_rate_limits_window_end", "window_end"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    identifier: str = Field(sa_column=Column(String(200), nullable=False))
    action: str = Field(sa_column=Column(String(50), nullable=False))
    count: int = Field(default=1, sa_column=Column(Integer, nullable=False, default=1))
    window_start: int = Field(sa_column=Column(BigInteger, nullable=False))
    window_end: int = Field(sa_column=Column(BigInteger, nullable=False))
    created_at: int = Field(sa_column=Column(BigInteger, nullable=False))
    updated_at: int = Field(sa_column=Column(BigInteger, nullable=False))
