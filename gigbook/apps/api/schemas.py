from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class InvalidateCacheRequest(BaseModel):
    """Regular expression matched anywhere in a cache key."""

    pattern: str = Field(min_length=1)


class ResetRateLimitRequest(BaseModel):
    key: Optional[str] = None


class InvalidateCacheResult(BaseModel):
    pattern: str
    deleted: int


class ResetRateLimitResult(BaseModel):
    key: Optional[str] = None
    reset: bool
