"""Envelope shared by the ledger listing endpoints."""

from __future__ import annotations

from typing import Generic, Sequence, TypeVar

from pydantic import BaseModel, Field

ItemT = TypeVar("ItemT")


class PaginatedResponse(BaseModel, Generic[ItemT]):
    """One page of ledger rows plus the unpaged total."""

    items: Sequence[ItemT]
    total: int = Field(..., ge=0)
    limit: int = Field(..., ge=1, le=200)
    skip: int = Field(..., ge=0)
