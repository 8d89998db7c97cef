"""Pydantic schemas for transaction writes."""
from __future__ import annotations

from datetime import date as date_type, datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class TransactionCreate(BaseModel):
    """Schema for creating a transaction."""

    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    type: Literal["income", "expense"]
    date: date_type
    category_id: Optional[int] = None
    description: Optional[str] = None

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class TransactionOut(BaseModel):
    """Schema for returning transaction data."""

    id: int
    amount: Decimal
    type: Literal["income", "expense"]
    date: date_type
    category_id: Optional[int]
    description: Optional[str]
    created_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)
