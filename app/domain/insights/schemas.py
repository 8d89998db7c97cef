"""Pydantic schemas for insight payloads."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

InsightType = Literal[
    "spending_increase",
    "budget_recommendation",
    "unusual_expense",
    "positive_reinforcement",
]


class InsightOut(BaseModel):
    """Schema for returning insight data."""

    id: int
    type: InsightType
    priority: int
    title: str
    description: str
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="insight_metadata")
    is_dismissed: bool
    dismissed_at: Optional[datetime]
    view_count: int
    first_viewed_at: Optional[datetime]
    last_viewed_at: Optional[datetime]
    metadata_expanded_count: int
    created_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


class InsightListOut(BaseModel):
    insights: list[InsightOut]
    total: int


class InsightEngagementIn(BaseModel):
    """Engagement event reported by the client."""

    event: Literal["view", "metadata_expand"]

    model_config = ConfigDict(extra="forbid")
