from datetime import datetime
from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from app.core.database import Base

INSIGHT_TYPES = (
    "spending_increase",
    "budget_recommendation",
    "unusual_expense",
    "positive_reinforcement",
)


class Insight(Base):
    """Generated coaching message for a user.

    Rows are replaced wholesale on every successful generation; only the
    engagement columns (dismissal, views) are mutated in between.
    """

    __tablename__ = "insights"
    __table_args__ = (
        CheckConstraint("priority BETWEEN 1 AND 5", name="ck_insights_priority_range"),
        Index("ix_insights_user_priority", "user_id", "priority", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    type = Column(String, nullable=False)
    priority = Column(Integer, nullable=False)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    # "metadata" is reserved on declarative classes
    insight_metadata = Column("metadata", JSON, nullable=False, default=dict)
    is_dismissed = Column(Boolean, nullable=False, default=False)
    dismissed_at = Column(DateTime, nullable=True)
    view_count = Column(Integer, nullable=False, default=0)
    first_viewed_at = Column(DateTime, nullable=True)
    last_viewed_at = Column(DateTime, nullable=True)
    metadata_expanded_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
