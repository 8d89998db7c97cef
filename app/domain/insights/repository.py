"""Persistence queries needed by insight generation and the insights API."""
from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional, Sequence

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import DataAccessError
from app.domain.budgets.models import Budget
from app.domain.categories.models import Category
from app.domain.transactions.models import Transaction

from .models import Insight
from .rules import InsightCandidate

ORDERABLE_COLUMNS = {
    "priority": Insight.priority,
    "created_at": Insight.created_at,
    "type": Insight.type,
    "view_count": Insight.view_count,
}


class InsightRepository:
    """Thin query layer over one ``AsyncSession``.

    Every SQLAlchemy failure surfaces as ``DataAccessError`` so callers can
    tell persistence problems from programming errors.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def fetch_expense_transactions(
        self, user_id: int, start: date, end: date
    ) -> list[Transaction]:
        """Expense transactions with ``start <= date < end``, newest first."""
        stmt = (
            select(Transaction)
            .where(Transaction.user_id == user_id)
            .where(Transaction.type == "expense")
            .where(Transaction.date >= start)
            .where(Transaction.date < end)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as exc:
            raise DataAccessError(f"Failed to load transactions for user {user_id}") from exc
        return list(result.scalars().all())

    async def fetch_categories(self, user_id: int) -> list[Category]:
        try:
            result = await self.db.execute(
                select(Category).where(Category.user_id == user_id).order_by(Category.id)
            )
        except SQLAlchemyError as exc:
            raise DataAccessError(f"Failed to load categories for user {user_id}") from exc
        return list(result.scalars().all())

    async def fetch_budgets(self, user_id: int) -> dict[int, float]:
        """Return ``{category_id: monthly budget}`` for the user."""
        try:
            result = await self.db.execute(
                select(Budget.category_id, Budget.amount).where(Budget.user_id == user_id)
            )
        except SQLAlchemyError as exc:
            raise DataAccessError(f"Failed to load budgets for user {user_id}") from exc
        return {row.category_id: float(row.amount) for row in result}

    async def distinct_active_user_ids(self, limit: int) -> list[int]:
        """Owners of at least one transaction, capped at ``limit``."""
        stmt = (
            select(Transaction.user_id)
            .distinct()
            .order_by(Transaction.user_id)
            .limit(limit)
        )
        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as exc:
            raise DataAccessError("Failed to discover active users") from exc
        return [user_id for user_id in result.scalars().all()]

    async def count_transactions_since(self, user_id: int, since: datetime) -> int:
        # created_at is stored naive UTC
        if since.tzinfo is not None:
            since = since.astimezone(timezone.utc).replace(tzinfo=None)
        stmt = (
            select(func.count())
            .select_from(Transaction)
            .where(Transaction.user_id == user_id)
            .where(Transaction.created_at >= since)
        )
        try:
            return int(await self.db.scalar(stmt) or 0)
        except SQLAlchemyError as exc:
            raise DataAccessError(f"Failed to count transactions for user {user_id}") from exc

    async def replace_insights(
        self, user_id: int, candidates: Sequence[InsightCandidate]
    ) -> list[Insight]:
        """Delete every insight of the user and insert ``candidates`` in one transaction."""
        insights = [
            Insight(
                user_id=user_id,
                type=candidate.type,
                priority=candidate.priority,
                title=candidate.title,
                description=candidate.description,
                insight_metadata=candidate.metadata,
                is_dismissed=False,
            )
            for candidate in candidates
        ]
        try:
            await self.db.execute(delete(Insight).where(Insight.user_id == user_id))
            self.db.add_all(insights)
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise DataAccessError(f"Failed to replace insights for user {user_id}") from exc
        return insights

    async def list_active_insights(self, user_id: int) -> list[Insight]:
        """Non-dismissed insights, most urgent then most recent first."""
        stmt = (
            select(Insight)
            .where(Insight.user_id == user_id, Insight.is_dismissed.is_(False))
            .order_by(Insight.priority.desc(), Insight.created_at.desc(), Insight.id.desc())
        )
        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as exc:
            raise DataAccessError(f"Failed to load insights for user {user_id}") from exc
        return list(result.scalars().all())

    async def list_insights(
        self,
        user_id: int,
        *,
        limit: int = 20,
        dismissed: Optional[bool] = None,
        insight_type: Optional[str] = None,
        search: Optional[str] = None,
        order_by: Optional[str] = None,
    ) -> tuple[list[Insight], int]:
        """Filtered page of insights plus the total matching count."""
        conditions = [Insight.user_id == user_id]
        if dismissed is not None:
            conditions.append(Insight.is_dismissed.is_(dismissed))
        if insight_type:
            conditions.append(Insight.type == insight_type)
        if search:
            pattern = f"%{search}%"
            conditions.append(or_(Insight.title.ilike(pattern), Insight.description.ilike(pattern)))

        ordering = [Insight.priority.desc(), Insight.created_at.desc()]
        parts = (order_by or "").split()
        if parts:
            column = ORDERABLE_COLUMNS.get(parts[0])
            if column is not None:
                descending = len(parts) > 1 and parts[1].upper() == "DESC"
                ordering = [column.desc() if descending else column.asc()]
                if parts[0] != "created_at":
                    ordering.append(Insight.created_at.desc())

        try:
            total = await self.db.scalar(
                select(func.count()).select_from(Insight).where(*conditions)
            )
            result = await self.db.execute(
                select(Insight).where(*conditions).order_by(*ordering).limit(limit)
            )
        except SQLAlchemyError as exc:
            raise DataAccessError(f"Failed to list insights for user {user_id}") from exc
        return list(result.scalars().all()), int(total or 0)

    async def get_insight(self, user_id: int, insight_id: int) -> Optional[Insight]:
        try:
            result = await self.db.execute(
                select(Insight).where(Insight.id == insight_id, Insight.user_id == user_id)
            )
        except SQLAlchemyError as exc:
            raise DataAccessError(f"Failed to load insight {insight_id}") from exc
        return result.scalar_one_or_none()

    async def set_dismissed(
        self, user_id: int, insight_id: int, dismissed: bool, now: datetime
    ) -> Optional[Insight]:
        insight = await self.get_insight(user_id, insight_id)
        if insight is None:
            return None
        insight.is_dismissed = dismissed
        insight.dismissed_at = now if dismissed else None
        await self._commit(insight)
        return insight

    async def record_engagement(
        self, user_id: int, insight_id: int, event: str, now: datetime
    ) -> Optional[Insight]:
        """Apply a ``view`` or ``metadata_expand`` event to the insight counters."""
        insight = await self.get_insight(user_id, insight_id)
        if insight is None:
            return None
        insight.view_count = (insight.view_count or 0) + 1
        insight.first_viewed_at = insight.first_viewed_at or now
        insight.last_viewed_at = now
        if event == "metadata_expand":
            insight.metadata_expanded_count = (insight.metadata_expanded_count or 0) + 1
        await self._commit(insight)
        return insight

    async def _commit(self, insight: Insight) -> None:
        try:
            await self.db.commit()
            await self.db.refresh(insight)
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise DataAccessError(f"Failed to update insight {insight.id}") from exc


__all__ = ["InsightRepository"]
