"""Transaction write route; kicks the background insight trigger."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.session import get_current_user
from app.domain.categories.models import Category
from app.domain.insights.triggers import InsightTrigger, get_insight_trigger
from app.domain.transactions.models import Transaction
from app.domain.transactions.schemas import TransactionCreate, TransactionOut
from app.domain.users.models import User

router = APIRouter()


@router.post("", response_model=TransactionOut, status_code=status.HTTP_201_CREATED)
async def create_transaction(
    payload: TransactionCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    trigger: InsightTrigger = Depends(get_insight_trigger),
) -> Transaction:
    """Create a transaction, then let the insight trigger decide on regeneration."""
    if payload.category_id is not None:
        category_id = await db.scalar(
            select(Category.id).where(
                Category.id == payload.category_id,
                Category.user_id == user.id,
            )
        )
        if category_id is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Category not found")

    transaction = Transaction(user_id=user.id, **payload.model_dump())
    db.add(transaction)
    await db.commit()
    await db.refresh(transaction)

    # Detached: the response never waits on (or fails because of) insight generation.
    trigger.dispatch(user.id)
    return transaction
