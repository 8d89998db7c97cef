"""Session helpers and dependencies."""
from __future__ import annotations

from typing import Optional

from fastapi import Cookie, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.cookies import SESSION_COOKIE_NAME, parse_session_cookie
from app.core.database import get_db
from app.core.errors import AuthError
from app.domain.users.models import User


async def get_session_email(
    session_value: Optional[str] = Cookie(None, alias=SESSION_COOKIE_NAME),
) -> str:
    """Return the email carried by the signed session cookie."""
    try:
        return parse_session_cookie(session_value)
    except AuthError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc


async def get_current_user(
    email: str = Depends(get_session_email),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Load the current user from the database using the session value."""
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()

    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")

    return user
