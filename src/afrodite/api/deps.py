from collections.abc import AsyncGenerator

from fastapi import Depends, Header, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from afrodite.db.engine import get_session_factory
from afrodite.db.models import Account
from afrodite.state import AppState, get_state


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    factory = get_session_factory()
    async with factory() as session:
        yield session


def get_app_state() -> AppState:
    return get_state()


async def get_current_account(
    db: AsyncSession = Depends(get_db),
    authorization: str | None = Header(default=None),
) -> Account:
    if authorization is None or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail={"error": {"code": "AUTH_FAILED", "message": "Invalid authorization header."}})

    token = authorization[7:]
    result = await db.execute(select(Account).where(Account.token == token))
    account = result.scalar_one_or_none()
    if account is None:
        raise HTTPException(status_code=401, detail={"error": {"code": "AUTH_FAILED", "message": "Access token is invalid."}})
    return account


async def require_admin(account: Account = Depends(get_current_account)) -> Account:
    if not account.admin:
        raise HTTPException(status_code=403, detail={"error": {"code": "MISSING_PERMISSIONS", "message": "Admin permission required."}})
    return account
