import logging
import secrets
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from afrodite.access import insert_default_resources
from afrodite.api.deps import get_app_state, get_db
from afrodite.db.models import Account
from afrodite.errors import DataResetInProgress
from afrodite.models.accounts import RegisterResponse
from afrodite.state import AppState

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/accounts", tags=["accounts"])


@router.post("", status_code=201)
async def register(
    db: AsyncSession = Depends(get_db),
    state: AppState = Depends(get_app_state),
) -> RegisterResponse:
    if state.reset_state.is_ongoing():
        raise DataResetInProgress()

    # First registered account administers the server
    existing = (await db.execute(select(func.count()).select_from(Account))).scalar_one()
    account = Account(
        token=secrets.token_urlsafe(32),
        admin=existing == 0,
        created_at=datetime.now(timezone.utc),
    )
    db.add(account)
    await db.flush()
    insert_default_resources(db, account.id)
    await db.commit()

    log.info("Registered account %d", account.id)
    return RegisterResponse(account_id=account.id, token=account.token)
