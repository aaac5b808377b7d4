from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from afrodite.api.deps import get_app_state, get_current_account, get_db
from afrodite.api_limits import ApiLimitKind
from afrodite.db.models import Account, ReceivedLike
from afrodite.errors import AlreadyLiked, InvalidSession
from afrodite.iterators import IteratorKind
from afrodite.models.iterators import CountResponse, ReceivedLikesPage, ResetIteratorResponse
from afrodite.models.resources import ReceivedLikesCount, ResourceKind
from afrodite.state import AppState

router = APIRouter(prefix="/api/v1/likes", tags=["likes"])


@router.post("/{account_id}", status_code=204)
async def send_like(
    account_id: int,
    db: AsyncSession = Depends(get_db),
    sender: Account = Depends(get_current_account),
    state: AppState = Depends(get_app_state),
):
    if account_id == sender.id:
        raise HTTPException(status_code=400, detail={"error": {"code": "INVALID_TARGET", "message": "You cannot like yourself."}})

    receiver = (await db.execute(select(Account).where(Account.id == account_id))).scalar_one_or_none()
    if receiver is None:
        raise HTTPException(status_code=404, detail={"error": {"code": "ACCOUNT_NOT_FOUND", "message": "Account does not exist."}})

    async def insert_like(tx: AsyncSession) -> None:
        existing = await tx.execute(
            select(ReceivedLike.id).where(
                ReceivedLike.receiver_id == account_id,
                ReceivedLike.sender_id == sender.id,
            )
        )
        if existing.scalar_one_or_none() is not None:
            raise AlreadyLiked()
        tx.add(ReceivedLike(receiver_id=account_id, sender_id=sender.id, created_at=datetime.now(timezone.utc)))

    # The like and the receiver's counter commit together.
    await state.sync.update(
        account_id,
        ResourceKind.RECEIVED_LIKES,
        lambda current: ReceivedLikesCount(count=current.count + 1),
        before_commit=insert_like,
    )


@router.post("/count/reset")
async def reset_received_likes_count(
    account: Account = Depends(get_current_account),
    state: AppState = Depends(get_app_state),
) -> CountResponse:
    # The version only moves when there was something to clear
    value = await state.sync.update(
        account.id,
        ResourceKind.RECEIVED_LIKES,
        lambda current: current if current.count == 0 else ReceivedLikesCount(),
    )
    return CountResponse(count=value.payload.count, sync_version=value.version.value)


@router.post("/received/reset")
async def reset_received_likes_iterator(
    account: Account = Depends(get_current_account),
    state: AppState = Depends(get_app_state),
) -> ResetIteratorResponse:
    await state.api_limits.check(account.id, ApiLimitKind.RECEIVED_LIKES_ITERATOR_RESET)
    session_id = await state.iterators.reset(account.id, IteratorKind.RECEIVED_LIKES)
    return ResetIteratorResponse(session_id=session_id)


@router.get("/received/next")
async def next_received_likes_page(
    session: int,
    page_size: int | None = Query(default=None, ge=1),
    account: Account = Depends(get_current_account),
    state: AppState = Depends(get_app_state),
) -> ReceivedLikesPage:
    await state.api_limits.check(account.id, ApiLimitKind.RECEIVED_LIKES_ITERATOR_NEXT_PAGE)
    try:
        items = await state.iterators.next_page(account.id, IteratorKind.RECEIVED_LIKES, session, page_size)
    except InvalidSession:
        return ReceivedLikesPage(items=[], error_invalid_iterator_session_id=True)
    return ReceivedLikesPage(items=items)
