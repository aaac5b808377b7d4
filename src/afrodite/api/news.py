from fastapi import APIRouter, Depends, Query

from afrodite.api.deps import get_app_state, get_current_account
from afrodite.api_limits import ApiLimitKind
from afrodite.db.models import Account
from afrodite.errors import InvalidSession
from afrodite.iterators import IteratorKind
from afrodite.models.iterators import CountResponse, NewsPage, ResetIteratorResponse
from afrodite.models.resources import ResourceKind, UnreadNewsCount
from afrodite.state import AppState

router = APIRouter(prefix="/api/v1/news", tags=["news"])


@router.post("/reset")
async def reset_news_iterator(
    account: Account = Depends(get_current_account),
    state: AppState = Depends(get_app_state),
) -> ResetIteratorResponse:
    await state.api_limits.check(account.id, ApiLimitKind.NEWS_ITERATOR_RESET)
    session_id = await state.iterators.reset(account.id, IteratorKind.NEWS)
    return ResetIteratorResponse(session_id=session_id)


@router.get("/next")
async def next_news_page(
    session: int,
    page_size: int | None = Query(default=None, ge=1),
    account: Account = Depends(get_current_account),
    state: AppState = Depends(get_app_state),
) -> NewsPage:
    await state.api_limits.check(account.id, ApiLimitKind.NEWS_ITERATOR_NEXT_PAGE)
    try:
        items = await state.iterators.next_page(account.id, IteratorKind.NEWS, session, page_size)
    except InvalidSession:
        return NewsPage(items=[], error_invalid_iterator_session_id=True)
    return NewsPage(items=items)


@router.post("/count/reset")
async def reset_unread_news_count(
    account: Account = Depends(get_current_account),
    state: AppState = Depends(get_app_state),
) -> CountResponse:
    value = await state.sync.update(
        account.id,
        ResourceKind.UNREAD_NEWS,
        lambda current: current if current.count == 0 else UnreadNewsCount(),
    )
    return CountResponse(count=value.payload.count, sync_version=value.version.value)
