import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from afrodite.api.deps import get_app_state, get_db, require_admin
from afrodite.config import GeneralConfig, LimitsConfig, config, save_config_value, save_limit
from afrodite.db.models import Account, AccountResource, News, ReceivedLike
from afrodite.models.admin import UpdateGeneralRequest, UpdateLimitsRequest
from afrodite.models.iterators import PublishNewsRequest, PublishNewsResponse
from afrodite.news import publish_news
from afrodite.state import AppState

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])


@router.post("/cache/{account_id}/invalidate", status_code=204)
async def invalidate_cache(
    account_id: int,
    _: Account = Depends(require_admin),
    state: AppState = Depends(get_app_state),
):
    state.cache.invalidate(account_id)


@router.post("/api_limits/{account_id}/reset", status_code=204)
async def reset_api_limits(
    account_id: int,
    _: Account = Depends(require_admin),
    state: AppState = Depends(get_app_state),
):
    await state.api_limits.reset(account_id)


@router.get("/config/limits", response_model=LimitsConfig)
async def get_limits(_: Account = Depends(require_admin)):
    return config.limits


@router.patch("/config/limits", response_model=LimitsConfig)
async def update_limits(
    body: UpdateLimitsRequest,
    db: AsyncSession = Depends(get_db),
    _: Account = Depends(require_admin),
):
    """Persist limit overrides and apply them to the running server."""
    valid_fields = set(LimitsConfig.model_fields)
    for name, value in body.limits.items():
        if name not in valid_fields:
            raise HTTPException(status_code=400, detail={"error": {"code": "INVALID_LIMIT", "message": f"Unknown limit: {name}"}})
        if value < 1:
            raise HTTPException(status_code=400, detail={"error": {"code": "INVALID_LIMIT", "message": f"{name} must be positive."}})
    for name, value in body.limits.items():
        await save_limit(db, name, value)
    await db.commit()
    return config.limits


@router.patch("/config/general", response_model=GeneralConfig)
async def update_general(
    body: UpdateGeneralRequest,
    db: AsyncSession = Depends(get_db),
    admin: Account = Depends(require_admin),
):
    changed = body.model_dump(exclude_none=True)
    for key, value in changed.items():
        await save_config_value(db, key, str(value).lower() if isinstance(value, bool) else str(value))
    await db.commit()
    if changed:
        log.info("Account %d changed general config: %s", admin.id, changed)
    return config.general


@router.post("/news", status_code=201)
async def create_news(
    body: PublishNewsRequest,
    admin: Account = Depends(require_admin),
    state: AppState = Depends(get_app_state),
) -> PublishNewsResponse:
    news = await publish_news(state.sync, admin.id, body.title, body.body)
    return PublishNewsResponse(news_id=news.id, publication_id=news.publication_id)


@router.post("/data_reset", status_code=204)
async def data_reset(
    db: AsyncSession = Depends(get_db),
    admin: Account = Depends(require_admin),
    state: AppState = Depends(get_app_state),
):
    if not config.general.debug_allow_backend_data_reset:
        raise HTTPException(status_code=403, detail={"error": {"code": "DATA_RESET_DISABLED", "message": "Backend data reset is disabled."}})
    if state.reset_state.try_begin():
        raise HTTPException(status_code=409, detail={"error": {"code": "DATA_RESET_IN_PROGRESS", "message": "Backend data reset is already running."}})

    try:
        log.warning("Backend data reset requested by account %d", admin.id)
        await db.execute(delete(ReceivedLike))
        await db.execute(delete(News))
        await db.execute(delete(AccountResource))
        await db.execute(delete(Account))
        await db.commit()
        state.cache.clear()
    finally:
        state.reset_state.finish()
