from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import ValidationError

from afrodite.api.deps import get_app_state, get_current_account
from afrodite.db.models import Account
from afrodite.errors import UnknownResource
from afrodite.models.resources import (
    PAYLOAD_TYPES,
    READ_ONLY_KINDS,
    ResourceKind,
    ResourceResponse,
    ResourceUpdate,
    SyncCheckRequest,
    SyncCheckResponse,
    WriteResourceResponse,
)
from afrodite.state import AppState

router = APIRouter(tags=["resources"])


def _kind(value: str) -> ResourceKind:
    try:
        return ResourceKind(value)
    except ValueError:
        raise UnknownResource(f"Unknown resource kind: {value}") from None


@router.get("/api/v1/resources/{kind}")
async def get_resource(
    kind: str,
    account: Account = Depends(get_current_account),
    state: AppState = Depends(get_app_state),
) -> ResourceResponse:
    value = await state.sync.read(account.id, _kind(kind))
    return ResourceResponse(payload=value.payload.model_dump(mode="json"), sync_version=value.version.value)


@router.put("/api/v1/resources/{kind}")
async def put_resource(
    kind: str,
    body: dict[str, Any] = Body(),
    account: Account = Depends(get_current_account),
    state: AppState = Depends(get_app_state),
) -> WriteResourceResponse:
    resource_kind = _kind(kind)
    if resource_kind in READ_ONLY_KINDS:
        raise HTTPException(
            status_code=405,
            detail={"error": {"code": "READ_ONLY_RESOURCE", "message": f"{resource_kind} cannot be written directly."}},
        )
    try:
        payload = PAYLOAD_TYPES[resource_kind].model_validate(body)
    except ValidationError as exc:
        raise HTTPException(
            status_code=422,
            detail={"error": {"code": "VALIDATION_ERROR", "message": str(exc)}},
        ) from None

    value = await state.sync.write(account.id, resource_kind, payload)
    return WriteResourceResponse(sync_version=value.version.value)


@router.post("/api/v1/sync_check")
async def sync_check(
    body: SyncCheckRequest,
    account: Account = Depends(get_current_account),
    state: AppState = Depends(get_app_state),
) -> SyncCheckResponse:
    updates = await state.sync.sync_check(account.id, [(v.kind, v.version) for v in body.versions])
    return SyncCheckResponse(updates=[
        ResourceUpdate(kind=kind, payload=value.payload.model_dump(mode="json"), sync_version=value.version.value)
        for kind, value in updates
    ])
