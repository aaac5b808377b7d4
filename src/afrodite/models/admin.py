from pydantic import BaseModel, Field


class UpdateLimitsRequest(BaseModel):
    limits: dict[str, int]


class UpdateGeneralRequest(BaseModel):
    debug_disable_api_limits: bool | None = None
    debug_allow_backend_data_reset: bool | None = None
    api_limit_reset_interval_seconds: int | None = Field(default=None, ge=60)
