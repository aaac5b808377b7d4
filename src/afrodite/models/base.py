from pydantic import BaseModel, ConfigDict


class AfroditeModel(BaseModel):
    """Base for response bodies and stored payloads."""

    model_config = ConfigDict(from_attributes=True)
