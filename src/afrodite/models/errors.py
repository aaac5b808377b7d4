from afrodite.models.base import AfroditeModel


class ErrorResponse(AfroditeModel):
    code: str
    message: str


class ErrorEnvelope(AfroditeModel):
    error: ErrorResponse
