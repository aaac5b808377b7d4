from afrodite.models.base import AfroditeModel


class RegisterResponse(AfroditeModel):
    account_id: int
    token: str
