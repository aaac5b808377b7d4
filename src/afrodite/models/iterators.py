from typing import Annotated

from pydantic import AfterValidator, BaseModel

from afrodite.models.base import AfroditeModel
from afrodite.validators import max_len


class NewsItemSummary(AfroditeModel):
    publication_id: int
    title: str
    time: int  # unix ms of publication


class ReceivedLikeItem(AfroditeModel):
    like_id: int
    account_id: int
    time: int  # unix ms


class ResetIteratorResponse(AfroditeModel):
    session_id: int


class NewsPage(AfroditeModel):
    items: list[NewsItemSummary]
    error_invalid_iterator_session_id: bool = False


class ReceivedLikesPage(AfroditeModel):
    items: list[ReceivedLikeItem]
    error_invalid_iterator_session_id: bool = False


class PublishNewsRequest(BaseModel):
    title: Annotated[str, AfterValidator(max_len("news_title_max"))]
    body: Annotated[str, AfterValidator(max_len("news_body_max"))]


class PublishNewsResponse(AfroditeModel):
    news_id: int
    publication_id: int


class CountResponse(AfroditeModel):
    count: int
    sync_version: int
