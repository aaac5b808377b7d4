from enum import StrEnum
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, Field

from afrodite.models.base import AfroditeModel
from afrodite.validators import max_len


class ResourceKind(StrEnum):
    PROFILE_ATTRIBUTES = "profile_attributes"
    CHAT_PRIVACY = "chat_privacy"
    NOTIFICATION_SETTINGS = "notification_settings"
    BLOCKS = "blocks"
    RECEIVED_LIKES = "received_likes"
    UNREAD_NEWS = "unread_news"


class ProfileAttributes(AfroditeModel):
    name: Annotated[str, AfterValidator(max_len("profile_name_max"))] = ""
    age: int = Field(default=18, ge=18, le=99)
    text: Annotated[str, AfterValidator(max_len("profile_text_max"))] = ""
    # attribute id -> selected value ids
    attributes: dict[int, list[int]] = {}


class ChatPrivacySettings(AfroditeModel):
    visible: bool = True
    message_state_delivered: bool = True
    typing_indicator: bool = True


class NotificationSettings(AfroditeModel):
    messages: bool = True
    likes: bool = True
    news: bool = True


class BlockList(AfroditeModel):
    blocked: Annotated[list[int], AfterValidator(max_len("block_list_max", "item"))] = []


class ReceivedLikesCount(AfroditeModel):
    """New likes received since the client last reset the count."""

    count: int = 0


class UnreadNewsCount(AfroditeModel):
    count: int = 0


PAYLOAD_TYPES: dict[ResourceKind, type[AfroditeModel]] = {
    ResourceKind.PROFILE_ATTRIBUTES: ProfileAttributes,
    ResourceKind.CHAT_PRIVACY: ChatPrivacySettings,
    ResourceKind.NOTIFICATION_SETTINGS: NotificationSettings,
    ResourceKind.BLOCKS: BlockList,
    ResourceKind.RECEIVED_LIKES: ReceivedLikesCount,
    ResourceKind.UNREAD_NEWS: UnreadNewsCount,
}

# Counters change only through the like and news endpoints.
READ_ONLY_KINDS: frozenset[ResourceKind] = frozenset({
    ResourceKind.RECEIVED_LIKES,
    ResourceKind.UNREAD_NEWS,
})


class ResourceResponse(AfroditeModel):
    payload: dict[str, Any]
    sync_version: int


class WriteResourceResponse(AfroditeModel):
    sync_version: int


class ClientSyncVersion(BaseModel):
    kind: ResourceKind
    version: int = Field(ge=0, le=255)


class SyncCheckRequest(BaseModel):
    versions: list[ClientSyncVersion]


class ResourceUpdate(AfroditeModel):
    kind: ResourceKind
    payload: dict[str, Any]
    sync_version: int


class SyncCheckResponse(AfroditeModel):
    updates: list[ResourceUpdate]
