from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .resources import TopicKey, parse_topic_key


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid4().hex


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


LEGACY_ROLE_ALIASES = {"bot": Role.ASSISTANT}


# ---------------------------------------------------------------------------
# Stored state
# ---------------------------------------------------------------------------

class Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    text: str
    role: Role
    created_at: datetime = Field(default_factory=utcnow)
    resource_key: TopicKey | None = None

    @field_validator("role", mode="before")
    @classmethod
    def _normalize_role(cls, value: object) -> object:
        if isinstance(value, str):
            return LEGACY_ROLE_ALIASES.get(value, value)
        return value

    @field_validator("resource_key", mode="before")
    @classmethod
    def _normalize_resource_key(cls, value: object) -> TopicKey | None:
        return parse_topic_key(value)


class ChatSession(BaseModel):
    id: str = Field(default_factory=new_id)
    title: str
    last_active_at: datetime = Field(default_factory=utcnow)
    renamed: bool = False
    messages: list[Message] = Field(default_factory=list)

    def last_assistant_message(self) -> Message | None:
        for message in reversed(self.messages):
            if message.role is Role.ASSISTANT:
                return message
        return None

    def has_user_messages(self) -> bool:
        return any(message.role is Role.USER for message in self.messages)


class StoreState(BaseModel):
    sessions: list[ChatSession]
    active_session_id: str

    @model_validator(mode="after")
    def _check_active_session(self) -> "StoreState":
        if not self.sessions:
            raise ValueError("store must hold at least one session")
        ids = [session.id for session in self.sessions]
        if len(set(ids)) != len(ids):
            raise ValueError("duplicate session ids")
        if self.active_session_id not in ids:
            self.active_session_id = ids[0]
        return self


# ---------------------------------------------------------------------------
# HTTP payloads
# ---------------------------------------------------------------------------

class ChatRequest(BaseModel):
    message: str
    session_id: str | None = None


class RotateRequest(BaseModel):
    current_key: TopicKey | None = None
    session_id: str | None = None


class RenameRequest(BaseModel):
    title: str


class NavigationOut(BaseModel):
    path: str
    section: str | None = None


class ResourceOut(BaseModel):
    key: TopicKey
    title: str
    description: str
    navigation: NavigationOut


class MessageOut(BaseModel):
    id: str
    text: str
    role: Role
    created_at: datetime
    resource: ResourceOut | None = None
    disclaimer: str | None = None


class SessionSummary(BaseModel):
    id: str
    title: str
    last_active_at: datetime
    message_count: int
    active: bool


class SessionDetail(SessionSummary):
    messages: list[MessageOut]


class SessionListResponse(BaseModel):
    active_session_id: str
    sessions: list[SessionSummary]


class MutationResponse(BaseModel):
    changed: bool
    reason: str | None = None
    persisted: bool
    session: SessionSummary | None = None
    active_session_id: str


class ChatReply(BaseModel):
    session_id: str
    user_message: MessageOut | None = None
    reply: MessageOut | None = None
    notice: str | None = None
    discarded: bool = False
    persisted: bool = True
