from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from common.ids import generate_id

TITLE_MAX_CHARS = 50

Role = Literal["user", "assistant"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Role
    content: str
    timestamp: datetime = Field(default_factory=utc_now)

    def to_api(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


class Conversation(BaseModel):
    id: str = Field(default_factory=generate_id)
    title: str = ""
    messages: list[Message] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def display_title(self) -> str:
        return self.title or "Untitled"

    @property
    def last_message(self) -> Message | None:
        return self.messages[-1] if self.messages else None

    @property
    def awaiting_reply(self) -> bool:
        last = self.last_message
        return last is not None and last.role == "user"


class PendingJob(BaseModel):
    run_id: str
    originating_user_message: Message
    submitted_at: datetime = Field(default_factory=utc_now)


class JobStatus(BaseModel):
    status: Literal["pending", "complete", "error"]
    content: str | None = None
    error: str | None = None
