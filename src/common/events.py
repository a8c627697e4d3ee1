from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, TypeAlias


@dataclass(frozen=True, slots=True)
class UserTurnEvent:
    conversation_id: str
    content: str


@dataclass(frozen=True, slots=True)
class JobSubmittedEvent:
    conversation_id: str
    run_id: str


@dataclass(frozen=True, slots=True)
class JobResumedEvent:
    conversation_id: str
    run_id: str


@dataclass(frozen=True, slots=True)
class AssistantDeltaEvent:
    conversation_id: str
    text: str


@dataclass(frozen=True, slots=True)
class AssistantMessageEvent:
    conversation_id: str
    content: str
    mode: str


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    message: str
    conversation_id: str | None = None
    source: str | None = None


Event: TypeAlias = (
    UserTurnEvent
    | JobSubmittedEvent
    | JobResumedEvent
    | AssistantDeltaEvent
    | AssistantMessageEvent
    | ErrorEvent
)
EventCallback: TypeAlias = Callable[[Event], None] | None


class EventEmitter:
    def __init__(self, callback: EventCallback = None):
        self._callback = callback

    def emit(self, event: Event) -> None:
        if self._callback is not None:
            self._callback(event)
