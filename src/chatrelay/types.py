"""Turn, envelope and history data shapes shared by engines and channels."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Literal

EnvelopeKind = Literal["progress", "done", "error"]


@dataclass(frozen=True)
class ChatTurnRequest:
    """One chat turn as received by a channel."""

    message: str
    working_directory: str
    prior_session_id: str | None = None


@dataclass(frozen=True)
class Envelope:
    """One unit of streamed output from a turn."""

    kind: EnvelopeKind
    payload: Any = None
    session_id: str = ""
    message: str = ""

    @classmethod
    def progress(cls, payload: Any) -> Envelope:
        return cls(kind="progress", payload=payload)

    @classmethod
    def done(cls, session_id: str = "") -> Envelope:
        return cls(kind="done", session_id=session_id)

    @classmethod
    def error(cls, message: str) -> Envelope:
        return cls(kind="error", message=message)

    @property
    def is_terminal(self) -> bool:
        return self.kind != "progress"

    def to_dict(self) -> dict[str, Any]:
        if self.kind == "progress":
            return {"kind": "progress", "payload": self.payload}
        if self.kind == "done":
            return {"kind": "done", "sessionId": self.session_id}
        return {"kind": "error", "message": self.message}


EnvelopeSink = Callable[[Envelope], Awaitable[None]]


@dataclass(frozen=True)
class ConversationSummary:
    """Listing entry for one stored conversation."""

    session_id: str
    title: str
    message_count: int
    updated_at: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "title": self.title,
            "messageCount": self.message_count,
            "updatedAt": self.updated_at,
        }


@dataclass(frozen=True)
class ConversationMessage:
    role: str
    content: str
    timestamp: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role, "content": self.content, "timestamp": self.timestamp}


@dataclass(frozen=True)
class ConversationHistory:
    """Full transcript of one stored conversation."""

    session_id: str
    messages: list[ConversationMessage] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"sessionId": self.session_id, "messages": [message.to_dict() for message in self.messages]}
