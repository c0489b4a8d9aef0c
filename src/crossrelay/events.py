"""Inbound event types handed to the orchestrator by platform adapters."""

from __future__ import annotations

import functools
from dataclasses import dataclass, field
from typing import Any

from crossrelay.core.constants import Side


@dataclass(frozen=True)
class TextEntity:
    """Formatting or reference annotation over a text buffer.

    Offsets and lengths are in the source platform's own indexing unit
    (UTF-16 code units for the left side).
    """

    offset: int
    length: int
    kind: str
    url: str | None = None  # text_link target
    language: str | None = None  # pre block language
    user_display: str | None = None  # text_mention without a username

    @property
    def end(self) -> int:
        return self.offset + self.length


@dataclass(frozen=True)
class Attachment:
    """File attached to a message, addressed by a fetchable URL."""

    url: str
    name: str
    kind: str = "document"  # "photo" | "video" | "audio" | "voice" | "sticker" | "document"
    size: int = 0


@dataclass(frozen=True)
class EmbedField:
    name: str
    value: str


@dataclass
class Embed:
    """Rich embed as posted on the right side."""

    title: str | None = None
    url: str | None = None
    description: str | None = None
    fields: list[EmbedField] = field(default_factory=list)
    author: str | None = None
    kind: str = "rich"


@dataclass
class ReplyContext:
    """What the inbound adapter knows about the replied-to message."""

    message_id: str
    author_display: str = ""
    text: str = ""
    is_relayed: bool = False  # replied-to message was sent by the relay itself


@dataclass
class MessageIn:
    """Inbound message (create or edit) from one side."""

    side: Side
    chat_id: str
    message_id: str
    author_display: str
    text: str = ""
    entities: list[TextEntity] = field(default_factory=list)
    thread_id: str | None = None
    reply_to: ReplyContext | None = None
    forwarded_from: str | None = None
    attachments: list[Attachment] = field(default_factory=list)
    embeds: list[Embed] = field(default_factory=list)
    is_edit: bool = False
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class MessageDelete:
    """Message was deleted on one side."""

    side: Side
    chat_id: str
    message_id: str
    thread_id: str | None = None


@dataclass
class MemberJoin:
    """User joined the chat/server on one side."""

    side: Side
    chat_id: str
    display: str
    username: str | None = None


@dataclass
class MemberLeave:
    """User left the chat/server on one side."""

    side: Side
    chat_id: str
    display: str
    username: str | None = None


def event(type_name: str):
    """Decorator to mark a factory as producing an event with a given type."""

    def decorator(f: Any) -> Any:
        @functools.wraps(f)
        def wrapper(*args: Any, **kwargs: Any) -> tuple[str, object]:
            evt = f(*args, **kwargs)
            return (type_name, evt)

        wrapper.TYPE = type_name  # type: ignore[attr-defined]
        return wrapper

    return decorator


@event("message_in")
def message_in(
    side: Side,
    chat_id: str | int,
    message_id: str | int,
    author_display: str,
    text: str = "",
    *,
    entities: list[TextEntity] | None = None,
    thread_id: str | int | None = None,
    reply_to: ReplyContext | None = None,
    forwarded_from: str | None = None,
    attachments: list[Attachment] | None = None,
    embeds: list[Embed] | None = None,
    is_edit: bool = False,
    raw: dict[str, Any] | None = None,
) -> MessageIn:
    return MessageIn(
        side=side,
        chat_id=str(chat_id),
        message_id=str(message_id),
        author_display=author_display,
        text=text,
        entities=list(entities or []),
        thread_id=None if thread_id is None else str(thread_id),
        reply_to=reply_to,
        forwarded_from=forwarded_from,
        attachments=list(attachments or []),
        embeds=list(embeds or []),
        is_edit=is_edit,
        raw=raw or {},
    )


@event("message_delete")
def message_delete(
    side: Side,
    chat_id: str | int,
    message_id: str | int,
    *,
    thread_id: str | int | None = None,
) -> MessageDelete:
    return MessageDelete(
        side=side,
        chat_id=str(chat_id),
        message_id=str(message_id),
        thread_id=None if thread_id is None else str(thread_id),
    )


@event("member_join")
def member_join(side: Side, chat_id: str | int, display: str, *, username: str | None = None) -> MemberJoin:
    return MemberJoin(side=side, chat_id=str(chat_id), display=display, username=username)


@event("member_leave")
def member_leave(side: Side, chat_id: str | int, display: str, *, username: str | None = None) -> MemberLeave:
    return MemberLeave(side=side, chat_id=str(chat_id), display=display, username=username)
