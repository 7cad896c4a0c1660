"""Data models for the chat module."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

# Optimistic ids carry this prefix until the server id replaces them
TEMP_ID_PREFIX = "temp-"


class MessageKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"
    AUDIO = "audio"
    VIDEO = "video"
    LOCATION = "location"
    SYSTEM = "system"
    NOTIFICATION = "notification"


class MessageStatus(str, Enum):
    SENDING = "sending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


# Server-driven statuses only move forward along this order
STATUS_RANK = {
    MessageStatus.SENT: 1,
    MessageStatus.DELIVERED: 2,
    MessageStatus.READ: 3,
}

SYSTEM_KINDS = frozenset({MessageKind.SYSTEM, MessageKind.NOTIFICATION})


def is_temp_id(message_id: str) -> bool:
    """True for locally generated optimistic ids."""
    return message_id.startswith(TEMP_ID_PREFIX)


@dataclass
class Attachment:
    """A file attached to a message."""

    id: str
    name: str
    media_type: str  # MIME type, e.g. "image/png"
    size: int
    url: str
    thumbnail_url: str | None = None
    metadata: dict = field(default_factory=dict)


@dataclass
class Message:
    """A single chat message in a conversation."""

    id: str
    conversation_id: str
    sender_id: str
    sender_name: str
    kind: MessageKind
    content: str
    timestamp: str  # ISO 8601
    status: MessageStatus
    is_edited: bool = False
    reply_to: str | None = None
    attachments: list[Attachment] = field(default_factory=list)
    sender_avatar: str | None = None
    metadata: dict = field(default_factory=dict)

    @property
    def is_optimistic(self) -> bool:
        return is_temp_id(self.id)

    @property
    def is_system(self) -> bool:
        return self.kind in SYSTEM_KINDS


@dataclass
class MessageDraft:
    """What the user submitted, before the server has seen it.

    Attachments are plain dicts as handed over by the picker
    (``name``, ``type``, ``size``, ``uri``/``url`` or ``path``).
    """

    content: str
    kind: MessageKind = MessageKind.TEXT
    reply_to: str | None = None
    attachments: list[dict] = field(default_factory=list)
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class OptimisticHandle:
    """Ticket returned by ``send``; reconciliation only touches ``temp_id``."""

    conversation_id: str
    temp_id: str
