"""Parse chat API payloads into Message records, and build request bodies."""

from __future__ import annotations

import logging
from datetime import timezone

import dateutil.parser as parser

from crm_chat.chat.models import (
    Attachment,
    Message,
    MessageDraft,
    MessageKind,
    MessageStatus,
)

logger = logging.getLogger(__name__)


def parse_message(raw: dict) -> Message | None:
    """Normalize one message dict from the API; returns None if it has no id.

    This is a pure parsing function with no network calls.
    """
    message_id = str(raw.get("id") or "").strip()
    if not message_id:
        return None

    kind = _parse_kind(raw.get("type"))
    status = _parse_status(raw.get("status"))
    if kind in (MessageKind.SYSTEM, MessageKind.NOTIFICATION):
        status = MessageStatus.SENT

    return Message(
        id=message_id,
        conversation_id=str(raw.get("conversation_id") or ""),
        sender_id=str(raw.get("sender_id") or ""),
        sender_name=raw.get("sender_name") or "",
        kind=kind,
        content=raw.get("content") or "",
        timestamp=raw.get("timestamp") or "",
        status=status,
        is_edited=bool(raw.get("is_edited", False)),
        reply_to=raw.get("reply_to") or None,
        attachments=[parse_attachment(a) for a in raw.get("attachments") or []],
        sender_avatar=raw.get("sender_avatar") or None,
        metadata=dict(raw.get("metadata") or {}),
    )


def parse_messages(items: list[dict]) -> list[Message]:
    """Parse a page of messages, dropping rows without an id."""
    messages = []
    for item in items:
        message = parse_message(item)
        if message is None:
            logger.warning("Dropping message payload without id")
            continue
        messages.append(message)
    return messages


def parse_attachment(raw: dict) -> Attachment:
    return Attachment(
        id=str(raw.get("id") or ""),
        name=raw.get("name") or "",
        media_type=raw.get("type") or "application/octet-stream",
        size=coerce_size(raw.get("size")),
        url=raw.get("url") or "",
        thumbnail_url=raw.get("thumbnail_url") or None,
        metadata=dict(raw.get("metadata") or {}),
    )


def coerce_size(value) -> int:
    """Byte size from an API or picker value; anything non-numeric is 0."""
    try:
        return max(int(float(value or 0)), 0)
    except (TypeError, ValueError, OverflowError):
        logger.debug(f"Ignoring non-numeric attachment size {value!r}")
        return 0


def build_send_payload(conversation_id: str, draft: MessageDraft) -> dict:
    """JSON body for ``POST /api/chat/messages`` (attachments excluded)."""
    payload = {
        "conversation_id": conversation_id,
        "type": draft.kind.value,
        "content": draft.content,
    }
    if draft.reply_to:
        payload["reply_to"] = draft.reply_to
    if draft.metadata:
        payload["metadata"] = draft.metadata
    return payload


def _parse_kind(value) -> MessageKind:
    try:
        return MessageKind(value)
    except ValueError:
        logger.debug(f"Unknown message type {value!r}, treating as text")
        return MessageKind.TEXT


def _parse_status(value) -> MessageStatus:
    try:
        return MessageStatus(value)
    except ValueError:
        return MessageStatus.SENT


def sort_chronologically(messages: list[Message]) -> list[Message]:
    """Oldest first by timestamp; unparseable timestamps keep their place at the end."""
    dated = []
    undated = []
    for message in messages:
        try:
            dated.append((_timestamp_key(message.timestamp), message))
        except (TypeError, ValueError, OverflowError):
            undated.append(message)
    dated.sort(key=lambda pair: pair[0])
    return [message for _, message in dated] + undated


def _timestamp_key(value: str) -> float:
    parsed = parser.isoparse(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()
