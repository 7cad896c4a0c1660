"""Conversation message core: optimistic sends, reconciliation, selection."""

from crm_chat.chat.lifecycle import MessageLifecycleManager
from crm_chat.chat.models import (
    Attachment,
    Message,
    MessageDraft,
    MessageKind,
    MessageStatus,
    OptimisticHandle,
)
from crm_chat.chat.selection import MessageSelection, collect_text, extract_messages
from crm_chat.chat.session import ChatSession
from crm_chat.chat.transport import BaseChatTransport, HttpChatTransport

__all__ = [
    "MessageLifecycleManager",
    "ChatSession",
    "BaseChatTransport",
    "HttpChatTransport",
    "MessageSelection",
    "collect_text",
    "extract_messages",
    "Attachment",
    "Message",
    "MessageDraft",
    "MessageKind",
    "MessageStatus",
    "OptimisticHandle",
]
