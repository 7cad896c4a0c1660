"""Optimistic message list for one open conversation.

The manager owns the ordered message list of a single conversation and is the
only thing that mutates it. Messages live in a dict keyed by id, with a
separate slot list holding display order (oldest first). A pending send sits
under its ``temp-`` id until reconciliation swaps the server message into the
same slot, so positions never move.

No method here performs I/O or suspends; network round trips belong to
``ChatSession``, which calls the transition methods when results arrive.
"""

from __future__ import annotations

import dataclasses
import itertools
import logging
import time
from datetime import datetime, timezone

from crm_chat.chat.models import (
    STATUS_RANK,
    TEMP_ID_PREFIX,
    Attachment,
    Message,
    MessageDraft,
    MessageKind,
    MessageStatus,
    OptimisticHandle,
    is_temp_id,
)
from crm_chat.chat.parser import coerce_size
from crm_chat.exceptions import MessageNotEditableError, MessageNotFoundError

logger = logging.getLogger(__name__)


class MessageLifecycleManager:
    """Send/edit/delete/reconcile state machine over one conversation list.

    Args:
        conversation_id: The conversation this list belongs to.
        current_user_id: Sender id stamped on optimistic messages and used
            for ownership checks.
        current_user_name: Display name for optimistic messages.
    """

    def __init__(
        self,
        conversation_id: str,
        current_user_id: str,
        current_user_name: str = "我",
    ):
        self.conversation_id = conversation_id
        self.current_user_id = current_user_id
        self.current_user_name = current_user_name
        self._slots: list[str] = []
        self._by_id: dict[str, Message] = {}
        self._counter = itertools.count(1)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def messages(self) -> list[Message]:
        """Messages in display order, most recent last."""
        return [self._by_id[message_id] for message_id in self._slots]

    def get(self, message_id: str) -> Message | None:
        return self._by_id.get(message_id)

    def pending(self) -> list[Message]:
        return [m for m in self.messages() if m.status == MessageStatus.SENDING]

    def failed(self) -> list[Message]:
        return [m for m in self.messages() if m.status == MessageStatus.FAILED]

    def __len__(self) -> int:
        return len(self._slots)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._by_id

    # ------------------------------------------------------------------
    # Send and reconciliation
    # ------------------------------------------------------------------

    def send(self, draft: MessageDraft) -> OptimisticHandle:
        """Append a ``sending`` message for ``draft`` and return its handle."""
        temp_id = self._next_temp_id()
        message = Message(
            id=temp_id,
            conversation_id=self.conversation_id,
            sender_id=self.current_user_id,
            sender_name=self.current_user_name,
            kind=draft.kind,
            content=draft.content,
            timestamp=datetime.now(timezone.utc).isoformat(),
            status=MessageStatus.SENDING,
            is_edited=False,
            reply_to=draft.reply_to,
            attachments=_optimistic_attachments(draft.attachments),
            metadata=dict(draft.metadata),
        )
        self._append(message)
        logger.debug(f"Optimistic message {temp_id} added to {self.conversation_id}")
        return OptimisticHandle(conversation_id=self.conversation_id, temp_id=temp_id)

    def reconcile_success(self, handle: OptimisticHandle, server_message: Message) -> Message:
        """Swap the confirmed server message into the optimistic slot."""
        temp_id = handle.temp_id

        if server_message.id != temp_id and server_message.id in self._by_id:
            # A refresh delivered the confirmed message before the send returned
            self._by_id[server_message.id] = server_message
            if temp_id in self._by_id:
                self._remove(temp_id)
            logger.debug(f"{server_message.id} already listed; dropped optimistic {temp_id}")
            return server_message

        if temp_id not in self._by_id:
            logger.warning(
                f"Optimistic message {temp_id} no longer listed; appending {server_message.id}"
            )
            self._append(server_message)
            return server_message

        index = self._slots.index(temp_id)
        del self._by_id[temp_id]
        self._slots[index] = server_message.id
        self._by_id[server_message.id] = server_message
        logger.debug(f"Reconciled {temp_id} -> {server_message.id}")
        return server_message

    def reconcile_failure(self, handle: OptimisticHandle) -> Message | None:
        """Mark the optimistic message failed, keeping its content and slot."""
        message = self._by_id.get(handle.temp_id)
        if message is None:
            logger.warning(f"Cannot mark {handle.temp_id} failed: not in conversation list")
            return None
        message.status = MessageStatus.FAILED
        logger.debug(f"Optimistic message {handle.temp_id} marked failed")
        return message

    def discard(self, message_id: str) -> bool:
        """Drop a local optimistic entry (e.g. a failed send the user gave up on)."""
        if not is_temp_id(message_id):
            logger.warning(f"Refusing to discard server message {message_id} locally")
            return False
        if message_id not in self._by_id:
            logger.warning(f"Cannot discard {message_id}: not in conversation list")
            return False
        self._remove(message_id)
        return True

    # ------------------------------------------------------------------
    # Edit / delete (applied only after the server confirms)
    # ------------------------------------------------------------------

    def check_editable(self, message_id: str, sender_id: str | None = None) -> Message:
        """Return the message if ``sender_id`` may edit it, else raise."""
        message = self._require(message_id)
        self._check_owned(message, sender_id, "edit")
        if message.kind != MessageKind.TEXT:
            raise MessageNotEditableError(
                f"Only text messages can be edited; {message_id} is {message.kind.value}"
            )
        if message.is_optimistic:
            raise MessageNotEditableError(
                f"Message {message_id} has not been confirmed by the server"
            )
        return message

    def check_deletable(self, message_id: str, sender_id: str | None = None) -> Message:
        """Return the message if ``sender_id`` may delete it, else raise."""
        message = self._require(message_id)
        self._check_owned(message, sender_id, "delete")
        if message.status == MessageStatus.SENDING:
            raise MessageNotEditableError(
                f"Message {message_id} is still being sent"
            )
        return message

    def apply_edit(self, updated: Message) -> Message | None:
        """Replace a listed message with the server's edited copy."""
        if updated.id not in self._by_id:
            logger.warning(f"Edited message {updated.id} no longer listed; ignoring")
            return None
        if not updated.is_edited:
            updated = dataclasses.replace(updated, is_edited=True)
        self._by_id[updated.id] = updated
        return updated

    def apply_delete(self, message_id: str) -> bool:
        """Remove a message whose deletion the server has confirmed."""
        if message_id not in self._by_id:
            logger.warning(f"Deleted message {message_id} not in conversation list; ignoring")
            return False
        self._remove(message_id)
        return True

    # ------------------------------------------------------------------
    # Server-pushed changes
    # ------------------------------------------------------------------

    def append_incoming(self, message: Message) -> bool:
        """Append a fetched/pushed message; duplicates by id are ignored."""
        if message.id in self._by_id:
            return False
        self._append(message)
        return True

    def apply_status(self, message_id: str, status: MessageStatus) -> Message | None:
        """Advance delivery status along sent -> delivered -> read."""
        message = self._by_id.get(message_id)
        if message is None:
            logger.warning(f"Status update for unknown message {message_id}; ignoring")
            return None
        if message.is_system:
            return message
        current = STATUS_RANK.get(message.status)
        target = STATUS_RANK.get(status)
        if current is None or target is None or target <= current:
            logger.warning(
                f"Ignoring status change {message.status.value} -> {status.value} "
                f"for {message_id}"
            )
            return message
        message.status = status
        return message

    def reset(self, messages: list[Message]) -> None:
        """Replace the whole list, e.g. when the conversation is reopened."""
        self._slots = []
        self._by_id = {}
        for message in messages:
            self.append_incoming(message)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _next_temp_id(self) -> str:
        return f"{TEMP_ID_PREFIX}{next(self._counter)}-{int(time.time() * 1000)}"

    def _append(self, message: Message) -> None:
        self._slots.append(message.id)
        self._by_id[message.id] = message

    def _remove(self, message_id: str) -> None:
        self._slots.remove(message_id)
        del self._by_id[message_id]

    def _require(self, message_id: str) -> Message:
        message = self._by_id.get(message_id)
        if message is None:
            raise MessageNotFoundError(f"Message {message_id} not in conversation list")
        return message

    def _check_owned(self, message: Message, sender_id: str | None, action: str) -> None:
        if message.is_system:
            raise MessageNotEditableError(
                f"Cannot {action} {message.kind.value} message {message.id}"
            )
        requester = sender_id or self.current_user_id
        if message.sender_id != requester:
            raise MessageNotEditableError(
                f"Cannot {action} message {message.id} sent by {message.sender_id}"
            )


def _optimistic_attachments(raw_attachments: list[dict]) -> list[Attachment]:
    attachments = []
    for index, raw in enumerate(raw_attachments):
        attachments.append(
            Attachment(
                id=f"temp-attachment-{index}",
                name=raw.get("name") or f"附件{index + 1}",
                media_type=raw.get("type") or "application/octet-stream",
                size=coerce_size(raw.get("size")),
                url=raw.get("url") or raw.get("uri") or "",
            )
        )
    return attachments
