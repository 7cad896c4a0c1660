"""Async glue between a chat transport and the conversation's message list."""

from __future__ import annotations

import asyncio
import logging

from crm_chat.chat.lifecycle import MessageLifecycleManager
from crm_chat.chat.models import (
    STATUS_RANK,
    Message,
    MessageDraft,
    MessageStatus,
    OptimisticHandle,
)
from crm_chat.chat.parser import sort_chronologically
from crm_chat.chat.selection import MessageSelection
from crm_chat.chat.transport import BaseChatTransport
from crm_chat.exceptions import (
    ChatTransportError,
    MessageDeliveryError,
    MessageNotEditableError,
    MessageNotFoundError,
)
from crm_chat.extraction.templates import TemplateStore

logger = logging.getLogger(__name__)


class ChatSession:
    """One open conversation: local state in ``manager``, I/O via ``transport``.

    Sends are optimistic: the ``sending`` entry is listed before the request
    goes out and is reconciled in place when it returns. Edits and deletes are
    applied only after the server confirms them.
    """

    def __init__(
        self,
        transport: BaseChatTransport,
        manager: MessageLifecycleManager,
        templates: TemplateStore | None = None,
    ):
        self.transport = transport
        self.manager = manager
        self.templates = templates or TemplateStore()
        self.selection = MessageSelection()
        # Drafts of unconfirmed sends, by temp id, so a retry resubmits them as given
        self._drafts: dict[str, MessageDraft] = {}

    @property
    def conversation_id(self) -> str:
        return self.manager.conversation_id

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def submit(self, draft: MessageDraft) -> tuple[OptimisticHandle, asyncio.Task]:
        """Insert the optimistic entry now and deliver in a background task.

        Must be called from a running event loop. The task resolves to the
        confirmed message or raises MessageDeliveryError.
        """
        handle = self._track(draft)
        task = asyncio.get_running_loop().create_task(self._deliver(handle, draft))
        return handle, task

    async def send(self, draft: MessageDraft) -> Message:
        """Send and wait for reconciliation."""
        handle = self._track(draft)
        return await self._deliver(handle, draft)

    async def retry(self, message_id: str) -> Message:
        """Re-send a failed message as a fresh optimistic entry."""
        failed = self.manager.get(message_id)
        if failed is None or failed.status != MessageStatus.FAILED:
            raise MessageNotEditableError(f"Message {message_id} is not a failed send")
        draft = self._drafts.pop(message_id, None) or _draft_from(failed)
        self.manager.discard(message_id)
        return await self.send(draft)

    def _track(self, draft: MessageDraft) -> OptimisticHandle:
        handle = self.manager.send(draft)
        self._drafts[handle.temp_id] = draft
        return handle

    async def _deliver(self, handle: OptimisticHandle, draft: MessageDraft) -> Message:
        try:
            server_message = await self.transport.send_message(self.conversation_id, draft)
        except Exception as e:
            failed = self.manager.reconcile_failure(handle)
            logger.error(f"Send of {handle.temp_id} to {self.conversation_id} failed: {e}")
            raise MessageDeliveryError(
                f"Failed to send message: {e}", handle=handle, failed_message=failed
            ) from e
        self._drafts.pop(handle.temp_id, None)
        return self.manager.reconcile_success(handle, server_message)

    # ------------------------------------------------------------------
    # Edit / delete
    # ------------------------------------------------------------------

    async def edit(
        self,
        message_id: str,
        new_content: str,
        sender_id: str | None = None,
    ) -> Message | None:
        """Edit a text message; the list changes only once the server agrees."""
        try:
            self.manager.check_editable(message_id, sender_id)
        except MessageNotFoundError:
            logger.warning(f"Cannot edit {message_id}: not in conversation list")
            return None
        updated = await self.transport.edit_message(message_id, new_content)
        return self.manager.apply_edit(updated)

    async def delete(self, message_id: str, sender_id: str | None = None) -> bool:
        """Delete a message after server confirmation; unknown ids are a no-op."""
        try:
            message = self.manager.check_deletable(message_id, sender_id)
        except MessageNotFoundError:
            logger.warning(f"Cannot delete {message_id}: not in conversation list")
            return False
        if message.is_optimistic:
            # check_deletable rejects entries still in flight, so this one failed
            self._drafts.pop(message_id, None)
            return self.manager.discard(message_id)
        await self.transport.delete_message(message_id)
        removed = self.manager.apply_delete(message_id)
        if removed:
            logger.info(f"Deleted message {message_id} from {self.conversation_id}")
        return removed

    # ------------------------------------------------------------------
    # Fetching and status
    # ------------------------------------------------------------------

    async def load(self, limit: int = 20) -> list[Message]:
        """Replace the list with the latest page from the server."""
        page = await self.transport.fetch_messages(self.conversation_id, limit=limit)
        self.manager.reset(sort_chronologically(page))
        return self.manager.messages()

    async def refresh(self, limit: int = 20) -> list[Message]:
        """Poll for new messages; returns only the ones not already listed."""
        page = await self.transport.fetch_messages(self.conversation_id, limit=limit)
        added = []
        for message in sort_chronologically(page):
            if self.manager.append_incoming(message):
                added.append(message)
                continue
            existing = self.manager.get(message.id)
            if (
                existing is not None
                and STATUS_RANK.get(message.status, 0) > STATUS_RANK.get(existing.status, 0)
            ):
                self.manager.apply_status(message.id, message.status)
        if added:
            logger.debug(f"{len(added)} new messages in {self.conversation_id}")
        return added

    async def update_status(self, message_id: str, status: MessageStatus) -> Message | None:
        server_message = await self.transport.update_message_status(message_id, status)
        return self.manager.apply_status(message_id, server_message.status)

    async def mark_read(self) -> None:
        try:
            await self.transport.mark_conversation_read(self.conversation_id)
        except ChatTransportError as e:
            logger.warning(f"Could not mark {self.conversation_id} read: {e}")

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    def extract_selected(self) -> dict[str, str]:
        """Merged record for the current multi-selection, using active templates."""
        return self.selection.extract(self.manager, self.templates.get_active())


def _draft_from(message: Message) -> MessageDraft:
    return MessageDraft(
        content=message.content,
        kind=message.kind,
        reply_to=message.reply_to,
        attachments=[
            {"name": a.name, "type": a.media_type, "size": a.size, "url": a.url}
            for a in message.attachments
        ],
        metadata=dict(message.metadata),
    )
