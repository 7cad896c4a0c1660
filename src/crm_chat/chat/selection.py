"""Multi-select over a conversation, feeding selected text into extraction."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from crm_chat.chat.lifecycle import MessageLifecycleManager
from crm_chat.chat.models import Message, MessageKind
from crm_chat.extraction.engine import extract

logger = logging.getLogger(__name__)


def collect_text(
    messages: Iterable[Message],
    ids: Iterable[str],
    only_text_kind: bool = True,
) -> str:
    """Join the contents of the selected messages in list order, one per line."""
    wanted = set(ids)
    parts = [
        m.content
        for m in messages
        if m.id in wanted and (not only_text_kind or m.kind == MessageKind.TEXT)
    ]
    return "\n".join(parts)


def extract_messages(
    messages: Iterable[Message],
    ids: Iterable[str],
    templates: Mapping[str, list[str]] | None = None,
    only_text_kind: bool = True,
) -> dict[str, str]:
    """Run field extraction over the combined text of the selected messages."""
    return extract(collect_text(messages, ids, only_text_kind), templates)


class MessageSelection:
    """Ids picked in multi-select mode, in the order they were picked."""

    def __init__(self):
        self._ids: list[str] = []

    @property
    def ids(self) -> list[str]:
        return list(self._ids)

    @property
    def active(self) -> bool:
        return bool(self._ids)

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._ids

    def select(self, message_id: str) -> None:
        if message_id not in self._ids:
            self._ids.append(message_id)

    def toggle(self, message_id: str) -> bool:
        """Flip membership; returns True if the id is now selected."""
        if message_id in self._ids:
            self._ids.remove(message_id)
            return False
        self._ids.append(message_id)
        return True

    def clear(self) -> None:
        self._ids = []

    def collect_text(self, manager: MessageLifecycleManager, only_text_kind: bool = True) -> str:
        return collect_text(manager.messages(), self._ids, only_text_kind)

    def extract(
        self,
        manager: MessageLifecycleManager,
        templates: Mapping[str, list[str]] | None = None,
    ) -> dict[str, str]:
        """Extract one merged record from the selection, then leave select mode."""
        record = extract(self.collect_text(manager), templates)
        logger.debug(f"Extracted {sorted(record)} from {len(self._ids)} selected messages")
        self.clear()
        return record
