"""Chat API transport: abstract interface plus an httpx-based REST client."""

from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from typing import Any
from urllib.parse import quote, urlparse
from urllib.request import url2pathname

import httpx

from crm_chat.chat.models import Message, MessageDraft, MessageStatus
from crm_chat.chat.parser import build_send_payload, parse_message, parse_messages
from crm_chat.exceptions import ChatTransportError

logger = logging.getLogger(__name__)


class BaseChatTransport(ABC):
    """What the message core needs from the network."""

    @abstractmethod
    async def send_message(self, conversation_id: str, draft: MessageDraft) -> Message:
        """Submit a new message; returns the server's copy."""
        ...

    @abstractmethod
    async def fetch_messages(
        self,
        conversation_id: str,
        before: str | None = None,
        limit: int = 20,
    ) -> list[Message]:
        """One page of a conversation's messages."""
        ...

    @abstractmethod
    async def edit_message(self, message_id: str, content: str) -> Message:
        ...

    @abstractmethod
    async def delete_message(self, message_id: str) -> None:
        ...

    @abstractmethod
    async def update_message_status(self, message_id: str, status: MessageStatus) -> Message:
        ...

    @abstractmethod
    async def mark_conversation_read(self, conversation_id: str) -> None:
        ...


class HttpChatTransport(BaseChatTransport):
    """REST client for the CRM ``/api/chat`` endpoints.

    Args:
        base_url: API root, e.g. ``https://crm.example.com``. Falls back to
            CRM_API_BASE_URL.
        token: Bearer token. Falls back to CRM_API_TOKEN.
        timeout: Request timeout in seconds. Falls back to CRM_API_TIMEOUT,
            then 30.
        transport: Optional httpx transport (e.g. ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
        transport=None,
    ):
        base_url = base_url or os.environ.get("CRM_API_BASE_URL")
        if not base_url:
            raise ChatTransportError(
                "Chat API base URL is required. "
                "Pass it directly or set CRM_API_BASE_URL in your environment."
            )
        self.base_url = base_url.rstrip("/")
        self.token = token or os.environ.get("CRM_API_TOKEN")
        if timeout is None:
            timeout = float(os.environ.get("CRM_API_TIMEOUT", "30"))
        self.timeout = timeout
        self._transport = transport

    async def send_message(self, conversation_id: str, draft: MessageDraft) -> Message:
        payload = build_send_payload(conversation_id, draft)
        files = await self._attachment_files(draft.attachments)
        if files:
            form = {
                k: json.dumps(v, ensure_ascii=False) if isinstance(v, dict) else str(v)
                for k, v in payload.items()
            }
            body = await self._request("POST", "/api/chat/messages", data=form, files=files)
        else:
            body = await self._request("POST", "/api/chat/messages", json=payload)
        message = self._message_from(body, "send")
        logger.info(f"Sent message {message.id} to conversation {conversation_id}")
        return message

    async def fetch_messages(
        self,
        conversation_id: str,
        before: str | None = None,
        limit: int = 20,
    ) -> list[Message]:
        params: dict[str, Any] = {"limit": limit}
        if before:
            params["before"] = before
        body = await self._request(
            "GET",
            f"/api/chat/conversations/{_segment(conversation_id)}/messages",
            params=params,
        )
        items = body.get("data", []) if isinstance(body, dict) else body
        if not isinstance(items, list):
            raise ChatTransportError("Unexpected message page shape from chat API")
        try:
            return parse_messages(items)
        except (AttributeError, TypeError, ValueError) as e:
            raise ChatTransportError(f"Malformed message page from chat API: {e}") from e

    async def edit_message(self, message_id: str, content: str) -> Message:
        body = await self._request(
            "PUT", f"/api/chat/messages/{_segment(message_id)}", json={"content": content}
        )
        return self._message_from(body, "edit")

    async def delete_message(self, message_id: str) -> None:
        await self._request("DELETE", f"/api/chat/messages/{_segment(message_id)}")

    async def update_message_status(self, message_id: str, status: MessageStatus) -> Message:
        body = await self._request(
            "PUT",
            f"/api/chat/messages/{_segment(message_id)}/status",
            json={"status": status.value},
        )
        return self._message_from(body, "status update")

    async def mark_conversation_read(self, conversation_id: str) -> None:
        await self._request(
            "PUT", f"/api/chat/conversations/{_segment(conversation_id)}/read"
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=self._headers(),
                transport=self._transport,
            ) as client:
                response = await client.request(method, path, **kwargs)
                response.raise_for_status()
                if not response.content:
                    return None
                return response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"{method} {path} returned HTTP {e.response.status_code}")
            raise ChatTransportError(
                f"{method} {path} failed with HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"{method} {path} failed: {e}")
            raise ChatTransportError(f"{method} {path} failed: {e}") from e
        except ValueError as e:
            raise ChatTransportError(f"{method} {path} returned invalid JSON") from e

    async def _attachment_files(self, attachments: list[dict]) -> list[tuple]:
        """Multipart parts for every draft attachment.

        Local files come from ``path`` or a ``file://`` uri; ``http(s)`` uris are
        downloaded first. An attachment that cannot be read fails the send.
        """
        files = []
        for index, attachment in enumerate(attachments):
            path = attachment.get("path")
            uri = attachment.get("uri") or attachment.get("url")
            if path:
                content = _read_local(path)
                default_name = Path(path).name
            elif uri:
                content = await self._read_uri(uri)
                default_name = PurePosixPath(urlparse(uri).path).name
            else:
                raise ChatTransportError(f"Attachment #{index} has no path or uri")
            name = attachment.get("name") or default_name or f"attachment-{index + 1}"
            media_type = attachment.get("type") or "application/octet-stream"
            files.append(("attachments[]", (name, content, media_type)))
        return files

    async def _read_uri(self, uri: str) -> bytes:
        parsed = urlparse(uri)
        if parsed.scheme == "file":
            return _read_local(url2pathname(parsed.path))
        if parsed.scheme not in ("http", "https"):
            raise ChatTransportError(f"Unsupported attachment uri {uri}")
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.get(uri)
                response.raise_for_status()
                return response.content
        except httpx.HTTPError as e:
            logger.error(f"Download of attachment {uri} failed: {e}")
            raise ChatTransportError(f"Cannot download attachment {uri}: {e}") from e

    @staticmethod
    def _message_from(body: Any, action: str) -> Message:
        if isinstance(body, dict) and isinstance(body.get("data"), dict):
            body = body["data"]
        try:
            message = parse_message(body) if isinstance(body, dict) else None
        except (TypeError, ValueError) as e:
            raise ChatTransportError(f"Chat API {action} response is malformed: {e}") from e
        if message is None:
            raise ChatTransportError(f"Chat API {action} response did not contain a message")
        return message


def _segment(value: str) -> str:
    return quote(str(value), safe="")


def _read_local(path: str) -> bytes:
    try:
        return Path(path).read_bytes()
    except OSError as e:
        raise ChatTransportError(f"Cannot read attachment {path}: {e}") from e
