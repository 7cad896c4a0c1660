"""Tests for ChatSession orchestration."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from crm_chat.chat.lifecycle import MessageLifecycleManager
from crm_chat.chat.models import Message, MessageDraft, MessageKind, MessageStatus
from crm_chat.chat.session import ChatSession
from crm_chat.chat.transport import BaseChatTransport
from crm_chat.exceptions import (
    ChatTransportError,
    MessageDeliveryError,
    MessageNotEditableError,
)
from crm_chat.extraction.templates import TemplateStore


def _msg(message_id, content="hi", sender_id="me", status=MessageStatus.SENT,
         timestamp="2024-05-01T10:00:00Z", is_edited=False):
    return Message(
        id=message_id,
        conversation_id="c1",
        sender_id=sender_id,
        sender_name="Agent",
        kind=MessageKind.TEXT,
        content=content,
        timestamp=timestamp,
        status=status,
        is_edited=is_edited,
    )


def _session(*messages):
    transport = AsyncMock(spec=BaseChatTransport)
    manager = MessageLifecycleManager("c1", current_user_id="me")
    manager.reset(list(messages))
    return ChatSession(transport, manager), transport


def test_send_success_reconciles():
    session, transport = _session(_msg("m1"))
    transport.send_message.return_value = _msg("srv-1", content="hello")

    result = asyncio.run(session.send(MessageDraft(content="hello")))

    assert result.id == "srv-1"
    assert [m.id for m in session.manager.messages()] == ["m1", "srv-1"]
    transport.send_message.assert_awaited_once()


def test_submit_shows_sending_before_reply():
    session, transport = _session()
    transport.send_message.return_value = _msg("srv-1", content="hello")

    async def run():
        handle, task = session.submit(MessageDraft(content="hello"))
        pending = session.manager.get(handle.temp_id)
        assert pending.status == MessageStatus.SENDING
        await task
        return handle

    handle = asyncio.run(run())
    assert handle.temp_id not in session.manager
    assert session.manager.get("srv-1").content == "hello"


def test_send_failure_marks_failed_and_raises():
    session, transport = _session(_msg("m1"))
    transport.send_message.side_effect = ChatTransportError("timeout")

    with pytest.raises(MessageDeliveryError) as exc_info:
        asyncio.run(session.send(MessageDraft(content="hello")))

    failed = exc_info.value.message
    assert failed.status == MessageStatus.FAILED
    assert failed.content == "hello"
    assert [m.id for m in session.manager.messages()] == ["m1", exc_info.value.handle.temp_id]


def test_concurrent_sends_touch_only_their_own_entry():
    session, transport = _session()

    async def fake_send(conversation_id, draft):
        if draft.content == "bad":
            await asyncio.sleep(0)
            raise ChatTransportError("rejected")
        return _msg("srv-ok", content=draft.content)

    transport.send_message.side_effect = fake_send

    async def run():
        return await asyncio.gather(
            session.send(MessageDraft(content="bad")),
            session.send(MessageDraft(content="good")),
            return_exceptions=True,
        )

    results = asyncio.run(run())
    assert isinstance(results[0], MessageDeliveryError)
    assert results[1].id == "srv-ok"
    listed = session.manager.messages()
    assert [m.content for m in listed] == ["bad", "good"]
    assert [m.status for m in listed] == [MessageStatus.FAILED, MessageStatus.SENT]


def test_retry_sends_fresh_entry():
    session, transport = _session()
    transport.send_message.side_effect = ChatTransportError("offline")
    with pytest.raises(MessageDeliveryError) as exc_info:
        asyncio.run(session.send(MessageDraft(content="again")))
    failed_id = exc_info.value.handle.temp_id

    transport.send_message.side_effect = None
    transport.send_message.return_value = _msg("srv-2", content="again")
    result = asyncio.run(session.retry(failed_id))

    assert result.id == "srv-2"
    assert [m.id for m in session.manager.messages()] == ["srv-2"]


def test_retry_rejects_non_failed():
    session, _ = _session(_msg("m1"))
    with pytest.raises(MessageNotEditableError):
        asyncio.run(session.retry("m1"))


def test_edit_applies_server_copy():
    session, transport = _session(_msg("m1", content="old"))
    transport.edit_message.return_value = _msg("m1", content="new", is_edited=True)

    result = asyncio.run(session.edit("m1", "new"))

    assert result.content == "new"
    assert session.manager.get("m1").is_edited
    transport.edit_message.assert_awaited_once_with("m1", "new")


def test_edit_failure_leaves_list_unchanged():
    session, transport = _session(_msg("m1", content="old"))
    transport.edit_message.side_effect = ChatTransportError("500")

    with pytest.raises(ChatTransportError):
        asyncio.run(session.edit("m1", "new"))
    assert session.manager.get("m1").content == "old"


def test_edit_other_users_message_rejected_without_request():
    session, transport = _session(_msg("m1", sender_id="customer"))
    with pytest.raises(MessageNotEditableError):
        asyncio.run(session.edit("m1", "new"))
    transport.edit_message.assert_not_awaited()


def test_edit_missing_is_noop():
    session, transport = _session(_msg("m1"))
    assert asyncio.run(session.edit("gone", "x")) is None
    transport.edit_message.assert_not_awaited()


def test_delete_waits_for_confirmation():
    session, transport = _session(_msg("m1"), _msg("m2"))
    transport.delete_message.side_effect = ChatTransportError("403")

    with pytest.raises(ChatTransportError):
        asyncio.run(session.delete("m1"))
    assert "m1" in session.manager

    transport.delete_message.side_effect = None
    assert asyncio.run(session.delete("m1")) is True
    assert [m.id for m in session.manager.messages()] == ["m2"]


def test_delete_missing_is_noop():
    session, transport = _session(_msg("m1"))
    assert asyncio.run(session.delete("missing")) is False
    assert [m.id for m in session.manager.messages()] == ["m1"]
    transport.delete_message.assert_not_awaited()


def test_delete_failed_optimistic_entry_is_local():
    session, transport = _session()
    transport.send_message.side_effect = ChatTransportError("offline")
    with pytest.raises(MessageDeliveryError) as exc_info:
        asyncio.run(session.send(MessageDraft(content="oops")))

    assert asyncio.run(session.delete(exc_info.value.handle.temp_id)) is True
    assert len(session.manager) == 0
    transport.delete_message.assert_not_awaited()


def test_load_sorts_oldest_first():
    session, transport = _session(_msg("stale"))
    transport.fetch_messages.return_value = [
        _msg("b", timestamp="2024-05-01T11:00:00Z"),
        _msg("a", timestamp="2024-05-01T10:00:00Z"),
    ]
    listed = asyncio.run(session.load())
    assert [m.id for m in listed] == ["a", "b"]


def test_refresh_appends_new_and_advances_status():
    session, transport = _session(_msg("a", timestamp="2024-05-01T10:00:00Z"))
    transport.fetch_messages.return_value = [
        _msg("c", timestamp="2024-05-01T12:00:00Z"),
        _msg("a", status=MessageStatus.READ, timestamp="2024-05-01T10:00:00Z"),
        _msg("b", timestamp="2024-05-01T11:00:00Z"),
    ]

    added = asyncio.run(session.refresh())

    assert [m.id for m in added] == ["b", "c"]
    assert [m.id for m in session.manager.messages()] == ["a", "b", "c"]
    assert session.manager.get("a").status == MessageStatus.READ


def test_update_status():
    session, transport = _session(_msg("m1"))
    transport.update_message_status.return_value = _msg("m1", status=MessageStatus.DELIVERED)
    result = asyncio.run(session.update_status("m1", MessageStatus.DELIVERED))
    assert result.status == MessageStatus.DELIVERED


def test_mark_read_failure_is_logged_not_raised():
    session, transport = _session()
    transport.mark_conversation_read.side_effect = ChatTransportError("offline")
    asyncio.run(session.mark_read())
    transport.mark_conversation_read.assert_awaited_once_with("c1")


def test_extract_selected_uses_active_templates():
    session, _ = _session(_msg("m1", content="客户：李雷"), _msg("m2", content="13800138000"))
    session.templates = TemplateStore()
    session.templates.import_set('{"name": ["客户[:：](?P<value>\\\\S+)"]}')
    session.selection.select("m1")
    session.selection.select("m2")

    record = session.extract_selected()

    assert record["name"] == "李雷"
    assert record["phone"] == "13800138000"
    assert not session.selection.active


def test_delete_rejected_while_send_in_flight():
    session, transport = _session()
    release = None

    async def slow_send(conversation_id, draft):
        await release.wait()
        return _msg("srv-1", content=draft.content)

    transport.send_message.side_effect = slow_send

    async def run():
        nonlocal release
        release = asyncio.Event()
        handle, task = session.submit(MessageDraft(content="hello"))
        with pytest.raises(MessageNotEditableError, match="still being sent"):
            await session.delete(handle.temp_id)
        assert handle.temp_id in session.manager
        release.set()
        await task

    asyncio.run(run())
    assert [m.id for m in session.manager.messages()] == ["srv-1"]
    transport.delete_message.assert_not_awaited()


def test_retry_resubmits_original_attachments(tmp_path):
    photo = tmp_path / "a.png"
    photo.write_bytes(b"png")
    attachments = [{"path": str(photo), "name": "a.png", "type": "image/png"}]
    session, transport = _session()
    transport.send_message.side_effect = ChatTransportError("offline")
    with pytest.raises(MessageDeliveryError) as exc_info:
        asyncio.run(session.send(MessageDraft(
            content="[图片]", kind=MessageKind.IMAGE, attachments=attachments,
        )))

    transport.send_message.side_effect = None
    transport.send_message.return_value = _msg("srv-3", content="[图片]")
    asyncio.run(session.retry(exc_info.value.handle.temp_id))

    retried = transport.send_message.await_args.args[1]
    assert retried.attachments == attachments
    assert retried.kind == MessageKind.IMAGE
