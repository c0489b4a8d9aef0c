"""Tests for create/edit/delete propagation through the relay orchestrator."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from unittest.mock import patch

import pytest

from crossrelay.config import Config
from crossrelay.core.errors import DispatchError, MessageAlreadyDeletedError
from crossrelay.events import (
    Attachment,
    Embed,
    MemberJoin,
    MemberLeave,
    MessageDelete,
    MessageIn,
    ReplyContext,
    TextEntity,
    message_in,
)
from crossrelay.gateway import BridgeRoutingTable, MemoryCorrelationStore, RelayOrchestrator
from tests.mocks import MockLeftAdapter, MockRightAdapter, bridge_dict


@dataclass
class Relay:
    orchestrator: RelayOrchestrator
    store: MemoryCorrelationStore
    left: MockLeftAdapter
    right: MockRightAdapter


def make_relay(bridges: list[dict[str, Any]] | None = None, **settings: Any) -> Relay:
    config = Config({"bridges": bridges if bridges is not None else [bridge_dict()], **settings})
    router = BridgeRoutingTable()
    router.load_from_config(config.raw)
    store = MemoryCorrelationStore()
    left, right = MockLeftAdapter(), MockRightAdapter()
    return Relay(RelayOrchestrator(config, router, store, left, right), store, left, right)


@pytest.fixture
def relay() -> Relay:
    return make_relay()


def left_msg(text: str = "Hello", message_id: str = "1", chat_id: str = "-100", **kwargs: Any) -> MessageIn:
    return MessageIn(side="left", chat_id=chat_id, message_id=message_id, author_display="Alice", text=text, **kwargs)


def right_msg(text: str = "hi", message_id: str = "7", chat_id: str = "555", **kwargs: Any) -> MessageIn:
    return MessageIn(side="right", chat_id=chat_id, message_id=message_id, author_display="Bob", text=text, **kwargs)


class TestCreate:
    """New messages cross the bridge and are recorded."""

    @pytest.mark.asyncio
    async def test_left_to_right(self, relay: Relay):
        await relay.orchestrator.on_create(left_msg("Hello"))

        assert len(relay.right.sent) == 1
        sent = relay.right.sent[0]
        assert sent.chat_id == "555"
        assert sent.markup == "**Alice**\nHello"
        assert sent.as_embed is False
        assert await relay.store.get("main", "l2r", "1") == ["R1"]

    @pytest.mark.asyncio
    async def test_right_to_left(self, relay: Relay):
        await relay.orchestrator.on_create(right_msg("**hi** <there>"))

        assert [(m.chat_id, m.markup) for m in relay.left.sent] == [("-100", "<b>Bob</b>\n<b>hi</b> &lt;there&gt;")]
        assert await relay.store.get("main", "r2l", "7") == ["L1"]

    @pytest.mark.asyncio
    async def test_colon_after_sender_name(self):
        relay = make_relay(colon_after_sender_name=True)
        await relay.orchestrator.on_create(right_msg("hi"))
        assert relay.left.sent[0].markup == "<b>Bob</b>:\nhi"

    @pytest.mark.asyncio
    async def test_usernames_off(self):
        relay = make_relay([bridge_dict(left_flags={"send_usernames": False})])
        await relay.orchestrator.on_create(left_msg("Hello"))
        assert relay.right.sent[0].markup == "Hello"

    @pytest.mark.asyncio
    async def test_first_name_setting(self):
        relay = make_relay(use_first_name_instead_of_username=True)
        await relay.orchestrator.on_create(left_msg("Hello", raw={"first_name": "Al"}))
        assert relay.right.sent[0].markup == "**Al**\nHello"

    @pytest.mark.asyncio
    async def test_forwarded_header(self, relay: Relay):
        await relay.orchestrator.on_create(left_msg("news", forwarded_from="Channel"))
        assert relay.right.sent[0].markup == "**Channel** (forwarded by **Alice**)\nnews"

    @pytest.mark.asyncio
    async def test_long_message_is_chunked_and_all_ids_recorded(self):
        relay = make_relay([bridge_dict(right_flags={"embed_policy": "never"})])

        await relay.orchestrator.on_create(left_msg("x" * 2500))

        assert [len(m.markup) for m in relay.right.sent] == [2000, 510]
        assert "".join(m.markup for m in relay.right.sent) == "**Alice**\n" + "x" * 2500
        assert await relay.store.get("main", "l2r", "1") == ["R1", "R2"]

    @pytest.mark.asyncio
    async def test_many_links_use_embed(self, relay: Relay):
        entities = [
            TextEntity(offset=0, length=1, kind="text_link", url="https://a.io"),
            TextEntity(offset=2, length=1, kind="text_link", url="https://b.io"),
        ]

        await relay.orchestrator.on_create(left_msg("a b", entities=entities))

        assert len(relay.right.sent) == 1
        assert relay.right.sent[0].as_embed is True
        assert relay.right.sent[0].markup == "**Alice**\n[a](https://a.io) [b](https://b.io)"

    @pytest.mark.asyncio
    async def test_fan_out_in_config_order(self):
        relay = make_relay([bridge_dict("a", "-100", "555"), bridge_dict("b", "-100", "666")])

        await relay.orchestrator.on_create(left_msg("Hello"))

        assert [m.chat_id for m in relay.right.sent] == ["555", "666"]
        assert await relay.store.get("a", "l2r", "1") == ["R1"]
        assert await relay.store.get("b", "l2r", "1") == ["R2"]

    @pytest.mark.asyncio
    async def test_direction_gating(self):
        relay = make_relay([bridge_dict(direction="l2r")])

        await relay.orchestrator.on_create(right_msg("ignored"))
        await relay.orchestrator.on_create(left_msg("Hello"))

        assert relay.left.sent == []
        assert len(relay.right.sent) == 1

    @pytest.mark.asyncio
    async def test_right_thread_goes_to_bound_left_thread(self):
        relay = make_relay([bridge_dict(thread_routes=[{"left": 5, "right": 777}])])

        await relay.orchestrator.on_create(right_msg("in thread", thread_id="777"))

        sent = relay.left.sent[0]
        assert sent.chat_id == "-100"
        assert sent.thread_id == "5"

    @pytest.mark.asyncio
    async def test_left_thread_goes_to_right_thread_channel(self):
        relay = make_relay([bridge_dict(thread_routes=[{"left": 5, "right": 777}])])

        await relay.orchestrator.on_create(left_msg("in thread", thread_id="5"))

        assert relay.right.sent[0].chat_id == "777"
        assert relay.right.sent[0].thread_id is None

    @pytest.mark.asyncio
    async def test_empty_message_is_not_sent(self):
        relay = make_relay([bridge_dict(left_flags={"send_usernames": False})])
        await relay.orchestrator.on_create(left_msg(""))
        assert relay.right.sent == []


class TestAttachmentsAndEmbeds:
    """Right-bound files and embeds relayed to the left side."""

    @pytest.mark.asyncio
    async def test_oversize_attachment_skipped(self, relay: Relay):
        video = Attachment(url="https://cdn/x.mp4", name="x.mp4", kind="video", size=30_000_000)
        photo = Attachment(url="https://cdn/a.png", name="a.png", kind="photo", size=1000)

        await relay.orchestrator.on_create(right_msg("", attachments=[video, photo]))

        assert len(relay.left.sent) == 1
        assert relay.left.sent[0].markup == "<b>Bob</b>"
        assert relay.left.sent[0].attachments == [photo]

    @pytest.mark.asyncio
    async def test_attachment_only_on_first_chunk(self):
        relay = make_relay(limits={"left_message": 20})
        photo = Attachment(url="https://cdn/a.png", name="a.png", kind="photo", size=10)

        await relay.orchestrator.on_create(right_msg("y" * 30, attachments=[photo]))

        assert len(relay.left.sent) == 3
        assert relay.left.sent[0].attachments == [photo]
        assert all(m.attachments == [] for m in relay.left.sent[1:])

    @pytest.mark.asyncio
    async def test_embed_is_rendered(self, relay: Relay):
        await relay.orchestrator.on_create(right_msg("", embeds=[Embed(title="T")]))

        assert [m.markup for m in relay.left.sent] == ["<b>Bob</b>\nT\n"]
        assert await relay.store.get("main", "r2l", "7") == ["L1"]


class TestReplies:
    """Reply threading through correlation lookups."""

    @pytest.mark.asyncio
    async def test_reply_to_relayed_message_anchors_on_original(self, relay: Relay):
        await relay.orchestrator.on_create(left_msg("question", message_id="1"))

        reply = ReplyContext(message_id="R1", author_display="Alice", text="question", is_relayed=True)
        await relay.orchestrator.on_create(right_msg("answer", reply_to=reply))

        assert relay.left.sent[0].reply_to == "1"

    @pytest.mark.asyncio
    async def test_reply_to_own_side_anchors_on_relay(self, relay: Relay):
        await relay.orchestrator.on_create(left_msg("question", message_id="1"))

        reply = ReplyContext(message_id="1", author_display="Alice", text="question")
        await relay.orchestrator.on_create(left_msg("follow up", message_id="2", reply_to=reply))

        followup = relay.right.sent[1]
        assert followup.reply_to == "R1"
        assert followup.markup == "**Alice**\nfollow up"

    @pytest.mark.asyncio
    async def test_untracked_reply_is_quoted(self, relay: Relay):
        reply = ReplyContext(message_id="99", author_display="Bob", text="original text")

        await relay.orchestrator.on_create(left_msg("Hi", reply_to=reply))

        sent = relay.right.sent[0]
        assert sent.reply_to is None
        assert sent.markup == "**Alice** (in reply to **Bob**)\n> original text\nHi"

    @pytest.mark.asyncio
    async def test_relayed_author_resolves_to_mention(self, relay: Relay):
        relay.right.users = {"bob": "9"}
        reply = ReplyContext(message_id="50", author_display="Bob", text="", is_relayed=True)

        await relay.orchestrator.on_create(left_msg("Hi", reply_to=reply))

        assert relay.right.sent[0].markup == "**Alice** (in reply to <@9>)\nHi"


class TestEdit:
    """Edits follow the recorded destination ids."""

    @pytest.mark.asyncio
    async def test_edit_left_to_right(self, relay: Relay):
        await relay.orchestrator.on_create(left_msg("Hello"))

        await relay.orchestrator.on_edit(left_msg("Hello again", is_edit=True))

        assert relay.right.edited == [("555", "R1", "**Alice**\nHello again", False)]

    @pytest.mark.asyncio
    async def test_edit_right_to_left(self, relay: Relay):
        await relay.orchestrator.on_create(right_msg("old"))

        await relay.orchestrator.on_edit(right_msg("new", is_edit=True))

        assert relay.left.edited == [("-100", "L1", "<b>Bob</b>\nnew", False)]

    @pytest.mark.asyncio
    async def test_untracked_edit_is_ignored(self, relay: Relay):
        await relay.orchestrator.on_edit(left_msg("Hello", is_edit=True))
        assert relay.right.edited == []

    @pytest.mark.asyncio
    async def test_shorter_edit_leaves_extra_messages(self):
        relay = make_relay([bridge_dict(right_flags={"embed_policy": "never"})])
        await relay.orchestrator.on_create(left_msg("x" * 2500))

        await relay.orchestrator.on_edit(left_msg("short", is_edit=True))

        assert relay.right.edited == [("555", "R1", "**Alice**\nshort", False)]

    @pytest.mark.asyncio
    async def test_longer_edit_folds_into_last_message(self):
        relay = make_relay([bridge_dict(right_flags={"embed_policy": "never"})])
        await relay.orchestrator.on_create(left_msg("Hello"))

        await relay.orchestrator.on_edit(left_msg("y" * 2500, is_edit=True))

        assert len(relay.right.edited) == 1
        _, message_id, markup, as_embed = relay.right.edited[0]
        assert message_id == "R1"
        assert len(markup) == 2000
        assert markup.endswith("…")
        assert as_embed is False

    @pytest.mark.asyncio
    async def test_long_edit_of_single_message_becomes_embed(self, relay: Relay):
        await relay.orchestrator.on_create(left_msg("Hello"))

        await relay.orchestrator.on_edit(left_msg("y" * 2500, is_edit=True))

        assert relay.right.edited == [("555", "R1", "**Alice**\n" + "y" * 2500, True)]

    @pytest.mark.asyncio
    async def test_dot_edit_deletes_everywhere(self, relay: Relay):
        await relay.orchestrator.on_create(left_msg("oops"))

        await relay.orchestrator.on_edit(left_msg(".", is_edit=True))

        assert relay.right.deleted == [("555", "R1")]
        assert relay.left.deleted == [("-100", "1")]
        assert relay.right.edited == []
        assert await relay.store.get("main", "l2r", "1") == []

    @pytest.mark.asyncio
    async def test_dot_edit_without_cross_delete_is_plain_edit(self):
        relay = make_relay([bridge_dict(left_flags={"cross_delete": False})])
        await relay.orchestrator.on_create(left_msg("oops"))

        await relay.orchestrator.on_edit(left_msg(".", is_edit=True))

        assert relay.right.deleted == []
        assert relay.right.edited == [("555", "R1", "**Alice**\n.", False)]

    @pytest.mark.asyncio
    async def test_padded_dot_is_not_a_delete(self, relay: Relay):
        await relay.orchestrator.on_create(left_msg("oops"))

        await relay.orchestrator.on_edit(left_msg(" .\n", is_edit=True))

        assert relay.right.deleted == []
        assert relay.left.deleted == []
        assert [(chat, msg_id) for chat, msg_id, _, _ in relay.right.edited] == [("555", "R1")]
        assert await relay.store.get("main", "l2r", "1") == ["R1"]

    @pytest.mark.asyncio
    async def test_formatted_dot_is_not_a_delete(self, relay: Relay):
        await relay.orchestrator.on_create(left_msg("oops"))

        bold_dot = [TextEntity(offset=0, length=1, kind="bold")]
        await relay.orchestrator.on_edit(left_msg(".", is_edit=True, entities=bold_dot))

        assert relay.right.deleted == []
        assert relay.right.edited == [("555", "R1", "**Alice**\n**.**", False)]

    @pytest.mark.asyncio
    async def test_edit_keeps_reply_quote(self, relay: Relay):
        reply = ReplyContext(message_id="99", author_display="Carol", text="earlier")
        await relay.orchestrator.on_create(left_msg("answer", reply_to=reply))

        await relay.orchestrator.on_edit(left_msg("answer2", reply_to=reply, is_edit=True))

        assert relay.right.edited == [("555", "R1", "**Alice** (in reply to **Carol**)\n> earlier\nanswer2", False)]

    @pytest.mark.asyncio
    async def test_edit_of_anchored_reply_keeps_short_header(self, relay: Relay):
        await relay.orchestrator.on_create(left_msg("question", message_id="1"))
        reply = ReplyContext(message_id="1", author_display="Alice", text="question")
        await relay.orchestrator.on_create(left_msg("follow up", message_id="2", reply_to=reply))

        await relay.orchestrator.on_edit(left_msg("follow up!", message_id="2", reply_to=reply, is_edit=True))

        assert relay.right.edited == [("555", "R2", "**Alice**\nfollow up!", False)]

    @pytest.mark.asyncio
    async def test_text_edit_leaves_rendered_embed_alone(self, relay: Relay):
        await relay.orchestrator.on_create(right_msg("hello", embeds=[Embed(title="T")]))
        assert [m.markup for m in relay.left.sent] == ["<b>Bob</b>\nT\n", "<b>Bob</b>\nhello"]

        await relay.orchestrator.on_edit(right_msg("hello EDITED", is_edit=True))

        assert relay.left.edited == [("-100", "L2", "<b>Bob</b>\nhello EDITED", False)]

    @pytest.mark.asyncio
    async def test_edited_embed_updates_its_own_message(self, relay: Relay):
        await relay.orchestrator.on_create(right_msg("hello", embeds=[Embed(title="T")]))

        await relay.orchestrator.on_edit(right_msg("hello EDITED", embeds=[Embed(title="T2")], is_edit=True))

        assert relay.left.edited == [
            ("-100", "L1", "<b>Bob</b>\nT2\n", False),
            ("-100", "L2", "<b>Bob</b>\nhello EDITED", False),
        ]

    @pytest.mark.asyncio
    async def test_embed_only_message_edit_makes_no_text_edit(self, relay: Relay):
        await relay.orchestrator.on_create(right_msg("", embeds=[Embed(title="T")]))

        await relay.orchestrator.on_edit(right_msg("late caption", is_edit=True))

        assert relay.left.edited == []


class TestDelete:
    """Delete propagation and its two lookup paths."""

    @pytest.mark.asyncio
    async def test_untracked_delete_makes_no_calls(self, relay: Relay):
        await relay.orchestrator.on_delete(MessageDelete(side="left", chat_id="-100", message_id="1"))

        assert relay.right.deleted == []
        assert relay.left.deleted == []

    @pytest.mark.asyncio
    async def test_delete_removes_every_chunk(self):
        relay = make_relay([bridge_dict(right_flags={"embed_policy": "never"})])
        await relay.orchestrator.on_create(left_msg("x" * 2500))

        await relay.orchestrator.on_delete(MessageDelete(side="left", chat_id="-100", message_id="1"))

        assert relay.right.deleted == [("555", "R1"), ("555", "R2")]
        assert await relay.store.get("main", "l2r", "1") == []

    @pytest.mark.asyncio
    async def test_deleting_a_relay_deletes_the_original(self, relay: Relay):
        await relay.orchestrator.on_create(left_msg("Hello"))

        await relay.orchestrator.on_delete(MessageDelete(side="right", chat_id="555", message_id="R1"))

        assert relay.left.deleted == [("-100", "1")]
        assert await relay.store.get("main", "l2r", "1") == []

    @pytest.mark.asyncio
    async def test_delete_removes_embed_and_text(self, relay: Relay):
        await relay.orchestrator.on_create(right_msg("hello", embeds=[Embed(title="T")]))

        await relay.orchestrator.on_delete(MessageDelete(side="right", chat_id="555", message_id="7"))

        assert relay.left.deleted == [("-100", "L1"), ("-100", "L2")]
        assert await relay.store.get("main", "r2l", "7") == []
        assert await relay.store.get("main", "r2l", "7#embeds") == []

    @pytest.mark.asyncio
    async def test_deleting_relayed_embed_deletes_the_original(self, relay: Relay):
        await relay.orchestrator.on_create(right_msg("", embeds=[Embed(title="T")]))

        await relay.orchestrator.on_delete(MessageDelete(side="left", chat_id="-100", message_id="L1"))

        assert relay.right.deleted == [("555", "7")]
        assert await relay.store.get("main", "r2l", "7") == []

    @pytest.mark.asyncio
    async def test_cross_delete_off(self):
        relay = make_relay([bridge_dict(left_flags={"cross_delete": False})])
        await relay.orchestrator.on_create(left_msg("Hello"))

        await relay.orchestrator.on_delete(MessageDelete(side="left", chat_id="-100", message_id="1"))

        assert relay.right.deleted == []
        assert await relay.store.get("main", "l2r", "1") == ["R1"]

    @pytest.mark.asyncio
    async def test_already_deleted_is_swallowed(self, relay: Relay):
        await relay.orchestrator.on_create(left_msg("Hello"))
        relay.right.fail_delete = [MessageAlreadyDeletedError("gone")]

        await relay.orchestrator.on_delete(MessageDelete(side="left", chat_id="-100", message_id="1"))

        assert await relay.store.get("main", "l2r", "1") == []


class TestFailures:
    """A failing bridge does not stop the others."""

    @pytest.mark.asyncio
    async def test_dispatch_error_is_logged_and_fan_out_continues(self):
        relay = make_relay([bridge_dict("a", "-100", "555"), bridge_dict("b", "-100", "666")])
        relay.right.fail_send = [DispatchError("rejected")]

        with patch("crossrelay.gateway.orchestrator.logger") as mock_logger:
            await relay.orchestrator.on_create(left_msg("Hello"))

        assert [m.chat_id for m in relay.right.sent] == ["666"]
        mock_logger.error.assert_called_once()
        assert mock_logger.error.call_args[0][1] == "a"
        assert await relay.store.get("a", "l2r", "1") == []

    @pytest.mark.asyncio
    async def test_unexpected_error_is_logged(self, relay: Relay):
        relay.right.fail_send = [RuntimeError("bug")]

        with patch("crossrelay.gateway.orchestrator.logger") as mock_logger:
            await relay.orchestrator.on_create(left_msg("Hello"))

        mock_logger.exception.assert_called_once()


class TestMembership:
    """Join and leave announcements."""

    @pytest.mark.asyncio
    async def test_left_join_announced_on_right(self, relay: Relay):
        await relay.orchestrator.on_member_join(MemberJoin(side="left", chat_id="-100", display="Alice", username="al_x"))

        assert [m.markup for m in relay.right.sent] == ["**Alice (al\\_x)** joined the Telegram side of the chat"]

    @pytest.mark.asyncio
    async def test_right_leave_announced_on_left(self, relay: Relay):
        await relay.orchestrator.on_member_leave(MemberLeave(side="right", chat_id="555", display="<Bob>"))

        assert [m.markup for m in relay.left.sent] == ["<b>&lt;Bob&gt;</b> left the Discord side of the chat"]

    @pytest.mark.asyncio
    async def test_flag_disables_announcement(self):
        relay = make_relay([bridge_dict(left_flags={"relay_leave": False})])

        await relay.orchestrator.on_member_leave(MemberLeave(side="left", chat_id="-100", display="Alice"))

        assert relay.right.sent == []


class TestPrivateNotice:
    """Unbridged chats are told once per cooldown."""

    @pytest.mark.asyncio
    async def test_notice_sent_once(self, relay: Relay):
        await relay.orchestrator.on_create(left_msg("hi", chat_id="-999"))
        await relay.orchestrator.on_create(left_msg("again", message_id="2", chat_id="-999"))

        assert len(relay.left.sent) == 1
        assert relay.left.sent[0].chat_id == "-999"
        assert "not bridged" in relay.left.sent[0].markup
        assert relay.right.sent == []

    @pytest.mark.asyncio
    async def test_notice_suppressed(self):
        relay = make_relay(suppress_private_bot_notice=True)
        await relay.orchestrator.on_create(left_msg("hi", chat_id="-999"))
        assert relay.left.sent == []

    @pytest.mark.asyncio
    async def test_notice_failure_is_not_raised(self, relay: Relay):
        relay.left.fail_send = [DispatchError("blocked")]
        await relay.orchestrator.on_create(left_msg("hi", chat_id="-999"))
        assert relay.left.sent == []


class TestPushEvent:
    """Adapter entry point dispatches by event type."""

    def test_accept_event(self, relay: Relay):
        assert relay.orchestrator.accept_event("telegram", left_msg()) is True
        assert relay.orchestrator.accept_event("telegram", object()) is False

    @pytest.mark.asyncio
    async def test_push_create_then_edit(self, relay: Relay):
        _, created = message_in("left", -100, 1, "Alice", "Hello")
        _, edited = message_in("left", -100, 1, "Alice", "Hello!", is_edit=True)

        await relay.orchestrator.push_event("telegram", created)
        await relay.orchestrator.push_event("telegram", edited)

        assert len(relay.right.sent) == 1
        assert relay.right.edited == [("555", "R1", "**Alice**\nHello!", False)]
