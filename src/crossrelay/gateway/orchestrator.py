"""Relay orchestrator: create/edit/delete propagation across bridges."""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from cachetools import TTLCache
from loguru import logger

from crossrelay.adapters.base import AdapterBase
from crossrelay.config.schema import Config
from crossrelay.core.constants import RelayDirection, Side, opposite_direction, other_side, relay_direction
from crossrelay.core.errors import DispatchError, MessageAlreadyDeletedError
from crossrelay.events import Attachment, MemberJoin, MemberLeave, MessageDelete, MessageIn
from crossrelay.formatting.chunking import split_markup, truncate
from crossrelay.formatting.left_to_right import escape_markdown, to_right_markup
from crossrelay.formatting.reply import blockquote, bold, compose, make_header, make_reply_text
from crossrelay.formatting.right_to_left import (
    embed_to_left_markup,
    escape_html,
    sender_prefix,
    to_left_markup,
)
from crossrelay.gateway.correlation import CorrelationStore
from crossrelay.gateway.router import BridgeConfig, BridgeRoutingTable

DELETE_SIGNAL = "."

# Rendered embeds are also recorded under a sibling key so edits can tell them from text chunks
EMBED_KEY_SUFFIX = "#embeds"


def embed_key(source_id: str) -> str:
    return f"{source_id}{EMBED_KEY_SUFFIX}"


def _source_of(key: str) -> str:
    return key.removesuffix(EMBED_KEY_SUFFIX)


class RelayOrchestrator:
    """Moves messages between the two sides for every bridge bound to their chat.

    Failures are scoped to one bridge and one operation: they are logged and
    the remaining bridges of a fan-out are still served.
    """

    def __init__(
        self,
        config: Config,
        router: BridgeRoutingTable,
        store: CorrelationStore,
        left_adapter: AdapterBase,
        right_adapter: AdapterBase,
    ) -> None:
        self._config = config
        self._router = router
        self._store = store
        self._adapters: dict[Side, AdapterBase] = {"left": left_adapter, "right": right_adapter}
        # (side, chat) pairs that got the unbridged-chat notice recently
        self._notified: TTLCache[tuple[str, str], bool] = TTLCache(
            maxsize=1024, ttl=config.private_bot_notice_cooldown_seconds
        )

    def adapter(self, side: Side) -> AdapterBase:
        return self._adapters[side]

    def platform_name(self, side: Side) -> str:
        return self._config.left_platform if side == "left" else self._config.right_platform

    def accept_event(self, source: str, evt: object) -> bool:
        return isinstance(evt, (MessageIn, MessageDelete, MemberJoin, MemberLeave))

    async def push_event(self, source: str, evt: object) -> None:
        """Entry point for adapters: route an inbound event to its handler."""
        if isinstance(evt, MessageIn):
            if evt.is_edit:
                await self.on_edit(evt)
            else:
                await self.on_create(evt)
        elif isinstance(evt, MessageDelete):
            await self.on_delete(evt)
        elif isinstance(evt, MemberJoin):
            await self.on_member_join(evt)
        elif isinstance(evt, MemberLeave):
            await self.on_member_leave(evt)

    # -- routing --

    def _route(self, side: Side, chat_id: str, thread_id: str | None = None) -> list[BridgeConfig]:
        bridges = self._router.lookup(side, chat_id, thread_id)
        if not bridges:
            logger.debug("No bridge for {} chat {}", side, chat_id)
        return bridges

    async def _maybe_send_private_notice(self, side: Side, chat_id: str) -> None:
        if self._config.suppress_private_bot_notice:
            return
        key = (side, chat_id)
        if key in self._notified:
            return
        self._notified[key] = True
        text = (
            f"This is a relay bot bridging chats between {self._config.left_platform} "
            f"and {self._config.right_platform}. This chat is not bridged."
        )
        if side == "left":
            text = escape_html(text)
        try:
            await self.adapter(side).send_message(chat_id, text)
        except DispatchError as exc:
            logger.warning("Could not send unbridged-chat notice to {} chat {}: {}", side, chat_id, exc)

    async def _guarded(
        self,
        bridge: BridgeConfig,
        operation: str,
        preview: str,
        action: Callable[[], Awaitable[None]],
    ) -> None:
        try:
            await action()
        except MessageAlreadyDeletedError:
            logger.debug("[{}] {}: target already deleted", bridge.name, operation)
        except DispatchError as exc:
            logger.error("[{}] {} failed: {} (content: {!r})", bridge.name, operation, exc, truncate(preview, 100))
        except Exception:
            logger.exception("[{}] Unexpected error during {}", bridge.name, operation)

    # -- helpers --

    def _sender_name(self, evt: MessageIn) -> str:
        if self._config.use_first_name_instead_of_username:
            first_name = evt.raw.get("first_name")
            if first_name:
                return str(first_name)
        return evt.author_display

    def _reply_name(self, evt: MessageIn) -> str | None:
        reply = evt.reply_to
        if reply is None:
            return None
        if reply.is_relayed:
            user_id = self.adapter("right").find_user_by_display_name(reply.author_display)
            if user_id:
                return f"<@{user_id}>"
        return bold(reply.author_display)

    async def _find_anchor(self, bridge: BridgeConfig, evt: MessageIn) -> str | None:
        """Destination-side message to thread a reply onto, if the reply target is tracked."""
        if evt.reply_to is None:
            return None
        ref = evt.reply_to.message_id
        direction = relay_direction(evt.side)
        # Replied-to message was itself relayed here from the destination side
        origin = await self._store.get_reverse(bridge.name, opposite_direction(direction), ref)
        if origin is not None:
            return _source_of(origin)
        # Replied-to message was relayed from here to the destination side
        relayed = await self._store.get(bridge.name, direction, ref)
        return relayed[0] if relayed else None

    def _allowed_attachments(self, bridge: BridgeConfig, attachments: list[Attachment]) -> list[Attachment]:
        allowed: list[Attachment] = []
        for attachment in attachments:
            limit = self._config.max_video_bytes if attachment.kind == "video" else self._config.max_attachment_bytes
            if attachment.size > limit:
                logger.info(
                    "[{}] Skipping {} {!r}: {} bytes exceeds {}",
                    bridge.name,
                    attachment.kind,
                    attachment.name,
                    attachment.size,
                    limit,
                )
                continue
            allowed.append(attachment)
        return allowed

    def _right_header(self, bridge: BridgeConfig, evt: MessageIn, *, has_anchor: bool) -> str:
        return make_header(
            self._sender_name(evt),
            send_usernames=bridge.left.send_usernames,
            forwarded_from=evt.forwarded_from,
            replied_to=self._reply_name(evt),
            has_anchor=has_anchor,
        )

    def _left_body(self, bridge: BridgeConfig, evt: MessageIn) -> str:
        body = to_left_markup(evt.text, evt.entities, self._config.left_formatting)
        if bridge.right.send_usernames and body:
            return sender_prefix(self._sender_name(evt), colon=self._config.colon_after_sender_name) + body
        return body

    def _right_message(self, bridge: BridgeConfig, evt: MessageIn, anchor: str | None) -> tuple[str, bool]:
        """Header, optional reply quote and translated text for the right side.

        Returns the composed message and whether it should go out as an embed.
        """
        translated = to_right_markup(
            evt.text,
            evt.entities,
            self.adapter("right"),
            embed_policy=bridge.right.embed_policy,
            max_length=self._config.right_message_limit,
        )
        quote = None
        if evt.reply_to is not None and anchor is None and evt.reply_to.text:
            quote = blockquote(
                make_reply_text(evt.reply_to.text, self._config.reply_length, self._config.max_reply_lines)
            )
        header = self._right_header(bridge, evt, has_anchor=anchor is not None)
        return compose(header, quote, translated.markup), translated.uses_rich_embed

    async def _forget(self, bridge: BridgeConfig, direction: RelayDirection, source_id: str) -> None:
        await self._store.remove(bridge.name, direction, source_id)
        await self._store.remove(bridge.name, direction, embed_key(source_id))

    async def _send_chunks(
        self,
        bridge: BridgeConfig,
        dest: Side,
        source_id: str,
        chunks: list[str],
        *,
        reply_to: str | None,
        attachments: list[Attachment],
        as_embed: bool = False,
        rendered_embeds: bool = False,
    ) -> None:
        adapter = self.adapter(dest)
        chat_id = bridge.chat_on(dest)
        thread_id = bridge.thread_on(dest) if dest == "left" else None
        direction = relay_direction(other_side(dest))
        for i, chunk in enumerate(chunks):
            first = i == 0
            dest_id = await adapter.send_message(
                chat_id,
                chunk,
                reply_to=reply_to if first else None,
                as_embed=as_embed,
                attachments=attachments if first and attachments else None,
                thread_id=thread_id,
            )
            await self._store.insert(bridge.name, direction, source_id, dest_id)
            if rendered_embeds:
                await self._store.insert(bridge.name, direction, embed_key(source_id), dest_id)

    # -- create --

    async def on_create(self, evt: MessageIn) -> None:
        bridges = self._route(evt.side, evt.chat_id, evt.thread_id)
        if not bridges:
            await self._maybe_send_private_notice(evt.side, evt.chat_id)
            return
        for bridge in bridges:
            if not bridge.relays_from(evt.side):
                continue
            if evt.side == "left":
                await self._guarded(bridge, "relay", evt.text, lambda b=bridge: self._create_to_right(b, evt))
            else:
                await self._guarded(bridge, "relay", evt.text, lambda b=bridge: self._create_to_left(b, evt))

    async def _create_to_right(self, bridge: BridgeConfig, evt: MessageIn) -> None:
        anchor = await self._find_anchor(bridge, evt)
        message, uses_embed = self._right_message(bridge, evt, anchor)
        attachments = list(evt.attachments)
        if not message and not attachments:
            return

        if uses_embed and len(message) <= self._config.right_embed_limit:
            await self._send_chunks(
                bridge, "right", evt.message_id, [message], reply_to=anchor, attachments=attachments, as_embed=True
            )
            return
        chunks = split_markup(message, self._config.right_message_limit) or [""]
        await self._send_chunks(bridge, "right", evt.message_id, chunks, reply_to=anchor, attachments=attachments)

    async def _create_to_left(self, bridge: BridgeConfig, evt: MessageIn) -> None:
        anchor = await self._find_anchor(bridge, evt)
        sender = self._sender_name(evt)
        attachments = self._allowed_attachments(bridge, evt.attachments)
        embeds = [embed_to_left_markup(e, sender, self._config.left_formatting) for e in evt.embeds]
        body = self._left_body(bridge, evt)
        if not body and attachments and bridge.right.send_usernames:
            # Caption-less files still say who sent them
            body = sender_prefix(sender, colon=self._config.colon_after_sender_name).rstrip("\n")
        if not body and not attachments and not embeds:
            return

        await self._send_chunks(
            bridge, "left", evt.message_id, embeds, reply_to=anchor, attachments=[], rendered_embeds=True
        )
        chunks = split_markup(body, self._config.left_message_limit) or [""]
        if body or attachments:
            await self._send_chunks(
                bridge,
                "left",
                evt.message_id,
                chunks,
                reply_to=None if embeds else anchor,
                attachments=attachments,
            )

    # -- edit --

    async def on_edit(self, evt: MessageIn) -> None:
        for bridge in self._route(evt.side, evt.chat_id, evt.thread_id):
            if not bridge.relays_from(evt.side):
                continue
            await self._guarded(bridge, "edit", evt.text, lambda b=bridge: self._edit(b, evt))

    async def _edit(self, bridge: BridgeConfig, evt: MessageIn) -> None:
        direction = relay_direction(evt.side)
        dest = other_side(evt.side)
        ids = await self._store.get(bridge.name, direction, evt.message_id)
        if not ids:
            logger.debug("[{}] Edit of untracked message {}; ignoring", bridge.name, evt.message_id)
            return

        if evt.text == DELETE_SIGNAL and not evt.entities and bridge.flags(evt.side).cross_delete:
            await self._delete_ids(bridge, dest, ids)
            await self._forget(bridge, direction, evt.message_id)
            try:
                await self.adapter(evt.side).delete_message(evt.chat_id, evt.message_id)
            except MessageAlreadyDeletedError:
                pass
            return

        chat_id = bridge.chat_on(dest)
        embed_ids = await self._store.get(bridge.name, direction, embed_key(evt.message_id))
        if embed_ids and evt.embeds:
            sender = self._sender_name(evt)
            for dest_id, embed in zip(embed_ids, evt.embeds):
                markup = embed_to_left_markup(embed, sender, self._config.left_formatting)
                await self.adapter(dest).edit_message(chat_id, dest_id, markup)
        skip = set(embed_ids)
        text_ids = [dest_id for dest_id in ids if dest_id not in skip]
        if not text_ids:
            logger.debug("[{}] Edit of {} has no relayed text to update", bridge.name, evt.message_id)
            return

        as_embed = False
        if dest == "right":
            anchor = await self._find_anchor(bridge, evt)
            message, uses_embed = self._right_message(bridge, evt, anchor)
            limit = self._config.right_message_limit
            if uses_embed and len(text_ids) == 1 and len(message) <= self._config.right_embed_limit:
                as_embed = True
                limit = self._config.right_embed_limit
        else:
            message = self._left_body(bridge, evt)
            limit = self._config.left_message_limit

        chunks = split_markup(message, limit)
        if not chunks:
            return
        if len(chunks) > len(text_ids):
            # More text than messages: fold the overflow into the last one
            tail = "".join(chunks[len(text_ids) - 1 :])
            chunks = chunks[: len(text_ids) - 1] + [truncate(tail, limit)]
        for i, dest_id in enumerate(text_ids):
            if i >= len(chunks):
                logger.debug("[{}] Edit left message {} unchanged (fewer chunks)", bridge.name, dest_id)
                continue
            await self.adapter(dest).edit_message(chat_id, dest_id, chunks[i], as_embed=as_embed)

    # -- delete --

    async def on_delete(self, evt: MessageDelete) -> None:
        for bridge in self._route(evt.side, evt.chat_id, evt.thread_id):
            if not bridge.flags(evt.side).cross_delete:
                continue
            await self._guarded(bridge, "delete", evt.message_id, lambda b=bridge: self._delete(b, evt))

    async def _delete(self, bridge: BridgeConfig, evt: MessageDelete) -> None:
        direction = relay_direction(evt.side)
        dest = other_side(evt.side)
        ids = await self._store.get(bridge.name, direction, evt.message_id)
        if ids:
            await self._delete_ids(bridge, dest, ids)
            await self._forget(bridge, direction, evt.message_id)
            return
        # The deleted message was itself a relay: remove the original it came from
        origin = await self._store.get_reverse(bridge.name, opposite_direction(direction), evt.message_id)
        if origin is None:
            logger.debug("[{}] Delete of untracked message {}; ignoring", bridge.name, evt.message_id)
            return
        origin = _source_of(origin)
        await self._delete_ids(bridge, dest, [origin])
        await self._forget(bridge, opposite_direction(direction), origin)

    async def _delete_ids(self, bridge: BridgeConfig, side: Side, ids: list[str]) -> None:
        adapter = self.adapter(side)
        chat_id = bridge.chat_on(side)
        for message_id in ids:
            try:
                await adapter.delete_message(chat_id, message_id)
            except MessageAlreadyDeletedError:
                logger.debug("[{}] Message {} already deleted", bridge.name, message_id)

    # -- join / leave --

    async def on_member_join(self, evt: MemberJoin) -> None:
        await self._announce(evt.side, evt.chat_id, evt.display, evt.username, joined=True)

    async def on_member_leave(self, evt: MemberLeave) -> None:
        await self._announce(evt.side, evt.chat_id, evt.display, evt.username, joined=False)

    async def _announce(self, side: Side, chat_id: str, display: str, username: str | None, *, joined: bool) -> None:
        name = f"{display} ({username})" if username else display
        verb = "joined" if joined else "left"
        platform = self.platform_name(side)
        dest = other_side(side)
        if dest == "right":
            text = f"**{escape_markdown(name)}** {verb} the {platform} side of the chat"
        else:
            text = f"<b>{escape_html(name)}</b> {verb} the {platform} side of the chat"

        for bridge in self._route(side, chat_id):
            flags = bridge.flags(side)
            if not (flags.relay_join if joined else flags.relay_leave):
                continue
            if not bridge.relays_from(side):
                continue
            await self._guarded(
                bridge,
                "join" if joined else "leave",
                text,
                lambda b=bridge: self._send_notice(b, dest, text),
            )

    async def _send_notice(self, bridge: BridgeConfig, dest: Side, text: str) -> None:
        thread_id = bridge.thread_on(dest) if dest == "left" else None
        await self.adapter(dest).send_message(bridge.chat_on(dest), text, thread_id=thread_id)
