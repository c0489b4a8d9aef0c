"""Base adapter: the outbound operations the orchestrator needs from a platform."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Protocol

from crossrelay.events import Attachment


class MentionResolver(Protocol):
    """Name lookups used while translating mentions and hashtags.

    Answers come from the adapter's member/channel cache and must not block.
    """

    def find_user_by_display_name(self, name: str) -> str | None:
        """Return a user id whose display name matches `name` (case-insensitive)."""
        ...

    def find_role_by_name(self, name: str) -> str | None:
        """Return a role id whose name matches `name` (case-insensitive)."""
        ...

    def find_channel_by_name(self, name: str) -> str | None:
        """Return a channel id whose name matches `name` exactly."""
        ...


class AdapterBase(ABC):
    """Thin base for platform adapters.

    send/edit/delete raise DispatchError when the platform rejects the call and
    MessageAlreadyDeletedError when a delete target is already gone.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Adapter identifier (e.g. 'telegram', 'discord')."""
        ...

    @abstractmethod
    async def send_message(
        self,
        chat_id: str,
        markup: str,
        *,
        reply_to: str | None = None,
        as_embed: bool = False,
        attachments: list[Attachment] | None = None,
        thread_id: str | None = None,
    ) -> str:
        """Send markup (optionally as a rich embed or with attachments). Returns the new message id."""
        ...

    @abstractmethod
    async def edit_message(self, chat_id: str, message_id: str, markup: str, *, as_embed: bool = False) -> None:
        """Replace the content of a previously sent message."""
        ...

    @abstractmethod
    async def delete_message(self, chat_id: str, message_id: str) -> None:
        """Delete a message."""
        ...

    def find_user_by_display_name(self, name: str) -> str | None:
        return None

    def find_role_by_name(self, name: str) -> str | None:
        return None

    def find_channel_by_name(self, name: str) -> str | None:
        return None

    async def start(self) -> None:
        """Start the adapter (connect, register handlers)."""

    async def stop(self) -> None:
        """Stop the adapter (disconnect, cleanup)."""
