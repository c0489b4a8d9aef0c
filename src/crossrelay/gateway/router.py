"""Bridge routing table: left chat <-> right channel (and thread) lookups."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from crossrelay.core.constants import (
    DIRECTION_BOTH,
    DIRECTION_LEFT_TO_RIGHT,
    DIRECTION_RIGHT_TO_LEFT,
    BridgeDirection,
    EmbedPolicy,
    Side,
)


@dataclass(frozen=True)
class SideFlags:
    """Per-side behaviour flags of a bridge."""

    relay_join: bool = True
    relay_leave: bool = True
    send_usernames: bool = True
    cross_delete: bool = True


@dataclass(frozen=True)
class RightFlags(SideFlags):
    embed_policy: EmbedPolicy = "auto"


@dataclass(frozen=True)
class ThreadRoute:
    """Binds a left-side thread to a right-side thread."""

    left_thread_id: str
    right_thread_id: str


@dataclass(frozen=True)
class BridgeConfig:
    """One configured relay path between a left chat and a right channel."""

    name: str
    left_chat_id: str
    right_channel_id: str
    direction: BridgeDirection = DIRECTION_BOTH
    left: SideFlags = field(default_factory=SideFlags)
    right: RightFlags = field(default_factory=RightFlags)
    thread_routes: tuple[ThreadRoute, ...] = ()
    left_thread_id: str | None = None
    right_thread_id: str | None = None

    def relays_from(self, side: Side) -> bool:
        """Whether messages originating on `side` cross this bridge."""
        if self.direction == DIRECTION_BOTH:
            return True
        if side == "left":
            return self.direction == DIRECTION_LEFT_TO_RIGHT
        return self.direction == DIRECTION_RIGHT_TO_LEFT

    def flags(self, side: Side) -> SideFlags:
        return self.left if side == "left" else self.right

    def chat_on(self, side: Side) -> str:
        """Chat/channel id on `side`; a bound right thread is its own channel."""
        if side == "left":
            return self.left_chat_id
        return self.right_thread_id or self.right_channel_id

    def thread_on(self, side: Side) -> str | None:
        return self.left_thread_id if side == "left" else self.right_thread_id

    def for_left_thread(self, left_thread_id: str) -> BridgeConfig | None:
        """Clone bound to the right thread registered for `left_thread_id`."""
        for route in self.thread_routes:
            if route.left_thread_id == left_thread_id:
                return dataclasses.replace(
                    self,
                    left_thread_id=route.left_thread_id,
                    right_thread_id=route.right_thread_id,
                )
        return None

    def for_right_thread(self, right_thread_id: str) -> BridgeConfig | None:
        """Clone bound to the left thread registered for `right_thread_id`."""
        for route in self.thread_routes:
            if route.right_thread_id == right_thread_id:
                return dataclasses.replace(
                    self,
                    left_thread_id=route.left_thread_id,
                    right_thread_id=route.right_thread_id,
                )
        return None


def _side_flags(raw: dict[str, Any]) -> dict[str, bool]:
    return {
        "relay_join": bool(raw.get("relay_join", True)),
        "relay_leave": bool(raw.get("relay_leave", True)),
        "send_usernames": bool(raw.get("send_usernames", True)),
        "cross_delete": bool(raw.get("cross_delete", True)),
    }


def bridge_from_dict(item: dict[str, Any]) -> BridgeConfig:
    """Build a BridgeConfig from one validated `bridges[]` entry."""
    left = item.get("left") or {}
    right = item.get("right") or {}
    routes = tuple(
        ThreadRoute(left_thread_id=str(r["left"]), right_thread_id=str(r["right"]))
        for r in item.get("thread_routes") or []
    )
    return BridgeConfig(
        name=str(item["name"]),
        left_chat_id=str(left["chat_id"]),
        right_channel_id=str(right["channel_id"]),
        direction=item.get("direction", DIRECTION_BOTH),
        left=SideFlags(**_side_flags(left)),
        right=RightFlags(**_side_flags(right), embed_policy=right.get("embed_policy", "auto")),
        thread_routes=routes,
    )


class BridgeRoutingTable:
    """Resolves inbound chat/channel ids to the bridges bound to them.

    Lookups return lists in configuration order; an unknown id yields an empty
    list, meaning "not bridged".
    """

    def __init__(self, bridges: list[BridgeConfig] | None = None) -> None:
        self._bridges: list[BridgeConfig] = []
        self._by_left: dict[str, list[BridgeConfig]] = {}
        self._by_right: dict[str, list[BridgeConfig]] = {}
        self._by_right_thread: dict[tuple[str, str], list[BridgeConfig]] = {}
        self.replace(bridges or [])

    def replace(self, bridges: list[BridgeConfig]) -> None:
        """Rebuild every index from `bridges` and swap them in together."""
        by_left: dict[str, list[BridgeConfig]] = {}
        by_right: dict[str, list[BridgeConfig]] = {}
        by_right_thread: dict[tuple[str, str], list[BridgeConfig]] = {}
        for bridge in bridges:
            by_left.setdefault(bridge.left_chat_id, []).append(bridge)
            by_right.setdefault(bridge.right_channel_id, []).append(bridge)
            for route in bridge.thread_routes:
                clone = bridge.for_right_thread(route.right_thread_id)
                if clone is not None:
                    key = (bridge.right_channel_id, route.right_thread_id)
                    by_right_thread.setdefault(key, []).append(clone)
        (self._bridges, self._by_left, self._by_right, self._by_right_thread) = (
            list(bridges),
            by_left,
            by_right,
            by_right_thread,
        )

    def load_from_config(self, config: dict[str, Any]) -> None:
        """Load bridges from a validated config dict (config['bridges'])."""
        raw = config.get("bridges")
        if not isinstance(raw, list):
            logger.warning("Router: no bridges list in config; using empty routing table")
            self.replace([])
            return
        bridges = [bridge_from_dict(item) for item in raw]
        self.replace(bridges)
        thread_count = sum(len(b.thread_routes) for b in bridges)
        logger.info(
            "Router: loaded {} bridges ({} thread routes)",
            len(bridges),
            thread_count,
        )

    def by_left_chat(self, chat_id: str | int, thread_id: str | int | None = None) -> list[BridgeConfig]:
        """Bridges for a left chat. A registered left thread yields thread-bound clones."""
        bridges = self._by_left.get(str(chat_id), [])
        if thread_id is None:
            return list(bridges)
        result: list[BridgeConfig] = []
        for bridge in bridges:
            clone = bridge.for_left_thread(str(thread_id))
            result.append(clone if clone is not None else bridge)
        return result

    def by_right_channel(self, channel_id: str | int, thread_id: str | int | None = None) -> list[BridgeConfig]:
        """Bridges for a right channel, or for a registered thread inside it."""
        if thread_id is not None:
            threaded = self._by_right_thread.get((str(channel_id), str(thread_id)))
            if threaded:
                return list(threaded)
        return list(self._by_right.get(str(channel_id), []))

    def lookup(self, side: Side, chat_id: str | int, thread_id: str | int | None = None) -> list[BridgeConfig]:
        """Side-dispatching lookup used by the orchestrator."""
        if side == "left":
            return self.by_left_chat(chat_id, thread_id)
        return self.by_right_channel(chat_id, thread_id)

    def all_bridges(self) -> list[BridgeConfig]:
        """Return all bridges."""
        return list(self._bridges)
