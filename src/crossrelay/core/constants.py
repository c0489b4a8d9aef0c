"""Side, direction and embed-policy constants."""

from __future__ import annotations

from typing import Literal

Side = Literal["left", "right"]

# Bridge direction as configured
BridgeDirection = Literal["both", "l2r", "r2l"]
DIRECTION_BOTH: BridgeDirection = "both"
DIRECTION_LEFT_TO_RIGHT: BridgeDirection = "l2r"
DIRECTION_RIGHT_TO_LEFT: BridgeDirection = "r2l"
BRIDGE_DIRECTIONS: tuple[BridgeDirection, ...] = ("both", "l2r", "r2l")

# Direction of a single relayed message (correlation keys)
RelayDirection = Literal["l2r", "r2l"]

EmbedPolicy = Literal["never", "auto", "always"]
EMBED_POLICIES: tuple[EmbedPolicy, ...] = ("never", "auto", "always")


def other_side(side: Side) -> Side:
    """Return the opposite side."""
    return "right" if side == "left" else "left"


def relay_direction(source: Side) -> RelayDirection:
    """Direction of a message relayed away from `source`."""
    return "l2r" if source == "left" else "r2l"


def opposite_direction(direction: RelayDirection) -> RelayDirection:
    return "r2l" if direction == "l2r" else "l2r"
