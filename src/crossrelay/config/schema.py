"""Config schema and accessor."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any

from loguru import logger

from crossrelay.core.constants import BRIDGE_DIRECTIONS, EMBED_POLICIES
from crossrelay.core.errors import BridgeConfigurationError

# Env keys that override config (loaded once per reload)
_ENV_OVERRIDE_KEYS = (
    "BRIDGE_CORRELATION_BACKEND",
    "BRIDGE_DATABASE_PATH",
    "BRIDGE_CORRELATION_TTL_HOURS",
)

CORRELATION_BACKENDS = ("memory", "sqlite")
CUSTOM_EMOJI_MODES = ("default", "remove", "replace")

_SIDE_FLAGS = ("relay_join", "relay_leave", "send_usernames", "cross_delete")


def _load_env_overrides() -> dict[str, str]:
    """Load env overrides once per reload."""
    return {k: os.environ.get(k, "") for k in _ENV_OVERRIDE_KEYS}


@dataclass(frozen=True)
class LeftFormattingOptions:
    """Cleanup applied to markup bound for the left side."""

    filter_custom_emojis: str = "default"
    replace_custom_emojis_with: str = "🔹"
    replace_at_sign: bool = False
    replace_at_sign_with: str = "#"
    remove_excessive_spacings: bool = False


class Config:
    """Config accessor with attribute-style access for nested keys."""

    def __init__(self, data: dict[str, Any] | None = None) -> None:
        self._data = data or {}
        self._env: dict[str, str] = _load_env_overrides()

    def reload(self, data: dict[str, Any], *, validate: bool = True) -> None:
        """Replace config data (e.g. on SIGHUP reload)."""
        self._data = data or {}
        self._env = _load_env_overrides()
        if validate:
            self._validate()
        logger.debug("Config reloaded: {} bridges", len(self.bridges))

    def _validate(self) -> None:
        """Validate config structure; raise BridgeConfigurationError on failure."""
        bridges = self._data.get("bridges")
        if bridges is not None and not isinstance(bridges, list):
            raise BridgeConfigurationError(
                "bridges must be a list",
                code="invalid_bridges",
                details={"type": type(bridges).__name__},
            )
        seen: set[str] = set()
        for i, item in enumerate(self.bridges):
            if not isinstance(item, dict):
                raise BridgeConfigurationError(
                    f"bridges[{i}] must be a dict",
                    code="invalid_bridge_item",
                    details={"index": i},
                )
            name = str(item.get("name") or "")
            if not name:
                raise BridgeConfigurationError(
                    f"bridges[{i}] missing name",
                    code="missing_bridge_name",
                    details={"index": i},
                )
            if name in seen:
                raise BridgeConfigurationError(
                    f"bridges[{i}] reuses name {name!r}",
                    code="duplicate_bridge_name",
                    details={"index": i, "name": name},
                )
            seen.add(name)
            direction = item.get("direction", "both")
            if direction not in BRIDGE_DIRECTIONS:
                raise BridgeConfigurationError(
                    f"bridge {name!r} has invalid direction {direction!r}",
                    code="invalid_direction",
                    details={"name": name, "direction": direction},
                )
            self._validate_side(name, item.get("left"), "left", "chat_id")
            self._validate_side(name, item.get("right"), "right", "channel_id")
            policy = item["right"].get("embed_policy", "auto")
            if policy not in EMBED_POLICIES:
                raise BridgeConfigurationError(
                    f"bridge {name!r} has invalid embed_policy {policy!r}",
                    code="invalid_embed_policy",
                    details={"name": name, "embed_policy": policy},
                )
            routes = item.get("thread_routes", [])
            if not isinstance(routes, list) or any(
                not isinstance(r, dict) or "left" not in r or "right" not in r for r in routes
            ):
                raise BridgeConfigurationError(
                    f"bridge {name!r} thread_routes must be a list of {{left, right}} pairs",
                    code="invalid_thread_routes",
                    details={"name": name},
                )
        if self.correlation_backend not in CORRELATION_BACKENDS:
            raise BridgeConfigurationError(
                f"unknown correlation backend {self.correlation_backend!r}",
                code="invalid_backend",
                details={"backend": self.correlation_backend},
            )
        mode = self.left_formatting.filter_custom_emojis
        if mode not in CUSTOM_EMOJI_MODES:
            raise BridgeConfigurationError(
                f"unknown custom emoji filter {mode!r}",
                code="invalid_custom_emoji_filter",
                details={"mode": mode},
            )

    @staticmethod
    def _validate_side(name: str, side: Any, label: str, id_key: str) -> None:
        if not isinstance(side, dict):
            raise BridgeConfigurationError(
                f"bridge {name!r} missing {label} section",
                code=f"missing_{label}",
                details={"name": name},
            )
        if side.get(id_key) in (None, ""):
            raise BridgeConfigurationError(
                f"bridge {name!r} missing {label}.{id_key}",
                code=f"missing_{label}_{id_key}",
                details={"name": name},
            )
        for flag in _SIDE_FLAGS:
            if flag in side and not isinstance(side[flag], bool):
                raise BridgeConfigurationError(
                    f"bridge {name!r} {label}.{flag} must be a boolean",
                    code="invalid_flag",
                    details={"name": name, "flag": f"{label}.{flag}"},
                )

    @property
    def raw(self) -> dict[str, Any]:
        """Raw config dict for the routing table."""
        return self._data

    def get(self, key: str, default: Any = None) -> Any:
        """Get value by dot-separated path."""
        parts = key.split(".")
        obj: Any = self._data
        for part in parts:
            if isinstance(obj, dict) and part in obj:
                obj = obj[part]
            else:
                return default
        return obj

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __contains__(self, key: str) -> bool:
        return key in self._data

    @property
    def bridges(self) -> list[dict[str, Any]]:
        """Bridge definitions."""
        b = self._data.get("bridges")
        return b if isinstance(b, list) else []

    @property
    def left_platform(self) -> str:
        return str(self._data.get("left_platform", "Telegram"))

    @property
    def right_platform(self) -> str:
        return str(self._data.get("right_platform", "Discord"))

    @property
    def correlation_backend(self) -> str:
        env_val = self._env.get("BRIDGE_CORRELATION_BACKEND", "").strip().lower()
        if env_val:
            return env_val
        return str(self.get("correlation.backend", "memory"))

    @property
    def correlation_ttl_hours(self) -> float:
        env_val = self._env.get("BRIDGE_CORRELATION_TTL_HOURS", "").strip()
        if env_val:
            try:
                return float(env_val)
            except ValueError:
                logger.warning("Ignoring invalid BRIDGE_CORRELATION_TTL_HOURS={!r}", env_val)
        return float(self.get("correlation.ttl_hours", 24))

    @property
    def correlation_ttl_seconds(self) -> float:
        return self.correlation_ttl_hours * 3600

    @property
    def database_path(self) -> str:
        env_val = self._env.get("BRIDGE_DATABASE_PATH", "").strip()
        if env_val:
            return env_val
        return str(self.get("correlation.database", "data/correlations.db"))

    @property
    def right_message_limit(self) -> int:
        return int(self.get("limits.right_message", 2000))

    @property
    def right_embed_limit(self) -> int:
        return int(self.get("limits.right_embed", 4096))

    @property
    def left_message_limit(self) -> int:
        return int(self.get("limits.left_message", 4096))

    @property
    def reply_length(self) -> int:
        """How many characters of a replied-to message to quote."""
        return int(self._data.get("reply_length", 100))

    @property
    def max_reply_lines(self) -> int:
        return int(self._data.get("max_reply_lines", 2))

    @property
    def use_first_name_instead_of_username(self) -> bool:
        return bool(self._data.get("use_first_name_instead_of_username", False))

    @property
    def colon_after_sender_name(self) -> bool:
        return bool(self._data.get("colon_after_sender_name", False))

    @property
    def suppress_private_bot_notice(self) -> bool:
        return bool(self._data.get("suppress_private_bot_notice", False))

    @property
    def private_bot_notice_cooldown_seconds(self) -> int:
        return int(self._data.get("private_bot_notice_cooldown_seconds", 60))

    @property
    def max_attachment_bytes(self) -> int:
        return int(self.get("limits.left_attachment_bytes", 10_000_000))

    @property
    def max_video_bytes(self) -> int:
        return int(self.get("limits.left_video_bytes", 20_000_000))

    @property
    def left_formatting(self) -> LeftFormattingOptions:
        raw = self._data.get("left_formatting")
        if not isinstance(raw, dict):
            return LeftFormattingOptions()
        return LeftFormattingOptions(
            filter_custom_emojis=str(raw.get("filter_custom_emojis", "default")),
            replace_custom_emojis_with=str(raw.get("replace_custom_emojis_with", "🔹")),
            replace_at_sign=bool(raw.get("replace_at_sign", False)),
            replace_at_sign_with=str(raw.get("replace_at_sign_with", "#")),
            remove_excessive_spacings=bool(raw.get("remove_excessive_spacings", False)),
        )


cfg: Config = Config({})
