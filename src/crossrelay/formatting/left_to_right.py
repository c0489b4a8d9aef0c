"""Convert left-side text + entity lists to right-side markdown."""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass

from loguru import logger

from crossrelay.adapters.base import MentionResolver
from crossrelay.core.constants import EmbedPolicy
from crossrelay.events import TextEntity

# URL pattern - do not escape inside URLs
_URL_PATTERN = re.compile(
    r"https?://[^\s<>\[\]()]+(?:\([^\s<>\[\]()]*\)|[^\s<>\[\]()])*",
    re.IGNORECASE,
)

# Characters that would open or close markdown on the right side
_MARKDOWN_SPECIALS = frozenset("\\*_~|`[")

# kind -> (open, close); anything unlisted contributes no tags
_TAGS: dict[str, tuple[str, str]] = {
    "bold": ("**", "**"),
    "italic": ("*", "*"),
    "underline": ("__", "__"),
    "strikethrough": ("~~", "~~"),
    "spoiler": ("||", "||"),
    "code": ("`", "`"),
    "pre": ("```\n", "\n```"),
}

# Ranges emitted exactly as typed
_VERBATIM_KINDS = frozenset({"code", "pre", "url", "email", "bot_command"})

_LINK_KINDS = frozenset({"text_link", "url"})


@dataclass(frozen=True)
class RightMarkup:
    """Translated markup and whether it should go out as a rich embed."""

    markup: str
    uses_rich_embed: bool = False


def escape_markdown(text: str) -> str:
    """Backslash-escape markdown specials, leaving URLs untouched."""
    parts: list[str] = []
    last_end = 0
    for m in _URL_PATTERN.finditer(text):
        if m.start() > last_end:
            parts.append(_escape_plain(text[last_end : m.start()]))
        parts.append(m.group(0))
        last_end = m.end()
    if last_end < len(text):
        parts.append(_escape_plain(text[last_end:]))
    return "".join(parts)


def _escape_plain(text: str) -> str:
    return "".join("\\" + c if c in _MARKDOWN_SPECIALS else c for c in text)


def _utf16_positions(text: str) -> list[int]:
    """Map each UTF-16 code unit offset (plus the end) to a str index."""
    positions: list[int] = []
    for i, c in enumerate(text):
        positions.append(i)
        if ord(c) > 0xFFFF:
            positions.append(i + 1)
    positions.append(len(text))
    return positions


def _entity_span(entity: TextEntity, positions: list[int] | None, size: int) -> tuple[int, int]:
    begin, end = entity.offset, entity.end
    if positions is not None:
        last = len(positions) - 1
        begin = positions[min(max(begin, 0), last)]
        end = positions[min(max(end, 0), last)]
    begin = min(max(begin, 0), size)
    end = min(max(end, begin), size)
    return begin, end


def _resolve_mention(name: str, resolvers: MentionResolver | None) -> str | None:
    if resolvers is None or not name:
        return None
    try:
        user_id = resolvers.find_user_by_display_name(name)
        if user_id:
            return f"<@{user_id}>"
        role_id = resolvers.find_role_by_name(name)
        if role_id:
            return f"<@&{role_id}>"
    except Exception as exc:
        logger.warning("Mention lookup failed for {!r}: {}", name, exc)
    return None


def _resolve_hashtag(name: str, resolvers: MentionResolver | None) -> str | None:
    if resolvers is None or not name:
        return None
    try:
        channel_id = resolvers.find_channel_by_name(name)
    except Exception as exc:
        logger.warning("Channel lookup failed for {!r}: {}", name, exc)
        return None
    return f"<#{channel_id}>" if channel_id else None


def _render(
    text: str,
    spans: list[tuple[int, int, TextEntity]],
    resolvers: MentionResolver | None,
    *,
    as_embed: bool,
) -> str:
    size = len(text)
    prefix = [""] * (size + 1)
    suffix = [""] * (size + 1)
    replace: dict[int, tuple[int, str]] = {}
    verbatim = [False] * size

    for m in _URL_PATTERN.finditer(text):
        for i in range(m.start(), m.end()):
            verbatim[i] = True

    for begin, end, entity in spans:
        part = text[begin:end]
        kind = entity.kind
        if kind in _VERBATIM_KINDS:
            for i in range(begin, end):
                verbatim[i] = True

        if kind in ("mention", "text_mention"):
            name = entity.user_display or part
            token = _resolve_mention(name.removeprefix("@"), resolvers)
            if token is None:
                logger.debug("Unresolved mention {!r}; keeping literal text", part)
            else:
                replace[begin] = (end, token)
            continue
        if kind == "hashtag":
            token = _resolve_hashtag(part.removeprefix("#"), resolvers)
            if token is None:
                logger.debug("Unresolved hashtag {!r}; keeping literal text", part)
            else:
                replace[begin] = (end, token)
            continue
        if kind == "text_link" and entity.url:
            if as_embed:
                prefix[begin] += "["
                suffix[end] = f"]({entity.url})" + suffix[end]
            elif part != entity.url:
                suffix[end] = f" ({entity.url})" + suffix[end]
            continue

        open_tag, close_tag = _TAGS.get(kind, ("", ""))
        if kind == "pre" and entity.language:
            open_tag = f"```{entity.language}\n"
        if kind == "italic" and (prefix[begin].endswith("*") or suffix[end].startswith("*")):
            open_tag = close_tag = "_"
        prefix[begin] += open_tag
        suffix[end] = close_tag + suffix[end]

    out: list[str] = []
    i = 0
    while i < size:
        out.append(suffix[i])
        out.append(prefix[i])
        if i in replace:
            end, token = replace[i]
            out.append(token)
            i = end
            continue
        c = text[i]
        out.append(c if verbatim[i] or c not in _MARKDOWN_SPECIALS else "\\" + c)
        i += 1
    out.append(suffix[size])
    return "".join(out)


def to_right_markup(
    text: str,
    entities: Sequence[TextEntity] | None = None,
    resolvers: MentionResolver | None = None,
    *,
    embed_policy: EmbedPolicy = "auto",
    max_length: int = 2000,
    offset_unit: str = "utf-16",
) -> RightMarkup:
    """Translate `text` and its entities into right-side markdown.

    Entity offsets are in `offset_unit` ("utf-16" or "codepoint"). Tags are
    collected into per-offset prefix/suffix overlays and emitted in a single
    scan, so no entity ever shifts another's offsets. Where entities overlap,
    the later one wins the shared boundary.
    """
    if not text:
        return RightMarkup("", False)

    positions = _utf16_positions(text) if offset_unit == "utf-16" else None
    spans: list[tuple[int, int, TextEntity]] = []
    for entity in entities or []:
        begin, end = _entity_span(entity, positions, len(text))
        if end > begin:
            spans.append((begin, end, entity))

    links = [entity for _, _, entity in spans if entity.kind in _LINK_KINDS]

    if embed_policy == "always":
        return RightMarkup(_render(text, spans, resolvers, as_embed=True), True)
    markup = _render(text, spans, resolvers, as_embed=False)
    if embed_policy == "never":
        return RightMarkup(markup, False)
    if len(links) > 1 or len(markup) > max_length:
        return RightMarkup(_render(text, spans, resolvers, as_embed=True), True)
    return RightMarkup(markup, False)
