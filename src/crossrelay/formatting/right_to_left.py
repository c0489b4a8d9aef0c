"""Convert right-side markdown to the left side's HTML subset.

The left side does not nest tags: each top-level node gets at most one tag and
everything inside it is flattened to plain text.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass

from crossrelay.config.schema import LeftFormattingOptions
from crossrelay.events import Embed, TextEntity

# URL pattern - bare URLs are never parsed as markup
_URL_PATTERN = re.compile(
    r"https?://[^\s<>\[\]()]+(?:\([^\s<>\[\]()]*\)|[^\s<>\[\]()])*",
    re.IGNORECASE,
)

_CUSTOM_EMOJI = re.compile(r"<a?:(\w+):\d+>")
_CODE_FENCE = re.compile(r"```(?:([\w+-]+)?\n)?([\s\S]*?)\n?```")
_HR = re.compile(r"(?:\*{3,}|_{3,})")

# Inner content: escapes are atomic so an escaped delimiter never closes a span
_INNER = r"((?:\\[\s\S]|[^\\])+?)"

# Ordered inline rules; first match at a position wins
_INLINE_RULES: list[tuple[str, re.Pattern[str]]] = [
    ("code", re.compile(r"``([\s\S]+?)``|`([^`]+)`")),
    ("b", re.compile(r"\*\*" + _INNER + r"\*\*(?!\*)")),
    ("u", re.compile(r"__" + _INNER + r"__(?!_)")),
    ("s", re.compile(r"~~" + _INNER + r"~~")),
    ("tg-spoiler", re.compile(r"\|\|" + _INNER + r"\|\|")),
    ("i", re.compile(r"\*(?=\S)((?:\\[\s\S]|[^\\*])+?)(?<=\S)\*(?!\*)")),
    ("i", re.compile(r"_((?:\\[\s\S]|[^\\_])+?)_(?!\w)")),
    ("a", re.compile(r"\[((?:\\[\s\S]|[^\\\]])+)\]\((\S+?)\)")),
]

_ESCAPABLE = re.compile(r"\\([^0-9A-Za-z\s])")


@dataclass(frozen=True)
class _Node:
    tag: str | None  # None: plain text
    text: str
    href: str | None = None


def escape_html(text: str) -> str:
    """Escape the three characters the left side's HTML parser cares about."""
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def _escape_attr(value: str) -> str:
    return escape_html(value).replace('"', "&quot;")


def _parse_inline(source: str) -> list[_Node]:
    nodes: list[_Node] = []
    buf: list[str] = []

    def flush() -> None:
        if buf:
            nodes.append(_Node(None, "".join(buf)))
            buf.clear()

    i = 0
    while i < len(source):
        url = _URL_PATTERN.match(source, i)
        if url:
            buf.append(url.group(0))
            i = url.end()
            continue
        esc = _ESCAPABLE.match(source, i)
        if esc:
            buf.append(esc.group(1))
            i = esc.end()
            continue
        for tag, pattern in _INLINE_RULES:
            m = pattern.match(source, i)
            if m is None:
                continue
            flush()
            if tag == "code":
                nodes.append(_Node("code", m.group(1) or m.group(2)))
            elif tag == "a":
                nodes.append(_Node("a", _plain(m.group(1)), href=m.group(2)))
            else:
                nodes.append(_Node(tag, _plain(m.group(1))))
            i = m.end()
            break
        else:
            buf.append(source[i])
            i += 1
    flush()
    return nodes


def _plain(source: str) -> str:
    """Markup with every nested tag stripped."""
    return "".join(node.text for node in _parse_inline(source))


def _render_node(node: _Node) -> str:
    text = escape_html(node.text)
    if node.tag is None:
        return text
    if node.tag == "a":
        return f'<a href="{_escape_attr(node.href or "")}">{text}</a>'
    return f"<{node.tag}>{text}</{node.tag}>"


def _render_paragraph(paragraph: str) -> str:
    if _HR.fullmatch(paragraph.strip()):
        return "---"
    return "".join(_render_node(node) for node in _parse_inline(paragraph))


def _render_blocks(source: str) -> str:
    out: list[str] = []
    last_end = 0
    for m in _CODE_FENCE.finditer(source):
        if m.start() > last_end:
            out.append(_render_text_blocks(source[last_end : m.start()]))
        out.append(f"<pre>{escape_html(m.group(2))}</pre>")
        last_end = m.end()
    if last_end < len(source):
        out.append(_render_text_blocks(source[last_end:]))
    return "".join(out)


def _render_text_blocks(source: str) -> str:
    # Paragraphs are separated by a blank line and rejoined with one
    return "\n\n".join(_render_paragraph(p) for p in source.split("\n\n"))


def _filter_custom_emojis(text: str, options: LeftFormattingOptions) -> str:
    mode = options.filter_custom_emojis
    if mode == "remove":
        return _CUSTOM_EMOJI.sub("", text)
    if mode == "replace":
        return _CUSTOM_EMOJI.sub(lambda _m: options.replace_custom_emojis_with, text)
    return _CUSTOM_EMOJI.sub(r":\1:", text)


def _cleanup(html: str, options: LeftFormattingOptions) -> str:
    if options.replace_at_sign:
        html = html.replace("@", options.replace_at_sign_with)
    if options.remove_excessive_spacings:
        html = re.sub(r"(?<=\S) {2,}(?=\S)", " ", html)
    return html


def to_left_markup(
    text: str,
    entities: Sequence[TextEntity] | None = None,
    options: LeftFormattingOptions | None = None,
) -> str:
    """Translate right-side markdown into left-side HTML.

    `entities` is accepted for symmetry with the other direction; the right
    side carries its formatting inline, so it is normally empty.
    """
    if not text:
        return ""
    options = options or LeftFormattingOptions()
    # The right side sometimes inserts a zero-width space after @ in mentions
    text = text.replace("@\u200b", "@")
    text = _filter_custom_emojis(text, options)
    return _cleanup(_render_blocks(text), options)


def sender_prefix(display: str, *, colon: bool = False) -> str:
    """Bold sender line put above relayed text."""
    return f"<b>{escape_html(display)}</b>{':' if colon else ''}\n"


def embed_to_left_markup(embed: Embed, sender: str, options: LeftFormattingOptions | None = None) -> str:
    """Render a right-side rich embed as left-side HTML."""
    text = f"<b>{escape_html(sender)}</b>\n"
    if embed.title:
        title = escape_html(embed.title)
        if embed.url:
            title = f'<a href="{_escape_attr(embed.url)}">{title}</a>'
        text += title + "\n"
    if embed.description:
        text += to_left_markup(embed.description, options=options) + "\n"
    for embed_field in embed.fields:
        text += f"\n<b>{escape_html(embed_field.name)}</b>\n" + to_left_markup(embed_field.value, options=options) + "\n"
    if embed.author:
        text += f"\n<b>Author</b>\n{escape_html(embed.author)}\n"
    return text
