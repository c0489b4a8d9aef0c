"""Header and reply-quote construction for right-bound messages."""

from __future__ import annotations

import re

from crossrelay.formatting.left_to_right import escape_markdown


def make_reply_text(text: str, reply_length: int = 100, max_reply_lines: int = 2) -> str:
    """Shorten a replied-to message for quoting.

    Keeps the first `reply_length` characters and then the first
    `max_reply_lines` lines of those. A spoiler whose closing ``||`` was cut
    off is closed again, and an ellipsis marks any cut.
    """
    quote = "\n".join(text[:reply_length].split("\n")[:max_reply_lines])
    if quote.count("||") % 2 == 1 and text.count("||") % 2 == 0:
        quote += "||"
    if len(quote) != len(text):
        quote += "…"
    return quote


def blockquote(text: str) -> str:
    """Prefix every line with the right side's quote marker."""
    return re.sub(r"^", "> ", text, flags=re.MULTILINE)


def bold(name: str) -> str:
    return f"**{escape_markdown(name)}**"


def make_header(
    sender: str,
    *,
    send_usernames: bool = True,
    forwarded_from: str | None = None,
    replied_to: str | None = None,
    has_anchor: bool = False,
) -> str:
    """Header line naming who sent (or forwarded, or replied with) a message.

    `replied_to` is already rendered (a bold name or a mention token). When the
    message goes out as a real reply (`has_anchor`), the reply part is dropped.
    """
    if send_usernames:
        if forwarded_from is not None:
            return f"{bold(forwarded_from)} (forwarded by {bold(sender)})"
        if replied_to is not None and not has_anchor:
            return f"{bold(sender)} (in reply to {replied_to})"
        return bold(sender)
    if forwarded_from is not None:
        return f"(forward from {bold(forwarded_from)})"
    if replied_to is not None and not has_anchor:
        return f"(in reply to {replied_to})"
    return ""


def compose(*parts: str | None) -> str:
    """Join non-empty message parts, one per line."""
    return "\n".join(part for part in parts if part)
