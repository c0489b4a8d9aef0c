"""Markup translation and splitting between the two sides."""

from crossrelay.formatting.chunking import split_markup, truncate
from crossrelay.formatting.left_to_right import RightMarkup, escape_markdown, to_right_markup
from crossrelay.formatting.reply import blockquote, make_header, make_reply_text
from crossrelay.formatting.right_to_left import (
    embed_to_left_markup,
    escape_html,
    sender_prefix,
    to_left_markup,
)

__all__ = [
    "RightMarkup",
    "blockquote",
    "embed_to_left_markup",
    "escape_html",
    "escape_markdown",
    "make_header",
    "make_reply_text",
    "sender_prefix",
    "split_markup",
    "to_left_markup",
    "to_right_markup",
    "truncate",
]
